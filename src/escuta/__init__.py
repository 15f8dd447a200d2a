"""Escuta Realtime — transcricao de microfone em tempo real via WebRTC."""

from __future__ import annotations

__version__ = "0.1.0"
