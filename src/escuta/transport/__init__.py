"""Transporte: credenciais, candidate set e negociacao WebRTC."""

from escuta.transport.candidates import (
    FALLBACK_CANDIDATES,
    CandidateProvider,
    CandidateServer,
    MeteredCandidateProvider,
    fetch_candidates,
)
from escuta.transport.credentials import Credential, CredentialIssuer, RealtimeCredentialIssuer

__all__ = [
    "FALLBACK_CANDIDATES",
    "CandidateProvider",
    "CandidateServer",
    "Credential",
    "CredentialIssuer",
    "MeteredCandidateProvider",
    "RealtimeCredentialIssuer",
    "fetch_candidates",
]
