"""Canal de eventos: protocolo, data channel WebRTC e variante socket."""

from escuta.channel.event_channel import BaseEventChannel, ChannelObserver, EventChannel
from escuta.channel.protocol import (
    CompletedEvent,
    DeltaEvent,
    HeartbeatEvent,
    RemoteErrorEvent,
    SpeechStartedEvent,
    SpeechStoppedEvent,
    TranscriptionEvent,
    UnknownEvent,
    parse_event,
)
from escuta.channel.socket import SocketEventChannel

__all__ = [
    "BaseEventChannel",
    "ChannelObserver",
    "CompletedEvent",
    "DeltaEvent",
    "EventChannel",
    "HeartbeatEvent",
    "RemoteErrorEvent",
    "SocketEventChannel",
    "SpeechStartedEvent",
    "SpeechStoppedEvent",
    "TranscriptionEvent",
    "UnknownEvent",
    "parse_event",
]
