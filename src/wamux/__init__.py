"""
wamux: multi-session WhatsApp gateway core.

Keeps one linked-device connection per registered phone number alive on top
of a pluggable transport, hands out the QR or pairing code needed to link
each one, and forwards every inbound chat message to a collector endpoint in
a normalized shape.
"""

from __future__ import annotations

from .bootstrap import BootstrapArtifact
from .config import GatewayConfig, ReconnectPolicy
from .exceptions import (
    AlreadyRegisteredError,
    BootstrapTimeoutError,
    SessionNotConnectedError,
    SessionNotFoundError,
    WamuxError,
)
from .messages import CanonicalMessage
from .registry import SessionRegistry
from .session import ConnectionState, SessionView

__all__ = [
    "AlreadyRegisteredError",
    "BootstrapArtifact",
    "BootstrapTimeoutError",
    "CanonicalMessage",
    "ConnectionState",
    "GatewayConfig",
    "ReconnectPolicy",
    "SessionNotConnectedError",
    "SessionNotFoundError",
    "SessionRegistry",
    "SessionView",
    "WamuxError",
]

__version__ = "0.1.0"
