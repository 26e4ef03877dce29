"""
Seam between the gateway and the library that speaks the WhatsApp protocol.

A transport turns a credential record into a connection handle. The handle
emits lifecycle and message events and accepts a few commands; everything on
the wire (Noise handshake, Signal sessions, binary stanzas) stays inside it.

Events emitted by a connection:

- `"bootstrap"`: `str` raw QR payload (or pairing code) to show the user
- `"open"`: `ConnectionOpened`
- `"close"`: `ConnectionClosed`
- `"creds"`: `Mapping[str, Any]`, the full credential blob to persist
- `"messages"`: `MessagesUpsert`
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Protocol

from .auth.record import CredentialRecord
from .constants import LOGGED_OUT_STATUS, NOTIFY_UPSERT
from .util.events import Listener

EV_BOOTSTRAP = "bootstrap"
EV_OPEN = "open"
EV_CLOSE = "close"
EV_CREDS = "creds"
EV_MESSAGES = "messages"


class DisconnectReason(IntEnum):
    """Close status codes as reported by Baileys-compatible transports."""

    CONNECTION_CLOSED = 428
    CONNECTION_LOST = 408
    CONNECTION_REPLACED = 440
    LOGGED_OUT = LOGGED_OUT_STATUS
    BAD_SESSION = 500
    RESTART_REQUIRED = 515
    MULTIDEVICE_MISMATCH = 411
    FORBIDDEN = 403
    UNAVAILABLE_SERVICE = 503


def describe_status(code: int | None) -> str:
    if code is None:
        return "unknown"
    try:
        return DisconnectReason(code).name.lower()
    except ValueError:
        return str(code)


@dataclass(frozen=True, slots=True)
class ConnectionOpened:
    own_identity: str | None = None


@dataclass(frozen=True, slots=True)
class ConnectionClosed:
    status_code: int | None = None
    reason: str | None = None

    @property
    def is_logout(self) -> bool:
        return self.status_code == LOGGED_OUT_STATUS


@dataclass(frozen=True, slots=True)
class MessagesUpsert:
    messages: Sequence[Any] = field(default_factory=tuple)
    kind: str = NOTIFY_UPSERT


class TransportConnection(Protocol):
    def on(self, event: str, listener: Listener) -> None: ...

    async def connect(self) -> None: ...

    async def close(self) -> None: ...

    async def logout(self) -> None: ...

    async def group_subject(self, jid: str) -> str | None: ...

    async def send_text(self, jid: str, text: str) -> str: ...

    async def request_pairing_code(self, phone: str) -> str: ...


class Transport(Protocol):
    def create(self, phone: str, credentials: CredentialRecord) -> TransportConnection:
        """
        Build a connection handle without connecting it.

        Listeners are attached before `connect()` so no early event is lost.
        """
        ...
