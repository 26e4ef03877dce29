from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .auth.record import CredentialRecord
from .auth.store import CredentialStore
from .bootstrap import BootstrapArtifact, BootstrapIssuer
from .config import BootstrapMode
from .constants import NOTIFY_UPSERT
from .exceptions import CredentialStoreError
from .forwarder import CollectorForwarder
from .messages.normalize import CanonicalMessage, MessageNormalizer
from .transport import (
    EV_BOOTSTRAP,
    EV_CLOSE,
    EV_CREDS,
    EV_MESSAGES,
    EV_OPEN,
    ConnectionClosed,
    ConnectionOpened,
    MessagesUpsert,
    TransportConnection,
    describe_status,
)

logger = logging.getLogger(__name__)


class ConnectionState(str, Enum):
    INITIALIZING = "initializing"
    AWAITING_BOOTSTRAP = "awaiting_bootstrap"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    CIRCUIT_OPEN = "circuit_open"
    LOGGED_OUT = "logged_out"


_S = ConnectionState

_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    _S.INITIALIZING: frozenset(
        {_S.AWAITING_BOOTSTRAP, _S.CONNECTED, _S.RECONNECTING, _S.LOGGED_OUT}
    ),
    _S.AWAITING_BOOTSTRAP: frozenset(
        {_S.AWAITING_BOOTSTRAP, _S.CONNECTED, _S.RECONNECTING, _S.LOGGED_OUT}
    ),
    _S.CONNECTED: frozenset({_S.RECONNECTING, _S.LOGGED_OUT}),
    _S.RECONNECTING: frozenset(
        {_S.AWAITING_BOOTSTRAP, _S.CONNECTED, _S.RECONNECTING, _S.CIRCUIT_OPEN, _S.LOGGED_OUT}
    ),
    _S.CIRCUIT_OPEN: frozenset({_S.RECONNECTING, _S.CONNECTED, _S.CIRCUIT_OPEN, _S.LOGGED_OUT}),
    _S.LOGGED_OUT: frozenset(),
}


def can_transition(src: ConnectionState, dst: ConnectionState) -> bool:
    return dst in _TRANSITIONS[src]


@dataclass(frozen=True, slots=True)
class SessionView:
    """Read-only snapshot of a session handed out by the registry."""

    phone: str
    state: ConnectionState
    has_artifact: bool = False
    own_identity: str | None = None
    attempt: int = 0

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def to_dict(self) -> dict[str, Any]:
        return {
            "phone": self.phone,
            "connected": self.connected,
            "state": self.state.value,
        }


@dataclass(slots=True)
class SessionServices:
    store: CredentialStore
    issuer: BootstrapIssuer
    normalizer: MessageNormalizer
    forwarder: CollectorForwarder
    bootstrap_mode: BootstrapMode = "qr"


class SessionOwner(Protocol):
    async def session_changed(self, session: Session) -> None: ...

    async def session_connected(self, session: Session) -> None: ...

    async def session_dropped(self, session: Session, closed: ConnectionClosed) -> None: ...

    async def session_logged_out(self, session: Session, closed: ConnectionClosed) -> None: ...

    async def session_message(self, session: Session, message: CanonicalMessage) -> None: ...


class Session:
    """
    Lifecycle of one phone number's transport connection.

    A Session is bound to exactly one connection handle. When that connection
    drops, the owner retires this object and creates a fresh Session for the
    same phone instead of repairing it; events still arriving from a retired
    Session's handle are ignored.
    """

    def __init__(
        self,
        phone: str,
        *,
        owner: SessionOwner,
        services: SessionServices,
        state: ConnectionState = ConnectionState.INITIALIZING,
        attempt: int = 0,
    ) -> None:
        self.phone = phone
        self.state = state
        self.attempt = attempt
        self.artifact: BootstrapArtifact | None = None
        self.own_identity: str | None = None
        self.credentials: CredentialRecord | None = None
        self.connection: TransportConnection | None = None
        self.retired = False

        self._owner = owner
        self._services = services
        self._pairing_code: str | None = None

    def __repr__(self) -> str:
        return f"<Session phone={self.phone} state={self.state.value} retired={self.retired}>"

    def view(self) -> SessionView:
        return SessionView(
            phone=self.phone,
            state=self.state,
            has_artifact=self.artifact is not None,
            own_identity=self.own_identity,
            attempt=self.attempt,
        )

    def move(self, dst: ConnectionState) -> bool:
        src = self.state
        if not can_transition(src, dst):
            logger.warning(
                "event=invalid_transition phone=%s from=%s to=%s", self.phone, src.value, dst.value
            )
            return False
        self.state = dst
        if dst is not ConnectionState.AWAITING_BOOTSTRAP:
            self.artifact = None
        if src is not dst:
            logger.info(
                "event=state_transition phone=%s from=%s to=%s", self.phone, src.value, dst.value
            )
        return True

    def retire(self) -> None:
        self.retired = True

    def attach(self, connection: TransportConnection, credentials: CredentialRecord) -> None:
        self.connection = connection
        self.credentials = credentials
        self.own_identity = self.own_identity or credentials.identity

        connection.on(EV_BOOTSTRAP, self._on_bootstrap)
        connection.on(EV_OPEN, self._on_open)
        connection.on(EV_CLOSE, self._on_close)
        connection.on(EV_CREDS, self._on_creds)
        connection.on(EV_MESSAGES, self._on_messages)

    async def _issue_artifact(self, token: str) -> BootstrapArtifact | None:
        issuer = self._services.issuer
        if self._services.bootstrap_mode == "pairing_code" and self.connection is not None:
            if self._pairing_code is None:
                try:
                    self._pairing_code = await self.connection.request_pairing_code(self.phone)
                except Exception as e:
                    logger.warning("event=pairing_code_failed phone=%s error=%r", self.phone, e)
            if self._pairing_code:
                return issuer.issue(self._pairing_code)

        try:
            return issuer.issue(token)
        except ValueError as e:
            logger.warning("event=bootstrap_token_rejected phone=%s error=%s", self.phone, e)
            return None

    async def _on_bootstrap(self, token: str) -> None:
        if self.retired:
            return
        artifact = await self._issue_artifact(token)
        if artifact is None or self.retired:
            return
        if not self.move(ConnectionState.AWAITING_BOOTSTRAP):
            return
        self.artifact = artifact
        logger.info("event=bootstrap_issued phone=%s kind=%s", self.phone, artifact.kind)
        await self._owner.session_changed(self)

    async def _on_open(self, opened: ConnectionOpened | None = None) -> None:
        if self.retired:
            return
        identity = opened.own_identity if opened is not None else None
        if identity:
            self.own_identity = identity
        elif self.credentials is not None:
            self.own_identity = self.own_identity or self.credentials.identity
        if not self.move(ConnectionState.CONNECTED):
            return
        await self._owner.session_connected(self)

    async def _on_close(self, closed: ConnectionClosed | None = None) -> None:
        if self.retired:
            return
        closed = closed or ConnectionClosed()
        logger.info(
            "event=connection_closed phone=%s status=%s reason=%s",
            self.phone,
            describe_status(closed.status_code),
            closed.reason,
        )
        if closed.is_logout:
            await self._owner.session_logged_out(self, closed)
        else:
            await self._owner.session_dropped(self, closed)

    async def _on_creds(self, data: Mapping[str, Any]) -> None:
        if self.retired:
            logger.debug("event=creds_ignored_retired phone=%s", self.phone)
            return
        try:
            self.credentials = await self._services.store.on_update(self.phone, data)
        except CredentialStoreError:
            logger.exception("event=creds_save_failed phone=%s", self.phone)
            raise
        if self.credentials.identity:
            self.own_identity = self.credentials.identity

    async def _on_messages(self, upsert: MessagesUpsert) -> None:
        if self.retired:
            return
        if upsert.kind != NOTIFY_UPSERT:
            logger.debug(
                "event=upsert_ignored phone=%s kind=%s count=%d",
                self.phone,
                upsert.kind,
                len(upsert.messages),
            )
            return

        conn = self.connection
        resolver = conn.group_subject if conn is not None else None
        for raw in upsert.messages:
            try:
                msg = await self._services.normalizer.normalize(
                    raw, self.own_identity, resolve_group=resolver
                )
            except Exception:
                logger.exception("event=normalize_failed phone=%s", self.phone)
                continue
            if msg is None:
                continue
            if not msg.forwardable:
                logger.debug(
                    "event=message_without_body phone=%s message_id=%s", self.phone, msg.message_id
                )
                continue
            await self._owner.session_message(self, msg)
            await self._services.forwarder.forward(msg)
