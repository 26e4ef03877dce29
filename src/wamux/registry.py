from __future__ import annotations

import asyncio
import logging
import random

from .auth.store import CredentialStore, MultiFileCredentialStore
from .bootstrap import BootstrapArtifact, BootstrapIssuer
from .config import GatewayConfig
from .exceptions import (
    AlreadyRegisteredError,
    BootstrapTimeoutError,
    CredentialStoreError,
    SessionNotConnectedError,
    SessionNotFoundError,
    WamuxError,
)
from .forwarder import CollectorForwarder
from .jid import phone_to_jid
from .messages.normalize import CanonicalMessage, MessageNormalizer
from .session import ConnectionState, Session, SessionServices, SessionView
from .transport import ConnectionClosed, Transport, TransportConnection, describe_status
from .util.asyncio import KeyedLock, cancel_suppress, ensure_task
from .util.events import AsyncEventEmitter

logger = logging.getLogger(__name__)

EV_SESSION_UPDATE = "session.update"
EV_MESSAGE = "message"


def _bootstrap_settled(view: SessionView) -> bool:
    return view.has_artifact or view.state in (
        ConnectionState.CONNECTED,
        ConnectionState.LOGGED_OUT,
    )


class SessionRegistry:
    """
    Owner of every live session, keyed by phone number.

    - Mutations for one phone are serialized by a per-phone lock; different
      phones never contend.
    - A dropped connection is replaced by a new Session under the same key
      after the reconnect backoff; callers only ever see the phone number.
    - A logout (transport-initiated or via `unregister`) deletes the stored
      credentials and removes the phone.

    Observers can subscribe to `events`:
    - `"session.update"` with a `SessionView` on every state change
    - `"message"` with `(phone, CanonicalMessage)` before it is forwarded
    """

    def __init__(
        self,
        transport: Transport,
        *,
        config: GatewayConfig | None = None,
        store: CredentialStore | None = None,
        forwarder: CollectorForwarder | None = None,
        issuer: BootstrapIssuer | None = None,
        normalizer: MessageNormalizer | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.config = config or GatewayConfig()
        self.transport = transport
        self.store: CredentialStore = store or MultiFileCredentialStore(self.config.auth_folder)
        self.events = AsyncEventEmitter()

        self._services = SessionServices(
            store=self.store,
            issuer=issuer or BootstrapIssuer(),
            normalizer=normalizer or MessageNormalizer(),
            forwarder=forwarder
            or CollectorForwarder(
                self.config.collector_url, timeout_s=self.config.collector_timeout_s
            ),
            bootstrap_mode=self.config.bootstrap_mode,
        )

        self._sessions: dict[str, Session] = {}
        self._locks = KeyedLock()
        self._reconnects: dict[str, asyncio.Task[None]] = {}
        self._rng = rng or random.Random()
        self._closed = False

    def __contains__(self, phone: object) -> bool:
        return phone in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def _require(self, phone: str) -> Session:
        session = self._sessions.get(phone)
        if session is None:
            raise SessionNotFoundError(phone)
        return session

    def get(self, phone: str) -> SessionView:
        return self._require(phone).view()

    def list_sessions(self) -> list[SessionView]:
        return [s.view() for s in self._sessions.values()]

    def bootstrap_artifact(self, phone: str) -> BootstrapArtifact | None:
        return self._require(phone).artifact

    def _new_session(
        self,
        phone: str,
        *,
        state: ConnectionState = ConnectionState.INITIALIZING,
        attempt: int = 0,
    ) -> Session:
        return Session(phone, owner=self, services=self._services, state=state, attempt=attempt)

    async def start(self, phone: str) -> SessionView:
        """
        Create and connect a session without waiting for a bootstrap artifact.
        """

        if self._closed:
            raise WamuxError("registry is closed")
        async with self._locks.hold(phone):
            if phone in self._sessions:
                raise AlreadyRegisteredError(phone)
            session = self._new_session(phone)
            self._sessions[phone] = session
        logger.info("event=session_start phone=%s", phone)

        await self._open(session)
        return session.view()

    async def register(
        self, phone: str, *, timeout_s: float | None = None
    ) -> BootstrapArtifact | None:
        """
        Start a session and wait for the code the user must scan or type.

        Returns None when the session connects on stored credentials before any
        code is issued. Raises `BootstrapTimeoutError` after `timeout_s`
        (default: `config.bootstrap_timeout_s`); the session keeps running and
        the artifact can still be fetched with `bootstrap_artifact()`.
        """

        timeout = self.config.bootstrap_timeout_s if timeout_s is None else timeout_s
        if phone in self._sessions:
            raise AlreadyRegisteredError(phone)

        # Registered before connecting so an immediate code is not missed.
        fut = self.events.wait_for_future(
            EV_SESSION_UPDATE,
            predicate=lambda view: view.phone == phone and _bootstrap_settled(view),
        )
        try:
            await self.start(phone)
            view: SessionView = await asyncio.wait_for(fut, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("event=bootstrap_timeout phone=%s timeout_s=%s", phone, timeout)
            raise BootstrapTimeoutError(phone, timeout) from None
        finally:
            self.events.discard_waiter(EV_SESSION_UPDATE, fut)

        if view.state is ConnectionState.LOGGED_OUT:
            raise SessionNotFoundError(phone)
        session = self._sessions.get(phone)
        if view.connected or session is None:
            return None
        return session.artifact

    async def unregister(self, phone: str) -> None:
        """Log the session out, delete its credentials and forget it."""

        async with self._locks.hold(phone):
            session = self._sessions.pop(phone, None)
            if session is None:
                raise SessionNotFoundError(phone)
            session.retire()
            reconnect = self._reconnects.pop(phone, None)

            conn = session.connection
            if conn is not None:
                try:
                    await conn.logout()
                except Exception as e:
                    logger.warning("event=logout_failed phone=%s error=%r", phone, e)
            else:
                # Waiting out a reconnect backoff: the device is still linked.
                await self._logout_stored(phone)
            await self._close_quietly(session)
            session.move(ConnectionState.LOGGED_OUT)
            await self.store.delete(phone)

        await cancel_suppress(reconnect)
        logger.info("event=session_unregistered phone=%s", phone)
        await self.events.emit(EV_SESSION_UPDATE, session.view())

    async def rehydrate(self) -> list[str]:
        """
        Start a session for every phone with persisted credentials.

        A failure for one phone is logged and does not affect the others.
        """

        started: list[str] = []
        for phone in await self.store.list_phones():
            if phone in self._sessions:
                continue
            logger.info("event=session_reload phone=%s", phone)
            try:
                await self.start(phone)
            except WamuxError as e:
                logger.error("event=session_reload_failed phone=%s error=%s", phone, e)
                continue
            started.append(phone)
        return started

    async def send_text(self, phone: str, to: str, text: str) -> str:
        session = self._require(phone)
        conn = session.connection
        if session.state is not ConnectionState.CONNECTED or conn is None:
            raise SessionNotConnectedError(phone, session.state.value)
        jid = to if "@" in to else phone_to_jid(to)
        return await conn.send_text(jid, text)

    async def close(self) -> None:
        """
        Disconnect every session without logging out.

        Credentials stay on disk so the next `rehydrate()` resumes them.
        """

        self._closed = True
        sessions = list(self._sessions.values())
        reconnects = list(self._reconnects.values())
        self._sessions.clear()
        self._reconnects.clear()

        for session in sessions:
            session.retire()
        for task in reconnects:
            await cancel_suppress(task)
        for session in sessions:
            await self._close_quietly(session)
        logger.info("event=registry_closed sessions=%d", len(sessions))

    async def _close_quietly(self, session: Session) -> None:
        conn = session.connection
        if conn is None:
            return
        await self._close_connection(session.phone, conn)

    async def _close_connection(self, phone: str, conn: TransportConnection) -> None:
        try:
            await conn.close()
        except Exception as e:
            logger.debug("event=close_failed phone=%s error=%r", phone, e)

    async def _logout_stored(self, phone: str) -> None:
        """Log out using the stored credentials on a short-lived connection."""

        try:
            credentials = await self.store.load(phone)
        except CredentialStoreError as e:
            logger.warning("event=logout_skipped phone=%s error=%s", phone, e)
            return
        if credentials.is_empty:
            return

        conn = self.transport.create(phone, credentials)
        try:
            await conn.connect()
            await conn.logout()
        except Exception as e:
            logger.warning("event=logout_failed phone=%s error=%r", phone, e)
        finally:
            await self._close_connection(phone, conn)
        logger.info("event=logout_stored phone=%s", phone)

    async def _open(self, session: Session, *, resuming: bool = False) -> None:
        phone = session.phone
        try:
            credentials = await self.store.load(phone)
        except CredentialStoreError as e:
            if resuming:
                # Stay visible and keep backing off until fixed or unregistered.
                logger.error("event=creds_load_failed phone=%s error=%s", phone, e)
                await self.session_dropped(
                    session, ConnectionClosed(reason=f"credentials unreadable: {e}")
                )
                return
            logger.exception("event=creds_load_failed phone=%s", phone)
            async with self._locks.hold(phone):
                if self._sessions.get(phone) is session:
                    del self._sessions[phone]
                session.retire()
            raise

        if session.retired:
            return

        try:
            conn = self.transport.create(phone, credentials)
            session.attach(conn, credentials)
            await conn.connect()
        except asyncio.CancelledError:
            # Whoever retired the session already closed its connection.
            if not session.retired:
                await self._close_quietly(session)
            raise
        except Exception as e:
            logger.warning("event=connect_failed phone=%s error=%r", phone, e)
            await self.session_dropped(session, ConnectionClosed(reason=f"connect failed: {e}"))
            return

        if session.retired:
            # Unregistered or replaced while connecting.
            await self._close_quietly(session)

    async def _reconnect_after(self, session: Session, delay_s: float) -> None:
        phone = session.phone
        try:
            if delay_s > 0:
                await asyncio.sleep(delay_s)

            async with self._locks.hold(phone):
                if session.retired or self._sessions.get(phone) is not session:
                    return
                if session.state is ConnectionState.CIRCUIT_OPEN:
                    session.move(ConnectionState.RECONNECTING)

            logger.info("event=reconnect phone=%s attempt=%d", phone, session.attempt)
            await self._open(session, resuming=True)
        finally:
            # Tracked until connect() returns so unregister/close can cancel it.
            if self._reconnects.get(phone) is asyncio.current_task():
                del self._reconnects[phone]

    # SessionOwner hooks

    async def session_changed(self, session: Session) -> None:
        if session.retired:
            return
        await self.events.emit(EV_SESSION_UPDATE, session.view())

    async def session_connected(self, session: Session) -> None:
        if session.retired:
            return
        session.attempt = 0
        logger.info(
            "event=session_connected phone=%s identity=%s", session.phone, session.own_identity
        )
        await self.events.emit(EV_SESSION_UPDATE, session.view())

    async def session_dropped(self, session: Session, closed: ConnectionClosed) -> None:
        phone = session.phone
        async with self._locks.hold(phone):
            if self._closed or session.retired or self._sessions.get(phone) is not session:
                return
            session.retire()

            policy = self.config.reconnect
            attempt = session.attempt + 1
            state = (
                ConnectionState.CIRCUIT_OPEN
                if policy.circuit_open(attempt)
                else ConnectionState.RECONNECTING
            )
            replacement = self._new_session(phone, state=state, attempt=attempt)
            self._sessions[phone] = replacement

            delay = policy.delay_for(attempt, rng=self._rng)
            self._reconnects[phone] = ensure_task(
                self._reconnect_after(replacement, delay), name=f"wamux.reconnect.{phone}"
            )

        logger.info(
            "event=reconnect_scheduled phone=%s status=%s attempt=%d delay_s=%.2f state=%s",
            phone,
            describe_status(closed.status_code),
            attempt,
            delay,
            state.value,
        )
        await self.events.emit(EV_SESSION_UPDATE, replacement.view())

    async def session_logged_out(self, session: Session, closed: ConnectionClosed) -> None:
        phone = session.phone
        async with self._locks.hold(phone):
            if session.retired or self._sessions.get(phone) is not session:
                return
            del self._sessions[phone]
            session.retire()
            reconnect = self._reconnects.pop(phone, None)
            session.move(ConnectionState.LOGGED_OUT)
            await self.store.delete(phone)

        await cancel_suppress(reconnect)
        await self._close_quietly(session)
        logger.info("event=session_logged_out phone=%s status=%s", phone, closed.status_code)
        await self.events.emit(EV_SESSION_UPDATE, session.view())

    async def session_message(self, session: Session, message: CanonicalMessage) -> None:
        await self.events.emit(EV_MESSAGE, session.phone, message)
