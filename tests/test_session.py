from __future__ import annotations

import pytest

from wamux.bootstrap import BootstrapIssuer
from wamux.messages.normalize import MessageNormalizer
from wamux.session import (
    ConnectionState,
    Session,
    SessionServices,
    SessionView,
    can_transition,
)

S = ConnectionState


class _Owner:
    def __init__(self) -> None:
        self.calls: list[str] = []

    async def session_changed(self, session) -> None:
        self.calls.append("changed")

    async def session_connected(self, session) -> None:
        self.calls.append("connected")

    async def session_dropped(self, session, closed) -> None:
        self.calls.append(f"dropped:{closed.status_code}")

    async def session_logged_out(self, session, closed) -> None:
        self.calls.append("logged_out")

    async def session_message(self, session, message) -> None:
        self.calls.append(f"message:{message.message_id}")


@pytest.fixture
def owner() -> _Owner:
    return _Owner()


@pytest.fixture
def session(owner, store, forwarder) -> Session:
    services = SessionServices(
        store=store,
        issuer=BootstrapIssuer(),
        normalizer=MessageNormalizer(),
        forwarder=forwarder,
    )
    return Session("628111", owner=owner, services=services)


@pytest.mark.parametrize(
    ("src", "dst", "ok"),
    [
        (S.INITIALIZING, S.AWAITING_BOOTSTRAP, True),
        (S.INITIALIZING, S.CONNECTED, True),
        (S.AWAITING_BOOTSTRAP, S.AWAITING_BOOTSTRAP, True),
        (S.AWAITING_BOOTSTRAP, S.CONNECTED, True),
        (S.CONNECTED, S.RECONNECTING, True),
        (S.CONNECTED, S.AWAITING_BOOTSTRAP, False),
        (S.RECONNECTING, S.AWAITING_BOOTSTRAP, True),
        (S.RECONNECTING, S.CIRCUIT_OPEN, True),
        (S.CIRCUIT_OPEN, S.RECONNECTING, True),
        (S.CIRCUIT_OPEN, S.AWAITING_BOOTSTRAP, False),
        (S.LOGGED_OUT, S.CONNECTED, False),
        (S.LOGGED_OUT, S.RECONNECTING, False),
    ],
)
def test_transition_table(src, dst, ok) -> None:
    assert can_transition(src, dst) is ok


def test_every_live_state_can_log_out() -> None:
    for state in ConnectionState:
        if state is not S.LOGGED_OUT:
            assert can_transition(state, S.LOGGED_OUT)


def test_view_shape() -> None:
    view = SessionView(phone="628111", state=S.AWAITING_BOOTSTRAP, has_artifact=True)

    assert not view.connected
    assert view.to_dict() == {"phone": "628111", "connected": False, "state": "awaiting_bootstrap"}


def test_move_rejects_invalid_transition(session) -> None:
    assert session.move(S.LOGGED_OUT)
    assert not session.move(S.CONNECTED)
    assert session.state is S.LOGGED_OUT


@pytest.mark.asyncio
async def test_bootstrap_then_open(session, owner, transport) -> None:
    conn = transport.create("628111", await session._services.store.load("628111"))
    session.attach(conn, conn.credentials)

    await conn.emit_bootstrap()
    assert session.state is S.AWAITING_BOOTSTRAP
    assert session.artifact is not None and session.artifact.kind == "qr"

    await conn.emit_open("628111:2@s.whatsapp.net")
    assert session.state is S.CONNECTED
    assert session.artifact is None
    assert session.own_identity == "628111:2@s.whatsapp.net"
    assert owner.calls == ["changed", "connected"]


@pytest.mark.asyncio
async def test_close_is_routed_by_status(session, owner, transport) -> None:
    conn = transport.create("628111", await session._services.store.load("628111"))
    session.attach(conn, conn.credentials)

    await conn.emit_close(515)
    await conn.emit_close(401)

    assert owner.calls == ["dropped:515", "logged_out"]


@pytest.mark.asyncio
async def test_retired_session_ignores_its_connection(session, owner, transport) -> None:
    conn = transport.create("628111", await session._services.store.load("628111"))
    session.attach(conn, conn.credentials)
    session.retire()

    await conn.emit_bootstrap()
    await conn.emit_open()
    await conn.emit_close(428)
    await conn.emit_creds({"me": {"id": "628111@s.whatsapp.net"}})

    assert owner.calls == []
    assert session.state is S.INITIALIZING
    assert (await session._services.store.load("628111")).is_empty


@pytest.mark.asyncio
async def test_creds_updates_are_persisted(session, transport, store) -> None:
    conn = transport.create("628111", await store.load("628111"))
    session.attach(conn, conn.credentials)

    await conn.emit_creds({"me": {"id": "628111:5@s.whatsapp.net"}})

    assert session.own_identity == "628111:5@s.whatsapp.net"
    assert (await store.load("628111")).version == 1
