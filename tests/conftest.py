from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
from typing import Any

import pytest
import pytest_asyncio

from wamux.auth.record import CredentialRecord
from wamux.auth.store import MultiFileCredentialStore
from wamux.config import GatewayConfig, ReconnectPolicy
from wamux.constants import LOGGED_OUT_STATUS
from wamux.exceptions import TransportError
from wamux.forwarder import CollectorForwarder
from wamux.messages.normalize import CanonicalMessage
from wamux.registry import SessionRegistry
from wamux.transport import ConnectionClosed, ConnectionOpened, MessagesUpsert
from wamux.util.events import AsyncEventEmitter, Listener

ConnectHook = Callable[["FakeConnection"], Awaitable[None]]


class FakeConnection:
    """In-memory transport connection driven by the test."""

    def __init__(self, phone: str, credentials: CredentialRecord) -> None:
        self.phone = phone
        self.credentials = credentials
        self.events = AsyncEventEmitter()
        self.on_connect: ConnectHook | None = None
        self.fail_connect = False

        self.connected = False
        self.closed = False
        self.close_calls = 0
        self.logged_out = False
        self.sent: list[tuple[str, str]] = []
        self.group_subjects: dict[str, str] = {}
        self.pairing_code = "ABCD1234"
        self.pairing_requests = 0

    def on(self, event: str, listener: Listener) -> None:
        self.events.on(event, listener)

    async def connect(self) -> None:
        if self.fail_connect:
            raise TransportError("connection refused")
        self.connected = True
        if self.on_connect is not None:
            await self.on_connect(self)

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1

    async def logout(self) -> None:
        self.logged_out = True
        await self.emit_close(LOGGED_OUT_STATUS)

    async def group_subject(self, jid: str) -> str | None:
        return self.group_subjects.get(jid)

    async def send_text(self, jid: str, text: str) -> str:
        self.sent.append((jid, text))
        return f"MSG{len(self.sent)}"

    async def request_pairing_code(self, phone: str) -> str:
        self.pairing_requests += 1
        return self.pairing_code

    async def emit_bootstrap(self, token: str = "2@Zm9v,YmFy,YmF6,cXV4") -> None:
        await self.events.emit("bootstrap", token)

    async def emit_open(self, identity: str | None = None) -> None:
        await self.events.emit("open", ConnectionOpened(own_identity=identity))

    async def emit_close(self, status_code: int | None = 428) -> None:
        await self.events.emit("close", ConnectionClosed(status_code=status_code))

    async def emit_creds(self, data: Mapping[str, Any]) -> None:
        await self.events.emit("creds", data)

    async def emit_messages(self, messages: Sequence[Any], kind: str = "notify") -> None:
        await self.events.emit("messages", MessagesUpsert(messages=list(messages), kind=kind))


class FakeTransport:
    def __init__(self) -> None:
        self.connections: list[FakeConnection] = []
        self.on_connect: ConnectHook | None = None
        self.failing_connects = 0

    def create(self, phone: str, credentials: CredentialRecord) -> FakeConnection:
        conn = FakeConnection(phone, credentials)
        conn.on_connect = self.on_connect
        if self.failing_connects > 0:
            self.failing_connects -= 1
            conn.fail_connect = True
        self.connections.append(conn)
        return conn

    def for_phone(self, phone: str) -> list[FakeConnection]:
        return [c for c in self.connections if c.phone == phone]

    def latest(self, phone: str) -> FakeConnection:
        return self.for_phone(phone)[-1]


class RecordingForwarder(CollectorForwarder):
    def __init__(self) -> None:
        super().__init__(None)
        self.forwarded: list[CanonicalMessage] = []

    async def forward(self, message: CanonicalMessage) -> bool:
        self.forwarded.append(message)
        return True


async def _wait_until(predicate: Callable[[], bool], timeout_s: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout_s
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    return _wait_until


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def forwarder() -> RecordingForwarder:
    return RecordingForwarder()


@pytest.fixture
def store(tmp_path) -> MultiFileCredentialStore:
    return MultiFileCredentialStore(tmp_path / "auth_info")


@pytest.fixture
def config(tmp_path) -> GatewayConfig:
    return GatewayConfig(
        auth_folder=str(tmp_path / "auth_info"),
        bootstrap_timeout_s=1.0,
        reconnect=ReconnectPolicy(initial_delay_s=0.0, jitter=0.0),
    )


@pytest_asyncio.fixture
async def registry(transport, store, forwarder, config):
    reg = SessionRegistry(transport, config=config, store=store, forwarder=forwarder)
    yield reg
    await reg.close()
