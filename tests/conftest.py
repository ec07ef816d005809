"""Shared pytest fixtures and configuration."""

import asyncio
import time
from pathlib import Path

import pytest

from gateway.config import BackoffConfig, GatewayConfig
from gateway.credentials import CredentialStore
from gateway.manager import SessionManager
from gateway.transport.loopback import LoopbackTransport


def make_config(root: Path, **overrides) -> GatewayConfig:
    values = dict(
        sessions_dir=root,
        host="127.0.0.1",
        port=0,
        transport="loopback",
        telegram_token="",
        telegram_allowed_chats=frozenset(),
        owner_number="",
        owner_name="Owner",
        bot_name="Bot",
        backoff=BackoffConfig(
            restart_delay_s=0.01, base_s=0.01, step_s=0.01, cap_s=0.05, max_attempts=3
        ),
        ghost_interval_s=0.01,
        restore_sessions=True,
        logout_on_shutdown=True,
        log_level="DEBUG",
    )
    values.update(overrides)
    return GatewayConfig(**values)


class RecordingBridge:
    """Supervisory bridge that remembers every event it receives."""

    def __init__(self, name: str = "recorder"):
        self.name = name
        self.events: list[tuple] = []

    async def pairing_ready(self, session, artifact):
        self.events.append(("pairing", session.session_id, artifact))

    async def session_connected(self, session):
        self.events.append(("connected", session.session_id))

    async def session_disconnected(self, session, reason):
        self.events.append(("disconnected", session.session_id, reason))

    async def notice(self, session, text):
        self.events.append(("notice", session.session_id, text))

    def kinds(self, session_id=None):
        return [e[0] for e in self.events if session_id is None or e[1] == session_id]


async def _eventually(predicate, timeout: float = 2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def eventually():
    """Poll a predicate until it holds (or fail after a timeout)."""
    return _eventually


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path / "sessions")


@pytest.fixture
def store(config):
    return CredentialStore(config.sessions_dir)


@pytest.fixture
def transport():
    return LoopbackTransport()


@pytest.fixture
def bridge():
    return RecordingBridge()


@pytest.fixture
def manager(config, store, transport, bridge):
    m = SessionManager(config, store, transport)
    m.add_bridge(bridge)
    return m


def text_message(
    conversation_id: str,
    text: str,
    *,
    sender: str | None = None,
    from_me: bool = False,
    mentions: list[str] | None = None,
    quoted_participant: str | None = None,
    msg_id: str = "MSG1",
) -> dict:
    """Raw inbound message payload as a transport delivers it."""
    key = {"remoteJid": conversation_id, "id": msg_id, "fromMe": from_me}
    if sender:
        key["participant"] = sender
    context = {}
    if mentions:
        context["mentionedJid"] = mentions
    if quoted_participant:
        context["participant"] = quoted_participant
    if context:
        message = {"extendedTextMessage": {"text": text, "contextInfo": context}}
    else:
        message = {"conversation": text}
    return {"key": key, "message": message, "pushName": "Tester"}


@pytest.fixture
def message():
    return text_message


@pytest.fixture
def config_factory():
    return make_config
