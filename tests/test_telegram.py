"""
Tests for the Telegram control bridge, driven with stub updates.
"""

from types import SimpleNamespace

import pytest

from gateway.bridges.telegram import TelegramBridge
from gateway.manager import SessionManager
from gateway.session.state import LifecycleState


class FakeMessage:
    def __init__(self):
        self.replies = []

    async def reply_text(self, text):
        self.replies.append(text)


class FakeBot:
    def __init__(self):
        self.sent = []
        self.photos = []

    async def send_message(self, chat_id, text):
        self.sent.append((chat_id, text))

    async def send_photo(self, chat_id, photo, caption=None):
        self.photos.append((chat_id, photo, caption))


def _update(chat_id=42):
    return SimpleNamespace(effective_chat=SimpleNamespace(id=chat_id), message=FakeMessage())


def _context(*args):
    return SimpleNamespace(args=list(args))


@pytest.fixture
def telegram(config, store, transport):
    manager = SessionManager(config, store, transport)
    bridge = TelegramBridge(manager, "token", allowed_chats=frozenset({42, 43}))
    bridge.app = SimpleNamespace(bot=FakeBot())
    manager.add_bridge(bridge)
    return bridge


@pytest.mark.asyncio
async def test_connect_sends_pairing_code_to_chat(telegram, transport, eventually):
    update = _update()
    await telegram._cmd_connect(update, _context("My", "Shop"))
    assert "auth_info1" in update.message.replies[0]

    (session,) = telegram.manager.registry.list()
    assert session.label == "My Shop"
    assert session.origin.bridge == "telegram"
    assert session.origin.target == "42"

    bot = telegram.app.bot
    await eventually(lambda: len(bot.photos) == 1)
    chat_id, photo, caption = bot.photos[0]
    assert chat_id == 42
    assert photo.startswith(b"\x89PNG")
    assert transport.latest.pairing_codes[0] in caption

    await transport.latest.pair("15550001111")
    await eventually(lambda: session.state is LifecycleState.CONNECTED)
    await eventually(lambda: len(bot.sent) == 1)
    assert "connected as +15550001111" in bot.sent[0][1]


@pytest.mark.asyncio
async def test_list_and_stop(telegram, eventually):
    update = _update()
    await telegram._cmd_list(update, _context())
    assert update.message.replies == ["No sessions."]

    await telegram._cmd_connect(_update(), _context())
    (session,) = telegram.manager.registry.list()

    update = _update()
    await telegram._cmd_list(update, _context())
    assert "auth_info1" in update.message.replies[0]
    assert session.session_id in update.message.replies[0]

    update = _update()
    await telegram._cmd_stop(update, _context("auth_info1"))
    assert update.message.replies == ["Session auth_info1 stopped and removed."]
    assert len(telegram.manager.registry) == 0
    assert not any("disconnected" in text for _, text in telegram.app.bot.sent)
    assert not telegram.manager.store.path_for("auth_info1").exists()

    update = _update()
    await telegram._cmd_stop(update, _context("auth_info1"))
    assert update.message.replies == ["No session auth_info1."]

    update = _update()
    await telegram._cmd_stop(update, _context())
    assert update.message.replies[0].startswith("Usage")


@pytest.mark.asyncio
async def test_unauthorized_chat_is_ignored(telegram):
    update = _update(chat_id=7)
    await telegram._cmd_connect(update, _context())
    await telegram._cmd_help(update, _context())
    assert update.message.replies == []
    assert len(telegram.manager.registry) == 0


@pytest.mark.asyncio
async def test_connect_failure_is_reported(config, store):
    from gateway.transport.loopback import LoopbackTransport

    manager = SessionManager(config, store, LoopbackTransport(fail_open=True))
    bridge = TelegramBridge(manager, "token")
    update = _update()
    await bridge._cmd_connect(update, _context())
    assert update.message.replies[0].startswith("Could not start a session.")


@pytest.mark.asyncio
async def test_chats_only_see_their_own_sessions(telegram):
    await telegram._cmd_connect(_update(chat_id=42), _context())
    (session,) = telegram.manager.registry.list()

    update = _update(chat_id=43)
    await telegram._cmd_list(update, _context())
    assert update.message.replies == ["No sessions."]

    update = _update(chat_id=43)
    await telegram._cmd_stop(update, _context(session.folder_name))
    assert update.message.replies == [f"No session {session.folder_name}."]
    assert session.session_id in telegram.manager.registry
    assert telegram.manager.store.path_for(session.folder_name).exists()

    update = _update(chat_id=42)
    await telegram._cmd_list(update, _context())
    assert session.folder_name in update.message.replies[0]
