"""
Tests for command dispatch, authorization and group moderation.
"""

import asyncio
import logging

import pytest

from gateway.credentials import CredentialState
from gateway.session.handler import SessionHandler
from gateway.session.state import LinkMode, ReplyMode, Session
from gateway.transport.ports import ContactContent, GroupParticipantsUpdate, TextContent

GROUP = "120363000000@g.us"
BOT = "15550001111@s.whatsapp.net"
ADMIN = "50911111111@s.whatsapp.net"
MEMBER = "50922222222@s.whatsapp.net"
OTHER = "50933333333@s.whatsapp.net"
OWNER = "50944444444@s.whatsapp.net"


async def _handler(transport, config, **session_kwargs):
    transport.add_group(
        GROUP,
        "Test Group",
        {BOT: "admin", ADMIN: "admin", MEMBER: None, OTHER: None, OWNER: None},
        invite_code="ABC123",
    )

    async def sink(_event):
        return None

    conn = await transport.open(
        CredentialState(creds={"registered": True, "me": {"id": "15550001111:1@s.whatsapp.net"}}),
        events=sink,
        log=logging.getLogger("test"),
    )
    session = Session(
        session_id="s1",
        folder_name="auth_info1",
        label="Bot",
        connection=conn,
        owner_identity="50944444444",
        **session_kwargs,
    )
    return SessionHandler(session, config), conn


def _texts(conn):
    return [c.text for _, c in conn.sent if isinstance(c, TextContent)]


class TestAuthorization:
    @pytest.mark.asyncio
    async def test_non_admin_kick_is_denied_without_admin_action(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".kick", sender=MEMBER, mentions=[OTHER]))
        assert conn.participant_updates == []
        assert len(conn.sent) == 1
        assert "Only a group admin or the owner can use kick" in _texts(conn)[0]

    @pytest.mark.asyncio
    async def test_admin_kick_by_mention(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".expulser", sender=ADMIN, mentions=[OTHER]))
        assert conn.participant_updates == [(GROUP, [OTHER], "remove")]

    @pytest.mark.asyncio
    async def test_owner_is_allowed_without_being_admin(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(
            message(GROUP, ".promote", sender=OWNER, quoted_participant=MEMBER)
        )
        assert conn.participant_updates == [(GROUP, [MEMBER], "promote")]

    @pytest.mark.asyncio
    async def test_configured_fallback_owner(self, transport, tmp_path, message, config_factory):
        config = config_factory(tmp_path, owner_number="50922222222")
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".add +50933333333", sender=MEMBER))
        assert conn.participant_updates == [(GROUP, [OTHER], "add")]

    @pytest.mark.asyncio
    async def test_membership_without_target_shows_usage(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".kick", sender=ADMIN))
        assert conn.participant_updates == []
        assert "Usage" in _texts(conn)[0]

    @pytest.mark.asyncio
    async def test_owner_only_command_denied_to_admin(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".ban", sender=ADMIN))
        assert not handler.session.flags(GROUP).banned
        assert "Only the owner can use ban" in _texts(conn)[0]


class TestDispatch:
    @pytest.mark.asyncio
    async def test_unknown_and_plain_text_are_silent(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".frobnicate", sender=MEMBER))
        await handler.handle_message(message(GROUP, "just chatting", sender=MEMBER))
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_ping_replies_quoting_the_message(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, "!ping", sender=MEMBER, msg_id="Q1"))
        (conversation, content), = conn.sent
        assert conversation == GROUP
        assert content.text == "Bot\npong"
        assert content.quoted.id == "Q1"

    @pytest.mark.asyncio
    async def test_group_only_command_in_direct_chat(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(OWNER, ".tagall"))
        assert "only works in groups" in _texts(conn)[0]

    @pytest.mark.asyncio
    async def test_send_failure_becomes_failure_reply(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message("999@g.us", ".link", sender=OWNER))
        assert "link failed" in _texts(conn)[0]

    @pytest.mark.asyncio
    async def test_closed_connection_does_not_raise(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await conn.close()
        await handler.handle_message(message(GROUP, ".ping", sender=MEMBER))
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_link_and_owner_card(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".lien", sender=MEMBER))
        await handler.handle_message(message(GROUP, ".owner", sender=MEMBER))
        assert conn.sent[0][1].text == "https://chat.whatsapp.com/ABC123"
        card = conn.sent[1][1]
        assert isinstance(card, ContactContent)
        assert "waid=50944444444" in card.vcard

    @pytest.mark.asyncio
    async def test_tagall_mentions_everyone(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".tg hello", sender=ADMIN))
        content = conn.sent[0][1]
        assert set(content.mentions) == {BOT, ADMIN, MEMBER, OTHER, OWNER}
        assert "hello" in content.text
        assert "@50922222222" in content.text

    @pytest.mark.asyncio
    async def test_kickall_keeps_admins_sender_and_self(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".kickall", sender=ADMIN))
        ((group, ids, action),) = conn.participant_updates
        assert (group, action) == (GROUP, "remove")
        assert set(ids) == {MEMBER, OTHER, OWNER}


class TestModes:
    @pytest.mark.asyncio
    async def test_private_mode_ignores_non_owner(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".prive", sender=OWNER))
        assert handler.session.reply_mode is ReplyMode.PRIVATE
        conn.sent.clear()

        await handler.handle_message(message(GROUP, ".ping", sender=ADMIN))
        assert conn.sent == []
        await handler.handle_message(message(GROUP, ".ping", sender=OWNER))
        assert len(conn.sent) == 1

        await handler.handle_message(message(GROUP, ".public", sender=OWNER))
        assert handler.session.reply_mode is ReplyMode.PUBLIC

    @pytest.mark.asyncio
    async def test_banned_conversation(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".ban", sender=OWNER))
        assert handler.session.flags(GROUP).banned
        conn.sent.clear()
        await handler.handle_message(message(GROUP, ".ping", sender=MEMBER))
        assert conn.sent == []
        await handler.handle_message(message(GROUP, ".ban off", sender=OWNER))
        assert not handler.session.flags(GROUP).banned


class TestLinkFilter:
    LINK = "join https://chat.whatsapp.com/ABC123"

    @pytest.mark.asyncio
    async def test_all_deletes_even_admin_links(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        handler.session.flags(GROUP).link_mode = LinkMode.ALL
        await handler.handle_message(message(GROUP, self.LINK, sender=ADMIN, msg_id="L1"))
        assert [k.id for k in conn.deleted] == ["L1"]

    @pytest.mark.asyncio
    async def test_except_admins(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        handler.session.flags(GROUP).link_mode = LinkMode.EXCEPT_ADMINS
        await handler.handle_message(message(GROUP, self.LINK, sender=ADMIN, msg_id="L1"))
        await handler.handle_message(message(GROUP, self.LINK, sender=OWNER, msg_id="L2"))
        await handler.handle_message(message(GROUP, self.LINK, sender=MEMBER, msg_id="L3"))
        assert [k.id for k in conn.deleted] == ["L3"]

    @pytest.mark.asyncio
    async def test_off_and_own_messages_are_kept(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, self.LINK, sender=MEMBER))
        handler.session.flags(GROUP).link_mode = LinkMode.ALL
        await handler.handle_message(message(GROUP, self.LINK, sender=BOT, from_me=True))
        assert conn.deleted == []

    @pytest.mark.asyncio
    async def test_deleted_command_is_not_dispatched(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        handler.session.flags(GROUP).link_mode = LinkMode.ALL
        await handler.handle_message(message(GROUP, f".ping {self.LINK}", sender=MEMBER))
        assert len(conn.deleted) == 1
        assert conn.sent == []

    @pytest.mark.asyncio
    async def test_antilink_commands_set_mode(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".nolien", sender=ADMIN))
        assert handler.session.flags(GROUP).link_mode is LinkMode.EXCEPT_ADMINS
        await handler.handle_message(message(GROUP, ".nolien2", sender=ADMIN))
        assert handler.session.flags(GROUP).link_mode is LinkMode.ALL
        await handler.handle_message(message(GROUP, ".antilink off", sender=ADMIN))
        assert handler.session.flags(GROUP).link_mode is LinkMode.OFF


class TestGhostAndWelcome:
    @pytest.mark.asyncio
    async def test_ghost_toggle_twice_cancels_the_loop(self, transport, config, message, eventually):
        handler, conn = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".dh7", sender=ADMIN))
        loop = handler.session.flags(GROUP).ghost
        assert loop is not None and loop.active
        await eventually(lambda: loop.sends >= 2)

        await handler.handle_message(message(GROUP, ".ghost", sender=ADMIN))
        assert handler.session.flags(GROUP).ghost is None
        await asyncio.sleep(0)
        assert not loop.active
        sends = loop.sends
        await asyncio.sleep(0.05)
        assert loop.sends == sends
        assert _texts(conn)[-1] == "Bot\nGhost mode off."

    @pytest.mark.asyncio
    async def test_cancel_background_stops_every_loop(self, transport, config, message):
        handler, _ = await _handler(transport, config)
        await handler.handle_message(message(GROUP, ".invisible", sender=ADMIN))
        loop = handler.session.flags(GROUP).ghost
        assert handler.session.cancel_background() == 1
        await asyncio.sleep(0)
        assert not loop.active

    @pytest.mark.asyncio
    async def test_welcome_on_join(self, transport, config, message):
        handler, conn = await _handler(transport, config)
        await handler.handle_participants(GroupParticipantsUpdate(GROUP, (OTHER,), "add"))
        assert conn.sent == []

        await handler.handle_message(message(GROUP, ".bienvenue", sender=ADMIN))
        assert handler.session.flags(GROUP).welcome
        conn.sent.clear()

        await handler.handle_participants(GroupParticipantsUpdate(GROUP, (OTHER,), "add"))
        await handler.handle_participants(GroupParticipantsUpdate(GROUP, (OTHER,), "remove"))
        ((group, content),) = conn.sent
        assert group == GROUP
        assert content.text == "Welcome @50933333333 to Test Group"
        assert content.mentions == (OTHER,)
