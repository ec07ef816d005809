"""Per-session chat handling: link filter, command dispatch, welcome messages.

All transport calls made on behalf of a chat go through the send helpers
here, which turn transport errors into SendFailure.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from gateway.commands.handlers import CommandHandler
from gateway.commands.parser import parse_command
from gateway.errors import SendFailure, UnauthorizedCommand, UnknownCommand
from gateway.session.inbound import InboundMessage, contains_link, parse_message
from gateway.session.state import LinkMode, ReplyMode, Session
from gateway.transport.ports import (
    GroupMetadata,
    GroupParticipantsUpdate,
    MessageKey,
    OutboundContent,
    TextContent,
)
from gateway.utils import number_from_jid

if TYPE_CHECKING:
    from gateway.config import GatewayConfig


class SessionHandler:
    def __init__(self, session: Session, config: "GatewayConfig"):
        self.session = session
        self.config = config
        self.log = session.log
        self.commands = CommandHandler(self)

    # -------------------------------------------------------------------------
    # Transport helpers
    # -------------------------------------------------------------------------

    @property
    def own_id(self) -> str:
        conn = self.session.connection
        return (conn.user_id if conn is not None else None) or ""

    def _connection(self, conversation_id: str):
        conn = self.session.connection
        if conn is None or self.session.terminated:
            raise SendFailure(conversation_id, "session is not connected")
        return conn

    async def send(self, conversation_id: str, content: OutboundContent) -> MessageKey:
        conn = self._connection(conversation_id)
        try:
            return await conn.send(conversation_id, content)
        except Exception as e:
            raise SendFailure(conversation_id, str(e) or type(e).__name__) from e

    async def reply(
        self, msg: InboundMessage, text: str, *, mentions: list[str] | tuple[str, ...] = ()
    ) -> MessageKey:
        body = f"{self.session.label}\n{text}" if self.session.label else text
        return await self.send(
            msg.conversation_id,
            TextContent(body, mentions=tuple(mentions), quoted=msg.key),
        )

    async def group_metadata(self, conversation_id: str) -> GroupMetadata:
        conn = self._connection(conversation_id)
        try:
            return await conn.query_group_metadata(conversation_id)
        except Exception as e:
            raise SendFailure(conversation_id, str(e) or type(e).__name__) from e

    async def invite_code(self, conversation_id: str) -> str | None:
        conn = self._connection(conversation_id)
        try:
            return await conn.group_invite_code(conversation_id)
        except Exception as e:
            raise SendFailure(conversation_id, str(e) or type(e).__name__) from e

    async def update_participants(
        self, conversation_id: str, ids: list[str], action: str
    ) -> None:
        conn = self._connection(conversation_id)
        try:
            await conn.update_group_participants(conversation_id, ids, action)
        except Exception as e:
            raise SendFailure(conversation_id, str(e) or type(e).__name__) from e

    async def delete(self, key: MessageKey) -> None:
        conn = self._connection(key.remote_jid)
        try:
            await conn.delete_message(key)
        except Exception as e:
            raise SendFailure(key.remote_jid, str(e) or type(e).__name__) from e

    # -------------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------------

    def is_owner(self, msg: InboundMessage) -> bool:
        if msg.key.from_me:
            return True
        number = number_from_jid(msg.sender)
        if not number:
            return False
        return number in {self.session.owner_identity, self.config.owner_number}

    async def is_admin(self, conversation_id: str, jid: str) -> bool:
        try:
            meta = await self.group_metadata(conversation_id)
        except SendFailure:
            self.log.warning("Admin check failed in %s", conversation_id, exc_info=True)
            return False
        participant = meta.participant(jid)
        return participant is not None and participant.is_admin

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    async def handle_message(self, raw: dict[str, Any]) -> None:
        msg = parse_message(raw)
        if msg is None:
            return

        if msg.is_group and await self.enforce_link_filter(msg):
            return

        parsed = parse_command(msg.text)
        if parsed is None:
            return

        flags = self.session.moderation.get(msg.conversation_id)
        restricted = self.session.reply_mode is ReplyMode.PRIVATE or (
            flags is not None and flags.banned
        )
        if restricted and not self.is_owner(msg):
            return

        try:
            await self.commands.dispatch(msg, parsed)
        except UnknownCommand:
            return
        except UnauthorizedCommand as e:
            self.log.info("Denied %s to %s", e.command, msg.sender)
            await self._reply_quietly(msg, f"Only {e.required} can use {e.command}.")
        except SendFailure as e:
            self.log.warning("Command %s failed: %s", parsed.name, e)
            await self._reply_quietly(msg, f"{parsed.name} failed: {e.detail or 'send error'}")

    async def _reply_quietly(self, msg: InboundMessage, text: str) -> None:
        try:
            await self.reply(msg, text)
        except SendFailure as e:
            self.log.warning("Reply failed: %s", e)

    async def enforce_link_filter(self, msg: InboundMessage) -> bool:
        """Delete a link-bearing group message when the filter says so.

        Returns True when the message was deleted (no further handling).
        """
        if msg.key.from_me:
            return False
        flags = self.session.moderation.get(msg.conversation_id)
        mode = flags.link_mode if flags is not None else LinkMode.OFF
        if mode is LinkMode.OFF or not contains_link(msg):
            return False
        if mode is LinkMode.EXCEPT_ADMINS:
            if self.is_owner(msg) or await self.is_admin(msg.conversation_id, msg.sender):
                return False
        try:
            await self.delete(msg.key)
        except SendFailure as e:
            self.log.warning("Link delete failed: %s", e)
            return False
        self.log.info("Deleted link from %s in %s", msg.sender, msg.conversation_id)
        return True

    async def handle_participants(self, event: GroupParticipantsUpdate) -> None:
        if event.action != "add" or not event.participants:
            return
        flags = self.session.moderation.get(event.group_id)
        if flags is None or not flags.welcome:
            return
        meta = await self.group_metadata(event.group_id)
        for jid in event.participants:
            text = f"Welcome @{number_from_jid(jid)} to {meta.subject or 'the group'}"
            await self.send(event.group_id, TextContent(text, mentions=(jid,)))
