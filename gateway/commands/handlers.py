"""Command handlers for a session's chats."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, cast

from gateway.commands.parser import Command, ParsedCommand
from gateway.errors import UnauthorizedCommand, UnknownCommand
from gateway.session.inbound import InboundMessage
from gateway.session.state import LinkMode, ReplyMode
from gateway.transport.ports import ContactContent, TextContent
from gateway.utils import bare_jid, number_from_jid, user_jid

if TYPE_CHECKING:
    from gateway.session.handler import SessionHandler

GHOST_TEXT = "ㅤ"

Handler = Callable[[InboundMessage, ParsedCommand], Awaitable[None]]


class Access(str, Enum):
    OPEN = "anyone"
    ADMIN = "a group admin or the owner"
    OWNER = "the owner"


def command(cmd: Command, *, access: Access = Access.OPEN, group_only: bool = False):
    """Decorator to register a command handler.

    Args:
        cmd: Canonical command the method handles
        access: Who may run it
        group_only: Reject the command outside group chats
    """

    def decorator(func: Handler) -> Handler:
        setattr(func, "_command", cmd)
        setattr(func, "_command_access", access)
        setattr(func, "_command_group_only", group_only)
        return func

    return decorator


def _on_off(args: tuple[str, ...], current: bool) -> bool:
    """``on``/``off`` sets the flag; anything else toggles it."""
    if args:
        word = args[0].lower()
        if word in ("on", "1", "oui", "yes"):
            return True
        if word in ("off", "0", "non", "no"):
            return False
    return not current


class CommandHandler:
    """Dispatches parsed chat commands for one session.

    Commands are registered via the @command decorator on methods.
    The handler auto-discovers all decorated methods on init.
    """

    def __init__(self, chat: "SessionHandler"):
        self.chat = chat
        self._commands: dict[Command, tuple[Handler, Access, bool]] = {}
        self._discover_commands()

    def _discover_commands(self) -> None:
        """Find all @command decorated methods and register them."""
        for name in dir(self):
            method = getattr(self, name)
            if callable(method) and hasattr(method, "_command"):
                m = cast(Any, method)
                self._commands[cast(Command, m._command)] = (
                    cast(Handler, method),
                    cast(Access, m._command_access),
                    cast(bool, m._command_group_only),
                )

    @property
    def commands(self) -> list[Command]:
        return list(self._commands)

    def access_for(self, cmd: Command) -> Access:
        return self._commands[cmd][1]

    async def authorize(self, msg: InboundMessage, access: Access, name: str) -> None:
        """Raise UnauthorizedCommand unless the sender may run ``name``."""
        if access is Access.OPEN or self.chat.is_owner(msg):
            return
        if access is Access.ADMIN and msg.is_group:
            if await self.chat.is_admin(msg.conversation_id, msg.sender):
                return
        raise UnauthorizedCommand(name, access.value)

    async def dispatch(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        """Run a parsed command.

        Raises UnknownCommand for names with no handler and
        UnauthorizedCommand when the sender lacks access.
        """
        if parsed.command is None or parsed.command not in self._commands:
            raise UnknownCommand(parsed.name)
        handler, access, group_only = self._commands[parsed.command]
        if group_only and not msg.is_group:
            await self.chat.reply(msg, f"{parsed.name} only works in groups.")
            return
        await self.authorize(msg, access, parsed.name)
        self.chat.session.log.info(
            "Command %s from %s in %s", parsed.name, msg.sender, msg.conversation_id
        )
        await handler(msg, parsed)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def targets(msg: InboundMessage, args: tuple[str, ...]) -> list[str]:
        """Mentions, else the quoted participant, else numbers typed as args."""
        if msg.mentions:
            return list(msg.mentions)
        if msg.quoted_participant:
            return [msg.quoted_participant]
        out = []
        for arg in args:
            jid = user_jid(arg)
            if jid:
                out.append(jid)
        return out

    async def _membership(
        self, msg: InboundMessage, parsed: ParsedCommand, action: str, verb: str
    ) -> None:
        targets = self.targets(msg, parsed.args)
        if not targets:
            await self.chat.reply(msg, f"Usage: .{parsed.name} @user (or reply to a message)")
            return
        await self.chat.update_participants(msg.conversation_id, targets, action)
        numbers = " ".join(f"@{number_from_jid(t)}" for t in targets)
        await self.chat.reply(msg, f"{verb}: {numbers}", mentions=targets)

    # -------------------------------------------------------------------------
    # Open commands
    # -------------------------------------------------------------------------

    @command(Command.MENU)
    async def menu(self, msg: InboundMessage, _parsed: ParsedCommand) -> None:
        user = msg.push_name or "User"
        config = self.chat.config
        general = [Command.MENU, Command.PING, Command.OWNER]
        owner = [Command.PUBLIC, Command.PRIVATE, Command.BAN]
        group = [c for c in self.commands if c not in general and c not in owner]
        lines = [
            "*Menu*",
            f"User: {user}",
            f"Owner: {config.owner_name}",
            "",
            "*General*",
            *(f"- .{c.value}" for c in general),
            "",
            "*Group*",
            *(f"- .{c.value}" for c in group),
            "",
            "*Owner*",
            *(f"- .{c.value}" for c in owner),
        ]
        await self.chat.reply(msg, "\n".join(lines))

    @command(Command.PING)
    async def ping(self, msg: InboundMessage, _parsed: ParsedCommand) -> None:
        await self.chat.reply(msg, "pong")

    @command(Command.OWNER)
    async def owner(self, msg: InboundMessage, _parsed: ParsedCommand) -> None:
        config = self.chat.config
        number = config.owner_number or self.chat.session.owner_identity
        if not number:
            await self.chat.reply(msg, "No owner number is configured.")
            return
        vcard = (
            "BEGIN:VCARD\n"
            "VERSION:3.0\n"
            f"FN:{config.owner_name}\n"
            f"TEL;type=CELL;type=VOICE;waid={number}:+{number}\n"
            "END:VCARD"
        )
        await self.chat.send(msg.conversation_id, ContactContent(config.owner_name, vcard))

    @command(Command.LINK, group_only=True)
    async def link(self, msg: InboundMessage, _parsed: ParsedCommand) -> None:
        code = await self.chat.invite_code(msg.conversation_id)
        if not code:
            await self.chat.reply(msg, "This group has no invite link.")
            return
        await self.chat.send(
            msg.conversation_id, TextContent(f"https://chat.whatsapp.com/{code}")
        )

    # -------------------------------------------------------------------------
    # Group admin commands
    # -------------------------------------------------------------------------

    @command(Command.TAGALL, access=Access.ADMIN, group_only=True)
    async def tagall(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        meta = await self.chat.group_metadata(msg.conversation_id)
        ids = [p.id for p in meta.participants]
        lines = [parsed.arg_text] if parsed.args else []
        lines.append(" ".join(f"@{number_from_jid(i)}" for i in ids))
        await self.chat.reply(msg, "\n".join(lines), mentions=ids)

    @command(Command.HIDETAG, access=Access.ADMIN, group_only=True)
    async def hidetag(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        meta = await self.chat.group_metadata(msg.conversation_id)
        ids = tuple(p.id for p in meta.participants)
        await self.chat.send(
            msg.conversation_id, TextContent(parsed.arg_text or GHOST_TEXT, mentions=ids)
        )

    @command(Command.KICK, access=Access.ADMIN, group_only=True)
    async def kick(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        await self._membership(msg, parsed, "remove", "Removed")

    @command(Command.ADD, access=Access.ADMIN, group_only=True)
    async def add(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        await self._membership(msg, parsed, "add", "Added")

    @command(Command.PROMOTE, access=Access.ADMIN, group_only=True)
    async def promote(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        await self._membership(msg, parsed, "promote", "Promoted")

    @command(Command.DEMOTE, access=Access.ADMIN, group_only=True)
    async def demote(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        await self._membership(msg, parsed, "demote", "Demoted")

    @command(Command.KICKALL, access=Access.ADMIN, group_only=True)
    async def kickall(self, msg: InboundMessage, _parsed: ParsedCommand) -> None:
        meta = await self.chat.group_metadata(msg.conversation_id)
        keep = {bare_jid(msg.sender), bare_jid(self.chat.own_id)}
        targets = [
            p.id for p in meta.participants if not p.is_admin and bare_jid(p.id) not in keep
        ]
        if not targets:
            await self.chat.reply(msg, "Nobody to remove.")
            return
        await self.chat.update_participants(msg.conversation_id, targets, "remove")
        await self.chat.reply(msg, f"Removed {len(targets)} member(s).")

    @command(Command.ANTILINK, access=Access.ADMIN, group_only=True)
    async def antilink(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        off = bool(parsed.args) and parsed.args[0].lower() == "off"
        flags = self.chat.session.flags(msg.conversation_id)
        flags.link_mode = LinkMode.OFF if off else LinkMode.EXCEPT_ADMINS
        await self.chat.reply(msg, f"Link filter: {flags.link_mode.value}")

    @command(Command.ANTILINK_ALL, access=Access.ADMIN, group_only=True)
    async def antilink_all(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        off = bool(parsed.args) and parsed.args[0].lower() == "off"
        flags = self.chat.session.flags(msg.conversation_id)
        flags.link_mode = LinkMode.OFF if off else LinkMode.ALL
        await self.chat.reply(msg, f"Link filter: {flags.link_mode.value}")

    @command(Command.WELCOME, access=Access.ADMIN, group_only=True)
    async def welcome(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        flags = self.chat.session.flags(msg.conversation_id)
        flags.welcome = _on_off(parsed.args, flags.welcome)
        await self.chat.reply(msg, f"Welcome messages {'on' if flags.welcome else 'off'}.")

    @command(Command.GHOST, access=Access.ADMIN, group_only=True)
    async def ghost(self, msg: InboundMessage, _parsed: ParsedCommand) -> None:
        conversation_id = msg.conversation_id
        active = self.chat.session.toggle_ghost(
            conversation_id,
            send=lambda: self.chat.send(conversation_id, TextContent(GHOST_TEXT)),
            interval_s=self.chat.config.ghost_interval_s,
        )
        await self.chat.reply(msg, f"Ghost mode {'on' if active else 'off'}.")

    # -------------------------------------------------------------------------
    # Owner commands
    # -------------------------------------------------------------------------

    @command(Command.PUBLIC, access=Access.OWNER)
    async def public(self, msg: InboundMessage, _parsed: ParsedCommand) -> None:
        self.chat.session.reply_mode = ReplyMode.PUBLIC
        await self.chat.reply(msg, "Mode: public")

    @command(Command.PRIVATE, access=Access.OWNER)
    async def private(self, msg: InboundMessage, _parsed: ParsedCommand) -> None:
        self.chat.session.reply_mode = ReplyMode.PRIVATE
        await self.chat.reply(msg, "Mode: private")

    @command(Command.BAN, access=Access.OWNER)
    async def ban(self, msg: InboundMessage, parsed: ParsedCommand) -> None:
        flags = self.chat.session.flags(msg.conversation_id)
        flags.banned = _on_off(parsed.args, flags.banned)
        if flags.banned:
            await self.chat.reply(msg, "Conversation banned: only the owner can run commands here.")
        else:
            await self.chat.reply(msg, "Conversation unbanned.")
