"""Chat command parsing.

Resolution is two-step: the first token is looked up in the alias table, and
a token with no alias stays as it was typed. Only tokens that resolve to a
``Command`` can be dispatched.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

PREFIXES = (".", "/", "!")


class Command(str, Enum):
    MENU = "menu"
    PING = "ping"
    OWNER = "owner"
    LINK = "link"
    TAGALL = "tagall"
    HIDETAG = "hidetag"
    KICK = "kick"
    ADD = "add"
    PROMOTE = "promote"
    DEMOTE = "demote"
    KICKALL = "kickall"
    ANTILINK = "antilink"
    ANTILINK_ALL = "antilink_all"
    WELCOME = "welcome"
    GHOST = "ghost"
    PUBLIC = "public"
    PRIVATE = "private"
    BAN = "ban"


_ALIASES: dict[Command, tuple[str, ...]] = {
    Command.MENU: ("help", "aide", "d", "menou"),
    Command.PING: (),
    Command.OWNER: ("proprietaire", "proprio"),
    Command.LINK: ("lien", "invite"),
    Command.TAGALL: ("tg", "tag"),
    Command.HIDETAG: ("tm", "hidetags"),
    Command.KICK: ("remove", "expulser"),
    Command.ADD: ("ajoute",),
    Command.PROMOTE: ("promouvoir",),
    Command.DEMOTE: ("delmote", "retrograder"),
    Command.KICKALL: ("kick_all", "cleanall"),
    Command.ANTILINK: ("nolien", "nolink", "no-link"),
    Command.ANTILINK_ALL: ("nolien2", "nolien_2", "nolienall"),
    Command.WELCOME: ("bienvenue",),
    Command.GHOST: ("dh7", "d'h7", "invisible"),
    Command.PUBLIC: ("piblik",),
    Command.PRIVATE: ("prive",),
    Command.BAN: ("interdire", "block"),
}

ALIASES: dict[str, Command] = {}
for _cmd, _names in _ALIASES.items():
    ALIASES[_cmd.value] = _cmd
    for _name in _names:
        ALIASES[_name] = _cmd


@dataclass(frozen=True)
class ParsedCommand:
    name: str
    command: Command | None
    args: tuple[str, ...] = ()

    @property
    def arg_text(self) -> str:
        return " ".join(self.args)


def canonical_name(token: str) -> str:
    """Alias lookup, else the token itself (lowercased)."""
    token = token.lower()
    cmd = ALIASES.get(token)
    return cmd.value if cmd is not None else token


def resolve(token: str) -> Command | None:
    return ALIASES.get(token.lower())


def parse_command(text: str | None) -> ParsedCommand | None:
    """Parse ``.kick @user`` style text. Returns None when there is no command."""
    text = (text or "").strip()
    if not text.startswith(PREFIXES):
        return None
    body = text.lstrip("".join(PREFIXES))
    parts = body.split()
    if not parts:
        return None
    token = parts[0]
    return ParsedCommand(
        name=canonical_name(token),
        command=resolve(token),
        args=tuple(parts[1:]),
    )
