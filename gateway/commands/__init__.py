from gateway.commands.handlers import Access, CommandHandler, command
from gateway.commands.parser import ALIASES, PREFIXES, Command, ParsedCommand, parse_command

__all__ = [
    "ALIASES",
    "Access",
    "Command",
    "CommandHandler",
    "PREFIXES",
    "ParsedCommand",
    "command",
    "parse_command",
]
