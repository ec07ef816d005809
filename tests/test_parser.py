"""
Unit tests for chat command parsing.
"""

from gateway.commands.parser import ALIASES, Command, parse_command


def test_requires_prefix():
    assert parse_command("kick @x") is None
    assert parse_command("") is None
    assert parse_command(None) is None
    assert parse_command("...") is None


def test_prefixes_and_args():
    for text in (".kick 509 510", "/kick 509 510", "!kick 509 510", "  ..KICK 509   510 "):
        parsed = parse_command(text)
        assert parsed.command is Command.KICK
        assert parsed.name == "kick"
        assert parsed.args == ("509", "510")


def test_aliases_resolve_to_canonical_command():
    assert parse_command(".nolien").command is Command.ANTILINK
    assert parse_command(".nolienall off").command is Command.ANTILINK_ALL
    assert parse_command(".d'h7").command is Command.GHOST
    assert parse_command(".prive").command is Command.PRIVATE
    assert parse_command(".aide").name == "menu"


def test_unknown_token_passes_through():
    parsed = parse_command(".frobnicate now")
    assert parsed.command is None
    assert parsed.name == "frobnicate"
    assert parsed.args == ("now",)


def test_every_command_is_its_own_alias():
    for cmd in Command:
        assert ALIASES[cmd.value] is cmd
