import pytest

from beetleboard.commands import BotCommand, parse_bot_command


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("/h", BotCommand(name="help")),
        ("/help", BotCommand(name="help")),
        ("/flush", BotCommand(name="flush")),
        ("/sync", BotCommand(name="sync")),
        ("/sync status", BotCommand(name="sync", action="status")),
        ("/sync help", BotCommand(name="sync", action="help")),
        ("/sync passes 4", BotCommand(name="sync", action="passes", passes=4)),
        ("/top", BotCommand(name="top")),
        ("/top 3", BotCommand(name="top", page=3)),
        ("/top 2 credit", BotCommand(name="top", page=2, sort_by="socialCredit")),
        ("/top pokes", BotCommand(name="top", sort_by="pokes")),
        ("/who ~Alice", BotCommand(name="who", username="Alice")),
        ("/WHO bob", BotCommand(name="who", username="bob")),
    ],
)
def test_parse_known_commands(raw: str, expected: BotCommand) -> None:
    assert parse_bot_command(raw) == expected


def test_full_width_and_zero_width_input_is_normalized() -> None:
    assert parse_bot_command("\uff0fsync\u3000status") == BotCommand(name="sync", action="status")
    assert parse_bot_command("/to\u200bp   2") == BotCommand(name="top", page=2)


@pytest.mark.parametrize(
    "raw",
    ["hello", "", "/", "/sync now", "/sync passes 0", "/top 0", "/top 1 karma", "/who", "/rank"],
)
def test_unknown_or_invalid_commands_are_ignored(raw: str) -> None:
    assert parse_bot_command(raw) is None
