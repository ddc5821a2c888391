import pytest

from modstream.datatypes.discord_datatypes import ChannelID, GuildID, UserID
from modstream.datatypes.moderation_datatypes import DEFAULT_REASON, ActionType, ModerationCommand
from modstream.errors import ValidationError


def command(action=ActionType.KICK, **overrides) -> ModerationCommand:
    values = dict(action=action, guild_id=GuildID(1), target_id=UserID(100), moderator_id=UserID(900))
    values.update(overrides)
    return ModerationCommand(**values)


@pytest.mark.parametrize(
    "cmd",
    [
        command(ActionType.WARN, reason="spamming"),
        command(ActionType.KICK),
        command(ActionType.BAN, delete_message_days=7),
        command(ActionType.TIMEOUT, duration_minutes=1),
        command(ActionType.TIMEOUT, duration_minutes=40320),
        command(reason="x" * 512),
    ],
)
def test_valid_commands(cmd) -> None:
    cmd.validate()


@pytest.mark.parametrize(
    "cmd",
    [
        command(moderator_id="AUTO"),
        command(target_id=UserID(900)),
        command(ActionType.WARN, reason="   "),
        command(reason="x" * 513),
        command(ActionType.TIMEOUT),
        command(ActionType.TIMEOUT, duration_minutes=0),
        command(ActionType.TIMEOUT, duration_minutes=40321),
        command(ActionType.KICK, duration_minutes=5),
        command(ActionType.BAN, delete_message_days=8),
        command(ActionType.KICK, delete_message_days=1),
        command(action="softban"),
        command(reason=42),
        command(ActionType.WARN, reason=None),
    ],
)
def test_invalid_commands(cmd) -> None:
    with pytest.raises(ValidationError):
        cmd.validate()


def test_snowflakes_compare_by_value_and_type() -> None:
    assert GuildID(5) == GuildID("5")
    assert GuildID(5) == 5
    assert GuildID(5) == "5"
    assert GuildID(5) != ChannelID(5)
    assert hash(UserID(7)) == hash(UserID("7"))
    assert UserID(UserID(7)).to_int() == 7


@pytest.mark.parametrize("value", [-1, "-3", True, 1.5, "abc"])
def test_invalid_snowflakes(value) -> None:
    with pytest.raises(ValueError):
        UserID(value)


@pytest.mark.parametrize("reason", [None, "", "   "])
def test_missing_reason_becomes_default(reason) -> None:
    cmd = command(ActionType.KICK, reason=reason)

    cmd.validate()

    assert cmd.reason == DEFAULT_REASON
