import asyncio
import datetime

import pytest

from modstream.database.db_connection import ConnectionManager
from modstream.datatypes import event_datatypes as events
from modstream.datatypes.discord_datatypes import GuildID, UserID
from modstream.datatypes.moderation_datatypes import (
    AUTO_MODERATOR,
    ActionType,
    ModerationCommand,
    Violation,
    ViolationKind,
)
from modstream.errors import EnforcementError, EnforcementErrorKind
from modstream.moderation.enforcement import EnforcementExecutor
from modstream.moderation.warning_ledger import WarningLedger

NOW = 1_700_000_000_000


@pytest.fixture()
def executor(db, platform) -> EnforcementExecutor:
    return EnforcementExecutor(platform, WarningLedger(db), action_timeout=0.5, clock=lambda: NOW)


def invite_violation(make_message) -> Violation:
    message = make_message("join discord.gg/xyz")
    return Violation.for_message(
        ViolationKind.INVITE, "Discord invite link detected", message, evidence=message.content
    )


def spam_violation(make_message) -> Violation:
    return Violation.for_message(ViolationKind.MESSAGE_SPAM, "Spam detected", make_message(), message_count=5)


@pytest.mark.asyncio
async def test_filter_violation_deletes_and_warns(executor, platform, make_message) -> None:
    violation = invite_violation(make_message)

    result = await executor.apply(violation)
    await executor.shutdown()

    assert result.ok is True
    assert platform.called("delete_message") == [(violation.guild_id, violation.channel_id, violation.message_id)]
    draft = result.draft
    assert draft.type == events.AUTOMOD_ACTION
    assert draft.moderator_id == AUTO_MODERATOR
    assert draft.subject_id == "100"
    assert draft.reason == "Discord invite link detected"
    assert draft.timestamp == NOW
    assert draft.payload["content"] == "join discord.gg/xyz"
    assert draft.payload["warnings"] == 1
    assert draft.payload["enforcement"] == {"action": "delete_message", "ok": True}
    assert len(platform.called("send_notice")) == 1


@pytest.mark.asyncio
async def test_warning_reason_is_prefixed(executor, db, make_message) -> None:
    violation = invite_violation(make_message)

    await executor.apply(violation)

    (warning,) = await WarningLedger(db).list_active(violation.subject, violation.guild_id)
    assert warning.reason == "AutoMod: Discord invite link detected"
    assert warning.moderator_id == AUTO_MODERATOR


@pytest.mark.asyncio
async def test_already_deleted_message_is_reported_not_raised(executor, platform, make_message) -> None:
    platform.failures["delete_message"] = EnforcementError(EnforcementErrorKind.NOT_FOUND, "Unknown Message")

    result = await executor.apply(invite_violation(make_message))

    assert result.ok is False
    assert result.error_kind is EnforcementErrorKind.NOT_FOUND
    assert result.draft.payload["enforcement"]["error"] == "not_found"
    # The warning is still recorded
    assert result.draft.payload["warnings"] == 1


@pytest.mark.asyncio
async def test_unexpected_platform_error_maps_to_unknown(executor, platform, make_message) -> None:
    platform.failures["delete_message"] = RuntimeError("gateway hiccup")

    result = await executor.apply(invite_violation(make_message))

    assert result.error_kind is EnforcementErrorKind.UNKNOWN
    assert result.draft.type == events.AUTOMOD_ACTION


@pytest.mark.asyncio
async def test_slow_platform_call_times_out(db, platform, make_message) -> None:
    executor = EnforcementExecutor(platform, WarningLedger(db), action_timeout=0.05)
    platform.delays["delete_message"] = 1

    result = await executor.apply(invite_violation(make_message))

    assert result.ok is False
    assert result.error_kind is EnforcementErrorKind.TIMEOUT


@pytest.mark.asyncio
async def test_spam_times_out_author_for_five_minutes(executor, platform, make_message) -> None:
    violation = spam_violation(make_message)

    result = await executor.apply(violation)

    ((guild, user, duration, reason),) = platform.called("timeout_member")
    assert (guild, user) == (violation.guild_id, violation.subject)
    assert duration == datetime.timedelta(minutes=5)
    assert reason == "AutoMod: Spam detected"
    assert result.draft.type == events.AUTOMOD_TIMEOUT
    assert result.draft.payload["count"] == 5
    assert result.draft.payload["duration_minutes"] == 5
    assert platform.called("delete_message") == []


@pytest.mark.asyncio
async def test_warn_command_records_warning_without_platform_action(executor, platform) -> None:
    command = ModerationCommand(ActionType.WARN, GuildID(1), UserID(100), UserID(900), reason="be nice")

    first = await executor.apply(command)
    second = await executor.apply(command)

    assert first.warning_count == 1
    assert second.warning_count == 2
    assert second.draft.type == events.WARNING
    assert second.draft.moderator_id == "900"
    assert "enforcement" not in second.draft.payload
    assert platform.called("kick_member") == []


@pytest.mark.asyncio
async def test_ban_converts_days_to_seconds(executor, platform) -> None:
    command = ModerationCommand(ActionType.BAN, GuildID(1), UserID(100), UserID(900), reason="raid", delete_message_days=2)

    result = await executor.apply(command)

    assert platform.called("ban_member") == [(GuildID(1), UserID(100), "raid", 172800)]
    assert result.draft.type == events.BAN
    assert result.draft.payload["delete_message_days"] == 2
    assert result.warning_count is None


@pytest.mark.asyncio
async def test_kick_permission_denied(executor, platform) -> None:
    platform.failures["kick_member"] = EnforcementError(EnforcementErrorKind.PERMISSION_DENIED, "Missing Permissions")
    command = ModerationCommand(ActionType.KICK, GuildID(1), UserID(100), UserID(900))

    result = await executor.apply(command)

    assert result.ok is False
    assert result.error_kind is EnforcementErrorKind.PERMISSION_DENIED
    assert result.draft.type == events.KICK
    assert result.draft.reason == "No reason provided"
    assert result.draft.payload["enforcement"] == {
        "action": "kick_member",
        "ok": False,
        "error": "permission_denied",
        "detail": "Missing Permissions",
    }


@pytest.mark.asyncio
async def test_timeout_command_duration(executor, platform) -> None:
    command = ModerationCommand(ActionType.TIMEOUT, GuildID(1), UserID(100), UserID(900), duration_minutes=60)

    result = await executor.apply(command)
    await executor.shutdown()

    assert platform.called("timeout_member")[0][2] == datetime.timedelta(hours=1)
    assert result.draft.payload["duration_minutes"] == 60
    assert len(platform.called("send_notice")) == 1


@pytest.mark.asyncio
async def test_ledger_failure_maps_to_storage(platform, make_message) -> None:
    executor = EnforcementExecutor(platform, WarningLedger(ConnectionManager()))

    result = await executor.apply(invite_violation(make_message))

    assert result.ok is False
    assert result.error_kind is EnforcementErrorKind.STORAGE
    assert result.draft.payload["warnings"] is None
    assert result.draft.payload["warning_error"]["error"] == "storage"
    # The platform action itself still happened
    assert result.draft.payload["enforcement"]["ok"] is True


@pytest.mark.asyncio
async def test_notice_failure_is_swallowed(executor, platform) -> None:
    platform.failures["send_notice"] = EnforcementError(EnforcementErrorKind.PERMISSION_DENIED, "DMs closed")
    command = ModerationCommand(ActionType.WARN, GuildID(1), UserID(100), UserID(900), reason="spam")

    result = await executor.apply(command)
    await executor.shutdown()

    assert result.ok is True


@pytest.mark.asyncio
async def test_unsupported_item_is_rejected(executor) -> None:
    with pytest.raises(TypeError):
        await executor.apply("not a violation")


@pytest.mark.asyncio
async def test_shutdown_waits_for_notices(executor, platform) -> None:
    platform.delays["send_notice"] = 0.05
    command = ModerationCommand(ActionType.WARN, GuildID(1), UserID(100), UserID(900), reason="spam")

    await executor.apply(command)
    await executor.shutdown()
    await asyncio.sleep(0)

    assert len(platform.called("send_notice")) == 1
