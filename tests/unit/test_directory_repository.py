from datetime import UTC, date, datetime, time
from unittest.mock import AsyncMock

import pytest

from push_engine.features.push_notifications.domain import (
    CampaignStatus,
    LifeStage,
    ReminderKind,
)
from push_engine.features.push_notifications.repository import (
    campaign_repository as campaign_module,
)
from push_engine.features.push_notifications.repository import (
    directory_repository as directory_module,
)
from push_engine.features.push_notifications.repository.campaign_repository import (
    CampaignRepository,
)
from push_engine.features.push_notifications.repository.directory_repository import (
    DEFAULT_REMINDER_HOUR,
    LOWEST_PRIORITY,
    DirectoryRepository,
    _parse_hour,
)


def profile_row(**overrides) -> dict:
    row = {
        "user_id": "u1",
        "life_stage": "flow",
        "role": None,
        "last_period_date": date(2024, 6, 1),
        "cycle_length": 28,
        "period_length": 5,
        "due_date": None,
        "baby_birth_date": None,
        "push_enabled": None,
        "daily_push_enabled": None,
        "last_push_sent_at": None,
    }
    row.update(overrides)
    return row


def reminder_row(**overrides) -> dict:
    row = {
        "id": 7,
        "user_id": "u1",
        "reminder_type": "period_start",
        "days_before": 2,
        "time_of_day": "08:30",
        "is_enabled": True,
        "title": "Soon",
        "message": "Two days to go",
    }
    row.update(overrides)
    return row


@pytest.fixture
def fetch_all(monkeypatch):
    mock = AsyncMock(return_value=[])
    monkeypatch.setattr(directory_module, "fetch_all", mock)
    return mock


# Opt-in resolution


@pytest.mark.parametrize(
    "daily, push, expected",
    [
        (None, None, True),
        (None, False, False),
        (None, True, True),
        (False, True, False),
        (True, False, True),
    ],
)
def test_daily_flag_overrides_general_push_flag(daily, push, expected):
    recipient = DirectoryRepository._row_to_recipient(
        profile_row(daily_push_enabled=daily, push_enabled=push)
    )
    assert recipient.notifications_enabled is expected


def test_recipient_row_defaults():
    recipient = DirectoryRepository._row_to_recipient(profile_row(life_stage=None, user_id=42))

    assert recipient.user_id == "42"
    assert recipient.life_stage is LifeStage.CYCLE_TRACKING
    assert recipient.role == "user"
    assert recipient.reference_dates.cycle_length_days == 28
    assert recipient.device_tokens == []


# Reminder hour


@pytest.mark.parametrize(
    "value, expected",
    [
        ("08:30", 8),
        ("21:00:00", 21),
        (time(7, 15), 7),
        (None, DEFAULT_REMINDER_HOUR),
        ("", DEFAULT_REMINDER_HOUR),
        ("morning", DEFAULT_REMINDER_HOUR),
        ("25:00", DEFAULT_REMINDER_HOUR),
    ],
)
def test_parse_hour(value, expected):
    assert _parse_hour(value) == expected


# Segments


@pytest.mark.asyncio
async def test_all_segment_has_no_filter(fetch_all):
    fetch_all.return_value = [profile_row()]

    recipients = await DirectoryRepository().fetch_audience("all")

    assert [r.user_id for r in recipients] == ["u1"]
    query = fetch_all.await_args.args[0]
    assert "WHERE" not in query


@pytest.mark.asyncio
async def test_partner_segment_filters_by_role(fetch_all):
    await DirectoryRepository().fetch_audience("partner")

    query, params = fetch_all.await_args.args
    assert "p.role = %s" in query
    assert params == ("partner",)


@pytest.mark.asyncio
async def test_life_stage_segment_filters_by_stage(fetch_all):
    await DirectoryRepository().fetch_audience("bump")

    query, params = fetch_all.await_args.args
    assert "p.life_stage = %s" in query
    assert params == ("bump",)


@pytest.mark.asyncio
async def test_unknown_user_returns_none(fetch_all):
    assert await DirectoryRepository().fetch_recipient("missing") is None


# Device tokens


@pytest.mark.asyncio
async def test_device_tokens_grouped_in_query_order(fetch_all):
    fetch_all.return_value = [
        {"token": "new", "user_id": "u1", "platform": "ios"},
        {"token": "old", "user_id": "u1", "platform": None},
        {"token": "only", "user_id": "u2", "platform": "android"},
    ]

    tokens = await DirectoryRepository().fetch_device_tokens(["u1", "u2", "u1"])

    assert [t.token for t in tokens["u1"]] == ["new", "old"]
    assert tokens["u1"][1].platform == ""
    assert [t.token for t in tokens["u2"]] == ["only"]
    query, params = fetch_all.await_args.args
    assert "updated_at DESC" in query
    assert params == (["u1", "u2"],)


@pytest.mark.asyncio
async def test_no_users_skips_token_query(fetch_all):
    assert await DirectoryRepository().fetch_device_tokens([]) == {}
    fetch_all.assert_not_awaited()


# Content rules


@pytest.mark.asyncio
async def test_unknown_reminder_type_is_skipped(fetch_all):
    fetch_all.return_value = [
        reminder_row(),
        reminder_row(id=8, reminder_type="hydration"),
        reminder_row(id=9, reminder_type="pill", time_of_day=None, days_before=None),
    ]

    rules = await DirectoryRepository().fetch_cycle_reminders()

    assert [r.id for r in rules] == ["7", "9"]
    assert rules[0].kind is ReminderKind.PERIOD_START
    assert rules[0].time_of_day_hour == 8
    assert rules[0].body == "Two days to go"
    assert rules[1].time_of_day_hour == DEFAULT_REMINDER_HOUR
    assert rules[1].days_before == 0


@pytest.mark.asyncio
async def test_null_broadcast_priority_sorts_last(fetch_all):
    fetch_all.return_value = [
        {"id": 1, "title": "A", "body": "a", "target_audience": "all", "priority": 1},
        {"id": 2, "title": "B", "body": "b", "target_audience": "bump", "priority": None},
    ]

    broadcasts = await DirectoryRepository().fetch_scheduled_broadcasts()

    assert [b.priority for b in broadcasts] == [1, LOWEST_PRIORITY]
    assert broadcasts[1].audience == "bump"


@pytest.mark.asyncio
async def test_journey_templates_read_from_both_stage_tables(fetch_all):
    async def rows_for(query, params=None):
        if "pregnancy_day_notifications" in query:
            return [{"id": 1, "day_number": 10, "title": "Day 10", "body": "b"}]
        return [{"id": 2, "day_number": 3, "title": "Day 3", "body": "m"}]

    fetch_all.side_effect = rows_for

    templates = await DirectoryRepository().fetch_journey_templates()

    assert {(t.stage, t.day_number) for t in templates} == {
        (LifeStage.PREGNANCY, 10),
        (LifeStage.POSTPARTUM, 3),
    }


# Corrective writes


@pytest.mark.asyncio
async def test_stamp_last_sent_never_moves_backwards(monkeypatch):
    execute = AsyncMock(return_value=1)
    monkeypatch.setattr(directory_module, "execute_query", execute)
    sent_at = datetime(2024, 6, 15, 6, 0, tzinfo=UTC)

    await DirectoryRepository().stamp_last_sent("u1", sent_at)

    query, params = execute.await_args.args
    assert "GREATEST" in query
    assert params == ("u1", sent_at)


# Campaign rows


def test_campaign_row_defaults():
    campaign = CampaignRepository._row_to_campaign(
        {
            "id": 5,
            "title": "T",
            "body": "B",
            "target_audience": None,
            "status": None,
            "total_sent": None,
            "total_failed": None,
            "sent_at": None,
        }
    )

    assert campaign.id == "5"
    assert campaign.target_audience == "all"
    assert campaign.status is CampaignStatus.PENDING
    assert (campaign.total_sent, campaign.total_failed) == (0, 0)


def test_missing_campaign_row():
    assert CampaignRepository._row_to_campaign(None) is None


@pytest.mark.asyncio
async def test_mark_sending_reports_lost_claim(monkeypatch):
    monkeypatch.setattr(campaign_module, "execute_query", AsyncMock(return_value=0))

    assert await CampaignRepository().mark_sending("c-1") is False


@pytest.mark.asyncio
async def test_finalize_only_updates_sending_rows(monkeypatch):
    execute = AsyncMock(return_value=1)
    monkeypatch.setattr(campaign_module, "execute_query", execute)
    sent_at = datetime(2024, 6, 15, tzinfo=UTC)

    await CampaignRepository().finalize("c-1", CampaignStatus.SENT, 3, 1, sent_at)

    query, params = execute.await_args.args
    assert "status = 'sending'" in query
    assert params == ("sent", 3, 1, sent_at, "c-1")
