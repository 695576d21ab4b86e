"""
Directory access for the push notification engine.

All reads and corrective writes against the Supabase tables backing
profiles, preferences, device tokens and message content go through this
class, so services only see domain objects.
"""

from collections.abc import Iterable
from datetime import datetime

from push_engine.db.helpers import execute_query, fetch_all, with_db_retry
from push_engine.features.push_notifications.domain import (
    CycleReminderRule,
    DeviceToken,
    JourneyDayTemplate,
    LifeStage,
    Recipient,
    ReferenceDates,
    ReminderKind,
    ScheduledBroadcast,
)
from push_engine.infrastructure.observability.logging import get_logger, token_preview

logger = get_logger(__name__)

DEFAULT_REMINDER_HOUR = 9
LOWEST_PRIORITY = 2**31 - 1

JOURNEY_TEMPLATE_TABLES = {
    LifeStage.PREGNANCY: "pregnancy_day_notifications",
    LifeStage.POSTPARTUM: "mommy_day_notifications",
}


def _parse_hour(time_of_day: str | None) -> int:
    """'HH:MM[:SS]' -> HH, defaulting to 09."""
    if not time_of_day:
        return DEFAULT_REMINDER_HOUR
    try:
        hour = int(str(time_of_day).split(":")[0])
    except ValueError:
        return DEFAULT_REMINDER_HOUR
    return hour if 0 <= hour <= 23 else DEFAULT_REMINDER_HOUR


class DirectoryRepository:
    """Persistence helpers backing audience resolution and dispatch."""

    RECIPIENT_SELECT = """
        SELECT p.user_id, p.life_stage, p.role,
               p.last_period_date, p.cycle_length, p.period_length,
               p.due_date, p.baby_birth_date,
               pref.push_enabled, pref.daily_push_enabled, pref.last_push_sent_at
        FROM profiles p
        LEFT JOIN user_preferences pref ON pref.user_id = p.user_id
    """

    @staticmethod
    def _row_to_recipient(row: dict) -> Recipient:
        daily = row.get("daily_push_enabled")
        enabled = daily if daily is not None else row.get("push_enabled")

        return Recipient(
            user_id=str(row["user_id"]),
            life_stage=LifeStage.parse(row.get("life_stage")),
            role=row.get("role") or "user",
            reference_dates=ReferenceDates(
                last_period_date=row.get("last_period_date"),
                cycle_length_days=row.get("cycle_length"),
                period_length_days=row.get("period_length"),
                due_date=row.get("due_date"),
                child_birth_date=row.get("baby_birth_date"),
            ),
            notifications_enabled=True if enabled is None else bool(enabled),
            last_sent_at=row.get("last_push_sent_at"),
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @with_db_retry()
    async def fetch_recipients(self) -> list[Recipient]:
        """Every profile with its push preferences (tokens not attached)."""
        rows = await fetch_all(self.RECIPIENT_SELECT)
        return [self._row_to_recipient(row) for row in rows]

    @with_db_retry()
    async def fetch_audience(self, target_audience: str) -> list[Recipient]:
        """
        Profiles matching a named segment: 'all', 'partner' (by role) or a
        life stage value.
        """
        if target_audience == "all":
            rows = await fetch_all(self.RECIPIENT_SELECT)
        elif target_audience == "partner":
            rows = await fetch_all(self.RECIPIENT_SELECT + " WHERE p.role = %s", ("partner",))
        else:
            rows = await fetch_all(
                self.RECIPIENT_SELECT + " WHERE p.life_stage = %s", (target_audience,)
            )
        return [self._row_to_recipient(row) for row in rows]

    @with_db_retry()
    async def fetch_recipient(self, user_id: str) -> Recipient | None:
        rows = await fetch_all(self.RECIPIENT_SELECT + " WHERE p.user_id = %s", (user_id,))
        return self._row_to_recipient(rows[0]) if rows else None

    @with_db_retry()
    async def fetch_device_tokens(self, user_ids: Iterable[str]) -> dict[str, list[DeviceToken]]:
        """Device tokens grouped by user, most recently refreshed first."""
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}

        rows = await fetch_all(
            """
            SELECT token, user_id, platform
            FROM device_tokens
            WHERE user_id = ANY(%s)
            ORDER BY user_id, updated_at DESC NULLS LAST
            """,
            (ids,),
        )

        tokens: dict[str, list[DeviceToken]] = {}
        for row in rows:
            user_id = str(row["user_id"])
            tokens.setdefault(user_id, []).append(
                DeviceToken(token=row["token"], user_id=user_id, platform=row.get("platform") or "")
            )
        return tokens

    @with_db_retry()
    async def fetch_journey_templates(self) -> list[JourneyDayTemplate]:
        templates: list[JourneyDayTemplate] = []
        for stage, table in JOURNEY_TEMPLATE_TABLES.items():
            rows = await fetch_all(
                f"""
                SELECT id, day_number, title, body
                FROM {table}
                WHERE is_active IS NOT FALSE
                ORDER BY day_number
                """
            )
            templates.extend(
                JourneyDayTemplate(
                    id=str(row["id"]),
                    stage=stage,
                    day_number=row["day_number"],
                    title=row["title"],
                    body=row["body"],
                )
                for row in rows
            )
        return templates

    @with_db_retry()
    async def fetch_cycle_reminders(self) -> list[CycleReminderRule]:
        rows = await fetch_all(
            """
            SELECT id, user_id, reminder_type, days_before, time_of_day,
                   is_enabled, title, message
            FROM flow_reminders
            WHERE is_enabled = true
            """
        )

        rules: list[CycleReminderRule] = []
        for row in rows:
            try:
                kind = ReminderKind(row["reminder_type"])
            except ValueError:
                logger.warning(
                    "Skipping reminder with unknown type",
                    reminder_id=str(row["id"]),
                    reminder_type=row["reminder_type"],
                )
                continue

            rules.append(
                CycleReminderRule(
                    id=str(row["id"]),
                    user_id=str(row["user_id"]),
                    kind=kind,
                    days_before=row.get("days_before") or 0,
                    time_of_day_hour=_parse_hour(row.get("time_of_day")),
                    title=row.get("title"),
                    body=row.get("message"),
                    enabled=bool(row.get("is_enabled", True)),
                )
            )
        return rules

    @with_db_retry()
    async def fetch_scheduled_broadcasts(self) -> list[ScheduledBroadcast]:
        rows = await fetch_all(
            """
            SELECT id, title, body, target_audience, priority
            FROM scheduled_notifications
            WHERE is_active = true
            ORDER BY priority ASC NULLS LAST
            """
        )
        return [
            ScheduledBroadcast(
                id=str(row["id"]),
                audience=row["target_audience"],
                title=row["title"],
                body=row["body"],
                priority=row["priority"] if row.get("priority") is not None else LOWEST_PRIORITY,
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Corrective writes (idempotent)
    # ------------------------------------------------------------------

    async def delete_device_token(self, token: str) -> int:
        """Remove a token the gateway rejected permanently."""
        deleted = await execute_query("DELETE FROM device_tokens WHERE token = %s", (token,))
        logger.info("Device token pruned", device_token=token_preview(token), deleted=deleted)
        return deleted

    async def stamp_last_sent(self, user_id: str, sent_at: datetime) -> None:
        """Upsert last_push_sent_at, never moving it backwards."""
        await execute_query(
            """
            INSERT INTO user_preferences (user_id, last_push_sent_at)
            VALUES (%s, %s)
            ON CONFLICT (user_id) DO UPDATE
            SET last_push_sent_at = GREATEST(
                COALESCE(user_preferences.last_push_sent_at, EXCLUDED.last_push_sent_at),
                EXCLUDED.last_push_sent_at
            )
            """,
            (user_id, sent_at),
        )


# Singleton instance for application use
directory_repository = DirectoryRepository()
