"""
Content selection for the scheduled sweep.

For each recipient, at most one message is chosen by walking a fixed
priority chain; the first source that yields a message wins:

1. journey-day template (pregnancy / postpartum day number)
2. cycle reminder (the recipient's own reminder rules)
3. scheduled broadcast (highest-priority active message for the audience)

Everything here is synchronous and pure: the catalog is loaded once per
run and `now` is passed in.
"""

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime

from push_engine.features.push_notifications.domain import (
    ContentRule,
    CycleInfo,
    CycleReminderRule,
    Delivery,
    JourneyDayTemplate,
    LifeStage,
    Message,
    MessageSource,
    Recipient,
    ReminderKind,
    ScheduledBroadcast,
)
from push_engine.features.push_notifications.domain.cycle import (
    compute_cycle_info,
    postpartum_day,
    pregnancy_day,
)
from push_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

REMINDER_HOUR_TOLERANCE = 1

CycleInfoFn = Callable[[date, int | None, int | None, date], CycleInfo]
ReminderPredicate = Callable[[CycleReminderRule, CycleInfo], bool]

_KIND_ORDER = {kind: index for index, kind in enumerate(ReminderKind)}


# One predicate per reminder kind. Adding a kind means adding an entry here.
REMINDER_PREDICATES: dict[ReminderKind, ReminderPredicate] = {
    ReminderKind.PERIOD_START: lambda rule, info: info.days_until_period == rule.days_before,
    ReminderKind.PERIOD_END: lambda rule, info: (
        info.is_period_day and info.current_cycle_day == info.period_length_days
    ),
    ReminderKind.OVULATION: lambda rule, info: info.days_until_ovulation == rule.days_before,
    ReminderKind.FERTILE_START: lambda rule, info: info.days_until_fertile == rule.days_before,
    ReminderKind.FERTILE_END: lambda rule, info: (
        info.days_until_fertile == -(6 - rule.days_before)
    ),
    ReminderKind.PMS: lambda rule, info: info.days_until_pms == rule.days_before,
    ReminderKind.PILL: lambda rule, info: True,
}

# Fallback copy when a reminder has no title/body of its own
DEFAULT_REMINDER_COPY: dict[ReminderKind, tuple[str, str]] = {
    ReminderKind.PERIOD_START: ("Period yaxınlaşır 🔴", "Perioda {days_before} gün qaldı!"),
    ReminderKind.PERIOD_END: ("Period bitdi ✅", "Periodunuz sona çatdı!"),
    ReminderKind.OVULATION: ("Ovulyasiya günü 🌸", "Ovulyasiyaya {days_before} gün qaldı!"),
    ReminderKind.FERTILE_START: ("Məhsuldar günlər 💕", "Məhsuldar günlər başlayır!"),
    ReminderKind.FERTILE_END: ("Məhsuldar günlər bitir 📅", "Məhsuldar günlər sona çatır."),
    ReminderKind.PMS: ("PMS dövrü ⚡", "PMS dövrü yaxınlaşır, özünüzə baxın!"),
    ReminderKind.PILL: ("Həb vaxtı 💊", "Gündəlik həbinizi qəbul etməyi unutmayın!"),
}


def reminder_fires(rule: CycleReminderRule, info: CycleInfo, current_hour: int) -> bool:
    """Kind predicate holds and the rule's hour is within one hour of now."""
    if not rule.enabled:
        return False
    if abs(current_hour - rule.time_of_day_hour) > REMINDER_HOUR_TOLERANCE:
        return False
    return REMINDER_PREDICATES[rule.kind](rule, info)


def reminder_message(rule: CycleReminderRule) -> Message:
    default_title, default_body = DEFAULT_REMINDER_COPY[rule.kind]
    return Message(
        title=rule.title or default_title,
        body=rule.body or default_body.format(days_before=rule.days_before),
        source=MessageSource.CYCLE_REMINDER,
        data={"type": "flow_reminder", "reminder_type": rule.kind.value},
        notification_id=rule.id,
    )


@dataclass(slots=True)
class ContentCatalog:
    """All active content rules of a run, indexed for lookup."""

    journey_templates: dict[tuple[LifeStage, int], JourneyDayTemplate] = field(
        default_factory=dict
    )
    cycle_reminders: dict[str, list[CycleReminderRule]] = field(default_factory=dict)
    broadcasts: list[ScheduledBroadcast] = field(default_factory=list)

    @classmethod
    def from_rules(cls, rules: Iterable[ContentRule]) -> "ContentCatalog":
        catalog = cls()
        for rule in rules:
            if isinstance(rule, JourneyDayTemplate):
                # First template for a day wins
                catalog.journey_templates.setdefault((rule.stage, rule.day_number), rule)
            elif isinstance(rule, CycleReminderRule):
                if rule.enabled:
                    catalog.cycle_reminders.setdefault(rule.user_id, []).append(rule)
            elif isinstance(rule, ScheduledBroadcast):
                if rule.enabled:
                    catalog.broadcasts.append(rule)
            else:
                raise TypeError(f"Unknown content rule: {type(rule).__name__}")

        for user_rules in catalog.cycle_reminders.values():
            user_rules.sort(key=lambda r: _KIND_ORDER[r.kind])
        catalog.broadcasts.sort(key=lambda b: b.priority)
        return catalog

    def counts(self) -> dict[str, int]:
        return {
            "journey_templates": len(self.journey_templates),
            "cycle_reminders": sum(len(rules) for rules in self.cycle_reminders.values()),
            "broadcasts": len(self.broadcasts),
        }


class ContentSelector:
    """Walks the priority chain for each recipient."""

    def __init__(self, catalog: ContentCatalog, cycle_info_fn: CycleInfoFn = compute_cycle_info):
        self.catalog = catalog
        self.cycle_info_fn = cycle_info_fn

    def select_message(self, recipient: Recipient, now_local: datetime) -> Message | None:
        """At most one message for the recipient, or None to skip them this run."""
        today = now_local.date()
        return (
            self._journey_day_message(recipient, today)
            or self._cycle_reminder_message(recipient, today, now_local.hour)
            or self._broadcast_message(recipient)
        )

    def select_messages(
        self, recipients: Iterable[Recipient], now_local: datetime
    ) -> list[Delivery]:
        deliveries = []
        for recipient in recipients:
            message = self.select_message(recipient, now_local)
            if message is not None:
                deliveries.append(Delivery(recipient=recipient, message=message))
        return deliveries

    def _journey_day_message(self, recipient: Recipient, today: date) -> Message | None:
        if recipient.life_stage is LifeStage.PREGNANCY:
            day_number = pregnancy_day(recipient.reference_dates, today)
        elif recipient.life_stage is LifeStage.POSTPARTUM:
            day_number = postpartum_day(recipient.reference_dates, today)
        else:
            return None

        if day_number is None:
            return None

        template = self.catalog.journey_templates.get((recipient.life_stage, day_number))
        if template is None:
            return None

        return Message(
            title=template.title,
            body=template.body,
            source=MessageSource.JOURNEY_DAY,
            data={
                "type": "journey_day",
                "stage": recipient.life_stage.value,
                "day_number": str(day_number),
                "notification_id": template.id,
            },
            notification_id=template.id,
        )

    def _cycle_reminder_message(
        self, recipient: Recipient, today: date, current_hour: int
    ) -> Message | None:
        dates = recipient.reference_dates
        if recipient.life_stage is not LifeStage.CYCLE_TRACKING or not dates.last_period_date:
            return None

        rules = self.catalog.cycle_reminders.get(recipient.user_id)
        if not rules:
            return None

        info = self.cycle_info_fn(
            dates.last_period_date, dates.cycle_length_days, dates.period_length_days, today
        )
        for rule in rules:
            if reminder_fires(rule, info, current_hour):
                return reminder_message(rule)
        return None

    def _broadcast_message(self, recipient: Recipient) -> Message | None:
        for broadcast in self.catalog.broadcasts:
            if broadcast.matches(recipient):
                return Message(
                    title=broadcast.title,
                    body=broadcast.body,
                    source=MessageSource.SCHEDULED_BROADCAST,
                    data={"type": broadcast.audience, "notification_id": broadcast.id},
                    notification_id=broadcast.id,
                )
        return None
