"""
Domain models for the push notification engine.

Plain dataclasses shared by the repositories, services and jobs. Only the
content rule variants carry behaviour (their own lookup keys); everything
that decides what to send lives in the services.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Union


class LifeStage(str, Enum):
    """Stored profile life stages."""

    CYCLE_TRACKING = "flow"
    PREGNANCY = "bump"
    POSTPARTUM = "mommy"

    @classmethod
    def parse(cls, value: str | None) -> "LifeStage":
        # Profiles without a stage are treated as cycle tracking
        try:
            return cls(value) if value else cls.CYCLE_TRACKING
        except ValueError:
            return cls.CYCLE_TRACKING


class ReminderKind(str, Enum):
    """Cycle reminder kinds, in their natural priority order."""

    PERIOD_START = "period_start"
    PERIOD_END = "period_end"
    OVULATION = "ovulation"
    FERTILE_START = "fertile_start"
    FERTILE_END = "fertile_end"
    PMS = "pms"
    PILL = "pill"


class MessageSource(str, Enum):
    JOURNEY_DAY = "journey_day"
    CYCLE_REMINDER = "cycle_reminder"
    SCHEDULED_BROADCAST = "scheduled_broadcast"
    CAMPAIGN = "campaign"
    DIRECT = "direct"


class DeliveryStatus(str, Enum):
    SENT = "sent"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


class CampaignStatus(str, Enum):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ServiceAccountKey:
    client_email: str
    private_key_pem: str
    project_id: str


@dataclass(frozen=True, slots=True)
class BearerToken:
    value: str
    expires_at: int  # epoch seconds

    def is_usable(self, now_epoch: float, skew_seconds: int = 0) -> bool:
        return now_epoch < self.expires_at - skew_seconds


@dataclass(frozen=True, slots=True)
class DeviceToken:
    token: str
    user_id: str
    platform: str


@dataclass(frozen=True, slots=True)
class ReferenceDates:
    last_period_date: date | None = None
    cycle_length_days: int | None = None
    period_length_days: int | None = None
    due_date: date | None = None
    child_birth_date: date | None = None


@dataclass(slots=True)
class Recipient:
    """An end user who may receive a push in this run."""

    user_id: str
    life_stage: LifeStage
    role: str = "user"
    reference_dates: ReferenceDates = field(default_factory=ReferenceDates)
    notifications_enabled: bool = True
    last_sent_at: datetime | None = None
    device_tokens: list[DeviceToken] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class CycleInfo:
    current_cycle_day: int
    days_until_period: int
    days_until_ovulation: int
    days_until_fertile: int
    days_until_pms: int
    is_period_day: bool
    cycle_length_days: int
    period_length_days: int


# Content rule variants


@dataclass(frozen=True, slots=True)
class JourneyDayTemplate:
    """Canned message for an exact day of pregnancy or of the baby's life."""

    id: str
    stage: LifeStage
    day_number: int
    title: str
    body: str


@dataclass(frozen=True, slots=True)
class CycleReminderRule:
    """A user's own reminder, tied to an offset in their menstrual cycle."""

    id: str
    user_id: str
    kind: ReminderKind
    days_before: int
    time_of_day_hour: int
    title: str | None
    body: str | None
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class ScheduledBroadcast:
    """Generic message for an audience; lower priority number wins."""

    id: str
    audience: str
    title: str
    body: str
    priority: int
    enabled: bool = True

    def matches(self, recipient: Recipient) -> bool:
        if self.audience == "all":
            return True
        if self.audience == "partner":
            return recipient.role == "partner"
        return self.audience == recipient.life_stage.value


ContentRule = Union[JourneyDayTemplate, CycleReminderRule, ScheduledBroadcast]


@dataclass(frozen=True, slots=True)
class Message:
    title: str
    body: str
    source: MessageSource
    data: dict[str, str] = field(default_factory=dict)
    notification_id: str | None = None


@dataclass(slots=True)
class Delivery:
    """One message addressed to one recipient (and all of their devices)."""

    recipient: Recipient
    message: Message


@dataclass(frozen=True, slots=True)
class DeliveryOutcome:
    recipient_id: str
    device_token: str
    status: DeliveryStatus
    message: Message
    error_detail: str | None = None


@dataclass(slots=True)
class DispatchResult:
    total_sent: int = 0
    total_failed: int = 0
    tokens_pruned: int = 0
    outcomes: list[DeliveryOutcome] = field(default_factory=list)

    def merge(self, other: "DispatchResult") -> None:
        self.total_sent += other.total_sent
        self.total_failed += other.total_failed
        self.tokens_pruned += other.tokens_pruned
        self.outcomes.extend(other.outcomes)


@dataclass(slots=True)
class CampaignRun:
    """Represents a bulk_push_notifications row."""

    id: str
    title: str
    body: str
    target_audience: str
    status: CampaignStatus
    total_sent: int = 0
    total_failed: int = 0
    sent_at: datetime | None = None
