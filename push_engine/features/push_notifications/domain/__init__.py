"""
Domain subpackage for the push notification feature.
"""

from .models import (
    BearerToken,
    CampaignRun,
    CampaignStatus,
    ContentRule,
    CycleInfo,
    CycleReminderRule,
    Delivery,
    DeliveryOutcome,
    DeliveryStatus,
    DeviceToken,
    DispatchResult,
    JourneyDayTemplate,
    LifeStage,
    Message,
    MessageSource,
    Recipient,
    ReferenceDates,
    ReminderKind,
    ScheduledBroadcast,
    ServiceAccountKey,
)

__all__ = [
    "BearerToken",
    "CampaignRun",
    "CampaignStatus",
    "ContentRule",
    "CycleInfo",
    "CycleReminderRule",
    "Delivery",
    "DeliveryOutcome",
    "DeliveryStatus",
    "DeviceToken",
    "DispatchResult",
    "JourneyDayTemplate",
    "LifeStage",
    "Message",
    "MessageSource",
    "Recipient",
    "ReferenceDates",
    "ReminderKind",
    "ScheduledBroadcast",
    "ServiceAccountKey",
]
