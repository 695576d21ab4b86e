"""
Audience resolution for the scheduled sweep and for campaigns.
"""

from datetime import UTC, datetime, timedelta

from push_engine.db.helpers import DatabaseError
from push_engine.features.push_notifications.domain import Recipient
from push_engine.features.push_notifications.domain.errors import AudienceResolutionError
from push_engine.features.push_notifications.repository.directory_repository import (
    DirectoryRepository,
    directory_repository,
)
from push_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


def is_cooling_down(recipient: Recipient, now: datetime, min_cooldown: timedelta) -> bool:
    """True while less than `min_cooldown` has passed since the last send."""
    if recipient.last_sent_at is None:
        return False

    last_sent = recipient.last_sent_at
    if last_sent.tzinfo is None:
        last_sent = last_sent.replace(tzinfo=UTC)
    return now - last_sent < min_cooldown


class AudienceResolver:
    """Loads recipients from the Directory and attaches their device tokens."""

    def __init__(self, directory: DirectoryRepository | None = None):
        self.directory = directory or directory_repository

    async def resolve_eligible(
        self, min_cooldown: timedelta, now: datetime | None = None
    ) -> list[Recipient]:
        """
        Opted-in recipients outside their cooldown, with at least one device.

        Raises:
            AudienceResolutionError: If the Directory cannot be read
        """
        now = now or datetime.now(UTC)

        try:
            candidates = await self.directory.fetch_recipients()
        except DatabaseError as e:
            raise AudienceResolutionError(
                f"Failed to load recipients: {e}", operation="fetch_recipients"
            ) from e

        eligible = [
            recipient
            for recipient in candidates
            if recipient.notifications_enabled and not is_cooling_down(recipient, now, min_cooldown)
        ]

        with_tokens = await self._attach_tokens(eligible)

        logger.info(
            "Audience resolved",
            candidates=len(candidates),
            opted_in_and_cooled=len(eligible),
            with_devices=len(with_tokens),
            cooldown_minutes=int(min_cooldown.total_seconds() // 60),
        )
        return with_tokens

    async def resolve_segment(self, target_audience: str) -> list[Recipient]:
        """
        Every recipient of a named segment that has a device. No opt-in,
        cooldown or content logic applies to operator broadcasts.
        """
        try:
            members = await self.directory.fetch_audience(target_audience)
        except DatabaseError as e:
            raise AudienceResolutionError(
                f"Failed to load segment '{target_audience}': {e}", operation="fetch_audience"
            ) from e

        with_tokens = await self._attach_tokens(members)
        logger.info(
            "Segment resolved",
            target_audience=target_audience,
            members=len(members),
            with_devices=len(with_tokens),
        )
        return with_tokens

    async def resolve_user(self, user_id: str) -> Recipient | None:
        try:
            recipient = await self.directory.fetch_recipient(user_id)
        except DatabaseError as e:
            raise AudienceResolutionError(
                f"Failed to load user {user_id}: {e}", operation="fetch_recipient"
            ) from e

        if recipient is None:
            return None
        attached = await self._attach_tokens([recipient])
        return attached[0] if attached else None

    async def _attach_tokens(self, recipients: list[Recipient]) -> list[Recipient]:
        if not recipients:
            return []

        try:
            tokens_by_user = await self.directory.fetch_device_tokens(
                [recipient.user_id for recipient in recipients]
            )
        except DatabaseError as e:
            raise AudienceResolutionError(
                f"Failed to load device tokens: {e}", operation="fetch_device_tokens"
            ) from e

        attached = []
        for recipient in recipients:
            recipient.device_tokens = list(tokens_by_user.get(recipient.user_id, []))
            if recipient.device_tokens:
                attached.append(recipient)
        return attached
