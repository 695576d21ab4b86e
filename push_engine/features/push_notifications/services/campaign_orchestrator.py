"""
Operator-initiated sends: bulk campaigns and direct pushes to one user.

Both reuse the credential minter and fan-out dispatcher of the sweep, but
skip content selection: every recipient gets the operator's title and body.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from push_engine.config import settings
from push_engine.features.push_notifications.domain import (
    CampaignRun,
    CampaignStatus,
    Delivery,
    DispatchResult,
    Message,
    MessageSource,
)
from push_engine.features.push_notifications.domain.errors import (
    AudienceResolutionError,
    CampaignNotFoundError,
    CampaignStateError,
    CredentialError,
)
from push_engine.features.push_notifications.repository.campaign_repository import (
    CampaignRepository,
    campaign_repository,
)
from push_engine.features.push_notifications.services.audience_resolver import AudienceResolver
from push_engine.features.push_notifications.services.credential_minter import (
    CredentialMinter,
    credential_minter,
)
from push_engine.features.push_notifications.services.fanout_dispatcher import FanoutDispatcher
from push_engine.features.push_notifications.services.push_gateway import FcmPushGateway
from push_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

CLICK_ACTION = "FLUTTER_NOTIFICATION_CLICK"

GatewayFactory = Callable[[str], Any]


def campaign_message(campaign: CampaignRun) -> Message:
    return Message(
        title=campaign.title,
        body=campaign.body,
        source=MessageSource.CAMPAIGN,
        data={
            "type": "bulk",
            "notification_id": campaign.id,
            "click_action": CLICK_ACTION,
        },
        notification_id=campaign.id,
    )


class CampaignOrchestrator:
    """Runs one campaign or one direct push per call."""

    def __init__(
        self,
        campaigns: CampaignRepository | None = None,
        resolver: AudienceResolver | None = None,
        minter: CredentialMinter | None = None,
        gateway_factory: GatewayFactory = FcmPushGateway,
        dispatcher_factory: Callable[..., FanoutDispatcher] = FanoutDispatcher,
    ):
        self.campaigns = campaigns or campaign_repository
        self.resolver = resolver or AudienceResolver()
        self.minter = minter or credential_minter
        self.gateway_factory = gateway_factory
        self.dispatcher_factory = dispatcher_factory

    async def run_campaign(self, campaign_id: str) -> CampaignRun:
        """
        pending -> sending -> sent|failed.

        A segment with no reachable devices still finalizes as sent with
        zero counts. Any failure after the claim, cancellation included,
        finalizes as failed and is re-raised for the operator.

        Raises:
            CampaignNotFoundError: No campaign with that id
            CampaignStateError: The campaign is not pending
            CredentialError, AudienceResolutionError: The run was aborted
        """
        campaign = await self.campaigns.load_campaign(campaign_id)
        if campaign is None:
            raise CampaignNotFoundError(campaign_id)

        if campaign.status is not CampaignStatus.PENDING:
            raise CampaignStateError(campaign_id, campaign.status.value)

        if not await self.campaigns.mark_sending(campaign_id):
            # Claimed by a concurrent invocation between load and update
            raise CampaignStateError(campaign_id, CampaignStatus.SENDING.value)
        campaign.status = CampaignStatus.SENDING

        logger.info(
            "Campaign started",
            campaign_id=campaign_id,
            target_audience=campaign.target_audience,
        )

        try:
            recipients = await self.resolver.resolve_segment(campaign.target_audience)

            if recipients:
                message = campaign_message(campaign)
                deliveries = [Delivery(recipient=r, message=message) for r in recipients]
                result = await self._dispatch(deliveries)
            else:
                logger.info("Campaign has no reachable devices", campaign_id=campaign_id)
                result = DispatchResult()

        except (Exception, asyncio.CancelledError) as e:
            logger.error(
                "Campaign aborted",
                campaign_id=campaign_id,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=not isinstance(e, (CredentialError, AudienceResolutionError)),
            )
            await self._finalize(campaign, CampaignStatus.FAILED, DispatchResult())
            raise

        return await self._finalize(campaign, CampaignStatus.SENT, result)

    async def send_direct(
        self, user_id: str, title: str, body: str, data: dict[str, Any] | None = None
    ) -> DispatchResult:
        """
        Push the given content to one user's devices, newest device first.

        A user with no devices yields an empty result rather than an error.
        """
        recipient = await self.resolver.resolve_user(user_id)
        if recipient is None:
            logger.info("Direct push target has no devices", user_id=user_id)
            return DispatchResult()

        payload = {"type": "direct"}
        payload.update({str(k): str(v) for k, v in (data or {}).items() if v is not None})
        message = Message(title=title, body=body, source=MessageSource.DIRECT, data=payload)

        result = await self._dispatch([Delivery(recipient=recipient, message=message)])
        logger.info(
            "Direct push completed",
            user_id=user_id,
            sent=result.total_sent,
            failed=result.total_failed,
            pruned=result.tokens_pruned,
        )
        return result

    async def _dispatch(self, deliveries: list[Delivery]) -> DispatchResult:
        # Credentials are minted once per run, before the first send
        key = settings.service_account_key()
        bearer = await self.minter.get_token(key)

        async with self.gateway_factory(key.project_id) as gateway:
            dispatcher = self.dispatcher_factory(gateway)
            return await dispatcher.dispatch(deliveries, bearer)

    async def _finalize(
        self, campaign: CampaignRun, status: CampaignStatus, result: DispatchResult
    ) -> CampaignRun:
        sent_at = datetime.now(UTC)
        await self.campaigns.finalize(
            campaign.id, status, result.total_sent, result.total_failed, sent_at
        )

        campaign.status = status
        campaign.total_sent = result.total_sent
        campaign.total_failed = result.total_failed
        campaign.sent_at = sent_at
        return campaign


campaign_orchestrator = CampaignOrchestrator()
