"""
notifications.py
----------------
Purpose:
    Operator trigger endpoints for the push notification engine.

Usage:
    1. POST /notifications/sweep - Run one daily sweep ({"manual": true} ignores the window)
    2. POST /notifications/campaigns/{campaign_id}/send - Send a pending campaign
    3. POST /notifications/direct - Push one message to one user's devices

Each request performs one bounded run; nothing is kept between requests
except the cached gateway bearer token.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from push_engine.auth.verify import operator_auth_dependency
from push_engine.db.helpers import DatabaseError
from push_engine.features.push_notifications.domain.errors import (
    AudienceResolutionError,
    CampaignNotFoundError,
    CampaignStateError,
    CredentialError,
)
from push_engine.features.push_notifications.jobs import run_campaign_job, run_daily_sweep
from push_engine.features.push_notifications.services.campaign_orchestrator import (
    campaign_orchestrator,
)
from push_engine.infrastructure.observability.logging import get_logger
from push_engine.models.api.notification_request import DirectPushRequest, SweepRequest
from push_engine.models.api.notification_response import (
    CampaignResponse,
    DirectPushResponse,
    SweepResponse,
)

router = APIRouter(prefix="/notifications", tags=["notifications"])
logger = get_logger(__name__)


def _to_http_error(e: Exception) -> HTTPException:
    if isinstance(e, CampaignNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    if isinstance(e, CampaignStateError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, CredentialError):
        return HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Push credentials unavailable: {e}",
        )
    # AudienceResolutionError and DatabaseError
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Directory unavailable: {e}",
    )


_RUN_ERRORS = (
    CredentialError,
    AudienceResolutionError,
    DatabaseError,
    CampaignNotFoundError,
    CampaignStateError,
)


@router.post("/sweep", response_model=SweepResponse)
async def trigger_sweep(
    request: SweepRequest | None = None, claims: dict = Depends(operator_auth_dependency)
):
    """
    Run one daily sweep.

    Raises:
        502: Bearer token could not be minted
        503: Directory unreachable
    """
    manual = request.manual if request else False
    logger.info("Sweep triggered", operator_id=claims.get("sub"), manual=manual)

    try:
        metrics = await run_daily_sweep(manual=manual)
    except _RUN_ERRORS as e:
        raise _to_http_error(e) from e

    return SweepResponse(**metrics)


@router.post("/campaigns/{campaign_id}/send", response_model=CampaignResponse)
async def send_campaign(campaign_id: str, claims: dict = Depends(operator_auth_dependency)):
    """
    Send a pending campaign to its target audience.

    Raises:
        404: Unknown campaign
        409: Campaign is not pending
        502: Bearer token could not be minted
        503: Directory unreachable
    """
    logger.info("Campaign triggered", operator_id=claims.get("sub"), campaign_id=campaign_id)

    try:
        summary = await run_campaign_job(campaign_id)
    except _RUN_ERRORS as e:
        raise _to_http_error(e) from e

    return CampaignResponse(**summary)


@router.post("/direct", response_model=DirectPushResponse)
async def send_direct_push(
    request: DirectPushRequest, claims: dict = Depends(operator_auth_dependency)
):
    """Push the given title/body to every device of one user, first success wins."""
    logger.info("Direct push triggered", operator_id=claims.get("sub"), user_id=request.user_id)

    try:
        result = await campaign_orchestrator.send_direct(
            request.user_id, request.title, request.body, request.data
        )
    except _RUN_ERRORS as e:
        raise _to_http_error(e) from e

    return DirectPushResponse(
        user_id=request.user_id,
        sent=result.total_sent,
        failed=result.total_failed,
        tokens_pruned=result.tokens_pruned,
    )
