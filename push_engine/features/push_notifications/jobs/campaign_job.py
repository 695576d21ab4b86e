"""
Campaign job: send one pending operator campaign to its segment.
"""

import uuid

from push_engine.features.push_notifications.services.campaign_orchestrator import (
    campaign_orchestrator,
)
from push_engine.infrastructure.observability.logging import (
    bind_run_context,
    clear_run_context,
    log_run_summary,
)

JOB_NAME = "campaign"


async def run_campaign_job(campaign_id: str) -> dict:
    bind_run_context(run_id=uuid.uuid4().hex, job=JOB_NAME, campaign_id=campaign_id)
    try:
        campaign = await campaign_orchestrator.run_campaign(campaign_id)
        summary = {
            "campaign_id": campaign.id,
            "status": campaign.status.value,
            "target_audience": campaign.target_audience,
            "total_sent": campaign.total_sent,
            "total_failed": campaign.total_failed,
            "sent_at": campaign.sent_at.isoformat() if campaign.sent_at else None,
        }
        log_run_summary(JOB_NAME, summary)
        return summary
    finally:
        clear_run_context()
