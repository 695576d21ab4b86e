"""
Persistence for operator campaigns (bulk_push_notifications rows).
"""

from datetime import datetime

from push_engine.db.helpers import execute_query, fetch_one
from push_engine.features.push_notifications.domain import CampaignRun, CampaignStatus
from push_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class CampaignRepository:
    """Lifecycle updates for a CampaignRun."""

    SELECT_COLUMNS = """
        id, title, body, target_audience, status,
        total_sent, total_failed, sent_at
    """

    @staticmethod
    def _row_to_campaign(row: dict | None) -> CampaignRun | None:
        if not row:
            return None

        return CampaignRun(
            id=str(row["id"]),
            title=row["title"],
            body=row["body"],
            target_audience=row.get("target_audience") or "all",
            status=CampaignStatus(row.get("status") or CampaignStatus.PENDING.value),
            total_sent=row.get("total_sent") or 0,
            total_failed=row.get("total_failed") or 0,
            sent_at=row.get("sent_at"),
        )

    async def load_campaign(self, campaign_id: str) -> CampaignRun | None:
        query = f"SELECT {self.SELECT_COLUMNS} FROM bulk_push_notifications WHERE id = %s"
        return self._row_to_campaign(await fetch_one(query, (campaign_id,)))

    async def mark_sending(self, campaign_id: str) -> bool:
        """
        pending -> sending. Returns False when another invocation already
        claimed the campaign.
        """
        updated = await execute_query(
            """
            UPDATE bulk_push_notifications
            SET status = 'sending'
            WHERE id = %s AND COALESCE(status, 'pending') = 'pending'
            """,
            (campaign_id,),
        )
        logger.info("Campaign claimed for sending", campaign_id=campaign_id, claimed=bool(updated))
        return bool(updated)

    async def finalize(
        self,
        campaign_id: str,
        status: CampaignStatus,
        total_sent: int,
        total_failed: int,
        sent_at: datetime,
    ) -> None:
        """sending -> sent|failed with the aggregate counts."""
        await execute_query(
            """
            UPDATE bulk_push_notifications
            SET status = %s,
                total_sent = %s,
                total_failed = %s,
                sent_at = %s
            WHERE id = %s AND status = 'sending'
            """,
            (status.value, total_sent, total_failed, sent_at, campaign_id),
        )
        logger.info(
            "Campaign finalized",
            campaign_id=campaign_id,
            status=status.value,
            total_sent=total_sent,
            total_failed=total_failed,
        )


campaign_repository = CampaignRepository()
