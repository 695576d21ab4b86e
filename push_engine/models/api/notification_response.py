from datetime import datetime

from pydantic import BaseModel


class SweepResponse(BaseModel):
    skipped: bool = False
    reason: str | None = None
    manual: bool = False
    eligible_recipients: int = 0
    messages_selected: int = 0
    selected_by_source: dict[str, int] = {}
    total_sent: int = 0
    total_failed: int = 0
    tokens_pruned: int = 0
    total_duration_seconds: float = 0.0


class CampaignResponse(BaseModel):
    """Operator-visible campaign result: aggregate counts only."""

    campaign_id: str
    status: str
    target_audience: str
    total_sent: int
    total_failed: int
    sent_at: datetime | None = None


class DirectPushResponse(BaseModel):
    user_id: str
    sent: int
    failed: int
    tokens_pruned: int
