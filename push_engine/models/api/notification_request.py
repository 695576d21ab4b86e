from typing import Any

from pydantic import BaseModel, Field


class SweepRequest(BaseModel):
    """Request body for triggering a daily sweep."""

    manual: bool = Field(False, description="Ignore the daily send window")


class DirectPushRequest(BaseModel):
    """Request body for pushing one message to one user's devices."""

    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1, max_length=200)
    body: str = Field(..., min_length=1, max_length=1000)
    data: dict[str, Any] | None = None
