"""
Job runners for the push notification feature.
"""

from .campaign_job import run_campaign_job
from .daily_sweep_job import run_daily_sweep

__all__ = ["run_daily_sweep", "run_campaign_job"]
