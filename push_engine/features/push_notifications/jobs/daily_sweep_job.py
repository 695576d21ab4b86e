"""
Daily sweep job.

One run: check the send window, mint a bearer token, load the content
catalog, resolve eligible recipients, pick at most one message each and
fan them out. Credential or Directory failures abort the run before the
first send.
"""

import asyncio
import time
import uuid
from datetime import UTC, datetime, timedelta

from push_engine.config import settings
from push_engine.db.helpers import DatabaseError
from push_engine.features.push_notifications.domain import Delivery, DispatchResult
from push_engine.features.push_notifications.domain.clock import (
    is_within_send_window,
    service_now,
)
from push_engine.features.push_notifications.domain.errors import (
    AudienceResolutionError,
    CredentialError,
)
from push_engine.features.push_notifications.repository.directory_repository import (
    DirectoryRepository,
    directory_repository,
)
from push_engine.features.push_notifications.services.audience_resolver import AudienceResolver
from push_engine.features.push_notifications.services.content_selector import (
    ContentCatalog,
    ContentSelector,
)
from push_engine.features.push_notifications.services.credential_minter import (
    CredentialMinter,
    credential_minter,
)
from push_engine.features.push_notifications.services.fanout_dispatcher import FanoutDispatcher
from push_engine.features.push_notifications.services.push_gateway import FcmPushGateway
from push_engine.infrastructure.observability.logging import (
    bind_run_context,
    clear_run_context,
    get_logger,
    log_run_summary,
)

logger = get_logger(__name__)

JOB_NAME = "daily_sweep"


class SweepMetrics:
    """Counters for one sweep run."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.start_time = datetime.now(UTC)
        self.manual = False
        self.eligible_recipients = 0
        self.selected_by_source: dict[str, int] = {}
        self.total_sent = 0
        self.total_failed = 0
        self.tokens_pruned = 0
        self.total_duration_seconds = 0.0

    def record_selection(self, eligible: int, deliveries: list[Delivery]):
        self.eligible_recipients = eligible
        for delivery in deliveries:
            source = delivery.message.source.value
            self.selected_by_source[source] = self.selected_by_source.get(source, 0) + 1

    def record_dispatch(self, result: DispatchResult):
        self.total_sent = result.total_sent
        self.total_failed = result.total_failed
        self.tokens_pruned = result.tokens_pruned

    def finalize(self):
        self.total_duration_seconds = (datetime.now(UTC) - self.start_time).total_seconds()

    def to_dict(self) -> dict:
        selected = sum(self.selected_by_source.values())
        return {
            "start_time": self.start_time.isoformat(),
            "manual": self.manual,
            "total_duration_seconds": round(self.total_duration_seconds, 2),
            "eligible_recipients": self.eligible_recipients,
            "messages_selected": selected,
            "selected_by_source": dict(self.selected_by_source),
            "total_sent": self.total_sent,
            "total_failed": self.total_failed,
            "tokens_pruned": self.tokens_pruned,
            "success_rate_percent": round(
                (self.total_sent / selected * 100) if selected > 0 else 0, 2
            ),
        }


class DailySweepJob:
    """
    Scheduled sweep over every eligible recipient.

    A second call while a run is in progress in the same process is skipped.
    """

    def __init__(
        self,
        resolver: AudienceResolver | None = None,
        directory: DirectoryRepository | None = None,
        minter: CredentialMinter | None = None,
        gateway_factory=FcmPushGateway,
        dispatcher_factory=FanoutDispatcher,
    ):
        self.directory = directory or directory_repository
        self.resolver = resolver or AudienceResolver(self.directory)
        self.minter = minter or credential_minter
        self.gateway_factory = gateway_factory
        self.dispatcher_factory = dispatcher_factory
        self.is_running = False
        self.last_run_time: datetime | None = None
        self.job_metrics = SweepMetrics()

    async def run_once(self, manual: bool = False, now: datetime | None = None) -> dict:
        """
        Run a single sweep.

        Returns:
            Dict: run metrics, or {"skipped": True, "reason": ...}

        Raises:
            CredentialError: No bearer token could be minted
            AudienceResolutionError: The Directory could not be read
        """
        if self.is_running:
            logger.warning("Daily sweep already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        now_utc = now or datetime.now(UTC)
        local_now = service_now(settings.SERVICE_UTC_OFFSET_HOURS, now_utc)

        if not manual and not is_within_send_window(
            local_now, settings.SEND_WINDOW_START_HOUR, settings.SEND_WINDOW_END_HOUR
        ):
            skipped = {
                "skipped": True,
                "reason": "outside_send_window",
                "local_time": local_now.isoformat(),
            }
            log_run_summary(JOB_NAME, skipped)
            return skipped

        bind_run_context(run_id=uuid.uuid4().hex, job=JOB_NAME)
        try:
            self.is_running = True
            self.job_metrics.reset()
            self.job_metrics.manual = manual

            logger.info(
                "Starting daily sweep",
                manual=manual,
                local_time=local_now.isoformat(),
                cooldown_minutes=settings.PUSH_COOLDOWN_MINUTES,
            )

            # Credentials first: without a token nothing may be sent
            key = settings.service_account_key()
            bearer = await self.minter.get_token(key)

            catalog = await self._load_catalog()
            recipients = await self.resolver.resolve_eligible(
                timedelta(minutes=settings.PUSH_COOLDOWN_MINUTES), now_utc
            )

            deliveries = ContentSelector(catalog).select_messages(recipients, local_now)
            self.job_metrics.record_selection(len(recipients), deliveries)

            if deliveries:
                async with self.gateway_factory(key.project_id) as gateway:
                    result = await self.dispatcher_factory(gateway).dispatch(deliveries, bearer)
                self.job_metrics.record_dispatch(result)
            else:
                logger.info("No messages selected", eligible_recipients=len(recipients))

            self.job_metrics.finalize()
            self.last_run_time = datetime.now(UTC)

            metrics = self.job_metrics.to_dict()
            log_run_summary(JOB_NAME, metrics)
            return metrics

        except (CredentialError, AudienceResolutionError) as e:
            logger.error(
                "Daily sweep aborted",
                error=str(e),
                error_type=type(e).__name__,
                error_code=getattr(e, "error_code", None),
            )
            raise

        finally:
            self.is_running = False
            clear_run_context()

    async def _load_catalog(self) -> ContentCatalog:
        started = time.time()
        try:
            # A failed read cancels the sibling reads
            async with asyncio.TaskGroup() as tg:
                journey = tg.create_task(self.directory.fetch_journey_templates())
                reminders = tg.create_task(self.directory.fetch_cycle_reminders())
                broadcasts = tg.create_task(self.directory.fetch_scheduled_broadcasts())
        except ExceptionGroup as eg:
            db_errors, others = eg.split(DatabaseError)
            if others is not None:
                raise
            raise AudienceResolutionError(
                f"Failed to load content rules: {db_errors.exceptions[0]}",
                operation="load_catalog",
            ) from eg

        catalog = ContentCatalog.from_rules(
            [*journey.result(), *reminders.result(), *broadcasts.result()]
        )
        logger.info(
            "Content catalog loaded",
            duration_ms=round((time.time() - started) * 1000, 1),
            **catalog.counts(),
        )
        return catalog


daily_sweep_job = DailySweepJob()


async def run_daily_sweep(manual: bool = False) -> dict:
    """Run one sweep with the process-wide job instance."""
    return await daily_sweep_job.run_once(manual=manual)
