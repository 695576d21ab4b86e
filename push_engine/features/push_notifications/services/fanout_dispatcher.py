"""
Fan-out of selected messages to device tokens.

Deliveries are grouped into batches of roughly DISPATCH_BATCH_SIZE tokens.
Batches run one after another; inside a batch recipients are served
concurrently under a semaphore. For a single recipient the tokens are
tried strictly in order and the first success ends the attempt, so a user
never gets the same push twice.

Counters are aggregated per recipient and merged after each batch, so no
state is shared between concurrent tasks.
"""

import asyncio
import time
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Protocol

from push_engine.config import settings
from push_engine.features.push_notifications.domain import (
    BearerToken,
    Delivery,
    DeliveryOutcome,
    DeliveryStatus,
    DeviceToken,
    DispatchResult,
    Message,
)
from push_engine.features.push_notifications.domain.errors import (
    PermanentDeliveryError,
    TransientDeliveryError,
)
from push_engine.features.push_notifications.repository.directory_repository import (
    DirectoryRepository,
    directory_repository,
)
from push_engine.infrastructure.audit import AuditLogger, audit_logger
from push_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class PushGateway(Protocol):
    async def send(
        self,
        bearer: BearerToken,
        device_token: str,
        title: str,
        body: str,
        data: dict | None = None,
    ) -> None: ...


def build_batches(deliveries: Sequence[Delivery], batch_size: int) -> list[list[Delivery]]:
    """
    Split deliveries so each batch holds at most `batch_size` tokens.

    A recipient's tokens are never split across batches; a recipient with
    more tokens than the batch size gets a batch of their own.
    """
    batches: list[list[Delivery]] = []
    current: list[Delivery] = []
    current_tokens = 0

    for delivery in deliveries:
        token_count = len(delivery.recipient.device_tokens)
        if current and current_tokens + token_count > batch_size:
            batches.append(current)
            current, current_tokens = [], 0
        current.append(delivery)
        current_tokens += token_count

    if current:
        batches.append(current)
    return batches


class FanoutDispatcher:
    """Best-effort sweep of deliveries through the push gateway."""

    def __init__(
        self,
        gateway: PushGateway,
        directory: DirectoryRepository | None = None,
        audit: AuditLogger | None = None,
        batch_size: int | None = None,
        max_concurrency: int | None = None,
        send_timeout: float | None = None,
    ):
        self.gateway = gateway
        self.directory = directory or directory_repository
        self.audit = audit or audit_logger
        self.batch_size = batch_size or settings.DISPATCH_BATCH_SIZE
        self.max_concurrency = max_concurrency or settings.DISPATCH_MAX_CONCURRENCY
        self.send_timeout = send_timeout or settings.PUSH_REQUEST_TIMEOUT

    async def dispatch(self, deliveries: Sequence[Delivery], bearer: BearerToken) -> DispatchResult:
        """
        Deliver every message, returning aggregate counts.

        total_sent counts recipients reached; total_failed counts recipients
        whose tokens were all exhausted without success.
        """
        result = DispatchResult()
        if not deliveries:
            return result

        batches = build_batches(deliveries, self.batch_size)
        logger.info(
            "Dispatching deliveries in batches",
            recipients=len(deliveries),
            batch_count=len(batches),
            batch_size=self.batch_size,
            max_concurrency=self.max_concurrency,
        )

        for batch_num, batch in enumerate(batches, 1):
            started = time.time()
            semaphore = asyncio.Semaphore(self.max_concurrency)

            reports = await asyncio.gather(
                *(self._deliver_with_semaphore(semaphore, delivery, bearer) for delivery in batch),
                return_exceptions=True,
            )

            batch_result = DispatchResult()
            for delivery, report in zip(batch, reports):
                if isinstance(report, BaseException):
                    logger.error(
                        "Delivery task crashed",
                        user_id=delivery.recipient.user_id,
                        error=str(report),
                        error_type=type(report).__name__,
                    )
                    batch_result.total_failed += 1
                else:
                    batch_result.merge(report)
            result.merge(batch_result)

            logger.info(
                "Batch dispatched",
                batch_number=batch_num,
                total_batches=len(batches),
                recipients=len(batch),
                sent=batch_result.total_sent,
                failed=batch_result.total_failed,
                pruned=batch_result.tokens_pruned,
                duration_ms=round((time.time() - started) * 1000, 1),
            )

        return result

    async def _deliver_with_semaphore(
        self, semaphore: asyncio.Semaphore, delivery: Delivery, bearer: BearerToken
    ) -> DispatchResult:
        async with semaphore:
            return await self._deliver(delivery, bearer)

    async def _deliver(self, delivery: Delivery, bearer: BearerToken) -> DispatchResult:
        """Try the recipient's tokens in order until one accepts."""
        recipient = delivery.recipient
        report = DispatchResult()

        if not recipient.device_tokens:
            return report

        for device_token in recipient.device_tokens:
            outcome = await self._attempt(device_token, delivery.message, bearer)
            report.outcomes.append(outcome)
            await self.audit.log_delivery(outcome)

            if outcome.status is DeliveryStatus.SENT:
                report.total_sent = 1
                await self._stamp_last_sent(recipient.user_id)
                return report

            if outcome.status is DeliveryStatus.PERMANENT_FAILURE:
                if await self._prune(device_token):
                    report.tokens_pruned += 1

        report.total_failed = 1
        return report

    async def _attempt(
        self, device_token: DeviceToken, message: Message, bearer: BearerToken
    ) -> DeliveryOutcome:
        def outcome(status: DeliveryStatus, detail: str | None = None) -> DeliveryOutcome:
            return DeliveryOutcome(
                recipient_id=device_token.user_id,
                device_token=device_token.token,
                status=status,
                message=message,
                error_detail=detail,
            )

        try:
            await asyncio.wait_for(
                self.gateway.send(
                    bearer, device_token.token, message.title, message.body, message.data
                ),
                timeout=self.send_timeout,
            )
            return outcome(DeliveryStatus.SENT)

        except PermanentDeliveryError as e:
            return outcome(DeliveryStatus.PERMANENT_FAILURE, f"{e.reason_code}: {e}")

        except TransientDeliveryError as e:
            return outcome(DeliveryStatus.TRANSIENT_FAILURE, f"{e.reason_code}: {e}")

        except TimeoutError:
            return outcome(
                DeliveryStatus.TRANSIENT_FAILURE, f"TIMEOUT: no response in {self.send_timeout}s"
            )

        except Exception as e:
            # Unknown failures are never grounds for deleting a token
            logger.error(
                "Unexpected gateway error",
                user_id=device_token.user_id,
                device_token=device_token.token,
                error=str(e),
                error_type=type(e).__name__,
            )
            return outcome(DeliveryStatus.TRANSIENT_FAILURE, f"{type(e).__name__}: {e}")

    async def _prune(self, device_token: DeviceToken) -> bool:
        try:
            await self.directory.delete_device_token(device_token.token)
            return True
        except Exception as e:
            logger.error(
                "Failed to delete invalid device token",
                user_id=device_token.user_id,
                device_token=device_token.token,
                error=str(e),
            )
            return False

    async def _stamp_last_sent(self, user_id: str) -> None:
        try:
            await self.directory.stamp_last_sent(user_id, datetime.now(UTC))
        except Exception as e:
            logger.error("Failed to stamp last_push_sent_at", user_id=user_id, error=str(e))
