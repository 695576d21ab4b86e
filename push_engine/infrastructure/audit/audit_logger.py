"""
AuditLogger - delivery audit trail for push notifications.

Every delivery attempt outcome is written to:
1. Database (notification_send_log table) - queryable by operators
2. Structured logs (stdout) - real-time monitoring

Usage:
    from push_engine.infrastructure.audit import audit_logger

    await audit_logger.log_delivery(outcome)

Audit failures never fail a run: the method logs and returns False.
"""

from push_engine.db.helpers import execute_query
from push_engine.features.push_notifications.domain import (
    DeliveryOutcome,
    DeliveryStatus,
    MessageSource,
)
from push_engine.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class AuditLogger:
    """Writes one notification_send_log row per DeliveryOutcome."""

    @staticmethod
    async def log_delivery(outcome: DeliveryOutcome) -> bool:
        """
        Record a delivery outcome.

        Returns:
            True if the row was written, False otherwise (never raises)
        """
        message = outcome.message
        # notification_id references scheduled_notifications only
        notification_id = (
            message.notification_id
            if message.source is MessageSource.SCHEDULED_BROADCAST
            else None
        )

        log = logger.info if outcome.status is DeliveryStatus.SENT else logger.warning
        log(
            "Delivery outcome",
            user_id=outcome.recipient_id,
            device_token=outcome.device_token,
            status=outcome.status.value,
            source=message.source.value,
            error_detail=outcome.error_detail,
        )

        try:
            await execute_query(
                """
                INSERT INTO notification_send_log (
                    user_id, notification_id, title, body, status
                ) VALUES (%s, %s, %s, %s, %s)
                """,
                (
                    outcome.recipient_id,
                    notification_id,
                    message.title,
                    message.body,
                    outcome.status.value,
                ),
            )
            return True

        except Exception as e:
            logger.error(
                "Failed to write delivery audit row",
                user_id=outcome.recipient_id,
                status=outcome.status.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False


# Singleton instance for application use
audit_logger = AuditLogger()
