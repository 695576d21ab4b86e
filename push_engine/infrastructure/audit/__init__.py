"""
Audit logging infrastructure for push delivery tracking.

Operators read per-attempt outcomes from the notification_send_log table;
campaign rows only carry aggregate counts.
"""

from push_engine.infrastructure.audit.audit_logger import AuditLogger, audit_logger

__all__ = ["AuditLogger", "audit_logger"]
