import logging
import uuid
from typing import Any

from timesheet_admin.models.audit_log import AuditLog
from timesheet_admin.services.data_client import DataClient

logger = logging.getLogger(__name__)


def log_action(
    client: DataClient,
    user_id: uuid.UUID,
    action: str,
    resource_type: str,
    resource_id: Any = None,
    details: dict | None = None,
):
    """Record an audit row. A failed write is logged, never raised."""
    result = client.insert(
        AuditLog,
        {
            "user_id": user_id,
            "action": action,
            "resource_type": resource_type,
            "resource_id": str(resource_id) if resource_id is not None else None,
            "details": details.copy() if isinstance(details, dict) else {},
        },
    )
    if not result.ok:
        logger.warning("Audit write failed for %s %s %s: %s", action, resource_type, resource_id, result.error)
    return result
