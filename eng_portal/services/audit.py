from datetime import datetime, timezone
import logging

from eng_portal.core.errors import StorageUnavailable

logger = logging.getLogger("engportal.audit")

AUDIT_LOGS = "audit_logs"


async def log_activity(store, actor_email: str, action: str, target_id: str, details: str = ""):
    """
    Appends an admin action to 'audit_logs'. A failed audit write never fails the action itself.
    """
    try:
        entry = {
            "timestamp": datetime.now(timezone.utc),
            "actor_email": actor_email,
            "action": action,
            "target_id": target_id,
            "details": details
        }
        store.add(AUDIT_LOGS, entry)
    except StorageUnavailable as e:
        logger.error(f"Failed to write audit log: {e}")


async def recent_activity(store, limit: int = 50) -> list:
    logs = []
    for _, entry in store.query(AUDIT_LOGS, order_by="timestamp", descending=True, limit=limit):
        # Serialize timestamp for JSON response
        if isinstance(entry.get("timestamp"), datetime):
            entry["timestamp"] = entry["timestamp"].isoformat()
        logs.append(entry)
    return logs
