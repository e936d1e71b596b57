"""Status condition helpers."""

from datetime import datetime, timezone


def _now():
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def find_condition(conditions, condition_type):
    """Return the condition of the given type, or None."""
    for condition in conditions or []:
        if condition.get("type") == condition_type:
            return condition
    return None


def set_status_condition(conditions, condition_type, status, reason, message, now=None):
    """Set a condition in place, one entry per type.

    The last write wins for reason and message. lastTransitionTime only
    moves when the status value changes.
    """
    now = now or _now()
    existing = find_condition(conditions, condition_type)
    if existing is None:
        conditions.append(
            {
                "type": condition_type,
                "status": status,
                "reason": reason,
                "message": message,
                "lastHeartbeatTime": now,
                "lastTransitionTime": now,
            }
        )
        return conditions

    if existing.get("status") != status:
        existing["status"] = status
        existing["lastTransitionTime"] = now
    existing["reason"] = reason
    existing["message"] = message
    existing["lastHeartbeatTime"] = now
    return conditions


def set_conditions(conditions, statuses, reason, message, now=None):
    """Set several condition types with a shared reason and message.

    statuses maps condition type to status value.
    """
    now = now or _now()
    for condition_type, status in statuses.items():
        set_status_condition(conditions, condition_type, status, reason, message, now=now)
    return conditions
