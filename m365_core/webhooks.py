"""
Helpers for change notifications delivered by Graph subscriptions.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .logging_setup import get_logger

logger = get_logger(__name__)

REQUIRED_FIELDS = ("subscriptionId", "changeType", "resource")


def _valid_item(item: Any, client_state: Optional[str]) -> bool:
    if not isinstance(item, dict):
        return False
    if any(not item.get(f) for f in REQUIRED_FIELDS):
        return False
    if client_state is not None and item.get("clientState") != client_state:
        return False
    return True


def validate_notification(payload: Any, client_state: Optional[str] = None) -> bool:
    """Return True when every notification in the envelope is well formed.

    Accepts either the {"value": [...]} envelope Graph posts or a single
    notification. When client_state is given, each notification must echo it.
    Never raises.
    """
    if not isinstance(payload, dict):
        return False
    if "value" in payload:
        items = payload["value"]
        if not isinstance(items, list) or not items:
            return False
    else:
        items = [payload]

    ok = all(_valid_item(item, client_state) for item in items)
    if not ok:
        logger.warning("notification_rejected", subscription_id=payload.get("subscriptionId"))
    return ok


def process_notification(notification: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "subscriptionId": notification.get("subscriptionId"),
        "changeType": notification.get("changeType"),
        "resource": notification.get("resource"),
        "resourceData": notification.get("resourceData"),
        "subscriptionExpirationDateTime": notification.get("subscriptionExpirationDateTime"),
        "clientState": notification.get("clientState"),
        "tenantId": notification.get("tenantId"),
        "processedAt": datetime.now(timezone.utc).isoformat(),
    }
