"""Fire-and-forget notifications to buyers, sellers and operators."""
from __future__ import annotations

import logging
from typing import Any, Protocol

logger = logging.getLogger(__name__)

DISPUTE_OPENED_SELLER = "dispute_opened_seller"
DISPUTE_OPENED_BUYER = "dispute_opened_buyer"
DISPUTE_OPENED_OPERATORS = "dispute_opened_operators"
DISPUTE_RESOLVED = "dispute_resolved"
DISPUTE_RESOLVED_OPERATORS = "dispute_resolved_operators"
ESCROW_RELEASED_SELLER = "escrow_released_seller"
PURCHASE_CONFIRMATION = "purchase_confirmation"
SALE_NOTIFICATION = "sale_notification"


class Notifier(Protocol):
    def notify(self, recipient: str, template: str, context: dict[str, Any]) -> None:
        ...


class LogNotifier:
    """Writes notifications to the application log; delivery is owned elsewhere."""

    def notify(self, recipient: str, template: str, context: dict[str, Any]) -> None:
        logger.info("Notification queued", extra={"template": template, "context": context})


def notify_quietly(notifier: Notifier, recipient: str | None, template: str, context: dict[str, Any]) -> bool:
    """Deliver a notification without letting a failure reach the caller."""

    if not recipient:
        return False
    try:
        notifier.notify(recipient, template, context)
    except Exception:  # noqa: BLE001
        logger.exception("Notification failed", extra={"template": template})
        return False
    return True
