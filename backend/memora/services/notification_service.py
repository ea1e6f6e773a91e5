"""
Memora Backend — Notification Dispatch
========================================

What:  Emits owner/guest notifications for phase completion and billing
       changes.
Why:   Notifications are secondary effects. A failure is logged and never
       aborts the primary operation ("log and continue").
How:   Each notification is a structured log record on `memora.notifications`
       that a log shipper or mail relay consumes. `notify` never raises.
"""

import logging
from typing import Any, Dict

logger = logging.getLogger("memora.notifications")


class NotificationService:

    def _dispatch(self, event: str, recipient: str, payload: Dict[str, Any]) -> None:
        logger.info(
            "notification %s → %s",
            event,
            recipient,
            extra={"notification_event": event, "recipient": recipient, "payload": payload},
        )

    async def notify(self, event: str, recipient: str, **payload: Any) -> bool:
        """Best-effort send. Returns False (after logging) on failure."""
        try:
            self._dispatch(event, recipient, payload)
            return True
        except Exception as e:
            logger.warning(
                "Notification %s to %s failed: %s", event, recipient, str(e), exc_info=True
            )
            return False


# ── Singleton Instance ────────────────────────────────────────────────────
notification_service = NotificationService()
