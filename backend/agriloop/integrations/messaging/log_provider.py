from __future__ import annotations

import logging
import os

from agriloop.integrations.messaging.base import MessagingProvider, MessageResult

logger = logging.getLogger(__name__)


class LogMessagingProvider(MessagingProvider):
    """Writes outgoing messages to the log instead of a gateway."""

    name = "log"

    def _force_failure(self, message: str) -> bool:
        msg = (message or "").lower()
        return "[fail]" in msg or (os.getenv("NOTIFY_FORCE_FAIL") or "").strip() == "1"

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        if self._force_failure(message):
            return MessageResult(ok=False, code="PROVIDER_DOWN", message="forced failure")
        logger.info("notification_logged to=%s reference=%s chars=%s", to or "-", reference, len(message or ""))
        return MessageResult(ok=True, code="OK", message="logged", raw={"to": to, "reference": reference})
