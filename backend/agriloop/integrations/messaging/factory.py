from __future__ import annotations

import os

from agriloop.integrations.common import IntegrationMisconfiguredError
from agriloop.integrations.messaging.base import MessagingProvider
from agriloop.integrations.messaging.log_provider import LogMessagingProvider
from agriloop.integrations.messaging.twilio_provider import TwilioMessagingProvider, twilio_health


def build_messaging_provider() -> MessagingProvider:
    provider = (os.getenv("NOTIFY_PROVIDER") or "log").strip().lower()
    if provider in ("", "log", "mock"):
        return LogMessagingProvider()
    if provider != "twilio":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:notify_provider={provider}")

    missing = twilio_health().get("missing", [])
    if missing:
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:missing {', '.join(missing)}")
    return TwilioMessagingProvider(
        account_sid=os.getenv("TWILIO_ACCOUNT_SID", "").strip(),
        auth_token=os.getenv("TWILIO_AUTH_TOKEN", "").strip(),
        sms_from=os.getenv("TWILIO_SMS_FROM", "").strip(),
    )


def messaging_health() -> dict:
    provider = (os.getenv("NOTIFY_PROVIDER") or "log").strip().lower()
    missing = twilio_health().get("missing", []) if provider == "twilio" else []
    return {
        "status": "misconfigured" if missing else "configured",
        "provider": provider,
        "dispatch": (os.getenv("NOTIFY_DISPATCH") or "inline").strip().lower(),
        "missing": missing,
    }
