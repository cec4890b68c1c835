from __future__ import annotations

import os

import requests

from agriloop.integrations.messaging.base import MessagingProvider, MessageResult


TWILIO_BASE = "https://api.twilio.com/2010-04-01"


def _map_twilio_error(status: int) -> str:
    if status in (401, 403):
        return "TWILIO_AUTH_FAILED"
    if status == 429:
        return "TWILIO_RATE_LIMITED"
    if status in (400, 404, 422):
        return "TWILIO_INVALID_RECIPIENT"
    return "TWILIO_PROVIDER_DOWN"


class TwilioMessagingProvider(MessagingProvider):
    name = "twilio"

    def __init__(self, *, account_sid: str, auth_token: str, sms_from: str):
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.sms_from = sms_from

    def send_sms(self, *, to: str, message: str, reference: str = "") -> MessageResult:
        if not (to or "").strip():
            return MessageResult(ok=False, code="TWILIO_INVALID_RECIPIENT", message="missing recipient")
        url = f"{TWILIO_BASE}/Accounts/{self.account_sid}/Messages.json"
        data = {"From": self.sms_from, "To": to.strip(), "Body": message}
        try:
            r = requests.post(url, data=data, auth=(self.account_sid, self.auth_token), timeout=12)
            body = r.json() if r.content else {}
            if 200 <= r.status_code < 300:
                sid = body.get("sid") if isinstance(body, dict) else None
                return MessageResult(ok=True, code="OK", message=str(sid or "sent"), raw=body if isinstance(body, dict) else {"payload": body})
            detail = ""
            if isinstance(body, dict):
                detail = str(body.get("message") or "")
            return MessageResult(
                ok=False,
                code=_map_twilio_error(r.status_code),
                message=(detail or f"http_{r.status_code}")[:200],
                raw=body if isinstance(body, dict) else {"payload": body},
            )
        except requests.Timeout:
            return MessageResult(ok=False, code="TWILIO_PROVIDER_DOWN", message="timeout")
        except requests.RequestException as e:
            return MessageResult(ok=False, code="TWILIO_PROVIDER_DOWN", message=str(e)[:200])


def twilio_health() -> dict:
    missing = []
    for key in ("TWILIO_ACCOUNT_SID", "TWILIO_AUTH_TOKEN", "TWILIO_SMS_FROM"):
        if not (os.getenv(key) or "").strip():
            missing.append(key)
    return {"missing": missing}
