from __future__ import annotations

import json
import logging

from flask import current_app

from agriloop.extensions import db
from agriloop.models import Notification, NotificationStatus, User
from agriloop.utils.observability import get_request_id

logger = logging.getLogger(__name__)

EXTENSION_KEY = "agriloop.notifier"


class Notifier:
    """Best-effort message sink handed to every service.

    Subclasses implement ``deliver``; ``notify`` catches and logs whatever
    it raises, so a lost notification never undoes the business operation
    that triggered it.
    """

    def notify(self, user_id: int, subject: str, message: str, meta: dict | None = None) -> None:
        try:
            self.deliver(int(user_id), subject or "", message or "", dict(meta or {}))
        except Exception:
            logger.exception("notification_failed user_id=%s subject=%s", user_id, subject)

    def deliver(self, user_id: int, subject: str, message: str, meta: dict) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    def deliver(self, user_id, subject, message, meta) -> None:
        logger.debug("notification_dropped user_id=%s subject=%s", user_id, subject)


class QueuedNotifier(Notifier):
    """Stores a Notification row, then hands SMS delivery off.

    Users without a phone only get the in-app row. ``dispatch`` is
    ``inline`` (deliver inside the request) or ``celery`` (enqueue
    ``deliver_notification``).
    """

    def __init__(self, *, dispatch: str = "inline"):
        self.dispatch = (dispatch or "inline").strip().lower()

    def deliver(self, user_id, subject, message, meta) -> None:
        user = db.session.get(User, user_id)
        row = Notification(user_id=user_id, title=subject[:160], message=message, meta=json.dumps(meta, default=str))
        if user is not None and user.has_phone:
            row.channel = "sms"
            row.status = NotificationStatus.QUEUED
        else:
            row.channel = "in_app"
            row.mark_sent("in_app")
        try:
            db.session.add(row)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        if row.channel == "sms":
            self._dispatch(int(row.id))

    def _dispatch(self, notification_id: int) -> None:
        if self.dispatch == "celery":
            from agriloop.tasks.notification_tasks import deliver_notification

            deliver_notification.delay(notification_id=notification_id, trace_id=get_request_id())
            return
        deliver_notification_now(notification_id)


def deliver_notification_now(notification_id: int) -> bool:
    """Push one queued notification through the messaging provider.

    Returns True once the row is ``sent``. Failures leave the row ``failed``
    with the provider error code kept in ``provider_ref``.
    """
    from agriloop.integrations.messaging.factory import build_messaging_provider

    row = db.session.get(Notification, int(notification_id))
    if row is None:
        logger.warning("notification_missing notification_id=%s", notification_id)
        return False
    if row.status == NotificationStatus.SENT:
        return True
    user = db.session.get(User, int(row.user_id))

    provider = build_messaging_provider()
    result = provider.send_sms(
        to=(user.phone or "").strip() if user is not None else "",
        message=row.text,
        reference=f"notification:{row.id}",
    )
    if result.ok:
        row.mark_sent(provider.name, result.message)
    else:
        row.mark_failed(provider.name, result.code)
    db.session.commit()
    log = logger.info if result.ok else logger.warning
    log("notification_delivery notification_id=%s provider=%s ok=%s code=%s", row.id, provider.name, result.ok, result.code)
    return bool(result.ok)


def build_notifier(config) -> Notifier:
    return QueuedNotifier(dispatch=str(config.get("NOTIFY_DISPATCH") or "inline"))


def current_notifier() -> Notifier:
    notifier = current_app.extensions.get(EXTENSION_KEY)
    if notifier is None:
        return NullNotifier()
    return notifier
