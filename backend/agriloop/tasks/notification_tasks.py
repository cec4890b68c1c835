from __future__ import annotations

import json
import time
from datetime import datetime

from celery import shared_task
from flask import current_app

from agriloop.utils.notify import deliver_notification_now


def _task_log(task_name: str, *, status: str, started_at: float, trace_id: str = "", **extra):
    duration_ms = int(max(0.0, (time.perf_counter() - float(started_at))) * 1000.0)
    payload = {
        "task_name": task_name,
        "status": status,
        "duration_ms": duration_ms,
        "trace_id": str(trace_id or ""),
        "timestamp": datetime.utcnow().isoformat(),
    }
    payload.update(extra)
    current_app.logger.info(json.dumps(payload))


def _retry_countdown(retries: int) -> int:
    # Exponential backoff with cap.
    return int(min(900, max(5, 5 * (2 ** int(max(0, retries))))))


@shared_task(
    bind=True,
    name="agriloop.tasks.notification_tasks.deliver_notification",
    max_retries=5,
)
def deliver_notification(self, *, notification_id: int, trace_id: str = ""):
    started = time.perf_counter()
    if deliver_notification_now(int(notification_id)):
        _task_log("deliver_notification", status="ok", started_at=started, trace_id=trace_id, notification_id=notification_id)
        return {"ok": True, "notification_id": int(notification_id)}

    retries = int(self.request.retries or 0)
    if retries < int(self.max_retries or 0):
        countdown = _retry_countdown(retries)
        _task_log(
            "deliver_notification",
            status="retrying",
            started_at=started,
            trace_id=trace_id,
            notification_id=notification_id,
            countdown=countdown,
        )
        raise self.retry(exc=RuntimeError("notification_delivery_failed"), countdown=countdown)

    _task_log("deliver_notification", status="failed", started_at=started, trace_id=trace_id, notification_id=notification_id)
    return {"ok": False, "notification_id": int(notification_id)}
