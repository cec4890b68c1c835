from __future__ import annotations

import json
import os
from datetime import datetime

from celery import Celery
from celery.signals import task_failure, task_retry

NOTIFICATION_QUEUE = "agriloop-notifications"

_observers_bound = False


def _env(*names: str, default: str = "") -> str:
    for name in names:
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return default


def _emit(flask_app, level: str, event: str, **fields) -> None:
    record = {"event": event, "at": datetime.utcnow().isoformat()}
    record.update({k: v for k, v in fields.items() if v not in (None, "")})
    getattr(flask_app.logger, level)(json.dumps(record, default=str))


def _watch_delivery_tasks(flask_app) -> None:
    """Surface worker-side failures and retries in the Flask log stream."""
    global _observers_bound
    if _observers_bound:
        return

    @task_failure.connect(weak=False)
    def _delivery_failed(sender=None, task_id=None, exception=None, kwargs=None, **_):
        _emit(
            flask_app,
            "error",
            "worker_task_failed",
            task=getattr(sender, "name", None),
            task_id=task_id,
            notification_id=(kwargs or {}).get("notification_id"),
            trace_id=(kwargs or {}).get("trace_id"),
            error=repr(exception),
        )

    @task_retry.connect(weak=False)
    def _delivery_retrying(request=None, reason=None, **_):
        kwargs = getattr(request, "kwargs", None) or {}
        _emit(
            flask_app,
            "warning",
            "worker_task_retry",
            task=getattr(request, "task", None),
            task_id=getattr(request, "id", None),
            notification_id=kwargs.get("notification_id"),
            trace_id=kwargs.get("trace_id"),
            attempt=int(getattr(request, "retries", 0) or 0) + 1,
            reason=str(reason or ""),
        )

    _observers_bound = True


def create_celery_app(flask_app) -> Celery:
    broker = _env("CELERY_BROKER_URL", "REDIS_URL", default="redis://localhost:6379/0")
    backend = _env("CELERY_RESULT_BACKEND", "REDIS_URL", default=broker)

    celery = Celery("agriloop", broker=broker, backend=backend)
    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        task_acks_late=True,
        worker_prefetch_multiplier=1,
        broker_connection_retry_on_startup=True,
        enable_utc=True,
        task_default_queue=NOTIFICATION_QUEUE,
        task_always_eager=bool(flask_app.config.get("CELERY_TASK_ALWAYS_EAGER", False)),
    )

    class AppContextTask(celery.Task):
        def __call__(self, *args, **kwargs):
            with flask_app.app_context():
                return self.run(*args, **kwargs)

    celery.Task = AppContextTask
    celery.set_default()
    celery.autodiscover_tasks(["agriloop.tasks"], related_name="notification_tasks")
    _watch_delivery_tasks(flask_app)
    return celery
