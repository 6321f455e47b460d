"""
Celery application: broker and result backend from settings.
Tasks are in paygate.workers.tasks (fulfillment notifications, reconciliation sweep).
"""
from celery import Celery
from celery.schedules import crontab

from paygate.core.config import settings

celery_app = Celery(
    "paygate",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "paygate.workers.tasks.fulfillment",
        "paygate.workers.tasks.reconcile",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=600,
    result_expires=86400,
    beat_schedule={
        "reconcile-pending-intents": {
            "task": "paygate.workers.tasks.reconcile.reconcile_pending_intents",
            "schedule": crontab(minute=f"*/{settings.reconcile_interval_minutes}"),
        },
    },
)

celery_app.conf.task_routes = {
    "paygate.workers.tasks.fulfillment.send_fulfillment_email": {"queue": "notifications"},
}
