from celery import Celery

from app.config import settings

celery_app = Celery("social_inbox")
celery_app.conf.update(
    broker_url=settings.celery_broker_url,
    result_backend=settings.celery_result_backend,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_always_eager=settings.celery_task_always_eager,
)
celery_app.conf.beat_schedule = {
    "social-reprocess-stale-webhook-events": {
        "task": "app.tasks.social.reprocess_stale_webhook_events",
        "schedule": float(settings.social_webhook_sweep_interval_seconds),
    },
    "social-send-due-comment-dms": {
        "task": "app.tasks.social.send_due_comment_dms",
        "schedule": float(settings.comment_dm_poll_interval_seconds),
    },
}
celery_app.autodiscover_tasks(["app.tasks"])
