"""Celery application configuration.

- Redis as broker and result backend
- Task routing by queue
- Scheduled tasks via Celery Beat
"""

import os

from celery import Celery

from streakledger.tasks.schedules import CELERY_BEAT_SCHEDULE, CELERY_TASK_ROUTES

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

celery_app = Celery(
    "streakledger_tasks",
    broker=f"{REDIS_URL.rsplit('/', 1)[0]}/1",  # DB 1 for broker
    backend=f"{REDIS_URL.rsplit('/', 1)[0]}/2",  # DB 2 for results
    include=[
        "streakledger.tasks.attendance",
        "streakledger.tasks.ledger",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Beat fires in the reference timezone (UTC+7)
    timezone="Asia/Ho_Chi_Minh",
    enable_utc=True,

    task_routes=CELERY_TASK_ROUTES,

    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,

    result_expires=86400,  # 24 hours

    beat_schedule=CELERY_BEAT_SCHEDULE,

    task_default_retry_delay=60,
    task_max_retries=3,
)

if os.getenv("APP_ENV") == "development":
    celery_app.conf.update(
        task_always_eager=False,
        task_eager_propagates=True,
    )
