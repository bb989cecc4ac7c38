"""Celery Beat schedule configuration.

Every job is safe to re-run in full.

Tasks:
- Hourly: settle claims whose reward step never completed
- Daily: refresh stale streak summaries, reconcile ledgers
- Monthly: re-project every summary for the new month
"""

from celery.schedules import crontab

CELERY_BEAT_SCHEDULE = {
    # ==========================================================================
    # Hourly Tasks
    # ==========================================================================

    "settle-pending-rewards-hourly": {
        "task": "streakledger.tasks.ledger.settle_pending_rewards_task",
        "schedule": crontab(minute=20),
        "options": {"queue": "settlement"},
    },

    # ==========================================================================
    # Daily Tasks
    # ==========================================================================

    # Decay streaks of users who missed yesterday (00:05 reference time)
    "daily-summary-refresh": {
        "task": "streakledger.tasks.attendance.refresh_stale_summaries_task",
        "schedule": crontab(hour=0, minute=5),
        "options": {"queue": "attendance"},
    },

    # Cached balance vs ledger (3 AM)
    "daily-ledger-reconciliation": {
        "task": "streakledger.tasks.ledger.reconcile_ledgers_task",
        "schedule": crontab(hour=3, minute=0),
        "options": {"queue": "settlement"},
    },

    # ==========================================================================
    # Monthly Tasks
    # ==========================================================================

    # Monthly day counts restart (1st of month, 00:10)
    "monthly-summary-refresh": {
        "task": "streakledger.tasks.attendance.refresh_all_summaries_task",
        "schedule": crontab(hour=0, minute=10, day_of_month=1),
        "options": {"queue": "attendance"},
    },
}


CELERY_TASK_ROUTES = {
    "streakledger.tasks.ledger.*": {"queue": "settlement"},
    "streakledger.tasks.attendance.*": {"queue": "attendance"},
}
