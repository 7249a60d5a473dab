# celery_app.py  ─────────────────────────────────────────────────────────
from celery import Celery
from celery.schedules import crontab
import logging
import logging.config
from onchain_sync.config.settings import (
    CELERY_BROKER_URL, CELERY_RESULT_BACKEND, REDIS_URL, BACKFILL_SCHEDULE_MINUTES,
)

# ── 1.  Broker / backend  ────────────────────────────────────
celery_app = Celery(
    "onchain_sync",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# ── 2.  Core config Beat & routing ───────────────────────────
celery_app.conf.update(
    task_serializer       ='json',
    result_serializer     ='json',
    accept_content        =['json'],
    timezone              ='UTC',
    enable_utc            =True,

    # --- RedBeat keeps the schedule (and its lock) in Redis
    beat_scheduler        ="redbeat.RedBeatScheduler",
    redbeat_redis_url     =REDIS_URL,

    # --- recycle workers to avoid long‑lived memory creep
    worker_max_tasks_per_child = 20,
)


def _schedule(minutes: int):
    if minutes >= 60 and minutes % 60 == 0:
        hours = minutes // 60
        return crontab(minute=0, hour="*" if hours == 1 else f"*/{hours}")
    return crontab(minute=f"*/{minutes}")


# ── 3.  Beat schedule – the recent-blocks backfill ───────────
celery_app.conf.beat_schedule = {
    "backfill-recent": {
        "task": "backfill_recent",
        "schedule": _schedule(BACKFILL_SCHEDULE_MINUTES),
        "options": {"queue": "backfill"},
    }
}

# ── 4.  Logging ──────────────────────────────────────────────
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "custom": {
            "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        }
    },
    "handlers": {
        "console": {"class": "logging.StreamHandler", "formatter": "custom"},
    },
    "root": {"level": "INFO", "handlers": ["console"]},
}
celery_app.conf.worker_hijack_root_logger = False
logging.config.dictConfig(LOGGING_CONFIG)

# ── 5.  Task modules so Celery registers them ────────────────
import onchain_sync.scheduler.dispatcher  # noqa: E402,F401
