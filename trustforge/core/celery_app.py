import logging

from celery import Celery
from celery.signals import setup_logging

from trustforge.core.config import settings
from trustforge.core.logging_config import configure_logging

logger = logging.getLogger(__name__)


def get_celery_app() -> Celery:
    redis_url = settings.REDIS_URL

    app = Celery(
        "trustforge_tasks",
        broker=redis_url,
        backend=redis_url,
        include=["trustforge.tasks"],
    )

    # The slowest provider (MobSF) may poll for 30 minutes; the broker must not
    # hand the job to another worker while the first one is still polling.
    longest_poll = max(
        settings.MOBSF_POLL_INTERVAL * settings.MOBSF_MAX_ATTEMPTS,
        settings.VIRUSTOTAL_POLL_INTERVAL * settings.VIRUSTOTAL_MAX_ATTEMPTS,
        settings.METADEFENDER_POLL_INTERVAL * settings.METADEFENDER_MAX_ATTEMPTS,
        settings.HYBRID_ANALYSIS_POLL_INTERVAL * settings.HYBRID_ANALYSIS_MAX_ATTEMPTS,
    )

    app.conf.update(
        result_expires=86400, # 24 hours
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        # Don't ack tasks until AFTER they complete.
        # If a worker dies mid-task, Redis will re-queue the task to another worker.
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        broker_transport_options={"visibility_timeout": int(longest_poll * 2)},
        beat_schedule={
            "cleanup-temp-dirs": {
                "task": "trustforge.tasks.cleanup_temp",
                "schedule": 3600.0,
            },
        },
    )

    # If Redis is not running, we switch to 'task_always_eager' (synchronous mode)
    # so the API stays usable during development.
    try:
        import redis
        client = redis.from_url(redis_url, socket_connect_timeout=1)
        client.ping()
        logger.info(f"[Celery] Connected to Redis at {redis_url}")
    except Exception as e:
        logger.warning(f"[Celery] Redis not available ({e}). Running in SYNC mode (task_always_eager=True).")
        app.conf.update(
            task_always_eager=True,
            task_eager_propagates=True,
        )

    return app


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    configure_logging()


celery_app = get_celery_app()
