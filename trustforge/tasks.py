import asyncio
import logging
import threading

from trustforge.core.celery_app import celery_app
from trustforge.core.config import settings
from trustforge.core.errors import InfrastructureError, PersistenceError
from trustforge.db import close_async_db
from trustforge.services.cleanup import cleanup_old_files

logger = logging.getLogger(__name__)


def run_async_wrapper(coro):
    """
    Run an async coroutine synchronously, handling existing event loops.
    If a loop is already running (e.g. in Celery eager mode/API thread), run in a separate thread.
    Otherwise, use asyncio.run().
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        logger.info("Event loop detected. Running async task in separate thread.")
        result = None
        exception = None

        def run_in_thread():
            nonlocal result, exception
            try:
                result = asyncio.run(coro)
            except Exception as e:
                exception = e

        thread = threading.Thread(target=run_in_thread)
        thread.start()
        thread.join()

        if exception:
            raise exception
        return result
    return asyncio.run(coro)


async def _process(job_id: str, lease: int):
    from trustforge.services.pipeline import build_pipeline

    try:
        return await build_pipeline().process(job_id, lease)
    finally:
        # asyncpg pools belong to the loop that created them; each task run gets a fresh loop.
        await close_async_db()


# Store/broker hiccups before the claim leave the job pending; redeliver the descriptor.
@celery_app.task(
    name="trustforge.tasks.process_scan",
    autoretry_for=(PersistenceError, InfrastructureError),
    retry_backoff=30,
    retry_backoff_max=600,
    max_retries=5,
)
def process_scan_task(job_id: str, lease: int):
    """
    Worker entry point: claim the job with ``lease`` and run it to a terminal state.
    """
    logger.info(f"[job_id={job_id}] Worker picked up descriptor (lease {lease})")
    status = run_async_wrapper(_process(job_id, lease))
    return status.value if status is not None else None


@celery_app.task(name="trustforge.tasks.cleanup_temp")
def cleanup_temp_task():
    """Sweep abandoned per-job temp directories."""
    return cleanup_old_files(settings.TEMP_ROOT, settings.TEMP_MAX_AGE_SECONDS)


@celery_app.task(name="trustforge.tasks.recover_stale")
def recover_stale_task(max_age_seconds: int | None = None):
    """Operator action: move jobs stuck in pending or processing to failed."""
    from trustforge.services.pipeline import build_pipeline

    async def _recover():
        try:
            return await build_pipeline().recover_stale(max_age_seconds)
        finally:
            await close_async_db()

    return run_async_wrapper(_recover())
