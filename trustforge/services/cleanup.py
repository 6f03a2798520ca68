import os
import shutil
import time
import logging

logger = logging.getLogger(__name__)


def cleanup_old_files(directory: str, max_age_seconds: int = 86400) -> int:
    """
    Deletes entries in the specified directory that are older than max_age_seconds.
    Per-job temp directories are removed with their contents.

    Args:
        directory: Path to the directory to clean.
        max_age_seconds: Max entry age in seconds (default: 24h).

    Returns:
        Number of entries removed.
    """
    if not os.path.exists(directory):
        return 0

    now = time.time()
    count = 0

    try:
        for name in os.listdir(directory):
            path = os.path.join(directory, name)
            age = now - os.path.getmtime(path)
            if age <= max_age_seconds:
                continue
            try:
                if os.path.isdir(path):
                    shutil.rmtree(path)
                else:
                    os.remove(path)
                count += 1
            except OSError as e:
                logger.warning(f"Failed to delete old entry {name}: {e}")

        if count > 0:
            logger.info(f"Cleanup: Removed {count} old entries (>{max_age_seconds}s) from {directory}.")

    except OSError as e:
        logger.error(f"Cleanup failed for {directory}: {e}")

    return count


def remove_job_dir(path: str) -> None:
    """Remove one job's private temp directory; a missing directory is fine."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning(f"Failed to remove temp directory {path}: {e}")
