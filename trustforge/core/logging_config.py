import logging

from trustforge.core.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Configure root logging once for the API process or the Celery worker."""
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format=LOG_FORMAT,
    )
    # httpx logs every request at INFO; provider polling would drown the job logs
    logging.getLogger("httpx").setLevel(logging.WARNING)
