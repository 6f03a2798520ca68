"""
Job queue seam between the pipeline and the worker.

A descriptor carries only the job id and the lease it was issued with; the
worker re-reads everything else from the job store.
"""
import abc
import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict

from trustforge.core.errors import InfrastructureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobDescriptor:
    job_id: str
    lease: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class JobQueue(abc.ABC):
    @abc.abstractmethod
    def enqueue(self, descriptor: JobDescriptor) -> None:
        """Hand the descriptor to a worker. Raises InfrastructureError if the broker is unreachable."""
        pass


class CeleryJobQueue(JobQueue):
    """Dispatches ``trustforge.tasks.process_scan`` through Celery (Redis broker)."""

    def enqueue(self, descriptor: JobDescriptor) -> None:
        # Imported lazily: tasks.py builds the pipeline, which owns this queue.
        from trustforge.tasks import process_scan_task

        try:
            process_scan_task.delay(descriptor.job_id, descriptor.lease)
        except Exception as e:
            raise InfrastructureError(f"Could not enqueue job {descriptor.job_id}: {e}") from e
        logger.info(f"[job_id={descriptor.job_id}] Enqueued with lease {descriptor.lease}")

