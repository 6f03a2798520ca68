"""
errors.py
~~~~~~~~~
Exception taxonomy for the scan pipeline.

Optional-provider errors (ProviderFailure / ProviderTimeout / ProviderSkipped)
are contained by the orchestrator and turned into bundle outcomes. Everything
else reaches the job pipeline, which is the only place that writes ``failed``.
"""
from __future__ import annotations


class TrustForgeError(Exception):
    """Base class for every error raised by this package."""


# ─── Caller Errors ───────────────────────────────────────────────────────────
class ValidationError(TrustForgeError):
    """Raised when submitted input is rejected (bad extension, bad content, too large)."""


class InvalidStateTransition(TrustForgeError):
    """Raised when a job operation is not allowed from the job's current state."""

    def __init__(self, job_id: str, current: str, attempted: str):
        self.job_id = job_id
        self.current = current
        self.attempted = attempted
        super().__init__(f"Job {job_id}: cannot {attempted} from '{current}'")


class JobNotFound(TrustForgeError):
    """Raised when a job id does not exist (or belongs to another owner)."""


# ─── Provider Errors ─────────────────────────────────────────────────────────
class ProviderError(TrustForgeError):
    """Base class for errors scoped to one scanning provider."""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class ProviderFailure(ProviderError):
    """The provider reported a failure, or talking to it failed outright."""


class ProviderTimeout(ProviderFailure):
    """The provider never reported completion within the poll budget."""


class ProviderSkipped(ProviderError):
    """A provider precondition was not met and the provider can be skipped cleanly."""


# Names used by the poll driver.
ScanFailed = ProviderFailure
ScanTimeout = ProviderTimeout


class MalformedResponse(ValueError):
    """A provider response did not have the expected shape. Transient while polling."""


class MandatoryProviderFailure(TrustForgeError):
    """The static-analysis provider failed; the job cannot be scored."""


# ─── Infrastructure Errors ───────────────────────────────────────────────────
class PersistenceError(TrustForgeError):
    """Writing to the job record store or the object store failed."""


class InfrastructureError(TrustForgeError):
    """The queue or a backing store is unreachable."""
