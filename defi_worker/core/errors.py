"""Worker-wide exception hierarchy.

Connector (upstream API) errors live in ``defi_worker.connectors.base`` and
derive from ``WorkerError`` as well, so a job can catch one root type for
per-item isolation while letting ``asyncio.CancelledError`` propagate.
"""


class WorkerError(Exception):
    """Base exception for all worker errors."""


class RepositoryError(WorkerError):
    """Raised when a persistence operation fails.

    The underlying driver/ORM exception is chained as ``__cause__``. The
    worker treats these as retryable on the next scheduled pass.
    """


class NotificationError(WorkerError):
    """Raised when a notification could not be delivered."""


class ResolverError(WorkerError):
    """Raised when the observed value for an alert cannot be determined."""
