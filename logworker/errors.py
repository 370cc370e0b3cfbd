"""Error taxonomy for job execution."""


class JobError(Exception):
    """A condition that ends a job in the failed state."""


class RetrievalError(JobError):
    """The source file could not be fetched within the retry budget."""


class EmptyFileError(RetrievalError):
    """The fetched source file has zero bytes."""


class TimeoutAbort(JobError):
    """The safety timer fired before the job finished on its own."""


class PersistenceError(Exception):
    """A write to the durable job store failed."""


class NotifyError(Exception):
    """Publishing a job update failed. Never escapes the notifier."""
