# Error taxonomy for the try-on pipeline
# Messages are recorded verbatim on failed jobs, so keep them human-readable.


class TryOnError(Exception):
    """Base class for all try-on pipeline errors."""


class SubmissionError(TryOnError):
    """The prediction service rejected a submission (non-2xx or unreachable)."""


class TransientQueryError(TryOnError):
    """A status query failed in a way that is worth retrying on the next tick."""


class PredictionFailure(TryOnError):
    """The provider reported the prediction as failed."""


class PredictionCanceled(TryOnError):
    """The provider reported the prediction as canceled."""


class PollingTimeoutError(TryOnError):
    """The polling attempt budget ran out before the prediction finished."""


class DownloadError(TryOnError):
    """An artifact could not be downloaded."""


class StorageError(TryOnError):
    """An object could not be written to, read from or removed from storage."""


class ValidationError(TryOnError):
    """Quality validation could not be completed.

    Only ever surfaced to the caller of the validator; it never changes the
    status of a job.
    """
