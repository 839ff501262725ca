"""Domain errors and failure typing."""


class FieldSyncError(Exception):
    """Base class for offline data subsystem failures."""

    error_code = "FIELDSYNC_ERROR"


class ConfigError(FieldSyncError):
    """Raised for invalid or missing configuration."""

    error_code = "CONFIG_ERROR"


class StorageError(FieldSyncError):
    """Raised when the device cannot durably read or write a value."""

    error_code = "STORAGE_ERROR"


class DownloadError(FieldSyncError):
    """Raised when a dataset download cannot complete."""

    error_code = "DOWNLOAD_ERROR"


class HttpRequestError(FieldSyncError):
    error_code = "HTTP_ERROR"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryableHttpError(HttpRequestError):
    error_code = "HTTP_RETRYABLE"


class SubmissionRejectedError(HttpRequestError):
    """The remote API refused the payload; retrying will not help."""

    error_code = "SUBMISSION_REJECTED"


class SessionExpiredError(HttpRequestError):
    error_code = "SESSION_EXPIRED"
