"""
Custom Exceptions for mediasync

Define custom exception classes for more precise error handling
and consistent error reporting across the scheduler, API clients and
token management.
"""


class MediaSyncError(Exception):
    """Base exception for all mediasync-specific errors"""
    def __init__(self, message: str, error_code: str = "UNKNOWN_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class ConfigurationError(MediaSyncError):
    """Raised when required secrets or credentials are missing or malformed"""
    def __init__(self, message: str, setting: str | None = None):
        error_code = "CONFIGURATION_ERROR"
        self.setting = setting
        super().__init__(message, error_code)


class JobNotFoundError(MediaSyncError):
    """Raised when a scheduler operation references an unregistered job"""
    def __init__(self, job_name: str):
        error_code = "JOB_NOT_FOUND"
        self.job_name = job_name
        super().__init__(f"Job not found: {job_name}", error_code)


class InvalidScheduleError(MediaSyncError):
    """Raised for malformed CRON schedule expressions"""
    def __init__(self, message: str, schedule: str | None = None):
        error_code = "INVALID_SCHEDULE"
        self.schedule = schedule
        super().__init__(message, error_code)


class NetworkError(MediaSyncError):
    """Raised when an upstream server cannot be reached"""
    def __init__(self, message: str, code: str = "NETWORK_ERROR"):
        error_code = "NETWORK_ERROR"
        self.code = code
        super().__init__(message, error_code)


class HttpStatusError(MediaSyncError):
    """Raised when an upstream server answers with a non-success status"""
    def __init__(self, message: str, status: int):
        error_code = "HTTP_STATUS_ERROR"
        self.status = status
        super().__init__(message, error_code)


class RetryExhaustedError(MediaSyncError):
    """Raised when every retry attempt failed with a retryable error"""
    def __init__(self, attempts: int, last_error: Exception):
        error_code = "RETRY_EXHAUSTED"
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Failed after {attempts} attempts: {last_error}", error_code)

    @property
    def status(self) -> int | None:
        return getattr(self.last_error, "status", None)

    @property
    def code(self) -> str | None:
        return getattr(self.last_error, "code", None)


class NotConnectedError(MediaSyncError):
    """Raised when an integration has no stored access token"""
    def __init__(self, integration: str):
        error_code = "NOT_CONNECTED"
        self.integration = integration
        super().__init__(f"{integration} not connected", error_code)


class ReauthorizationRequiredError(MediaSyncError):
    """Raised when a token expired and cannot be refreshed without the user"""
    def __init__(self, integration: str):
        error_code = "REAUTHORIZATION_REQUIRED"
        self.integration = integration
        super().__init__(
            f"{integration} token expired and no refresh token available",
            error_code,
        )


def error_to_dict(error: MediaSyncError) -> dict:
    """
    Convert an exception to a dictionary for status and API error responses

    Args:
        error: MediaSyncError instance

    Returns:
        Dictionary representation of the error
    """
    error_dict = {
        "error": error.error_code,
        "message": error.message
    }

    # Add optional metadata
    for attr in ['setting', 'job_name', 'schedule', 'code', 'status', 'attempts', 'integration']:
        value = getattr(error, attr, None)
        if value is not None:
            error_dict[attr] = value

    return error_dict
