"""
Exception taxonomy for zone synchronization
"""

from typing import Any, Dict, List, Optional


class ZoneSyncException(Exception):
    """Base exception for zone sync operations"""

    error_code = "ZONE_SYNC_ERROR"
    retryable = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None
    ):
        self.message = message
        self.details = details or {}
        self.suggestions = suggestions or []
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Structured form used in job results and HTTP responses"""
        return {
            "type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "suggestions": self.suggestions,
        }


class ValidationError(ZoneSyncException):
    """Malformed record or domain data. Never retried, never reaches the server."""

    error_code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None
    ):
        self.field = field
        self.value = value
        details = dict(details or {})
        if field is not None:
            details.setdefault("field", field)
        if value is not None:
            details.setdefault("value", value if isinstance(value, (int, str)) else repr(value))
        super().__init__(message, details, suggestions)


class TransientPublishError(ZoneSyncException):
    """Connection, authentication transport or timeout problem talking to the server"""

    error_code = "TRANSIENT_PUBLISH_ERROR"
    retryable = True


class PublishError(ZoneSyncException):
    """Publishing failed at a definite stage.

    ``stage`` is one of ``validate`` (staged zone rejected, live file
    untouched), ``prepare`` (backup or install before the swap failed, live
    file untouched), ``reload`` (reload or verification failed after the swap),
    ``transport`` (transient failures outlasted every retry) or
    ``store`` (the record store could not supply the domain).
    """

    error_code = "PUBLISH_ERROR"

    STAGE_VALIDATE = "validate"
    STAGE_PREPARE = "prepare"
    STAGE_RELOAD = "reload"
    STAGE_TRANSPORT = "transport"
    STAGE_STORE = "store"

    def __init__(
        self,
        message: str,
        stage: str,
        rollback_succeeded: Optional[bool] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None
    ):
        self.stage = stage
        self.rollback_succeeded = rollback_succeeded
        details = dict(details or {})
        details["stage"] = stage
        if rollback_succeeded is not None:
            details["rollback_succeeded"] = rollback_succeeded
        super().__init__(message, details, suggestions)


class StoreReadError(ZoneSyncException):
    """The record store could not be read"""

    error_code = "STORE_READ_ERROR"

    def __init__(
        self,
        message: str,
        not_found: bool = False,
        details: Optional[Dict[str, Any]] = None,
        suggestions: Optional[List[str]] = None
    ):
        self.not_found = not_found
        # A definite "no such domain" answer will not change on retry
        self.retryable = not not_found
        super().__init__(message, details, suggestions)


class ConfigurationException(ZoneSyncException):
    """Missing or unusable configuration"""

    error_code = "CONFIGURATION_ERROR"
