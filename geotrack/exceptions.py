"""
Custom Exception Classes for GeoTrack

Defines the error taxonomy of the location tracking core. Every exception
carries an HTTP status code and a machine-readable error code so clients
can tell a permanent denial (stop polling) from a transient failure
(retry with backoff).
"""

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in error responses."""

    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Authentication & authorization
    AUTH_FAILED = "AUTH_FAILED"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    CONSENT_WITHDRAWN = "CONSENT_WITHDRAWN"
    INSUFFICIENT_PRIVILEGE = "INSUFFICIENT_PRIVILEGE"

    # Validation
    VALIDATION_FAILED = "VALIDATION_FAILED"

    # Resources
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"

    # Storage & dependencies
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"
    DEPENDENCY_UNAVAILABLE = "DEPENDENCY_UNAVAILABLE"
    AUDIT_WRITE_FAILED = "AUDIT_WRITE_FAILED"

    # Queries
    QUERY_ABORTED = "QUERY_ABORTED"


class GeoTrackError(Exception):
    """Base exception class for all GeoTrack errors"""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error_code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: ErrorCode | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(GeoTrackError):
    """Raised when the caller's identity cannot be established"""

    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = ErrorCode.AUTH_FAILED

    def __init__(self, message: str = "Could not validate credentials"):
        super().__init__(message=message)


class PermissionDeniedError(GeoTrackError):
    """Raised when an action is not permitted. Never retried automatically."""

    status_code = status.HTTP_403_FORBIDDEN
    error_code = ErrorCode.PERMISSION_DENIED


class ConsentWithdrawnError(PermissionDeniedError):
    """Raised when a subject without location consent tries to record a sample"""

    error_code = ErrorCode.CONSENT_WITHDRAWN

    def __init__(self, subject_id: int):
        super().__init__(
            message="Location consent is not granted; stop recording",
            details={"subject_id": subject_id, "retryable": False},
        )


class InsufficientPrivilegeError(PermissionDeniedError):
    """Raised when the caller's role is too low for the requested operation"""

    error_code = ErrorCode.INSUFFICIENT_PRIVILEGE

    def __init__(self, required_role: str, message: str | None = None):
        super().__init__(
            message=message or "You do not have permission to perform this action",
            details={"required_role": required_role},
        )


# ============================================================================
# Validation & Resource Exceptions
# ============================================================================


class ValidationError(GeoTrackError):
    """Raised when input validation fails"""

    status_code = status.HTTP_400_BAD_REQUEST
    error_code = ErrorCode.VALIDATION_FAILED

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(message=message, details=error_details)


class SubjectNotFoundError(GeoTrackError):
    """Raised when a subject id does not exist in the user directory"""

    status_code = status.HTTP_404_NOT_FOUND
    error_code = ErrorCode.RESOURCE_NOT_FOUND

    def __init__(self, subject_id: Any):
        super().__init__(
            message=f"Subject with id '{subject_id}' not found",
            details={"resource_type": "Subject", "resource_id": subject_id},
        )


# ============================================================================
# Storage & Dependency Exceptions
# ============================================================================


class TransientStorageError(GeoTrackError):
    """Raised when the persistence layer is unavailable. Safe to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = ErrorCode.STORAGE_UNAVAILABLE

    def __init__(self, message: str = "Storage is temporarily unavailable", operation: str | None = None):
        details: dict[str, Any] = {"retryable": True}
        if operation:
            details["operation"] = operation
        super().__init__(message=message, details=details)


class DependencyUnavailableError(GeoTrackError):
    """Raised when an external collaborator (e.g. the reverse geocoder) is down"""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    error_code = ErrorCode.DEPENDENCY_UNAVAILABLE

    def __init__(self, dependency: str, message: str | None = None):
        super().__init__(
            message=message or f"{dependency} is unavailable",
            details={"dependency": dependency},
        )


class AuditWriteFailure(GeoTrackError):
    """Raised internally when audit entries could not be persisted"""

    error_code = ErrorCode.AUDIT_WRITE_FAILED

    def __init__(self, count: int, cause: str):
        super().__init__(
            message=f"Failed to write {count} audit entries: {cause}",
            details={"count": count},
        )


class QueryAbortedError(GeoTrackError):
    """Raised when the caller went away while a query was still scanning"""

    status_code = 499
    error_code = ErrorCode.QUERY_ABORTED

    def __init__(self, message: str = "Query aborted by client"):
        super().__init__(message=message)
