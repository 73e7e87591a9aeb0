"""Custom exceptions for the Zero Friction Brain MCP server.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_ALREADY_EXISTS = 1003

    # Identifier errors (3xxx)
    ID_COLLISION = 3001

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    STORAGE_MOVE_FAILED = 4004

    # Bulk operation errors (45xx)
    BULK_OPERATION_FAILED = 4501

    # Classifier errors (5xxx)
    CLASSIFIER_FAILED = 5001
    CLASSIFIER_RATE_LIMITED = 5002
    CLASSIFIER_MALFORMED_RESPONSE = 5003
    CLASSIFIER_NOT_CONFIGURED = 5004

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    PATH_TRAVERSAL_DETECTED = 7005


class BrainError(Exception):
    """Base exception for all Zero Friction Brain errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(BrainError):
    """Raised when a note referenced by path no longer exists."""

    def __init__(self, path: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note '{path}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"path": path}
        )
        self.path = path


class NoteValidationError(BrainError):
    """Raised when note data fails validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.NOTE_VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class StorageError(BrainError):
    """Raised for document store errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Only the file name, never the absolute vault location
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class DocumentNotFoundError(StorageError):
    """Raised when the store has no document at the requested path."""

    def __init__(self, path: str, operation: str = "read"):
        super().__init__(
            f"Document '{path}' does not exist",
            operation=operation,
            path=path,
            code=ErrorCode.NOTE_NOT_FOUND,
        )


class DocumentExistsError(StorageError):
    """Raised when creating or moving onto a path that is already taken."""

    def __init__(self, path: str, operation: str = "create"):
        super().__init__(
            f"Document '{path}' already exists",
            operation=operation,
            path=path,
            code=ErrorCode.NOTE_ALREADY_EXISTS,
        )


class ClassifierError(BrainError):
    """Raised when a classifier call fails for good (retries exhausted or fatal)."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        attempts: int = 0,
        code: ErrorCode = ErrorCode.CLASSIFIER_FAILED,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {}
        if operation:
            details["operation"] = operation
        if attempts:
            details["attempts"] = attempts
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.attempts = attempts
        self.original_error = original_error


class RateLimitError(ClassifierError):
    """Raised by a classifier backend when the service signals rate limiting."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(
            message,
            code=ErrorCode.CLASSIFIER_RATE_LIMITED,
            original_error=original_error,
        )


class MalformedResponseError(ClassifierError):
    """Raised when a mandatory classifier result cannot be parsed."""

    def __init__(self, message: str, operation: Optional[str] = None, raw: str = ""):
        super().__init__(
            message,
            operation=operation,
            code=ErrorCode.CLASSIFIER_MALFORMED_RESPONSE,
        )
        if raw:
            self.details["raw"] = raw[:100]
        self.raw = raw


class IdCollisionError(BrainError):
    """Raised when a freshly allocated Zettel identifier is already in use.

    The allocator reseeds itself from the note index before raising, so the
    next allocation starts from a safe high-water mark.
    """

    def __init__(self, identifier: str, scheme: str):
        super().__init__(
            f"Identifier '{identifier}' is already used by another Zettel note",
            code=ErrorCode.ID_COLLISION,
            details={"identifier": identifier, "scheme": scheme}
        )
        self.identifier = identifier
        self.scheme = scheme


class ConfigurationError(BrainError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key


class ValidationError(BrainError):
    """Raised for general validation errors."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class BulkOperationError(BrainError):
    """Raised when every item of a bulk operation failed.

    Attributes:
        operation: Name of the bulk operation (e.g., "process_inbox")
        total_count: Total number of items attempted
        success_count: Number of items that succeeded
        failed_paths: Paths that failed (full list, not truncated)
    """

    def __init__(
        self,
        message: str,
        operation: str,
        total_count: int = 0,
        success_count: int = 0,
        failed_paths: Optional[List[str]] = None,
        code: ErrorCode = ErrorCode.BULK_OPERATION_FAILED,
    ):
        if total_count < 0:
            raise ValueError("total_count must be non-negative")
        if success_count < 0:
            raise ValueError("success_count must be non-negative")
        if success_count > total_count:
            raise ValueError("success_count cannot exceed total_count")

        details = {
            "operation": operation,
            "total_count": total_count,
            "success_count": success_count,
            "failed_count": total_count - success_count
        }
        if failed_paths:
            details["failed_paths"] = failed_paths[:10]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.total_count = total_count
        self.success_count = success_count
        self.failed_paths: List[str] = list(failed_paths) if failed_paths else []

    @property
    def failed_count(self) -> int:
        """Number of items that failed (computed from total - success)."""
        return self.total_count - self.success_count
