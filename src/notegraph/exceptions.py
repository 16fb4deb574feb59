"""Custom exceptions for notegraph.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Every failure a mutation can
report maps onto one of these classes, so callers never need to
inspect driver-level exceptions.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_ALREADY_EXISTS = 1003
    INVALID_REFERENCE = 1006

    # Link errors (2xxx)
    LINK_ALREADY_EXISTS = 2002
    LINK_NOT_FOUND = 2003
    LINK_ILLEGAL_TRANSITION = 2005

    # Storage errors (4xxx)
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001

    # Content errors (8xxx)
    CONTENT_PARSE_FAILED = 8001

    # Control flow (9xxx)
    OPERATION_CANCELLED = 9001


class NotegraphError(Exception):
    """Base exception for all notegraph errors.

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


class NotFoundError(NotegraphError):
    """Raised when an addressed entity does not exist."""

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        entity_id: Optional[Any] = None,
        code: ErrorCode = ErrorCode.NOTE_NOT_FOUND
    ):
        details = {}
        if entity:
            details["entity"] = entity
        if entity_id is not None:
            details["id"] = entity_id
        super().__init__(message, code=code, details=details)
        self.entity = entity
        self.entity_id = entity_id


class NoteNotFoundError(NotFoundError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: Any, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            entity="note",
            entity_id=note_id,
            code=ErrorCode.NOTE_NOT_FOUND
        )
        self.note_id = note_id


class LinkNotFoundError(NotFoundError):
    """Raised when a link cannot be found."""

    def __init__(self, link_id: int, message: Optional[str] = None):
        super().__init__(
            message or f"Link with ID '{link_id}' not found",
            entity="link",
            entity_id=link_id,
            code=ErrorCode.LINK_NOT_FOUND
        )
        self.link_id = link_id


class AlreadyExistsError(NotegraphError):
    """Raised when a write would violate a uniqueness constraint.

    For notes this is the (collection_id, title) pair or the uuid.
    """

    def __init__(
        self,
        message: str,
        title: Optional[str] = None,
        collection_id: Optional[int] = None,
        original_error: Optional[Exception] = None,
        code: ErrorCode = ErrorCode.NOTE_ALREADY_EXISTS
    ):
        details: Dict[str, Any] = {}
        if title is not None:
            details["title"] = title[:100]
        if collection_id is not None:
            details["collection_id"] = collection_id
        super().__init__(message, code=code, details=details)
        self.title = title
        self.collection_id = collection_id
        self.original_error = original_error


class LinkAlreadyExistsError(AlreadyExistsError):
    """Raised when a source note already has an identical resolved link."""

    def __init__(
        self,
        message: str,
        source_id: Optional[int] = None,
        target: Optional[Any] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(
            message, original_error=original_error, code=ErrorCode.LINK_ALREADY_EXISTS
        )
        if source_id is not None:
            self.details["source_id"] = source_id
        if target is not None:
            self.details["target"] = str(target)[:100]
        self.source_id = source_id
        self.target = target


class InvalidReferenceError(NotegraphError):
    """Raised when a write names a collection, note type or note that does not exist."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]
        super().__init__(message, code=ErrorCode.INVALID_REFERENCE, details=details)
        self.field = field
        self.value = value
        self.original_error = original_error


class ParseFailureError(NotegraphError):
    """Raised when a note body cannot be parsed (e.g. malformed front-matter)."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=ErrorCode.CONTENT_PARSE_FAILED, details=details)
        self.original_error = original_error


class InternalError(NotegraphError):
    """Raised for storage failures that are not constraint violations.

    The underlying exception is kept in ``original_error`` and is also
    chained as ``__cause__`` by the code that raises this.
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_WRITE_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error


class LinkStateError(NotegraphError):
    """Raised when a link transition is not allowed from its current state."""

    def __init__(
        self,
        message: str,
        link_id: Optional[int] = None,
        current_state: Optional[str] = None,
        requested_state: Optional[str] = None
    ):
        details: Dict[str, Any] = {}
        if link_id is not None:
            details["link_id"] = link_id
        if current_state:
            details["current_state"] = current_state
        if requested_state:
            details["requested_state"] = requested_state
        super().__init__(message, code=ErrorCode.LINK_ILLEGAL_TRANSITION, details=details)
        self.link_id = link_id
        self.current_state = current_state
        self.requested_state = requested_state


class OperationCancelledError(NotegraphError):
    """Raised when a caller cancels a mutation before it commits."""

    def __init__(self, operation: str, note_id: Optional[Any] = None):
        details: Dict[str, Any] = {"operation": operation}
        if note_id is not None:
            details["note_id"] = note_id
        super().__init__(
            f"{operation} cancelled before commit",
            code=ErrorCode.OPERATION_CANCELLED,
            details=details
        )
        self.operation = operation
        self.note_id = note_id
