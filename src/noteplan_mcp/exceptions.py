"""Custom exceptions for the NotePlan MCP server.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Every predictable failure is raised
as a NotePlanError subclass so the tool boundary can turn it into a
structured result with a code, a hint and a suggested follow-up tool.
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Lookup errors (1xxx)
    NOT_FOUND = 1001
    AMBIGUOUS_TARGET = 1002
    NOTE_IN_TRASH = 1003
    NOT_IN_TRASH = 1004

    # Argument errors (2xxx)
    INVALID_ARGUMENT = 2001
    INVALID_LINE_REFERENCE = 2002
    QUERY_REQUIRED = 2003
    UNSUPPORTED_TARGET = 2004

    # Mutation safety (3xxx)
    EMPTY_CONTENT_BLOCKED = 3001
    CONFIRMATION_REQUIRED = 3002
    CONFIRMATION_INVALID = 3003
    FULL_REPLACE_CONFIRMATION_REQUIRED = 3004
    CONFLICT = 3005

    # Storage errors (4xxx)
    STORAGE_FAILED = 4001
    SPACE_UNAVAILABLE = 4002

    # Search errors (5xxx)
    TIMEOUT = 5001
    BACKEND_UNAVAILABLE = 5002

    # Generic (9xxx)
    TOOL_EXECUTION = 9001


class NotePlanError(Exception):
    """Base exception for all NotePlan errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    # Follow-up guidance surfaced to the caller alongside the error
    hint: Optional[str] = None
    suggested_tool: Optional[str] = None
    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INVALID_ARGUMENT,
        details: Optional[Dict[str, Any]] = None,
        hint: Optional[str] = None,
        suggested_tool: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        if hint is not None:
            self.hint = hint
        if suggested_tool is not None:
            self.suggested_tool = suggested_tool
        super().__init__(message)

    @property
    def tool_code(self) -> str:
        """Code string used in tool result envelopes, e.g. ``ERR_NOT_FOUND``."""
        return f"ERR_{self.code.name}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class NoteNotFoundError(NotePlanError):
    """Raised when a note cannot be found."""

    hint = "Use noteplan_resolve_note or noteplan_search to find the canonical note first."
    suggested_tool = "noteplan_resolve_note"

    def __init__(self, reference: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note not found: {reference}",
            code=ErrorCode.NOT_FOUND,
            details={"reference": reference[:100]},
        )
        self.reference = reference


class FolderNotFoundError(NotePlanError):
    """Raised when a folder cannot be found."""

    hint = "Use noteplan_list_folders or noteplan_resolve_folder to pick an existing folder."
    suggested_tool = "noteplan_resolve_folder"

    def __init__(self, folder: str, message: Optional[str] = None):
        super().__init__(
            message or f"Folder not found: {folder}",
            code=ErrorCode.NOT_FOUND,
            details={"folder": folder[:100]},
        )
        self.folder = folder


class AmbiguousTargetError(NotePlanError):
    """Raised when a reference matches several targets equally well."""

    hint = "Pass an exact id or filename from the candidate list."
    suggested_tool = "noteplan_resolve_note"

    def __init__(
        self,
        message: str,
        options: Optional[List[str]] = None,
    ):
        details: Dict[str, Any] = {}
        if options:
            details["options"] = options[:10]
        super().__init__(message, code=ErrorCode.AMBIGUOUS_TARGET, details=details)
        self.options = list(options) if options else []


class InvalidArgumentError(NotePlanError):
    """Raised for malformed or contradictory arguments."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.INVALID_ARGUMENT,
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]
        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class InvalidLineReferenceError(NotePlanError):
    """Raised when a line number or range does not exist in the note."""

    hint = "Call noteplan_get_paragraphs to refresh line numbers before editing."
    suggested_tool = "noteplan_get_paragraphs"

    def __init__(self, message: str, line: Optional[int] = None, line_count: Optional[int] = None):
        details: Dict[str, Any] = {}
        if line is not None:
            details["line"] = line
        if line_count is not None:
            details["line_count"] = line_count
        super().__init__(message, code=ErrorCode.INVALID_LINE_REFERENCE, details=details)


class EmptyContentBlockedError(NotePlanError):
    """Raised when a write would leave a note (or line) empty."""

    hint = "Pass allow_empty_content=true if clearing the content is intended."

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCode.EMPTY_CONTENT_BLOCKED)


class ConfirmationRequiredError(NotePlanError):
    """Raised when a destructive operation is executed without a token."""

    def __init__(self, message: str, tool: str, code: ErrorCode = ErrorCode.CONFIRMATION_REQUIRED):
        super().__init__(message, code=code, details={"tool": tool})
        self.hint = f"Call {tool} with dry_run=true first, then retry with the returned confirmation_token."
        self.suggested_tool = tool


class ConfirmationInvalidError(NotePlanError):
    """Raised when a presented token is unknown, expired, or bound elsewhere."""

    def __init__(self, message: str, tool: str, reason: str):
        super().__init__(
            message,
            code=ErrorCode.CONFIRMATION_INVALID,
            details={"tool": tool, "reason": reason},
        )
        self.reason = reason
        self.hint = f"Call {tool} with dry_run=true to get a new confirmation_token."
        self.suggested_tool = tool


class UnsupportedTargetError(NotePlanError):
    """Raised when an operation does not support the note's source or type."""

    def __init__(self, message: str):
        super().__init__(message, code=ErrorCode.UNSUPPORTED_TARGET)


class NoteInTrashError(NotePlanError):
    """Raised when editing a trashed note without explicitly allowing it."""

    hint = "Restore the note with noteplan_restore_note before editing it."
    suggested_tool = "noteplan_restore_note"

    def __init__(self, reference: str):
        super().__init__(
            f"Note is in trash: {reference}",
            code=ErrorCode.NOTE_IN_TRASH,
            details={"reference": reference[:100]},
        )


class NotInTrashError(NotePlanError):
    """Raised when restoring a note that is not in the trash."""

    def __init__(self, reference: str):
        super().__init__(
            f"Local note is not in @Trash: {reference}",
            code=ErrorCode.NOT_IN_TRASH,
            details={"reference": reference[:100]},
        )


class ConflictError(NotePlanError):
    """Raised when an expected_hash precondition does not match the stored note."""

    hint = "Re-read the note with noteplan_get_note and retry with the new content_hash."
    suggested_tool = "noteplan_get_note"

    def __init__(self, reference: str, expected_hash: str, actual_hash: str):
        super().__init__(
            f"Note changed since it was read: {reference}",
            code=ErrorCode.CONFLICT,
            details={
                "reference": reference[:100],
                "expected_hash": expected_hash,
                "actual_hash": actual_hash,
            },
        )
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash


class StorageError(NotePlanError):
    """Raised for storage/persistence errors."""

    retryable = True

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_FAILED,
        original_error: Optional[Exception] = None,
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class BackendUnavailableError(NotePlanError):
    """Uniform failure signal raised by a content search backend."""

    def __init__(self, backend: str, message: str, failed: bool = False):
        super().__init__(
            message,
            code=ErrorCode.BACKEND_UNAVAILABLE,
            details={"backend": backend, "failed": failed},
        )
        self.backend = backend
        # False: backend is absent on this host; True: it ran and failed
        self.failed = failed

