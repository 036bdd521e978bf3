"""MCP server implementation for NotePlan."""

import json
import logging
import re
import uuid
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from mcp.server.fastmcp import FastMCP

from noteplan_mcp.config import config
from noteplan_mcp.exceptions import ErrorCode, InvalidArgumentError, NotePlanError
from noteplan_mcp.models.db_models import init_db
from noteplan_mcp.models.schema import (InsertPosition, NoteReference, NoteType, QueryMode,
                                        SearchField, SearchOptions, TaskStatus)
from noteplan_mcp.observability import metrics, timed_operation
from noteplan_mcp.services.confirmation import ConfirmationGate
from noteplan_mcp.services.listing_cache import ListingCache
from noteplan_mcp.services.note_service import NoteService
from noteplan_mcp.services.note_store import NoteStore
from noteplan_mcp.services.resolver import ReferenceResolver
from noteplan_mcp.services.ripgrep_search import RipgrepSearch
from noteplan_mcp.services.search_service import SearchService
from noteplan_mcp.storage.local_store import LocalNoteStore
from noteplan_mcp.storage.space_store import SpaceStore
from noteplan_mcp.utils import to_optional_boolean

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 500
MAX_CONTENT_LENGTH = 1_000_000  # 1 MB

E = TypeVar("E", bound=Enum)

# (pattern, code, hint, suggested tool, retryable) for errors raised outside
# the NotePlanError hierarchy
_ERROR_PATTERNS = [
    (
        re.compile(r"not found|no such file|does not exist", re.I),
        ErrorCode.NOT_FOUND,
        "Use noteplan_resolve_note or noteplan_search to find the canonical note first.",
        "noteplan_resolve_note",
        False,
    ),
    (
        re.compile(r"timed? ?out|timeout", re.I),
        ErrorCode.TIMEOUT,
        "Narrow the query or add folder/space filters and retry.",
        None,
        True,
    ),
    (
        re.compile(r"database is locked|busy", re.I),
        ErrorCode.STORAGE_FAILED,
        "The store is busy; retry shortly.",
        None,
        True,
    ),
    (
        re.compile(r"permission denied|read-only|not permitted", re.I),
        ErrorCode.STORAGE_FAILED,
        "Check that the NotePlan storage path is writable.",
        None,
        False,
    ),
    (
        re.compile(r"confirmation", re.I),
        ErrorCode.CONFIRMATION_REQUIRED,
        "Run the tool with dry_run=true first, then pass the returned confirmation_token.",
        None,
        False,
    ),
    (
        re.compile(r"invalid|must be|required", re.I),
        ErrorCode.INVALID_ARGUMENT,
        "Check the tool arguments and retry.",
        None,
        False,
    ),
]


def infer_error_meta(message: str) -> Dict[str, Any]:
    """Best-effort code/hint/tool/retryable for an unexpected error message."""
    for pattern, code, hint, tool, retryable in _ERROR_PATTERNS:
        if pattern.search(message or ""):
            return {
                "code": f"ERR_{code.name}",
                "hint": hint,
                "suggestedTool": tool,
                "retryable": retryable,
            }
    return {
        "code": f"ERR_{ErrorCode.TOOL_EXECUTION.name}",
        "hint": None,
        "suggestedTool": None,
        "retryable": False,
    }


def _validate_input_lengths(
    title: Optional[str] = None, content: Optional[str] = None
) -> None:
    """Validate input string lengths at the MCP boundary."""
    if title and len(title) > MAX_TITLE_LENGTH:
        raise InvalidArgumentError(
            f"Title exceeds maximum length of {MAX_TITLE_LENGTH} characters", field="title"
        )
    if content and len(content) > MAX_CONTENT_LENGTH:
        raise InvalidArgumentError(
            f"Content exceeds maximum length of {MAX_CONTENT_LENGTH} characters",
            field="content",
        )


def _envelope(payload: Dict[str, Any]) -> str:
    return json.dumps({"success": True, **payload}, ensure_ascii=False, default=str)


def _parse_enum(enum_cls: Type[E], value: Optional[str], field: str) -> Optional[E]:
    if value is None or not str(value).strip():
        return None
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        valid = ", ".join(e.value for e in enum_cls)
        raise InvalidArgumentError(
            f"Invalid {field}: {value}. Valid values are: {valid}", field=field, value=value
        )


def _parse_types(types: Optional[str]) -> Optional[List[NoteType]]:
    """Comma-separated note types to a list, or None for all types."""
    if not types:
        return None
    parsed = [_parse_enum(NoteType, t, "types") for t in types.split(",") if t.strip()]
    return [t for t in parsed if t is not None] or None


class NotePlanMcpServer:
    """MCP server for a NotePlan store."""

    def __init__(self, engine=None, storage_root: Optional[Path] = None):
        """Initialize the MCP server.

        Args:
            engine: Pre-configured SQLAlchemy engine for the spaces store.
                    When None, one is created from the configured database path.
            storage_root: Root of the local NotePlan tree. Defaults to config.
        """
        self.mcp = FastMCP(config.server_name)
        engine = engine if engine is not None else init_db()

        # The cache and gate are shared by reference across services
        self.cache = ListingCache()
        self.gate = ConfirmationGate(ttl_seconds=config.confirmation_ttl)
        self.local_store = LocalNoteStore(storage_root)
        self.space_store = SpaceStore(engine)
        self.store = NoteStore(self.local_store, self.space_store, self.cache)
        self.ripgrep = RipgrepSearch()
        self.resolver = ReferenceResolver(self.store)
        self.search_service = SearchService(self.store, ripgrep=self.ripgrep)
        self.note_service = NoteService(self.store, self.gate, self.resolver)
        self.initialize()
        self._register_tools()

    def initialize(self) -> None:
        """Initialize services."""
        logger.info(f"NotePlan MCP server initialized (storage: {self.local_store.root})")

    def format_error_response(self, error: Exception, op: Optional[Dict[str, Any]] = None) -> str:
        """Format an error as a structured failure envelope.

        Args:
            error: The exception that occurred
            op: The ``timed_operation`` info dict, marked as failed when given

        Returns:
            JSON string with ``success: false``, a code and follow-up guidance
        """
        # Generate a unique error ID for traceability in logs
        error_id = str(uuid.uuid4())[:8]

        if isinstance(error, NotePlanError):
            logger.warning(
                f"[{error.code.name}] [{error_id}]: {error.message}",
                extra={"error_details": error.details},
            )
            payload: Dict[str, Any] = {
                "success": False,
                "error": error.message,
                "code": error.tool_code,
            }
            if error.hint:
                payload["hint"] = error.hint
            if error.suggested_tool:
                payload["suggestedTool"] = error.suggested_tool
            if error.retryable:
                payload["retryable"] = True
            if error.details:
                payload["details"] = error.details
        else:
            meta = infer_error_meta(str(error))
            if isinstance(error, (IOError, OSError)):
                # Don't expose paths or detailed error messages
                logger.error(f"File system error [{error_id}]: {str(error)}", exc_info=True)
                message = f"A file system error occurred (ref: {error_id})"
            elif isinstance(error, ValueError):
                logger.error(f"Validation error [{error_id}]: {str(error)}")
                message = f"Invalid input (ref: {error_id})"
                meta["code"] = f"ERR_{ErrorCode.INVALID_ARGUMENT.name}"
            else:
                logger.error(f"Unexpected error [{error_id}]: {str(error)}", exc_info=True)
                message = f"An unexpected error occurred (ref: {error_id})"
            payload = {"success": False, "error": message, "code": meta["code"]}
            if meta["hint"]:
                payload["hint"] = meta["hint"]
            if meta["suggestedTool"]:
                payload["suggestedTool"] = meta["suggestedTool"]
            if meta["retryable"]:
                payload["retryable"] = True

        if op is not None:
            op["success"] = False
            op["error_code"] = payload["code"]
        return json.dumps(payload, ensure_ascii=False, default=str)

    def _register_tools(self) -> None:
        """Register MCP tools."""

        # ------------------------------------------------------------------
        # Resolution and search
        # ------------------------------------------------------------------

        @self.mcp.tool(name="noteplan_resolve_note")
        def noteplan_resolve_note(
            query: str,
            folder: Optional[str] = None,
            space: Optional[str] = None,
            types: Optional[str] = None,
            limit: int = 5,
            min_score: Optional[float] = None,
            ambiguity_delta: Optional[float] = None,
        ) -> str:
            """Resolve a loose reference (title, filename, date, id) to one canonical note.
            Args:
                query: What the user called the note
                folder: Restrict to a folder (relative to Notes/)
                space: Space id or name to search instead of the local tree
                types: Comma-separated note types (note, calendar)
                limit: Maximum candidates to return (1-20)
                min_score: Minimum top score to count as resolved (default 0.88)
                ambiguity_delta: Minimum lead over the runner-up (default 0.06)
            """
            with timed_operation("noteplan_resolve_note", query=query[:30]) as op:
                try:
                    result = self.resolver.resolve_note(
                        query,
                        folder=folder,
                        space=space,
                        types=_parse_types(types),
                        limit=limit,
                        min_score=min_score,
                        ambiguity_delta=ambiguity_delta,
                    )
                    op["resolved"] = result.resolved is not None
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_resolve_folder")
        def noteplan_resolve_folder(
            query: str,
            space: Optional[str] = None,
            limit: int = 5,
            min_score: Optional[float] = None,
            ambiguity_delta: Optional[float] = None,
        ) -> str:
            """Resolve a loose folder name to one canonical folder path.
            Args:
                query: Folder name or partial path
                space: Space id or name to resolve within
                limit: Maximum candidates to return (1-20)
                min_score: Minimum top score to count as resolved
                ambiguity_delta: Minimum lead over the runner-up
            """
            with timed_operation("noteplan_resolve_folder", query=query[:30]) as op:
                try:
                    result = self.resolver.resolve_folder(
                        query,
                        space=space,
                        limit=limit,
                        min_score=min_score,
                        ambiguity_delta=ambiguity_delta,
                    )
                    op["resolved"] = result.resolved is not None
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_search")
        def noteplan_search(
            query: str,
            search_field: str = "content",
            query_mode: Optional[str] = None,
            case_sensitive: bool = False,
            fuzzy: bool = False,
            types: Optional[str] = None,
            folder: Optional[str] = None,
            space: Optional[str] = None,
            limit: int = 20,
            context_lines: int = 0,
            modified_after: Optional[str] = None,
            modified_before: Optional[str] = None,
            created_after: Optional[str] = None,
            created_before: Optional[str] = None,
            property_filters: Optional[Dict[str, str]] = None,
            property_case_sensitive: bool = False,
        ) -> str:
            """Search notes by content or metadata.
            Args:
                query: Search text; use "a|b" to match either term
                search_field: content, title, filename or title_or_filename
                query_mode: phrase, smart, any or all (default: phrase, or any for "a|b")
                case_sensitive: Match case exactly
                fuzzy: Typo-tolerant ranking on titles and content
                types: Comma-separated note types (note, calendar, trash)
                folder: Restrict to a folder (relative to Notes/)
                space: Space id or name
                limit: Maximum results (1-200)
                context_lines: Context lines around content matches (0-5)
                modified_after: today, last week, this month, YYYY-MM-DD, ...
                modified_before: Same formats; inclusive of the whole period
                created_after: Same formats as modified_after
                created_before: Same formats as modified_before
                property_filters: Frontmatter key/value pairs that must all match
                property_case_sensitive: Compare property keys and values exactly
            """
            with timed_operation("noteplan_search", query=query[:30]) as op:
                try:
                    options = SearchOptions(
                        search_field=_parse_enum(SearchField, search_field, "search_field")
                        or SearchField.CONTENT,
                        query_mode=_parse_enum(QueryMode, query_mode, "query_mode"),
                        case_sensitive=case_sensitive,
                        fuzzy=fuzzy,
                        types=_parse_types(types),
                        folder=folder,
                        space=space,
                        limit=limit,
                        context_lines=context_lines,
                        modified_after=modified_after,
                        modified_before=modified_before,
                        created_after=created_after,
                        created_before=created_before,
                        property_filters=property_filters or {},
                        property_case_sensitive=property_case_sensitive,
                    )
                    response = self.search_service.search(query, options)
                    op["result_count"] = len(response.results)
                    op["backend"] = response.backend
                    payload: Dict[str, Any] = {
                        "query": query,
                        "backend": response.backend,
                        "partialResults": response.partial_results,
                        "count": len(response.results),
                        "results": [r.to_dict() for r in response.results],
                    }
                    if response.warnings:
                        payload["warnings"] = response.warnings
                    return _envelope(payload)
                except Exception as e:
                    return self.format_error_response(e, op)

        # ------------------------------------------------------------------
        # Reading
        # ------------------------------------------------------------------

        @self.mcp.tool(name="noteplan_get_note")
        def noteplan_get_note(
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            include_content: bool = True,
        ) -> str:
            """Get one note. Reference priority: id > filename > date > title > query.
            Args:
                id: Space note id or local relative filename
                filename: Relative filename (e.g. Notes/Projects/Plan.md)
                date: Calendar date (today, yesterday, tomorrow, YYYY-MM-DD, YYYYMMDD)
                title: Exact title
                query: Loose reference; must resolve to one note
                space: Space id or name
                include_content: Return the note text as well as metadata
            Returns:
                Metadata plus contentHash; pass contentHash as expected_hash to
                mutating tools to refuse writes when the note changed meanwhile.
            """
            with timed_operation("noteplan_get_note") as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    note = self.note_service.get_note(ref)
                    op["note_id"] = note.id
                    payload = note.summary()
                    payload["contentHash"] = note.content_hash
                    payload["lineCount"] = len(note.content.split("\n"))
                    if include_content:
                        payload["content"] = note.content
                    return _envelope({"note": payload})
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_list_notes")
        def noteplan_list_notes(
            folder: Optional[str] = None,
            space: Optional[str] = None,
            types: Optional[str] = None,
            query: Optional[str] = None,
            limit: int = 50,
            offset: int = 0,
            cursor: Optional[str] = None,
        ) -> str:
            """List notes newest first, with paging.
            Args:
                folder: Restrict to a folder (relative to Notes/)
                space: Space id or name
                types: Comma-separated note types
                query: Case-insensitive title/filename substring filter
                limit: Page size (1-200)
                offset: Start index
                cursor: nextCursor from a previous page (overrides offset)
            """
            with timed_operation("noteplan_list_notes") as op:
                try:
                    page = self.note_service.list_notes(
                        folder=folder,
                        space=space,
                        types=_parse_types(types),
                        query=query,
                        limit=limit,
                        offset=offset,
                        cursor=cursor,
                    )
                    op["result_count"] = page["count"]
                    return _envelope(page)
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_get_paragraphs")
        def noteplan_get_paragraphs(
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            start_line: Optional[int] = None,
            end_line: Optional[int] = None,
            limit: Optional[int] = None,
            offset: Optional[int] = None,
            cursor: Optional[str] = None,
        ) -> str:
            """Read a note as typed, numbered lines, paginated.
            Args:
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose reference
                space: Space id or name
                start_line: First line of the range (1-based)
                end_line: Last line of the range (inclusive)
                limit: Lines per page (default 200, max 1000)
                offset: Offset within the range
                cursor: nextCursor from a previous page
            """
            with timed_operation("noteplan_get_paragraphs") as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    note, window, hints = self.note_service.get_paragraphs(
                        ref, start_line, end_line, limit, offset, cursor
                    )
                    op["returned_lines"] = window.returned_line_count
                    payload = {
                        "note": note.summary(),
                        "contentHash": note.content_hash,
                        **window.to_dict(),
                    }
                    if hints:
                        payload["performanceHints"] = hints
                    return _envelope(payload)
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_search_paragraphs")
        def noteplan_search_paragraphs(
            search: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            case_sensitive: bool = False,
            context_lines: int = 0,
            limit: int = 20,
        ) -> str:
            """Find lines inside one note, with paragraph bounds and line numbers.
            Args:
                search: Text to find inside the note
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                case_sensitive: Match case exactly
                context_lines: Lines of context on each side (0-5)
                limit: Maximum matching lines (1-200)
            """
            with timed_operation("noteplan_search_paragraphs", search=search[:30]) as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    note, matches = self.note_service.search_paragraphs(
                        ref, search, case_sensitive, context_lines, limit
                    )
                    op["result_count"] = len(matches)
                    return _envelope(
                        {"note": note.summary(), "count": len(matches), "matches": matches}
                    )
                except Exception as e:
                    return self.format_error_response(e, op)

        # ------------------------------------------------------------------
        # Content edits
        # ------------------------------------------------------------------

        @self.mcp.tool(name="noteplan_insert_content")
        def noteplan_insert_content(
            content: str,
            position: str = "end",
            heading: Optional[str] = None,
            line: Optional[int] = None,
            indentation_style: Optional[str] = None,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Insert text into a note.
            Args:
                content: Text to insert (may span several lines)
                position: start, end, after-heading, in-section or at-line
                heading: Heading text for after-heading / in-section
                line: 1-based line for at-line (inserted before that line)
                indentation_style: tabs (default, retabs space-indented lists) or preserve
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_insert_content", position=position) as op:
                try:
                    _validate_input_lengths(content=content)
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.insert_content(
                        ref,
                        content,
                        _parse_enum(InsertPosition, position, "position") or InsertPosition.END,
                        heading=heading,
                        line=line,
                        indentation_style=indentation_style,
                        expected_hash=expected_hash,
                    )
                    op["line_delta"] = result.line_delta
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_append_content")
        def noteplan_append_content(
            content: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            indentation_style: Optional[str] = None,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Append text to the end of a note.
            Args:
                content: Text to append
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                indentation_style: tabs (default) or preserve
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_append_content") as op:
                try:
                    _validate_input_lengths(content=content)
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.append_content(
                        ref, content, indentation_style=indentation_style, expected_hash=expected_hash
                    )
                    op["line_delta"] = result.line_delta
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_edit_line")
        def noteplan_edit_line(
            line: int,
            content: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            allow_empty_content: bool = False,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Replace the text of a single line.
            Args:
                line: 1-based line number
                content: New text for the line (single line)
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                allow_empty_content: Allow the note to become empty
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_edit_line", line=line) as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.edit_line(
                        ref, line, content, allow_empty_content, expected_hash
                    )
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_replace_lines")
        def noteplan_replace_lines(
            start_line: int,
            end_line: int,
            content: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            dry_run: bool = False,
            confirmation_token: Optional[str] = None,
            allow_empty_content: bool = False,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Replace an inclusive line range. Requires a dry run first.
            Args:
                start_line: First line to replace (1-based)
                end_line: Last line to replace (inclusive)
                content: Replacement text (may span several lines)
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                dry_run: Preview and get a confirmation_token without writing
                confirmation_token: Token from the dry run
                allow_empty_content: Allow the note to become empty
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_replace_lines", dry_run=dry_run) as op:
                try:
                    _validate_input_lengths(content=content)
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.replace_lines(
                        ref,
                        start_line,
                        end_line,
                        content,
                        dry_run=dry_run,
                        confirmation_token=confirmation_token,
                        allow_empty_content=allow_empty_content,
                        expected_hash=expected_hash,
                    )
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_delete_lines")
        def noteplan_delete_lines(
            start_line: int,
            end_line: int,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            dry_run: bool = False,
            confirmation_token: Optional[str] = None,
            allow_empty_content: bool = False,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Delete an inclusive line range. Requires a dry run first.
            Args:
                start_line: First line to delete (1-based)
                end_line: Last line to delete (inclusive)
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                dry_run: Preview and get a confirmation_token without writing
                confirmation_token: Token from the dry run
                allow_empty_content: Allow the note to become empty
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_delete_lines", dry_run=dry_run) as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.delete_lines(
                        ref,
                        start_line,
                        end_line,
                        dry_run=dry_run,
                        confirmation_token=confirmation_token,
                        allow_empty_content=allow_empty_content,
                        expected_hash=expected_hash,
                    )
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_update_note")
        def noteplan_update_note(
            content: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            dry_run: bool = False,
            confirmation_token: Optional[str] = None,
            allow_empty_content: bool = False,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Replace the whole content of a note. Requires a dry run first.
            Args:
                content: New full note text
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                dry_run: Preview and get a confirmation_token without writing
                confirmation_token: Token from the dry run
                allow_empty_content: Allow the note to become empty
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_update_note", dry_run=dry_run) as op:
                try:
                    _validate_input_lengths(content=content)
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.update_note(
                        ref,
                        content,
                        dry_run=dry_run,
                        confirmation_token=confirmation_token,
                        allow_empty_content=allow_empty_content,
                        expected_hash=expected_hash,
                    )
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_update_task")
        def noteplan_update_task(
            line: int,
            status: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Set the status of a task or checklist item.
            Args:
                line: 1-based line number of the task
                status: open, done, cancelled or scheduled
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_update_task", line=line, status=status) as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    task_status = _parse_enum(TaskStatus, status, "status")
                    if task_status is None:
                        raise InvalidArgumentError("status is required", field="status")
                    result = self.note_service.update_task(ref, line, task_status, expected_hash)
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_get_tasks")
        def noteplan_get_tasks(
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            status: Optional[str] = None,
        ) -> str:
            """List the tasks and checklist items of a note.
            Args:
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                status: Only tasks with this status (open, done, cancelled, scheduled)
            """
            with timed_operation("noteplan_get_tasks", status=status) as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    note, tasks = self.note_service.get_tasks(
                        ref, _parse_enum(TaskStatus, status, "status")
                    )
                    op["result_count"] = len(tasks)
                    return _envelope(
                        {"note": note.summary(), "taskCount": len(tasks), "tasks": tasks}
                    )
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_add_task")
        def noteplan_add_task(
            content: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            position: str = "end",
            heading: Optional[str] = None,
            status: Optional[str] = None,
            priority: Optional[int] = None,
            indent_level: int = 0,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Add a task line to a note. A date target creates the daily note if needed.
            Args:
                content: Task text (one line, without a marker or checkbox)
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date, e.g. today or 2024-01-15
                title: Exact title
                query: Loose note reference
                space: Space id or name
                position: start, end, after-heading or in-section
                heading: Heading text for after-heading / in-section
                status: Initial status; adds an explicit checkbox
                priority: 1-3, rendered as trailing !
                indent_level: Tab indentation for subtasks
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_add_task") as op:
                try:
                    _validate_input_lengths(content=content)
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.add_task(
                        ref,
                        content,
                        _parse_enum(InsertPosition, position, "position") or InsertPosition.END,
                        heading=heading,
                        status=_parse_enum(TaskStatus, status, "status"),
                        priority=priority,
                        indent_level=indent_level,
                        expected_hash=expected_hash,
                    )
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_complete_task")
        def noteplan_complete_task(
            line: int,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Mark the task on a line as done.
            Args:
                line: 1-based line number of the task
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_complete_task", line=line) as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.update_task(ref, line, TaskStatus.DONE, expected_hash)
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_set_property")
        def noteplan_set_property(
            key: str,
            value: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Set a frontmatter property, creating the frontmatter block if needed.
            Args:
                key: Property name
                value: Property value
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_set_property", key=key) as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.set_property(ref, key, value, expected_hash)
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_remove_property")
        def noteplan_remove_property(
            key: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            expected_hash: Optional[str] = None,
        ) -> str:
            """Remove a frontmatter property.
            Args:
                key: Property name
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                expected_hash: Refuse the write unless the note still has this contentHash
            """
            with timed_operation("noteplan_remove_property", key=key) as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.remove_property(ref, key, expected_hash)
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        # ------------------------------------------------------------------
        # Note lifecycle
        # ------------------------------------------------------------------

        @self.mcp.tool(name="noteplan_create_note")
        def noteplan_create_note(
            title: str,
            content: str = "",
            folder: Optional[str] = None,
            space: Optional[str] = None,
        ) -> str:
            """Create a project note.
            Args:
                title: Note title (also the filename for local notes)
                content: Initial body; a "# title" heading is added when missing
                folder: Target folder; close names are matched to existing folders
                space: Space id or name to create the note in instead of the local tree
            """
            with timed_operation("noteplan_create_note", title=title[:30]) as op:
                try:
                    _validate_input_lengths(title=title, content=content)
                    result = self.note_service.create_note(title, content, folder, space)
                    op["note_id"] = result.note.id
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_delete_note")
        def noteplan_delete_note(
            id: Optional[str] = None,
            filename: Optional[str] = None,
            date: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            dry_run: bool = False,
            confirmation_token: Optional[str] = None,
        ) -> str:
            """Delete a note: local notes move to @Trash, space notes are removed.
            Args:
                id: Space note id or local relative filename
                filename: Relative filename
                date: Calendar date
                title: Exact title
                query: Loose note reference
                space: Space id or name
                dry_run: Preview and get a confirmation_token without deleting
                confirmation_token: Token from the dry run
            """
            with timed_operation("noteplan_delete_note", dry_run=dry_run) as op:
                try:
                    ref = NoteReference.from_args(id, filename, date, title, query, space)
                    result = self.note_service.delete_note(ref, dry_run, confirmation_token)
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_move_note")
        def noteplan_move_note(
            destination_folder: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            dry_run: bool = False,
            confirmation_token: Optional[str] = None,
        ) -> str:
            """Move a local note into another folder under Notes/.
            Args:
                destination_folder: Existing folder relative to Notes/
                id: Local relative filename
                filename: Relative filename
                title: Exact title
                query: Loose note reference
                dry_run: Preview and get a confirmation_token without moving
                confirmation_token: Token from the dry run
            """
            with timed_operation("noteplan_move_note", dry_run=dry_run) as op:
                try:
                    ref = NoteReference.from_args(id=id, filename=filename, title=title, query=query)
                    result = self.note_service.move_note(
                        ref, destination_folder, dry_run, confirmation_token
                    )
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_restore_note")
        def noteplan_restore_note(
            filename: str,
            destination_folder: Optional[str] = None,
            dry_run: bool = False,
            confirmation_token: Optional[str] = None,
        ) -> str:
            """Restore a local note from @Trash.
            Args:
                filename: Trashed filename (e.g. @Trash/Plan.md)
                destination_folder: Folder relative to Notes/ (default: Notes/)
                dry_run: Preview and get a confirmation_token without moving
                confirmation_token: Token from the dry run
            """
            with timed_operation("noteplan_restore_note", dry_run=dry_run) as op:
                try:
                    ref = NoteReference.from_args(filename=filename)
                    result = self.note_service.restore_note(
                        ref, destination_folder, dry_run, confirmation_token
                    )
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_rename_note")
        def noteplan_rename_note(
            new_title: str,
            id: Optional[str] = None,
            filename: Optional[str] = None,
            title: Optional[str] = None,
            query: Optional[str] = None,
            space: Optional[str] = None,
            dry_run: bool = False,
            confirmation_token: Optional[str] = None,
        ) -> str:
            """Rename a note (local file rename, or space title change).
            Args:
                new_title: New title
                id: Space note id or local relative filename
                filename: Relative filename
                title: Exact current title
                query: Loose note reference
                space: Space id or name
                dry_run: Preview and get a confirmation_token without renaming
                confirmation_token: Token from the dry run
            """
            with timed_operation("noteplan_rename_note", dry_run=dry_run) as op:
                try:
                    _validate_input_lengths(title=new_title)
                    ref = NoteReference.from_args(
                        id=id, filename=filename, title=title, query=query, space=space
                    )
                    result = self.note_service.rename_note(ref, new_title, dry_run, confirmation_token)
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        # ------------------------------------------------------------------
        # Folders
        # ------------------------------------------------------------------

        @self.mcp.tool(name="noteplan_list_folders")
        def noteplan_list_folders(
            space: Optional[str] = None,
            include_local: Optional[Union[bool, str]] = None,
            include_spaces: Optional[Union[bool, str]] = None,
            query: Optional[str] = None,
            max_depth: Optional[int] = None,
            parent_path: Optional[str] = None,
            recursive: bool = True,
        ) -> str:
            """List folders in the local tree and/or spaces.
            Args:
                space: Space id or name
                include_local: Include local folders (default: when no space is given)
                include_spaces: Include space folders (default: when a space is given)
                query: Case-insensitive substring filter on path or name
                max_depth: Maximum local folder depth
                parent_path: Only folders under this path
                recursive: Include nested folders under parent_path
            """
            with timed_operation("noteplan_list_folders") as op:
                try:
                    folders = self.store.list_folders(
                        space=space,
                        include_local=to_optional_boolean(include_local),
                        include_spaces=to_optional_boolean(include_spaces),
                        query=query,
                        max_depth=max_depth,
                        parent_path=parent_path,
                        recursive=recursive,
                    )
                    op["result_count"] = len(folders)
                    return _envelope(
                        {"count": len(folders), "folders": [f.summary() for f in folders]}
                    )
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_create_folder")
        def noteplan_create_folder(
            name: str,
            parent: Optional[str] = None,
            space: Optional[str] = None,
        ) -> str:
            """Create a folder.
            Args:
                name: Folder name
                parent: Parent folder path
                space: Space id or name (default: local tree)
            """
            with timed_operation("noteplan_create_folder", name=name[:30]) as op:
                try:
                    return _envelope(self.note_service.create_folder(name, parent, space))
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_move_folder")
        def noteplan_move_folder(
            folder: str,
            destination_parent: Optional[str] = None,
            dry_run: bool = False,
            confirmation_token: Optional[str] = None,
        ) -> str:
            """Move a local folder under another folder.
            Args:
                folder: Folder path relative to Notes/
                destination_parent: New parent folder (default: top of Notes/)
                dry_run: Preview and get a confirmation_token without moving
                confirmation_token: Token from the dry run
            """
            with timed_operation("noteplan_move_folder", dry_run=dry_run) as op:
                try:
                    result = self.note_service.move_folder(
                        folder, destination_parent, dry_run, confirmation_token
                    )
                    return _envelope(result if isinstance(result, dict) else result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_rename_folder")
        def noteplan_rename_folder(
            folder: str,
            new_name: str,
            dry_run: bool = False,
            confirmation_token: Optional[str] = None,
        ) -> str:
            """Rename a local folder.
            Args:
                folder: Folder path relative to Notes/
                new_name: New folder name
                dry_run: Preview and get a confirmation_token without renaming
                confirmation_token: Token from the dry run
            """
            with timed_operation("noteplan_rename_folder", dry_run=dry_run) as op:
                try:
                    result = self.note_service.rename_folder(
                        folder, new_name, dry_run, confirmation_token
                    )
                    return _envelope(result if isinstance(result, dict) else result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_delete_folder")
        def noteplan_delete_folder(
            folder: str,
            dry_run: bool = False,
            confirmation_token: Optional[str] = None,
        ) -> str:
            """Move a local folder and its notes to @Trash.
            Args:
                folder: Folder path relative to Notes/
                dry_run: Preview and get a confirmation_token without deleting
                confirmation_token: Token from the dry run
            """
            with timed_operation("noteplan_delete_folder", dry_run=dry_run) as op:
                try:
                    result = self.note_service.delete_folder(folder, dry_run, confirmation_token)
                    return _envelope(result if isinstance(result, dict) else result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        # ------------------------------------------------------------------
        # Calendar
        # ------------------------------------------------------------------

        @self.mcp.tool(name="noteplan_get_calendar_note")
        def noteplan_get_calendar_note(
            date: str = "today",
            space: Optional[str] = None,
            create_if_missing: bool = False,
        ) -> str:
            """Get a daily note.
            Args:
                date: today, yesterday, tomorrow, YYYY-MM-DD or YYYYMMDD
                space: Space id or name
                create_if_missing: Create an empty daily note when none exists
            """
            with timed_operation("noteplan_get_calendar_note", date=date) as op:
                try:
                    created = False
                    if create_if_missing:
                        note, created = self.note_service.ensure_calendar_note(date, space)
                    else:
                        note = self.note_service.get_calendar_note(date, space)
                    payload = note.summary()
                    payload["contentHash"] = note.content_hash
                    payload["content"] = note.content
                    return _envelope({"note": payload, "created": created})
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_add_to_today")
        def noteplan_add_to_today(
            content: str,
            position: str = "end",
            heading: Optional[str] = None,
            space: Optional[str] = None,
        ) -> str:
            """Add text to today's daily note, creating it if needed.
            Args:
                content: Text to add
                position: start, end, after-heading or in-section
                heading: Heading text for after-heading / in-section
                space: Space id or name
            """
            with timed_operation("noteplan_add_to_today") as op:
                try:
                    _validate_input_lengths(content=content)
                    result = self.note_service.add_to_today(
                        content,
                        _parse_enum(InsertPosition, position, "position") or InsertPosition.END,
                        heading=heading,
                        space=space,
                    )
                    return _envelope(result.to_dict())
                except Exception as e:
                    return self.format_error_response(e, op)

        # ------------------------------------------------------------------
        # Spaces, tags, status
        # ------------------------------------------------------------------

        @self.mcp.tool(name="noteplan_list_spaces")
        def noteplan_list_spaces() -> str:
            """List spaces with their note counts."""
            with timed_operation("noteplan_list_spaces") as op:
                try:
                    spaces = self.store.list_spaces()
                    op["result_count"] = len(spaces)
                    return _envelope(
                        {
                            "count": len(spaces),
                            "spaces": [
                                {"id": s.id, "name": s.name, "noteCount": s.note_count}
                                for s in spaces
                            ],
                        }
                    )
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_list_tags")
        def noteplan_list_tags(space: Optional[str] = None) -> str:
            """List hashtags used across notes.
            Args:
                space: Space id or name (default: local tree and all spaces)
            """
            with timed_operation("noteplan_list_tags") as op:
                try:
                    tags = self.store.list_tags(space)
                    op["result_count"] = len(tags)
                    return _envelope({"count": len(tags), "tags": tags})
                except Exception as e:
                    return self.format_error_response(e, op)

        @self.mcp.tool(name="noteplan_status")
        def noteplan_status() -> str:
            """Server status: storage, search backend, cache and per-tool metrics."""
            with timed_operation("noteplan_status") as op:
                try:
                    return _envelope(
                        {
                            "server": config.server_name,
                            "version": config.server_version,
                            "storageRoot": str(self.local_store.root),
                            "ripgrepAvailable": self.ripgrep.is_available(),
                            "spaceCount": len(self.store.list_spaces()),
                            "pendingConfirmations": self.gate.pending_count(),
                            "cache": {
                                "entries": len(self.cache),
                                "hits": self.cache.hits,
                                "misses": self.cache.misses,
                            },
                            "metrics": {
                                "summary": metrics.summary(),
                                "operations": metrics.snapshot(),
                            },
                        }
                    )
                except Exception as e:
                    return self.format_error_response(e, op)

    def run(self) -> None:
        """Run the MCP server."""
        self.mcp.run()
