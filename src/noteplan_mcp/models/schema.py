"""Data models for the NotePlan MCP server."""

import datetime
import posixpath
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, field_validator

from noteplan_mcp.exceptions import InvalidArgumentError
from noteplan_mcp.utils import content_hash, to_bounded_int, utc_now


class NoteType(str, Enum):
    """Kinds of notes in a NotePlan store."""

    NOTE = "note"  # Project note under Notes/ or in a space
    CALENDAR = "calendar"  # Daily note keyed by date
    TRASH = "trash"  # Anything under @Trash


class NoteSource(str, Enum):
    """Backend a note or folder lives in."""

    LOCAL = "local"  # Markdown file tree
    SPACE = "space"  # Synced structured store


class TaskStatus(str, Enum):
    """Checkbox state of a task or checklist item."""

    OPEN = "open"  # [ ]
    DONE = "done"  # [x]
    CANCELLED = "cancelled"  # [-]
    SCHEDULED = "scheduled"  # [>]


class ParagraphType(str, Enum):
    """Derived type tag of a single note line."""

    TITLE = "title"
    HEADING = "heading"
    TASK = "task"
    CHECKLIST = "checklist"
    BULLET = "bullet"
    QUOTE = "quote"
    SEPARATOR = "separator"
    EMPTY = "empty"
    TEXT = "text"
    FRONTMATTER = "frontmatter"


class InsertPosition(str, Enum):
    """Where insert_content places new text."""

    START = "start"
    END = "end"
    AFTER_HEADING = "after-heading"
    AT_LINE = "at-line"
    IN_SECTION = "in-section"


class SearchField(str, Enum):
    """Which part of a note a search matches against."""

    CONTENT = "content"
    TITLE = "title"
    FILENAME = "filename"
    TITLE_OR_FILENAME = "title_or_filename"


class QueryMode(str, Enum):
    """How multi-word queries are interpreted."""

    PHRASE = "phrase"
    SMART = "smart"
    ANY = "any"
    ALL = "all"


class Note(BaseModel):
    """A note from either the local tree or a space."""

    id: str = Field(..., description="Relative filename (local) or store UUID (space)")
    title: str = Field(..., description="Display title of the note")
    filename: str = Field(..., description="Relative path or store filename")
    content: str = Field(default="", description="Raw note text")
    note_type: NoteType = Field(default=NoteType.NOTE, description="Type of note")
    source: NoteSource = Field(default=NoteSource.LOCAL, description="Owning backend")
    space_id: Optional[str] = Field(default=None, description="Owning space, if any")
    folder: Optional[str] = Field(default=None, description="Slash-separated folder path")
    date: Optional[str] = Field(default=None, description="YYYYMMDD for calendar notes")
    created_at: Optional[datetime.datetime] = Field(default=None)
    modified_at: Optional[datetime.datetime] = Field(default=None)

    model_config = {"validate_assignment": True, "extra": "forbid"}

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: Optional[str]) -> Optional[str]:
        """Calendar dates are stored as 8-digit tokens."""
        if v is None:
            return None
        if len(v) != 8 or not v.isdigit():
            raise ValueError(f"Calendar date must be YYYYMMDD, got '{v}'")
        return v

    @property
    def basename(self) -> str:
        """Filename without directories or extension."""
        return posixpath.splitext(posixpath.basename(self.filename))[0]

    @property
    def is_trashed(self) -> bool:
        return self.note_type == NoteType.TRASH

    @property
    def content_hash(self) -> str:
        return content_hash(self.content)

    @property
    def identity_key(self) -> str:
        """Namespaced identity so local and space ids never collide."""
        return f"{self.source.value}:{self.space_id or ''}:{self.id}"

    def summary(self) -> Dict[str, Any]:
        """Metadata view of the note (no content) for tool responses."""
        return {
            "id": self.id,
            "title": self.title,
            "filename": self.filename,
            "type": self.note_type.value,
            "source": self.source.value,
            "folder": self.folder,
            "spaceId": self.space_id,
            "date": self.date,
            "modifiedAt": self.modified_at.isoformat() if self.modified_at else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class Folder(BaseModel):
    """A folder in the local tree or a space."""

    path: str = Field(..., description="Slash-separated path relative to its root")
    name: str = Field(..., description="Display name (last path segment)")
    source: NoteSource = Field(default=NoteSource.LOCAL)
    space_id: Optional[str] = Field(default=None)

    model_config = {"validate_assignment": True, "frozen": True}

    @property
    def depth(self) -> int:
        return len([part for part in self.path.split("/") if part])

    @property
    def identity_key(self) -> str:
        """Path uniqueness is scoped per (source, space)."""
        return f"{self.source.value}:{self.space_id or ''}:{self.path}"

    def summary(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "source": self.source.value,
            "spaceId": self.space_id,
        }


class Space(BaseModel):
    """A synced collection of notes in the structured store."""

    id: str
    name: str
    note_count: int = 0

    model_config = {"frozen": True}


class SearchMatch(BaseModel):
    """A single matching line inside a note."""

    line_number: int = Field(..., description="1-based line number (0 = title match)")
    line_content: str
    match_start: int = 0
    match_end: int = 0

    model_config = {"frozen": True}


class NoteReference(BaseModel):
    """Tagged union of the ways a caller can point at a note.

    Priority when several are given: id > filename > date > title > query.
    """

    kind: Literal["id", "filename", "date", "title", "query"]
    value: str
    space: Optional[str] = None

    PRIORITY: ClassVar[Tuple[str, ...]] = ("id", "filename", "date", "title", "query")

    @classmethod
    def from_args(
        cls,
        id: Optional[str] = None,
        filename: Optional[str] = None,
        date: Optional[str] = None,
        title: Optional[str] = None,
        query: Optional[str] = None,
        space: Optional[str] = None,
    ) -> "NoteReference":
        """Pick the highest-priority non-empty reference field."""
        candidates = {"id": id, "filename": filename, "date": date, "title": title, "query": query}
        for kind in cls.PRIORITY:
            value = candidates[kind]
            if value is not None and str(value).strip():
                return cls(kind=kind, value=str(value).strip(), space=space)
        raise InvalidArgumentError(
            "Provide one note reference: id, filename, date, title, or query",
            field="reference",
        )

    def describe(self) -> str:
        return f"{self.kind}={self.value}"


class SearchOptions(BaseModel):
    """Options accepted by the search aggregator."""

    search_field: SearchField = SearchField.CONTENT
    query_mode: Optional[QueryMode] = None
    case_sensitive: bool = False
    fuzzy: bool = False
    types: Optional[List[NoteType]] = None
    folder: Optional[str] = None
    space: Optional[str] = None
    limit: int = 20
    context_lines: int = 0
    modified_after: Optional[str] = None
    modified_before: Optional[str] = None
    created_after: Optional[str] = None
    created_before: Optional[str] = None
    property_filters: Dict[str, str] = Field(default_factory=dict)
    property_case_sensitive: bool = False

    @field_validator("limit", mode="before")
    @classmethod
    def bound_limit(cls, v: Any) -> int:
        return to_bounded_int(v, 20, 1, 200)

    @field_validator("context_lines", mode="before")
    @classmethod
    def bound_context(cls, v: Any) -> int:
        return to_bounded_int(v, 0, 0, 5)

    @property
    def has_date_filters(self) -> bool:
        return any(
            (self.modified_after, self.modified_before, self.created_after, self.created_before)
        )


@dataclass
class SearchResult:
    """A note with its line-level matches and a derived score."""

    note: Note
    matches: List[SearchMatch] = field(default_factory=list)
    score: float = 0.0

    def to_dict(self, preview_count: int = 3) -> Dict[str, Any]:
        return {
            "note": self.note.summary(),
            "score": round(self.score, 2),
            "matchCount": len(self.matches),
            "preview": [
                {
                    "line": m.line_number,
                    "content": m.line_content[:100]
                    + ("..." if len(m.line_content) > 100 else ""),
                }
                for m in self.matches[:preview_count]
            ],
        }


@dataclass
class SearchResponse:
    """Aggregated search output and how it was produced."""

    results: List[SearchResult]
    backend: str
    partial_results: bool = False
    warnings: List[str] = field(default_factory=list)


@dataclass
class Candidate:
    """A scored resolution candidate (note or folder)."""

    score: float
    note: Optional[Note] = None
    folder: Optional[Folder] = None

    @property
    def sort_name(self) -> str:
        if self.note is not None:
            return self.note.filename
        return self.folder.path if self.folder else ""

    def to_dict(self) -> Dict[str, Any]:
        target = self.note.summary() if self.note is not None else self.folder.summary()
        return {"score": round(self.score, 3), **target}


@dataclass
class ResolveResult:
    """Outcome of resolving a loose reference."""

    query: str
    resolved: Optional[Candidate]
    exact_match: bool
    ambiguous: bool
    confidence: float
    confidence_delta: Optional[float]
    candidates: List[Candidate]
    suggested_args: Optional[Dict[str, str]] = None
    performance_hints: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "resolved": self.resolved.to_dict() if self.resolved else None,
            "exactMatch": self.exact_match,
            "ambiguous": self.ambiguous,
            "confidence": round(self.confidence, 3),
            "confidenceDelta": (
                round(self.confidence_delta, 3) if self.confidence_delta is not None else None
            ),
            "count": len(self.candidates),
            "candidates": [c.to_dict() for c in self.candidates],
            "suggestedGetNoteArgs": self.suggested_args,
            "performanceHints": self.performance_hints,
        }


@dataclass
class ParagraphLine:
    """Typed view of one line; derived on demand, never stored."""

    line_index: int
    raw: str
    type: ParagraphType
    content: str = ""
    indent_level: int = 0
    heading_level: Optional[int] = None
    task_status: Optional[TaskStatus] = None
    priority: Optional[int] = None
    marker: Optional[str] = None
    has_checkbox: bool = False
    tags: List[str] = field(default_factory=list)
    mentions: List[str] = field(default_factory=list)
    scheduled_date: Optional[str] = None

    @property
    def line_number(self) -> int:
        return self.line_index + 1

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["type"] = self.type.value
        data["task_status"] = self.task_status.value if self.task_status else None
        data["line"] = self.line_number
        return {
            k: v for k, v in data.items() if not (v is None or v is False or v == [])
        }


@dataclass
class LineWindow:
    """A paginated slice of a note's lines."""

    line_count: int
    range_start_line: int
    range_end_line: int
    range_line_count: int
    returned_line_count: int
    offset: int
    limit: int
    has_more: bool
    next_cursor: Optional[str]
    content: str
    lines: List[Dict[str, Any]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lineCount": self.line_count,
            "rangeStartLine": self.range_start_line,
            "rangeEndLine": self.range_end_line,
            "rangeLineCount": self.range_line_count,
            "returnedLineCount": self.returned_line_count,
            "offset": self.offset,
            "limit": self.limit,
            "hasMore": self.has_more,
            "nextCursor": self.next_cursor,
            "content": self.content,
            "lines": self.lines,
        }


@dataclass
class MutationResult:
    """Outcome of a write performed by the note service."""

    note: Note
    message: str
    line_delta: int = 0
    warnings: List[str] = field(default_factory=list)
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "message": self.message,
            "note": self.note.summary(),
            "contentHash": self.note.content_hash,
            "lineDelta": self.line_delta,
        }
        if self.warnings:
            payload["warnings"] = self.warnings
        payload.update(self.extra)
        return payload


@dataclass
class DryRunResult:
    """Preview of a gated operation plus the token to execute it."""

    message: str
    confirmation_token: str
    confirmation_expires_at: str
    preview: Dict[str, Any] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "dryRun": True,
            "message": self.message,
            "confirmationToken": self.confirmation_token,
            "confirmationExpiresAt": self.confirmation_expires_at,
            **self.preview,
        }
        if self.warnings:
            payload["warnings"] = self.warnings
        return payload


def ensure_timezone_aware(dt: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Treat naive datetimes (e.g. from SQLite) as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt


__all__ = [
    "Candidate",
    "DryRunResult",
    "Folder",
    "InsertPosition",
    "LineWindow",
    "MutationResult",
    "Note",
    "NoteReference",
    "NoteSource",
    "NoteType",
    "ParagraphLine",
    "ParagraphType",
    "QueryMode",
    "ResolveResult",
    "SearchField",
    "SearchMatch",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "Space",
    "TaskStatus",
    "ensure_timezone_aware",
    "utc_now",
]
