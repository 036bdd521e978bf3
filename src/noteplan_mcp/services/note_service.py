"""Service layer for reading and mutating notes.

Every write goes through the same pipeline: resolve the reference, check the
optional ``expected_hash`` precondition, compute the new text with the pure
helpers in :mod:`noteplan_mcp.storage.content_editor`, refuse empty results,
persist, and invalidate the listing cache. Destructive and full-rewrite
operations additionally require a confirmation token from a dry run.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from noteplan_mcp.config import config
from noteplan_mcp.exceptions import (AmbiguousTargetError, ConflictError,
                                     EmptyContentBlockedError, FolderNotFoundError,
                                     InvalidArgumentError, NoteNotFoundError,
                                     UnsupportedTargetError)
from noteplan_mcp.models.schema import (DryRunResult, InsertPosition, LineWindow,
                                        MutationResult, Note, NoteReference, NoteType,
                                        ParagraphType, TaskStatus)
from noteplan_mcp.services.confirmation import ConfirmationGate
from noteplan_mcp.services.note_store import NoteStore, normalize_local_folder_filter
from noteplan_mcp.services.resolver import ReferenceResolver, match_folder
from noteplan_mcp.storage import content_editor as editor
from noteplan_mcp.storage.frontmatter_parser import remove_property, set_property
from noteplan_mcp.storage.markdown_parser import (extract_headings, parse_paragraphs,
                                                 render_line, update_task_status)
from noteplan_mcp.utils import content_hash, resolve_calendar_date, to_bounded_int

logger = logging.getLogger(__name__)

LARGE_NOTE_LINES = 500

# Tool names double as confirmation-token scopes
TOOL_UPDATE_NOTE = "noteplan_update_note"
TOOL_REPLACE_LINES = "noteplan_replace_lines"
TOOL_DELETE_LINES = "noteplan_delete_lines"
TOOL_DELETE_NOTE = "noteplan_delete_note"
TOOL_MOVE_NOTE = "noteplan_move_note"
TOOL_RESTORE_NOTE = "noteplan_restore_note"
TOOL_RENAME_NOTE = "noteplan_rename_note"
TOOL_MOVE_FOLDER = "noteplan_move_folder"
TOOL_RENAME_FOLDER = "noteplan_rename_folder"
TOOL_DELETE_FOLDER = "noteplan_delete_folder"

GatedResult = Union[DryRunResult, MutationResult]


class NoteService:
    """Reads, line-level edits and lifecycle operations over both backends.

    Args:
        store: Unified note store (shared listing cache).
        gate: Confirmation gate for destructive operations.
        resolver: Resolver used for ``query`` references and folder matching.
    """

    def __init__(
        self,
        store: NoteStore,
        gate: ConfirmationGate,
        resolver: Optional[ReferenceResolver] = None,
    ) -> None:
        self.store = store
        self.gate = gate
        self.resolver = resolver if resolver is not None else ReferenceResolver(store)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def get_note(self, ref: NoteReference, allow_trash: bool = True) -> Note:
        """Load the note a reference points at.

        ``query`` references go through the resolver and must resolve to a
        single confident candidate.
        """
        if ref.kind != "query":
            return self.store.get_note_or_raise(ref, allow_trash=allow_trash)

        result = self.resolver.resolve_note(ref.value, space=ref.space)
        if result.resolved is not None:
            return result.resolved.note
        if result.ambiguous:
            options = [c.note.filename for c in result.candidates]
            raise AmbiguousTargetError(
                f'Query "{ref.value}" matches several notes: {", ".join(options)}',
                options=options,
            )
        raise NoteNotFoundError(ref.value)

    def _load_for_edit(self, ref: NoteReference, expected_hash: Optional[str]) -> Note:
        note = self.get_note(ref, allow_trash=False)
        self._check_hash(note, expected_hash)
        return note

    @staticmethod
    def _check_hash(note: Note, expected_hash: Optional[str]) -> None:
        if expected_hash and expected_hash.strip() != note.content_hash:
            raise ConflictError(note.filename, expected_hash.strip(), note.content_hash)

    @staticmethod
    def _target(note: Note) -> str:
        return note.identity_key

    def _persist(self, note: Note, content: str) -> Note:
        if self.store.is_space_note(note):
            updated = self.store.spaces.write_note(note.id, content)
        else:
            updated = self.store.local.write_note(note.filename, content)
        self.store.invalidate()
        return updated

    @staticmethod
    def _guard_empty(content: str, allow_empty_content: bool) -> None:
        if not content.strip() and not allow_empty_content:
            raise EmptyContentBlockedError(
                "This change would leave the note empty. "
                "Pass allow_empty_content=true if that is intended."
            )

    def _commit(
        self,
        note: Note,
        new_content: str,
        message: str,
        allow_empty_content: bool = False,
        changed_from_line: Optional[int] = None,
        extra: Optional[Dict[str, Any]] = None,
        warnings: Optional[List[str]] = None,
    ) -> MutationResult:
        self._guard_empty(new_content, allow_empty_content)
        before = note.content
        updated = self._persist(note, new_content)
        line_delta = editor.count_lines(new_content) - editor.count_lines(before)

        warnings = list(warnings or [])
        if line_delta:
            where = f"after line {changed_from_line}" if changed_from_line else "in this note"
            warnings.append(
                f"Line numbers {where} shifted by {line_delta:+d}; "
                "call noteplan_get_paragraphs before further line-based edits."
            )
        removed = editor.removed_attachment_references(before, new_content)
        if removed:
            warnings.append(f"Removed attachment references: {', '.join(removed)}")

        logger.info(f"{message} ({updated.filename}, lineDelta={line_delta})")
        return MutationResult(
            note=updated,
            message=message,
            line_delta=line_delta,
            warnings=warnings,
            extra=extra or {},
        )

    def _gate(
        self,
        tool: str,
        target: str,
        action: str,
        dry_run: bool,
        confirmation_token: Optional[str],
        message: str,
        preview: Dict[str, Any],
        warnings: Optional[List[str]] = None,
    ) -> Optional[DryRunResult]:
        """Issue a token on dry run; otherwise require a matching one."""
        if dry_run:
            issued = self.gate.issue(tool, target, action)
            return DryRunResult(
                message=message,
                confirmation_token=issued.confirmation_token,
                confirmation_expires_at=issued.confirmation_expires_at,
                preview=preview,
                warnings=list(warnings or []),
            )
        self.gate.require(confirmation_token, tool, target, action)
        return None

    def _space_unsupported(self, note: Note, operation: str) -> None:
        if self.store.is_space_note(note):
            raise UnsupportedTargetError(
                f"{operation} is only supported for local notes; {note.filename} is a space note"
            )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_paragraphs(
        self,
        ref: NoteReference,
        start_line: Optional[int] = None,
        end_line: Optional[int] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> Tuple[Note, LineWindow, List[str]]:
        """A paginated, typed window over a note's lines plus performance hints."""
        note = self.get_note(ref)
        lines = editor.split_lines(note.content)
        window = editor.build_line_window(lines, start_line, end_line, limit, offset, cursor)

        paragraphs = parse_paragraphs(
            note.content,
            dash_is_todo=config.dash_is_todo,
            asterisk_is_todo=config.asterisk_is_todo,
        )
        for entry in window.lines:
            paragraph = paragraphs[entry["lineIndex"]]
            entry["type"] = paragraph.type.value
            if paragraph.task_status:
                entry["taskStatus"] = paragraph.task_status.value
            if paragraph.heading_level and paragraph.type.value in ("title", "heading"):
                entry["headingLevel"] = paragraph.heading_level

        hints: List[str] = []
        if len(lines) > LARGE_NOTE_LINES and start_line is None and end_line is None:
            hints.append(
                f"Note has {len(lines)} lines. Pass start_line/end_line or use "
                "noteplan_search_paragraphs to read a smaller window."
            )
        return note, window, hints

    def search_paragraphs(
        self,
        ref: NoteReference,
        query: str,
        case_sensitive: bool = False,
        context_lines: int = 0,
        limit: int = 20,
    ) -> Tuple[Note, List[Dict[str, Any]]]:
        """Lines containing ``query``, each with its surrounding paragraph bounds."""
        query = (query or "").strip()
        if not query:
            raise InvalidArgumentError("query is required", field="query")
        context_lines = to_bounded_int(context_lines, 0, 0, 5)
        limit = to_bounded_int(limit, 20, 1, 200)

        note = self.get_note(ref)
        lines = editor.split_lines(note.content)
        needle = query if case_sensitive else query.lower()
        matches: List[Dict[str, Any]] = []
        for index, line in enumerate(lines):
            haystack = line if case_sensitive else line.lower()
            if needle not in haystack:
                continue
            start, end = editor.find_paragraph_bounds(lines, index)
            match: Dict[str, Any] = {
                "line": index + 1,
                "lineIndex": index,
                "content": line,
                "paragraphStartLine": start + 1,
                "paragraphEndLine": end + 1,
            }
            if context_lines:
                before = max(0, index - context_lines)
                match["contextBefore"] = lines[before:index]
                match["contextAfter"] = lines[index + 1:index + 1 + context_lines]
            matches.append(match)
            if len(matches) >= limit:
                break
        return note, matches

    def get_calendar_note(self, date: str = "today", space: Optional[str] = None) -> Note:
        token = self._calendar_token(date)
        note = self.store.get_note(NoteReference(kind="date", value=token, space=space))
        if note is None:
            raise NoteNotFoundError(token, f"No calendar note for {token}")
        return note

    def list_notes(
        self,
        folder: Optional[str] = None,
        space: Optional[str] = None,
        types: Optional[Sequence[NoteType]] = None,
        query: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Paged note metadata, newest first. Trashed notes only when ``types`` asks."""
        notes = self.store.list_notes(folder=folder, space=space)
        if types and NoteType.TRASH in types:
            notes = notes + self.store.list_notes(space=space, note_type=NoteType.TRASH)
        if types:
            allowed = set(types)
            notes = [n for n in notes if n.note_type in allowed]
        wanted = (query or "").strip().lower()
        if wanted:
            notes = [
                n for n in notes if wanted in n.title.lower() or wanted in n.filename.lower()
            ]

        limit = to_bounded_int(limit, 50, 1, 200)
        start = to_bounded_int(cursor if cursor is not None else offset, 0, 0, 2**53)
        page = notes[start:start + limit]
        has_more = start + len(page) < len(notes)
        return {
            "notes": [n.summary() for n in page],
            "count": len(page),
            "total": len(notes),
            "offset": start,
            "limit": limit,
            "hasMore": has_more,
            "nextCursor": str(start + len(page)) if has_more else None,
        }

    # ------------------------------------------------------------------
    # Content edits
    # ------------------------------------------------------------------

    def insert_content(
        self,
        ref: NoteReference,
        content: str,
        position: InsertPosition = InsertPosition.END,
        heading: Optional[str] = None,
        line: Optional[int] = None,
        indentation_style: Optional[str] = None,
        expected_hash: Optional[str] = None,
    ) -> MutationResult:
        """Insert text at start/end, after or inside a heading, or at a line."""
        if not content or not content.strip():
            raise EmptyContentBlockedError("Content to insert is empty")
        note = self._load_for_edit(ref, expected_hash)

        extra: Dict[str, Any] = {}
        if editor.normalize_indentation_style(indentation_style) == "tabs":
            content, retabbed = editor.retab_list_indentation(content)
            if retabbed:
                extra["retabbedLines"] = retabbed

        try:
            new_content = editor.insert_content(note.content, content, position, heading, line)
        except InvalidArgumentError as e:
            if e.field != "heading":
                raise
            available = [h["text"] for h in extract_headings(note.content)]
            e.details["availableHeadings"] = available
            e.hint = (
                "Available headings: " + ", ".join(available)
                if available
                else "This note has no headings; insert at start or end instead."
            )
            raise
        changed_from = line if position == InsertPosition.AT_LINE else None
        if position == InsertPosition.START:
            changed_from = 1
        return self._commit(
            note,
            new_content,
            f"Inserted content at {position.value}",
            changed_from_line=changed_from,
            extra=extra,
        )

    def append_content(
        self,
        ref: NoteReference,
        content: str,
        indentation_style: Optional[str] = None,
        expected_hash: Optional[str] = None,
    ) -> MutationResult:
        return self.insert_content(
            ref,
            content,
            InsertPosition.END,
            indentation_style=indentation_style,
            expected_hash=expected_hash,
        )

    def edit_line(
        self,
        ref: NoteReference,
        line: int,
        content: str,
        allow_empty_content: bool = False,
        expected_hash: Optional[str] = None,
    ) -> MutationResult:
        note = self._load_for_edit(ref, expected_hash)
        new_content, original = editor.edit_line(note.content, line, content)
        return self._commit(
            note,
            new_content,
            f"Edited line {line}",
            allow_empty_content=allow_empty_content,
            extra={"originalLine": original},
        )

    def replace_lines(
        self,
        ref: NoteReference,
        start_line: int,
        end_line: int,
        content: str,
        dry_run: bool = False,
        confirmation_token: Optional[str] = None,
        allow_empty_content: bool = False,
        expected_hash: Optional[str] = None,
    ) -> GatedResult:
        """Replace an inclusive 1-based line range (gated)."""
        note = self._load_for_edit(ref, expected_hash)
        new_content = editor.replace_lines(note.content, start_line, end_line, content)
        self._guard_empty(new_content, allow_empty_content)
        lines = editor.split_lines(note.content)
        action = f"replace_lines:{start_line}-{end_line}:{content_hash(content)[:16]}"
        dry = self._gate(
            TOOL_REPLACE_LINES,
            self._target(note),
            action,
            dry_run,
            confirmation_token,
            f"Would replace lines {start_line}-{end_line} of {note.filename}",
            {
                "target": note.filename,
                "startLine": start_line,
                "endLine": end_line,
                "linesToReplace": lines[start_line - 1:end_line],
                "replacementLineCount": editor.count_lines(content),
                "lineCountBefore": len(lines),
                "lineCountAfter": editor.count_lines(new_content),
            },
        )
        if dry is not None:
            return dry
        return self._commit(
            note,
            new_content,
            f"Replaced lines {start_line}-{end_line}",
            allow_empty_content=allow_empty_content,
            changed_from_line=end_line,
        )

    def delete_lines(
        self,
        ref: NoteReference,
        start_line: int,
        end_line: int,
        dry_run: bool = False,
        confirmation_token: Optional[str] = None,
        allow_empty_content: bool = False,
        expected_hash: Optional[str] = None,
    ) -> GatedResult:
        """Delete an inclusive 1-based line range (gated)."""
        note = self._load_for_edit(ref, expected_hash)
        new_content = editor.delete_lines(note.content, start_line, end_line)
        self._guard_empty(new_content, allow_empty_content)
        lines = editor.split_lines(note.content)
        dry = self._gate(
            TOOL_DELETE_LINES,
            self._target(note),
            f"delete_lines:{start_line}-{end_line}",
            dry_run,
            confirmation_token,
            f"Would delete lines {start_line}-{end_line} of {note.filename}",
            {
                "target": note.filename,
                "startLine": start_line,
                "endLine": end_line,
                "linesToDelete": lines[start_line - 1:end_line],
                "lineCountBefore": len(lines),
                "lineCountAfter": editor.count_lines(new_content),
            },
        )
        if dry is not None:
            return dry
        return self._commit(
            note,
            new_content,
            f"Deleted lines {start_line}-{end_line}",
            allow_empty_content=allow_empty_content,
            changed_from_line=end_line,
        )

    def update_note(
        self,
        ref: NoteReference,
        content: str,
        dry_run: bool = False,
        confirmation_token: Optional[str] = None,
        allow_empty_content: bool = False,
        expected_hash: Optional[str] = None,
    ) -> GatedResult:
        """Replace the whole note body (gated)."""
        note = self._load_for_edit(ref, expected_hash)
        content = content.replace("\r\n", "\n")
        self._guard_empty(content, allow_empty_content)
        warnings = []
        removed = editor.removed_attachment_references(note.content, content)
        if removed:
            warnings.append(f"Removed attachment references: {', '.join(removed)}")
        dry = self._gate(
            TOOL_UPDATE_NOTE,
            self._target(note),
            f"update_note:{content_hash(content)[:16]}",
            dry_run,
            confirmation_token,
            f"Would replace the full content of {note.filename}",
            {
                "target": note.filename,
                "lineCountBefore": editor.count_lines(note.content),
                "lineCountAfter": editor.count_lines(content),
                "currentContentHash": note.content_hash,
            },
            warnings,
        )
        if dry is not None:
            return dry
        return self._commit(note, content, "Replaced note content", allow_empty_content=allow_empty_content)

    def update_task(
        self,
        ref: NoteReference,
        line: int,
        status: TaskStatus,
        expected_hash: Optional[str] = None,
    ) -> MutationResult:
        """Set the checkbox of the task or checklist item on ``line``."""
        note = self._load_for_edit(ref, expected_hash)
        lines = editor.split_lines(note.content)
        editor.validate_line_range(len(lines), line, line)
        updated_line = update_task_status(
            lines[line - 1],
            status,
            dash_is_todo=config.dash_is_todo,
            asterisk_is_todo=config.asterisk_is_todo,
        )
        new_content, original = editor.edit_line(note.content, line, updated_line)
        return self._commit(
            note,
            new_content,
            f"Marked task on line {line} as {status.value}",
            extra={"originalLine": original, "updatedLine": updated_line},
        )

    def get_tasks(
        self, ref: NoteReference, status: Optional[TaskStatus] = None
    ) -> Tuple[Note, List[Dict[str, Any]]]:
        """Tasks and checklist items in a note, optionally filtered by status."""
        note = self.get_note(ref)
        paragraphs = parse_paragraphs(
            note.content,
            dash_is_todo=config.dash_is_todo,
            asterisk_is_todo=config.asterisk_is_todo,
        )
        tasks: List[Dict[str, Any]] = []
        for paragraph in paragraphs:
            if paragraph.type not in (ParagraphType.TASK, ParagraphType.CHECKLIST):
                continue
            task_status = paragraph.task_status or TaskStatus.OPEN
            if status is not None and task_status != status:
                continue
            tasks.append(
                {
                    "line": paragraph.line_number,
                    "lineIndex": paragraph.line_index,
                    "type": paragraph.type.value,
                    "content": paragraph.content,
                    "status": task_status.value,
                    "tags": paragraph.tags,
                    "mentions": paragraph.mentions,
                    "scheduledDate": paragraph.scheduled_date,
                    "priority": paragraph.priority,
                    "indentLevel": paragraph.indent_level,
                }
            )
        return note, tasks

    def add_task(
        self,
        ref: NoteReference,
        content: str,
        position: InsertPosition = InsertPosition.END,
        heading: Optional[str] = None,
        status: Optional[TaskStatus] = None,
        priority: Optional[int] = None,
        indent_level: int = 0,
        expected_hash: Optional[str] = None,
    ) -> MutationResult:
        """Render a task line and insert it. A date reference creates the daily note.

        Without an explicit ``status`` the task uses the plain marker that the
        configured task preferences read as an open task.
        """
        text = (content or "").strip()
        if not text or "\n" in text:
            raise InvalidArgumentError("Task content must be a single non-empty line", field="content")
        if priority is not None and not 1 <= priority <= 3:
            raise InvalidArgumentError("priority must be 1, 2 or 3", field="priority", value=priority)
        indent_level = to_bounded_int(indent_level, 0, 0, 10)

        created = False
        if ref.kind == "date":
            note, created = self.ensure_calendar_note(ref.value, ref.space)
            ref = NoteReference(
                kind="id", value=note.id if self.store.is_space_note(note) else note.filename
            )

        # Dash marker only when asterisk lines are not read as tasks
        marker = "-" if config.dash_is_todo and not config.asterisk_is_todo else "*"
        task_line = render_line(
            text,
            ParagraphType.TASK,
            task_status=status or TaskStatus.OPEN,
            indent_level=indent_level,
            priority=priority,
            has_checkbox=status is not None or not config.asterisk_is_todo,
            marker=marker,
            dash_is_todo=config.dash_is_todo,
            asterisk_is_todo=config.asterisk_is_todo,
        )
        result = self.insert_content(ref, task_line, position, heading=heading, expected_hash=expected_hash)
        result.extra["task"] = task_line
        if created:
            result.extra["created"] = True
        return result

    def set_property(
        self, ref: NoteReference, key: str, value: str, expected_hash: Optional[str] = None
    ) -> MutationResult:
        note = self._load_for_edit(ref, expected_hash)
        new_content = set_property(note.content, key, value)
        return self._commit(note, new_content, f"Set property {key}", changed_from_line=1)

    def remove_property(
        self, ref: NoteReference, key: str, expected_hash: Optional[str] = None
    ) -> MutationResult:
        note = self._load_for_edit(ref, expected_hash)
        new_content, removed = remove_property(note.content, key)
        if not removed:
            raise InvalidArgumentError(f"Property not found: {key}", field="key", value=key)
        return self._commit(
            note,
            new_content,
            f"Removed property {key}",
            allow_empty_content=True,
            changed_from_line=1,
        )

    # ------------------------------------------------------------------
    # Note lifecycle
    # ------------------------------------------------------------------

    def _resolve_local_folder(self, folder: str) -> Tuple[str, Dict[str, Any]]:
        """Match a loose folder name against existing local folders."""
        requested = normalize_local_folder_filter(folder) or ""
        folders = self.store.list_folders(include_local=True, include_spaces=False)
        for existing in folders:
            if existing.path.lower() == requested.lower():
                return existing.path, {"requested": folder, "resolved": existing.path, "matched": True}
        match = match_folder(requested, folders)
        if match.matched and match.folder is not None:
            return match.folder.path, match.to_dict(folder)
        return requested, {"requested": folder, "resolved": requested, "matched": False, "created": True}

    def create_note(
        self,
        title: str,
        content: str = "",
        folder: Optional[str] = None,
        space: Optional[str] = None,
    ) -> MutationResult:
        """Create a project note, matching ``folder`` to an existing one when close."""
        title = (title or "").strip()
        if not title:
            raise InvalidArgumentError("title is required", field="title")
        content = (content or "").replace("\r\n", "\n")
        first = content.lstrip("\n").split("\n", 1)[0].strip()
        if first.lower() != f"# {title}".lower():
            content = f"# {title}\n\n{content}" if content.strip() else f"# {title}\n\n"

        extra: Dict[str, Any] = {}
        space_id = self.store.resolve_space_id(space)
        if space_id:
            note = self.store.spaces.create_note(space_id, title, content, folder=folder)
        else:
            target_folder = None
            if folder and normalize_local_folder_filter(folder):
                target_folder, resolution = self._resolve_local_folder(folder)
                extra["folderResolution"] = resolution
            note = self.store.local.create_note(title, content, target_folder)
        self.store.invalidate()
        logger.info(f"Created note {note.filename}")
        return MutationResult(note=note, message=f"Created note {note.title}", extra=extra)

    def delete_note(
        self,
        ref: NoteReference,
        dry_run: bool = False,
        confirmation_token: Optional[str] = None,
    ) -> GatedResult:
        """Trash a local note, or delete a space note (gated)."""
        note = self.get_note(ref, allow_trash=False)
        is_space = self.store.is_space_note(note)
        dry = self._gate(
            TOOL_DELETE_NOTE,
            self._target(note),
            "delete_note",
            dry_run,
            confirmation_token,
            f"Would {'delete' if is_space else 'move to @Trash'} {note.filename}",
            {"target": note.filename, "lineCount": editor.count_lines(note.content)},
        )
        if dry is not None:
            return dry
        extra: Dict[str, Any] = {}
        if is_space:
            self.store.spaces.delete_note(note.id)
            message = f"Deleted space note {note.title}"
        else:
            extra["trashedPath"] = self.store.local.delete_note(note.filename)
            message = f"Moved {note.filename} to @Trash"
        self.store.invalidate()
        return MutationResult(note=note, message=message, extra=extra)

    def move_note(
        self,
        ref: NoteReference,
        destination_folder: str,
        dry_run: bool = False,
        confirmation_token: Optional[str] = None,
    ) -> GatedResult:
        note = self.get_note(ref, allow_trash=False)
        self._space_unsupported(note, "move_note")
        destination = normalize_local_folder_filter(destination_folder)
        if not destination:
            raise InvalidArgumentError("destination_folder is required", field="destination_folder")
        dry = self._gate(
            TOOL_MOVE_NOTE,
            self._target(note),
            f"move_note:{destination}",
            dry_run,
            confirmation_token,
            f"Would move {note.filename} to Notes/{destination}",
            {"target": note.filename, "destinationFolder": destination},
        )
        if dry is not None:
            return dry
        new_path = self.store.local.move_note(note.filename, destination)
        self.store.invalidate()
        moved = self.store.local.read_note(new_path) or note
        return MutationResult(
            note=moved,
            message=f"Moved {note.filename} to {new_path}",
            extra={"previousFilename": note.filename},
        )

    def restore_note(
        self,
        ref: NoteReference,
        destination_folder: Optional[str] = None,
        dry_run: bool = False,
        confirmation_token: Optional[str] = None,
    ) -> GatedResult:
        note = self.get_note(ref, allow_trash=True)
        self._space_unsupported(note, "restore_note")
        destination = normalize_local_folder_filter(destination_folder)
        dry = self._gate(
            TOOL_RESTORE_NOTE,
            self._target(note),
            f"restore_note:{destination or ''}",
            dry_run,
            confirmation_token,
            f"Would restore {note.filename} to Notes/{destination or ''}".rstrip("/"),
            {"target": note.filename, "destinationFolder": destination},
        )
        if dry is not None:
            return dry
        new_path = self.store.local.restore_note(note.filename, destination)
        self.store.invalidate()
        restored = self.store.local.read_note(new_path) or note
        return MutationResult(note=restored, message=f"Restored {note.filename} to {new_path}")

    def rename_note(
        self,
        ref: NoteReference,
        new_title: str,
        dry_run: bool = False,
        confirmation_token: Optional[str] = None,
    ) -> GatedResult:
        """Rename a local note's file, or retitle a space note (gated)."""
        new_title = (new_title or "").strip()
        if not new_title:
            raise InvalidArgumentError("new_title is required", field="new_title")
        note = self.get_note(ref, allow_trash=False)
        if note.note_type == NoteType.CALENDAR:
            raise UnsupportedTargetError("Calendar notes are named by date and cannot be renamed")
        dry = self._gate(
            TOOL_RENAME_NOTE,
            self._target(note),
            f"rename_note:{new_title}",
            dry_run,
            confirmation_token,
            f'Would rename "{note.title}" to "{new_title}"',
            {"target": note.filename, "currentTitle": note.title, "newTitle": new_title},
        )
        if dry is not None:
            return dry
        if self.store.is_space_note(note):
            renamed = self.store.spaces.rename_note(note.id, new_title)
        else:
            new_path = self.store.local.rename_note(note.filename, new_title)
            renamed = self.store.local.read_note(new_path) or note
        self.store.invalidate()
        return MutationResult(
            note=renamed,
            message=f'Renamed "{note.title}" to "{new_title}"',
            extra={"previousFilename": note.filename},
        )

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def create_folder(
        self, name: str, parent: Optional[str] = None, space: Optional[str] = None
    ) -> Dict[str, Any]:
        name = (name or "").strip().strip("/")
        if not name:
            raise InvalidArgumentError("name is required", field="name")
        space_id = self.store.resolve_space_id(space)
        if space_id:
            folder = self.store.spaces.create_folder(space_id, name, parent)
        else:
            parent_path = normalize_local_folder_filter(parent)
            folder = self.store.local.create_folder(f"{parent_path}/{name}" if parent_path else name)
        self.store.invalidate()
        return {"message": f"Created folder {folder.path}", "folder": folder.summary()}

    def _local_folder(self, folder: str) -> str:
        path = normalize_local_folder_filter(folder)
        if not path:
            raise FolderNotFoundError(folder or "")
        return path

    def move_folder(
        self,
        folder: str,
        destination_parent: Optional[str],
        dry_run: bool = False,
        confirmation_token: Optional[str] = None,
    ) -> Union[DryRunResult, Dict[str, Any]]:
        path = self._local_folder(folder)
        destination = normalize_local_folder_filter(destination_parent)
        count = self.store.local.count_notes(path)
        dry = self._gate(
            TOOL_MOVE_FOLDER,
            f"folder:{path}",
            f"move_folder:{destination or ''}",
            dry_run,
            confirmation_token,
            f"Would move folder {path} ({count} notes) under Notes/{destination or ''}".rstrip("/"),
            {"folder": path, "destinationParent": destination, "noteCount": count},
        )
        if dry is not None:
            return dry
        moved = self.store.local.move_folder(path, destination)
        self.store.invalidate()
        return {"message": f"Moved folder {path} to {moved.path}", "folder": moved.summary()}

    def rename_folder(
        self,
        folder: str,
        new_name: str,
        dry_run: bool = False,
        confirmation_token: Optional[str] = None,
    ) -> Union[DryRunResult, Dict[str, Any]]:
        path = self._local_folder(folder)
        new_name = (new_name or "").strip()
        if not new_name:
            raise InvalidArgumentError("new_name is required", field="new_name")
        count = self.store.local.count_notes(path)
        dry = self._gate(
            TOOL_RENAME_FOLDER,
            f"folder:{path}",
            f"rename_folder:{new_name}",
            dry_run,
            confirmation_token,
            f"Would rename folder {path} to {new_name}",
            {"folder": path, "newName": new_name, "noteCount": count},
        )
        if dry is not None:
            return dry
        renamed = self.store.local.rename_folder(path, new_name)
        self.store.invalidate()
        return {"message": f"Renamed folder {path} to {renamed.path}", "folder": renamed.summary()}

    def delete_folder(
        self,
        folder: str,
        dry_run: bool = False,
        confirmation_token: Optional[str] = None,
    ) -> Union[DryRunResult, Dict[str, Any]]:
        """Move a local folder and its notes to ``@Trash`` (gated)."""
        path = self._local_folder(folder)
        count = self.store.local.count_notes(path)
        dry = self._gate(
            TOOL_DELETE_FOLDER,
            f"folder:{path}",
            "delete_folder",
            dry_run,
            confirmation_token,
            f"Would move folder {path} ({count} notes) to @Trash",
            {"folder": path, "noteCount": count},
        )
        if dry is not None:
            return dry
        trashed = self.store.local.delete_folder(path)
        self.store.invalidate()
        return {"message": f"Moved folder {path} to {trashed}", "trashedPath": trashed, "noteCount": count}

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    @staticmethod
    def _calendar_token(date: Optional[str]) -> str:
        value = (date or "today").strip()
        token = resolve_calendar_date(value)
        if token is None:
            raise InvalidArgumentError(
                f"Invalid date: {value}. Use YYYYMMDD, YYYY-MM-DD, today, tomorrow or yesterday",
                field="date",
                value=value,
            )
        return token

    def ensure_calendar_note(self, date: str = "today", space: Optional[str] = None) -> Tuple[Note, bool]:
        """Return the daily note for ``date``, creating it when missing.

        Returns the note and whether it was created.
        """
        token = self._calendar_token(date)
        space_id = self.store.resolve_space_id(space)
        if space_id:
            existing = self.store.spaces.get_calendar_note(token, space_id)
            if existing is not None:
                return existing, False
            note = self.store.spaces.create_calendar_note(space_id, token)
        else:
            existing = self.store.local.get_calendar_note(token)
            if existing is not None:
                return existing, False
            note = self.store.local.ensure_calendar_note(token)
        self.store.invalidate()
        logger.info(f"Created calendar note {note.filename}")
        return note, True

    def add_to_today(
        self,
        content: str,
        position: InsertPosition = InsertPosition.END,
        heading: Optional[str] = None,
        space: Optional[str] = None,
    ) -> MutationResult:
        note, created = self.ensure_calendar_note("today", space)
        ref = NoteReference(kind="id", value=note.id if self.store.is_space_note(note) else note.filename)
        result = self.insert_content(ref, content, position, heading=heading)
        if created:
            result.extra["created"] = True
        return result
