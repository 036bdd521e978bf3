"""Local markdown file tree adapter.

The tree follows NotePlan's layout::

    <root>/Notes/...            project notes, arbitrary folder depth
    <root>/Calendar/YYYYMMDD.md daily notes (optionally Calendar/YYYY/...)
    <root>/@Trash/              deleted notes
    <root>/@Archive/            archived notes

Local note ids are paths relative to the root, e.g. ``Notes/Projects/Plan.md``.
Folder paths are relative to ``Notes/``.
"""
import logging
import os
import re
import shutil
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from noteplan_mcp.config import config
from noteplan_mcp.exceptions import (ErrorCode, FolderNotFoundError, InvalidArgumentError,
                                     NoteNotFoundError, NotInTrashError, StorageError)
from noteplan_mcp.models.schema import Folder, Note, NoteSource, NoteType
from noteplan_mcp.storage.markdown_parser import extract_title
from noteplan_mcp.utils import iso_from_token

logger = logging.getLogger(__name__)

NOTES_DIR = "Notes"
CALENDAR_DIR = "Calendar"
TRASH_DIR = "@Trash"
ARCHIVE_DIR = "@Archive"
NOTE_EXTENSIONS = (".md", ".txt")
SKIPPED_DIRS = {TRASH_DIR, ARCHIVE_DIR}

_ILLEGAL_FILENAME_CHARS = re.compile(r'[/\\?%*:|"<>]')
_CALENDAR_NAME = re.compile(r"^(\d{8})$")


def sanitize_filename(name: str) -> str:
    """Make a title safe for use as a filename."""
    return re.sub(r"\s+", " ", _ILLEGAL_FILENAME_CHARS.sub("-", name)).strip()


def _to_posix(path: Path) -> str:
    return path.as_posix()


class LocalNoteStore:
    """Reads and writes notes in a NotePlan-style directory tree.

    Args:
        root: Tree root. Defaults to the configured storage path.
        file_extension: Extension for newly created notes.
    """

    def __init__(self, root: Optional[Path] = None, file_extension: Optional[str] = None):
        self.root = Path(root or config.get_storage_root())
        self.file_extension = file_extension or config.file_extension
        self.file_lock = threading.RLock()
        (self.root / NOTES_DIR).mkdir(parents=True, exist_ok=True)
        (self.root / CALENDAR_DIR).mkdir(parents=True, exist_ok=True)

    @property
    def notes_root(self) -> Path:
        return self.root / NOTES_DIR

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _resolve(self, relative: str) -> Path:
        """Absolute path for a root-relative path; refuses to escape the root."""
        if not relative or not str(relative).strip():
            raise InvalidArgumentError("Path is required", field="path")
        candidate = Path(relative)
        full = candidate if candidate.is_absolute() else self.root / candidate
        resolved_root = self.root.resolve()
        resolved = full.resolve()
        if resolved != resolved_root and resolved_root not in resolved.parents:
            raise InvalidArgumentError(
                f"Path is outside the NotePlan storage root: {relative}",
                field="path",
                value=str(relative),
            )
        return resolved

    def _relative(self, path: Path) -> str:
        return _to_posix(path.resolve().relative_to(self.root.resolve()))

    def _folder_path(self, folder: str) -> Path:
        """Absolute path for a folder given relative to ``Notes/``."""
        folder = folder.strip().strip("/")
        if folder == NOTES_DIR or folder.startswith(f"{NOTES_DIR}/"):
            folder = folder[len(NOTES_DIR):].lstrip("/")
        return self._resolve(f"{NOTES_DIR}/{folder}" if folder else NOTES_DIR)

    def calendar_path(self, date_token: str) -> str:
        """Relative path a new calendar note would get, honoring year subfolders."""
        if self.has_year_subfolders():
            return f"{CALENDAR_DIR}/{date_token[:4]}/{date_token}{self.file_extension}"
        return f"{CALENDAR_DIR}/{date_token}{self.file_extension}"

    def has_year_subfolders(self) -> bool:
        calendar = self.root / CALENDAR_DIR
        if not calendar.is_dir():
            return False
        for entry in calendar.iterdir():
            if entry.is_dir() and re.fullmatch(r"\d{4}", entry.name):
                return True
        return False

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def _build_note(self, path: Path) -> Note:
        relative = self._relative(path)
        try:
            content = path.read_text(encoding="utf-8")
            stat = path.stat()
        except OSError as e:
            raise StorageError(
                f"Failed to read note {relative}",
                operation="read_note",
                path=str(path),
                original_error=e,
            ) from e

        note_type = NoteType.NOTE
        date = None
        parts = relative.split("/")
        if parts[0] == CALENDAR_DIR:
            note_type = NoteType.CALENDAR
            match = _CALENDAR_NAME.match(path.stem)
            date = match.group(1) if match else None
        elif TRASH_DIR in parts:
            note_type = NoteType.TRASH

        if note_type == NoteType.CALENDAR and date:
            title = iso_from_token(date)
        else:
            title = extract_title(content, default=path.stem)

        folder = "/".join(parts[:-1]) or None
        created = getattr(stat, "st_birthtime", None) or stat.st_ctime
        return Note(
            id=relative,
            title=title,
            filename=relative,
            content=content,
            note_type=note_type,
            source=NoteSource.LOCAL,
            folder=folder,
            date=date,
            created_at=datetime.fromtimestamp(created, tz=timezone.utc),
            modified_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    def read_note(self, path: str) -> Optional[Note]:
        """Read a note by root-relative path; None when missing or a directory."""
        full = self._resolve(path)
        if not full.is_file():
            return None
        return self._build_note(full)

    def get_calendar_note(self, date_token: str) -> Optional[Note]:
        """Find a daily note in either layout and with either extension."""
        year = date_token[:4]
        for directory in (f"{CALENDAR_DIR}/{year}", CALENDAR_DIR):
            for ext in NOTE_EXTENSIONS:
                note = self.read_note(f"{directory}/{date_token}{ext}")
                if note is not None:
                    return note
        return None

    def _walk(self, directory: Path) -> List[Note]:
        notes: List[Note] = []
        if not directory.is_dir():
            return notes
        for entry in sorted(directory.iterdir()):
            if entry.name.startswith("."):
                continue
            if entry.is_dir():
                if entry.name in SKIPPED_DIRS:
                    continue
                notes.extend(self._walk(entry))
            elif entry.suffix in NOTE_EXTENSIONS:
                notes.append(self._build_note(entry))
        return notes

    def list_notes(self, folder: Optional[str] = None, include_calendar: bool = True) -> List[Note]:
        """List project notes (optionally under ``folder``) and calendar notes.

        Trash and archive folders are skipped.
        """
        if folder:
            directory = self._folder_path(folder)
            return self._walk(directory)
        notes = self._walk(self.notes_root)
        if include_calendar:
            notes.extend(self._walk(self.root / CALENDAR_DIR))
        return notes

    def list_calendar_notes(self) -> List[Note]:
        return self._walk(self.root / CALENDAR_DIR)

    def list_trash(self) -> List[Note]:
        trash = self.root / TRASH_DIR
        if not trash.is_dir():
            return []
        return [
            self._build_note(p)
            for p in sorted(trash.rglob("*"))
            if p.is_file() and p.suffix in NOTE_EXTENSIONS
        ]

    def list_folders(self, max_depth: Optional[int] = None) -> List[Folder]:
        """Folders under ``Notes/`` (excluding trash/archive), depth-limited."""
        folders: List[Folder] = []

        def scan(directory: Path, prefix: str, depth: int) -> None:
            for entry in sorted(directory.iterdir()):
                if not entry.is_dir() or entry.name.startswith(".") or entry.name in SKIPPED_DIRS:
                    continue
                next_depth = depth + 1
                if max_depth is not None and next_depth > max_depth:
                    continue
                path = f"{prefix}/{entry.name}" if prefix else entry.name
                folders.append(Folder(path=path, name=entry.name, source=NoteSource.LOCAL))
                if max_depth is None or next_depth < max_depth:
                    scan(entry, path, next_depth)

        if self.notes_root.is_dir():
            scan(self.notes_root, "", 0)
        return folders

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write_note(self, path: str, content: str) -> Note:
        """Write ``content`` atomically (temp file + rename) and return the note."""
        full = self._resolve(path)
        normalized = content.replace("\r\n", "\n")
        temp = full.with_name(f"{full.name}.tmp")
        try:
            with self.file_lock:
                full.parent.mkdir(parents=True, exist_ok=True)
                temp.write_text(normalized, encoding="utf-8")
                os.replace(temp, full)
        except OSError as e:
            raise StorageError(
                f"Failed to write note {path}",
                operation="write_note",
                path=str(full),
                original_error=e,
            ) from e
        return self._build_note(full)

    def create_note(self, title: str, content: str = "", folder: Optional[str] = None) -> Note:
        """Create a project note named after ``title``; refuses to overwrite."""
        safe_title = sanitize_filename(title)
        if not safe_title:
            raise InvalidArgumentError("Title is required", field="title")
        directory = self._folder_path(folder) if folder else self.notes_root
        for ext in NOTE_EXTENSIONS:
            existing = directory / f"{safe_title}{ext}"
            if existing.exists():
                raise StorageError(
                    f"Note already exists: {self._relative(existing)}",
                    operation="create_note",
                    path=str(existing),
                    code=ErrorCode.CONFLICT,
                )
        relative = self._relative(directory / f"{safe_title}{self.file_extension}")
        note = self.write_note(relative, content or f"# {title}\n\n")
        logger.info(f"Created local note {relative}")
        return note

    def ensure_calendar_note(self, date_token: str) -> Note:
        """Return the daily note for ``date_token``, creating an empty one if needed."""
        existing = self.get_calendar_note(date_token)
        if existing is not None:
            return existing
        return self.write_note(self.calendar_path(date_token), "")

    def _move_file(self, source: Path, target: Path, operation: str) -> Path:
        try:
            with self.file_lock:
                target.parent.mkdir(parents=True, exist_ok=True)
                shutil.move(str(source), str(target))
        except OSError as e:
            raise StorageError(
                f"Failed to {operation.replace('_', ' ')} {self._relative(source)}",
                operation=operation,
                path=str(source),
                original_error=e,
            ) from e
        return target

    @staticmethod
    def _unique_target(target: Path) -> Path:
        counter = 1
        candidate = target
        while candidate.exists():
            candidate = target.with_name(f"{target.stem}-{counter}{target.suffix}")
            counter += 1
        return candidate

    def _require_file(self, path: str) -> Path:
        full = self._resolve(path)
        if not full.is_file():
            raise NoteNotFoundError(path)
        return full

    def delete_note(self, path: str) -> str:
        """Move a note to ``@Trash``; returns the trashed relative path."""
        full = self._require_file(path)
        target = self._unique_target(self.root / TRASH_DIR / full.name)
        self._move_file(full, target, "delete_note")
        trashed = self._relative(target)
        logger.info(f"Moved {path} to {trashed}")
        return trashed

    def move_note(self, path: str, destination_folder: str) -> str:
        """Move a note into another folder under ``Notes/``; returns the new path."""
        full = self._require_file(path)
        directory = self._folder_path(destination_folder)
        if not directory.is_dir():
            raise FolderNotFoundError(destination_folder)
        target = directory / full.name
        if target.exists():
            raise StorageError(
                f"A note named {full.name} already exists in {destination_folder}",
                operation="move_note",
                path=str(target),
                code=ErrorCode.CONFLICT,
            )
        return self._relative(self._move_file(full, target, "move_note"))

    def restore_note(self, path: str, destination_folder: Optional[str] = None) -> str:
        """Move a note out of ``@Trash`` into ``Notes/`` (or a folder under it)."""
        full = self._require_file(path)
        if TRASH_DIR not in self._relative(full).split("/"):
            raise NotInTrashError(path)
        directory = self._folder_path(destination_folder) if destination_folder else self.notes_root
        target = self._unique_target(directory / full.name)
        return self._relative(self._move_file(full, target, "restore_note"))

    def rename_note(self, path: str, new_title: str) -> str:
        """Rename a note's file, keeping its folder and extension."""
        full = self._require_file(path)
        safe = sanitize_filename(new_title)
        if not safe:
            raise InvalidArgumentError("New title is required", field="new_title")
        target = full.with_name(f"{safe}{full.suffix}")
        if target == full:
            return self._relative(full)
        if target.exists():
            raise StorageError(
                f"Note already exists: {self._relative(target)}",
                operation="rename_note",
                path=str(target),
                code=ErrorCode.CONFLICT,
            )
        return self._relative(self._move_file(full, target, "rename_note"))

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def create_folder(self, folder: str) -> Folder:
        directory = self._folder_path(folder)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(
                f"Failed to create folder {folder}",
                operation="create_folder",
                path=str(directory),
                original_error=e,
            ) from e
        relative = _to_posix(directory.relative_to(self.notes_root.resolve()))
        return Folder(path=relative, name=directory.name, source=NoteSource.LOCAL)

    def _require_folder(self, folder: str) -> Path:
        directory = self._folder_path(folder)
        if directory == self.notes_root.resolve() or not directory.is_dir():
            raise FolderNotFoundError(folder)
        return directory

    def move_folder(self, folder: str, destination_parent: Optional[str]) -> Folder:
        """Move a folder under another folder (or to the top of ``Notes/``)."""
        source = self._require_folder(folder)
        parent = self._folder_path(destination_parent) if destination_parent else self.notes_root.resolve()
        if not parent.is_dir():
            raise FolderNotFoundError(destination_parent or "")
        if parent == source or source in parent.parents:
            raise InvalidArgumentError(
                "Cannot move a folder into itself", field="destination", value=destination_parent
            )
        target = parent / source.name
        if target.exists():
            raise StorageError(
                f"Folder already exists: {target.name}",
                operation="move_folder",
                path=str(target),
                code=ErrorCode.CONFLICT,
            )
        self._move_file(source, target, "move_folder")
        relative = _to_posix(target.relative_to(self.notes_root.resolve()))
        return Folder(path=relative, name=target.name, source=NoteSource.LOCAL)

    def rename_folder(self, folder: str, new_name: str) -> Folder:
        source = self._require_folder(folder)
        safe = sanitize_filename(new_name)
        if not safe:
            raise InvalidArgumentError("New folder name is required", field="new_name")
        target = source.with_name(safe)
        if target.exists():
            raise StorageError(
                f"Folder already exists: {safe}",
                operation="rename_folder",
                path=str(target),
                code=ErrorCode.CONFLICT,
            )
        self._move_file(source, target, "rename_folder")
        relative = _to_posix(target.relative_to(self.notes_root.resolve()))
        return Folder(path=relative, name=safe, source=NoteSource.LOCAL)

    def delete_folder(self, folder: str) -> str:
        """Move a folder (with its notes) into ``@Trash``; returns the trashed path."""
        source = self._require_folder(folder)
        target = self._unique_target(self.root / TRASH_DIR / source.name)
        self._move_file(source, target, "delete_folder")
        return self._relative(target)

    def count_notes(self, folder: str) -> int:
        return len(self._walk(self._require_folder(folder)))
