"""Structured-store adapter for spaces (synced note collections).

Spaces live in SQLite through SQLAlchemy. Notes are addressed by UUID; their
filename is namespaced as ``%%NotePlanCloud%%/<space>/<id>`` so it can never
collide with a local relative path.
"""
import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError

from noteplan_mcp.exceptions import ErrorCode, NoteNotFoundError, StorageError
from noteplan_mcp.models.db_models import (DBSpace, DBSpaceFolder, DBSpaceNote,
                                           get_session_factory, space_note_filename)
from noteplan_mcp.models.schema import (Folder, Note, NoteSource, NoteType, Space,
                                        ensure_timezone_aware)
from noteplan_mcp.storage.fts_index import FtsIndex
from noteplan_mcp.storage.markdown_parser import extract_tags, extract_title
from noteplan_mcp.utils import iso_from_token, utc_now

logger = logging.getLogger(__name__)


class SpaceStore:
    """CRUD, listing and full-text search for space notes.

    Args:
        engine: SQLAlchemy engine from ``init_db``.
    """

    def __init__(self, engine: Any) -> None:
        self.engine = engine
        self._session_factory = get_session_factory(engine)
        self.fts = FtsIndex(engine, self._session_factory)

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    @staticmethod
    def _to_note(row: DBSpaceNote) -> Note:
        return Note(
            id=row.id,
            title=row.title,
            filename=row.filename,
            content=row.content or "",
            note_type=NoteType(row.note_type),
            source=NoteSource.SPACE,
            space_id=row.space_id,
            folder=row.folder or None,
            date=row.date,
            created_at=ensure_timezone_aware(row.created_at),
            modified_at=ensure_timezone_aware(row.updated_at),
        )

    def _write(self, operation: str, fn):
        """Run ``fn(session)`` in a committed transaction, wrapping DB faults."""
        try:
            with self._session_factory() as session:
                result = fn(session)
                session.commit()
                return result
        except SQLAlchemyError as e:
            raise StorageError(
                f"Space store {operation} failed",
                operation=operation,
                code=ErrorCode.STORAGE_FAILED,
                original_error=e,
            ) from e

    # ------------------------------------------------------------------
    # Spaces
    # ------------------------------------------------------------------

    def create_space(self, name: str, space_id: Optional[str] = None) -> Space:
        space_id = space_id or str(uuid.uuid4())

        def op(session):
            session.add(DBSpace(id=space_id, name=name))
            return Space(id=space_id, name=name)

        space = self._write("create_space", op)
        logger.info(f"Created space '{name}' ({space_id})")
        return space

    def list_spaces(self) -> List[Space]:
        with self._session_factory() as session:
            counts = dict(
                session.execute(
                    select(DBSpaceNote.space_id, func.count(DBSpaceNote.id))
                    .where(DBSpaceNote.note_type != NoteType.TRASH.value)
                    .group_by(DBSpaceNote.space_id)
                ).all()
            )
            rows = session.execute(select(DBSpace).order_by(DBSpace.name)).scalars().all()
            return [Space(id=r.id, name=r.name, note_count=counts.get(r.id, 0)) for r in rows]

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    def get_note(self, identifier: str) -> Optional[Note]:
        """Look up a note by id or namespaced filename."""
        with self._session_factory() as session:
            row = session.execute(
                select(DBSpaceNote).where(
                    (DBSpaceNote.id == identifier) | (DBSpaceNote.filename == identifier)
                )
            ).scalar_one_or_none()
            return self._to_note(row) if row else None

    def get_calendar_note(self, date_token: str, space_id: str) -> Optional[Note]:
        with self._session_factory() as session:
            row = session.execute(
                select(DBSpaceNote).where(
                    DBSpaceNote.space_id == space_id,
                    DBSpaceNote.date == date_token,
                    DBSpaceNote.note_type == NoteType.CALENDAR.value,
                )
            ).scalars().first()
            return self._to_note(row) if row else None

    def list_notes(
        self, space_id: Optional[str] = None, folder: Optional[str] = None
    ) -> List[Note]:
        """List non-trashed notes, optionally scoped to a space and folder subtree."""
        stmt = select(DBSpaceNote).where(DBSpaceNote.note_type != NoteType.TRASH.value)
        if space_id:
            stmt = stmt.where(DBSpaceNote.space_id == space_id)
        if folder:
            stmt = stmt.where(
                (DBSpaceNote.folder == folder) | DBSpaceNote.folder.like(f"{folder}/%")
            )
        with self._session_factory() as session:
            return [self._to_note(r) for r in session.execute(stmt).scalars().all()]

    def create_note(
        self,
        space_id: str,
        title: str,
        content: str = "",
        folder: Optional[str] = None,
        note_type: NoteType = NoteType.NOTE,
        date: Optional[str] = None,
    ) -> Note:
        note_id = str(uuid.uuid4())
        now = utc_now()

        def op(session):
            if session.get(DBSpace, space_id) is None:
                raise NoteNotFoundError(space_id, f"Space not found: {space_id}")
            row = DBSpaceNote(
                id=note_id,
                space_id=space_id,
                title=title,
                content=content,
                note_type=note_type.value,
                folder=folder or None,
                filename=space_note_filename(space_id, note_id),
                date=date,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.flush()
            return self._to_note(row)

        return self._write("create_note", op)

    def create_calendar_note(self, space_id: str, date_token: str, content: str = "") -> Note:
        return self.create_note(
            space_id,
            iso_from_token(date_token),
            content,
            note_type=NoteType.CALENDAR,
            date=date_token,
        )

    def _update(self, identifier: str, operation: str, **values) -> Note:
        def op(session):
            row = session.execute(
                select(DBSpaceNote).where(
                    (DBSpaceNote.id == identifier) | (DBSpaceNote.filename == identifier)
                )
            ).scalar_one_or_none()
            if row is None:
                raise NoteNotFoundError(identifier)
            for key, value in values.items():
                setattr(row, key, value)
            row.updated_at = utc_now()
            session.flush()
            return self._to_note(row)

        return self._write(operation, op)

    def write_note(self, identifier: str, content: str) -> Note:
        """Replace a note's content. Project-note titles follow the first line."""
        existing = self.get_note(identifier)
        if existing is None:
            raise NoteNotFoundError(identifier)
        values: Dict[str, Any] = {"content": content}
        if existing.note_type == NoteType.NOTE:
            values["title"] = extract_title(content, default=existing.title)
        return self._update(identifier, "write_note", **values)

    def rename_note(self, identifier: str, title: str) -> Note:
        return self._update(identifier, "rename_note", title=title)

    def move_note(self, identifier: str, folder: Optional[str]) -> Note:
        return self._update(identifier, "move_note", folder=folder or None)

    def delete_note(self, identifier: str) -> None:
        def op(session):
            row = session.execute(
                select(DBSpaceNote).where(
                    (DBSpaceNote.id == identifier) | (DBSpaceNote.filename == identifier)
                )
            ).scalar_one_or_none()
            if row is None:
                raise NoteNotFoundError(identifier)
            session.delete(row)

        self._write("delete_note", op)
        logger.info(f"Deleted space note {identifier}")

    # ------------------------------------------------------------------
    # Folders
    # ------------------------------------------------------------------

    def list_folders(self, space_id: Optional[str] = None) -> List[Folder]:
        stmt = select(DBSpaceFolder).order_by(DBSpaceFolder.path)
        if space_id:
            stmt = stmt.where(DBSpaceFolder.space_id == space_id)
        with self._session_factory() as session:
            return [
                Folder(path=r.path, name=r.name, source=NoteSource.SPACE, space_id=r.space_id)
                for r in session.execute(stmt).scalars().all()
            ]

    def create_folder(self, space_id: str, name: str, parent: Optional[str] = None) -> Folder:
        path = f"{parent.strip('/')}/{name}" if parent else name

        def op(session):
            if session.get(DBSpace, space_id) is None:
                raise NoteNotFoundError(space_id, f"Space not found: {space_id}")
            session.add(DBSpaceFolder(space_id=space_id, path=path, name=name))
            return Folder(path=path, name=name, source=NoteSource.SPACE, space_id=space_id)

        return self._write("create_folder", op)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_full_text(
        self, query: str, space_id: Optional[str] = None, limit: int = 50
    ) -> List[Note]:
        """Full-text search; returns non-trashed notes in rank order."""
        hits = self.fts.search(query, space_id=space_id, limit=limit)
        notes: List[Note] = []
        for hit in hits:
            note = self.get_note(hit["id"])
            if note is not None and not note.is_trashed:
                notes.append(note)
        return notes

    def list_tags(self, space_id: Optional[str] = None) -> List[str]:
        tags = set()
        for note in self.list_notes(space_id):
            tags.update(extract_tags(note.content))
        return sorted(tags)
