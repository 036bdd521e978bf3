"""Unified read path over the local tree and the spaces store.

Search and resolution both list the same note universe on every call, so
listings go through a short-TTL :class:`ListingCache`. Writers call
:meth:`NoteStore.invalidate` after every successful mutation.
"""
import logging
from typing import List, Optional, Sequence

from noteplan_mcp.config import config
from noteplan_mcp.exceptions import (AmbiguousTargetError, InvalidArgumentError,
                                     NoteInTrashError, NoteNotFoundError)
from noteplan_mcp.models.db_models import SPACE_FILENAME_PREFIX
from noteplan_mcp.models.schema import (Folder, Note, NoteReference, NoteSource, NoteType,
                                        Space)
from noteplan_mcp.services.listing_cache import ListingCache
from noteplan_mcp.storage.local_store import NOTES_DIR, LocalNoteStore
from noteplan_mcp.storage.markdown_parser import extract_tags
from noteplan_mcp.storage.space_store import SpaceStore
from noteplan_mcp.utils import resolve_calendar_date

logger = logging.getLogger(__name__)


def normalize_local_folder_filter(folder: Optional[str]) -> Optional[str]:
    """Canonical local folder filter relative to ``Notes/``; None means "all"."""
    if not folder:
        return None
    normalized = folder.strip().replace("\\", "/").strip("/")
    if not normalized or normalized in (NOTES_DIR, "."):
        return None
    if normalized.startswith(f"{NOTES_DIR}/"):
        normalized = normalized[len(NOTES_DIR) + 1:]
    return normalized or None


def _sort_newest_first(notes: List[Note]) -> List[Note]:
    return sorted(
        notes,
        key=lambda n: n.modified_at.timestamp() if n.modified_at else 0.0,
        reverse=True,
    )


class NoteStore:
    """Cached listing and reference lookup across both backends.

    Args:
        local: Local file adapter.
        spaces: Structured-store adapter.
        cache: Shared listing cache; a private one is created when omitted.
    """

    def __init__(
        self,
        local: LocalNoteStore,
        spaces: SpaceStore,
        cache: Optional[ListingCache] = None,
    ) -> None:
        self.local = local
        self.spaces = spaces
        self.cache = cache if cache is not None else ListingCache()

    def invalidate(self) -> None:
        self.cache.invalidate_all()

    # ------------------------------------------------------------------
    # Spaces
    # ------------------------------------------------------------------

    def list_spaces(self) -> List[Space]:
        return self.spaces.list_spaces()

    def resolve_space_id(self, space: Optional[str]) -> Optional[str]:
        """Map a space id or unique case-insensitive name to its id.

        Empty input passes through as None. Unknown or ambiguous names raise
        with the available options listed.
        """
        if space is None or not str(space).strip():
            return None
        wanted = str(space).strip()
        spaces = self.spaces.list_spaces()
        for candidate in spaces:
            if candidate.id == wanted:
                return candidate.id

        by_name = [s for s in spaces if s.name.lower() == wanted.lower()]
        if len(by_name) == 1:
            return by_name[0].id
        if by_name:
            options = [f"{s.name} ({s.id})" for s in by_name]
            raise AmbiguousTargetError(
                f'Ambiguous space name: "{wanted}" matches {len(by_name)} spaces. '
                f"Use the space ID instead: {', '.join(options)}",
                options=options,
            )
        available = [f"{s.name} ({s.id})" for s in spaces]
        raise NoteNotFoundError(
            wanted,
            f'Space not found: "{wanted}". Available spaces: '
            f"{', '.join(available) if available else 'none'}",
        )

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_notes(
        self,
        folder: Optional[str] = None,
        space: Optional[str] = None,
        note_type: Optional[NoteType] = None,
    ) -> List[Note]:
        """List notes newest first; cached for ``notes_cache_ttl`` seconds.

        A folder filter scopes local notes to that subtree and drops calendar
        notes. Space notes are included when no folder is given, or when a
        space is given (the folder then filters within the space).
        ``NoteType.TRASH`` lists the local trash only; spaces have none.
        """
        space_id = self.resolve_space_id(space)
        local_folder = normalize_local_folder_filter(folder)
        key = ListingCache.make_key(
            "notes",
            folder=local_folder if not space_id else (folder or None),
            space=space_id,
            type=note_type.value if note_type else None,
        )

        def load() -> List[Note]:
            if note_type == NoteType.TRASH:
                return [] if space_id else _sort_newest_first(self.local.list_trash())
            notes: List[Note] = []
            if not space_id:
                if note_type in (None, NoteType.NOTE):
                    notes.extend(self.local.list_notes(local_folder, include_calendar=False))
                if note_type in (None, NoteType.CALENDAR) and not local_folder:
                    notes.extend(self.local.list_calendar_notes())
            if space_id or not local_folder:
                space_folder = folder.strip().strip("/") if (space_id and folder) else None
                for note in self.spaces.list_notes(space_id, space_folder):
                    if note_type is None or note.note_type == note_type:
                        notes.append(note)
            logger.debug(f"Listed {len(notes)} notes (folder={folder}, space={space_id})")
            return _sort_newest_first(notes)

        return list(self.cache.get_or_load(key, config.notes_cache_ttl, load))

    def list_folders(
        self,
        space: Optional[str] = None,
        include_local: Optional[bool] = None,
        include_spaces: Optional[bool] = None,
        query: Optional[str] = None,
        max_depth: Optional[int] = None,
        parent_path: Optional[str] = None,
        recursive: bool = True,
    ) -> List[Folder]:
        """List folders, deduped on ``source:space:path`` and sorted by path."""
        space_id = self.resolve_space_id(space)
        if include_local is None:
            include_local = not space_id
        if include_spaces is None:
            include_spaces = bool(space_id)
        normalized_query = (query or "").strip().lower()
        parent = normalize_local_folder_filter(parent_path)
        key = ListingCache.make_key(
            "folders",
            space=space_id,
            include_local=include_local,
            include_spaces=include_spaces,
            query=normalized_query,
            max_depth=max_depth,
            parent=parent,
            recursive=recursive,
        )

        def load() -> List[Folder]:
            folders: List[Folder] = []
            if include_local:
                folders.extend(self.local.list_folders(max_depth))
            if include_spaces:
                folders.extend(self.spaces.list_folders(space_id))

            seen = set()
            unique: List[Folder] = []
            for item in folders:
                if item.identity_key not in seen:
                    seen.add(item.identity_key)
                    unique.append(item)

            if normalized_query:
                unique = [
                    f
                    for f in unique
                    if normalized_query in f.path.lower() or normalized_query in f.name.lower()
                ]
            if parent:
                prefix = f"{parent}/"
                unique = [
                    f
                    for f in unique
                    if f.path.startswith(prefix)
                    and (recursive or "/" not in f.path[len(prefix):])
                ]
            elif not recursive:
                unique = [f for f in unique if "/" not in f.path]
            return sorted(unique, key=lambda f: f.path.lower())

        return list(self.cache.get_or_load(key, config.folders_cache_ttl, load))

    def list_tags(self, space: Optional[str] = None) -> List[str]:
        space_id = self.resolve_space_id(space)
        tags = set(self.spaces.list_tags(space_id))
        if not space_id:
            for note in self.local.list_notes():
                tags.update(extract_tags(note.content))
        return sorted(tags)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def _by_title(self, title: str, space_id: Optional[str]) -> Optional[Note]:
        wanted = title.strip().lower()
        candidates: Sequence[Note]
        if space_id:
            candidates = self.spaces.list_notes(space_id)
        else:
            candidates = self.local.list_notes() + self.spaces.list_notes()
        for note in candidates:
            if note.title.strip().lower() == wanted:
                return note
        return None

    def get_note(self, ref: NoteReference) -> Optional[Note]:
        """Fetch a note for a tagged reference; None when nothing matches.

        ``query`` references are not looked up here; the resolver ranks them.
        """
        space_id = self.resolve_space_id(ref.space)
        value = ref.value

        if ref.kind == "id":
            note = self.spaces.get_note(value)
            if note is not None:
                return note
            return self._read_local(value)

        if ref.kind == "date":
            token = resolve_calendar_date(value)
            if token is None:
                raise InvalidArgumentError(
                    f"Invalid date: {value}. Use YYYYMMDD, YYYY-MM-DD, today, tomorrow or yesterday",
                    field="date",
                    value=value,
                )
            if space_id:
                return self.spaces.get_calendar_note(token, space_id)
            return self.local.get_calendar_note(token)

        if ref.kind == "filename":
            if space_id:
                note = self.spaces.get_note(value)
                if note is not None and note.space_id == space_id:
                    return note
            if SPACE_FILENAME_PREFIX in value:
                return self.spaces.get_note(value)
            return self._read_local(value) or self.spaces.get_note(value)

        if ref.kind == "title":
            return self._by_title(value, space_id)

        return None

    def _read_local(self, path: str) -> Optional[Note]:
        try:
            return self.local.read_note(path)
        except InvalidArgumentError:
            # Not a path inside the tree, so it cannot be a local id
            return None

    def get_note_or_raise(self, ref: NoteReference, allow_trash: bool = False) -> Note:
        """Like :meth:`get_note`, but raises not-found and in-trash errors."""
        note = self.get_note(ref)
        if note is None:
            raise NoteNotFoundError(ref.value)
        if note.is_trashed and not allow_trash:
            raise NoteInTrashError(note.filename)
        return note

    @staticmethod
    def is_space_note(note: Note) -> bool:
        return note.source == NoteSource.SPACE
