"""Tests for the unified note store."""
import pytest

from noteplan_mcp.exceptions import (
    AmbiguousTargetError,
    InvalidArgumentError,
    NoteInTrashError,
    NoteNotFoundError,
)
from noteplan_mcp.models.schema import NoteReference, NoteType
from noteplan_mcp.services.note_store import normalize_local_folder_filter


class TestSpaceResolution:
    """Space ids and names."""

    def test_by_id_and_name(self, note_store, space_id):
        assert note_store.resolve_space_id(space_id) == space_id
        assert note_store.resolve_space_id("team") == space_id
        assert note_store.resolve_space_id("  ") is None

    def test_unknown_space_lists_options(self, note_store, space_id):
        with pytest.raises(NoteNotFoundError) as excinfo:
            note_store.resolve_space_id("Nope")
        assert "Team (space-team)" in excinfo.value.message

    def test_ambiguous_space_name(self, note_store, space_store, space_id):
        space_store.create_space("Team", space_id="space-team-2")
        with pytest.raises(AmbiguousTargetError):
            note_store.resolve_space_id("Team")


class TestListing:
    """Cached listings across both backends."""

    def test_folder_filter_normalization(self):
        assert normalize_local_folder_filter("Notes") is None
        assert normalize_local_folder_filter("/Notes/Projects/") == "Projects"
        assert normalize_local_folder_filter("Projects\\Alpha") == "Projects/Alpha"
        assert normalize_local_folder_filter("") is None

    def test_lists_both_backends(self, note_store, local_store, space_store, space_id):
        local_store.create_note("Local")
        local_store.ensure_calendar_note("20240115")
        space_store.create_note(space_id, "Remote", "# Remote")
        titles = sorted(n.title for n in note_store.list_notes())
        assert titles == ["2024-01-15", "Local", "Remote"]

    def test_folder_drops_calendar_and_spaces(self, note_store, local_store, space_store, space_id):
        local_store.create_note("Roadmap", folder="Projects")
        local_store.create_note("Loose")
        local_store.ensure_calendar_note("20240115")
        space_store.create_note(space_id, "Remote", "# Remote")
        assert [n.title for n in note_store.list_notes(folder="Projects")] == ["Roadmap"]

    def test_space_scope(self, note_store, local_store, space_store, space_id):
        local_store.create_note("Local")
        space_store.create_note(space_id, "Remote", "# Remote", folder="Projects")
        assert [n.title for n in note_store.list_notes(space="Team")] == ["Remote"]
        assert [n.title for n in note_store.list_notes(space="Team", folder="Projects")] == ["Remote"]

    def test_type_filter(self, note_store, local_store):
        local_store.create_note("Local")
        local_store.ensure_calendar_note("20240115")
        notes = note_store.list_notes(note_type=NoteType.CALENDAR)
        assert [n.title for n in notes] == ["2024-01-15"]

    def test_trash_listing(self, note_store, local_store, space_id):
        local_store.delete_note(local_store.create_note("Old").id)
        local_store.create_note("Live")
        assert [n.title for n in note_store.list_notes()] == ["Live"]
        assert [n.filename for n in note_store.list_notes(note_type=NoteType.TRASH)] == ["@Trash/Old.md"]
        assert note_store.list_notes(space="Team", note_type=NoteType.TRASH) == []

    def test_listing_is_cached_until_invalidated(self, note_store, local_store):
        local_store.create_note("First")
        assert len(note_store.list_notes()) == 1
        local_store.create_note("Second")
        assert len(note_store.list_notes()) == 1
        note_store.invalidate()
        assert len(note_store.list_notes()) == 2

    def test_uses_the_injected_cache(self, note_store, local_store, listing_cache):
        """An empty shared cache is still the one listings go through."""
        assert len(listing_cache) == 0
        assert note_store.cache is listing_cache
        local_store.create_note("First")
        note_store.list_notes()
        note_store.list_notes()
        assert len(listing_cache) == 1
        assert listing_cache.misses == 1
        assert listing_cache.hits == 1

    def test_listing_expires(self, note_store, local_store, fake_clock):
        local_store.create_note("First")
        note_store.list_notes()
        local_store.create_note("Second")
        fake_clock.advance(6)
        assert len(note_store.list_notes()) == 2

    def test_list_folders(self, note_store, local_store, space_store, space_id):
        local_store.create_folder("Projects/Alpha")
        local_store.create_folder("Areas")
        space_store.create_folder(space_id, "Shared")
        assert [f.path for f in note_store.list_folders()] == ["Areas", "Projects", "Projects/Alpha"]
        assert [f.path for f in note_store.list_folders(space="Team")] == ["Shared"]
        assert [f.path for f in note_store.list_folders(recursive=False)] == ["Areas", "Projects"]
        assert [f.path for f in note_store.list_folders(parent_path="Projects")] == ["Projects/Alpha"]
        assert [f.path for f in note_store.list_folders(query="alp")] == ["Projects/Alpha"]

    def test_list_tags(self, note_store, local_store, space_store, space_id):
        local_store.write_note("Notes/a.md", "# A\n#local")
        space_store.create_note(space_id, "B", "#remote")
        assert note_store.list_tags() == ["#local", "#remote"]
        assert note_store.list_tags(space="Team") == ["#remote"]


class TestLookup:
    """Reference lookup by id, filename, date and title."""

    def test_lookup_by_each_kind(self, note_store, local_store, space_store, space_id):
        local = local_store.create_note("Plan")
        local_store.ensure_calendar_note("20240115")
        remote = space_store.create_note(space_id, "Remote", "# Remote")
        assert note_store.get_note(NoteReference(kind="id", value=remote.id)).id == remote.id
        assert note_store.get_note(NoteReference(kind="id", value=local.id)).id == local.id
        assert note_store.get_note(NoteReference(kind="filename", value=remote.filename)).id == remote.id
        assert note_store.get_note(NoteReference(kind="date", value="2024-01-15")).title == "2024-01-15"
        assert note_store.get_note(NoteReference(kind="title", value="remote")).id == remote.id

    def test_date_in_space(self, note_store, space_store, space_id):
        calendar = space_store.create_calendar_note(space_id, "20240115")
        ref = NoteReference(kind="date", value="20240115", space="Team")
        assert note_store.get_note(ref).id == calendar.id

    def test_invalid_date(self, note_store):
        with pytest.raises(InvalidArgumentError):
            note_store.get_note(NoteReference(kind="date", value="someday"))

    def test_escaping_path_is_not_found(self, note_store):
        assert note_store.get_note(NoteReference(kind="filename", value="../etc/passwd")) is None

    def test_trash_requires_opt_in(self, note_store, local_store):
        trashed = local_store.delete_note(local_store.create_note("Plan").id)
        ref = NoteReference(kind="filename", value=trashed)
        with pytest.raises(NoteInTrashError):
            note_store.get_note_or_raise(ref)
        assert note_store.get_note_or_raise(ref, allow_trash=True).is_trashed

    def test_missing_note(self, note_store):
        with pytest.raises(NoteNotFoundError):
            note_store.get_note_or_raise(NoteReference(kind="title", value="ghost"))

    def test_reference_priority(self):
        ref = NoteReference.from_args(filename="Notes/a.md", title="A", query="a")
        assert ref.kind == "filename"
        with pytest.raises(InvalidArgumentError):
            NoteReference.from_args(title="  ")
