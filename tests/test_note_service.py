"""Tests for the note service (reads, edits and lifecycle)."""
import pytest

from noteplan_mcp.config import config
from noteplan_mcp.exceptions import (
    AmbiguousTargetError,
    ConfirmationInvalidError,
    ConfirmationRequiredError,
    ConflictError,
    EmptyContentBlockedError,
    InvalidArgumentError,
    InvalidLineReferenceError,
    NoteInTrashError,
    NoteNotFoundError,
    UnsupportedTargetError,
)
from noteplan_mcp.models.schema import (
    DryRunResult,
    InsertPosition,
    MutationResult,
    NoteReference,
    NoteType,
    TaskStatus,
)

TWENTY_LINES = "\n".join(f"line {n}" for n in range(1, 21))


def by_file(filename):
    return NoteReference(kind="filename", value=filename)


def confirmed(method, *args, **kwargs):
    """Dry-run a gated operation, then execute it with the issued token."""
    preview = method(*args, dry_run=True, **kwargs)
    assert isinstance(preview, DryRunResult)
    return method(*args, confirmation_token=preview.confirmation_token, **kwargs)


class TestReads:
    """Paragraph windows, paragraph search and listing."""

    def test_get_paragraphs_types_lines(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan\n## Tasks\n* [x] ship\n+ milk\n- bullet\ntext")
        note, window, hints = note_service.get_paragraphs(by_file("Notes/Plan.md"))
        types = [entry["type"] for entry in window.lines]
        assert types == ["title", "heading", "task", "checklist", "bullet", "text"]
        assert window.lines[1]["headingLevel"] == 2
        assert window.lines[2]["taskStatus"] == "done"
        assert "headingLevel" not in window.lines[2]
        assert hints == []

    def test_large_note_hint(self, note_service, local_store):
        local_store.write_note("Notes/Big.md", "\n".join(["x"] * 600))
        _, window, hints = note_service.get_paragraphs(by_file("Notes/Big.md"))
        assert window.returned_line_count == 200
        assert window.has_more is True
        assert hints and "600 lines" in hints[0]
        _, _, ranged = note_service.get_paragraphs(by_file("Notes/Big.md"), start_line=1, end_line=10)
        assert ranged == []

    def test_search_paragraphs(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan\n\nfirst\nthe target line\nlast\n\nafter")
        _, matches = note_service.search_paragraphs(by_file("Notes/Plan.md"), "TARGET", context_lines=1)
        assert len(matches) == 1
        match = matches[0]
        assert match["line"] == 4
        assert (match["paragraphStartLine"], match["paragraphEndLine"]) == (3, 5)
        assert match["contextBefore"] == ["first"]
        assert match["contextAfter"] == ["last"]

    def test_search_paragraphs_requires_query(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan")
        with pytest.raises(InvalidArgumentError):
            note_service.search_paragraphs(by_file("Notes/Plan.md"), " ")

    def test_list_notes_paging(self, note_service, local_store):
        for n in range(5):
            local_store.write_note(f"Notes/Note {n}.md", f"# Note {n}")
        page = note_service.list_notes(limit=2)
        assert page["count"] == 2
        assert page["total"] == 5
        assert page["hasMore"] is True
        assert page["nextCursor"] == "2"
        last = note_service.list_notes(limit=2, cursor="4")
        assert last["count"] == 1
        assert last["hasMore"] is False
        assert last["nextCursor"] is None

    def test_list_notes_query_and_types(self, note_service, local_store):
        local_store.write_note("Notes/Alpha.md", "# Alpha")
        local_store.write_note("Notes/Beta.md", "# Beta")
        local_store.ensure_calendar_note("20240115")
        assert [n["title"] for n in note_service.list_notes(query="alp")["notes"]] == ["Alpha"]
        calendar = note_service.list_notes(types=[NoteType.CALENDAR])["notes"]
        assert [n["type"] for n in calendar] == ["calendar"]

    def test_list_notes_includes_trash_on_request(self, note_service, local_store):
        local_store.write_note("Notes/Live.md", "# Live")
        local_store.write_note("@Trash/Old.md", "# Old")
        assert [n["title"] for n in note_service.list_notes()["notes"]] == ["Live"]
        trashed = note_service.list_notes(types=[NoteType.TRASH])["notes"]
        assert [n["filename"] for n in trashed] == ["@Trash/Old.md"]

    def test_calendar_note_lookup(self, note_service, local_store):
        local_store.ensure_calendar_note("20240115")
        assert note_service.get_calendar_note("2024-01-15").date == "20240115"
        with pytest.raises(NoteNotFoundError):
            note_service.get_calendar_note("20240116")
        with pytest.raises(InvalidArgumentError):
            note_service.get_calendar_note("someday")


class TestReferences:
    """Loose ``query`` references."""

    def test_query_resolves(self, note_service, local_store):
        local_store.write_note("Notes/Weekly Plan.md", "# Weekly Plan")
        note = note_service.get_note(NoteReference(kind="query", value="weekly plan"))
        assert note.filename == "Notes/Weekly Plan.md"

    def test_ambiguous_query(self, note_service, local_store):
        local_store.write_note("Notes/A/Plan A.md", "# Plan A")
        local_store.write_note("Notes/B/Plan B.md", "# Plan B")
        with pytest.raises(AmbiguousTargetError):
            note_service.get_note(NoteReference(kind="query", value="plan"))

    def test_unknown_query(self, note_service):
        with pytest.raises(NoteNotFoundError):
            note_service.get_note(NoteReference(kind="query", value="ghost"))


class TestContentEdits:
    """Line-level and content edits."""

    def test_insert_retabs_lists(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan\n")
        result = note_service.insert_content(by_file("Notes/Plan.md"), "* parent\n  * child")
        assert result.note.content == "# Plan\n* parent\n\t* child\n"
        assert result.extra["retabbedLines"] == 1
        assert result.line_delta == 2

    def test_insert_preserves_indentation_when_asked(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan")
        result = note_service.insert_content(
            by_file("Notes/Plan.md"), "  * child", indentation_style="preserve"
        )
        assert result.note.content == "# Plan\n  * child"

    def test_insert_in_section(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan\n## Tasks\n* one\n\n## Notes")
        result = note_service.insert_content(
            by_file("Notes/Plan.md"), "* two", InsertPosition.IN_SECTION, heading="Tasks"
        )
        assert result.note.content == "# Plan\n## Tasks\n* one\n* two\n\n## Notes"

    def test_missing_heading_lists_available(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan\n## Tasks\n* one\n## Notes")
        with pytest.raises(InvalidArgumentError) as excinfo:
            note_service.insert_content(
                by_file("Notes/Plan.md"), "x", InsertPosition.IN_SECTION, heading="Ideas"
            )
        assert excinfo.value.details["availableHeadings"] == ["Plan", "Tasks", "Notes"]
        assert excinfo.value.hint == "Available headings: Plan, Tasks, Notes"

    def test_insert_empty_is_blocked(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan")
        with pytest.raises(EmptyContentBlockedError):
            note_service.insert_content(by_file("Notes/Plan.md"), "  \n")

    def test_expected_hash_conflict(self, note_service, local_store):
        note = local_store.write_note("Notes/Plan.md", "# Plan")
        with pytest.raises(ConflictError):
            note_service.append_content(by_file("Notes/Plan.md"), "more", expected_hash="deadbeef")
        result = note_service.append_content(
            by_file("Notes/Plan.md"), "more", expected_hash=note.content_hash
        )
        assert result.note.content == "# Plan\nmore"

    def test_trashed_note_cannot_be_edited(self, note_service, local_store):
        local_store.write_note("@Trash/Old.md", "# Old")
        with pytest.raises(NoteInTrashError):
            note_service.append_content(by_file("@Trash/Old.md"), "x")

    def test_edit_line(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan\nold")
        result = note_service.edit_line(by_file("Notes/Plan.md"), 2, "new")
        assert result.note.content == "# Plan\nnew"
        assert result.extra["originalLine"] == "old"
        assert result.line_delta == 0
        assert result.warnings == []

    def test_edit_line_to_empty(self, note_service, local_store):
        local_store.write_note("Notes/One.md", "only line")
        with pytest.raises(EmptyContentBlockedError):
            note_service.edit_line(by_file("Notes/One.md"), 1, "")
        result = note_service.edit_line(by_file("Notes/One.md"), 1, "", allow_empty_content=True)
        assert result.note.content == ""

    def test_edit_line_out_of_range(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan")
        with pytest.raises(InvalidLineReferenceError):
            note_service.edit_line(by_file("Notes/Plan.md"), 5, "x")

    def test_update_task(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan\n\t* [ ] ship it !!")
        result = note_service.update_task(by_file("Notes/Plan.md"), 2, TaskStatus.DONE)
        assert result.note.content == "# Plan\n\t* [x] ship it !!"
        assert result.extra["updatedLine"] == "\t* [x] ship it !!"

    def test_update_task_on_text(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan\ntext")
        with pytest.raises(InvalidArgumentError):
            note_service.update_task(by_file("Notes/Plan.md"), 2, TaskStatus.DONE)

    def test_properties(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan")
        added = note_service.set_property(by_file("Notes/Plan.md"), "status", "active")
        assert added.note.content == "---\nstatus: active\n---\n# Plan"
        assert added.line_delta == 3
        removed = note_service.remove_property(by_file("Notes/Plan.md"), "status")
        assert removed.note.content == "# Plan"
        with pytest.raises(InvalidArgumentError):
            note_service.remove_property(by_file("Notes/Plan.md"), "status")

    def test_space_note_edit(self, note_service, space_store, space_id):
        note = space_store.create_note(space_id, "Remote", "# Remote")
        result = note_service.append_content(NoteReference(kind="id", value=note.id), "added")
        assert result.note.content == "# Remote\nadded"
        assert space_store.get_note(note.id).content == "# Remote\nadded"


class TestGatedEdits:
    """Dry runs and confirmation tokens for destructive edits."""

    def test_delete_lines_flow(self, note_service, local_store):
        local_store.write_note("Notes/Long.md", TWENTY_LINES)
        preview = note_service.delete_lines(by_file("Notes/Long.md"), 10, 12, dry_run=True)
        assert preview.preview["linesToDelete"] == ["line 10", "line 11", "line 12"]
        assert preview.preview["lineCountBefore"] == 20
        assert preview.preview["lineCountAfter"] == 17
        # Nothing is written by a dry run
        assert local_store.read_note("Notes/Long.md").content == TWENTY_LINES

        result = note_service.delete_lines(
            by_file("Notes/Long.md"), 10, 12, confirmation_token=preview.confirmation_token
        )
        assert isinstance(result, MutationResult)
        assert result.line_delta == -3
        assert len(result.note.content.split("\n")) == 17
        assert result.warnings[0].startswith("Line numbers after line 12 shifted by -3")

    def test_delete_lines_requires_token(self, note_service, local_store):
        local_store.write_note("Notes/Long.md", TWENTY_LINES)
        with pytest.raises(ConfirmationRequiredError):
            note_service.delete_lines(by_file("Notes/Long.md"), 1, 2)

    def test_token_is_bound_to_range(self, note_service, local_store):
        local_store.write_note("Notes/Long.md", TWENTY_LINES)
        preview = note_service.delete_lines(by_file("Notes/Long.md"), 1, 2, dry_run=True)
        with pytest.raises(ConfirmationInvalidError):
            note_service.delete_lines(
                by_file("Notes/Long.md"), 1, 3, confirmation_token=preview.confirmation_token
            )

    def test_token_is_single_use(self, note_service, local_store):
        local_store.write_note("Notes/Long.md", TWENTY_LINES)
        preview = note_service.delete_lines(by_file("Notes/Long.md"), 1, 1, dry_run=True)
        note_service.delete_lines(by_file("Notes/Long.md"), 1, 1, confirmation_token=preview.confirmation_token)
        with pytest.raises(ConfirmationInvalidError):
            note_service.delete_lines(
                by_file("Notes/Long.md"), 1, 1, confirmation_token=preview.confirmation_token
            )

    def test_deleting_everything_is_blocked_before_dry_run(self, note_service, local_store):
        local_store.write_note("Notes/Short.md", "a\nb")
        with pytest.raises(EmptyContentBlockedError):
            note_service.delete_lines(by_file("Notes/Short.md"), 1, 2, dry_run=True)

    def test_replace_lines_token_is_bound_to_content(self, note_service, local_store):
        local_store.write_note("Notes/Long.md", TWENTY_LINES)
        preview = note_service.replace_lines(by_file("Notes/Long.md"), 2, 3, "new", dry_run=True)
        assert preview.preview["linesToReplace"] == ["line 2", "line 3"]
        with pytest.raises(ConfirmationInvalidError):
            note_service.replace_lines(
                by_file("Notes/Long.md"), 2, 3, "different", confirmation_token=preview.confirmation_token
            )

    def test_replace_lines(self, note_service, local_store):
        local_store.write_note("Notes/Long.md", TWENTY_LINES)
        result = confirmed(note_service.replace_lines, by_file("Notes/Long.md"), 2, 3, "new")
        assert result.note.content.split("\n")[:3] == ["line 1", "new", "line 4"]
        assert result.line_delta == -1

    def test_update_note(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan\n![img](a.png)")
        preview = note_service.update_note(by_file("Notes/Plan.md"), "# Plan\nrewritten", dry_run=True)
        assert preview.warnings == ["Removed attachment references: a.png"]
        result = note_service.update_note(
            by_file("Notes/Plan.md"), "# Plan\nrewritten", confirmation_token=preview.confirmation_token
        )
        assert result.note.content == "# Plan\nrewritten"
        assert "Removed attachment references: a.png" in result.warnings


class TestLifecycle:
    """Create, delete, restore, move and rename."""

    def test_create_note_adds_title(self, note_service):
        result = note_service.create_note("Plan", "body")
        assert result.note.content == "# Plan\n\nbody"
        assert result.note.filename == "Notes/Plan.md"

    def test_create_note_keeps_existing_title(self, note_service):
        assert note_service.create_note("Plan", "# Plan\nbody").note.content == "# Plan\nbody"

    def test_create_note_matches_folder(self, note_service, local_store):
        local_store.create_folder("10 - Projects")
        result = note_service.create_note("Roadmap", folder="projects")
        assert result.note.filename == "Notes/10 - Projects/Roadmap.md"
        assert result.extra["folderResolution"]["matched"] is True

    def test_create_note_new_folder(self, note_service):
        result = note_service.create_note("Roadmap", folder="Fresh")
        assert result.note.filename == "Notes/Fresh/Roadmap.md"
        assert result.extra["folderResolution"]["created"] is True

    def test_create_space_note(self, note_service, space_id):
        result = note_service.create_note("Remote", space="Team")
        assert result.note.space_id == space_id
        assert result.note.content == "# Remote\n\n"

    def test_create_invalidates_listing(self, note_service, note_store):
        assert note_store.list_notes() == []
        note_service.create_note("Plan")
        assert len(note_store.list_notes()) == 1

    def test_delete_and_restore_local(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan")
        deleted = confirmed(note_service.delete_note, by_file("Notes/Plan.md"))
        assert deleted.extra["trashedPath"] == "@Trash/Plan.md"
        restored = confirmed(note_service.restore_note, by_file("@Trash/Plan.md"))
        assert restored.note.filename == "Notes/Plan.md"
        assert restored.note.note_type == NoteType.NOTE

    def test_delete_space_note_is_permanent(self, note_service, space_store, space_id):
        note = space_store.create_note(space_id, "Remote", "# Remote")
        confirmed(note_service.delete_note, NoteReference(kind="id", value=note.id))
        assert space_store.get_note(note.id) is None

    def test_space_notes_cannot_move_or_restore(self, note_service, space_store, space_id):
        note = space_store.create_note(space_id, "Remote", "# Remote")
        ref = NoteReference(kind="id", value=note.id)
        with pytest.raises(UnsupportedTargetError):
            note_service.move_note(ref, "Projects", dry_run=True)
        with pytest.raises(UnsupportedTargetError):
            note_service.restore_note(ref, dry_run=True)

    def test_move_note(self, note_service, local_store):
        local_store.create_folder("Projects")
        local_store.write_note("Notes/Plan.md", "# Plan")
        result = confirmed(note_service.move_note, by_file("Notes/Plan.md"), "Projects")
        assert result.note.filename == "Notes/Projects/Plan.md"
        assert result.extra["previousFilename"] == "Notes/Plan.md"

    def test_rename_note(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan")
        result = confirmed(note_service.rename_note, by_file("Notes/Plan.md"), "Better Plan")
        assert result.note.filename == "Notes/Better Plan.md"

    def test_rename_space_note(self, note_service, space_store, space_id):
        note = space_store.create_note(space_id, "Remote", "# Remote")
        result = confirmed(note_service.rename_note, NoteReference(kind="id", value=note.id), "Renamed")
        assert result.note.title == "Renamed"

    def test_calendar_notes_cannot_be_renamed(self, note_service, local_store):
        local_store.ensure_calendar_note("20240115")
        with pytest.raises(UnsupportedTargetError):
            note_service.rename_note(NoteReference(kind="date", value="20240115"), "Other", dry_run=True)


class TestFolders:
    """Folder creation and gated folder operations."""

    def test_create_local_and_space(self, note_service, space_id):
        assert note_service.create_folder("Alpha", parent="Projects")["folder"]["path"] == "Projects/Alpha"
        space_folder = note_service.create_folder("Shared", space="Team")["folder"]
        assert space_folder["spaceId"] == space_id

    def test_move_folder(self, note_service, local_store):
        local_store.create_folder("Projects")
        local_store.create_note("Roadmap", folder="Alpha")
        preview = note_service.move_folder("Alpha", "Projects", dry_run=True)
        assert preview.preview["noteCount"] == 1
        result = note_service.move_folder(
            "Alpha", "Projects", confirmation_token=preview.confirmation_token
        )
        assert result["folder"]["path"] == "Projects/Alpha"

    def test_rename_folder(self, note_service, local_store):
        local_store.create_folder("Alpha")
        result = confirmed(note_service.rename_folder, "Alpha", "Beta")
        assert result["folder"]["path"] == "Beta"

    def test_delete_folder(self, note_service, local_store):
        local_store.create_note("Roadmap", folder="Alpha")
        result = confirmed(note_service.delete_folder, "Notes/Alpha")
        assert result["trashedPath"] == "@Trash/Alpha"
        assert result["noteCount"] == 1


class TestCalendar:
    """Daily notes."""

    def test_ensure_calendar_note(self, note_service):
        note, created = note_service.ensure_calendar_note("2024-01-15")
        assert created is True
        assert note.filename == "Calendar/20240115.md"
        again, created_again = note_service.ensure_calendar_note("20240115")
        assert created_again is False
        assert again.filename == note.filename

    def test_ensure_space_calendar_note(self, note_service, space_id):
        note, created = note_service.ensure_calendar_note("20240115", space="Team")
        assert created is True
        assert note.space_id == space_id

    def test_add_to_today(self, note_service):
        first = note_service.add_to_today("* [ ] morning task")
        assert first.extra["created"] is True
        assert first.note.note_type == NoteType.CALENDAR
        second = note_service.add_to_today("* [ ] second task")
        assert "created" not in second.extra
        assert second.note.content == "* [ ] morning task\n* [ ] second task"


TASK_NOTE = "\n".join(
    [
        "# Plan",
        "* [ ] call @alice about #work",
        "* [x] shipped",
        "+ [ ] pack bags !!",
        "- plain bullet",
        "\t* follow up >2024-01-20",
    ]
)


class TestTasks:
    """Listing, adding and completing tasks."""

    def test_get_tasks(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", TASK_NOTE)
        note, tasks = note_service.get_tasks(by_file("Notes/Plan.md"))
        assert note.filename == "Notes/Plan.md"
        assert [t["line"] for t in tasks] == [2, 3, 4, 6]
        first = tasks[0]
        assert first["lineIndex"] == 1
        assert first["status"] == "open"
        assert first["tags"] == ["#work"]
        assert first["mentions"] == ["@alice"]
        assert tasks[2]["type"] == "checklist"
        assert tasks[2]["priority"] == 2
        assert tasks[3]["indentLevel"] == 1
        assert tasks[3]["scheduledDate"] == "2024-01-20"

    def test_get_tasks_by_status(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", TASK_NOTE)
        _, done = note_service.get_tasks(by_file("Notes/Plan.md"), TaskStatus.DONE)
        assert [t["content"] for t in done] == ["shipped"]

    def test_add_task_uses_plain_marker(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan")
        result = note_service.add_task(by_file("Notes/Plan.md"), "write report")
        assert result.extra["task"] == "* write report"
        assert result.note.content == "# Plan\n* write report"

    def test_add_task_with_status_priority_and_indent(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan\n## Today\n* first")
        result = note_service.add_task(
            by_file("Notes/Plan.md"),
            "subtask",
            InsertPosition.IN_SECTION,
            heading="Today",
            status=TaskStatus.SCHEDULED,
            priority=3,
            indent_level=1,
        )
        assert result.extra["task"] == "\t* [>] subtask !!!"
        assert result.note.content == "# Plan\n## Today\n* first\n\t* [>] subtask !!!"
        _, tasks = note_service.get_tasks(by_file("Notes/Plan.md"))
        assert tasks[-1]["status"] == "scheduled"
        assert tasks[-1]["priority"] == 3

    def test_add_task_without_asterisk_tasks(self, note_service, local_store, monkeypatch):
        monkeypatch.setattr(config, "asterisk_is_todo", False)
        monkeypatch.setattr(config, "dash_is_todo", True)
        local_store.write_note("Notes/Plan.md", "# Plan")
        result = note_service.add_task(by_file("Notes/Plan.md"), "dash task")
        assert result.extra["task"] == "- [ ] dash task"

    def test_add_task_to_date_creates_daily_note(self, note_service):
        ref = NoteReference(kind="date", value="2024-01-15")
        result = note_service.add_task(ref, "review")
        assert result.extra["created"] is True
        assert result.note.filename == "Calendar/20240115.md"
        assert result.note.content == "* review"
        again = note_service.add_task(ref, "second")
        assert "created" not in again.extra

    def test_add_task_rejects_bad_input(self, note_service, local_store):
        local_store.write_note("Notes/Plan.md", "# Plan")
        with pytest.raises(InvalidArgumentError):
            note_service.add_task(by_file("Notes/Plan.md"), "two\nlines")
        with pytest.raises(InvalidArgumentError):
            note_service.add_task(by_file("Notes/Plan.md"), "  ")
        with pytest.raises(InvalidArgumentError):
            note_service.add_task(by_file("Notes/Plan.md"), "urgent", priority=4)


MUTATIONS = {
    "edit_line": lambda svc: svc.edit_line(by_file("Notes/Plan.md"), 2, "changed"),
    "delete_lines": lambda svc: confirmed(svc.delete_lines, by_file("Notes/Plan.md"), 2, 2),
    "move_note": lambda svc: confirmed(svc.move_note, by_file("Notes/Plan.md"), "Projects"),
    "rename_note": lambda svc: confirmed(svc.rename_note, by_file("Notes/Plan.md"), "Renamed"),
    "restore_note": lambda svc: confirmed(svc.restore_note, by_file("@Trash/Old.md")),
    "set_property": lambda svc: svc.set_property(by_file("Notes/Plan.md"), "status", "active"),
    "add_task": lambda svc: svc.add_task(by_file("Notes/Plan.md"), "new task"),
}


class TestListingInvalidation:
    """Every successful write empties the shared listing cache."""

    @pytest.mark.parametrize("mutation", sorted(MUTATIONS))
    def test_write_clears_listing_cache(
        self, mutation, note_service, note_store, local_store, listing_cache
    ):
        local_store.create_folder("Projects")
        local_store.write_note("Notes/Plan.md", "# Plan\nbody\nmore")
        local_store.write_note("@Trash/Old.md", "# Old")
        note_store.list_notes()
        assert len(listing_cache) == 1

        MUTATIONS[mutation](note_service)
        assert len(listing_cache) == 0
