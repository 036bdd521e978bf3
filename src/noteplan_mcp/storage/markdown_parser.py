"""Paragraph model for NotePlan markdown.

Parses single lines into typed ``ParagraphLine`` structures and renders
typed structures back into canonical lines. Everything here is a pure
function; editor preferences (whether ``-`` and ``*`` start tasks) are
passed in by the caller.

Rendering and parsing are inverses: for every paragraph type,
``parse_line(render_line(...))`` yields the same type, task status and
priority that were rendered.
"""
import re
from typing import Dict, List, Optional

from noteplan_mcp.exceptions import InvalidArgumentError
from noteplan_mcp.models.schema import ParagraphLine, ParagraphType, TaskStatus
from noteplan_mcp.storage.frontmatter_parser import frontmatter_end_index, parse_properties

_TITLE = re.compile(r"^#(?!#)\s+(.*)$")
_HEADING = re.compile(r"^(#{1,6})\s+(.*)$")
_SEPARATOR = re.compile(r"^\s*(-{3,}|\*{3,}|_{3,})\s*$")
_CHECKBOX = re.compile(r"^(\s*)([*+\-])\s*\[([ xX\->])\]\s*(.*)$")
_LIST_MARKER = re.compile(r"^(\s*)([*+\-])\s+(.*)$")
_QUOTE = re.compile(r"^(\s*)>\s?(.*)$")
_PRIORITY = re.compile(r"(?:^|\s)(!{1,3})\s*$")
_SCHEDULED = re.compile(r"(?:^|\s)>(\d{4}-\d{2}-\d{2})(?!\d)")

# Tags and mentions start after whitespace, an opening bracket, a quote, or emphasis
_TAG = re.compile(r"(?<![^\s'(\[{*_])#([\w][\w/\-]*)")
_MENTION = re.compile(r"(?<![^\s'(\[{*_])@([\w][\w/\-]*)(\([^)]*\))?")
_INLINE_CODE = re.compile(r"`[^`]*`")
_LINK_TARGET = re.compile(r"\]\([^)]*\)")
_URL = re.compile(r"\bhttps?://\S+")

# Mentions NotePlan writes itself; never reported as user mentions
SYSTEM_MENTIONS = {"done", "repeat", "final-repeat"}

STATUS_BY_CHAR: Dict[str, TaskStatus] = {
    " ": TaskStatus.OPEN,
    "x": TaskStatus.DONE,
    "X": TaskStatus.DONE,
    "-": TaskStatus.CANCELLED,
    ">": TaskStatus.SCHEDULED,
}
CHAR_BY_STATUS: Dict[TaskStatus, str] = {
    TaskStatus.OPEN: " ",
    TaskStatus.DONE: "x",
    TaskStatus.CANCELLED: "-",
    TaskStatus.SCHEDULED: ">",
}


def count_indent_level(leading: str) -> int:
    """Indent depth is the number of tab characters in the leading whitespace."""
    return leading.count("\t")


def _scannable(text: str) -> str:
    text = _INLINE_CODE.sub(" ", text)
    text = _LINK_TARGET.sub("]", text)
    return _URL.sub(" ", text)


def extract_tags(text: str) -> List[str]:
    """Extract ``#tags`` including every level of hierarchical tags.

    ``#project/alpha`` yields ``#project`` and ``#project/alpha``. Purely
    numeric tags (``#1``) are headings-in-disguise and are skipped.
    """
    tags: List[str] = []
    for match in _TAG.finditer(_scannable(text)):
        name = match.group(1).rstrip("/-")
        if not name or name.replace("/", "").isdigit():
            continue
        parts = [part for part in name.split("/") if part]
        for depth in range(1, len(parts) + 1):
            tag = "#" + "/".join(parts[:depth])
            if tag not in tags:
                tags.append(tag)
    return tags


def extract_mentions(text: str) -> List[str]:
    """Extract ``@mentions``, dropping attributes and system mentions."""
    mentions: List[str] = []
    for match in _MENTION.finditer(_scannable(text)):
        name = match.group(1).rstrip("/-")
        if not name or name.lower() in SYSTEM_MENTIONS or name.isdigit():
            continue
        mention = f"@{name}"
        if mention not in mentions:
            mentions.append(mention)
    return mentions


def extract_scheduled_date(text: str) -> Optional[str]:
    match = _SCHEDULED.search(text)
    return match.group(1) if match else None


def _split_priority(text: str):
    match = _PRIORITY.search(text)
    if not match:
        return text, None
    return text[: match.start()].rstrip(), len(match.group(1))


def _finish(line: ParagraphLine) -> ParagraphLine:
    if line.type not in (ParagraphType.EMPTY, ParagraphType.SEPARATOR, ParagraphType.FRONTMATTER):
        line.tags = extract_tags(line.content)
        line.mentions = extract_mentions(line.content)
        line.scheduled_date = extract_scheduled_date(line.content)
    return line


def parse_line(
    text: str,
    index: int = 0,
    is_first_line: bool = False,
    dash_is_todo: bool = False,
    asterisk_is_todo: bool = True,
) -> ParagraphLine:
    """Classify one line of a note.

    Args:
        text: The raw line (no trailing newline).
        index: 0-based line position in the note.
        is_first_line: True for the first line of the note body; only that
            line can be a title.
        dash_is_todo: Treat ``- text`` (no checkbox) as a task.
        asterisk_is_todo: Treat ``* text`` (no checkbox) as a task.
    """
    # Headings and titles are recognized after leading whitespace
    stripped = text.lstrip()
    if is_first_line:
        match = _TITLE.match(stripped)
        if match:
            return _finish(
                ParagraphLine(index, text, ParagraphType.TITLE, match.group(1).strip(), heading_level=1)
            )

    match = _HEADING.match(stripped)
    if match:
        return _finish(
            ParagraphLine(
                index,
                text,
                ParagraphType.HEADING,
                match.group(2).strip(),
                heading_level=len(match.group(1)),
            )
        )

    if _SEPARATOR.match(text):
        return ParagraphLine(index, text, ParagraphType.SEPARATOR, text.strip())

    if not text.strip():
        return ParagraphLine(index, text, ParagraphType.EMPTY, "")

    match = _CHECKBOX.match(text)
    if match:
        leading, marker, status_char, body = match.groups()
        content, priority = _split_priority(body)
        kind = ParagraphType.CHECKLIST if marker == "+" else ParagraphType.TASK
        return _finish(
            ParagraphLine(
                index,
                text,
                kind,
                content,
                indent_level=count_indent_level(leading),
                task_status=STATUS_BY_CHAR[status_char],
                priority=priority,
                marker=marker,
                has_checkbox=True,
            )
        )

    match = _LIST_MARKER.match(text)
    if match:
        leading, marker, body = match.groups()
        is_task = (
            marker == "+"
            or (marker == "*" and asterisk_is_todo)
            or (marker == "-" and dash_is_todo)
        )
        if is_task:
            content, priority = _split_priority(body)
            kind = ParagraphType.CHECKLIST if marker == "+" else ParagraphType.TASK
            return _finish(
                ParagraphLine(
                    index,
                    text,
                    kind,
                    content,
                    indent_level=count_indent_level(leading),
                    task_status=TaskStatus.OPEN,
                    priority=priority,
                    marker=marker,
                )
            )
        return _finish(
            ParagraphLine(
                index,
                text,
                ParagraphType.BULLET,
                body,
                indent_level=count_indent_level(leading),
                marker=marker,
            )
        )

    match = _QUOTE.match(text)
    if match:
        return _finish(
            ParagraphLine(
                index,
                text,
                ParagraphType.QUOTE,
                match.group(2),
                indent_level=count_indent_level(match.group(1)),
            )
        )

    leading = text[: len(text) - len(text.lstrip())]
    return _finish(
        ParagraphLine(
            index,
            text,
            ParagraphType.TEXT,
            text.strip(),
            indent_level=count_indent_level(leading),
        )
    )


def _bullet_marker(preferred: Optional[str], dash_is_todo: bool, asterisk_is_todo: bool) -> str:
    plain = [m for m, starts_task in (("-", dash_is_todo), ("*", asterisk_is_todo)) if not starts_task]
    if preferred in plain:
        return preferred
    # With both markers starting tasks no bullet survives a re-parse
    return plain[0] if plain else "-"


def render_line(
    content: str,
    type: ParagraphType,
    heading_level: int = 1,
    task_status: Optional[TaskStatus] = None,
    indent_level: int = 0,
    priority: Optional[int] = None,
    has_checkbox: bool = False,
    marker: Optional[str] = None,
    dash_is_todo: bool = False,
    asterisk_is_todo: bool = True,
) -> str:
    """Render a typed paragraph back into a canonical NotePlan line.

    The task-marker preferences must match the ones the line will be parsed
    with: they decide which bullet marker stays a bullet.
    """
    indent = "\t" * max(0, indent_level)
    status = task_status or TaskStatus.OPEN
    suffix = ""
    if priority:
        suffix = " " + "!" * min(3, max(1, priority))

    if type == ParagraphType.TITLE:
        return f"# {content}"
    if type == ParagraphType.HEADING:
        level = min(6, max(1, heading_level))
        return f"{'#' * level} {content}"
    if type == ParagraphType.TASK:
        task_marker = marker if marker in ("*", "-") else "*"
        # Only "* text" is a task without a checkbox under default preferences
        plain = not has_checkbox and status == TaskStatus.OPEN and task_marker == "*" and asterisk_is_todo
        if plain:
            return f"{indent}* {content}{suffix}"
        return f"{indent}{task_marker} [{CHAR_BY_STATUS[status]}] {content}{suffix}"
    if type == ParagraphType.CHECKLIST:
        return f"{indent}+ [{CHAR_BY_STATUS[status]}] {content}{suffix}"
    if type == ParagraphType.BULLET:
        return f"{indent}{_bullet_marker(marker, dash_is_todo, asterisk_is_todo)} {content}"
    if type == ParagraphType.QUOTE:
        return f"{indent}> {content}"
    if type == ParagraphType.SEPARATOR:
        return "---"
    if type == ParagraphType.EMPTY:
        return ""
    if type == ParagraphType.FRONTMATTER:
        return content
    return f"{indent}{content}"


def parse_paragraphs(
    content: str, dash_is_todo: bool = False, asterisk_is_todo: bool = True
) -> List[ParagraphLine]:
    """Parse a whole note, marking frontmatter lines and the title line."""
    lines = content.split("\n")
    end = frontmatter_end_index(lines)
    body_start = 0 if end is None else end + 1
    paragraphs: List[ParagraphLine] = []
    for index, text in enumerate(lines):
        if index < body_start:
            paragraphs.append(ParagraphLine(index, text, ParagraphType.FRONTMATTER, text))
            continue
        paragraphs.append(
            parse_line(
                text,
                index,
                is_first_line=index == body_start,
                dash_is_todo=dash_is_todo,
                asterisk_is_todo=asterisk_is_todo,
            )
        )
    return paragraphs


def extract_title(content: str, default: str = "Untitled") -> str:
    """Title from the ``title`` property, else the first non-empty body line."""
    title = parse_properties(content).get("title", "").strip()
    if title:
        return title
    lines = content.split("\n")
    end = frontmatter_end_index(lines)
    for line in lines[(0 if end is None else end + 1):]:
        if line.strip():
            return re.sub(r"^#{1,6}\s*", "", line.strip()) or default
    return default


def extract_headings(content: str) -> List[Dict[str, object]]:
    """List headings (including the title line) with their 1-based line numbers."""
    headings = []
    for paragraph in parse_paragraphs(content):
        if paragraph.type in (ParagraphType.TITLE, ParagraphType.HEADING):
            headings.append(
                {
                    "line": paragraph.line_number,
                    "level": paragraph.heading_level,
                    "text": paragraph.content,
                }
            )
    return headings


def update_task_status(
    line: str,
    status: TaskStatus,
    dash_is_todo: bool = False,
    asterisk_is_todo: bool = True,
) -> str:
    """Return ``line`` with its checkbox set to ``status``."""
    paragraph = parse_line(line, dash_is_todo=dash_is_todo, asterisk_is_todo=asterisk_is_todo)
    if paragraph.type not in (ParagraphType.TASK, ParagraphType.CHECKLIST):
        raise InvalidArgumentError(
            f"Line is not a task or checklist item: '{line.strip()[:80]}'",
            field="line",
        )
    return render_line(
        paragraph.content,
        paragraph.type,
        task_status=status,
        indent_level=paragraph.indent_level,
        priority=paragraph.priority,
        has_checkbox=True,
        marker=paragraph.marker,
        dash_is_todo=dash_is_todo,
        asterisk_is_todo=asterisk_is_todo,
    )
