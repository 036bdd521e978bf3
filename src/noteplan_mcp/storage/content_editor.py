"""Line-addressable text transforms used by the note service.

All functions are pure: they take note text (or its lines) and return new
text. Line numbers in the public API are 1-based; indexes are 0-based.
"""
import re
from typing import Any, List, Optional, Tuple

from noteplan_mcp.exceptions import InvalidArgumentError, InvalidLineReferenceError
from noteplan_mcp.models.schema import InsertPosition, LineWindow, ParagraphType
from noteplan_mcp.storage.frontmatter_parser import body_start_index
from noteplan_mcp.storage.markdown_parser import parse_line
from noteplan_mcp.utils import to_bounded_int

_SPACE_INDENTED_LIST = re.compile(r"^( +)(?=(?:[*+-]|\d+[.)])(?:\s|\t|\[))")
_ATTACHMENT = re.compile(r"!\[[^\]]*\]\(([^)]+)\)")
_HEADING_LINE = re.compile(r"^(#{1,6})\s+(.*?)\s*$")

INDENTATION_STYLES = ("tabs", "preserve")


def split_lines(content: str) -> List[str]:
    return content.split("\n")


def build_line_window(
    all_lines: List[str],
    start_line: Any = None,
    end_line: Any = None,
    limit: Any = None,
    offset: Any = None,
    cursor: Any = None,
    default_limit: int = 200,
    max_limit: int = 1000,
) -> LineWindow:
    """Select a 1-indexed line range and paginate within it.

    The range ``[start_line, end_line]`` is clamped to the note. Pagination
    then applies ``offset`` (or the opaque ``cursor`` from a previous page)
    and ``limit`` inside the range. ``has_more`` is False exactly when the
    next offset would reach the end of the range.
    """
    total = len(all_lines)
    range_start = to_bounded_int(start_line, 1, 1, max(1, total))
    range_end = to_bounded_int(end_line, total, range_start, max(range_start, total))
    start_index = range_start - 1
    range_lines = all_lines[start_index:range_end]

    page_offset = to_bounded_int(cursor if cursor is not None else offset, 0, 0, 2**53)
    page_limit = to_bounded_int(limit, default_limit, 1, max_limit)
    page = range_lines[page_offset:page_offset + page_limit]
    has_more = page_offset + len(page) < len(range_lines)

    return LineWindow(
        line_count=total,
        range_start_line=range_start,
        range_end_line=range_end,
        range_line_count=len(range_lines),
        returned_line_count=len(page),
        offset=page_offset,
        limit=page_limit,
        has_more=has_more,
        next_cursor=str(page_offset + len(page)) if has_more else None,
        content="\n".join(page),
        lines=[
            {
                "line": range_start + page_offset + i,
                "lineIndex": start_index + page_offset + i,
                "content": text,
            }
            for i, text in enumerate(page)
        ],
    )


def normalize_indentation_style(value: Optional[str]) -> str:
    return "preserve" if value == "preserve" else "tabs"


def retab_list_indentation(content: str) -> Tuple[str, int]:
    """Convert space-indented list items to tabs (2 spaces per level).

    Returns the new content and the number of lines changed.
    """
    retabbed = 0
    lines = []
    for line in content.split("\n"):
        match = _SPACE_INDENTED_LIST.match(line)
        if match and len(match.group(1)) >= 2:
            spaces = len(match.group(1))
            lines.append("\t" * (spaces // 2) + line[spaces:])
            retabbed += 1
        else:
            lines.append(line)
    return "\n".join(lines), retabbed


def extract_attachment_references(text: str) -> List[str]:
    """Unique ``![alt](target)`` targets in order of appearance."""
    refs: List[str] = []
    for match in _ATTACHMENT.finditer(text):
        ref = match.group(1).strip()
        if ref and ref not in refs:
            refs.append(ref)
    return refs


def removed_attachment_references(before: str, after: str) -> List[str]:
    """Attachment targets present in ``before`` but missing from ``after``."""
    remaining = set(extract_attachment_references(after))
    return [ref for ref in extract_attachment_references(before) if ref not in remaining]


def find_paragraph_bounds(lines: List[str], line_index: int) -> Tuple[int, int]:
    """Expand ``line_index`` to the surrounding block of non-blank lines."""
    start = line_index
    while start > 0 and lines[start - 1].strip():
        start -= 1
    end = line_index
    while end < len(lines) - 1 and lines[end + 1].strip():
        end += 1
    return start, end


def validate_line_range(line_count: int, start_line: int, end_line: int) -> None:
    """Raise unless ``start_line..end_line`` (1-based, inclusive) exists."""
    if start_line < 1 or end_line < start_line:
        raise InvalidLineReferenceError(
            f"Invalid line range {start_line}-{end_line}", line=start_line, line_count=line_count
        )
    if start_line > line_count:
        raise InvalidLineReferenceError(
            f"Line {start_line} does not exist (note has {line_count} lines)",
            line=start_line,
            line_count=line_count,
        )
    if end_line > line_count:
        raise InvalidLineReferenceError(
            f"Line {end_line} does not exist (note has {line_count} lines)",
            line=end_line,
            line_count=line_count,
        )


def delete_lines(content: str, start_line: int, end_line: int) -> str:
    lines = split_lines(content)
    validate_line_range(len(lines), start_line, end_line)
    del lines[start_line - 1:end_line]
    return "\n".join(lines)


def replace_lines(content: str, start_line: int, end_line: int, replacement: str) -> str:
    lines = split_lines(content)
    validate_line_range(len(lines), start_line, end_line)
    lines[start_line - 1:end_line] = split_lines(replacement)
    return "\n".join(lines)


def edit_line(content: str, line: int, new_text: str) -> Tuple[str, str]:
    """Replace a single line. Returns (new content, original line)."""
    if "\n" in new_text:
        raise InvalidArgumentError(
            "edit_line content must be a single line; use replace_lines for multi-line edits",
            field="content",
        )
    lines = split_lines(content)
    validate_line_range(len(lines), line, line)
    original = lines[line - 1]
    lines[line - 1] = new_text
    return "\n".join(lines), original


def find_heading(lines: List[str], heading: str) -> Tuple[int, int]:
    """Locate a heading by text (case-insensitive, leading #'s optional).

    Returns (index, level).
    """
    wanted = re.sub(r"^#{1,6}\s*", "", heading.strip()).lower()
    for index, line in enumerate(lines):
        match = _HEADING_LINE.match(line)
        if match and match.group(2).strip().lower() == wanted:
            return index, len(match.group(1))
    raise InvalidArgumentError(f'Heading "{heading}" not found', field="heading", value=heading)


def section_end_index(lines: List[str], heading_index: int, level: int) -> int:
    """Index just past the last line belonging to the heading's section."""
    for index in range(heading_index + 1, len(lines)):
        match = _HEADING_LINE.match(lines[index])
        if match and len(match.group(1)) <= level:
            end = index
            # Keep the blank separator line before the next heading
            while end > heading_index + 1 and not lines[end - 1].strip():
                end -= 1
            return end
    end = len(lines)
    while end > heading_index + 1 and not lines[end - 1].strip():
        end -= 1
    return end


def insert_content(
    content: str,
    new_content: str,
    position: InsertPosition,
    heading: Optional[str] = None,
    line: Optional[int] = None,
) -> str:
    """Insert ``new_content`` at the requested position.

    ``start`` goes after frontmatter and the title line, ``end`` appends,
    ``after-heading`` goes directly below the heading, ``in-section`` goes at
    the end of the heading's section, and ``at-line`` inserts before the
    given 1-based line (padding with blank lines past the end).
    """
    lines = split_lines(content)
    new_lines = split_lines(new_content)

    if position == InsertPosition.START:
        index = body_start_index(lines)
        if index < len(lines) and parse_line(lines[index], is_first_line=True).type == ParagraphType.TITLE:
            index += 1
        lines[index:index] = new_lines
    elif position == InsertPosition.END:
        if content == "":
            lines = new_lines
        elif lines and lines[-1] == "":
            # Keep the trailing newline at the end
            lines[-1:-1] = new_lines
        else:
            lines.extend(new_lines)
    elif position in (InsertPosition.AFTER_HEADING, InsertPosition.IN_SECTION):
        if not heading:
            raise InvalidArgumentError(
                f"heading is required for position={position.value}", field="heading"
            )
        heading_index, level = find_heading(lines, heading)
        if position == InsertPosition.AFTER_HEADING:
            index = heading_index + 1
        else:
            index = section_end_index(lines, heading_index, level)
        lines[index:index] = new_lines
    elif position == InsertPosition.AT_LINE:
        if line is None or line < 1:
            raise InvalidLineReferenceError(
                "line is required for position=at-line and must be >= 1", line=line
            )
        while len(lines) < line - 1:
            lines.append("")
        lines[line - 1:line - 1] = new_lines
    else:
        raise InvalidArgumentError(f"Unknown insert position: {position}", field="position")
    return "\n".join(lines)


def count_lines(content: str) -> int:
    return len(split_lines(content))
