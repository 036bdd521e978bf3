"""Frontmatter handling for NotePlan notes.

NotePlan frontmatter is a plain ``---`` delimited block of ``key: value``
lines at the very top of a note. Parsing goes through python-frontmatter
with a YAML handler that keeps every scalar as a string, so ``status: yes``
compares as the text the user typed. Editing is line-based so the rest of
the note keeps its exact bytes and line numbers.
"""
import logging
import re
from typing import Dict, List, Optional, Tuple

import frontmatter
import yaml
from frontmatter.default_handlers import YAMLHandler

from noteplan_mcp.exceptions import InvalidArgumentError

logger = logging.getLogger(__name__)

FRONTMATTER_DELIMITER = "---"
_PROPERTY_LINE = re.compile(r"^(\S+):\s*(.*)$")
_VALID_KEY = re.compile(r"^[A-Za-z0-9_\-.]+$")
_LIST_SPLIT = re.compile(r"[;,]")


class StringYAMLHandler(YAMLHandler):
    """YAML handler that loads every scalar as a plain string."""

    def load(self, fm, **kwargs):
        return yaml.load(fm, Loader=yaml.BaseLoader)


def frontmatter_end_index(lines: List[str]) -> Optional[int]:
    """Index of the closing ``---`` of a leading frontmatter block, if any."""
    if not lines or lines[0].strip() != FRONTMATTER_DELIMITER:
        return None
    for index in range(1, len(lines)):
        if lines[index].strip() == FRONTMATTER_DELIMITER:
            return index
    return None


def body_start_index(lines: List[str]) -> int:
    """First line index after the frontmatter block (0 if there is none)."""
    end = frontmatter_end_index(lines)
    return 0 if end is None else end + 1


def _stringify(value) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return ", ".join(_stringify(item) for item in value)
    if isinstance(value, dict):
        return ", ".join(f"{k}: {_stringify(v)}" for k, v in value.items())
    return str(value)


def parse_properties(content: str) -> Dict[str, str]:
    """Parse the frontmatter block of ``content`` into string properties."""
    lines = content.split("\n")
    end = frontmatter_end_index(lines)
    if end is None:
        return {}
    block = "\n".join(lines[: end + 1])
    try:
        post = frontmatter.loads(block, handler=StringYAMLHandler())
    except yaml.YAMLError as e:
        # NotePlan accepts values YAML rejects (e.g. "title: a: b"); read them verbatim
        logger.debug(f"Frontmatter is not valid YAML, reading key/value lines: {e}")
        properties: Dict[str, str] = {}
        for line in lines[1:end]:
            match = _PROPERTY_LINE.match(line.strip())
            if match:
                properties[match.group(1)] = match.group(2).strip()
        return properties
    return {str(key): _stringify(value) for key, value in post.metadata.items()}


def split_note_content(content: str) -> Tuple[Dict[str, str], str, int]:
    """Split a note into (properties, body, body_start_index)."""
    lines = content.split("\n")
    start = body_start_index(lines)
    return parse_properties(content), "\n".join(lines[start:]), start


def _format_value(value: str) -> str:
    if "\n" in value:
        raise InvalidArgumentError("Property values must be a single line", field="value")
    return value.strip()


def set_property(content: str, key: str, value: str) -> str:
    """Set (or add) a frontmatter property, creating the block if needed."""
    key = key.strip()
    if not key or not _VALID_KEY.match(key):
        raise InvalidArgumentError(f"Invalid property key: '{key}'", field="key", value=key)
    rendered = f"{key}: {_format_value(value)}"

    lines = content.split("\n")
    end = frontmatter_end_index(lines)
    if end is None:
        block = [FRONTMATTER_DELIMITER, rendered, FRONTMATTER_DELIMITER]
        return "\n".join(block + lines) if content else "\n".join(block)

    for index in range(1, end):
        match = _PROPERTY_LINE.match(lines[index].strip())
        if match and match.group(1) == key:
            lines[index] = rendered
            return "\n".join(lines)
    lines.insert(end, rendered)
    return "\n".join(lines)


def remove_property(content: str, key: str) -> Tuple[str, bool]:
    """Remove a frontmatter property. Returns (content, removed)."""
    lines = content.split("\n")
    end = frontmatter_end_index(lines)
    if end is None:
        return content, False
    for index in range(1, end):
        match = _PROPERTY_LINE.match(lines[index].strip())
        if match and match.group(1) == key.strip():
            del lines[index]
            # Drop an emptied block entirely
            if end - 1 == 1:
                del lines[0:2]
            return "\n".join(lines), True
    return content, False


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return value[1:-1]
    return value


def matches_properties(
    properties: Dict[str, str],
    filters: Dict[str, str],
    case_sensitive: bool = False,
) -> bool:
    """True when every filter key is present and equals (or lists) the value."""
    if not filters:
        return True

    def norm(text: str) -> str:
        return text if case_sensitive else text.lower()

    lookup = {norm(k): v for k, v in properties.items()}
    for key, expected in filters.items():
        actual = lookup.get(norm(key.strip()))
        if actual is None:
            return False
        wanted = norm(_strip_quotes(str(expected)))
        actual_value = norm(_strip_quotes(actual))
        if actual_value == wanted:
            continue
        tokens = [norm(_strip_quotes(token)) for token in _LIST_SPLIT.split(actual)]
        if wanted not in [token.strip() for token in tokens]:
            return False
    return True
