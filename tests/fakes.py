"""Deterministic fakes for testing.

FakeClock replaces wall-clock time for the listing cache and confirmation
gate. FakeRipgrep stands in for the ripgrep subprocess and can be scripted
to be missing, failing, timing out, or returning canned matches.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from noteplan_mcp.exceptions import BackendUnavailableError
from noteplan_mcp.services.ripgrep_search import RipgrepMatch, RipgrepResult


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeRipgrep:
    """Scripted ripgrep adapter.

    Modes:
        ``available``: returns ``matches`` as given.
        ``missing``: raises BackendUnavailableError (not installed).
        ``failing``: raises BackendUnavailableError with ``failed=True``.
        ``timeout``: returns ``matches`` flagged partial with a warning.
    """

    def __init__(self, mode: str = "available", matches: Optional[List[RipgrepMatch]] = None):
        self.mode = mode
        self.matches = list(matches or [])
        self.calls: List[dict] = []

    def is_available(self) -> bool:
        return self.mode != "missing"

    def search(
        self,
        patterns,
        paths,
        case_sensitive=False,
        word_boundary=False,
        context_lines=0,
        max_count=100,
        fixed_strings=False,
    ) -> RipgrepResult:
        self.calls.append(
            {
                "patterns": list(patterns) if not isinstance(patterns, str) else [patterns],
                "paths": [str(p) for p in paths],
                "case_sensitive": case_sensitive,
                "max_count": max_count,
                "fixed_strings": fixed_strings,
            }
        )
        if self.mode == "missing":
            raise BackendUnavailableError("ripgrep", "ripgrep is not installed")
        if self.mode == "failing":
            raise BackendUnavailableError("ripgrep", "ripgrep error: exit code 2", failed=True)
        if self.mode == "timeout":
            return RipgrepResult(
                matches=self.matches,
                partial=True,
                warning="ripgrep timed out after 5s; results may be incomplete",
            )
        return RipgrepResult(matches=self.matches)
