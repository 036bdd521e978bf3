"""ripgrep subprocess adapter for fast full-text search of the local tree."""
import json
import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Union

from noteplan_mcp.config import config
from noteplan_mcp.exceptions import BackendUnavailableError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RipgrepMatch:
    """One matching line reported by ripgrep."""

    file: str
    line: int
    content: str
    match_start: int = 0
    match_end: int = 0


@dataclass
class RipgrepResult:
    matches: List[RipgrepMatch] = field(default_factory=list)
    partial: bool = False
    warning: Optional[str] = None


def parse_ripgrep_json(output: Union[str, bytes, None]) -> List[RipgrepMatch]:
    """Parse ``rg --json`` output; context and summary records are ignored."""
    if not output:
        return []
    if isinstance(output, bytes):
        output = output.decode("utf-8", errors="replace")
    matches: List[RipgrepMatch] = []
    for line in output.splitlines():
        if not line.strip():
            continue
        try:
            record = json.loads(line)
        except json.JSONDecodeError:
            # A timeout can cut the last record short
            continue
        if record.get("type") != "match":
            continue
        data = record.get("data", {})
        submatches = data.get("submatches") or [{}]
        matches.append(
            RipgrepMatch(
                file=data.get("path", {}).get("text", ""),
                line=data.get("line_number") or 0,
                content=data.get("lines", {}).get("text", "").rstrip(),
                match_start=submatches[0].get("start", 0),
                match_end=submatches[0].get("end", 0),
            )
        )
    return matches


class RipgrepSearch:
    """Runs ``rg`` with argument lists (no shell) and a hard timeout.

    Args:
        executable: ripgrep binary name or path.
        timeout: Seconds before the process is killed and partial output used.
    """

    def __init__(self, executable: Optional[str] = None, timeout: Optional[float] = None):
        self.executable = executable or config.ripgrep_path
        self.timeout = timeout or config.ripgrep_timeout
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        """True when the binary exists and answers ``--version``. Cached."""
        if self._available is None:
            if shutil.which(self.executable) is None:
                self._available = False
            else:
                try:
                    result = subprocess.run(
                        [self.executable, "--version"],
                        capture_output=True,
                        timeout=5,
                        check=False,
                    )
                    self._available = result.returncode == 0
                except (FileNotFoundError, subprocess.TimeoutExpired, OSError):
                    self._available = False
            if not self._available:
                logger.info(f"ripgrep not available at '{self.executable}'")
        return self._available

    def build_args(
        self,
        patterns: Union[str, Sequence[str]],
        paths: Sequence[Union[str, Path]],
        case_sensitive: bool = False,
        word_boundary: bool = False,
        context_lines: int = 0,
        max_count: int = 100,
        fixed_strings: bool = False,
    ) -> List[str]:
        """Argument list for one search. Several patterns match as alternatives."""
        if isinstance(patterns, str):
            patterns = [patterns]
        args = [
            self.executable,
            "--json",
            "--max-count",
            str(max_count),
            "-g",
            "*.md",
            "-g",
            "*.txt",
        ]
        if not case_sensitive:
            args.append("-i")
        if word_boundary:
            args.append("-w")
        if fixed_strings:
            args.append("-F")
        if context_lines > 0:
            args.extend(["-C", str(context_lines)])
        if len(patterns) == 1:
            # "--" keeps patterns starting with "-" from being read as flags
            args.extend(["--", patterns[0]])
        else:
            for pattern in patterns:
                args.extend(["-e", pattern])
            args.append("--")
        args.extend(str(p) for p in paths if p)
        return args

    def search(
        self,
        patterns: Union[str, Sequence[str]],
        paths: Sequence[Union[str, Path]],
        case_sensitive: bool = False,
        word_boundary: bool = False,
        context_lines: int = 0,
        max_count: int = 100,
        fixed_strings: bool = False,
    ) -> RipgrepResult:
        """Search ``paths`` for any of ``patterns`` (regexes unless ``fixed_strings``).

        Raises:
            BackendUnavailableError: rg is missing or exited with an error.
        """
        if not self.is_available():
            raise BackendUnavailableError("ripgrep", "ripgrep is not installed")

        args = self.build_args(
            patterns, paths, case_sensitive, word_boundary, context_lines, max_count, fixed_strings
        )
        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"ripgrep timed out after {self.timeout}s for {patterns!r}")
            return RipgrepResult(
                matches=parse_ripgrep_json(e.stdout),
                partial=True,
                warning=f"ripgrep timed out after {self.timeout:g}s; results may be incomplete",
            )
        except OSError as e:
            self._available = False
            raise BackendUnavailableError("ripgrep", f"Failed to spawn ripgrep: {e}", failed=True) from e

        # Exit codes: 0 = matches, 1 = no matches, 2+ = error
        if result.returncode not in (0, 1):
            stderr = (result.stderr or "").strip()
            raise BackendUnavailableError(
                "ripgrep",
                f"ripgrep error: {stderr or f'exit code {result.returncode}'}",
                failed=True,
            )
        return RipgrepResult(matches=parse_ripgrep_json(result.stdout))
