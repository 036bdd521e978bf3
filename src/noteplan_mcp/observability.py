"""Logging and in-process tool metrics.

Every tool call runs inside ``timed_operation``; the dict it yields is the
tool's scratchpad for result facts (result counts, the search backend that
answered, the error code of a handled failure). Those facts are logged at
DEBUG and folded into ``metrics``, which ``noteplan_status`` reports.
Nothing is persisted: counters start from zero on every server start.
"""
import functools
import logging
import time
import uuid
from collections import Counter
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".noteplan-mcp" / "logs"
LOG_FILE_NAME = "noteplan-mcp.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar("F", bound=Callable[..., Any])


def _has_console_handler(target: logging.Logger) -> bool:
    return any(
        type(handler) is logging.StreamHandler for handler in target.handlers
    )


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Send ``noteplan_mcp.*`` logs to a rotating file (and stderr).

    stdout is never used: it carries the MCP stdio transport.

    Returns:
        The directory holding ``noteplan-mcp.log``.
    """
    directory = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    directory.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    package_logger = logging.getLogger("noteplan_mcp")
    package_logger.setLevel(level)

    log_file = directory / LOG_FILE_NAME
    file_handler = RotatingFileHandler(
        log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    package_logger.addHandler(file_handler)

    if console and not _has_console_handler(package_logger):
        stderr_handler = logging.StreamHandler()
        stderr_handler.setFormatter(formatter)
        package_logger.addHandler(stderr_handler)

    package_logger.info(f"Logging to {log_file} ({backup_count} rotated files of {max_bytes} bytes)")
    return directory


@dataclass
class ToolStats:
    """Running totals for one tool or service operation."""

    calls: int = 0
    failures: int = 0
    total_ms: float = 0.0
    slowest_ms: float = 0.0
    last_error_code: Optional[str] = None
    last_failure_at: Optional[datetime] = None
    error_codes: Counter = field(default_factory=Counter)
    backends: Counter = field(default_factory=Counter)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "calls": self.calls,
            "failures": self.failures,
            "avgMs": round(self.total_ms / self.calls, 2) if self.calls else 0.0,
            "slowestMs": round(self.slowest_ms, 2),
            "lastErrorCode": self.last_error_code,
            "lastFailureAt": self.last_failure_at.isoformat() if self.last_failure_at else None,
            "errorCodes": dict(self.error_codes),
            "backends": dict(self.backends),
        }


class MetricsCollector:
    """Thread-safe per-operation counters."""

    def __init__(self) -> None:
        self._stats: Dict[str, ToolStats] = {}
        self._lock = Lock()
        self._started = datetime.now(timezone.utc)

    def record(
        self,
        operation: str,
        duration_ms: float,
        error_code: Optional[str] = None,
        backend: Optional[str] = None,
    ) -> None:
        """Fold one finished call into the totals; ``error_code`` marks a failure."""
        with self._lock:
            stats = self._stats.setdefault(operation, ToolStats())
            stats.calls += 1
            stats.total_ms += duration_ms
            stats.slowest_ms = max(stats.slowest_ms, duration_ms)
            if backend:
                stats.backends[backend] += 1
            if error_code:
                stats.failures += 1
                stats.error_codes[error_code] += 1
                stats.last_error_code = error_code
                stats.last_failure_at = datetime.now(timezone.utc)

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            return {name: stats.to_dict() for name, stats in sorted(self._stats.items())}

    def summary(self) -> Dict[str, Any]:
        with self._lock:
            calls = sum(s.calls for s in self._stats.values())
            failures = sum(s.failures for s in self._stats.values())
            return {
                "uptimeSeconds": round((datetime.now(timezone.utc) - self._started).total_seconds(), 1),
                "calls": calls,
                "failures": failures,
                "successRate": round((calls - failures) / calls, 4) if calls else 1.0,
            }

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()
            self._started = datetime.now(timezone.utc)


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time a block and record it under ``operation``.

    The yielded dict collects result facts. A tool that turns an exception
    into an error envelope sets ``op["success"] = False`` and
    ``op["error_code"]`` instead of raising; ``op["backend"]`` is counted
    per search backend.

    Example:
        with timed_operation("noteplan_search", query=query[:30]) as op:
            response = self.search_service.search(query, options)
            op["backend"] = response.backend
    """
    call_id = uuid.uuid4().hex[:8]
    op: Dict[str, Any] = {}
    started = time.perf_counter()
    if context:
        logger.debug(f"[{call_id}] {operation} " + " ".join(f"{k}={v!r}" for k, v in context.items()))

    error_code: Optional[str] = None
    try:
        yield op
    except Exception as e:
        error_code = type(e).__name__
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        if error_code is None and op.get("success") is False:
            error_code = op.get("error_code") or "ERR_TOOL_EXECUTION"
        metrics.record(operation, elapsed_ms, error_code=error_code, backend=op.get("backend"))
        facts = " ".join(f"{k}={v}" for k, v in op.items() if k not in ("success", "error_code"))
        outcome = f"failed ({error_code})" if error_code else "ok"
        logger.debug(f"[{call_id}] {operation} {outcome} in {elapsed_ms:.1f}ms {facts}".rstrip())


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Run a service method inside ``timed_operation``.

    Sized results are recorded as ``result_count``.
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with timed_operation(name) as op:
                result = func(*args, **kwargs)
                if hasattr(result, "__len__"):
                    op["result_count"] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
