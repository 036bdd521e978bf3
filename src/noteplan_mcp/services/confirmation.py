"""Confirmation tokens for destructive and full-rewrite operations.

A dry run issues a token bound to an exact ``(tool, target, action)``
signature. Executing the operation requires presenting that token, which
is consumed on first successful validation. A token presented against any
other signature is deleted so it cannot be probed against further edits.
"""
import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from noteplan_mcp.exceptions import ConfirmationInvalidError, ConfirmationRequiredError
from noteplan_mcp.utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 600.0

# Validation failure reasons
MISSING = "missing"
INVALID = "invalid"
EXPIRED = "expired"
MISMATCH = "mismatch"


@dataclass(frozen=True)
class ConfirmationRecord:
    token: str
    tool: str
    target: str
    action: str
    expires_at: datetime


@dataclass(frozen=True)
class ConfirmationValidation:
    ok: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class IssuedToken:
    confirmation_token: str
    confirmation_expires_at: str


def _normalize(value: str) -> str:
    return str(value).strip().lower()


class ConfirmationGate:
    """In-memory, single-use token store.

    Args:
        ttl_seconds: Token lifetime.
        clock: Returns the current time; injected so tests can expire tokens.
    """

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._records: Dict[str, ConfirmationRecord] = {}
        self._lock = threading.Lock()

    def _cleanup_expired(self, now: datetime) -> None:
        expired = [token for token, rec in self._records.items() if rec.expires_at <= now]
        for token in expired:
            del self._records[token]

    def issue(self, tool: str, target: str, action: str) -> IssuedToken:
        """Issue a token for one exact operation signature."""
        now = self._clock()
        record = ConfirmationRecord(
            token=str(uuid.uuid4()),
            tool=_normalize(tool),
            target=_normalize(target),
            action=_normalize(action),
            expires_at=now + self._ttl,
        )
        with self._lock:
            self._cleanup_expired(now)
            self._records[record.token] = record
        logger.debug(f"Issued confirmation token for {record.tool} ({record.action})")
        return IssuedToken(record.token, record.expires_at.isoformat())

    def validate(
        self, token: Optional[str], tool: str, target: str, action: str
    ) -> ConfirmationValidation:
        """Check a token against a signature, consuming it on success."""
        if not token or not str(token).strip():
            return ConfirmationValidation(False, MISSING)

        now = self._clock()
        token = str(token).strip()
        with self._lock:
            record = self._records.get(token)
            if record is not None and record.expires_at <= now:
                del self._records[token]
                self._cleanup_expired(now)
                return ConfirmationValidation(False, EXPIRED)
            self._cleanup_expired(now)
            if record is None:
                return ConfirmationValidation(False, INVALID)
            del self._records[token]

        if (
            record.tool != _normalize(tool)
            or record.target != _normalize(target)
            or record.action != _normalize(action)
        ):
            logger.info(f"Confirmation token mismatch for {_normalize(tool)}; token discarded")
            return ConfirmationValidation(False, MISMATCH)
        return ConfirmationValidation(True)

    def require(self, token: Optional[str], tool: str, target: str, action: str) -> None:
        """Validate or raise the matching confirmation error."""
        result = self.validate(token, tool, target, action)
        if result.ok:
            return
        refresh = f"Call {tool} with dry_run=true to get a new confirmation_token."
        if result.reason == MISSING:
            raise ConfirmationRequiredError(
                f"Confirmation token is required for {tool}. {refresh}", tool=tool
            )
        if result.reason == EXPIRED:
            raise ConfirmationInvalidError(
                f"Confirmation token is expired for {tool}. {refresh}", tool=tool, reason=EXPIRED
            )
        raise ConfirmationInvalidError(
            f"Confirmation token is invalid for {tool}. {refresh}",
            tool=tool,
            reason=result.reason or INVALID,
        )

    def pending_count(self) -> int:
        with self._lock:
            self._cleanup_expired(self._clock())
            return len(self._records)
