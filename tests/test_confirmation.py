"""Tests for the dry-run confirmation gate."""
import pytest

from noteplan_mcp.exceptions import ConfirmationInvalidError, ConfirmationRequiredError
from noteplan_mcp.services.confirmation import (
    EXPIRED,
    INVALID,
    MISMATCH,
    MISSING,
    ConfirmationGate,
)

TOOL = "noteplan_delete_lines"
TARGET = "local::Notes/plan.md"
ACTION = "delete_lines:10-12"


class TestConfirmationGate:
    """Token issue, validation and expiry."""

    def test_token_is_single_use(self, gate):
        issued = gate.issue(TOOL, TARGET, ACTION)
        assert gate.validate(issued.confirmation_token, TOOL, TARGET, ACTION).ok
        second = gate.validate(issued.confirmation_token, TOOL, TARGET, ACTION)
        assert not second.ok
        assert second.reason == INVALID

    def test_signature_is_normalized(self, gate):
        """Tool, target and action compare case- and whitespace-insensitively."""
        issued = gate.issue(TOOL, TARGET, ACTION)
        assert gate.validate(issued.confirmation_token, f" {TOOL.upper()} ", TARGET, ACTION).ok

    def test_mismatch_discards_token(self, gate):
        issued = gate.issue(TOOL, TARGET, ACTION)
        result = gate.validate(issued.confirmation_token, TOOL, TARGET, "delete_lines:10-13")
        assert result.reason == MISMATCH
        # The right signature no longer works either
        retry = gate.validate(issued.confirmation_token, TOOL, TARGET, ACTION)
        assert retry.reason == INVALID

    def test_missing_token(self, gate):
        assert gate.validate(None, TOOL, TARGET, ACTION).reason == MISSING
        assert gate.validate("  ", TOOL, TARGET, ACTION).reason == MISSING

    def test_expiry(self, gate, fake_clock):
        issued = gate.issue(TOOL, TARGET, ACTION)
        fake_clock.advance(601)
        result = gate.validate(issued.confirmation_token, TOOL, TARGET, ACTION)
        assert result.reason == EXPIRED

    def test_expiry_timestamp(self, gate, fake_clock):
        issued = gate.issue(TOOL, TARGET, ACTION)
        assert issued.confirmation_expires_at == "2024-01-15T12:10:00+00:00"

    def test_pending_count_drops_expired(self, gate, fake_clock):
        gate.issue(TOOL, TARGET, ACTION)
        gate.issue(TOOL, TARGET, "delete_lines:1-2")
        assert gate.pending_count() == 2
        fake_clock.advance(700)
        assert gate.pending_count() == 0


class TestRequire:
    """Raising variants used by the note service."""

    def test_require_without_token(self, gate):
        with pytest.raises(ConfirmationRequiredError) as excinfo:
            gate.require(None, TOOL, TARGET, ACTION)
        assert excinfo.value.tool_code == "ERR_CONFIRMATION_REQUIRED"
        assert excinfo.value.suggested_tool == TOOL

    def test_require_with_expired_token(self, gate, fake_clock):
        issued = gate.issue(TOOL, TARGET, ACTION)
        fake_clock.advance(900)
        with pytest.raises(ConfirmationInvalidError) as excinfo:
            gate.require(issued.confirmation_token, TOOL, TARGET, ACTION)
        assert excinfo.value.details["reason"] == EXPIRED

    def test_require_with_valid_token(self, gate):
        issued = gate.issue(TOOL, TARGET, ACTION)
        gate.require(issued.confirmation_token, TOOL, TARGET, ACTION)
        assert gate.pending_count() == 0
