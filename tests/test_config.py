"""Tests for configuration loading and validation."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from noteplan_mcp.config import NotePlanConfig


class TestNotePlanConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("NOTEPLAN_DASH_IS_TODO", raising=False)
        monkeypatch.delenv("NOTEPLAN_CONFIRMATION_TTL", raising=False)
        cfg = NotePlanConfig()
        assert cfg.dash_is_todo is False
        assert cfg.asterisk_is_todo is True
        assert cfg.confirmation_ttl == 600

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("NOTEPLAN_DASH_IS_TODO", "yes")
        monkeypatch.setenv("NOTEPLAN_RESOLVE_MIN_SCORE", "0.9")
        cfg = NotePlanConfig()
        assert cfg.dash_is_todo is True
        assert cfg.resolve_min_score == 0.9

    @pytest.mark.parametrize(
        "field,value",
        [
            ("notes_cache_ttl", 0),
            ("confirmation_ttl", -1),
            ("resolve_min_score", 1.5),
            ("resolve_ambiguity_delta", -0.1),
            ("first_day_of_week", 7),
            ("ripgrep_timeout", 0),
        ],
    )
    def test_rejects_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            NotePlanConfig(**{field: value})

    def test_relative_paths_anchor_to_base_dir(self, tmp_path):
        cfg = NotePlanConfig(base_dir=tmp_path, storage_path=Path("tree"))
        assert cfg.get_storage_root() == tmp_path / "tree"
        absolute = tmp_path / "elsewhere"
        assert NotePlanConfig(storage_path=absolute).get_storage_root() == absolute
