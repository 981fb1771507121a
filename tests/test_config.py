"""Tests for evalrig.models.config - evalrig.yaml loading and defaults."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from evalrig.models.config import RunConfig, find_project_root, load_run_config


class TestRunConfig:
    """Defaults and validation."""

    def test_defaults(self):
        config = RunConfig()
        assert config.score_threshold == 100
        assert config.trial_count is None
        assert config.max_concurrency == 5
        assert config.test_timeout_ms == 30_000
        assert config.cache_enabled is True

    def test_unknown_keys_rejected(self):
        with pytest.raises(ValidationError):
            RunConfig(treshold=10)

    @pytest.mark.parametrize(
        "field,value",
        [("score_threshold", 101), ("max_concurrency", 0), ("trial_count", 0), ("test_timeout_ms", 0)],
    )
    def test_out_of_range_rejected(self, field, value):
        with pytest.raises(ValidationError):
            RunConfig(**{field: value})

    def test_resolve_path(self, tmp_path):
        config = RunConfig()
        assert config.resolve_path("db.sqlite", tmp_path) == str(tmp_path / "db.sqlite")
        assert config.resolve_path("/abs/db", tmp_path) == str(Path("/abs/db"))
        assert config.resolve_path(":memory:", tmp_path) == ":memory:"


class TestLoadRunConfig:
    """Reading evalrig.yaml."""

    def test_missing_file_gives_defaults(self, tmp_path):
        assert load_run_config(tmp_path) == RunConfig()

    def test_empty_file_gives_defaults(self, tmp_path):
        (tmp_path / "evalrig.yaml").write_text("", encoding="utf-8")
        assert load_run_config(tmp_path) == RunConfig()

    def test_values_loaded(self, tmp_path):
        (tmp_path / "evalrig.yaml").write_text(
            "score_threshold: 80\ntrial_count: 3\nstorage: ':memory:'\n", encoding="utf-8"
        )
        config = load_run_config(tmp_path)
        assert config.score_threshold == 80
        assert config.trial_count == 3
        assert config.storage == ":memory:"

    def test_find_project_root_walks_up(self, tmp_path):
        (tmp_path / "evalrig.yaml").write_text("{}\n", encoding="utf-8")
        nested = tmp_path / "evals" / "deep"
        nested.mkdir(parents=True)
        assert find_project_root(nested) == tmp_path.resolve()
