"""Tests for evalrig.execution.loader - discovery and import of eval files."""

from __future__ import annotations

import logging

import pytest

from evalrig.errors import EvalFileLoadError
from evalrig.execution.loader import (
    collect_declarations,
    discover_eval_files,
    load_eval_file,
)
from evalrig.models.declaration import EvalDeclaration


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

EVAL_SOURCE = """\
from evalrig import EvalDeclaration


def shout(input):
    return input.upper()


single = EvalDeclaration(name="single", data=[{"input": "a"}], task=shout)
grouped = [
    EvalDeclaration(name="first", data=[{"input": "b"}], task=shout),
    EvalDeclaration(name="second", data=[{"input": "c"}], task=shout),
]
"""


def _write(path, content=EVAL_SOURCE):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class TestDiscoverEvalFiles:
    """Expanding CLI paths into eval files."""

    def test_directory_searched_recursively(self, tmp_path):
        a = _write(tmp_path / "a.eval.py")
        b = _write(tmp_path / "nested" / "deeper" / "b.eval.py")
        _write(tmp_path / "helpers.py", "X = 1\n")
        assert discover_eval_files([tmp_path]) == sorted([a.resolve(), b.resolve()])

    def test_explicit_file_kept_and_deduplicated(self, tmp_path):
        a = _write(tmp_path / "a.eval.py")
        other = _write(tmp_path / "custom.py")
        found = discover_eval_files([tmp_path, a, other])
        assert found == sorted([a.resolve(), other.resolve()])

    def test_missing_path_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            discover_eval_files([tmp_path / "nope"])

    def test_empty_directory(self, tmp_path):
        assert discover_eval_files([tmp_path]) == []


class TestLoadEvalFile:
    """Executing eval modules."""

    def test_collects_module_level_and_grouped(self, tmp_path):
        declarations = load_eval_file(_write(tmp_path / "a.eval.py"))
        assert [d.name for d in declarations] == ["single", "first", "second"]
        assert declarations[0].task("x") == "X"

    def test_reload_picks_up_edits(self, tmp_path):
        path = _write(tmp_path / "a.eval.py")
        load_eval_file(path)
        _write(path, EVAL_SOURCE.replace('name="single"', 'name="renamed"'))
        assert load_eval_file(path)[0].name == "renamed"

    def test_import_error_wrapped(self, tmp_path):
        path = _write(tmp_path / "bad.eval.py", "raise RuntimeError('boom')\n")
        with pytest.raises(EvalFileLoadError, match="boom") as exc_info:
            load_eval_file(path)
        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.filepath == str(path.resolve())

    def test_module_level_exit_wrapped(self, tmp_path):
        path = _write(tmp_path / "exits.eval.py", "import sys\n\nsys.exit(3)\n")
        with pytest.raises(EvalFileLoadError, match="SystemExit: 3") as exc_info:
            load_eval_file(path)
        assert isinstance(exc_info.value.cause, SystemExit)

    def test_syntax_error_wrapped(self, tmp_path):
        path = _write(tmp_path / "bad.eval.py", "def broken(:\n")
        with pytest.raises(EvalFileLoadError, match="SyntaxError"):
            load_eval_file(path)

    def test_no_evals_warns(self, tmp_path, caplog):
        caplog.set_level(logging.WARNING, logger="evalrig.execution.loader")
        path = _write(tmp_path / "empty.eval.py", "VALUE = 1\n")
        assert load_eval_file(path) == []
        assert "No evals declared" in caplog.text


class TestCollectDeclarations:
    """Namespace scanning."""

    def test_same_object_counted_once(self):
        decl = EvalDeclaration(name="e", data=[], task=lambda input: input)
        namespace = {"a": decl, "alias": decl, "group": (decl,), "other": 3}
        assert collect_declarations(namespace) == [decl]
