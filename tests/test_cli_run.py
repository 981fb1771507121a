"""Tests for the evalrig CLI: run, export and --version."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from evalrig import __version__
from evalrig.cli.main import app
from evalrig.cli.output import output_json
from evalrig.evaluation.aggregation import EvalSummary, RunSummary

runner = CliRunner()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

PASSING_EVAL = """\
from evalrig import EvalDeclaration


def exact(input, output, expected):
    return 1.0 if output == expected else 0.0


echo = EvalDeclaration(
    name="echo",
    data=[{"input": "a", "expected": "a"}, {"input": "b", "expected": "b"}],
    task=lambda input: input,
    scorers=[exact],
)
"""

HALF_EVAL = PASSING_EVAL.replace('"expected": "b"', '"expected": "x"')


@pytest.fixture
def project(tmp_path, monkeypatch):
    """A project root with evalrig.yaml and an on-disk database."""
    (tmp_path / "evalrig.yaml").write_text("storage: evalrig.db\n", encoding="utf-8")
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _write_eval(project: Path, name: str = "echo.eval.py", content: str = PASSING_EVAL) -> Path:
    path = project / "evals" / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


class TestVersion:
    """Tests for --version."""

    def test_version_flag(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert f"evalrig {__version__}" in result.output


class TestRunCommand:
    """Tests for evalrig run."""

    def test_passing_run_exits_zero(self, project):
        _write_eval(project)
        result = runner.invoke(app, ["run"])
        assert result.exit_code == 0, result.output
        assert "PASS" in result.output
        assert "echo" in result.output
        assert "Run saved: 1" in result.output
        assert (project / "evalrig.db").exists()

    def test_threshold_missed_exits_one(self, project):
        _write_eval(project, content=HALF_EVAL)
        result = runner.invoke(app, ["run"])
        assert result.exit_code == 1
        assert "threshold missed" in result.output

    def test_threshold_override(self, project):
        _write_eval(project, content=HALF_EVAL)
        result = runner.invoke(app, ["run", "--threshold", "50"])
        assert result.exit_code == 0, result.output

    def test_json_output(self, project):
        path = _write_eval(project)
        result = runner.invoke(app, ["run", str(path), "--json", "--trial-count", "2"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["success"] is True
        assert data["run_type"] == "full"
        assert data["total_results"] == 4
        assert [e["name"] for e in data["evals"]] == ["echo"]

    def test_load_error_fails_run_but_others_execute(self, project):
        _write_eval(project)
        _write_eval(project, "broken.eval.py", "raise ImportError('missing dep')\n")
        result = runner.invoke(app, ["run", "--threshold", "0"])
        assert result.exit_code == 1
        assert "eval files failed to load" in result.output
        assert "echo" in result.output

    def test_no_eval_files(self, project):
        result = runner.invoke(app, ["run"])
        assert result.exit_code == 1
        assert "No *.eval.py files found." in result.output

    def test_missing_path(self, project):
        result = runner.invoke(app, ["run", "nowhere"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_runs_accumulate_in_storage(self, project):
        _write_eval(project)
        runner.invoke(app, ["run", "--no-cache"])
        result = runner.invoke(app, ["run", "--no-cache"])
        assert "Run saved: 2" in result.output


class TestExportCommand:
    """Tests for evalrig export."""

    def test_export_latest_run(self, project):
        _write_eval(project)
        runner.invoke(app, ["run"])
        result = runner.invoke(app, ["export", "out.json"])
        assert result.exit_code == 0, result.output
        document = json.loads((project / "out.json").read_text(encoding="utf-8"))
        assert document["id"] == 1
        assert document["evals"][0]["name"] == "echo"
        assert len(document["evals"][0]["results"]) == 2

    def test_export_without_runs_fails(self, project):
        result = runner.invoke(app, ["export", "out.json"])
        assert result.exit_code == 1
        assert "Export failed" in result.output
        assert not (project / "out.json").exists()


class TestOutputJson:
    """Tests for the JSON summary writer."""

    def test_pure_json(self, capsys):
        summary = RunSummary(
            run_id=3,
            run_type="full",
            threshold=80,
            average_score=None,
            evals=[EvalSummary(name="e", filepath="a.eval.py", status="success", result_count=0)],
        )
        output_json(summary)
        captured = capsys.readouterr()
        data = json.loads(captured.out)
        assert data["average_score"] is None
        assert data["success"] is True
        assert data["failure_reasons"] == []
        assert "[/" not in captured.out
