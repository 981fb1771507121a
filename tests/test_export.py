"""Tests for evalrig.storage.export - one JSON document per run."""

from __future__ import annotations

import json

import pytest

from evalrig.errors import StorageError
from evalrig.execution.orchestrator import Orchestrator
from evalrig.models.config import RunConfig
from evalrig.models.declaration import EvalDeclaration
from evalrig.storage import InMemoryStorage, export_run
from evalrig.storage.export import collect_run


def _decl() -> EvalDeclaration:
    def task(input, ctx):
        ctx.report_trace({"input": input, "output": "ok", "start": 0.0, "end": 1.0})
        return input

    return EvalDeclaration(
        name="echo",
        data=[{"input": "a", "expected": "a"}, {"input": "b", "expected": "b"}],
        task=task,
        scorers=[lambda input, output, expected: 1.0],
    )


class TestExport:
    """Nested run documents."""

    @pytest.mark.asyncio
    async def test_latest_run_exported(self, tmp_path):
        storage = InMemoryStorage()
        orchestrator = Orchestrator(config=RunConfig(), storage=storage)
        await orchestrator.run_declarations({"a.eval.py": [_decl()]})
        second = await orchestrator.run_declarations({"a.eval.py": [_decl()]})

        path = await export_run(storage, tmp_path / "out" / "run.json")
        document = json.loads(path.read_text(encoding="utf-8"))

        assert document["id"] == second.run_id
        assert document["run_type"] == "partial"
        [eval_] = document["evals"]
        assert eval_["name"] == "echo"
        assert [r["input"] for r in eval_["results"]] == ["a", "b"]
        assert eval_["results"][0]["scores"][0]["score"] == 1.0
        assert eval_["results"][0]["traces"][0]["output"] == "ok"
        assert not (tmp_path / "out" / "run.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_specific_run(self):
        storage = InMemoryStorage()
        orchestrator = Orchestrator(config=RunConfig(), storage=storage)
        first = await orchestrator.run_declarations({"a.eval.py": [_decl()]})
        await orchestrator.run_declarations({"a.eval.py": [_decl()]})

        document = await collect_run(storage, first.run_id)
        assert document["run_type"] == "full"

    @pytest.mark.asyncio
    async def test_missing_run_raises(self):
        with pytest.raises(StorageError, match="Nothing to export"):
            await collect_run(InMemoryStorage())
        with pytest.raises(StorageError, match="run 42"):
            await collect_run(InMemoryStorage(), 42)
