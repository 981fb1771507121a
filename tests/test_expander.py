"""Tests for evalrig.execution.expander - matrix expansion of eval declarations."""

from __future__ import annotations

import pytest

from evalrig.errors import DatasetError
from evalrig.execution.expander import (
    eval_display_name,
    expand_eval,
    filter_rows,
    resolve_trial_count,
)
from evalrig.models.declaration import DataRow, EvalDeclaration, Variant


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _echo(input):
    return input


def _decl(**overrides) -> EvalDeclaration:
    defaults = {
        "name": "echo",
        "data": [{"input": "a"}, {"input": "b"}, {"input": "c"}],
        "task": _echo,
    }
    defaults.update(overrides)
    return EvalDeclaration(**defaults)


class TestColOrder:
    """col_order is contiguous and fixed before execution."""

    @pytest.mark.asyncio
    async def test_col_orders_are_contiguous_with_trials(self):
        [expanded] = await expand_eval(_decl(trial_count=3), "a.eval.py")
        orders = [u.col_order for u in expanded.units]
        assert orders == list(range(9))

    @pytest.mark.asyncio
    async def test_row_trial_pairs_unique_and_in_range(self):
        [expanded] = await expand_eval(_decl(trial_count=2), "a.eval.py")
        pairs = {(u.row_index, u.trial_index) for u in expanded.units}
        assert len(pairs) == len(expanded.units) == 6
        assert all(0 <= u.trial_index < 2 for u in expanded.units)

    @pytest.mark.asyncio
    async def test_col_order_formula(self):
        [expanded] = await expand_eval(_decl(trial_count=2), "a.eval.py")
        for unit in expanded.units:
            assert unit.col_order == unit.row_index * 2 + unit.trial_index


class TestTrialCount:
    """Eval-level trial count overrides config-level."""

    def test_default_is_one(self):
        assert resolve_trial_count(_decl(), None) == 1

    def test_config_value_used(self):
        assert resolve_trial_count(_decl(), 4) == 4

    def test_eval_value_overrides_config(self):
        assert resolve_trial_count(_decl(trial_count=2), 4) == 2

    @pytest.mark.asyncio
    async def test_config_trial_count_applied(self):
        [expanded] = await expand_eval(_decl(), "a.eval.py", config_trial_count=2)
        assert expanded.trial_count == 2
        assert len(expanded.units) == 6


class TestOnlyAndSkip:
    """Row and variant filtering."""

    @pytest.mark.asyncio
    async def test_only_rows_restrict_results(self):
        data = [
            {"input": "a"},
            {"input": "b", "only": True},
            {"input": "c"},
            {"input": "d", "only": True},
            {"input": "e"},
        ]
        [expanded] = await expand_eval(_decl(data=data), "a.eval.py")
        assert [u.input for u in expanded.units] == ["b", "d"]
        assert [u.col_order for u in expanded.units] == [0, 1]

    def test_skipped_rows_dropped(self):
        rows = [DataRow(input=1), DataRow(input=2, skip=True)]
        assert [r.input for r in filter_rows(rows)] == [1]

    @pytest.mark.asyncio
    async def test_skipped_eval_expands_to_nothing(self):
        assert await expand_eval(_decl(skip=True), "a.eval.py") == []

    @pytest.mark.asyncio
    async def test_empty_dataset_has_no_units(self):
        [expanded] = await expand_eval(_decl(data=[]), "a.eval.py")
        assert expanded.units == []
        assert expanded.error is None


class TestVariants:
    """Variants produce sibling evals."""

    @pytest.mark.asyncio
    async def test_variant_list_produces_sibling_evals(self):
        decl = _decl(
            variants=[Variant(name="fast", input=1), Variant(name="slow", input=2)],
        )
        expanded = await expand_eval(decl, "a.eval.py")
        assert [e.name for e in expanded] == ["echo [fast]", "echo [slow]"]
        assert all(e.variant_group == "echo" for e in expanded)
        assert [u.variant_input for u in expanded[1].units] == [2, 2, 2]
        assert all(u.has_variant for u in expanded[0].units)

    @pytest.mark.asyncio
    async def test_variant_mapping_normalized(self):
        decl = _decl(variants={"gpt": "gpt-4o", "claude": "sonnet"})
        expanded = await expand_eval(decl, "a.eval.py")
        assert [e.variant_name for e in expanded] == ["gpt", "claude"]

    @pytest.mark.asyncio
    async def test_only_variant_selected(self):
        decl = _decl(
            variants=[Variant(name="a"), Variant(name="b", only=True)],
        )
        expanded = await expand_eval(decl, "a.eval.py")
        assert [e.name for e in expanded] == ["echo [b]"]

    def test_display_name_without_variant(self):
        assert eval_display_name("echo", None) == "echo"


class TestDataProducers:
    """Callable datasets, sync and async."""

    @pytest.mark.asyncio
    async def test_sync_producer(self):
        [expanded] = await expand_eval(_decl(data=lambda: [{"input": 1}]), "a.eval.py")
        assert [u.input for u in expanded.units] == [1]

    @pytest.mark.asyncio
    async def test_async_producer(self):
        async def load():
            return [{"input": 1, "expected": 2}]

        [expanded] = await expand_eval(_decl(data=load), "a.eval.py")
        assert expanded.units[0].expected == 2

    @pytest.mark.asyncio
    async def test_failing_producer_sets_dataset_error(self):
        def load():
            raise ConnectionError("dataset offline")

        [expanded] = await expand_eval(_decl(data=load), "a.eval.py")
        assert isinstance(expanded.error, DatasetError)
        assert "dataset offline" in str(expanded.error)
        assert expanded.units == []

    @pytest.mark.asyncio
    async def test_non_list_producer_is_dataset_error(self):
        [expanded] = await expand_eval(_decl(data=lambda: "nope"), "a.eval.py")
        assert isinstance(expanded.error, DatasetError)
