"""Matrix expansion: eval declaration -> ordered execution units.

Resolves the dataset, applies ``only``/``skip`` filtering to rows and
variants, multiplies rows by the trial count and stamps every unit with
its ``col_order`` and ``trial_index``. Ordering is fixed here, before
any execution starts, so display order never depends on completion order.
"""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any

from evalrig.errors import DatasetError
from evalrig.models.declaration import DataRow, EvalDeclaration, Variant, normalize_rows

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecutionUnit:
    """One (row x variant x trial) execution."""

    eval_name: str
    filepath: str
    row_index: int
    trial_index: int
    trial_count: int
    col_order: int
    input: Any
    expected: Any
    variant_name: str | None = None
    variant_group: str | None = None
    variant_input: Any = None
    has_variant: bool = False


@dataclass
class ExpandedEval:
    """All units of one Eval plus the metadata used to pre-create it."""

    name: str
    filepath: str
    declaration: EvalDeclaration
    units: list[ExecutionUnit] = field(default_factory=list)
    variant_name: str | None = None
    variant_group: str | None = None
    row_count: int = 0
    trial_count: int = 1
    error: DatasetError | None = None


def eval_display_name(name: str, variant_name: str | None) -> str:
    """Name of the Eval record: ``"name [variant]"`` for variants."""
    if variant_name is None:
        return name
    return f"{name} [{variant_name}]"


def resolve_trial_count(declaration: EvalDeclaration, config_trial_count: int | None) -> int:
    """Eval-level trial count overrides the config value; default 1."""
    if declaration.trial_count is not None:
        return declaration.trial_count
    if config_trial_count is not None:
        return config_trial_count
    return 1


async def resolve_data(declaration: EvalDeclaration) -> list[DataRow]:
    """Resolve ``data`` (list or sync/async producer) into DataRows."""
    data = declaration.data
    if callable(data):
        data = data()
        if inspect.isawaitable(data):
            data = await data
    return normalize_rows(data, declaration.name)


def filter_rows(rows: list[DataRow]) -> list[DataRow]:
    """Keep only ``only`` rows when any exist, else every non-skipped row."""
    if any(row.only for row in rows):
        return [row for row in rows if row.only]
    return [row for row in rows if not row.skip]


def filter_variants(variants: list[Variant]) -> list[Variant]:
    """Keep only ``only`` variants when any exist."""
    if any(variant.only for variant in variants):
        return [variant for variant in variants if variant.only]
    return variants


def _build_units(
    rows: list[DataRow],
    *,
    eval_name: str,
    filepath: str,
    trial_count: int,
    variant: Variant | None,
    variant_group: str | None,
) -> list[ExecutionUnit]:
    units: list[ExecutionUnit] = []
    for row_index, row in enumerate(rows):
        for trial_index in range(trial_count):
            units.append(
                ExecutionUnit(
                    eval_name=eval_name,
                    filepath=filepath,
                    row_index=row_index,
                    trial_index=trial_index,
                    trial_count=trial_count,
                    col_order=row_index * trial_count + trial_index,
                    input=row.input,
                    expected=row.expected,
                    variant_name=variant.name if variant else None,
                    variant_group=variant_group,
                    variant_input=variant.input if variant else None,
                    has_variant=variant is not None,
                )
            )
    return units


async def expand_eval(
    declaration: EvalDeclaration,
    filepath: str,
    config_trial_count: int | None = None,
) -> list[ExpandedEval]:
    """Expand one declaration into one ExpandedEval per resolved variant.

    A failing ``data`` producer does not raise: every resulting
    ExpandedEval carries the DatasetError and has no units.

    Args:
        declaration: The eval to expand.
        filepath: File the declaration was loaded from.
        config_trial_count: Trial count from the run configuration.

    Returns:
        ExpandedEvals in variant declaration order (empty when skipped).
    """
    if declaration.skip:
        return []

    trial_count = resolve_trial_count(declaration, config_trial_count)
    variants: list[Variant | None]
    if declaration.variants is not None:
        variants = list(filter_variants(declaration.variants))
    else:
        variants = [None]
    variant_group = declaration.name if declaration.variants is not None else None

    error: DatasetError | None = None
    rows: list[DataRow] = []
    try:
        rows = filter_rows(await resolve_data(declaration))
    except Exception as exc:
        logger.warning("Dataset for eval '%s' failed: %s", declaration.name, exc)
        error = DatasetError(declaration.name, exc)

    expanded: list[ExpandedEval] = []
    for variant in variants:
        variant_name = variant.name if variant else None
        eval_name = eval_display_name(declaration.name, variant_name)
        units = (
            []
            if error is not None
            else _build_units(
                rows,
                eval_name=eval_name,
                filepath=filepath,
                trial_count=trial_count,
                variant=variant,
                variant_group=variant_group,
            )
        )
        expanded.append(
            ExpandedEval(
                name=eval_name,
                filepath=filepath,
                declaration=declaration,
                units=units,
                variant_name=variant_name,
                variant_group=variant_group,
                row_count=0 if error is not None else len(rows),
                trial_count=trial_count,
                error=error,
            )
        )
    return expanded
