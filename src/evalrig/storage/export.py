"""Export a stored run as one JSON document."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from evalrig.errors import StorageError
from evalrig.storage.base import Storage

logger = logging.getLogger(__name__)


async def collect_run(storage: Storage, run_id: int | None = None) -> dict[str, Any]:
    """Gather a run and everything it owns into nested dicts.

    Args:
        storage: Storage to read from.
        run_id: Run to export; the most recent run when None.

    Raises:
        StorageError: If no matching run exists.
    """
    if run_id is None:
        runs = await storage.runs.get_many(limit=1)
    else:
        runs = await storage.runs.get_many(ids=[run_id])
    if not runs:
        target = "any run" if run_id is None else f"run {run_id}"
        raise StorageError(f"Nothing to export: could not find {target}")
    run = runs[0]

    evals = await storage.evals.get_many(
        run_ids=[run.id], order_by="id", order_direction="asc"
    )
    exported_evals = []
    for eval_ in evals:
        results = await storage.results.get_many(eval_ids=[eval_.id])
        result_ids = [r.id for r in results]
        scores = await storage.scores.get_many(result_ids=result_ids)
        traces = await storage.traces.get_many(result_ids=result_ids)

        exported_results = []
        for result in results:
            entry = result.model_dump(mode="json")
            entry["scores"] = [s.model_dump(mode="json") for s in scores if s.result_id == result.id]
            entry["traces"] = [t.model_dump(mode="json") for t in traces if t.result_id == result.id]
            exported_results.append(entry)

        entry = eval_.model_dump(mode="json")
        entry["results"] = exported_results
        exported_evals.append(entry)

    document = run.model_dump(mode="json")
    document["evals"] = exported_evals
    return document


async def export_run(
    storage: Storage,
    output_path: Path | str,
    run_id: int | None = None,
) -> Path:
    """Write a run export to output_path.

    Writes are atomic (write to .tmp, then rename) to prevent partial files.

    Returns:
        The path written.
    """
    document = await collect_run(storage, run_id)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    content = json.dumps(document, indent=2, ensure_ascii=False)
    tmp_file = output_path.with_name(f"{output_path.name}.tmp")
    tmp_file.write_text(content, encoding="utf-8")
    tmp_file.replace(output_path)

    logger.info("Exported run %s to %s", document["id"], output_path)
    return output_path
