"""Eval file discovery and loading.

Eval files are ordinary Python modules named ``*.eval.py`` that expose
EvalDeclaration objects at module level (directly, or inside a list or
tuple). Loading a file executes it; an exception raised at import time
becomes an EvalFileLoadError for that file only.
"""

from __future__ import annotations

import hashlib
import importlib.util
import logging
import sys
from collections.abc import Iterable
from pathlib import Path

from evalrig.errors import EvalFileLoadError
from evalrig.models.declaration import EvalDeclaration

logger = logging.getLogger(__name__)

EVAL_FILE_SUFFIX = ".eval.py"


def discover_eval_files(paths: Iterable[Path | str]) -> list[Path]:
    """Expand files and directories into a sorted, de-duplicated file list.

    Directories are searched recursively for ``*.eval.py``; explicit
    file paths are kept whatever their name.

    Raises:
        FileNotFoundError: If a given path does not exist.
    """
    found: set[Path] = set()
    for raw in paths:
        path = Path(raw)
        if path.is_dir():
            found.update(
                p.resolve() for p in path.rglob(f"*{EVAL_FILE_SUFFIX}") if p.is_file()
            )
        elif path.is_file():
            found.add(path.resolve())
        else:
            raise FileNotFoundError(f"No such file or directory: {path}")
    return sorted(found)


def _module_name(path: Path) -> str:
    digest = hashlib.sha256(str(path).encode("utf-8")).hexdigest()[:12]
    stem = path.name.removesuffix(EVAL_FILE_SUFFIX).replace(".", "_").replace("-", "_")
    return f"evalrig_eval_{stem}_{digest}"


def collect_declarations(namespace: dict[str, object]) -> list[EvalDeclaration]:
    """EvalDeclarations in a module namespace, in definition order."""
    declarations: list[EvalDeclaration] = []
    seen: set[int] = set()
    for value in namespace.values():
        candidates = value if isinstance(value, (list, tuple)) else [value]
        for candidate in candidates:
            if isinstance(candidate, EvalDeclaration) and id(candidate) not in seen:
                seen.add(id(candidate))
                declarations.append(candidate)
    return declarations


def load_eval_file(path: Path | str) -> list[EvalDeclaration]:
    """Import an eval file and return the evals it declares.

    The module is executed fresh on every call, so watch-mode reruns
    pick up edits.

    Raises:
        EvalFileLoadError: If the module cannot be imported.
    """
    path = Path(path).resolve()
    module_name = _module_name(path)
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise EvalFileLoadError(str(path), ImportError(f"Cannot import {path}"))

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except (Exception, SystemExit) as exc:
        # A module-level sys.exit() fails this file only
        logger.exception("Failed to load eval file %s", path)
        raise EvalFileLoadError(str(path), exc) from exc
    finally:
        sys.modules.pop(module_name, None)

    declarations = collect_declarations(vars(module))
    if not declarations:
        logger.warning("No evals declared in %s", path)
    return declarations
