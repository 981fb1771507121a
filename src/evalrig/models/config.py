"""Run configuration model for evalrig.

Captures evalrig.yaml fields with sensible defaults for thresholds,
trial counts, concurrency, timeouts, caching and storage locations.
One RunConfig is built per invocation and passed to every component.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field

CONFIG_FILE_NAME = "evalrig.yaml"
STATE_DIR_NAME = ".evalrig"


class RunConfig(BaseModel):
    """Project-level configuration loaded from evalrig.yaml."""

    model_config = {"extra": "forbid"}

    score_threshold: float = Field(default=100.0, ge=0.0, le=100.0)
    trial_count: int | None = Field(default=None, ge=1)
    max_concurrency: int = Field(default=5, ge=1)
    test_timeout_ms: float = Field(default=30_000, gt=0)
    cache_enabled: bool = True
    storage: str = f"{STATE_DIR_NAME}/evalrig.db"
    cache_dir: str = f"{STATE_DIR_NAME}/cache"
    files_dir: str = f"{STATE_DIR_NAME}/files"
    hide_table: bool = False

    def resolve_path(self, value: str, project_root: Path) -> str:
        """Resolve a configured location relative to the project root.

        ``:memory:`` is returned unchanged so ephemeral storage stays
        ephemeral.
        """
        if value == ":memory:":
            return value
        path = Path(value)
        if not path.is_absolute():
            path = project_root / path
        return str(path)


def find_project_root(start: Path | None = None) -> Path:
    """Walk up from start (default: cwd) looking for evalrig.yaml or .evalrig/.

    Args:
        start: Starting path (file or directory). Defaults to cwd.

    Returns:
        Path to the directory containing evalrig.yaml or .evalrig/,
        or cwd if neither is found.
    """
    current = (start or Path.cwd()).resolve()
    if current.is_file():
        current = current.parent
    while current != current.parent:
        if (current / CONFIG_FILE_NAME).exists() or (current / STATE_DIR_NAME).exists():
            return current
        current = current.parent
    return Path.cwd()


def load_run_config(project_root: Path | None = None) -> RunConfig:
    """Load RunConfig from evalrig.yaml. Returns defaults if not found.

    Args:
        project_root: Path to the project root directory. If None,
            uses find_project_root() to locate it.

    Returns:
        Validated RunConfig instance.
    """
    if project_root is None:
        project_root = find_project_root()
    config_path = project_root / CONFIG_FILE_NAME
    if not config_path.exists():
        return RunConfig()
    import yaml

    raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if raw is None:
        return RunConfig()
    return RunConfig.model_validate(raw)
