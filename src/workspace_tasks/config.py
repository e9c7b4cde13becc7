"""Load optional engine configuration from `.workspace_tasks/config.yaml`.

Example::

    storage:
      backend: yaml          # or "memory"
      state_dir: /var/lib/workspace-tasks
    events:
      log_enabled: true
      background: false
    logging:
      level: INFO
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from .constants import (
    CONFIG_FILE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_STORAGE_BACKEND,
    ENV_LOG_LEVEL,
    ENV_STATE_DIR,
    STATE_DIR_NAME,
    STORAGE_BACKENDS,
)
from .io_utils import _load_data_with_error


def load_config(project_dir: Path) -> tuple[dict[str, Any], str | None]:
    """Load the optional config file.

    Args:
        project_dir: Directory holding the `.workspace_tasks/` state directory.

    Returns:
        A tuple of `(config, error_message)`. If the file is missing, returns `({}, None)`.
    """
    project_dir = project_dir.resolve()
    path = project_dir / STATE_DIR_NAME / CONFIG_FILE
    if not path.exists():
        return {}, None
    data, err = _load_data_with_error(path, {})
    if err:
        return {}, err
    return data, None


def _get_nested(config: dict[str, Any], *keys: str) -> Any:
    cur: Any = config
    for key in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(key)
    return cur


def resolve_state_dir(project_dir: Path, config: dict[str, Any]) -> Path:
    """Pick the state directory: env override, then config, then `<project>/.workspace_tasks`."""
    env = os.getenv(ENV_STATE_DIR)
    if env:
        return Path(env).expanduser().resolve()
    raw = _get_nested(config, "storage", "state_dir")
    if isinstance(raw, str) and raw:
        path = Path(raw).expanduser()
        return path if path.is_absolute() else (project_dir / path).resolve()
    return project_dir.resolve() / STATE_DIR_NAME


def get_storage_config(config: dict[str, Any]) -> dict[str, Any]:
    """Extract the storage block, normalizing the backend name."""
    raw = _get_nested(config, "storage")
    block = dict(raw) if isinstance(raw, dict) else {}
    backend = str(block.get("backend") or DEFAULT_STORAGE_BACKEND).lower()
    if backend not in STORAGE_BACKENDS:
        backend = DEFAULT_STORAGE_BACKEND
    block["backend"] = backend
    return block


def get_events_config(config: dict[str, Any]) -> dict[str, Any]:
    raw = _get_nested(config, "events")
    block = raw if isinstance(raw, dict) else {}
    return {
        "log_enabled": bool(block.get("log_enabled", True)),
        "background": bool(block.get("background", False)),
    }


def get_log_level(config: dict[str, Any]) -> str:
    env = os.getenv(ENV_LOG_LEVEL)
    if env:
        return env.upper()
    raw = _get_nested(config, "logging", "level")
    if isinstance(raw, str) and raw:
        return raw.upper()
    return DEFAULT_LOG_LEVEL
