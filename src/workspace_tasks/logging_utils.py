"""Logger setup and compact summaries of change events for log lines."""

from __future__ import annotations

import sys
from typing import Any

from loguru import logger


def configure_logging(level: str = "INFO") -> None:
    """Configure loguru logger with the specified level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=(
            "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{module}</cyan>:<cyan>{line}</cyan>\n"
            "{message}"
        ),
    )


def summarize_event(event: Any) -> dict[str, Any]:
    """Render a compact, JSON-friendly summary of a change event.

    Only the fields that changed between ``before`` and ``after`` are listed.
    """
    if event is None:
        return {"event": None}

    d: dict[str, Any] = {
        "kind": getattr(event, "kind", None),
        "task_id": getattr(event, "task_id", None),
        "actor_id": getattr(event, "actor_id", None),
    }
    before = getattr(event, "before", None) or {}
    after = getattr(event, "after", None) or {}
    changed = sorted(
        key for key in set(before) | set(after)
        if key != "updated_at" and before.get(key) != after.get(key)
    )
    if changed:
        d["changed"] = changed
    if before.get("status") != after.get("status") and after:
        d["status"] = f"{before.get('status')} -> {after.get('status')}"
    return d
