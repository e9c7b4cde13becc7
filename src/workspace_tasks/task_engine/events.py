"""Change-event delivery to notification sinks.

The communication subsystem (channel posts, broadcasts) subscribes to task
changes through a sink.  Delivery is fire-and-forget: a failing sink is
logged and skipped, and it never affects a mutation that already committed.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Protocol

from loguru import logger

from ..io_utils import _append_jsonl, _read_jsonl_matching, _read_jsonl_tail
from ..logging_utils import summarize_event
from .model import ChangeEvent


class NotificationSink(Protocol):
    def publish(self, event: ChangeEvent) -> None: ...


class InMemoryEventSink:
    """Collects events in a list; handy for tests and in-process consumers."""

    def __init__(self) -> None:
        self.events: list[ChangeEvent] = []
        self._lock = threading.Lock()

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            self.events.append(event)

    def kinds(self) -> list[str]:
        with self._lock:
            return [e.kind for e in self.events]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class CallbackSink:
    def __init__(self, callback: Callable[[ChangeEvent], Any]) -> None:
        self._callback = callback

    def publish(self, event: ChangeEvent) -> None:
        self._callback(event)


class JsonlEventLog:
    """Append-only JSONL log of change events (``task_events.jsonl``)."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self._lock = threading.Lock()

    def publish(self, event: ChangeEvent) -> None:
        with self._lock:
            _append_jsonl(self.path, event.to_dict())

    def recent(self, limit: int = 100, workspace_id: Optional[str] = None) -> list[dict[str, Any]]:
        if workspace_id is None:
            return _read_jsonl_tail(self.path, limit)
        return _read_jsonl_matching(self.path, lambda e: str(e.get("workspace_id")) == workspace_id, limit)

    def for_task(self, task_id: str, limit: int = 100) -> list[dict[str, Any]]:
        return _read_jsonl_matching(self.path, lambda e: str(e.get("task_id")) == task_id, limit)


class EventDispatcher:
    """Fan change events out to every registered sink.

    With ``background=True`` delivery runs on a single worker thread so the
    caller never waits on a slow sink; events keep their commit order.
    """

    def __init__(self, sinks: Optional[Iterable[NotificationSink]] = None, *, background: bool = False) -> None:
        self._sinks: list[NotificationSink] = list(sinks or [])
        self._executor: Optional[ThreadPoolExecutor] = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="task-events") if background else None
        )

    @property
    def sinks(self) -> list[NotificationSink]:
        return list(self._sinks)

    def subscribe(self, sink: NotificationSink) -> None:
        self._sinks.append(sink)

    def unsubscribe(self, sink: NotificationSink) -> None:
        if sink in self._sinks:
            self._sinks.remove(sink)

    def publish(self, events: list[ChangeEvent]) -> None:
        if not events:
            return
        if self._executor is not None:
            self._executor.submit(self._deliver, list(events))
        else:
            self._deliver(events)

    def _deliver(self, events: list[ChangeEvent]) -> None:
        for event in events:
            logger.debug("Task change {}", summarize_event(event))
            for sink in list(self._sinks):
                try:
                    sink.publish(event)
                except Exception:
                    logger.exception(
                        "Failed to deliver {} for {} to {}",
                        event.kind, event.task_id, sink.__class__.__name__,
                    )

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
