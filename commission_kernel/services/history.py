"""
Execution-history recorder -- a fire-and-forget sink for per-rule outcomes.

Contract:
    ``record()`` hands an ``ExecutionHistoryEntry`` to a single background
    writer thread and returns immediately.  A failing write is logged as
    ``execution_history_write_failed`` and counted; it never reaches the
    caller, so a calculation never depends on the history sink succeeding.

    ``close()`` (or leaving the ``with`` block) waits for pending writes.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

from commission_kernel.domain.runs import ExecutionHistoryEntry
from commission_kernel.logging_config import get_logger

logger = get_logger("services.history")


class HistorySink(Protocol):
    def record_execution(self, entry: ExecutionHistoryEntry) -> None: ...


class ExecutionHistoryRecorder:
    """Best-effort, non-blocking writer of execution-history entries."""

    def __init__(self, sink: HistorySink, *, background: bool = True):
        self._sink = sink
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="exec-history")
            if background
            else None
        )
        self._counter_lock = threading.Lock()
        self.written = 0
        self.failed = 0

    def record(self, entry: ExecutionHistoryEntry) -> None:
        if self._executor is None:
            self._write(entry)
        else:
            self._executor.submit(self._write, entry)

    def _write(self, entry: ExecutionHistoryEntry) -> None:
        try:
            self._sink.record_execution(entry)
        except Exception as exc:
            with self._counter_lock:
                self.failed += 1
            logger.warning(
                "execution_history_write_failed",
                extra={
                    "run_id": entry.run_id,
                    "rule_id": entry.rule_id,
                    "event_id": entry.event_id,
                    "error": str(exc),
                },
            )
            return
        with self._counter_lock:
            self.written += 1

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> ExecutionHistoryRecorder:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()
