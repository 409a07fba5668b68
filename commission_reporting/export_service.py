"""
ExportService -- render a run's results into a shape and record the export job.

Contract:
    ``export(run_id, shape)`` reads the run's results and pinned rule
    snapshots, renders the requested shape, records
    ``{shape, checksum, row_count, rounding_diff}`` through the store and
    returns the rendered rows.

Non-goals:
    - Does NOT write files or choose a file format; callers serialize
      ``ExportResult.rows``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from commission_kernel.domain.clock import Clock, SystemClock
from commission_kernel.domain.values import DecimalValue
from commission_kernel.logging_config import get_logger
from commission_kernel.services.store import CommissionStore, ExportJob
from commission_reporting.shapes import (
    COLUMNS,
    ExportShape,
    render_shape,
    rounding_diff,
    snapshot_index,
)

logger = get_logger("reporting.export")


@dataclass(frozen=True)
class ExportResult:
    run_id: str
    shape: ExportShape
    columns: tuple[str, ...]
    rows: tuple[dict[str, Any], ...]
    checksum: str
    row_count: int
    rounding_diff: DecimalValue


class ExportService:
    def __init__(
        self,
        store: CommissionStore,
        clock: Clock | None = None,
        display_places: int = 2,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._display_places = display_places

    def export(self, run_id: str, shape: ExportShape | str) -> ExportResult:
        """
        Raises:
            RunNotFoundError: Unknown run.
            ValueError: Unknown shape name.
        """
        shape = ExportShape(shape)
        self._store.get_run(run_id)
        results = self._store.list_results(run_id)
        pinned = self._store.get_pinned_inputs(run_id)
        snapshots = snapshot_index(pinned.rule_snapshots) if pinned else {}

        rendered = render_shape(shape, results, snapshots, self._display_places)
        diff = rounding_diff(rendered, results, self._display_places)
        job = ExportJob(
            run_id=run_id,
            shape=shape.value,
            checksum=rendered.checksum,
            row_count=rendered.row_count,
            rounding_diff=diff,
            exported_at=self._clock.now(),
        )
        self._store.record_export_job(job)

        logger.info(
            "run_exported",
            extra={
                "run_id": run_id,
                "shape": shape.value,
                "checksum": rendered.checksum,
                "row_count": rendered.row_count,
                "rounding_diff": str(diff),
            },
        )
        return ExportResult(
            run_id=run_id,
            shape=shape,
            columns=COLUMNS[shape],
            rows=rendered.rows,
            checksum=rendered.checksum,
            row_count=rendered.row_count,
            rounding_diff=diff,
        )

    def export_all(self, run_id: str) -> dict[ExportShape, ExportResult]:
        return {shape: self.export(run_id, shape) for shape in ExportShape}
