"""
Reporting layer: export shapes, canonical checksums, export jobs and replay
verification of locked runs.
"""

from commission_reporting.export_service import ExportResult, ExportService
from commission_reporting.replay import (
    ReplayReport,
    ReplayVerifier,
    ShapeStatus,
    ShapeVerification,
)
from commission_reporting.shapes import (
    COLUMNS,
    ExportShape,
    ShapeRows,
    render_all,
    render_shape,
    shape_checksum,
    snapshot_index,
)

__all__ = [
    "COLUMNS",
    "ExportResult",
    "ExportService",
    "ExportShape",
    "ReplayReport",
    "ReplayVerifier",
    "ShapeRows",
    "ShapeStatus",
    "ShapeVerification",
    "render_all",
    "render_shape",
    "shape_checksum",
    "snapshot_index",
]
