"""Kernel services: persistence collaborator and execution-history sink."""

from commission_kernel.services.history import ExecutionHistoryRecorder
from commission_kernel.services.sql_store import SqlCommissionStore
from commission_kernel.services.store import (
    CommissionStore,
    ExportJob,
    InMemoryCommissionStore,
    PinnedInputs,
    ReplayRecord,
    ShapeChecksum,
)

__all__ = [
    "CommissionStore",
    "ExecutionHistoryRecorder",
    "ExportJob",
    "InMemoryCommissionStore",
    "PinnedInputs",
    "ReplayRecord",
    "ShapeChecksum",
    "SqlCommissionStore",
]
