"""
commission_batch -- run execution and run lifecycle.

Entry point: ``RunOrchestrator.from_config(store).execute_run(run_id)``.
"""

from commission_batch.domain.types import ItemOutcome, ItemStatus, RunExecutionResult
from commission_batch.orchestrator import RunOrchestrator
from commission_batch.services.executor import RunExecutor
from commission_batch.services.lifecycle import RunLifecycleService

__all__ = [
    "ItemOutcome",
    "ItemStatus",
    "RunExecutionResult",
    "RunExecutor",
    "RunLifecycleService",
    "RunOrchestrator",
]
