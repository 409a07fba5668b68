"""Batch services: run execution and run lifecycle."""

from commission_batch.services.executor import RunExecutor
from commission_batch.services.lifecycle import RunLifecycleService

__all__ = ["RunExecutor", "RunLifecycleService"]
