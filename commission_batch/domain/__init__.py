"""Pure batch DTOs."""

from commission_batch.domain.types import ItemOutcome, ItemStatus, RunExecutionResult

__all__ = ["ItemOutcome", "ItemStatus", "RunExecutionResult"]
