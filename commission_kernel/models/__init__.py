"""
commission_kernel.models -- ORM models for commission persistence.

Importing this package registers every table on ``Base.metadata``.
"""

from commission_kernel.models.calculation import (
    CalculationResultModel,
    ExecutionHistoryModel,
)
from commission_kernel.models.records import (
    CreditModel,
    DiscountModel,
    DistributionEventModel,
    RunEventModel,
)
from commission_kernel.models.rule import RuleModel
from commission_kernel.models.run import (
    CalculationRunModel,
    ExportJobModel,
    LockChecksumModel,
    ReplayReportModel,
    RunPinnedInputsModel,
)

__all__ = [
    "CalculationResultModel",
    "CalculationRunModel",
    "CreditModel",
    "DiscountModel",
    "DistributionEventModel",
    "ExecutionHistoryModel",
    "ExportJobModel",
    "LockChecksumModel",
    "ReplayReportModel",
    "RuleModel",
    "RunEventModel",
    "RunPinnedInputsModel",
]
