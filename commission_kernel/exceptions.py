"""
Typed Exception Hierarchy for the Commission Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Commission runs collect per-item failures into run results and only let
infrastructure failures escape the batch boundary.  That split is only
possible when every failure is identified by TYPE and CODE, never by message:

    try:
        result = calculator.calculate(...)
    except NoApplicableTierError as e:      # Typed catch
        outcome = ItemOutcome.failed(e.code, str(e))
    except PersistenceError:
        raise                               # Infrastructure -- propagate

Every exception:
  1. Has a class-level ``code`` attribute (machine-readable, API-safe)
  2. Stores its context as attributes (structured data, not just a message)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CommissionKernelError (base)
    |
    +-- DecimalValueError
    |   +-- DivisionByZeroError
    |
    +-- RuleError
    |   +-- RuleValidationError
    |   +-- RuleNotFoundError
    |   +-- RuleImmutableError
    |   +-- RuleChecksumMismatchError
    |
    +-- CalculationError
    |   +-- NoApplicableTierError
    |   +-- InvalidConditionError
    |   +-- VatRateNotFoundError
    |   +-- UnsupportedBasisError
    |
    +-- CreditError
    |   +-- CreditOverdrawError
    |
    +-- RunError
    |   +-- RunNotFoundError
    |   +-- InvalidRunTransitionError
    |   +-- RunNotRecomputableError
    |   +-- RunNotLockedError
    |   +-- RunLockedError
    |
    +-- PersistenceError
    |
    +-- ReplayError
        +-- PinnedInputsMissingError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|-----------------------------------
Decimal      | DIVISION_BY_ZERO            | Divisor is zero
-------------|-----------------------------|-----------------------------------
Rule         | RULE_VALIDATION_FAILED      | Structural pre-validation failed
             | RULE_NOT_FOUND              | No rule for (id, version)
             | RULE_IMMUTABLE              | Edit of a version pinned by a run
             | RULE_CHECKSUM_MISMATCH      | Snapshot content != pinned hash
-------------|-----------------------------|-----------------------------------
Calculation  | NO_APPLICABLE_TIER          | No tier bracket covers the amount
             | INVALID_CONDITION           | Malformed condition value
             | VAT_RATE_NOT_FOUND          | No VAT rate for jurisdiction/date
             | UNSUPPORTED_BASIS           | Unknown calculation basis
-------------|-----------------------------|-----------------------------------
Credit       | CREDIT_OVERDRAW             | Balance would go below zero
-------------|-----------------------------|-----------------------------------
Run          | RUN_NOT_FOUND               | Run id does not exist
             | INVALID_RUN_TRANSITION      | State machine forbids transition
             | RUN_NOT_RECOMPUTABLE        | Compute on a non DRAFT/IN_PROGRESS
             | RUN_NOT_LOCKED              | Replay of a run that is not LOCKED
             | RUN_LOCKED                  | Mutation of a LOCKED run
-------------|-----------------------------|-----------------------------------
Persistence  | PERSISTENCE_ERROR           | Store cannot read or write
-------------|-----------------------------|-----------------------------------
Replay       | PINNED_INPUTS_MISSING       | Locked run has no pinned inputs

===============================================================================
"""

from __future__ import annotations


class CommissionKernelError(Exception):
    """
    Base exception for all commission kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "COMMISSION_KERNEL_ERROR"


# Decimal value exceptions


class DecimalValueError(CommissionKernelError):
    """Base exception for decimal arithmetic errors."""

    code: str = "DECIMAL_VALUE_ERROR"


class DivisionByZeroError(DecimalValueError):
    """Divisor of a DecimalValue division is zero."""

    code: str = "DIVISION_BY_ZERO"

    def __init__(self, dividend: str):
        self.dividend = dividend
        super().__init__(f"Division by zero (dividend={dividend})")


# Rule exceptions


class RuleError(CommissionKernelError):
    """Base exception for rule-related errors."""

    code: str = "RULE_ERROR"


class RuleValidationError(RuleError):
    """
    Rule failed structural pre-validation.

    Carries every issue found, not just the first one, so a run warning can
    list them all.
    """

    code: str = "RULE_VALIDATION_FAILED"

    def __init__(self, rule_id: str, issues: list[str]):
        self.rule_id = rule_id
        self.issues = issues
        super().__init__(
            f"Rule {rule_id} failed validation: {'; '.join(issues)}"
        )


class RuleNotFoundError(RuleError):
    """Rule with given id/version was not found."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, rule_id: str, version: int | None = None):
        self.rule_id = rule_id
        self.version = version
        suffix = f" v{version}" if version is not None else ""
        super().__init__(f"Rule not found: {rule_id}{suffix}")


class RuleImmutableError(RuleError):
    """A rule version referenced by a run cannot be edited in place."""

    code: str = "RULE_IMMUTABLE"

    def __init__(self, rule_id: str, version: int):
        self.rule_id = rule_id
        self.version = version
        super().__init__(
            f"Rule {rule_id} v{version} is pinned by a calculation run; "
            f"create a new version instead"
        )


class RuleChecksumMismatchError(RuleError):
    """Rule content no longer hashes to its recorded checksum."""

    code: str = "RULE_CHECKSUM_MISMATCH"

    def __init__(self, rule_id: str, expected: str, actual: str):
        self.rule_id = rule_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Rule {rule_id} checksum mismatch: expected {expected}, got {actual}"
        )


# Calculation exceptions


class CalculationError(CommissionKernelError):
    """Base exception for per rule x event calculation failures."""

    code: str = "CALCULATION_ERROR"


class NoApplicableTierError(CalculationError):
    """No tier bracket covers the base amount."""

    code: str = "NO_APPLICABLE_TIER"

    def __init__(self, rule_id: str, amount: str):
        self.rule_id = rule_id
        self.amount = amount
        super().__init__(f"No applicable tier in rule {rule_id} for amount {amount}")


class InvalidConditionError(CalculationError):
    """Condition value is malformed for its operator."""

    code: str = "INVALID_CONDITION"

    def __init__(self, field_name: str, operator: str, reason: str):
        self.field_name = field_name
        self.operator = operator
        self.reason = reason
        super().__init__(
            f"Invalid condition {field_name} {operator}: {reason}"
        )


class VatRateNotFoundError(CalculationError):
    """No VAT rate effective for the jurisdiction on the date."""

    code: str = "VAT_RATE_NOT_FOUND"

    def __init__(self, jurisdiction: str | None, on_date: str):
        self.jurisdiction = jurisdiction
        self.on_date = on_date
        super().__init__(
            f"No VAT rate for jurisdiction {jurisdiction!r} effective on {on_date}"
        )


class UnsupportedBasisError(CalculationError):
    """Calculation basis has no resolver."""

    code: str = "UNSUPPORTED_BASIS"

    def __init__(self, basis: str):
        self.basis = basis
        super().__init__(f"Unsupported calculation basis: {basis}")


# Credit exceptions


class CreditError(CommissionKernelError):
    """Base exception for credit ledger errors."""

    code: str = "CREDIT_ERROR"


class CreditOverdrawError(CreditError):
    """Applying an amount would take a credit balance below zero."""

    code: str = "CREDIT_OVERDRAW"

    def __init__(self, credit_id: str, balance: str, requested: str):
        self.credit_id = credit_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Credit {credit_id} has balance {balance}, cannot apply {requested}"
        )


# Run exceptions


class RunError(CommissionKernelError):
    """Base exception for calculation run errors."""

    code: str = "RUN_ERROR"


class RunNotFoundError(RunError):
    """Calculation run was not found."""

    code: str = "RUN_NOT_FOUND"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Calculation run not found: {run_id}")


class InvalidRunTransitionError(RunError):
    """The run state machine forbids the requested transition."""

    code: str = "INVALID_RUN_TRANSITION"

    def __init__(self, run_id: str, from_status: str, to_status: str):
        self.run_id = run_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Run {run_id} cannot move from {from_status} to {to_status}"
        )


class RunNotRecomputableError(RunError):
    """Only DRAFT and IN_PROGRESS runs may be (re)computed."""

    code: str = "RUN_NOT_RECOMPUTABLE"

    def __init__(self, run_id: str, status: str):
        self.run_id = run_id
        self.status = status
        super().__init__(f"Run {run_id} in status {status} cannot be recomputed")


class RunNotLockedError(RunError):
    """Replay requires a LOCKED run."""

    code: str = "RUN_NOT_LOCKED"

    def __init__(self, run_id: str, status: str):
        self.run_id = run_id
        self.status = status
        super().__init__(f"Run {run_id} is {status}; only LOCKED runs can be replayed")


class RunLockedError(RunError):
    """LOCKED runs are immutable."""

    code: str = "RUN_LOCKED"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run {run_id} is LOCKED and immutable")


# Persistence exceptions


class PersistenceError(CommissionKernelError):
    """The persistence collaborator failed to read or write."""

    code: str = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Persistence failure during {operation}: {reason}")


# Replay exceptions


class ReplayError(CommissionKernelError):
    """Base exception for replay verification errors."""

    code: str = "REPLAY_ERROR"


class PinnedInputsMissingError(ReplayError):
    """A locked run has no pinned rule/event inputs to replay from."""

    code: str = "PINNED_INPUTS_MISSING"

    def __init__(self, run_id: str):
        self.run_id = run_id
        super().__init__(f"Run {run_id} has no pinned inputs to replay")
