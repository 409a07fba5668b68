"""
Credit ledger -- FIFO consumption of investor credits against an amount due.

Two layers:

``allocate_fifo`` (pure)
    Given a ledger state and an amount due, returns which credits are
    consumed and by how much.  Credits are consumed in ``(date_posted, id)``
    order; each gives the lesser of its balance and what is still due.
    Identical inputs always produce identical allocations.

``LedgerCreditApplier`` (stateful)
    Reads credits from the store, allocates, and consumes the allocation in
    one all-or-nothing store call, holding a per-``(investor_name,
    fund_name)`` lock for the whole read-allocate-write sequence.  This is
    the one place in a run that needs mutual exclusion.  ``release`` hands
    applied amounts back when a run is recomputed.

Invariants enforced:
    - A credit balance never goes below zero.
    - ``total_applied + remaining_due == amount_due``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Sequence

from commission_kernel.domain.records import Credit, CreditApplication
from commission_kernel.domain.values import DecimalValue
from commission_kernel.logging_config import get_logger
from commission_kernel.services.store import CommissionStore
from commission_engines.tracer import traced_engine

logger = get_logger("engines.credits")


@dataclass(frozen=True)
class CreditAllocation:
    amount_due: DecimalValue
    applications: tuple[CreditApplication, ...]
    total_applied: DecimalValue
    remaining_due: DecimalValue

    @classmethod
    def empty(cls, amount_due: DecimalValue) -> CreditAllocation:
        return cls(
            amount_due=amount_due,
            applications=(),
            total_applied=DecimalValue.zero(),
            remaining_due=amount_due,
        )


@traced_engine("credits", "1.0", fingerprint_fields=("amount_due",))
def allocate_fifo(
    *,
    credits: Sequence[Credit],
    amount_due: DecimalValue,
) -> CreditAllocation:
    """FIFO allocation of ``credits`` against ``amount_due``; pure."""
    if not amount_due.is_positive:
        return CreditAllocation.empty(amount_due)

    remaining = amount_due
    applications: list[CreditApplication] = []
    for credit in sorted(credits, key=lambda c: c.fifo_key):
        if remaining.is_zero:
            break
        if not credit.remaining_balance.is_positive:
            continue
        applied = credit.remaining_balance.min(remaining)
        remaining = remaining - applied
        applications.append(
            CreditApplication(
                credit_id=credit.id,
                amount_applied=applied,
                remaining_balance=credit.remaining_balance - applied,
            )
        )

    return CreditAllocation(
        amount_due=amount_due,
        applications=tuple(applications),
        total_applied=amount_due - remaining,
        remaining_due=remaining,
    )


class LedgerCreditApplier:
    """
    Applies credits against payables through a CommissionStore.

    Contract:
        ``apply()`` is atomic per investor/fund key with respect to other
        ``apply()`` calls on the same instance.
    """

    def __init__(self, store: CommissionStore):
        self._store = store
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, key: tuple[str, str]) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def apply(self, investor_key: tuple[str, str], amount_due: DecimalValue) -> CreditAllocation:
        """Allocate FIFO and write every consumed balance in one store call.

        If the write fails nothing has been consumed and the error propagates.
        """
        investor_name, fund_name = investor_key
        if not amount_due.is_positive:
            return CreditAllocation.empty(amount_due)

        with self._lock_for(investor_key):
            credits = self._store.list_credits(investor_name, fund_name)
            allocation = allocate_fifo(credits=credits, amount_due=amount_due)
            if allocation.applications:
                self._store.consume_credits(allocation.applications)

        for application in allocation.applications:
            logger.info(
                "credit_applied",
                extra={
                    "credit_id": application.credit_id,
                    "investor_name": investor_name,
                    "fund_name": fund_name,
                    "amount_applied": str(application.amount_applied),
                    "remaining_balance": str(application.remaining_balance),
                },
            )
        return allocation

    def release(self, applications: Sequence[CreditApplication]) -> DecimalValue:
        """Return previously applied amounts to their credits; all or none.

        Takes no key lock; ``consume_credits`` validates each decrement
        against the balance current at write time.
        """
        if not applications:
            return DecimalValue.zero()

        self._store.release_credits(applications)

        released = DecimalValue.sum(a.amount_applied for a in applications)
        logger.info(
            "credits_released",
            extra={
                "credit_ids": [a.credit_id for a in applications],
                "amount_released": str(released),
            },
        )
        return released
