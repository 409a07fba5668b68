"""
Concurrency tests for credit consumption.

Verifies:
- Parallel apply() calls on one investor/fund never overdraw a credit
- The total applied equals the credit pool when demand exceeds it
- Runs over many investors give the same totals at any worker count
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from threading import Barrier

import pytest

from commission_kernel.domain.runs import CalculationRun
from commission_kernel.domain.values import DecimalValue
from commission_kernel.services.store import InMemoryCommissionStore
from commission_engines.credits import LedgerCreditApplier
from commission_batch.services.executor import RunExecutor
from tests.conftest import D, TEST_ACTOR_ID, VAT_TABLE, make_credit, make_event, make_rule

pytestmark = pytest.mark.slow

KEY = ("Investor A", "Fund I")
WORKERS = 16


class TestParallelApply:
    def test_no_overdraw_under_contention(self):
        store = InMemoryCommissionStore()
        store.add_credit(make_credit("C1", "1000", date(2024, 1, 1)))
        store.add_credit(make_credit("C2", "500", date(2024, 2, 1)))
        applier = LedgerCreditApplier(store)
        barrier = Barrier(WORKERS)

        def apply_once(_):
            barrier.wait()
            return applier.apply(KEY, D("130"))

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            allocations = list(pool.map(apply_once, range(WORKERS)))

        applied = DecimalValue.sum(a.total_applied for a in allocations)
        assert applied == D("1500")
        assert store.get_credit("C1").remaining_balance == D("0")
        assert store.get_credit("C2").remaining_balance == D("0")
        for allocation in allocations:
            assert allocation.total_applied + allocation.remaining_due == D("130")

    def test_independent_keys_do_not_interfere(self):
        store = InMemoryCommissionStore()
        investors = [f"Investor {i}" for i in range(WORKERS)]
        for name in investors:
            store.add_credit(make_credit(f"C-{name}", "100", investor=name))
        applier = LedgerCreditApplier(store)

        with ThreadPoolExecutor(max_workers=WORKERS) as pool:
            allocations = list(
                pool.map(lambda name: applier.apply((name, "Fund I"), D("60")), investors)
            )

        assert all(a.total_applied == D("60") for a in allocations)
        assert all(
            store.get_credit(f"C-{name}").remaining_balance == D("40") for name in investors
        )


def _many_investor_store() -> InMemoryCommissionStore:
    store = InMemoryCommissionStore()
    store.save_run(CalculationRun(id="RUN-C", name="contention"))
    events = []
    for i in range(40):
        investor = f"Investor {i % 8}"
        events.append(
            make_event(f"E{i:03d}", str(10000 + i * 1000), date(2024, 3, 1 + i % 28), investor=investor)
        )
    store.add_events(events, run_id="RUN-C")
    for n in range(8):
        store.add_credit(make_credit(f"C{n}", "250", investor=f"Investor {n}"))
    store.save_rule(make_rule())
    return store


class TestParallelRuns:
    @pytest.mark.parametrize("max_workers,batch_size", [(1, 40), (4, 3), (8, 1)])
    def test_totals_independent_of_scheduling(self, clock, max_workers, batch_size):
        baseline = RunExecutor(
            _many_investor_store(), VAT_TABLE, clock=clock, actor_id=TEST_ACTOR_ID,
            max_workers=1, batch_size=40, history_in_background=False,
        ).execute_run("RUN-C")

        store = _many_investor_store()
        result = RunExecutor(
            store, VAT_TABLE, clock=clock, actor_id=TEST_ACTOR_ID,
            max_workers=max_workers, batch_size=batch_size, history_in_background=False,
        ).execute_run("RUN-C")

        assert result.totals == baseline.totals
        assert [r.to_dict() for r in result.results] == [r.to_dict() for r in baseline.results]
        assert result.totals.total_credits_applied == D("2000")
        for n in range(8):
            assert store.get_credit(f"C{n}").remaining_balance == D("0")
