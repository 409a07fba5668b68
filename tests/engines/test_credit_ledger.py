"""
Tests for FIFO credit allocation and the ledger applier.

Verifies:
- Credits are consumed oldest first, ties broken by id
- A balance never goes below zero and never increases
- total_applied + remaining_due == amount_due
- The applier writes balances back and logs each application
- Consuming or releasing several credits is all-or-nothing
"""

from datetime import date

import pytest

from commission_kernel.domain.records import CreditApplication
from commission_kernel.exceptions import CreditError, CreditOverdrawError, PersistenceError
from commission_kernel.services.store import InMemoryCommissionStore
from commission_engines.credits import LedgerCreditApplier, allocate_fifo
from tests.conftest import D, make_credit

KEY = ("Investor A", "Fund I")


class TestAllocateFifo:
    def test_partial_cover(self):
        allocation = allocate_fifo(credits=[make_credit("C1", "500")], amount_due=D("800"))
        assert allocation.total_applied == D("500")
        assert allocation.remaining_due == D("300")
        assert allocation.applications[0].remaining_balance == D("0")

    def test_full_cover_leaves_balance(self):
        allocation = allocate_fifo(credits=[make_credit("C1", "500")], amount_due=D("200"))
        assert allocation.total_applied == D("200")
        assert allocation.remaining_due == D("0")
        assert allocation.applications[0].remaining_balance == D("300")

    def test_oldest_first(self):
        credits = [
            make_credit("C-NEW", "100", date(2024, 2, 1)),
            make_credit("C-OLD", "100", date(2024, 1, 1)),
        ]
        allocation = allocate_fifo(credits=credits, amount_due=D("150"))
        assert [a.credit_id for a in allocation.applications] == ["C-OLD", "C-NEW"]
        assert [a.amount_applied for a in allocation.applications] == [D("100"), D("50")]

    def test_same_day_ordered_by_id(self):
        credits = [make_credit("B", "10"), make_credit("A", "10")]
        allocation = allocate_fifo(credits=credits, amount_due=D("5"))
        assert allocation.applications[0].credit_id == "A"

    def test_stops_when_covered(self):
        credits = [make_credit("C1", "100"), make_credit("C2", "100", date(2024, 2, 1))]
        allocation = allocate_fifo(credits=credits, amount_due=D("100"))
        assert len(allocation.applications) == 1

    def test_zero_due(self):
        allocation = allocate_fifo(credits=[make_credit()], amount_due=D("0"))
        assert allocation.applications == ()
        assert allocation.total_applied == D("0")

    def test_exhausted_credits_skipped(self):
        allocation = allocate_fifo(
            credits=[make_credit("C0", "0"), make_credit("C1", "10")], amount_due=D("5")
        )
        assert [a.credit_id for a in allocation.applications] == ["C1"]

    def test_conservation(self):
        credits = [make_credit(f"C{i}", "33.333333333") for i in range(4)]
        allocation = allocate_fifo(credits=credits, amount_due=D("100"))
        assert allocation.total_applied + allocation.remaining_due == D("100")


class TestLedgerCreditApplier:
    def setup_method(self):
        self.store = InMemoryCommissionStore()
        self.store.add_credit(make_credit("C1", "500"))
        self.applier = LedgerCreditApplier(self.store)

    def test_balance_written_back(self):
        allocation = self.applier.apply(KEY, D("800"))
        assert allocation.total_applied == D("500")
        assert self.store.get_credit("C1").remaining_balance == D("0")

    def test_exhausted_credit_not_reused(self):
        self.applier.apply(KEY, D("800"))
        again = self.applier.apply(KEY, D("800"))
        assert again.total_applied == D("0")
        assert again.remaining_due == D("800")

    def test_other_investor_untouched(self):
        allocation = self.applier.apply(("Investor B", "Fund I"), D("100"))
        assert allocation.applications == ()
        assert self.store.get_credit("C1").remaining_balance == D("500")

    def test_logs_each_application(self, captured_logs):
        self.applier.apply(KEY, D("100"))
        records = [r for r in captured_logs() if r["message"] == "credit_applied"]
        assert len(records) == 1
        assert records[0]["credit_id"] == "C1"
        assert records[0]["amount_applied"] == "100"
        assert records[0]["remaining_balance"] == "400"


class TestStoreBalanceGuards:
    def setup_method(self):
        self.store = InMemoryCommissionStore()
        self.store.add_credit(make_credit("C1", "500"))

    def test_balance_cannot_increase(self):
        with pytest.raises(CreditError):
            self.store.update_credit_balance("C1", D("600"))

    def test_balance_cannot_go_negative(self):
        with pytest.raises(CreditOverdrawError) as exc_info:
            self.store.update_credit_balance("C1", D("-1"))
        assert exc_info.value.code == "CREDIT_OVERDRAW"

    def test_exhausted_credits_not_listed(self):
        self.store.update_credit_balance("C1", D("0"))
        assert self.store.list_credits(*KEY) == []


def applied(credit_id: str, amount: str) -> CreditApplication:
    return CreditApplication(
        credit_id=credit_id, amount_applied=D(amount), remaining_balance=D("0")
    )


class FailingConsumeStore(InMemoryCommissionStore):
    def consume_credits(self, applications):
        raise PersistenceError("consume_credits", "connection reset")


class TestAllOrNothingCreditWrites:
    def setup_method(self):
        self.store = InMemoryCommissionStore()
        self.store.add_credit(make_credit("C1", "100"))
        self.store.add_credit(make_credit("C2", "50", date(2024, 2, 1)))

    def balances(self):
        return [self.store.get_credit(c).remaining_balance for c in ("C1", "C2")]

    def test_consume_overdraw_on_second_credit_keeps_first(self):
        with pytest.raises(CreditOverdrawError):
            self.store.consume_credits([applied("C1", "100"), applied("C2", "80")])
        assert self.balances() == [D("100"), D("50")]

    def test_consume_unknown_credit_keeps_others(self):
        with pytest.raises(CreditError):
            self.store.consume_credits([applied("C1", "10"), applied("C-MISSING", "1")])
        assert self.balances() == [D("100"), D("50")]

    def test_consume_same_credit_twice_is_cumulative(self):
        with pytest.raises(CreditOverdrawError):
            self.store.consume_credits([applied("C1", "60"), applied("C1", "60")])
        assert self.store.get_credit("C1").remaining_balance == D("100")

    def test_release_negative_amount_keeps_others(self):
        with pytest.raises(CreditError):
            self.store.release_credits([applied("C1", "10"), applied("C2", "-5")])
        assert self.balances() == [D("100"), D("50")]

    def test_release_returns_amounts(self):
        self.store.consume_credits([applied("C1", "100"), applied("C2", "20")])
        self.store.release_credits([applied("C1", "100"), applied("C2", "20")])
        assert self.balances() == [D("100"), D("50")]

    def test_applier_failure_consumes_nothing(self, captured_logs):
        store = FailingConsumeStore()
        store.add_credit(make_credit("C1", "100"))
        store.add_credit(make_credit("C2", "50", date(2024, 2, 1)))

        with pytest.raises(PersistenceError):
            LedgerCreditApplier(store).apply(KEY, D("120"))

        assert store.get_credit("C1").remaining_balance == D("100")
        assert store.get_credit("C2").remaining_balance == D("50")
        assert not [r for r in captured_logs() if r["message"] == "credit_applied"]

    def test_applier_release_logs_total(self, captured_logs):
        applier = LedgerCreditApplier(self.store)
        allocation = applier.apply(KEY, D("120"))

        released = applier.release(allocation.applications)

        assert released == D("120")
        assert self.balances() == [D("100"), D("50")]
        record = next(r for r in captured_logs() if r["message"] == "credits_released")
        assert record["credit_ids"] == ["C1", "C2"]
        assert D(record["amount_released"]) == D("120")

    def test_applier_release_nothing(self):
        assert LedgerCreditApplier(self.store).release([]) == D("0")
