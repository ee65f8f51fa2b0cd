from datetime import date, datetime, timedelta, timezone

import pytest

from rentals.billing.service import list_due_balances, settle_obligation, sweep_due_balances
from rentals.errors import ChargeFailed, GatewayUnavailable, ObligationEncodingError
from rentals.orders.models import OrderStatus
from rentals.store import InMemoryObligationStore, OrderRecord, ScanItem
from tests.factories import make_record

# 2025-06-19 10:00 à New York
NOW = datetime(2025, 6, 19, 14, 0, tzinfo=timezone.utc)


def _sweep(store, **kwargs):
    return sweep_due_balances(now=NOW, store=store, worker_id="worker-a", **kwargs)


def test_due_obligation_is_invoiced_and_settled(gateway):
    store = InMemoryObligationStore([make_record()])

    summary = _sweep(store)

    assert (summary.checked, summary.due, summary.settled, summary.errors) == (1, 1, 1, 0)
    assert summary.today == date(2025, 6, 19)
    invoice = gateway.invoices["cs_test_1"]
    assert invoice["amount_due"] == 21000
    assert invoice["days_until_due"] == 2
    record = store.get("cus_1")
    assert record.obligation.settled
    assert record.obligation.invoice_id == invoice["id"]
    assert record.claimed_by is None

def test_rerun_does_not_invoice_twice(gateway):
    store = InMemoryObligationStore([make_record()])
    _sweep(store)

    summary = _sweep(store)

    assert (summary.due, summary.settled) == (0, 0)
    assert len(gateway.calls_named("create_balance_invoice")) == 1

def test_future_and_overdue_obligations(gateway):
    store = InMemoryObligationStore([
        make_record("cus_future", "cs_future", due_date=date(2025, 6, 20)),
        make_record("cus_overdue", "cs_overdue", due_date=date(2025, 6, 12)),
    ])

    summary = _sweep(store)

    assert summary.settled == 1
    assert not store.get("cus_future").obligation.settled
    assert store.get("cus_overdue").obligation.settled

def test_business_calendar_decides_due_day(gateway):
    store = InMemoryObligationStore([make_record()])
    # 2025-06-19 02:00 UTC = 2025-06-18 22:00 à New York: pas encore dû
    summary = sweep_due_balances(now=datetime(2025, 6, 19, 2, 0, tzinfo=timezone.utc), store=store, worker_id="w")
    assert summary.due == 0
    assert gateway.calls_named("create_balance_invoice") == []

def test_zero_balance_is_settled_without_invoice(gateway):
    store = InMemoryObligationStore([make_record(amount_cents=0)])

    summary = _sweep(store)

    assert (summary.skipped, summary.settled) == (1, 0)
    assert store.get("cus_1").obligation.settled
    assert gateway.calls_named("create_balance_invoice") == []

def test_non_approved_records_are_ignored(gateway):
    store = InMemoryObligationStore([
        make_record(status=OrderStatus.DECLINED),
        OrderRecord(customer_id="cus_pending", order_ref="cs_pending"),
    ])
    summary = _sweep(store)
    assert (summary.checked, summary.due) == (2, 0)

def test_invoice_failure_is_counted_and_sweep_continues(gateway):
    gateway.invoice_error_for["cus_bad"] = GatewayUnavailable("stripe down")
    store = InMemoryObligationStore([
        make_record("cus_bad", "cs_bad"),
        make_record("cus_good", "cs_good"),
    ])

    summary = _sweep(store)

    assert (summary.due, summary.settled, summary.errors) == (2, 1, 1)
    bad = store.get("cus_bad")
    assert not bad.obligation.settled
    # Réservation libérée: le prochain passage réessaie
    assert bad.claimed_by is None

def test_declined_invoice_is_counted(gateway):
    gateway.invoice_error_for["cus_1"] = ChargeFailed("declined", declined=True)
    summary = _sweep(InMemoryObligationStore([make_record()]))
    assert summary.errors == 1

def test_obligation_claimed_by_another_worker_is_skipped(gateway):
    held = make_record(claimed_by="worker-b", claimed_at=NOW - timedelta(seconds=30))
    store = InMemoryObligationStore([held])

    summary = _sweep(store)

    assert (summary.due, summary.skipped, summary.settled) == (1, 1, 0)
    assert gateway.calls_named("create_balance_invoice") == []

def test_expired_claim_is_taken_over(gateway):
    stale = make_record(claimed_by="worker-b", claimed_at=NOW - timedelta(hours=1))
    store = InMemoryObligationStore([stale])

    assert _sweep(store).settled == 1

def test_undecodable_record_counted_as_error(gateway):
    class _Store(InMemoryObligationStore):
        def scan(self, page_size=None):
            yield ScanItem(customer_id="cus_broken", error=ObligationEncodingError("bad blob"))
            yield from super().scan(page_size)

    summary = _sweep(_Store([make_record()]))

    assert (summary.checked, summary.errors, summary.settled) == (2, 1, 1)

def test_enumeration_failure_propagates(gateway):
    class _Store(InMemoryObligationStore):
        def scan(self, page_size=None):
            yield from super().scan(page_size)
            raise GatewayUnavailable("list customers failed")

    with pytest.raises(GatewayUnavailable):
        _sweep(_Store([make_record()]))
    assert len(gateway.invoices) == 1

def test_settle_obligation_reports_contention(gateway):
    store = InMemoryObligationStore([make_record(claimed_by="worker-b", claimed_at=NOW)])
    assert settle_obligation(store, store.get("cus_1"), "worker-a", NOW) == "contended"

def test_list_due_balances_is_read_only(gateway):
    store = InMemoryObligationStore([make_record(), make_record("cus_future", due_date=date(2025, 7, 1))])

    due = list_due_balances(now=NOW, store=store)

    assert [(d.customer_id, d.amount_cents, d.due_date) for d in due] == [("cus_1", 21000, date(2025, 6, 19))]
    assert gateway.calls == []
