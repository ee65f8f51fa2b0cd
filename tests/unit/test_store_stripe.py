from datetime import date, datetime, timezone

import pytest
import stripe

from rentals.errors import ObligationEncodingError, StaleRecord
from rentals.gateway import stripe_client
from rentals.orders.models import OrderStatus
from rentals.store import CustomerMetadataStore, OrderRecord
from rentals.store.codec import encode_order_blob
from rentals.store.stripe_store import K_BALANCE, K_SEND_AT, record_from_customer, record_to_metadata
from tests.factories import make_record


class FakeCustomers:
    """Clients Stripe en mémoire: update fusionne les métadonnées, "" supprime la clé."""

    def __init__(self, customers=None):
        self.customers = {c["id"]: c for c in customers or []}
        self.list_calls = []

    def retrieve_customer(self, customer_id):
        if customer_id not in self.customers:
            raise stripe.InvalidRequestError("No such customer", "id", code="resource_missing")
        return self.customers[customer_id]

    def update_customer(self, customer_id, *, metadata=None, description=None, idempotency_key=None):
        customer = self.customers.setdefault(customer_id, {"id": customer_id, "metadata": {}})
        merged = dict(customer.get("metadata") or {})
        for key, value in (metadata or {}).items():
            if value == "":
                merged.pop(key, None)
            else:
                merged[key] = value
        customer["metadata"] = merged
        if description is not None:
            customer["description"] = description
        return customer

    def list_customers(self, *, limit, starting_after=None):
        self.list_calls.append(starting_after)
        ids = sorted(self.customers)
        start = ids.index(starting_after) + 1 if starting_after else 0
        page = ids[start:start + limit]
        return [self.customers[i] for i in page], start + limit < len(ids)


@pytest.fixture
def customers(monkeypatch):
    fake = FakeCustomers()
    monkeypatch.setattr(stripe_client, "retrieve_customer", fake.retrieve_customer)
    monkeypatch.setattr(stripe_client, "update_customer", fake.update_customer)
    monkeypatch.setattr(stripe_client, "list_customers", fake.list_customers)
    return fake


def test_metadata_roundtrip_keeps_obligation(customers):
    store = CustomerMetadataStore()
    record = make_record(version=0, blob=encode_order_blob({"ref": "cs_test_1", "total": 30000}))
    record.obligation.due_at = datetime(2025, 6, 19, 14, 0, tzinfo=timezone.utc)
    store.put(record, expected_version=0)

    md = customers.customers["cus_1"]["metadata"]
    assert md[K_SEND_AT] == "2025-06-19"
    assert md[K_BALANCE] == "21000"
    assert md["rental_invoice_sent"] == "false"

    loaded = store.get("cus_1")
    assert loaded.version == 1
    assert loaded.status == OrderStatus.APPROVED
    assert loaded.obligation.amount_cents == 21000
    assert loaded.obligation.due_date == date(2025, 6, 19)
    assert loaded.obligation.due_at == datetime(2025, 6, 19, 14, 0, tzinfo=timezone.utc)
    assert loaded.snapshot() == {"ref": "cs_test_1", "total": 30000}

def test_clearing_obligation_removes_keys(customers):
    store = CustomerMetadataStore()
    store.put(make_record(version=0), expected_version=0)
    current = store.get("cus_1")
    store.put(current.model_copy(update={"status": OrderStatus.DECLINED, "obligation": None}), expected_version=current.version)
    md = customers.customers["cus_1"]["metadata"]
    assert K_SEND_AT not in md and K_BALANCE not in md
    assert store.get("cus_1").obligation is None

def test_stale_version_rejected(customers):
    store = CustomerMetadataStore()
    store.put(make_record(version=0), expected_version=0)
    with pytest.raises(StaleRecord):
        store.put(make_record(), expected_version=0)

def test_missing_or_deleted_customer_reads_as_none(customers):
    store = CustomerMetadataStore()
    assert store.get("cus_nope") is None
    customers.customers["cus_gone"] = {"id": "cus_gone", "deleted": True}
    assert store.get("cus_gone") is None

def test_customer_without_order_is_not_a_record():
    assert record_from_customer({"id": "cus_1", "metadata": {"vip": "yes"}}) is None

def test_legacy_record_derives_balance_from_blob():
    md = record_to_metadata(make_record())
    md.pop(K_BALANCE)
    customer = {
        "id": "cus_1",
        "metadata": md,
        "description": encode_order_blob({"ref": "cs_test_1", "total": 30000}),
    }
    assert record_from_customer(customer).obligation.amount_cents == 30000 - 9000

def test_unreadable_flags_raise():
    md = record_to_metadata(make_record())
    md[K_BALANCE] = "lots"
    with pytest.raises(ObligationEncodingError):
        record_from_customer({"id": "cus_1", "metadata": md})

def test_scan_paginates_and_reports_undecodable(customers):
    for i in range(5):
        customers.customers[f"cus_{i}"] = {"id": f"cus_{i}", "metadata": record_to_metadata(make_record(f"cus_{i}"))}
    customers.customers["cus_2"]["metadata"][K_SEND_AT] = "someday"

    items = list(CustomerMetadataStore().scan(page_size=2))

    assert customers.list_calls == [None, "cus_1", "cus_3"]
    assert [i.customer_id for i in items] == ["cus_0", "cus_1", "cus_2", "cus_3", "cus_4"]
    assert isinstance(items[2].error, ObligationEncodingError)
    assert all(i.record is not None for i in items if i.customer_id != "cus_2")
