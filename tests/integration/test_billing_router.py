from datetime import date

from tests.factories import make_record


def test_sweep_closed_without_operator_token(client, monkeypatch):
    monkeypatch.setattr("rentals.config.OPERATOR_TOKEN", "")
    assert client.post("/api/v1/billing/sweep", headers={"X-Operator-Token": "x"}).status_code == 403

def test_sweep_rejects_bad_token(client):
    assert client.post("/api/v1/billing/sweep").status_code == 401
    assert client.post("/api/v1/billing/sweep", headers={"X-Operator-Token": "nope"}).status_code == 401

def test_sweep_invoices_due_balances(client, gateway, store, operator_headers):
    store.put(make_record(version=0, due_date=date(2000, 1, 1)), expected_version=0)

    r = client.post("/api/v1/billing/sweep", headers=operator_headers)

    assert r.status_code == 200
    body = r.json()
    assert (body["checked"], body["due"], body["settled"], body["errors"]) == (1, 1, 1, 0)
    assert store.get("cus_1").obligation.settled

def test_due_lists_without_invoicing(client, gateway, store, operator_headers):
    store.put(make_record(version=0, due_date=date(2000, 1, 1)), expected_version=0)

    r = client.get("/api/v1/billing/due", headers={"Authorization": "Bearer op-secret"})

    assert r.status_code == 200
    assert r.json()["count"] == 1
    assert r.json()["due"][0]["amount_cents"] == 21000
    assert gateway.invoices == {}

def test_sweep_unexpected_error_returns_500(client, operator_headers, monkeypatch):
    def boom():
        raise RuntimeError("unexpected")

    monkeypatch.setattr("rentals.billing.service.sweep_due_balances", boom)
    assert client.post("/api/v1/billing/sweep", headers=operator_headers).status_code == 500
