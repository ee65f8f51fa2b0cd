from rentals.orders.models import OrderStatus


def _fake_event(event):
    async def _parse(request):
        return event
    return _parse


def test_webhook_invalid_signature(client, monkeypatch):
    async def _parse(request):
        raise ValueError("No signatures found matching the expected signature")

    monkeypatch.setattr("rentals.gateway.stripe_client.parse_event", _parse)
    r = client.post("/api/v1/payments/webhook", content=b"{}")
    assert r.status_code == 400

def test_webhook_ignores_other_events(client, monkeypatch):
    monkeypatch.setattr("rentals.gateway.stripe_client.parse_event", _fake_event({"type": "invoice.paid", "data": {}}))
    r = client.post("/api/v1/payments/webhook", content=b"{}")
    assert r.status_code == 200
    assert r.json() == {"status": "ignored"}

def test_webhook_records_order_once(client, gateway, store, outbox, monkeypatch):
    ref = gateway.add_deferred_order()
    event = {"type": "checkout.session.completed", "data": {"object": {"id": ref}}}
    monkeypatch.setattr("rentals.gateway.stripe_client.parse_event", _fake_event(event))

    r = client.post("/api/v1/payments/webhook", content=b"{}")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert store.get("cus_1").status == OrderStatus.PENDING_APPROVAL
    sent = len(outbox)
    assert sent > 0

    dup = client.post("/api/v1/payments/webhook", content=b"{}")
    assert dup.json()["status"] == "duplicate"
    assert len(outbox) == sent
