def test_health_root(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"ok": True}

def test_health_gateway_reports_configuration_without_secrets(client, monkeypatch):
    monkeypatch.setattr("rentals.health.service._dns_check", lambda host: (True, None))

    r = client.get("/health/gateway")

    assert r.status_code == 200
    info = r.json()
    assert info["stripe_configured"] is True
    assert info["operator_routes_enabled"] is True
    assert info["store_backend"] == "memory"
    assert info["dns_ok"] is True
    assert info["rate_limit"]["enabled"] is False
    assert "sk_test_fake" not in r.text
