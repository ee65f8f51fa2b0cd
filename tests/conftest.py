import os

os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")

from typing import Any, Dict, Generator, List

import pytest
from fastapi.testclient import TestClient

from rentals import config
from rentals.store import get_store, reset_stores
from tests.factories import FakeGateway

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)

@pytest.fixture(autouse=True)
def _test_config(monkeypatch):
    """Configuration déterministe: secrets de test, store mémoire, notifications coupées."""
    monkeypatch.setattr(config, "JWT_SECRET", "test-jwt-secret")
    monkeypatch.setattr(config, "TOKEN_TTL_HOURS", 24)
    monkeypatch.setattr(config, "OPERATOR_TOKEN", "op-secret")
    monkeypatch.setattr(config, "STRIPE_SECRET_KEY", "sk_test_fake")
    monkeypatch.setattr(config, "STRIPE_WEBHOOK_SECRET", "whsec_fake")
    monkeypatch.setattr(config, "CURRENCY", "usd")
    monkeypatch.setattr(config, "BUSINESS_NAME", "Rentals")
    monkeypatch.setattr(config, "BUSINESS_TIMEZONE", "America/New_York")
    monkeypatch.setattr(config, "DEPOSIT_FRACTION", 0.30)
    monkeypatch.setattr(config, "BALANCE_CHARGE_LOCAL_HOUR", 10)
    monkeypatch.setattr(config, "INVOICE_DUE_DAYS", 2)
    monkeypatch.setattr(config, "CLAIM_LEASE_SECONDS", 300)
    monkeypatch.setattr(config, "BALANCE_SWEEP_INTERVAL_SECONDS", 0)
    monkeypatch.setattr(config, "PSEUDO_STORE_BACKEND", "memory")
    monkeypatch.setattr(config, "PSEUDO_STORE_BLOB_MAX_CHARS", 350)
    monkeypatch.setattr(config, "SITE_URL", "https://rentals.test")
    monkeypatch.setattr(config, "RESEND_API_KEY", "")
    monkeypatch.setattr(config, "TWILIO_ACCOUNT_SID", "")
    reset_stores()
    yield
    reset_stores()

@pytest.fixture
def store():
    return get_store()

@pytest.fixture(scope="session")
def app():
    from rentals.app import app as fastapi_app
    return fastapi_app

@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

@pytest.fixture
def operator_headers() -> Dict[str, str]:
    return {"X-Operator-Token": "op-secret"}

@pytest.fixture
def gateway(monkeypatch) -> FakeGateway:
    return FakeGateway().install(monkeypatch)

@pytest.fixture
def outbox(monkeypatch) -> List[Dict[str, Any]]:
    """Capture les emails/SMS au lieu de les envoyer."""
    sent: List[Dict[str, Any]] = []

    def _email(to, subject, html_body):
        sent.append({"kind": "email", "to": to, "subject": subject, "body": html_body})
        return True

    def _sms(to, body):
        sent.append({"kind": "sms", "to": to, "body": body})
        return True

    monkeypatch.setattr("rentals.notifications.service.send_email", _email)
    monkeypatch.setattr("rentals.notifications.service.send_sms", _sms)
    return sent
