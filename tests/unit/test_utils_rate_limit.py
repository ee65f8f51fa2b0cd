# Import section
import sys
import types

from fastapi import FastAPI, Depends, Request
from fastapi.testclient import TestClient

from rentals.utils.rate_limit import optional_rate_limit, rate_limit_health_info


def _make_app(times=2, seconds=60):
    app = FastAPI()

    @app.get("/approve", dependencies=[Depends(optional_rate_limit(times, seconds))])
    def approve():
        return {"ok": True}

    @app.get("/decline", dependencies=[Depends(optional_rate_limit(times, seconds))])
    def decline():
        return {"ok": True}

    @app.get("/rl_info")
    def rl_info(request: Request):
        return rate_limit_health_info(request)

    return app


def test_rate_limit_fallback_blocks_after_limit(monkeypatch):
    app = _make_app(times=2, seconds=60)
    client = TestClient(app)
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")

    r1 = client.get("/approve?token=a")
    r2 = client.get("/approve?token=b")
    r3 = client.get("/approve?token=c")

    assert r1.status_code == 200
    assert r2.status_code == 200
    assert r3.status_code == 429


def test_rate_limit_is_per_path(monkeypatch):
    app = _make_app(times=2, seconds=60)
    client = TestClient(app)
    monkeypatch.setenv("LOCAL_RATE_LIMIT_FALLBACK", "1")

    assert client.get("/approve").status_code == 200
    assert client.get("/approve").status_code == 200
    assert client.get("/approve").status_code == 429

    # decline: compteur indépendant
    assert client.get("/decline").status_code == 200
    assert client.get("/decline").status_code == 200
    assert client.get("/decline").status_code == 429


def test_rate_limit_disabled_flag_bypasses_limit(monkeypatch):
    app = _make_app(times=2, seconds=60)
    monkeypatch.delenv("LOCAL_RATE_LIMIT_FALLBACK", raising=False)
    client = TestClient(app)
    app.state.rate_limit_enabled = False

    assert client.get("/approve").status_code == 200
    assert client.get("/approve").status_code == 200
    assert client.get("/approve").status_code == 200


def test_rate_limit_health_info(monkeypatch):
    app = _make_app()
    client = TestClient(app)

    app.state.rate_limit_enabled = True
    dummy = types.ModuleType("fastapi_limiter")

    class FastAPILimiter:
        redis = None

    dummy.FastAPILimiter = FastAPILimiter
    monkeypatch.setitem(sys.modules, "fastapi_limiter", dummy)

    info = client.get("/rl_info").json()
    assert info["enabled"] is True
    assert info["ready"] is False
    assert info["backend"] is None

    # Redis prêt
    FastAPILimiter.redis = object()
    info2 = client.get("/rl_info").json()
    assert info2["ready"] is True
    assert info2["backend"] == "redis"
