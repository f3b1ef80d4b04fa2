from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from ecosystem_auth.core.metrics import InMemoryRequestMetrics
from ecosystem_auth.core.rate_limiter import InMemoryRateLimiterService
from ecosystem_auth.middleware.public_rate_limit import PublicRateLimitMiddleware


def test_rate_limit_is_isolated_per_client() -> None:
    service = InMemoryRateLimiterService(limit=2, window_seconds=60)

    first_client_a = service.check(client_key="10.0.0.1", scope="/auth/login")
    second_client_a = service.check(client_key="10.0.0.1", scope="/auth/login")
    blocked_client_a = service.check(client_key="10.0.0.1", scope="/auth/login")

    client_b_still_allowed = service.check(client_key="10.0.0.2", scope="/auth/login")

    assert first_client_a.allowed is True
    assert second_client_a.allowed is True
    assert blocked_client_a.allowed is False
    assert blocked_client_a.retry_after_seconds >= 1
    assert client_b_still_allowed.allowed is True


def test_middleware_throttles_public_endpoints_only() -> None:
    limiter = InMemoryRateLimiterService(limit=1, window_seconds=60)
    app = FastAPI()
    app.add_middleware(PublicRateLimitMiddleware, rate_limiter=limiter)

    @app.post("/auth/login")
    def login():
        return {"ok": True}

    @app.get("/auth/me")
    def me():
        return {"ok": True}

    with TestClient(app) as client:
        ok = client.post("/auth/login")
        blocked = client.post("/auth/login")
        protected = [client.get("/auth/me").status_code for _ in range(3)]

    assert ok.status_code == 200
    assert blocked.status_code == 429
    assert blocked.json()["code"] == "RATE_LIMITED"
    assert "Retry-After" in blocked.headers
    assert protected == [200, 200, 200]


def _public_app(limiter: InMemoryRateLimiterService, **middleware_options) -> FastAPI:
    app = FastAPI()
    app.add_middleware(PublicRateLimitMiddleware, rate_limiter=limiter, **middleware_options)

    @app.post("/auth/login")
    def login():
        return {"ok": True}

    @app.post("/auth/register")
    def register():
        return {"ok": True}

    @app.post("/auth/register-company")
    def register_company():
        return {"ok": True}

    @app.get("/auth/invite/{token}")
    def invite(token: str):
        return {"token": token}

    return app


def test_spoofed_forwarded_for_does_not_reset_the_limit() -> None:
    limiter = InMemoryRateLimiterService(limit=1, window_seconds=60)

    with TestClient(_public_app(limiter)) as client:
        statuses = [
            client.post("/auth/login", headers={"X-Forwarded-For": f"1.2.3.{i}"}).status_code for i in range(20)
        ]

    assert statuses[0] == 200
    assert set(statuses[1:]) == {429}
    assert limiter.tracked_keys == 1


def test_forwarded_for_is_honoured_behind_trusted_proxy() -> None:
    limiter = InMemoryRateLimiterService(limit=1, window_seconds=60)
    app = _public_app(limiter, trusted_proxies=["testclient"])

    with TestClient(app) as client:
        first = client.post("/auth/login", headers={"X-Forwarded-For": "203.0.113.7"})
        second = client.post("/auth/login", headers={"X-Forwarded-For": "203.0.113.8"})
        repeat = client.post("/auth/login", headers={"X-Forwarded-For": "203.0.113.7"})

    assert [first.status_code, second.status_code, repeat.status_code] == [200, 200, 429]


def test_invitation_lookups_share_one_bucket() -> None:
    limiter = InMemoryRateLimiterService(limit=3, window_seconds=60)

    with TestClient(_public_app(limiter)) as client:
        statuses = [client.get(f"/auth/invite/token-{i}").status_code for i in range(10)]

    assert statuses[:3] == [200, 200, 200]
    assert set(statuses[3:]) == {429}
    assert limiter.tracked_keys == 1


def test_register_company_is_counted_separately_from_register() -> None:
    limiter = InMemoryRateLimiterService(limit=1, window_seconds=60)

    with TestClient(_public_app(limiter)) as client:
        register = client.post("/auth/register")
        signup = client.post("/auth/register-company")

    assert register.status_code == 200
    assert signup.status_code == 200
    assert limiter.tracked_keys == 2


def test_idle_buckets_are_dropped_after_the_window() -> None:
    now = [0.0]
    service = InMemoryRateLimiterService(limit=1, window_seconds=60, clock=lambda: now[0])

    for i in range(50):
        service.check(client_key=f"10.0.0.{i}", scope="/auth/login")
    assert service.tracked_keys == 50

    now[0] = 61.0
    decision = service.check(client_key="10.0.0.0", scope="/auth/login")

    assert decision.allowed is True
    assert service.tracked_keys == 1


def test_metrics_snapshot_per_company() -> None:
    metrics = InMemoryRequestMetrics()

    metrics.observe(endpoint="/auth/me", method="GET", status_code=200, duration_ms=10, company_id="1")
    metrics.observe(endpoint="/auth/me", method="GET", status_code=500, duration_ms=30, company_id="1")
    metrics.observe(endpoint="/auth/login", method="POST", status_code=200, duration_ms=20, company_id="2")
    metrics.observe(endpoint="/auth/login", method="POST", status_code=401, duration_ms=5)

    per_company = metrics.snapshot_per_company()
    per_endpoint = metrics.snapshot()

    assert per_company["1"]["total_requests"] == 2
    assert per_company["1"]["error_count"] == 1
    assert per_company["1"]["avg_duration_ms"] == 20.0
    assert per_company["2"]["total_requests"] == 1
    assert per_endpoint["POST /auth/login"]["total_requests"] == 2
    assert per_endpoint["POST /auth/login"]["error_count"] == 1


def test_internal_metrics_requires_super_admin(client, make_user, make_company, grant):
    owner = make_user(username="owner", password="owner-pass")
    grant(owner, make_company(), "business_owner")
    make_user(email="root@example.com", password="root-pass", is_super_admin=True)

    owner_token = client.post("/auth/login", json={"identifier": "owner", "password": "owner-pass"}).json()["token"]
    root_token = client.post(
        "/auth/login", json={"identifier": "root@example.com", "password": "root-pass"}
    ).json()["token"]

    denied = client.get("/internal/metrics", headers={"Authorization": f"Bearer {owner_token}"})
    allowed = client.get("/internal/metrics", headers={"Authorization": f"Bearer {root_token}"})

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert "endpoints" in allowed.json()
