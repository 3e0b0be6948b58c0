from datetime import timedelta
from decimal import Decimal

import pytest
from fastapi import Request
from sqlalchemy import update

from traffic_exchange.api import deps
from traffic_exchange.main import app
from traffic_exchange.models.db import ViewSession
from traffic_exchange.services.fraud_checks import RequestMeta
from traffic_exchange.utils.time import utc_now


@pytest.fixture()
def viewer_ip(unique_ip):
    """Pin the client IP seen by the fraud checks; TestClient always reports 'testclient'."""
    ip = unique_ip()

    def _meta(request: Request) -> RequestMeta:
        return RequestMeta(ip=ip, user_agent=request.headers.get("User-Agent", ""), headers=dict(request.headers))

    app.dependency_overrides[deps.get_request_meta] = _meta
    yield ip
    app.dependency_overrides.pop(deps.get_request_meta, None)


def _start(client, headers, site_id):
    r = client.post("/api/v1/views/start", json={"site_id": site_id}, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def _backdate(db_session, view_session_id, seconds=60):
    db_session.execute(
        update(ViewSession)
        .where(ViewSession.id == view_session_id)
        .values(started_at=utc_now() - timedelta(seconds=seconds))
    )
    db_session.commit()


def test_requires_api_key(client, site_factory):
    site = site_factory()
    r = client.post("/api/v1/views/start", json={"site_id": site.id})
    assert r.status_code in (401, 403)
    r = client.post("/api/v1/views/start", json={"site_id": site.id}, headers={"Authorization": "Bearer tx_nope"})
    assert r.status_code == 401
    assert r.json()["code"] == "http_401"


def test_start_then_immediate_complete_is_rejected_for_good(client, auth_header, site_factory, viewer_ip):
    headers, _ = auth_header
    site = site_factory()
    started = _start(client, headers, site.id)
    assert started["session_token"]

    r = client.post("/api/v1/views/complete", json={"session_token": started["session_token"]}, headers=headers)
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "duration_too_short"
    assert "request_id" in body

    r = client.post("/api/v1/views/complete", json={"session_token": started["session_token"]}, headers=headers)
    assert r.status_code == 409
    assert r.json()["code"] == "session_already_completed"


def test_complete_after_dwell_credits_and_reports_daily_total(client, db_session, auth_header, site_factory, viewer_ip):
    headers, user = auth_header
    site = site_factory(points_per_view=Decimal("3"))
    started = _start(client, headers, site.id)
    _backdate(db_session, started["view_session_id"])

    r = client.post(
        "/api/v1/views/complete",
        json={"session_token": started["session_token"], "site_id": site.id},
        headers=headers,
    )
    assert r.status_code == 200, r.text
    assert Decimal(r.json()["points_awarded"]) == Decimal("3")

    r = client.get("/api/v1/views/daily-total", headers=headers)
    assert r.status_code == 200
    assert Decimal(r.json()["points"]) == Decimal("3")
    assert Decimal(r.json()["cap"]) == Decimal("100000")

    me = client.get("/api/v1/users/me", headers=headers).json()
    assert Decimal(me["points_balance"]) == Decimal("3")

    history = client.get("/api/v1/users/me/points", headers=headers).json()
    assert [entry["kind"] for entry in history] == ["view_earn"]


def test_site_mismatch_is_not_found(client, db_session, auth_header, site_factory, viewer_ip):
    headers, _ = auth_header
    site, other = site_factory(), site_factory()
    started = _start(client, headers, site.id)
    _backdate(db_session, started["view_session_id"])

    r = client.post(
        "/api/v1/views/complete",
        json={"session_token": started["session_token"], "site_id": other.id},
        headers=headers,
    )
    assert r.status_code == 404
    assert r.json()["code"] == "invalid_session"


def test_forwarded_request_is_forbidden(client, db_session, auth_header, site_factory, unique_ip):
    headers, _ = auth_header
    site = site_factory()
    started = _start(client, headers, site.id)
    _backdate(db_session, started["view_session_id"])

    r = client.post(
        "/api/v1/views/complete",
        json={"session_token": started["session_token"]},
        headers={**headers, "X-Forwarded-For": unique_ip()},
    )
    assert r.status_code == 403
    assert r.json()["code"] == "proxy_detected"
    assert client.get("/api/v1/users/me", headers=headers).json()["fraud_flag_count"] == 1


def test_start_unknown_site_is_not_found(client, auth_header):
    headers, _ = auth_header
    r = client.post("/api/v1/views/start", json={"site_id": 987654321}, headers=headers)
    assert r.status_code == 404
    assert r.json()["code"] == "site_not_found"


def test_request_id_is_echoed(client):
    r = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert r.status_code == 200
    assert r.headers["X-Request-ID"] == "req-123"
    assert r.json()["status"] == "healthy"


def test_detailed_health_reports_database(client):
    r = client.get("/health/detailed")
    assert r.status_code == 200
    assert r.json()["checks"]["database"] == "healthy"


def test_unknown_session_token_returns_error_body(client, auth_header, viewer_ip):
    headers, _ = auth_header
    r = client.post("/api/v1/views/complete", json={"session_token": "nope"}, headers=headers)
    assert r.status_code == 404
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "invalid_session"
    assert body["message"]
