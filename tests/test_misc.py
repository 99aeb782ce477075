import json

import pytest

from zta.errors import RateLimitError
from zta.storage import get_accounts, get_sites

PASSWORD = "correct-horse-battery"


# Platform

def test_root_and_health(client):
    assert client.get("/").json() == {"message": "Welcome to the Zero Trust Analytics API"}
    health = client.get("/api/health")
    assert health.status_code == 200
    assert health.json() == {"status": "ok", "checks": {"database": "ok", "storage": "ok"}}
    assert health.headers["x-content-type-options"] == "nosniff"
    assert health.headers["x-frame-options"] == "DENY"


def test_unknown_route_and_method(client):
    missing = client.get("/api/does-not-exist")
    assert missing.status_code == 404
    assert missing.json() == {"error": "Not found", "code": "NOT_FOUND"}
    wrong_method = client.put("/api/track", json={})
    assert wrong_method.status_code == 405
    assert wrong_method.json()["code"] == "METHOD_NOT_ALLOWED"


def test_register_is_rate_limited(client):
    statuses = [
        client.post("/api/auth/register", json={"email": f"user{i}@example.com", "password": PASSWORD}).status_code
        for i in range(6)
    ]
    assert statuses[:5] == [201] * 5
    assert statuses[5] == 429
    limited = client.post("/api/auth/register", json={"email": "late@example.com", "password": PASSWORD})
    assert limited.json()["code"] == "RATE_LIMITED"
    assert "retry-after" in limited.headers


# Account

def test_user_status_trial(client, auth):
    status = client.get("/api/user/status", headers=auth).json()
    assert status["email"] == "owner@example.com"
    assert status["status"] == "trial"
    assert status["canAccess"] is True
    assert status["daysLeft"] == 14


def test_sessions_list_and_revoke(client, auth):
    second = client.post("/api/auth/login", json={"email": "owner@example.com", "password": PASSWORD}).json()["token"]
    second_auth = {"Authorization": f"Bearer {second}"}

    sessions = client.get("/api/user/sessions", headers=auth).json()["sessions"]
    assert len(sessions) == 2
    assert sum(s["isCurrent"] for s in sessions) == 1
    assert sessions[0]["device"]["browser"] == "Chrome"

    assert client.delete("/api/user/sessions", headers=auth).status_code == 400
    assert client.delete("/api/user/sessions", params={"sessionId": "sess_missing"}, headers=auth).status_code == 404

    revoked = client.delete("/api/user/sessions", params={"all": "true"}, headers=auth)
    assert revoked.json() == {"success": True, "revoked": 1}
    assert client.get("/api/user/status", headers=second_auth).status_code == 401
    assert client.get("/api/user/status", headers=auth).status_code == 200


def test_account_export(client, auth, site):
    response = client.get("/api/user/export", headers=auth)
    assert response.status_code == 200
    assert "zta-account-export.json" in response.headers["content-disposition"]
    data = json.loads(response.text)
    assert data["user"]["email"] == "owner@example.com"
    assert "passwordHash" not in data["user"]
    assert [s["id"] for s in data["sites"]] == [site["id"]]


def test_activity_log(client, auth, site):
    activity = client.get("/api/activity", params={"limit": 10}, headers=auth).json()
    assert activity["total"] == 1
    assert activity["activities"][0]["message"] == 'Created site "example.com"'
    assert activity["hasMore"] is False


def test_delete_account(client, auth, site):
    client.post("/api/track", json={"siteId": site["id"]})
    assert client.request("DELETE", "/api/user", json={}, headers=auth).status_code == 400
    assert client.request("DELETE", "/api/user", json={"password": "wrong-password"}, headers=auth).status_code == 401

    deleted = client.request("DELETE", "/api/user", json={"password": PASSWORD}, headers=auth)
    assert deleted.status_code == 200
    assert client.get("/api/user/status", headers=auth).status_code == 401
    assert client.post("/api/track", json={"siteId": site["id"]}).status_code == 404
    login = client.post("/api/auth/login", json={"email": "owner@example.com", "password": PASSWORD})
    assert login.status_code == 401


# Heatmaps

def test_heatmap_clicks_and_scroll(client, auth, site):
    for x, y in ((10.2, 20.4), (10.4, 19.6), (80, 90)):
        response = client.post("/api/heatmaps", json={"siteId": site["id"], "type": "click", "data": {"path": "/?a=1", "x": x, "y": y}})
        assert response.status_code == 202
    for depth in (30, 80):
        client.post("/api/heatmaps", json={"siteId": site["id"], "type": "scroll", "data": {"path": "/", "depth": depth}})

    pages = client.get("/api/heatmaps", params={"siteId": site["id"]}, headers=auth).json()["pages"]
    assert pages == [{"path": "/", "totalClicks": 3, "scrollSamples": 2}]

    clicks = client.get("/api/heatmaps", params={"siteId": site["id"], "type": "clicks", "path": "/"}, headers=auth).json()
    assert clicks["totalClicks"] == 3
    assert clicks["clicks"][0] == {"x": 10, "y": 20, "count": 2}

    scroll = client.get("/api/heatmaps", params={"siteId": site["id"], "type": "scroll", "path": "/"}, headers=auth).json()
    assert scroll["totalSamples"] == 2
    assert scroll["averageDepth"] == 55.0
    assert scroll["reached"]["50"] == 50.0


def test_heatmap_validation(client, auth, site):
    assert client.post("/api/heatmaps", json={"siteId": site["id"], "type": "hover"}).status_code == 400
    assert client.post("/api/heatmaps", json={"siteId": "site_missing", "type": "click"}).status_code == 404
    out_of_range = client.post("/api/heatmaps", json={"siteId": site["id"], "type": "click", "data": {"x": 150, "y": 10}})
    assert out_of_range.status_code == 400
    assert client.get("/api/heatmaps", params={"siteId": site["id"], "type": "clicks"}, headers=auth).status_code == 400
    too_long = client.get(
        "/api/heatmaps", params={"siteId": site["id"], "startDate": "2024-01-01", "endDate": "2024-12-31"}, headers=auth
    )
    assert too_long.status_code == 400
    assert client.get("/api/heatmaps", params={"siteId": site["id"]}).status_code == 401


# Client errors

def test_error_reports_are_deduplicated(client, auth, site):
    report = {"site_id": site["id"], "type": "javascript", "url": "https://example.com/app?token=abc", "message": "x is undefined"}
    first = client.post("/api/errors", json=report)
    assert first.status_code == 201
    assert first.json()["deduplicated"] is False
    second = client.post("/api/errors", json=report)
    assert second.json()["deduplicated"] is True
    assert second.json()["id"] == first.json()["id"]

    listed = client.get("/api/errors", params={"siteId": site["id"]}, headers=auth).json()
    assert listed["total"] == 1
    error = listed["errors"][0]
    assert error["count"] == 2
    assert error["url"] == "/app"
    assert error["user_agent"] == "chrome/windows/desktop"

    assert client.get("/api/errors", params={"siteId": site["id"], "type": "network"}, headers=auth).json()["total"] == 0
    assert client.post("/api/errors", json={"site_id": site["id"]}).status_code == 400
    assert client.post("/api/errors", json={**report, "site_id": "site_missing"}).status_code == 404


# Import

def test_import_and_delete(client, auth, site):
    data = "date,screenPageViews,totalUsers,sessions\n20240110,120,40,50\n20240111,80,30,35\n"
    created = client.post("/api/import", json={"siteId": site["id"], "format": "csv", "data": data}, headers=auth)
    assert created.status_code == 201
    result = created.json()
    assert result["recordsStored"] == 2
    assert result["dateRange"] == {"start": "2024-01-10", "end": "2024-01-11", "days": 2}

    listed = client.get("/api/import", headers=auth).json()
    assert [i["id"] for i in listed["imports"]] == [result["importId"]]
    assert "ga4-api" in listed["supportedFormats"]

    stats = client.get(
        "/api/stats", params={"siteId": site["id"], "startDate": "2024-01-01", "endDate": "2024-01-31"}, headers=auth
    ).json()
    assert stats["imported"] == {"days": 2, "pageviews": 200, "visitors": 70, "sessions": 85}

    deleted = client.delete("/api/import", params={"importId": result["importId"]}, headers=auth)
    assert deleted.json()["deletedRecords"] == 2
    assert client.get("/api/import", headers=auth).json()["imports"] == []
    assert client.delete("/api/import", params={"importId": result["importId"]}, headers=auth).status_code == 404


def test_import_validation(client, auth, site):
    assert client.post("/api/import", json={"siteId": site["id"], "format": "csv"}, headers=auth).status_code == 400
    bad_format = client.post("/api/import", json={"siteId": site["id"], "format": "xml", "data": "x"}, headers=auth)
    assert bad_format.status_code == 400
    unparseable = client.post("/api/import", json={"siteId": site["id"], "format": "csv", "data": "date\n"}, headers=auth)
    assert unparseable.status_code == 400
    assert unparseable.json()["error"] == "Failed to parse data"


def test_rate_limit_error_shape():
    error = RateLimitError(retry_after=30)
    assert error.status_code == 429
    assert error.to_dict() == {"error": "Too many requests", "code": "RATE_LIMITED", "retryAfter": 30}


def test_activity_log_drops_evicted_entries(blob):
    accounts = get_accounts()
    first = accounts.log_activity("user_1", "auth.login")
    for _ in range(100):
        accounts.log_activity("user_1", "auth.logout")

    log = accounts.get_activity_log("user_1", limit=200)
    assert log["total"] == 100
    assert blob.get("activity-log", first["id"]) is None

    with pytest.raises(ValueError):
        accounts.log_activity("user_1", "auth.teleport")


def test_error_log_drops_evicted_entries(blob, monkeypatch):
    monkeypatch.setattr("zta.storage.sites.ERROR_INDEX_LIMIT", 2)
    sites = get_sites()
    sites.log_error("site_1", "javascript", "/a", {})
    sites.log_error("site_1", "javascript", "/b", {})
    sites.log_error("site_1", "javascript", "/c", {})

    assert [e["url"] for e in sites.list_errors("site_1")] == ["/c", "/b"]
    assert blob.get("errors", "site_1_javascript__a") is None
