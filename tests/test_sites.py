from datetime import timedelta

from zta.storage import get_accounts
from zta.utils import utcnow


def test_create_site_returns_embed_code(client, auth):
    response = client.post("/api/sites/create", json={"domain": "https://Blog.Example.com/"}, headers=auth)
    assert response.status_code == 201
    data = response.json()
    assert data["site"]["domain"] == "blog.example.com"
    assert data["site"]["id"].startswith("site_")
    assert f'data-site-id="{data["site"]["id"]}"' in data["embedCode"]


def test_create_site_validation(client, auth, site):
    assert client.post("/api/sites/create", json={}, headers=auth).status_code == 400
    invalid = client.post("/api/sites/create", json={"domain": "not a domain"}, headers=auth)
    assert invalid.status_code == 400
    assert invalid.json()["error"] == "Invalid domain"
    duplicate = client.post("/api/sites/create", json={"domain": "example.com"}, headers=auth)
    assert duplicate.status_code == 409


def test_plan_site_limit(client, register):
    headers = register(email="solo@example.com", plan="solo")
    assert client.post("/api/sites/create", json={"domain": "one.example.com"}, headers=headers).status_code == 201
    second = client.post("/api/sites/create", json={"domain": "two.example.com"}, headers=headers)
    assert second.status_code == 403
    assert "limit" in second.json()["error"]


def test_expired_trial_cannot_add_sites(client, auth):
    accounts = get_accounts()
    accounts.update_user("owner@example.com", {"trialEndsAt": (utcnow() - timedelta(days=1)).isoformat()})
    response = client.post("/api/sites/create", json={"domain": "example.com"}, headers=auth)
    assert response.status_code == 403


def test_list_update_and_delete_site(client, auth, site):
    listed = client.get("/api/sites/list", headers=auth).json()["sites"]
    assert [s["id"] for s in listed] == [site["id"]]
    assert listed[0]["isOwner"] is True

    updated = client.post("/api/sites/update", json={"siteId": site["id"], "nickname": "Marketing"}, headers=auth)
    assert updated.status_code == 200
    assert updated.json()["site"]["nickname"] == "Marketing"

    client.post("/api/track", json={"siteId": site["id"], "path": "/"})
    deleted = client.delete("/api/sites/delete", params={"siteId": site["id"]}, headers=auth)
    assert deleted.status_code == 200
    assert deleted.json()["deletedEvents"] == 1
    assert client.get("/api/sites/list", headers=auth).json()["sites"] == []
    assert client.delete("/api/sites/delete", params={"siteId": site["id"]}, headers=auth).status_code == 404


def test_other_users_cannot_touch_site(client, register, site):
    intruder = register(email="intruder@example.com")
    assert client.post("/api/sites/update", json={"siteId": site["id"], "nickname": "x"}, headers=intruder).status_code == 403
    assert client.delete("/api/sites/delete", params={"siteId": site["id"]}, headers=intruder).status_code == 403
    assert client.get("/api/stats", params={"siteId": site["id"]}, headers=intruder).status_code == 403


def test_share_links(client, auth, site):
    created = client.post(
        "/api/sites/share",
        json={"siteId": site["id"], "expiresIn": "30d", "allowedPeriods": ["7d", "30d"]},
        headers=auth,
    )
    assert created.status_code == 201
    share = created.json()["share"]
    assert share["hasPassword"] is False
    assert share["expiresAt"] is not None

    shares = client.get("/api/sites/share", params={"siteId": site["id"]}, headers=auth).json()["shares"]
    assert [s["token"] for s in shares] == [share["token"]]

    public = client.get("/api/public-stats", params={"token": share["token"]})
    assert public.status_code == 200
    data = public.json()
    assert data["site"]["domain"] == "example.com"
    assert data["period"] == "7d"
    assert "userId" not in data["site"]
    assert data["stats"]["summary"]["pageviews"] == 0

    denied = client.get("/api/public-stats", params={"token": share["token"], "period": "90d"})
    assert denied.status_code == 403

    revoked = client.delete("/api/sites/share", params={"token": share["token"]}, headers=auth)
    assert revoked.status_code == 200
    assert client.get("/api/public-stats", params={"token": share["token"]}).status_code == 404


def test_password_protected_share(client, auth, site):
    share = client.post(
        "/api/sites/share",
        json={"siteId": site["id"], "password": "open-sesame"},
        headers=auth,
    ).json()["share"]
    assert share["hasPassword"] is True
    assert "password" not in share

    url = "/api/public-stats"
    assert client.get(url, params={"token": share["token"]}).status_code == 401
    wrong = client.get(url, params={"token": share["token"]}, headers={"X-Share-Password": "nope"})
    assert wrong.status_code == 401
    assert wrong.json()["error"] == "Invalid password"
    ok = client.get(url, params={"token": share["token"]}, headers={"X-Share-Password": "open-sesame"})
    assert ok.status_code == 200


def test_share_validation(client, auth, site):
    bad_expiry = client.post("/api/sites/share", json={"siteId": site["id"], "expiresIn": "1h"}, headers=auth)
    assert bad_expiry.status_code == 400
    bad_period = client.post("/api/sites/share", json={"siteId": site["id"], "allowedPeriods": ["1y"]}, headers=auth)
    assert bad_period.status_code == 400
    assert client.get("/api/public-stats").status_code == 400
    assert client.delete("/api/sites/share", params={"token": "share_missing"}, headers=auth).status_code == 404


def test_delete_site_removes_heatmaps_and_imported_history(client, auth, site, blob):
    client.post("/api/heatmaps", json={"siteId": site["id"], "type": "click", "data": {"path": "/", "x": 5, "y": 5}})
    data = "date,screenPageViews,totalUsers,sessions\n20240110,120,40,50\n"
    client.post("/api/import", json={"siteId": site["id"], "format": "csv", "data": data}, headers=auth)
    day = utcnow().date().isoformat()
    assert blob.get("heatmaps", f"{site['id']}:{day}:/") is not None
    assert blob.get("historical", f"{site['id']}_2024-01-10_imported") is not None

    assert client.delete("/api/sites/delete", params={"siteId": site["id"]}, headers=auth).status_code == 200

    assert blob.get("heatmaps", f"{site['id']}:{day}:/") is None
    assert blob.get("heatmaps", f"heatmap_paths_{site['id']}") is None
    assert blob.get("historical", f"{site['id']}_2024-01-10_imported") is None
    assert blob.get("historical", f"site_history_{site['id']}") is None


def test_share_without_allowed_periods_defaults_to_week(client, auth, site, blob):
    share = client.post("/api/sites/share", json={"siteId": site["id"]}, headers=auth).json()["share"]
    record = blob.get("public-shares", share["token"])
    record["allowedPeriods"] = []
    blob.set("public-shares", share["token"], record)

    public = client.get("/api/public-stats", params={"token": share["token"]})
    assert public.status_code == 200
    assert public.json()["period"] == "7d"
