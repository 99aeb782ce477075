import pytest


@pytest.fixture
def team(client, auth, site):
    created = client.post("/api/teams", json={"action": "create", "name": "Growth"}, headers=auth)
    assert created.status_code == 201
    team = created.json()["team"]
    added = client.post("/api/teams", json={"action": "addSite", "teamId": team["id"], "siteId": site["id"]}, headers=auth)
    assert added.status_code == 200
    return team


def invite_and_join(client, auth, register, team, email="viewer@example.com", role=None):
    body = {"action": "invite", "teamId": team["id"], "email": email}
    if role:
        body["role"] = role
    invite = client.post("/api/teams", json=body, headers=auth).json()["invite"]
    member = register(email=email)
    joined = client.post("/api/invite", json={"token": invite["token"]}, headers=member)
    assert joined.status_code == 200
    return member, invite


def test_create_and_list_teams(client, auth, team):
    teams = client.get("/api/teams", headers=auth).json()["teams"]
    assert teams == [{
        "id": team["id"],
        "name": "Growth",
        "role": "owner",
        "memberCount": 1,
        "siteCount": 1,
        "createdAt": team["createdAt"],
    }]
    details = client.get("/api/teams", params={"teamId": team["id"]}, headers=auth).json()["team"]
    assert details["sites"][0]["domain"] == "example.com"
    assert details["invites"] == []


def test_invite_flow_grants_read_access(client, auth, register, site, team):
    invite = client.post(
        "/api/teams", json={"action": "invite", "teamId": team["id"], "email": "Viewer@Example.com"}, headers=auth
    ).json()["invite"]
    assert invite["role"] == "viewer"

    info = client.get("/api/invite", params={"token": invite["token"]})
    assert info.status_code == 200
    assert info.json()["invite"]["teamName"] == "Growth"

    member = register(email="viewer@example.com")
    assert client.get("/api/stats", params={"siteId": site["id"]}, headers=member).status_code == 403
    assert client.post("/api/invite", json={"token": invite["token"]}, headers=member).status_code == 200

    sites = client.get("/api/sites/list", headers=member).json()["sites"]
    assert sites[0]["id"] == site["id"]
    assert sites[0]["isOwner"] is False
    assert sites[0]["isTeamSite"] is True
    assert client.get("/api/stats", params={"siteId": site["id"]}, headers=member).status_code == 200

    # Members read, only the owner changes anything
    goal = client.post("/api/goals", json={"siteId": site["id"], "name": "x"}, headers=member)
    assert goal.status_code == 403
    assert client.get("/api/teams", params={"teamId": team["id"]}, headers=member).json()["team"].get("invites") is None

    # Single use
    assert client.get("/api/invite", params={"token": invite["token"]}).status_code == 404


def test_invite_for_other_email_is_refused(client, auth, register, team):
    invite = client.post(
        "/api/teams", json={"action": "invite", "teamId": team["id"], "email": "someone@example.com"}, headers=auth
    ).json()["invite"]
    other = register(email="other@example.com")
    assert client.post("/api/invite", json={"token": invite["token"]}, headers=other).status_code == 403


def test_invite_validation(client, auth, register, team):
    owner_role = client.post(
        "/api/teams", json={"action": "invite", "teamId": team["id"], "email": "a@example.com", "role": "owner"}, headers=auth
    )
    assert owner_role.status_code == 400
    assert client.post("/api/teams", json={"action": "dance"}, headers=auth).status_code == 400

    member, _ = invite_and_join(client, auth, register, team)
    not_manager = client.post(
        "/api/teams", json={"action": "invite", "teamId": team["id"], "email": "b@example.com"}, headers=member
    )
    assert not_manager.status_code == 403


def test_roles_and_membership_changes(client, auth, register, team):
    member, _ = invite_and_join(client, auth, register, team, role="editor")
    details = client.get("/api/teams", params={"teamId": team["id"]}, headers=auth).json()["team"]
    member_id = next(m["userId"] for m in details["members"] if m["email"] == "viewer@example.com")
    owner_id = details["ownerId"]

    promoted = client.patch(
        "/api/teams", json={"action": "updateRole", "teamId": team["id"], "memberId": member_id, "role": "admin"}, headers=auth
    )
    assert promoted.json()["member"]["role"] == "admin"
    demote_owner = client.patch(
        "/api/teams", json={"action": "updateRole", "teamId": team["id"], "memberId": owner_id, "role": "viewer"}, headers=member
    )
    assert demote_owner.status_code == 400

    renamed = client.patch("/api/teams", json={"action": "updateTeam", "teamId": team["id"], "name": "Marketing"}, headers=member)
    assert renamed.json()["team"]["name"] == "Marketing"

    assert client.delete("/api/teams", params={"teamId": team["id"], "action": "leave"}, headers=auth).status_code == 400
    assert client.delete("/api/teams", params={"teamId": team["id"], "memberId": member_id}, headers=auth).status_code == 200
    assert client.get("/api/teams", headers=member).json()["teams"] == []


def test_member_can_leave_and_invites_can_be_revoked(client, auth, register, team):
    member, _ = invite_and_join(client, auth, register, team)
    assert client.delete("/api/teams", params={"teamId": team["id"], "action": "leave"}, headers=member).status_code == 200
    assert client.get("/api/teams", params={"teamId": team["id"]}, headers=member).status_code == 403

    pending = client.post(
        "/api/teams", json={"action": "invite", "teamId": team["id"], "email": "later@example.com"}, headers=auth
    ).json()["invite"]
    revoked = client.delete("/api/teams", params={"teamId": team["id"], "inviteId": pending["id"]}, headers=auth)
    assert revoked.status_code == 200
    assert client.get("/api/invite", params={"token": pending["token"]}).status_code == 404
    assert client.delete("/api/teams", params={"teamId": "team_missing", "action": "leave"}, headers=auth).status_code == 404


def test_add_site_requires_ownership(client, auth, register, team):
    stranger = register(email="stranger@example.com")
    own_team = client.post("/api/teams", json={"action": "create"}, headers=stranger).json()["team"]
    site_id = client.get("/api/sites/list", headers=auth).json()["sites"][0]["id"]
    response = client.post("/api/teams", json={"action": "addSite", "teamId": own_team["id"], "siteId": site_id}, headers=stranger)
    assert response.status_code == 403
