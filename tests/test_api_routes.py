"""
tests/test_api_routes.py -- Integration tests for the Pulse REST API.

These tests exercise the full stack: FastAPI routing -> bearer dependency ->
IdentityResolver -> services / guard -> stores -> response serialization ->
exception handlers. Unit testing individual route functions would miss the
status mapping, which is the contract clients depend on.

Coverage:
  - Auth failures: 401 with a distinct code per reason and WWW-Authenticate
  - First request provisions the account; GET /auth/me is stable
  - Team creation: 201, retried request 200 with the same body, window expiry
  - Team / task access: 403 for outsiders, 404 for unknown ids
  - Membership errors: 409 already_member, 400 invalid_member
  - Task flows: default team, no_team_membership, status filter, assigned-to-me
  - Revocation: POST /auth/revoke invalidates older tokens
  - Identity conflict: 409 when an email is already linked elsewhere

Fixtures used (from conftest.py):
  - api_client: ApiContext(client, user_store, team_store, clock)
  - bearer: bearer(subject, email=..., name=...) -> Authorization headers
"""

from __future__ import annotations

import time

from auth.models import User


class TestAuthFailures:
    def test_missing_credential(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/teams")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "missing_credential"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_non_bearer_scheme_is_missing_credential(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/auth/me", headers={"Authorization": "Basic dXNlcjpwYXNz"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "missing_credential"

    def test_malformed_token(self, api_client) -> None:
        resp = api_client.client.get("/api/v1/auth/me", headers={"Authorization": "Bearer garbage"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_malformed"
        assert 'error="invalid_token"' in resp.headers["WWW-Authenticate"]

    def test_expired_token(self, api_client, bearer) -> None:
        resp = api_client.client.get("/api/v1/auth/me", headers=bearer("idp|late", expire_seconds=-5))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_expired"
        assert resp.headers["WWW-Authenticate"] == 'Bearer error="invalid_token", error_description="reauthenticate"'

    def test_forged_token(self, api_client, bearer) -> None:
        headers = bearer("idp|forger", secret_key="f" * 48)
        resp = api_client.client.get("/api/v1/auth/me", headers=headers)
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_invalid_signature"
        assert resp.headers["WWW-Authenticate"] == 'Bearer error="invalid_token"'

    def test_expired_and_forged_tokens_are_told_apart(self, api_client, bearer) -> None:
        expired = api_client.client.get("/api/v1/auth/me", headers=bearer("idp|late", expire_seconds=-5))
        forged = api_client.client.get("/api/v1/auth/me", headers=bearer("idp|late", secret_key="f" * 48))

        assert expired.status_code == forged.status_code == 401
        assert "reauthenticate" in expired.headers["WWW-Authenticate"]
        assert "reauthenticate" not in forged.headers["WWW-Authenticate"]


class TestIdentity:
    def test_me_provisions_and_is_stable(self, api_client, bearer) -> None:
        headers = bearer("idp|ada", email="ada@example.com", name="Ada")

        first = api_client.client.get("/api/v1/auth/me", headers=headers)
        second = api_client.client.get("/api/v1/auth/me", headers=headers)

        assert first.status_code == 200, first.text
        assert first.json() == second.json()
        assert first.json()["email"] == "ada@example.com"
        assert first.json()["display_name"] == "Ada"

    def test_existing_account_is_linked_by_email(self, api_client, bearer) -> None:
        uid = api_client.user_store.create_user(User(email="legacy@example.com"))

        resp = api_client.client.get("/api/v1/auth/me", headers=bearer("idp|legacy", email="legacy@example.com"))

        assert resp.json()["user_id"] == uid
        assert resp.json()["subject"] == "idp|legacy"

    def test_email_owned_by_other_subject_is_conflict(self, api_client, bearer) -> None:
        api_client.client.get("/api/v1/auth/me", headers=bearer("idp|owner", email="taken@example.com"))

        resp = api_client.client.get("/api/v1/auth/me", headers=bearer("idp|intruder", email="taken@example.com"))

        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "identity_conflict"

    def test_revoke_rejects_older_tokens(self, api_client, bearer) -> None:
        old = bearer("idp|rev", issued_at=int(time.time()) - 30)
        assert api_client.client.get("/api/v1/auth/me", headers=old).status_code == 200

        resp = api_client.client.post("/api/v1/auth/revoke", headers=old)
        assert resp.status_code == 200

        denied = api_client.client.get("/api/v1/auth/me", headers=old)
        assert denied.status_code == 401
        assert denied.json()["error"]["code"] == "token_revoked"
        assert "reauthenticate" in denied.headers["WWW-Authenticate"]
        fresh = bearer("idp|rev", issued_at=resp.json()["revoked_before"])
        assert api_client.client.get("/api/v1/auth/me", headers=fresh).status_code == 200


class TestTeams:
    def test_create_then_retry_returns_same_team(self, api_client, bearer) -> None:
        headers = bearer("idp|tina", email="tina@example.com")
        body = {"name": "Rockets", "description": "Go up", "participants": [{"name": "Wile", "role": "Coyote"}]}

        created = api_client.client.post("/api/v1/teams", json=body, headers=headers)
        api_client.clock.advance(1)
        retried = api_client.client.post("/api/v1/teams", json=body, headers=headers)

        assert created.status_code == 201, created.text
        assert retried.status_code == 200
        assert retried.json() == created.json()
        assert created.json()["members"][0]["role"] == "ADMIN"
        assert created.json()["participants"][0]["name"] == "Wile"
        assert api_client.team_store.count_teams("Rockets") == 1

    def test_create_after_window_is_new_team(self, api_client, bearer) -> None:
        headers = bearer("idp|tina", email="tina@example.com")
        first = api_client.client.post("/api/v1/teams", json={"name": "Twice"}, headers=headers)
        api_client.clock.advance(3)
        second = api_client.client.post("/api/v1/teams", json={"name": "Twice"}, headers=headers)

        assert second.status_code == 201
        assert second.json()["id"] != first.json()["id"]

    def test_blank_name_is_rejected(self, api_client, bearer) -> None:
        resp = api_client.client.post("/api/v1/teams", json={"name": "   "}, headers=bearer("idp|tina"))
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_outsider_gets_403_and_unknown_gets_404(self, api_client, bearer) -> None:
        owner = bearer("idp|olga", email="olga@example.com")
        outsider = bearer("idp|otto", email="otto@example.com")
        team_id = api_client.client.post("/api/v1/teams", json={"name": "Private"}, headers=owner).json()["id"]

        denied = api_client.client.get(f"/api/v1/teams/{team_id}", headers=outsider)
        missing = api_client.client.get("/api/v1/teams/999999", headers=outsider)
        members = api_client.client.get(f"/api/v1/teams/{team_id}/members", headers=outsider)

        assert denied.status_code == 403
        assert denied.json()["error"]["code"] == "access_denied"
        assert "olga" not in denied.text
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "team_not_found"
        assert members.status_code == 403

    def test_add_member_flow(self, api_client, bearer) -> None:
        owner = bearer("idp|mo", email="mo@example.com")
        friend = bearer("idp|fred", email="fred@example.com")
        friend_id = api_client.client.get("/api/v1/auth/me", headers=friend).json()["user_id"]
        team_id = api_client.client.post("/api/v1/teams", json={"name": "Pals"}, headers=owner).json()["id"]

        added = api_client.client.post(f"/api/v1/teams/{team_id}/members", json={"user_id": friend_id}, headers=owner)
        again = api_client.client.post(f"/api/v1/teams/{team_id}/members", json={"user_id": friend_id}, headers=owner)
        ghost = api_client.client.post(f"/api/v1/teams/{team_id}/members", json={"user_id": 999999}, headers=owner)

        assert added.status_code == 201
        assert added.json()["role"] == "MEMBER"
        assert again.status_code == 409
        assert again.json()["error"]["code"] == "already_member"
        assert ghost.status_code == 400
        assert ghost.json()["error"]["code"] == "invalid_member"
        assert api_client.client.get(f"/api/v1/teams/{team_id}", headers=friend).status_code == 200
        listed = api_client.client.get("/api/v1/teams", headers=friend).json()
        assert team_id in [t["id"] for t in listed]

    def test_patch_team(self, api_client, bearer) -> None:
        owner = bearer("idp|pat", email="pat@example.com")
        team_id = api_client.client.post("/api/v1/teams", json={"name": "Before"}, headers=owner).json()["id"]

        resp = api_client.client.patch(f"/api/v1/teams/{team_id}", json={"name": "After"}, headers=owner)

        assert resp.status_code == 200
        assert resp.json()["name"] == "After"


class TestTasks:
    def test_task_requires_a_team(self, api_client, bearer) -> None:
        resp = api_client.client.post("/api/v1/tasks", json={"title": "orphan"}, headers=bearer("idp|loner"))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "no_team_membership"

    def test_task_lifecycle(self, api_client, bearer) -> None:
        owner = bearer("idp|tess", email="tess@example.com")
        outsider = bearer("idp|ulf", email="ulf@example.com")
        c = api_client.client
        owner_id = c.get("/api/v1/auth/me", headers=owner).json()["user_id"]
        team_id = c.post("/api/v1/teams", json={"name": "Builders"}, headers=owner).json()["id"]

        created = c.post(
            "/api/v1/tasks",
            json={"title": "Lay bricks", "assignee_id": owner_id, "deadline": "2026-11-30"},
            headers=owner,
        )
        assert created.status_code == 201, created.text
        task = created.json()
        assert task["team_id"] == team_id
        assert task["deadline"] == "2026-11-30"
        assert task["status"] == "TODO"

        updated = c.put(f"/api/v1/tasks/{task['id']}", json={"status": "REVIEW"}, headers=owner)
        assert updated.status_code == 200
        assert updated.json()["status"] == "REVIEW"
        assert updated.json()["title"] == "Lay bricks"

        in_review = c.get("/api/v1/tasks/status/REVIEW", headers=owner).json()
        assert [t["id"] for t in in_review] == [task["id"]]
        mine = c.get("/api/v1/tasks/assigned-to-me", headers=owner).json()
        assert [t["id"] for t in mine] == [task["id"]]

        assert c.get(f"/api/v1/tasks/{task['id']}", headers=outsider).status_code == 403
        assert c.get("/api/v1/tasks", headers=outsider).json() == []
        assert c.get("/api/v1/tasks/status/REVIEW", headers=outsider).json() == []
        assert c.delete(f"/api/v1/tasks/{task['id']}", headers=outsider).status_code == 403

        assert c.delete(f"/api/v1/tasks/{task['id']}", headers=owner).status_code == 204
        gone = c.get(f"/api/v1/tasks/{task['id']}", headers=owner)
        assert gone.status_code == 404
        assert gone.json()["error"]["code"] == "task_not_found"

    def test_invalid_assignee(self, api_client, bearer) -> None:
        owner = bearer("idp|ivy", email="ivy@example.com")
        stranger_id = api_client.client.get("/api/v1/auth/me", headers=bearer("idp|sam")).json()["user_id"]
        api_client.client.post("/api/v1/teams", json={"name": "Ivy League"}, headers=owner)

        for assignee in (stranger_id, 999999):
            resp = api_client.client.post(
                "/api/v1/tasks", json={"title": "x", "assignee_id": assignee}, headers=owner
            )
            assert resp.status_code == 400
            assert resp.json()["error"]["code"] == "invalid_assignee"

    def test_explicit_foreign_team_is_denied(self, api_client, bearer) -> None:
        owner = bearer("idp|kim", email="kim@example.com")
        other = bearer("idp|lee", email="lee@example.com")
        team_id = api_client.client.post("/api/v1/teams", json={"name": "Kim's"}, headers=owner).json()["id"]
        api_client.client.post("/api/v1/teams", json={"name": "Lee's"}, headers=other)

        resp = api_client.client.post("/api/v1/tasks", json={"title": "sneak", "team_id": team_id}, headers=other)

        assert resp.status_code == 403

    def test_unknown_status_is_422(self, api_client, bearer) -> None:
        resp = api_client.client.get("/api/v1/tasks/status/SOMEDAY", headers=bearer("idp|tess"))
        assert resp.status_code == 422

    def test_null_title_is_rejected(self, api_client, bearer) -> None:
        owner = bearer("idp|nia", email="nia@example.com")
        api_client.client.post("/api/v1/teams", json={"name": "Nulls"}, headers=owner)
        task_id = api_client.client.post("/api/v1/tasks", json={"title": "t"}, headers=owner).json()["id"]

        resp = api_client.client.put(f"/api/v1/tasks/{task_id}", json={"title": None}, headers=owner)

        assert resp.status_code == 422
