"""
tests/test_invites.py -- Integration tests for coach invitations.

Covers:
  - POST /coach/invite: 401 unauthenticated, 403 for CLIENT, 201 for COACH and
    ADMIN, 409 for an already-registered email, link emailed, digest stored
  - GET /invite/{token}: 200 for a live invite, 404 unknown/used/expired
  - Registration with invitationToken: coach linkage, single use, email mismatch
"""

from __future__ import annotations

import re
import uuid
from datetime import timedelta

from auth.models import InviteToken
from auth.store import utcnow
from auth.tokens import hash_opaque_token

STRONG = "Str0ng!Pass"
_LINK_RE = re.compile(r"/invite/([0-9a-f]{64})$")


def _email(prefix: str = "invitee") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}@example.com"


def _invite(client, headers, email: str) -> str:
    resp = client.post("/api/v1/coach/invite", json={"email": email}, headers=headers)
    assert resp.status_code == 201, resp.text
    match = _LINK_RE.search(resp.json()["inviteLink"])
    assert match, resp.json()
    return match.group(1)


class TestCreateInvite:
    def test_unauthenticated(self, api_client) -> None:
        client, _store, _mailer = api_client
        resp = client.post("/api/v1/coach/invite", json={"email": _email()})
        assert resp.status_code == 401

    def test_client_forbidden(self, api_client, make_user, auth_headers) -> None:
        client, _store, _mailer = api_client
        resp = client.post("/api/v1/coach/invite", json={"email": _email()}, headers=auth_headers(make_user()))
        assert resp.status_code == 403, resp.text
        assert resp.json()["error"]["code"] == "forbidden"

    def test_demoted_coach_loses_access_immediately(self, api_client, make_user, auth_headers) -> None:
        """The role is re-read from the database, not trusted from the token."""
        client, store, _mailer = api_client
        coach = make_user(role="COACH")
        headers = auth_headers(coach)
        store.update_user(coach.id, role="CLIENT")
        resp = client.post("/api/v1/coach/invite", json={"email": _email()}, headers=headers)
        assert resp.status_code == 403

    def test_coach_creates_invite(self, api_client, make_user, auth_headers) -> None:
        client, store, mailer = api_client
        coach = make_user(role="COACH")
        email = _email()
        resp = client.post("/api/v1/coach/invite", json={"email": email}, headers=auth_headers(coach))
        assert resp.status_code == 201, resp.text
        link = resp.json()["inviteLink"]
        assert link.startswith("http://frontend.test/invite/")

        raw = _LINK_RE.search(link).group(1)
        invite = store.get_active_invite(hash_opaque_token(raw))
        assert invite is not None
        assert invite.coach_id == coach.id
        assert invite.email == email
        assert timedelta(days=6) < invite.expires_at - utcnow() <= timedelta(days=7)

        message = mailer.last_to(email)
        assert message is not None
        assert link in message["text"]

    def test_admin_can_invite(self, api_client, make_user, auth_headers) -> None:
        client, _store, _mailer = api_client
        admin = make_user(role="ADMIN")
        resp = client.post("/api/v1/coach/invite", json={"email": _email()}, headers=auth_headers(admin))
        assert resp.status_code == 201

    def test_existing_email_conflict(self, api_client, make_user, auth_headers) -> None:
        client, _store, _mailer = api_client
        coach = make_user(role="COACH")
        existing = make_user()
        resp = client.post("/api/v1/coach/invite", json={"email": existing.email}, headers=auth_headers(coach))
        assert resp.status_code == 409, resp.text
        assert resp.json()["error"]["code"] == "email_taken"


class TestGetInvite:
    def test_live_invite(self, api_client, make_user, auth_headers) -> None:
        client, _store, _mailer = api_client
        coach = make_user(role="COACH")
        email = _email()
        token = _invite(client, auth_headers(coach), email)

        resp = client.get(f"/api/v1/invite/{token}")
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["email"] == email
        assert data["coachId"] == coach.id
        assert "expiresAt" in data

    def test_unknown_invite(self, api_client) -> None:
        client, _store, _mailer = api_client
        resp = client.get(f"/api/v1/invite/{'0' * 64}")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "invalid_invite"

    def test_expired_invite(self, api_client, make_user) -> None:
        client, store, _mailer = api_client
        coach = make_user(role="COACH")
        raw = uuid.uuid4().hex * 2
        store.create_invite(
            InviteToken(
                coach_id=coach.id,
                email=_email(),
                token=hash_opaque_token(raw),
                expires_at=utcnow() - timedelta(hours=1),
            )
        )
        assert client.get(f"/api/v1/invite/{raw}").status_code == 404


class TestRegisterWithInvite:
    def test_invite_links_coach_and_is_single_use(self, api_client, make_user, auth_headers) -> None:
        client, store, _mailer = api_client
        coach = make_user(role="COACH")
        email = _email()
        token = _invite(client, auth_headers(coach), email)

        resp = client.post(
            "/api/v1/auth/register",
            json={"email": email, "password": STRONG, "invitationToken": token},
        )
        assert resp.status_code == 201, resp.text
        assert resp.json()["user"]["coachId"] == coach.id
        assert store.get_by_email(email).coach_id == coach.id

        # Consumed: no longer visible and cannot register a second account.
        assert client.get(f"/api/v1/invite/{token}").status_code == 404
        again = client.post(
            "/api/v1/auth/register",
            json={"email": _email("second"), "password": STRONG, "invitationToken": token},
        )
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "invalid_invite"

    def test_email_mismatch(self, api_client, make_user, auth_headers) -> None:
        client, store, _mailer = api_client
        coach = make_user(role="COACH")
        token = _invite(client, auth_headers(coach), _email())
        other = _email("other")

        resp = client.post(
            "/api/v1/auth/register",
            json={"email": other, "password": STRONG, "invitationToken": token},
        )
        assert resp.status_code == 400, resp.text
        assert resp.json()["error"]["code"] == "invite_email_mismatch"
        assert store.get_by_email(other) is None
        # The invite is still redeemable by the right person.
        assert client.get(f"/api/v1/invite/{token}").status_code == 200

    def test_unknown_invitation_token(self, api_client) -> None:
        client, _store, _mailer = api_client
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": _email(), "password": STRONG, "invitationToken": "f" * 64},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_invite"
