"""
Integration tests for the invitation workflow.

Tests cover:
- Issuing, listing and revoking from the organization side
- Validate / accept / decline from the invitee side
- Single-use tokens and expiry judged from expires_at
"""
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from app.core.exceptions import AlreadyMemberError, ConflictError, InvitationAlreadyProcessedError
from app.core.rate_limit import limiter
from app.features.invitations import service
from app.features.invitations.models import Invitation, InvitationStatus
from app.features.organizations.models import OrganizationMember
from app.main import app


@pytest.fixture
async def org_setup(make_user, make_org):
    owner = await make_user("owner@acme.com")
    org = await make_org(owner)
    return owner, org


class TestIssue:

    async def test_issue_via_api(self, client, roles, org_setup, auth):
        owner, org = org_setup

        response = await client.post(
            "/invitations/",
            json={"email": "New.Hire@Acme.com", "role_id": roles["Member"].id},
            headers=auth(owner, org),
        )

        assert response.status_code == 201
        body = response.json()
        assert body["email"] == "new.hire@acme.com"
        assert body["status"] == "pending"
        assert body["role"]["name"] == "Member"
        assert "token" not in body
        assert "/accept-invite?token=" in body["invite_link"]

    async def test_token_shape_and_expiry(self, org_setup, make_invitation):
        owner, org = org_setup

        invitation = await make_invitation(org, owner, "new@acme.com")

        assert len(invitation.token) == 64
        int(invitation.token, 16)
        assert not invitation.is_expired
        assert invitation.status == InvitationStatus.PENDING

    async def test_member_cannot_invite(self, client, roles, org_setup, make_user, add_member, auth):
        _, org = org_setup
        member = await make_user("member@acme.com")
        await add_member(org, member)

        response = await client.post(
            "/invitations/",
            json={"email": "new@acme.com", "role_id": roles["Member"].id},
            headers=auth(member, org),
        )

        assert response.status_code == 403

    async def test_duplicate_pending_invitation(self, org_setup, make_invitation):
        owner, org = org_setup
        await make_invitation(org, owner, "new@acme.com")

        with pytest.raises(ConflictError):
            await make_invitation(org, owner, "NEW@acme.com")

    async def test_inviting_an_active_member(self, org_setup, make_user, add_member, make_invitation):
        owner, org = org_setup
        member = await make_user("member@acme.com")
        await add_member(org, member)

        with pytest.raises(AlreadyMemberError):
            await make_invitation(org, owner, "member@acme.com")

    async def test_reissue_after_expiry(self, session_factory, org_setup, make_invitation, expire_invitation):
        owner, org = org_setup
        first = await make_invitation(org, owner, "new@acme.com")
        await expire_invitation(first.id)

        second = await make_invitation(org, owner, "new@acme.com")

        async with session_factory() as session:
            old = await session.get(Invitation, first.id)
            assert old.status == InvitationStatus.EXPIRED
            assert old.deleted_at is not None
        assert second.token != first.token

    async def test_owner_role_cannot_be_invited(self, client, roles, org_setup, auth):
        owner, org = org_setup

        response = await client.post(
            "/invitations/",
            json={"email": "new@acme.com", "role_id": roles["Owner"].id},
            headers=auth(owner, org),
        )

        assert response.status_code == 400


class TestValidate:

    async def test_pending_invitation(self, client, org_setup, make_invitation):
        owner, org = org_setup
        invitation = await make_invitation(org, owner, "new@acme.com", role_name="Admin")

        response = await client.get("/invitations/validate", params={"token": invitation.token})

        assert response.status_code == 200
        body = response.json()
        assert body["email"] == "new@acme.com"
        assert body["role"]["name"] == "Admin"
        assert body["organization_id"] == org.id
        assert body["organization_name"] == "Acme Corp"

    async def test_unknown_token(self, client):
        response = await client.get("/invitations/validate", params={"token": "f" * 64})

        assert response.status_code == 404
        assert response.json()["code"] == "invitation_not_found"

    async def test_expired_while_status_still_pending(
        self, client, session_factory, org_setup, make_invitation, expire_invitation
    ):
        owner, org = org_setup
        invitation = await make_invitation(org, owner, "new@acme.com")
        await expire_invitation(invitation.id)

        response = await client.get("/invitations/validate", params={"token": invitation.token})

        assert response.status_code == 410
        assert response.json()["code"] == "invitation_expired"
        async with session_factory() as session:
            stored = await session.get(Invitation, invitation.id)
            assert stored.status == InvitationStatus.PENDING

    async def test_revoked_invitation(self, client, org_setup, make_invitation, auth):
        owner, org = org_setup
        invitation = await make_invitation(org, owner, "new@acme.com")

        response = await client.delete(f"/invitations/{invitation.id}", headers=auth(owner, org))
        assert response.status_code == 204

        response = await client.get("/invitations/validate", params={"token": invitation.token})
        assert response.status_code == 404


class TestAccept:

    async def test_accept_creates_membership(self, client, session_factory, org_setup, make_user, make_invitation, auth):
        owner, org = org_setup
        invitee = await make_user("new@acme.com")
        invitation = await make_invitation(org, owner, "NEW@acme.com", role_name="Admin")

        response = await client.post("/invitations/accept", json={"token": invitation.token}, headers=auth(invitee))

        assert response.status_code == 200
        assert response.json()["organization_id"] == org.id
        assert response.json()["role"]["name"] == "Admin"
        async with session_factory() as session:
            stored = await session.get(Invitation, invitation.id)
            assert stored.status == InvitationStatus.ACCEPTED
            assert stored.accepted_at is not None

        response = await client.get("/organizations/my-permissions", headers=auth(invitee, org))
        assert "members.invite" in response.json()["permissions"]

    async def test_double_accept(self, client, session_factory, org_setup, make_user, make_invitation, auth):
        owner, org = org_setup
        invitee = await make_user("new@acme.com")
        invitation = await make_invitation(org, owner, "new@acme.com")

        first = await client.post("/invitations/accept", json={"token": invitation.token}, headers=auth(invitee))
        second = await client.post("/invitations/accept", json={"token": invitation.token}, headers=auth(invitee))

        assert first.status_code == 200
        assert second.status_code == 409
        assert second.json()["code"] == "invitation_already_processed"
        async with session_factory() as session:
            rows = (await session.execute(
                select(OrganizationMember).where(
                    OrganizationMember.organization_id == org.id,
                    OrganizationMember.user_id == invitee.id,
                )
            )).scalars().all()
            assert len(rows) == 1

    async def test_lost_race_is_already_processed(self, session_factory, org_setup, make_user, make_invitation):
        owner, org = org_setup
        invitee = await make_user("new@acme.com")
        invitation = await make_invitation(org, owner, "new@acme.com")

        async with session_factory() as first, session_factory() as second:
            user_a = await first.get(type(invitee), invitee.id)
            user_b = await second.get(type(invitee), invitee.id)
            # Both sessions read the invitation as pending before either writes
            await service.get_invitation_by_token(first, invitation.token)
            await service.get_invitation_by_token(second, invitation.token)

            await service.accept_invitation(first, invitation.token, user_a)
            with pytest.raises(InvitationAlreadyProcessedError):
                await service.accept_invitation(second, invitation.token, user_b)

    async def test_email_mismatch(self, client, org_setup, make_user, make_invitation, auth):
        owner, org = org_setup
        someone_else = await make_user("other@acme.com")
        invitation = await make_invitation(org, owner, "new@acme.com")

        response = await client.post("/invitations/accept", json={"token": invitation.token}, headers=auth(someone_else))

        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

    async def test_already_member_leaves_invitation_pending(
        self, client, session_factory, org_setup, make_user, add_member, make_invitation, auth
    ):
        owner, org = org_setup
        invitee = await make_user("new@acme.com")
        invitation = await make_invitation(org, owner, "new@acme.com")
        await add_member(org, invitee)

        response = await client.post("/invitations/accept", json={"token": invitation.token}, headers=auth(invitee))

        assert response.status_code == 409
        assert response.json()["code"] == "already_member"
        async with session_factory() as session:
            stored = await session.get(Invitation, invitation.id)
            assert stored.status == InvitationStatus.PENDING

    async def test_reactivates_inactive_membership(
        self, client, session_factory, org_setup, make_user, add_member, make_invitation, auth
    ):
        owner, org = org_setup
        invitee = await make_user("new@acme.com")
        old = await add_member(org, invitee, is_active=False)
        invitation = await make_invitation(org, owner, "new@acme.com", role_name="Admin")

        response = await client.post("/invitations/accept", json={"token": invitation.token}, headers=auth(invitee))

        assert response.status_code == 200
        assert response.json()["member_id"] == old.id
        async with session_factory() as session:
            member = await session.get(OrganizationMember, old.id)
            assert member.is_active
            assert member.role.name == "Admin"

    async def test_expired_cannot_be_accepted(self, client, org_setup, make_user, make_invitation, expire_invitation, auth):
        owner, org = org_setup
        invitee = await make_user("new@acme.com")
        invitation = await make_invitation(org, owner, "new@acme.com")
        await expire_invitation(invitation.id)

        response = await client.post("/invitations/accept", json={"token": invitation.token}, headers=auth(invitee))

        assert response.status_code == 410
        assert response.json()["code"] == "invitation_expired"


class TestInviteeLists:

    async def test_mine_and_decline(self, client, org_setup, make_user, make_invitation, auth):
        owner, org = org_setup
        invitee = await make_user("new@acme.com")
        invitation = await make_invitation(org, owner, "new@acme.com")

        response = await client.get("/invitations/mine", headers=auth(invitee))
        assert response.status_code == 200
        mine = response.json()
        assert [item["id"] for item in mine] == [invitation.id]
        assert mine[0]["organization_name"] == "Acme Corp"
        assert mine[0]["invited_by_name"] == owner.name

        response = await client.post("/invitations/decline", json={"token": invitation.token}, headers=auth(invitee))
        assert response.status_code == 204

        response = await client.get("/invitations/mine", headers=auth(invitee))
        assert response.json() == []

    async def test_decline_someone_elses_invitation(self, client, org_setup, make_user, make_invitation, auth):
        owner, org = org_setup
        other = await make_user("other@acme.com")
        invitation = await make_invitation(org, owner, "new@acme.com")

        response = await client.post("/invitations/decline", json={"token": invitation.token}, headers=auth(other))

        assert response.status_code == 403

    async def test_org_listing_expires_stale(self, client, org_setup, make_invitation, expire_invitation, auth):
        owner, org = org_setup
        stale = await make_invitation(org, owner, "stale@acme.com")
        fresh = await make_invitation(org, owner, "fresh@acme.com")
        await expire_invitation(stale.id)

        response = await client.get("/invitations/", headers=auth(owner, org))

        assert response.status_code == 200
        assert [item["id"] for item in response.json()] == [fresh.id]


class TestRateLimits:

    @pytest.fixture
    def rate_limited(self):
        limiter.reset()
        limiter.enabled = True
        yield
        limiter.enabled = False
        limiter.reset()

    async def test_validate_is_limited_per_client_address(self, client, rate_limited):
        async def validate_from(host: str):
            transport = ASGITransport(app=app, client=(host, 50000))
            async with AsyncClient(transport=transport, base_url="http://test") as ac:
                return await ac.get("/invitations/validate", params={"token": "f" * 64})

        statuses = [(await validate_from("10.0.0.1")).status_code for _ in range(31)]
        other = await validate_from("10.0.0.2")

        assert statuses[:30] == [404] * 30
        assert statuses[30] == 429
        assert other.status_code == 404
