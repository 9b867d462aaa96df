"""
Integration tests for organizations and memberships.

Tests cover:
- Creating organizations and slug handling
- The organization context header and my-permissions
- Owner protection and ownership transfer
- Soft-delete cascade and platform admin actions
"""
import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import AlreadyMemberError
from app.features.invitations.models import Invitation
from app.features.organizations import service
from app.features.organizations.models import Organization, OrganizationMember, OrgStatus
from app.features.permissions.constants import PermissionKey


class TestCreateOrganization:

    async def test_creator_becomes_owner(self, client, make_user, auth):
        user = await make_user("founder@acme.com")

        response = await client.post("/organizations/", json={"name": "Acme Corp"}, headers=auth(user))

        assert response.status_code == 201
        body = response.json()
        assert body["slug"] == "acme-corp"
        assert body["status"] == "active"
        assert body["member_count"] == 1

        response = await client.get("/organizations/my", headers=auth(user))
        assert response.status_code == 200
        [entry] = response.json()
        assert entry["organization"]["id"] == body["id"]
        assert entry["role"]["name"] == "Owner"

    async def test_generated_slug_gets_suffix(self, make_user, make_org):
        first_owner = await make_user("one@acme.com")
        second_owner = await make_user("two@acme.com")

        first = await make_org(first_owner, "Acme Corp")
        second = await make_org(second_owner, "Acme  Corp!")

        assert first.slug == "acme-corp"
        assert second.slug == "acme-corp-2"

    async def test_explicit_duplicate_slug_conflicts(self, client, make_user, make_org, auth):
        owner = await make_user("owner@acme.com")
        await make_org(owner)

        response = await client.post(
            "/organizations/",
            json={"name": "Other", "slug": "acme-corp"},
            headers=auth(owner),
        )

        assert response.status_code == 409
        assert response.json()["code"] == "conflict"

    async def test_slug_is_free_again_after_delete(self, db, make_user, make_org):
        owner = await make_user("owner@acme.com")
        org = await make_org(owner)
        await service.delete_organization(db, org, actor_id=owner.id)

        again = await make_org(owner)

        assert again.slug == "acme-corp"


class TestOrganizationContext:

    async def test_my_permissions_requires_header(self, client, make_user, auth):
        user = await make_user("someone@acme.com")

        response = await client.get("/organizations/my-permissions", headers=auth(user))

        assert response.status_code == 400
        assert response.json()["code"] == "invalid_input"

    async def test_my_permissions_for_non_member_is_empty(self, client, make_user, make_org, auth):
        owner = await make_user("owner@acme.com")
        stranger = await make_user("stranger@acme.com")
        org = await make_org(owner)

        response = await client.get("/organizations/my-permissions", headers=auth(stranger, org))

        assert response.status_code == 200
        assert response.json() == {"organization_id": org.id, "permissions": []}

    async def test_my_permissions_for_owner(self, client, make_user, make_org, auth):
        owner = await make_user("owner@acme.com")
        org = await make_org(owner)

        response = await client.get("/organizations/my-permissions", headers=auth(owner, org))

        assert response.json()["permissions"] == sorted(key.value for key in PermissionKey)

    async def test_current_for_non_member_is_forbidden(self, client, make_user, make_org, auth):
        owner = await make_user("owner@acme.com")
        stranger = await make_user("stranger@acme.com")
        org = await make_org(owner)

        response = await client.get("/organizations/current", headers=auth(stranger, org))

        assert response.status_code == 403

    async def test_current_for_unknown_organization(self, client, make_user, auth):
        user = await make_user("someone@acme.com")
        headers = {**auth(user), "X-Organization-Id": "01HZZZZZZZZZZZZZZZZZZZZZZZ"}

        response = await client.get("/organizations/current", headers=headers)

        assert response.status_code == 404

    async def test_update_current_requires_permission(self, client, make_user, make_org, add_member, auth):
        owner = await make_user("owner@acme.com")
        member = await make_user("member@acme.com")
        org = await make_org(owner)
        await add_member(org, member)

        denied = await client.patch("/organizations/current", json={"name": "Renamed"}, headers=auth(member, org))
        allowed = await client.patch("/organizations/current", json={"name": "Renamed"}, headers=auth(owner, org))

        assert denied.status_code == 403
        assert denied.json()["detail"] == "Permission denied: org.update"
        assert allowed.status_code == 200
        assert allowed.json()["name"] == "Renamed"


class TestMembership:

    async def test_add_member_twice(self, db, roles, make_user, make_org):
        owner = await make_user("owner@acme.com")
        user = await make_user("member@acme.com")
        org = await make_org(owner)

        await service.add_member(db, org, user, roles["Member"].id, actor_id=owner.id)
        with pytest.raises(AlreadyMemberError):
            await service.add_member(db, org, user, roles["Admin"].id, actor_id=owner.id)

    async def test_database_rejects_second_live_membership(self, db, roles, make_user, make_org):
        owner = await make_user("owner@acme.com")
        org = await make_org(owner)

        db.add(OrganizationMember(organization_id=org.id, user_id=owner.id, role_id=roles["Member"].id))
        with pytest.raises(IntegrityError):
            await db.flush()
        await db.rollback()

    async def test_owner_cannot_be_removed(self, client, make_user, make_org, add_member, auth):
        owner = await make_user("owner@acme.com")
        admin = await make_user("admin@acme.com")
        org = await make_org(owner)
        await add_member(org, admin, "Admin")

        members = (await client.get("/organizations/members", headers=auth(admin, org))).json()
        owner_member = next(m for m in members if m["user"]["id"] == owner.id)

        response = await client.delete(f"/organizations/members/{owner_member['id']}", headers=auth(admin, org))

        assert response.status_code == 403

    async def test_owner_changes_member_role(self, client, roles, make_user, make_org, add_member, auth):
        owner = await make_user("owner@acme.com")
        admin = await make_user("admin@acme.com")
        member = await make_user("member@acme.com")
        org = await make_org(owner)
        await add_member(org, admin, "Admin")
        target = await add_member(org, member)

        denied = await client.patch(
            f"/organizations/members/{target.id}",
            json={"role_id": roles["Admin"].id},
            headers=auth(admin, org),
        )
        response = await client.patch(
            f"/organizations/members/{target.id}",
            json={"role_id": roles["Admin"].id},
            headers=auth(owner, org),
        )

        assert denied.status_code == 403
        assert response.status_code == 200
        assert response.json()["role"]["name"] == "Admin"

    async def test_owner_role_cannot_be_assigned(self, client, roles, make_user, make_org, add_member, auth):
        owner = await make_user("owner@acme.com")
        member = await make_user("member@acme.com")
        org = await make_org(owner)
        target = await add_member(org, member)

        response = await client.patch(
            f"/organizations/members/{target.id}",
            json={"role_id": roles["Owner"].id},
            headers=auth(owner, org),
        )

        assert response.status_code == 400

    async def test_removed_member_loses_access(self, client, make_user, make_org, add_member, auth):
        owner = await make_user("owner@acme.com")
        member = await make_user("member@acme.com")
        org = await make_org(owner)
        target = await add_member(org, member)

        response = await client.delete(f"/organizations/members/{target.id}", headers=auth(owner, org))
        assert response.status_code == 204

        response = await client.get("/organizations/my-permissions", headers=auth(member, org))
        assert response.json()["permissions"] == []


class TestOwnership:

    async def test_member_can_delete_after_transfer(self, client, session_factory, make_user, make_org, add_member, auth):
        owner = await make_user("owner@acme.com")
        member = await make_user("member@acme.com")
        org = await make_org(owner)
        target = await add_member(org, member)

        response = await client.delete("/organizations/current", headers=auth(member, org))
        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"

        response = await client.post(
            "/organizations/transfer-ownership",
            json={"member_id": target.id},
            headers=auth(owner, org),
        )
        assert response.status_code == 200
        assert response.json()["role"]["name"] == "Owner"

        response = await client.get("/organizations/my-permissions", headers=auth(owner, org))
        assert "org.delete" not in response.json()["permissions"]

        response = await client.delete("/organizations/current", headers=auth(member, org))
        assert response.status_code == 204

        async with session_factory() as session:
            stored = await session.get(Organization, org.id)
            assert stored.deleted_at is not None

    async def test_only_owner_transfers(self, client, make_user, make_org, add_member, auth):
        owner = await make_user("owner@acme.com")
        admin = await make_user("admin@acme.com")
        org = await make_org(owner)
        admin_member = await add_member(org, admin, "Admin")

        response = await client.post(
            "/organizations/transfer-ownership",
            json={"member_id": admin_member.id},
            headers=auth(admin, org),
        )

        assert response.status_code == 403


class TestDeleteOrganization:

    async def test_soft_delete_cascades(
        self, db, session_factory, make_user, make_org, add_member, make_invitation
    ):
        owner = await make_user("owner@acme.com")
        member = await make_user("member@acme.com")
        org = await make_org(owner)
        await add_member(org, member)
        invitation = await make_invitation(org, owner, "new@acme.com")

        await service.delete_organization(db, org, actor_id=owner.id)

        async with session_factory() as session:
            members = (await session.execute(
                select(OrganizationMember).where(OrganizationMember.organization_id == org.id)
            )).scalars().all()
            assert len(members) == 2
            assert all(m.deleted_at is not None and not m.is_active for m in members)

            stored = await session.get(Invitation, invitation.id)
            assert stored.deleted_at is not None

        assert await service.list_my_memberships(db, member.id) == []


class TestAdminRoutes:

    async def test_list_requires_admin(self, client, make_user, auth):
        user = await make_user("someone@acme.com")

        response = await client.get("/organizations/", headers=auth(user))

        assert response.status_code == 403

    async def test_list_and_filter(self, client, make_user, make_org, auth):
        admin = await make_user("root@acme.com", is_admin=True)
        owner = await make_user("owner@acme.com")
        await make_org(owner, "Acme Corp")
        await make_org(owner, "Globex")

        response = await client.get("/organizations/", params={"search": "glob"}, headers=auth(admin))

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["items"][0]["name"] == "Globex"

    async def test_status_change(self, client, make_user, make_org, auth):
        admin = await make_user("root@acme.com", is_admin=True)
        owner = await make_user("owner@acme.com")
        org = await make_org(owner)

        response = await client.patch(
            f"/organizations/{org.id}/status",
            json={"status": "suspended"},
            headers=auth(admin),
        )
        assert response.status_code == 200
        assert response.json()["status"] == "suspended"

        response = await client.get("/organizations/", params={"status": "suspended"}, headers=auth(admin))
        assert [item["id"] for item in response.json()["items"]] == [org.id]
        assert OrgStatus(response.json()["items"][0]["status"]) == OrgStatus.SUSPENDED

    async def test_add_member_by_email(self, client, roles, make_user, make_org, auth):
        admin = await make_user("root@acme.com", is_admin=True)
        owner = await make_user("owner@acme.com")
        user = await make_user("member@acme.com")
        org = await make_org(owner)

        response = await client.post(
            f"/organizations/{org.id}/members",
            json={"email": "Member@Acme.com", "role_id": roles["Admin"].id},
            headers=auth(admin),
        )

        assert response.status_code == 201
        assert response.json()["user"]["id"] == user.id
        assert response.json()["role"]["name"] == "Admin"

        response = await client.post(
            f"/organizations/{org.id}/members",
            json={"user_id": user.id, "role_id": roles["Member"].id},
            headers=auth(admin),
        )
        assert response.status_code == 409
        assert response.json()["code"] == "already_member"

    async def test_add_member_revives_removed_membership(
        self, client, session_factory, roles, make_user, make_org, add_member, auth
    ):
        admin = await make_user("root@acme.com", is_admin=True)
        owner = await make_user("owner@acme.com")
        user = await make_user("member@acme.com")
        org = await make_org(owner)
        removed = await add_member(org, user)
        response = await client.delete(f"/organizations/members/{removed.id}", headers=auth(owner, org))
        assert response.status_code == 204

        response = await client.post(
            f"/organizations/{org.id}/members",
            json={"user_id": user.id, "role_id": roles["Admin"].id},
            headers=auth(admin),
        )

        assert response.status_code == 201
        assert response.json()["id"] == removed.id
        assert response.json()["role"]["name"] == "Admin"
        async with session_factory() as session:
            rows = (await session.execute(
                select(OrganizationMember).where(
                    OrganizationMember.organization_id == org.id,
                    OrganizationMember.user_id == user.id,
                )
            )).scalars().all()
            assert len(rows) == 1
            assert rows[0].deleted_at is None
            assert rows[0].is_active

    async def test_organization_details(self, client, make_user, make_org, add_member, auth):
        admin = await make_user("root@acme.com", is_admin=True)
        owner = await make_user("owner@acme.com")
        member = await make_user("member@acme.com")
        org = await make_org(owner)
        await add_member(org, member)

        response = await client.get(f"/organizations/{org.id}", headers=auth(admin))

        assert response.status_code == 200
        body = response.json()
        assert body["organization"]["id"] == org.id
        assert body["organization"]["member_count"] == 2
        assert body["owner"]["user"]["id"] == owner.id
        assert body["owner"]["role"]["name"] == "Owner"
        assert {m["user"]["id"]: m["role"]["name"] for m in body["members"]} == {
            owner.id: "Owner",
            member.id: "Member",
        }
        assert all(m["joined_at"] for m in body["members"])

    async def test_organization_details_requires_admin(self, client, make_user, make_org, auth):
        owner = await make_user("owner@acme.com")
        org = await make_org(owner)

        response = await client.get(f"/organizations/{org.id}", headers=auth(owner))

        assert response.status_code == 403

    async def test_admin_edits_name_and_slug(self, client, make_user, make_org, auth):
        admin = await make_user("root@acme.com", is_admin=True)
        owner = await make_user("owner@acme.com")
        org = await make_org(owner)
        await make_org(owner, "Globex")

        response = await client.patch(
            f"/organizations/{org.id}",
            json={"name": "Acme Inc", "slug": "acme-inc"},
            headers=auth(admin),
        )
        assert response.status_code == 200
        assert response.json()["name"] == "Acme Inc"
        assert response.json()["slug"] == "acme-inc"

        response = await client.patch(f"/organizations/{org.id}", json={"slug": "globex"}, headers=auth(admin))
        assert response.status_code == 409
