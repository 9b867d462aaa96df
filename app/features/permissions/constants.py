"""
Default RBAC catalog: role names, permission keys and the role→permission
mapping installed by seed_rbac(). Use these instead of raw string literals.
"""
import enum


class RoleName(str, enum.Enum):
    OWNER = "Owner"
    ADMIN = "Admin"
    MEMBER = "Member"


class PermissionKey(str, enum.Enum):
    ORG_UPDATE = "org.update"
    ORG_DELETE = "org.delete"
    MEMBERS_INVITE = "members.invite"
    MEMBERS_REMOVE = "members.remove"
    MEMBERS_UPDATE_ROLE = "members.update_role"
    OWNERSHIP_TRANSFER = "ownership.transfer"
    BILLING_VIEW = "billing.view"
    BILLING_MANAGE = "billing.manage"
    PLANS_VIEW = "plans.view"


# (key, description, category)
DEFAULT_PERMISSIONS = [
    (PermissionKey.ORG_UPDATE, "Update organization details", "Organization"),
    (PermissionKey.ORG_DELETE, "Delete the organization", "Organization"),
    (PermissionKey.MEMBERS_INVITE, "Invite new members", "Members"),
    (PermissionKey.MEMBERS_REMOVE, "Remove members from the organization", "Members"),
    (PermissionKey.MEMBERS_UPDATE_ROLE, "Change member roles", "Members"),
    (PermissionKey.OWNERSHIP_TRANSFER, "Transfer organization ownership", "Members"),
    (PermissionKey.BILLING_VIEW, "View billing and subscription info", "Billing"),
    (PermissionKey.BILLING_MANAGE, "Manage subscriptions and payments", "Billing"),
    (PermissionKey.PLANS_VIEW, "View available plans and pricing", "Billing"),
]


DEFAULT_ROLES = {
    RoleName.OWNER: {
        "description": "Organization owner with every permission",
        "permissions": [key for key in PermissionKey],
    },
    RoleName.ADMIN: {
        "description": "Manages the organization, its members and billing",
        "permissions": [
            PermissionKey.ORG_UPDATE,
            PermissionKey.MEMBERS_INVITE,
            PermissionKey.MEMBERS_REMOVE,
            PermissionKey.BILLING_VIEW,
            PermissionKey.BILLING_MANAGE,
            PermissionKey.PLANS_VIEW,
        ],
    },
    RoleName.MEMBER: {
        "description": "Regular organization member",
        "permissions": [PermissionKey.BILLING_VIEW],
    },
}
