"""
rbac/seed.py -- Default permission catalogue and system roles.

seed_defaults() is idempotent: existing permissions and roles are found by
name and left as they are, so it runs safely on every startup
(SEED_ON_STARTUP) and from `python main.py seed`.
"""

from __future__ import annotations

import logging

from auth.errors import Failure
from rbac.store import PermissionGraph

logger = logging.getLogger("gatehouse.rbac")

DEFAULT_PERMISSIONS: tuple[tuple[str, str], ...] = (
    ("users:create", "Create users"),
    ("users:read", "View users"),
    ("users:update", "Update users"),
    ("users:delete", "Delete users"),
    ("users:search", "Search users"),
    ("users:bulk-delete", "Delete users in bulk"),
    ("roles:create", "Create roles"),
    ("roles:read", "View roles"),
    ("roles:update", "Update roles"),
    ("roles:delete", "Delete roles"),
    ("permissions:create", "Create permissions"),
    ("permissions:read", "View permissions"),
    ("user-roles:assign", "Assign roles to users"),
    ("user-roles:remove", "Remove roles from users"),
    ("auth:manage", "Manage authentication settings"),
    ("posts:create", "Create posts"),
    ("posts:read", "View posts"),
    ("posts:update", "Update posts"),
    ("posts:delete", "Delete posts"),
    ("posts:publish", "Publish posts"),
)

# None means every permission in the catalogue.
DEFAULT_ROLES: tuple[tuple[str, str, tuple[str, ...] | None], ...] = (
    ("Admin", "Full access to every resource", None),
    ("User", "Standard account", ("users:read", "posts:read", "posts:create", "posts:update")),
    (
        "Moderator",
        "Moderates content and users",
        (
            "users:read",
            "users:search",
            "roles:read",
            "posts:create",
            "posts:read",
            "posts:update",
            "posts:delete",
            "posts:publish",
        ),
    ),
    ("Editor", "Manages posts", ("posts:create", "posts:read", "posts:update", "posts:delete")),
)

ADMIN_ROLE = "Admin"


def seed_defaults(graph: PermissionGraph) -> dict[str, int]:
    """Create missing default permissions and system roles.

    Returns counts of what was created: {"permissions": n, "roles": m}.
    """
    ids: dict[str, int] = {}
    created_permissions = 0
    for name, description in DEFAULT_PERMISSIONS:
        existing = graph.get_permission_by_name(name)
        if existing is None:
            result = graph.create_permission(name, description)
            if isinstance(result, Failure):
                # Lost a race with a concurrent seeder; the row exists now.
                existing = graph.get_permission_by_name(name)
            else:
                existing = result
                created_permissions += 1
        ids[name] = existing.id

    created_roles = 0
    for name, description, grants in DEFAULT_ROLES:
        if graph.get_role_by_name(name) is not None:
            continue
        wanted = list(ids.values()) if grants is None else [ids[g] for g in grants]
        result = graph.create_role(name, description, wanted, is_system_role=True)
        if not isinstance(result, Failure):
            created_roles += 1

    if created_permissions or created_roles:
        logger.info("Seeded %d permissions and %d roles", created_permissions, created_roles)
    return {"permissions": created_permissions, "roles": created_roles}
