"""
rbac/store.py -- Permission graph: users -> roles -> permissions.

Pattern: Repository + Data Mapper over four tables (permissions, roles,
role_permissions, user_roles). Associations are plain rows with explicit
add/remove/exists operations; nothing is cached, so effective_permissions()
always reflects the current assignments.

Transactions:
  create_role(), update_role() and delete_role() run in one engine.begin()
  block each. A role is never visible with a partial permission set, and a
  deleted role never leaves orphaned association rows (the schema also
  cascades, so a delete from any other path behaves the same).

Layer rule: no imports from api/ or cache/. auth.errors supplies the shared
Failure type.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from sqlalchemy import and_, delete, func, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import ErrorCode, Failure
from core.clock import Clock, to_iso, utc_now
from core.schema import permissions as _permissions
from core.schema import role_permissions as _role_permissions
from core.schema import roles as _roles
from core.schema import user_roles as _user_roles
from core.schema import users as _users
from rbac.models import Permission, PermissionStatistics, Role, RoleStatistics

logger = logging.getLogger("gatehouse.rbac")

_OTHER_RESOURCE = "other"


class PermissionGraph:
    """Repository for permissions, roles and their assignments.

    Usage:
        graph = PermissionGraph(engine)
        perm = graph.create_permission("posts:publish", "Publish posts")
        role = graph.create_role("Editor", "Edits posts", [perm.id])
        graph.assign_role(user_id, role.id)
        graph.effective_permissions(user_id)
    """

    def __init__(self, engine: Engine, clock: Clock = utc_now) -> None:
        self.engine = engine
        self._clock = clock

    def _now(self) -> str:
        return to_iso(self._clock())

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(
        self,
        name: str,
        description: str = "",
        resource: str | None = None,
        action: str | None = None,
    ) -> Permission | Failure:
        """Create a permission. resource/action default to the halves of "resource:action"."""
        name = name.strip()
        if resource is None or action is None:
            parsed_resource, _, parsed_action = name.partition(":")
            resource = parsed_resource if resource is None else resource
            action = parsed_action if action is None else action
        now = self._now()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _permissions.insert().values(
                        name=name,
                        description=description,
                        resource=resource,
                        action=action,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError:
            return Failure(ErrorCode.duplicate_name, f"Permission '{name}' already exists.")
        logger.info("Created permission %s", name)
        return Permission(
            id=result.inserted_primary_key[0],
            name=name,
            description=description,
            resource=resource,
            action=action,
            created_at=now,
            updated_at=now,
        )

    def get_permission(self, permission_id: int) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permission_by_name(self, name: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.name == name)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def list_permissions(self) -> list[Permission]:
        """Return every permission ordered by resource, then action."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _permissions.select().order_by(_permissions.c.resource, _permissions.c.action, _permissions.c.id)
            ).fetchall()
        return [_row_to_permission(r) for r in rows]

    def update_permission(self, permission_id: int, **fields) -> Permission | Failure:
        """Update name, description, resource or action of a permission."""
        allowed = {"name", "description", "resource", "action"}
        unknown = set(fields) - allowed
        if unknown:
            raise ValueError(f"Unknown permission fields: {sorted(unknown)!r}")
        changes = {k: v for k, v in fields.items() if v is not None}
        if self.get_permission(permission_id) is None:
            return Failure(ErrorCode.not_found, "Permission not found.")
        if changes:
            try:
                with self.engine.connect() as conn:
                    conn.execute(
                        _permissions.update()
                        .where(_permissions.c.id == permission_id)
                        .values(updated_at=self._now(), **changes)
                    )
                    conn.commit()
            except IntegrityError:
                return Failure(ErrorCode.duplicate_name, f"Permission '{changes.get('name')}' already exists.")
        return self.get_permission(permission_id)

    def delete_permission(self, permission_id: int) -> Failure | None:
        """Delete a permission that no role references."""
        with self.engine.begin() as conn:
            exists = conn.execute(select(_permissions.c.id).where(_permissions.c.id == permission_id)).fetchone()
            if exists is None:
                return Failure(ErrorCode.not_found, "Permission not found.")
            in_use = conn.execute(
                select(func.count())
                .select_from(_role_permissions)
                .where(_role_permissions.c.permission_id == permission_id)
            ).scalar()
            if in_use:
                return Failure(ErrorCode.permission_in_use, f"Permission is granted by {in_use} role(s).")
            conn.execute(delete(_permissions).where(_permissions.c.id == permission_id))
        logger.info("Deleted permission %s", permission_id)
        return None

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(
        self,
        name: str,
        description: str = "",
        permission_ids: Iterable[int] = (),
        is_system_role: bool = False,
    ) -> Role | Failure:
        """Create a role with its permission set, all or nothing."""
        name = name.strip()
        wanted = sorted(set(permission_ids))
        now = self._now()
        try:
            with self.engine.begin() as conn:
                missing = _missing_permission_ids(conn, wanted)
                if missing:
                    return Failure(ErrorCode.unknown_permission_id, f"Unknown permission ids: {missing}")
                result = conn.execute(
                    _roles.insert().values(
                        name=name,
                        description=description,
                        is_system_role=1 if is_system_role else 0,
                        created_at=now,
                        updated_at=now,
                    )
                )
                role_id = result.inserted_primary_key[0]
                _link_permissions(conn, role_id, wanted)
        except IntegrityError:
            return Failure(ErrorCode.duplicate_name, f"Role '{name}' already exists.")
        logger.info("Created role %s with %d permissions", name, len(wanted))
        return self.get_role(role_id)

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
            if row is None:
                return None
            perms = _permissions_for_roles(conn, [row.id])
        return _row_to_role(row, perms.get(row.id, ()))

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
            if row is None:
                return None
            perms = _permissions_for_roles(conn, [row.id])
        return _row_to_role(row, perms.get(row.id, ()))

    def list_roles(self) -> list[Role]:
        """Return every role with its permissions, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.created_at.desc(), _roles.c.id.desc())).fetchall()
            perms = _permissions_for_roles(conn, [r.id for r in rows])
        return [_row_to_role(r, perms.get(r.id, ())) for r in rows]

    def update_role(
        self,
        role_id: int,
        name: str | None = None,
        description: str | None = None,
        permission_ids: Iterable[int] | None = None,
    ) -> Role | Failure:
        """Update a role. permission_ids, when given, replaces the whole set.

        System roles keep their name and cannot be stripped of every permission.
        """
        wanted = sorted(set(permission_ids)) if permission_ids is not None else None
        try:
            with self.engine.begin() as conn:
                row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
                if row is None:
                    return Failure(ErrorCode.not_found, "Role not found.")
                if row.is_system_role:
                    if name is not None and name.strip() != row.name:
                        return Failure(ErrorCode.system_role_protected, "System roles cannot be renamed.")
                    if wanted is not None and not wanted:
                        return Failure(
                            ErrorCode.system_role_protected, "System roles cannot have every permission removed."
                        )
                changes: dict = {"updated_at": self._now()}
                if name is not None:
                    changes["name"] = name.strip()
                if description is not None:
                    changes["description"] = description
                if wanted is not None:
                    missing = _missing_permission_ids(conn, wanted)
                    if missing:
                        return Failure(ErrorCode.unknown_permission_id, f"Unknown permission ids: {missing}")
                    conn.execute(delete(_role_permissions).where(_role_permissions.c.role_id == role_id))
                    _link_permissions(conn, role_id, wanted)
                conn.execute(_roles.update().where(_roles.c.id == role_id).values(**changes))
        except IntegrityError:
            return Failure(ErrorCode.duplicate_name, f"Role '{name}' already exists.")
        logger.info("Updated role %s", role_id)
        return self.get_role(role_id)

    def delete_role(self, role_id: int) -> Failure | None:
        """Delete a non-system role together with its association rows."""
        with self.engine.begin() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
            if row is None:
                return Failure(ErrorCode.not_found, "Role not found.")
            if row.is_system_role:
                return Failure(ErrorCode.system_role_protected, "System roles cannot be deleted.")
            conn.execute(delete(_role_permissions).where(_role_permissions.c.role_id == role_id))
            conn.execute(delete(_user_roles).where(_user_roles.c.role_id == role_id))
            conn.execute(delete(_roles).where(_roles.c.id == role_id))
        logger.info("Deleted role %s (%s)", role_id, row.name)
        return None

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def assign_role(self, user_id: int, role_id: int) -> Failure | None:
        """Grant role_id to user_id. Assigning an already-held role is a no-op."""
        return self.assign_roles(user_id, [role_id])

    def assign_roles(self, user_id: int, role_ids: Iterable[int]) -> Failure | None:
        """Grant several roles at once. Fails without changes if any role is unknown."""
        wanted = sorted(set(role_ids))
        try:
            return self._insert_assignments(user_id, wanted)
        except IntegrityError:
            # A concurrent assign committed one of the rows first. Re-reading
            # sees it as held, so the retry inserts only what is still missing.
            return self._insert_assignments(user_id, wanted)

    def _insert_assignments(self, user_id: int, wanted: list[int]) -> Failure | None:
        with self.engine.begin() as conn:
            user = conn.execute(select(_users.c.id).where(_users.c.id == user_id)).fetchone()
            if user is None:
                return Failure(ErrorCode.not_found, "User not found.")
            found = set(conn.execute(select(_roles.c.id).where(_roles.c.id.in_(wanted))).scalars())
            missing = [rid for rid in wanted if rid not in found]
            if missing:
                return Failure(ErrorCode.not_found, f"Unknown role ids: {missing}")
            held = set(
                conn.execute(select(_user_roles.c.role_id).where(_user_roles.c.user_id == user_id)).scalars()
            )
            new = [rid for rid in wanted if rid not in held]
            if new:
                conn.execute(_user_roles.insert(), [{"user_id": user_id, "role_id": rid} for rid in new])
        if new:
            logger.info("Assigned roles %s to user %s", new, user_id)
        return None

    def unassign_role(self, user_id: int, role_id: int) -> bool:
        """Remove role_id from user_id. Returns False if it was not assigned."""
        with self.engine.connect() as conn:
            result = conn.execute(
                delete(_user_roles).where(and_(_user_roles.c.user_id == user_id, _user_roles.c.role_id == role_id))
            )
            conn.commit()
        if result.rowcount:
            logger.info("Removed role %s from user %s", role_id, user_id)
        return result.rowcount > 0

    def has_role(self, user_id: int, role_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_user_roles.c.role_id).where(
                    and_(_user_roles.c.user_id == user_id, _user_roles.c.role_id == role_id)
                )
            ).fetchone()
        return row is not None

    def user_roles(self, user_id: int) -> list[Role]:
        """Return the roles assigned to user_id, ordered by name."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _roles.select()
                .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
                .where(_user_roles.c.user_id == user_id)
                .order_by(_roles.c.name)
            ).fetchall()
            perms = _permissions_for_roles(conn, [r.id for r in rows])
        return [_row_to_role(r, perms.get(r.id, ())) for r in rows]

    def effective_permissions(self, user_id: int) -> set[Permission]:
        """Union of the permissions of every role assigned to user_id."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_permissions)
                .distinct()
                .join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id)
                .join(_user_roles, _user_roles.c.role_id == _role_permissions.c.role_id)
                .where(_user_roles.c.user_id == user_id)
            ).fetchall()
        return {_row_to_permission(r) for r in rows}

    def effective_permission_names(self, user_id: int) -> set[str]:
        return {p.name for p in self.effective_permissions(user_id)}

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def role_statistics(self) -> RoleStatistics:
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_roles)).scalar() or 0
            system = (
                conn.execute(select(func.count()).select_from(_roles).where(_roles.c.is_system_role == 1)).scalar()
                or 0
            )
        return RoleStatistics(total=total, system=system, custom=total - system)

    def permission_statistics(self) -> PermissionStatistics:
        grouped = group_by_resource(self.list_permissions())
        return PermissionStatistics(
            total=sum(len(v) for v in grouped.values()),
            resources=len(grouped),
            by_resource={k: len(v) for k, v in grouped.items()},
        )


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


def group_by_resource(permissions: Iterable[Permission]) -> dict[str, list[Permission]]:
    """Group permissions by resource, keeping input order. Blank resources go under "other"."""
    grouped: dict[str, list[Permission]] = {}
    for perm in permissions:
        key = perm.resource.strip() if perm.resource and perm.resource.strip() else _OTHER_RESOURCE
        grouped.setdefault(key, []).append(perm)
    return grouped


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _missing_permission_ids(conn: Connection, permission_ids: list[int]) -> list[int]:
    if not permission_ids:
        return []
    found = set(conn.execute(select(_permissions.c.id).where(_permissions.c.id.in_(permission_ids))).scalars())
    return [pid for pid in permission_ids if pid not in found]


def _link_permissions(conn: Connection, role_id: int, permission_ids: list[int]) -> None:
    if permission_ids:
        conn.execute(
            _role_permissions.insert(),
            [{"role_id": role_id, "permission_id": pid} for pid in permission_ids],
        )


def _permissions_for_roles(conn: Connection, role_ids: list[int]) -> dict[int, tuple[Permission, ...]]:
    if not role_ids:
        return {}
    rows = conn.execute(
        select(_role_permissions.c.role_id, _permissions)
        .join(_permissions, _permissions.c.id == _role_permissions.c.permission_id)
        .where(_role_permissions.c.role_id.in_(role_ids))
        .order_by(_permissions.c.resource, _permissions.c.action)
    ).fetchall()
    result: dict[int, list[Permission]] = {}
    for row in rows:
        result.setdefault(row.role_id, []).append(_row_to_permission(row))
    return {rid: tuple(perms) for rid, perms in result.items()}


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        name=row.name,
        description=row.description,
        resource=row.resource,
        action=row.action,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row, permissions: tuple[Permission, ...]) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        is_system_role=bool(row.is_system_role),
        permissions=tuple(permissions),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
