"""
rbac/models.py -- Domain dataclasses for the permission graph.

Permission and Role are frozen: the graph hands out snapshots, and
effective_permissions() returns a set of Permission, which needs them
hashable. Timestamps are excluded from equality and hashing, so two
snapshots of the same row compare equal.

Layer rule: no imports from api/, auth/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Permission:
    """A named capability, conventionally "resource:action" (e.g. "users:create")."""

    id: int
    name: str
    description: str = ""
    resource: str = ""
    action: str = ""
    created_at: str | None = field(default=None, compare=False)
    updated_at: str | None = field(default=None, compare=False)


@dataclass(frozen=True)
class Role:
    """A named bundle of permissions. System roles cannot be deleted or renamed."""

    id: int
    name: str
    description: str = ""
    is_system_role: bool = False
    permissions: tuple[Permission, ...] = ()
    created_at: str | None = field(default=None, compare=False)
    updated_at: str | None = field(default=None, compare=False)

    @property
    def permission_names(self) -> list[str]:
        return [p.name for p in self.permissions]


@dataclass(frozen=True)
class RoleStatistics:
    total: int
    system: int
    custom: int


@dataclass(frozen=True)
class PermissionStatistics:
    total: int
    resources: int
    by_resource: dict = field(default_factory=dict, hash=False)
