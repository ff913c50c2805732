"""
auth/roles.py -- Role ranks, granted permissions, and role-transition guards.

Roles form a total order: USER < MANAGER < ADMIN < SUPER_ADMIN. Each role owns
a fixed permission set. The permissions travel inside access tokens for
downstream checks; the engine itself only compares ranks.

Two guards live here, both pure functions with no I/O:

  can_act(actor, target)
      Whether an account holding ``actor`` may perform a privileged mutation
      (role change, deactivation) on an account holding ``target``.

  transition(current, target)
      Whether ``current -> target`` is an allowed edge. Asking for the role the
      account already holds is an explicit failure, never a silent success, so
      the caller can surface a 409 instead of a false "updated".

Named operations (promote_manager, downgrade_admin, ...) fix a target role and a
direction. apply_transition() checks the direction against the current role
before delegating to transition().

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum

from auth.errors import AuthError, AuthErrorKind


class Role(str, Enum):
    USER = "USER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"

    @property
    def rank(self) -> int:
        return _RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Role):
            return NotImplemented
        return self.rank >= other.rank


_RANK = {Role.USER: 0, Role.MANAGER: 1, Role.ADMIN: 2, Role.SUPER_ADMIN: 3}


class Permission(str, Enum):
    USER_READ = "user:read"
    USER_WRITE = "user:write"
    USER_UPDATE = "user:update"
    USER_DELETE = "user:delete"
    ITEM_READ = "item:read"
    ITEM_WRITE = "item:write"
    ITEM_UPDATE = "item:update"
    ITEM_DELETE = "item:delete"


_USER_PERMISSIONS = frozenset({Permission.USER_READ, Permission.ITEM_READ})
_MANAGER_PERMISSIONS = _USER_PERMISSIONS | {
    Permission.USER_WRITE,
    Permission.USER_UPDATE,
    Permission.ITEM_WRITE,
    Permission.ITEM_UPDATE,
}
_ADMIN_PERMISSIONS = _MANAGER_PERMISSIONS | {Permission.USER_DELETE, Permission.ITEM_DELETE}

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.USER: _USER_PERMISSIONS,
    Role.MANAGER: _MANAGER_PERMISSIONS,
    Role.ADMIN: _ADMIN_PERMISSIONS,
    Role.SUPER_ADMIN: _ADMIN_PERMISSIONS,
}


def permissions_for(role: Role) -> tuple[str, ...]:
    """Permission strings granted to ``role``, sorted for stable token claims."""
    return tuple(sorted(p.value for p in ROLE_PERMISSIONS[role]))


def authorities(role: Role) -> frozenset[str]:
    """Permission strings plus the ROLE_<NAME> authority."""
    return frozenset(permissions_for(role)) | {f"ROLE_{role.value}"}


def has_authority(role: Role, authority: str) -> bool:
    return authority in authorities(role)


# ---------------------------------------------------------------------------
# Actor vs target
# ---------------------------------------------------------------------------


def can_act(actor: Role, target: Role) -> bool:
    if actor in (Role.ADMIN, Role.SUPER_ADMIN):
        return True
    if actor is Role.MANAGER:
        return target in (Role.USER, Role.MANAGER)
    return False


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

# Directed edges on the rank order. SUPER_ADMIN is deliberately absent: it is
# provisioned out of band and never granted or removed through the API.
_EDGES: frozenset[tuple[Role, Role]] = frozenset(
    {
        (Role.USER, Role.MANAGER),
        (Role.MANAGER, Role.ADMIN),
        (Role.USER, Role.ADMIN),
        (Role.ADMIN, Role.MANAGER),
        (Role.MANAGER, Role.USER),
        (Role.ADMIN, Role.USER),
    }
)


def transition(current: Role, target: Role) -> Role:
    """Validate ``current -> target`` and return the new role."""
    if current is target:
        raise AuthError(AuthErrorKind.ROLE_ALREADY_AT_TARGET, f"already {target.value}")
    if (current, target) not in _EDGES:
        raise AuthError(AuthErrorKind.INVALID_DIRECTION, f"{current.value} -> {target.value}")
    return target


class RoleOperation(str, Enum):
    """Named role changes exposed to administrators.

    ``downgrade_admin`` steps an ADMIN down one rank to MANAGER; the two
    ``revoke_*`` operations drop straight back to USER.
    """

    PROMOTE_MANAGER = "promote_manager"
    PROMOTE_ADMIN = "promote_admin"
    DOWNGRADE_ADMIN = "downgrade_admin"
    REVOKE_MANAGER = "revoke_manager"
    REVOKE_ADMIN = "revoke_admin"

    @property
    def target(self) -> Role:
        return _OPERATION_TARGET[self]

    @property
    def is_promotion(self) -> bool:
        return self in (RoleOperation.PROMOTE_MANAGER, RoleOperation.PROMOTE_ADMIN)

    @property
    def minimum_actor(self) -> Role:
        """Lowest rank allowed to run this operation at all.

        Anything that grants or removes ADMIN is reserved to administrators;
        managers may only move accounts between USER and MANAGER.
        """
        if self in (RoleOperation.PROMOTE_MANAGER, RoleOperation.REVOKE_MANAGER):
            return Role.MANAGER
        return Role.ADMIN


_OPERATION_TARGET = {
    RoleOperation.PROMOTE_MANAGER: Role.MANAGER,
    RoleOperation.PROMOTE_ADMIN: Role.ADMIN,
    RoleOperation.DOWNGRADE_ADMIN: Role.MANAGER,
    RoleOperation.REVOKE_MANAGER: Role.USER,
    RoleOperation.REVOKE_ADMIN: Role.USER,
}


def apply_transition(current: Role, operation: RoleOperation) -> Role:
    """Run a named operation against ``current`` and return the new role.

    A promotion aimed at an account that already sits at or above the target
    rank is a conflict ("already an admin"). A demotion aimed at an account
    below the target rank is the wrong direction ("lower rights than desired").
    """
    target = operation.target
    if operation.is_promotion and current > target:
        raise AuthError(AuthErrorKind.ROLE_ALREADY_AT_TARGET, f"{current.value} outranks {target.value}")
    if not operation.is_promotion and current < target:
        raise AuthError(AuthErrorKind.INVALID_DIRECTION, f"{current.value} is below {target.value}")
    return transition(current, target)
