"""Caller identity and elevation grants.

A `CallerContext` is what the Validation Gate and the permissions pipeline
see of the requester. Elevated access is never a bare boolean: whenever a
caller is allowed to mutate, an `ElevationGrant` records *why*, and that
grant is copied into every trace and audit entry the mutation produces.

Grant kinds:
  admin_role      → the user holds the `admin` role in `user_roles`
  guest_override  → the "continue as guest" affordance was used; treated
                    as satisfying the admin check, not as bypassing it
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone


class GrantKind(str, enum.Enum):
    ADMIN_ROLE = "admin_role"
    GUEST_OVERRIDE = "guest_override"


@dataclass(frozen=True)
class ElevationGrant:
    kind: GrantKind
    subject: str | None
    reason: str
    granted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def admin_role(cls, user_id: str) -> "ElevationGrant":
        return cls(
            kind=GrantKind.ADMIN_ROLE,
            subject=user_id,
            reason="user holds the admin role",
        )

    @classmethod
    def guest_override(cls, guest_id: str | None = None) -> "ElevationGrant":
        return cls(
            kind=GrantKind.GUEST_OVERRIDE,
            subject=guest_id,
            reason="continue-as-guest override",
        )

    def as_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "subject": self.subject,
            "reason": self.reason,
            "granted_at": self.granted_at.isoformat(),
        }


@dataclass(frozen=True)
class CallerContext:
    user_id: str | None = None
    is_authenticated: bool = False
    is_admin: bool = False
    grant: ElevationGrant | None = None

    @classmethod
    def anonymous(cls) -> "CallerContext":
        return cls()

    @classmethod
    def for_user(cls, user_id: str, is_admin: bool) -> "CallerContext":
        return cls(
            user_id=user_id,
            is_authenticated=True,
            is_admin=is_admin,
            grant=ElevationGrant.admin_role(user_id) if is_admin else None,
        )

    @classmethod
    def for_guest(cls, guest_id: str | None = None) -> "CallerContext":
        return cls(
            user_id=None,
            is_authenticated=True,
            is_admin=False,
            grant=ElevationGrant.guest_override(guest_id),
        )

    @property
    def is_guest(self) -> bool:
        return self.grant is not None and self.grant.kind == GrantKind.GUEST_OVERRIDE

    @property
    def has_admin_rights(self) -> bool:
        return self.is_admin or self.is_guest

    def with_admin(self, is_admin: bool) -> "CallerContext":
        """Return a copy reflecting a freshly resolved role."""
        if self.is_guest:
            return replace(self, is_admin=is_admin)
        grant = ElevationGrant.admin_role(self.user_id) if is_admin and self.user_id else None
        return replace(self, is_admin=is_admin, grant=grant)

    def as_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "is_authenticated": self.is_authenticated,
            "is_admin": self.is_admin,
            "is_guest": self.is_guest,
            "grant": self.grant.as_dict() if self.grant else None,
        }
