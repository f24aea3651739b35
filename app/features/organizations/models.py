"""
Organization models.

An Organization owns its admin memberships. Every change to the admin set goes
through the aggregate methods on Organization, which re-check the membership
invariants and touch the organization row so its version counter moves.
"""
from datetime import datetime, timezone
from typing import Any, Mapping
from sqlalchemy import (
    String, ForeignKey, Boolean, Integer, JSON, DateTime, UniqueConstraint, Enum as SQLEnum, event
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
import enum

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.permissions.catalog import (
    Capability,
    RESTRICTED_CAPABILITIES,
    SECONDARY_ADMIN_OVERRIDES,
    merge_permissions,
)
from app.features.permissions.errors import IntegrityFault


class AdminSubRole(str, enum.Enum):
    """Admin standing within one organization."""
    PRIMARY_ADMIN = "primary_admin"
    SECONDARY_ADMIN = "secondary_admin"


class Organization(Base, TimestampMixin):
    """
    Organization (tenant) model.
    
    Holds the admin membership set. `version` is an optimistic-lock counter:
    a flush that updates a stale row raises StaleDataError.
    """
    __tablename__ = "organizations"
    
    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    
    # Stats, kept in step with the admin set
    admin_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    admins_changed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    
    # Relationships
    admins: Mapped[list["AdminMembership"]] = relationship(
        "AdminMembership",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="AdminMembership.added_at"
    )
    
    __mapper_args__ = {"version_id_col": version}
    
    def find_admin(self, user_id: str) -> "AdminMembership | None":
        """Membership record for `user_id`, if the user is an admin here."""
        for membership in self.admins:
            if membership.user_id == user_id:
                return membership
        return None
    
    @property
    def primary_admin(self) -> "AdminMembership | None":
        for membership in self.admins:
            if membership.sub_role == AdminSubRole.PRIMARY_ADMIN:
                return membership
        return None
    
    def check_invariants(self) -> None:
        """
        Verify the admin set.
        
        Raises:
            IntegrityFault: on a second primary admin, a duplicate user, or a
                secondary admin holding a restricted capability
        """
        primaries = [m.user_id for m in self.admins if m.sub_role == AdminSubRole.PRIMARY_ADMIN]
        if len(primaries) > 1:
            raise IntegrityFault(
                "Organization has more than one primary admin",
                organization_id=self.id, primary_admins=primaries
            )
        
        seen: set[str] = set()
        for membership in self.admins:
            if membership.user_id in seen:
                raise IntegrityFault(
                    "Duplicate admin membership",
                    organization_id=self.id, user_id=membership.user_id
                )
            seen.add(membership.user_id)
            
            if membership.sub_role == AdminSubRole.SECONDARY_ADMIN:
                elevated = [c.value for c in RESTRICTED_CAPABILITIES if (membership.permissions or {}).get(c.value)]
                if elevated:
                    raise IntegrityFault(
                        "Secondary admin holds restricted capabilities",
                        organization_id=self.id, user_id=membership.user_id, capabilities=sorted(elevated)
                    )
    
    def add_admin(
        self,
        user_id: str,
        sub_role: AdminSubRole,
        permissions: Mapping[Any, bool],
        added_by_id: str | None,
    ) -> "AdminMembership":
        """Append a membership; restricted capabilities are cleared for secondary admins."""
        if self.find_admin(user_id) is not None:
            raise IntegrityFault("User is already an admin of this organization", organization_id=self.id, user_id=user_id)
        if sub_role == AdminSubRole.PRIMARY_ADMIN and self.primary_admin is not None:
            raise IntegrityFault("Organization already has a primary admin", organization_id=self.id, user_id=user_id)
        
        membership = AdminMembership(
            id=generate_ulid(),
            organization_id=self.id,
            user_id=user_id,
            sub_role=sub_role,
            permissions=enforce_sub_role_permissions(sub_role, permissions),
            added_at=datetime.now(timezone.utc),
            added_by_id=added_by_id,
        )
        self.admins.append(membership)
        self._admins_changed()
        return membership
    
    def update_admin_permissions(self, user_id: str, permissions: Mapping[Any, bool]) -> "AdminMembership":
        """Merge `permissions` over a secondary admin's current map."""
        membership = self._require_secondary(user_id)
        membership.permissions = enforce_sub_role_permissions(
            membership.sub_role, merge_permissions(membership.permissions, permissions)
        )
        self._admins_changed()
        return membership
    
    def remove_admin(self, user_id: str) -> "AdminMembership":
        """Drop a secondary admin's membership (deleted on flush)."""
        membership = self._require_secondary(user_id)
        self.admins.remove(membership)
        self._admins_changed()
        return membership
    
    def discard_admin(self, user_id: str) -> "AdminMembership | None":
        """Drop any membership for `user_id`, primary included. Used for repairs only."""
        membership = self.find_admin(user_id)
        if membership is None:
            return None
        self.admins.remove(membership)
        self._admins_changed()
        return membership

    def _require_secondary(self, user_id: str) -> "AdminMembership":
        membership = self.find_admin(user_id)
        if membership is None:
            raise IntegrityFault("Admin membership not found", organization_id=self.id, user_id=user_id)
        if membership.sub_role == AdminSubRole.PRIMARY_ADMIN:
            raise IntegrityFault("Primary admin membership cannot be changed", organization_id=self.id, user_id=user_id)
        return membership
    
    def _admins_changed(self) -> None:
        # Always dirties the row, so the version check runs on flush
        self.admin_count = len(self.admins)
        self.admins_changed_at = datetime.now(timezone.utc)
        self.check_invariants()
    
    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r}, admins={self.admin_count})>"


class AdminMembership(Base):
    """
    One user's admin standing within one organization.
    """
    __tablename__ = "organization_admins"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_organization_admin_user"),
    )
    
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    
    # Foreign keys
    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    
    sub_role: Mapped[AdminSubRole] = mapped_column(
        SQLEnum(AdminSubRole, values_callable=lambda roles: [r.value for r in roles]),
        nullable=False
    )
    # {"canEnrollStudents": true, ...}
    permissions: Mapped[dict[str, bool]] = mapped_column(JSON, nullable=False, default=dict)
    
    # Provenance
    added_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc)
    )
    added_by_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True
    )
    
    @property
    def is_primary(self) -> bool:
        return self.sub_role == AdminSubRole.PRIMARY_ADMIN
    
    def has_capability(self, capability: Capability) -> bool:
        return (self.permissions or {}).get(capability.value) is True
    
    def __repr__(self) -> str:
        return f"<AdminMembership(org_id={self.organization_id}, user_id={self.user_id}, role={self.sub_role})>"


def enforce_sub_role_permissions(sub_role: AdminSubRole, permissions: Mapping[Any, bool] | None) -> dict[str, bool]:
    """Full permission map for `sub_role`, with restricted capabilities forced off for secondary admins."""
    if sub_role == AdminSubRole.SECONDARY_ADMIN:
        return merge_permissions(permissions, overrides=SECONDARY_ADMIN_OVERRIDES)
    return merge_permissions(permissions)


@event.listens_for(AdminMembership, "before_insert")
@event.listens_for(AdminMembership, "before_update")
def _enforce_on_write(_mapper, _connection, target: AdminMembership) -> None:
    enforced = enforce_sub_role_permissions(target.sub_role, target.permissions)
    if enforced != target.permissions:
        target.permissions = enforced
