"""
Authorization decision engine.

One parameterized check replaces the per-route role, organization and
capability guards. A requirement is built from small parts and combined with
``&``:

    PrimaryAdminOnly() & AdminCapabilities({Capability.MANAGE_ADMINS})

`AuthorizationEngine.authorize` evaluates it in a fixed order and returns a
`Decision`. Denials carry a `ReasonCode` (and, for capability checks, the
exact missing set); they are values, not exceptions.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Protocol

from app.features.organizations.models import AdminSubRole, Organization
from app.features.permissions.catalog import (
    Capability,
    PRIMARY_ADMIN_PERMISSIONS,
    ResourceKind,
    granted_capabilities,
    required_capabilities,
)
from app.features.permissions.errors import DEFAULT_MESSAGES, ReasonCode, StoreUnavailableError
from app.features.permissions.roles import GlobalRole, at_least
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Principal
# ============================================================================

@dataclass(frozen=True)
class Principal:
    """Immutable snapshot of the authenticated actor."""
    id: str
    role: GlobalRole
    organization_id: str | None = None

    @classmethod
    def from_user(cls, user: Any) -> "Principal":
        return cls(id=user.id, role=GlobalRole(user.role), organization_id=user.organization_id)

    @property
    def is_super_admin(self) -> bool:
        return self.role == GlobalRole.SUPER_ADMIN


# ============================================================================
# Requirements
# ============================================================================

class Requirement:
    """Base class for requirement parts; `a & b` builds a conjunction."""

    def __and__(self, other: "Requirement") -> "AllOf":
        return AllOf(tuple(self.parts()) + tuple(other.parts()))

    def parts(self) -> Iterator["Requirement"]:
        yield self


@dataclass(frozen=True)
class MinRole(Requirement):
    role: GlobalRole


@dataclass(frozen=True)
class ExactRoles(Requirement):
    roles: frozenset[GlobalRole]

    def __init__(self, roles: Iterable[GlobalRole | str]):
        object.__setattr__(self, "roles", frozenset(GlobalRole(r) for r in roles))


@dataclass(frozen=True)
class OrganizationMember(Requirement):
    """Principal must be an admin of the organization it belongs to."""


@dataclass(frozen=True)
class OrganizationAccess(Requirement):
    """Principal must belong to `organization_id`."""
    organization_id: str


@dataclass(frozen=True)
class AdminCapabilities(Requirement):
    capabilities: frozenset[Capability]

    def __init__(self, capabilities: Iterable[Capability | str]):
        object.__setattr__(self, "capabilities", frozenset(Capability(c) for c in capabilities))


@dataclass(frozen=True)
class PrimaryAdminOnly(Requirement):
    pass


@dataclass(frozen=True)
class AllOf(Requirement):
    requirements: tuple[Requirement, ...]

    def parts(self) -> Iterator[Requirement]:
        for requirement in self.requirements:
            yield from requirement.parts()


ADMIN_ROLE = ExactRoles({GlobalRole.ADMIN})


def manage_resource(kind: ResourceKind | str) -> AdminCapabilities:
    """
    Requirement for managing a resource kind.

    Raises:
        ValueError: for an unknown kind; resolve these when routes are declared
    """
    return AdminCapabilities(required_capabilities(kind))


@dataclass
class _Plan:
    exact_roles: list[frozenset[GlobalRole]] = field(default_factory=list)
    min_roles: list[GlobalRole] = field(default_factory=list)
    organization_access: list[str] = field(default_factory=list)
    membership: bool = False
    primary_only: bool = False
    capabilities: set[Capability] = field(default_factory=set)

    @classmethod
    def build(cls, requirement: Requirement) -> "_Plan":
        plan = cls()
        for part in requirement.parts():
            if isinstance(part, ExactRoles):
                plan.exact_roles.append(part.roles)
            elif isinstance(part, MinRole):
                plan.min_roles.append(part.role)
            elif isinstance(part, OrganizationAccess):
                plan.organization_access.append(part.organization_id)
            elif isinstance(part, OrganizationMember):
                plan.membership = True
            elif isinstance(part, PrimaryAdminOnly):
                plan.membership = plan.primary_only = True
                plan.exact_roles.append(ADMIN_ROLE.roles)
            elif isinstance(part, AdminCapabilities):
                plan.membership = True
                plan.capabilities.update(part.capabilities)
                plan.exact_roles.append(ADMIN_ROLE.roles)
            else:
                raise TypeError(f"Unsupported requirement: {part!r}")
        return plan


# ============================================================================
# Decisions
# ============================================================================

@dataclass(frozen=True)
class AuthorizationContext:
    """What an allowed caller may reuse without fetching again."""
    organization_id: str | None
    sub_role: AdminSubRole | None = None
    permissions: Mapping[str, bool] = field(default_factory=dict)
    organization: Organization | None = field(default=None, compare=False, repr=False)
    bypass: bool = False


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: ReasonCode | None = None
    message: str | None = None
    missing: tuple[Capability, ...] = ()
    context: AuthorizationContext | None = None

    @classmethod
    def allow(cls, context: AuthorizationContext) -> "Decision":
        return cls(allowed=True, context=context)

    @classmethod
    def deny(
        cls,
        reason: ReasonCode,
        message: str | None = None,
        missing: Iterable[Capability] = (),
    ) -> "Decision":
        missing = tuple(sorted(missing, key=lambda c: c.value))
        if message is None:
            message = DEFAULT_MESSAGES[reason]
            if missing:
                message = f"Access denied. Missing permissions: {', '.join(c.value for c in missing)}"
        return cls(allowed=False, reason=reason, message=message, missing=missing)

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"reason": self.reason.value if self.reason else None, "message": self.message}
        if self.missing:
            body["missing_capabilities"] = [c.value for c in self.missing]
        return body


class OrganizationSource(Protocol):
    async def find_organization(self, organization_id: str) -> Organization | None: ...


# ============================================================================
# Engine
# ============================================================================

class AuthorizationEngine:
    """
    Evaluates requirements for a principal.

    Stateless apart from the store it reads organizations from; safe to share
    between concurrent requests.

    Usage:
        engine = AuthorizationEngine(RecordStore(db))
        decision = await engine.authorize(principal, PrimaryAdminOnly())
        if not decision:
            ...
    """

    def __init__(self, store: OrganizationSource):
        self.store = store

    async def authorize(self, principal: Principal | None, requirement: Requirement) -> Decision:
        """
        Decide whether `principal` satisfies `requirement`.

        Checks run in a fixed order and stop at the first failure:
        authentication, superAdmin override, exact roles, minimum role,
        organization access, then (for organization-scoped parts) organization
        lookup, admin membership, primary-admin status and capabilities.

        Raises:
            IntegrityFault: if the organization's admin set is inconsistent
        """
        plan = _Plan.build(requirement)

        if principal is None:
            return self._denied(None, ReasonCode.UNAUTHENTICATED)

        # superAdmin passes every requirement
        if principal.is_super_admin:
            log.debug(f"SuperAdmin {principal.id} granted {requirement!r}")
            return Decision.allow(AuthorizationContext(
                organization_id=principal.organization_id,
                permissions=dict(PRIMARY_ADMIN_PERMISSIONS),
                bypass=True,
            ))

        for roles in plan.exact_roles:
            if principal.role not in roles:
                return self._denied(principal, ReasonCode.WRONG_ROLE)

        for min_role in plan.min_roles:
            if not at_least(principal.role, min_role):
                return self._denied(principal, ReasonCode.INSUFFICIENT_ROLE_LEVEL)

        for organization_id in plan.organization_access:
            if principal.organization_id != organization_id:
                return self._denied(principal, ReasonCode.ORGANIZATION_ACCESS_DENIED)

        if not plan.membership:
            return Decision.allow(AuthorizationContext(organization_id=principal.organization_id))

        if not principal.organization_id:
            return self._denied(principal, ReasonCode.NO_ORGANIZATION)

        try:
            organization = await self.store.find_organization(principal.organization_id)
        except StoreUnavailableError:
            return self._denied(principal, ReasonCode.STORE_UNAVAILABLE)

        if organization is None:
            # Principal points at an organization that no longer exists
            log.error(f"User {principal.id} references missing organization {principal.organization_id}")
            return self._denied(principal, ReasonCode.ORGANIZATION_NOT_FOUND)

        organization.check_invariants()

        membership = organization.find_admin(principal.id)
        if membership is None:
            return self._denied(principal, ReasonCode.NOT_AN_ADMIN_OF_ORGANIZATION)

        if plan.primary_only and membership.sub_role != AdminSubRole.PRIMARY_ADMIN:
            return self._denied(principal, ReasonCode.PRIMARY_ADMIN_REQUIRED)

        if plan.capabilities:
            missing = plan.capabilities - granted_capabilities(membership.permissions)
            if missing:
                decision = Decision.deny(ReasonCode.MISSING_CAPABILITIES, missing=missing)
                log.warning(
                    f"Admin permission denied: user={principal.id} org={organization.id} "
                    f"role={membership.sub_role.value} missing={[c.value for c in decision.missing]}"
                )
                return decision

        log.debug(f"User {principal.id} granted {requirement!r} in org {organization.id}")
        return Decision.allow(AuthorizationContext(
            organization_id=organization.id,
            sub_role=membership.sub_role,
            permissions=dict(membership.permissions),
            organization=organization,
        ))

    @staticmethod
    def _denied(principal: Principal | None, reason: ReasonCode) -> Decision:
        log.warning(
            f"Authorization denied: reason={reason.value} "
            f"user={principal.id if principal else None} role={principal.role.value if principal else None}"
        )
        return Decision.deny(reason)
