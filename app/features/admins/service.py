"""
Admin management workflows.

Each operation authorizes the actor through the AuthorizationEngine, applies
its change through the Organization aggregate and commits in one transaction.
Changes to one organization's admin set are serialized: an in-process lock per
organization, plus the optimistic version check on the organization row with a
bounded retry for writers in other processes.

Operations never raise for expected failures; they return an `Outcome`.
"""
import asyncio
import contextlib
import enum
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from sqlalchemy.orm.exc import StaleDataError

from app.core import config
from app.core.database.store import RecordStore
from app.features.admins.notifications import ADMIN_CREDENTIALS, EmailNotifier, Notifier
from app.features.organizations.models import AdminMembership, AdminSubRole, Organization
from app.features.permissions.catalog import (
    Capability,
    DEFAULT_SECONDARY_PERMISSIONS,
    InvalidPermissions,
    PRIMARY_ADMIN_PERMISSIONS,
    ResourceKind,
    SECONDARY_ADMIN_OVERRIDES,
    merge_permissions,
    parse_permissions,
)
from app.features.permissions.engine import (
    AdminCapabilities,
    AuthorizationEngine,
    Decision,
    ExactRoles,
    OrganizationAccess,
    PrimaryAdminOnly,
    Principal,
    Requirement,
    manage_resource,
)
from app.features.permissions.errors import (
    DEFAULT_MESSAGES,
    DuplicateKeyError,
    IntegrityFault,
    ReasonCode,
    StoreUnavailableError,
)
from app.features.permissions.roles import GlobalRole
from app.features.users.credentials import CredentialIssuer
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Outcomes
# ============================================================================

class OutcomeStatus(str, enum.Enum):
    OK = "ok"
    DENIED = "denied"
    FAULT = "fault"


@dataclass(frozen=True)
class Outcome:
    """
    Result of an admin-management operation.

    `DENIED` carries a ReasonCode the caller can act on. `FAULT` means stored
    state or the code is broken; callers must not treat it as a denial.
    """
    status: OutcomeStatus
    payload: Any = None
    reason: ReasonCode | None = None
    message: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, payload: Any = None) -> "Outcome":
        return cls(OutcomeStatus.OK, payload=payload)

    @classmethod
    def denied(cls, reason: ReasonCode, message: str | None = None, **details: Any) -> "Outcome":
        return cls(
            OutcomeStatus.DENIED,
            reason=reason,
            message=message or DEFAULT_MESSAGES[reason],
            details=details,
        )

    @classmethod
    def from_decision(cls, decision: Decision) -> "Outcome":
        details = {}
        if decision.missing:
            details["missing_capabilities"] = [c.value for c in decision.missing]
        return cls.denied(decision.reason, decision.message, **details)

    @classmethod
    def fault(cls, message: str, **details: Any) -> "Outcome":
        return cls(OutcomeStatus.FAULT, message=message, details=details)

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.OK


class OrganizationLocks:
    """
    One asyncio.Lock per organization id.

    Locks are never evicted: the registry holds one entry per organization
    touched since startup, which stays bounded by the number of tenants.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    def lock(self, organization_id: str) -> asyncio.Lock:
        return self._locks.setdefault(organization_id, asyncio.Lock())


organization_locks = OrganizationLocks()


class _Denied(Exception):
    """Internal short-circuit carrying a denial out of a helper."""

    def __init__(self, outcome: Outcome):
        self.outcome = outcome


# ============================================================================
# Service
# ============================================================================

class AdminManagementService:
    """
    Organization admin workflows for one unit of work.

    Usage:
        service = AdminManagementService(RecordStore(db))
        outcome = await service.update_admin_permissions(
            Principal.from_user(user), target_id, {"canEnrollTeachers": True}
        )
        if outcome.ok:
            ...
    """

    def __init__(
        self,
        store: RecordStore,
        notifier: Notifier | None = None,
        credentials: CredentialIssuer | None = None,
        default_permissions: Mapping[str, bool] = DEFAULT_SECONDARY_PERMISSIONS,
        locks: OrganizationLocks | None = None,
        max_retries: int | None = None,
        request_meta: Mapping[str, Any] | None = None,
    ):
        self.store = store
        self.engine = AuthorizationEngine(store)
        self.notifier = notifier or EmailNotifier()
        self.credentials = credentials or CredentialIssuer()
        self.default_permissions = default_permissions
        self.locks = locks or organization_locks
        self.max_retries = config.MUTATION_MAX_RETRIES if max_retries is None else max_retries
        self.request_meta = dict(request_meta or {})

    # ------------------------------------------------------------------
    # Organizations
    # ------------------------------------------------------------------

    async def create_organization(self, actor: Principal | None, name: str) -> Outcome:
        """Create an empty organization (superAdmin only)."""

        async def step() -> Outcome:
            decision = await self.engine.authorize(actor, ExactRoles({GlobalRole.SUPER_ADMIN}))
            if not decision:
                return Outcome.from_decision(decision)

            if await self.store.find_organization_by_name(name) is not None:
                return Outcome.denied(ReasonCode.DUPLICATE_ORGANIZATION, name=name)
            try:
                organization = await self.store.create_organization(name=name, is_active=True, admin_count=0)
            except DuplicateKeyError:
                return Outcome.denied(ReasonCode.DUPLICATE_ORGANIZATION, name=name)

            self._audit(actor, "create", "organization", organization.id, organization.id, {"name": name})
            await self.store.commit()
            log.info(f"Organization {organization.id} ({name!r}) created by {actor.id}")
            return Outcome.success({"organization": organization})

        return await self._run("create_organization", None, step)

    async def add_primary_admin(
        self,
        actor: Principal | None,
        organization_id: str,
        name: str,
        email: str,
    ) -> Outcome:
        """Create the organization's primary admin with every capability (superAdmin only)."""

        async def step() -> Outcome:
            decision = await self.engine.authorize(actor, ExactRoles({GlobalRole.SUPER_ADMIN}))
            if not decision:
                return Outcome.from_decision(decision)

            organization = await self.store.find_organization(organization_id)
            if organization is None:
                return Outcome.denied(ReasonCode.ORGANIZATION_NOT_FOUND, organization_id=organization_id)
            organization.check_invariants()

            if await self.store.find_principal_by_email(email) is not None:
                return Outcome.denied(ReasonCode.DUPLICATE_EMAIL, email=email)
            if organization.primary_admin is not None:
                return Outcome.denied(ReasonCode.PRIMARY_ADMIN_EXISTS, organization_id=organization.id)

            secret, user = await self._create_admin_user(name, email, organization)
            membership = organization.add_admin(
                user.id, AdminSubRole.PRIMARY_ADMIN, PRIMARY_ADMIN_PERMISSIONS, actor.id
            )
            await self.store.save_organization(organization)
            self._audit(actor, "create", "admin", user.id, organization.id, {
                "sub_role": AdminSubRole.PRIMARY_ADMIN.value,
                "permissions": membership.permissions,
            })
            await self.store.commit()
            log.info(f"Primary admin {user.id} added to organization {organization.id} by {actor.id}")

            delivered = await self._send_credentials(user, organization, secret, AdminSubRole.PRIMARY_ADMIN)
            return Outcome.success({
                "user": user,
                "membership": membership,
                "organization": organization,
                "notification_sent": delivered,
                # Returned to the superAdmin in case the email does not arrive
                "temporary_password": secret,
            })

        return await self._run("add_primary_admin", organization_id, step)

    async def list_organizations(self, actor: Principal | None, is_active: bool | None = None) -> Outcome:
        """All organizations, optionally filtered by active flag (superAdmin only)."""

        async def step() -> Outcome:
            decision = await self.engine.authorize(actor, ExactRoles({GlobalRole.SUPER_ADMIN}))
            if not decision:
                return Outcome.from_decision(decision)
            organizations = await self.store.list_organizations(is_active=is_active)
            return Outcome.success({"organizations": organizations})

        return await self._run("list_organizations", None, step, serialize=False)

    async def update_organization(
        self,
        actor: Principal | None,
        organization_id: str,
        name: str | None = None,
        is_active: bool | None = None,
    ) -> Outcome:
        """Rename or (de)activate an organization (superAdmin only). `None` leaves a field as is."""

        async def step() -> Outcome:
            decision = await self.engine.authorize(actor, ExactRoles({GlobalRole.SUPER_ADMIN}))
            if not decision:
                return Outcome.from_decision(decision)

            organization = await self.store.find_organization(organization_id)
            if organization is None:
                return Outcome.denied(ReasonCode.ORGANIZATION_NOT_FOUND, organization_id=organization_id)

            changes: dict[str, Any] = {}
            if name is not None and name != organization.name:
                if await self.store.find_organization_by_name(name) is not None:
                    return Outcome.denied(ReasonCode.DUPLICATE_ORGANIZATION, name=name)
                changes["name"] = name
            if is_active is not None and is_active != organization.is_active:
                changes["is_active"] = is_active
            if not changes:
                return Outcome.success({"organization": organization, "changes": changes})

            for key, value in changes.items():
                setattr(organization, key, value)
            try:
                await self.store.save_organization(organization)
            except DuplicateKeyError:
                return Outcome.denied(ReasonCode.DUPLICATE_ORGANIZATION, name=name)
            self._audit(actor, "update", "organization", organization.id, organization.id, changes)
            await self.store.commit()
            log.info(f"Organization {organization.id} updated by {actor.id}: {sorted(changes)}")
            return Outcome.success({"organization": organization, "changes": changes})

        return await self._run("update_organization", organization_id, step)

    # ------------------------------------------------------------------
    # Admin mutations
    # ------------------------------------------------------------------

    async def create_secondary_admin(
        self,
        actor: Principal | None,
        name: str,
        email: str,
        permissions: Mapping[Any, Any] | None = None,
        organization_id: str | None = None,
    ) -> Outcome:
        """
        Create a secondary admin in the actor's organization.

        Permissions are the configured defaults, then `permissions`, then the
        restricted capabilities forced off.
        """
        requirement = self._scoped(PrimaryAdminOnly() & AdminCapabilities({Capability.MANAGE_ADMINS}), organization_id)

        async def step() -> Outcome:
            decision = await self.engine.authorize(actor, requirement)
            if not decision:
                return Outcome.from_decision(decision)
            requested = parse_permissions(permissions)
            organization = await self._organization_for(decision, organization_id)

            if await self.store.find_principal_by_email(email) is not None:
                log.warning(f"Secondary admin creation failed: email already exists ({email})")
                return Outcome.denied(ReasonCode.DUPLICATE_EMAIL, email=email)

            secret, user = await self._create_admin_user(name, email, organization)
            final_permissions = merge_permissions(
                self.default_permissions, requested, overrides=SECONDARY_ADMIN_OVERRIDES
            )
            membership = organization.add_admin(user.id, AdminSubRole.SECONDARY_ADMIN, final_permissions, actor.id)
            await self.store.save_organization(organization)
            self._audit(actor, "create", "admin", user.id, organization.id, {
                "sub_role": AdminSubRole.SECONDARY_ADMIN.value,
                "permissions": membership.permissions,
            })
            await self.store.commit()
            log.info(f"Secondary admin {user.id} created in organization {organization.id} by {actor.id}")

            delivered = await self._send_credentials(user, organization, secret, AdminSubRole.SECONDARY_ADMIN)
            return Outcome.success({
                "user": user,
                "membership": membership,
                "organization": organization,
                "notification_sent": delivered,
            })

        return await self._run("create_secondary_admin", self._lock_key(actor, organization_id), step)

    async def update_admin_permissions(
        self,
        actor: Principal | None,
        target_user_id: str,
        permissions: Mapping[Any, Any] | None,
        organization_id: str | None = None,
    ) -> Outcome:
        """Merge `permissions` into a secondary admin's map (primary admin only)."""
        requirement = self._scoped(PrimaryAdminOnly(), organization_id)

        async def step() -> Outcome:
            decision = await self.engine.authorize(actor, requirement)
            if not decision:
                return Outcome.from_decision(decision)
            changes = parse_permissions(permissions)
            organization = await self._organization_for(decision, organization_id)

            target = organization.find_admin(target_user_id)
            if target is None:
                return Outcome.denied(ReasonCode.ADMIN_NOT_FOUND, admin_id=target_user_id)
            if target_user_id == actor.id:
                return Outcome.denied(ReasonCode.CANNOT_MODIFY_SELF)
            if target.sub_role == AdminSubRole.PRIMARY_ADMIN:
                return Outcome.denied(ReasonCode.CANNOT_MODIFY_PRIMARY_ADMIN, admin_id=target_user_id)

            membership = organization.update_admin_permissions(target_user_id, changes)
            await self.store.save_organization(organization)
            self._audit(actor, "update_permissions", "admin", target_user_id, organization.id, {
                "requested": changes,
                "permissions": membership.permissions,
            })
            await self.store.commit()
            log.info(f"Permissions of admin {target_user_id} updated in organization {organization.id} by {actor.id}")
            return Outcome.success({"membership": membership, "organization": organization})

        return await self._run("update_admin_permissions", self._lock_key(actor, organization_id), step)

    async def remove_admin(
        self,
        actor: Principal | None,
        target_user_id: str,
        organization_id: str | None = None,
    ) -> Outcome:
        """
        Remove a secondary admin and demote the user to specialUser.

        Membership removal and demotion are committed together.
        """
        requirement = self._scoped(PrimaryAdminOnly(), organization_id)

        async def step() -> Outcome:
            decision = await self.engine.authorize(actor, requirement)
            if not decision:
                return Outcome.from_decision(decision)
            if target_user_id == actor.id:
                return Outcome.denied(ReasonCode.CANNOT_REMOVE_SELF)
            organization = await self._organization_for(decision, organization_id)

            target = organization.find_admin(target_user_id)
            if target is None:
                return Outcome.denied(ReasonCode.ADMIN_NOT_FOUND, admin_id=target_user_id)
            if target.sub_role == AdminSubRole.PRIMARY_ADMIN:
                return Outcome.denied(ReasonCode.CANNOT_REMOVE_PRIMARY_ADMIN, admin_id=target_user_id)

            user = await self.store.find_principal(target_user_id)
            organization.remove_admin(target_user_id)
            if user is None:
                # Orphaned membership: drop it, nothing to demote
                log.warning(f"Removing membership of missing user {target_user_id} from organization {organization.id}")
            else:
                user.role = GlobalRole.SPECIAL_USER
                user.organization_id = None
                await self.store.save_principal(user)
            await self.store.save_organization(organization)
            self._audit(actor, "remove", "admin", target_user_id, organization.id, {
                "demoted_to": GlobalRole.SPECIAL_USER.value,
            })
            await self.store.commit()
            log.info(f"Admin {target_user_id} removed from organization {organization.id} by {actor.id}")
            return Outcome.success({"organization": organization, "user": user})

        return await self._run("remove_admin", self._lock_key(actor, organization_id), step)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def list_admins(self, actor: Principal | None, organization_id: str | None = None) -> Outcome:
        """Admins of the actor's organization with their sub-roles and permissions."""
        requirement = self._scoped(AdminCapabilities({Capability.VIEW_ANALYTICS}), organization_id)

        async def step() -> Outcome:
            decision = await self.engine.authorize(actor, requirement)
            if not decision:
                return Outcome.from_decision(decision)
            organization = await self._organization_for(decision, organization_id)

            user_ids = {m.user_id for m in organization.admins}
            user_ids.update(m.added_by_id for m in organization.admins if m.added_by_id)
            users = await self.store.find_principals(sorted(user_ids))

            admins = [_admin_record(m, users) for m in organization.admins]
            return Outcome.success({"organization": organization, "admins": admins})

        return await self._run("list_admins", None, step, serialize=False)

    async def dashboard_stats(self, actor: Principal | None, organization_id: str | None = None) -> Outcome:
        """Admin and member counts for the actor's organization (requires canViewAnalytics)."""
        requirement = self._scoped(manage_resource(ResourceKind.ANALYTICS), organization_id)

        async def step() -> Outcome:
            decision = await self.engine.authorize(actor, requirement)
            if not decision:
                return Outcome.from_decision(decision)
            organization = await self._organization_for(decision, organization_id)

            by_role = await self.store.count_principals_by_role(organization.id)
            sub_roles = [m.sub_role for m in organization.admins]
            stats = {
                "total_admins": len(sub_roles),
                "primary_admins": sub_roles.count(AdminSubRole.PRIMARY_ADMIN),
                "secondary_admins": sub_roles.count(AdminSubRole.SECONDARY_ADMIN),
                "total_teachers": by_role.get(GlobalRole.TEACHER, 0),
                "total_students": by_role.get(GlobalRole.STUDENT, 0),
                "admins_changed_at": organization.admins_changed_at,
            }
            return Outcome.success({"organization": organization, "stats": stats})

        return await self._run("dashboard_stats", None, step, serialize=False)

    async def audit_trail(
        self,
        actor: Principal | None,
        organization_id: str | None = None,
        limit: int = 50,
    ) -> Outcome:
        """Recent admin-management audit entries for the organization (primary admin only)."""
        requirement = self._scoped(PrimaryAdminOnly(), organization_id)

        async def step() -> Outcome:
            decision = await self.engine.authorize(actor, requirement)
            if not decision:
                return Outcome.from_decision(decision)
            organization = await self._organization_for(decision, organization_id)
            entries = await self.store.list_audit_logs(organization.id, limit=limit)
            return Outcome.success({"organization": organization, "entries": entries})

        return await self._run("audit_trail", None, step, serialize=False)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _run(
        self,
        operation: str,
        lock_key: str | None,
        step: Callable[[], Awaitable[Outcome]],
        serialize: bool = True,
    ) -> Outcome:
        attempts = self.max_retries + 1 if serialize else 1
        for attempt in range(1, attempts + 1):
            lock = self.locks.lock(lock_key) if serialize and lock_key else contextlib.nullcontext()
            try:
                async with lock:
                    return await step()
            except _Denied as denied:
                await self.store.rollback()
                return denied.outcome
            except InvalidPermissions as e:
                await self.store.rollback()
                return Outcome.denied(ReasonCode.VALIDATION_FAILURE, str(e))
            except DuplicateKeyError as e:
                # Lost a race on a unique email
                if e.field == "email":
                    return Outcome.denied(ReasonCode.DUPLICATE_EMAIL)
                log.exception(f"{operation} hit an unexpected unique-key violation on {e.field}")
                return Outcome.fault(str(e), operation=operation)
            except StaleDataError:
                await self.store.rollback()
                log.warning(f"{operation} version conflict on organization {lock_key} (attempt {attempt}/{attempts})")
            except StoreUnavailableError as e:
                await self.store.rollback()
                log.warning(f"{operation} aborted: {e}")
                return Outcome.denied(ReasonCode.STORE_UNAVAILABLE)
            except IntegrityFault as e:
                await self.store.rollback()
                log.exception(f"{operation} found inconsistent authorization state: {e} {e.context}")
                return Outcome.fault(str(e), operation=operation, **e.context)
            except Exception as e:
                await self.store.rollback()
                log.exception(f"{operation} failed unexpectedly")
                return Outcome.fault(f"{type(e).__name__}: {e}", operation=operation)
        return Outcome.denied(
            ReasonCode.STORE_UNAVAILABLE,
            "Concurrent update conflict, please retry",
            organization_id=lock_key,
        )

    @staticmethod
    def _scoped(requirement: Requirement, organization_id: str | None) -> Requirement:
        if organization_id:
            return requirement & OrganizationAccess(organization_id)
        return requirement

    @staticmethod
    def _lock_key(actor: Principal | None, organization_id: str | None) -> str | None:
        return organization_id or (actor.organization_id if actor else None)

    async def _organization_for(self, decision: Decision, organization_id: str | None) -> Organization:
        """Organization the allowed actor is operating on."""
        context = decision.context
        target_id = organization_id or context.organization_id
        if context.organization is not None and context.organization.id == target_id:
            return context.organization
        if not target_id:
            raise _Denied(Outcome.denied(ReasonCode.NO_ORGANIZATION))
        organization = await self.store.find_organization(target_id)
        if organization is None:
            raise _Denied(Outcome.denied(ReasonCode.ORGANIZATION_NOT_FOUND, organization_id=target_id))
        organization.check_invariants()
        return organization

    async def _create_admin_user(self, name: str, email: str, organization: Organization) -> tuple[str, User]:
        secret = self.credentials.generate_credential()
        password_hash = await asyncio.to_thread(self.credentials.hash, secret)
        try:
            user = await self.store.create_principal(
                name=name,
                email=email,
                password_hash=password_hash,
                role=GlobalRole.ADMIN,
                organization_id=organization.id,
                is_verified=True,
            )
        except DuplicateKeyError:
            raise _Denied(Outcome.denied(ReasonCode.DUPLICATE_EMAIL, email=email))
        return secret, user

    async def _send_credentials(
        self,
        user: User,
        organization: Organization,
        secret: str,
        sub_role: AdminSubRole,
    ) -> bool:
        delivered = await self.notifier.notify(user.email, ADMIN_CREDENTIALS, {
            "name": user.name,
            "organization": organization.name,
            "email": user.email,
            "password": secret,
            "admin_role": sub_role.value,
        })
        if not delivered:
            log.warning(f"Failed to send admin credentials email to {user.id}")
        return delivered

    def _audit(
        self,
        actor: Principal,
        action: str,
        resource_type: str,
        resource_id: str | None,
        organization_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.store.add_audit_log(
            user_id=actor.id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            organization_id=organization_id,
            details=details,
            ip_address=self.request_meta.get("ip_address"),
            user_agent=self.request_meta.get("user_agent"),
        )


def _admin_record(membership: AdminMembership, users: Mapping[str, User]) -> dict[str, Any]:
    user = users.get(membership.user_id)
    added_by = users.get(membership.added_by_id) if membership.added_by_id else None
    return {
        "user_id": membership.user_id,
        "name": user.name if user else None,
        "email": user.email if user else None,
        "sub_role": membership.sub_role,
        "permissions": dict(membership.permissions),
        "added_at": membership.added_at,
        "added_by": {"id": added_by.id, "name": added_by.name} if added_by else None,
    }
