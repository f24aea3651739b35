"""
Record store used by the authorization core.

A thin keyed-record layer over an AsyncSession. Every call is bounded by
STORE_TIMEOUT_SECONDS; timeouts and connection failures surface as
StoreUnavailableError, unique-key violations as DuplicateKeyError.
"""
import asyncio
from typing import Any, Awaitable, TypeVar
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.database.base import generate_ulid
from app.features.organizations.models import Organization
from app.features.permissions.errors import DuplicateKeyError, StoreUnavailableError
from app.features.permissions.models import AuditLog
from app.features.permissions.roles import GlobalRole
from app.features.users.models import User
from app.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")

NEW_PRINCIPAL_DEFAULTS: dict[str, Any] = {
    "password_hash": None,
    "role": GlobalRole.STUDENT,
    "organization_id": None,
    "is_active": True,
    "is_verified": False,
    "last_login_at": None,
}


class RecordStore:
    """
    Organization and principal records for one unit of work.
    
    Usage:
        store = RecordStore(db)
        organization = await store.find_organization(user.organization_id)
        ...
        await store.commit()
    """
    
    def __init__(self, session: AsyncSession, timeout: float | None = None):
        self.session = session
        self.timeout = config.STORE_TIMEOUT_SECONDS if timeout is None else timeout
    
    async def _bounded(self, awaitable: Awaitable[T], operation: str) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.timeout)
        except asyncio.TimeoutError:
            log.warning(f"Store call {operation} timed out after {self.timeout}s")
            raise StoreUnavailableError(f"{operation} timed out")
        except OperationalError as e:
            log.warning(f"Store call {operation} failed: {e}")
            raise StoreUnavailableError(f"{operation} failed") from e
    
    # Organizations
    
    async def find_organization(self, organization_id: str) -> Organization | None:
        """Load an organization with its admin set, bypassing stale identity-map state."""
        return await self._bounded(
            self.session.get(Organization, organization_id, populate_existing=True),
            "find_organization",
        )
    
    async def find_organization_by_name(self, name: str) -> Organization | None:
        result = await self._bounded(
            self.session.execute(select(Organization).where(Organization.name == name)),
            "find_organization_by_name",
        )
        return result.scalar_one_or_none()
    
    async def list_organizations(self, is_active: bool | None = None) -> list[Organization]:
        query = select(Organization).order_by(Organization.name)
        if is_active is not None:
            query = query.where(Organization.is_active.is_(is_active))
        result = await self._bounded(
            self.session.execute(query),
            "list_organizations",
        )
        return list(result.scalars().all())

    async def create_organization(self, **fields: Any) -> Organization:
        # Every attribute set up front so nothing needs a lazy load after flush
        fields = {"is_active": True, "admin_count": 0, "admins_changed_at": None, **fields}
        organization = Organization(id=generate_ulid(), admins=[], **fields)
        self.session.add(organization)
        await self._flush("create_organization", "name")
        return organization
    
    async def save_organization(self, organization: Organization) -> None:
        """Re-check the admin-set invariants and flush."""
        organization.check_invariants()
        self.session.add(organization)
        await self._flush("save_organization", "admins")
    
    # Principals
    
    async def find_principal(self, user_id: str) -> User | None:
        return await self._bounded(
            self.session.get(User, user_id, populate_existing=True),
            "find_principal",
        )
    
    async def find_principal_by_email(self, email: str) -> User | None:
        result = await self._bounded(
            self.session.execute(select(User).where(User.email == email.lower())),
            "find_principal_by_email",
        )
        return result.scalar_one_or_none()
    
    async def find_principals(self, user_ids: list[str]) -> dict[str, User]:
        if not user_ids:
            return {}
        result = await self._bounded(
            self.session.execute(select(User).where(User.id.in_(user_ids))),
            "find_principals",
        )
        return {user.id: user for user in result.scalars().all()}
    
    async def find_principals_by_role(self, role: GlobalRole) -> list[User]:
        result = await self._bounded(
            self.session.execute(select(User).where(User.role == role).order_by(User.id)),
            "find_principals_by_role",
        )
        return list(result.scalars().all())

    async def count_principals_by_role(self, organization_id: str) -> dict[GlobalRole, int]:
        """Active users of an organization, counted per global role."""
        result = await self._bounded(
            self.session.execute(
                select(User.role, func.count(User.id))
                .where(User.organization_id == organization_id, User.is_active.is_(True))
                .group_by(User.role)
            ),
            "count_principals_by_role",
        )
        return {GlobalRole(role): count for role, count in result.all()}

    async def create_principal(self, **fields: Any) -> User:
        """
        Insert a user and flush so its id is usable.
        
        Raises:
            DuplicateKeyError: if the email is already taken
        """
        fields = {**NEW_PRINCIPAL_DEFAULTS, **fields, "email": fields["email"].lower()}
        user = User(id=generate_ulid(), **fields)
        self.session.add(user)
        await self._flush("create_principal", "email")
        return user
    
    async def save_principal(self, user: User) -> None:
        self.session.add(user)
        await self._flush("save_principal", "email")
    
    # Audit
    
    def add_audit_log(self, **fields: Any) -> AuditLog:
        """Stage an audit entry; written with the surrounding commit."""
        entry = AuditLog(id=generate_ulid(), **fields)
        self.session.add(entry)
        return entry
    
    async def list_audit_logs(self, organization_id: str, limit: int = 50) -> list[AuditLog]:
        result = await self._bounded(
            self.session.execute(
                select(AuditLog)
                .where(AuditLog.organization_id == organization_id)
                .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
                .limit(limit)
            ),
            "list_audit_logs",
        )
        return list(result.scalars().all())
    
    # Unit of work
    
    async def commit(self) -> None:
        await self._bounded(self.session.commit(), "commit")
    
    async def rollback(self) -> None:
        await self.session.rollback()
    
    async def _flush(self, operation: str, field: str) -> None:
        try:
            await self._bounded(self.session.flush(), operation)
        except IntegrityError as e:
            await self.session.rollback()
            raise DuplicateKeyError(field) from e
