"""
Organization-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends

from app.core.database.store import RecordStore
from app.features.organizations.models import Organization
from app.features.permissions.dependencies import decision_exception, denial_exception, get_store
from app.features.permissions.engine import AuthorizationEngine, OrganizationAccess, Principal
from app.features.permissions.errors import ReasonCode, StoreUnavailableError
from app.features.users.dependencies import get_current_principal


async def get_accessible_organization(
    organization_id: str,
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    store: Annotated[RecordStore, Depends(get_store)],
) -> Organization:
    """
    Get an organization the current user belongs to (any organization for a superAdmin).

    Raises:
        HTTPException: 401/403 when access is denied, 404 if the organization does not exist,
            503 if the store is unavailable
    """
    decision = await AuthorizationEngine(store).authorize(principal, OrganizationAccess(organization_id))
    if not decision:
        raise decision_exception(decision)

    try:
        organization = await store.find_organization(organization_id)
    except StoreUnavailableError:
        raise denial_exception(ReasonCode.STORE_UNAVAILABLE, "Data store unavailable, please retry")
    if organization is None:
        raise denial_exception(ReasonCode.ORGANIZATION_NOT_FOUND, "Organization not found")
    return organization
