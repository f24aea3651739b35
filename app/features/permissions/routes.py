"""
Permission catalog and authorization-check routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status

from app.core.database.store import RecordStore
from app.features.permissions.catalog import (
    Capability,
    DEFAULT_SECONDARY_PERMISSIONS,
    PRIMARY_ADMIN_PERMISSIONS,
    RESOURCE_CAPABILITIES,
    RESTRICTED_CAPABILITIES,
    merge_permissions,
)
from app.features.permissions.dependencies import get_store
from app.features.permissions.engine import (
    AdminCapabilities,
    AllOf,
    AuthorizationEngine,
    ExactRoles,
    MinRole,
    OrganizationAccess,
    OrganizationMember,
    PrimaryAdminOnly,
    Principal,
    Requirement,
    manage_resource,
)
from app.features.permissions.roles import GlobalRole
from app.features.permissions.schemas import (
    CatalogResponse,
    CheckRequest,
    DecisionResponse,
    MyPermissionsResponse,
    ResourceCapabilities,
)
from app.features.users.dependencies import get_current_principal


router = APIRouter(tags=["permissions"])


@router.get("/catalog", response_model=CatalogResponse)
async def get_catalog():
    """Capabilities and the resource kinds they guard."""
    return CatalogResponse(
        capabilities=list(Capability),
        resources=[
            ResourceCapabilities(resource=kind, capabilities=sorted(caps, key=lambda c: c.value))
            for kind, caps in RESOURCE_CAPABILITIES.items()
        ],
        restricted_for_secondary_admins=sorted(RESTRICTED_CAPABILITIES, key=lambda c: c.value),
        default_secondary_permissions=dict(DEFAULT_SECONDARY_PERMISSIONS),
        roles=list(GlobalRole),
    )


@router.get("/me", response_model=MyPermissionsResponse)
async def get_my_permissions(
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    store: Annotated[RecordStore, Depends(get_store)],
):
    """Current user's role, admin sub-role and effective permission map."""
    if principal is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required to access this resource",
            headers={"WWW-Authenticate": "Bearer"},
        )

    response = MyPermissionsResponse(
        user_id=principal.id,
        role=principal.role,
        organization_id=principal.organization_id,
        permissions=merge_permissions(),
    )
    if principal.is_super_admin:
        response.permissions = dict(PRIMARY_ADMIN_PERMISSIONS)
        response.bypass = True
    elif principal.role == GlobalRole.ADMIN:
        decision = await AuthorizationEngine(store).authorize(principal, OrganizationMember())
        if decision:
            response.sub_role = decision.context.sub_role
            response.permissions = dict(decision.context.permissions)
    return response


@router.post("/check", response_model=DecisionResponse)
async def check_permission(
    check: CheckRequest,
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    store: Annotated[RecordStore, Depends(get_store)],
):
    """Evaluate a requirement for the current user without performing any action."""
    decision = await AuthorizationEngine(store).authorize(principal, build_requirement(check))
    if decision:
        return DecisionResponse(allowed=True)
    return DecisionResponse(allowed=False, **decision.to_dict())


def build_requirement(check: CheckRequest) -> Requirement:
    parts: list[Requirement] = []
    if check.roles is not None:
        parts.append(ExactRoles(check.roles))
    if check.min_role is not None:
        parts.append(MinRole(check.min_role))
    if check.organization_id:
        parts.append(OrganizationAccess(check.organization_id))
    if check.organization_member:
        parts.append(OrganizationMember())
    if check.primary_admin_only:
        parts.append(PrimaryAdminOnly())
    if check.resource is not None:
        parts.append(manage_resource(check.resource))
    if check.capabilities:
        parts.append(AdminCapabilities(check.capabilities))
    return AllOf(tuple(parts))
