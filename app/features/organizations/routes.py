"""
Organization feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, status

from app.features.admins.dependencies import get_admin_service, unwrap
from app.features.admins.schemas import AdminResponse
from app.features.admins.service import AdminManagementService
from app.features.organizations.dependencies import get_accessible_organization
from app.features.organizations.models import Organization
from app.features.organizations.schemas import (
    OrganizationCreate,
    OrganizationListResponse,
    OrganizationResponse,
    OrganizationUpdate,
    PrimaryAdminCreate,
    PrimaryAdminCreatedResponse,
)
from app.features.permissions.engine import Principal
from app.features.users.dependencies import get_current_principal


router = APIRouter(tags=["organizations"])


@router.post("/", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    service: Annotated[AdminManagementService, Depends(get_admin_service)],
):
    """Create a new organization (superAdmin only)."""
    result = unwrap(await service.create_organization(principal, org_data.name))
    return result["organization"]


@router.get("/", response_model=OrganizationListResponse)
async def list_organizations(
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    service: Annotated[AdminManagementService, Depends(get_admin_service)],
    is_active: bool | None = None,
):
    """List all organizations, optionally only active or inactive ones (superAdmin only)."""
    result = unwrap(await service.list_organizations(principal, is_active=is_active))
    organizations = result["organizations"]
    return OrganizationListResponse(
        total=len(organizations),
        organizations=[OrganizationResponse.model_validate(o) for o in organizations],
    )


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization: Annotated[Organization, Depends(get_accessible_organization)],
):
    """Get organization details (members of the organization or superAdmin)."""
    return organization


@router.put("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: str,
    update: OrganizationUpdate,
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    service: Annotated[AdminManagementService, Depends(get_admin_service)],
):
    """Rename or (de)activate an organization (superAdmin only)."""
    result = unwrap(await service.update_organization(
        principal, organization_id, name=update.name, is_active=update.is_active
    ))
    return result["organization"]


@router.post(
    "/{organization_id}/primary-admin",
    response_model=PrimaryAdminCreatedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_primary_admin(
    organization_id: str,
    admin_data: PrimaryAdminCreate,
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    service: Annotated[AdminManagementService, Depends(get_admin_service)],
):
    """Create the organization's primary admin with every capability (superAdmin only)."""
    result = unwrap(await service.add_primary_admin(
        principal, organization_id, name=admin_data.name, email=admin_data.email
    ))
    user, membership = result["user"], result["membership"]
    return PrimaryAdminCreatedResponse(
        message="Primary admin created successfully",
        organization_id=organization_id,
        admin=AdminResponse(
            user_id=user.id,
            name=user.name,
            email=user.email,
            sub_role=membership.sub_role,
            permissions=membership.permissions,
            added_at=membership.added_at,
        ),
        temporary_password=result["temporary_password"],
        notification_sent=result["notification_sent"],
    )
