"""
Admin management routes.

Thin wrappers over AdminManagementService; every rule lives in the service.
"""
from typing import Annotated
from fastapi import APIRouter, Depends, Query, status

from app.features.admins.dependencies import get_admin_service, unwrap
from app.features.admins.schemas import (
    AdminCreatedResponse,
    AdminListResponse,
    AdminPermissionsResponse,
    AdminPermissionsUpdate,
    AdminRemovedResponse,
    AdminResponse,
    AuditLogResponse,
    DashboardStats,
    DashboardStatsResponse,
    SecondaryAdminCreate,
)
from app.features.admins.service import AdminManagementService
from app.features.permissions.catalog import ResourceKind
from app.features.permissions.dependencies import can_manage_resource
from app.features.permissions.engine import Principal
from app.features.users.dependencies import get_current_principal


router = APIRouter(tags=["admin"])


@router.post("/create-secondary-admin", response_model=AdminCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_secondary_admin(
    admin_data: SecondaryAdminCreate,
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    service: Annotated[AdminManagementService, Depends(get_admin_service)],
):
    """Create a secondary admin in your organization (primary admin with canManageAdmins)."""
    result = unwrap(await service.create_secondary_admin(
        principal,
        name=admin_data.name,
        email=admin_data.email,
        permissions=admin_data.permissions.as_map() if admin_data.permissions else None,
        organization_id=admin_data.organization_id,
    ))
    user, membership = result["user"], result["membership"]
    return AdminCreatedResponse(
        message="Secondary admin created successfully",
        admin=AdminResponse(
            user_id=user.id,
            name=user.name,
            email=user.email,
            sub_role=membership.sub_role,
            permissions=membership.permissions,
            added_at=membership.added_at,
        ),
        organization_id=result["organization"].id,
        notification_sent=result["notification_sent"],
    )


@router.get("/list-admins", response_model=AdminListResponse)
async def list_admins(
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    service: Annotated[AdminManagementService, Depends(get_admin_service)],
    organization_id: str | None = None,
):
    """List admins of your organization (requires canViewAnalytics)."""
    result = unwrap(await service.list_admins(principal, organization_id=organization_id))
    organization = result["organization"]
    return AdminListResponse(
        organization_id=organization.id,
        organization_name=organization.name,
        total=len(result["admins"]),
        admins=[AdminResponse(**admin) for admin in result["admins"]],
    )


@router.put("/update-admin-permissions/{admin_id}", response_model=AdminPermissionsResponse)
async def update_admin_permissions(
    admin_id: str,
    update: AdminPermissionsUpdate,
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    service: Annotated[AdminManagementService, Depends(get_admin_service)],
):
    """Update a secondary admin's permissions (primary admin only)."""
    result = unwrap(await service.update_admin_permissions(
        principal, admin_id, update.permissions.as_map(), organization_id=update.organization_id
    ))
    membership = result["membership"]
    return AdminPermissionsResponse(
        message="Admin permissions updated successfully",
        user_id=membership.user_id,
        sub_role=membership.sub_role,
        permissions=membership.permissions,
    )


@router.delete("/remove-admin/{admin_id}", response_model=AdminRemovedResponse)
async def remove_admin(
    admin_id: str,
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    service: Annotated[AdminManagementService, Depends(get_admin_service)],
    organization_id: str | None = None,
):
    """Remove a secondary admin and demote the account (primary admin only)."""
    result = unwrap(await service.remove_admin(principal, admin_id, organization_id=organization_id))
    return AdminRemovedResponse(
        message="Admin removed successfully",
        user_id=admin_id,
        organization_id=result["organization"].id,
    )


@router.get("/audit-logs", response_model=list[AuditLogResponse])
async def get_audit_logs(
    principal: Annotated[Principal | None, Depends(get_current_principal)],
    service: Annotated[AdminManagementService, Depends(get_admin_service)],
    organization_id: str | None = None,
    limit: int = Query(50, ge=1, le=500),
):
    """Recent admin-management actions in your organization (primary admin only)."""
    result = unwrap(await service.audit_trail(principal, organization_id=organization_id, limit=limit))
    return result["entries"]


@router.get("/dashboard-stats", response_model=DashboardStatsResponse)
async def get_dashboard_stats(
    principal: Annotated[Principal, Depends(can_manage_resource(ResourceKind.ANALYTICS))],
    service: Annotated[AdminManagementService, Depends(get_admin_service)],
    organization_id: str | None = None,
):
    """Admin and member counts for your organization (requires canViewAnalytics)."""
    result = unwrap(await service.dashboard_stats(principal, organization_id=organization_id))
    organization = result["organization"]
    return DashboardStatsResponse(
        organization_id=organization.id,
        organization_name=organization.name,
        stats=DashboardStats(**result["stats"]),
    )
