"""
Pydantic schemas for admin management.
"""
from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field

from app.features.organizations.models import AdminSubRole
from app.features.permissions.schemas import PermissionsPatch
from app.features.users.schemas import NewUserInfo


class SecondaryAdminCreate(NewUserInfo):
    """Schema for creating a secondary admin."""
    permissions: PermissionsPatch | None = None
    organization_id: str | None = Field(None, description="Target organization (superAdmin only)")


class AdminPermissionsUpdate(BaseModel):
    permissions: PermissionsPatch
    organization_id: str | None = Field(None, description="Target organization (superAdmin only)")


class AddedBy(BaseModel):
    id: str
    name: str


class AdminResponse(BaseModel):
    """One admin of an organization."""
    user_id: str
    name: str | None = None
    email: str | None = None
    sub_role: AdminSubRole
    permissions: dict[str, bool]
    added_at: datetime
    added_by: AddedBy | None = None


class AdminCreatedResponse(BaseModel):
    message: str
    admin: AdminResponse
    organization_id: str
    notification_sent: bool


class AdminListResponse(BaseModel):
    organization_id: str
    organization_name: str
    total: int
    admins: list[AdminResponse]


class AdminPermissionsResponse(BaseModel):
    message: str
    user_id: str
    sub_role: AdminSubRole
    permissions: dict[str, bool]


class AdminRemovedResponse(BaseModel):
    message: str
    user_id: str
    organization_id: str


class AuditLogResponse(BaseModel):
    id: str
    user_id: str | None = None
    action: str
    resource_type: str
    resource_id: str | None = None
    organization_id: str | None = None
    details: dict[str, Any] | None = None
    ip_address: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class DashboardStats(BaseModel):
    total_admins: int
    primary_admins: int
    secondary_admins: int
    total_teachers: int
    total_students: int
    admins_changed_at: datetime | None = None


class DashboardStatsResponse(BaseModel):
    organization_id: str
    organization_name: str
    stats: DashboardStats
