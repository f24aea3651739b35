"""
Pydantic schemas for organization-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, Field

from app.features.admins.schemas import AdminResponse
from app.features.users.schemas import NewUserInfo


class OrganizationCreate(BaseModel):
    """Schema for creating a new organization (superAdmin only)."""
    name: str = Field(..., min_length=1, max_length=255)


class OrganizationResponse(BaseModel):
    """Schema for organization responses."""
    id: str
    name: str
    is_active: bool
    admin_count: int
    admins_changed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrganizationUpdate(BaseModel):
    """Fields a superAdmin may change; omitted fields are left as they are."""
    name: str | None = Field(None, min_length=1, max_length=255)
    is_active: bool | None = None

    model_config = {"extra": "forbid"}


class OrganizationListResponse(BaseModel):
    total: int
    organizations: list[OrganizationResponse]


class PrimaryAdminCreate(NewUserInfo):
    """Schema for provisioning an organization's primary admin."""


class PrimaryAdminCreatedResponse(BaseModel):
    message: str
    organization_id: str
    admin: AdminResponse
    temporary_password: str
    notification_sent: bool
