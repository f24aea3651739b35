"""
Pydantic schemas for user-related requests and responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field

from app.features.permissions.roles import GlobalRole


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)


class NewUserInfo(UserBase):
    """Details for an account created on someone else's behalf."""


class UserResponse(UserBase):
    """Schema for user responses."""
    id: str
    role: GlobalRole
    organization_id: str | None = None
    is_active: bool
    is_verified: bool
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    """Public user information (limited fields)."""
    id: str
    name: str
    email: EmailStr

    model_config = {"from_attributes": True}
