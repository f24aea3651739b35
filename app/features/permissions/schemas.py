"""
Pydantic schemas for the permission catalog and authorization checks.
"""
from pydantic import BaseModel, ConfigDict, Field

from app.features.organizations.models import AdminSubRole
from app.features.permissions.catalog import Capability, ResourceKind
from app.features.permissions.roles import GlobalRole


class PermissionsPatch(BaseModel):
    """
    Partial permission map. Unknown capability names are rejected.
    """
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    canEnrollStudents: bool | None = None
    canEnrollTeachers: bool | None = None
    canManageClasses: bool | None = None
    canViewAnalytics: bool | None = None
    canManageContent: bool | None = None
    canManageAdmins: bool | None = None

    def as_map(self) -> dict[str, bool]:
        """Only the capabilities the caller set."""
        return self.model_dump(exclude_none=True)


class ResourceCapabilities(BaseModel):
    resource: ResourceKind
    capabilities: list[Capability]


class CatalogResponse(BaseModel):
    """Capabilities, resource kinds and the default maps per sub-role."""
    capabilities: list[Capability]
    resources: list[ResourceCapabilities]
    restricted_for_secondary_admins: list[Capability]
    default_secondary_permissions: dict[str, bool]
    roles: list[GlobalRole]


class MyPermissionsResponse(BaseModel):
    user_id: str
    role: GlobalRole
    organization_id: str | None = None
    sub_role: AdminSubRole | None = None
    permissions: dict[str, bool] = {}
    bypass: bool = False


class CheckRequest(BaseModel):
    """
    Requirement to evaluate for the current principal. All given parts must hold.
    """
    model_config = ConfigDict(extra="forbid")

    resource: ResourceKind | None = None
    capabilities: list[Capability] = Field(default_factory=list)
    primary_admin_only: bool = False
    organization_member: bool = False
    min_role: GlobalRole | None = None
    roles: list[GlobalRole] | None = None
    organization_id: str | None = None


class DecisionResponse(BaseModel):
    allowed: bool
    reason: str | None = None
    message: str | None = None
    missing_capabilities: list[Capability] = []
