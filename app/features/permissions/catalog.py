"""
Capability catalog.

The closed set of fine-grained admin capabilities, the resource kinds routes
are guarded by, and the helpers that build and merge permission maps.

Permission maps are stored as JSON, so every map leaving this module is keyed by
the capability's string value (``"canEnrollStudents"``) and always lists every
capability.
"""
import enum
from types import MappingProxyType
from typing import Any, Mapping


class Capability(str, enum.Enum):
    """Fine-grained permission flag held by an organization admin."""
    ENROLL_STUDENTS = "canEnrollStudents"
    ENROLL_TEACHERS = "canEnrollTeachers"
    MANAGE_CLASSES = "canManageClasses"
    VIEW_ANALYTICS = "canViewAnalytics"
    MANAGE_CONTENT = "canManageContent"
    MANAGE_ADMINS = "canManageAdmins"


class ResourceKind(str, enum.Enum):
    """Kinds of organization resources an admin can be allowed to manage."""
    STUDENT = "student"
    TEACHER = "teacher"
    CLASS = "class"
    SECTION = "section"
    ADMIN = "admin"
    CONTENT = "content"
    ANALYTICS = "analytics"


RESOURCE_CAPABILITIES: Mapping[ResourceKind, frozenset[Capability]] = MappingProxyType({
    ResourceKind.STUDENT: frozenset({Capability.ENROLL_STUDENTS}),
    ResourceKind.TEACHER: frozenset({Capability.ENROLL_TEACHERS}),
    ResourceKind.CLASS: frozenset({Capability.MANAGE_CLASSES}),
    ResourceKind.SECTION: frozenset({Capability.MANAGE_CLASSES}),
    ResourceKind.ADMIN: frozenset({Capability.MANAGE_ADMINS}),
    ResourceKind.CONTENT: frozenset({Capability.MANAGE_CONTENT}),
    ResourceKind.ANALYTICS: frozenset({Capability.VIEW_ANALYTICS}),
})

_unmapped = set(ResourceKind) - set(RESOURCE_CAPABILITIES)
if _unmapped:
    raise RuntimeError(f"Resource kinds without a capability mapping: {sorted(k.value for k in _unmapped)}")

# Never granted to a secondary admin, whatever the input
RESTRICTED_CAPABILITIES: frozenset[Capability] = frozenset({
    Capability.MANAGE_CONTENT,
    Capability.MANAGE_ADMINS,
})

SECONDARY_ADMIN_OVERRIDES: Mapping[str, bool] = MappingProxyType(
    {capability.value: False for capability in RESTRICTED_CAPABILITIES}
)

DEFAULT_SECONDARY_PERMISSIONS: Mapping[str, bool] = MappingProxyType({
    Capability.ENROLL_STUDENTS.value: True,
    Capability.ENROLL_TEACHERS.value: True,
    Capability.MANAGE_CLASSES.value: True,
    Capability.VIEW_ANALYTICS.value: True,
    Capability.MANAGE_CONTENT.value: False,
    Capability.MANAGE_ADMINS.value: False,
})

PRIMARY_ADMIN_PERMISSIONS: Mapping[str, bool] = MappingProxyType(
    {capability.value: True for capability in Capability}
)


class InvalidPermissions(ValueError):
    """A permission map named an unknown capability or held a non-boolean value."""


def required_capabilities(kind: ResourceKind | str) -> frozenset[Capability]:
    """
    Capabilities needed to manage a resource kind.

    Raises:
        ValueError: if `kind` is not a known resource kind
    """
    return RESOURCE_CAPABILITIES[ResourceKind(kind)]


def coerce_capability(key: Capability | str) -> Capability:
    try:
        return Capability(key)
    except ValueError:
        raise InvalidPermissions(f"Unknown capability: {key}")


def parse_permissions(raw: Mapping[Any, Any] | None) -> dict[str, bool]:
    """
    Validate a partial permission map.

    Returns a map keyed by capability value containing only the keys given.

    Raises:
        InvalidPermissions: on an unknown capability or a non-boolean value
    """
    parsed: dict[str, bool] = {}
    for key, value in (raw or {}).items():
        capability = coerce_capability(key)
        if not isinstance(value, bool):
            raise InvalidPermissions(f"Permission {capability.value} must be true or false")
        parsed[capability.value] = value
    return parsed


def merge_permissions(
    *layers: Mapping[Any, Any] | None,
    overrides: Mapping[Any, bool] | None = None,
) -> dict[str, bool]:
    """
    Merge permission maps left to right, then apply `overrides`.

    Capabilities no layer mentions are False. Overrides are applied last, so
    they win over every layer.

    Example:
        merge_permissions(DEFAULT_SECONDARY_PERMISSIONS, requested, overrides=SECONDARY_ADMIN_OVERRIDES)
    """
    merged = {capability.value: False for capability in Capability}
    for layer in layers:
        merged.update(parse_permissions(layer))
    merged.update(parse_permissions(overrides))
    return merged


def granted_capabilities(permissions: Mapping[Any, Any] | None) -> frozenset[Capability]:
    """Capabilities explicitly set to True in a stored permission map."""
    granted = set()
    for capability in Capability:
        if (permissions or {}).get(capability.value) is True:
            granted.add(capability)
    return frozenset(granted)
