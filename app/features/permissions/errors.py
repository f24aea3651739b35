"""
Reason codes and fault types for authorization decisions.

Denials are values (see engine.Decision); the exceptions here are for the
store boundary and for integrity faults, which must never be reported as a
normal denial.
"""
import enum


class ReasonCode(str, enum.Enum):
    """Machine-checkable reason attached to every denial."""
    UNAUTHENTICATED = "Unauthenticated"
    WRONG_ROLE = "WrongRole"
    INSUFFICIENT_ROLE_LEVEL = "InsufficientRoleLevel"
    NO_ORGANIZATION = "NoOrganization"
    ORGANIZATION_NOT_FOUND = "OrganizationNotFound"
    ORGANIZATION_ACCESS_DENIED = "OrganizationAccessDenied"
    NOT_AN_ADMIN_OF_ORGANIZATION = "NotAnAdminOfOrganization"
    PRIMARY_ADMIN_REQUIRED = "PrimaryAdminRequired"
    MISSING_CAPABILITIES = "MissingCapabilities"
    DUPLICATE_EMAIL = "DuplicateEmail"
    DUPLICATE_ORGANIZATION = "DuplicateOrganization"
    PRIMARY_ADMIN_EXISTS = "PrimaryAdminExists"
    ADMIN_NOT_FOUND = "AdminNotFound"
    CANNOT_MODIFY_SELF = "CannotModifySelf"
    CANNOT_MODIFY_PRIMARY_ADMIN = "CannotModifyPrimaryAdmin"
    CANNOT_REMOVE_SELF = "CannotRemoveSelf"
    CANNOT_REMOVE_PRIMARY_ADMIN = "CannotRemovePrimaryAdmin"
    STORE_UNAVAILABLE = "StoreUnavailable"
    VALIDATION_FAILURE = "ValidationFailure"


DEFAULT_MESSAGES: dict[ReasonCode, str] = {
    ReasonCode.UNAUTHENTICATED: "Authentication required to access this resource",
    ReasonCode.WRONG_ROLE: "Your role is not allowed to perform this action",
    ReasonCode.INSUFFICIENT_ROLE_LEVEL: "Your role level is too low for this action",
    ReasonCode.NO_ORGANIZATION: "Admin must belong to an organization",
    ReasonCode.ORGANIZATION_NOT_FOUND: "Organization not found",
    ReasonCode.ORGANIZATION_ACCESS_DENIED: "You do not have permission to access this organization",
    ReasonCode.NOT_AN_ADMIN_OF_ORGANIZATION: "You are not an admin of this organization",
    ReasonCode.PRIMARY_ADMIN_REQUIRED: "Only primary admins can perform this action",
    ReasonCode.MISSING_CAPABILITIES: "Missing permissions",
    ReasonCode.DUPLICATE_EMAIL: "A user with this email already exists",
    ReasonCode.DUPLICATE_ORGANIZATION: "An organization with this name already exists",
    ReasonCode.PRIMARY_ADMIN_EXISTS: "Organization already has a primary admin",
    ReasonCode.ADMIN_NOT_FOUND: "Admin not found in this organization",
    ReasonCode.CANNOT_MODIFY_SELF: "Cannot update your own permissions",
    ReasonCode.CANNOT_MODIFY_PRIMARY_ADMIN: "Cannot update primary admin permissions",
    ReasonCode.CANNOT_REMOVE_SELF: "Cannot remove yourself from organization",
    ReasonCode.CANNOT_REMOVE_PRIMARY_ADMIN: "Cannot remove primary admin",
    ReasonCode.STORE_UNAVAILABLE: "Data store unavailable, please retry",
    ReasonCode.VALIDATION_FAILURE: "Validation error",
}


class StoreUnavailableError(Exception):
    """The record store timed out or could not be reached."""


class DuplicateKeyError(Exception):
    """The record store rejected a write that violates a unique key."""

    def __init__(self, field: str, message: str | None = None):
        super().__init__(message or f"Duplicate value for {field}")
        self.field = field


class IntegrityFault(Exception):
    """
    Stored authorization state breaks an invariant.

    Examples: two primary admins in one organization, two memberships for the
    same user, a secondary admin holding a restricted capability.
    """

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.context = context
