"""
Route protection for the authorization core.

Maps `Decision` and `Outcome` values onto HTTP errors and wraps the engine in
FastAPI dependencies.
"""
from typing import Annotated, Any
from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.database.store import RecordStore
from app.features.permissions.catalog import ResourceKind
from app.features.permissions.engine import AuthorizationEngine, Decision, Principal, Requirement, manage_resource
from app.features.permissions.errors import ReasonCode
from app.features.users.dependencies import get_current_principal
from app.utils import get_logger


log = get_logger(__name__)


# ============================================================================
# Status mapping
# ============================================================================

REASON_STATUS: dict[ReasonCode, int] = {
    ReasonCode.UNAUTHENTICATED: status.HTTP_401_UNAUTHORIZED,
    ReasonCode.WRONG_ROLE: status.HTTP_403_FORBIDDEN,
    ReasonCode.INSUFFICIENT_ROLE_LEVEL: status.HTTP_403_FORBIDDEN,
    ReasonCode.ORGANIZATION_ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    ReasonCode.NOT_AN_ADMIN_OF_ORGANIZATION: status.HTTP_403_FORBIDDEN,
    ReasonCode.PRIMARY_ADMIN_REQUIRED: status.HTTP_403_FORBIDDEN,
    ReasonCode.MISSING_CAPABILITIES: status.HTTP_403_FORBIDDEN,
    ReasonCode.NO_ORGANIZATION: status.HTTP_400_BAD_REQUEST,
    ReasonCode.DUPLICATE_EMAIL: status.HTTP_400_BAD_REQUEST,
    ReasonCode.CANNOT_MODIFY_SELF: status.HTTP_400_BAD_REQUEST,
    ReasonCode.CANNOT_MODIFY_PRIMARY_ADMIN: status.HTTP_400_BAD_REQUEST,
    ReasonCode.CANNOT_REMOVE_SELF: status.HTTP_400_BAD_REQUEST,
    ReasonCode.CANNOT_REMOVE_PRIMARY_ADMIN: status.HTTP_400_BAD_REQUEST,
    ReasonCode.VALIDATION_FAILURE: status.HTTP_400_BAD_REQUEST,
    ReasonCode.ORGANIZATION_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReasonCode.ADMIN_NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ReasonCode.DUPLICATE_ORGANIZATION: status.HTTP_409_CONFLICT,
    ReasonCode.PRIMARY_ADMIN_EXISTS: status.HTTP_409_CONFLICT,
    ReasonCode.STORE_UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def denial_exception(reason: ReasonCode, message: str | None, **extra: Any) -> HTTPException:
    """HTTPException for a denial; the detail keeps the reason code machine-readable."""
    detail = {"reason": reason.value, "message": message, **extra}
    headers = {"WWW-Authenticate": "Bearer"} if reason == ReasonCode.UNAUTHENTICATED else None
    return HTTPException(status_code=REASON_STATUS[reason], detail=detail, headers=headers)


def decision_exception(decision: Decision) -> HTTPException:
    body = decision.to_dict()
    return denial_exception(decision.reason, body.pop("message"), **{k: v for k, v in body.items() if k != "reason"})


# ============================================================================
# FastAPI Dependencies
# ============================================================================

async def get_store(db: Annotated[AsyncSession, Depends(get_db)]) -> RecordStore:
    return RecordStore(db)


def require(requirement: Requirement):
    """
    FastAPI dependency enforcing `requirement` for the current principal.

    Usage:
        @router.get("/analytics")
        async def analytics(
            principal: Annotated[Principal, Depends(require(AdminCapabilities({Capability.VIEW_ANALYTICS})))]
        ):
            ...

    Returns:
        Dependency function that returns the principal when allowed

    Raises:
        HTTPException: with the status mapped from the denial reason
    """
    async def requirement_dependency(
        principal: Annotated[Principal | None, Depends(get_current_principal)],
        store: Annotated[RecordStore, Depends(get_store)],
    ) -> Principal:
        decision = await AuthorizationEngine(store).authorize(principal, requirement)
        if not decision:
            raise decision_exception(decision)
        return principal

    return requirement_dependency


def can_manage_resource(kind: ResourceKind | str):
    """
    Dependency requiring the capabilities for managing `kind`.

    An unknown kind raises ValueError here, when the route is declared.
    """
    return require(manage_resource(kind))
