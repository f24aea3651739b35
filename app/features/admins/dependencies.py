"""
Admin-management dependency injection functions.
"""
from typing import Annotated, Any
from fastapi import Depends, HTTPException, status

from app.core.database.store import RecordStore
from app.features.admins.notifications import EmailNotifier, Notifier
from app.features.admins.service import AdminManagementService, Outcome, OutcomeStatus
from app.features.permissions.dependencies import denial_exception, get_store
from app.features.users.dependencies import get_request_meta


async def get_notifier() -> Notifier:
    return EmailNotifier()


async def get_admin_service(
    store: Annotated[RecordStore, Depends(get_store)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    request_meta: Annotated[dict, Depends(get_request_meta)],
) -> AdminManagementService:
    return AdminManagementService(store, notifier=notifier, request_meta=request_meta)


def unwrap(outcome: Outcome) -> Any:
    """
    Payload of a successful outcome.

    Raises:
        HTTPException: status mapped from the denial reason, or 500 for a fault
    """
    if outcome.status == OutcomeStatus.OK:
        return outcome.payload
    if outcome.status == OutcomeStatus.DENIED:
        raise denial_exception(outcome.reason, outcome.message, **outcome.details)
    raise HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"reason": "InternalFault", "message": "Authorization data is inconsistent, contact support"},
    )
