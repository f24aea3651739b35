"""API tests for the route-protection dependencies.

Mounts small endpoints guarded by require() and can_manage_resource() on a
dedicated app, the way resource routes are expected to use them.
"""

from typing import Annotated

import pytest_asyncio
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient

from app.core.database.engine import get_db
from app.features.permissions.dependencies import REASON_STATUS, can_manage_resource, require
from app.features.permissions.engine import MinRole, PrimaryAdminOnly, Principal
from app.features.permissions.errors import ReasonCode
from app.features.permissions.roles import GlobalRole
from app.features.users.auth import create_access_token


# =============================================================================
# Test Endpoints Setup
# =============================================================================


guarded = FastAPI()


@guarded.get("/students")
async def enroll_students(principal: Annotated[Principal, Depends(can_manage_resource("student"))]):
    return {"user_id": principal.id}


@guarded.get("/content")
async def manage_content(principal: Annotated[Principal, Depends(can_manage_resource("content"))]):
    return {"user_id": principal.id}


@guarded.get("/staff-room")
async def staff_room(principal: Annotated[Principal, Depends(require(MinRole(GlobalRole.TEACHER)))]):
    return {"user_id": principal.id}


@guarded.get("/settings")
async def settings(principal: Annotated[Principal, Depends(require(PrimaryAdminOnly()))]):
    return {"user_id": principal.id}


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    guarded.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(transport=ASGITransport(app=guarded), base_url="http://test") as client:
        yield client
    guarded.dependency_overrides.clear()


def auth(principal) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(principal.id)}"}


def test_every_reason_has_a_status():
    assert set(REASON_STATUS) == set(ReasonCode)


class TestGuardedRoutes:
    async def test_secondary_admin_with_capability(self, client, school):
        response = await client.get("/students", headers=auth(school.secondary))
        assert response.status_code == 200
        assert response.json() == {"user_id": school.secondary.id}

    async def test_secondary_admin_missing_capability(self, client, school):
        response = await client.get("/content", headers=auth(school.secondary))
        assert response.status_code == 403
        assert response.json()["detail"] == {
            "reason": "MissingCapabilities",
            "message": "Access denied. Missing permissions: canManageContent",
            "missing_capabilities": ["canManageContent"],
        }

    async def test_primary_admin_has_every_capability(self, client, school):
        response = await client.get("/content", headers=auth(school.primary))
        assert response.status_code == 200

    async def test_min_role(self, client, school):
        assert (await client.get("/staff-room", headers=auth(school.teacher))).status_code == 200
        student = await client.get("/staff-room", headers=auth(school.student))
        assert student.status_code == 403
        assert student.json()["detail"]["reason"] == "InsufficientRoleLevel"

    async def test_super_admin_bypass(self, client, school):
        assert (await client.get("/settings", headers=auth(school.super_admin))).status_code == 200

    async def test_anonymous(self, client):
        response = await client.get("/settings")
        assert response.status_code == 401
        assert response.headers["www-authenticate"] == "Bearer"
