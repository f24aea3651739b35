"""Tests for the authorization decision engine."""

import asyncio

import pytest

from app.core.database.store import RecordStore
from app.features.organizations.models import AdminMembership, AdminSubRole
from app.features.permissions.catalog import Capability
from app.features.permissions.engine import (
    AdminCapabilities,
    AllOf,
    AuthorizationEngine,
    ExactRoles,
    MinRole,
    OrganizationAccess,
    OrganizationMember,
    PrimaryAdminOnly,
    Principal,
    manage_resource,
)
from app.features.permissions.errors import IntegrityFault, ReasonCode
from app.features.permissions.roles import GlobalRole


class UntouchableStore:
    """Fails the test if the engine reaches the store."""

    async def find_organization(self, organization_id):
        raise AssertionError("organization store consulted")


class SlowSession:
    async def get(self, *args, **kwargs):
        await asyncio.sleep(1)


@pytest.fixture
def authz(store):
    return AuthorizationEngine(store)


# =============================================================================
# Role checks (no store needed)
# =============================================================================


class TestRoleChecks:
    async def test_missing_principal_is_unauthenticated(self):
        decision = await AuthorizationEngine(UntouchableStore()).authorize(None, MinRole(GlobalRole.STUDENT))
        assert not decision
        assert decision.reason == ReasonCode.UNAUTHENTICATED

    async def test_teacher_asking_for_admin_capability_is_wrong_role(self):
        teacher = Principal(id="t1", role=GlobalRole.TEACHER, organization_id="org1")
        decision = await AuthorizationEngine(UntouchableStore()).authorize(
            teacher, AdminCapabilities({Capability.ENROLL_STUDENTS})
        )
        assert decision.reason == ReasonCode.WRONG_ROLE

    async def test_min_role(self):
        engine = AuthorizationEngine(UntouchableStore())
        student = Principal(id="s1", role=GlobalRole.STUDENT)
        teacher = Principal(id="t1", role=GlobalRole.TEACHER)

        assert (await engine.authorize(student, MinRole(GlobalRole.TEACHER))).reason == ReasonCode.INSUFFICIENT_ROLE_LEVEL
        assert await engine.authorize(teacher, MinRole(GlobalRole.TEACHER))

    async def test_exact_roles_checked_before_min_role(self):
        engine = AuthorizationEngine(UntouchableStore())
        student = Principal(id="s1", role=GlobalRole.STUDENT)
        decision = await engine.authorize(student, MinRole(GlobalRole.ADMIN) & ExactRoles({"teacher"}))
        assert decision.reason == ReasonCode.WRONG_ROLE

    async def test_organization_access(self):
        engine = AuthorizationEngine(UntouchableStore())
        teacher = Principal(id="t1", role=GlobalRole.TEACHER, organization_id="org1")

        assert await engine.authorize(teacher, OrganizationAccess("org1"))
        denied = await engine.authorize(teacher, OrganizationAccess("org2"))
        assert denied.reason == ReasonCode.ORGANIZATION_ACCESS_DENIED

    async def test_admin_without_organization(self):
        engine = AuthorizationEngine(UntouchableStore())
        admin = Principal(id="a1", role=GlobalRole.ADMIN)
        decision = await engine.authorize(admin, OrganizationMember())
        assert decision.reason == ReasonCode.NO_ORGANIZATION

    async def test_super_admin_passes_everything(self):
        engine = AuthorizationEngine(UntouchableStore())
        root = Principal(id="r1", role=GlobalRole.SUPER_ADMIN)
        requirement = (
            PrimaryAdminOnly()
            & AdminCapabilities(Capability)
            & OrganizationAccess("someone-elses-org")
            & ExactRoles({GlobalRole.TEACHER})
        )
        decision = await engine.authorize(root, requirement)
        assert decision
        assert decision.context.bypass
        assert all(decision.context.permissions.values())

    def test_requirements_flatten_into_one_conjunction(self):
        requirement = PrimaryAdminOnly() & (MinRole(GlobalRole.ADMIN) & OrganizationMember())
        assert isinstance(requirement, AllOf)
        assert list(requirement.parts()) == [PrimaryAdminOnly(), MinRole(GlobalRole.ADMIN), OrganizationMember()]


# =============================================================================
# Organization-scoped checks
# =============================================================================


class TestMembershipChecks:
    async def test_primary_admin_allowed_with_context(self, authz, school):
        decision = await authz.authorize(school.primary, PrimaryAdminOnly() & manage_resource("admin"))
        assert decision
        assert decision.context.organization_id == school.organization_id
        assert decision.context.sub_role == AdminSubRole.PRIMARY_ADMIN
        assert decision.context.organization is not None

    async def test_secondary_admin_is_not_primary(self, authz, school):
        decision = await authz.authorize(school.secondary, PrimaryAdminOnly())
        assert decision.reason == ReasonCode.PRIMARY_ADMIN_REQUIRED

    async def test_missing_capabilities_are_reported_sorted(self, authz, school):
        requirement = AdminCapabilities({Capability.MANAGE_CONTENT, Capability.ENROLL_STUDENTS, Capability.MANAGE_ADMINS})
        decision = await authz.authorize(school.secondary, requirement)
        assert decision.reason == ReasonCode.MISSING_CAPABILITIES
        assert decision.missing == (Capability.MANAGE_ADMINS, Capability.MANAGE_CONTENT)
        assert decision.to_dict()["missing_capabilities"] == ["canManageAdmins", "canManageContent"]

    async def test_secondary_admin_with_granted_capability(self, authz, school):
        assert await authz.authorize(school.secondary, manage_resource("student"))

    async def test_admin_role_without_membership(self, authz, store, school):
        stray = await store.create_principal(
            name="Stray Admin", email="stray@example.com", role=GlobalRole.ADMIN, organization_id=school.organization_id
        )
        await store.commit()
        decision = await authz.authorize(Principal.from_user(stray), OrganizationMember())
        assert decision.reason == ReasonCode.NOT_AN_ADMIN_OF_ORGANIZATION

    async def test_dangling_organization_reference(self, authz):
        admin = Principal(id="a1", role=GlobalRole.ADMIN, organization_id="01HZZZZZZZZZZZZZZZZZZZZZZZ")
        decision = await authz.authorize(admin, OrganizationMember())
        assert decision.reason == ReasonCode.ORGANIZATION_NOT_FOUND

    async def test_store_timeout_is_store_unavailable(self):
        engine = AuthorizationEngine(RecordStore(SlowSession(), timeout=0.01))
        admin = Principal(id="a1", role=GlobalRole.ADMIN, organization_id="org1")
        decision = await engine.authorize(admin, OrganizationMember())
        assert decision.reason == ReasonCode.STORE_UNAVAILABLE

    async def test_two_primary_admins_is_a_fault_not_a_denial(self, authz, db, store, school):
        organization = await store.find_organization(school.organization_id)
        # Bypass the aggregate to simulate corrupted stored state
        organization.admins[1].sub_role = AdminSubRole.PRIMARY_ADMIN
        db.add(organization)
        await db.flush()
        await db.commit()

        with pytest.raises(IntegrityFault):
            await authz.authorize(school.primary, PrimaryAdminOnly())


def test_membership_capability_lookup():
    membership = AdminMembership(permissions={"canViewAnalytics": True})
    assert membership.has_capability(Capability.VIEW_ANALYTICS)
    assert not membership.has_capability(Capability.MANAGE_CLASSES)
