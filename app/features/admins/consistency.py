"""
Consistency checks between admin memberships and principals.

A membership and its user are changed in one transaction, but rows written by
older code or by hand can still disagree. `check_admin_consistency` reports
such records and, with `repair=True`, fixes the ones with an unambiguous fix.
"""
from dataclasses import dataclass, field
from typing import Any

from app.core.database.store import RecordStore
from app.features.permissions.errors import IntegrityFault
from app.features.permissions.roles import GlobalRole
from app.utils import get_logger


log = get_logger(__name__)


@dataclass
class ConsistencyIssue:
    kind: str
    organization_id: str | None
    user_id: str | None
    repaired: bool = False
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        status = "repaired" if self.repaired else "found"
        extra = f" {self.details}" if self.details else ""
        return f"{self.kind}: user={self.user_id} org={self.organization_id} ({status}){extra}"


@dataclass
class ConsistencyReport:
    issues: list[ConsistencyIssue] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.issues


# Membership whose user row is gone; repair drops the membership
ORPHANED_MEMBERSHIP = "orphaned_membership"
# Membership whose user is not an admin of that organization; reported only
MISMATCHED_PRINCIPAL = "mismatched_principal"
# Admin-role user without a membership; repair demotes to specialUser
ADMIN_WITHOUT_MEMBERSHIP = "admin_without_membership"
# Admin set breaks an invariant; reported only, the organization is left as is
INTEGRITY_FAULT = "integrity_fault"


async def check_admin_consistency(store: RecordStore, repair: bool = False) -> ConsistencyReport:
    """
    Cross-check every organization's admin set against the users table.

    An organization whose admin set fails `check_invariants()` is reported as
    an integrity fault and never repaired automatically; the other checks
    still run on it. Repairs are committed in one transaction at the end.
    """
    report = ConsistencyReport()
    organizations = await store.list_organizations()
    member_ids: set[str] = set()

    for organization in organizations:
        try:
            organization.check_invariants()
            faulted = False
        except IntegrityFault as e:
            faulted = True
            report.issues.append(ConsistencyIssue(
                INTEGRITY_FAULT,
                organization.id,
                e.context.get("user_id"),
                details={"message": str(e), **e.context},
            ))
        fix = repair and not faulted

        users = await store.find_principals([m.user_id for m in organization.admins])
        for membership in list(organization.admins):
            member_ids.add(membership.user_id)
            user = users.get(membership.user_id)
            if user is None:
                issue = ConsistencyIssue(ORPHANED_MEMBERSHIP, organization.id, membership.user_id)
                if fix:
                    organization.discard_admin(membership.user_id)
                    issue.repaired = True
                report.issues.append(issue)
            elif user.role != GlobalRole.ADMIN or user.organization_id != organization.id:
                report.issues.append(ConsistencyIssue(MISMATCHED_PRINCIPAL, organization.id, user.id))
        if fix:
            await store.save_organization(organization)

    for user in await store.find_principals_by_role(GlobalRole.ADMIN):
        if user.id in member_ids:
            continue
        issue = ConsistencyIssue(ADMIN_WITHOUT_MEMBERSHIP, user.organization_id, user.id)
        if repair:
            user.role = GlobalRole.SPECIAL_USER
            user.organization_id = None
            await store.save_principal(user)
            issue.repaired = True
        report.issues.append(issue)

    if repair:
        await store.commit()
    for issue in report.issues:
        log.warning(str(issue))
    log.info(f"Admin consistency check finished: {len(report.issues)} issue(s) across {len(organizations)} organization(s)")
    return report
