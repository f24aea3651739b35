"""
Global roles and their ordering.
"""
import enum


class GlobalRole(str, enum.Enum):
    """Platform-wide role held by every user."""
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"
    SUPER_ADMIN = "superAdmin"
    SPECIAL_USER = "specialUser"


ROLE_LEVELS: dict[GlobalRole, int] = {
    GlobalRole.STUDENT: 1,
    GlobalRole.SPECIAL_USER: 1,  # Same level as student
    GlobalRole.TEACHER: 2,
    GlobalRole.ADMIN: 3,
    GlobalRole.SUPER_ADMIN: 4,
}


def level_of(role: GlobalRole | str | None) -> int:
    """Numeric level of a role; anything unrecognised is level 0."""
    try:
        return ROLE_LEVELS[GlobalRole(role)]
    except ValueError:
        return 0


def at_least(user_role: GlobalRole | str | None, min_role: GlobalRole | str) -> bool:
    """True if `user_role` sits at or above `min_role` in the hierarchy."""
    return level_of(user_role) >= level_of(min_role)
