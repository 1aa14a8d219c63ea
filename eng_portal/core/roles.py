from enum import Enum
from typing import Dict, Optional


# --- 1. Define the Roles ---
class Role(str, Enum):
    E_BASIC = "E-BASIC"     # Default tier for every new account
    E_TOOL = "E-TOOL"       # Unlocks tool-level catalog entries
    E_MASTER = "E-MASTER"   # Unlocks master tools and the course area
    ADMIN = "ADMIN"         # Back-office

    @property
    def rank(self) -> int:
        return ROLE_HIERARCHY[self]


class UserStatus(str, Enum):
    ACTIVE = "active"
    BANNED = "banned"


# --- 2. The Hierarchy (Role -> Ordinal) ---
ROLE_HIERARCHY: Dict[Role, int] = {
    Role.E_BASIC: 1,
    Role.E_TOOL: 2,
    Role.E_MASTER: 3,
    Role.ADMIN: 4,
}

UNKNOWN_RANK = 0


def parse_role(value) -> Role:
    """Boundary parser: turns a stored/submitted label into a Role or raises ValueError."""
    if isinstance(value, Role):
        return value
    if isinstance(value, str):
        try:
            return Role(value.strip().upper())
        except ValueError:
            pass
    raise ValueError(f"Unknown role: {value!r}")


def parse_status(value) -> UserStatus:
    if value is None:
        return UserStatus.ACTIVE
    if isinstance(value, UserStatus):
        return value
    try:
        return UserStatus(str(value).strip().lower())
    except ValueError:
        raise ValueError(f"Unknown status: {value!r}") from None


def rank(role) -> int:
    """Ordinal of a role label. None or anything unrecognized ranks below E-BASIC."""
    try:
        return ROLE_HIERARCHY[parse_role(role)]
    except ValueError:
        return UNKNOWN_RANK


def satisfies(actual_role, required_role: Optional[object] = None) -> bool:
    """True when actual_role is a known role ranked at or above required_role."""
    actual = rank(actual_role)
    if actual == UNKNOWN_RANK:
        return False
    return actual >= rank(required_role)
