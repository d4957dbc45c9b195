"""
Role definitions and the collection role hierarchy.

A user's relationship to a collection is exactly one of these roles; the
numeric tiers order them so that higher tiers include the rights of lower
ones where the action table says so.
"""

from typing import Dict, List


# ============================================================================
# Role Constants
# ============================================================================

ROLE_OWNER = "owner"
"""Original creator of the collection. Irrevocable."""

ROLE_ADMIN = "admin"
"""Member promoted by the owner to edit and moderate."""

ROLE_MEMBER = "member"
"""Can view and post into the collection."""

ROLE_FOLLOWER = "follower"
"""Follows the collection without membership."""

ROLE_OUTSIDER = "outsider"
"""No relationship to the collection."""

# Complete set of all roles
ALL_ROLES = frozenset({
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_FOLLOWER,
    ROLE_OUTSIDER,
})


# ============================================================================
# Role Tiers
# ============================================================================

# Higher tier outranks lower tier
ROLE_TIERS: Dict[str, int] = {
    ROLE_OWNER: 4,
    ROLE_ADMIN: 3,
    ROLE_MEMBER: 2,
    ROLE_FOLLOWER: 1,
    ROLE_OUTSIDER: 0,
}

# Tier for anything that is not a known role
DEFAULT_TIER = 0

# Roles that count as membership of the collection
MEMBER_ROLES = frozenset({ROLE_OWNER, ROLE_ADMIN, ROLE_MEMBER})


ROLE_DESCRIPTIONS: Dict[str, str] = {
    ROLE_OWNER: "Original creator; cannot leave, be removed or be demoted",
    ROLE_ADMIN: "Member promoted by the owner; edits and moderates",
    ROLE_MEMBER: "Posts and views by membership",
    ROLE_FOLLOWER: "Follows without membership",
    ROLE_OUTSIDER: "No relationship to the collection",
}


def role_level(role: str) -> int:
    """
    Get the numeric tier for a role.

    Args:
        role: Role name (case-insensitive)

    Returns:
        Tier (0-4), or DEFAULT_TIER for unknown roles

    Examples:
        >>> role_level("owner")
        4
        >>> role_level("follower")
        1
        >>> role_level("superuser")
        0
    """
    if not role:
        return DEFAULT_TIER
    return ROLE_TIERS.get(role.lower(), DEFAULT_TIER)


def outranks(role: str, other: str) -> bool:
    """
    Check if ``role`` sits strictly above ``other``.

    Examples:
        >>> outranks("owner", "admin")
        True
        >>> outranks("admin", "admin")
        False
    """
    return role_level(role) > role_level(other)


def is_at_least(role: str, minimum: str) -> bool:
    """
    Check if ``role`` is at or above ``minimum``.

    Unknown roles are never at least anything.

    Examples:
        >>> is_at_least("admin", "member")
        True
        >>> is_at_least("follower", "member")
        False
    """
    if not validate_role(role):
        return False
    return role_level(role) >= role_level(minimum)


def is_member_role(role: str) -> bool:
    """Check if a role counts as membership (owner, admin or member)."""
    return bool(role) and role.lower() in MEMBER_ROLES


def validate_role(role: str) -> bool:
    """
    Check if a role is valid.

    Examples:
        >>> validate_role("member")
        True
        >>> validate_role("")
        False
    """
    if not role:
        return False
    return role.lower() in ALL_ROLES


def get_role_description(role: str) -> str:
    """Get human-readable description of a role, or empty string if unknown."""
    if not role:
        return ""
    return ROLE_DESCRIPTIONS.get(role.lower(), "")


def roles_by_tier() -> List[str]:
    """All roles ordered from highest tier to lowest."""
    return sorted(ALL_ROLES, key=lambda r: ROLE_TIERS[r], reverse=True)
