"""
Role resolution for a (collection, user) pair.

Pure functions over a Collection record. Callers must pass the freshest
record they have; nothing here caches.
"""

from typing import Optional

from core.access.roles import (
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_FOLLOWER,
    ROLE_OUTSIDER,
)
from core.models import Collection


# Membership state-machine states (what a user sees on the collection's action button)
STATE_OWNER = "owner"
STATE_ADMIN = "admin"
STATE_MEMBER = "member"
STATE_FOLLOWING = "following"
STATE_PENDING = "pending"
STATE_OUTSIDER = "outsider"


def resolve_role(collection: Collection, user_id: Optional[str]) -> str:
    """
    Resolve the single highest role a user holds in a collection.

    Args:
        collection: Latest collection record
        user_id: User to resolve (None/empty resolves to outsider)

    Returns:
        One of ROLE_OWNER, ROLE_ADMIN, ROLE_MEMBER, ROLE_FOLLOWER, ROLE_OUTSIDER
    """
    if not user_id:
        return ROLE_OUTSIDER
    if user_id == collection.owner_id:
        return ROLE_OWNER
    if user_id in collection.admins:
        return ROLE_ADMIN
    if user_id in collection.members:
        return ROLE_MEMBER
    if user_id in collection.followers:
        return ROLE_FOLLOWER
    return ROLE_OUTSIDER


def has_pending_request(collection: Collection, user_id: Optional[str]) -> bool:
    """Check if a user is waiting for approval to join."""
    return bool(user_id) and user_id in collection.pending_requests


def membership_state(collection: Collection, user_id: Optional[str]) -> str:
    """
    Resolve the membership state-machine state for a user.

    A pending request outranks following: a follower who asked to join is
    shown as pending until the request is decided.
    """
    role = resolve_role(collection, user_id)
    if role == ROLE_OWNER:
        return STATE_OWNER
    if role == ROLE_ADMIN:
        return STATE_ADMIN
    if role == ROLE_MEMBER:
        return STATE_MEMBER
    if has_pending_request(collection, user_id):
        return STATE_PENDING
    if role == ROLE_FOLLOWER:
        return STATE_FOLLOWING
    return STATE_OUTSIDER
