"""
Action constants and the permission resolver.

Maps (role, action, context) to an allow/deny decision. The table in
``ROLE_ACTIONS`` is the single source of truth; context only narrows it for
post-level actions in single-occupant collections.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Set

from core.access.roles import (
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_FOLLOWER,
    ROLE_OUTSIDER,
)
from core.errors import PermissionDenied
from core.models import TYPE_INDIVIDUAL
from core.metrics import audit_access_denial, record_access_check

logger = logging.getLogger(__name__)


# ============================================================================
# Action Constants
# ============================================================================

ACTION_EDIT_COLLECTION = "edit_collection"
"""Edit name, photo, description or visibility."""

ACTION_MANAGE_ACCESS = "manage_access"
"""Edit the viewer allow/deny lists."""

ACTION_VIEW_FOLLOWERS = "view_followers"
"""See who follows the collection."""

ACTION_PROMOTE_MEMBER = "promote_member"
"""Promote a member to admin."""

ACTION_DEMOTE_ADMIN = "demote_admin"
"""Demote an admin back to member."""

ACTION_REMOVE_ADMIN = "remove_admin"
"""Remove an admin from the collection."""

ACTION_REMOVE_MEMBER = "remove_member"
"""Remove a (non-admin) member from the collection."""

ACTION_DELETE_COLLECTION = "delete_collection"
"""Delete the collection and everything in it."""

ACTION_PIN_POST = "pin_post"
"""Pin or unpin any post."""

ACTION_DELETE_ANY_POST = "delete_any_post"
"""Delete a post written by someone else."""

ACTION_DELETE_OWN_POST = "delete_own_post"
"""Delete a post the actor wrote."""

ACTION_CREATE_POST = "create_post"
"""Post media into the collection."""

ACTION_REVIEW_REQUESTS = "review_requests"
"""Approve or deny pending join requests."""

ACTION_INVITE = "invite"
"""Add users to an invite-type collection."""

ACTION_REMOVE_SELF = "remove_self"
"""Leave the collection."""

ACTION_LEAVE = ACTION_REMOVE_SELF

ACTION_FOLLOW = "follow"
"""Follow or unfollow the collection."""

ACTION_REQUEST = "request"
"""Ask (or stop asking) to join a request-type collection."""

ACTION_JOIN = "join"
"""Join an open collection."""

ALL_ACTIONS = frozenset({
    ACTION_EDIT_COLLECTION,
    ACTION_MANAGE_ACCESS,
    ACTION_VIEW_FOLLOWERS,
    ACTION_PROMOTE_MEMBER,
    ACTION_DEMOTE_ADMIN,
    ACTION_REMOVE_ADMIN,
    ACTION_REMOVE_MEMBER,
    ACTION_DELETE_COLLECTION,
    ACTION_PIN_POST,
    ACTION_DELETE_ANY_POST,
    ACTION_DELETE_OWN_POST,
    ACTION_CREATE_POST,
    ACTION_REVIEW_REQUESTS,
    ACTION_INVITE,
    ACTION_REMOVE_SELF,
    ACTION_FOLLOW,
    ACTION_REQUEST,
    ACTION_JOIN,
})

# Actions whose grant collapses to "post author" in Individual collections
AUTHOR_SCOPED_ACTIONS = frozenset({
    ACTION_PIN_POST,
    ACTION_DELETE_ANY_POST,
    ACTION_DELETE_OWN_POST,
})


# ============================================================================
# Role-to-Action Mapping
# ============================================================================

ROLE_ACTIONS: Dict[str, Set[str]] = {
    ROLE_OWNER: {
        ACTION_EDIT_COLLECTION,
        ACTION_MANAGE_ACCESS,
        ACTION_VIEW_FOLLOWERS,
        ACTION_PROMOTE_MEMBER,
        ACTION_DEMOTE_ADMIN,
        ACTION_REMOVE_ADMIN,
        ACTION_REMOVE_MEMBER,
        ACTION_DELETE_COLLECTION,
        ACTION_PIN_POST,
        ACTION_DELETE_ANY_POST,
        ACTION_DELETE_OWN_POST,
        ACTION_CREATE_POST,
        ACTION_REVIEW_REQUESTS,
        ACTION_INVITE,
        # Explicitly NO: ACTION_REMOVE_SELF (owner deletes instead of leaving)
    },

    ROLE_ADMIN: {
        ACTION_EDIT_COLLECTION,
        ACTION_VIEW_FOLLOWERS,
        ACTION_REMOVE_MEMBER,
        ACTION_PIN_POST,
        ACTION_DELETE_ANY_POST,
        ACTION_DELETE_OWN_POST,
        ACTION_CREATE_POST,
        ACTION_REVIEW_REQUESTS,
        ACTION_INVITE,
        ACTION_REMOVE_SELF,
    },

    ROLE_MEMBER: {
        ACTION_DELETE_OWN_POST,
        ACTION_CREATE_POST,
        ACTION_REMOVE_SELF,
    },

    ROLE_FOLLOWER: {
        ACTION_FOLLOW,
        ACTION_REQUEST,
        ACTION_JOIN,
    },

    ROLE_OUTSIDER: {
        ACTION_FOLLOW,
        ACTION_REQUEST,
        ACTION_JOIN,
    },
}


@dataclass(frozen=True)
class PermissionContext:
    """Facts about the target that can narrow a permission decision."""
    collection_type: Optional[str] = None
    is_author: Optional[bool] = None


# ============================================================================
# Authorization Functions
# ============================================================================

def can_perform(role: str, action: str, context: Optional[PermissionContext] = None) -> bool:
    """
    Check if a role may perform an action.

    In an Individual collection the post-level actions (pin, delete own,
    delete any) belong to the post author and nobody else, whatever the
    role. Outside of that, ``context.is_author`` only matters for
    ACTION_DELETE_OWN_POST.

    Args:
        role: Role constant (e.g. ROLE_ADMIN)
        action: Action constant (e.g. ACTION_PIN_POST)
        context: Optional narrowing context

    Returns:
        True if permitted, False otherwise

    Examples:
        >>> can_perform("owner", ACTION_DELETE_COLLECTION)
        True
        >>> can_perform("admin", ACTION_PROMOTE_MEMBER)
        False
        >>> can_perform("owner", ACTION_REMOVE_SELF)
        False
    """
    if not role:
        logger.warning("can_perform called with empty role")
        return False

    if action not in ALL_ACTIONS:
        logger.warning(f"Unknown action: {action}")
        return False

    normalized_role = role.lower()
    if normalized_role not in ROLE_ACTIONS:
        logger.warning(f"Unknown role: {role}")
        return False

    if context is not None and action in AUTHOR_SCOPED_ACTIONS:
        if context.collection_type == TYPE_INDIVIDUAL:
            return bool(context.is_author)
        if action == ACTION_DELETE_OWN_POST and context.is_author is False:
            return False

    return action in ROLE_ACTIONS[normalized_role]


def get_role_actions(role: str) -> Set[str]:
    """
    Get all actions a role may perform (without context).

    Examples:
        >>> sorted(get_role_actions("member"))
        ['create_post', 'delete_own_post', 'remove_self']
    """
    if not role:
        return set()
    return set(ROLE_ACTIONS.get(role.lower(), set()))


def get_missing_actions(role: str, required_actions: Iterable[str]) -> Set[str]:
    """
    Get the actions a role is missing from a required set.

    Examples:
        >>> sorted(get_missing_actions("admin", [ACTION_EDIT_COLLECTION, ACTION_MANAGE_ACCESS]))
        ['manage_access']
    """
    return {action for action in required_actions if not can_perform(role, action)}


def removal_action_for(target_role: str) -> Optional[str]:
    """
    Action an actor needs to remove someone holding ``target_role``.

    Returns None when the target can never be removed (owner) or is not a
    member at all.
    """
    if target_role == ROLE_ADMIN:
        return ACTION_REMOVE_ADMIN
    if target_role == ROLE_MEMBER:
        return ACTION_REMOVE_MEMBER
    return None


def can_remove(actor_role: str, target_role: str) -> bool:
    """
    Check if an actor may remove a target from the collection.

    Examples:
        >>> can_remove("admin", "member")
        True
        >>> can_remove("admin", "admin")
        False
        >>> can_remove("owner", "owner")
        False
    """
    action = removal_action_for(target_role)
    if action is None:
        return False
    return can_perform(actor_role, action)


def can_pin_post(role: str, collection_type: Optional[str], is_author: bool) -> bool:
    """Check pin/unpin rights for one post."""
    return can_perform(
        role,
        ACTION_PIN_POST,
        PermissionContext(collection_type=collection_type, is_author=is_author),
    )


def can_delete_post(role: str, collection_type: Optional[str], is_author: bool) -> bool:
    """Check delete rights for one post (own posts or moderation)."""
    context = PermissionContext(collection_type=collection_type, is_author=is_author)
    if can_perform(role, ACTION_DELETE_ANY_POST, context):
        return True
    return is_author and can_perform(role, ACTION_DELETE_OWN_POST, context)


def require_action(
    role: str,
    action: str,
    *,
    actor_id: Optional[str] = None,
    collection_id: Optional[str] = None,
    target_id: Optional[str] = None,
    context: Optional[PermissionContext] = None,
    allowed: Optional[bool] = None,
) -> None:
    """
    Enforce a permission decision, recording metrics and auditing denials.

    Args:
        role: Actor's freshly resolved role
        action: Action constant being attempted
        actor_id: Actor user id (for the audit trail)
        collection_id: Collection being acted on
        target_id: User or post being acted on
        context: Optional narrowing context
        allowed: Precomputed decision; computed with can_perform when None

    Raises:
        PermissionDenied: If the action is not permitted
    """
    if allowed is None:
        allowed = can_perform(role, action, context)

    record_access_check(allowed=allowed, action=action, role=role)

    if allowed:
        logger.debug(
            f"Access granted: actor={actor_id} role={role} action={action} "
            f"collection={collection_id}"
        )
        return

    audit_access_denial(
        action=action,
        actor_id=actor_id,
        role=role,
        collection_id=collection_id,
        target_id=target_id,
    )
    raise PermissionDenied(
        f"Role '{role}' may not perform '{action}'",
        {
            "action": action,
            "role": role,
            "collection_id": collection_id,
            "target_id": target_id,
        },
    )
