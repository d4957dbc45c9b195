"""
Collection access control.

Provides role definitions, role resolution for a (collection, user) pair,
the action/permission table, and viewer visibility rules.
"""

from .roles import (
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_FOLLOWER,
    ROLE_OUTSIDER,
    ALL_ROLES,
    ROLE_TIERS,
    MEMBER_ROLES,
    role_level,
    outranks,
    is_at_least,
    is_member_role,
    validate_role,
)

from .actions import (
    # Action constants
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
    ACTION_LEAVE,
    ACTION_FOLLOW,
    ACTION_REQUEST,
    ACTION_JOIN,
    ALL_ACTIONS,
    ROLE_ACTIONS,
    # Functions
    PermissionContext,
    can_perform,
    can_remove,
    can_pin_post,
    can_delete_post,
    get_role_actions,
    get_missing_actions,
    require_action,
)

from .resolve import (
    STATE_OWNER,
    STATE_ADMIN,
    STATE_MEMBER,
    STATE_FOLLOWING,
    STATE_PENDING,
    STATE_OUTSIDER,
    resolve_role,
    has_pending_request,
    membership_state,
)

from .visibility import (
    can_view_collection,
    filter_visible_collections,
)

__all__ = [
    # Roles
    "ROLE_OWNER",
    "ROLE_ADMIN",
    "ROLE_MEMBER",
    "ROLE_FOLLOWER",
    "ROLE_OUTSIDER",
    "ALL_ROLES",
    "ROLE_TIERS",
    "MEMBER_ROLES",
    "role_level",
    "outranks",
    "is_at_least",
    "is_member_role",
    "validate_role",
    # Actions
    "ACTION_EDIT_COLLECTION",
    "ACTION_MANAGE_ACCESS",
    "ACTION_VIEW_FOLLOWERS",
    "ACTION_PROMOTE_MEMBER",
    "ACTION_DEMOTE_ADMIN",
    "ACTION_REMOVE_ADMIN",
    "ACTION_REMOVE_MEMBER",
    "ACTION_DELETE_COLLECTION",
    "ACTION_PIN_POST",
    "ACTION_DELETE_ANY_POST",
    "ACTION_DELETE_OWN_POST",
    "ACTION_CREATE_POST",
    "ACTION_REVIEW_REQUESTS",
    "ACTION_INVITE",
    "ACTION_REMOVE_SELF",
    "ACTION_LEAVE",
    "ACTION_FOLLOW",
    "ACTION_REQUEST",
    "ACTION_JOIN",
    "ALL_ACTIONS",
    "ROLE_ACTIONS",
    # Permission functions
    "PermissionContext",
    "can_perform",
    "can_remove",
    "can_pin_post",
    "can_delete_post",
    "get_role_actions",
    "get_missing_actions",
    "require_action",
    # Resolution
    "STATE_OWNER",
    "STATE_ADMIN",
    "STATE_MEMBER",
    "STATE_FOLLOWING",
    "STATE_PENDING",
    "STATE_OUTSIDER",
    "resolve_role",
    "has_pending_request",
    "membership_state",
    # Visibility
    "can_view_collection",
    "filter_visible_collections",
]
