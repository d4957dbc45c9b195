"""
Table-driven tests for the permission resolver.

Enumerates the full (role, action) cross-product and checks every decision
against the expected table.
"""

import pytest

from core.access import (
    # Roles
    ROLE_OWNER,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_FOLLOWER,
    ROLE_OUTSIDER,
    ALL_ROLES,
    # Actions
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
from core.errors import PermissionDenied
from core.metrics import get_counter
from core.models import TYPE_INDIVIDUAL, TYPE_OPEN


# ============================================================================
# Permission Matrix Test Data
# ============================================================================

#                          owner  admin  member follower outsider
PERMISSION_TABLE = {
    ACTION_EDIT_COLLECTION:   (True,  True,  False, False, False),
    ACTION_MANAGE_ACCESS:     (True,  False, False, False, False),
    ACTION_VIEW_FOLLOWERS:    (True,  True,  False, False, False),
    ACTION_PROMOTE_MEMBER:    (True,  False, False, False, False),
    ACTION_DEMOTE_ADMIN:      (True,  False, False, False, False),
    ACTION_REMOVE_ADMIN:      (True,  False, False, False, False),
    ACTION_REMOVE_MEMBER:     (True,  True,  False, False, False),
    ACTION_DELETE_COLLECTION: (True,  False, False, False, False),
    ACTION_PIN_POST:          (True,  True,  False, False, False),
    ACTION_DELETE_ANY_POST:   (True,  True,  False, False, False),
    ACTION_DELETE_OWN_POST:   (True,  True,  True,  False, False),
    ACTION_CREATE_POST:       (True,  True,  True,  False, False),
    ACTION_REVIEW_REQUESTS:   (True,  True,  False, False, False),
    ACTION_INVITE:            (True,  True,  False, False, False),
    ACTION_REMOVE_SELF:       (False, True,  True,  False, False),
    ACTION_FOLLOW:            (False, False, False, True,  True),
    ACTION_REQUEST:           (False, False, False, True,  True),
    ACTION_JOIN:              (False, False, False, True,  True),
}

ROLE_ORDER = (ROLE_OWNER, ROLE_ADMIN, ROLE_MEMBER, ROLE_FOLLOWER, ROLE_OUTSIDER)

PERMISSION_TEST_CASES = [
    (role, action, row[i])
    for action, row in PERMISSION_TABLE.items()
    for i, role in enumerate(ROLE_ORDER)
]

INVALID_TEST_CASES = [
    # Unknown roles deny everything
    ("unknown_role", ACTION_EDIT_COLLECTION, False),
    ("superuser", ACTION_DELETE_COLLECTION, False),
    ("", ACTION_CREATE_POST, False),
    (None, ACTION_CREATE_POST, False),

    # Known roles with unknown actions deny
    (ROLE_OWNER, "rename_everything", False),
    (ROLE_ADMIN, "", False),
]


# ============================================================================
# Test Classes
# ============================================================================

class TestPermissionMatrix:
    """The complete role-to-action matrix."""

    def test_table_covers_every_action(self):
        assert set(PERMISSION_TABLE) == set(ALL_ACTIONS)

    def test_table_covers_every_role(self):
        assert set(ROLE_ORDER) == set(ALL_ROLES)

    @pytest.mark.parametrize("role,action,expected", PERMISSION_TEST_CASES)
    def test_can_perform_matrix(self, role, action, expected):
        result = can_perform(role, action)
        assert result == expected, (
            f"Role '{role}' action '{action}' should be {expected}, got {result}"
        )

    @pytest.mark.parametrize("role,action,expected", INVALID_TEST_CASES)
    def test_can_perform_invalid_inputs(self, role, action, expected):
        assert can_perform(role, action) == expected

    def test_role_names_are_case_insensitive(self):
        assert can_perform("OWNER", ACTION_DELETE_COLLECTION) is True
        assert can_perform("Admin", ACTION_MANAGE_ACCESS) is False


class TestOwnerInvariant:
    """The owner never leaves; they delete the collection instead."""

    def test_owner_cannot_remove_self(self):
        assert can_perform(ROLE_OWNER, ACTION_REMOVE_SELF) is False

    def test_leave_is_remove_self(self):
        assert ACTION_LEAVE == ACTION_REMOVE_SELF

    @pytest.mark.parametrize("actor", ROLE_ORDER)
    def test_nobody_can_remove_owner(self, actor):
        assert can_remove(actor, ROLE_OWNER) is False


class TestRemovalRules:

    @pytest.mark.parametrize("actor,target,expected", [
        (ROLE_OWNER, ROLE_ADMIN, True),
        (ROLE_OWNER, ROLE_MEMBER, True),
        (ROLE_ADMIN, ROLE_MEMBER, True),
        (ROLE_ADMIN, ROLE_ADMIN, False),
        (ROLE_MEMBER, ROLE_MEMBER, False),
        (ROLE_MEMBER, ROLE_ADMIN, False),
        (ROLE_FOLLOWER, ROLE_MEMBER, False),
        # Not members at all: nothing to remove
        (ROLE_OWNER, ROLE_FOLLOWER, False),
        (ROLE_OWNER, ROLE_OUTSIDER, False),
    ])
    def test_can_remove(self, actor, target, expected):
        assert can_remove(actor, target) is expected


class TestContextExceptions:
    """Individual collections hand post-level rights to the post author."""

    @pytest.mark.parametrize("role,is_author,expected", [
        (ROLE_OWNER, True, True),
        (ROLE_OWNER, False, False),
        (ROLE_MEMBER, True, True),
        (ROLE_OUTSIDER, True, True),
        (ROLE_ADMIN, False, False),
    ])
    def test_individual_pin_is_author_only(self, role, is_author, expected):
        assert can_pin_post(role, TYPE_INDIVIDUAL, is_author) is expected

    @pytest.mark.parametrize("role,is_author,expected", [
        (ROLE_OWNER, False, True),
        (ROLE_ADMIN, False, True),
        (ROLE_MEMBER, True, False),
        (ROLE_MEMBER, False, False),
    ])
    def test_multi_member_pin_follows_table(self, role, is_author, expected):
        assert can_pin_post(role, TYPE_OPEN, is_author) is expected

    @pytest.mark.parametrize("role,collection_type,is_author,expected", [
        (ROLE_MEMBER, TYPE_OPEN, True, True),
        (ROLE_MEMBER, TYPE_OPEN, False, False),
        (ROLE_ADMIN, TYPE_OPEN, False, True),
        (ROLE_OWNER, TYPE_OPEN, False, True),
        (ROLE_FOLLOWER, TYPE_OPEN, True, False),
        (ROLE_OWNER, TYPE_INDIVIDUAL, True, True),
        (ROLE_OWNER, TYPE_INDIVIDUAL, False, False),
    ])
    def test_can_delete_post(self, role, collection_type, is_author, expected):
        assert can_delete_post(role, collection_type, is_author) is expected

    def test_delete_own_post_needs_authorship(self):
        context = PermissionContext(collection_type=TYPE_OPEN, is_author=False)
        assert can_perform(ROLE_MEMBER, ACTION_DELETE_OWN_POST, context) is False

    def test_context_does_not_touch_collection_actions(self):
        context = PermissionContext(collection_type=TYPE_INDIVIDUAL, is_author=False)
        assert can_perform(ROLE_OWNER, ACTION_EDIT_COLLECTION, context) is True


class TestRoleActionSets:

    def test_member_actions(self):
        assert get_role_actions(ROLE_MEMBER) == {
            ACTION_DELETE_OWN_POST,
            ACTION_CREATE_POST,
            ACTION_REMOVE_SELF,
        }

    def test_follower_and_outsider_match(self):
        assert get_role_actions(ROLE_FOLLOWER) == get_role_actions(ROLE_OUTSIDER)

    def test_unknown_role_has_no_actions(self):
        assert get_role_actions("unknown") == set()
        assert get_role_actions("") == set()

    def test_missing_actions(self):
        missing = get_missing_actions(ROLE_ADMIN, [ACTION_EDIT_COLLECTION, ACTION_MANAGE_ACCESS])
        assert missing == {ACTION_MANAGE_ACCESS}


class TestRequireAction:

    def test_allowed_records_check(self):
        require_action(ROLE_ADMIN, ACTION_EDIT_COLLECTION, actor_id="a", collection_id="c")
        assert get_counter("access.checks.allowed") == 1
        assert get_counter("access.checks.denied") == 0

    def test_denied_raises_and_audits(self):
        with pytest.raises(PermissionDenied) as exc_info:
            require_action(ROLE_MEMBER, ACTION_DELETE_COLLECTION, actor_id="m", collection_id="c")

        assert exc_info.value.details["action"] == ACTION_DELETE_COLLECTION
        assert exc_info.value.details["role"] == ROLE_MEMBER
        assert get_counter("access.checks.denied") == 1
        assert get_counter("access.audit.denials") == 1

    def test_precomputed_decision_wins(self):
        with pytest.raises(PermissionDenied):
            require_action(ROLE_OWNER, ACTION_PROMOTE_MEMBER, allowed=False)
