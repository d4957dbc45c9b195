"""
Tests for membership transitions: follow, request, join, leave, promote,
demote, remove and invite.
"""

import pytest

from conftest import ADMIN, ADMIN_2, FOLLOWER, MEMBER, MEMBER_2, OUTSIDER, OWNER, build_collection
from core.access import (
    ROLE_ADMIN,
    ROLE_FOLLOWER,
    ROLE_MEMBER,
    ROLE_OUTSIDER,
    STATE_PENDING,
    membership_state,
    resolve_role,
)
from core.errors import InvariantViolation, PermissionDenied, StaleStateConflict
from core.events import (
    CollectionJoined,
    CollectionRequestAccepted,
    CollectionRequestCancelled,
    CollectionRequestSent,
    CollectionUpdated,
)
from core.metrics import get_counter


@pytest.fixture
def seed(collection_store):
    def _seed(**kwargs):
        collection = build_collection(**kwargs)
        collection_store.create_collection(collection)
        return collection
    return _seed


# ============================================================================
# Follow / Unfollow
# ============================================================================

class TestFollow:

    def test_outsider_follows(self, membership, collection_store, seed):
        seed()
        result = membership.follow("col-1", OUTSIDER)

        stored = collection_store.get_collection("col-1")
        assert result.committed
        assert resolve_role(stored, OUTSIDER) == ROLE_FOLLOWER
        assert stored.follower_count == len(stored.followers) == 2

    def test_follow_twice_is_noop(self, membership, collection_store, seed):
        seed()
        membership.follow("col-1", OUTSIDER)
        after_first = collection_store.get_collection("col-1")

        result = membership.follow("col-1", OUTSIDER)

        assert result.noop
        assert collection_store.get_collection("col-1").followers == after_first.followers
        assert get_counter("transition.total", {"action": "follow", "outcome": "noop"}) == 1

    def test_unfollow_is_inverse(self, membership, collection_store, seed):
        original = seed()
        membership.follow("col-1", OUTSIDER)
        membership.unfollow("col-1", OUTSIDER)

        stored = collection_store.get_collection("col-1")
        assert stored.followers == original.followers
        assert stored.follower_count == original.follower_count

    def test_unfollow_when_not_following_is_noop(self, membership, seed):
        seed()
        assert membership.unfollow("col-1", OUTSIDER).noop

    @pytest.mark.parametrize("user_id", [OWNER, ADMIN, MEMBER])
    def test_members_cannot_follow(self, membership, seed, user_id):
        seed()
        with pytest.raises(PermissionDenied):
            membership.follow("col-1", user_id)

    def test_follow_publishes_update(self, membership, events, seed):
        seed()
        membership.follow("col-1", OUTSIDER)
        updates = events.of_type(CollectionUpdated)
        assert [(e.action, e.user_id) for e in updates] == [("followed", OUTSIDER)]


# ============================================================================
# Requests
# ============================================================================

class TestRequests:

    def test_request_then_request_again_cancels(self, membership, collection_store, events, seed):
        seed(type="Request")

        membership.toggle_request("col-1", OUTSIDER)
        pending = collection_store.get_collection("col-1")
        assert resolve_role(pending, OUTSIDER) == ROLE_OUTSIDER
        assert OUTSIDER in pending.pending_requests

        membership.toggle_request("col-1", OUTSIDER)
        cancelled = collection_store.get_collection("col-1")
        assert OUTSIDER not in cancelled.pending_requests
        assert resolve_role(cancelled, OUTSIDER) == ROLE_OUTSIDER

        assert len(events.of_type(CollectionRequestSent)) == 1
        assert len(events.of_type(CollectionRequestCancelled)) == 1

    def test_follower_can_request(self, membership, collection_store, seed):
        seed(type="Request")
        membership.toggle_request("col-1", FOLLOWER)
        assert membership_state(collection_store.get_collection("col-1"), FOLLOWER) == STATE_PENDING

    @pytest.mark.parametrize("collection_type", ["Invite", "Open", "Individual"])
    def test_request_only_on_request_collections(self, membership, seed, collection_type):
        seed(type=collection_type)
        with pytest.raises(InvariantViolation):
            membership.toggle_request("col-1", OUTSIDER)

    def test_member_cannot_request(self, membership, seed):
        seed(type="Request")
        with pytest.raises(PermissionDenied):
            membership.toggle_request("col-1", MEMBER)

    @pytest.mark.parametrize("approver", [OWNER, ADMIN])
    def test_approve_moves_requester_to_members(self, membership, collection_store, events, seed, approver):
        seed(type="Request", pending_requests={FOLLOWER})

        result = membership.approve_request("col-1", approver, FOLLOWER)

        stored = collection_store.get_collection("col-1")
        assert result.committed
        assert resolve_role(stored, FOLLOWER) == ROLE_MEMBER
        assert FOLLOWER not in stored.pending_requests
        assert FOLLOWER not in stored.followers
        assert FOLLOWER in stored.member_join_dates
        assert stored.member_count == len(stored.members)

        accepted = events.of_type(CollectionRequestAccepted)
        assert accepted[0].requester_id == FOLLOWER
        assert accepted[0].approved_by == approver
        assert events.of_type(CollectionJoined)[0].user_id == FOLLOWER

    def test_member_cannot_approve(self, membership, seed):
        seed(type="Request", pending_requests={OUTSIDER})
        with pytest.raises(PermissionDenied):
            membership.approve_request("col-1", MEMBER, OUTSIDER)

    def test_approve_without_pending_request_is_stale(self, membership, seed):
        seed(type="Request")
        with pytest.raises(StaleStateConflict):
            membership.approve_request("col-1", OWNER, OUTSIDER)

    def test_deny_removes_request(self, membership, collection_store, seed):
        seed(type="Request", pending_requests={OUTSIDER})

        membership.deny_request("col-1", ADMIN, OUTSIDER)

        stored = collection_store.get_collection("col-1")
        assert OUTSIDER not in stored.pending_requests
        assert resolve_role(stored, OUTSIDER) == ROLE_OUTSIDER


# ============================================================================
# Join
# ============================================================================

class TestJoin:

    def test_outsider_joins_open_collection(self, membership, collection_store, seed):
        before = seed(type="Open")

        membership.join("col-1", OUTSIDER)

        stored = collection_store.get_collection("col-1")
        assert resolve_role(stored, OUTSIDER) == ROLE_MEMBER
        assert stored.member_count == before.member_count + 1

    def test_follower_join_drops_follow(self, membership, collection_store, seed):
        seed(type="Open")
        membership.join("col-1", FOLLOWER)

        stored = collection_store.get_collection("col-1")
        assert FOLLOWER in stored.members
        assert FOLLOWER not in stored.followers
        assert stored.follower_count == len(stored.followers)

    def test_join_is_idempotent(self, membership, collection_store, seed):
        seed(type="Open")
        membership.join("col-1", OUTSIDER)
        count = collection_store.get_collection("col-1").member_count

        assert membership.join("col-1", OUTSIDER).noop
        assert collection_store.get_collection("col-1").member_count == count

    @pytest.mark.parametrize("collection_type", ["Invite", "Request"])
    def test_join_only_on_open_collections(self, membership, seed, collection_type):
        seed(type=collection_type)
        with pytest.raises(InvariantViolation):
            membership.join("col-1", OUTSIDER)


# ============================================================================
# Leave
# ============================================================================

class TestLeave:

    @pytest.mark.parametrize("user_id", [ADMIN, MEMBER])
    def test_member_and_admin_leave(self, membership, collection_store, events, seed, user_id):
        before = seed()

        membership.leave("col-1", user_id)

        stored = collection_store.get_collection("col-1")
        assert resolve_role(stored, user_id) == ROLE_OUTSIDER
        assert user_id not in stored.admins
        assert user_id not in stored.member_join_dates
        assert stored.member_count == before.member_count - 1
        assert events.of_type(CollectionUpdated)[-1].action == "member_left"

    def test_owner_cannot_leave(self, membership, collection_store, seed):
        before = seed()
        with pytest.raises(PermissionDenied):
            membership.leave("col-1", OWNER)
        assert collection_store.get_collection("col-1") == before

    def test_leave_when_not_member_is_noop(self, membership, seed):
        seed()
        assert membership.leave("col-1", FOLLOWER).noop


# ============================================================================
# Promote / Demote
# ============================================================================

class TestPromotion:

    def test_owner_promotes_member(self, membership, collection_store, seed):
        seed()
        membership.promote("col-1", OWNER, MEMBER)
        assert resolve_role(collection_store.get_collection("col-1"), MEMBER) == ROLE_ADMIN

    @pytest.mark.parametrize("actor", [ADMIN, MEMBER])
    def test_only_owner_promotes(self, membership, seed, actor):
        seed(members=(MEMBER, MEMBER_2))
        with pytest.raises(PermissionDenied):
            membership.promote("col-1", actor, MEMBER_2)

    def test_member_cannot_self_promote(self, membership, seed):
        seed()
        with pytest.raises(PermissionDenied):
            membership.promote("col-1", MEMBER, MEMBER)

    @pytest.mark.parametrize("target", [OWNER, ADMIN, FOLLOWER, OUTSIDER])
    def test_target_must_be_member(self, membership, seed, target):
        seed()
        with pytest.raises(PermissionDenied):
            membership.promote("col-1", OWNER, target)

    def test_owner_demotes_admin(self, membership, collection_store, seed):
        seed()
        membership.demote("col-1", OWNER, ADMIN)

        stored = collection_store.get_collection("col-1")
        assert resolve_role(stored, ADMIN) == ROLE_MEMBER
        assert ADMIN in stored.members

    def test_owner_cannot_be_demoted(self, membership, seed):
        seed()
        with pytest.raises(PermissionDenied):
            membership.demote("col-1", OWNER, OWNER)

    def test_admin_cannot_demote(self, membership, seed):
        seed(admins=(ADMIN, ADMIN_2))
        with pytest.raises(PermissionDenied):
            membership.demote("col-1", ADMIN, ADMIN_2)


# ============================================================================
# Remove
# ============================================================================

class TestRemoval:

    def test_promote_then_admin_removes_member(self, membership, collection_store, seed):
        seed(admins=(), members=(MEMBER, MEMBER_2))

        membership.promote("col-1", OWNER, MEMBER_2)
        membership.remove_member("col-1", MEMBER_2, MEMBER)

        stored = collection_store.get_collection("col-1")
        assert resolve_role(stored, MEMBER) == ROLE_OUTSIDER
        assert stored.member_count == len(stored.members)

    def test_admin_cannot_remove_fellow_admin(self, membership, collection_store, seed):
        before = seed(admins=(ADMIN, ADMIN_2))

        with pytest.raises(PermissionDenied):
            membership.remove_member("col-1", ADMIN, ADMIN_2)

        assert collection_store.get_collection("col-1") == before

    def test_owner_removes_admin(self, membership, collection_store, seed):
        seed()
        membership.remove_member("col-1", OWNER, ADMIN)

        stored = collection_store.get_collection("col-1")
        assert ADMIN not in stored.admins
        assert ADMIN not in stored.members

    @pytest.mark.parametrize("actor", [OWNER, ADMIN])
    def test_owner_is_never_removable(self, membership, seed, actor):
        seed()
        with pytest.raises(PermissionDenied):
            membership.remove_member("col-1", actor, OWNER)

    def test_member_cannot_remove(self, membership, seed):
        seed(members=(MEMBER, MEMBER_2))
        with pytest.raises(PermissionDenied):
            membership.remove_member("col-1", MEMBER, MEMBER_2)

    def test_removing_non_member_is_stale(self, membership, seed):
        seed()
        with pytest.raises(StaleStateConflict):
            membership.remove_member("col-1", OWNER, FOLLOWER)

    def test_removed_event(self, membership, events, seed):
        seed()
        membership.remove_member("col-1", ADMIN, MEMBER)
        update = events.of_type(CollectionUpdated)[-1]
        assert (update.action, update.user_id) == ("member_removed", MEMBER)


# ============================================================================
# Invite
# ============================================================================

class TestInvite:

    def test_admin_invites_into_invite_collection(self, membership, collection_store, seed):
        seed(type="Invite")

        membership.invite("col-1", ADMIN, [OUTSIDER, FOLLOWER])

        stored = collection_store.get_collection("col-1")
        assert {OUTSIDER, FOLLOWER} <= stored.members
        assert FOLLOWER not in stored.followers
        assert {OUTSIDER, FOLLOWER} <= stored.invited_users
        assert stored.member_count == len(stored.members)

    def test_inviting_existing_members_is_noop(self, membership, seed):
        seed(type="Invite")
        assert membership.invite("col-1", OWNER, [MEMBER, ADMIN]).noop

    def test_member_cannot_invite(self, membership, seed):
        seed(type="Invite")
        with pytest.raises(PermissionDenied):
            membership.invite("col-1", MEMBER, [OUTSIDER])

    @pytest.mark.parametrize("collection_type", ["Open", "Request", "Individual"])
    def test_invite_only_on_invite_collections(self, membership, seed, collection_type):
        seed(type=collection_type)
        with pytest.raises(InvariantViolation):
            membership.invite("col-1", OWNER, [OUTSIDER])
