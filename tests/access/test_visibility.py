"""
Tests for collection visibility (allow-list when private, deny-list when public).
"""

import pytest

from conftest import ADMIN, FOLLOWER, MEMBER, OUTSIDER, OWNER, build_collection
from core.access import can_view_collection, filter_visible_collections


class TestCanViewCollection:

    @pytest.mark.parametrize("user_id", [OWNER, ADMIN, MEMBER])
    def test_members_always_see(self, user_id):
        private = build_collection(is_public=False, denied_users={user_id})
        assert can_view_collection(private, user_id) is True

    def test_private_needs_allow_list(self):
        collection = build_collection(is_public=False, allowed_users={FOLLOWER})
        assert can_view_collection(collection, FOLLOWER) is True
        assert can_view_collection(collection, OUTSIDER) is False
        assert can_view_collection(collection, None) is False

    def test_public_honours_deny_list(self):
        collection = build_collection(is_public=True, denied_users={OUTSIDER})
        assert can_view_collection(collection, OUTSIDER) is False
        assert can_view_collection(collection, FOLLOWER) is True
        assert can_view_collection(collection, None) is True

    def test_allow_list_ignored_when_public(self):
        collection = build_collection(is_public=True, allowed_users={FOLLOWER})
        assert can_view_collection(collection, OUTSIDER) is True

    def test_deny_list_ignored_when_private(self):
        collection = build_collection(
            is_public=False,
            allowed_users={OUTSIDER},
            denied_users={OUTSIDER},
        )
        assert can_view_collection(collection, OUTSIDER) is True


class TestFilterVisibleCollections:

    def test_keeps_order_and_drops_hidden(self):
        public = build_collection("public", is_public=True)
        private = build_collection("private", is_public=False)
        denied = build_collection("denied", is_public=True, denied_users={OUTSIDER})
        allowed = build_collection("allowed", is_public=False, allowed_users={OUTSIDER})

        visible = filter_visible_collections([public, private, denied, allowed], OUTSIDER)

        assert [c.id for c in visible] == ["public", "allowed"]

    def test_owner_sees_everything(self):
        collections = [
            build_collection("a", is_public=False),
            build_collection("b", is_public=True, denied_users={OWNER}),
        ]
        assert len(filter_visible_collections(collections, OWNER)) == 2
