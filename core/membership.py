"""
Membership action coordinator.

Runs every membership transition (follow, request, join, leave, promote,
remove, ...) and every collection-level edit against the collection store.
Each transition follows the same steps:

1. Re-fetch the record; never trust a cached copy.
2. Resolve the actor's role from it (optionally checking it matches the
   role the caller believed it had).
3. Check permission and type-specific invariants.
4. Write a partial patch.
5. Re-fetch and verify the post-condition.
6. Publish domain events.

Concurrent writers are last-write-wins at the store level.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from adapters.stores import CollectionStore, PostStore
from core.access import (
    ACTION_DELETE_COLLECTION,
    ACTION_DEMOTE_ADMIN,
    ACTION_EDIT_COLLECTION,
    ACTION_FOLLOW,
    ACTION_INVITE,
    ACTION_JOIN,
    ACTION_MANAGE_ACCESS,
    ACTION_PROMOTE_MEMBER,
    ACTION_REMOVE_MEMBER,
    ACTION_REMOVE_SELF,
    ACTION_REQUEST,
    ACTION_REVIEW_REQUESTS,
    ROLE_ADMIN,
    ROLE_MEMBER,
    ROLE_OWNER,
    can_perform,
    is_member_role,
    require_action,
    resolve_role,
)
from core.access.actions import removal_action_for
from core.errors import (
    InvariantViolation,
    NotFound,
    PermissionDenied,
    StaleStateConflict,
    TransientStoreError,
)
from core.events import (
    CollectionCreated,
    CollectionDeleted,
    CollectionJoined,
    CollectionRequestAccepted,
    CollectionRequestCancelled,
    CollectionRequestSent,
    CollectionUpdated,
    DomainEvent,
    EventBus,
)
from core.metrics import audit_access_denial, increment_counter, record_transition, time_operation
from core.models import (
    ALL_COLLECTION_TYPES,
    Collection,
    PUBLIC_ONLY_TYPES,
    TYPE_INDIVIDUAL,
    TYPE_INVITE,
    TYPE_OPEN,
    TYPE_REQUEST,
    utcnow,
    validate_collection,
)
from core.types import MutationResult

logger = logging.getLogger(__name__)


class MembershipCoordinator:
    """
    Orchestrates membership and collection-level transitions.

    Args:
        collections: Collection store
        events: Event bus for domain events (optional)
        posts: Post store, needed to cascade collection deletion
        clock: Returns "now"; injectable for tests
    """

    def __init__(
        self,
        collections: CollectionStore,
        events: Optional[EventBus] = None,
        posts: Optional[PostStore] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.collections = collections
        self.events = events
        self.posts = posts
        self.clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_collection(self, collection_id: str) -> Collection:
        """
        Fetch the authoritative record.

        Raises:
            NotFound: If the id does not resolve
            TransientStoreError: If the store fails
        """
        record = self.collections.get_collection(collection_id)
        if record is None:
            raise NotFound(f"Collection {collection_id} not found", {"collection_id": collection_id})
        return record

    def role_of(self, collection_id: str, user_id: Optional[str]) -> str:
        return resolve_role(self.get_collection(collection_id), user_id)

    # ------------------------------------------------------------------
    # Creation and edits
    # ------------------------------------------------------------------

    def create_collection(
        self,
        owner_id: str,
        name: str,
        type: str = TYPE_INDIVIDUAL,
        is_public: bool = False,
        description: str = "",
        owner_name: str = "",
        image_url: Optional[str] = None,
        invited_users: Iterable[str] = (),
    ) -> Collection:
        """
        Create a collection owned by ``owner_id``.

        Invited users become members straight away; Individual collections
        cannot have any.

        Raises:
            InvariantViolation: Unknown type, private Request/Open collection,
                or invitations into an Individual collection
        """
        if not owner_id:
            raise PermissionDenied("Authentication required to create a collection")

        if type not in ALL_COLLECTION_TYPES:
            raise InvariantViolation(
                f"Unknown collection type: {type}",
                {"type": type, "allowed": sorted(ALL_COLLECTION_TYPES)},
            )

        if type in PUBLIC_ONLY_TYPES and not is_public:
            raise InvariantViolation(
                f"{type} collections must be public",
                {"type": type, "is_public": is_public},
            )

        invited = {uid for uid in invited_users if uid and uid != owner_id}
        if type == TYPE_INDIVIDUAL and invited:
            raise InvariantViolation(
                "Individual collections cannot invite members",
                {"invited_users": sorted(invited)},
            )

        now = self.clock()
        members = {owner_id} | invited
        collection = Collection(
            id=str(uuid.uuid4()),
            owner_id=owner_id,
            name=name,
            description=description,
            type=type,
            is_public=is_public,
            owner_name=owner_name,
            image_url=image_url,
            members=members,
            invited_users=invited,
            member_join_dates={uid: now for uid in members},
            member_count=len(members),
            follower_count=0,
            created_at=now,
        )
        validate_collection(collection)

        try:
            stored = self.collections.create_collection(collection)
        except TransientStoreError:
            record_transition("create_collection", "failed")
            logger.error(f"Failed to create collection for owner={owner_id}", exc_info=True)
            raise

        record_transition("create_collection", "committed")
        logger.info(f"Created {type} collection {stored.id} for owner={owner_id} with {len(members)} member(s)")
        self._publish(CollectionCreated(collection_id=stored.id, owner_id=owner_id))
        return stored

    def edit_collection(
        self,
        collection_id: str,
        actor_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        image_url: Optional[str] = None,
        is_public: Optional[bool] = None,
        type: Optional[str] = None,
        expected_role: Optional[str] = None,
    ) -> MutationResult:
        """
        Edit name, description, image or visibility.

        Raises:
            PermissionDenied: Actor is not owner or admin
            InvariantViolation: Type change, or making a Request/Open collection private
        """
        collection, role = self._begin(collection_id, actor_id, expected_role)
        require_action(role, ACTION_EDIT_COLLECTION, actor_id=actor_id, collection_id=collection_id)

        if type is not None and type != collection.type:
            raise InvariantViolation(
                "Collection type cannot change after creation",
                {"type": collection.type, "requested": type},
            )

        if is_public is False and collection.type in PUBLIC_ONLY_TYPES:
            raise InvariantViolation(
                f"{collection.type} collections must stay public",
                {"type": collection.type, "is_public": is_public},
            )

        requested = {
            "name": name,
            "description": description,
            "image_url": image_url,
            "is_public": is_public,
        }
        changes = {
            key: value
            for key, value in requested.items()
            if value is not None and getattr(collection, key) != value
        }

        def confirmed_ok(confirmed: Collection) -> bool:
            if confirmed.type in PUBLIC_ONLY_TYPES and not confirmed.is_public:
                return False
            return all(getattr(confirmed, key) == value for key, value in changes.items())

        return self._commit(
            "edit_collection",
            collection,
            changes,
            confirmed_ok,
            [CollectionUpdated(collection_id=collection_id, action="edited", user_id=actor_id)],
        )

    def update_access(
        self,
        collection_id: str,
        actor_id: str,
        *,
        allowed_users: Optional[Iterable[str]] = None,
        denied_users: Optional[Iterable[str]] = None,
        expected_role: Optional[str] = None,
    ) -> MutationResult:
        """
        Replace the viewer allow-list and/or deny-list. Owner only.

        The allow-list only matters while the collection is private and the
        deny-list only while it is public; both are stored regardless.
        """
        collection, role = self._begin(collection_id, actor_id, expected_role)
        require_action(role, ACTION_MANAGE_ACCESS, actor_id=actor_id, collection_id=collection_id)

        changes: Dict[str, Any] = {}
        if allowed_users is not None and set(allowed_users) != collection.allowed_users:
            changes["allowed_users"] = set(allowed_users)
        if denied_users is not None and set(denied_users) != collection.denied_users:
            changes["denied_users"] = set(denied_users)

        def confirmed_ok(confirmed: Collection) -> bool:
            return all(getattr(confirmed, key) == value for key, value in changes.items())

        return self._commit(
            "update_access",
            collection,
            changes,
            confirmed_ok,
            [CollectionUpdated(collection_id=collection_id, action="access_updated", user_id=actor_id)],
        )

    def delete_collection(
        self,
        collection_id: str,
        actor_id: str,
        expected_role: Optional[str] = None,
    ) -> MutationResult:
        """
        Delete a collection. Owner only; irreversible.

        The record (and with it every membership, follow and request) is
        removed first; its posts are soft-deleted afterwards. Posts a failed
        cascade leaves behind are unreachable, since their collection no
        longer resolves, and are reported in ``posts_orphaned`` for purge.
        """
        collection, role = self._begin(collection_id, actor_id, expected_role)
        require_action(role, ACTION_DELETE_COLLECTION, actor_id=actor_id, collection_id=collection_id)

        try:
            with time_operation("transition", {"action": "delete_collection"}):
                self.collections.delete_collection(collection_id)
        except TransientStoreError:
            record_transition("delete_collection", "failed")
            logger.error(f"Failed to delete collection {collection_id}", exc_info=True)
            raise

        if self.collections.get_collection(collection_id) is not None:
            record_transition("delete_collection", "failed")
            raise StaleStateConflict(
                "Collection still exists after delete",
                {"collection_id": collection_id},
            )

        removed_posts, orphaned = self._cascade_posts(collection_id)

        record_transition("delete_collection", "committed")
        logger.info(f"Deleted collection {collection_id} by owner={actor_id} ({removed_posts} post(s) removed)")
        self._publish(CollectionDeleted(
            collection_id=collection_id,
            owner_id=collection.owner_id,
            posts_removed=removed_posts,
        ))

        changed: Dict[str, Any] = {"deleted": True, "posts_removed": removed_posts}
        if orphaned:
            changed["posts_orphaned"] = orphaned

        return MutationResult(
            action="delete_collection",
            collection_id=collection_id,
            attempted=None,
            confirmed=None,
            changed_fields=changed,
            committed=True,
        )

    # ------------------------------------------------------------------
    # Following
    # ------------------------------------------------------------------

    def follow(self, collection_id: str, actor_id: str, expected_role: Optional[str] = None) -> MutationResult:
        """Follow a collection. Members cannot follow; following twice is a no-op."""
        collection, role = self._begin(collection_id, actor_id, expected_role)
        require_action(role, ACTION_FOLLOW, actor_id=actor_id, collection_id=collection_id)

        changes: Dict[str, Any] = {}
        if actor_id not in collection.followers:
            changes = self._membership_changes(collection, followers=collection.followers | {actor_id})

        return self._commit(
            "follow",
            collection,
            changes,
            lambda confirmed: actor_id in confirmed.followers,
            [CollectionUpdated(collection_id=collection_id, action="followed", user_id=actor_id)],
        )

    def unfollow(self, collection_id: str, actor_id: str, expected_role: Optional[str] = None) -> MutationResult:
        """Stop following. Unfollowing when not following is a no-op."""
        collection, role = self._begin(collection_id, actor_id, expected_role)
        require_action(role, ACTION_FOLLOW, actor_id=actor_id, collection_id=collection_id)

        changes: Dict[str, Any] = {}
        if actor_id in collection.followers:
            changes = self._membership_changes(collection, followers=collection.followers - {actor_id})

        return self._commit(
            "unfollow",
            collection,
            changes,
            lambda confirmed: actor_id not in confirmed.followers,
            [CollectionUpdated(collection_id=collection_id, action="unfollowed", user_id=actor_id)],
        )

    # ------------------------------------------------------------------
    # Requests and joining
    # ------------------------------------------------------------------

    def toggle_request(self, collection_id: str, actor_id: str, expected_role: Optional[str] = None) -> MutationResult:
        """
        Ask to join a Request collection, or withdraw a pending request.

        Raises:
            InvariantViolation: Collection is not Request type
            PermissionDenied: Actor is already a member
        """
        collection, role = self._begin(collection_id, actor_id, expected_role)

        if collection.type != TYPE_REQUEST:
            raise InvariantViolation(
                "Only Request collections accept join requests",
                {"type": collection.type},
            )

        require_action(role, ACTION_REQUEST, actor_id=actor_id, collection_id=collection_id)

        if actor_id in collection.pending_requests:
            changes = self._membership_changes(
                collection, pending_requests=collection.pending_requests - {actor_id}
            )
            return self._commit(
                "cancel_request",
                collection,
                changes,
                lambda confirmed: actor_id not in confirmed.pending_requests,
                [CollectionRequestCancelled(collection_id=collection_id, requester_id=actor_id)],
            )

        changes = self._membership_changes(
            collection, pending_requests=collection.pending_requests | {actor_id}
        )
        return self._commit(
            "request",
            collection,
            changes,
            lambda confirmed: actor_id in confirmed.pending_requests,
            [CollectionRequestSent(collection_id=collection_id, requester_id=actor_id)],
        )

    def approve_request(
        self,
        collection_id: str,
        actor_id: str,
        requester_id: str,
        expected_role: Optional[str] = None,
    ) -> MutationResult:
        """
        Accept a pending request: the requester becomes a member.

        Raises:
            PermissionDenied: Actor is not owner or admin
            StaleStateConflict: No pending request from ``requester_id``
        """
        collection, role = self._begin(collection_id, actor_id, expected_role)
        require_action(
            role, ACTION_REVIEW_REQUESTS,
            actor_id=actor_id, collection_id=collection_id, target_id=requester_id,
        )

        if requester_id not in collection.pending_requests:
            raise StaleStateConflict(
                f"No pending request from {requester_id}",
                {"collection_id": collection_id, "requester_id": requester_id},
            )

        changes = self._membership_changes(
            collection,
            members=collection.members | {requester_id},
            followers=collection.followers - {requester_id},
            pending_requests=collection.pending_requests - {requester_id},
            member_join_dates={**collection.member_join_dates, requester_id: self.clock()},
        )

        return self._commit(
            "approve_request",
            collection,
            changes,
            lambda confirmed: (
                requester_id in confirmed.members
                and requester_id not in confirmed.pending_requests
            ),
            [
                CollectionRequestAccepted(
                    collection_id=collection_id, requester_id=requester_id, approved_by=actor_id
                ),
                CollectionJoined(collection_id=collection_id, user_id=requester_id),
            ],
        )

    def deny_request(
        self,
        collection_id: str,
        actor_id: str,
        requester_id: str,
        expected_role: Optional[str] = None,
    ) -> MutationResult:
        """Reject a pending request; the requester stays an outsider (or follower)."""
        collection, role = self._begin(collection_id, actor_id, expected_role)
        require_action(
            role, ACTION_REVIEW_REQUESTS,
            actor_id=actor_id, collection_id=collection_id, target_id=requester_id,
        )

        if requester_id not in collection.pending_requests:
            raise StaleStateConflict(
                f"No pending request from {requester_id}",
                {"collection_id": collection_id, "requester_id": requester_id},
            )

        changes = self._membership_changes(
            collection, pending_requests=collection.pending_requests - {requester_id}
        )
        return self._commit(
            "deny_request",
            collection,
            changes,
            lambda confirmed: requester_id not in confirmed.pending_requests,
            [CollectionUpdated(collection_id=collection_id, action="request_denied", user_id=requester_id)],
        )

    def join(self, collection_id: str, actor_id: str, expected_role: Optional[str] = None) -> MutationResult:
        """
        Join an Open collection directly. Joining again is a no-op.

        Raises:
            InvariantViolation: Collection is not Open type
        """
        collection, role = self._begin(collection_id, actor_id, expected_role)

        if collection.type != TYPE_OPEN:
            raise InvariantViolation(
                "Only Open collections can be joined without approval",
                {"type": collection.type},
            )

        changes: Dict[str, Any] = {}
        if not is_member_role(role):
            require_action(role, ACTION_JOIN, actor_id=actor_id, collection_id=collection_id)
            changes = self._membership_changes(
                collection,
                members=collection.members | {actor_id},
                followers=collection.followers - {actor_id},
                pending_requests=collection.pending_requests - {actor_id},
                member_join_dates={**collection.member_join_dates, actor_id: self.clock()},
            )

        return self._commit(
            "join",
            collection,
            changes,
            lambda confirmed: actor_id in confirmed.members,
            [CollectionJoined(collection_id=collection_id, user_id=actor_id)],
        )

    def invite(
        self,
        collection_id: str,
        actor_id: str,
        user_ids: Iterable[str],
        expected_role: Optional[str] = None,
    ) -> MutationResult:
        """
        Add users to an Invite collection as members.

        Raises:
            InvariantViolation: Collection is not Invite type
            PermissionDenied: Actor is not owner or admin
        """
        collection, role = self._begin(collection_id, actor_id, expected_role)

        if collection.type != TYPE_INVITE:
            raise InvariantViolation(
                "Only Invite collections take invitations",
                {"type": collection.type},
            )

        require_action(role, ACTION_INVITE, actor_id=actor_id, collection_id=collection_id)

        new_members = {uid for uid in user_ids if uid} - collection.members
        changes: Dict[str, Any] = {}
        if new_members:
            now = self.clock()
            changes = self._membership_changes(
                collection,
                members=collection.members | new_members,
                followers=collection.followers - new_members,
                pending_requests=collection.pending_requests - new_members,
                member_join_dates={
                    **collection.member_join_dates,
                    **{uid: now for uid in new_members},
                },
            )
            changes["invited_users"] = collection.invited_users | new_members

        return self._commit(
            "invite",
            collection,
            changes,
            lambda confirmed: new_members <= confirmed.members,
            [CollectionUpdated(collection_id=collection_id, action="members_invited", user_id=actor_id)],
        )

    # ------------------------------------------------------------------
    # Leaving, promotion and removal
    # ------------------------------------------------------------------

    def leave(self, collection_id: str, actor_id: str, expected_role: Optional[str] = None) -> MutationResult:
        """
        Leave a collection (members and admins). Leaving twice is a no-op.

        Raises:
            PermissionDenied: The owner tried to leave; they delete instead
        """
        collection, role = self._begin(collection_id, actor_id, expected_role)

        changes: Dict[str, Any] = {}
        if role == ROLE_OWNER or is_member_role(role):
            require_action(role, ACTION_REMOVE_SELF, actor_id=actor_id, collection_id=collection_id)
            changes = self._removal_changes(collection, actor_id)

        return self._commit(
            "leave",
            collection,
            changes,
            lambda confirmed: actor_id not in confirmed.members and actor_id not in confirmed.admins,
            [CollectionUpdated(collection_id=collection_id, action="member_left", user_id=actor_id)],
        )

    def promote(
        self,
        collection_id: str,
        actor_id: str,
        target_id: str,
        expected_role: Optional[str] = None,
    ) -> MutationResult:
        """
        Promote a member to admin. Owner only; the target must be a plain member.

        Raises:
            PermissionDenied: Actor is not the owner, or target is not a member
        """
        collection, role = self._begin(collection_id, actor_id, expected_role)
        target_role = resolve_role(collection, target_id)

        require_action(
            role, ACTION_PROMOTE_MEMBER,
            actor_id=actor_id, collection_id=collection_id, target_id=target_id,
            allowed=can_perform(role, ACTION_PROMOTE_MEMBER) and target_role == ROLE_MEMBER,
        )

        changes = self._membership_changes(collection, admins=collection.admins | {target_id})
        return self._commit(
            "promote",
            collection,
            changes,
            lambda confirmed: target_id in confirmed.admins and target_id in confirmed.members,
            [CollectionUpdated(collection_id=collection_id, action="member_promoted", user_id=target_id)],
        )

    def demote(
        self,
        collection_id: str,
        actor_id: str,
        target_id: str,
        expected_role: Optional[str] = None,
    ) -> MutationResult:
        """Demote an admin back to member. Owner only."""
        collection, role = self._begin(collection_id, actor_id, expected_role)
        target_role = resolve_role(collection, target_id)

        require_action(
            role, ACTION_DEMOTE_ADMIN,
            actor_id=actor_id, collection_id=collection_id, target_id=target_id,
            allowed=can_perform(role, ACTION_DEMOTE_ADMIN) and target_role == ROLE_ADMIN,
        )

        changes = self._membership_changes(collection, admins=collection.admins - {target_id})
        return self._commit(
            "demote",
            collection,
            changes,
            lambda confirmed: target_id not in confirmed.admins and target_id in confirmed.members,
            [CollectionUpdated(collection_id=collection_id, action="member_demoted", user_id=target_id)],
        )

    def remove_member(
        self,
        collection_id: str,
        actor_id: str,
        target_id: str,
        expected_role: Optional[str] = None,
    ) -> MutationResult:
        """
        Remove a member or admin from the collection.

        Admins may remove members; only the owner may remove admins; nobody
        removes the owner.

        Raises:
            PermissionDenied: Target is the owner, or actor's tier is too low
            StaleStateConflict: Target is no longer a member
        """
        collection, role = self._begin(collection_id, actor_id, expected_role)
        target_role = resolve_role(collection, target_id)

        if target_role == ROLE_OWNER:
            require_action(
                role, ACTION_REMOVE_MEMBER,
                actor_id=actor_id, collection_id=collection_id, target_id=target_id,
                allowed=False,
            )

        action = removal_action_for(target_role) or ACTION_REMOVE_MEMBER
        require_action(role, action, actor_id=actor_id, collection_id=collection_id, target_id=target_id)

        if not is_member_role(target_role):
            raise StaleStateConflict(
                f"User {target_id} is not a member",
                {"collection_id": collection_id, "target_id": target_id, "target_role": target_role},
            )

        changes = self._removal_changes(collection, target_id)
        return self._commit(
            "remove_member",
            collection,
            changes,
            lambda confirmed: target_id not in confirmed.members and target_id not in confirmed.admins,
            [CollectionUpdated(collection_id=collection_id, action="member_removed", user_id=target_id)],
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _begin(self, collection_id: str, actor_id: Optional[str], expected_role: Optional[str]):
        """Fetch the authoritative record and resolve the actor's role on it."""
        if not actor_id:
            raise PermissionDenied("Authentication required", {"collection_id": collection_id})

        collection = self.get_collection(collection_id)
        role = resolve_role(collection, actor_id)

        if expected_role is not None and expected_role != role:
            audit_access_denial(
                action="role_mismatch",
                actor_id=actor_id,
                role=role,
                collection_id=collection_id,
                metadata={"expected_role": expected_role},
            )
            raise PermissionDenied(
                f"Role changed: expected '{expected_role}', found '{role}'",
                {"collection_id": collection_id, "expected_role": expected_role, "role": role},
            )

        return collection, role

    @staticmethod
    def _membership_changes(collection: Collection, **fields: Any) -> Dict[str, Any]:
        """Build a patch and keep the denormalized counters in step with it."""
        changes = dict(fields)
        if "members" in changes:
            changes["member_count"] = len(changes["members"])
        if "followers" in changes:
            changes["follower_count"] = len(changes["followers"])
        return changes

    def _removal_changes(self, collection: Collection, user_id: str) -> Dict[str, Any]:
        join_dates = dict(collection.member_join_dates)
        join_dates.pop(user_id, None)
        return self._membership_changes(
            collection,
            members=collection.members - {user_id},
            admins=collection.admins - {user_id},
            member_join_dates=join_dates,
        )

    def _cascade_posts(self, collection_id: str):
        """Soft-delete the posts of a deleted collection; returns (removed, orphaned ids)."""
        if self.posts is None:
            return 0, []

        try:
            posts = self.posts.get_posts_for_collection(collection_id)
        except TransientStoreError:
            increment_counter("collection.cascade.failed")
            logger.error(f"Posts of deleted collection {collection_id} could not be listed; left for purge", exc_info=True)
            return 0, []

        removed = 0
        orphaned: List[str] = []
        for post in posts:
            try:
                self.posts.delete_post(post.id)
                removed += 1
            except TransientStoreError:
                orphaned.append(post.id)
                logger.error(f"Post {post.id} of deleted collection {collection_id} left for purge", exc_info=True)

        if orphaned:
            increment_counter("collection.cascade.failed")
        return removed, orphaned

    def _commit(
        self,
        action: str,
        before: Collection,
        changes: Dict[str, Any],
        confirmed_ok: Callable[[Collection], bool],
        events: List[DomainEvent],
    ) -> MutationResult:
        if not changes:
            record_transition(action, "noop")
            logger.debug(f"{action} on {before.id}: already satisfied, nothing written")
            return MutationResult(
                action=action,
                collection_id=before.id,
                attempted=before,
                confirmed=before,
                committed=False,
            )

        attempted = before.with_fields(changes)
        validate_collection(attempted)

        try:
            with time_operation("transition", {"action": action}):
                self.collections.update_collection(before.id, changes)
        except TransientStoreError:
            record_transition(action, "failed")
            logger.error(f"{action} on {before.id}: store write failed", exc_info=True)
            raise

        confirmed = self.collections.get_collection(before.id)
        if confirmed is None:
            record_transition(action, "failed")
            raise StaleStateConflict(
                f"Collection {before.id} disappeared during {action}",
                {"collection_id": before.id, "action": action},
            )

        if not confirmed_ok(confirmed):
            record_transition(action, "failed")
            logger.warning(f"{action} on {before.id}: confirmed record does not reflect the change")
            raise StaleStateConflict(
                f"{action} was overtaken by a concurrent change",
                {"collection_id": before.id, "action": action, "fields": sorted(changes)},
            )

        record_transition(action, "committed")
        logger.info(f"{action} on {before.id}: committed fields={sorted(changes)}")

        for event in events:
            self._publish(event)

        return MutationResult(
            action=action,
            collection_id=before.id,
            attempted=attempted,
            confirmed=confirmed,
            changed_fields=changes,
            committed=True,
        )

    def _publish(self, event: DomainEvent) -> None:
        if self.events is not None:
            self.events.publish(event)
