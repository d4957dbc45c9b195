"""
Optimistic client-side view of one collection for one user.

Applies a transition locally, sends it to the coordinator, then adopts the
record the coordinator confirmed. Any failure restores the local copy that
was in place before the transition started.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Optional, Set

from core.access import (
    ACTION_EDIT_COLLECTION,
    ACTION_FOLLOW,
    ACTION_JOIN,
    ACTION_PROMOTE_MEMBER,
    ACTION_REMOVE_SELF,
    ACTION_REQUEST,
    ACTION_REVIEW_REQUESTS,
    ROLE_FOLLOWER,
    ROLE_MEMBER,
    ROLE_OUTSIDER,
    can_perform,
    can_remove,
    is_member_role,
    membership_state,
    resolve_role,
)
from core.errors import AccessError, InvariantViolation, MutationInFlight, PermissionDenied
from core.membership import MembershipCoordinator
from core.metrics import increment_counter
from core.models import Collection, PUBLIC_ONLY_TYPES, TYPE_OPEN, TYPE_REQUEST, validate_collection
from core.types import MutationResult

logger = logging.getLogger(__name__)


class OptimisticCollectionView:
    """
    Local copy of a collection with apply / confirm / rollback semantics.

    At most one mutation per action name is in flight at a time; a second
    trigger while the first is pending raises ``MutationInFlight``.
    """

    def __init__(self, coordinator: MembershipCoordinator, collection_id: str, user_id: str):
        self.coordinator = coordinator
        self.collection_id = collection_id
        self.user_id = user_id
        self._lock = threading.Lock()
        self._in_flight: Set[str] = set()
        self.collection: Collection = coordinator.get_collection(collection_id)

    @property
    def role(self) -> str:
        return resolve_role(self.collection, self.user_id)

    @property
    def state(self) -> str:
        return membership_state(self.collection, self.user_id)

    @property
    def pending(self) -> Set[str]:
        with self._lock:
            return set(self._in_flight)

    def refresh(self) -> Collection:
        """Replace the local copy with the authoritative record."""
        self.collection = self.coordinator.get_collection(self.collection_id)
        return self.collection

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def follow(self) -> MutationResult:
        uid = self.user_id
        return self._perform(
            "follow",
            ACTION_FOLLOW,
            lambda c: c.with_fields({"followers": c.followers | {uid}, "follower_count": len(c.followers | {uid})}),
            lambda role: self.coordinator.follow(self.collection_id, uid, expected_role=role),
        )

    def unfollow(self) -> MutationResult:
        uid = self.user_id
        return self._perform(
            "unfollow",
            ACTION_FOLLOW,
            lambda c: c.with_fields({"followers": c.followers - {uid}, "follower_count": len(c.followers - {uid})}),
            lambda role: self.coordinator.unfollow(self.collection_id, uid, expected_role=role),
        )

    def toggle_request(self) -> MutationResult:
        uid = self.user_id

        def apply(c: Collection) -> Collection:
            if c.type != TYPE_REQUEST:
                raise InvariantViolation("Only Request collections accept join requests", {"type": c.type})
            return c.with_fields({"pending_requests": c.pending_requests ^ {uid}})

        return self._perform(
            "request",
            ACTION_REQUEST,
            apply,
            lambda role: self.coordinator.toggle_request(self.collection_id, uid, expected_role=role),
        )

    def join(self) -> MutationResult:
        uid = self.user_id

        def apply(c: Collection) -> Collection:
            if c.type != TYPE_OPEN:
                raise InvariantViolation("Only Open collections can be joined without approval", {"type": c.type})
            if uid in c.members:
                return c
            members = c.members | {uid}
            followers = c.followers - {uid}
            return c.with_fields({
                "members": members,
                "followers": followers,
                "member_count": len(members),
                "follower_count": len(followers),
            })

        # Members re-joining is a no-op, not a denial
        action = None if is_member_role(self.role) else ACTION_JOIN
        return self._perform(
            "join",
            action,
            apply,
            lambda role: self.coordinator.join(self.collection_id, uid, expected_role=role),
        )

    def leave(self) -> MutationResult:
        uid = self.user_id

        def apply(c: Collection) -> Collection:
            members = c.members - {uid}
            return c.with_fields({
                "members": members,
                "admins": c.admins - {uid},
                "member_count": len(members),
            })

        action = ACTION_REMOVE_SELF if self.role not in (ROLE_FOLLOWER, ROLE_OUTSIDER) else None
        return self._perform(
            "leave",
            action,
            apply,
            lambda role: self.coordinator.leave(self.collection_id, uid, expected_role=role),
        )

    def approve_request(self, requester_id: str) -> MutationResult:
        def apply(c: Collection) -> Collection:
            members = c.members | {requester_id}
            followers = c.followers - {requester_id}
            return c.with_fields({
                "members": members,
                "followers": followers,
                "pending_requests": c.pending_requests - {requester_id},
                "member_count": len(members),
                "follower_count": len(followers),
            })

        return self._perform(
            f"approve:{requester_id}",
            ACTION_REVIEW_REQUESTS,
            apply,
            lambda role: self.coordinator.approve_request(
                self.collection_id, self.user_id, requester_id, expected_role=role
            ),
        )

    def promote(self, target_id: str) -> MutationResult:
        def apply(c: Collection) -> Collection:
            if resolve_role(c, target_id) != ROLE_MEMBER:
                raise PermissionDenied("Only members can be promoted", {"target_id": target_id})
            return c.with_fields({"admins": c.admins | {target_id}})

        return self._perform(
            f"promote:{target_id}",
            ACTION_PROMOTE_MEMBER,
            apply,
            lambda role: self.coordinator.promote(self.collection_id, self.user_id, target_id, expected_role=role),
        )

    def remove_member(self, target_id: str) -> MutationResult:
        def apply(c: Collection) -> Collection:
            if not can_remove(resolve_role(c, self.user_id), resolve_role(c, target_id)):
                raise PermissionDenied("Not allowed to remove this user", {"target_id": target_id})
            members = c.members - {target_id}
            return c.with_fields({
                "members": members,
                "admins": c.admins - {target_id},
                "member_count": len(members),
            })

        return self._perform(
            f"remove:{target_id}",
            None,
            apply,
            lambda role: self.coordinator.remove_member(
                self.collection_id, self.user_id, target_id, expected_role=role
            ),
        )

    def edit(self, **fields: Any) -> MutationResult:
        """Optimistically edit name, description, image_url or is_public."""
        def apply(c: Collection) -> Collection:
            if fields.get("is_public") is False and c.type in PUBLIC_ONLY_TYPES:
                raise InvariantViolation(f"{c.type} collections must stay public", {"type": c.type})
            return c.with_fields({k: v for k, v in fields.items() if v is not None})

        return self._perform(
            "edit",
            ACTION_EDIT_COLLECTION,
            apply,
            lambda role: self.coordinator.edit_collection(
                self.collection_id, self.user_id, expected_role=role, **fields
            ),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _claim(self, name: str):
        with self._lock:
            if name in self._in_flight:
                increment_counter("optimistic.rejected_in_flight", labels={"action": name.split(":")[0]})
                raise MutationInFlight(
                    f"'{name}' is already in flight",
                    {"collection_id": self.collection_id, "action": name},
                )
            self._in_flight.add(name)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(name)

    def _perform(
        self,
        name: str,
        action: Optional[str],
        apply: Callable[[Collection], Collection],
        remote: Callable[[str], MutationResult],
    ) -> MutationResult:
        with self._claim(name):
            snapshot = self.collection
            role = resolve_role(snapshot, self.user_id)

            if action is not None and not can_perform(role, action):
                raise PermissionDenied(
                    f"Role '{role}' may not perform '{action}'",
                    {"collection_id": self.collection_id, "action": action, "role": role},
                )

            attempted = apply(snapshot)
            validate_collection(attempted)
            self.collection = attempted

            try:
                result = remote(role)
            except AccessError as e:
                self.collection = snapshot
                increment_counter("optimistic.rollbacks", labels={"action": name.split(":")[0]})
                logger.info(f"Rolled back '{name}' on {self.collection_id}: {e.code}")
                raise

            self.collection = result.confirmed if result.confirmed is not None else self.refresh()
            return result
