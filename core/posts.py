"""
Post coordinator: creation, editing, pinning, deletion and listing.

Follows the same re-fetch / check / write / confirm steps as the membership
coordinator. Permission decisions for post-level actions take the post's
author and the collection type into account (see ``PermissionContext``).
"""

import logging
import mimetypes
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence, Tuple, Union

from adapters.stores import CollectionStore, MediaStorage, PostStore
from core.access import (
    ACTION_CREATE_POST,
    ACTION_DELETE_ANY_POST,
    ACTION_DELETE_OWN_POST,
    ACTION_PIN_POST,
    PermissionContext,
    can_delete_post,
    can_view_collection,
    require_action,
    resolve_role,
)
from core.errors import (
    InvariantViolation,
    NotFound,
    PermissionDenied,
    StaleStateConflict,
    TransientStoreError,
    UploadError,
)
from core.events import EventBus, PostCreated, PostDeleted, PostUpdated
from core.metrics import audit_access_denial, increment_counter, record_transition, time_operation
from core.models import Collection, MediaItem, Post, utcnow
from core.ordering import DEFAULT_PIN_LIMIT, SortOption, select_pin_evictions, sorted_posts
from core.types import MutationResult

logger = logging.getLogger(__name__)

DEFAULT_MAX_MEDIA_ITEMS = 5
DEFAULT_RETENTION_DAYS = 15

# Audit label for author-only edits; not part of the role table
ACTION_EDIT_POST = "edit_post"


@dataclass
class MediaUpload:
    """Raw media bytes to be stored before a post is created."""
    data: bytes
    content_type: str = "image/jpeg"
    is_video: bool = False
    video_duration: Optional[float] = None
    thumbnail: Optional[bytes] = None


MediaInput = Union[MediaUpload, MediaItem]


class PostCoordinator:
    """
    Orchestrates post transitions inside collections.

    Args:
        collections: Collection store (for role and visibility checks)
        posts: Post store
        media: Media storage for uploads (optional if callers pass URLs)
        events: Event bus (optional)
        pin_limit: Maximum concurrently pinned posts per collection
        max_media_items: Maximum media items per post
        retention_days: How long soft-deleted posts are kept before purge
        clock: Returns "now"; injectable for tests
    """

    def __init__(
        self,
        collections: CollectionStore,
        posts: PostStore,
        media: Optional[MediaStorage] = None,
        events: Optional[EventBus] = None,
        pin_limit: int = DEFAULT_PIN_LIMIT,
        max_media_items: int = DEFAULT_MAX_MEDIA_ITEMS,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.collections = collections
        self.posts = posts
        self.media = media
        self.events = events
        self.pin_limit = pin_limit
        self.max_media_items = max_media_items
        self.retention_days = retention_days
        self.clock = clock

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_posts(
        self,
        collection_id: str,
        viewer_id: Optional[str],
        sort_option: Union[SortOption, str, None] = SortOption.NEWEST_FIRST,
    ) -> List[Post]:
        """
        Posts of a collection in display order.

        Raises:
            NotFound: Unknown collection
            PermissionDenied: Viewer cannot see the collection
            ValueError: Unknown sort option
        """
        collection = self._get_collection(collection_id)
        self._require_visible(collection, viewer_id)
        posts = self.posts.get_posts_for_collection(collection_id)
        return sorted_posts(posts, sort_option, collection.type)

    def get_post(self, post_id: str, viewer_id: Optional[str]) -> Post:
        post, collection = self._get_post_and_collection(post_id)
        self._require_visible(collection, viewer_id)
        return post

    # ------------------------------------------------------------------
    # Creation and edits
    # ------------------------------------------------------------------

    def create_post(
        self,
        collection_id: str,
        actor_id: str,
        media: Sequence[MediaInput],
        caption: Optional[str] = None,
        title: str = "",
        author_name: str = "",
        allow_download: bool = False,
        allow_replies: bool = True,
        tagged_users: Iterable[str] = (),
    ) -> Post:
        """
        Create a post in a collection the actor is a member of.

        Raw ``MediaUpload`` items are uploaded first; the post is only
        written once every upload succeeded. Uploads are removed again when
        a later upload or the post write fails.

        Raises:
            PermissionDenied: Actor is not a member
            InvariantViolation: Wrong number of media items, or tagged
                users who are not members
            UploadError: Media storage failed
        """
        if not actor_id:
            raise PermissionDenied("Authentication required", {"collection_id": collection_id})

        collection = self._get_collection(collection_id)
        role = resolve_role(collection, actor_id)
        require_action(role, ACTION_CREATE_POST, actor_id=actor_id, collection_id=collection_id)

        if not 1 <= len(media) <= self.max_media_items:
            raise InvariantViolation(
                f"A post needs between 1 and {self.max_media_items} media items",
                {"count": len(media), "max": self.max_media_items},
            )

        tagged = list(dict.fromkeys(uid for uid in tagged_users if uid))
        outsiders = [uid for uid in tagged if uid not in collection.members]
        if outsiders:
            raise InvariantViolation(
                "Only collection members can be tagged",
                {"not_members": outsiders},
            )

        post_id = str(uuid.uuid4())
        uploaded: List[str] = []
        try:
            items = self._store_media(collection_id, post_id, media, uploaded)
        except UploadError:
            record_transition("create_post", "failed")
            self._discard_uploads(uploaded)
            raise

        post = Post(
            id=post_id,
            collection_id=collection_id,
            author_id=actor_id,
            author_name=author_name,
            title=title,
            caption=caption,
            media_items=items,
            allow_download=allow_download,
            allow_replies=allow_replies,
            tagged_users=tagged,
            created_at=self.clock(),
        )

        try:
            stored = self.posts.create_post(post)
        except TransientStoreError:
            record_transition("create_post", "failed")
            logger.error(f"Failed to store post in collection {collection_id}", exc_info=True)
            self._discard_uploads(uploaded)
            raise

        record_transition("create_post", "committed")
        logger.info(f"Created post {stored.id} in {collection_id} by {actor_id} with {len(items)} media item(s)")
        self._publish(PostCreated(collection_id=collection_id, post_id=stored.id, author_id=actor_id))
        return stored

    def update_post(
        self,
        post_id: str,
        actor_id: str,
        *,
        caption: Optional[str] = None,
        allow_download: Optional[bool] = None,
        allow_replies: Optional[bool] = None,
        tagged_users: Optional[Iterable[str]] = None,
    ) -> MutationResult:
        """Edit caption, download/reply settings or tags. Author only."""
        post, collection = self._get_post_and_collection(post_id)
        role = resolve_role(collection, actor_id)

        require_action(
            role, ACTION_EDIT_POST,
            actor_id=actor_id, collection_id=collection.id, target_id=post_id,
            allowed=bool(actor_id) and actor_id == post.author_id,
        )

        requested = {
            "caption": caption,
            "allow_download": allow_download,
            "allow_replies": allow_replies,
        }
        changes = {k: v for k, v in requested.items() if v is not None and getattr(post, k) != v}

        if tagged_users is not None:
            tagged = list(dict.fromkeys(uid for uid in tagged_users if uid))
            outsiders = [uid for uid in tagged if uid not in collection.members]
            if outsiders:
                raise InvariantViolation(
                    "Only collection members can be tagged",
                    {"not_members": outsiders},
                )
            if tagged != post.tagged_users:
                changes["tagged_users"] = tagged

        if not changes:
            record_transition("update_post", "noop")
            return MutationResult(
                action="update_post", collection_id=collection.id,
                attempted=post, confirmed=post, committed=False,
            )

        attempted = post.with_fields(changes)
        self._write("update_post", post_id, lambda: self.posts.update_post(post_id, changes))

        confirmed = self._confirm_post(post_id, "update_post")
        if any(getattr(confirmed, k) != v for k, v in changes.items()):
            record_transition("update_post", "failed")
            raise StaleStateConflict(
                "Post edit was overtaken by a concurrent change",
                {"post_id": post_id, "fields": sorted(changes)},
            )

        record_transition("update_post", "committed")
        self._publish(PostUpdated(collection_id=collection.id, post_id=post_id, action="edited"))
        return MutationResult(
            action="update_post", collection_id=collection.id,
            attempted=attempted, confirmed=confirmed, changed_fields=changes,
        )

    # ------------------------------------------------------------------
    # Pinning
    # ------------------------------------------------------------------

    def pin_post(self, post_id: str, actor_id: str) -> MutationResult:
        """
        Pin a post, evicting the oldest pins if the collection is at the cap.

        Pinning an already pinned post is a no-op.

        Examples:
            With four pins at t1 < t2 < t3 < t4, pinning a fifth unpins the
            t1 post and leaves the other three pinned.
        """
        post, collection = self._get_post_and_collection(post_id)
        self._require_pin_rights(post, collection, actor_id)

        if post.is_pinned:
            record_transition("pin_post", "noop")
            return MutationResult(
                action="pin_post", collection_id=collection.id,
                attempted=post, confirmed=post, committed=False,
            )

        others = [p for p in self.posts.get_posts_for_collection(collection.id) if p.id != post_id]
        evicted = select_pin_evictions(others, self.pin_limit)
        pinned_at = self.clock()

        def write():
            unpinned: List[Post] = []
            try:
                for old in evicted:
                    self.posts.toggle_pin(old.id, False)
                    unpinned.append(old)
                self.posts.toggle_pin(post_id, True, pinned_at)
            except TransientStoreError:
                self._restore_pins(unpinned)
                raise

        attempted = post.with_fields({"is_pinned": True, "pinned_at": pinned_at})
        self._write("pin_post", post_id, write)

        confirmed = self._confirm_post(post_id, "pin_post")
        if not confirmed.is_pinned:
            record_transition("pin_post", "failed")
            raise StaleStateConflict("Pin was overtaken by a concurrent change", {"post_id": post_id})

        record_transition("pin_post", "committed")
        evicted_ids = [p.id for p in evicted]
        logger.info(
            f"Pinned post {post_id} in {collection.id} by {actor_id}"
            + (f", evicted {evicted_ids}" if evicted_ids else "")
        )

        for old_id in evicted_ids:
            self._publish(PostUpdated(collection_id=collection.id, post_id=old_id, action="unpinned"))
        self._publish(PostUpdated(collection_id=collection.id, post_id=post_id, action="pinned"))

        return MutationResult(
            action="pin_post",
            collection_id=collection.id,
            attempted=attempted,
            confirmed=confirmed,
            changed_fields={"is_pinned": True, "pinned_at": pinned_at, "evicted": evicted_ids},
        )

    def unpin_post(self, post_id: str, actor_id: str) -> MutationResult:
        """Unpin a post. Unpinning an unpinned post is a no-op."""
        post, collection = self._get_post_and_collection(post_id)
        self._require_pin_rights(post, collection, actor_id)

        if not post.is_pinned:
            record_transition("unpin_post", "noop")
            return MutationResult(
                action="unpin_post", collection_id=collection.id,
                attempted=post, confirmed=post, committed=False,
            )

        attempted = post.with_fields({"is_pinned": False, "pinned_at": None})
        self._write("unpin_post", post_id, lambda: self.posts.toggle_pin(post_id, False))

        confirmed = self._confirm_post(post_id, "unpin_post")
        if confirmed.is_pinned:
            record_transition("unpin_post", "failed")
            raise StaleStateConflict("Unpin was overtaken by a concurrent change", {"post_id": post_id})

        record_transition("unpin_post", "committed")
        self._publish(PostUpdated(collection_id=collection.id, post_id=post_id, action="unpinned"))
        return MutationResult(
            action="unpin_post", collection_id=collection.id,
            attempted=attempted, confirmed=confirmed,
            changed_fields={"is_pinned": False, "pinned_at": None},
        )

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    def delete_post(self, post_id: str, actor_id: str) -> MutationResult:
        """
        Soft-delete a post.

        Authors may delete their own posts; the owner and admins may delete
        any post, except in Individual collections where only the author can.
        """
        post, collection = self._get_post_and_collection(post_id)
        role = resolve_role(collection, actor_id)
        is_author = bool(actor_id) and actor_id == post.author_id

        require_action(
            role,
            ACTION_DELETE_OWN_POST if is_author else ACTION_DELETE_ANY_POST,
            actor_id=actor_id,
            collection_id=collection.id,
            target_id=post_id,
            allowed=can_delete_post(role, collection.type, is_author),
        )

        self._write("delete_post", post_id, lambda: self.posts.delete_post(post_id))

        if self.posts.get_post(post_id) is not None:
            record_transition("delete_post", "failed")
            raise StaleStateConflict("Post is still listed after delete", {"post_id": post_id})

        purge_after = self.clock() + timedelta(days=self.retention_days)
        record_transition("delete_post", "committed")
        logger.info(f"Deleted post {post_id} in {collection.id} by {actor_id}; media kept until {purge_after.isoformat()}")
        self._publish(PostDeleted(collection_id=collection.id, post_id=post_id, deleted_by=actor_id))

        return MutationResult(
            action="delete_post",
            collection_id=collection.id,
            attempted=None,
            confirmed=None,
            changed_fields={"deleted": True, "purge_after": purge_after},
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _get_collection(self, collection_id: str) -> Collection:
        collection = self.collections.get_collection(collection_id)
        if collection is None:
            raise NotFound(f"Collection {collection_id} not found", {"collection_id": collection_id})
        return collection

    def _get_post_and_collection(self, post_id: str) -> Tuple[Post, Collection]:
        post = self.posts.get_post(post_id)
        if post is None:
            raise NotFound(f"Post {post_id} not found", {"post_id": post_id})
        return post, self._get_collection(post.collection_id)

    def _require_visible(self, collection: Collection, viewer_id: Optional[str]) -> None:
        if can_view_collection(collection, viewer_id):
            return
        role = resolve_role(collection, viewer_id)
        audit_access_denial(action="view_collection", actor_id=viewer_id, role=role, collection_id=collection.id)
        raise PermissionDenied(
            "Collection is not visible to this user",
            {"collection_id": collection.id},
        )

    def _require_pin_rights(self, post: Post, collection: Collection, actor_id: Optional[str]) -> None:
        role = resolve_role(collection, actor_id)
        require_action(
            role,
            ACTION_PIN_POST,
            actor_id=actor_id,
            collection_id=collection.id,
            target_id=post.id,
            context=PermissionContext(
                collection_type=collection.type,
                is_author=bool(actor_id) and actor_id == post.author_id,
            ),
        )

    def _store_media(
        self,
        collection_id: str,
        post_id: str,
        media: Sequence[MediaInput],
        uploaded: List[str],
    ) -> List[MediaItem]:
        """Upload raw media; every stored path is appended to ``uploaded``."""
        items = []
        for index, entry in enumerate(media):
            if isinstance(entry, MediaItem):
                items.append(entry)
                continue

            if self.media is None:
                raise UploadError("No media storage configured", {"post_id": post_id})

            extension = mimetypes.guess_extension(entry.content_type) or ".bin"
            path = f"posts/{collection_id}/{post_id}/{index}{extension}"

            with time_operation("media_upload"):
                url = self.media.upload(entry.data, path, entry.content_type)
            uploaded.append(path)

            thumbnail_url = None
            if entry.thumbnail is not None:
                thumb_path = f"posts/{collection_id}/{post_id}/{index}_thumb.jpg"
                thumbnail_url = self.media.upload(entry.thumbnail, thumb_path, "image/jpeg")
                uploaded.append(thumb_path)

            if entry.is_video:
                items.append(MediaItem(
                    video_url=url,
                    thumbnail_url=thumbnail_url,
                    video_duration=entry.video_duration,
                    is_video=True,
                ))
            else:
                items.append(MediaItem(image_url=url, thumbnail_url=thumbnail_url))

        return items

    def _restore_pins(self, unpinned: Sequence[Post]) -> None:
        """Re-pin evicted posts with their original pin time after a failed pin."""
        for old in unpinned:
            try:
                self.posts.toggle_pin(old.id, True, old.pinned_at)
            except TransientStoreError:
                increment_counter("posts.pin_restore.failed")
                logger.error(f"Could not restore pin on post {old.id}", exc_info=True)

    def _discard_uploads(self, paths: Sequence[str]) -> None:
        """Remove media uploaded for a post that was never written."""
        for path in paths:
            try:
                self.media.delete(path)
            except UploadError:
                increment_counter("media.discard.failed")
                logger.error(f"Could not remove orphaned upload {path}", exc_info=True)

    def _write(self, action: str, post_id: str, operation: Callable[[], None]) -> None:
        try:
            with time_operation("transition", {"action": action}):
                operation()
        except TransientStoreError:
            record_transition(action, "failed")
            logger.error(f"{action} on post {post_id}: store write failed", exc_info=True)
            raise

    def _confirm_post(self, post_id: str, action: str) -> Post:
        confirmed = self.posts.get_post(post_id)
        if confirmed is None:
            record_transition(action, "failed")
            raise StaleStateConflict(f"Post {post_id} disappeared during {action}", {"post_id": post_id})
        return confirmed

    def _publish(self, event) -> None:
        if self.events is not None:
            self.events.publish(event)
