# adapters/memory_store.py — in-process stores for tests and STORE_BACKEND=memory

import threading
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.models import Collection, Post, User, utcnow


class InMemoryCollectionStore:
    """Collection store backed by a dict. Records are copied in and out."""

    def __init__(self, collections: Optional[List[Collection]] = None):
        self._lock = threading.RLock()
        self._records: Dict[str, Collection] = {}
        for collection in collections or []:
            self._records[collection.id] = collection.copy()

    def get_collection(self, collection_id: str) -> Optional[Collection]:
        with self._lock:
            record = self._records.get(collection_id)
            return record.copy() if record else None

    def create_collection(self, collection: Collection) -> Collection:
        with self._lock:
            if not collection.id:
                collection = collection.with_fields({"id": str(uuid.uuid4())})
            self._records[collection.id] = collection.copy()
            return collection.copy()

    def update_collection(self, collection_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            record = self._records.get(collection_id)
            if record is None:
                # Merge semantics on a missing record: nothing to merge into
                return
            self._records[collection_id] = record.with_fields(fields)

    def delete_collection(self, collection_id: str) -> None:
        with self._lock:
            self._records.pop(collection_id, None)

    def list_collections_for_owner(self, owner_id: str) -> List[Collection]:
        with self._lock:
            owned = [c.copy() for c in self._records.values() if c.owner_id == owner_id]
        return sorted(owned, key=lambda c: c.created_at, reverse=True)


class InMemoryPostStore:
    """Post store backed by a dict. Soft-deleted posts stay in the dict but leave the index."""

    def __init__(self, posts: Optional[List[Post]] = None):
        self._lock = threading.RLock()
        self._records: Dict[str, Post] = {}
        for post in posts or []:
            self._records[post.id] = post.with_fields({})

    def get_posts_for_collection(self, collection_id: str) -> List[Post]:
        with self._lock:
            return [
                p.with_fields({})
                for p in self._records.values()
                if p.collection_id == collection_id and not p.is_deleted
            ]

    def get_post(self, post_id: str) -> Optional[Post]:
        with self._lock:
            post = self._records.get(post_id)
            if post is None or post.is_deleted:
                return None
            return post.with_fields({})

    def create_post(self, post: Post) -> Post:
        with self._lock:
            if not post.id:
                post = post.with_fields({"id": str(uuid.uuid4())})
            self._records[post.id] = post.with_fields({})
            return post.with_fields({})

    def toggle_pin(self, post_id: str, is_pinned: bool, pinned_at: Optional[datetime] = None) -> None:
        with self._lock:
            post = self._records.get(post_id)
            if post is None:
                return
            self._records[post_id] = post.with_fields({
                "is_pinned": is_pinned,
                "pinned_at": (pinned_at or utcnow()) if is_pinned else None,
            })

    def delete_post(self, post_id: str) -> None:
        with self._lock:
            post = self._records.get(post_id)
            if post is None:
                return
            self._records[post_id] = post.with_fields({
                "deleted_at": utcnow(),
                "is_pinned": False,
                "pinned_at": None,
            })

    def update_post(self, post_id: str, fields: Dict[str, Any]) -> None:
        with self._lock:
            post = self._records.get(post_id)
            if post is None:
                return
            self._records[post_id] = post.with_fields(fields)


class InMemoryUserDirectory:
    """User directory backed by a dict."""

    def __init__(self, users: Optional[List[User]] = None):
        self._users: Dict[str, User] = {u.id: u for u in users or []}

    def add_user(self, user: User) -> None:
        self._users[user.id] = user

    def get_user(self, user_id: str) -> Optional[User]:
        return self._users.get(user_id)

    def get_all_users(self) -> List[User]:
        return list(self._users.values())


class InMemoryMediaStorage:
    """Media storage that keeps uploaded bytes in memory."""

    def __init__(self, bucket: str = "collection-media"):
        self.bucket = bucket
        self.objects: Dict[str, bytes] = {}

    def upload(self, data: bytes, path: str, content_type: str = "application/octet-stream") -> str:
        self.objects[path] = bytes(data)
        return f"memory://{self.bucket}/{path}"

    def delete(self, path: str) -> None:
        self.objects.pop(path, None)
