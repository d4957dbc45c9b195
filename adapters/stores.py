"""
Store interfaces the coordinators depend on.

Implementations: ``adapters.memory_store`` (tests, local runs) and
``adapters.supabase_store`` (production). Every implementation raises
``TransientStoreError`` for backend failures and returns None for ids that
do not resolve.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from core.models import Collection, Post, User


@runtime_checkable
class CollectionStore(Protocol):
    """Persistence for collection records."""

    def get_collection(self, collection_id: str) -> Optional[Collection]:
        """Fetch the latest record, or None if it does not exist."""
        ...

    def create_collection(self, collection: Collection) -> Collection:
        """Persist a new record and return it as stored."""
        ...

    def update_collection(self, collection_id: str, fields: Dict[str, Any]) -> None:
        """
        Merge ``fields`` into the stored record.

        Fields that are not named must be left untouched.
        """
        ...

    def delete_collection(self, collection_id: str) -> None:
        ...

    def list_collections_for_owner(self, owner_id: str) -> List[Collection]:
        ...


@runtime_checkable
class PostStore(Protocol):
    """Persistence for posts."""

    def get_posts_for_collection(self, collection_id: str) -> List[Post]:
        """All live (not soft-deleted) posts of a collection."""
        ...

    def get_post(self, post_id: str) -> Optional[Post]:
        ...

    def create_post(self, post: Post) -> Post:
        ...

    def toggle_pin(self, post_id: str, is_pinned: bool, pinned_at: Optional[datetime] = None) -> None:
        ...

    def delete_post(self, post_id: str) -> None:
        """Soft delete: the post leaves the index, stored media may remain."""
        ...

    def update_post(self, post_id: str, fields: Dict[str, Any]) -> None:
        ...


@runtime_checkable
class UserDirectory(Protocol):
    """Read access to user profiles."""

    def get_user(self, user_id: str) -> Optional[User]:
        ...

    def get_all_users(self) -> List[User]:
        ...


@runtime_checkable
class MediaStorage(Protocol):
    """Blob storage for post and collection media."""

    def upload(self, data: bytes, path: str, content_type: str = "application/octet-stream") -> str:
        """
        Store bytes and return a retrievable URL.

        Raises:
            UploadError: If the upload fails
        """
        ...

    def delete(self, path: str) -> None:
        """
        Remove a stored object. Deleting a missing path is not an error.

        Raises:
            UploadError: If storage cannot be reached
        """
        ...
