# adapters/supabase_store.py — Supabase-backed collection, post and user stores

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.errors import TransientStoreError
from core.models import Collection, Post, User, serialize_fields, utcnow
from vendors.supabase_client import get_client

logger = logging.getLogger(__name__)

COLLECTIONS_TABLE = "collections"
POSTS_TABLE = "posts"
USERS_TABLE = "users"


def _rows(result) -> List[Dict[str, Any]]:
    data = result.data if hasattr(result, "data") else result.get("data")
    return data or []


class _SupabaseTable:
    """Shared plumbing: client injection and error translation."""

    table_name = ""

    def __init__(self, sb=None):
        """
        Args:
            sb: Optional Supabase client. If not provided, will use get_client()
        """
        self.sb = sb or get_client()

    def _table(self):
        return self.sb.table(self.table_name)

    def _execute(self, operation: str, query) -> List[Dict[str, Any]]:
        try:
            return _rows(query.execute())
        except Exception as e:
            logger.error(f"Supabase {operation} on {self.table_name} failed: {e}", exc_info=True)
            raise TransientStoreError(
                f"{operation} on {self.table_name} failed",
                {"table": self.table_name, "operation": operation, "reason": str(e)},
            ) from e


class SupabaseCollectionStore(_SupabaseTable):
    """Collection records in the ``collections`` table (one row per collection)."""

    table_name = COLLECTIONS_TABLE

    def get_collection(self, collection_id: str) -> Optional[Collection]:
        rows = self._execute(
            "get_collection",
            self._table().select("*").eq("id", collection_id).limit(1),
        )
        return Collection.from_row(rows[0]) if rows else None

    def create_collection(self, collection: Collection) -> Collection:
        rows = self._execute("create_collection", self._table().insert(collection.to_row()))
        return Collection.from_row(rows[0]) if rows else collection

    def update_collection(self, collection_id: str, fields: Dict[str, Any]) -> None:
        # PATCH semantics: only the named columns are sent
        self._execute(
            "update_collection",
            self._table().update(serialize_fields(fields)).eq("id", collection_id),
        )

    def delete_collection(self, collection_id: str) -> None:
        self._execute("delete_collection", self._table().delete().eq("id", collection_id))

    def list_collections_for_owner(self, owner_id: str) -> List[Collection]:
        rows = self._execute(
            "list_collections_for_owner",
            self._table().select("*").eq("owner_id", owner_id).order("created_at", desc=True),
        )
        return [Collection.from_row(row) for row in rows]


class SupabasePostStore(_SupabaseTable):
    """Posts in the ``posts`` table; soft-deleted rows carry ``deleted_at``."""

    table_name = POSTS_TABLE

    def get_posts_for_collection(self, collection_id: str) -> List[Post]:
        rows = self._execute(
            "get_posts_for_collection",
            self._table().select("*").eq("collection_id", collection_id).is_("deleted_at", "null"),
        )
        return [Post.from_row(row) for row in rows]

    def get_post(self, post_id: str) -> Optional[Post]:
        rows = self._execute(
            "get_post",
            self._table().select("*").eq("id", post_id).is_("deleted_at", "null").limit(1),
        )
        return Post.from_row(rows[0]) if rows else None

    def create_post(self, post: Post) -> Post:
        rows = self._execute("create_post", self._table().insert(post.to_row()))
        return Post.from_row(rows[0]) if rows else post

    def toggle_pin(self, post_id: str, is_pinned: bool, pinned_at: Optional[datetime] = None) -> None:
        fields = {
            "is_pinned": is_pinned,
            "pinned_at": (pinned_at or utcnow()) if is_pinned else None,
        }
        self._execute("toggle_pin", self._table().update(serialize_fields(fields)).eq("id", post_id))

    def delete_post(self, post_id: str) -> None:
        fields = {"deleted_at": utcnow(), "is_pinned": False, "pinned_at": None}
        self._execute("delete_post", self._table().update(serialize_fields(fields)).eq("id", post_id))

    def update_post(self, post_id: str, fields: Dict[str, Any]) -> None:
        self._execute("update_post", self._table().update(serialize_fields(fields)).eq("id", post_id))


class SupabaseUserDirectory(_SupabaseTable):
    """Read-only access to the ``users`` table."""

    table_name = USERS_TABLE

    def get_user(self, user_id: str) -> Optional[User]:
        rows = self._execute("get_user", self._table().select("*").eq("id", user_id).limit(1))
        return User.from_row(rows[0]) if rows else None

    def get_all_users(self) -> List[User]:
        rows = self._execute("get_all_users", self._table().select("*"))
        return [User.from_row(row) for row in rows]
