"""
Member and follower listings for a collection.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional

from core.access import (
    ACTION_VIEW_FOLLOWERS,
    require_action,
)
from core.models import Collection, User

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def members_by_join_date(collection: Collection) -> List[str]:
    """
    Member ids ordered most-recent join first.

    The owner's join date defaults to the collection's creation date.
    Members without a recorded date go last, ordered by id.
    """
    def join_date(user_id: str) -> Optional[datetime]:
        joined = collection.member_join_dates.get(user_id)
        if joined is None and user_id == collection.owner_id:
            joined = collection.created_at
        return joined

    dated = [uid for uid in collection.members if join_date(uid) is not None]
    undated = sorted(uid for uid in collection.members if join_date(uid) is None)

    dated.sort(key=lambda uid: (join_date(uid) or _EPOCH, uid), reverse=True)
    return dated + undated


def admin_ids(collection: Collection) -> List[str]:
    """Admins in join order (most recent first); never includes the owner."""
    return [uid for uid in members_by_join_date(collection) if uid in collection.admins and uid != collection.owner_id]


def promotion_candidates(collection: Collection) -> List[str]:
    """Members who could be promoted: not the owner and not already admins."""
    return [
        uid
        for uid in members_by_join_date(collection)
        if uid != collection.owner_id and uid not in collection.admins
    ]


def filter_blocked(user_ids: Iterable[str], viewer: Optional[User]) -> List[str]:
    """Drop users the viewer has blocked. Order is preserved."""
    if viewer is None or not viewer.blocked_users:
        return list(user_ids)
    return [uid for uid in user_ids if uid not in viewer.blocked_users]


def list_followers(
    collection: Collection,
    actor_role: str,
    actor_id: Optional[str] = None,
) -> List[str]:
    """
    Follower ids, for actors allowed to see them.

    Raises:
        PermissionDenied: If the actor's role lacks ACTION_VIEW_FOLLOWERS
    """
    require_action(
        actor_role,
        ACTION_VIEW_FOLLOWERS,
        actor_id=actor_id,
        collection_id=collection.id,
    )
    return sorted(collection.followers)
