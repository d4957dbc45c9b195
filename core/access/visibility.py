"""
Viewer visibility for collections.

Private collections are visible to their members and an explicit
allow-list; public collections are visible to everyone except an explicit
deny-list.
"""

import logging
from typing import Iterable, List, Optional

from core.access.resolve import resolve_role
from core.access.roles import is_member_role
from core.models import Collection

logger = logging.getLogger(__name__)


def can_view_collection(collection: Collection, user_id: Optional[str]) -> bool:
    """
    Check if a user can see a collection and its posts.

    Args:
        collection: Latest collection record
        user_id: Viewer (None for anonymous)

    Returns:
        True if visible, False otherwise

    Examples:
        Owner, admins and members always see the collection. On a private
        collection everyone else needs to be in ``allowed_users``; on a
        public one they must not be in ``denied_users``.
    """
    if is_member_role(resolve_role(collection, user_id)):
        return True

    if not collection.is_public:
        return bool(user_id) and user_id in collection.allowed_users

    return not (user_id and user_id in collection.denied_users)


def filter_visible_collections(
    collections: Iterable[Collection],
    viewer_id: Optional[str],
) -> List[Collection]:
    """
    Keep only the collections a viewer is allowed to see.

    Args:
        collections: Candidate collections (e.g. all of a profile's collections)
        viewer_id: Viewer user id

    Returns:
        Visible collections, original order preserved
    """
    candidates = list(collections)
    visible = [c for c in candidates if can_view_collection(c, viewer_id)]

    if len(visible) < len(candidates):
        logger.debug(
            f"Filtered {len(candidates) - len(visible)} of {len(candidates)} "
            f"collections for viewer={viewer_id}"
        )

    return visible
