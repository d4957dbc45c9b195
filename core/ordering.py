"""
Post ordering inside a collection: pinned posts first, then the chosen sort.
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Optional, Union

from core.models import Post, TYPE_INDIVIDUAL

logger = logging.getLogger(__name__)

DEFAULT_PIN_LIMIT = 4

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SortOption(Enum):
    """Sort orders for the unpinned part of a collection."""
    NEWEST_FIRST = "newest"
    OLDEST_FIRST = "oldest"
    ALPHABETICAL = "alphabetical"


def effective_sort_option(
    sort_option: Union[SortOption, str, None],
    collection_type: Optional[str] = None,
) -> SortOption:
    """
    Normalize a sort option and apply the collection-type restriction.

    Alphabetical is not offered for Individual collections; they fall back
    to newest first.

    Raises:
        ValueError: If ``sort_option`` is a string that names no option
    """
    if sort_option is None:
        option = SortOption.NEWEST_FIRST
    elif isinstance(sort_option, SortOption):
        option = sort_option
    else:
        option = SortOption(sort_option)

    if option is SortOption.ALPHABETICAL and collection_type == TYPE_INDIVIDUAL:
        return SortOption.NEWEST_FIRST
    return option


def _pin_time(post: Post) -> datetime:
    return post.pinned_at or _EPOCH


def _title_key(post: Post) -> str:
    return (post.caption or post.title or "").casefold()


def sorted_posts(
    posts: Iterable[Post],
    sort_option: Union[SortOption, str, None] = SortOption.NEWEST_FIRST,
    collection_type: Optional[str] = None,
) -> List[Post]:
    """
    Order posts for display.

    Pinned posts come first, most recently pinned first. The rest follow in
    ``sort_option`` order. Soft-deleted posts are dropped.

    Args:
        posts: Posts of one collection
        sort_option: Sort for the unpinned posts
        collection_type: Collection type (restricts alphabetical)

    Returns:
        New list: pinned ++ unpinned
    """
    option = effective_sort_option(sort_option, collection_type)
    live = [p for p in posts if not p.is_deleted]

    pinned = sorted(
        (p for p in live if p.is_pinned),
        key=_pin_time,
        reverse=True,
    )
    unpinned = [p for p in live if not p.is_pinned]

    if option is SortOption.OLDEST_FIRST:
        unpinned.sort(key=lambda p: p.created_at)
    elif option is SortOption.ALPHABETICAL:
        # Newest first within equal titles
        unpinned.sort(key=lambda p: p.created_at, reverse=True)
        unpinned.sort(key=_title_key)
    else:
        unpinned.sort(key=lambda p: p.created_at, reverse=True)

    return pinned + unpinned


def select_pin_evictions(pinned_posts: Iterable[Post], limit: int = DEFAULT_PIN_LIMIT) -> List[Post]:
    """
    Pick the pins to drop so one more post can be pinned within ``limit``.

    Oldest ``pinned_at`` goes first. With fewer than ``limit`` pins nothing
    is evicted.

    Examples:
        Four pins at t1 < t2 < t3 < t4 with limit 4 returns [post@t1].
    """
    if limit < 1:
        raise ValueError("pin limit must be at least 1")

    pinned = sorted((p for p in pinned_posts if p.is_pinned), key=_pin_time)
    overflow = len(pinned) - (limit - 1)
    if overflow <= 0:
        return []

    evicted = pinned[:overflow]
    logger.debug(f"Evicting {len(evicted)} pin(s) to stay within limit={limit}")
    return evicted
