"""
Collection, post and user records.

These are the canonical entities every coordinator works against. Stores
persist them as flat rows (``to_row`` / ``from_row``); partial updates are
expressed as dicts keyed by attribute name and applied with ``with_fields``.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields as dataclass_fields
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from core.errors import InvariantViolation


# ============================================================================
# Collection Types
# ============================================================================

TYPE_INDIVIDUAL = "Individual"
"""Single-occupant collection; the owner is the only member."""

TYPE_INVITE = "Invite"
"""Members are added by invitation from the owner or an admin."""

TYPE_REQUEST = "Request"
"""Outsiders ask to join; the owner or an admin approves."""

TYPE_OPEN = "Open"
"""Anyone may join without approval."""

ALL_COLLECTION_TYPES = frozenset({
    TYPE_INDIVIDUAL,
    TYPE_INVITE,
    TYPE_REQUEST,
    TYPE_OPEN,
})

# Types that must stay public for their whole lifetime
PUBLIC_ONLY_TYPES = frozenset({TYPE_REQUEST, TYPE_OPEN})

_SET_FIELDS = (
    "admins",
    "members",
    "followers",
    "allowed_users",
    "denied_users",
    "pending_requests",
    "invited_users",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _format_datetime(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_value(value: Any) -> Any:
    """Convert a record value into its row (JSON-friendly) form."""
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: serialize_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [serialize_value(v) for v in value]
    if isinstance(value, MediaItem):
        return value.to_row()
    return value


def serialize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Serialize a partial-update dict for a row store."""
    return {k: serialize_value(v) for k, v in fields.items()}


# ============================================================================
# Collection
# ============================================================================

@dataclass
class Collection:
    """A named, typed container of posts with owner, membership and visibility policy."""
    id: str
    owner_id: str
    name: str = ""
    description: str = ""
    type: str = TYPE_INDIVIDUAL
    is_public: bool = False
    owner_name: str = ""
    image_url: Optional[str] = None
    admins: Set[str] = field(default_factory=set)
    members: Set[str] = field(default_factory=set)
    followers: Set[str] = field(default_factory=set)
    allowed_users: Set[str] = field(default_factory=set)
    denied_users: Set[str] = field(default_factory=set)
    pending_requests: Set[str] = field(default_factory=set)
    invited_users: Set[str] = field(default_factory=set)
    member_join_dates: Dict[str, datetime] = field(default_factory=dict)
    member_count: int = 0
    follower_count: int = 0
    created_at: datetime = field(default_factory=utcnow)

    @property
    def title(self) -> str:
        return self.name

    def copy(self) -> "Collection":
        return copy.deepcopy(self)

    def with_fields(self, updates: Dict[str, Any]) -> "Collection":
        """
        Return a copy with ``updates`` merged in.

        Only the named attributes change; everything else is carried over,
        which is the merge semantics every store must honour.

        Raises:
            KeyError: If an update names an unknown attribute
        """
        known = {f.name for f in dataclass_fields(self)}
        unknown = set(updates) - known
        if unknown:
            raise KeyError(f"Unknown collection fields: {sorted(unknown)}")

        updated = self.copy()
        for key, value in updates.items():
            if key in _SET_FIELDS:
                value = set(value)
            elif key == "member_join_dates":
                value = {uid: _parse_datetime(ts) for uid, ts in value.items()}
            elif key == "created_at":
                value = _parse_datetime(value)
            setattr(updated, key, copy.deepcopy(value))
        return updated

    def to_row(self) -> Dict[str, Any]:
        return {f.name: serialize_value(getattr(self, f.name)) for f in dataclass_fields(self)}

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Collection":
        """
        Build a collection from a store row.

        Legacy rows keep admins in an ``owners`` array that also contains the
        owner; those are folded into ``admins`` without the owner id.
        """
        owner_id = row["owner_id"]
        admins = row.get("admins")
        if admins is None:
            admins = [uid for uid in row.get("owners") or [] if uid != owner_id]

        members = set(row.get("members") or [owner_id])
        followers = set(row.get("followers") or [])

        return cls(
            id=str(row["id"]),
            owner_id=owner_id,
            name=row.get("name") or "",
            description=row.get("description") or "",
            type=row.get("type") or TYPE_INDIVIDUAL,
            is_public=bool(row.get("is_public", False)),
            owner_name=row.get("owner_name") or "",
            image_url=row.get("image_url"),
            admins=set(admins),
            members=members,
            followers=followers,
            allowed_users=set(row.get("allowed_users") or []),
            denied_users=set(row.get("denied_users") or []),
            pending_requests=set(row.get("pending_requests") or []),
            invited_users=set(row.get("invited_users") or []),
            member_join_dates={
                uid: _parse_datetime(ts)
                for uid, ts in (row.get("member_join_dates") or {}).items()
            },
            member_count=row.get("member_count", len(members)),
            follower_count=row.get("follower_count", len(followers)),
            created_at=_parse_datetime(row.get("created_at")) or utcnow(),
        )


def validate_collection(collection: Collection) -> None:
    """
    Check the structural invariants of a collection record.

    Raises:
        InvariantViolation: If any invariant does not hold
    """
    if collection.type not in ALL_COLLECTION_TYPES:
        raise InvariantViolation(
            f"Unknown collection type: {collection.type}",
            {"type": collection.type, "allowed": sorted(ALL_COLLECTION_TYPES)},
        )

    if collection.type in PUBLIC_ONLY_TYPES and not collection.is_public:
        raise InvariantViolation(
            f"{collection.type} collections must be public",
            {"type": collection.type, "is_public": collection.is_public},
        )

    if collection.owner_id not in collection.members:
        raise InvariantViolation(
            "Owner must be a member of their collection",
            {"owner_id": collection.owner_id},
        )

    if collection.owner_id in collection.admins:
        raise InvariantViolation(
            "Owner is tracked separately from admins",
            {"owner_id": collection.owner_id},
        )

    if collection.type == TYPE_INDIVIDUAL and collection.members != {collection.owner_id}:
        raise InvariantViolation(
            "Individual collections have exactly one member",
            {"members": sorted(collection.members)},
        )


# ============================================================================
# Posts
# ============================================================================

@dataclass
class MediaItem:
    """One photo or video attached to a post."""
    image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    video_url: Optional[str] = None
    video_duration: Optional[float] = None
    is_video: bool = False

    def to_row(self) -> Dict[str, Any]:
        return {
            "image_url": self.image_url,
            "thumbnail_url": self.thumbnail_url,
            "video_url": self.video_url,
            "video_duration": self.video_duration,
            "is_video": self.is_video,
        }

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "MediaItem":
        return cls(
            image_url=row.get("image_url"),
            thumbnail_url=row.get("thumbnail_url"),
            video_url=row.get("video_url"),
            video_duration=row.get("video_duration"),
            is_video=bool(row.get("is_video", False)),
        )


@dataclass
class Post:
    """A media post inside a collection."""
    id: str
    collection_id: str
    author_id: str
    author_name: str = ""
    title: str = ""
    caption: Optional[str] = None
    media_items: List[MediaItem] = field(default_factory=list)
    is_pinned: bool = False
    pinned_at: Optional[datetime] = None
    allow_download: bool = False
    allow_replies: bool = True
    tagged_users: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def first_media_item(self) -> Optional[MediaItem]:
        return self.media_items[0] if self.media_items else None

    def with_fields(self, updates: Dict[str, Any]) -> "Post":
        known = {f.name for f in dataclass_fields(self)}
        unknown = set(updates) - known
        if unknown:
            raise KeyError(f"Unknown post fields: {sorted(unknown)}")

        updated = copy.deepcopy(self)
        for key, value in updates.items():
            if key in ("pinned_at", "created_at", "deleted_at"):
                value = _parse_datetime(value)
            elif key == "media_items":
                value = [m if isinstance(m, MediaItem) else MediaItem.from_row(m) for m in value]
            setattr(updated, key, copy.deepcopy(value))
        return updated

    def to_row(self) -> Dict[str, Any]:
        return {f.name: serialize_value(getattr(self, f.name)) for f in dataclass_fields(self)}

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Post":
        return cls(
            id=str(row["id"]),
            collection_id=row["collection_id"],
            author_id=row["author_id"],
            author_name=row.get("author_name") or "",
            title=row.get("title") or "",
            caption=row.get("caption"),
            media_items=[MediaItem.from_row(m) for m in row.get("media_items") or []],
            is_pinned=bool(row.get("is_pinned", False)),
            pinned_at=_parse_datetime(row.get("pinned_at")),
            allow_download=bool(row.get("allow_download", False)),
            allow_replies=bool(row.get("allow_replies", True)),
            tagged_users=list(row.get("tagged_users") or []),
            created_at=_parse_datetime(row.get("created_at")) or utcnow(),
            deleted_at=_parse_datetime(row.get("deleted_at")),
        )


# ============================================================================
# Users
# ============================================================================

@dataclass
class User:
    """Directory entry for a user."""
    id: str
    username: str = ""
    name: str = ""
    profile_image_url: Optional[str] = None
    blocked_users: Set[str] = field(default_factory=set)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "User":
        return cls(
            id=str(row["id"]),
            username=row.get("username") or "",
            name=row.get("name") or "",
            profile_image_url=row.get("profile_image_url"),
            blocked_users=set(row.get("blocked_users") or []),
        )
