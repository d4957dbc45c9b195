"""
Shared fixtures: in-memory stores, a fixed clock and collection builders.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Type

import pytest

from adapters.memory_store import (
    InMemoryCollectionStore,
    InMemoryMediaStorage,
    InMemoryPostStore,
    InMemoryUserDirectory,
)
from core.events import DomainEvent, EventBus
from core.membership import MembershipCoordinator
from core.metrics import reset_metrics
from core.models import Collection, Post, TYPE_INDIVIDUAL
from core.posts import PostCoordinator

OWNER = "owner-1"
ADMIN = "admin-1"
ADMIN_2 = "admin-2"
MEMBER = "member-1"
MEMBER_2 = "member-2"
FOLLOWER = "follower-1"
OUTSIDER = "outsider-1"

BASE_TIME = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class RecordingEventBus(EventBus):
    """Event bus that also keeps every published event, for inspection."""

    def __init__(self, enabled: bool = True):
        super().__init__(enabled=enabled)
        self.published: List[DomainEvent] = []

    def publish(self, event: DomainEvent) -> int:
        if self.enabled:
            self.published.append(event)
        return super().publish(event)

    def of_type(self, event_type: Type[DomainEvent]) -> List[DomainEvent]:
        return [e for e in self.published if isinstance(e, event_type)]


class Clock:
    """Deterministic clock that advances one second per call."""

    def __init__(self, start: datetime = BASE_TIME):
        self.now = start

    def __call__(self) -> datetime:
        self.now = self.now + timedelta(seconds=1)
        return self.now


def build_collection(
    collection_id: str = "col-1",
    type: str = "Invite",
    is_public: bool = True,
    admins=(ADMIN,),
    members=(MEMBER,),
    followers=(FOLLOWER,),
    **extra,
) -> Collection:
    """Collection with the standard cast: owner, admin, member, follower."""
    if type == TYPE_INDIVIDUAL:
        admins, members = (), ()
    all_members = {OWNER, *admins, *members}
    return Collection(
        id=collection_id,
        owner_id=OWNER,
        name="Summer",
        type=type,
        is_public=is_public,
        admins=set(admins),
        members=all_members,
        followers=set(followers),
        member_join_dates={uid: BASE_TIME for uid in all_members},
        member_count=len(all_members),
        follower_count=len(set(followers)),
        created_at=BASE_TIME,
        **extra,
    )


def build_post(post_id: str, collection_id: str = "col-1", author_id: str = MEMBER, **extra) -> Post:
    extra.setdefault("created_at", BASE_TIME)
    return Post(id=post_id, collection_id=collection_id, author_id=author_id, **extra)


@pytest.fixture(autouse=True)
def clean_metrics():
    """Reset metrics before and after each test."""
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def events():
    return RecordingEventBus()


@pytest.fixture
def collection_store():
    return InMemoryCollectionStore()


@pytest.fixture
def post_store():
    return InMemoryPostStore()


@pytest.fixture
def user_directory():
    return InMemoryUserDirectory()


@pytest.fixture
def media_storage():
    return InMemoryMediaStorage()


@pytest.fixture
def membership(collection_store, post_store, events, clock):
    return MembershipCoordinator(collection_store, events=events, posts=post_store, clock=clock)


@pytest.fixture
def post_coordinator(collection_store, post_store, media_storage, events, clock):
    return PostCoordinator(
        collection_store,
        post_store,
        media=media_storage,
        events=events,
        clock=clock,
    )
