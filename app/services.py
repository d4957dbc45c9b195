from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from adapters.memory_store import (
    InMemoryCollectionStore,
    InMemoryMediaStorage,
    InMemoryPostStore,
    InMemoryUserDirectory,
)
from adapters.stores import CollectionStore, MediaStorage, PostStore, UserDirectory
from app.settings import Settings
from config import load_config
from core.events import EventBus
from core.membership import MembershipCoordinator
from core.metrics import set_audit_enabled
from core.posts import PostCoordinator

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Everything a request handler needs, wired once at startup.

    Tests build one directly with in-memory stores instead of patching
    module globals.
    """
    collections: CollectionStore
    posts: PostStore
    users: UserDirectory
    media: MediaStorage
    events: EventBus
    membership: MembershipCoordinator
    post_coordinator: PostCoordinator
    config: Dict[str, Any]
    settings: Optional[Settings] = None


def wire_services(
    collections: CollectionStore,
    posts: PostStore,
    users: UserDirectory,
    media: MediaStorage,
    cfg: Optional[Dict[str, Any]] = None,
    settings: Optional[Settings] = None,
    events: Optional[EventBus] = None,
) -> ServiceContainer:
    """Build coordinators on top of the given stores."""
    cfg = cfg if cfg is not None else load_config()
    events = events if events is not None else EventBus(enabled=cfg["EVENTS_ENABLED"])
    set_audit_enabled(cfg["AUDIT_DENIALS"])

    membership = MembershipCoordinator(collections, events=events, posts=posts)
    post_coordinator = PostCoordinator(
        collections,
        posts,
        media=media,
        events=events,
        pin_limit=cfg["PIN_LIMIT"],
        max_media_items=cfg["MAX_MEDIA_ITEMS"],
        retention_days=cfg["DELETED_RETENTION_DAYS"],
    )

    return ServiceContainer(
        collections=collections,
        posts=posts,
        users=users,
        media=media,
        events=events,
        membership=membership,
        post_coordinator=post_coordinator,
        config=cfg,
        settings=settings,
    )


def build_services(settings: Settings, cfg: Optional[Dict[str, Any]] = None) -> ServiceContainer:
    """
    Build the container for the configured STORE_BACKEND.

    The Supabase adapters are imported only when that backend is selected.
    """
    if settings.STORE_BACKEND == "supabase":
        from adapters.media import SupabaseMediaStorage
        from adapters.supabase_store import (
            SupabaseCollectionStore,
            SupabasePostStore,
            SupabaseUserDirectory,
        )
        from vendors.supabase_client import get_client

        sb = get_client()
        logger.info("Using Supabase stores")
        return wire_services(
            SupabaseCollectionStore(sb),
            SupabasePostStore(sb),
            SupabaseUserDirectory(sb),
            SupabaseMediaStorage(settings.MEDIA_BUCKET, sb=sb),
            cfg=cfg,
            settings=settings,
        )

    logger.info("Using in-memory stores")
    return wire_services(
        InMemoryCollectionStore(),
        InMemoryPostStore(),
        InMemoryUserDirectory(),
        InMemoryMediaStorage(settings.MEDIA_BUCKET),
        cfg=cfg,
        settings=settings,
    )
