"""
Post API endpoints: listing, creation, editing, pinning and deletion.
"""

import base64
import binascii
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, status
from pydantic import BaseModel, Field, model_validator

from api.deps import Actor, Services, Viewer
from app.services import ServiceContainer
from core.errors import InvariantViolation
from core.models import MediaItem
from core.ordering import SortOption
from core.posts import MediaUpload
from core.types import MutationResult

logger = logging.getLogger(__name__)

router = APIRouter(tags=["posts"])


# ============================================================================
# Request/Response Models
# ============================================================================

class MediaInput(BaseModel):
    """
    One media item: either already-hosted URLs, or base64 bytes to upload.
    """
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    video_duration: Optional[float] = None
    is_video: bool = False
    data_base64: Optional[str] = None
    content_type: str = "image/jpeg"

    @model_validator(mode="after")
    def _has_source(self) -> "MediaInput":
        if not (self.data_base64 or self.image_url or self.video_url):
            raise ValueError("media item needs data_base64, image_url or video_url")
        return self

    def to_media(self):
        if self.data_base64:
            try:
                data = base64.b64decode(self.data_base64, validate=True)
            except (binascii.Error, ValueError):
                raise InvariantViolation("data_base64 is not valid base64", {"content_type": self.content_type})
            return MediaUpload(
                data=data,
                content_type=self.content_type,
                is_video=self.is_video,
                video_duration=self.video_duration,
            )
        return MediaItem(
            image_url=self.image_url,
            thumbnail_url=self.thumbnail_url,
            video_url=self.video_url,
            video_duration=self.video_duration,
            is_video=self.is_video,
        )


class PostCreateRequest(BaseModel):
    media: List[MediaInput] = Field(..., min_length=1)
    caption: Optional[str] = None
    title: str = ""
    allow_download: bool = False
    allow_replies: bool = True
    tagged_users: List[str] = Field(default_factory=list)


class PostEditRequest(BaseModel):
    caption: Optional[str] = None
    allow_download: Optional[bool] = None
    allow_replies: Optional[bool] = None
    tagged_users: Optional[List[str]] = None


def post_mutation_view(result: MutationResult) -> Dict[str, Any]:
    body = result.to_dict()
    body.pop("confirmed", None)
    body["post"] = result.confirmed.to_row() if result.confirmed is not None else None
    return body


# ============================================================================
# Endpoints
# ============================================================================

@router.get("/collections/{collection_id}/posts")
def list_posts(
    collection_id: str,
    sort: SortOption = Query(SortOption.NEWEST_FIRST, description="newest, oldest or alphabetical"),
    services: ServiceContainer = Services,
    viewer_id: Optional[str] = Viewer,
) -> Dict[str, Any]:
    posts = services.post_coordinator.list_posts(collection_id, viewer_id, sort)
    return {
        "collection_id": collection_id,
        "count": len(posts),
        "posts": [p.to_row() for p in posts],
    }


@router.post("/collections/{collection_id}/posts", status_code=status.HTTP_201_CREATED)
def create_post(
    collection_id: str,
    body: PostCreateRequest,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    author = services.users.get_user(actor_id)
    post = services.post_coordinator.create_post(
        collection_id,
        actor_id,
        media=[m.to_media() for m in body.media],
        caption=body.caption,
        title=body.title,
        author_name=author.name if author else "",
        allow_download=body.allow_download,
        allow_replies=body.allow_replies,
        tagged_users=body.tagged_users,
    )
    return post.to_row()


@router.get("/posts/{post_id}")
def get_post(
    post_id: str,
    services: ServiceContainer = Services,
    viewer_id: Optional[str] = Viewer,
) -> Dict[str, Any]:
    return services.post_coordinator.get_post(post_id, viewer_id).to_row()


@router.patch("/posts/{post_id}")
def edit_post(
    post_id: str,
    body: PostEditRequest,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    result = services.post_coordinator.update_post(
        post_id,
        actor_id,
        caption=body.caption,
        allow_download=body.allow_download,
        allow_replies=body.allow_replies,
        tagged_users=body.tagged_users,
    )
    return post_mutation_view(result)


@router.delete("/posts/{post_id}")
def delete_post(
    post_id: str,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    return post_mutation_view(services.post_coordinator.delete_post(post_id, actor_id))


@router.post("/posts/{post_id}/pin")
def pin_post(
    post_id: str,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    return post_mutation_view(services.post_coordinator.pin_post(post_id, actor_id))


@router.delete("/posts/{post_id}/pin")
def unpin_post(
    post_id: str,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    return post_mutation_view(services.post_coordinator.unpin_post(post_id, actor_id))
