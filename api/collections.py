"""
Collection and membership API endpoints.

Every mutating endpoint delegates to the MembershipCoordinator, which
re-resolves the caller's role from the latest record before acting.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, status
from pydantic import BaseModel, Field, field_validator

from api.deps import Actor, Services, Viewer
from app.services import ServiceContainer
from core.access import (
    ACTION_MANAGE_ACCESS,
    ACTION_VIEW_FOLLOWERS,
    ALL_ROLES,
    can_perform,
    can_view_collection,
    membership_state,
    resolve_role,
)
from core.errors import PermissionDenied
from core.metrics import audit_access_denial
from core.models import ALL_COLLECTION_TYPES, Collection, TYPE_INDIVIDUAL
from core.roster import filter_blocked, list_followers, members_by_join_date
from core.types import MutationResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/collections", tags=["collections"])


# ============================================================================
# Request/Response Models
# ============================================================================

class CollectionCreateRequest(BaseModel):
    """Request to create a collection."""
    name: str = Field(..., min_length=1, description="Collection name")
    type: str = Field(TYPE_INDIVIDUAL, description="Individual, Invite, Request or Open")
    is_public: bool = False
    description: str = ""
    image_url: Optional[str] = None
    invited_users: List[str] = Field(default_factory=list)

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in ALL_COLLECTION_TYPES:
            raise ValueError(f"Invalid collection type: {v}. Must be one of: {', '.join(sorted(ALL_COLLECTION_TYPES))}")
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Summer 2024",
                "type": "Request",
                "is_public": True,
                "description": "Trip photos",
            }
        }
    }


class CollectionEditRequest(BaseModel):
    """Partial edit; omitted fields stay unchanged."""
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    image_url: Optional[str] = None
    is_public: Optional[bool] = None
    type: Optional[str] = None


class AccessListsRequest(BaseModel):
    """Replacement viewer allow/deny lists."""
    allowed_users: Optional[List[str]] = None
    denied_users: Optional[List[str]] = None


class InvitationRequest(BaseModel):
    user_ids: List[str] = Field(..., min_length=1)


class ExpectedRole(BaseModel):
    """Optional body carrying the role the caller believes it holds."""
    expected_role: Optional[str] = None

    @field_validator("expected_role")
    @classmethod
    def validate_expected_role(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in ALL_ROLES:
            raise ValueError(f"Invalid role: {v}. Must be one of: {', '.join(sorted(ALL_ROLES))}")
        return v


# ============================================================================
# Views
# ============================================================================

def collection_view(collection: Collection, viewer_id: Optional[str]) -> Dict[str, Any]:
    """
    Serialize a collection for one viewer.

    Follower and pending-request ids are only shown to roles that may see
    followers; the allow/deny lists only to the owner.
    """
    role = resolve_role(collection, viewer_id)
    row = collection.to_row()

    if not can_perform(role, ACTION_VIEW_FOLLOWERS):
        row.pop("followers", None)
        row.pop("pending_requests", None)
    if not can_perform(role, ACTION_MANAGE_ACCESS):
        row.pop("allowed_users", None)
        row.pop("denied_users", None)

    row["viewer"] = {
        "role": role,
        "state": membership_state(collection, viewer_id),
    }
    return row


def mutation_view(result: MutationResult, actor_id: str) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "action": result.action,
        "committed": result.committed,
    }
    if isinstance(result.confirmed, Collection):
        body["collection"] = collection_view(result.confirmed, actor_id)
    return body


def _visible_collection(services: ServiceContainer, collection_id: str, viewer_id: Optional[str]) -> Collection:
    collection = services.membership.get_collection(collection_id)
    if not can_view_collection(collection, viewer_id):
        audit_access_denial(
            action="view_collection",
            actor_id=viewer_id,
            role=resolve_role(collection, viewer_id),
            collection_id=collection_id,
        )
        raise PermissionDenied("Collection is not visible to this user", {"collection_id": collection_id})
    return collection


# ============================================================================
# Collections
# ============================================================================

@router.post("", status_code=status.HTTP_201_CREATED)
def create_collection(
    body: CollectionCreateRequest,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    owner = services.users.get_user(actor_id)
    collection = services.membership.create_collection(
        owner_id=actor_id,
        name=body.name,
        type=body.type,
        is_public=body.is_public,
        description=body.description,
        owner_name=owner.name if owner else "",
        image_url=body.image_url,
        invited_users=body.invited_users,
    )
    return collection_view(collection, actor_id)


@router.get("/{collection_id}")
def get_collection(
    collection_id: str,
    services: ServiceContainer = Services,
    viewer_id: Optional[str] = Viewer,
) -> Dict[str, Any]:
    return collection_view(_visible_collection(services, collection_id, viewer_id), viewer_id)


@router.patch("/{collection_id}")
def edit_collection(
    collection_id: str,
    body: CollectionEditRequest,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    result = services.membership.edit_collection(
        collection_id,
        actor_id,
        name=body.name,
        description=body.description,
        image_url=body.image_url,
        is_public=body.is_public,
        type=body.type,
    )
    return mutation_view(result, actor_id)


@router.put("/{collection_id}/access")
def update_access(
    collection_id: str,
    body: AccessListsRequest,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    result = services.membership.update_access(
        collection_id,
        actor_id,
        allowed_users=body.allowed_users,
        denied_users=body.denied_users,
    )
    return mutation_view(result, actor_id)


@router.delete("/{collection_id}")
def delete_collection(
    collection_id: str,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    result = services.membership.delete_collection(collection_id, actor_id)
    return {"action": result.action, "committed": result.committed, **result.changed_fields}


# ============================================================================
# Membership transitions
# ============================================================================

@router.post("/{collection_id}/follow")
def follow(
    collection_id: str,
    body: Optional[ExpectedRole] = None,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    expected = body.expected_role if body else None
    return mutation_view(services.membership.follow(collection_id, actor_id, expected_role=expected), actor_id)


@router.delete("/{collection_id}/follow")
def unfollow(
    collection_id: str,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    return mutation_view(services.membership.unfollow(collection_id, actor_id), actor_id)


@router.post("/{collection_id}/join")
def join(
    collection_id: str,
    body: Optional[ExpectedRole] = None,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    expected = body.expected_role if body else None
    return mutation_view(services.membership.join(collection_id, actor_id, expected_role=expected), actor_id)


@router.post("/{collection_id}/request")
def toggle_request(
    collection_id: str,
    body: Optional[ExpectedRole] = None,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    expected = body.expected_role if body else None
    result = services.membership.toggle_request(collection_id, actor_id, expected_role=expected)
    return mutation_view(result, actor_id)


@router.post("/{collection_id}/requests/{user_id}/approve")
def approve_request(
    collection_id: str,
    user_id: str,
    body: Optional[ExpectedRole] = None,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    expected = body.expected_role if body else None
    result = services.membership.approve_request(collection_id, actor_id, user_id, expected_role=expected)
    return mutation_view(result, actor_id)


@router.post("/{collection_id}/requests/{user_id}/deny")
def deny_request(
    collection_id: str,
    user_id: str,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    return mutation_view(services.membership.deny_request(collection_id, actor_id, user_id), actor_id)


@router.post("/{collection_id}/leave")
def leave(
    collection_id: str,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    return mutation_view(services.membership.leave(collection_id, actor_id), actor_id)


@router.post("/{collection_id}/admins/{user_id}")
def promote(
    collection_id: str,
    user_id: str,
    body: Optional[ExpectedRole] = None,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    expected = body.expected_role if body else None
    result = services.membership.promote(collection_id, actor_id, user_id, expected_role=expected)
    return mutation_view(result, actor_id)


@router.delete("/{collection_id}/admins/{user_id}")
def demote(
    collection_id: str,
    user_id: str,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    return mutation_view(services.membership.demote(collection_id, actor_id, user_id), actor_id)


@router.delete("/{collection_id}/members/{user_id}")
def remove_member(
    collection_id: str,
    user_id: str,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    return mutation_view(services.membership.remove_member(collection_id, actor_id, user_id), actor_id)


@router.post("/{collection_id}/invitations")
def invite(
    collection_id: str,
    body: InvitationRequest,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    return mutation_view(services.membership.invite(collection_id, actor_id, body.user_ids), actor_id)


# ============================================================================
# Rosters
# ============================================================================

@router.get("/{collection_id}/members")
def get_members(
    collection_id: str,
    services: ServiceContainer = Services,
    viewer_id: Optional[str] = Viewer,
) -> Dict[str, Any]:
    collection = _visible_collection(services, collection_id, viewer_id)
    viewer = services.users.get_user(viewer_id) if viewer_id else None

    members = []
    for user_id in filter_blocked(members_by_join_date(collection), viewer):
        joined = collection.member_join_dates.get(user_id)
        members.append({
            "user_id": user_id,
            "role": resolve_role(collection, user_id),
            "joined_at": joined.isoformat() if joined else None,
        })

    return {"collection_id": collection_id, "count": len(members), "members": members}


@router.get("/{collection_id}/followers")
def get_followers(
    collection_id: str,
    services: ServiceContainer = Services,
    actor_id: str = Actor,
) -> Dict[str, Any]:
    collection = services.membership.get_collection(collection_id)
    followers = list_followers(collection, resolve_role(collection, actor_id), actor_id)
    viewer = services.users.get_user(actor_id)
    followers = filter_blocked(followers, viewer)
    return {"collection_id": collection_id, "count": len(followers), "followers": followers}
