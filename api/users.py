"""
User-scoped API endpoints.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter

from api.collections import collection_view
from api.deps import Services, Viewer
from app.services import ServiceContainer
from core.access import filter_visible_collections

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}/collections")
def get_user_collections(
    user_id: str,
    services: ServiceContainer = Services,
    viewer_id: Optional[str] = Viewer,
) -> Dict[str, Any]:
    """Collections owned by ``user_id`` that the caller is allowed to see, newest first."""
    owned = services.collections.list_collections_for_owner(user_id)
    visible = filter_visible_collections(owned, viewer_id)
    return {
        "user_id": user_id,
        "count": len(visible),
        "collections": [collection_view(c, viewer_id) for c in visible],
    }
