"""
Request dependencies shared by the routers.
"""

from typing import Optional

from fastapi import Depends, Request

from api.middleware.identity import get_user_id, require_authenticated
from app.services import ServiceContainer


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_actor_id(request: Request) -> str:
    """User id of an authenticated caller; anonymous callers get 403."""
    return require_authenticated(request).user_id


def get_viewer_id(request: Request) -> Optional[str]:
    """User id of the caller, or None for anonymous viewers."""
    return get_user_id(request)


Services = Depends(get_services)
Actor = Depends(get_actor_id)
Viewer = Depends(get_viewer_id)
