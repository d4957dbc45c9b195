# main.py — builds the app, mounts routers, exposes health

import logging
import os
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import collections as collections_api
from api import debug as debug_api
from api import posts as posts_api
from api import users as users_api
from api.errors import install_exception_handlers
from api.middleware.identity import IdentityMiddleware
from app.services import ServiceContainer, build_services
from app.settings import get_settings
from core.identity import IdentityResolver

logger = logging.getLogger(__name__)


def create_app(
    services: Optional[ServiceContainer] = None,
    resolver: Optional[IdentityResolver] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        services: Wired service container; built from settings when omitted
        resolver: Identity resolver; built from JWT settings when omitted
    """
    if services is None or resolver is None:
        settings = get_settings()
        services = services or build_services(settings)
        resolver = resolver or IdentityResolver(settings.JWT_SECRET, settings.JWT_ALGO)

    app = FastAPI(
        title="Collections Access Service",
        version="0.1.0",
        description="Roles, permissions and membership transitions for photo collections.",
    )
    app.state.services = services

    # CORS: permissive for now; lock down later.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(IdentityMiddleware, resolver=resolver)

    install_exception_handlers(app)

    app.include_router(collections_api.router)
    app.include_router(posts_api.router)
    app.include_router(users_api.router)
    app.include_router(debug_api.router)

    @app.get("/healthz")
    def healthz():
        """Minimal liveness probe."""
        return {"status": "ok", "store": type(app.state.services.collections).__name__}

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(), host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
