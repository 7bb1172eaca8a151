"""Route registration.

Routers are assembled in a factory so importing a route module never
loads settings.
"""

from fastapi import APIRouter

from doggo.api.routes.attachments import router as attachments_router
from doggo.api.routes.collaborators import router as collaborators_router
from doggo.api.routes.conversations import router as conversations_router
from doggo.api.routes.health import router as health_router
from doggo.api.routes.stream import router as stream_router
from doggo.api.routes.usage import router as usage_router


def create_api_router() -> APIRouter:
    api_router = APIRouter()
    api_router.include_router(health_router)
    api_router.include_router(conversations_router)
    api_router.include_router(attachments_router)
    api_router.include_router(collaborators_router)
    api_router.include_router(usage_router)
    api_router.include_router(stream_router)
    return api_router


__all__ = ["create_api_router"]
