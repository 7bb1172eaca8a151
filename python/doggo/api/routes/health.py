"""Liveness probe.

Open to everyone (no viewer or internal header). Reports which providers
have credentials so a misconfigured deploy is visible without sending a
chat; it never calls a provider, the database or storage.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from doggo.api.deps import get_llm_router
from doggo.responses import success_response
from doggo.services.llm import LLMRouter, Provider

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(llm_router: Annotated[LLMRouter, Depends(get_llm_router)]) -> dict:
    providers = {p.value: llm_router.is_provider_available(p) for p in Provider}
    return success_response({"status": "ok", "providers": providers})
