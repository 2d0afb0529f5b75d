"""AI chat router: streamed completions and model listing."""

import json
from typing import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from orbit_crm.chat.providers import ChatMessage
from orbit_crm.chat.schemas import AvailableModelsResponse, ChatRequest, ModelInfo
from orbit_crm.common.exceptions import ValidationError
from orbit_crm.common.security import UserContext, require_tenant_user, require_user
from orbit_crm.pricing import get_available_models, normalize_tier

router = APIRouter(prefix="/api/chat")


def _get_service():
    from orbit_crm.deps import get_chat_service
    return get_chat_service()


def _get_limiter():
    from orbit_crm.deps import get_chat_limiter
    return get_chat_limiter()


def _get_tenant_service():
    from orbit_crm.deps import get_tenant_service
    return get_tenant_service()


def _get_db():
    from orbit_crm.deps import get_db
    return get_db()


async def _sse(events: AsyncIterator[dict]) -> AsyncIterator[str]:
    async for event in events:
        yield f"data: {json.dumps(event)}\n\n"
    yield "data: [DONE]\n\n"


@router.post("")
async def chat(body: ChatRequest, user: UserContext = Depends(require_user)):
    limit = await _get_limiter().check(user.user_id)
    limit.raise_for_limit()
    if not user.tenant_id:
        raise ValidationError("No organization found")

    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        ctx = await svc.prepare(
            session, user.tenant_id, user.user_id, user.role,
            body.model, body.conversation_id,
        )

    messages = [ChatMessage(role=m.role, content=m.content) for m in body.messages]
    return StreamingResponse(
        _sse(svc.stream(ctx, messages)),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/models", response_model=AvailableModelsResponse)
async def list_models(user: UserContext = Depends(require_tenant_user)):
    svc = _get_tenant_service()
    db = _get_db()
    async with db.get_session() as session:
        org = await svc.get_organization(session, user.tenant_id)
        tier = normalize_tier(org.subscription_tier if org else None)
    return AvailableModelsResponse(
        tier=tier,
        models=[ModelInfo.model_validate(m) for m in get_available_models(tier)],
    )
