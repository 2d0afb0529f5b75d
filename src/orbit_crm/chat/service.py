"""AI chat: entitlement gates, streamed completion and token settlement."""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from orbit_crm.chat import tools
from orbit_crm.chat.models import TokenUsageModel
from orbit_crm.chat.providers import (
    ChatMessage,
    ChatProvider,
    TextDelta,
    ToolCall,
    Usage,
    provider_for_model,
    provider_name,
)
from orbit_crm.common.config import OrbitSettings
from orbit_crm.common.exceptions import (
    InsufficientTokensError,
    ModelNotAvailableError,
    UpstreamError,
    ValidationError,
)
from orbit_crm.pricing import (
    calculate_effective_tokens,
    can_access_model,
    get_suggested_upgrade,
    has_tokens,
    normalize_tier,
    reset_info,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are Orbit, an AI assistant for service professionals using OrbitCRM.
Current User Role: {role}.

You help users manage their CRM, draft emails, create tasks, analyse contacts, and find information.

You have access to tools:
- Always use 'search_documents' if the user asks about files, contracts, or specific client info.
- If you find documents, cite them in your answer.

Be concise, professional, and helpful."""


@dataclass
class ChatContext:
    """Everything a chat stream needs once the gates have passed."""
    tenant_id: str
    user_id: str
    role: str
    tier: str
    model: str
    conversation_id: str | None = None


class ChatService:
    """Runs a metered chat completion for a tenant user."""

    def __init__(
        self,
        settings: OrbitSettings,
        db,
        tenant_service,
        document_service,
        provider_factory: Callable[[str, OrbitSettings], ChatProvider] = provider_for_model,
    ):
        self.settings = settings
        self.db = db
        self.tenant_service = tenant_service
        self.document_service = document_service
        self.provider_factory = provider_factory
        self._pending: set[asyncio.Task] = set()

    async def prepare(
        self,
        session: AsyncSession,
        tenant_id: str,
        user_id: str,
        role: str,
        model: str,
        conversation_id: str | None = None,
    ) -> ChatContext:
        """Apply the model gate and the pre-flight balance check.

        Raises before any provider call, so a blocked request has no side
        effects.
        """
        org = await self.tenant_service.get_organization(session, tenant_id)
        if org is None:
            raise ValidationError("No organization found")
        tier = normalize_tier(org.subscription_tier)

        if not can_access_model(tier, model):
            raise ModelNotAvailableError(model, get_suggested_upgrade(tier))

        estimated = calculate_effective_tokens(self.settings.preflight_estimate, model)
        monthly = org.token_balance or 0
        pack = org.token_pack_balance or 0
        if not has_tokens(monthly, pack, estimated):
            raise InsufficientTokensError(
                remaining=monthly + pack,
                upgrade_to=get_suggested_upgrade(tier),
                reset_info=reset_info(tier),
            )

        return ChatContext(
            tenant_id=tenant_id,
            user_id=user_id,
            role=role,
            tier=tier,
            model=model,
            conversation_id=conversation_id,
        )

    async def _run_tool(self, ctx: ChatContext, call: ToolCall) -> str:
        if call.name != "search_documents":
            return f"Unknown tool: {call.name}"
        try:
            args = json.loads(call.arguments or "{}")
        except json.JSONDecodeError:
            return "Invalid tool arguments."
        async with self.db.get_session() as session:
            return await tools.search_documents(
                self.document_service, session, ctx.tenant_id, ctx.role, str(args.get("query", ""))
            )

    async def stream(self, ctx: ChatContext, messages: list[ChatMessage]) -> AsyncIterator[dict]:
        """Yield stream events, then settle the real usage.

        Tool rounds are bounded by ``chat_max_steps``; the last round is
        offered no tools so it must answer in text. If the stream is closed
        early, usage reported so far is still settled, from a background task.
        """
        provider = self.provider_factory(ctx.model, self.settings)
        system = SYSTEM_PROMPT.format(role=ctx.role)
        conversation = list(messages)
        usage = Usage()
        max_steps = max(1, self.settings.chat_max_steps)

        settling = False
        try:
            try:
                for step in range(max_steps):
                    offered = tools.TOOLS if provider.supports_tools and step < max_steps - 1 else None
                    calls: list[ToolCall] = []
                    text = []
                    async for event in provider.stream(ctx.model, system, conversation, offered):
                        if isinstance(event, TextDelta):
                            text.append(event.text)
                            yield {"type": "text", "text": event.text}
                        elif isinstance(event, ToolCall):
                            calls.append(event)
                        elif isinstance(event, Usage):
                            usage.add(event)
                    if not calls:
                        break

                    conversation.append(ChatMessage(role="assistant", content="".join(text), tool_calls=calls))
                    for call in calls:
                        yield {"type": "tool_call", "name": call.name}
                        result = await self._run_tool(ctx, call)
                        conversation.append(ChatMessage(role="tool", content=result, tool_call_id=call.id))
            except (UpstreamError, httpx.HTTPError):
                logger.exception(
                    "Chat completion failed", extra={"tenant_id": ctx.tenant_id, "model": ctx.model}
                )
                yield {"type": "error", "message": "The AI provider failed to respond."}

            settling = True
            effective = await self.settle(ctx, usage) if usage.total_tokens else 0
            yield {
                "type": "finish",
                "usage": {
                    "prompt_tokens": usage.prompt_tokens,
                    "completion_tokens": usage.completion_tokens,
                    "total_tokens": usage.total_tokens,
                    "effective_tokens": effective,
                },
            }
        finally:
            # Client disconnect or an unexpected error: bill what the provider already reported
            if not settling and usage.total_tokens:
                self._settle_later(ctx, usage)

    def _settle_later(self, ctx: ChatContext, usage: Usage) -> None:
        """Settle from a task of its own so a cancelled request cannot interrupt it."""
        try:
            task = asyncio.get_running_loop().create_task(self.settle(ctx, usage))
        except RuntimeError:
            logger.error(
                "No event loop to settle an interrupted chat",
                extra={"tenant_id": ctx.tenant_id, "tokens": usage.total_tokens},
            )
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for settlements of interrupted streams."""
        if self._pending:
            await asyncio.gather(*self._pending)

    async def settle(self, ctx: ChatContext, usage: Usage) -> int:
        """Deduct effective tokens and record the audit row.

        Both steps are best effort: the response has already been delivered,
        so failures are logged and swallowed.
        """
        effective = calculate_effective_tokens(usage.total_tokens, ctx.model)
        try:
            async with self.db.get_session() as session:
                await self.tenant_service.check_and_deduct_tokens(session, ctx.tenant_id, effective)
        except Exception:
            logger.exception(
                "Token deduction failed", extra={"tenant_id": ctx.tenant_id, "tokens": effective}
            )
        else:
            logger.info(
                "Chat usage settled",
                extra={"tenant_id": ctx.tenant_id, "user_id": ctx.user_id, "model": ctx.model, "tokens": effective},
            )

        if ctx.conversation_id:
            try:
                async with self.db.get_session() as session:
                    session.add(TokenUsageModel(
                        tenant_id=ctx.tenant_id,
                        user_id=ctx.user_id,
                        conversation_id=ctx.conversation_id,
                        model=ctx.model,
                        provider=provider_name(ctx.model),
                        prompt_tokens=usage.prompt_tokens,
                        completion_tokens=usage.completion_tokens,
                        total_tokens=usage.total_tokens,
                        effective_tokens=effective,
                    ))
            except Exception:
                logger.exception("Failed to record token usage", extra={"tenant_id": ctx.tenant_id})
        return effective
