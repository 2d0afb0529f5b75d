"""Tests for metered AI chat: gates, streaming, tool rounds and settlement."""

import json

import httpx
import pytest
from sqlalchemy import select

from orbit_crm.chat.models import TokenUsageModel
from orbit_crm.chat.providers import (
    AnthropicProvider,
    ChatMessage,
    ChatProvider,
    GoogleProvider,
    OpenAIProvider,
    TextDelta,
    ToolCall,
    Usage,
    provider_for_model,
)
from orbit_crm.chat.service import ChatService
from orbit_crm.chat.tools import NO_RESULTS
from orbit_crm.common.config import OrbitSettings
from orbit_crm.common.database import DatabaseManager
from orbit_crm.common.exceptions import (
    InsufficientTokensError,
    ModelNotAvailableError,
    UpstreamError,
    ValidationError,
)
from orbit_crm.documents.service import DocumentService
from orbit_crm.tenants.service import TenantService


def make_settings(tmp_path, **overrides) -> OrbitSettings:
    defaults = {"db_url": "sqlite+aiosqlite://", "storage_dir": str(tmp_path / "docs")}
    defaults.update(overrides)
    return OrbitSettings(**defaults)


class FakeProvider(ChatProvider):
    """Replays scripted rounds and records what it was asked."""

    name = "OpenAI"
    supports_tools = True

    def __init__(self, rounds):
        self.rounds = rounds
        self.calls = []

    async def stream(self, model, system, messages, tools=None):
        self.calls.append({"model": model, "system": system, "messages": list(messages), "tools": tools})
        for event in self.rounds[len(self.calls) - 1]:
            if isinstance(event, Exception):
                raise event
            yield event


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
def tenants():
    return TenantService()


@pytest.fixture
def documents(settings):
    return DocumentService(settings)


def make_service(settings, db, tenants, documents, provider):
    return ChatService(
        settings, db, tenants, documents, provider_factory=lambda model, s: provider
    )


async def _org(db, tenants, tier="pro", **balances):
    async with db.get_session() as session:
        org = await tenants.create_organization(session, "Acme", subscription_tier=tier, **balances)
        return org.id


async def _collect(service, ctx, text="Hello"):
    return [e async for e in service.stream(ctx, [ChatMessage(role="user", content=text)])]


class TestPrepare:
    async def test_passes_for_pro(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        service = make_service(settings, db, tenants, documents, FakeProvider([]))
        async with db.get_session() as session:
            ctx = await service.prepare(session, tenant_id, "u1", "owner", "gpt-4o", "conv-1")
        assert ctx.tier == "pro"
        assert ctx.conversation_id == "conv-1"

    async def test_model_gate(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "free")
        service = make_service(settings, db, tenants, documents, FakeProvider([]))
        async with db.get_session() as session:
            with pytest.raises(ModelNotAvailableError) as exc_info:
                await service.prepare(session, tenant_id, "u1", "owner", "gpt-4o")
        assert exc_info.value.status_code == 403
        assert exc_info.value.extra == {"upgrade_to": "pro"}

    async def test_opus_needs_enterprise(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "business")
        service = make_service(settings, db, tenants, documents, FakeProvider([]))
        async with db.get_session() as session:
            with pytest.raises(ModelNotAvailableError) as exc_info:
                await service.prepare(session, tenant_id, "u1", "owner", "claude-opus-4")
        assert exc_info.value.extra["upgrade_to"] == "enterprise"

    async def test_preflight_blocks_low_balance(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "free", token_balance=500)
        service = make_service(settings, db, tenants, documents, FakeProvider([]))
        async with db.get_session() as session:
            with pytest.raises(InsufficientTokensError) as exc_info:
                await service.prepare(session, tenant_id, "u1", "owner", "gpt-4o-mini")
        err = exc_info.value
        assert err.status_code == 402
        assert err.extra["remaining"] == 500
        assert err.extra["upgrade_to"] == "pro"
        assert "midnight UTC" in err.extra["reset_info"]

    async def test_preflight_scales_with_multiplier(self, settings, db, tenants, documents):
        # 2,000 x 3 = 6,000 needed for gpt-4o
        tenant_id = await _org(db, tenants, "pro", token_balance=5_000, token_pack_balance=999)
        service = make_service(settings, db, tenants, documents, FakeProvider([]))
        async with db.get_session() as session:
            with pytest.raises(InsufficientTokensError):
                await service.prepare(session, tenant_id, "u1", "owner", "gpt-4o")

    async def test_pack_counts_towards_preflight(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro", token_balance=5_000, token_pack_balance=1_000)
        service = make_service(settings, db, tenants, documents, FakeProvider([]))
        async with db.get_session() as session:
            await service.prepare(session, tenant_id, "u1", "owner", "gpt-4o")

    async def test_missing_org(self, settings, db, tenants, documents):
        service = make_service(settings, db, tenants, documents, FakeProvider([]))
        async with db.get_session() as session:
            with pytest.raises(ValidationError):
                await service.prepare(session, "missing", "u1", "owner", "gpt-4o-mini")


class TestStream:
    async def _ctx(self, service, db, tenant_id, model="gpt-4o-mini", conversation_id=None, role="owner"):
        async with db.get_session() as session:
            return await service.prepare(session, tenant_id, "u1", role, model, conversation_id)

    async def test_text_then_finish_and_settle(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        provider = FakeProvider([[TextDelta("Hel"), TextDelta("lo"), Usage(100, 50)]])
        service = make_service(settings, db, tenants, documents, provider)
        ctx = await self._ctx(service, db, tenant_id, model="gpt-4o")

        events = await _collect(service, ctx)
        assert events[:2] == [{"type": "text", "text": "Hel"}, {"type": "text", "text": "lo"}]
        assert events[-1] == {
            "type": "finish",
            "usage": {
                "prompt_tokens": 100, "completion_tokens": 50,
                "total_tokens": 150, "effective_tokens": 450,
            },
        }
        async with db.get_session() as session:
            balance = await tenants.get_balance(session, tenant_id)
        assert balance["token_balance"] == 50_000 - 450

    async def test_system_prompt_carries_role(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        provider = FakeProvider([[Usage(1, 1)]])
        service = make_service(settings, db, tenants, documents, provider)
        ctx = await self._ctx(service, db, tenant_id, role="member")
        await _collect(service, ctx)
        assert "Current User Role: member." in provider.calls[0]["system"]

    async def test_audit_row_only_with_conversation(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        provider = FakeProvider([[Usage(10, 5)], [Usage(20, 5)]])
        service = make_service(settings, db, tenants, documents, provider)

        await _collect(service, await self._ctx(service, db, tenant_id))
        await _collect(service, await self._ctx(service, db, tenant_id, conversation_id="conv-9"))

        async with db.get_session() as session:
            rows = (await session.execute(select(TokenUsageModel))).scalars().all()
        assert len(rows) == 1
        row = rows[0]
        assert row.conversation_id == "conv-9"
        assert row.provider == "OpenAI"
        assert row.total_tokens == 25
        assert row.effective_tokens == 25

    async def test_tool_round(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        async with db.get_session() as session:
            await documents.upload_document(
                session, tenant_id, "contract.pdf", b"%PDF", content_summary="Signed master contract"
            )
        provider = FakeProvider([
            [ToolCall("call_1", "search_documents", '{"query": "contract"}'), Usage(10, 5)],
            [TextDelta("Found it"), Usage(20, 10)],
        ])
        service = make_service(settings, db, tenants, documents, provider)
        ctx = await self._ctx(service, db, tenant_id)

        events = await _collect(service, ctx, "Where is the contract?")
        assert [e["type"] for e in events] == ["tool_call", "text", "finish"]
        assert events[-1]["usage"]["total_tokens"] == 45

        tool_message = provider.calls[1]["messages"][-1]
        assert tool_message.role == "tool"
        assert tool_message.tool_call_id == "call_1"
        assert json.loads(tool_message.content)[0]["name"] == "contract.pdf"

    async def test_members_do_not_see_internal_documents(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        async with db.get_session() as session:
            await documents.upload_document(session, tenant_id, "contract.pdf", b"%PDF")
        provider = FakeProvider([
            [ToolCall("call_1", "search_documents", '{"query": "contract"}'), Usage(1, 1)],
            [TextDelta("Nothing"), Usage(1, 1)],
        ])
        service = make_service(settings, db, tenants, documents, provider)
        ctx = await self._ctx(service, db, tenant_id, role="member")
        await _collect(service, ctx)
        assert provider.calls[1]["messages"][-1].content == NO_RESULTS

    async def test_last_step_offers_no_tools(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        call = ToolCall("c", "search_documents", '{"query": "x"}')
        provider = FakeProvider([[call, Usage(1, 0)], [call, Usage(1, 0)], [TextDelta("done"), Usage(1, 0)]])
        service = make_service(settings, db, tenants, documents, provider)
        ctx = await self._ctx(service, db, tenant_id)
        await _collect(service, ctx)
        assert len(provider.calls) == 3
        assert provider.calls[0]["tools"] is not None
        assert provider.calls[2]["tools"] is None

    async def test_provider_failure_streams_error(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        provider = FakeProvider([[UpstreamError("boom")]])
        service = make_service(settings, db, tenants, documents, provider)
        ctx = await self._ctx(service, db, tenant_id)

        events = await _collect(service, ctx)
        assert [e["type"] for e in events] == ["error", "finish"]
        assert events[-1]["usage"]["effective_tokens"] == 0
        async with db.get_session() as session:
            assert (await tenants.get_balance(session, tenant_id))["token_balance"] == 50_000

    async def test_closed_stream_still_settles(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        provider = FakeProvider([
            [ToolCall("call_1", "search_documents", '{"query": "x"}'), Usage(1000, 500)],
            [TextDelta("Partial"), TextDelta(" answer"), Usage(200, 100)],
        ])
        service = make_service(settings, db, tenants, documents, provider)
        ctx = await self._ctx(service, db, tenant_id, model="gpt-4o")

        gen = service.stream(ctx, [ChatMessage(role="user", content="Hello")])
        async for event in gen:
            if event["type"] == "text":
                break
        await gen.aclose()
        await service.drain()

        async with db.get_session() as session:
            balance = await tenants.get_balance(session, tenant_id)
        assert balance["token_balance"] == 50_000 - 4_500

    async def test_unexpected_error_still_settles(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        provider = FakeProvider([
            [ToolCall("call_1", "search_documents", '{"query": "x"}'), Usage(100, 50)],
            [RuntimeError("socket closed")],
        ])
        service = make_service(settings, db, tenants, documents, provider)
        ctx = await self._ctx(service, db, tenant_id)

        with pytest.raises(RuntimeError):
            await _collect(service, ctx)
        await service.drain()

        async with db.get_session() as session:
            balance = await tenants.get_balance(session, tenant_id)
        assert balance["token_balance"] == 50_000 - 150

    async def test_completed_stream_leaves_nothing_pending(self, settings, db, tenants, documents):
        tenant_id = await _org(db, tenants, "pro")
        provider = FakeProvider([[TextDelta("hi"), Usage(10, 10)]])
        service = make_service(settings, db, tenants, documents, provider)
        await _collect(service, await self._ctx(service, db, tenant_id))
        assert not service._pending
        async with db.get_session() as session:
            assert (await tenants.get_balance(session, tenant_id))["token_balance"] == 50_000 - 20

    async def test_settlement_failure_is_swallowed(self, settings, db, tenants, documents):
        class BrokenTenants(TenantService):
            async def check_and_deduct_tokens(self, session, tenant_id, tokens):
                raise RuntimeError("database is locked")

        tenant_id = await _org(db, tenants, "pro")
        provider = FakeProvider([[TextDelta("hi"), Usage(3, 4)]])
        service = make_service(settings, db, BrokenTenants(), documents, provider)
        ctx = await self._ctx(service, db, tenant_id)

        events = await _collect(service, ctx)
        assert events[-1]["usage"]["effective_tokens"] == 7


def sse(*frames) -> bytes:
    return "".join(f"data: {json.dumps(f) if not isinstance(f, str) else f}\n\n" for f in frames).encode()


def sse_transport(body: bytes, status: int = 200):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, content=body, headers={"content-type": "text/event-stream"})

    return httpx.MockTransport(handler), seen


async def _events(provider, tools=None):
    return [e async for e in provider.stream("m", "sys", [ChatMessage(role="user", content="hi")], tools)]


class TestProviders:
    async def test_openai_text_tools_and_usage(self):
        body = sse(
            {"choices": [{"delta": {"content": "Hi"}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "id": "call_1", "function": {
                "name": "search_documents", "arguments": '{"qu'}}]}}]},
            {"choices": [{"delta": {"tool_calls": [{"index": 0, "function": {"arguments": 'ery": "x"}'}}]}}]},
            {"choices": [], "usage": {"prompt_tokens": 12, "completion_tokens": 7}},
            "[DONE]",
        )
        transport, seen = sse_transport(body)
        provider = OpenAIProvider("sk-test", "https://api.test/v1/", transport=transport)

        events = await _events(provider, tools=[{"type": "function"}])
        assert events == [
            TextDelta("Hi"),
            ToolCall("call_1", "search_documents", '{"query": "x"}'),
            Usage(12, 7),
        ]
        request = seen[0]
        assert str(request.url) == "https://api.test/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        payload = json.loads(request.content)
        assert payload["stream"] is True
        assert payload["messages"][0] == {"role": "system", "content": "sys"}
        assert payload["tools"] == [{"type": "function"}]

    async def test_anthropic(self):
        body = sse(
            {"type": "message_start", "message": {"usage": {"input_tokens": 20, "output_tokens": 1}}},
            {"type": "content_block_delta", "delta": {"type": "text_delta", "text": "Hello"}},
            {"type": "message_delta", "usage": {"output_tokens": 15}},
            {"type": "message_stop"},
        )
        transport, seen = sse_transport(body)
        provider = AnthropicProvider("ak", "https://anthropic.test/v1", transport=transport)

        assert await _events(provider) == [TextDelta("Hello"), Usage(20, 15)]
        assert seen[0].headers["x-api-key"] == "ak"
        assert json.loads(seen[0].content)["system"] == "sys"

    async def test_google(self):
        body = sse(
            {"candidates": [{"content": {"parts": [{"text": "Gr"}]}}],
             "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 1}},
            {"candidates": [{"content": {"parts": [{"text": "üezi"}]}}],
             "usageMetadata": {"promptTokenCount": 4, "candidatesTokenCount": 3}},
        )
        transport, seen = sse_transport(body)
        provider = GoogleProvider("gk", "https://google.test/v1beta", transport=transport)

        assert await _events(provider) == [TextDelta("Gr"), TextDelta("üezi"), Usage(4, 3)]
        assert seen[0].url.path == "/v1beta/models/m:streamGenerateContent"
        assert seen[0].headers["x-goog-api-key"] == "gk"

    async def test_http_error_raises_upstream(self):
        transport, _ = sse_transport(b'{"error": "overloaded"}', status=529)
        provider = AnthropicProvider("ak", "https://anthropic.test/v1", transport=transport)
        with pytest.raises(UpstreamError):
            await _events(provider)

    def test_factory_routes_by_prefix(self, tmp_path):
        settings = make_settings(tmp_path, openai_api_key="sk", google_api_key="gk")
        assert isinstance(provider_for_model("gpt-4o", settings), OpenAIProvider)
        assert isinstance(provider_for_model("claude-opus-4", settings), AnthropicProvider)
        google = provider_for_model("gemini-pro", settings)
        assert isinstance(google, GoogleProvider)
        assert google.api_key == "gk"
        with pytest.raises(ValidationError):
            provider_for_model("llama-3", settings)
