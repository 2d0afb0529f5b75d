"""Tools the assistant may call during a chat."""

import json

from sqlalchemy.ext.asyncio import AsyncSession

SEARCH_DOCUMENTS = {
    "type": "function",
    "function": {
        "name": "search_documents",
        "description": "Search for documents in the vault based on query",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "The search query"},
            },
            "required": ["query"],
        },
    },
}

TOOLS = [SEARCH_DOCUMENTS]
NO_RESULTS = "No relevant documents found."


def visibility_for_role(role: str) -> list[str]:
    """Owners see internal and shared documents; members see shared only."""
    return ["internal", "shared"] if role == "owner" else ["shared"]


async def search_documents(
    document_service,
    session: AsyncSession,
    tenant_id: str,
    role: str,
    query: str,
) -> str:
    docs = await document_service.search_documents(
        session, tenant_id, query, visibility_for_role(role)
    )
    if not docs:
        return NO_RESULTS
    return json.dumps([
        {
            "id": d.id,
            "name": d.name,
            "visibility": d.visibility,
            "summary": d.content_summary or "",
        }
        for d in docs
    ])
