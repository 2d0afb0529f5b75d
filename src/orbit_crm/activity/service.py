"""Activity log: append and query per-entity history."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from orbit_crm.activity.models import ActivityLogModel

EVENT_TYPES = {
    "created", "updated", "deleted", "viewed", "emailed", "called", "noted",
    "tagged", "status_changed", "assigned", "completed", "invoiced", "paid",
    "uploaded", "downloaded",
}
ENTITY_TYPES = {"contact", "project", "task", "invoice", "document"}


class ActivityService:
    """Append-only activity history per tenant."""

    async def log_activity(
        self,
        session: AsyncSession,
        tenant_id: str,
        event_type: str,
        entity_type: str,
        entity_id: str,
        user_id: str | None = None,
        entity_name: str | None = None,
        description: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> ActivityLogModel:
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown activity event type: {event_type}")
        if entity_type not in ENTITY_TYPES:
            raise ValueError(f"Unknown activity entity type: {entity_type}")
        entry = ActivityLogModel(
            tenant_id=tenant_id,
            user_id=user_id,
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            description=description,
            metadata_=metadata or {},
        )
        session.add(entry)
        await session.flush()
        return entry

    async def list_activity(
        self,
        session: AsyncSession,
        tenant_id: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ActivityLogModel]:
        """Newest first."""
        query = select(ActivityLogModel).where(ActivityLogModel.tenant_id == tenant_id)
        if entity_type:
            query = query.where(ActivityLogModel.entity_type == entity_type)
        if entity_id:
            query = query.where(ActivityLogModel.entity_id == entity_id)
        query = (
            query.order_by(ActivityLogModel.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        result = await session.execute(query)
        return list(result.scalars().all())
