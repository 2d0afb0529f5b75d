"""Project, task and milestone service."""

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orbit_crm.common.exceptions import NotFoundError
from orbit_crm.common.models import utcnow
from orbit_crm.contacts.models import ContactModel
from orbit_crm.projects.models import MilestoneModel, ProjectModel, TaskModel

_PROJECT_FIELDS = (
    "name", "description", "contact_id", "status", "deadline",
    "budget_amount", "budget_currency", "custom_fields",
)
_TASK_FIELDS = ("title", "description", "milestone_id", "status", "priority", "due_date")
_MILESTONE_FIELDS = ("name", "description", "due_date", "status", "order_index")


async def _get_scoped(session: AsyncSession, model, tenant_id: str, entity_id: str, label: str):
    obj = await session.get(model, entity_id)
    if obj is None or obj.tenant_id != tenant_id:
        raise NotFoundError(f"{label} not found")
    return obj


class ProjectService:
    """Tenant-scoped projects with their tasks and milestones."""

    def __init__(self, activity_service=None):
        self.activity_service = activity_service

    async def _log(self, session, tenant_id, event_type, entity_type, obj, name, user_id=None, **kwargs):
        if self.activity_service:
            await self.activity_service.log_activity(
                session, tenant_id, event_type, entity_type, obj.id,
                user_id=user_id, entity_name=name, **kwargs,
            )

    async def _check_contact(self, session, tenant_id: str, contact_id: str | None) -> None:
        if contact_id:
            await _get_scoped(session, ContactModel, tenant_id, contact_id, "Contact")

    # ── Projects ──

    async def create_project(
        self, session: AsyncSession, tenant_id: str, fields: dict[str, Any], user_id: str | None = None
    ) -> ProjectModel:
        await self._check_contact(session, tenant_id, fields.get("contact_id"))
        project = ProjectModel(tenant_id=tenant_id, **{
            k: v for k, v in fields.items() if k in _PROJECT_FIELDS
        })
        session.add(project)
        await session.flush()
        await self._log(session, tenant_id, "created", "project", project, project.name, user_id)
        return project

    async def get_project(self, session: AsyncSession, tenant_id: str, project_id: str) -> ProjectModel:
        return await _get_scoped(session, ProjectModel, tenant_id, project_id, "Project")

    async def list_projects(
        self,
        session: AsyncSession,
        tenant_id: str,
        contact_id: str | None = None,
        status: str | None = None,
        include_archived: bool = False,
    ) -> list[ProjectModel]:
        query = select(ProjectModel).where(ProjectModel.tenant_id == tenant_id)
        if not include_archived:
            query = query.where(ProjectModel.archived_at.is_(None))
        if contact_id:
            query = query.where(ProjectModel.contact_id == contact_id)
        if status:
            query = query.where(ProjectModel.status == status)
        result = await session.execute(query.order_by(ProjectModel.created_at.desc()))
        return list(result.scalars().all())

    async def update_project(
        self, session: AsyncSession, tenant_id: str, project_id: str,
        updates: dict[str, Any], user_id: str | None = None,
    ) -> ProjectModel:
        project = await self.get_project(session, tenant_id, project_id)
        if "contact_id" in updates:
            await self._check_contact(session, tenant_id, updates["contact_id"])
        old_status = project.status
        for field in _PROJECT_FIELDS:
            if field in updates:
                setattr(project, field, updates[field])
        await session.flush()
        if project.status != old_status:
            await self._log(
                session, tenant_id, "status_changed", "project", project, project.name, user_id,
                metadata={"from": old_status, "to": project.status},
            )
        return project

    async def archive_project(self, session: AsyncSession, tenant_id: str, project_id: str) -> ProjectModel:
        project = await self.get_project(session, tenant_id, project_id)
        project.archived_at = utcnow()
        await session.flush()
        return project

    # ── Tasks ──

    async def create_task(
        self, session: AsyncSession, tenant_id: str, fields: dict[str, Any], user_id: str | None = None
    ) -> TaskModel:
        if fields.get("project_id"):
            await self.get_project(session, tenant_id, fields["project_id"])
        await self._check_contact(session, tenant_id, fields.get("contact_id"))
        task = TaskModel(
            tenant_id=tenant_id,
            project_id=fields.get("project_id"),
            contact_id=fields.get("contact_id"),
            created_by=user_id,
            **{k: v for k, v in fields.items() if k in _TASK_FIELDS},
        )
        session.add(task)
        await session.flush()
        await self._log(session, tenant_id, "created", "task", task, task.title, user_id)
        return task

    async def get_task(self, session: AsyncSession, tenant_id: str, task_id: str) -> TaskModel:
        return await _get_scoped(session, TaskModel, tenant_id, task_id, "Task")

    async def list_tasks(
        self,
        session: AsyncSession,
        tenant_id: str,
        project_id: str | None = None,
        contact_id: str | None = None,
        status: str | None = None,
    ) -> list[TaskModel]:
        query = select(TaskModel).where(TaskModel.tenant_id == tenant_id)
        if project_id:
            query = query.where(TaskModel.project_id == project_id)
        if contact_id:
            query = query.where(TaskModel.contact_id == contact_id)
        if status:
            query = query.where(TaskModel.status == status)
        result = await session.execute(
            query.order_by(TaskModel.due_date.is_(None), TaskModel.due_date, TaskModel.created_at)
        )
        return list(result.scalars().all())

    async def update_task(
        self, session: AsyncSession, tenant_id: str, task_id: str,
        updates: dict[str, Any], user_id: str | None = None,
    ) -> TaskModel:
        task = await self.get_task(session, tenant_id, task_id)
        was_done = task.status == "done"
        for field in _TASK_FIELDS:
            if field in updates:
                setattr(task, field, updates[field])
        if "due_date" in updates:
            task.notified_due_soon = False
            task.notified_overdue = False
        await session.flush()
        if task.status == "done" and not was_done:
            await self._log(session, tenant_id, "completed", "task", task, task.title, user_id)
        return task

    async def delete_task(self, session: AsyncSession, tenant_id: str, task_id: str) -> None:
        task = await self.get_task(session, tenant_id, task_id)
        await session.delete(task)
        await session.flush()

    # ── Milestones ──

    async def create_milestone(
        self, session: AsyncSession, tenant_id: str, project_id: str, fields: dict[str, Any]
    ) -> MilestoneModel:
        await self.get_project(session, tenant_id, project_id)
        milestone = MilestoneModel(tenant_id=tenant_id, project_id=project_id, **{
            k: v for k, v in fields.items() if k in _MILESTONE_FIELDS
        })
        session.add(milestone)
        await session.flush()
        return milestone

    async def list_milestones(
        self, session: AsyncSession, tenant_id: str, project_id: str
    ) -> list[MilestoneModel]:
        await self.get_project(session, tenant_id, project_id)
        result = await session.execute(
            select(MilestoneModel)
            .where(MilestoneModel.project_id == project_id)
            .order_by(MilestoneModel.order_index, MilestoneModel.created_at)
        )
        return list(result.scalars().all())

    async def update_milestone(
        self, session: AsyncSession, tenant_id: str, milestone_id: str, updates: dict[str, Any]
    ) -> MilestoneModel:
        milestone = await _get_scoped(session, MilestoneModel, tenant_id, milestone_id, "Milestone")
        for field in _MILESTONE_FIELDS:
            if field in updates:
                setattr(milestone, field, updates[field])
        await session.flush()
        return milestone

    async def delete_milestone(self, session: AsyncSession, tenant_id: str, milestone_id: str) -> None:
        """Delete a milestone; its tasks stay on the project, unassigned."""
        milestone = await _get_scoped(session, MilestoneModel, tenant_id, milestone_id, "Milestone")
        await session.execute(
            update(TaskModel)
            .where(TaskModel.milestone_id == milestone_id)
            .values(milestone_id=None)
            .execution_options(synchronize_session=False)
        )
        await session.delete(milestone)
        await session.flush()
