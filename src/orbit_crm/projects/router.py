"""Projects, tasks and milestones API router."""

from typing import Optional

from fastapi import APIRouter, Depends

from orbit_crm.common.security import UserContext, require_tenant_user
from orbit_crm.projects.schemas import (
    MilestoneCreate,
    MilestoneResponse,
    MilestoneUpdate,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    TaskCreate,
    TaskResponse,
    TaskUpdate,
)

router = APIRouter()


def _get_service():
    from orbit_crm.deps import get_project_service
    return get_project_service()


def _get_db():
    from orbit_crm.deps import get_db
    return get_db()


# ── Projects ──

@router.post("/api/projects", response_model=ProjectResponse, status_code=201)
async def create_project(body: ProjectCreate, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        project = await svc.create_project(session, user.tenant_id, body.model_dump(), user.user_id)
        return ProjectResponse.model_validate(project)


@router.get("/api/projects", response_model=list[ProjectResponse])
async def list_projects(
    contact_id: Optional[str] = None,
    status: Optional[str] = None,
    include_archived: bool = False,
    user: UserContext = Depends(require_tenant_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        projects = await svc.list_projects(
            session, user.tenant_id,
            contact_id=contact_id, status=status, include_archived=include_archived,
        )
        return [ProjectResponse.model_validate(p) for p in projects]


@router.get("/api/projects/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        project = await svc.get_project(session, user.tenant_id, project_id)
        return ProjectResponse.model_validate(project)


@router.patch("/api/projects/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: str, body: ProjectUpdate, user: UserContext = Depends(require_tenant_user)
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        project = await svc.update_project(
            session, user.tenant_id, project_id,
            body.model_dump(exclude_unset=True), user.user_id,
        )
        return ProjectResponse.model_validate(project)


@router.delete("/api/projects/{project_id}", response_model=ProjectResponse)
async def archive_project(project_id: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        project = await svc.archive_project(session, user.tenant_id, project_id)
        return ProjectResponse.model_validate(project)


# ── Milestones ──

@router.post(
    "/api/projects/{project_id}/milestones",
    response_model=MilestoneResponse,
    status_code=201,
)
async def create_milestone(
    project_id: str, body: MilestoneCreate, user: UserContext = Depends(require_tenant_user)
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        milestone = await svc.create_milestone(session, user.tenant_id, project_id, body.model_dump())
        return MilestoneResponse.model_validate(milestone)


@router.get("/api/projects/{project_id}/milestones", response_model=list[MilestoneResponse])
async def list_milestones(project_id: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        milestones = await svc.list_milestones(session, user.tenant_id, project_id)
        return [MilestoneResponse.model_validate(m) for m in milestones]


@router.patch("/api/milestones/{milestone_id}", response_model=MilestoneResponse)
async def update_milestone(
    milestone_id: str, body: MilestoneUpdate, user: UserContext = Depends(require_tenant_user)
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        milestone = await svc.update_milestone(
            session, user.tenant_id, milestone_id, body.model_dump(exclude_unset=True)
        )
        return MilestoneResponse.model_validate(milestone)


@router.delete("/api/milestones/{milestone_id}", status_code=204)
async def delete_milestone(milestone_id: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        await svc.delete_milestone(session, user.tenant_id, milestone_id)


# ── Tasks ──

@router.post("/api/tasks", response_model=TaskResponse, status_code=201)
async def create_task(body: TaskCreate, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        task = await svc.create_task(session, user.tenant_id, body.model_dump(), user.user_id)
        return TaskResponse.model_validate(task)


@router.get("/api/tasks", response_model=list[TaskResponse])
async def list_tasks(
    project_id: Optional[str] = None,
    contact_id: Optional[str] = None,
    status: Optional[str] = None,
    user: UserContext = Depends(require_tenant_user),
):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        tasks = await svc.list_tasks(
            session, user.tenant_id,
            project_id=project_id, contact_id=contact_id, status=status,
        )
        return [TaskResponse.model_validate(t) for t in tasks]


@router.patch("/api/tasks/{task_id}", response_model=TaskResponse)
async def update_task(task_id: str, body: TaskUpdate, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        task = await svc.update_task(
            session, user.tenant_id, task_id, body.model_dump(exclude_unset=True), user.user_id
        )
        return TaskResponse.model_validate(task)


@router.delete("/api/tasks/{task_id}", status_code=204)
async def delete_task(task_id: str, user: UserContext = Depends(require_tenant_user)):
    svc = _get_service()
    db = _get_db()
    async with db.get_session() as session:
        await svc.delete_task(session, user.tenant_id, task_id)
