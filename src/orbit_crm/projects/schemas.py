"""Pydantic schemas for projects, tasks and milestones."""

from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

ProjectStatus = Literal["lead", "active", "on_hold", "completed", "cancelled"]
TaskStatus = Literal["todo", "in_progress", "done"]
TaskPriority = Literal["low", "medium", "high", "urgent"]
MilestoneStatus = Literal["pending", "in_progress", "completed"]


class ProjectCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    contact_id: Optional[str] = None
    status: ProjectStatus = "lead"
    deadline: Optional[date] = None
    budget_amount: Optional[float] = Field(default=None, ge=0)
    budget_currency: str = Field(default="CHF", min_length=3, max_length=3)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    contact_id: Optional[str] = None
    status: Optional[ProjectStatus] = None
    deadline: Optional[date] = None
    budget_amount: Optional[float] = Field(default=None, ge=0)
    budget_currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    custom_fields: Optional[dict[str, Any]] = None


class ProjectResponse(BaseModel):
    id: str
    name: str
    description: Optional[str]
    contact_id: Optional[str]
    status: str
    deadline: Optional[date]
    budget_amount: Optional[float]
    budget_currency: str
    custom_fields: dict[str, Any]
    archived_at: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class TaskCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    project_id: Optional[str] = None
    contact_id: Optional[str] = None
    milestone_id: Optional[str] = None
    status: TaskStatus = "todo"
    priority: TaskPriority = "medium"
    due_date: Optional[datetime] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    milestone_id: Optional[str] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    due_date: Optional[datetime] = None


class TaskResponse(BaseModel):
    id: str
    title: str
    description: Optional[str]
    project_id: Optional[str]
    contact_id: Optional[str]
    milestone_id: Optional[str]
    created_by: Optional[str]
    status: str
    priority: str
    due_date: Optional[datetime]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class MilestoneCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    due_date: Optional[date] = None
    status: MilestoneStatus = "pending"
    order_index: int = 0


class MilestoneUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    due_date: Optional[date] = None
    status: Optional[MilestoneStatus] = None
    order_index: Optional[int] = None


class MilestoneResponse(BaseModel):
    id: str
    project_id: str
    name: str
    description: Optional[str]
    due_date: Optional[date]
    status: str
    order_index: int
    created_at: datetime

    model_config = {"from_attributes": True}
