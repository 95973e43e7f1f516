"""Pydantic schemas for task request/response validation."""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional

from opsboard.services.transition_service import TaskStatus, TaskPriority


class TaskCreate(BaseModel):
    """Schema for creating a task (always starts in 'todo')."""
    
    title: str = Field(min_length=1)
    description: Optional[str] = None
    project_id: Optional[int] = None
    assignee_id: Optional[int] = None
    due_date: Optional[datetime] = None
    priority: TaskPriority = TaskPriority.MEDIUM
    estimated_hours: Optional[float] = None


class TaskUpdate(BaseModel):
    """Schema for editing task metadata. Status and assignee have their own endpoints."""
    
    title: Optional[str] = None
    description: Optional[str] = None
    due_date: Optional[datetime] = None
    priority: Optional[TaskPriority] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)


class StatusChange(BaseModel):
    status: TaskStatus
    expected_status: Optional[TaskStatus] = None  # statut vu par le client
    quick: bool = False
    review_id: Optional[int] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    actual_hours: Optional[float] = None


class AssigneeChange(BaseModel):
    assignee_id: Optional[int] = None


class TaskResponse(BaseModel):
    """Schema for task responses from API."""
    
    id: int
    title: str
    description: Optional[str] = None
    status: TaskStatus
    priority: TaskPriority
    project_id: Optional[int] = None
    assignee_id: Optional[int] = None
    created_by: Optional[int] = None
    due_date: Optional[datetime] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None
    progress: int = 0
    review_cycle: int = 0
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    
    model_config = ConfigDict(from_attributes=True)
