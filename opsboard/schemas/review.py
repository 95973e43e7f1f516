"""Schemas du ledger de revue : reviews, work updates, livrables, checklist"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional

from opsboard.services.transition_service import ReviewDecision


class ReviewCreate(BaseModel):
    decision: ReviewDecision
    comment: str = ""


class ReviewResponse(BaseModel):
    id: int
    task_id: int
    reviewer_id: int
    comment: str
    decision: ReviewDecision
    cycle: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkUpdateCreate(BaseModel):
    comment: str


class WorkUpdateResponse(BaseModel):
    id: int
    task_id: int
    author_id: int
    comment: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DeliverableCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    content_type: Optional[str] = None


class DeliverableResponse(BaseModel):
    id: int
    task_id: int
    title: str
    description: Optional[str] = None
    file_path: Optional[str] = None
    file_name: Optional[str] = None
    file_size: Optional[int] = None
    content_type: Optional[str] = None
    created_by: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChecklistCreate(BaseModel):
    items: Optional[List[str]] = None
    use_default_template: bool = False


class ChecklistToggle(BaseModel):
    checked: bool


class ChecklistItemResponse(BaseModel):
    id: int
    task_id: int
    item: str
    checked: bool
    checked_by: Optional[int] = None
    checked_at: Optional[datetime] = None
    created_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EvidenceResponse(BaseModel):
    task_id: int
    work_updates: int
    deliverables: int
    checklist_items: int
    has_evidence: bool
