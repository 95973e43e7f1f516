from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import List, Optional

class ProjectCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    status: str = "planning"  # planning, active, completed, on-hold

class ProjectResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    status: str
    created_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class MemberAdd(BaseModel):
    user_id: int

class MembersResponse(BaseModel):
    """Membres d'un projet (ids)"""
    project_id: int
    member_ids: List[int]
