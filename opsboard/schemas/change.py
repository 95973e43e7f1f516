from pydantic import BaseModel
from datetime import datetime
from typing import Any, Dict, List, Optional

class ChangeEventResponse(BaseModel):
    seq: int
    table: str
    operation: str  # INSERT, UPDATE, DELETE
    filter_hint: Dict[str, Any] = {}
    created_at: Optional[datetime] = None

class ChangesResponse(BaseModel):
    events: List[ChangeEventResponse]
    latest: int
    reset: bool = False
