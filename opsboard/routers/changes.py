from fastapi import APIRouter, Depends, Query
from typing import Optional

from opsboard.core.deps import get_current_user
from opsboard.models.user import User
from opsboard.schemas.change import ChangesResponse, ChangeEventResponse
from opsboard.services.change_feed import change_feed

router = APIRouter(prefix="/changes", tags=["changes"])


@router.get("", response_model=ChangesResponse)
def list_changes(
    since: int = Query(0, ge=0),
    limit: Optional[int] = Query(None, ge=1, le=1000),
    current_user: User = Depends(get_current_user)
):
    """
    Événements de changement après le curseur `since`.

    reset=true → le curseur est sorti du buffer : tout le cache client est à invalider.
    """
    events, reset = change_feed.since(since, limit)
    if events:
        latest = events[-1].seq
    else:
        latest = change_feed.latest if reset else since
    return ChangesResponse(
        events=[ChangeEventResponse(**e.to_dict()) for e in events],
        latest=latest,
        reset=reset,
    )
