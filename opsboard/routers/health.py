from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session

from opsboard.core.database import get_db
from opsboard.services.change_feed import change_feed

router = APIRouter()

@router.get("/z")
def healthz(db: Session = Depends(get_db)):
    # Check si l'API et la base sont up
    db.execute(text("SELECT 1"))
    return {"status": "ok", "latest_change": change_feed.latest}
