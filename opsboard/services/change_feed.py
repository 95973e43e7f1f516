"""
Change feed - store-side change notifications.

Rows written through a SQLAlchemy session are collected on flush and
published once the transaction commits (a rollback drops them). Viewers pull
the log with ``GET /changes?since=N`` or, in-process, subscribe a callback.
"""

import logging
import threading
from collections import deque
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Callable, Deque, Dict, List, Optional, Tuple

from sqlalchemy import event, inspect
from sqlalchemy.orm import Session

from opsboard.core.config import settings

logger = logging.getLogger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass
class ChangeEvent:
    table: str
    operation: str
    filter_hint: Dict = field(default_factory=dict)
    seq: int = 0
    created_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return asdict(self)


class ChangeFeed:
    def __init__(self, maxlen: int = 1000):
        self._log: Deque[ChangeEvent] = deque(maxlen=maxlen)
        self._seq = 0
        self._lock = threading.Lock()
        self._subscribers: List[Callable[[ChangeEvent], None]] = []

    @property
    def latest(self) -> int:
        return self._seq

    def publish(self, table: str, operation: str, filter_hint: Optional[dict] = None) -> ChangeEvent:
        with self._lock:
            self._seq += 1
            change = ChangeEvent(table, operation, dict(filter_hint or {}), self._seq, datetime.utcnow())
            self._log.append(change)
            subscribers = list(self._subscribers)
        logger.debug("change #%s %s %s %s", change.seq, table, operation, change.filter_hint)
        for callback in subscribers:
            try:
                callback(change)
            except Exception:
                # un abonné cassé ne doit pas bloquer les autres
                logger.exception("change subscriber failed on event #%s", change.seq)
        return change

    def subscribe(self, callback: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def since(self, seq: int, limit: Optional[int] = None) -> Tuple[List[ChangeEvent], bool]:
        """
        Events after ``seq``, oldest first, and whether the caller missed some.

        ``reset`` is True when events after ``seq`` were already pushed out of
        the ring buffer; the caller must then treat everything as stale.
        """
        with self._lock:
            events = [e for e in self._log if e.seq > seq]
            oldest = self._log[0].seq if self._log else self._seq + 1
            # curseur trop ancien, ou venant d'un autre démarrage du store
            reset = (seq < oldest - 1 and seq < self._seq) or seq > self._seq
        if limit is not None:
            events = events[:limit]
        return events, reset

    def clear(self) -> None:
        with self._lock:
            self._log.clear()
            self._seq = 0
            self._subscribers.clear()


change_feed = ChangeFeed(maxlen=settings.CHANGE_LOG_SIZE)


# ============ FILTER HINTS ============

# colonnes exposées dans filter_hint, par table
HINT_COLUMNS = {
    "tasks": {"id": "task_id", "project_id": "project_id", "assignee_id": "assignee_id"},
    "task_reviews": {"task_id": "task_id", "id": "review_id"},
    "task_work_updates": {"task_id": "task_id"},
    "task_deliverables": {"task_id": "task_id", "id": "deliverable_id"},
    "task_quality_checklist": {"task_id": "task_id", "id": "item_id"},
    "project_members": {"project_id": "project_id", "user_id": "user_id"},
    "projects": {"id": "project_id"},
    "users": {"id": "user_id"},
}

# colonnes dont l'ancienne valeur est aussi transmise quand elle change
TRACK_PREVIOUS = {
    "tasks": ("project_id", "assignee_id"),
}


def _hint_for(obj, table: str, operation: str) -> dict:
    columns = HINT_COLUMNS.get(table, {})
    hint = {key: getattr(obj, column, None) for column, key in columns.items()}
    if operation == UPDATE:
        state = inspect(obj)
        for column in TRACK_PREVIOUS.get(table, ()):
            history = state.attrs[column].history
            if history.has_changes() and history.deleted:
                hint[f"previous_{column}"] = history.deleted[0]
        if table == "tasks":
            status_history = state.attrs["status"].history
            if status_history.has_changes():
                hint["status"] = obj.status
    return hint


def _collect(session: Session, flush_context) -> None:
    pending = session.info.setdefault("opsboard_changes", [])
    for operation, objects in ((INSERT, session.new), (UPDATE, session.dirty), (DELETE, session.deleted)):
        for obj in objects:
            table = getattr(obj, "__tablename__", None)
            if table not in HINT_COLUMNS:
                continue
            if operation == UPDATE and not session.is_modified(obj, include_collections=False):
                continue
            pending.append((table, operation, _hint_for(obj, table, operation)))


def _publish(session: Session) -> None:
    pending = session.info.pop("opsboard_changes", [])
    for table, operation, hint in pending:
        change_feed.publish(table, operation, hint)


def _discard(session: Session) -> None:
    session.info.pop("opsboard_changes", None)


event.listen(Session, "after_flush", _collect)
event.listen(Session, "after_commit", _publish)
event.listen(Session, "after_soft_rollback", lambda session, previous_transaction: _discard(session))
