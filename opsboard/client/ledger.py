"""Viewer-side review ledger: work updates, deliverables and the quality checklist."""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from opsboard.core.errors import AlreadyInitializedError, InvalidRequestError, error_for_reason
from opsboard.services.change_feed import DELETE, INSERT, UPDATE
from opsboard.services.review_ledger import checklist_initialization

logger = logging.getLogger(__name__)


@dataclass
class ChecklistInit:
    """Outcome of a checklist initialization: the task's items, and why nothing was created if so."""

    items: List = field(default_factory=list)
    reason: Optional[str] = None

    @property
    def created(self) -> bool:
        return self.reason is None


class ReviewLedger:
    def __init__(self, store, synchronizer, actor):
        self.store = store
        self.sync = synchronizer
        self.actor = actor

    def _changed(self, table: str, operation: str, task_id: int) -> None:
        # même chemin que les événements du store
        self.sync.on_change_event({"table": table, "operation": operation, "filter_hint": {"task_id": task_id}})

    def has_evidence(self, task_id: int) -> bool:
        return self.sync.refresh(("evidence", task_id)).has_evidence

    def work_updates(self, task_id: int) -> List:
        return self.sync.read(("work-updates", task_id))

    def deliverables(self, task_id: int) -> List:
        return self.sync.read(("deliverables", task_id))

    def checklist(self, task_id: int) -> List:
        return self.sync.read(("checklist", task_id))

    def add_work_update(self, task_id: int, text: str):
        if not text or not text.strip():
            raise InvalidRequestError("Comment is required")
        update = self.store.create_work_update(task_id, text.strip())
        self._changed("task_work_updates", INSERT, task_id)
        return update

    def add_deliverable(self, task_id: int, title: str, description: Optional[str] = None,
                        file_ref: Optional[str] = None):
        if not title or not title.strip():
            raise InvalidRequestError("Title is required")
        deliverable = self.store.create_deliverable(task_id, title.strip(), description=description, file_path=file_ref)
        self._changed("task_deliverables", INSERT, task_id)
        return deliverable

    def delete_deliverable(self, task_id: int, deliverable_id: int) -> None:
        self.store.delete_deliverable(task_id, deliverable_id)
        self._changed("task_deliverables", DELETE, task_id)

    def initialize_checklist(self, task_id: int, items: Optional[List[str]] = None) -> ChecklistInit:
        """
        Create the task's checklist; ``items=None`` applies the default template.

        A checklist that already has items is left as it is: its items come back
        with reason ``already-initialized``.
        """
        existing = self.sync.refresh(("checklist", task_id))
        task = self.sync.read(("task", task_id))
        plan = checklist_initialization(
            len(existing),
            items,
            self.actor.role,
            task.assignee_id == self.actor.id,
            use_default_template=items is None,
        )
        if plan.reason == "already-initialized":
            logger.info("checklist of task %s already initialized, nothing to do", task_id)
            return ChecklistInit(existing, plan.reason)
        if not plan.allowed:
            raise error_for_reason(plan.reason, plan.message)

        try:
            created = self.store.create_checklist(
                task_id,
                items=None if items is None else plan.items,
                use_default_template=items is None,
            )
        except AlreadyInitializedError:
            # quelqu'un l'a créée entre-temps
            return ChecklistInit(self.sync.refresh(("checklist", task_id)), "already-initialized")
        self._changed("task_quality_checklist", INSERT, task_id)
        return ChecklistInit(created)

    def toggle_checklist_item(self, task_id: int, item_id: int, checked: bool):
        item = self.store.update_checklist_item(task_id, item_id, checked)
        self._changed("task_quality_checklist", UPDATE, task_id)
        return item
