"""
Task workflow - the viewer facade for status changes, reviews and reassignment.

Every mutation runs in three phases: the cache is patched optimistically,
the store is called, then the server copy is confirmed or the patch reverted.
At most one mutation per task is in flight at a time.
"""

import logging
import threading
from contextlib import contextmanager
from typing import List, Optional

from opsboard.core.errors import (
    ConflictError,
    ForbiddenError,
    MutationInFlightError,
    NotFoundError,
    ReviewInconsistencyError,
    WorkflowError,
    error_for_reason,
)
from opsboard.services.assignment_guard import MembershipIndex, check_assignee, eligible_assignees
from opsboard.services.review_ledger import review_in_cycle
from opsboard.services.transition_service import (
    ActorRole,
    REVIEWER_ROLES,
    ReviewDecision,
    TaskStatus,
    allowed_transitions,
    can_transition,
    target_for_decision,
)

logger = logging.getLogger(__name__)


class TaskWorkflow:
    def __init__(self, store, synchronizer, actor):
        self.store = store
        self.sync = synchronizer
        self.actor = actor
        self.memberships = MembershipIndex()
        self._in_flight = set()
        self._lock = threading.Lock()

    @property
    def is_reviewer(self) -> bool:
        try:
            return ActorRole(self.actor.role) in REVIEWER_ROLES
        except ValueError:
            return False

    @contextmanager
    def _mutation(self, task_id: int):
        with self._lock:
            if task_id in self._in_flight:
                raise MutationInFlightError(f"Task {task_id} already has a change in progress")
            self._in_flight.add(task_id)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(task_id)

    def task(self, task_id: int):
        return self.sync.read(("task", task_id))

    def available_transitions(self, task_id: int, quick: bool = False) -> List[TaskStatus]:
        """Targets to offer as buttons (evidence and review gates are checked on click)."""
        task = self.task(task_id)
        return allowed_transitions(task.status, self.actor.role, task.assignee_id == self.actor.id, quick=quick)

    # ============ STATUS ============

    def _commit(self, task, fields: dict, call):
        """Optimistic apply, store call, then confirm or revert."""
        snapshot = self.sync.apply_optimistic(task.id, fields)
        try:
            updated = call()
        except ConflictError:
            self.sync.revert(snapshot)
            logger.info("task %s changed on the store, refetching", task.id)
            self.sync.refresh(("task", task.id))
            raise
        except NotFoundError:
            self.sync.purge_task(task.id)
            raise
        except Exception:
            # réponse illisible comprise : rien d'optimiste ne doit rester
            self.sync.revert(snapshot)
            raise
        self.sync.confirm(updated, previous=task)
        return updated

    def _change_status(self, task, to_status, quick=False, review=None, **fields):
        has_evidence = False
        if to_status == TaskStatus.REVIEW:
            # lu au moment de la demande, jamais depuis un cache périmé
            has_evidence = self.sync.refresh(("evidence", task.id)).has_evidence
        has_review = False
        if quick and to_status == TaskStatus.COMPLETED:
            has_review = review_in_cycle(self.sync.refresh(("reviews", task.id)), task.review_cycle)

        decision = can_transition(
            task,
            task.status,
            to_status,
            self.actor.role,
            task.assignee_id == self.actor.id,
            has_evidence=has_evidence,
            review_decision=review.decision if review is not None else None,
            quick=quick,
            has_review_in_cycle=has_review,
        )
        if not decision:
            raise error_for_reason(decision.reason, decision.message)

        to_status = TaskStatus(to_status)
        return self._commit(
            task,
            {"status": to_status, **fields},
            lambda: self.store.update_task_status(
                task.id,
                to_status.value,
                expected_status=TaskStatus(task.status).value,
                quick=quick,
                review_id=review.id if review is not None else None,
                **fields,
            ),
        )

    def transition(self, task_id: int, to_status, quick: bool = False, **fields):
        """Move a task along the transition table. ``fields`` may carry progress/actual_hours."""
        with self._mutation(task_id):
            task = self.task(task_id)
            return self._change_status(task, to_status, quick=quick, **fields)

    def start(self, task_id: int):
        return self.transition(task_id, TaskStatus.IN_PROGRESS)

    def submit_for_review(self, task_id: int):
        return self.transition(task_id, TaskStatus.REVIEW)

    def quick_status(self, task_id: int, to_status):
        return self.transition(task_id, to_status, quick=True)

    # ============ REVIEWS ============

    def record_review(self, task_id: int, decision, comment: str = ""):
        """
        Record a review, then apply the status change it decides.

        ``pending`` only records the review. If the review is stored but the
        status change fails, the review stays and ReviewInconsistencyError
        carries both.
        """
        decision = ReviewDecision(decision)
        with self._mutation(task_id):
            task = self.task(task_id)
            if not self.is_reviewer:
                raise ForbiddenError("Only admins and managers can review tasks")

            target = target_for_decision(decision)
            if target is not None:
                check = can_transition(
                    task,
                    task.status,
                    target,
                    self.actor.role,
                    task.assignee_id == self.actor.id,
                    review_decision=decision,
                )
                if not check:
                    raise error_for_reason(check.reason, check.message)

            review = self.store.create_review(task_id, decision.value, comment)
            self.sync.on_change_event(
                {"table": "task_reviews", "operation": "INSERT", "filter_hint": {"task_id": task_id}}
            )
            if target is None:
                return review

            try:
                self._change_status(task, target, review=review)
            except WorkflowError as e:
                logger.error("review %s on task %s recorded, status change failed: %s", review.id, task_id, e.message)
                raise ReviewInconsistencyError(review, e) from e
            return review

    # ============ ASSIGNMENT ============

    def _load_membership(self, project_id: int) -> None:
        self.memberships.load(project_id, self.sync.refresh(("members", project_id)))

    def eligible_assignees(self, task_id: int) -> List:
        task = self.task(task_id)
        if task.project_id is not None:
            self.memberships.load(task.project_id, self.sync.read(("members", task.project_id)))
        return eligible_assignees(task, self.sync.read(("actors",)), self.memberships)

    def reassign(self, task_id: int, new_actor_id: Optional[int]):
        with self._mutation(task_id):
            task = self.task(task_id)
            if not self.is_reviewer:
                raise ForbiddenError("Only admins and managers can reassign tasks")
            if task.project_id is not None:
                self._load_membership(task.project_id)

            decision = check_assignee(task, new_actor_id, self.sync.read(("actors",)), self.memberships)
            if not decision:
                raise error_for_reason(decision.reason, decision.message)

            return self._commit(
                task,
                {"assignee_id": new_actor_id},
                lambda: self.store.update_task_assignee(task_id, new_actor_id),
            )
