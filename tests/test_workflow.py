"""
Tests d'intégration côté viewer : HttpTaskStore branché sur le TestClient,
cache, poller, workflow et ledger.
"""

from types import SimpleNamespace
from unittest import mock

import pytest
import requests

from opsboard.client.cache import CacheSynchronizer
from opsboard.client.feed import ChangePoller
from opsboard.client.ledger import ReviewLedger
from opsboard.client.store import HttpTaskStore
from opsboard.client.workflow import TaskWorkflow
from opsboard.core.errors import (
    ConflictError,
    ForbiddenError,
    InsufficientEvidenceError,
    MutationInFlightError,
    NotFoundError,
    NotProjectMemberError,
    ReviewInconsistencyError,
    TransportError,
)
from opsboard.core.security import create_access_token


@pytest.fixture
def viewer(client):
    """Un viewer complet (store HTTP + cache + workflow) pour un utilisateur"""
    def _viewer(user):
        store = HttpTaskStore(create_access_token(user.id, user.email), base_url="", session=client)
        sync = CacheSynchronizer(store)
        actor = SimpleNamespace(id=user.id, role=user.role)
        return SimpleNamespace(
            store=store,
            sync=sync,
            workflow=TaskWorkflow(store, sync, actor),
            ledger=ReviewLedger(store, sync, actor),
            poller=ChangePoller(store, sync, since=store.list_changes().latest, interval=0),
        )

    return _viewer


@pytest.fixture
def boss(viewer, manager):
    return viewer(manager)


@pytest.fixture
def worker(viewer, employee):
    return viewer(employee)


@pytest.fixture
def homepage(boss, employee):
    return boss.store.create_task("Design homepage", assignee_id=employee.id)


def submitted(worker, task_id):
    worker.workflow.start(task_id)
    worker.ledger.add_work_update(task_id, "Wireframes done")
    return worker.workflow.submit_for_review(task_id)


# ============ TESTS SOUMISSION ============

def test_design_homepage_submit(worker, homepage):
    """Une work update suffit pour passer en revue"""
    task = worker.workflow.start(homepage.id)
    assert task.status == "in-progress"

    with pytest.raises(InsufficientEvidenceError):
        worker.workflow.submit_for_review(homepage.id)
    # refus local : rien n'a bougé
    assert worker.store.read_task(homepage.id).status == "in-progress"
    assert worker.workflow.task(homepage.id).status == "in-progress"

    worker.ledger.add_work_update(homepage.id, "Wireframes done")
    assert worker.ledger.has_evidence(homepage.id)
    task = worker.workflow.submit_for_review(homepage.id)
    assert task.status == "review"
    assert worker.workflow.task(homepage.id).status == "review"


def test_available_transitions(worker, boss, homepage):
    assert worker.workflow.available_transitions(homepage.id) == ["in-progress"]
    assert boss.workflow.available_transitions(homepage.id) == []


def test_cached_lists_follow_local_changes(worker, homepage):
    assert [t.status for t in worker.sync.read(("tasks",))] == ["todo"]
    worker.workflow.start(homepage.id)
    assert [t.status for t in worker.sync.read(("tasks",))] == ["in-progress"]


# ============ TESTS REVUES ============

def test_rejection_needs_more_detail(worker, boss, homepage):
    submitted(worker, homepage.id)

    review = boss.workflow.record_review(homepage.id, "rejected", "needs more detail")
    assert review.decision == "rejected"

    task = boss.workflow.task(homepage.id)
    assert task.status == "in-progress"
    assert task.review_cycle == 1
    reviews = boss.sync.read(("reviews", homepage.id))
    assert [(r.decision, r.comment) for r in reviews] == [("rejected", "needs more detail")]


def test_approval_completes(worker, boss, homepage):
    submitted(worker, homepage.id)
    boss.workflow.record_review(homepage.id, "approved", "")

    assert boss.workflow.task(homepage.id).status == "completed"
    approved = [r for r in boss.store.list_reviews(homepage.id) if r.decision == "approved"]
    assert len(approved) == 1


def test_pending_review_changes_nothing(worker, boss, homepage):
    submitted(worker, homepage.id)
    boss.workflow.record_review(homepage.id, "pending", "looking at it")
    assert boss.store.read_task(homepage.id).status == "review"


def test_employee_cannot_review(worker, homepage):
    submitted(worker, homepage.id)
    with pytest.raises(ForbiddenError):
        worker.workflow.record_review(homepage.id, "approved")


def test_review_kept_when_status_change_fails(worker, boss, homepage):
    submitted(worker, homepage.id)
    boss.workflow.task(homepage.id)

    with mock.patch.object(boss.store, "update_task_status", side_effect=TransportError("store down")):
        with pytest.raises(ReviewInconsistencyError) as exc_info:
            boss.workflow.record_review(homepage.id, "approved", "ship it")

    assert exc_info.value.review.decision == "approved"
    assert isinstance(exc_info.value.cause, TransportError)
    assert exc_info.value.reason == "review-inconsistent"
    assert len(boss.store.list_reviews(homepage.id)) == 1
    assert boss.store.read_task(homepage.id).status == "review"
    assert boss.workflow.task(homepage.id).status == "review"


def test_quick_complete(worker, boss, homepage):
    worker.workflow.quick_status(homepage.id, "in-progress")
    assert boss.workflow.quick_status(homepage.id, "completed").status == "completed"


# ============ TESTS ASSIGNATION ============

def test_reassign_to_non_member(boss, make_user, make_project):
    """C n'est pas membre : refus, l'assigné reste A"""
    a = make_user("employee", "A")
    b = make_user("employee", "B")
    c = make_user("employee", "C")
    project = make_project(members=[a, b])
    task = boss.store.create_task("Design homepage", project_id=project.id, assignee_id=a.id)

    with pytest.raises(NotProjectMemberError):
        boss.workflow.reassign(task.id, c.id)
    assert boss.workflow.task(task.id).assignee_id == a.id
    assert boss.store.read_task(task.id).assignee_id == a.id

    assert [u.name for u in boss.workflow.eligible_assignees(task.id)] == ["A", "B"]
    assert boss.workflow.reassign(task.id, b.id).assignee_id == b.id


def test_reassign_loads_membership_first(boss, make_user, make_project, client, auth_headers, manager):
    """Un membre ajouté après la mise en cache est quand même éligible"""
    a = make_user("employee", "A")
    c = make_user("employee", "C")
    project = make_project(members=[a])
    task = boss.store.create_task("Design homepage", project_id=project.id, assignee_id=a.id)
    boss.sync.read(("members", project.id))

    client.post(f"/projects/{project.id}/members", headers=auth_headers(manager), json={"user_id": c.id})
    assert boss.workflow.reassign(task.id, c.id).assignee_id == c.id


# ============ TESTS CHECKLIST ============

def test_checklist_reinit_is_noop(worker, homepage):
    first = worker.ledger.initialize_checklist(homepage.id)
    assert first.created
    assert len(first.items) == 5

    again = worker.ledger.initialize_checklist(homepage.id, ["Something else"])
    assert not again.created
    assert again.reason == "already-initialized"
    assert [i.item for i in again.items] == [i.item for i in first.items]
    assert len(worker.store.list_checklist(homepage.id)) == 5

    toggled = worker.ledger.toggle_checklist_item(homepage.id, first.items[0].id, True)
    assert toggled.checked is True
    assert worker.ledger.checklist(homepage.id)[0].checked is True


def test_checklist_created_meanwhile(worker, boss, homepage):
    """Checklist créée par un autre viewer entre la lecture et l'écriture"""
    worker.sync.cache.write(("checklist", homepage.id), [])
    boss.ledger.initialize_checklist(homepage.id, ["Copy proofread"])

    with mock.patch.object(worker.sync, "refresh", side_effect=[[], worker.store.list_checklist(homepage.id)]):
        result = worker.ledger.initialize_checklist(homepage.id)
    assert result.reason == "already-initialized"
    assert [i.item for i in result.items] == ["Copy proofread"]


def test_deliverables(worker, homepage):
    deliverable = worker.ledger.add_deliverable(homepage.id, "Mockup", file_ref="s3://bucket/home.fig")
    assert deliverable.file_path == "s3://bucket/home.fig"
    assert len(worker.ledger.deliverables(homepage.id)) == 1
    worker.ledger.delete_deliverable(homepage.id, deliverable.id)
    assert worker.ledger.deliverables(homepage.id) == []
    assert not worker.ledger.has_evidence(homepage.id)


# ============ TESTS SYNCHRONISATION ============

def test_two_viewers_converge(worker, boss, homepage):
    """V1 soumet, V2 voit 'review' après avoir traité l'événement"""
    worker.workflow.start(homepage.id)
    worker.ledger.add_work_update(homepage.id, "Wireframes done")
    boss.poller.poll_once()
    assert boss.workflow.task(homepage.id).status == "in-progress"

    worker.workflow.submit_for_review(homepage.id)
    assert boss.sync.cache.peek(("task", homepage.id)).data.status == "in-progress"

    assert boss.poller.poll_once() > 0
    assert boss.sync.cache.peek(("task", homepage.id)).stale
    assert boss.workflow.task(homepage.id).status == "review"


def test_poller_skips_seen_events(boss, homepage):
    boss.poller.poll_once()
    assert boss.poller.poll_once() == 0


def test_poller_gap_invalidates_everything(boss, homepage):
    boss.workflow.task(homepage.id)
    boss.sync.read(("actors",))
    boss.poller.cursor = 10_000

    boss.poller.poll_once()
    assert boss.sync.cache.peek(("task", homepage.id)).stale
    assert boss.sync.cache.peek(("actors",)).stale
    assert boss.poller.cursor == boss.store.list_changes().latest


# ============ TESTS ERREURS ============

def test_transport_failure_reverts(worker, homepage):
    worker.workflow.task(homepage.id)
    with mock.patch.object(worker.store.session, "request", side_effect=requests.ConnectionError("offline")):
        with pytest.raises(TransportError):
            worker.workflow.start(homepage.id)

    assert worker.workflow.task(homepage.id).status == "todo"
    # plus rien en vol : on peut réessayer
    assert worker.workflow.start(homepage.id).status == "in-progress"


def test_unreadable_response_reverts(worker, homepage):
    """Une réponse 2xx illisible ne laisse pas le statut optimiste dans le cache"""
    worker.workflow.task(homepage.id)
    with mock.patch.object(worker.store, "update_task_status", side_effect=ValueError("not json")):
        with pytest.raises(ValueError):
            worker.workflow.start(homepage.id)

    assert worker.workflow.task(homepage.id).status == "todo"
    assert worker.store.read_task(homepage.id).status == "todo"
    assert worker.workflow.start(homepage.id).status == "in-progress"


def test_store_forbidden_after_local_check_reverts(worker, boss, client, make_user, manager, auth_headers, homepage):
    """Le cache croit encore que le worker est assigné : le store refuse, le cache revient"""
    worker.workflow.task(homepage.id)
    other = make_user("employee", "Bob")
    client.put(f"/tasks/{homepage.id}/assignee", headers=auth_headers(manager), json={"assignee_id": other.id})

    with pytest.raises(ForbiddenError) as exc_info:
        worker.workflow.start(homepage.id)
    assert exc_info.value.reason == "forbidden"
    assert worker.sync.cache.peek(("task", homepage.id)).data.status == "todo"
    assert boss.store.read_task(homepage.id).status == "todo"


def test_poller_thread_stops(boss, homepage):
    boss.poller.interval = 0.01
    thread = boss.poller.start()
    assert boss.poller.start() is thread
    boss.poller.stop(timeout=5)
    assert not thread.is_alive()


def test_stale_cache_conflict_refetches(worker, client, employee, auth_headers, homepage):
    worker.workflow.task(homepage.id)
    client.post(f"/tasks/{homepage.id}/status", headers=auth_headers(employee), json={"status": "in-progress"})

    with pytest.raises(ConflictError):
        worker.workflow.start(homepage.id)
    entry = worker.sync.cache.peek(("task", homepage.id))
    assert entry.data.status == "in-progress"
    assert entry.stale is False


def test_deleted_task_is_purged(worker, client, manager, auth_headers, homepage):
    worker.workflow.task(homepage.id)
    worker.sync.read(("reviews", homepage.id))
    client.delete(f"/tasks/{homepage.id}", headers=auth_headers(manager))

    with pytest.raises(NotFoundError):
        worker.workflow.start(homepage.id)
    assert worker.sync.cache.peek(("task", homepage.id)) is None
    assert worker.sync.cache.peek(("reviews", homepage.id)) is None


def test_one_mutation_in_flight_per_task(worker, homepage):
    worker.workflow.task(homepage.id)

    def second_click(*args, **kwargs):
        return worker.workflow.start(homepage.id)

    with mock.patch.object(worker.store, "update_task_status", side_effect=second_click):
        with pytest.raises(MutationInFlightError):
            worker.workflow.start(homepage.id)
    assert worker.workflow.task(homepage.id).status == "todo"
