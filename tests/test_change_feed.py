"""Tests du journal des changements (ring buffer + événements de session)"""

from opsboard.models.task import Task
from opsboard.services.change_feed import ChangeFeed, change_feed


# ============ TESTS RING BUFFER ============

def test_publish_assigns_increasing_seq():
    feed = ChangeFeed(maxlen=10)
    first = feed.publish("tasks", "INSERT", {"task_id": 1})
    second = feed.publish("tasks", "UPDATE", {"task_id": 1})
    assert (first.seq, second.seq) == (1, 2)
    assert feed.latest == 2


def test_since_returns_events_after_cursor():
    feed = ChangeFeed(maxlen=10)
    for i in range(5):
        feed.publish("tasks", "UPDATE", {"task_id": i})
    events, reset = feed.since(3)
    assert [e.seq for e in events] == [4, 5]
    assert reset is False
    events, reset = feed.since(0, limit=2)
    assert [e.seq for e in events] == [1, 2]


def test_since_reports_gap_when_buffer_overflowed():
    feed = ChangeFeed(maxlen=3)
    for i in range(6):
        feed.publish("tasks", "UPDATE", {"task_id": i})
    events, reset = feed.since(1)
    assert reset is True
    assert [e.seq for e in events] == [4, 5, 6]
    # curseur juste avant le plus ancien : pas de trou
    _, reset = feed.since(3)
    assert reset is False


def test_since_reports_gap_for_cursor_from_the_future():
    """Le store a redémarré : le curseur du client n'existe plus"""
    feed = ChangeFeed(maxlen=3)
    feed.publish("tasks", "INSERT", {})
    events, reset = feed.since(50)
    assert events == []
    assert reset is True


def test_subscribers_and_broken_subscriber():
    feed = ChangeFeed()
    seen = []

    def broken(change):
        raise RuntimeError("boom")

    feed.subscribe(broken)
    unsubscribe = feed.subscribe(seen.append)
    feed.publish("projects", "INSERT", {"project_id": 1})
    unsubscribe()
    feed.publish("projects", "INSERT", {"project_id": 2})
    assert [c.filter_hint["project_id"] for c in seen] == [1]


# ============ TESTS SESSION EVENTS ============

def test_commit_publishes_task_events(db):
    task = Task(title="Design homepage", status="todo", priority="medium", project_id=None)
    db.add(task)
    db.commit()
    inserted = change_feed.since(0)[0]
    assert [(e.table, e.operation) for e in inserted] == [("tasks", "INSERT")]
    assert inserted[0].filter_hint["task_id"] == task.id

    cursor = change_feed.latest
    task.status = "in-progress"
    task.assignee_id = 7
    db.commit()
    updated = change_feed.since(cursor)[0]
    assert len(updated) == 1
    hint = updated[0].filter_hint
    assert hint["status"] == "in-progress"
    assert hint["assignee_id"] == 7
    assert hint.get("previous_assignee_id") is None


def test_rollback_publishes_nothing(db):
    db.add(Task(title="Draft", status="todo", priority="low"))
    db.flush()
    db.rollback()
    assert change_feed.latest == 0


def test_changes_endpoint(client, make_task, manager, auth_headers):
    make_task("Design homepage")
    response = client.get("/changes?since=0", headers=auth_headers(manager))
    assert response.status_code == 200
    data = response.json()
    assert data["reset"] is False
    assert data["latest"] == data["events"][-1]["seq"]
    assert data["events"][-1]["table"] == "tasks"

    response = client.get(f"/changes?since={data['latest']}", headers=auth_headers(manager))
    assert response.json() == {"events": [], "latest": data["latest"], "reset": False}
