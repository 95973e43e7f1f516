"""Tests unitaires du garde d'assignation"""

from types import SimpleNamespace

from opsboard.services.assignment_guard import (
    MembershipIndex,
    MembershipState,
    check_assignee,
    eligible_assignees,
)

ACTORS = [1, 2, 3]


def task(project_id=10):
    return SimpleNamespace(id=99, project_id=project_id)


def test_membership_states():
    index = MembershipIndex()
    assert index.state(10) is MembershipState.UNKNOWN
    index.load(10, [])
    assert index.state(10) is MembershipState.EMPTY
    index.load(10, [1])
    assert index.state(10) is MembershipState.LOADED
    index.forget(10)
    assert index.state(10) is MembershipState.UNKNOWN


def test_no_project_everyone_is_eligible():
    assert eligible_assignees(task(project_id=None), ACTORS, MembershipIndex()) == ACTORS


def test_loaded_membership_restricts():
    index = MembershipIndex()
    index.load(10, [1, 2])
    assert eligible_assignees(task(), ACTORS, index) == [1, 2]


def test_unknown_and_empty_fail_open():
    """Membres jamais chargés ou projet sans membre : personne n'est exclu"""
    index = MembershipIndex()
    assert eligible_assignees(task(), ACTORS, index) == ACTORS
    index.load(10, [])
    assert eligible_assignees(task(), ACTORS, index) == ACTORS


def test_actor_objects_are_accepted():
    actors = [SimpleNamespace(id=1, name="A"), SimpleNamespace(id=3, name="C")]
    index = MembershipIndex()
    index.load(10, [1])
    assert [a.name for a in eligible_assignees(task(), actors, index)] == ["A"]


def test_check_assignee_non_member():
    index = MembershipIndex()
    index.load(10, [1, 2])
    decision = check_assignee(task(), 3, ACTORS, index)
    assert not decision
    assert decision.reason == "not-a-project-member"


def test_check_assignee_member_and_unassign():
    index = MembershipIndex()
    index.load(10, [1, 2])
    assert check_assignee(task(), 2, ACTORS, index)
    assert check_assignee(task(), None, ACTORS, index)


def test_check_assignee_unknown_actor():
    decision = check_assignee(task(), 42, ACTORS, MembershipIndex())
    assert decision.reason == "not-found"
