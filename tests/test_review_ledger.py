"""Tests unitaires des règles du ledger de revue"""

from types import SimpleNamespace

from opsboard.core.config import settings
from opsboard.services.review_ledger import (
    DEFAULT_CHECKLIST_TEMPLATE,
    EvidenceSummary,
    checklist_initialization,
    default_checklist_template,
    has_evidence,
    review_in_cycle,
)


# ============ TESTS EVIDENCE ============

def test_no_evidence():
    assert has_evidence(EvidenceSummary()) is False


def test_any_single_category_is_enough():
    assert has_evidence(EvidenceSummary(work_updates=1))
    assert has_evidence(EvidenceSummary(deliverables=1))
    assert has_evidence(EvidenceSummary(checklist_items=5))


def test_has_evidence_is_idempotent():
    summary = EvidenceSummary(work_updates=1)
    assert has_evidence(summary) == has_evidence(summary)


# ============ TESTS CHECKLIST ============

def test_existing_checklist_is_a_noop():
    plan = checklist_initialization(3, ["New item"], "manager", False)
    assert not plan.allowed
    assert plan.reason == "already-initialized"
    assert plan.items == []


def test_assignee_gets_default_template():
    plan = checklist_initialization(0, None, "employee", True, use_default_template=True)
    assert plan.allowed
    assert plan.items == DEFAULT_CHECKLIST_TEMPLATE


def test_default_template_is_for_the_assignee_only():
    plan = checklist_initialization(0, None, "manager", False, use_default_template=True)
    assert plan.reason == "forbidden"


def test_manager_explicit_items_are_cleaned():
    plan = checklist_initialization(0, ["  Brief signed ", "", "   ", "Tests green"], "manager", False)
    assert plan.items == ["Brief signed", "Tests green"]


def test_empty_items_rejected():
    plan = checklist_initialization(0, ["", " "], "admin", False)
    assert plan.reason == "invalid-request"


def test_other_employee_cannot_create():
    plan = checklist_initialization(0, ["Item"], "employee", False)
    assert plan.reason == "forbidden"


def test_default_template_from_settings(monkeypatch):
    monkeypatch.setattr(settings, "DEFAULT_CHECKLIST", "Brief read, Copy proofread")
    assert default_checklist_template() == ["Brief read", "Copy proofread"]


# ============ TESTS CYCLES ============

def test_review_in_cycle():
    reviews = [SimpleNamespace(cycle=0), SimpleNamespace(cycle=1)]
    assert review_in_cycle(reviews, 1)
    assert not review_in_cycle(reviews, 2)
    assert not review_in_cycle([], 0)
