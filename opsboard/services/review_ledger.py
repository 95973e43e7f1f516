"""
Review ledger rules - evidence bar and checklist policy.

Pure functions over already-fetched counts and rows; the store and the viewer
both call them.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from opsboard.core.config import settings

DEFAULT_CHECKLIST_TEMPLATE = [
    "Requirements met",
    "Code quality standards",
    "Documentation provided",
    "Testing completed",
    "Client feedback addressed",
]


def default_checklist_template() -> List[str]:
    """Template applied by an assignee when nobody created a checklist yet."""
    if settings.DEFAULT_CHECKLIST:
        return [i.strip() for i in settings.DEFAULT_CHECKLIST.split(",") if i.strip()]
    return list(DEFAULT_CHECKLIST_TEMPLATE)


@dataclass(frozen=True)
class EvidenceSummary:
    work_updates: int = 0
    deliverables: int = 0
    checklist_items: int = 0


def has_evidence(summary: EvidenceSummary) -> bool:
    # Volontairement permissif : une seule catégorie suffit
    return summary.work_updates > 0 or summary.deliverables > 0 or summary.checklist_items > 0


@dataclass
class ChecklistPlan:
    items: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    message: str = ""

    @property
    def allowed(self) -> bool:
        return self.reason is None


def checklist_initialization(
    existing_count: int,
    items: Optional[Iterable[str]],
    actor_role: str,
    is_assignee: bool,
    use_default_template: bool = False,
) -> ChecklistPlan:
    """
    Décide quels items créer pour la checklist d'une tâche.

    Règles :
    1. Une seule checklist par tâche : si elle existe déjà → no-op (already-initialized)
    2. Admin/manager ou l'assigné peuvent créer une checklist explicite
    3. Le template par défaut est réservé à l'assigné
    4. Les items vides sont ignorés ; une liste vide est refusée
    """
    if existing_count > 0:
        return ChecklistPlan(reason="already-initialized", message="Checklist already exists for this task")

    is_reviewer = actor_role in ("admin", "manager")
    if use_default_template:
        if not is_assignee:
            return ChecklistPlan(reason="forbidden", message="Only the assignee applies the default checklist")
        return ChecklistPlan(items=default_checklist_template())

    if not (is_reviewer or is_assignee):
        return ChecklistPlan(
            reason="forbidden",
            message="Only admins, managers and the task assignee can create a checklist",
        )

    cleaned = [i.strip() for i in (items or []) if i and i.strip()]
    if not cleaned:
        return ChecklistPlan(reason="invalid-request", message="Items array is required")
    return ChecklistPlan(items=cleaned)


def review_in_cycle(reviews: Iterable, cycle: int) -> bool:
    return any(r.cycle == cycle for r in reviews)
