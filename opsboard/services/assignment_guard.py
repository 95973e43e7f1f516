"""
Assignment guard - who may be assigned a task.

A task under a project may only be assigned to members of that project.
Membership that was never loaded, or that is loaded but empty, restricts
nobody: assignability wins over premature restriction.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set

logger = logging.getLogger(__name__)


class MembershipState(str, Enum):
    UNKNOWN = "unknown"  # jamais chargé
    EMPTY = "empty"      # chargé, aucun membre
    LOADED = "loaded"


class MembershipIndex:
    def __init__(self):
        self._members: Dict[int, Set[int]] = {}

    def load(self, project_id: int, member_ids: Iterable[int]) -> None:
        self._members[project_id] = set(member_ids)

    def forget(self, project_id: int) -> None:
        self._members.pop(project_id, None)

    def state(self, project_id: int) -> MembershipState:
        if project_id not in self._members:
            return MembershipState.UNKNOWN
        if not self._members[project_id]:
            return MembershipState.EMPTY
        return MembershipState.LOADED

    def members(self, project_id: int) -> Set[int]:
        return set(self._members.get(project_id, ()))


@dataclass(frozen=True)
class GuardDecision:
    allowed: bool
    reason: Optional[str] = None
    message: str = ""

    def __bool__(self) -> bool:
        return self.allowed


def _actor_id(actor) -> int:
    return actor if isinstance(actor, int) else actor.id


def eligible_assignees(task, all_actors: List, membership_index: MembershipIndex) -> List:
    project_id = getattr(task, "project_id", None)
    if project_id is None:
        return list(all_actors)

    state = membership_index.state(project_id)
    if state is not MembershipState.LOADED:
        logger.debug("project %s membership %s, every actor is eligible", project_id, state.value)
        return list(all_actors)

    members = membership_index.members(project_id)
    return [a for a in all_actors if _actor_id(a) in members]


def check_assignee(task, actor_id: Optional[int], all_actors: List, membership_index: MembershipIndex) -> GuardDecision:
    if actor_id is None:
        # désassigner est toujours permis
        return GuardDecision(True)

    known = {_actor_id(a) for a in all_actors}
    if actor_id not in known:
        return GuardDecision(False, "not-found", f"Actor {actor_id} does not exist")

    eligible = {_actor_id(a) for a in eligible_assignees(task, all_actors, membership_index)}
    if actor_id not in eligible:
        logger.info("assignee %s rejected for task %s (project %s)", actor_id, getattr(task, "id", None), task.project_id)
        return GuardDecision(
            False,
            "not-a-project-member",
            f"Actor {actor_id} is not a member of project {task.project_id}",
        )
    return GuardDecision(True)
