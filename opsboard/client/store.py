"""
HTTP client for the task record store.

Any object with a ``requests``-style ``request(method, url, ...)`` works as the
transport: a ``requests.Session`` in production, FastAPI's ``TestClient`` in
tests.
"""

import logging
from typing import List, Optional

import requests

from opsboard.core.config import settings
from opsboard.core.errors import TransportError, error_for_response
from opsboard.schemas.change import ChangesResponse
from opsboard.schemas.project import MembersResponse, ProjectResponse
from opsboard.schemas.review import (
    ChecklistItemResponse,
    DeliverableResponse,
    EvidenceResponse,
    ReviewResponse,
    WorkUpdateResponse,
)
from opsboard.schemas.task import TaskResponse
from opsboard.schemas.user import UserResponse

logger = logging.getLogger(__name__)


class HttpTaskStore:
    def __init__(self, token: str, base_url: Optional[str] = None, session=None, timeout: Optional[float] = None):
        self.base_url = (settings.API_URL if base_url is None else base_url).rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout or settings.HTTP_TIMEOUT
        self._headers = {"Authorization": f"Bearer {token}"}

    def _request(self, method: str, path: str, json=None, params=None):
        if params:
            params = {k: v for k, v in params.items() if v is not None}
        try:
            response = self.session.request(
                method,
                f"{self.base_url}{path}",
                json=json,
                params=params or None,
                headers=self._headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.warning("%s %s failed: %s", method, path, e)
            raise TransportError(f"Store unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = None
            error = error_for_response(response.status_code, payload)
            logger.warning("%s %s -> %s %s", method, path, response.status_code, error.reason)
            raise error

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ============ TASKS ============

    def read_task(self, task_id: int) -> TaskResponse:
        return TaskResponse.model_validate(self._request("GET", f"/tasks/{task_id}"))

    def list_tasks(self, status=None, priority=None, project_id=None, assignee_id=None) -> List[TaskResponse]:
        params = {
            "status": ",".join(status) if isinstance(status, (list, tuple)) else status,
            "priority": ",".join(priority) if isinstance(priority, (list, tuple)) else priority,
            "project_id": project_id,
            "assignee_id": assignee_id,
        }
        return [TaskResponse.model_validate(t) for t in self._request("GET", "/tasks", params=params)]

    def create_task(self, title: str, **fields) -> TaskResponse:
        body = {"title": title, **fields}
        return TaskResponse.model_validate(self._request("POST", "/tasks", json=body))

    def update_task_status(self, task_id: int, status: str, expected_status: Optional[str] = None,
                           quick: bool = False, review_id: Optional[int] = None, **extra_fields) -> TaskResponse:
        body = {
            "status": status,
            "expected_status": expected_status,
            "quick": quick,
            "review_id": review_id,
            **extra_fields,
        }
        return TaskResponse.model_validate(self._request("POST", f"/tasks/{task_id}/status", json=body))

    def update_task_assignee(self, task_id: int, actor_id: Optional[int]) -> TaskResponse:
        data = self._request("PUT", f"/tasks/{task_id}/assignee", json={"assignee_id": actor_id})
        return TaskResponse.model_validate(data)

    def delete_task(self, task_id: int) -> None:
        self._request("DELETE", f"/tasks/{task_id}")

    # ============ LEDGER ============

    def list_reviews(self, task_id: int) -> List[ReviewResponse]:
        return [ReviewResponse.model_validate(r) for r in self._request("GET", f"/tasks/{task_id}/reviews")]

    def create_review(self, task_id: int, decision: str, comment: str) -> ReviewResponse:
        data = self._request("POST", f"/tasks/{task_id}/reviews", json={"decision": decision, "comment": comment})
        return ReviewResponse.model_validate(data)

    def list_work_updates(self, task_id: int) -> List[WorkUpdateResponse]:
        return [WorkUpdateResponse.model_validate(u) for u in self._request("GET", f"/tasks/{task_id}/work-updates")]

    def create_work_update(self, task_id: int, comment: str) -> WorkUpdateResponse:
        data = self._request("POST", f"/tasks/{task_id}/work-updates", json={"comment": comment})
        return WorkUpdateResponse.model_validate(data)

    def list_deliverables(self, task_id: int) -> List[DeliverableResponse]:
        return [DeliverableResponse.model_validate(d) for d in self._request("GET", f"/tasks/{task_id}/deliverables")]

    def create_deliverable(self, task_id: int, title: str, description: Optional[str] = None,
                           file_path: Optional[str] = None, **file_fields) -> DeliverableResponse:
        body = {"title": title, "description": description, "file_path": file_path, **file_fields}
        return DeliverableResponse.model_validate(self._request("POST", f"/tasks/{task_id}/deliverables", json=body))

    def delete_deliverable(self, task_id: int, deliverable_id: int) -> None:
        self._request("DELETE", f"/tasks/{task_id}/deliverables/{deliverable_id}")

    def list_checklist(self, task_id: int) -> List[ChecklistItemResponse]:
        return [ChecklistItemResponse.model_validate(i) for i in self._request("GET", f"/tasks/{task_id}/quality-checklist")]

    def create_checklist(self, task_id: int, items: Optional[List[str]] = None,
                         use_default_template: bool = False) -> List[ChecklistItemResponse]:
        body = {"items": items, "use_default_template": use_default_template}
        data = self._request("POST", f"/tasks/{task_id}/quality-checklist", json=body)
        return [ChecklistItemResponse.model_validate(i) for i in data]

    def update_checklist_item(self, task_id: int, item_id: int, checked: bool) -> ChecklistItemResponse:
        data = self._request("PUT", f"/tasks/{task_id}/quality-checklist/{item_id}", json={"checked": checked})
        return ChecklistItemResponse.model_validate(data)

    def read_evidence(self, task_id: int) -> EvidenceResponse:
        return EvidenceResponse.model_validate(self._request("GET", f"/tasks/{task_id}/evidence"))

    # ============ PROJECTS / ACTORS ============

    def list_projects(self) -> List[ProjectResponse]:
        return [ProjectResponse.model_validate(p) for p in self._request("GET", "/projects")]

    def list_project_members(self, project_id: int) -> List[int]:
        return MembersResponse.model_validate(self._request("GET", f"/projects/{project_id}/members")).member_ids

    def list_actors(self) -> List[UserResponse]:
        return [UserResponse.model_validate(u) for u in self._request("GET", "/users")]

    # ============ CHANGES ============

    def list_changes(self, since: int = 0, limit: Optional[int] = None) -> ChangesResponse:
        return ChangesResponse.model_validate(self._request("GET", "/changes", params={"since": since, "limit": limit}))
