"""
Viewer-side query cache and its synchronizer.

Cached queries are keyed by tuples such as ``("task", 12)`` or
``("tasks", "project", 3)``. Whatever the store returns replaces the cached
entry unconditionally; change events only mark entries stale, the next read
refetches them.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from opsboard.services.change_feed import DELETE, UPDATE

logger = logging.getLogger(__name__)

Key = Tuple


@dataclass
class CacheEntry:
    data: Any
    stale: bool = False
    revision: int = 0


class QueryCache:
    def __init__(self, fetch: Callable[[Key], Any]):
        self._fetch = fetch
        self._entries: Dict[Key, CacheEntry] = {}
        self._revision = 0
        # fetches in progress: key -> invalidations seen since they started
        self._in_flight: Dict[Key, int] = {}
        self._lock = threading.RLock()

    def _next_revision(self) -> int:
        self._revision += 1
        return self._revision

    def keys(self) -> List[Key]:
        with self._lock:
            return list(self._entries)

    def peek(self, key: Key) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(key)

    def read(self, key: Key) -> Any:
        """Cached value, refetched first when missing or stale."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and not entry.stale:
                return entry.data
        return self.refresh(key)

    def refresh(self, key: Key) -> Any:
        """
        Fetch ``key`` from the store and cache the result.

        An invalidation arriving while the fetch is running may describe a
        change the result does not include, so the result is then cached stale.
        """
        with self._lock:
            started = key not in self._in_flight
            if started:
                self._in_flight[key] = 0
            seen = self._in_flight[key]
        try:
            data = self._fetch(key)
        except Exception:
            with self._lock:
                if started:
                    self._in_flight.pop(key, None)
            raise
        with self._lock:
            missed = self._in_flight.get(key, 0) != seen
            if started:
                self._in_flight.pop(key, None)
            self.write(key, data, stale=missed)
        if missed:
            logger.debug("%s invalidated during fetch, kept stale", key)
        return data

    def write(self, key: Key, data: Any, stale: bool = False) -> CacheEntry:
        with self._lock:
            entry = CacheEntry(data, stale=stale, revision=self._next_revision())
            self._entries[key] = entry
            return entry

    def _matching(self, prefix: Key) -> List[Key]:
        keys = set(self._entries) | set(self._in_flight)
        return [k for k in keys if k[:len(prefix)] == prefix]

    def invalidate(self, key: Key) -> bool:
        """Mark ``key`` stale. Returns False when nothing changed."""
        with self._lock:
            if key in self._in_flight:
                self._in_flight[key] += 1
            entry = self._entries.get(key)
            if entry is None or entry.stale:
                return False
            entry.stale = True
            logger.debug("invalidated %s", key)
            return True

    def invalidate_prefix(self, prefix: Key) -> int:
        with self._lock:
            return sum(self.invalidate(k) for k in self._matching(prefix))

    def invalidate_all(self) -> int:
        with self._lock:
            return sum(self.invalidate(k) for k in self._matching(()))

    def purge(self, key: Key) -> None:
        with self._lock:
            if key in self._in_flight:
                self._in_flight[key] += 1
            self._entries.pop(key, None)

    def purge_prefix(self, prefix: Key) -> None:
        with self._lock:
            for k in self._matching(prefix):
                self.purge(k)


# ============ STORE RESOLVER ============

def fetch_from_store(store, key: Key) -> Any:
    """Run the store query a cache key stands for."""
    kind = key[0]
    if kind == "tasks":
        if len(key) == 1:
            return store.list_tasks()
        if key[1] == "project":
            return store.list_tasks(project_id=key[2])
        if key[1] == "assignee":
            return store.list_tasks(assignee_id=key[2])
    elif kind == "task":
        return store.read_task(key[1])
    elif kind == "reviews":
        return store.list_reviews(key[1])
    elif kind == "work-updates":
        return store.list_work_updates(key[1])
    elif kind == "deliverables":
        return store.list_deliverables(key[1])
    elif kind == "checklist":
        return store.list_checklist(key[1])
    elif kind == "evidence":
        return store.read_evidence(key[1])
    elif kind == "members":
        return store.list_project_members(key[1])
    elif kind == "projects":
        return store.list_projects()
    elif kind == "actors":
        return store.list_actors()
    raise KeyError(f"Unknown query key: {key!r}")


# ============ EVENT -> QUERY MAP ============

@dataclass(frozen=True)
class Hint:
    """Placeholder for a filter_hint value inside a key template."""

    name: str
    optional: bool = False


# Per table, the cached queries a change to one of its rows can affect.
# A required hint that is missing widens the template to its prefix; an
# optional one that is missing drops the template.
EVENT_QUERY_MAP: Dict[str, Tuple[Tuple, ...]] = {
    "tasks": (
        ("tasks",),
        ("tasks", "project", Hint("project_id")),
        ("tasks", "project", Hint("previous_project_id", optional=True)),
        ("tasks", "assignee", Hint("assignee_id")),
        ("tasks", "assignee", Hint("previous_assignee_id", optional=True)),
        ("task", Hint("task_id")),
    ),
    "task_reviews": (
        ("reviews", Hint("task_id")),
    ),
    "task_work_updates": (
        ("work-updates", Hint("task_id")),
        ("evidence", Hint("task_id")),
    ),
    "task_deliverables": (
        ("deliverables", Hint("task_id")),
        ("evidence", Hint("task_id")),
    ),
    "task_quality_checklist": (
        ("checklist", Hint("task_id")),
        ("evidence", Hint("task_id")),
    ),
    "project_members": (
        ("members", Hint("project_id")),
        # les listes d'un employé dépendent de ses projets
        ("tasks",),
        ("tasks", "project", Hint("project_id")),
    ),
    "projects": (
        ("projects",),
    ),
    "users": (
        ("actors",),
    ),
}

# Everything a task owns, purged when the task disappears
TASK_SCOPED = ("task", "reviews", "work-updates", "deliverables", "checklist", "evidence")


def scopes_for(table: str, hint: dict) -> Tuple[List[Key], List[Key]]:
    """Exact keys and key prefixes affected by a change to ``table``."""
    keys: List[Key] = []
    prefixes: List[Key] = []
    for template in EVENT_QUERY_MAP.get(table, ()):
        key = []
        widened = False
        for part in template:
            if not isinstance(part, Hint):
                key.append(part)
                continue
            value = hint.get(part.name)
            if value is None:
                if not part.optional:
                    prefixes.append(tuple(key))
                widened = True
                break
            key.append(value)
        if not widened:
            keys.append(tuple(key))
    return keys, prefixes


def _event_fields(change) -> Tuple[Optional[str], Optional[str], dict]:
    if isinstance(change, dict):
        return change.get("table"), change.get("operation"), change.get("filter_hint") or {}
    return change.table, change.operation, change.filter_hint or {}


@dataclass
class OptimisticSnapshot:
    task_id: int
    # key -> (revision written by the optimistic patch, data before it, stale before it)
    entries: Dict[Key, Tuple[int, Any, bool]]


class CacheSynchronizer:
    """Keeps a QueryCache in line with store change events and local writes."""

    def __init__(self, store, cache: Optional[QueryCache] = None):
        self.store = store
        self.cache = cache or QueryCache(lambda key: fetch_from_store(store, key))

    def read(self, key: Key) -> Any:
        return self.cache.read(key)

    def refresh(self, key: Key) -> Any:
        return self.cache.refresh(key)

    # ============ CHANGE EVENTS ============

    def on_change_event(self, change, keep: Iterable[Key] = ()) -> int:
        """Invalidate every cached query the change can affect. Returns how many went stale."""
        table, operation, hint = _event_fields(change)
        if table not in EVENT_QUERY_MAP:
            logger.debug("ignoring change on unknown table %s", table)
            return 0

        if table == "tasks" and operation == DELETE:
            self.purge_task(hint.get("task_id"))

        keys, prefixes = scopes_for(table, hint)
        keep = set(keep)
        count = 0
        for key in keys:
            if key not in keep:
                count += self.cache.invalidate(key)
        for prefix in prefixes:
            count += self.cache.invalidate_prefix(prefix)
        logger.debug("%s %s %s -> %s stale", table, operation, hint, count)
        return count

    def invalidate_all(self) -> int:
        count = self.cache.invalidate_all()
        logger.info("change log gap, %s cached queries marked stale", count)
        return count

    def purge_task(self, task_id: Optional[int]) -> None:
        for kind in TASK_SCOPED:
            if task_id is None:
                self.cache.invalidate_prefix((kind,))
            else:
                self.cache.purge((kind, task_id))
        if task_id is not None:
            self._drop_from_lists(task_id)

    def refresh_stale(self) -> int:
        """Refetch every stale entry now."""
        count = 0
        for key in self.cache.keys():
            entry = self.cache.peek(key)
            if entry is not None and entry.stale:
                self.cache.refresh(key)
                count += 1
        return count

    # ============ OPTIMISTIC WRITES ============

    def _task_lists(self) -> List[Key]:
        return [k for k in self.cache.keys() if k[0] == "tasks"]

    def _drop_from_lists(self, task_id: int) -> None:
        for key in self._task_lists():
            entry = self.cache.peek(key)
            if entry is None or not isinstance(entry.data, list):
                continue
            if any(t.id == task_id for t in entry.data):
                self.cache.write(key, [t for t in entry.data if t.id != task_id])
                self.cache.invalidate(key)

    def _patch(self, key: Key, patch: Callable[[Any], Any], snapshot: Optional[OptimisticSnapshot]) -> None:
        entry = self.cache.peek(key)
        if entry is None:
            return
        data = patch(entry.data)
        if data is entry.data:
            return
        written = self.cache.write(key, data)
        if snapshot is not None:
            snapshot.entries[key] = (written.revision, entry.data, entry.stale)

    def apply_optimistic(self, task_id: int, fields: dict) -> OptimisticSnapshot:
        """Patch the cached task and every cached list holding it."""
        snapshot = OptimisticSnapshot(task_id, {})

        def patch_task(task):
            return task.model_copy(update=fields) if task is not None else task

        def patch_list(tasks):
            if not isinstance(tasks, list) or not any(t.id == task_id for t in tasks):
                return tasks
            return [t.model_copy(update=fields) if t.id == task_id else t for t in tasks]

        self._patch(("task", task_id), patch_task, snapshot)
        for key in self._task_lists():
            self._patch(key, patch_list, snapshot)
        logger.debug("optimistic patch on task %s: %s", task_id, fields)
        return snapshot

    def revert(self, snapshot: OptimisticSnapshot) -> None:
        """Undo an optimistic patch, leaving alone entries the store has replaced since."""
        for key, (revision, before, stale) in snapshot.entries.items():
            entry = self.cache.peek(key)
            if entry is None or entry.revision != revision:
                continue
            self.cache.write(key, before)
            if stale:
                self.cache.invalidate(key)
        logger.debug("reverted optimistic patch on task %s", snapshot.task_id)

    def confirm(self, task, previous=None) -> None:
        """Store the server's copy of ``task`` and invalidate what the change touches."""
        self.cache.write(("task", task.id), task)

        def replace(tasks):
            if not isinstance(tasks, list) or not any(t.id == task.id for t in tasks):
                return tasks
            return [task if t.id == task.id else t for t in tasks]

        for key in self._task_lists():
            self._patch(key, replace, None)

        hint = {"task_id": task.id, "project_id": task.project_id, "assignee_id": task.assignee_id}
        if previous is not None:
            if previous.project_id != task.project_id:
                hint["previous_project_id"] = previous.project_id
            if previous.assignee_id != task.assignee_id:
                hint["previous_assignee_id"] = previous.assignee_id
        self.on_change_event(
            {"table": "tasks", "operation": UPDATE, "filter_hint": hint},
            keep=[("task", task.id)],
        )
