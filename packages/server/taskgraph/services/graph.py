"""
Dependency graph helpers and cycle detection.

The graph is a plain adjacency mapping ``task_id -> [depends_on_id, ...]``
built from one tenant snapshot. Edges point from a task to the tasks it
depends on, so "A reaches B" means A (transitively) depends on B.

Traversals use an explicit stack so call depth never grows with the graph.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Iterator, Mapping, Sequence

from taskgraph_shared.schemas.tasks import TaskRead

Adjacency = dict[uuid.UUID, list[uuid.UUID]]

_EXHAUSTED = object()


# ---------------------------------------------------------------------------
# Snapshot helpers
# ---------------------------------------------------------------------------


def ordered_tasks(tasks: Iterable[TaskRead]) -> list[TaskRead]:
    """Tasks in ascending task number, the processing order of every pass."""
    return sorted(tasks, key=lambda t: t.task_number)


def build_adjacency(tasks: Iterable[TaskRead]) -> Adjacency:
    return {task.id: list(task.dependency_ids) for task in tasks}


def task_numbers(tasks: Iterable[TaskRead]) -> dict[uuid.UUID, int]:
    return {task.id: task.task_number for task in tasks}


def unique_in_order(ids: Iterable[uuid.UUID]) -> list[uuid.UUID]:
    seen: set[uuid.UUID] = set()
    result = []
    for item in ids:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def duplicated_ids(ids: Sequence[uuid.UUID]) -> list[uuid.UUID]:
    """Ids occurring more than once, each listed once in first-occurrence order."""
    seen: set[uuid.UUID] = set()
    duplicates: list[uuid.UUID] = []
    for item in ids:
        if item in seen and item not in duplicates:
            duplicates.append(item)
        seen.add(item)
    return duplicates


def format_path(path: Sequence[int]) -> str:
    """``[1, 2, 3]`` -> ``"1 → 2 → 3 → 1"``."""
    if not path:
        return ""
    return " → ".join(str(n) for n in [*path, path[0]])


# ---------------------------------------------------------------------------
# Cycle detection
# ---------------------------------------------------------------------------


class CycleDetector:
    """Reachability queries over an adjacency mapping.

    The detector never mutates the mapping it is given. Callers that prune
    edges as they go (the repairer) update their own mapping between queries.
    """

    def __init__(self, adjacency: Mapping[uuid.UUID, Sequence[uuid.UUID]]):
        self._adjacency = adjacency

    def _targets(self, node: uuid.UUID) -> Iterator[uuid.UUID]:
        # Edges to tasks outside the snapshot lead nowhere.
        for target in self._adjacency.get(node, ()):
            if target in self._adjacency:
                yield target

    def can_reach(self, start: uuid.UUID, goal: uuid.UUID) -> bool:
        """True if ``goal`` is reachable from ``start`` through zero or more edges."""
        visited: set[uuid.UUID] = set()
        stack = [start]
        while stack:
            current = stack.pop()
            if current == goal:
                return True
            if current in visited:
                continue
            visited.add(current)
            stack.extend(t for t in self._adjacency.get(current, ()) if t not in visited)
        return False

    def would_create_cycle(self, task_id: uuid.UUID, candidate_id: uuid.UUID) -> bool:
        """Would adding the edge ``task_id -> candidate_id`` close a cycle?

        It would exactly when the candidate already reaches the task.
        """
        return self.can_reach(candidate_id, task_id)

    def find_cycle_containing(self, task_id: uuid.UUID) -> list[uuid.UUID]:
        """Return a cycle through ``task_id`` as ``[task_id, ..., last]``, or ``[]``.

        The closing edge ``last -> task_id`` is implied. Self loops are not
        reported here; they are a separate class of issue.
        """
        if task_id not in self._adjacency:
            return []

        path = [task_id]
        on_path = {task_id}
        explored: set[uuid.UUID] = set()
        stack = [self._targets(task_id)]

        while stack:
            target = next(stack[-1], _EXHAUSTED)
            if target is _EXHAUSTED:
                stack.pop()
                node = path.pop()
                on_path.discard(node)
                explored.add(node)
                continue
            if target == task_id:
                if len(path) > 1:
                    return list(path)
                continue
            if target in on_path or target in explored:
                continue
            path.append(target)
            on_path.add(target)
            stack.append(self._targets(target))

        return []
