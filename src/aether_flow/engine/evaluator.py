"""Pure eligibility and completion checks over a task collection."""

from __future__ import annotations

from collections.abc import Sequence

from aether_flow.engine.models import Task, TaskStatus

ELIGIBLE_STATUSES = frozenset({TaskStatus.TODO, TaskStatus.REJECTED})
SATISFIED_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.PRUNED})
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.PRUNED})
ACTIVE_STATUSES = frozenset(
    {TaskStatus.DECOMPOSING, TaskStatus.IN_PROGRESS, TaskStatus.AUDITING},
)


def eligible_tasks(tasks: Sequence[Task]) -> list[Task]:
    """Return tasks ready for a lifecycle step, in collection order.

    A task qualifies when its status is ``todo`` or ``rejected`` and every
    dependency id resolves to a ``completed`` or ``pruned`` task. Unknown
    dependency ids count as unsatisfied.
    """

    status_by_id = {task.task_id: task.status for task in tasks}
    return [
        task
        for task in tasks
        if task.status in ELIGIBLE_STATUSES
        and all(status_by_id.get(dep_id) in SATISFIED_STATUSES for dep_id in task.dependencies)
    ]


def unsatisfied_dependencies(task: Task, tasks: Sequence[Task]) -> list[str]:
    """Dependency ids of ``task`` that are not yet satisfied (including unknown ids)."""

    status_by_id = {item.task_id: item.status for item in tasks}
    return [
        dep_id for dep_id in task.dependencies if status_by_id.get(dep_id) not in SATISFIED_STATUSES
    ]


def dangling_dependencies(tasks: Sequence[Task]) -> dict[str, list[str]]:
    """Map non-terminal task ids to dependency ids that resolve to no task."""

    known_ids = {task.task_id for task in tasks}
    dangling: dict[str, list[str]] = {}
    for task in tasks:
        if task.status in TERMINAL_STATUSES:
            continue
        missing = [dep_id for dep_id in task.dependencies if dep_id not in known_ids]
        if missing:
            dangling[task.task_id] = missing
    return dangling


def is_flow_complete(tasks: Sequence[Task]) -> bool:
    """True when nothing is eligible and every task is terminal."""

    if eligible_tasks(tasks):
        return False
    return all(task.status in TERMINAL_STATUSES for task in tasks)


def is_flow_stalled(tasks: Sequence[Task]) -> bool:
    """True when no further step can make progress on its own."""

    if eligible_tasks(tasks) or is_flow_complete(tasks):
        return False
    return not any(task.status in ACTIVE_STATUSES for task in tasks)


def active_tasks(tasks: Sequence[Task]) -> list[Task]:
    return [task for task in tasks if task.status in ACTIVE_STATUSES]
