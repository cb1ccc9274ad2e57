"""
Pure derivations over the entity collections.

Nothing here mutates its inputs; every function is linear in the number of tasks and is
meant to be re-evaluated on each read.
"""
import math
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from .models import Priority, Project, Scope, Tag, Task, ViewContext, utcnow


def is_today(value: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True when ``value`` falls on the current calendar day in local time."""
    if value is None:
        return False
    now = now or utcnow()
    return value.astimezone().date() == now.astimezone().date()


def _local_day(value: datetime) -> date:
    return value.astimezone().date()


def top_level(tasks: Iterable[Task]) -> List[Task]:
    return [t for t in tasks if t.parent_id is None]


def matches_search(task: Task, query: str, tag_names: Dict[str, str]) -> bool:
    """Case-insensitive substring match on title, description or assigned tag names."""
    query = query.lower()
    if query in task.title.lower():
        return True
    if task.description and query in task.description.lower():
        return True
    # Unknown tag ids are treated as absent
    return any(query in tag_names[tag_id] for tag_id in task.tags if tag_id in tag_names)


def in_scope(task: Task, scope: Scope, now: Optional[datetime] = None) -> bool:
    if scope == Scope.LOGBOOK:
        return task.completed
    if task.completed:
        return False
    if scope == Scope.TODAY:
        return is_today(task.due_date, now)
    return True


def filtered_tasks(
    tasks: Sequence[Task],
    tags: Sequence[Tag],
    projects: Sequence[Project],
    view: ViewContext,
    now: Optional[datetime] = None,
) -> List[Task]:
    """
    Compute the visible top-level tasks for a view.

    Project, search, tag and scope filters must all hold. The result keeps store order.
    """
    now = now or utcnow()

    project_ids = None
    if view.selected_project_id is not None:
        project = next((p for p in projects if p.id == view.selected_project_id), None)
        project_ids = set(project.task_ids) if project else set()

    query = view.search_query
    tag_names = {tag.id: tag.name.lower() for tag in tags} if query else {}

    result = []
    for task in tasks:
        if task.parent_id is not None:
            continue
        if project_ids is not None and task.id not in project_ids:
            continue
        if query and not matches_search(task, query, tag_names):
            continue
        if view.selected_tag and view.selected_tag not in task.tags:
            continue
        if not in_scope(task, view.scope, now):
            continue
        result.append(task)
    return result


# ---- counters ----

def inbox_count(tasks: Iterable[Task]) -> int:
    return sum(1 for t in tasks if t.parent_id is None and not t.completed)


def today_count(tasks: Iterable[Task], now: Optional[datetime] = None) -> int:
    now = now or utcnow()
    return sum(1 for t in tasks if t.parent_id is None and not t.completed and is_today(t.due_date, now))


def logbook_count(tasks: Iterable[Task]) -> int:
    return sum(1 for t in tasks if t.parent_id is None and t.completed)


def project_open_count(project: Project, tasks: Iterable[Task]) -> int:
    index = {t.id: t for t in tasks}
    return sum(1 for tid in project.task_ids if tid in index and not index[tid].completed)


def tag_open_count(tag_id: str, tasks: Iterable[Task]) -> int:
    return sum(1 for t in tasks if t.parent_id is None and not t.completed and tag_id in t.tags)


def progress(tasks: Iterable[Task]) -> float:
    """Completion percentage of a group; 0 for an empty group."""
    tasks = list(tasks)
    if not tasks:
        return 0.0
    return sum(1 for t in tasks if t.completed) / len(tasks) * 100


def inbox_progress(tasks: Iterable[Task]) -> float:
    return progress(top_level(tasks))


def today_progress(tasks: Iterable[Task], now: Optional[datetime] = None) -> float:
    now = now or utcnow()
    return progress(t for t in top_level(tasks) if is_today(t.due_date, now))


def subtask_progress(task: Task, tasks: Iterable[Task]) -> float:
    wanted = set(task.subtask_ids)
    return progress(t for t in tasks if t.id in wanted)


# ---- time tracking ----

def elapsed_seconds(started_at: datetime, now: datetime) -> int:
    """Whole seconds between two instants, never negative."""
    return max(0, math.floor((now - started_at).total_seconds()))


def current_time_spent(task: Task, now: Optional[datetime] = None) -> int:
    """Tracked seconds including a running timer, without touching the task."""
    if task.timer_started_at is None:
        return task.time_spent
    return task.time_spent + elapsed_seconds(task.timer_started_at, now or utcnow())


def format_duration(seconds: int) -> str:
    hrs = seconds // 3600
    mins = (seconds % 3600) // 60
    secs = seconds % 60
    if hrs > 0:
        return f"{hrs}h {mins}m"
    if mins > 0:
        return f"{mins}m {secs}s"
    return f"{secs}s"


# ---- statistics ----

class TrendPoint(BaseModel):
    day: date
    completed: int = 0
    created: int = 0


class StatsSummary(BaseModel):
    total: int = 0
    done: int = 0
    progress: float = 0.0
    total_seconds: int = 0
    time_by_priority: Dict[Priority, int] = Field(default_factory=dict)
    trend: List[TrendPoint] = Field(default_factory=list)


def compute_stats(tasks: Sequence[Task], now: Optional[datetime] = None, days: int = 7) -> StatsSummary:
    """Totals over every task plus a per-day trend of the last ``days`` local days."""
    now = now or utcnow()
    today = _local_day(now)

    time_by_priority = {}
    for priority in (Priority.HIGH, Priority.MEDIUM, Priority.LOW):
        seconds = sum(t.time_spent for t in tasks if t.priority == priority)
        if seconds > 0:
            time_by_priority[priority] = seconds

    trend = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        trend.append(TrendPoint(
            day=day,
            completed=sum(1 for t in tasks if t.completed and t.due_date and _local_day(t.due_date) == day),
            created=sum(1 for t in tasks if _local_day(t.created_at) == day),
        ))

    return StatsSummary(
        total=len(tasks),
        done=sum(1 for t in tasks if t.completed),
        progress=progress(tasks),
        total_seconds=sum(t.time_spent for t in tasks),
        time_by_priority=time_by_priority,
        trend=trend,
    )
