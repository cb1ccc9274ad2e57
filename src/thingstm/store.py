"""
EntityStore - canonical in-memory state of the task engine.

Holds the four collections (tasks, tags, projects, templates), user settings and the
current view context. Collections are only replaced wholesale; every replacement of a
persisted collection notifies the registered listeners, which is what drives write-back.
"""
from contextlib import contextmanager
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from .colors import initial_tags
from .models import (
    AppBackup, AppSettings, PartialBackup, Project, Tag, Task, TaskTemplate, ViewContext,
)
from .version import APP_SCHEMA_VERSION
from .logs import get_logger

log = get_logger("store")

ChangeListener = Callable[[str], None]


class LoadState(Enum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    LOADED = "loaded"


class EntityStore:
    TASKS = "tasks"
    TAGS = "tags"
    PROJECTS = "projects"
    TEMPLATES = "templates"
    SETTINGS = "settings"

    def __init__(self, tags: Optional[List[Tag]] = None, settings: Optional[AppSettings] = None):
        self._tasks: List[Task] = []
        self._tags: List[Tag] = list(tags) if tags is not None else initial_tags()
        self._projects: List[Project] = []
        self._templates: List[TaskTemplate] = []
        self._settings: AppSettings = settings or AppSettings()
        self._view = ViewContext()
        self._state = LoadState.UNLOADED
        self._listeners: List[ChangeListener] = []
        self._batch_depth = 0
        self._pending: List[str] = []

    # ---- read access ----

    @property
    def tasks(self) -> List[Task]:
        return list(self._tasks)

    @property
    def tags(self) -> List[Tag]:
        return list(self._tags)

    @property
    def projects(self) -> List[Project]:
        return list(self._projects)

    @property
    def templates(self) -> List[TaskTemplate]:
        return list(self._templates)

    @property
    def settings(self) -> AppSettings:
        return self._settings

    @property
    def view(self) -> ViewContext:
        return self._view

    @property
    def load_state(self) -> LoadState:
        return self._state

    @property
    def is_loaded(self) -> bool:
        return self._state == LoadState.LOADED

    def get_task(self, task_id: str) -> Optional[Task]:
        return next((t for t in self._tasks if t.id == task_id), None)

    def get_project(self, project_id: str) -> Optional[Project]:
        return next((p for p in self._projects if p.id == project_id), None)

    def get_template(self, template_id: str) -> Optional[TaskTemplate]:
        return next((t for t in self._templates if t.id == template_id), None)

    def task_index(self) -> Dict[str, Task]:
        return {t.id: t for t in self._tasks}

    # ---- change notification ----

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener; returns a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    @contextmanager
    def batch(self):
        """Coalesce notifications of several replacements into one per collection."""
        self._batch_depth += 1
        try:
            yield self
        finally:
            self._batch_depth -= 1
            if self._batch_depth == 0:
                pending, self._pending = self._pending, []
                for name in pending:
                    self._emit(name)

    def _notify(self, name: str):
        if self._batch_depth:
            if name not in self._pending:
                self._pending.append(name)
            return
        self._emit(name)

    def _emit(self, name: str):
        for listener in list(self._listeners):
            try:
                listener(name)
            except Exception:
                log.exception(f"Change listener failed for '{name}'")

    # ---- wholesale replacement ----

    def replace_tasks(self, tasks: List[Task]):
        self._tasks = list(tasks)
        self._notify(self.TASKS)

    def replace_tags(self, tags: List[Tag]):
        self._tags = list(tags)
        self._notify(self.TAGS)

    def replace_projects(self, projects: List[Project]):
        self._projects = list(projects)
        self._notify(self.PROJECTS)

    def replace_templates(self, templates: List[TaskTemplate]):
        self._templates = list(templates)
        self._notify(self.TEMPLATES)

    def replace_settings(self, settings: AppSettings):
        self._settings = settings
        self._notify(self.SETTINGS)

    def set_view(self, view: ViewContext):
        # View state is not part of the snapshot, so no notification
        self._view = view

    # ---- lifecycle ----

    def begin_loading(self):
        if self._state != LoadState.UNLOADED:
            raise RuntimeError(f"Store cannot start loading from state {self._state.value}")
        self._state = LoadState.LOADING

    def mark_loaded(self):
        if self._state != LoadState.LOADING:
            raise RuntimeError(f"Store cannot finish loading from state {self._state.value}")
        self._state = LoadState.LOADED
        log.debug(f"Store loaded: {len(self._tasks)} tasks, {len(self._projects)} projects, "
                  f"{len(self._templates)} templates")

    # ---- snapshots ----

    def snapshot(self) -> AppBackup:
        return AppBackup(
            tasks=self.tasks,
            tags=self.tags,
            projects=self.projects,
            templates=self.templates,
            settings=self._settings,
            version=APP_SCHEMA_VERSION,
        )

    def apply_backup(self, backup: PartialBackup) -> List[str]:
        """Replace every collection present in the backup; absent fields are left untouched."""
        applied = []
        with self.batch():
            if backup.tasks is not None:
                self.replace_tasks(backup.tasks)
                applied.append(self.TASKS)
            if backup.tags is not None:
                self.replace_tags(backup.tags)
                applied.append(self.TAGS)
            if backup.projects is not None:
                self.replace_projects(backup.projects)
                applied.append(self.PROJECTS)
            if backup.templates is not None:
                self.replace_templates(backup.templates)
                applied.append(self.TEMPLATES)
            if backup.settings is not None:
                self.replace_settings(backup.settings)
                applied.append(self.SETTINGS)
        return applied

    def reconcile_hierarchy(self) -> int:
        """
        Restore parent/child and project membership consistency.

        ``parent_id`` is authoritative: dangling parents are cleared, every parent lists
        exactly its children in ``subtask_ids`` (existing order kept, missing children
        appended). Project ``task_ids`` lose unknown ids and a task stays in at most
        one project. Returns the number of entities that were changed.
        """
        ids = {t.id for t in self._tasks}
        changed = 0

        tasks = []
        for task in self._tasks:
            if task.parent_id is not None and (task.parent_id not in ids or task.parent_id == task.id):
                log.warning(f"Task {task.id} references missing parent {task.parent_id}; treating it as top-level")
                task = task.model_copy(update={'parent_id': None})
                changed += 1
            tasks.append(task)

        children: Dict[str, List[str]] = {}
        for task in tasks:
            if task.parent_id is not None:
                children.setdefault(task.parent_id, []).append(task.id)

        for i, task in enumerate(tasks):
            expected = children.get(task.id, [])
            expected_set = set(expected)
            ordered: List[str] = []
            for sid in task.subtask_ids:
                if sid in expected_set and sid not in ordered:
                    ordered.append(sid)
            ordered.extend(sid for sid in expected if sid not in ordered)
            if ordered != task.subtask_ids:
                tasks[i] = task.model_copy(update={'subtask_ids': ordered})
                changed += 1

        claimed: Set[str] = set()
        projects = []
        for project in self._projects:
            kept = []
            for tid in project.task_ids:
                if tid in ids and tid not in claimed:
                    kept.append(tid)
                    claimed.add(tid)
            if kept != project.task_ids:
                log.warning(f"Project {project.id} membership repaired ({len(project.task_ids) - len(kept)} ids dropped)")
                project = project.model_copy(update={'task_ids': kept})
                changed += 1
            projects.append(project)

        if changed:
            with self.batch():
                self.replace_tasks(tasks)
                self.replace_projects(projects)
        return changed
