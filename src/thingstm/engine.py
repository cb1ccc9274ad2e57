"""
TaskEngine - mutation operations over the entity store.

Every operation runs synchronously to completion and degrades to a logged no-op on
unknown ids; nothing here raises to the caller under normal conditions.
"""
import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from packaging.version import InvalidVersion, Version
from pydantic import ValidationError

from . import derive
from .colors import generate_color, initial_tags
from .logs import get_logger
from .models import (
    AppBackup, AppSettings, PartialBackup, Priority, Project, Scope, Tag, Task, TaskTemplate,
    TemplateSubtask, ViewContext, ViewMode, generate_id, utcnow,
)
from .recovery import ImportDataError
from .store import EntityStore
from .version import APP_SCHEMA_VERSION

log = get_logger("engine")

Clock = Callable[[], datetime]

# Fields a caller may not override through ``extra`` on add_task
_PROTECTED_FIELDS = {'id', 'parent_id', 'parentId', 'subtask_ids', 'subtaskIds'}


class TaskEngine:
    def __init__(self, store: EntityStore, clock: Clock = utcnow):
        self.store = store
        self.clock = clock

    # ---- derived reads ----

    def filtered_tasks(self) -> List[Task]:
        return derive.filtered_tasks(
            self.store.tasks, self.store.tags, self.store.projects, self.store.view, self.clock()
        )

    def _stopped(self, task: Task, now: datetime) -> Task:
        """Fold a running timer into time_spent and clear it."""
        elapsed = derive.elapsed_seconds(task.timer_started_at, now)
        return task.model_copy(update={
            'time_spent': task.time_spent + elapsed,
            'timer_started_at': None,
        })

    # ---- tasks ----

    def add_task(self, title: str, parent_id: Optional[str] = None,
                 due_date: Optional[datetime] = None, extra: Optional[Dict[str, Any]] = None) -> str:
        """
        Create a task and return its id.

        Top-level tasks pick up the current view: a today due date, the selected tag and
        membership of the selected project. Subtasks of subtasks are attached to the
        top-level ancestor, and an unknown parent yields a top-level task.
        """
        now = self.clock()
        view = self.store.view
        index = self.store.task_index()

        parent = None
        if parent_id is not None:
            parent = index.get(parent_id)
            if parent is None:
                log.warning(f"Parent task {parent_id} not found; creating '{title}' as a top-level task")
            elif parent.parent_id is not None and parent.parent_id in index:
                parent = index[parent.parent_id]

        top_level = parent is None
        if due_date is None and top_level and view.scope == Scope.TODAY:
            due_date = now

        fields: Dict[str, Any] = {
            'id': generate_id(),
            'title': title or "New Task",
            'description': "",
            'completed': False,
            'priority': self.store.settings.default_priority,
            'tags': [view.selected_tag] if (view.selected_tag and top_level) else [],
            'due_date': due_date,
            'created_at': now,
            'parent_id': parent.id if parent else None,
            'subtask_ids': [],
            'time_spent': 0,
        }
        if extra:
            fields.update({k: v for k, v in extra.items() if k not in _PROTECTED_FIELDS})
        task = Task.model_validate(fields)

        tasks = self.store.tasks
        tasks.append(task)
        if parent is not None:
            tasks = [
                t.model_copy(update={'subtask_ids': t.subtask_ids + [task.id]}) if t.id == parent.id else t
                for t in tasks
            ]

        with self.store.batch():
            self.store.replace_tasks(tasks)
            if top_level and view.selected_project_id:
                project = self.store.get_project(view.selected_project_id)
                if project is not None:
                    self._set_membership(task.id, project.id)

        log.debug(f"Task added id={task.id} parent={task.parent_id}")
        return task.id

    def update_task(self, task: Task) -> bool:
        """Replace the task with the same id; the caller keeps the invariants."""
        tasks = self.store.tasks
        for i, existing in enumerate(tasks):
            if existing.id == task.id:
                tasks[i] = task
                self.store.replace_tasks(tasks)
                return True
        log.debug(f"update_task: no task {task.id}")
        return False

    def toggle_task(self, task_id: str) -> Optional[bool]:
        """Flip completion and cascade the new value to direct children. Returns the new value."""
        target = self.store.get_task(task_id)
        if target is None:
            log.debug(f"toggle_task: no task {task_id}")
            return None

        new_state = not target.completed
        updated = target.model_copy(update={'completed': new_state})
        if new_state and target.is_running:
            updated = self._stopped(updated, self.clock())

        children = set(target.subtask_ids)
        tasks = []
        for task in self.store.tasks:
            if task.id == task_id:
                task = updated
            elif task.id in children:
                task = task.model_copy(update={'completed': new_state})
            tasks.append(task)
        self.store.replace_tasks(tasks)
        return new_state

    def toggle_timer(self, task_id: str) -> Optional[bool]:
        """
        Start or stop the timer of a task. Starting stops every other running timer first.
        Returns whether the task's timer is running afterwards.
        """
        if self.store.get_task(task_id) is None:
            log.debug(f"toggle_timer: no task {task_id}")
            return None

        now = self.clock()
        running = False
        tasks = []
        for task in self.store.tasks:
            if task.id == task_id:
                if task.is_running:
                    task = self._stopped(task, now)
                else:
                    task = task.model_copy(update={'timer_started_at': now})
                    running = True
            elif task.is_running:
                task = self._stopped(task, now)
            tasks.append(task)
        self.store.replace_tasks(tasks)
        return running

    def delete_task(self, task_id: str) -> List[str]:
        """Remove a task and its direct children. Returns the removed ids."""
        target = self.store.get_task(task_id)
        if target is None:
            return []

        doomed = {task_id, *target.subtask_ids}
        removed = []
        tasks = []
        for task in self.store.tasks:
            if task.id in doomed:
                removed.append(task.id)
                continue
            if task_id in task.subtask_ids:
                task = task.model_copy(update={'subtask_ids': [s for s in task.subtask_ids if s != task_id]})
            tasks.append(task)

        projects = [
            p.model_copy(update={'task_ids': [t for t in p.task_ids if t not in doomed]})
            if doomed.intersection(p.task_ids) else p
            for p in self.store.projects
        ]

        with self.store.batch():
            self.store.replace_tasks(tasks)
            self.store.replace_projects(projects)
        log.debug(f"Deleted tasks {removed}")
        return removed

    def reorder(self, ordered_ids: Sequence[str]):
        """
        Apply a new order to the currently filtered tasks. The reordered tasks move to the
        front of the store; every other task follows in its previous relative order.
        """
        visible = self.filtered_tasks()
        visible_ids = {t.id for t in visible}
        index = {t.id: t for t in visible}

        head: List[Task] = []
        seen = set()
        for tid in ordered_ids:
            if tid in visible_ids and tid not in seen:
                head.append(index[tid])
                seen.add(tid)
            elif tid not in visible_ids:
                log.warning(f"reorder: ignoring {tid}, not in the current view")

        missing = [t for t in visible if t.id not in seen]
        if missing:
            log.warning(f"reorder: {len(missing)} visible tasks missing from the new order; keeping them after it")
            head.extend(missing)

        others = [t for t in self.store.tasks if t.id not in visible_ids]
        self.store.replace_tasks(head + others)

    # ---- projects ----

    def add_project(self, name: str) -> str:
        project_id = generate_id()
        project = Project(
            id=project_id,
            name=name or "New Project",
            color=generate_color(project_id, self.store.settings.theme),
        )
        self.store.replace_projects(self.store.projects + [project])
        return project_id

    def delete_project(self, project_id: str) -> bool:
        projects = self.store.projects
        remaining = [p for p in projects if p.id != project_id]
        if len(remaining) == len(projects):
            return False
        self.store.replace_projects(remaining)
        view = self.store.view
        if view.selected_project_id == project_id:
            self.store.set_view(view.model_copy(update={'selected_project_id': None}))
        return True

    def _set_membership(self, task_id: str, project_id: Optional[str]):
        projects = []
        for project in self.store.projects:
            task_ids = [t for t in project.task_ids if t != task_id]
            if project.id == project_id:
                task_ids.append(task_id)
            if task_ids != project.task_ids:
                project = project.model_copy(update={'task_ids': task_ids})
            projects.append(project)
        self.store.replace_projects(projects)

    def move_task_to_project(self, task_id: str, project_id: Optional[str]) -> bool:
        """Put a top-level task into one project (or none when ``project_id`` is None)."""
        task = self.store.get_task(task_id)
        if task is None or not task.is_top_level:
            return False
        if project_id is not None and self.store.get_project(project_id) is None:
            return False
        self._set_membership(task_id, project_id)
        return True

    # ---- templates ----

    def add_template(self, name: Optional[str] = None, title: Optional[str] = None,
                     description: Optional[str] = None, priority: Optional[Priority] = None,
                     tags: Optional[List[str]] = None,
                     subtasks: Optional[List[Union[str, Dict[str, Any], TemplateSubtask]]] = None) -> str:
        template_id = generate_id()
        blueprints = []
        for sub in subtasks or []:
            if isinstance(sub, str):
                sub = TemplateSubtask(title=sub)
            elif isinstance(sub, dict):
                sub = TemplateSubtask.model_validate(sub)
            blueprints.append(sub)
        template = TaskTemplate(
            id=template_id,
            name=name or "New Template",
            title=title or "Task Title",
            description=description or "",
            priority=priority or Priority.MEDIUM,
            tags=list(tags or []),
            subtasks=blueprints,
        )
        self.store.replace_templates(self.store.templates + [template])
        return template_id

    def update_template(self, template: TaskTemplate) -> bool:
        templates = self.store.templates
        for i, existing in enumerate(templates):
            if existing.id == template.id:
                templates[i] = template
                self.store.replace_templates(templates)
                return True
        return False

    def delete_template(self, template_id: str) -> bool:
        templates = self.store.templates
        remaining = [t for t in templates if t.id != template_id]
        if len(remaining) == len(templates):
            return False
        self.store.replace_templates(remaining)
        return True

    def use_template(self, template_id: str) -> Optional[str]:
        """Instantiate a template as one parent task plus its sub-tasks. Returns the parent id."""
        template = self.store.get_template(template_id)
        if template is None:
            log.debug(f"use_template: no template {template_id}")
            return None
        parent_id = self.add_task(template.title, extra={
            'description': template.description,
            'priority': template.priority,
            'tags': list(template.tags),
        })
        for sub in template.subtasks:
            self.add_task(sub.title, parent_id=parent_id)
        return parent_id

    # ---- tags ----

    def add_tag(self, name: str) -> str:
        tag_id = generate_id()
        tag = Tag(id=tag_id, name=name or "New Tag", color=generate_color(tag_id, self.store.settings.theme))
        self.store.replace_tags(self.store.tags + [tag])
        return tag_id

    def rename_tag(self, tag_id: str, name: str) -> bool:
        tags = self.store.tags
        for i, tag in enumerate(tags):
            if tag.id == tag_id:
                tags[i] = tag.model_copy(update={'name': name})
                self.store.replace_tags(tags)
                return True
        return False

    def delete_tag(self, tag_id: str) -> bool:
        """Remove a tag. Task references are left in place and read as absent."""
        tags = self.store.tags
        remaining = [t for t in tags if t.id != tag_id]
        if len(remaining) == len(tags):
            return False
        self.store.replace_tags(remaining)
        view = self.store.view
        if view.selected_tag == tag_id:
            self.store.set_view(view.model_copy(update={'selected_tag': None}))
        return True

    def set_tags(self, tags: List[Tag]):
        self.store.replace_tags(tags)

    # ---- settings and view ----

    def update_settings(self, **changes) -> AppSettings:
        merged = {**self.store.settings.model_dump(), **changes}
        settings = AppSettings.model_validate(merged)
        self.store.replace_settings(settings)
        return settings

    def select_scope(self, scope: Scope):
        self.store.set_view(self.store.view.with_scope(scope))

    def select_tag(self, tag_id: Optional[str]):
        self.store.set_view(self.store.view.with_tag(tag_id))

    def select_project(self, project_id: Optional[str]):
        self.store.set_view(self.store.view.with_project(project_id))

    def search(self, query: str):
        self.store.set_view(self.store.view.with_search(query))

    def set_view_mode(self, mode: ViewMode):
        self.store.set_view(self.store.view.with_view(mode))

    # ---- snapshot exchange ----

    def export_data(self) -> AppBackup:
        return self.store.snapshot()

    def export_json(self) -> str:
        return self.export_data().to_json()

    def import_data(self, json_text: Union[str, bytes]) -> bool:
        """
        Replace the collections present in a JSON snapshot.

        Absent fields are left untouched. On any parse or shape error nothing changes,
        the failure is logged and False is returned.
        """
        try:
            payload = parse_snapshot(json_text)
        except ImportDataError as e:
            log.error(f"Import failed, {e}")
            return False

        check_version(payload.version)
        applied = self.store.apply_backup(payload)
        self.store.reconcile_hierarchy()
        log.info(f"Imported {', '.join(applied)}")
        return True

    def reset(self):
        """Clear tasks, projects and templates and restore the initial tags and default settings."""
        with self.store.batch():
            self.store.replace_tasks([])
            self.store.replace_tags(initial_tags())
            self.store.replace_projects([])
            self.store.replace_templates([])
            self.store.replace_settings(AppSettings())
        self.store.set_view(ViewContext())


def parse_snapshot(json_text: Union[str, bytes]) -> PartialBackup:
    """Parse a JSON snapshot. Raises ImportDataError when it is not one."""
    try:
        raw = json.loads(json_text)
    except (json.JSONDecodeError, TypeError, ValueError) as e:
        raise ImportDataError(f"payload is not JSON: {e}") from e
    if not isinstance(raw, dict):
        raise ImportDataError(f"expected an object but got {type(raw).__name__}")

    try:
        payload = PartialBackup.model_validate(raw)
    except ValidationError as e:
        raise ImportDataError(f"payload does not match the snapshot shape: {e}") from e
    if payload.is_empty():
        raise ImportDataError("payload contains no snapshot fields")
    return payload


def check_version(snapshot_version: Optional[str]) -> bool:
    """Warn about snapshots written by a newer schema. Returns True when compatible."""
    if not snapshot_version:
        return True
    try:
        if Version(snapshot_version) > Version(APP_SCHEMA_VERSION):
            log.warning(f"Snapshot version {snapshot_version} is newer than {APP_SCHEMA_VERSION}; "
                        f"unknown fields are ignored")
            return False
    except InvalidVersion:
        log.warning(f"Unrecognised snapshot version {snapshot_version!r}")
        return False
    return True
