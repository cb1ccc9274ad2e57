from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any
import json
import uuid
import yaml

from .version import APP_SCHEMA_VERSION


def generate_id() -> str:
    """Return a fresh collision-resistant entity id."""
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Priority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

class ThemeMode(Enum):
    LIGHT = "light"
    DARK = "dark"

class Scope(Enum):
    """Mutually exclusive view filter constraining completion status and due date."""
    INBOX = "inbox"
    TODAY = "today"
    LOGBOOK = "logbook"

class ViewMode(Enum):
    LIST = "list"
    KANBAN = "kanban"
    CALENDAR = "calendar"
    STATS = "stats"
    TEMPLATES = "templates"


class BaseYAMLModel(BaseModel):
    """Base for persisted models: camelCase on the wire, unknown fields ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False, allow_unicode=True)

    @classmethod
    def from_json(cls, text: str):
        return cls.model_validate_json(text)

    @classmethod
    def from_yaml(cls, text: str):
        return cls.model_validate(yaml.safe_load(text) or {})


def _as_aware(v):
    # Naive timestamps are read as UTC
    if isinstance(v, datetime) and v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v


class Tag(BaseYAMLModel):
    id: str = Field(description="Unique identifier for the tag")
    name: str = Field(description="Display name of the tag")
    color: str = Field(default="", description="Last generated display color")


class Task(BaseYAMLModel):
    id: str = Field(description="Unique identifier for the task")
    title: str = Field(description="Title of the task")
    description: Optional[str] = Field(default=None, description="Free-form notes")
    completed: bool = Field(default=False, description="Whether the task is done")
    priority: Priority = Field(default=Priority.MEDIUM, description="Priority of the task")
    tags: List[str] = Field(default_factory=list, description="Assigned tag ids")
    due_date: Optional[datetime] = Field(default=None, description="When the task is due")
    created_at: datetime = Field(default_factory=utcnow, description="When the task was created")
    parent_id: Optional[str] = Field(default=None, description="Id of the parent task")
    subtask_ids: List[str] = Field(default_factory=list, description="Ordered child task ids")
    time_spent: int = Field(default=0, ge=0, description="Accumulated tracked seconds")
    timer_started_at: Optional[datetime] = Field(default=None, description="Set while the timer runs")

    @field_validator('due_date', 'created_at', 'timer_started_at')
    @classmethod
    def normalize_timezone(cls, v):
        return _as_aware(v)

    @field_validator('time_spent', mode='before')
    @classmethod
    def floor_seconds(cls, v):
        if isinstance(v, float):
            return int(v)
        return v

    @property
    def is_top_level(self) -> bool:
        return self.parent_id is None

    @property
    def is_running(self) -> bool:
        return self.timer_started_at is not None


class Project(BaseYAMLModel):
    id: str = Field(description="Unique identifier for the project")
    name: str = Field(description="Display name of the project")
    color: str = Field(default="", description="Display color of the project")
    task_ids: List[str] = Field(default_factory=list, description="Ordered top-level task ids")


class TemplateSubtask(BaseYAMLModel):
    id: str = Field(default_factory=generate_id, description="Blueprint id")
    title: str = Field(description="Title given to the generated sub-task")


class TaskTemplate(BaseYAMLModel):
    id: str = Field(description="Unique identifier for the template")
    name: str = Field(default="New Template", description="Name of the template")
    title: str = Field(default="Task Title", description="Title seeded into the generated task")
    description: Optional[str] = Field(default=None, description="Description of the generated task")
    priority: Priority = Field(default=Priority.MEDIUM, description="Priority of the generated task")
    tags: List[str] = Field(default_factory=list, description="Tag ids of the generated task")
    subtasks: List[TemplateSubtask] = Field(default_factory=list, description="Sub-task blueprints")


class AppSettings(BaseYAMLModel):
    user_name: str = Field(default="User")
    default_priority: Priority = Field(default=Priority.MEDIUM, description="Priority of new tasks")
    enable_sounds: bool = Field(default=True)
    auto_archive: bool = Field(default=False, description="Declared only, not enforced by the engine")
    language: str = Field(default="zh", description="Translation set used by the presentation layer")
    theme: ThemeMode = Field(default=ThemeMode.LIGHT)


class AppBackup(BaseYAMLModel):
    """Complete serializable snapshot; the unit of persistence and export."""

    tasks: List[Task] = Field(default_factory=list)
    tags: List[Tag] = Field(default_factory=list)
    projects: List[Project] = Field(default_factory=list)
    templates: List[TaskTemplate] = Field(default_factory=list)
    settings: AppSettings = Field(default_factory=AppSettings)
    version: str = Field(default=APP_SCHEMA_VERSION)


class PartialBackup(BaseYAMLModel):
    """Snapshot as read back from storage or an import: every field may be absent."""

    tasks: Optional[List[Task]] = None
    tags: Optional[List[Tag]] = None
    projects: Optional[List[Project]] = None
    templates: Optional[List[TaskTemplate]] = None
    settings: Optional[AppSettings] = None
    version: Optional[str] = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in ('tasks', 'tags', 'projects', 'templates', 'settings'))


class ViewContext(BaseModel):
    """Immutable selection state read by the derivation layer."""

    model_config = ConfigDict(frozen=True)

    scope: Scope = Scope.INBOX
    search_query: str = ""
    selected_tag: Optional[str] = None
    selected_project_id: Optional[str] = None
    active_view: ViewMode = ViewMode.LIST

    def with_scope(self, scope: Scope) -> 'ViewContext':
        view = ViewMode.LIST if self.active_view == ViewMode.TEMPLATES else self.active_view
        return self.model_copy(update={
            'scope': scope,
            'selected_tag': None,
            'selected_project_id': None,
            'active_view': view,
        })

    def with_tag(self, tag_id: Optional[str]) -> 'ViewContext':
        # Selecting the active tag again clears it
        if tag_id is not None and tag_id == self.selected_tag:
            tag_id = None
        return self.model_copy(update={
            'scope': Scope.INBOX,
            'selected_tag': tag_id,
            'selected_project_id': None,
            'active_view': ViewMode.LIST,
        })

    def with_project(self, project_id: Optional[str]) -> 'ViewContext':
        return self.model_copy(update={
            'scope': Scope.INBOX,
            'selected_tag': None,
            'selected_project_id': project_id,
            'active_view': ViewMode.LIST,
        })

    def with_search(self, query: str) -> 'ViewContext':
        return self.model_copy(update={'search_query': query or ""})

    def with_view(self, mode: ViewMode) -> 'ViewContext':
        return self.model_copy(update={'active_view': mode})
