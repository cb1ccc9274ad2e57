"""
Things Task Manager - a personal task engine with projects, tags, templates and timers.

This package keeps the canonical task collections in memory, derives filtered views
from them and persists complete snapshots through a pluggable storage adapter.
"""

from .version import VERSION, APP_SCHEMA_VERSION
from .models import (
    Priority,
    Scope,
    ViewMode,
    ThemeMode,
    Task,
    Tag,
    Project,
    TaskTemplate,
    AppSettings,
    AppBackup,
    ViewContext,
)
from .store import EntityStore, LoadState
from .engine import TaskEngine
from .data import DataCore, ThingsContext

__version__ = VERSION

__all__ = [
    "VERSION",
    "APP_SCHEMA_VERSION",
    "Priority",
    "Scope",
    "ViewMode",
    "ThemeMode",
    "Task",
    "Tag",
    "Project",
    "TaskTemplate",
    "AppSettings",
    "AppBackup",
    "ViewContext",
    "EntityStore",
    "LoadState",
    "TaskEngine",
    "DataCore",
    "ThingsContext",
]
