"""
PersistenceController - hydration and write-back of the entity store.

Hydration runs once: UNLOADED -> LOADING -> LOADED. After that every collection change
schedules a debounced write of one complete snapshot through the storage adapter.
Failures on either path are logged and never reach the caller.
"""
import asyncio
from typing import Any, List, Optional

from pydantic import TypeAdapter, ValidationError

from thingstm.logs import get_logger
from thingstm.models import PartialBackup, Task, TaskTemplate
from thingstm.store import EntityStore, LoadState
from .storage import StorageAdapter

log = get_logger("data.persist")

BACKUP_KEY = "things-pro-backup"
LEGACY_TASKS_KEY = "things-tasks-v4"
LEGACY_TEMPLATES_KEY = "things-templates-v1"
STORAGE_KEYS = (BACKUP_KEY, LEGACY_TASKS_KEY, LEGACY_TEMPLATES_KEY)

_TASK_LIST = TypeAdapter(List[Task])
_TEMPLATE_LIST = TypeAdapter(List[TaskTemplate])


class PersistenceController:
    def __init__(self, store: EntityStore, storage: StorageAdapter,
                 key: str = BACKUP_KEY, debounce: float = 0.25):
        self.store = store
        self.storage = storage
        self.key = key
        self.debounce = max(0.0, debounce)
        self.primary_available = False
        self._dirty = False
        self._handle: Optional[asyncio.TimerHandle] = None
        self._inflight: Optional[asyncio.Future] = None
        self._unsubscribe = store.subscribe(self._on_change)

    def close(self):
        self._cancel_timer()
        self._unsubscribe()

    @property
    def dirty(self) -> bool:
        return self._dirty

    # ---- hydration ----

    async def _read(self, key: str) -> Any:
        try:
            return await self.storage.load(key)
        except Exception as e:
            log.warning(f"Reading '{key}' failed, treating as no data: {e}")
            return None

    def _parse_backup(self, value: Any) -> Optional[PartialBackup]:
        if not isinstance(value, dict):
            if value is not None:
                log.warning(f"Stored snapshot is a {type(value).__name__}, expected an object")
            return None
        try:
            backup = PartialBackup.model_validate(value)
        except ValidationError as e:
            log.warning(f"Stored snapshot is invalid, ignoring it: {e}")
            return None
        return None if backup.is_empty() else backup

    async def _read_legacy(self) -> Optional[PartialBackup]:
        tasks = templates = None
        raw_tasks = await self._read(LEGACY_TASKS_KEY)
        if raw_tasks is not None:
            try:
                tasks = _TASK_LIST.validate_python(raw_tasks)
            except ValidationError as e:
                log.warning(f"Legacy task list is invalid, ignoring it: {e}")
        raw_templates = await self._read(LEGACY_TEMPLATES_KEY)
        if raw_templates is not None:
            try:
                templates = _TEMPLATE_LIST.validate_python(raw_templates)
            except ValidationError as e:
                log.warning(f"Legacy template list is invalid, ignoring it: {e}")
        if tasks is None and templates is None:
            return None
        log.info("Hydrating from legacy keys")
        return PartialBackup(tasks=tasks, templates=templates)

    async def hydrate(self) -> bool:
        """
        Load the store from storage exactly once.

        Returns True when any data was found. A missing or unreadable snapshot falls back
        to the legacy keys, then to the store's defaults.
        """
        if self.store.load_state != LoadState.UNLOADED:
            log.warning(f"Hydration skipped, store is already {self.store.load_state.value}")
            return False

        self.store.begin_loading()
        found = False
        try:
            try:
                self.primary_available = bool(await self.storage.initialize())
            except Exception as e:
                log.warning(f"Storage initialization failed: {e}")
                self.primary_available = False

            backup = self._parse_backup(await self._read(self.key))
            if backup is None:
                backup = await self._read_legacy()
            if backup is not None:
                self.store.apply_backup(backup)
                self.store.reconcile_hierarchy()
                found = True
        finally:
            self.store.mark_loaded()
        return found

    # ---- write-back ----

    def _cancel_timer(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _on_change(self, collection: str):
        # Never write defaults over durable state before hydration completes
        if self.store.load_state != LoadState.LOADED:
            return
        self._dirty = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the change is written on the next flush()
            return
        self._cancel_timer()
        self._handle = loop.call_later(self.debounce, self._spawn_write)

    def _spawn_write(self):
        self._handle = None
        previous = self._inflight
        self._inflight = asyncio.ensure_future(self._chained_write(previous))

    async def _chained_write(self, previous: Optional[asyncio.Future]):
        # Writes land in the order they were scheduled
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        await self._write()

    async def _write(self):
        if not self._dirty:
            return
        self._dirty = False
        try:
            blob = self.store.snapshot().to_json()
            await self.storage.save(self.key, blob)
            log.debug(f"Snapshot written to '{self.key}'")
        except Exception as e:
            log.error(f"Write-back of '{self.key}' failed: {e}")

    async def flush(self):
        """Write any pending change now and wait for in-flight writes."""
        self._cancel_timer()
        if self._inflight is not None:
            inflight, self._inflight = self._inflight, None
            try:
                await inflight
            except Exception as e:
                log.error(f"Pending write-back failed: {e}")
        if self.store.load_state == LoadState.LOADED:
            await self._write()

    async def purge(self):
        """Drop pending writes and clear persisted storage."""
        self._cancel_timer()
        if self._inflight is not None:
            inflight, self._inflight = self._inflight, None
            try:
                await inflight
            except Exception as e:
                log.error(f"Pending write-back failed: {e}")
        self._dirty = False
        try:
            await self.storage.clear()
        except Exception as e:
            log.error(f"Purging storage failed: {e}")
