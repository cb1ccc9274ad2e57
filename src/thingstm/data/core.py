"""
DataCore - central wiring of storage, entity store, engine and persistence.

``ThingsContext`` is the unit a caller works with: entering it hydrates the store,
leaving it flushes any pending write-back.
"""
from typing import Callable, Optional

from thingstm.config import EngineConfig
from thingstm.engine import Clock, TaskEngine
from thingstm.logs import get_logger
from thingstm.models import utcnow
from thingstm.store import EntityStore
from .backup import BackupManager
from .io import DATA_JSON, DATA_YAML
from .persist import BACKUP_KEY, STORAGE_KEYS, PersistenceController
from .storage import FallbackStorage, FileStorage, StorageAdapter

log = get_logger("data")


class ThingsContext:
    """Main context object providing access to the engine and its persisted data."""

    def __init__(self, storage: StorageAdapter, clock: Clock = utcnow, debounce: float = 0.25,
                 store: Optional[EntityStore] = None):
        self.store = store or EntityStore()
        self.engine = TaskEngine(self.store, clock)
        self.persistence = PersistenceController(self.store, storage, key=BACKUP_KEY, debounce=debounce)

    async def __aenter__(self):
        """Async context manager entry - hydrate the store."""
        await self.load()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit - save all changes."""
        await self.close()

    async def load(self) -> bool:
        if self.store.is_loaded:
            return False
        return await self.persistence.hydrate()

    async def save_all(self):
        """Write any pending change to storage."""
        await self.persistence.flush()

    async def close(self):
        await self.save_all()
        self.persistence.close()

    async def reset_all_data(self, confirm: Callable[[], bool]) -> bool:
        """
        Clear tasks, projects and templates, restore initial tags and settings, and purge storage.

        ``confirm`` is the yes/no gate; nothing happens unless it returns True.
        """
        if not confirm():
            log.info("Reset cancelled")
            return False
        self.engine.reset()
        await self.persistence.purge()
        log.warning("All data reset")
        return True


class DataCore:
    """Builds contexts and backup managers from an EngineConfig."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig.from_env()

    def build_storage(self) -> FallbackStorage:
        data_type = DATA_YAML if self.config.storage_format == "yaml" else DATA_JSON
        primary = FileStorage(self.config.data_dir, data_type, keys=STORAGE_KEYS)
        local = FileStorage(self.config.local_dir, DATA_JSON, keys=STORAGE_KEYS)
        return FallbackStorage(primary, local)

    def load_context(self, clock: Clock = utcnow) -> ThingsContext:
        return ThingsContext(self.build_storage(), clock=clock, debounce=self.config.save_debounce)

    def get_backup_manager(self) -> BackupManager:
        return BackupManager(self.config.backup_dir)
