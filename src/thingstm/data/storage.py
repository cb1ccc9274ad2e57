"""
Storage adapters: asynchronous key -> JSON blob persistence.

The engine only relies on the ``StorageAdapter`` protocol. ``FallbackStorage`` chains a
primary backend with a local one and never raises to its caller.
"""
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Protocol, Set, Union

from thingstm.logs import get_logger
from thingstm.recovery import CorruptionError, StorageUnavailableError
from .io import DATA_JSON, DATA_YAML, SUFFIXES, atomic_write, load_data_file

log = get_logger("data.storage")


class StorageAdapter(Protocol):
    async def initialize(self) -> bool: ...
    async def load(self, key: str) -> Any: ...
    async def save(self, key: str, blob: str) -> None: ...
    async def clear(self) -> None: ...


class MemoryStorage:
    """In-process key/value store holding JSON strings."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.data: Dict[str, str] = dict(initial or {})
        self.saves = 0

    async def initialize(self) -> bool:
        return True

    async def load(self, key: str) -> Any:
        raw = self.data.get(key)
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise CorruptionError(f"Stored value for '{key}' is not JSON: {e}") from e

    async def save(self, key: str, blob: str) -> None:
        self.data[key] = blob
        self.saves += 1

    async def clear(self) -> None:
        self.data.clear()


class FileStorage:
    """
    One file per key inside a directory, written atomically as JSON or YAML.

    The directory may hold other files. ``clear`` removes only the files of keys passed as
    ``keys`` or read and written through this adapter.
    """

    def __init__(self, directory: Union[Path, str], data_type: int = DATA_JSON,
                 keys: Iterable[str] = ()):
        if data_type not in SUFFIXES:
            raise ValueError(f"Unsupported data type: {data_type}")
        self.directory = Path(directory)
        self.data_type = data_type
        self.available = False
        self.keys: Set[str] = set(keys)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}{SUFFIXES[self.data_type]}"

    async def initialize(self) -> bool:
        try:
            await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
            self.available = os.access(self.directory, os.W_OK)
        except OSError as e:
            log.warning(f"Storage directory {self.directory} unavailable: {e}")
            self.available = False
        return self.available

    async def load(self, key: str) -> Any:
        self.keys.add(key)
        return await asyncio.to_thread(load_data_file, self.data_type, self.path_for(key))

    async def save(self, key: str, blob: str) -> None:
        if not self.available:
            raise StorageUnavailableError(f"Storage directory {self.directory} is not writable")
        data: Any = blob
        if self.data_type == DATA_YAML:
            data = json.loads(blob)
        self.keys.add(key)
        await asyncio.to_thread(atomic_write, self.data_type, self.path_for(key), data, True)

    async def clear(self) -> None:
        def _purge():
            for key in sorted(self.keys):
                path = self.path_for(key)
                if path.is_file():
                    path.unlink()
                    log.debug(f"Removed {path}")
        await asyncio.to_thread(_purge)


class FallbackStorage:
    """
    Primary backend with silent fallback to local persistence.

    Loads prefer the primary and fall through on absence or error. Saves go to the
    primary when it is available and always to the local copy. Failures are logged.
    """

    def __init__(self, primary: StorageAdapter, local: Optional[StorageAdapter] = None):
        self.primary = primary
        self.local = local
        self.primary_available = False

    async def initialize(self) -> bool:
        try:
            self.primary_available = bool(await self.primary.initialize())
        except Exception as e:
            log.warning(f"Primary storage failed to initialize: {e}")
            self.primary_available = False
        if self.local is not None:
            try:
                await self.local.initialize()
            except Exception as e:
                log.warning(f"Local storage failed to initialize: {e}")
        log.info("Primary storage connected" if self.primary_available else "Using local storage only")
        return self.primary_available

    async def load(self, key: str) -> Any:
        if self.primary_available:
            try:
                value = await self.primary.load(key)
                if value is not None:
                    log.debug(f"Loaded '{key}' from primary storage")
                    return value
            except Exception as e:
                log.warning(f"Primary load of '{key}' failed, trying local storage: {e}")
        if self.local is None:
            return None
        try:
            return await self.local.load(key)
        except Exception as e:
            log.warning(f"Local load of '{key}' failed: {e}")
            return None

    async def save(self, key: str, blob: str) -> None:
        if self.primary_available:
            try:
                await self.primary.save(key, blob)
                log.debug(f"Saved '{key}' to primary storage")
            except Exception as e:
                log.warning(f"Primary save of '{key}' failed, keeping local copy: {e}")
        if self.local is not None:
            try:
                await self.local.save(key, blob)
            except Exception as e:
                log.warning(f"Local save of '{key}' failed: {e}")

    async def clear(self) -> None:
        for name, backend in (("primary", self.primary), ("local", self.local)):
            if backend is None:
                continue
            try:
                await backend.clear()
            except Exception as e:
                log.warning(f"Clearing {name} storage failed: {e}")
