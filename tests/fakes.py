"""Storage doubles for persistence tests."""

import asyncio
from typing import Any, Dict, List, Optional

from thingstm.data.storage import MemoryStorage
from thingstm.recovery import StorageUnavailableError


class FailingStorage:
    """Every operation raises; used to check failures never reach the caller."""

    def __init__(self, initialize_ok: bool = True):
        self.initialize_ok = initialize_ok
        self.save_attempts = 0

    async def initialize(self) -> bool:
        if not self.initialize_ok:
            raise StorageUnavailableError("backend offline")
        return True

    async def load(self, key: str) -> Any:
        raise StorageUnavailableError(f"cannot load {key}")

    async def save(self, key: str, blob: str) -> None:
        self.save_attempts += 1
        raise StorageUnavailableError(f"cannot save {key}")

    async def clear(self) -> None:
        raise StorageUnavailableError("cannot clear")


class RecordingStorage(MemoryStorage):
    """MemoryStorage that keeps every saved blob and can delay saves."""

    def __init__(self, initial: Optional[Dict[str, str]] = None, delay: float = 0.0):
        super().__init__(initial)
        self.delay = delay
        self.history: List[str] = []

    async def save(self, key: str, blob: str) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.history.append(blob)
        await super().save(key, blob)
