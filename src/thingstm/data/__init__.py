"""
Data management submodule providing storage, persistence and backup operations.
"""

# Import the main concierge classes
from .core import DataCore, ThingsContext
from .backup import BackupManager
# Import the building blocks for direct access if needed
from .persist import PersistenceController
from .storage import FallbackStorage, FileStorage, MemoryStorage, StorageAdapter

# Define what gets imported with `from data import *`
__all__ = [
    'DataCore',
    'ThingsContext',
    'BackupManager',
    'PersistenceController',
    'FallbackStorage',
    'FileStorage',
    'MemoryStorage',
    'StorageAdapter',
]
