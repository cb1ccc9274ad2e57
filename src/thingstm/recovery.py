class ThingsError(Exception):
    """Base exception for all thingstm errors."""
    pass

class RecoverableError(ThingsError):
    """An error that can be recovered from without data loss."""
    pass

class FatalError(ThingsError):
    """An error that requires application termination or major intervention."""
    pass

class CorruptionError(FatalError):
    """Corrupted Data Error - from syntax errors in data formats, to just unknown data"""
    pass

class ImportDataError(CorruptionError):
    """Imported backup payload is not a valid snapshot."""
    pass

class FileOperationError(RecoverableError):
    """File operation failed but can be retried."""
    pass

class StorageUnavailableError(RecoverableError):
    """ Storage backend is not reachable, a fallback should be used """
    pass
