"""Error types raised inside the storage layer.

None of these cross the public cache API: the store catches them at its
boundary, logs them, and answers like a cold cache.
"""


class CacheError(Exception):
    """Base class for cache errors."""
    pass


class StorageUnavailable(CacheError):
    """The durable store could not be read from or written to."""

    def __init__(self, operation: str, location: str, cause: Exception = None):
        self.operation = operation
        self.location = location
        self.cause = cause
        super().__init__(f"{operation} failed for {location}: {cause}")


class MalformedRecord(CacheError):
    """A stored record could not be decoded or is missing required fields."""

    def __init__(self, location: str, reason: str):
        self.location = location
        self.reason = reason
        super().__init__(f"Malformed record at {location}: {reason}")
