"""
Custom Exceptions for the Nyumba cache and search structures.

Provides a small hierarchy so callers can catch broad cache failures
while the cache itself recovers from the storage-level ones.
"""


class NyumbaCacheError(Exception):
    """
    Base exception for cache and index failures.

    Attributes:
        message: Human-readable error description
        details: Additional context about the failure
    """

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({detail_str})"
        return self.message


class CacheConfigError(NyumbaCacheError, ValueError):
    """
    Invalid construction parameter or configuration value.

    Fatal to the instance being built only.
    """

    def __init__(self, field_name: str, value, reason: str):
        message = f"{field_name} {reason}, got {value!r}"
        super().__init__(message, {"field": field_name})
        self.field_name = field_name
        self.value = value


class StorageQuotaError(NyumbaCacheError, OSError):
    """
    Key/value store has no room for a write.

    Attributes:
        required_bytes: Size of the rejected write
        available_bytes: Space left in the store
    """

    def __init__(self, required_bytes: int, available_bytes: int):
        message = (
            f"Insufficient store space: need {required_bytes} bytes, "
            f"available {available_bytes} bytes"
        )
        super().__init__(
            message,
            {"required_bytes": required_bytes, "available_bytes": available_bytes},
        )
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes


class CorruptEntryError(NyumbaCacheError):
    """Stored cache envelope could not be decoded."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Corrupt cache entry '{key}': {reason}", {"key": key})
        self.key = key
