"""Core utilities: scan cache and exception hierarchy."""

from .cache import ScanCache, TTLCache
from .exceptions import (
    AnalysisError,
    AnalysisTimeoutError,
    ConfigurationError,
    FixGenerationError,
    FixValidationError,
    LeakDetectionError,
    RuntimeDetectionDisabledError,
    SnapshotError,
    SnapshotImportError,
    SnapshotNotFoundError,
)

__all__ = [
    # Cache
    "ScanCache",
    "TTLCache",
    # Exceptions
    "LeakDetectionError",
    "AnalysisError",
    "AnalysisTimeoutError",
    "ConfigurationError",
    "RuntimeDetectionDisabledError",
    "FixGenerationError",
    "FixValidationError",
    "SnapshotError",
    "SnapshotNotFoundError",
    "SnapshotImportError",
]
