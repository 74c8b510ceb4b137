"""Custom exception hierarchy for leakwatch.

Every error raised on purpose by the package derives from
``LeakDetectionError`` so callers can catch the whole family with a
single except clause.
"""


class LeakDetectionError(Exception):
    """Base exception for all leakwatch errors."""
    pass


# =============================================================================
# Analysis Errors
# =============================================================================

class AnalysisError(LeakDetectionError):
    """Static analysis of a single file failed."""

    def __init__(self, message: str, file_path: str | None = None):
        super().__init__(message)
        self.file_path = file_path


class AnalysisTimeoutError(AnalysisError):
    """Static analysis of a single file exceeded its time budget."""

    def __init__(self, message: str, file_path: str | None = None, timeout: float | None = None):
        super().__init__(message, file_path=file_path)
        self.timeout = timeout


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(LeakDetectionError):
    """A configuration value is outside its documented range."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


class RuntimeDetectionDisabledError(ConfigurationError):
    """Runtime analysis was requested while runtime detection is disabled."""
    pass


# =============================================================================
# Fix Errors
# =============================================================================

class FixGenerationError(LeakDetectionError):
    """A report does not carry enough location data to build a fix."""
    pass


class FixValidationError(LeakDetectionError):
    """A generated fix failed validation.

    Attributes:
        code: One of ``INVALID_SYNTAX``, ``FILE_NOT_FOUND`` or
            ``VALIDATION_ERROR``.
        fix_id: Identifier of the rejected fix, when known.
        suggestion: Optional hint for the reviewer.
    """

    INVALID_SYNTAX = "INVALID_SYNTAX"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        code: str = VALIDATION_ERROR,
        fix_id: str | None = None,
        suggestion: str | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.fix_id = fix_id
        self.suggestion = suggestion


# =============================================================================
# Snapshot Errors
# =============================================================================

class SnapshotError(LeakDetectionError):
    """Base exception for snapshot engine errors."""
    pass


class SnapshotNotFoundError(SnapshotError):
    """A snapshot id was referenced that is not in the snapshot map."""

    def __init__(self, snapshot_id: str):
        super().__init__(f"Snapshot not found: {snapshot_id}")
        self.snapshot_id = snapshot_id


class SnapshotImportError(SnapshotError):
    """Exported snapshot data could not be imported."""
    pass
