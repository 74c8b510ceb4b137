"""Constants and default thresholds for leakwatch.

This module centralizes the magic numbers used across the detector, the
fix generator and the snapshot engine. Values that operators commonly
tune can be overridden through environment variables; everything else is
a documented default that callers override through configuration.
"""

import os

# =============================================================================
# Scan Cache
# =============================================================================

# Scan results are reused for 5 minutes when the file content is unchanged
DEFAULT_SCAN_CACHE_TTL_SECONDS = int(os.environ.get("LEAKWATCH_CACHE_TTL", 300))

# Maximum number of cached file results
SCAN_CACHE_MAX_SIZE = 2000


# =============================================================================
# File Scanning
# =============================================================================

# Files above this size are skipped (2MB)
DEFAULT_MAX_FILE_SIZE = 2 * 1024 * 1024

# Per-file analysis timeout in seconds
DEFAULT_FILE_TIMEOUT_SECONDS = float(os.environ.get("LEAKWATCH_FILE_TIMEOUT", 60))

# Upper bound on files analyzed by a single project scan
DEFAULT_MAX_FILES = 1000

DEFAULT_INCLUDE_PATTERNS = ("**/*.ts", "**/*.tsx", "**/*.js", "**/*.jsx")

DEFAULT_EXCLUDE_PATTERNS = (
    "**/node_modules/**",
    "**/dist/**",
    "**/*.test.*",
    "**/*.spec.*",
)

# Maximum characters kept in a report's code snippet
CODE_SNIPPET_MAX_LENGTH = 200

# Name of the JSON configuration file looked up in the working directory
CONFIG_FILE_NAME = "memory-leak-detection.config.json"

# Environment variable selecting the configuration profile
PROFILE_ENV_VAR = "LEAKWATCH_ENV"


# =============================================================================
# Snapshot Engine
# =============================================================================

# Delay after a forced collection before sampling (seconds)
GC_SETTLE_DELAY_SECONDS = 0.1

# Delay between running a test function and the "after" snapshot (seconds)
FIX_SETTLE_DELAY_SECONDS = 1.0

# Growth above which a comparison reports a memory leak (MB)
LEAK_MEMORY_DELTA_MB = 5.0

# Leak severity buckets (MB)
MODERATE_LEAK_MB = 20.0
SEVERE_LEAK_MB = 50.0

# CPU time growth between snapshots flagged as a performance regression (ms)
PERFORMANCE_REGRESSION_CPU_MS = 10.0

# Snapshots older than this are dropped by clear_old_snapshots (hours)
SNAPSHOT_MAX_AGE_HOURS = 24

# Snapshot pairs closer than this produce less confident regressions (ms)
MIN_RELIABLE_INTERVAL_MS = 1000.0


# =============================================================================
# Regression Thresholds
# =============================================================================

DEFAULT_MEMORY_GROWTH_THRESHOLD_MB = 10.0
DEFAULT_RESOURCE_GROWTH_THRESHOLD = 5
DEFAULT_PERFORMANCE_DEGRADATION_PERCENT = 20.0


# =============================================================================
# Runtime Monitoring
# =============================================================================

# Tracked timers older than this are reported as long-running (minutes)
LONG_RUNNING_TIMER_MINUTES = 5.0

# Active timer counts above which runtime analysis recommends a review
MAX_ACTIVE_INTERVALS = 5
MAX_ACTIVE_TIMEOUTS = 10

# Runtime reports for long-running timers
RUNTIME_TIMER_CONFIDENCE = 0.8
RUNTIME_TIMER_RULE_ID = "runtime-long-timer"

# Memory change between the last two snapshots treated as a trend (MB)
MEMORY_TREND_TOLERANCE_MB = 1.0
