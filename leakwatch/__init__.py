"""Resource-leak detection for JavaScript/TypeScript UI code."""

from .config import LeakDetectionConfig, get_profile, load_config
from .core.exceptions import LeakDetectionError
from .detector import MemoryLeakDetector, ScanOptions

__version__ = "0.1.0"

__all__ = [
    "LeakDetectionConfig",
    "LeakDetectionError",
    "MemoryLeakDetector",
    "ScanOptions",
    "get_profile",
    "load_config",
]
