"""Configuration models, environment profiles and config-file loading.

A ``LeakDetectionConfig`` is passed explicitly to every detector; nothing
in leakwatch reads a module-level configuration. Range violations raise
``ConfigurationError`` listing every offending field. Values are never
clamped.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel, to_snake

from .analysis.patterns import LeakType, Severity
from .constants import (
    CONFIG_FILE_NAME,
    DEFAULT_EXCLUDE_PATTERNS,
    DEFAULT_FILE_TIMEOUT_SECONDS,
    DEFAULT_INCLUDE_PATTERNS,
    DEFAULT_MAX_FILE_SIZE,
    FIX_SETTLE_DELAY_SECONDS,
    GC_SETTLE_DELAY_SECONDS,
    LONG_RUNNING_TIMER_MINUTES,
    PROFILE_ENV_VAR,
)
from .core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

_RUNTIME_TYPES = frozenset({LeakType.MEMORY_ACCUMULATION, LeakType.CIRCULAR_REFERENCE})


class _Settings(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def range_errors(self) -> list[str]:
        return []

    @model_validator(mode="after")
    def check_ranges(self):
        errors = self.range_errors()
        if errors:
            raise ConfigurationError(
                f"Invalid {type(self).__name__}: {'; '.join(errors)}", errors
            )
        return self


class DetectionSettings(_Settings):
    """What to scan and which findings to keep."""

    enable_static_analysis: bool = True
    enable_runtime_detection: bool = True
    scan_patterns: list[str] = Field(default_factory=lambda: list(DEFAULT_INCLUDE_PATTERNS))
    exclude_patterns: list[str] = Field(
        default_factory=lambda: [*DEFAULT_EXCLUDE_PATTERNS, "**/build/**", "**/*.d.ts"]
    )
    severity_threshold: Severity = Severity.LOW
    confidence_threshold: float = 0.3
    max_file_size: int = Field(default=DEFAULT_MAX_FILE_SIZE, description="Bytes")
    timeout: float = Field(default=DEFAULT_FILE_TIMEOUT_SECONDS, description="Seconds per file")

    def range_errors(self) -> list[str]:
        errors = []
        if not 0.0 <= self.confidence_threshold <= 1.0:
            errors.append("confidence_threshold must be between 0 and 1")
        if self.max_file_size <= 0:
            errors.append("max_file_size must be positive")
        if self.timeout <= 0:
            errors.append("timeout must be positive")
        return errors


class FixSettings(_Settings):
    auto_apply_low_risk: bool = False
    require_review_for_high_risk: bool = True
    max_batch_size: int = 5
    dry_run: bool = True

    def range_errors(self) -> list[str]:
        if self.max_batch_size <= 0:
            return ["max_batch_size must be positive"]
        return []


class MonitoringSettings(_Settings):
    memory_threshold: float = Field(default=150.0, description="MB")
    retention_period: float = Field(default=3.0, description="Days")
    long_running_threshold_minutes: float = LONG_RUNNING_TIMER_MINUTES
    gc_settle_delay: float = GC_SETTLE_DELAY_SECONDS
    fix_settle_delay: float = FIX_SETTLE_DELAY_SECONDS

    def range_errors(self) -> list[str]:
        return [
            f"{name} must be positive"
            for name in (
                "memory_threshold",
                "retention_period",
                "long_running_threshold_minutes",
                "gc_settle_delay",
                "fix_settle_delay",
            )
            if getattr(self, name) <= 0
        ]


class RuleSettings(_Settings):
    """Per leak type switch and optional severity override."""

    enabled: bool = True
    severity: Severity | None = None


_SECTIONS: dict[str, type[_Settings]] = {
    "detection": DetectionSettings,
    "fixes": FixSettings,
    "monitoring": MonitoringSettings,
}


class LeakDetectionConfig(BaseModel):
    """Complete detector configuration.

    Attributes:
        detection: Scan scope and result filtering.
        fixes: Fix batching and review policy.
        monitoring: Runtime analysis and snapshot timing.
        rules: Per ``LeakType`` overrides; types without an entry use
            ``rule_for`` defaults.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    detection: DetectionSettings = Field(default_factory=DetectionSettings)
    fixes: FixSettings = Field(default_factory=FixSettings)
    monitoring: MonitoringSettings = Field(default_factory=MonitoringSettings)
    rules: dict[LeakType, RuleSettings] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def collect_range_errors(cls, data: Any) -> Any:
        # Validate every section up front so one error lists all offending fields
        if not isinstance(data, dict):
            return data
        errors: list[str] = []
        for name, model in _SECTIONS.items():
            raw = data.get(name)
            if not isinstance(raw, dict):
                continue
            try:
                model.model_validate(raw)
            except ConfigurationError as e:
                errors.extend(f"{name}.{error}" for error in e.errors)
            except ValidationError:
                # Type errors are reported by regular field validation
                continue
        if errors:
            raise ConfigurationError(f"Invalid configuration: {'; '.join(errors)}", errors)
        return data

    def rule_for(self, leak_type: LeakType) -> RuleSettings:
        rule = self.rules.get(leak_type)
        if rule is not None:
            return rule
        if leak_type in _RUNTIME_TYPES:
            return RuleSettings(enabled=self.detection.enable_runtime_detection)
        return RuleSettings()

    def is_enabled(self, leak_type: LeakType) -> bool:
        return self.rule_for(leak_type).enabled


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------

PROFILES: dict[str, dict[str, Any]] = {
    "development": {},
    "production": {
        "detection": {
            "enable_runtime_detection": False,
            "severity_threshold": "medium",
            "confidence_threshold": 0.7,
            "max_file_size": 1024 * 1024,
            "timeout": 30.0,
        },
        "fixes": {"max_batch_size": 3},
        "monitoring": {"memory_threshold": 200.0, "retention_period": 7.0},
    },
    "testing": {
        "detection": {
            "exclude_patterns": ["**/node_modules/**"],
            "confidence_threshold": 0.1,
            "max_file_size": 512 * 1024,
            "timeout": 10.0,
        },
        "fixes": {
            "auto_apply_low_risk": True,
            "require_review_for_high_risk": False,
            "max_batch_size": 20,
            "dry_run": False,
        },
        "monitoring": {"memory_threshold": 50.0, "retention_period": 1.0},
    },
}

_PROFILE_ALIASES = {"dev": "development", "prod": "production", "test": "testing"}


def resolve_profile_name(name: str | None = None) -> str:
    name = (name or os.environ.get(PROFILE_ENV_VAR) or "development").strip().lower()
    name = _PROFILE_ALIASES.get(name, name)
    if name not in PROFILES:
        raise ConfigurationError(
            f"Unknown configuration profile '{name}'",
            [f"profile must be one of {', '.join(sorted(PROFILES))}"],
        )
    return name


def get_profile(name: str | None = None) -> LeakDetectionConfig:
    """Return the configuration of profile *name* (``LEAKWATCH_ENV`` by default)."""
    return LeakDetectionConfig.model_validate(PROFILES[resolve_profile_name(name)])


def _snake_keys(data: dict[str, Any]) -> dict[str, Any]:
    return {to_snake(key): value for key, value in data.items()}


def merge_config(base: LeakDetectionConfig, overrides: dict[str, Any]) -> LeakDetectionConfig:
    """Shallow-merge *overrides* section by section over *base*.

    Keys may be camelCase (as written in the JSON file) or snake_case.

    Raises:
        ConfigurationError: If the merged configuration is invalid.
    """
    merged = base.model_dump(mode="json")
    for key, value in overrides.items():
        section = to_snake(key)
        if section in _SECTIONS and isinstance(value, dict):
            merged[section] = {**merged[section], **_snake_keys(value)}
        elif section == "rules" and isinstance(value, dict):
            merged["rules"] = {
                **merged["rules"],
                **{
                    rule_type: _snake_keys(rule) if isinstance(rule, dict) else rule
                    for rule_type, rule in value.items()
                },
            }
        else:
            logger.debug("Ignoring unknown configuration section %s", key)
    try:
        return LeakDetectionConfig.model_validate(merged)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in e.errors()
        ]
        raise ConfigurationError(f"Invalid configuration: {'; '.join(errors)}", errors) from e


def load_config(
    path: str | Path | None = None, profile: str | None = None
) -> LeakDetectionConfig:
    """Load the JSON config file over the selected profile.

    Args:
        path: Config file; defaults to ``memory-leak-detection.config.json``
            in the working directory. A missing file yields the profile.
        profile: Profile name; defaults to ``LEAKWATCH_ENV`` or development.

    Returns:
        The merged configuration.

    Raises:
        ConfigurationError: If the file is not valid JSON or a value is out
            of range.
    """
    base = get_profile(profile)
    config_path = Path(path) if path is not None else Path.cwd() / CONFIG_FILE_NAME
    if not config_path.is_file():
        logger.info("No configuration file at %s, using defaults", config_path)
        return base

    try:
        overrides = json.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to read configuration {config_path}: {e}") from e
    if not isinstance(overrides, dict):
        raise ConfigurationError(f"Configuration {config_path} must be a JSON object")

    config = merge_config(base, overrides)
    logger.info("Loaded configuration from %s", config_path)
    return config
