"""Tests for configuration profiles, validation and file loading."""

import json

import pytest

from leakwatch.analysis.patterns import LeakType, Severity
from leakwatch.config import (
    DetectionSettings,
    LeakDetectionConfig,
    get_profile,
    load_config,
    merge_config,
    resolve_profile_name,
)
from leakwatch.core.exceptions import ConfigurationError


@pytest.fixture(autouse=True)
def clear_profile_env(monkeypatch):
    monkeypatch.delenv("LEAKWATCH_ENV", raising=False)


class TestProfiles:
    def test_default_is_development(self):
        config = get_profile()

        assert config == LeakDetectionConfig()
        assert config.detection.severity_threshold is Severity.LOW
        assert config.detection.confidence_threshold == 0.3
        assert config.fixes.dry_run is True

    def test_production(self):
        config = get_profile("production")

        assert config.detection.enable_runtime_detection is False
        assert config.detection.severity_threshold is Severity.MEDIUM
        assert config.detection.confidence_threshold == 0.7
        assert config.fixes.max_batch_size == 3
        assert config.monitoring.retention_period == 7.0

    def test_testing(self):
        config = get_profile("testing")

        assert config.detection.exclude_patterns == ["**/node_modules/**"]
        assert config.fixes.auto_apply_low_risk is True
        assert config.fixes.dry_run is False

    def test_env_var_and_aliases(self, monkeypatch):
        monkeypatch.setenv("LEAKWATCH_ENV", "prod")

        assert resolve_profile_name() == "production"
        assert get_profile().detection.confidence_threshold == 0.7
        assert resolve_profile_name("Test") == "testing"

    def test_unknown_profile(self):
        with pytest.raises(ConfigurationError, match="Unknown configuration profile"):
            get_profile("staging")


class TestValidation:
    def test_out_of_range_is_rejected_not_clamped(self):
        with pytest.raises(ConfigurationError) as exc_info:
            DetectionSettings(confidence_threshold=1.5)
        assert exc_info.value.errors == ["confidence_threshold must be between 0 and 1"]

    def test_errors_are_collected_across_sections(self):
        with pytest.raises(ConfigurationError) as exc_info:
            LeakDetectionConfig.model_validate(
                {
                    "detection": {"confidence_threshold": -0.1, "timeout": 0},
                    "fixes": {"max_batch_size": 0},
                    "monitoring": {"memory_threshold": -5},
                }
            )

        assert exc_info.value.errors == [
            "detection.confidence_threshold must be between 0 and 1",
            "detection.timeout must be positive",
            "fixes.max_batch_size must be positive",
            "monitoring.memory_threshold must be positive",
        ]

    def test_runtime_rules_follow_runtime_switch(self):
        config = get_profile("production")

        assert config.is_enabled(LeakType.MEMORY_ACCUMULATION) is False
        assert config.is_enabled(LeakType.UNCLEANED_INTERVAL) is True


class TestMerge:
    def test_camel_case_overrides(self):
        config = merge_config(
            LeakDetectionConfig(),
            {"detection": {"confidenceThreshold": 0.5}, "fixes": {"maxBatchSize": 2}},
        )

        assert config.detection.confidence_threshold == 0.5
        assert config.detection.severity_threshold is Severity.LOW
        assert config.fixes.max_batch_size == 2

    def test_rule_overrides(self):
        config = merge_config(
            LeakDetectionConfig(),
            {"rules": {"uncleaned-timeout": {"enabled": False}, "uncleaned-interval": {"severity": "critical"}}},
        )

        assert config.is_enabled(LeakType.UNCLEANED_TIMEOUT) is False
        assert config.rule_for(LeakType.UNCLEANED_INTERVAL).severity is Severity.CRITICAL

    def test_type_errors_become_configuration_errors(self):
        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            merge_config(LeakDetectionConfig(), {"detection": {"timeout": "soon"}})

    def test_unknown_sections_are_ignored(self):
        assert merge_config(LeakDetectionConfig(), {"telemetry": {"on": True}}) == LeakDetectionConfig()


class TestLoadConfig:
    def test_missing_file_returns_profile(self, tmp_path):
        config = load_config(tmp_path / "absent.json", profile="production")
        assert config == get_profile("production")

    def test_file_overrides_profile(self, tmp_path):
        path = tmp_path / "memory-leak-detection.config.json"
        path.write_text(
            json.dumps({"detection": {"severityThreshold": "high", "maxFileSize": 4096}}),
            encoding="utf-8",
        )

        config = load_config(path, profile="testing")

        assert config.detection.severity_threshold is Severity.HIGH
        assert config.detection.max_file_size == 4096
        assert config.detection.confidence_threshold == 0.1

    def test_default_path_is_working_directory(self, tmp_path, monkeypatch):
        (tmp_path / "memory-leak-detection.config.json").write_text(
            json.dumps({"fixes": {"dryRun": False}}), encoding="utf-8"
        )
        monkeypatch.chdir(tmp_path)

        assert load_config().fixes.dry_run is False

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="Failed to read configuration"):
            load_config(path)

    def test_non_object(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(ConfigurationError, match="must be a JSON object"):
            load_config(path)

    def test_out_of_range_value_in_file(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"detection": {"confidenceThreshold": 2}}), encoding="utf-8")

        with pytest.raises(ConfigurationError) as exc_info:
            load_config(path)
        assert "detection.confidence_threshold must be between 0 and 1" in exc_info.value.errors
