"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for quota configs.
"""

import os
import tempfile

import pytest
import yaml

from solve_quota.config.loader import (
    FeatureQuotaConfig,
    QuotaConfig,
    default_quota_config,
    load_quota_config
)
from solve_quota.core.errors import InputError


class TestConfigLoading:
    """Test configuration loading and validation."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "quota.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a complete configuration loads correctly."""
        config_data = {
            "features": {
                "solve": {"daily_cap": 7, "estimated_cost": 0.004},
                "quiz": {"daily_cap": 2}
            },
            "timezone": {"utc_offset_hours": -5},
            "cache": {"usage_ttl_seconds": 10, "entitlement_ttl_seconds": 30},
            "storage": {"db_path": "/tmp/quota.db"}
        }

        config = load_quota_config(self._write_config(config_data))

        assert config.get_feature_config("solve") == FeatureQuotaConfig(daily_cap=7, estimated_cost=0.004)
        assert config.get_feature_config("quiz").estimated_cost == 0.0
        assert config.utc_offset_hours == -5
        assert config.usage_cache_ttl_seconds == 10.0
        assert config.entitlement_cache_ttl_seconds == 30.0
        assert config.db_path == "/tmp/quota.db"

    def test_optional_sections_default(self):
        """Only features are required."""
        config = load_quota_config(self._write_config({"features": {"solve": {"daily_cap": 5}}}))

        assert config.utc_offset_hours == -6
        assert config.usage_cache_ttl_seconds == 15.0
        assert config.entitlement_cache_ttl_seconds == 15.0

    def test_default_config(self):
        """Reference values: 5 solves a day at UTC-6."""
        config = default_quota_config()

        assert config.get_feature_config("solve").daily_cap == 5
        assert config.get_feature_config("quiz").daily_cap == 3
        assert config.get_feature_config("transcribe").daily_cap == 3
        assert config.utc_offset_hours == -6

    def test_unknown_feature_lookup(self):
        with pytest.raises(InputError, match="Unknown feature"):
            default_quota_config().get_feature_config("essay")

    def test_missing_file_raises_error(self):
        """Test that missing config file raises error."""
        with pytest.raises(FileNotFoundError, match="Quota config file not found"):
            load_quota_config("nonexistent.yaml")

    def test_empty_config_raises_error(self):
        """Test that empty config file raises error."""
        config_path = self._write_config({})

        with pytest.raises(ValueError, match="Configuration file is empty"):
            load_quota_config(config_path)

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises error."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w') as f:
            f.write("invalid: yaml: content: [")

        with pytest.raises(yaml.YAMLError):
            load_quota_config(config_path)

    def test_missing_features_raises_error(self):
        config_path = self._write_config({"timezone": {"utc_offset_hours": -6}})

        with pytest.raises(ValueError, match="Missing required 'features' section"):
            load_quota_config(config_path)

    def test_unknown_top_level_key(self):
        config_path = self._write_config({"features": {"solve": {"daily_cap": 5}}, "budget": {}})

        with pytest.raises(ValueError, match="Unknown configuration keys"):
            load_quota_config(config_path)

    def test_unknown_feature_key(self):
        config_path = self._write_config({"features": {"solve": {"daily_cap": 5, "monthly_cap": 100}}})

        with pytest.raises(ValueError, match="Unknown keys in features.solve"):
            load_quota_config(config_path)

    def test_unknown_section_key(self):
        config_path = self._write_config({
            "features": {"solve": {"daily_cap": 5}},
            "cache": {"ttl": 5}
        })

        with pytest.raises(ValueError, match="Unknown keys in cache"):
            load_quota_config(config_path)

    @pytest.mark.parametrize("cap", [0, -1, 2.5, "5", True])
    def test_invalid_daily_cap(self, cap):
        config_path = self._write_config({"features": {"solve": {"daily_cap": cap}}})

        with pytest.raises(ValueError, match="daily_cap"):
            load_quota_config(config_path)

    def test_missing_daily_cap(self):
        config_path = self._write_config({"features": {"solve": {"estimated_cost": 0.1}}})

        with pytest.raises(ValueError, match="Missing required 'daily_cap'"):
            load_quota_config(config_path)

    def test_negative_cost(self):
        config_path = self._write_config({"features": {"solve": {"daily_cap": 5, "estimated_cost": -1}}})

        with pytest.raises(ValueError, match="estimated_cost"):
            load_quota_config(config_path)

    def test_offset_out_of_range(self):
        config_path = self._write_config({
            "features": {"solve": {"daily_cap": 5}},
            "timezone": {"utc_offset_hours": 20}
        })

        with pytest.raises(ValueError, match="utc_offset_hours"):
            load_quota_config(config_path)

    def test_non_integer_offset(self):
        config_path = self._write_config({
            "features": {"solve": {"daily_cap": 5}},
            "timezone": {"utc_offset_hours": -5.5}
        })

        with pytest.raises(ValueError, match="must be an integer"):
            load_quota_config(config_path)

    def test_feature_must_be_mapping(self):
        config_path = self._write_config({"features": {"solve": 5}})

        with pytest.raises(ValueError, match="Feature 'solve' must be a dictionary"):
            load_quota_config(config_path)


class TestConfigDataclasses:
    """Test dataclass validation."""

    def test_feature_cap_must_be_positive(self):
        with pytest.raises(ValueError, match="daily_cap must be >= 1"):
            FeatureQuotaConfig(daily_cap=0)

    def test_config_needs_features(self):
        with pytest.raises(ValueError, match="at least one feature"):
            QuotaConfig(features={})

    def test_negative_ttl(self):
        with pytest.raises(ValueError, match="usage_cache_ttl_seconds"):
            QuotaConfig(usage_cache_ttl_seconds=-1)
