"""
Configuration management and loading.

Handles daily caps, cost estimates, the usage-day timezone and cache TTLs.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict

import yaml

from solve_quota.core.calendar import DEFAULT_UTC_OFFSET_HOURS
from solve_quota.core.errors import InputError
from solve_quota.storage.db import DEFAULT_DB_PATH

DEFAULT_CACHE_TTL_SECONDS = 15.0


@dataclass(frozen=True)
class FeatureQuotaConfig:
    """Free-tier allowance for one metered feature."""
    daily_cap: int
    estimated_cost: float = 0.0

    def __post_init__(self):
        """Validate cap and cost values."""
        if isinstance(self.daily_cap, bool) or not isinstance(self.daily_cap, int):
            raise ValueError("daily_cap must be an integer")
        if self.daily_cap < 1:
            raise ValueError("daily_cap must be >= 1")
        if self.estimated_cost < 0:
            raise ValueError("estimated_cost must be >= 0")


def _default_features() -> Dict[str, FeatureQuotaConfig]:
    return {
        "solve": FeatureQuotaConfig(daily_cap=5, estimated_cost=0.004),
        "quiz": FeatureQuotaConfig(daily_cap=3, estimated_cost=0.005),
        "transcribe": FeatureQuotaConfig(daily_cap=3, estimated_cost=0.006),
    }


@dataclass(frozen=True)
class QuotaConfig:
    """Complete quota configuration."""
    features: Dict[str, FeatureQuotaConfig] = field(default_factory=_default_features)
    utc_offset_hours: int = DEFAULT_UTC_OFFSET_HOURS
    usage_cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    entitlement_cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate offsets and TTLs."""
        if not self.features:
            raise ValueError("at least one feature must be configured")
        if not -12 <= self.utc_offset_hours <= 14:
            raise ValueError("utc_offset_hours must be between -12 and 14")
        if self.usage_cache_ttl_seconds < 0:
            raise ValueError("usage_cache_ttl_seconds must be >= 0")
        if self.entitlement_cache_ttl_seconds < 0:
            raise ValueError("entitlement_cache_ttl_seconds must be >= 0")

    def get_feature_config(self, feature: str) -> FeatureQuotaConfig:
        """Get the allowance for a feature.

        Raises:
            InputError: If the feature is not metered
        """
        try:
            return self.features[feature]
        except KeyError:
            raise InputError(f"Unknown feature '{feature}'. Use one of: {sorted(self.features)}")


def default_quota_config() -> QuotaConfig:
    """Reference configuration: 5 solves, 3 quizzes, 3 transcriptions a day, UTC-6."""
    return QuotaConfig()


def load_quota_config(path: str) -> QuotaConfig:
    """Load and validate quota configuration from YAML file.

    Strict validation ensures no silent misconfigurations that could
    hand out free usage or lock out paying users.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated QuotaConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Quota config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")

    allowed_top_keys = {'features', 'timezone', 'cache', 'storage'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    # Features are required; everything else falls back to the reference values
    if 'features' not in raw_config:
        raise ValueError("Missing required 'features' section")

    features_data = raw_config['features']
    if not isinstance(features_data, dict) or not features_data:
        raise ValueError("'features' must be a non-empty dictionary")

    features = {}
    for feature_name, feature_data in features_data.items():
        if not isinstance(feature_data, dict):
            raise ValueError(f"Feature '{feature_name}' must be a dictionary")
        features[str(feature_name)] = _parse_feature_config(feature_data, f"features.{feature_name}")

    timezone_data = _section(raw_config, 'timezone', {'utc_offset_hours'})
    cache_data = _section(raw_config, 'cache', {'usage_ttl_seconds', 'entitlement_ttl_seconds'})
    storage_data = _section(raw_config, 'storage', {'db_path'})

    offset = timezone_data.get('utc_offset_hours', DEFAULT_UTC_OFFSET_HOURS)
    if isinstance(offset, bool) or not isinstance(offset, int):
        raise ValueError("'timezone.utc_offset_hours' must be an integer")

    return QuotaConfig(
        features=features,
        utc_offset_hours=offset,
        usage_cache_ttl_seconds=_number(cache_data, 'usage_ttl_seconds', DEFAULT_CACHE_TTL_SECONDS, "cache"),
        entitlement_cache_ttl_seconds=_number(
            cache_data, 'entitlement_ttl_seconds', DEFAULT_CACHE_TTL_SECONDS, "cache"
        ),
        db_path=str(storage_data.get('db_path', DEFAULT_DB_PATH))
    )


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict:
    """Return an optional section, rejecting unknown keys."""
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")
    return data


def _number(data: Dict, key: str, default: float, path: str) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'{key}' in {path} must be a number")
    return float(value)


def _parse_feature_config(data: Dict, path: str) -> FeatureQuotaConfig:
    """Parse and validate a feature's allowance.

    Args:
        data: Feature configuration data
        path: Path for error messages

    Returns:
        Validated FeatureQuotaConfig

    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {'daily_cap', 'estimated_cost'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    if 'daily_cap' not in data:
        raise ValueError(f"Missing required 'daily_cap' in {path}")

    daily_cap = data['daily_cap']
    if isinstance(daily_cap, bool) or not isinstance(daily_cap, int) or daily_cap < 1:
        raise ValueError(f"'daily_cap' in {path} must be an integer >= 1")

    estimated_cost = data.get('estimated_cost', 0.0)
    if isinstance(estimated_cost, bool) or not isinstance(estimated_cost, (int, float)) or estimated_cost < 0:
        raise ValueError(f"'estimated_cost' in {path} must be >= 0")

    return FeatureQuotaConfig(
        daily_cap=daily_cap,
        estimated_cost=float(estimated_cost)
    )
