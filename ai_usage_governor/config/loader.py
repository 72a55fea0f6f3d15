"""
Configuration management and loading.

Handles quota limits, provider endpoints and storage settings.
"""

from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

import yaml

from ai_usage_governor.core.features import Feature
from ai_usage_governor.storage.db import DEFAULT_DB_PATH

DEFAULT_PROVIDER_TIMEOUT = 30.0
DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 2000


@dataclass(frozen=True)
class QuotaConfig:
    """Daily per-feature limits and the global request throttle."""
    limits: Mapping[Feature, int]
    requests_per_minute: int
    enabled: bool = True

    def __post_init__(self):
        """Validate that every feature has a positive limit."""
        object.__setattr__(self, "limits", MappingProxyType(dict(self.limits)))
        missing = [f.value for f in Feature if f not in self.limits]
        if missing:
            raise ValueError(f"Missing daily limit for features: {missing}")
        for feature, limit in self.limits.items():
            if not isinstance(limit, int) or isinstance(limit, bool) or limit <= 0:
                raise ValueError(f"daily limit for {feature.value} must be a positive integer")
        if (not isinstance(self.requests_per_minute, int)
                or isinstance(self.requests_per_minute, bool)
                or self.requests_per_minute <= 0):
            raise ValueError("requests_per_minute must be a positive integer")

    @property
    def min_interval_seconds(self) -> float:
        """Minimum gap between two accepted requests of one user."""
        return 60.0 / self.requests_per_minute

    def limit_for(self, feature: Feature) -> int:
        return self.limits[feature]


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for one OpenAI-compatible text-generation endpoint."""
    name: str
    model: str
    base_url: Optional[str] = None
    api_key_env: Optional[str] = None
    timeout: float = DEFAULT_PROVIDER_TIMEOUT
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS

    def __post_init__(self):
        """Validate provider values."""
        if not self.name or not self.name.strip():
            raise ValueError("provider name is required")
        if not self.model or not self.model.strip():
            raise ValueError(f"provider '{self.name}' requires a model")
        if self.timeout <= 0:
            raise ValueError(f"timeout for provider '{self.name}' must be > 0")
        if self.max_tokens <= 0:
            raise ValueError(f"max_tokens for provider '{self.name}' must be > 0")


@dataclass(frozen=True)
class GovernorConfig:
    """Complete governor configuration."""
    quota: QuotaConfig
    providers: Tuple[ProviderConfig, ...]
    routing: Dict[Feature, Tuple[str, ...]] = field(default_factory=dict)
    db_path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        if not self.providers:
            raise ValueError("At least one provider must be configured")
        names = [p.name for p in self.providers]
        if len(set(names)) != len(names):
            raise ValueError(f"Provider names must be unique: {names}")
        for feature, order in self.routing.items():
            unknown = [name for name in order if name not in names]
            if unknown:
                raise ValueError(
                    f"routing.{feature.value} names unknown providers: {unknown}"
                )
            if not order:
                raise ValueError(f"routing.{feature.value} must not be empty")

    def provider_order(self, feature: Feature) -> Tuple[str, ...]:
        """Provider names to try for a feature, first choice first."""
        if feature in self.routing:
            return self.routing[feature]
        return tuple(p.name for p in self.providers)


def load_governor_config(path: str) -> GovernorConfig:
    """Load and validate governor configuration from YAML file.

    Strict validation ensures no silent misconfigurations: unknown keys are
    rejected and every feature must carry an explicit daily limit.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated GovernorConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Governor config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    allowed_top_keys = {'enabled', 'rate_limit', 'limits', 'providers', 'routing', 'storage'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    enabled = raw_config.get('enabled', True)
    if not isinstance(enabled, bool):
        raise ValueError("'enabled' must be true or false")

    quota = QuotaConfig(
        limits=_parse_limits(_require_dict(raw_config, 'limits')),
        requests_per_minute=_parse_rate_limit(_require_dict(raw_config, 'rate_limit')),
        enabled=enabled,
    )

    if 'providers' not in raw_config:
        raise ValueError("Missing required 'providers' section")
    providers_data = raw_config['providers']
    if not isinstance(providers_data, list) or not providers_data:
        raise ValueError("'providers' must be a non-empty list")
    providers = tuple(
        _parse_provider_config(item, f"providers[{i}]")
        for i, item in enumerate(providers_data)
    )

    routing_data = raw_config.get('routing') or {}
    if not isinstance(routing_data, dict):
        raise ValueError("'routing' must be a dictionary")
    routing = {}
    for feature_name, order in routing_data.items():
        feature = Feature.parse(feature_name)
        if not isinstance(order, list) or not all(isinstance(n, str) for n in order):
            raise ValueError(f"routing.{feature_name} must be a list of provider names")
        routing[feature] = tuple(order)

    storage_data = raw_config.get('storage') or {}
    if not isinstance(storage_data, dict):
        raise ValueError("'storage' must be a dictionary")
    unknown_storage_keys = set(storage_data.keys()) - {'db_path'}
    if unknown_storage_keys:
        raise ValueError(f"Unknown storage keys: {unknown_storage_keys}")

    return GovernorConfig(
        quota=quota,
        providers=providers,
        routing=routing,
        db_path=str(storage_data.get('db_path', DEFAULT_DB_PATH)),
    )


def _require_dict(raw_config: Dict, key: str) -> Dict:
    if key not in raw_config:
        raise ValueError(f"Missing required '{key}' section")
    value = raw_config[key]
    if not isinstance(value, dict):
        raise ValueError(f"'{key}' must be a dictionary")
    return value


def _parse_limits(data: Dict) -> Dict[Feature, int]:
    """Parse the per-feature daily limits; every feature must be present."""
    limits = {}
    for name, value in data.items():
        feature = Feature.parse(name)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            raise ValueError(f"'limits.{name}' must be a positive integer")
        limits[feature] = value
    return limits


def _parse_rate_limit(data: Dict) -> int:
    unknown_keys = set(data.keys()) - {'requests_per_minute'}
    if unknown_keys:
        raise ValueError(f"Unknown rate_limit keys: {unknown_keys}")
    if 'requests_per_minute' not in data:
        raise ValueError("Missing required 'requests_per_minute' in rate_limit")
    value = data['requests_per_minute']
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ValueError("'rate_limit.requests_per_minute' must be a positive integer")
    return value


def _parse_provider_config(data: Dict, path: str) -> ProviderConfig:
    """Parse and validate one provider entry.

    Args:
        data: Provider configuration data
        path: Path for error messages

    Returns:
        Validated ProviderConfig

    Raises:
        ValueError: If configuration is invalid
    """
    if not isinstance(data, dict):
        raise ValueError(f"{path} must be a dictionary")

    allowed_keys = {
        'name', 'model', 'base_url', 'api_key_env',
        'timeout', 'temperature', 'max_tokens'
    }
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")

    for required in ('name', 'model'):
        if required not in data:
            raise ValueError(f"Missing required '{required}' in {path}")
        if not isinstance(data[required], str):
            raise ValueError(f"'{required}' in {path} must be a string")

    timeout = data.get('timeout', DEFAULT_PROVIDER_TIMEOUT)
    if not isinstance(timeout, (int, float)) or isinstance(timeout, bool) or timeout <= 0:
        raise ValueError(f"'timeout' in {path} must be > 0")

    temperature = data.get('temperature', DEFAULT_TEMPERATURE)
    if not isinstance(temperature, (int, float)) or isinstance(temperature, bool):
        raise ValueError(f"'temperature' in {path} must be a number")

    max_tokens = data.get('max_tokens', DEFAULT_MAX_TOKENS)
    if not isinstance(max_tokens, int) or isinstance(max_tokens, bool) or max_tokens <= 0:
        raise ValueError(f"'max_tokens' in {path} must be a positive integer")

    return ProviderConfig(
        name=data['name'],
        model=data['model'],
        base_url=data.get('base_url'),
        api_key_env=data.get('api_key_env'),
        timeout=float(timeout),
        temperature=float(temperature),
        max_tokens=max_tokens,
    )
