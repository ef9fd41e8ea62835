"""
Dispersion Configuration Manager

Centralized configuration management system supporting:
- Environment-based configs (development/staging/production)
- Config file loading (YAML/JSON)
- Command-line override support
- Environment variable support (DISPERSION_*)
- Config validation

Token quantities (prices, supplies, fees, beta) are written in whole-token
units, e.g. ``initial_price: "0.001"``, and converted to WAD integers when
the typed sections are built.
"""

import json
import os
from dataclasses import asdict, dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from dotenv import load_dotenv

from .blockchain.vesting_manager import MAX_VESTING_DURATION, SECONDS_PER_DAY
from .core.defi.pricing import PricingState
from .core.defi.safe_math import WAD, to_wad
from .core.exceptions import InvalidParameterError, InvalidVestingConfigError

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parent / "config"
ENV_PREFIX = "DISPERSION_"


class Environment(Enum):
    """Environment types"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


@dataclass
class DistributionConfig:
    """Sale parameters. Token fields hold WAD integers once parsed."""
    asset: str = "DLP"
    initial_price: int = WAD // 1000
    total_supply: int = 1_000_000 * WAD
    remaining_supply: Optional[int] = None
    alpha: int = -1
    k: int = 20
    beta: int = WAD // 2
    transaction_fee: int = WAD // 100
    max_purchase_amount: int = 1_000_000 * WAD

    TOKEN_FIELDS = (
        "initial_price",
        "total_supply",
        "remaining_supply",
        "beta",
        "transaction_fee",
        "max_purchase_amount",
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DistributionConfig":
        values = dict(data)
        for name in cls.TOKEN_FIELDS:
            if values.get(name) is not None:
                values[name] = to_wad(values[name])
        for name in ("alpha", "k"):
            if name in values:
                values[name] = int(values[name])
        return cls(**values)

    def validate(self):
        """Validate distribution configuration"""
        if not self.asset:
            raise InvalidParameterError("asset cannot be empty")
        if self.transaction_fee <= 0:
            raise InvalidParameterError(f"Invalid transaction_fee: {self.transaction_fee}. Must be > 0")
        if self.max_purchase_amount <= 0:
            raise InvalidParameterError(
                f"Invalid max_purchase_amount: {self.max_purchase_amount}. Must be > 0"
            )
        remaining = self.total_supply if self.remaining_supply is None else self.remaining_supply
        PricingState(
            initial_price=self.initial_price,
            total_supply=self.total_supply,
            remaining_supply=remaining,
            alpha=self.alpha,
            k=self.k,
            beta=self.beta,
        ).validate()


@dataclass
class VestingConfig:
    """Vesting policy applied to purchase grants (durations in seconds)"""
    min_duration: int = SECONDS_PER_DAY
    max_duration: int = 30 * SECONDS_PER_DAY
    supply_cap: Optional[int] = None
    purchase_cliff_duration: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VestingConfig":
        values = dict(data)
        if values.get("supply_cap") is not None:
            values["supply_cap"] = to_wad(values["supply_cap"])
        for name in ("min_duration", "max_duration", "purchase_cliff_duration"):
            if name in values:
                values[name] = int(values[name])
        return cls(**values)

    def validate(self):
        """Validate vesting configuration"""
        if self.min_duration <= 0:
            raise InvalidVestingConfigError(f"Invalid min_duration: {self.min_duration}. Must be > 0")
        if self.max_duration <= self.min_duration:
            raise InvalidVestingConfigError(
                f"Invalid max_duration: {self.max_duration}. Must be > min_duration"
            )
        if self.max_duration > MAX_VESTING_DURATION:
            raise InvalidVestingConfigError(
                f"Invalid max_duration: {self.max_duration}. Must be <= {MAX_VESTING_DURATION}"
            )
        if self.supply_cap is not None and self.supply_cap <= 0:
            raise InvalidVestingConfigError(f"Invalid supply_cap: {self.supply_cap}. Must be > 0")
        if not 0 <= self.purchase_cliff_duration <= self.min_duration:
            raise InvalidVestingConfigError(
                f"Invalid purchase_cliff_duration: {self.purchase_cliff_duration}. "
                "Must be between 0 and min_duration"
            )


@dataclass
class LoggingConfig:
    """Logging configuration settings"""
    level: str = "INFO"
    enable_file_logging: bool = False
    log_file: str = "logs/dispersion.json"
    max_log_size: int = 10485760  # 10MB
    backup_count: int = 5
    enable_console_logging: bool = True

    def validate(self):
        """Validate logging configuration"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if self.level.upper() not in valid_levels:
            raise InvalidParameterError(f"Invalid log level: {self.level}. Must be one of {valid_levels}")
        if self.max_log_size < 1024:
            raise InvalidParameterError(f"Invalid max_log_size: {self.max_log_size}. Must be >= 1024")
        if self.backup_count < 0:
            raise InvalidParameterError(f"Invalid backup_count: {self.backup_count}. Must be >= 0")


@dataclass
class MetricsConfig:
    """Metrics configuration settings"""
    enabled: bool = False
    port: int = 9108

    def validate(self):
        """Validate metrics configuration"""
        if not (1024 <= self.port <= 65535):
            raise InvalidParameterError(f"Invalid port: {self.port}. Must be between 1024-65535")


class ConfigManager:
    """
    Configuration Manager for Dispersion

    Handles loading, validation, and access to configuration settings
    from multiple sources with proper precedence:
    1. Command-line arguments (highest priority)
    2. Environment variables (DISPERSION_*)
    3. Environment-specific config files
    4. Default config file
    5. Built-in defaults (lowest priority)
    """

    def __init__(self,
                 environment: Optional[str] = None,
                 config_dir: Optional[str] = None,
                 cli_overrides: Optional[Dict[str, Any]] = None):
        """
        Initialize Configuration Manager

        Args:
            environment: Environment name (development/staging/production)
            config_dir: Directory containing config files
            cli_overrides: Command-line argument overrides keyed "section.key"
        """
        load_dotenv()

        self.environment = self._determine_environment(environment)
        self.config_dir = Path(config_dir).resolve() if config_dir else DEFAULT_CONFIG_DIR
        self.cli_overrides = cli_overrides or {}

        self.distribution: DistributionConfig = None
        self.vesting: VestingConfig = None
        self.logging: LoggingConfig = None
        self.metrics: MetricsConfig = None

        self._raw_config: Dict[str, Any] = {}

        self._load_configuration()

    def _determine_environment(self, environment: Optional[str]) -> Environment:
        """
        Determine the environment to use

        Priority:
        1. Passed environment parameter
        2. DISPERSION_ENVIRONMENT environment variable
        3. Default to DEVELOPMENT
        """
        if environment:
            env_str = environment.lower()
        else:
            env_str = os.getenv(f"{ENV_PREFIX}ENVIRONMENT", "development").lower()

        env_mapping = {
            "dev": Environment.DEVELOPMENT,
            "development": Environment.DEVELOPMENT,
            "staging": Environment.STAGING,
            "stage": Environment.STAGING,
            "prod": Environment.PRODUCTION,
            "production": Environment.PRODUCTION,
        }

        return env_mapping.get(env_str, Environment.DEVELOPMENT)

    def _load_configuration(self):
        """Load configuration from all sources with proper precedence"""
        default_config = self._load_config_file("default")
        env_config = self._load_config_file(self.environment.value)
        merged_config = self._merge_configs(default_config, env_config)
        merged_config = self._apply_env_variables(merged_config)
        merged_config = self._apply_cli_overrides(merged_config)

        self._raw_config = merged_config

        self._parse_configuration(merged_config)
        self._validate_configuration()

    def _load_config_file(self, filename: str) -> Dict[str, Any]:
        """
        Load configuration from YAML or JSON file

        Args:
            filename: Config filename (without extension)

        Returns:
            Configuration dictionary, empty when no file exists
        """
        yaml_path = self.config_dir / f"{filename}.yaml"
        if yaml_path.exists():
            with open(yaml_path, 'r') as f:
                return yaml.safe_load(f) or {}

        json_path = self.config_dir / f"{filename}.json"
        if json_path.exists():
            with open(json_path, 'r') as f:
                return json.load(f)

        return {}

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Deep merge two configuration dictionaries"""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def _apply_env_variables(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply environment variable overrides (DISPERSION_*)

        Environment variables format:
        DISPERSION_SECTION_KEY=value

        Example:
        DISPERSION_DISTRIBUTION_K=25
        DISPERSION_VESTING_MAX_DURATION=2592000
        """
        result = {key: dict(value) if isinstance(value, dict) else value
                  for key, value in config.items()}

        for key, value in os.environ.items():
            if not key.startswith(ENV_PREFIX):
                continue

            if key == f"{ENV_PREFIX}ENVIRONMENT":
                continue

            parts = key[len(ENV_PREFIX):].lower().split("_")

            if len(parts) < 2:
                continue

            section = parts[0]
            config_key = "_".join(parts[1:])

            if section in result:
                if not isinstance(result[section], dict):
                    result[section] = {}
                result[section][config_key] = self._parse_env_value(value)

        return result

    def _parse_env_value(self, value: str) -> Union[str, int, bool]:
        """
        Parse environment variable value to appropriate type

        Non-integer numbers stay strings so token amounts reach ``to_wad``
        without passing through float.
        """
        try:
            return int(value)
        except ValueError:
            pass

        if value.lower() in ("true", "yes", "on"):
            return True
        if value.lower() in ("false", "no", "off"):
            return False

        return value

    def _apply_cli_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        """Apply command-line argument overrides"""
        result = {key: dict(value) if isinstance(value, dict) else value
                  for key, value in config.items()}

        for key, value in self.cli_overrides.items():
            parts = key.split(".")

            if len(parts) == 1:
                result[key] = value
            elif len(parts) == 2:
                section, config_key = parts
                if not isinstance(result.get(section), dict):
                    result[section] = {}
                result[section][config_key] = value
            else:
                raise InvalidParameterError(f"Invalid override key: {key}. Use section.key")

        return result

    def _parse_configuration(self, config: Dict[str, Any]):
        """Parse configuration into typed objects"""
        self.distribution = DistributionConfig.from_dict(config.get("distribution") or {})
        self.vesting = VestingConfig.from_dict(config.get("vesting") or {})
        self.logging = LoggingConfig(**(config.get("logging") or {}))
        self.metrics = MetricsConfig(**(config.get("metrics") or {}))

    def _validate_configuration(self):
        """Validate all configuration sections"""
        self.distribution.validate()
        self.vesting.validate()
        self.logging.validate()
        self.metrics.validate()

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get raw configuration value by dot-notation key

        Args:
            key: Configuration key (e.g., "distribution.k")
            default: Default value if key not found
        """
        parts = key.split(".")
        value = self._raw_config

        for part in parts:
            if isinstance(value, dict) and part in value:
                value = value[part]
            else:
                return default

        return value

    def get_section(self, section: str) -> Optional[Dict[str, Any]]:
        return self._raw_config.get(section)

    def to_dict(self) -> Dict[str, Any]:
        """Export the parsed configuration (token fields as WAD integers)"""
        return {
            "environment": self.environment.value,
            "distribution": asdict(self.distribution),
            "vesting": asdict(self.vesting),
            "logging": asdict(self.logging),
            "metrics": asdict(self.metrics),
        }

    def reload(self):
        """Reload configuration from files"""
        self._load_configuration()

    def __repr__(self) -> str:
        return f"ConfigManager(environment={self.environment.value})"


# Singleton instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(
    environment: Optional[str] = None,
    config_dir: Optional[str] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
    force_reload: bool = False
) -> ConfigManager:
    """
    Get or create ConfigManager singleton instance

    Args:
        environment: Environment name
        config_dir: Config directory path
        cli_overrides: CLI argument overrides
        force_reload: Force reload configuration
    """
    global _config_manager

    if _config_manager is None or force_reload:
        _config_manager = ConfigManager(
            environment=environment,
            config_dir=config_dir,
            cli_overrides=cli_overrides
        )

    return _config_manager
