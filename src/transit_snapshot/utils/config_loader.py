"""Configuration loader for the transit snapshot service."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
import yaml
from pydantic import ValidationError

from transit_snapshot.models.config import AppConfig
from transit_snapshot.models.schedule import TransportKind
from transit_snapshot.utils.retry import RetryPolicy

log = structlog.stdlib.get_logger()

CONFIG_DIR = Path(__file__).resolve().parents[3] / "config"


class ConfigurationError(Exception):
    """Raised when configuration is invalid or missing."""

    pass


class ConfigLoader:
    """Loads and validates application configuration from YAML files and environment variables."""

    def __init__(self, config_dir: Path | None = None) -> None:
        """Initialize the ConfigLoader.

        Args:
            config_dir: Directory searched for ``<env>.yaml``; defaults to the repository's config/
        """
        self.env_var_pattern = re.compile(r"\$\{([^}]+)\}")
        self.config_dir = config_dir or CONFIG_DIR

    def load_config(self, config_path: Optional[str] = None) -> AppConfig:
        """Load configuration from YAML file with environment variable overrides.

        Args:
            config_path: Path to the configuration YAML file. If None, uses default.yaml

        Returns:
            AppConfig: Validated application configuration

        Raises:
            ConfigurationError: If configuration file is missing or invalid
        """
        if config_path is None:
            config_path = self._get_default_config_path()

        log.info("loading_configuration", config_path=config_path)

        config_dict = self._load_yaml_file(config_path)
        config_dict = self._substitute_env_vars(config_dict)

        try:
            app_config = AppConfig(**config_dict)
            log.info("configuration_loaded_successfully")
            return app_config
        except ValidationError as e:
            log.error("configuration_validation_failed", error=str(e))
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

    def _get_default_config_path(self) -> str:
        """Get the default configuration file path based on environment.

        Returns:
            str: Path to the configuration file
        """
        env = os.getenv("TRANSIT_ENV", "default")
        config_file = self.config_dir / f"{env}.yaml"

        if not config_file.exists():
            config_file = self.config_dir / "default.yaml"

        if not config_file.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_file}. "
                f"Please create config/default.yaml or set TRANSIT_ENV to a valid environment."
            )

        return str(config_file)

    def _load_yaml_file(self, config_path: str) -> Dict[str, Any]:
        """Load YAML configuration file.

        Args:
            config_path: Path to the YAML file

        Returns:
            Dict containing the configuration

        Raises:
            ConfigurationError: If file cannot be read or parsed
        """
        try:
            with open(config_path, "r", encoding="utf-8") as f:
                config_dict = yaml.safe_load(f)
        except FileNotFoundError as e:
            raise ConfigurationError(f"Configuration file not found: {config_path}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML file {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Failed to load configuration file {config_path}: {e}") from e

        if config_dict is None:
            raise ConfigurationError(f"Configuration file is empty: {config_path}")
        if not isinstance(config_dict, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")

        log.debug("yaml_file_loaded", config_path=config_path)
        return config_dict

    def _substitute_env_vars(self, config: Any) -> Any:
        """Recursively substitute environment variables in configuration.

        Environment variables are specified as ${VAR_NAME} in the YAML file.

        Args:
            config: Configuration value (can be dict, list, str, or other types)

        Returns:
            Configuration with environment variables substituted

        Raises:
            ConfigurationError: If a required environment variable is not set
        """
        if isinstance(config, dict):
            return {key: self._substitute_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._substitute_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_env_var_in_string(config)
        else:
            return config

    def _substitute_env_var_in_string(self, value: str) -> str:
        """Substitute environment variables in a string.

        Args:
            value: String that may contain ${VAR_NAME} patterns

        Returns:
            String with environment variables substituted

        Raises:
            ConfigurationError: If a required environment variable is not set
        """
        for var_name in self.env_var_pattern.findall(value):
            env_value = os.getenv(var_name)
            if env_value is None:
                raise ConfigurationError(
                    f"Required environment variable not set: {var_name}. "
                    f"Please set {var_name} in your environment or .env file."
                )
            value = value.replace(f"${{{var_name}}}", env_value)

        return value

    def validate_config(self, config: AppConfig) -> list[str]:
        """Validate configuration and return any warnings.

        Pydantic handles field-level validation; this covers relationships
        between sections.

        Args:
            config: Application configuration to validate

        Returns:
            List of warning messages (empty if no warnings)
        """
        warnings = []

        policy = RetryPolicy(
            max_retries=config.sync.fetch_retries,
            base_delay=config.sync.retry_base_delay,
            max_delay=config.sync.retry_max_delay,
        )
        if policy.worst_case_seconds >= config.sync.interval_seconds:
            warnings.append(
                f"retry budget ({policy.worst_case_seconds:.0f}s per call) is not shorter than "
                f"sync.interval_seconds ({config.sync.interval_seconds}s); ticks will be dropped"
            )

        if config.sync.retry_base_delay > config.sync.retry_max_delay:
            warnings.append(
                f"sync.retry_base_delay ({config.sync.retry_base_delay}) exceeds "
                f"sync.retry_max_delay ({config.sync.retry_max_delay})"
            )

        mapped_kinds = set(config.vocabulary.kinds.values())
        unmapped = sorted(kind.value for kind in TransportKind if kind not in mapped_kinds)
        if unmapped:
            warnings.append(f"vocabulary.kinds has no label for: {', '.join(unmapped)}")

        if ":" not in config.source.factory:
            warnings.append(
                f"source.factory '{config.source.factory}' should look like 'module:callable'"
            )

        if warnings:
            log.warning("configuration_validation_warnings", warnings=warnings)

        return warnings
