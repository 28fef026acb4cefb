"""
Configuration manager with JSON schema validation

Loads the deployer configuration from a YAML or JSON file, validates it
against a JSON schema and applies environment variable overrides.

Design Notes:
- YAML (pyyaml) and JSON files are both accepted, chosen by file suffix
- jsonschema validates the merged configuration
- CREATE2_DEPLOYER_<FIELD> environment variables override file values
- The private key is normally supplied through the environment only
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import jsonschema
import yaml

from .exceptions import ConfigurationError, ErrorCodes

LOG = logging.getLogger(__name__)

ENV_PREFIX = "CREATE2_DEPLOYER_"

DEFAULT_FACTORY_ADDRESS = "0x56434E34E7771aa9680d09220Fe5d4D5c305323a"

CONFIG_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "rpc_url": {"type": "string", "minLength": 1},
        "factory_address": {"type": "string", "pattern": "^0x[0-9a-fA-F]{40}$"},
        "private_key": {"type": ["string", "null"]},
        "account": {"type": ["string", "null"]},
        "network_id": {"type": ["integer", "null"], "minimum": 1},
        "receipt_timeout": {"type": "number", "exclusiveMinimum": 0},
        "poll_interval": {"type": "number", "exclusiveMinimum": 0},
        "salt_size": {"type": "integer", "minimum": 1, "maximum": 32},
        "log_level": {"enum": ["DEBUG", "INFO", "WARNING", "ERROR"]},
        "log_file": {"type": ["string", "null"]},
    },
    "additionalProperties": False,
}


@dataclass
class DeployerConfig:
    """Validated deployer configuration"""
    rpc_url: str = "http://127.0.0.1:8545"
    factory_address: str = DEFAULT_FACTORY_ADDRESS
    private_key: Optional[str] = None
    account: Optional[str] = None
    network_id: Optional[int] = None
    receipt_timeout: float = 120.0
    poll_interval: float = 1.0
    salt_size: int = 7
    log_level: str = "INFO"
    log_file: Optional[str] = None

    def to_dict(self, include_secrets: bool = False) -> Dict[str, Any]:
        data = asdict(self)
        if not include_secrets and data.get("private_key"):
            data["private_key"] = "***"
        return data


class ConfigManager:
    """
    Loads and validates DeployerConfig instances.

    Values are resolved in order: dataclass defaults, configuration file,
    environment overrides.
    """

    def __init__(self, schema: Optional[Dict[str, Any]] = None, env_prefix: str = ENV_PREFIX):
        self.schema = schema or CONFIG_SCHEMA
        self.env_prefix = env_prefix

    def _read_file(self, config_file: Path) -> Dict[str, Any]:
        if not config_file.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_file}",
                config_file=str(config_file),
                code=ErrorCodes.CONFIG_FILE_NOT_FOUND
            )

        try:
            with open(config_file, 'r') as f:
                if config_file.suffix in ('.yaml', '.yml'):
                    config = yaml.safe_load(f)
                else:
                    config = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(
                f"Invalid configuration file {config_file}: {e}",
                config_file=str(config_file),
                code=ErrorCodes.CONFIG_VALIDATION_FAILED,
                cause=e
            )

        if config is None:
            return {}
        if not isinstance(config, dict):
            raise ConfigurationError(
                f"Configuration file {config_file} must contain a mapping",
                config_file=str(config_file),
                code=ErrorCodes.CONFIG_VALIDATION_FAILED
            )
        return config

    def _get_env_override(self, key: str) -> Any:
        env_value = os.getenv(f"{self.env_prefix}{key.upper()}")
        if env_value is None:
            return None
        # Numbers and null come through as JSON, everything else as a string
        try:
            return json.loads(env_value)
        except json.JSONDecodeError:
            return env_value

    def _apply_env_overrides(self, config: Dict[str, Any]) -> Dict[str, Any]:
        result = dict(config)
        for f in fields(DeployerConfig):
            override = self._get_env_override(f.name)
            if override is not None:
                if f.name in ("private_key", "account", "rpc_url", "factory_address", "log_file"):
                    override = str(override)
                result[f.name] = override
        return result

    def validate(self, config: Dict[str, Any]) -> List[str]:
        """Return a list of validation error messages (empty when valid)"""
        validator = jsonschema.Draft7Validator(self.schema)
        errors = []
        for error in sorted(validator.iter_errors(config), key=lambda e: list(e.path)):
            if error.path:
                path = " -> ".join(str(p) for p in error.path)
                errors.append(f"'{path}' {error.message}")
            else:
                errors.append(error.message)
        return errors

    def load(
        self,
        path: Optional[Union[str, Path]] = None,
        apply_env_overrides: bool = True,
        **overrides
    ) -> DeployerConfig:
        """
        Load configuration.

        Args:
            path: YAML or JSON file; None uses defaults only
            apply_env_overrides: Whether CREATE2_DEPLOYER_* variables apply
            **overrides: Explicit values (e.g. from the command line), applied last

        Returns:
            DeployerConfig

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        config: Dict[str, Any] = {}
        if path is not None:
            config = self._read_file(Path(path))

        if apply_env_overrides:
            config = self._apply_env_overrides(config)

        config.update({k: v for k, v in overrides.items() if v is not None})

        errors = self.validate(config)
        if errors:
            raise ConfigurationError(
                "Configuration validation failed:\n"
                + "\n".join(f"  - {error}" for error in errors),
                config_file=str(path) if path else None,
                code=ErrorCodes.CONFIG_VALIDATION_FAILED
            )

        result = DeployerConfig(**config)
        LOG.debug(f"Loaded configuration: {result.to_dict()}")
        return result
