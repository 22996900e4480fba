#!/usr/bin/env python3
"""
Configuration loader with multi-layer merging.

Layers (low to high priority):
1. Built-in defaults (presets/defaults.json)
2. Environment (AWS_REGION / AWS_DEFAULT_REGION, OMICS_ECR_ACCOUNT_ID)
3. User file (--config, JSON or YAML)
4. User CLI overrides

Copyright (c) Advanced Micro Devices, Inc. All rights reserved.
"""

import json
import logging
import os
from copy import deepcopy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from omicsengine.core.errors import ConfigurationError, create_error_context
from omicsengine.utils.retry import RetryPolicy
from omicsengine.validation.base import ResourceBounds
from omicsengine.validation.bundle_validator import DEFAULT_MAX_BUNDLE_BYTES


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineConfig:
    """Effective engine configuration."""

    bounds: ResourceBounds = field(default_factory=ResourceBounds)
    default_cpu: float = 2
    default_memory_gib: float = 4
    max_bundle_bytes: int = DEFAULT_MAX_BUNDLE_BYTES
    strict_resolution: bool = False
    ecr_account_id: Optional[str] = None
    ecr_region: Optional[str] = None
    registry_map_file: Optional[str] = None
    service_timeout: float = 60
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    state_file: Optional[str] = None


class ConfigLoader:
    """Layered configuration loader."""

    PRESET_DIR = Path(__file__).parent / "presets"

    @classmethod
    def load_preset(cls, preset_path: str) -> Dict[str, Any]:
        """
        Load a preset JSON file.

        Args:
            preset_path: Relative path to preset file from PRESET_DIR

        Returns:
            Dict containing preset configuration, or empty dict if not found
        """
        full_path = cls.PRESET_DIR / preset_path
        if not full_path.exists():
            return {}

        try:
            with open(full_path, "r") as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Could not load preset %s: %s", preset_path, e)
            return {}

    @classmethod
    def deep_merge(cls, base: Dict, override: Dict) -> Dict:
        """
        Deep merge two dictionaries. Override wins conflicts.
        Nested dicts are merged, lists/primitives are replaced.
        ``None`` in the override leaves the base value in place.
        """
        result = deepcopy(base)

        for key, value in override.items():
            if value is None and key in result:
                continue
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = cls.deep_merge(result[key], value)
            else:
                result[key] = deepcopy(value)

        return result

    @classmethod
    def load_file(cls, path: str) -> Dict[str, Any]:
        """Load a user configuration file (JSON or YAML)."""
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {config_path}",
                context=create_error_context(operation="load_config", file_path=str(config_path)),
            )

        try:
            with open(config_path) as f:
                if config_path.suffix.lower() == ".json":
                    data = json.load(f)
                else:
                    data = yaml.safe_load(f)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise ConfigurationError(
                f"Could not parse configuration file {config_path}: {e}",
                context=create_error_context(operation="load_config", file_path=str(config_path)),
                cause=e,
            )

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file must contain a mapping: {config_path}")
        return data

    @classmethod
    def environment_layer(cls, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        environ = os.environ if environ is None else environ
        registry: Dict[str, Any] = {}

        region = environ.get("AWS_REGION") or environ.get("AWS_DEFAULT_REGION")
        if region:
            registry["ecr_region"] = region
        if environ.get("OMICS_ECR_ACCOUNT_ID"):
            registry["ecr_account_id"] = environ["OMICS_ECR_ACCOUNT_ID"]

        return {"registry": registry} if registry else {}

    @classmethod
    def load_config(
        cls,
        config_file: Optional[str] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> Dict[str, Any]:
        """Merge every layer into a single configuration dict."""
        config = cls.load_preset("defaults.json")
        config = cls.deep_merge(config, cls.environment_layer(environ))
        if config_file:
            config = cls.deep_merge(config, cls.load_file(config_file))
        if overrides:
            config = cls.deep_merge(config, overrides)
        return config

    @classmethod
    def build_engine_config(cls, config: Dict[str, Any]) -> EngineConfig:
        """
        Convert a merged configuration dict into an EngineConfig.

        Raises:
            ConfigurationError: If a value has the wrong type or bounds overlap
        """
        defaults = EngineConfig()
        resources = config.get("resources") or {}
        bundle = config.get("bundle") or {}
        registry = config.get("registry") or {}
        service = config.get("service") or {}

        def number(section: Dict[str, Any], key: str, default: float, label: str) -> float:
            value = section.get(key, default)
            if value is None:
                return default
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
                raise ConfigurationError(f"{label}.{key} must be a non-negative number, got {value!r}")
            return value

        def flag(section: Dict[str, Any], key: str, default: bool, label: str) -> bool:
            value = section.get(key, default)
            if value is None:
                return default
            if not isinstance(value, bool):
                raise ConfigurationError(f"{label}.{key} must be true or false, got {value!r}")
            return value

        def text(section: Dict[str, Any], key: str, label: str) -> Optional[str]:
            value = section.get(key)
            if value is not None and not isinstance(value, str):
                raise ConfigurationError(f"{label}.{key} must be a string, got {value!r}")
            return value or None

        bounds = ResourceBounds(
            min_cpu=number(resources, "min_cpu", defaults.bounds.min_cpu, "resources"),
            max_cpu=number(resources, "max_cpu", defaults.bounds.max_cpu, "resources"),
            min_memory_gib=number(resources, "min_memory_gib", defaults.bounds.min_memory_gib, "resources"),
            max_memory_gib=number(resources, "max_memory_gib", defaults.bounds.max_memory_gib, "resources"),
        )
        if bounds.min_cpu > bounds.max_cpu or bounds.min_memory_gib > bounds.max_memory_gib:
            raise ConfigurationError(f"Resource minimums exceed maximums: {bounds}")

        retry_count = int(number(service, "retry_count", defaults.retry_policy.max_attempts, "service"))
        retry_policy = RetryPolicy(
            max_attempts=max(1, retry_count),
            base_delay=number(service, "retry_delay", defaults.retry_policy.base_delay, "service"),
            max_delay=number(service, "max_retry_delay", defaults.retry_policy.max_delay, "service"),
        )

        account_id = registry.get("ecr_account_id")
        return EngineConfig(
            bounds=bounds,
            default_cpu=number(resources, "default_cpu", defaults.default_cpu, "resources"),
            default_memory_gib=number(resources, "default_memory_gib", defaults.default_memory_gib, "resources"),
            max_bundle_bytes=int(number(bundle, "max_bytes", defaults.max_bundle_bytes, "bundle")),
            strict_resolution=flag(registry, "strict", defaults.strict_resolution, "registry"),
            ecr_account_id=str(account_id) if account_id is not None else None,
            ecr_region=registry.get("ecr_region"),
            registry_map_file=registry.get("map_file"),
            service_timeout=number(service, "timeout", defaults.service_timeout, "service"),
            retry_policy=retry_policy,
            state_file=text(config, "state_file", "config"),
        )


def load_engine_config(
    config_file: Optional[str] = None,
    overrides: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> EngineConfig:
    """Load and validate the effective EngineConfig."""
    merged = ConfigLoader.load_config(config_file, overrides, environ)
    return ConfigLoader.build_engine_config(merged)
