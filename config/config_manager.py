#!/usr/bin/env python3
"""
Configuration Management Module for the Image Sync E2E Harness

Configuration is layered: built-in defaults, then an optional JSON file,
then environment variables. The merged result is validated against a JSON
schema before use.

Environment Variables:
- IBMCLOUD_API_KEY: API key used for IAM, resource controller and COS calls
- IMAGE_SYNC_CLI: executable providing the `image sync` subcommand
- IMAGE_SYNC_CONFIG: path of the JSON configuration file

Usage:
    from config.config_manager import ConfigManager
    config_manager = ConfigManager()
    config = config_manager.load_config()
    errors = config_manager.validate_config(config)
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import jsonschema
from jsonschema import ValidationError

API_KEY_ENV = "IBMCLOUD_API_KEY"
TOOL_ENV = "IMAGE_SYNC_CLI"
CONFIG_PATH_ENV = "IMAGE_SYNC_CONFIG"

DEFAULT_CONFIG: Dict[str, Any] = {
    "ibmcloud": {
        "api_key": "",
        "service_plan_id": "744bfc56-d12c-4866-88d5-dac9139e0e5d",
        "resource_group_target": "global",
        "recursive_delete": False,
    },
    "scenario": {
        "no_of_sources": 2,
        "targets_per_source": 2,
        "no_of_objects": 200,
        "object_size": 200,
        "upload_workers": 20,
        "plans": ["smart", "standard", "vault", "cold"],
        "regions": ["us-east", "jp-tok", "us-south", "au-syd", "eu-de", "ca-tor"],
        "work_dir": ".",
    },
    "cli": {
        "tool": "pvsadm",
        "timeout": None,
    },
    "verification": {
        "attempts": 1,
        "delay_base": 2.0,
        "delay_max": 30.0,
    },
    "storage": {
        "connect_timeout": 30,
        "read_timeout": 60,
    },
    "logging": {
        "log_dir": "logs",
        "level": "INFO",
    },
}


class ConfigManager:
    """Loads, merges and validates harness configuration"""

    def __init__(self, config_path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        self.project_root = Path(__file__).parent.parent
        path = config_path or self.environ.get(CONFIG_PATH_ENV)
        self.config_path = Path(path) if path else self.project_root / "config" / "e2e-config.json"
        self.explicit_path = bool(path)
        self._load_schema()

    def _load_schema(self):
        """JSON schema for the merged configuration"""
        positive_int = {"type": "integer", "minimum": 1}
        non_negative_int = {"type": "integer", "minimum": 0}
        name_list = {
            "type": "array",
            "items": {"type": "string", "pattern": "^[a-z0-9-]+$"},
            "minItems": 1,
            "uniqueItems": True,
        }
        self.schema = {
            "type": "object",
            "properties": {
                "ibmcloud": {
                    "type": "object",
                    "properties": {
                        "api_key": {"type": "string"},
                        "service_plan_id": {"type": "string", "minLength": 1},
                        "resource_group_target": {"type": "string", "minLength": 1},
                        "recursive_delete": {"type": "boolean"},
                    },
                    "required": ["service_plan_id", "resource_group_target"],
                },
                "scenario": {
                    "type": "object",
                    "properties": {
                        "no_of_sources": positive_int,
                        "targets_per_source": positive_int,
                        "no_of_objects": non_negative_int,
                        "object_size": non_negative_int,
                        # 0 = auto-tune from CPU and memory
                        "upload_workers": {"type": "integer", "minimum": 0, "maximum": 256},
                        "plans": name_list,
                        "regions": name_list,
                        "work_dir": {"type": "string"},
                    },
                    "required": ["no_of_sources", "targets_per_source", "no_of_objects", "object_size"],
                },
                "cli": {
                    "type": "object",
                    "properties": {
                        "tool": {"type": "string", "minLength": 1},
                        "timeout": {"type": ["number", "null"], "exclusiveMinimum": 0},
                    },
                    "required": ["tool"],
                },
                "verification": {
                    "type": "object",
                    "properties": {
                        "attempts": {"type": "integer", "minimum": 1, "maximum": 50},
                        "delay_base": {"type": "number", "minimum": 0},
                        "delay_max": {"type": "number", "minimum": 0},
                    },
                },
                "storage": {
                    "type": "object",
                    "properties": {
                        "connect_timeout": positive_int,
                        "read_timeout": positive_int,
                    },
                },
                "logging": {
                    "type": "object",
                    "properties": {
                        "log_dir": {"type": "string"},
                        "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR"]},
                    },
                },
            },
            "required": ["ibmcloud", "scenario", "cli"],
        }

    def load_config(self) -> Dict[str, Any]:
        """Return defaults merged with the config file and environment overrides

        Raises:
            ConfigError: if an explicitly requested file is missing, the file is
                not valid JSON, or the merged configuration fails validation
        """
        config = _deep_copy_config(DEFAULT_CONFIG)

        if self.config_path.exists():
            try:
                with open(self.config_path, "r") as f:
                    file_config = json.load(f)
            except (json.JSONDecodeError, IOError) as e:
                raise ConfigError(f"Failed to load config {self.config_path}: {e}")
            if not isinstance(file_config, dict):
                raise ConfigError(f"Config {self.config_path} must contain a JSON object")
            _merge(config, file_config)
        elif self.explicit_path:
            raise ConfigError(f"Config file not found: {self.config_path}")

        api_key = self.environ.get(API_KEY_ENV)
        if api_key:
            config["ibmcloud"]["api_key"] = api_key
        tool = self.environ.get(TOOL_ENV)
        if tool:
            config["cli"]["tool"] = tool

        errors = self.validate_config(config)
        if errors:
            raise ConfigError("; ".join(errors))
        return config

    def validate_config(self, config: Dict[str, Any]) -> List[str]:
        """Validate configuration against the schema

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []
        try:
            jsonschema.validate(config, self.schema)
        except ValidationError as e:
            location = ".".join(str(p) for p in e.absolute_path) or "config"
            errors.append(f"Config validation error at {location}: {e.message}")
        return errors

    def require_api_key(self, config: Dict[str, Any]) -> str:
        api_key = config.get("ibmcloud", {}).get("api_key")
        if not api_key:
            raise ConfigError(f"{API_KEY_ENV} is not set")
        return api_key


class ConfigError(Exception):
    """Configuration management error"""
    pass


def _deep_copy_config(config: Dict[str, Any]) -> Dict[str, Any]:
    return json.loads(json.dumps(config))


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> None:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value


def create_config_manager(config_path: Optional[str] = None) -> ConfigManager:
    """Factory function to create configuration manager"""
    return ConfigManager(config_path)
