"""
Configuration Management Package

This package provides configuration loading and validation for the image sync e2e harness.
"""

from .config_manager import ConfigManager, ConfigError, create_config_manager

__all__ = ['ConfigManager', 'ConfigError', 'create_config_manager']
