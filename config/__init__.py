"""
Configuration management for flowsrc-sync

Handles locating, loading and validating the sync configuration.
"""

from .loader import ConfigurationLoader
from .defaults import DEFAULT_SETTINGS, DEFAULT_CONFIG_FILENAME, ENV_VAR_MAPPING

__all__ = ["ConfigurationLoader", "DEFAULT_SETTINGS", "DEFAULT_CONFIG_FILENAME", "ENV_VAR_MAPPING"]
