"""
Configuration management for gpu-container-helper.

This module provides typed configuration parsing from
/etc/gpu-container-helper.conf with validation of logging, library and
configure defaults. Command line options extend or override these values.
"""

import configparser
import logging
from pathlib import Path
from typing import FrozenSet, Optional

from .library import Capability


logger = logging.getLogger(__name__)

LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class HelperConfig:
    """Configuration manager for the gpu-container-helper command line."""

    DEFAULT_CONFIG_PATH = "/etc/gpu-container-helper.conf"

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration from file.

        Args:
            config_path: Path to configuration file. Defaults to /etc/gpu-container-helper.conf
        """
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self._config = configparser.ConfigParser()
        self._set_defaults()
        self._load_config()
        self._validate_config()

    def _load_config(self) -> None:
        """Load configuration from file."""
        # Logging may not be set up yet, so callers report whether the file was found.
        self.found = Path(self.config_path).exists()
        if not self.found:
            return

        try:
            self._config.read(self.config_path)
        except configparser.Error as e:
            raise ValueError(f"Failed to parse config {self.config_path}: {e}")

    def _set_defaults(self) -> None:
        """Set default configuration values."""
        self._config.add_section('global')
        self._config.set('global', 'log_level', 'INFO')
        self._config.set('global', 'load_kmods', 'false')
        self._config.set('global', 'debug_file', '')

        self._config.add_section('configure')
        self._config.set('configure', 'capabilities', '')
        self._config.set('configure', 'no_cgroups', 'false')
        self._config.set('configure', 'no_devbind', 'false')
        self._config.set('configure', 'injector', 'dry-run')

    def _validate_config(self) -> None:
        """Validate configuration values."""
        if self.log_level not in LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(LOG_LEVELS)}, got {self.log_level}")

        # Raises ValueError on unknown names
        self.capabilities

        if not self.injector:
            raise ValueError("injector must not be empty")

    # Global section properties
    @property
    def log_level(self) -> str:
        """Logging level for the command line."""
        return self._config.get('global', 'log_level').upper()

    @property
    def load_kmods(self) -> bool:
        """Whether to load the kernel modules before initialising the library."""
        return self._config.getboolean('global', 'load_kmods')

    @property
    def debug_file(self) -> Optional[str]:
        """File receiving debug logs, if any."""
        return self._config.get('global', 'debug_file') or None

    # Configure section properties
    @property
    def capabilities(self) -> FrozenSet[Capability]:
        """Capabilities always enabled in addition to the command line toggles."""
        return Capability.parse(self._config.get('configure', 'capabilities'))

    @property
    def no_cgroups(self) -> bool:
        return self._config.getboolean('configure', 'no_cgroups')

    @property
    def no_devbind(self) -> bool:
        return self._config.getboolean('configure', 'no_devbind')

    @property
    def injector(self) -> str:
        """Injector used for mounts: "dry-run" or a module:Class path."""
        return self._config.get('configure', 'injector').strip()
