"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from beatport_bridge.exceptions import ConfigurationError
from beatport_bridge.models.config import BridgeConfig

log = logging.getLogger(__name__)


def _to_ini_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, list):
        return ",".join(map(str, value))
    return str(value)


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser()

    def load_config(self, cli_options: dict[str, Any] | None = None) -> BridgeConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.
        A missing file yields the defaults.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated BridgeConfig object.

        Raises:
            ConfigurationError: If the config file is invalid or validation fails.
        """
        config_from_file: dict[str, Any] = {}
        if self.config_file_path.is_file():
            self._read()
            if self._migrate_if_needed():
                log.info(
                    "[yellow]Configuration file was updated with new default values."
                    "[/yellow]"
                )
            config_from_file = self._get_config_as_dict()
        else:
            log.debug(
                f"No configuration file at '{self.config_file_path}', using defaults."
            )

        if cli_options:
            config_from_file.update(cli_options)

        try:
            config_dir = self.config_file_path.parent
            return BridgeConfig(**config_from_file, config_path=str(config_dir))
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def save_new_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a new configuration file.

        Args:
            settings: A dictionary of settings to save; missing keys get defaults.
        """
        try:
            config = BridgeConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

        parser = configparser.ConfigParser()
        parser["DEFAULT"] = {
            key: _to_ini_value(getattr(config, key))
            for key in sorted(BridgeConfig.get_ini_keys())
        }
        self._write(parser)
        self._parser = parser

    def update_settings(self, changes: dict[str, Any]) -> None:
        """Writes a partial change into the config file, creating it if needed."""
        if self.config_file_path.is_file():
            self._read()
        section = self._parser["DEFAULT"]
        ini_keys = BridgeConfig.get_ini_keys()
        for key, value in changes.items():
            if key not in ini_keys:
                raise ConfigurationError(f"Unknown setting: {key}")
            section[key] = _to_ini_value(value)
        self._write(self._parser)

    def save_port(self, port: int) -> None:
        """Persists a service port found by discovery."""
        log.info(f"Saving discovered service port [cyan]{port}[/cyan]")
        self.update_settings({"service_port": port})

    def _read(self) -> None:
        self._parser = configparser.ConfigParser()
        try:
            self._parser.read(self.config_file_path, encoding="utf-8")
        except configparser.Error as e:
            raise ConfigurationError(f"Error parsing configuration file: {e}") from e

    def _write(self, parser: configparser.ConfigParser) -> None:
        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                parser.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the 'DEFAULT' section of the INI file into a dictionary."""
        section = self._parser["DEFAULT"]
        defaults = BridgeConfig()
        try:
            return {
                "service_host": section.get("service_host", defaults.service_host),
                "service_port": section.getint("service_port", defaults.service_port),
                "fallback_ports": [
                    int(p.strip())
                    for p in section.get("fallback_ports", "").split(",")
                    if p.strip()
                ],
                "download_quality": section.get(
                    "download_quality", defaults.download_quality
                ),
                "notifications_enabled": section.getboolean(
                    "notifications_enabled", defaults.notifications_enabled
                ),
                "event_log": section.getboolean("event_log", defaults.event_log),
            }
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = BridgeConfig()
        config_section = self._parser["DEFAULT"]
        needs_saving = False

        for key in sorted(BridgeConfig.get_ini_keys()):
            if key not in config_section:
                config_section[key] = _to_ini_value(getattr(defaults, key))
                needs_saving = True
                log.debug(
                    f"Migrating config: added missing key '{key}' with "
                    f"value '{config_section[key]}'."
                )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
