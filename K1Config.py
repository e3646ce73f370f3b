# -*- coding: utf-8 -*-
# -----------------------------------------------------------------------------
# K1Config.py - K1 timer persistent configuration file.  Adapted from Alpyca's
# config.py
#
# Python Compatibility: Requires Python 3.7 or later
# GitHub: https://github.com/ASCOMInitiative/AlpycaDevice
#
# -----------------------------------------------------------------------------
# MIT License
#
# Copyright (c) 2022-2024 Bob Denny
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
# -----------------------------------------------------------------------------

import sys
import threading
from pathlib import Path
from typing import Any

import toml


class K1ConfigError(Exception):
    """Custom exception for K1 timer configuration errors"""
    pass


class K1Config:
    """Timer configuration with thread-safe TOML persistence.

    For docker-based installations, looks for /k1timer/K1config.toml
    first, with any settings there overriding ./K1config.toml.

    Attributes:
        dev_port: Timer serial port, or 'auto' to search for one
        baudrate: Serial baud rate
        response_timeout: Seconds to wait for each command acknowledgement
        offset_results_for_ties: Tied lanes use up the places after them
        eliminator_mode: Eliminator mode applied when the timer is opened
    """

    # Class constants
    DEFAULT_CONFIG_FILE = 'K1config.toml'
    OVERRIDE_CONFIG_PATH = '/k1timer/K1config.toml'
    AUTO_PORT = 'auto'

    def get_config_dir(self) -> Path:
        if getattr(sys, 'frozen', False):
            return Path(sys.executable).parent
        return Path(sys.path[0])

    def __init__(self):
        """Initialize configuration by loading TOML files."""
        self._lock = threading.RLock()
        self._dict = {}
        self._dict2 = {}

        self._config_file = self.get_config_dir() / self.DEFAULT_CONFIG_FILE
        self._override_file = Path(self.OVERRIDE_CONFIG_PATH)

        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from TOML files.

        Raises:
            K1ConfigError: If primary config file cannot be loaded.
        """
        with self._lock:
            try:
                self._dict = toml.load(self._config_file)
            except (FileNotFoundError, toml.TomlDecodeError) as e:
                raise K1ConfigError(
                    f"Failed to load primary config file {self._config_file}: {e}"
                ) from e

            try:
                if self._override_file.exists():
                    self._dict2 = toml.load(self._override_file)
            except toml.TomlDecodeError as e:
                raise K1ConfigError(
                    f"Failed to load override config file {self._override_file}: {e}"
                ) from e

    def _get_toml(self, sect: str, item: str) -> Any:
        """Get configuration value, checking override file first.

        Returns:
            Configuration value or None if not found
        """
        with self._lock:
            try:
                return self._dict2[sect][item]
            except KeyError:
                try:
                    return self._dict[sect][item]
                except KeyError:
                    return None

    def _put_toml(self, sect: str, item: str, setting: Any) -> None:
        with self._lock:
            if self._dict2 or self._override_file.exists():
                self._dict2.setdefault(sect, {})[item] = setting
            else:
                self._dict.setdefault(sect, {})[item] = setting

    def _get_bool(self, sect: str, item: str, default: bool) -> bool:
        value = self._get_toml(sect, item)
        return default if value is None else bool(value)

    def save(self) -> None:
        """Save configuration to file, overwriting existing.

        Raises:
            K1ConfigError: If configuration cannot be saved.
        """
        with self._lock:
            try:
                if self._dict2 or self._override_file.exists():
                    self._override_file.parent.mkdir(parents=True, exist_ok=True)
                    with self._override_file.open('w', encoding='utf-8') as f:
                        toml.dump(self._dict2, f)
                else:
                    with self._config_file.open('w', encoding='utf-8') as f:
                        toml.dump(self._dict, f)
            except OSError as e:
                raise K1ConfigError(f"Failed to save configuration: {e}") from e

    def reload(self) -> None:
        """Reload configuration from files.

        Raises:
            K1ConfigError: If configuration files cannot be reloaded.
        """
        with self._lock:
            self._dict = {}
            self._dict2 = {}
            self._load_config()

    # Configuration section constants
    DEVICE_SECTION = 'device'
    RACE_SECTION = 'race'

    # --------------
    # Device Section
    # --------------

    @property
    def dev_port(self) -> str:
        """Timer serial port; 'auto' selects the first Prolific adapter."""
        return self._get_toml(self.DEVICE_SECTION, 'dev_port') or self.AUTO_PORT

    @dev_port.setter
    def dev_port(self, value: str) -> None:
        self._put_toml(self.DEVICE_SECTION, 'dev_port', value)

    @property
    def auto_detect_port(self) -> bool:
        return self.dev_port.lower() == self.AUTO_PORT

    @property
    def baudrate(self) -> int:
        return self._get_toml(self.DEVICE_SECTION, 'baudrate') or 9600

    @baudrate.setter
    def baudrate(self, value: int) -> None:
        self._put_toml(self.DEVICE_SECTION, 'baudrate', value)

    @property
    def response_timeout(self) -> float:
        """Seconds to wait for a command acknowledgement."""
        return float(self._get_toml(self.DEVICE_SECTION, 'response_timeout') or 1.0)

    @response_timeout.setter
    def response_timeout(self, value: float) -> None:
        self._put_toml(self.DEVICE_SECTION, 'response_timeout', value)

    # ------------
    # Race Section
    # ------------

    @property
    def offset_results_for_ties(self) -> bool:
        return self._get_bool(self.RACE_SECTION, 'offset_results_for_ties', True)

    @offset_results_for_ties.setter
    def offset_results_for_ties(self, value: bool) -> None:
        self._put_toml(self.RACE_SECTION, 'offset_results_for_ties', value)

    @property
    def eliminator_mode(self) -> bool:
        return self._get_bool(self.RACE_SECTION, 'eliminator_mode', False)

    @eliminator_mode.setter
    def eliminator_mode(self, value: bool) -> None:
        self._put_toml(self.RACE_SECTION, 'eliminator_mode', value)

    def __repr__(self) -> str:
        """Return string representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"config_file='{self._config_file}', "
            f"override_file='{self._override_file}')"
        )
