"""
Unit tests for the server configuration module.

Tests configuration loading, property access, defaults and TOML
persistence using temporary files to avoid modifying actual config.
"""

import logging

import pytest
import toml
from unittest.mock import patch

# Import module under test
import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from config import Config, ConfigError


@pytest.fixture
def loaded_config(temp_toml_file, tmp_path):
    """Config loaded from the shared temporary TOML content."""
    config_file = tmp_path / 'config.toml'
    config_file.write_text(temp_toml_file.read_text())

    with patch.object(Config, 'get_config_dir', return_value=tmp_path):
        return Config()


class TestConfigInitialization:
    """Test configuration initialization."""

    @pytest.mark.unit
    def test_config_raises_on_missing_file(self, tmp_path):
        """Config should raise error when file is missing."""
        with patch.object(Config, 'get_config_dir', return_value=tmp_path):
            with pytest.raises(ConfigError, match="Failed to load"):
                Config()

    @pytest.mark.unit
    def test_config_raises_on_invalid_toml(self, tmp_path):
        """Config should raise error on invalid TOML syntax."""
        (tmp_path / 'config.toml').write_text('invalid toml {{{{')

        with patch.object(Config, 'get_config_dir', return_value=tmp_path):
            with pytest.raises(ConfigError):
                Config()

    @pytest.mark.unit
    def test_repr_includes_class_name(self, loaded_config):
        assert 'Config' in repr(loaded_config)


class TestConfigProperties:
    """Test values read from each section."""

    @pytest.mark.unit
    def test_network_section(self, loaded_config):
        assert loaded_config.ip_address == '127.0.0.1'
        assert loaded_config.port == 5555
        assert loaded_config.threads == 2

    @pytest.mark.unit
    def test_server_section(self, loaded_config):
        assert loaded_config.verbose_driver_exceptions is False

    @pytest.mark.unit
    def test_logging_section(self, loaded_config):
        assert loaded_config.log_level == logging.DEBUG
        assert loaded_config.log_to_stdout is True
        assert loaded_config.max_size_mb == 2
        assert loaded_config.num_keep_logs == 3

    @pytest.mark.unit
    def test_defaults_for_missing_values(self, tmp_path):
        """Missing values fall back to built-in defaults."""
        (tmp_path / 'config.toml').write_text('[network]\nport = 6000\n')

        with patch.object(Config, 'get_config_dir', return_value=tmp_path):
            config = Config()

        assert config.port == 6000
        assert config.ip_address == ''
        assert config.threads == 4
        assert config.log_level == logging.INFO
        assert config.log_to_stdout is False
        assert config.max_size_mb == 5
        assert config.num_keep_logs == 10

    @pytest.mark.unit
    def test_shipped_file_has_only_known_settings(self):
        """Every setting in the bundled config.toml is read by a Config property."""
        root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
        shipped = toml.load(os.path.join(root, 'config.toml'))

        for section, items in shipped.items():
            if not isinstance(items, dict):
                continue
            for item in items:
                assert isinstance(getattr(Config, item, None), property), f"[{section}] {item}"
        assert not hasattr(Config, 'location')


class TestConfigSaveAndReload:
    """Test configuration persistence operations."""

    @pytest.mark.unit
    def test_setters_update_values(self, loaded_config):
        loaded_config.port = 6666
        loaded_config.threads = 16
        loaded_config.log_level = 'WARNING'

        assert loaded_config.port == 6666
        assert loaded_config.threads == 16
        assert loaded_config.log_level == logging.WARNING

    @pytest.mark.unit
    def test_save_config(self, loaded_config, tmp_path):
        """save() should write configuration to file."""
        loaded_config.verbose_driver_exceptions = True
        loaded_config.save()

        saved_content = toml.load(tmp_path / 'config.toml')
        assert saved_content['server']['verbose_driver_exceptions'] is True

    @pytest.mark.unit
    def test_reload_config(self, loaded_config, tmp_path):
        """reload() should refresh configuration from file."""
        config_file = tmp_path / 'config.toml'
        config_file.write_text(config_file.read_text().replace('threads = 2', 'threads = 8'))

        loaded_config.reload()
        assert loaded_config.threads == 8
