# This handles the global instances used by the timer server

import threading
from logging import Logger
from typing import Optional

# Lazy imports to avoid circular dependencies
_K1Config = None
_Config = None
_TrackMonitor = None

_lock = threading.RLock()

_config_instance = None
_serverconfig_instance = None
_monitor_instance = None


def get_config():
    """Get or create the global timer configuration instance."""
    global _config_instance, _K1Config

    if _config_instance is None:
        with _lock:
            if _config_instance is None:
                if _K1Config is None:
                    import K1Config as _K1Config
                _config_instance = _K1Config.K1Config()

    return _config_instance


def get_serverconfig():
    """Get or create the global server configuration instance."""
    global _serverconfig_instance, _Config

    if _serverconfig_instance is None:
        with _lock:
            if _serverconfig_instance is None:
                if _Config is None:
                    import config as _Config
                _serverconfig_instance = _Config.Config()

    return _serverconfig_instance


def get_track_monitor(logger: Optional[Logger] = None):
    """Get or create the global track monitor; the timer is opened on first use."""
    global _monitor_instance, _TrackMonitor

    if _monitor_instance is None:
        with _lock:
            if _monitor_instance is None:
                if _TrackMonitor is None:
                    import track_monitor as _TrackMonitor
                _monitor_instance = _TrackMonitor.TrackMonitor(get_config(), logger)

    return _monitor_instance


def reset_track_monitor() -> None:
    """Close the timer and drop the track monitor instance."""
    global _monitor_instance

    with _lock:
        if _monitor_instance is not None:
            _monitor_instance.close()
            _monitor_instance = None
