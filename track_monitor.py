# File: track_monitor.py
"""
Track monitor: the application's single handle on the race timer.

Finds the timer's port, opens a :class:`~K1Timer.K1Timer` with the configured
race options and relays every finished :class:`~race_result.RaceResult` to
subscribers (the HTTP layer keeps the latest one for polling clients).
"""

import logging
import threading
from typing import Callable, List, Optional

from K1Timer import DeviceCommunicationError, K1Timer
from port_discovery import ComPortInfo, find_port, get_prolific_com_ports
from race_result import RaceResult


class TimerNotFoundError(DeviceCommunicationError):
    """No serial port that could hold a timer was found."""
    pass


class TrackMonitor:
    """Owns the timer connection for the lifetime of the server."""

    def __init__(self, config, logger: Optional[logging.Logger] = None, timer_factory: Callable = K1Timer):
        """
        Args:
            config: K1Config-like object (dev_port, baudrate, response_timeout,
                offset_results_for_ties, eliminator_mode)
            logger: Optional logger instance. If None, creates module logger.
            timer_factory: Callable creating the timer from a port name
        """
        self._config = config
        self._logger = logger or logging.getLogger(__name__)
        self._timer_factory = timer_factory
        self._lock = threading.RLock()
        self._subscriber_lock = threading.Lock()

        self._timer: Optional[K1Timer] = None
        self._port_info: Optional[ComPortInfo] = None
        self._last_result: Optional[RaceResult] = None
        self._results_cleared = True
        self._subscribers: List[Callable[[RaceResult], None]] = []

    @property
    def timer(self) -> Optional[K1Timer]:
        return self._timer

    @property
    def port_info(self) -> Optional[ComPortInfo]:
        return self._port_info

    @property
    def is_initialized(self) -> bool:
        return self._timer is not None

    @property
    def last_result(self) -> Optional[RaceResult]:
        """Most recent results, or None once the race has been cleared."""
        return self._last_result

    @property
    def results_cleared(self) -> bool:
        return self._results_cleared

    def subscribe(self, callback: Callable[[RaceResult], None]) -> None:
        with self._subscriber_lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[RaceResult], None]) -> None:
        with self._subscriber_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def initialize(self) -> ComPortInfo:
        """
        Connect to the timer unless already connected.

        Returns:
            The port the timer is on

        Raises:
            TimerNotFoundError: If no candidate port exists
            DeviceCommunicationError: If the timer does not respond
        """
        with self._lock:
            if self._timer is not None:
                return self._port_info

            port_info = self._resolve_port()
            self._logger.info(f"Connecting to timer on {port_info.port_name} ({port_info.description})")

            timer = self._timer_factory(
                port_info.port_name,
                self._logger,
                offset_results_for_ties=self._config.offset_results_for_ties,
                use_eliminator_mode=self._config.eliminator_mode,
                baudrate=self._config.baudrate,
                response_timeout=self._config.response_timeout
            )

            if not timer.test_device_communication():
                timer.close()
                raise DeviceCommunicationError(f"Timer on {port_info.port_name} is not responding")

            timer.add_results_listener(self._on_results)
            timer.add_cleared_listener(self._on_race_cleared)
            self._timer = timer
            self._port_info = port_info
            return port_info

    def _resolve_port(self) -> ComPortInfo:
        if self._config.auto_detect_port:
            ports = get_prolific_com_ports()
            if not ports:
                raise TimerNotFoundError("No USB-serial adapter for a timer was found")
            return ports[0]

        port_name = self._config.dev_port
        return find_port(port_name) or ComPortInfo(port_name=port_name)

    def test_connection(self) -> bool:
        timer = self._timer
        return timer is not None and timer.test_device_communication()

    def new_connection(self) -> ComPortInfo:
        """Drop the current connection and connect again."""
        with self._lock:
            self.close()
            return self.initialize()

    def end_race(self) -> bool:
        timer = self._timer
        return timer is not None and timer.end_race()

    def clear_race(self) -> bool:
        timer = self._timer
        return timer is not None and timer.clear_race()

    def close(self) -> None:
        with self._lock:
            if self._timer is None:
                return
            self._timer.remove_results_listener(self._on_results)
            self._timer.remove_cleared_listener(self._on_race_cleared)
            self._timer.close()
            self._timer = None
            self._port_info = None
            self._logger.info("Timer connection closed")

    def _on_results(self, timer: K1Timer, result: RaceResult) -> None:
        self._last_result = result
        self._results_cleared = False

        with self._subscriber_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(result)
            except Exception as ex:
                self._logger.error(f"Results subscriber failed: {ex}")

    def _on_race_cleared(self, timer: K1Timer) -> None:
        self._results_cleared = True
        self._last_result = None
