# File: K1Timer.py
"""
K1 timer device session.

Wraps a :class:`~k1_serial.SerialManager` with the race-oriented operations
of the timer: feature discovery, mode tracking, lane masking, lane count
detection, automatic reset and the race start/stop commands. Results and
race-cleared notifications arrive on the serial reader thread and are handed
to a single worker thread before subscribers are called, so a subscriber may
send commands from inside its callback.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from k1_commands import (
    DisableAutomaticResetCommand,
    EliminatorModeOffCommand,
    EliminatorModeOnCommand,
    ForcePrintCommand,
    LaserResetCommand,
    NewFormatCommand,
    ReadFeaturesCommand,
    ReadModeCommand,
    ReadSerialNumberCommand,
    ResetLaneMasksCommand,
    ResetTimerCommand,
    ReverseLanesCommand,
    SetAutomaticResetCommand,
    mask_commands_for,
)
from k1_responses import RaceClearedResponse, RaceResultsResponse, RawRaceResults
from k1_serial import (
    DEFAULT_BAUDRATE,
    DEFAULT_RESPONSE_TIMEOUT,
    K1SerialError,
    SerialManager,
)
from k1_types import DataFormat, DeviceFeature, Lane, MAX_LANES
from race_result import RaceResult


OFFSET_RESULTS_FOR_TIES_DEFAULT = True
ELIMINATOR_MODE_DEFAULT = False


class DeviceCommunicationError(K1SerialError):
    """The timer could not be opened or did not respond during setup."""
    pass


@dataclass(frozen=True)
class FeatureSet:
    """Optional features reported by the RF command."""
    flags: Tuple[bool, ...] = (False,) * len(DeviceFeature)

    def is_available(self, feature: DeviceFeature) -> bool:
        return self.flags[DeviceFeature(feature)]


@dataclass(frozen=True)
class DeviceMode:
    """Timer mode as last reported by the RM command."""
    reversed_lane_count: int = 0
    lane_masked: Tuple[bool, ...] = field(default=(False,) * MAX_LANES)
    lanes_reversed: bool = False
    eliminator_mode: bool = False
    data_format: DataFormat = DataFormat.NEW

    @classmethod
    def from_command(cls, command: ReadModeCommand) -> 'DeviceMode':
        return cls(
            reversed_lane_count=command.reversed_lane_count,
            lane_masked=command.lane_masks,
            lanes_reversed=command.lanes_reversed,
            eliminator_mode=command.eliminator_mode,
            data_format=command.data_format,
        )


class K1Timer:
    """
    One K1 timer connected on a serial port.

    Construction opens the port and brings the timer to a known state; if
    any step fails the port is closed again and DeviceCommunicationError is
    raised.
    """

    def __init__(
        self,
        port_name: str,
        logger: Optional[logging.Logger] = None,
        offset_results_for_ties: bool = OFFSET_RESULTS_FOR_TIES_DEFAULT,
        use_eliminator_mode: bool = ELIMINATOR_MODE_DEFAULT,
        baudrate: int = DEFAULT_BAUDRATE,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        serial_manager: Optional[SerialManager] = None
    ):
        """
        Open the timer and initialize it.

        Args:
            port_name: Serial port the timer is attached to
            logger: Optional logger instance. If None, creates module logger.
            offset_results_for_ties: Tied lanes use up the places after them
            use_eliminator_mode: Eliminator mode applied at startup and on restore
            baudrate: Communication baud rate
            response_timeout: Seconds to wait for each acknowledgement
            serial_manager: Transport to use instead of creating one

        Raises:
            DeviceCommunicationError: If the timer cannot be initialized
        """
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.RLock()

        self._offset_results_for_ties = offset_results_for_ties
        self._eliminator_mode_default = use_eliminator_mode
        self._features = FeatureSet()
        self._mode = DeviceMode()
        self._automatic_reset_last_value_set = 0.0
        self._last_detected_physical_lane_count = MAX_LANES
        self._last_results_cleared = True

        self._results_listeners: List[Callable] = []
        self._cleared_listeners: List[Callable] = []
        self._event_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='K1Events')

        self._serial = serial_manager or SerialManager(
            port_name, self._logger, baudrate=baudrate, response_timeout=response_timeout
        )

        self._race_cleared = RaceClearedResponse()
        self._race_results = RaceResultsResponse()
        self._race_cleared.add_listener(self._on_race_cleared_received)
        self._race_results.add_listener(self._on_race_results_received)

        try:
            self._initialize()
        except DeviceCommunicationError:
            self.close()
            raise

        self._logger.info(f"K1 timer ready on {self.port_name}")

    def _initialize(self) -> None:
        self._serial.register_response(self._race_cleared)
        self._serial.register_response(self._race_results)

        if not self._serial.open():
            raise DeviceCommunicationError(f"Unable to open timer port {self.port_name}")

        if not self.update_feature_list():
            raise DeviceCommunicationError("Timer did not report its features")

        if self.is_feature_available(DeviceFeature.ELIMINATOR_MODE):
            if not self._send_eliminator_mode(self._eliminator_mode_default):
                self._logger.warning("Initial eliminator mode was not acknowledged")

        if not self.restore_defaults():
            raise DeviceCommunicationError("Timer did not accept default settings")

        if self.detect_number_of_device_lanes() < 0:
            raise DeviceCommunicationError("Unable to detect the number of timer lanes")

        if not self.clear_race():
            raise DeviceCommunicationError("Timer did not clear the race")

    def __enter__(self) -> 'K1Timer':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the port and stop the event worker."""
        self._serial.unregister_response(self._race_cleared)
        self._serial.unregister_response(self._race_results)
        self._serial.close()
        self._event_executor.shutdown(wait=False)

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def port_name(self) -> str:
        return self._serial.port_name

    @property
    def is_open(self) -> bool:
        return self._serial.is_open

    @property
    def features(self) -> FeatureSet:
        with self._lock:
            return self._features

    @property
    def mode(self) -> DeviceMode:
        with self._lock:
            return self._mode

    @property
    def offset_results_for_ties(self) -> bool:
        return self._offset_results_for_ties

    @offset_results_for_ties.setter
    def offset_results_for_ties(self, value: bool) -> None:
        self._offset_results_for_ties = bool(value)

    @property
    def are_lanes_reversed(self) -> bool:
        return self.mode.lanes_reversed

    @property
    def number_of_reversed_lanes(self) -> int:
        return self.mode.reversed_lane_count

    @property
    def data_format(self) -> DataFormat:
        return self.mode.data_format

    @property
    def automatic_reset_last_value_set(self) -> float:
        """Seconds last applied by enable_automatic_reset, 0 when disabled."""
        return self._automatic_reset_last_value_set

    @property
    def last_detected_physical_lane_count(self) -> int:
        return self._last_detected_physical_lane_count

    @property
    def last_results_cleared(self) -> bool:
        """True once the race is cleared, False after results arrive."""
        return self._last_results_cleared

    def is_feature_available(self, feature: DeviceFeature) -> bool:
        return self.features.is_available(feature)

    def is_mask_set(self, lane: Lane) -> bool:
        return self.mode.lane_masked[Lane(lane)]

    def is_eliminator_mode_enabled(self) -> bool:
        return self.mode.eliminator_mode

    # -------------------------------------------------------------------------
    # Subscribers
    # -------------------------------------------------------------------------

    def add_results_listener(self, listener: Callable[['K1Timer', RaceResult], None]) -> None:
        with self._lock:
            if listener not in self._results_listeners:
                self._results_listeners.append(listener)

    def remove_results_listener(self, listener: Callable) -> None:
        with self._lock:
            if listener in self._results_listeners:
                self._results_listeners.remove(listener)

    def add_cleared_listener(self, listener: Callable[['K1Timer'], None]) -> None:
        with self._lock:
            if listener not in self._cleared_listeners:
                self._cleared_listeners.append(listener)

    def remove_cleared_listener(self, listener: Callable) -> None:
        with self._lock:
            if listener in self._cleared_listeners:
                self._cleared_listeners.remove(listener)

    # Called on the reader thread with the matcher lock held
    def _on_race_results_received(self, raw: RawRaceResults) -> None:
        self._submit_event(self._dispatch_results, raw)

    def _on_race_cleared_received(self) -> None:
        self._submit_event(self._dispatch_race_cleared)

    def _submit_event(self, handler: Callable, *args) -> None:
        try:
            self._event_executor.submit(handler, *args)
        except RuntimeError:
            self._logger.debug("Timer closed, dropping notification")

    def _dispatch_results(self, raw: RawRaceResults) -> None:
        mode = self.mode
        result = RaceResult.from_raw(
            raw, mode.lane_masked, self._offset_results_for_ties, mode.eliminator_mode
        )
        self._last_results_cleared = False
        self._logger.info(f"Race results received: {raw.to_wire().strip()}")

        with self._lock:
            listeners = list(self._results_listeners)
        for listener in listeners:
            try:
                listener(self, result)
            except Exception as ex:
                self._logger.error(f"Results listener failed: {ex}")

    def _dispatch_race_cleared(self) -> None:
        self._last_results_cleared = True
        self._logger.info("Race cleared")

        with self._lock:
            listeners = list(self._cleared_listeners)
        for listener in listeners:
            try:
                listener(self)
            except Exception as ex:
                self._logger.error(f"Race cleared listener failed: {ex}")

    # -------------------------------------------------------------------------
    # Device state
    # -------------------------------------------------------------------------

    def update_feature_list(self) -> bool:
        """Query the timer's optional features and cache them."""
        command = ReadFeaturesCommand()
        if not self._serial.send_command(command):
            return False

        with self._lock:
            self._features = FeatureSet(command.features)
        self._logger.info(
            "Timer features: "
            + ', '.join(feature.name for feature in DeviceFeature if command.is_feature_available(feature))
        )
        return True

    def reread_mode(self) -> bool:
        """Refresh the cached mode; the cache is untouched if the read fails."""
        command = ReadModeCommand()
        if not self._serial.send_command(command):
            return False

        with self._lock:
            self._mode = DeviceMode.from_command(command)
        self._logger.debug(f"Timer mode: {self._mode}")
        return True

    def test_device_communication(self) -> bool:
        return self.reread_mode()

    def get_serial_number(self) -> int:
        """Serial number reported by the timer, or -1 if it did not answer."""
        command = ReadSerialNumberCommand()
        if not self._serial.send_command(command):
            return -1
        return command.serial_number

    def restore_defaults(self) -> bool:
        """
        Return the timer to the session defaults.

        Every step is attempted even if an earlier one fails.

        Returns:
            True if every step and the final mode read succeeded
        """
        success = self._serial.send_command(NewFormatCommand())

        if self._serial.send_command(DisableAutomaticResetCommand()):
            self._automatic_reset_last_value_set = 0.0
        else:
            success = False

        if self.is_feature_available(DeviceFeature.ELIMINATOR_MODE):
            success = self._send_eliminator_mode(self._eliminator_mode_default) and success

        if self.is_feature_available(DeviceFeature.REVERSE_LANES):
            success = self._serial.send_command(ReverseLanesCommand(0)) and success

        if self.is_feature_available(DeviceFeature.MASK_LANE):
            success = self._serial.send_command(ResetLaneMasksCommand()) and success

        success = self.reread_mode() and success

        if not success:
            self._logger.warning("Restoring timer defaults did not fully succeed")
        return success

    def detect_number_of_device_lanes(self) -> int:
        """
        Find how many lanes the timer physically has.

        Masks every lane, reads back which masks the timer accepted, then
        puts back the masks that were set beforehand. Timers without lane masking report the
        maximum of six.

        Returns:
            Number of lanes, or -1 if any command failed
        """
        if not self.is_feature_available(DeviceFeature.MASK_LANE):
            self._last_detected_physical_lane_count = MAX_LANES
            return MAX_LANES

        if not self.reread_mode():
            return -1
        initial_masks = self.mode.lane_masked

        for command in mask_commands_for([not masked for masked in initial_masks]):
            if not self._serial.send_command(command):
                return -1

        if not self.reread_mode():
            return -1
        test_masks = self.mode.lane_masked

        lane = MAX_LANES - 1
        while lane > 0 and not test_masks[lane]:
            lane -= 1
        lane_count = lane + 1

        if not self._serial.send_command(ResetLaneMasksCommand()):
            return -1
        for command in mask_commands_for(initial_masks):
            if not self._serial.send_command(command):
                return -1

        if not self.reread_mode():
            return -1

        self._last_detected_physical_lane_count = lane_count
        self._logger.info(f"Timer has {lane_count} lanes")
        return lane_count

    # -------------------------------------------------------------------------
    # Race operations
    # -------------------------------------------------------------------------

    def end_race(self) -> bool:
        """Force the timer to report results now."""
        if not self.is_feature_available(DeviceFeature.FORCE_PRINT):
            self._logger.warning("Timer does not support forcing results")
            return False
        return self._serial.send_command(ForcePrintCommand())

    def clear_race(self) -> bool:
        """Reset the timer (and laser gate, if fitted) for the next race."""
        success = self._serial.send_command(ResetTimerCommand())
        if self.is_feature_available(DeviceFeature.LASER_RESET):
            success = self._serial.send_command(LaserResetCommand()) and success
        return success

    def set_lane_masks(self, masks: Sequence[bool]) -> bool:
        """
        Mask exactly the lanes flagged True.

        Args:
            masks: Six flags, lanes A..F

        Returns:
            True if every command and the mode read succeeded
        """
        if len(masks) != MAX_LANES:
            raise ValueError(f"Expected {MAX_LANES} lane masks, got {len(masks)}")

        if not self.is_feature_available(DeviceFeature.MASK_LANE):
            self._logger.warning("Timer does not support lane masking")
            return False

        if not self._serial.send_command(ResetLaneMasksCommand()):
            return False

        for command in mask_commands_for(masks):
            if not self._serial.send_command(command):
                self.reread_mode()
                return False

        return self.reread_mode()

    def enable_automatic_reset(self, seconds: float) -> float:
        """
        Reset the timer automatically ``seconds`` after each race.

        Returns:
            Delay actually applied after quantising, or -1 on failure
        """
        command = SetAutomaticResetCommand(seconds)
        if not self._serial.send_command(command):
            return -1

        self._automatic_reset_last_value_set = command.get_reset_time()
        return self._automatic_reset_last_value_set

    def disable_automatic_reset(self) -> bool:
        if not self._serial.send_command(DisableAutomaticResetCommand()):
            return False
        self._automatic_reset_last_value_set = 0.0
        return True

    def reverse_lanes(self, lane_count: int) -> bool:
        """Reverse the numbering of the first ``lane_count`` lanes (0 restores)."""
        if not self.is_feature_available(DeviceFeature.REVERSE_LANES):
            self._logger.warning("Timer does not support lane reversal")
            return False
        if not self._serial.send_command(ReverseLanesCommand(lane_count)):
            return False
        return self.reread_mode()

    def set_eliminator_mode(self, enabled: bool) -> bool:
        if not self.is_feature_available(DeviceFeature.ELIMINATOR_MODE):
            self._logger.warning("Timer does not support eliminator mode")
            return False
        if not self._send_eliminator_mode(enabled):
            return False
        return self.reread_mode()

    def _send_eliminator_mode(self, enabled: bool) -> bool:
        command = EliminatorModeOnCommand() if enabled else EliminatorModeOffCommand()
        return self._serial.send_command(command)
