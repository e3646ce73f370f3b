# File: k1_serial.py
"""
Serial transport for the K1 timer.

The timer speaks short ASCII commands and answers asynchronously, and it
also sends unsolicited notifications (race results, race cleared) at any
time. A background reader thread feeds every received chunk into a
:class:`ResponseMatcher`, which recognises complete responses in the
stream and hands them to the response object that was waiting for them.
:class:`SerialManager` sends one command at a time and waits for the
matcher to report its acknowledgement.

Example:
    Basic usage with context manager:

    >>> with SerialManager('/dev/ttyUSB0', logger) as serial_mgr:
    ...     serial_mgr.open()
    ...     read_mode = ReadModeCommand()
    ...     if serial_mgr.send_command(read_mode):
    ...         print(read_mode.lane_masks)
"""

import logging
import threading
from typing import Callable, List, Optional, Union

import serial

from k1_responses import SerialResponse


# Constants
DEFAULT_BAUDRATE = 9600
DEFAULT_TIMEOUT = 0.5
DEFAULT_WRITE_TIMEOUT = 0.5
DEFAULT_RESPONSE_TIMEOUT = 1.0
READER_JOIN_TIMEOUT = 2.0
TEXT_ENCODING = 'ascii'


class K1SerialError(Exception):
    """Base exception for K1 serial communication errors."""
    pass


class PortOpenError(K1SerialError):
    """The serial port could not be opened."""
    pass


class ResponseError(K1SerialError):
    """A command was not acknowledged."""
    pass


class ResponseMatcher:
    """
    Recognises expected responses in the received character stream.

    Owns the receive buffer and the registry of expected responses. Both
    are only touched while holding ``_lock``, which is held for the whole
    of each delivery and never across a blocking wait.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._buffer = ''
        self._expected: List[SerialResponse] = []
        self._response_event = threading.Event()

    @property
    def buffer(self) -> str:
        """Copy of the characters waiting to be matched."""
        with self._lock:
            return self._buffer

    def register(self, response: SerialResponse) -> None:
        with self._lock:
            self._register(response)

    def unregister(self, response: SerialResponse) -> None:
        with self._lock:
            self._unregister(response)

    def is_registered(self, response: SerialResponse) -> bool:
        with self._lock:
            return any(entry is response for entry in self._expected)

    def clear(self) -> None:
        """Drop any buffered characters."""
        with self._lock:
            self._buffer = ''

    def _register(self, response: SerialResponse) -> None:
        if not any(entry is response for entry in self._expected):
            self._expected.append(response)

    def _unregister(self, response: SerialResponse) -> bool:
        for index, entry in enumerate(self._expected):
            if entry is response:
                del self._expected[index]
                return True
        return False

    # -------------------------------------------------------------------------
    # Sender side
    # -------------------------------------------------------------------------

    def arm(self, command: SerialResponse) -> None:
        """Expect ``command``'s response and clear the completion flag."""
        with self._lock:
            self._register(command)
            self._response_event.clear()

    def wait(self, timeout: float) -> bool:
        """Block until an armed command completes or ``timeout`` elapses."""
        return self._response_event.wait(timeout)

    def disarm(self, command: SerialResponse, completed: bool) -> None:
        """Stop expecting ``command``; release the flag if it never completed."""
        with self._lock:
            if not completed:
                self._response_event.set()
            self._unregister(command)

    # -------------------------------------------------------------------------
    # Reader side
    # -------------------------------------------------------------------------

    def feed(self, data: Union[bytes, str]) -> None:
        """
        Add received characters and deliver every complete response found.

        Args:
            data: Raw bytes from the port, or already decoded text
        """
        if isinstance(data, bytes):
            data = data.decode(TEXT_ENCODING, errors='replace')

        with self._lock:
            self._buffer += data

            while self._buffer:
                found = self._earliest_complete_match()
                if found is None:
                    break

                response, match = found
                if match.start() > 0:
                    self._logger.debug(f"Discarding unmatched data: {self._buffer[:match.start()]!r}")

                matched = match.group(0)
                self._buffer = self._buffer[match.end():]
                self._logger.debug(f"Matched response: {matched!r}")
                response.set_response_data(matched)

                if response.expires_on_use:
                    self._unregister(response)
                    self._response_event.set()

            if self._buffer:
                self._trim_to_partial()

    def _earliest_complete_match(self):
        best = None
        for response in self._expected:
            match = response.match_complete(self._buffer)
            if match is None:
                continue
            if best is None or match.start() < best[1].start():
                best = (response, match)
                if match.start() == 0:
                    break
        return best

    def _trim_to_partial(self) -> None:
        start = None
        for response in self._expected:
            match = response.match_partial(self._buffer)
            if match is not None and (start is None or match.start() < start):
                start = match.start()

        if start is None:
            self._logger.debug(f"Discarding unrecognised data: {self._buffer!r}")
            self._buffer = ''
        elif start > 0:
            self._logger.debug(f"Discarding unmatched data: {self._buffer[:start]!r}")
            self._buffer = self._buffer[start:]


class SerialManager:
    """
    Thread-safe command transport for one K1 timer serial port.

    Only one command is in flight at a time: ``send_command`` holds the send
    lock for its whole duration, including the wait for the response. The
    reader thread only needs the matcher lock, so it keeps delivering data
    (and unsolicited notifications) while a sender is waiting.
    """

    def __init__(
        self,
        port: str,
        logger: Optional[logging.Logger] = None,
        baudrate: int = DEFAULT_BAUDRATE,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT
    ):
        """
        Initialize the transport; the port is not opened until ``open``.

        Args:
            port: Serial port path (e.g., '/dev/ttyUSB0' or 'COM3')
            logger: Optional logger instance. If None, creates module logger.
            baudrate: Communication baud rate
            response_timeout: Seconds to wait for each acknowledgement

        Raises:
            ValueError: If parameters are invalid
        """
        if not port or not isinstance(port, str):
            raise ValueError("Port must be a non-empty string")

        if not isinstance(baudrate, int) or baudrate <= 0:
            raise ValueError("Baudrate must be a positive integer")

        if response_timeout <= 0:
            raise ValueError("Response timeout must be positive")

        self._logger = logger or logging.getLogger(__name__)
        self._port = port
        self._baudrate = baudrate
        self._response_timeout = response_timeout

        self._lock = threading.RLock()
        self._send_lock = threading.Lock()
        self._serial: Optional[serial.Serial] = None
        self._matcher = ResponseMatcher(self._logger)

        self._reader_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        self._response_timeout_listeners: List[Callable] = []
        self._write_timeout_listeners: List[Callable] = []

    def __enter__(self) -> 'SerialManager':
        """Context manager entry - port must be opened separately."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit - close the port."""
        self.close()

    @property
    def port_name(self) -> str:
        return self._port

    @property
    def matcher(self) -> ResponseMatcher:
        return self._matcher

    @property
    def response_timeout(self) -> float:
        return self._response_timeout

    @response_timeout.setter
    def response_timeout(self, value: float) -> None:
        if value <= 0:
            raise ValueError("Response timeout must be positive")
        self._response_timeout = value

    @property
    def is_open(self) -> bool:
        """Check if the serial port is open."""
        with self._lock:
            return self._serial is not None and self._serial.is_open

    def register_response(self, response: SerialResponse) -> None:
        """Watch for an unsolicited response for as long as it stays registered."""
        self._matcher.register(response)

    def unregister_response(self, response: SerialResponse) -> None:
        self._matcher.unregister(response)

    def add_response_timeout_listener(self, listener: Callable) -> None:
        """``listener(command)`` runs when a command goes unanswered."""
        self._response_timeout_listeners.append(listener)

    def add_write_timeout_listener(self, listener: Callable) -> None:
        """``listener(command)`` runs when a command cannot be written."""
        self._write_timeout_listeners.append(listener)

    # -------------------------------------------------------------------------
    # Open / Close
    # -------------------------------------------------------------------------

    def open(self) -> bool:
        """
        Open the port and start the reader thread if not already open.

        Returns:
            True if the port is open on return
        """
        with self._lock:
            if self.is_open:
                return True

            try:
                self._serial = serial.Serial(
                    port=self._port,
                    baudrate=self._baudrate,
                    bytesize=serial.EIGHTBITS,
                    parity=serial.PARITY_NONE,
                    stopbits=serial.STOPBITS_ONE,
                    timeout=DEFAULT_TIMEOUT,
                    write_timeout=DEFAULT_WRITE_TIMEOUT
                )

                if not self._serial.is_open:
                    self._serial.open()

            except (serial.SerialException, ValueError, OSError) as ex:
                self._logger.error(f"Failed to open serial port {self._port}: {ex}")
                self._serial = None
                return False

            self._matcher.clear()
            self._stop_event.clear()
            self._reader_thread = threading.Thread(
                target=self._background_reader,
                name='K1SerialReader',
                daemon=True
            )
            self._reader_thread.start()
            self._logger.info(f"Serial port opened: {self._port} @ {self._baudrate} baud")
            return True

    def require_open(self) -> None:
        """Open the port or raise.

        Raises:
            PortOpenError: If the port could not be opened
        """
        if not self.open():
            raise PortOpenError(f"Unable to open serial port {self._port}")

    def close(self) -> None:
        """Stop the reader thread and close the port. Safe to call repeatedly."""
        with self._lock:
            self._stop_event.set()
            thread = self._reader_thread
            self._reader_thread = None

        # Wait outside lock to avoid deadlock
        if thread and thread is not threading.current_thread():
            thread.join(timeout=READER_JOIN_TIMEOUT)
            if thread.is_alive():
                self._logger.warning("Serial reader thread did not stop gracefully")

        with self._lock:
            if self._serial is None:
                return
            try:
                if self._serial.is_open:
                    self._serial.close()
                    self._logger.info(f"Serial port closed: {self._port}")
            except serial.SerialException as ex:
                self._logger.warning(f"Error closing serial port: {ex}")
            finally:
                self._serial = None

    def _background_reader(self) -> None:
        """Read whatever has arrived and hand it to the matcher until stopped."""
        self._logger.debug("Serial reader started")
        port = self._serial

        while not self._stop_event.is_set():
            try:
                data = port.read(port.in_waiting or 1)
            except (serial.SerialException, OSError) as ex:
                if not self._stop_event.is_set():
                    self._logger.warning(f"Serial read error on {self._port}: {ex}")
                    self._release_port(port)
                break

            if data:
                self._matcher.feed(data)

        self._logger.debug("Serial reader stopped")

    def _release_port(self, port) -> None:
        """Forget a port whose reader failed so the next open() starts over."""
        with self._lock:
            if self._serial is not port:
                return
            try:
                port.close()
            except (serial.SerialException, OSError) as ex:
                self._logger.warning(f"Error closing serial port: {ex}")
            self._serial = None
            self._reader_thread = None
        self._logger.info(f"Serial port released after read failure: {self._port}")

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def send_command(self, command: SerialResponse) -> bool:
        """
        Send one command and wait for its acknowledgement.

        Args:
            command: Command to send; its payload is filled on success and
                reset to defaults on failure

        Returns:
            True if the response arrived within the response timeout
        """
        with self._send_lock:
            self._matcher.arm(command)

            received = False
            if self._write(command):
                received = self._matcher.wait(self._response_timeout)

            self._matcher.disarm(command, received)

            if not received:
                command.reset_response_data()
                self._logger.warning(f"No response to command {command.wire_string()!r}")
                self._notify(self._response_timeout_listeners, command)

            return received

    def require_response(self, command: SerialResponse) -> None:
        """Send ``command`` and raise if it is not acknowledged.

        Raises:
            ResponseError: If no response arrived
        """
        if not self.send_command(command):
            raise ResponseError(f"Command {command.wire_string()!r} was not acknowledged")

    def _write(self, command: SerialResponse) -> bool:
        wire = command.wire_string()
        with self._lock:
            port = self._serial

        if port is None:
            self._logger.warning(f"Cannot send {wire!r}: port not open")
            return False

        try:
            self._logger.debug(f"Sending command: {wire!r}")
            port.write(wire.encode(TEXT_ENCODING))
            return True
        except (serial.SerialException, OSError) as ex:
            self._logger.warning(f"Write of {wire!r} failed: {ex}")
            self._notify(self._write_timeout_listeners, command)
            return False

    def _notify(self, listeners: List[Callable], command: SerialResponse) -> None:
        for listener in list(listeners):
            try:
                listener(command)
            except Exception as ex:
                self._logger.error(f"Timeout listener failed: {ex}")
