"""
Shared pytest fixtures for K1 timer tests.

This module provides common fixtures used across unit and integration tests,
including mock loggers, configuration objects and a fake serial port that
behaves like a K1 timer.
"""

import pytest
from unittest.mock import Mock, patch
import threading
import sys
import os

import serial

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class FakeK1Port:
    """Stands in for serial.Serial with a K1 timer on the other end.

    Writes are answered the way a timer answers them; ``inject`` queues
    unsolicited data such as results lines. Reads block briefly like a
    real port with a timeout.
    """

    READ_WAIT = 0.05

    def __init__(self, *args, **kwargs):
        self.port = kwargs.get('port')
        self.timeout = kwargs.get('timeout')
        self.is_open = True
        self.written = []
        self.silent_commands = set()
        self.fail_writes = False
        self.fail_reads = False
        self._pending = b''
        self._cond = threading.Condition()
        self.reset_state()

    def __call__(self, *args, **kwargs):
        """Lets the instance replace serial.Serial directly."""
        self.port = kwargs.get('port', self.port)
        self.timeout = kwargs.get('timeout', self.timeout)
        self.is_open = True
        return self

    def reset_state(self) -> None:
        # reversed count, masks A-F, reversed flag, eliminator flag, format
        self.mode = [0, 0, 0, 0, 0, 0, 0, 0, 0, 1]
        self.features = [1] * 8
        self.serial_number = 12345
        self.physical_lane_count = 4

    @property
    def in_waiting(self) -> int:
        with self._cond:
            return len(self._pending)

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        with self._cond:
            self.is_open = False
            self._cond.notify_all()

    def read(self, size: int = 1) -> bytes:
        with self._cond:
            if not self.is_open:
                raise serial.SerialException("Port is closed")
            if self.fail_reads:
                raise serial.SerialException("Device disconnected")
            if not self._pending:
                self._cond.wait(self.READ_WAIT)
            data, self._pending = self._pending[:size], self._pending[size:]
            return data

    def write(self, data: bytes) -> int:
        if not self.is_open:
            raise serial.SerialException("Port is closed")
        if self.fail_writes:
            raise serial.SerialTimeoutException("Write timeout")

        message = data.decode('ascii')
        self.written.append(message)
        if message not in self.silent_commands:
            self.inject(self.respond(message))
        return len(data)

    def inject(self, text: str) -> None:
        with self._cond:
            self._pending += text.encode('ascii')
            self._cond.notify_all()

    def respond(self, message: str) -> str:
        ack = message + '\r\n*\r\n'
        mode = self.mode

        if len(message) == 2 and message[0] == 'M' and 'A' <= message[1] <= 'F':
            lane = ord(message[1]) - ord('A')
            if lane < self.physical_lane_count:
                mode[lane + 1] = 1
            return ack
        if len(message) == 3 and message.startswith('RL') and '0' <= message[2] <= '6':
            mode[0] = int(message[2])
            mode[7] = 0 if mode[0] == 0 else 1
            return ack
        if len(message) == 3 and message.startswith('LX') and 'A' <= message[2] <= 'P':
            return ack
        if message == 'MG':
            for index in range(1, 7):
                mode[index] = 0
            return 'MG\r\nAC'
        if message in ('LE', 'RE'):
            mode[8] = 1 if message == 'LE' else 0
            return ack
        if message in ('N0', 'N1'):
            mode[9] = int(message[1])
            return ack
        if message == 'RF':
            flags = ''.join(str(flag) for flag in self.features)
            return f'RF\r\n{flags[:4]} {flags[4:]}\r\n*\r\n'
        if message == 'RS':
            return f'RS\r\n{self.serial_number:05d}\r\n'
        if message == 'RM':
            masks = ''.join(str(bit) for bit in mode[1:7])
            return f'RM\r\n{mode[0]} {masks} {mode[7]} {mode[8]} {mode[9]}\r\n*\r\n'
        if message in ('RX', 'RA', 'LR'):
            return ack
        return message + '\r\nX\r\n'

    def commands_written(self):
        return list(self.written)


def make_results_line(times, tokens=None) -> str:
    """Build a results line from six times and optional place tokens."""
    tokens = tokens or [' '] * 6
    return ''.join(
        f"{letter}={time:.3f}{token} " for letter, time, token in zip('ABCDEF', times, tokens)
    ) + '\r\n'


@pytest.fixture
def mock_logger():
    """Create a mock logger for testing.

    Returns:
        Mock logger with standard logging methods.
    """
    logger = Mock()
    logger.debug = Mock()
    logger.info = Mock()
    logger.warning = Mock()
    logger.error = Mock()
    logger.critical = Mock()
    return logger


@pytest.fixture
def fake_port():
    """Fake K1 timer installed in place of serial.Serial.

    Yields:
        FakeK1Port instance returned by every serial.Serial() call.
    """
    port = FakeK1Port()
    with patch('serial.Serial', new=port):
        yield port


@pytest.fixture
def serial_manager(fake_port, mock_logger):
    """Open SerialManager talking to the fake timer."""
    from k1_serial import SerialManager

    manager = SerialManager('/dev/ttyUSB0', mock_logger, response_timeout=0.5)
    assert manager.open()
    yield manager
    manager.close()


@pytest.fixture
def k1_timer(fake_port, mock_logger):
    """Fully initialized K1Timer on the fake timer."""
    from K1Timer import K1Timer

    timer = K1Timer('/dev/ttyUSB0', mock_logger, response_timeout=0.5)
    yield timer
    timer.close()


@pytest.fixture
def results_line():
    """Factory for results lines."""
    return make_results_line


@pytest.fixture
def mock_config():
    """Create mock server configuration object.

    Returns:
        Mock config with standard properties.
    """
    config = Mock()
    config.ip_address = ''
    config.port = 5555
    config.threads = 4
    config.verbose_driver_exceptions = True
    config.log_level = 10  # DEBUG
    config.log_to_stdout = False
    config.max_size_mb = 5
    config.num_keep_logs = 10
    return config


@pytest.fixture
def mock_k1_config():
    """Create mock timer configuration object.

    Returns:
        Mock timer config with device and race options.
    """
    config = Mock()
    config.dev_port = 'auto'
    config.auto_detect_port = True
    config.baudrate = 9600
    config.response_timeout = 0.5
    config.offset_results_for_ties = True
    config.eliminator_mode = False
    return config


@pytest.fixture
def temp_toml_file(tmp_path):
    """Create a temporary server config file for testing.

    Args:
        tmp_path: pytest tmp_path fixture

    Returns:
        Path to temporary config file.
    """
    config_content = """
title = "Test Config"

[network]
ip_address = '127.0.0.1'
port = 5555
threads = 2

[server]
verbose_driver_exceptions = false

[logging]
log_level = 'DEBUG'
log_to_stdout = true
max_size_mb = 2
num_keep_logs = 3
"""
    config_file = tmp_path / 'source_config.toml'
    config_file.write_text(config_content)
    return config_file


@pytest.fixture
def temp_k1_toml_file(tmp_path):
    """Create a temporary timer config file for testing."""
    config_content = """
title = "Test Timer Config"

[device]
dev_port = '/dev/ttyUSB3'
baudrate = 9600
response_timeout = 0.75

[race]
offset_results_for_ties = false
eliminator_mode = true
"""
    config_file = tmp_path / 'source_K1config.toml'
    config_file.write_text(config_content)
    return config_file
