"""
Unit tests for the K1 serial transport.

Uses the FakeK1Port fixture in place of serial.Serial so the background
reader thread, the send/wait handshake and timeout handling run for real.
"""

import threading
import time

import pytest
import serial
from unittest.mock import Mock, patch

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))))

from k1_commands import ForcePrintCommand, MaskLaneCommand, ReadModeCommand, ReadSerialNumberCommand
from k1_responses import RaceClearedResponse
from k1_serial import PortOpenError, ResponseError, SerialManager
from k1_types import Lane


class TestSerialManagerConstruction:
    """Test parameter validation."""

    @pytest.mark.unit
    @pytest.mark.parametrize("port", ['', None, 3])
    def test_rejects_bad_port(self, port, mock_logger):
        with pytest.raises(ValueError):
            SerialManager(port, mock_logger)

    @pytest.mark.unit
    def test_rejects_bad_baudrate(self, mock_logger):
        with pytest.raises(ValueError):
            SerialManager('/dev/ttyUSB0', mock_logger, baudrate=0)

    @pytest.mark.unit
    def test_rejects_bad_timeout(self, mock_logger):
        with pytest.raises(ValueError):
            SerialManager('/dev/ttyUSB0', mock_logger, response_timeout=0)

    @pytest.mark.unit
    def test_not_open_until_opened(self, mock_logger):
        manager = SerialManager('/dev/ttyUSB0', mock_logger)
        assert not manager.is_open
        assert manager.port_name == '/dev/ttyUSB0'


class TestOpenClose:
    """Test port lifetime."""

    @pytest.mark.unit
    def test_open_uses_8n1(self, mock_logger):
        with patch('serial.Serial') as mock_serial:
            mock_serial.return_value.is_open = True
            mock_serial.return_value.in_waiting = 0
            mock_serial.return_value.read = Mock(side_effect=lambda size: time.sleep(0.01) or b'')
            manager = SerialManager('/dev/ttyUSB0', mock_logger)

            assert manager.open()
            kwargs = mock_serial.call_args.kwargs
            assert kwargs['port'] == '/dev/ttyUSB0'
            assert kwargs['baudrate'] == 9600
            assert kwargs['bytesize'] == serial.EIGHTBITS
            assert kwargs['parity'] == serial.PARITY_NONE
            assert kwargs['stopbits'] == serial.STOPBITS_ONE
            manager.close()

    @pytest.mark.unit
    def test_open_failure_returns_false(self, mock_logger):
        with patch('serial.Serial', side_effect=serial.SerialException("busy")):
            manager = SerialManager('/dev/ttyUSB0', mock_logger)

            assert manager.open() is False
            assert not manager.is_open
            mock_logger.error.assert_called()

    @pytest.mark.unit
    def test_require_open_raises(self, mock_logger):
        with patch('serial.Serial', side_effect=serial.SerialException("busy")):
            manager = SerialManager('/dev/ttyUSB0', mock_logger)

            with pytest.raises(PortOpenError):
                manager.require_open()

    @pytest.mark.unit
    def test_open_twice_opens_once(self, fake_port, mock_logger):
        with patch('serial.Serial', wraps=fake_port) as spy:
            manager = SerialManager('/dev/ttyUSB0', mock_logger)
            assert manager.open()
            assert manager.open()
            assert spy.call_count == 1
            manager.close()

    @pytest.mark.unit
    def test_close_is_idempotent(self, serial_manager, fake_port):
        serial_manager.close()
        serial_manager.close()

        assert not serial_manager.is_open
        assert not fake_port.is_open

    @pytest.mark.unit
    def test_read_failure_releases_port(self, serial_manager, fake_port):
        fake_port.fail_reads = True

        deadline = time.monotonic() + 2.0
        while serial_manager.is_open and time.monotonic() < deadline:
            time.sleep(0.01)
        assert not serial_manager.is_open
        assert not fake_port.is_open

        fake_port.fail_reads = False
        assert serial_manager.open()
        assert serial_manager.send_command(ForcePrintCommand())

    @pytest.mark.unit
    def test_context_manager_closes(self, fake_port, mock_logger):
        with SerialManager('/dev/ttyUSB0', mock_logger) as manager:
            assert manager.open()
        assert not manager.is_open


class TestSendCommand:
    """Test the send/wait handshake."""

    @pytest.mark.unit
    def test_acknowledged_command(self, serial_manager, fake_port):
        command = ForcePrintCommand()

        assert serial_manager.send_command(command) is True
        assert command.is_response_set
        assert fake_port.written == ['RA']
        assert not serial_manager.matcher.is_registered(command)

    @pytest.mark.unit
    def test_payload_parsed(self, serial_manager):
        command = ReadSerialNumberCommand()

        assert serial_manager.send_command(command)
        assert command.serial_number == 12345

    @pytest.mark.unit
    def test_split_response(self, serial_manager, fake_port):
        fake_port.silent_commands.add('MA')
        command = MaskLaneCommand(Lane.A)

        def deliver():
            time.sleep(0.05)
            fake_port.inject('M')
            time.sleep(0.05)
            fake_port.inject('A\r\n*\r\n')

        threading.Thread(target=deliver, daemon=True).start()

        assert serial_manager.send_command(command)
        assert command.is_response_set

    @pytest.mark.unit
    def test_timeout_resets_payload_and_notifies(self, serial_manager, fake_port):
        serial_manager.response_timeout = 0.1
        listener = Mock()
        serial_manager.add_response_timeout_listener(listener)
        fake_port.silent_commands.add('RM')
        command = ReadModeCommand()
        command.set_response_data('RM\r\n2 110000 1 1 0\r\n*\r\n')

        assert serial_manager.send_command(command) is False
        assert not command.is_response_set
        assert command.reversed_lane_count == 0
        assert command.lane_masks == (False,) * 6
        assert not serial_manager.matcher.is_registered(command)
        listener.assert_called_once_with(command)

    @pytest.mark.unit
    def test_error_reply_times_out(self, serial_manager, fake_port):
        serial_manager.response_timeout = 0.1
        command = ForcePrintCommand()
        fake_port.silent_commands.add('RA')
        fake_port.inject('RA\r\nX\r\n')

        assert serial_manager.send_command(command) is False

    @pytest.mark.unit
    def test_write_failure_skips_wait(self, serial_manager, fake_port):
        write_listener = Mock()
        timeout_listener = Mock()
        serial_manager.add_write_timeout_listener(write_listener)
        serial_manager.add_response_timeout_listener(timeout_listener)
        fake_port.fail_writes = True

        started = time.monotonic()
        assert serial_manager.send_command(ForcePrintCommand()) is False
        assert time.monotonic() - started < serial_manager.response_timeout

        write_listener.assert_called_once()
        timeout_listener.assert_called_once()

    @pytest.mark.unit
    def test_send_when_closed_fails(self, mock_logger):
        manager = SerialManager('/dev/ttyUSB0', mock_logger, response_timeout=0.1)
        assert manager.send_command(ForcePrintCommand()) is False

    @pytest.mark.unit
    def test_require_response_raises(self, serial_manager, fake_port):
        serial_manager.response_timeout = 0.1
        fake_port.silent_commands.add('RA')

        with pytest.raises(ResponseError):
            serial_manager.require_response(ForcePrintCommand())

    @pytest.mark.unit
    def test_concurrent_senders_are_serialised(self, serial_manager, fake_port):
        outcomes = []

        def send(lane):
            outcomes.append(serial_manager.send_command(MaskLaneCommand(lane)))

        threads = [threading.Thread(target=send, args=(lane,)) for lane in Lane]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(5.0)

        assert outcomes == [True] * 6
        assert sorted(fake_port.written) == ['MA', 'MB', 'MC', 'MD', 'ME', 'MF']


class TestUnsolicited:
    """Test notifications arriving with no command outstanding."""

    @pytest.mark.unit
    def test_race_cleared_delivered(self, serial_manager, fake_port):
        cleared = RaceClearedResponse()
        received = threading.Event()
        cleared.add_listener(received.set)
        serial_manager.register_response(cleared)

        fake_port.inject('@')

        assert received.wait(2.0)

    @pytest.mark.unit
    def test_notification_during_command(self, serial_manager, fake_port):
        cleared = RaceClearedResponse()
        received = threading.Event()
        cleared.add_listener(received.set)
        serial_manager.register_response(cleared)
        fake_port.inject('@')

        assert serial_manager.send_command(ForcePrintCommand())
        assert received.wait(2.0)
