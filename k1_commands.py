# File: k1_commands.py
"""
Command envelopes for the K1 timer.

Each command pairs the text written to the timer with the grammar of the
acknowledgement it expects back. Most commands are acknowledged by echoing
the command followed by ``\\r\\n*\\r\\n``; the partial grammar for those is
every proper prefix of the acknowledgement, so a response split across
reads is held in the buffer until the rest arrives.

The set of commands is closed: one class per :class:`CommandKind`.
"""

import re
from typing import Optional, Sequence, Tuple

from k1_responses import SerialResponse
from k1_types import CommandKind, DataFormat, DeviceFeature, Lane, MAX_LANES


ACK_SUFFIX = '\r\n*\r\n'

# Automatic reset timing
AUTO_RESET_INCREMENT = 1.65
AUTO_RESET_MIN_LEVEL = 1
AUTO_RESET_MAX_LEVEL = 15


def prefix_alternation(text: str) -> str:
    """Regex matching any proper, non-empty prefix of ``text``."""
    return '(' + '|'.join(re.escape(text[:size]) for size in range(1, len(text))) + ')'


class SerialCommand(SerialResponse):
    """A command the transport can send, and the response it waits for."""

    kind: CommandKind = None

    def __init__(self, command_string: str, response_text: Optional[str] = None):
        self._command_string = ''
        super().__init__('', '', expires_on_use=True)
        self._set_command_string(command_string, response_text)

    def _set_command_string(self, command_string: str, response_text: Optional[str] = None) -> None:
        """Set the command text and derive an echo-style acknowledgement grammar."""
        self._command_string = command_string
        text = response_text if response_text is not None else command_string + ACK_SUFFIX
        self._set_patterns(re.escape(text), prefix_alternation(text))

    @property
    def command_string(self) -> str:
        return self._command_string

    def wire_string(self) -> str:
        """Text written to the serial port."""
        return self._command_string

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self._command_string!r})"


class ForcePrintCommand(SerialCommand):
    """RA: force the timer to print results for lanes still running."""
    kind = CommandKind.FORCE_PRINT

    def __init__(self):
        super().__init__('RA')


class ResetTimerCommand(SerialCommand):
    """RX: reset the timer for the next race."""
    kind = CommandKind.RESET_TIMER

    def __init__(self):
        super().__init__('RX')


class LaserResetCommand(SerialCommand):
    """LR: reset the laser gate."""
    kind = CommandKind.LASER_RESET

    def __init__(self):
        super().__init__('LR')


class EliminatorModeOnCommand(SerialCommand):
    kind = CommandKind.ELIMINATOR_ON

    def __init__(self):
        super().__init__('LE')


class EliminatorModeOffCommand(SerialCommand):
    kind = CommandKind.ELIMINATOR_OFF

    def __init__(self):
        super().__init__('RE')


class OldFormatCommand(SerialCommand):
    kind = CommandKind.OLD_FORMAT

    def __init__(self):
        super().__init__('N0')


class NewFormatCommand(SerialCommand):
    kind = CommandKind.NEW_FORMAT

    def __init__(self):
        super().__init__('N1')


class DisableAutomaticResetCommand(SerialCommand):
    """LXP: turn the automatic reset off."""
    kind = CommandKind.DISABLE_AUTO_RESET

    def __init__(self):
        super().__init__('LXP')


class ResetLaneMasksCommand(SerialCommand):
    """MG: unmask every lane. The timer answers ``MG\\r\\nAC``."""
    kind = CommandKind.RESET_LANE_MASKS

    def __init__(self):
        super().__init__('MG', 'MG\r\nAC')


class MaskLaneCommand(SerialCommand):
    """MA..MF: mask one lane for the next race."""
    kind = CommandKind.MASK_LANE

    def __init__(self, lane: Lane = Lane.A):
        self._lane = Lane.A
        super().__init__('MA')
        self.set_lane(lane)

    def set_lane(self, lane: Lane) -> None:
        self._lane = Lane(lane)
        self._set_command_string('M' + self._lane.letter)

    def get_lane(self) -> Lane:
        return self._lane


class ReverseLanesCommand(SerialCommand):
    """RL0..RL6: reverse the numbering of the first ``count`` lanes (0 restores)."""
    kind = CommandKind.REVERSE_LANES

    def __init__(self, lane_count: int = 0):
        self._lane_count = 0
        super().__init__('RL0')
        self.set_lane_count(lane_count)

    def set_lane_count(self, lane_count: int) -> None:
        if not 0 <= lane_count <= MAX_LANES:
            raise ValueError(f"Reversed lane count must be 0-{MAX_LANES}, got {lane_count}")
        self._lane_count = lane_count
        self._set_command_string(f'RL{lane_count}')

    def get_lane_count(self) -> int:
        return self._lane_count


class SetAutomaticResetCommand(SerialCommand):
    """
    LXA..LXO: reset the timer automatically after a race.

    The delay is quantised to multiples of 1.65 seconds between 1.65 and
    24.75 seconds; the level is sent as a letter, A being level 1.
    """
    kind = CommandKind.SET_AUTO_RESET

    MIN_RESET_TIME = AUTO_RESET_MIN_LEVEL * AUTO_RESET_INCREMENT
    MAX_RESET_TIME = AUTO_RESET_MAX_LEVEL * AUTO_RESET_INCREMENT

    def __init__(self, reset_time: float = MIN_RESET_TIME):
        super().__init__('LXA')
        self.set_reset_time(reset_time)

    @staticmethod
    def level_for_time(reset_time: float) -> int:
        level = int(reset_time / AUTO_RESET_INCREMENT + 0.5)
        return max(AUTO_RESET_MIN_LEVEL, min(AUTO_RESET_MAX_LEVEL, level))

    def set_reset_time(self, reset_time: float) -> None:
        level = self.level_for_time(reset_time)
        self._set_command_string('LX' + chr(ord('A') + level - 1))

    def get_reset_time(self) -> float:
        level = ord(self._command_string[-1]) - ord('A') + 1
        return level * AUTO_RESET_INCREMENT


class ReadFeaturesCommand(SerialCommand):
    """RF: report which optional features the timer has."""
    kind = CommandKind.READ_FEATURES

    RESPONSE_PATTERN = r'RF\r\n([01])([01])([01])([01]) ([01])([01])([01])([01])\r\n\*\r\n'
    PARTIAL_PATTERN = (
        r'(R|RF|RF\r|RF\r\n|RF\r\n[01]{1,4}|RF\r\n[01]{4} |RF\r\n[01]{4} [01]{1,4}'
        r'|RF\r\n[01]{4} [01]{4}\r|RF\r\n[01]{4} [01]{4}\r\n'
        r'|RF\r\n[01]{4} [01]{4}\r\n\*|RF\r\n[01]{4} [01]{4}\r\n\*\r)'
    )

    def __init__(self):
        self._features = (False,) * len(DeviceFeature)
        super().__init__('RF')
        self._set_patterns(self.RESPONSE_PATTERN, self.PARTIAL_PATTERN)

    @property
    def features(self) -> Tuple[bool, ...]:
        """Flags indexed by ``DeviceFeature``."""
        return self._features

    def is_feature_available(self, feature: DeviceFeature) -> bool:
        return self._features[DeviceFeature(feature)]

    def _parse(self, match: 're.Match') -> None:
        self._features = tuple(match.group(index + 1) == '1' for index in range(len(DeviceFeature)))

    def _clear(self) -> None:
        self._features = (False,) * len(DeviceFeature)


class ReadModeCommand(SerialCommand):
    """RM: report reversed lanes, lane masks, eliminator mode and data format."""
    kind = CommandKind.READ_MODE

    RESPONSE_PATTERN = (
        r'RM\r\n([0-6]) ([01])([01])([01])([01])([01])([01]) ([01]) ([01]) ([01])\r\n\*\r\n'
    )
    PARTIAL_PATTERN = (
        r'(R|RM|RM\r|RM\r\n|RM\r\n[0-6]|RM\r\n[0-6] |RM\r\n[0-6] [01]{1,6}'
        r'|RM\r\n[0-6] [01]{6} |RM\r\n[0-6] [01]{6} [01]|RM\r\n[0-6] [01]{6} [01] '
        r'|RM\r\n[0-6] [01]{6} [01] [01]|RM\r\n[0-6] [01]{6} [01] [01] '
        r'|RM\r\n[0-6] [01]{6} [01] [01] [01]|RM\r\n[0-6] [01]{6} [01] [01] [01]\r'
        r'|RM\r\n[0-6] [01]{6} [01] [01] [01]\r\n|RM\r\n[0-6] [01]{6} [01] [01] [01]\r\n\*'
        r'|RM\r\n[0-6] [01]{6} [01] [01] [01]\r\n\*\r)'
    )

    def __init__(self):
        self._clear()
        super().__init__('RM')
        self._set_patterns(self.RESPONSE_PATTERN, self.PARTIAL_PATTERN)

    @property
    def reversed_lane_count(self) -> int:
        return self._reversed_lane_count

    @property
    def lane_masks(self) -> Tuple[bool, ...]:
        return self._lane_masks

    @property
    def lanes_reversed(self) -> bool:
        return self._lanes_reversed

    @property
    def eliminator_mode(self) -> bool:
        return self._eliminator_mode

    @property
    def data_format(self) -> DataFormat:
        return self._data_format

    def _parse(self, match: 're.Match') -> None:
        self._reversed_lane_count = int(match.group(1))
        self._lane_masks = tuple(match.group(index + 2) == '1' for index in range(MAX_LANES))
        self._lanes_reversed = match.group(8) == '1'
        self._eliminator_mode = match.group(9) == '1'
        self._data_format = DataFormat(int(match.group(10)))

    def _clear(self) -> None:
        self._reversed_lane_count = 0
        self._lane_masks = (False,) * MAX_LANES
        self._lanes_reversed = False
        self._eliminator_mode = False
        self._data_format = DataFormat.NEW


class ReadSerialNumberCommand(SerialCommand):
    """RS: report the timer's five digit serial number."""
    kind = CommandKind.READ_SERIAL_NUMBER

    RESPONSE_PATTERN = r'RS\r\n([0-9]{5})\r\n'
    PARTIAL_PATTERN = r'(R|RS|RS\r|RS\r\n[0-9]{0,5}|RS\r\n[0-9]{5}\r)'

    def __init__(self):
        self._serial_number = -1
        super().__init__('RS')
        self._set_patterns(self.RESPONSE_PATTERN, self.PARTIAL_PATTERN)

    @property
    def serial_number(self) -> int:
        return self._serial_number

    def _parse(self, match: 're.Match') -> None:
        self._serial_number = int(match.group(1))

    def _clear(self) -> None:
        self._serial_number = -1


def mask_commands_for(masks: Sequence[bool]) -> Tuple[MaskLaneCommand, ...]:
    """One MaskLaneCommand per lane flagged True in ``masks``."""
    return tuple(MaskLaneCommand(Lane(index)) for index, masked in enumerate(masks[:MAX_LANES]) if masked)
