# File: k1_types.py
"""Type definitions shared by the K1 timer driver."""

from enum import IntEnum


MAX_LANES = 6


class Lane(IntEnum):
    """Logical lanes reported by the timer."""
    A = 0
    B = 1
    C = 2
    D = 3
    E = 4
    F = 5

    @property
    def letter(self) -> str:
        return self.name


class FinishingPlace(IntEnum):
    """Finishing place; NO_PLACE sorts after every real place."""
    FIRST = 1
    SECOND = 2
    THIRD = 3
    FOURTH = 4
    FIFTH = 5
    SIXTH = 6
    NO_PLACE = 7


class DeviceFeature(IntEnum):
    """Optional features, in the order the RF response reports them."""
    UNUSED = 0
    COUNT_DOWN_CLOCK = 1
    LASER_RESET = 2
    FORCE_PRINT = 3
    ELIMINATOR_MODE = 4
    REVERSE_LANES = 5
    MASK_LANE = 6
    SERIAL_DATA = 7


class DataFormat(IntEnum):
    """Results line format selected with N0/N1."""
    OLD = 0
    NEW = 1


class CommandKind(IntEnum):
    """Tag identifying each wire command variant."""
    FORCE_PRINT = 0          # RA
    RESET_TIMER = 1          # RX
    MASK_LANE = 2            # MA..MF
    RESET_LANE_MASKS = 3     # MG
    REVERSE_LANES = 4        # RL0..RL6
    ELIMINATOR_ON = 5        # LE
    ELIMINATOR_OFF = 6       # RE
    READ_FEATURES = 7        # RF
    READ_SERIAL_NUMBER = 8   # RS
    LASER_RESET = 9          # LR
    SET_AUTO_RESET = 10      # LXA..LXO
    DISABLE_AUTO_RESET = 11  # LXP
    OLD_FORMAT = 12          # N0
    NEW_FORMAT = 13          # N1
    READ_MODE = 14           # RM
