# File: port_discovery.py
"""
Serial port discovery for K1 timers.

K1 timers connect through a Prolific USB-serial adapter, so candidate
ports are the ones whose USB vendor/product id match that chip.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import serial.tools.list_ports


PROLIFIC_VID = 0x067B
PROLIFIC_PID = 0x2303
UNKNOWN_DESCRIPTION = '(Unknown)'

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComPortInfo:
    """A serial port found on this machine."""
    port_name: str = ''
    description: str = UNKNOWN_DESCRIPTION
    device_instance_path: str = ''

    def __post_init__(self) -> None:
        if not self.description or not self.description.strip() or self.description == 'n/a':
            object.__setattr__(self, 'description', UNKNOWN_DESCRIPTION)

    def to_dict(self) -> dict:
        return {
            'portName': self.port_name,
            'description': self.description,
            'deviceInstancePath': self.device_instance_path,
        }


def _to_info(port_info) -> ComPortInfo:
    return ComPortInfo(
        port_name=port_info.device,
        description=port_info.description,
        device_instance_path=port_info.hwid or ''
    )


def get_port_names() -> List[str]:
    """Names of every serial port currently present."""
    return [port_info.device for port_info in serial.tools.list_ports.comports()]


def port_exists(port_name: str) -> bool:
    wanted = port_name.lower()
    return any(name.lower() == wanted for name in get_port_names())


def is_prolific(port_info) -> bool:
    return port_info.vid == PROLIFIC_VID and port_info.pid == PROLIFIC_PID


def get_prolific_com_ports() -> List[ComPortInfo]:
    """Ports backed by a Prolific USB-serial adapter, sorted by name."""
    available_ports = serial.tools.list_ports.comports()

    if not available_ports:
        logger.warning("No serial ports available for timer autodetect")
        return []

    found = []
    for port_info in available_ports:
        if is_prolific(port_info):
            logger.debug(f"Found Prolific adapter on {port_info.device} ({port_info.description})")
            found.append(_to_info(port_info))
        else:
            logger.debug(f"Skipping {port_info.device} ({port_info.description})")

    return sorted(found, key=lambda info: info.port_name)


def find_port(port_name: str) -> Optional[ComPortInfo]:
    """Details for a named port, or None if it is not present."""
    wanted = port_name.lower()
    for port_info in serial.tools.list_ports.comports():
        if port_info.device.lower() == wanted:
            return _to_info(port_info)
    return None
