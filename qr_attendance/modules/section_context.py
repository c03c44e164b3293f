"""
Section Context Module - QR Attendance Session System

Each scanning device takes attendance for one section at a time. The
SectionContext holds that selection for a single device and is passed
explicitly to the engine calls; the DeviceRegistry keeps one context and
one engine per device id for the HTTP API.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from qr_attendance.modules.exceptions import Busy, NoSectionSelected
from qr_attendance.modules.session_store import Section


class SectionContext:
    """The section currently selected on one scanning device."""

    def __init__(self, section: Optional[Section] = None):
        self._section = section
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def select(self, section: Section) -> Section:
        if section is None:
            raise ValueError("Use clear() to deselect the current section")
        with self._lock:
            self._section = section
        self.logger.info(f"Section selected: {section.name} (ID: {section.id})")
        return section

    def current(self) -> Optional[Section]:
        with self._lock:
            return self._section

    def current_id(self) -> Optional[str]:
        section = self.current()
        return section.id if section else None

    def clear(self):
        with self._lock:
            self._section = None

    def require(self) -> Section:
        """Return the selected section or raise NoSectionSelected."""
        section = self.current()
        if section is None:
            raise NoSectionSelected()
        return section


@dataclass
class ScannerDevice:
    """A scanning device: its section selection and its own engine."""
    device_id: str
    context: SectionContext
    engine: Any

    def switch_section(self, section: Optional[Section]):
        """
        Select (or clear, with None) the device's section.

        Raises:
            Busy: A scan is still being evaluated for the current section
        """
        if getattr(self.engine, 'is_busy', False):
            raise Busy("Cannot change section while a scan is being processed")
        if section is None:
            self.context.clear()
            return None
        return self.context.select(section)


class DeviceRegistry:
    """
    Lazily creates one ScannerDevice per device id. Devices are registered
    by get(), used when a section is selected; find() never registers.

    Args:
        engine_factory: Callable returning a new attendance engine
    """

    def __init__(self, engine_factory: Callable[[], Any]):
        self.engine_factory = engine_factory
        self._devices: Dict[str, ScannerDevice] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def get(self, device_id: str) -> ScannerDevice:
        if not device_id:
            raise ValueError("device_id is required")

        with self._lock:
            device = self._devices.get(device_id)
            if device is None:
                device = ScannerDevice(
                    device_id=device_id,
                    context=SectionContext(),
                    engine=self.engine_factory()
                )
                self._devices[device_id] = device
                self.logger.info(f"Scanning device registered: {device_id}")
            return device

    def find(self, device_id: str) -> Optional[ScannerDevice]:
        """Return a registered device without registering unknown ids."""
        with self._lock:
            return self._devices.get(device_id)

    def __contains__(self, device_id):
        with self._lock:
            return device_id in self._devices

    def __len__(self):
        with self._lock:
            return len(self._devices)
