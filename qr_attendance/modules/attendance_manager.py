"""
Attendance Manager Module - QR Attendance Session System

This module holds the attendance session engine. Given a scanned student and
the section selected on the scanning device, it decides whether the scan is a
new check-in, a duplicate of an active session, a scan blocked by the
post-logout cooldown or an idempotent re-scan, and issues the corresponding
store writes. Logout is a separate explicit operation gated by a minimum hold
window.

Precedence for (student, section, day):
1. active session            -> AlreadyActive (no writes)
2. cooldown not yet expired  -> CooldownBlocked (no writes)
3. completed record today    -> AlreadyCheckedInToday (no writes)
4. otherwise                 -> CheckIn (record + session, atomically)

Each AttendanceManager serves one scanning device and processes one
evaluation or logout at a time; concurrent calls are answered with Busy.
"""

from datetime import datetime
import logging
import threading
from typing import Callable, Optional

from qr_attendance.modules import cooldown_timer
from qr_attendance.modules.decisions import (
    AlreadyActive, AlreadyCheckedInToday, Busy, CheckIn, CooldownBlocked,
    Decision, InvalidScan, LogoutResult, LogoutSuccess, NoActiveSession,
    NoSectionSelected, TimedOut, TooEarly
)
from qr_attendance.modules.exceptions import ActiveSessionExists, StoreUnavailable
from qr_attendance.modules.qr_parser import get_qr_parse_error_message, parse_qr_data
from qr_attendance.modules.session_store import AttendanceRecord

DEFAULT_COOLDOWN_MINUTES = 5
DEFAULT_MIN_HOLD_SECONDS = cooldown_timer.DEFAULT_MIN_HOLD_SECONDS


class AttendanceManager:
    """
    Attendance session state machine for one scanning device.
    Holds no persistent state; the session store owns every row.
    """

    def __init__(self, session_store, cooldown_minutes: Optional[float] = None,
                 min_hold_seconds: Optional[int] = None,
                 auto_timeout_on_rescan: bool = False,
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the attendance manager.

        Args:
            session_store: SessionStore instance
            cooldown_minutes (float): Wait after logout before re-check-in
            min_hold_seconds (int): Minimum session length before logout
            auto_timeout_on_rescan (bool): Time out the open record of another
                section when the student scans in a different one
            clock: Callable returning the device-local current time
        """
        self.store = session_store
        self.logger = logging.getLogger(__name__)
        self.clock = clock or datetime.now
        self.auto_timeout_on_rescan = auto_timeout_on_rescan
        self._in_flight = threading.Lock()

        self.cooldown_minutes = DEFAULT_COOLDOWN_MINUTES
        self.min_hold_seconds = DEFAULT_MIN_HOLD_SECONDS
        self._load_system_settings()

        if cooldown_minutes is not None:
            self.cooldown_minutes = cooldown_minutes
        if min_hold_seconds is not None:
            self.min_hold_seconds = min_hold_seconds

    def _load_system_settings(self):
        """Load cooldown and hold overrides from the system_settings table."""
        db = getattr(self.store, 'db', None)
        if db is None:
            return

        try:
            cooldown = db.get_system_setting('cooldown_minutes')
            if cooldown is not None:
                self.cooldown_minutes = float(cooldown)

            hold = db.get_system_setting('min_hold_seconds')
            if hold is not None:
                self.min_hold_seconds = int(hold)

        except ValueError as e:
            self.logger.error(f"Invalid attendance setting in database: {str(e)}")

    @property
    def is_busy(self) -> bool:
        return self._in_flight.locked()

    def process_scan(self, qr_data: str, section_id: Optional[str],
                     now: Optional[datetime] = None) -> Decision:
        """
        Parse a raw QR string and evaluate it for the selected section.

        Args:
            qr_data (str): Decoded QR code text
            section_id (str): Section selected on the scanning device
            now (datetime): Scan time, defaults to the device clock

        Returns:
            Decision: Outcome of the scan
        """
        if not section_id:
            return NoSectionSelected(message="Please select a section first")

        payload = parse_qr_data(qr_data)
        if payload is None:
            message = get_qr_parse_error_message(qr_data)
            self.logger.warning(f"Rejected scan: {message}")
            return InvalidScan(message=message)

        return self.evaluate(payload.student_id, payload.full_name,
                             payload.department, section_id, now)

    def evaluate(self, student_id: str, full_name: str, department: str,
                 section_id: Optional[str], now: Optional[datetime] = None) -> Decision:
        """
        Decide what a scan means for (student, section, day) and apply it.

        Args:
            student_id (str): Student ID from the QR payload
            full_name (str): Student name from the QR payload
            department (str): Department from the QR payload
            section_id (str): Section selected on the scanning device
            now (datetime): Scan time, defaults to the device clock

        Returns:
            Decision: One of CheckIn, AlreadyActive, CooldownBlocked,
            AlreadyCheckedInToday, TimedOut, NoSectionSelected or Busy

        Raises:
            StoreUnavailable: Storage failed; nothing partial was written
        """
        if not section_id:
            return NoSectionSelected(message="Please select a section first")

        if not self._in_flight.acquire(blocking=False):
            self.logger.warning(f"Scan for {student_id} dropped: device busy")
            return Busy(message="Processing previous scan...")

        try:
            return self._evaluate(student_id, full_name, department, section_id,
                                  cooldown_timer.to_datetime(now or self.clock()))
        except StoreUnavailable as e:
            self.logger.error(f"Scan for {student_id} in {section_id} failed: {str(e)}")
            raise
        finally:
            self._in_flight.release()

    def _evaluate(self, student_id, full_name, department, section_id, now):
        date = now.date().isoformat()

        active_session = self.store.get_active_session(student_id, section_id, date)
        if active_session:
            return self._already_active(active_session, full_name, now)

        if self.auto_timeout_on_rescan:
            open_record = self.store.get_open_attendance_record(student_id, date)
            if open_record and open_record.section_id != section_id:
                return self._time_out(open_record, now)

        cooldown_until = self.store.get_last_cooldown(student_id, section_id, date)
        remaining = cooldown_timer.cooldown_remaining(cooldown_until, now)
        if remaining > 0:
            self.logger.info(f"Scan for {student_id} in {section_id} blocked by cooldown ({remaining}s left)")
            return CooldownBlocked(
                message=f"Cooldown: wait {remaining}s",
                remaining_seconds=remaining,
                cooldown_until=cooldown_until
            )

        record = self.store.get_attendance_record(student_id, date, section_id)
        if record and record.time_out is not None:
            return AlreadyCheckedInToday(
                message=f"{full_name} already checked in today",
                record=record
            )

        try:
            result = self.store.check_in(student_id, full_name, department,
                                         section_id, date, now)
        except ActiveSessionExists:
            # Another device opened the session between our read and write
            active_session = self.store.get_active_session(student_id, section_id, date)
            return self._already_active(active_session, full_name, now)

        self.logger.info(
            f"Check-in recorded: Student {student_id}, Section {section_id}, "
            f"Session {result['session'].id}"
        )
        return CheckIn(
            message=f"Attendance recorded for {full_name}",
            session=result['session'],
            record=result['record'],
            new_record=result['new_record']
        )

    def _already_active(self, session, full_name, now) -> AlreadyActive:
        hold = 0
        if session is not None:
            hold = cooldown_timer.hold_remaining(session.login_time, now,
                                                 self.min_hold_seconds)
        return AlreadyActive(
            message=f"{full_name} is already logged in to this section",
            session=session,
            hold_remaining_seconds=hold
        )

    def _time_out(self, record: AttendanceRecord, now) -> TimedOut:
        """Stamp the time-out of an open record and close its section's session."""
        session = self.store.get_active_session(record.student_id, record.section_id, record.date)
        self.store.time_out(
            record.id, session.id if session else None, now,
            cooldown_timer.cooldown_deadline(now, self.cooldown_minutes)
        )

        self.logger.info(f"Time-out recorded: Student {record.student_id}, Section {record.section_id}")
        return TimedOut(
            message=f"Time out recorded for {record.full_name}",
            record=self.store.get_attendance_record_by_id(record.id),
            previous_section_id=record.section_id
        )

    def logout(self, session_id: int, now: Optional[datetime] = None,
               cooldown_minutes: Optional[float] = None) -> Decision:
        """
        Log a student out of an active session.

        Args:
            session_id (int): Session to close
            now (datetime): Logout time, defaults to the device clock
            cooldown_minutes (float): Overrides the configured cooldown

        Returns:
            LogoutResult: LogoutSuccess, TooEarly or NoActiveSession
            (Busy when the device is processing another call)
        """
        if not self._in_flight.acquire(blocking=False):
            return Busy(message="Processing previous scan...")

        try:
            return self._logout(session_id, cooldown_timer.to_datetime(now or self.clock()),
                                self.cooldown_minutes if cooldown_minutes is None else cooldown_minutes)
        except StoreUnavailable as e:
            self.logger.error(f"Logout of session {session_id} failed: {str(e)}")
            raise
        finally:
            self._in_flight.release()

    def _logout(self, session_id, now, cooldown_minutes) -> LogoutResult:
        session = self.store.get_session(session_id)
        if session is None or not session.is_active:
            return NoActiveSession(message="No active session to log out")

        if not cooldown_timer.is_hold_satisfied(session.login_time, now, self.min_hold_seconds):
            remaining = cooldown_timer.hold_remaining(session.login_time, now, self.min_hold_seconds)
            return TooEarly(
                message=f"Logout available in {remaining}s",
                remaining_seconds=remaining
            )

        cooldown_until = cooldown_timer.cooldown_deadline(now, cooldown_minutes)
        if not self.store.close_session(session_id, now, cooldown_until):
            return NoActiveSession(message="No active session to log out")

        self.logger.info(
            f"Logout recorded: Student {session.student_id}, Section {session.section_id}, "
            f"cooldown until {cooldown_until.isoformat()}"
        )
        return LogoutSuccess(
            message="Logged out",
            session=self.store.get_session(session_id)
        )
