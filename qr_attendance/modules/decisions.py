"""
Decisions Module - QR Attendance Session System

Result types returned by the attendance engine. Every scan evaluation yields
exactly one Decision variant and every logout exactly one LogoutResult
variant; callers dispatch on the variant class (or on its `kind` tag when
serialised to JSON).
"""

from dataclasses import dataclass, field, fields
from typing import ClassVar, Optional

from qr_attendance.modules.session_store import AttendanceRecord, StudentSession


def _serialise(value):
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    return value


@dataclass(frozen=True)
class Decision:
    """Base class for scan outcomes."""
    kind: ClassVar[str] = 'decision'
    success: ClassVar[bool] = False
    message: str = field(default='', compare=False)

    def to_dict(self):
        data = {'decision': self.kind, 'success': self.success}
        for f in fields(self):
            data[f.name] = _serialise(getattr(self, f.name))
        return data


@dataclass(frozen=True)
class CheckIn(Decision):
    """A new session was opened (and the day's record created if needed)."""
    kind: ClassVar[str] = 'check_in'
    success: ClassVar[bool] = True
    session: Optional[StudentSession] = None
    record: Optional[AttendanceRecord] = None
    new_record: bool = True


@dataclass(frozen=True)
class AlreadyActive(Decision):
    """The student is already logged in to this section; offer logout."""
    kind: ClassVar[str] = 'already_active'
    success: ClassVar[bool] = True
    session: Optional[StudentSession] = None
    hold_remaining_seconds: int = 0


@dataclass(frozen=True)
class CooldownBlocked(Decision):
    kind: ClassVar[str] = 'cooldown_blocked'
    remaining_seconds: int = 0
    cooldown_until: Optional[str] = None


@dataclass(frozen=True)
class AlreadyCheckedInToday(Decision):
    kind: ClassVar[str] = 'already_checked_in_today'
    success: ClassVar[bool] = True
    record: Optional[AttendanceRecord] = None


@dataclass(frozen=True)
class NoSectionSelected(Decision):
    kind: ClassVar[str] = 'no_section_selected'


@dataclass(frozen=True)
class Busy(Decision):
    kind: ClassVar[str] = 'busy'


@dataclass(frozen=True)
class InvalidScan(Decision):
    """The QR payload could not be parsed."""
    kind: ClassVar[str] = 'invalid_scan'


@dataclass(frozen=True)
class TimedOut(Decision):
    """Rescan in another section stamped the time-out of the open record."""
    kind: ClassVar[str] = 'timed_out'
    success: ClassVar[bool] = True
    record: Optional[AttendanceRecord] = None
    previous_section_id: Optional[str] = None


@dataclass(frozen=True)
class LogoutResult(Decision):
    """Base class for logout outcomes."""
    kind: ClassVar[str] = 'logout'


@dataclass(frozen=True)
class LogoutSuccess(LogoutResult):
    kind: ClassVar[str] = 'logout_success'
    success: ClassVar[bool] = True
    session: Optional[StudentSession] = None


@dataclass(frozen=True)
class TooEarly(LogoutResult):
    kind: ClassVar[str] = 'too_early'
    remaining_seconds: int = 0


@dataclass(frozen=True)
class NoActiveSession(LogoutResult):
    kind: ClassVar[str] = 'no_active_session'
