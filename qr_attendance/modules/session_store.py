"""
Session Store Module - QR Attendance Session System

This module is the persistence boundary of the attendance engine. It owns the
rows in the sections, students, attendance_records and student_sessions
tables and exposes the query shapes the engine needs, keyed by student,
section and day.

Features:
- Active session and cooldown lookups per (student, section, date)
- Atomic check-in (student, attendance record and session in one transaction)
- Conditional session close for logout, atomic time-out on section change
- Student registry filled from scanned QR codes
- Section lookups for the scanning devices
- Attendance listings and statistics for dashboards
"""

import logging
import sqlite3
from dataclasses import dataclass, asdict
from datetime import datetime
from functools import wraps
from typing import Dict, List, Optional, Any

from qr_attendance.modules.database_manager import make_section_id
from qr_attendance.modules.exceptions import ActiveSessionExists, StoreUnavailable


@dataclass(frozen=True)
class Section:
    """A class section that attendance is taken for."""
    id: str
    name: str
    created_at: str

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class AttendanceRecord:
    """One student's attendance in one section on one day."""
    id: int
    student_id: str
    full_name: str
    department: str
    date: str
    time_in: str
    time_out: Optional[str]
    section_id: str

    @property
    def is_present(self) -> bool:
        return self.time_out is None

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class StudentSession:
    """A login/logout interval for a student within one section on one day."""
    id: int
    student_id: str
    section_id: str
    date: str
    login_time: str
    logout_time: Optional[str]
    cooldown_until: Optional[str]

    @property
    def is_active(self) -> bool:
        return self.logout_time is None

    def to_dict(self):
        return asdict(self)


@dataclass(frozen=True)
class Student:
    """A student registered from the first scan of their QR code."""
    id: int
    student_id: str
    full_name: str
    department: str
    section_id: Optional[str]
    created_at: str
    updated_at: str

    def to_dict(self):
        return asdict(self)


_STUDENT_FIELDS = ('id', 'student_id', 'full_name', 'department', 'section_id',
                   'created_at', 'updated_at')
_RECORD_FIELDS = ('id', 'student_id', 'full_name', 'department', 'date',
                  'time_in', 'time_out', 'section_id')
_SESSION_FIELDS = ('id', 'student_id', 'section_id', 'date', 'login_time',
                   'logout_time', 'cooldown_until')


def _record_from_row(row: Optional[Dict[str, Any]]) -> Optional[AttendanceRecord]:
    if not row:
        return None
    return AttendanceRecord(**{field: row[field] for field in _RECORD_FIELDS})


def _session_from_row(row: Optional[Dict[str, Any]]) -> Optional[StudentSession]:
    if not row:
        return None
    return StudentSession(**{field: row[field] for field in _SESSION_FIELDS})


def _section_from_row(row: Optional[Dict[str, Any]]) -> Optional[Section]:
    if not row:
        return None
    return Section(id=row['id'], name=row['name'], created_at=row['created_at'])


def _student_from_row(row: Optional[Dict[str, Any]]) -> Optional[Student]:
    if not row:
        return None
    return Student(**{field: row[field] for field in _STUDENT_FIELDS})


def _timestamp(value) -> str:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


# Cursor-level writes, shared by the single-row methods and the transactions

def _upsert_student(cursor, student_id, full_name, department, section_id, timestamp):
    """Register a student on first scan; later scans refresh name and department."""
    cursor.execute(
        """INSERT INTO students
           (student_id, full_name, department, section_id, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?)
           ON CONFLICT(student_id) DO UPDATE SET
               full_name = excluded.full_name,
               department = excluded.department,
               updated_at = excluded.updated_at""",
        (student_id, full_name, department, section_id, timestamp, timestamp)
    )


def _insert_attendance_record(cursor, student_id, full_name, department,
                              date, time_in, section_id) -> int:
    cursor.execute(
        """INSERT INTO attendance_records
           (student_id, full_name, department, date, time_in, section_id)
           VALUES (?, ?, ?, ?, ?, ?)""",
        (student_id, full_name, department, date, time_in, section_id)
    )
    return cursor.lastrowid


def _insert_session(cursor, student_id, section_id, date, login_time) -> int:
    cursor.execute(
        """INSERT INTO student_sessions (student_id, section_id, date, login_time)
           VALUES (?, ?, ?, ?)""",
        (student_id, section_id, date, login_time)
    )
    return cursor.lastrowid


def _close_session(cursor, session_id, logout_time, cooldown_until) -> bool:
    cursor.execute(
        """UPDATE student_sessions
           SET logout_time = ?, cooldown_until = ?
           WHERE id = ? AND logout_time IS NULL""",
        (logout_time, cooldown_until, session_id)
    )
    return cursor.rowcount > 0


def _stamp_time_out(cursor, record_id, time_out) -> bool:
    cursor.execute(
        """UPDATE attendance_records SET time_out = ?
           WHERE id = ? AND time_out IS NULL""",
        (time_out, record_id)
    )
    return cursor.rowcount > 0


def store_operation(f):
    """Translate storage engine failures into StoreUnavailable."""
    @wraps(f)
    def decorated_function(self, *args, **kwargs):
        try:
            return f(self, *args, **kwargs)
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            self.logger.error(f"Store operation {f.__name__} failed: {str(e)}")
            raise StoreUnavailable(f"Attendance storage unavailable: {str(e)}") from e
    return decorated_function


class SessionStore:
    """
    SQLite-backed store for sections, students, attendance records and
    student sessions.
    All timestamps are ISO-8601 strings and dates are YYYY-MM-DD strings.
    """

    def __init__(self, database_manager):
        """
        Initialize the session store.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    # Sessions

    @store_operation
    def get_active_session(self, student_id: str, section_id: str,
                           date: str) -> Optional[StudentSession]:
        """Return the open session for the tuple, if any."""
        row = self.db.execute_query(
            """SELECT * FROM student_sessions
               WHERE student_id = ? AND section_id = ? AND date = ?
               AND logout_time IS NULL""",
            (student_id, section_id, date),
            fetch_all=False
        )
        return _session_from_row(row)

    @store_operation
    def get_session(self, session_id: int) -> Optional[StudentSession]:
        row = self.db.execute_query(
            "SELECT * FROM student_sessions WHERE id = ?",
            (session_id,),
            fetch_all=False
        )
        return _session_from_row(row)

    @store_operation
    def create_session(self, student_id: str, section_id: str, date: str,
                       login_time) -> StudentSession:
        """
        Open a new session for the tuple.

        Raises:
            ActiveSessionExists: The tuple already has an open session
        """
        try:
            with self.db.transaction() as conn:
                session_id = _insert_session(conn.cursor(), student_id, section_id,
                                             date, _timestamp(login_time))
        except sqlite3.IntegrityError as e:
            raise ActiveSessionExists(
                f"Student {student_id} already has an active session in {section_id}"
            ) from e
        return self.get_session(session_id)

    @store_operation
    def close_session(self, session_id: int, logout_time, cooldown_until) -> bool:
        """
        Close an open session and stamp its cooldown.

        Returns:
            bool: False when the session does not exist or was already closed
        """
        with self.db.transaction() as conn:
            return _close_session(conn.cursor(), session_id,
                                  _timestamp(logout_time), _timestamp(cooldown_until))

    @store_operation
    def get_last_cooldown(self, student_id: str, section_id: str,
                          date: str) -> Optional[str]:
        """Return cooldown_until of the most recently closed session for the tuple."""
        row = self.db.execute_query(
            """SELECT cooldown_until FROM student_sessions
               WHERE student_id = ? AND section_id = ? AND date = ?
               AND logout_time IS NOT NULL
               ORDER BY logout_time DESC, id DESC
               LIMIT 1""",
            (student_id, section_id, date),
            fetch_all=False
        )
        return row['cooldown_until'] if row else None

    @store_operation
    def get_student_active_sessions(self, student_id: str, date: str) -> List[StudentSession]:
        """All sections a student is currently logged in to on a day."""
        rows = self.db.execute_query(
            """SELECT * FROM student_sessions
               WHERE student_id = ? AND date = ? AND logout_time IS NULL
               ORDER BY login_time""",
            (student_id, date)
        )
        return [_session_from_row(row) for row in rows]

    # Attendance records

    @store_operation
    def get_attendance_record(self, student_id: str, date: str,
                              section_id: Optional[str] = None) -> Optional[AttendanceRecord]:
        """
        Return the student's latest attendance record for a day.

        Args:
            student_id (str): Student ID
            date (str): Date string (YYYY-MM-DD)
            section_id (str): Restrict to one section when given
        """
        query = "SELECT * FROM attendance_records WHERE student_id = ? AND date = ?"
        params = [student_id, date]
        if section_id is not None:
            query += " AND section_id = ?"
            params.append(section_id)
        query += " ORDER BY time_in DESC, id DESC LIMIT 1"

        row = self.db.execute_query(query, tuple(params), fetch_all=False)
        return _record_from_row(row)

    @store_operation
    def get_open_attendance_record(self, student_id: str, date: str) -> Optional[AttendanceRecord]:
        """Latest record for the day that has no time-out yet, in any section."""
        row = self.db.execute_query(
            """SELECT * FROM attendance_records
               WHERE student_id = ? AND date = ? AND time_out IS NULL
               ORDER BY time_in DESC, id DESC
               LIMIT 1""",
            (student_id, date),
            fetch_all=False
        )
        return _record_from_row(row)

    @store_operation
    def get_attendance_record_by_id(self, record_id: int) -> Optional[AttendanceRecord]:
        row = self.db.execute_query(
            "SELECT * FROM attendance_records WHERE id = ?",
            (record_id,),
            fetch_all=False
        )
        return _record_from_row(row)

    @store_operation
    def create_attendance_record(self, student_id: str, full_name: str, department: str,
                                 date: str, time_in, section_id: str) -> AttendanceRecord:
        try:
            with self.db.transaction() as conn:
                record_id = _insert_attendance_record(
                    conn.cursor(), student_id, full_name, department,
                    date, _timestamp(time_in), section_id
                )
        except sqlite3.IntegrityError as e:
            raise ActiveSessionExists(
                f"Attendance for {student_id} in {section_id} on {date} already exists"
            ) from e
        return self.get_attendance_record_by_id(record_id)

    @store_operation
    def record_time_out(self, record_id: int, time_out) -> bool:
        """Stamp the time-out on a record that is still open."""
        with self.db.transaction() as conn:
            return _stamp_time_out(conn.cursor(), record_id, _timestamp(time_out))

    @store_operation
    def time_out(self, record_id: int, session_id: Optional[int], now,
                 cooldown_until) -> bool:
        """
        Stamp a record's time-out and close its open session together.

        Args:
            record_id (int): Attendance record to complete
            session_id (int): Open session in the record's section, or None
            now: Time-out and logout time
            cooldown_until: End of the cooldown for the closed session

        Returns:
            bool: False when the record already had a time-out
        """
        timestamp = _timestamp(now)
        with self.db.transaction() as conn:
            cursor = conn.cursor()
            stamped = _stamp_time_out(cursor, record_id, timestamp)
            if session_id is not None:
                _close_session(cursor, session_id, timestamp, _timestamp(cooldown_until))
        return stamped

    @store_operation
    def check_in(self, student_id: str, full_name: str, department: str,
                 section_id: str, date: str, now) -> Dict[str, Any]:
        """
        Register the student, open a session and make sure the day's
        attendance record exists, as a single transaction.

        Returns:
            Dict[str, Any]: {'session', 'record', 'new_record'}

        Raises:
            ActiveSessionExists: Another check-in for the tuple won the race;
                nothing was written
        """
        timestamp = _timestamp(now)
        try:
            with self.db.transaction() as conn:
                cursor = conn.cursor()
                cursor.execute(
                    """SELECT id FROM attendance_records
                       WHERE student_id = ? AND section_id = ? AND date = ?""",
                    (student_id, section_id, date)
                )
                existing = cursor.fetchone()

                _upsert_student(cursor, student_id, full_name, department,
                                section_id, timestamp)

                if existing:
                    record_id = existing['id']
                    new_record = False
                else:
                    record_id = _insert_attendance_record(
                        cursor, student_id, full_name, department,
                        date, timestamp, section_id
                    )
                    new_record = True

                session_id = _insert_session(cursor, student_id, section_id,
                                             date, timestamp)

        except sqlite3.IntegrityError as e:
            raise ActiveSessionExists(
                f"Student {student_id} already has an active session in {section_id}"
            ) from e

        return {
            'session': self.get_session(session_id),
            'record': self.get_attendance_record_by_id(record_id),
            'new_record': new_record
        }

    @store_operation
    def get_attendance_for_date(self, date: str,
                                section_id: Optional[str] = None) -> List[AttendanceRecord]:
        """Attendance records for a day, newest time-in first."""
        query = "SELECT * FROM attendance_records WHERE date = ?"
        params = [date]
        if section_id and section_id != 'all':
            query += " AND section_id = ?"
            params.append(section_id)
        query += " ORDER BY time_in DESC"

        return [_record_from_row(row) for row in self.db.execute_query(query, tuple(params))]

    @store_operation
    def get_attendance_stats(self, date: str, section_id: Optional[str] = None) -> Dict[str, int]:
        """
        Dashboard counters for a day.

        Returns:
            Dict[str, int]: total_today, present_now, active_sessions, unique_students
        """
        section_filter = ""
        params = [date]
        if section_id and section_id != 'all':
            section_filter = " AND section_id = ?"
            params.append(section_id)

        records = self.db.execute_query(
            f"""SELECT COUNT(*) AS total_today,
                       SUM(CASE WHEN time_out IS NULL THEN 1 ELSE 0 END) AS present_now,
                       COUNT(DISTINCT student_id) AS unique_students
                FROM attendance_records
                WHERE date = ?{section_filter}""",
            tuple(params),
            fetch_all=False
        )
        sessions = self.db.execute_query(
            f"""SELECT COUNT(*) AS active_sessions FROM student_sessions
                WHERE date = ? AND logout_time IS NULL{section_filter}""",
            tuple(params),
            fetch_all=False
        )

        return {
            'total_today': records['total_today'] or 0,
            'present_now': records['present_now'] or 0,
            'unique_students': records['unique_students'] or 0,
            'active_sessions': sessions['active_sessions'] or 0
        }

    # Sections

    @store_operation
    def add_section(self, name: str, created_at=None) -> Section:
        """Create a section; the id is derived from the name."""
        name = name.strip()
        if not name:
            raise ValueError("Section name cannot be empty")

        section = Section(
            id=make_section_id(name),
            name=name,
            created_at=_timestamp(created_at or datetime.now())
        )
        try:
            self.db.execute_update(
                "INSERT INTO sections (id, name, created_at) VALUES (?, ?, ?)",
                (section.id, section.name, section.created_at)
            )
        except sqlite3.IntegrityError as e:
            raise ValueError(f"Section already exists: {name}") from e
        self.logger.info(f"Section created: {section.name} (ID: {section.id})")
        return section

    @store_operation
    def get_section(self, section_id: str) -> Optional[Section]:
        row = self.db.execute_query(
            "SELECT * FROM sections WHERE id = ?",
            (section_id,),
            fetch_all=False
        )
        return _section_from_row(row)

    @store_operation
    def list_sections(self) -> List[Section]:
        rows = self.db.execute_query("SELECT * FROM sections ORDER BY name")
        return [_section_from_row(row) for row in rows]

    @store_operation
    def delete_section(self, section_id: str) -> bool:
        """Delete a section. Its attendance and session history is kept."""
        affected_rows = self.db.execute_update(
            "DELETE FROM sections WHERE id = ?",
            (section_id,)
        )
        return affected_rows > 0

    # Students

    @store_operation
    def get_student(self, student_id: str) -> Optional[Student]:
        row = self.db.execute_query(
            "SELECT * FROM students WHERE student_id = ?",
            (student_id,),
            fetch_all=False
        )
        return _student_from_row(row)

    @store_operation
    def list_students(self, department: Optional[str] = None) -> List[Student]:
        """Registered students ordered by name, optionally for one department."""
        query = "SELECT * FROM students"
        params = []
        if department:
            query += " WHERE department = ?"
            params.append(department)
        query += " ORDER BY full_name"

        return [_student_from_row(row) for row in self.db.execute_query(query, tuple(params))]

    @store_operation
    def update_student(self, student_id: str, full_name: Optional[str] = None,
                       department: Optional[str] = None,
                       section_id: Optional[str] = None) -> Optional[Student]:
        """
        Update a registered student's details.

        Args:
            student_id (str): Student to update
            full_name (str): New name, unchanged when None
            department (str): New department, unchanged when None
            section_id (str): New home section, unchanged when None

        Returns:
            Student: Updated student, or None when not registered
        """
        updates = []
        params = []
        for column, value in (('full_name', full_name), ('department', department),
                              ('section_id', section_id)):
            if value is not None:
                updates.append(f"{column} = ?")
                params.append(value)

        if updates:
            updates.append("updated_at = ?")
            params.extend([datetime.now().isoformat(), student_id])
            self.db.execute_update(
                f"UPDATE students SET {', '.join(updates)} WHERE student_id = ?",
                tuple(params)
            )

        return self.get_student(student_id)
