"""
QR Parser Module - QR Attendance Session System

This module turns the raw string decoded from a student's QR code into a
validated scan payload. The payload format printed on student IDs is:

    FULL NAME... STUDENTID DEPARTMENT
    e.g. "NHEM DAY G. ACLO 2023300076 BSIT"

The last token is the department, the second-to-last the 10-11 digit student
ID, and every token before them makes up the full name.
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from qr_attendance.modules.exceptions import ParseError, ValidationError

logger = logging.getLogger(__name__)

STUDENT_ID_PATTERN = re.compile(r'^[0-9]{10,11}$')

MAX_NAME_LENGTH = 200
MIN_DEPARTMENT_LENGTH = 2
MAX_DEPARTMENT_LENGTH = 50


@dataclass(frozen=True)
class ScanPayload:
    """Identity decoded from one QR scan."""
    full_name: str
    student_id: str
    department: str

    def to_dict(self):
        return {
            'full_name': self.full_name,
            'student_id': self.student_id,
            'department': self.department
        }


def _split(raw: str):
    if not isinstance(raw, str):
        raise ParseError("QR data must be text")

    parts = raw.split()
    if len(parts) < 3:
        raise ParseError("Invalid QR format - requires name, student ID, and department")
    return parts


def validate_qr_data(raw: str) -> ScanPayload:
    """
    Parse and validate a raw QR string.

    Args:
        raw (str): Decoded QR code text

    Returns:
        ScanPayload: Validated payload

    Raises:
        ParseError: The string does not have at least three tokens
        ValidationError: A field violates its format or length bounds
    """
    parts = _split(raw)

    department = parts[-1].strip()
    student_id = parts[-2].strip()
    full_name = ' '.join(parts[:-2]).strip()

    if not STUDENT_ID_PATTERN.match(student_id):
        raise ValidationError('student_id', "Student ID must be 10-11 digits")

    if not full_name:
        raise ValidationError('full_name', "Name cannot be empty")
    if len(full_name) > MAX_NAME_LENGTH:
        raise ValidationError('full_name', f"Name must be at most {MAX_NAME_LENGTH} characters")

    if len(department) < MIN_DEPARTMENT_LENGTH:
        raise ValidationError('department', f"Department must be at least {MIN_DEPARTMENT_LENGTH} characters")
    if len(department) > MAX_DEPARTMENT_LENGTH:
        raise ValidationError('department', f"Department must be at most {MAX_DEPARTMENT_LENGTH} characters")

    return ScanPayload(full_name=full_name, student_id=student_id, department=department)


def parse_qr_data(raw: str) -> Optional[ScanPayload]:
    """Parse a raw QR string, returning None instead of raising on bad input."""
    try:
        return validate_qr_data(raw)
    except (ParseError, ValidationError) as e:
        logger.debug(f"QR data parsing/validation failed: {str(e)}")
        return None


def get_qr_parse_error_message(raw: str) -> str:
    """
    Explain why a QR string was rejected, for display on the scanner.

    Args:
        raw (str): Decoded QR code text

    Returns:
        str: Human-readable reason
    """
    if not isinstance(raw, str) or not raw.strip():
        return "Empty QR code data"

    try:
        validate_qr_data(raw)
    except ParseError as e:
        return str(e)
    except ValidationError as e:
        if e.field == 'student_id':
            student_id = raw.split()[-2]
            return f'Invalid Student ID: "{student_id}" (must be 10-11 digits)'
        return f"Invalid QR code data: {str(e)}"

    return "Unknown error"


def format_qr_payload(payload: ScanPayload) -> str:
    """Render a payload back into the text encoded on a student's QR code."""
    return f"{payload.full_name} {payload.student_id} {payload.department}"
