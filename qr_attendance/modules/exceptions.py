"""
Exceptions Module - QR Attendance Session System

Error taxonomy shared by the parser, the session store and the attendance
engine. Scan-level problems that the scanner UI can recover from are
returned as decisions by the engine; these exceptions are raised where a
caller has to react explicitly.
"""


class AttendanceError(Exception):
    """Base class for all attendance system errors."""


class ParseError(AttendanceError):
    """Raised when a QR payload does not have the NAME ID DEPARTMENT shape."""


class ValidationError(AttendanceError):
    """Raised when a parsed QR field is out of bounds."""

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class NoSectionSelected(AttendanceError):
    """Raised when scanning is attempted without a selected section."""

    def __init__(self, message: str = "Please select a section first"):
        super().__init__(message)


class Busy(AttendanceError):
    """Raised when a scanning device already has an evaluation in flight."""

    def __init__(self, message: str = "Processing previous scan..."):
        super().__init__(message)


class StoreUnavailable(AttendanceError):
    """Raised when the storage engine cannot complete an operation."""


class ActiveSessionExists(AttendanceError):
    """Raised by the store when a check-in would open a second active session."""
