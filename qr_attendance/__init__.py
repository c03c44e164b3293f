# QR Attendance - Session Engine Package
"""
Main package for the QR attendance session system.
Scanned student QR codes are turned into check-ins, logouts and cooldown
decisions per section.
"""

__version__ = "1.0.0"
__author__ = "QR Attendance Team"
__description__ = "Attendance session engine for QR code scanning devices"

# Import core components for easy access
from .modules.database_manager import DatabaseManager
from .modules.session_store import SessionStore, Section, Student, AttendanceRecord, StudentSession
from .modules.attendance_manager import AttendanceManager
from .modules.section_context import SectionContext, DeviceRegistry
from .modules.qr_parser import ScanPayload, parse_qr_data
from .modules.qr_generator import QRGenerator

__all__ = [
    'DatabaseManager',
    'SessionStore',
    'Section',
    'Student',
    'AttendanceRecord',
    'StudentSession',
    'AttendanceManager',
    'SectionContext',
    'DeviceRegistry',
    'ScanPayload',
    'parse_qr_data',
    'QRGenerator'
]
