# QR Attendance - Modules Package
"""
Core modules of the QR attendance session system.
"""

__version__ = "1.0.0"
__description__ = "Core modules for QR attendance session tracking"

# Module descriptions
MODULES = {
    'qr_parser': 'QR payload parsing and validation',
    'qr_generator': 'Student QR code image generation',
    'cooldown_timer': 'Hold window and cooldown arithmetic',
    'database_manager': 'SQLite connections and schema management',
    'session_store': 'Persistence of sections, attendance records and sessions',
    'section_context': 'Per-device section selection',
    'attendance_manager': 'Attendance session state machine',
    'decisions': 'Scan and logout result types',
    'exceptions': 'Attendance error taxonomy'
}


def get_module_info():
    """Get information about available modules"""
    return MODULES
