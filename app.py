"""
QR Attendance Session System - Main Application

This module is the Flask entry point. It wires the session store and one
attendance engine per scanning device behind a small JSON API used by the
scanner and dashboard clients.

Features:
- Section selection per scanning device
- QR scan evaluation (check-in, duplicate, cooldown)
- Explicit logout with hold window and cooldown
- Attendance listings and statistics per day and section
- Student registry built from scans
- Student QR code generation
"""

from datetime import datetime
import logging

from flask import Flask, jsonify, request

from config import DatabaseConfig, QRCodeConfig, init_config
from qr_attendance.modules import cooldown_timer, get_module_info
from qr_attendance.modules.attendance_manager import AttendanceManager
from qr_attendance.modules.decisions import NoSectionSelected
from qr_attendance.modules.database_manager import DatabaseManager
from qr_attendance.modules.exceptions import Busy, StoreUnavailable, ValidationError, ParseError
from qr_attendance.modules.qr_generator import QRGenerator
from qr_attendance.modules.qr_parser import ScanPayload
from qr_attendance.modules.section_context import DeviceRegistry
from qr_attendance.modules.session_store import SessionStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
)
logger = logging.getLogger(__name__)

# HTTP status per decision kind; unlisted successes are 200, failures 400
STATUS_CODES = {
    'check_in': 201,
    'busy': 409,
    'no_active_session': 404,
    'cooldown_blocked': 429
}


def _decision_response(decision):
    status = STATUS_CODES.get(decision.kind, 200 if decision.success else 400)
    return jsonify({
        'success': decision.success,
        'message': decision.message,
        'data': decision.to_dict()
    }), status


def _error(message, status):
    return jsonify({'success': False, 'message': message}), status


def _request_time(data):
    """
    Scan time reported by the device, falling back to the server clock.
    Offset-aware timestamps are converted to naive local time.

    Raises:
        ValueError: scanned_at is not an ISO-8601 string
    """
    scanned_at = data.get('scanned_at')
    if scanned_at is None or scanned_at == '':
        return datetime.now()
    if not isinstance(scanned_at, str):
        raise ValueError('scanned_at must be an ISO-8601 string')
    return cooldown_timer.to_datetime(scanned_at)


def create_app(config_name=None):
    """Create the Flask application and its attendance components."""
    app = Flask(__name__)
    config_class = init_config(app, config_name)
    logging.getLogger().setLevel(config_class.LOG_LEVEL)

    db_manager = DatabaseManager(
        app.config['DATABASE_PATH'],
        default_sections=config_class.DEFAULT_SECTIONS,
        timeout=DatabaseConfig.TIMEOUT
    )
    session_store = SessionStore(db_manager)
    qr_generator = QRGenerator(
        box_size=config_class.QR_CODE_SIZE,
        border=config_class.QR_CODE_BORDER,
        error_correction=config_class.QR_CODE_ERROR_CORRECT,
        version=QRCodeConfig.VERSION,
        fill_color=QRCodeConfig.FILL_COLOR,
        back_color=QRCodeConfig.BACK_COLOR
    )

    def engine_factory():
        return AttendanceManager(
            session_store,
            cooldown_minutes=config_class.ATTENDANCE_COOLDOWN_MINUTES,
            min_hold_seconds=config_class.ATTENDANCE_MIN_HOLD_SECONDS,
            auto_timeout_on_rescan=config_class.ATTENDANCE_AUTO_TIMEOUT_ON_RESCAN
        )

    devices = DeviceRegistry(engine_factory)

    app.extensions['qr_attendance'] = {
        'db': db_manager,
        'store': session_store,
        'devices': devices
    }

    @app.errorhandler(StoreUnavailable)
    def handle_store_unavailable(e):
        logger.error(f"Storage unavailable: {str(e)}")
        return _error('Attendance storage is unavailable. Please try again.', 503)

    @app.errorhandler(Busy)
    def handle_busy(e):
        return _error(str(e), 409)

    @app.route('/')
    def index():
        """Service status"""
        return jsonify({
            'success': True,
            'service': 'qr-attendance',
            'modules': get_module_info(),
            'devices': len(devices)
        })

    @app.route('/api/sections')
    def list_sections():
        sections = session_store.list_sections()
        return jsonify({
            'success': True,
            'data': [section.to_dict() for section in sections]
        })

    @app.route('/api/devices/<device_id>/section', methods=['GET'])
    def current_section(device_id):
        device = devices.find(device_id)
        section = device.context.current() if device else None
        return jsonify({
            'success': True,
            'data': section.to_dict() if section else None
        })

    @app.route('/api/devices/<device_id>/section', methods=['PUT'])
    def select_section(device_id):
        data = request.get_json(silent=True) or {}
        section_id = data.get('section_id')

        if not section_id:
            return _error('No section specified', 400)

        section = session_store.get_section(section_id)
        if not section:
            return _error('Section not found', 404)

        devices.get(device_id).switch_section(section)
        return jsonify({'success': True, 'data': section.to_dict()})

    @app.route('/api/devices/<device_id>/section', methods=['DELETE'])
    def clear_section(device_id):
        device = devices.find(device_id)
        if device:
            device.switch_section(None)
        return jsonify({'success': True, 'data': None})

    @app.route('/api/scan', methods=['POST'])
    def process_scan():
        """Evaluate a QR code scan for the device's selected section"""
        data = request.get_json(silent=True) or {}
        device_id = data.get('device_id')
        qr_code = data.get('qr_code', '')

        if not device_id:
            return _error('No device specified', 400)

        if not isinstance(qr_code, str) or not qr_code.strip():
            return _error('No QR code data provided', 400)

        try:
            now = _request_time(data)
        except ValueError:
            return _error('Invalid scanned_at timestamp', 400)

        device = devices.find(device_id)
        if device is None:
            return _decision_response(NoSectionSelected(message="Please select a section first"))

        decision = device.engine.process_scan(qr_code, device.context.current_id(), now)
        return _decision_response(decision)

    @app.route('/api/sessions/<int:session_id>/logout', methods=['POST'])
    def logout_session(session_id):
        """Log a student out of a session on the given device"""
        data = request.get_json(silent=True) or {}
        device_id = data.get('device_id')

        if not device_id:
            return _error('No device specified', 400)

        try:
            now = _request_time(data)
        except ValueError:
            return _error('Invalid scanned_at timestamp', 400)

        cooldown_minutes = data.get('cooldown_minutes')
        if cooldown_minutes is not None and (
                isinstance(cooldown_minutes, bool)
                or not isinstance(cooldown_minutes, (int, float))
                or cooldown_minutes < 0):
            return _error('cooldown_minutes must be a non-negative number', 400)

        device = devices.find(device_id)
        if device is None:
            return _error('Unknown device', 404)

        result = device.engine.logout(session_id, now, cooldown_minutes)
        return _decision_response(result)

    @app.route('/api/attendance')
    def attendance_for_date():
        date = request.args.get('date') or datetime.now().date().isoformat()
        section_id = request.args.get('section_id')
        records = session_store.get_attendance_for_date(date, section_id)
        return jsonify({
            'success': True,
            'date': date,
            'data': [record.to_dict() for record in records]
        })

    @app.route('/api/attendance/stats')
    def attendance_stats():
        date = request.args.get('date') or datetime.now().date().isoformat()
        section_id = request.args.get('section_id')
        return jsonify({
            'success': True,
            'date': date,
            'data': session_store.get_attendance_stats(date, section_id)
        })

    @app.route('/api/students')
    def list_students():
        department = request.args.get('department')
        students = session_store.list_students(department)
        return jsonify({
            'success': True,
            'data': [student.to_dict() for student in students]
        })

    @app.route('/api/students/<student_id>')
    def get_student(student_id):
        student = session_store.get_student(student_id)
        if not student:
            return _error('Student not found', 404)
        return jsonify({'success': True, 'data': student.to_dict()})

    @app.route('/api/students/<student_id>/sessions')
    def student_sessions(student_id):
        date = request.args.get('date') or datetime.now().date().isoformat()
        sessions = session_store.get_student_active_sessions(student_id, date)
        return jsonify({
            'success': True,
            'date': date,
            'data': [session.to_dict() for session in sessions]
        })

    @app.route('/api/qr-code', methods=['POST'])
    def generate_qr_code():
        """Generate the attendance QR code for a student"""
        data = request.get_json(silent=True) or {}
        payload = ScanPayload(
            full_name=' '.join(str(data.get('full_name', '')).split()),
            student_id=str(data.get('student_id', '')).strip(),
            department=str(data.get('department', '')).strip()
        )

        try:
            result = qr_generator.generate_student_qr_code(
                payload, with_caption=bool(data.get('with_caption'))
            )
        except (ParseError, ValidationError) as e:
            return _error(f"Invalid student data: {str(e)}", 400)

        return jsonify({'success': True, 'data': result})

    return app


if __name__ == '__main__':
    # Run the application
    create_app().run(debug=True, host='0.0.0.0', port=5000)
