import os
from datetime import datetime, timedelta

import pytest

from app import create_app
from qr_attendance.modules.attendance_manager import AttendanceManager
from qr_attendance.modules.database_manager import DatabaseManager
from qr_attendance.modules.session_store import SessionStore

T0 = datetime(2025, 10, 6, 9, 0, 0)

PAYLOAD = "NHEM DAY G. ACLO 2023300076 BSIT"
STUDENT = ("2023300076", "NHEM DAY G. ACLO", "BSIT")


def at(seconds):
    """Scan time `seconds` after T0."""
    return T0 + timedelta(seconds=seconds)


@pytest.fixture()
def db(tmp_path):
    manager = DatabaseManager(tmp_path / "attendance_test.db")
    yield manager
    manager.close_all_connections()


@pytest.fixture()
def store(db):
    return SessionStore(db)


@pytest.fixture()
def section(store):
    return store.add_section("BSIT-3A", created_at=T0)


@pytest.fixture()
def other_section(store):
    return store.add_section("BSCS-2B", created_at=T0)


@pytest.fixture()
def engine(store):
    return AttendanceManager(store, cooldown_minutes=5, min_hold_seconds=60)


@pytest.fixture()
def app():
    application = create_app("testing")
    yield application
    application.extensions["qr_attendance"]["db"].close_all_connections()
    os.remove(application.config["DATABASE_PATH"])


@pytest.fixture()
def client(app):
    with app.test_client() as c:
        yield c
