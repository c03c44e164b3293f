import sqlite3
import threading
from datetime import datetime, timedelta, timezone

import pytest

from conftest import PAYLOAD, STUDENT, T0, at
from qr_attendance.modules import session_store
from qr_attendance.modules.attendance_manager import AttendanceManager
from qr_attendance.modules.decisions import (
    AlreadyActive, AlreadyCheckedInToday, Busy, CheckIn, CooldownBlocked,
    InvalidScan, LogoutSuccess, NoActiveSession, NoSectionSelected, TimedOut, TooEarly
)
from qr_attendance.modules.exceptions import StoreUnavailable

DATE = T0.date().isoformat()


def scan(engine, section_id, seconds):
    return engine.evaluate(*STUDENT, section_id, at(seconds))


def test_reference_scenario(engine, section):
    first = engine.process_scan(PAYLOAD, section.id, at(0))
    assert isinstance(first, CheckIn)
    assert first.new_record
    assert first.record.full_name == "NHEM DAY G. ACLO"
    assert first.record.department == "BSIT"

    second = engine.process_scan(PAYLOAD, section.id, at(10))
    assert isinstance(second, AlreadyActive)
    assert second.session.id == first.session.id
    assert second.hold_remaining_seconds == 50

    assert engine.logout(first.session.id, at(10)) == TooEarly(remaining_seconds=50)

    logout = engine.logout(first.session.id, at(65))
    assert isinstance(logout, LogoutSuccess)
    assert logout.session.logout_time == at(65).isoformat()
    assert logout.session.cooldown_until == at(365).isoformat()

    blocked = engine.process_scan(PAYLOAD, section.id, at(100))
    assert isinstance(blocked, CooldownBlocked)
    assert blocked.remaining_seconds == 265

    again = engine.process_scan(PAYLOAD, section.id, at(400))
    assert isinstance(again, CheckIn)
    assert again.session.id != first.session.id
    assert again.record.id == first.record.id
    assert not again.new_record


def test_duplicate_scan_never_checks_in_twice(engine, store, section):
    assert isinstance(scan(engine, section.id, 0), CheckIn)
    assert isinstance(scan(engine, section.id, 0), AlreadyActive)
    assert isinstance(scan(engine, section.id, 1), AlreadyActive)

    assert len(store.get_attendance_for_date(DATE)) == 1
    assert len(store.get_student_active_sessions(STUDENT[0], DATE)) == 1


def test_cooldown_counts_down_to_check_in(engine, section):
    session = scan(engine, section.id, 0).session
    engine.logout(session.id, at(60))

    remaining = []
    for seconds in (60, 61, 120, 200, 359):
        decision = scan(engine, section.id, seconds)
        assert isinstance(decision, CooldownBlocked)
        remaining.append(decision.remaining_seconds)

    assert remaining == [300, 299, 240, 160, 1]
    assert isinstance(scan(engine, section.id, 360), CheckIn)


def test_logout_is_gated_and_happens_once(engine, section):
    session = scan(engine, section.id, 0).session

    assert isinstance(engine.logout(session.id, at(59)), TooEarly)
    assert isinstance(engine.logout(session.id, at(60)), LogoutSuccess)
    assert isinstance(engine.logout(session.id, at(61)), NoActiveSession)
    assert isinstance(engine.logout(9999, at(61)), NoActiveSession)


def test_logout_custom_cooldown(engine, section):
    session = scan(engine, section.id, 0).session

    result = engine.logout(session.id, at(60), cooldown_minutes=1)

    assert result.session.cooldown_until == at(120).isoformat()
    assert isinstance(scan(engine, section.id, 119), CooldownBlocked)
    assert isinstance(scan(engine, section.id, 120), CheckIn)


def test_logout_does_not_stamp_time_out(engine, store, section):
    first = scan(engine, section.id, 0)
    engine.logout(first.session.id, at(60))

    assert store.get_attendance_record_by_id(first.record.id).time_out is None


def test_sections_are_independent(engine, section, other_section):
    assert isinstance(scan(engine, section.id, 0), CheckIn)
    assert isinstance(scan(engine, other_section.id, 0), CheckIn)

    session_a = scan(engine, section.id, 70).session
    engine.logout(session_a.id, at(70))

    assert isinstance(scan(engine, section.id, 80), CooldownBlocked)
    assert isinstance(scan(engine, other_section.id, 80), AlreadyActive)


def test_completed_record_is_idempotent(engine, store, section):
    store.create_attendance_record(*STUDENT, DATE, at(0), section.id)
    record = store.get_attendance_record(STUDENT[0], DATE, section.id)
    store.record_time_out(record.id, at(30))

    decision = scan(engine, section.id, 60)

    assert isinstance(decision, AlreadyCheckedInToday)
    assert decision.record.id == record.id
    assert store.get_student_active_sessions(STUDENT[0], DATE) == []


def test_new_day_starts_fresh(engine, section):
    session = scan(engine, section.id, 0).session
    engine.logout(session.id, at(60))

    decision = scan(engine, section.id, 24 * 3600)

    assert isinstance(decision, CheckIn)
    assert decision.new_record
    assert decision.session.date == "2025-10-07"


def test_no_section_selected(engine, store):
    assert isinstance(engine.evaluate(*STUDENT, None, at(0)), NoSectionSelected)
    assert isinstance(engine.process_scan(PAYLOAD, "", at(0)), NoSectionSelected)
    assert store.get_attendance_for_date(DATE) == []


def test_invalid_payload(engine, section):
    decision = engine.process_scan("NHEM ACLO 12AB BSIT", section.id, at(0))

    assert isinstance(decision, InvalidScan)
    assert "12AB" in decision.message


def test_busy_while_evaluation_in_flight(store, section):
    entered = threading.Event()
    release = threading.Event()
    original = store.get_active_session

    def slow_get_active_session(*args):
        entered.set()
        release.wait(5)
        return original(*args)

    store.get_active_session = slow_get_active_session
    engine = AttendanceManager(store)
    results = []

    worker = threading.Thread(target=lambda: results.append(scan(engine, section.id, 0)))
    worker.start()
    assert entered.wait(5)

    assert engine.is_busy
    assert isinstance(scan(engine, section.id, 1), Busy)
    assert isinstance(engine.logout(1, at(1)), Busy)

    release.set()
    worker.join(5)

    assert isinstance(results[0], CheckIn)
    assert not engine.is_busy


def test_engines_on_different_devices_do_not_block_each_other(store, section):
    device_a = AttendanceManager(store)
    device_b = AttendanceManager(store)

    assert isinstance(scan(device_a, section.id, 0), CheckIn)
    assert isinstance(scan(device_b, section.id, 1), AlreadyActive)


def test_racing_check_in_becomes_already_active(engine, store, section):
    existing = scan(engine, section.id, 0).session
    original = store.get_active_session
    calls = []

    def stale_get_active_session(*args):
        calls.append(args)
        # First read misses the session another device just opened
        if len(calls) == 1:
            return None
        return original(*args)

    store.get_active_session = stale_get_active_session

    decision = scan(engine, section.id, 5)

    assert isinstance(decision, AlreadyActive)
    assert decision.session.id == existing.id
    store.get_active_session = original
    assert len(store.get_attendance_for_date(DATE)) == 1
    assert len(store.get_student_active_sessions(STUDENT[0], DATE)) == 1


def test_store_failure_propagates_and_releases_device(engine, store, section, monkeypatch):
    def failing_check_in(*args):
        raise StoreUnavailable("disk I/O error")

    monkeypatch.setattr(store, "check_in", failing_check_in)

    with pytest.raises(StoreUnavailable):
        scan(engine, section.id, 0)

    assert not engine.is_busy
    monkeypatch.undo()
    assert isinstance(scan(engine, section.id, 1), CheckIn)


def test_settings_loaded_from_database(store, db):
    db.update_system_setting('cooldown_minutes', '10')
    db.update_system_setting('min_hold_seconds', '30')

    assert AttendanceManager(store).cooldown_minutes == 10.0
    assert AttendanceManager(store).min_hold_seconds == 30
    assert AttendanceManager(store, cooldown_minutes=2).cooldown_minutes == 2


def test_auto_timeout_on_rescan(store, section, other_section):
    engine = AttendanceManager(store, auto_timeout_on_rescan=True)

    first = scan(engine, section.id, 0)
    assert isinstance(first, CheckIn)

    moved = scan(engine, other_section.id, 120)
    assert isinstance(moved, TimedOut)
    assert moved.previous_section_id == section.id
    assert moved.record.time_out == at(120).isoformat()
    assert store.get_session(first.session.id).logout_time == at(120).isoformat()
    assert store.get_attendance_record(STUDENT[0], DATE, other_section.id) is None

    assert isinstance(scan(engine, other_section.id, 130), CheckIn)

    back = scan(engine, section.id, 1000)
    assert isinstance(back, TimedOut)
    assert back.previous_section_id == other_section.id

    assert isinstance(scan(engine, section.id, 1001), AlreadyCheckedInToday)


def test_auto_timeout_is_off_by_default(engine, section, other_section):
    scan(engine, section.id, 0)

    assert isinstance(scan(engine, other_section.id, 120), CheckIn)


def test_decision_serialisation(engine, section):
    data = scan(engine, section.id, 0).to_dict()

    assert data['decision'] == 'check_in'
    assert data['success'] is True
    assert data['session']['login_time'] == T0.isoformat()
    assert data['record']['student_id'] == STUDENT[0]
    assert data['new_record'] is True


def test_failed_time_out_leaves_no_partial_write(store, section, other_section, monkeypatch):
    engine = AttendanceManager(store, auto_timeout_on_rescan=True)
    first = scan(engine, section.id, 0)

    def failing_close(*args):
        raise sqlite3.OperationalError("database disk image is malformed")

    monkeypatch.setattr(session_store, "_close_session", failing_close)

    with pytest.raises(StoreUnavailable):
        scan(engine, other_section.id, 120)

    assert store.get_attendance_record_by_id(first.record.id).time_out is None
    assert store.get_session(first.session.id).is_active
    assert not engine.is_busy


def test_offset_aware_scan_times_are_stored_naive(engine, store, section):
    aware = datetime(2025, 10, 6, 9, 0, 0, tzinfo=timezone.utc)
    local = aware.astimezone().replace(tzinfo=None)

    first = engine.evaluate(*STUDENT, section.id, aware)
    assert isinstance(first, CheckIn)
    assert first.session.login_time == local.isoformat()

    logout = engine.logout(first.session.id, local + timedelta(seconds=61))
    assert isinstance(logout, LogoutSuccess)
