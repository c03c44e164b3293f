import pytest

from qr_attendance.modules.exceptions import ParseError, ValidationError
from qr_attendance.modules.qr_parser import (
    ScanPayload, format_qr_payload, get_qr_parse_error_message,
    parse_qr_data, validate_qr_data
)


def test_parse_reference_payload():
    payload = parse_qr_data("NHEM DAY G. ACLO 2023300076 BSIT")

    assert payload == ScanPayload(
        full_name="NHEM DAY G. ACLO",
        student_id="2023300076",
        department="BSIT"
    )


@pytest.mark.parametrize("raw, expected", [
    ("JUAN DELA CRUZ 20240012345 BSCS", ("JUAN DELA CRUZ", "20240012345", "BSCS")),
    ("ANA 2024000001 IT", ("ANA", "2024000001", "IT")),
    ("  MARIA\t SANTOS \n 2024000002   BSIT  ", ("MARIA SANTOS", "2024000002", "BSIT")),
])
def test_parse_normalises_whitespace(raw, expected):
    payload = parse_qr_data(raw)

    assert (payload.full_name, payload.student_id, payload.department) == expected
    assert format_qr_payload(payload) == " ".join(raw.split())


@pytest.mark.parametrize("raw", [
    "",
    "   ",
    "2023300076 BSIT",
    "NAME BSIT",
    "NHEM ACLO 202330007 BSIT",
    "NHEM ACLO 202330007612 BSIT",
    "NHEM ACLO 20233000A6 BSIT",
    "NHEM ACLO BSIT 2023300076",
    "NHEM ACLO 2023300076 B",
    "NHEM ACLO 2023300076 " + "D" * 51,
    "N" * 201 + " 2023300076 BSIT",
    None,
    12345,
])
def test_parse_rejects_malformed_input(raw):
    assert parse_qr_data(raw) is None


def test_name_length_boundary():
    assert parse_qr_data("N" * 200 + " 2023300076 BSIT") is not None
    assert parse_qr_data("N" * 201 + " 2023300076 BSIT") is None


def test_department_length_boundary():
    assert parse_qr_data("ANA 2023300076 " + "D" * 50) is not None
    assert parse_qr_data("ANA 2023300076 IT") is not None


def test_validate_raises_parse_error_for_too_few_tokens():
    with pytest.raises(ParseError):
        validate_qr_data("ACLO 2023300076")


def test_validate_reports_offending_field():
    with pytest.raises(ValidationError) as excinfo:
        validate_qr_data("NHEM ACLO 12345 BSIT")

    assert excinfo.value.field == "student_id"

    with pytest.raises(ValidationError) as excinfo:
        validate_qr_data("NHEM ACLO 2023300076 B")

    assert excinfo.value.field == "department"


def test_error_messages():
    assert get_qr_parse_error_message("") == "Empty QR code data"
    assert "requires name, student ID, and department" in get_qr_parse_error_message("A B")
    assert get_qr_parse_error_message("NHEM ACLO 12AB BSIT") == (
        'Invalid Student ID: "12AB" (must be 10-11 digits)'
    )
    assert "Department" in get_qr_parse_error_message("NHEM ACLO 2023300076 B")
    assert get_qr_parse_error_message("NHEM ACLO 2023300076 BSIT") == "Unknown error"
