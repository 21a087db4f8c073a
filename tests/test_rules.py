# tests/test_rules.py
from datetime import date, timedelta
from decimal import Decimal
from types import SimpleNamespace

import pytest

from music_portal.core.exceptions import AuthenticationError, RateLimitExceeded, ValidationException
from music_portal.core.rate_limiter import RateLimiter
from music_portal.core.security import (
    create_access_token, create_state_token, decode_token, decrypt, encrypt, hash_password,
    validate_password_strength, verify_password,
)
from music_portal.core.security_utils import clean_text, sanitize_search_term
from music_portal.models import AgeGroup, FileVisibility, NoteStatus, UserRole
from music_portal.services.attendance_service import attendance_rate
from music_portal.services.dashboard_service import month_bounds, sync_health
from music_portal.services.drive_file_service import normalize_tags, visible_to
from music_portal.services.hybrid_booking_service import build_slots, completion_rate
from music_portal.services.invoice_service import default_lesson_rate, format_invoice_number, hybrid_line_items
from music_portal.services.lesson_service import alternating_weeks, validate_pattern_weeks
from music_portal.services.notes_service import completion_status, lesson_date_in_week
from music_portal.services.student_service import calculate_age_group


# ============================================================================
# ATTENDANCE & NOTES
# ============================================================================

def test_attendance_rate_excludes_cancelled_and_excused():
    assert attendance_rate(present=6, late=2, total=10) == 80.0
    assert attendance_rate(present=6, late=2, total=10, cancelled=1, excused=1) == 100.0
    assert attendance_rate(present=1, late=0, total=3) == 33.3


def test_attendance_rate_with_nothing_countable_is_perfect():
    assert attendance_rate(0, 0, 0) == 100.0
    assert attendance_rate(0, 0, 2, cancelled=2) == 100.0


def _note(status):
    return SimpleNamespace(status=status)


def test_note_completion_status():
    complete = _note(NoteStatus.COMPLETE)
    assert completion_status(complete, [complete, complete]) == NoteStatus.COMPLETE
    assert completion_status(complete, [None]) == NoteStatus.PARTIAL
    assert completion_status(None, [_note(NoteStatus.PENDING)]) == NoteStatus.PARTIAL
    assert completion_status(None, [None, None]) == NoteStatus.PENDING


def test_lesson_date_in_week():
    monday = date(2026, 10, 19)
    assert lesson_date_in_week(monday, 1) == monday
    assert lesson_date_in_week(monday, 3) == date(2026, 10, 21)
    assert lesson_date_in_week(monday, 0) == date(2026, 10, 25)


# ============================================================================
# HYBRID LESSONS
# ============================================================================

def test_build_slots_drops_partial_tail():
    slots = build_slots("16:00", "17:10", 30)
    assert [slot["start_time"] for slot in slots] == ["16:00", "16:30"]
    assert slots[-1]["end_time"] == "17:00"


def test_booking_completion_rate():
    assert completion_rate(3, 4) == 75.0
    assert completion_rate(0, 0) == 0.0


def test_alternating_weeks():
    group, individual = alternating_weeks(6)
    assert group == [1, 3, 5]
    assert individual == [2, 4, 6]


@pytest.mark.parametrize("group,individual,message", [
    ([1, 2], [2, 3], "both a group week and an individual week"),
    ([1], [], "at least one individual week"),
    ([0], [2], "positive"),
    ([1], [11], "within the term"),
])
def test_invalid_hybrid_patterns(group, individual, message):
    with pytest.raises(ValidationException) as exc:
        validate_pattern_weeks(group, individual, total_weeks=10)
    assert message in exc.value.message


# ============================================================================
# STUDENTS & BILLING
# ============================================================================

@pytest.mark.parametrize("birth_date,group", [
    (date(2022, 1, 1), AgeGroup.PRESCHOOL),
    (date(2020, 10, 20), AgeGroup.PRESCHOOL),
    (date(2015, 1, 1), AgeGroup.KIDS),
    (date(2010, 1, 1), AgeGroup.TEENS),
    (date(2000, 1, 1), AgeGroup.ADULT),
])
def test_age_groups(birth_date, group):
    assert calculate_age_group(birth_date, today=date(2026, 10, 19)) == group


def test_default_lesson_rate_scales_with_duration():
    assert default_lesson_rate("INDIVIDUAL", 45) == Decimal("50.00")
    assert default_lesson_rate("INDIVIDUAL", 30) == Decimal("33.33")
    assert default_lesson_rate("UNKNOWN", 45) == Decimal("35.00")


def test_invoice_number_format():
    assert format_invoice_number(2026, 7) == "INV-2026-00007"


def test_hybrid_line_items_skip_empty_weeks():
    items = hybrid_line_items("Piano Hybrid", 5, 0, Decimal("25"), Decimal("45"))
    assert len(items) == 1
    assert items[0]["description"] == "Piano Hybrid Group Sessions (5 weeks)"
    assert items[0]["unit_price"] == Decimal("25.00")


# ============================================================================
# DRIVE FILES & DASHBOARD
# ============================================================================

def test_visibility_by_role():
    assert visible_to(UserRole.ADMIN) is None
    assert visible_to(UserRole.TEACHER) is None
    assert visible_to(UserRole.PARENT) == (FileVisibility.ALL, FileVisibility.TEACHERS_AND_PARENTS)
    assert visible_to(UserRole.STUDENT) == (FileVisibility.ALL,)


def test_normalize_tags_dedupes_and_strips_markup():
    assert normalize_tags([" scales ", "<b>scales</b>", "", "theory"]) == ["scales", "theory"]
    assert normalize_tags(None) == []


def test_sync_health():
    assert sync_health(False, 0, None) == "disconnected"
    assert sync_health(True, 0, date.today()) == "healthy"
    assert sync_health(True, 0, None) == "warning"
    assert sync_health(True, 2, date.today()) == "warning"
    assert sync_health(True, 6, date.today()) == "error"


def test_month_bounds():
    assert month_bounds(date(2026, 2, 14)) == (date(2026, 2, 1), date(2026, 2, 28))
    assert month_bounds(date(2026, 12, 31)) == (date(2026, 12, 1), date(2026, 12, 31))


# ============================================================================
# SECURITY
# ============================================================================

def test_password_hashing():
    hashed = hash_password("Tr3ble-Clef!")
    assert verify_password("Tr3ble-Clef!", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("anything", "")


def test_password_strength_rules():
    assert validate_password_strength("Tr3ble-Clef!") == []
    errors = validate_password_strength("short")
    assert "Password must be at least 8 characters long." in errors
    assert "Password is too common." in validate_password_strength("Password1!")


def test_tokens_are_typed():
    token = create_access_token({"sub": "user-1"})
    assert decode_token(token)["sub"] == "user-1"
    with pytest.raises(AuthenticationError):
        decode_token(token, expected_type="oauth_state")

    state = create_state_token("school-1", "user-1")
    assert decode_token(state, "oauth_state")["school_id"] == "school-1"


def test_expired_token_is_rejected():
    token = create_access_token({"sub": "user-1"}, expires_delta=timedelta(seconds=-1))
    with pytest.raises(AuthenticationError):
        decode_token(token)


def test_encryption_round_trip_and_tamper():
    secret = encrypt("ya29.token")
    assert secret != "ya29.token"
    assert decrypt(secret) == "ya29.token"
    with pytest.raises(AuthenticationError):
        decrypt(secret[:-4] + "abcd")


def test_search_terms_escape_wildcards():
    assert sanitize_search_term(" 100%_done ") == "100\\%\\_done"
    assert clean_text("<script>x</script>hi\x00", 10) == "xhi"


# ============================================================================
# RATE LIMITER
# ============================================================================

def test_rate_limiter_blocks_after_limit():
    limiter = RateLimiter(max_requests=2, window=60, message="Slow down.")
    limiter.check("a")
    limiter.check("a")
    with pytest.raises(RateLimitExceeded) as exc:
        limiter.check("a")
    assert exc.value.status_code == 429
    assert exc.value.message.startswith("Slow down.")
    assert 1 <= exc.value.retry_after <= 60

    # Keys are counted independently
    limiter.check("b")
    assert limiter.remaining("b") == 1


def test_rate_limiter_reset():
    limiter = RateLimiter(max_requests=1, window=60)
    limiter.check("a")
    limiter.reset("a")
    limiter.check("a")
    assert limiter.remaining("a") == 0
