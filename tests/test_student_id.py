"""Unit tests for student id generation."""

import re
from datetime import datetime, timezone

from admitflow.core.student_id import generate_student_id

WHEN = datetime(2026, 3, 14, 9, 26, 53, 589000, tzinfo=timezone.utc)


def test_student_id_format() -> None:
    """STU- + 3 uppercase letters + 2 digit year + 6 digits."""
    student_id = generate_student_id("Ayesha Khan", WHEN)
    assert re.match(r"^STU-[A-Z]{3}\d{2}\d{6}$", student_id)
    assert student_id[4:7] == "AYE"
    assert student_id[7:9] == "26"


def test_disambiguator_is_millis_mod_million() -> None:
    millis = int(WHEN.timestamp() * 1000)
    assert generate_student_id("Ayesha Khan", WHEN).endswith(f"{millis % 1_000_000:06d}")


def test_short_first_name_padded() -> None:
    """Short first name is padded with X to get 3 chars."""
    assert generate_student_id("Jo Lee", WHEN)[4:7] == "JOX"


def test_empty_name_uses_xxx() -> None:
    assert generate_student_id("", WHEN)[4:7] == "XXX"
    assert generate_student_id("   ", WHEN)[4:7] == "XXX"


def test_same_inputs_same_id() -> None:
    assert generate_student_id("Bilal Ahmed", WHEN) == generate_student_id("Bilal Ahmed", WHEN)


def test_naive_datetime_treated_as_utc() -> None:
    naive = WHEN.replace(tzinfo=None)
    assert generate_student_id("Sara", naive) == generate_student_id("Sara", WHEN)
