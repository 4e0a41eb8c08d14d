"""
Student id generation.
Format: STU- + first 3 of first name + last 2 of year + 6-digit time disambiguator.
"""

from datetime import datetime, timezone
from typing import Optional


def generate_student_id(name: str, when: Optional[datetime] = None) -> str:
    """
    Build a stable student id token from the student's name and a timestamp.

    Rules:
    - First 3 letters of first name (uppercase); pad with 'X' if shorter.
    - Last 2 digits of the year of `when`.
    - Milliseconds since epoch of `when`, modulo 1,000,000, zero-padded to 6 digits.

    Examples:
        Ayesha Khan -> STU-AYE26483123
        Jo Lee      -> STU-JOX26017544

    Same (name, when) always yields the same id.
    """
    when = when or datetime.now(timezone.utc)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    if not name or not str(name).strip():
        first_part = "XXX"
    else:
        first_name = str(name).strip().split()[0]
        letters = "".join(ch for ch in first_name if ch.isalpha())
        first_part = (letters[:3].upper() + "XXX")[:3]

    year_suffix = str(when.year)[-2:]
    millis = int(when.timestamp() * 1000)
    return f"STU-{first_part}{year_suffix}{millis % 1_000_000:06d}"
