"""
Phone identity helpers.

Two phone strings are the same identity iff their normalized forms are equal.
Only North American numbers get their country code stripped; no numbering
plan validation is done.
"""

import re
from typing import Optional

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(raw: Optional[str]) -> str:
    """
    Convert arbitrary phone text into its canonical comparable form.

    "(347) 207-4064", "13472074064" and "+13472074064" all give "3472074064".
    """
    if not raw:
        return ""
    digits = _NON_DIGITS.sub("", raw)
    if len(digits) == 11 and digits.startswith("1"):
        digits = digits[1:]
    return digits


def same_identity(a: Optional[str], b: Optional[str]) -> bool:
    """True when both numbers normalize to the same non-empty form."""
    normalized = normalize_phone(a)
    return bool(normalized) and normalized == normalize_phone(b)


def synthesize_patient_name(raw: Optional[str]) -> str:
    """Display name for a patient provisioned from an unknown sender."""
    digits = normalize_phone(raw)
    suffix = digits[-4:] if digits else (raw or "").strip()[-4:]
    return f"Patient {suffix}".strip()
