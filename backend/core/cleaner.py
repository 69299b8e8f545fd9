"""
cleaner.py — Field normalization for imported rows and form input.

Handles:
- Gender standardization (permissive: unknown values become MALE)
- Identity number cleanup (hyphens / whitespace stripped)
- Member number trimming
- Savings parsing with optional non-negative clamp
- Form payload normalization for create / update
"""

import math
from enum import Enum
from typing import Any, Dict, Optional

import pandas as pd

from core.errors import SaveError


# ── Gender ──────────────────────────────────────────────────────────

class Gender(str, Enum):
    """Gender as persisted in the ``students`` collection."""

    MALE = "LELAKI"
    FEMALE = "PEREMPUAN"

    @property
    def label(self) -> str:
        return "Lelaki" if self is Gender.MALE else "Perempuan"


FEMALE_ALIASES = {"perempuan", "p", "female", "f"}

# Filter / query spellings accepted for each gender.
GENDER_LOOKUP = {
    "male": Gender.MALE, "lelaki": Gender.MALE, "l": Gender.MALE, "m": Gender.MALE,
    "female": Gender.FEMALE, "perempuan": Gender.FEMALE, "p": Gender.FEMALE, "f": Gender.FEMALE,
}


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        return False
    return False


def as_text(value: Any) -> str:
    """Render a raw cell as text; whole floats lose their trailing '.0'."""
    if _is_blank(value):
        return ""
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def normalize_gender(value: Any) -> Gender:
    """FEMALE for the known female spellings, MALE for anything else."""
    cleaned = as_text(value).lower()
    if cleaned in FEMALE_ALIASES:
        return Gender.FEMALE
    return Gender.MALE


def parse_gender(value: Any) -> Optional[Gender]:
    """Strict lookup used by filters; None when the value is not a gender."""
    return GENDER_LOOKUP.get(as_text(value).lower())


# ── Identity / member numbers ───────────────────────────────────────

def normalize_ic(value: Any) -> Optional[str]:
    """'010203-04-0506' → '010203040506'; empty → None."""
    text = as_text(value)
    if not text:
        return None
    compact = "".join(ch for ch in text if ch != "-" and not ch.isspace())
    return compact or None


def normalize_member(value: Any) -> Optional[str]:
    text = as_text(value)
    return text or None


def normalize_name(value: Any, default: Optional[str] = None) -> Optional[str]:
    text = as_text(value)
    return text or default


# ── Savings ─────────────────────────────────────────────────────────

def normalize_savings(value: Any, strict: bool = True) -> float:
    """
    Parse a savings amount.

    Non-numeric, non-finite or absent values become 0. With ``strict`` the
    result is clamped to >= 0; the permissive variant keeps negatives.
    """
    if _is_blank(value) or isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float)):
        amount = float(value)
    else:
        text = str(value).strip().replace(",", "")
        if text[:2].upper() == "RM":
            text = text[2:].strip()
        try:
            amount = float(text) if text else 0.0
        except ValueError:
            return 0.0

    if not math.isfinite(amount):
        return 0.0
    if strict and amount < 0:
        return 0.0
    return amount


# ── Form payloads ───────────────────────────────────────────────────

STUDENT_FIELDS = ("name", "gender", "class_id", "member_number", "ic_number", "savings")


def normalize_student_payload(payload: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Clean a create/update form into the store's record shape.

    Create requires a name and a class; update (``partial``) only normalizes
    the fields that were sent.
    """
    record: Dict[str, Any] = {}

    if not partial or "name" in payload:
        name = normalize_name(payload.get("name"))
        if not name:
            raise SaveError("Sila masukkan nama pelajar.")
        record["name"] = name

    if not partial or "gender" in payload:
        gender = parse_gender(payload.get("gender"))
        record["gender"] = (gender or Gender.MALE).value

    if not partial or "class_id" in payload:
        class_id = payload.get("class_id")
        class_id = None if _is_blank(class_id) or str(class_id).strip() == "" else class_id
        if class_id is None and not partial:
            raise SaveError("Sila pilih kelas.")
        record["class_id"] = class_id

    if not partial or "member_number" in payload:
        record["member_number"] = normalize_member(payload.get("member_number"))

    if not partial or "ic_number" in payload:
        record["ic_number"] = normalize_ic(payload.get("ic_number"))

    if not partial or "savings" in payload:
        record["savings"] = normalize_savings(payload.get("savings"))

    return record
