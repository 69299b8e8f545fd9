"""
parser.py — Spreadsheet ingestion for bulk student import.

Supports:
- Excel (.xlsx, .xls), ODS and CSV uploads, read fully into memory
- First-sheet only, every cell read as text
- Flexible column aliases (English and Malay headers)
- Row → canonical student record via core.cleaner
- Batch de-duplication on identity number (last row wins)
"""

import io
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import pandas as pd

from core.cleaner import (
    FEMALE_ALIASES,
    Gender,
    as_text,
    normalize_gender,
    normalize_ic,
    normalize_member,
    normalize_name,
    normalize_savings,
)
from core.errors import StudentImportError

SUPPORTED_EXTENSIONS = (".xlsx", ".xls", ".ods", ".csv")

# Header variations for each store field, matched case-insensitively.
COLUMN_ALIASES = {
    "name": [
        "name", "nama", "nama pelajar", "student_name", "student name", "full_name",
    ],
    "gender": [
        "gender", "jantina", "sex",
    ],
    "ic_number": [
        "ic_number", "ic", "no ic", "no. ic", "no_ic", "mykad", "ic number",
    ],
    "member_number": [
        "member_number", "ahli", "no ahli", "no. ahli", "no_ahli", "member number",
    ],
    "class_id": [
        "class_id", "kelas", "class", "class_name", "nama kelas",
    ],
    "savings": [
        "savings", "simpanan", "modal syer", "modal_syer", "syer", "share capital",
    ],
}

MALE_SPELLINGS = {"lelaki", "l", "male", "m"}


def parse_upload(source: Union[str, Path, bytes], filename: Optional[str] = None) -> pd.DataFrame:
    """
    Read the first sheet of an uploaded spreadsheet.

    ``source`` is a path or the raw bytes of the upload; for bytes the
    extension is taken from ``filename``.
    """
    if isinstance(source, bytes):
        name = filename or ""
        handle = io.BytesIO(source)
    else:
        name = filename or str(source)
        handle = source

    ext = Path(name).suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise StudentImportError(f"Jenis fail tidak disokong: {ext or 'tiada'}. Gunakan Excel, ODS atau CSV.")

    try:
        if ext == ".csv":
            df = pd.read_csv(handle, dtype=str)
        else:
            engine = {".xlsx": "openpyxl", ".xls": "xlrd", ".ods": "odf"}[ext]
            df = pd.read_excel(handle, sheet_name=0, dtype=str, engine=engine)
    except Exception as e:
        raise StudentImportError(f"Ralat memproses fail: {e}") from e

    df.columns = [str(c).strip() for c in df.columns]
    return df


def suggest_column_mapping(df: pd.DataFrame) -> Dict[str, List[str]]:
    """
    Map each store field to the spreadsheet columns that can feed it.

    Several columns may match one field (e.g. both ``name`` and ``NAMA``);
    they are kept in alias order and coalesced per row.
    """
    cols_lower = {}
    for c in df.columns:
        cols_lower.setdefault(str(c).lower().strip(), c)

    mapping: Dict[str, List[str]] = {}
    for field, aliases in COLUMN_ALIASES.items():
        mapping[field] = [cols_lower[a] for a in aliases if a in cols_lower]
    return mapping


def _coalesce(row: pd.Series, columns: Sequence[str]) -> Any:
    """First non-empty value across the matched columns."""
    for col in columns:
        value = row.get(col)
        if as_text(value):
            return value
    return None


def _class_resolver(classes: Sequence[Dict[str, Any]]):
    by_id = {str(c.get("id")): c.get("id") for c in classes}
    by_name = {}
    for c in classes:
        key = str(c.get("name") or "").strip().lower()
        if key:
            by_name.setdefault(key, c.get("id"))

    def resolve(value: Any) -> Tuple[Optional[Any], bool]:
        text = as_text(value)
        if not text:
            return None, True
        if text in by_id:
            return by_id[text], True
        if text.lower() in by_name:
            return by_name[text.lower()], True
        return None, False

    return resolve


def build_import_records(
    df: pd.DataFrame,
    classes: Sequence[Dict[str, Any]] = (),
) -> Tuple[List[Dict[str, Any]], Dict[str, Any]]:
    """
    Convert spreadsheet rows into student records ready for upsert.
    Returns (records, import_report).
    """
    mapping = suggest_column_mapping(df)
    report: Dict[str, Any] = {
        "original_rows": len(df),
        "column_mapping": {k: v for k, v in mapping.items() if v},
        "steps": [],
        "warnings": [],
    }

    if not any(mapping.values()):
        raise StudentImportError(
            "Tiada lajur dikenali dalam fail. "
            f"Lajur dijangka: {sorted(COLUMN_ALIASES.keys())}"
        )

    missing = [field for field, cols in mapping.items() if not cols]
    if missing:
        report["warnings"].append(f"Lajur tiada, nilai lalai digunakan: {missing}")

    resolve_class = _class_resolver(classes)
    records: List[Dict[str, Any]] = []
    blank_rows = 0
    defaulted_gender = 0
    unresolved_classes: List[str] = []

    for _, row in df.iterrows():
        if all(not as_text(v) for v in row.values):
            blank_rows += 1
            continue

        raw_gender = as_text(_coalesce(row, mapping["gender"])).lower()
        if raw_gender not in FEMALE_ALIASES and raw_gender not in MALE_SPELLINGS:
            defaulted_gender += 1

        raw_class = _coalesce(row, mapping["class_id"])
        class_id, resolved = resolve_class(raw_class)
        if not resolved:
            unresolved_classes.append(as_text(raw_class))

        records.append({
            "name": normalize_name(_coalesce(row, mapping["name"]), default="Unknown"),
            "gender": normalize_gender(raw_gender).value,
            "ic_number": normalize_ic(_coalesce(row, mapping["ic_number"])),
            "member_number": normalize_member(_coalesce(row, mapping["member_number"])),
            "class_id": class_id,
            "savings": normalize_savings(_coalesce(row, mapping["savings"])),
        })

    if blank_rows:
        report["steps"].append(f"Skipped {blank_rows} blank rows.")

    records, removed = deduplicate_by_ic(records)
    if removed:
        report["steps"].append(f"Removed {removed} rows with a repeated IC number (last row kept).")

    if defaulted_gender:
        report["warnings"].append(
            f"{defaulted_gender} rows had an empty or unrecognised gender and were set to "
            f"{Gender.MALE.value}."
        )
    if unresolved_classes:
        report["warnings"].append(
            f"{len(unresolved_classes)} rows reference unknown classes "
            f"{sorted(set(unresolved_classes))}; class left empty."
        )

    report["steps"].append("Normalized IC numbers, member numbers, gender and savings.")
    report["imported_rows"] = len(records)
    report["duplicates_removed"] = removed
    report["defaulted_gender"] = defaulted_gender
    report["unresolved_classes"] = len(unresolved_classes)
    return records, report


def deduplicate_by_ic(records: List[Dict[str, Any]]) -> Tuple[List[Dict[str, Any]], int]:
    """
    Keep the last record for each identity number, preserving the position
    of that last occurrence. Records without an IC are all kept.
    """
    last_index = {}
    for idx, rec in enumerate(records):
        if rec.get("ic_number"):
            last_index[rec["ic_number"]] = idx

    kept = [
        rec for idx, rec in enumerate(records)
        if not rec.get("ic_number") or last_index[rec["ic_number"]] == idx
    ]
    return kept, len(records) - len(kept)
