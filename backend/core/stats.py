"""
stats.py — Derived statistics over a student snapshot.

Computes:
- Time-range selection (all / last 30 days / current year)
- Scalar aggregates (count, total, average, min, max)
- Per-gender counts and percentages
- Per-class counts and savings totals
- Top-N students by savings (stable ranking)
- Monthly count / savings trend for the current calendar year
- Recent additions (last 30 days)

Everything here is a pure function of its inputs; nothing is cached.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from core.cleaner import Gender, as_text, normalize_gender, normalize_savings

UNKNOWN_CLASS = "Unknown"
RECENT_DAYS = 30
TOP_N = 5
MONTH_LABELS = ["Jan", "Feb", "Mac", "Apr", "Mei", "Jun", "Jul", "Ogo", "Sep", "Okt", "Nov", "Dis"]


class TimeRange(str, Enum):
    ALL = "ALL"
    LAST_30_DAYS = "LAST_30_DAYS"
    CURRENT_YEAR = "CURRENT_YEAR"


def parse_time_range(value: Any) -> TimeRange:
    """Accept enum names in any case; empty means ALL."""
    text = as_text(value).upper()
    if not text:
        return TimeRange.ALL
    try:
        return TimeRange(text)
    except ValueError:
        raise ValueError(
            f"Unknown time range '{value}'. Expected one of {[t.value for t in TimeRange]}."
        )


# ── Helpers ─────────────────────────────────────────────────────────

def _sanitize(obj):
    """Recursively coerce numpy/pandas scalars to JSON-safe Python types."""
    if isinstance(obj, dict):
        return {k: _sanitize(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_sanitize(v) for v in obj]
    if isinstance(obj, (np.bool_,)):
        return bool(obj)
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (np.floating, float)):
        v = float(obj)
        return None if (np.isnan(v) or np.isinf(v)) else v
    return obj


def _reference_now(now: Optional[datetime] = None) -> pd.Timestamp:
    ts = pd.Timestamp.now(tz="UTC") if now is None else pd.Timestamp(now)
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    return ts


def class_name_lookup(classes: Sequence[Dict[str, Any]]) -> Dict[str, str]:
    """Map str(class id) → class name."""
    return {str(c.get("id")): str(c.get("name") or "") for c in classes}


def resolve_class_name(class_id: Any, lookup: Dict[str, str], default: str = UNKNOWN_CLASS) -> str:
    key = as_text(class_id)
    if not key or key not in lookup:
        return default
    return lookup[key]


def _student_frame(students: Sequence[Dict[str, Any]], tz) -> pd.DataFrame:
    """Tabular view of the snapshot with parsed savings and timestamps."""
    df = pd.DataFrame(list(students))
    for col in ("id", "name", "gender", "class_id", "ic_number", "member_number", "savings", "created_at"):
        if col not in df.columns:
            df[col] = None
    df = df.reset_index(drop=True)

    df["savings"] = df["savings"].map(lambda v: normalize_savings(v, strict=False)).astype(float)
    df["gender"] = df["gender"].map(lambda g: normalize_gender(g).value)
    created = pd.to_datetime(df["created_at"], utc=True, errors="coerce", format="ISO8601")
    df["created_ts"] = created.dt.tz_convert(tz)
    return df


def _range_mask(df: pd.DataFrame, time_range: TimeRange, now: pd.Timestamp) -> pd.Series:
    if time_range == TimeRange.ALL:
        return pd.Series(True, index=df.index)
    created = df["created_ts"]
    if time_range == TimeRange.LAST_30_DAYS:
        return created.notna() & (created >= now - pd.Timedelta(days=RECENT_DAYS))
    return created.notna() & (created.dt.year == now.year)


# ── Time range ──────────────────────────────────────────────────────

def filter_by_time_range(
    students: Sequence[Dict[str, Any]],
    time_range: TimeRange = TimeRange.ALL,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """
    Students created inside the selected range, in snapshot order.
    Records without a parseable ``created_at`` only survive ALL.
    """
    students = list(students)
    if time_range == TimeRange.ALL:
        return students
    ref = _reference_now(now)
    df = _student_frame(students, ref.tz)
    mask = _range_mask(df, time_range, ref)
    return [students[i] for i in df.index[mask]]


# ── Aggregates ──────────────────────────────────────────────────────

def compute_statistics(
    students: Sequence[Dict[str, Any]],
    classes: Sequence[Dict[str, Any]] = (),
    time_range: TimeRange = TimeRange.ALL,
    now: Optional[datetime] = None,
    top_n: int = TOP_N,
) -> Dict[str, Any]:
    """Compute every derived statistic for one snapshot + time range."""
    ref = _reference_now(now)
    lookup = class_name_lookup(classes)

    df = _student_frame(students, ref.tz)
    df = df[_range_mask(df, time_range, ref)].reset_index(drop=True)
    savings = df["savings"]

    total_count = len(df)
    male_count = int((df["gender"] == Gender.MALE.value).sum())
    female_count = int((df["gender"] == Gender.FEMALE.value).sum())
    total_savings = float(savings.sum()) if total_count else 0.0

    stats: Dict[str, Any] = {
        "time_range": time_range.value,
        "total_count": total_count,
        "male_count": male_count,
        "female_count": female_count,
        "male_percentage": male_count / total_count * 100 if total_count else 0.0,
        "female_percentage": female_count / total_count * 100 if total_count else 0.0,
        "total_savings": total_savings,
        "average_savings": total_savings / total_count if total_count else 0.0,
        "max_savings": float(savings.max()) if total_count else 0.0,
        "min_savings": float(savings.min()) if total_count else 0.0,
        "recent_count": int(
            (df["created_ts"].notna() & (df["created_ts"] >= ref - pd.Timedelta(days=RECENT_DAYS))).sum()
        ),
    }

    stats["class_breakdown"] = _class_breakdown(df, lookup)
    stats["top_students"] = _top_students(df, lookup, top_n)
    stats["monthly_trend"] = _monthly_trend(df, ref)
    return _sanitize(stats)


def _class_breakdown(df: pd.DataFrame, lookup: Dict[str, str]) -> List[Dict[str, Any]]:
    """Per-class count and savings in order of first appearance."""
    if df.empty:
        return []

    keys = df["class_id"].map(lambda c: as_text(c) if as_text(c) in lookup else None)
    grouped = (
        df.assign(class_key=keys.fillna(UNKNOWN_CLASS))
        .groupby("class_key", sort=False)["savings"]
        .agg(["count", "sum"])
    )

    rows = []
    for key, row in grouped.iterrows():
        known = key in lookup
        count = int(row["count"])
        total = float(row["sum"])
        rows.append({
            "class_id": key if known else None,
            "class_name": lookup[key] if known else UNKNOWN_CLASS,
            "count": count,
            "total_savings": total,
            "average_savings": total / count if count else 0.0,
        })
    return rows


def _top_students(df: pd.DataFrame, lookup: Dict[str, str], top_n: int) -> List[Dict[str, Any]]:
    if df.empty or top_n <= 0:
        return []
    ranked = df.sort_values("savings", ascending=False, kind="stable").head(top_n)
    return [
        {
            "rank": rank,
            "id": row["id"],
            "name": as_text(row["name"]),
            "gender": row["gender"],
            "class_name": resolve_class_name(row["class_id"], lookup),
            "savings": float(row["savings"]),
        }
        for rank, (_, row) in enumerate(ranked.iterrows(), 1)
    ]


def _monthly_trend(df: pd.DataFrame, now: pd.Timestamp) -> List[Dict[str, Any]]:
    """Twelve Jan–Dec buckets for the reference year, empty months included."""
    created = df["created_ts"]
    in_year = created.notna() & (created.dt.year == now.year)
    year_df = df[in_year]
    by_month = year_df.groupby(year_df["created_ts"].dt.month)["savings"].agg(["count", "sum"])

    trend = []
    for month in range(1, 13):
        if month in by_month.index:
            count = int(by_month.loc[month, "count"])
            total = float(by_month.loc[month, "sum"])
        else:
            count, total = 0, 0.0
        trend.append({
            "month": month,
            "label": MONTH_LABELS[month - 1],
            "count": count,
            "total_savings": total,
        })
    return trend


# ── Class directory ─────────────────────────────────────────────────

def compute_class_summaries(
    students: Sequence[Dict[str, Any]],
    classes: Sequence[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Every class in directory order with its member count and savings total.
    Classes without members are listed with zeros.
    """
    totals: Dict[str, Dict[str, float]] = {}
    for s in students:
        key = as_text(s.get("class_id"))
        entry = totals.setdefault(key, {"count": 0, "total_savings": 0.0})
        entry["count"] += 1
        entry["total_savings"] += normalize_savings(s.get("savings"), strict=False)

    summaries = []
    for c in classes:
        entry = totals.get(as_text(c.get("id")), {"count": 0, "total_savings": 0.0})
        count = int(entry["count"])
        summaries.append({
            "id": c.get("id"),
            "name": c.get("name"),
            "count": count,
            "total_savings": entry["total_savings"],
            "average_savings": entry["total_savings"] / count if count else 0.0,
        })
    return summaries


def sort_class_breakdown(rows: List[Dict[str, Any]], by: str = "name") -> List[Dict[str, Any]]:
    """Order a breakdown for display: by class name, or by count descending."""
    if by == "count":
        return sorted(rows, key=lambda r: (-r["count"], str(r.get("class_name") or r.get("name") or "")))
    return sorted(rows, key=lambda r: str(r.get("class_name") or r.get("name") or "").lower())
