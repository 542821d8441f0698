"""
services/stats_service.py
-------------------------
Stats Service — aggregate statistics and chart series for the dashboard.

    summarize()       – summary cards, point-scale distribution and the
                        per-municipality comparison / NPK profile
    monthly_trends()  – historical trend lines (pH, temperature, fertility)

Both take the plain record dicts returned by SoilSampleRepository.list_all().

Usage:
    from services.stats_service import summarize
    summary = summarize(repo.list_all())
"""

import numpy as np
import pandas as pd

from services.sample_service import MUNICIPALITIES

SAMPLE_COLUMNS = [
    "id", "municipality", "temperature", "ph_level", "fertility",
    "point_scale", "nitrogen", "phosphorus", "potassium", "created_at",
]

_NUMERIC_COLUMNS = [
    "temperature", "ph_level", "fertility", "point_scale",
    "nitrogen", "phosphorus", "potassium",
]


def _frame(records: list[dict]) -> pd.DataFrame:
    df = pd.DataFrame(records, columns=SAMPLE_COLUMNS)
    for column in _NUMERIC_COLUMNS:
        df[column] = pd.to_numeric(df[column], errors="coerce")
    return df


def _clean(value, digits: int) -> float | None:
    """Round a pandas scalar for JSON; NaN / empty means no data."""
    if value is None:
        return None
    value = float(value)
    if not np.isfinite(value):
        return None
    return round(value, digits)


def summarize(records: list[dict]) -> dict:
    """
    Return dashboard summary statistics.

    Returns:
        dict with keys:
            total                    (int)
            avg_ph                   (float|None) – 2 decimals
            avg_temperature          (float|None) – 1 decimal
            avg_fertility            (float|None) – 1 decimal
            point_scale_distribution (dict)       – '1'..'5' → count
            municipalities           (list)       – one row per municipality
    """
    df = _frame(records)

    distribution = (
        df["point_scale"].dropna().astype(int)
        .value_counts()
        .reindex(range(1, 6), fill_value=0)
    )

    grouped = df.groupby("municipality")
    means   = grouped[_NUMERIC_COLUMNS].mean()
    counts  = grouped.size()

    municipalities = []
    for slug, info in MUNICIPALITIES.items():
        row = means.loc[slug] if slug in means.index else None
        municipalities.append({
            "municipality":    slug,
            "name":            info["name"],
            "count":           int(counts.get(slug, 0)),
            "avg_ph":          _clean(row["ph_level"], 2) if row is not None else None,
            "avg_temperature": _clean(row["temperature"], 1) if row is not None else None,
            "avg_fertility":   _clean(row["fertility"], 1) if row is not None else None,
            "avg_nitrogen":    _clean(row["nitrogen"], 3) if row is not None else None,
            "avg_phosphorus":  _clean(row["phosphorus"], 3) if row is not None else None,
            "avg_potassium":   _clean(row["potassium"], 3) if row is not None else None,
        })

    return {
        "total":           int(len(df)),
        "avg_ph":          _clean(df["ph_level"].mean(), 2) if len(df) else None,
        "avg_temperature": _clean(df["temperature"].mean(), 1) if len(df) else None,
        "avg_fertility":   _clean(df["fertility"].mean(), 1) if len(df) else None,
        "point_scale_distribution": {str(k): int(v) for k, v in distribution.items()},
        "municipalities":  municipalities,
    }


def monthly_trends(records: list[dict], months: int = 6) -> list[dict]:
    """
    Return mean pH / temperature / fertility per calendar month, oldest
    first, limited to the most recent `months` months that have samples.
    """
    df = _frame(records)
    if df.empty:
        return []

    df["created_at"] = pd.to_datetime(df["created_at"], errors="coerce")
    df = df.dropna(subset=["created_at"])
    if df.empty:
        return []

    df["period"] = df["created_at"].dt.to_period("M")
    grouped = (
        df.groupby("period")
        .agg(pH=("ph_level", "mean"),
             temperature=("temperature", "mean"),
             fertility=("fertility", "mean"),
             count=("id", "size"))
        .sort_index()
        .tail(months)
    )

    return [
        {
            "period":      str(period),
            "month":       period.strftime("%b"),
            "pH":          _clean(row["pH"], 2),
            "temperature": _clean(row["temperature"], 1),
            "fertility":   _clean(row["fertility"], 1),
            "count":       int(row["count"]),
        }
        for period, row in grouped.iterrows()
    ]
