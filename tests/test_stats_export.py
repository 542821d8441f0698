"""Tests for dashboard statistics and CSV / Excel export."""

import io

import pandas as pd
import pytest

from services.export_service import EXPORT_COLUMNS, export_csv, export_xlsx
from services.stats_service import monthly_trends, summarize


@pytest.fixture
def records():
    base = {
        "owner_id": "alice", "location": None,
        "longitude": 120.8, "latitude": 17.5, "updated_at": "2026-06-01 00:00:00",
    }
    rows = [
        (1, "sallapadan", 28.0, 6.5, 75.0, 4, 0.25, 0.15, 0.20, "2026-04-03 10:00:00"),
        (2, "sallapadan", 27.0, 6.4, 73.0, 4, None, 0.14, 0.19, "2026-05-03 10:00:00"),
        (3, "bucay",      26.0, 6.8, 82.0, 4, 0.28, 0.18, 0.22, "2026-05-20 10:00:00"),
        (4, "bucay",      22.0, 6.9, 88.0, 5, 0.27, 0.17, 0.21, "2026-06-11 10:00:00"),
    ]
    keys = ["id", "municipality", "temperature", "ph_level", "fertility",
            "point_scale", "nitrogen", "phosphorus", "potassium", "created_at"]
    return [{**base, **dict(zip(keys, row))} for row in rows]


class TestSummarize:
    def test_overall_averages(self, records):
        summary = summarize(records)
        assert summary["total"] == 4
        assert summary["avg_ph"] == pytest.approx(6.65)
        assert summary["avg_temperature"] == pytest.approx(25.8)
        assert summary["avg_fertility"] == pytest.approx(79.5)

    def test_point_scale_distribution(self, records):
        assert summarize(records)["point_scale_distribution"] == {
            "1": 0, "2": 0, "3": 0, "4": 3, "5": 1,
        }

    def test_municipality_rows(self, records):
        rows = {r["municipality"]: r for r in summarize(records)["municipalities"]}
        assert list(rows) == ["sallapadan", "bucay", "lagangilang"]

        sallapadan = rows["sallapadan"]
        assert sallapadan["count"] == 2
        assert sallapadan["avg_ph"] == pytest.approx(6.45)
        # missing nitrogen readings are skipped, not counted as zero
        assert sallapadan["avg_nitrogen"] == pytest.approx(0.25)

        empty = rows["lagangilang"]
        assert empty["count"] == 0
        assert empty["avg_ph"] is None
        assert empty["name"] == "Lagangilang"

    def test_no_records(self):
        summary = summarize([])
        assert summary["total"] == 0
        assert summary["avg_ph"] is None
        assert all(r["count"] == 0 for r in summary["municipalities"])


class TestMonthlyTrends:
    def test_groups_by_month(self, records):
        trends = monthly_trends(records)
        assert [t["period"] for t in trends] == ["2026-04", "2026-05", "2026-06"]
        assert [t["month"] for t in trends] == ["Apr", "May", "Jun"]
        may = trends[1]
        assert may["count"] == 2
        assert may["pH"] == pytest.approx(6.6)
        assert may["fertility"] == pytest.approx(77.5)

    def test_limits_to_recent_months(self, records):
        trends = monthly_trends(records, months=2)
        assert [t["period"] for t in trends] == ["2026-05", "2026-06"]

    def test_no_records(self):
        assert monthly_trends([]) == []


class TestExport:
    def test_csv_headers_and_rows(self, records):
        df = pd.read_csv(io.BytesIO(export_csv(records)), encoding="utf-8-sig")
        assert list(df.columns) == list(EXPORT_COLUMNS.values())
        assert len(df) == 4
        assert df.loc[0, "Municipality"] == "Sallapadan"

    def test_xlsx_roundtrip(self, records):
        df = pd.read_excel(io.BytesIO(export_xlsx(records)), sheet_name="Soil Samples",
                           engine="openpyxl")
        assert len(df) == 4
        assert df["pH Level"].tolist() == [6.5, 6.4, 6.8, 6.9]

    def test_empty_csv_has_header_only(self):
        df = pd.read_csv(io.BytesIO(export_csv([])), encoding="utf-8-sig")
        assert df.empty
        assert "Point Scale" in df.columns
