"""
services/export_service.py
--------------------------
Export Service — CSV and Excel downloads of the stored soil samples.

Column order and headers are fixed so exported sheets stay comparable
between downloads.
"""

import io

import pandas as pd

from services.sample_service import municipality_name

# column → header
EXPORT_COLUMNS: dict[str, str] = {
    "id":           "Sample ID",
    "municipality": "Municipality",
    "location":     "Location",
    "longitude":    "Longitude",
    "latitude":     "Latitude",
    "temperature":  "Temperature (°C)",
    "ph_level":     "pH Level",
    "fertility":    "Fertility (%)",
    "point_scale":  "Point Scale",
    "nitrogen":     "Nitrogen (N)",
    "phosphorus":   "Phosphorus (P)",
    "potassium":    "Potassium (K)",
    "owner_id":     "Submitted By",
    "created_at":   "Created At (UTC)",
    "updated_at":   "Updated At (UTC)",
}

SHEET_NAME = "Soil Samples"


def to_dataframe(records: list[dict]) -> pd.DataFrame:
    df = pd.DataFrame(records, columns=list(EXPORT_COLUMNS))
    df["municipality"] = df["municipality"].map(municipality_name)
    return df.rename(columns=EXPORT_COLUMNS)


def export_csv(records: list[dict]) -> bytes:
    # utf-8-sig so spreadsheet apps pick up the ° sign
    return to_dataframe(records).to_csv(index=False).encode("utf-8-sig")


def export_xlsx(records: list[dict]) -> bytes:
    buffer = io.BytesIO()
    with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
        to_dataframe(records).to_excel(writer, index=False, sheet_name=SHEET_NAME)
    return buffer.getvalue()
