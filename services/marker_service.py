"""
services/marker_service.py
--------------------------
Marker Service — turns stored soil samples into map markers (GeoJSON
Features) and reconciles a client's marker layer against the canonical
sample list.

The client keeps a {sample_id: fingerprint} map of what it has drawn and
posts it to /map/markers/sync. The server answers with a patch:

    {"add": [features], "update": [features], "remove": [ids]}

so edits and deletes reach every open map without hand-patched popups.

Marker colour follows the soil pH category:
    pH <  5.5  → strongly acidic   (red)
    pH <  6.0  → moderately acidic (orange)
    pH <  6.5  → slightly acidic   (yellow)
    pH >  7.5  → alkaline          (blue)
    otherwise  → optimal           (green)
"""

import hashlib
import json

from services.derivation_service import derive_soil_parameters
from services.errors import ValidationError
from services.sample_service import municipality_name

# (upper bound exclusive, category, colour)
_PH_CATEGORIES: list[tuple[float, str, str]] = [
    (5.5, "Strongly acidic",   "hsl(0 70% 50%)"),
    (6.0, "Moderately acidic", "hsl(25 85% 55%)"),
    (6.5, "Slightly acidic",   "hsl(45 95% 50%)"),
]
_PH_ALKALINE = ("Alkaline", "hsl(210 80% 50%)")
_PH_OPTIMAL  = ("Optimal",  "hsl(130 45% 40%)")

# Popup / fingerprint fields, in display order
_POPUP_FIELDS = (
    "name", "municipality", "pH", "temperature", "fertility", "pointScale",
    "nitrogenPct", "phosphorusPct", "potassiumPct", "ownerId",
)


def ph_category(ph: float) -> tuple[str, str]:
    """Return (category, colour) for a pH value."""
    for upper, category, colour in _PH_CATEGORIES:
        if ph < upper:
            return category, colour
    if ph > 7.5:
        return _PH_ALKALINE
    return _PH_OPTIMAL


def fertility_level(fertility: float) -> str:
    if fertility < 40:
        return "Very Low"
    if fertility < 60:
        return "Low"
    if fertility < 70:
        return "Moderate"
    if fertility <= 85:
        return "High"
    return "Very High"


def _nutrient_pct(value: float | None) -> int | None:
    return None if value is None else int(round(value * 100))


def build_marker(record: dict) -> dict:
    """Build a GeoJSON Feature for one stored sample."""
    category, colour = ph_category(record["ph_level"])
    properties = {
        "id":            record["id"],
        "name":          record.get("location") or municipality_name(record["municipality"]),
        "municipality":  municipality_name(record["municipality"]),
        "pH":            record["ph_level"],
        "temperature":   record["temperature"],
        "fertility":     record["fertility"],
        "pointScale":    record["point_scale"],
        "nitrogenPct":   _nutrient_pct(record.get("nitrogen")),
        "phosphorusPct": _nutrient_pct(record.get("phosphorus")),
        "potassiumPct":  _nutrient_pct(record.get("potassium")),
        "ownerId":       record["owner_id"],
        "phCategory":    category,
        "color":         colour,
        "fertilityLevel": fertility_level(record["fertility"]),
        "temperatureBand": derive_soil_parameters(record["temperature"])["band"],
    }
    properties["fingerprint"] = fingerprint(properties)

    return {
        "type": "Feature",
        "id":   record["id"],
        "geometry": {
            "type":        "Point",
            "coordinates": [record["longitude"], record["latitude"]],
        },
        "properties": properties,
    }


def fingerprint(properties: dict) -> str:
    """Short content hash of the popup fields; changes whenever they do."""
    content = json.dumps([properties.get(k) for k in _POPUP_FIELDS],
                         separators=(",", ":"))
    return hashlib.sha1(content.encode("utf-8")).hexdigest()[:16]


def feature_collection(records: list[dict]) -> dict:
    return {
        "type":     "FeatureCollection",
        "features": [build_marker(r) for r in records],
    }


def reconcile_markers(known: dict, records: list[dict]) -> dict:
    """
    Diff the client's known markers against the canonical records.

    Args:
        known   (dict): {sample_id: fingerprint} the client currently shows.
                        Keys may be strings (JSON object keys).
        records (list): Current sample records.

    Returns:
        dict with keys 'add' and 'update' (lists of Features) and 'remove'
        (sorted list of ids no longer present).
    """
    known_ids: dict[int, str] = {}
    for key, value in known.items():
        try:
            known_ids[int(key)] = str(value)
        except (TypeError, ValueError):
            raise ValidationError(f"Unknown marker id: {key!r}", ["known"])

    add: list[dict]    = []
    update: list[dict] = []
    seen: set[int]     = set()

    for record in records:
        marker = build_marker(record)
        sample_id = record["id"]
        seen.add(sample_id)
        if sample_id not in known_ids:
            add.append(marker)
        elif known_ids[sample_id] != marker["properties"]["fingerprint"]:
            update.append(marker)

    remove = sorted(i for i in known_ids if i not in seen)
    return {"add": add, "update": update, "remove": remove}
