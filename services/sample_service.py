"""
services/sample_service.py
--------------------------
Sample Service — validates soil-sample submissions, merges them with the
values derived from temperature, and runs owner-checked mutations through
the repository.

Record assembly rules:
    - pH / fertility are pre-populated from derive_soil_parameters() but any
      value the user supplies wins.
    - point_scale is always recomputed from the final temperature; it is never
      taken from the payload.
    - Edits touch numeric fields only. A temperature edit recomputes
      point_scale and the stored derivation, not the user-visible pH /
      fertility.

Usage:
    from services.sample_service import create_sample
    sample_id = create_sample(repo, guard, session, request_json)
"""

import logging

from services.derivation_service import derive_soil_parameters, parse_temperature
from services.errors import PermissionDeniedError, ValidationError
from services.inflight_guard import InFlightGuard
from services.repository import SoilSampleRepository
from services.session_service import SessionContext

logger = logging.getLogger(__name__)


# ── Municipalities: slug → display name + map centre (lng, lat) ──────────────
MUNICIPALITIES: dict[str, dict] = {
    "sallapadan":  {"name": "Sallapadan",  "center": (120.95, 17.46)},
    "bucay":       {"name": "Bucay",       "center": (120.74, 17.55)},
    "lagangilang": {"name": "Lagangilang", "center": (120.79, 17.62)},
}

# Abra province overview
DEFAULT_CENTER: tuple[float, float] = (120.8, 17.55)

# field → (min, max) inclusive
_RANGES: dict[str, tuple[float, float]] = {
    "ph_level":   (0.0, 14.0),
    "fertility":  (0.0, 100.0),
    "nitrogen":   (0.0, 1.0),
    "phosphorus": (0.0, 1.0),
    "potassium":  (0.0, 1.0),
}

# request key → column
_NUMERIC_INPUTS: dict[str, str] = {
    "phLevel":    "ph_level",
    "pH":         "ph_level",
    "fertility":  "fertility",
    "nitrogen":   "nitrogen",
    "phosphorus": "phosphorus",
    "potassium":  "potassium",
}

EDITABLE_INPUTS = ("temperature",) + tuple(_NUMERIC_INPUTS)


def municipality_name(slug: str) -> str:
    info = MUNICIPALITIES.get(slug)
    return info["name"] if info else slug


def normalise_municipality(value) -> str | None:
    """Map 'Bucay' / 'bucay' / ' BUCAY ' to the slug, or None if unknown."""
    slug = str(value or "").strip().lower()
    return slug if slug in MUNICIPALITIES else None


# ─────────────────────────────────────────────────────────────────────────────
# Assembly
# ─────────────────────────────────────────────────────────────────────────────

def assemble_sample(payload: dict, owner_id: str) -> dict:
    """
    Validate a new-sample payload and build the record to persist.

    Raises:
        ValidationError: listing every missing or invalid field.
    """
    errors: list[str] = []
    record: dict = {"owner_id": owner_id}

    municipality = normalise_municipality(payload.get("municipality"))
    if municipality is None:
        errors.append("municipality")
    record["municipality"] = municipality

    location = str(payload.get("location") or "").strip()
    record["location"] = location or None

    coords = _parse_coordinates(payload, errors)
    if coords is not None:
        record["longitude"], record["latitude"] = coords

    try:
        temperature = parse_temperature(payload.get("temperature"))
    except ValidationError:
        errors.append("temperature")
        temperature = None

    numeric = _parse_numeric_fields(payload, errors)

    if errors:
        raise ValidationError(
            f"Missing or invalid fields: {', '.join(errors)}", errors
        )

    derived = derive_soil_parameters(temperature)
    record.update({
        "temperature":       temperature,
        "ph_level":          derived["pH"],
        "fertility":         derived["fertility"],
        "point_scale":       derived["pointScale"],
        "derived_ph":        derived["pH_raw"],
        "derived_fertility": derived["fertility_raw"],
        "nitrogen":          None,
        "phosphorus":        None,
        "potassium":         None,
    })
    # user-entered values override the derived defaults
    record.update(numeric)
    return record


def assemble_update(existing: dict, patch: dict) -> dict:
    """
    Validate a partial numeric edit and return the columns to write.

    Raises:
        ValidationError: If the patch has no editable field or any invalid one.
    """
    unknown = [k for k in patch if k not in EDITABLE_INPUTS]
    if unknown:
        raise ValidationError(
            f"Only numeric fields can be edited; not editable: {', '.join(unknown)}",
            unknown,
        )
    if not patch:
        raise ValidationError("No fields to update", [])

    errors: list[str] = []
    fields = _parse_numeric_fields(patch, errors, allow_clear=True)

    if "temperature" in patch:
        try:
            temperature = parse_temperature(patch["temperature"])
        except ValidationError:
            errors.append("temperature")
        else:
            derived = derive_soil_parameters(temperature)
            fields.update({
                "temperature":       temperature,
                "point_scale":       derived["pointScale"],
                "derived_ph":        derived["pH_raw"],
                "derived_fertility": derived["fertility_raw"],
            })

    if errors:
        raise ValidationError(
            f"Missing or invalid fields: {', '.join(errors)}", errors
        )

    for required in ("ph_level", "fertility"):
        if required in fields and fields[required] is None:
            raise ValidationError(f"'{required}' cannot be cleared", [required])

    return {k: v for k, v in fields.items() if existing.get(k) != v}


def _parse_coordinates(payload: dict, errors: list[str]) -> tuple[float, float] | None:
    coords = payload.get("coordinates")
    if coords is not None:
        if not isinstance(coords, (list, tuple)) or len(coords) != 2:
            errors.append("coordinates")
            return None
        raw_lng, raw_lat = coords
    else:
        raw_lng, raw_lat = payload.get("longitude"), payload.get("latitude")

    if isinstance(raw_lng, bool) or isinstance(raw_lat, bool):
        errors.append("coordinates")
        return None
    try:
        lng = float(raw_lng)
        lat = float(raw_lat)
    except (TypeError, ValueError):
        errors.append("coordinates")
        return None

    if not (-180 <= lng <= 180) or not (-90 <= lat <= 90):
        errors.append("coordinates")
        return None
    return lng, lat


def _parse_numeric_fields(payload: dict, errors: list[str],
                          allow_clear: bool = False) -> dict:
    """
    Parse the optional numeric inputs present in payload, range-checked.

    'phLevel' and its alias 'pH' are mutually exclusive.
    """
    fields: dict = {}
    ph_conflict = "phLevel" in payload and "pH" in payload
    if ph_conflict:
        errors.append("ph_level")

    for key, column in _NUMERIC_INPUTS.items():
        if key not in payload:
            continue
        if ph_conflict and column == "ph_level":
            continue
        value = payload[key]
        if value is None or (isinstance(value, str) and not value.strip()):
            if allow_clear:
                fields[column] = None
            continue
        if isinstance(value, bool):
            errors.append(column)
            continue
        try:
            number = float(value)
        except (TypeError, ValueError):
            errors.append(column)
            continue
        low, high = _RANGES[column]
        if not (low <= number <= high):
            errors.append(column)
            continue
        fields[column] = number
    return fields


# ─────────────────────────────────────────────────────────────────────────────
# Owner-checked operations
# ─────────────────────────────────────────────────────────────────────────────

def create_sample(repo: SoilSampleRepository, guard: InFlightGuard,
                  session: SessionContext, payload: dict) -> int:
    record = assemble_sample(payload, session.user_id)
    with guard.hold(("create", session.session_id)):
        sample_id = repo.create(record)
    logger.info("Sample %d created by %s (%s, point scale %d)",
                sample_id, session.user_id, record["municipality"],
                record["point_scale"])
    return sample_id


def update_sample(repo: SoilSampleRepository, guard: InFlightGuard,
                  session: SessionContext, sample_id: int, patch: dict) -> dict:
    """Apply an owner's numeric edit and return the updated record."""
    with guard.hold(("sample", sample_id)):
        existing = repo.get(sample_id)
        _check_owner(existing, session)
        fields = assemble_update(existing, patch)
        if fields:
            repo.update(sample_id, fields)
    logger.info("Sample %d updated by %s: %s",
                sample_id, session.user_id, sorted(fields) or "no changes")
    return repo.get(sample_id)


def delete_sample(repo: SoilSampleRepository, guard: InFlightGuard,
                  session: SessionContext, sample_id: int) -> None:
    with guard.hold(("sample", sample_id)):
        existing = repo.get(sample_id)
        _check_owner(existing, session)
        repo.delete(sample_id)
    logger.info("Sample %d deleted by %s", sample_id, session.user_id)


def _check_owner(record: dict, session: SessionContext) -> None:
    if record["owner_id"] != session.user_id:
        raise PermissionDeniedError(
            "Only the user who submitted this sample can change it"
        )
