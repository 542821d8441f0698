"""
services/derivation_service.py
------------------------------
Derivation Service — converts a measured soil temperature (°C) into a default
pH, a default fertility percentage and a 1–5 point-scale classification.

Agronomic heuristic: soil conditions are best in a moderate temperature band
and degrade toward both extremes.

    Band        Temperature      Point   pH                    Fertility (%)
    Ideal       20 ≤ t ≤ 25      5       6.5 + (t−20)×0.20     81 + (t−20)×3.8
    Good        26 ≤ t ≤ 30      4       5.5 + (t−26)×0.18     61 + (t−26)×3.8
    Warm        31 ≤ t ≤ 35      3       4.5 + (t−31)×0.18     41 + (t−31)×3.8
    Hot         36 ≤ t ≤ 40      2       4.0 + (t−36)×0.08     21 + (t−36)×3.8
    Stressful   anything else    1       3.5                   10

Temperatures strictly between two band edges (e.g. 25.5, 30.5) match no band
and fall through to Stressful.

Usage:
    from services.derivation_service import derive_soil_parameters
    result = derive_soil_parameters(28.5)
"""

import math
from decimal import Decimal, ROUND_HALF_UP

from services.errors import ValidationError


# ── Band table: (name, low, high, point_scale, pH base, pH slope, fertility base) ──
_BANDS: list[tuple[str, float, float, int, float, float, float]] = [
    ("Ideal", 20.0, 25.0, 5, 6.5, 0.20, 81.0),
    ("Good",  26.0, 30.0, 4, 5.5, 0.18, 61.0),
    ("Warm",  31.0, 35.0, 3, 4.5, 0.18, 41.0),
    ("Hot",   36.0, 40.0, 2, 4.0, 0.08, 21.0),
]

_FERTILITY_SLOPE = 3.8

STRESSFUL_BAND      = "Stressful"
STRESSFUL_PH        = 3.5
STRESSFUL_FERTILITY = 10.0


def derive_soil_parameters(temperature: float) -> dict:
    """
    Derive default soil parameters from a measured temperature.

    The caller must pass a finite number (see parse_temperature()).

    Args:
        temperature (float): Soil temperature in degrees Celsius.

    Returns:
        dict with keys:
            pH            (float) – rounded to one decimal place
            fertility     (int)   – rounded to a whole percentage
            pointScale    (int)   – 1 (stressful) to 5 (ideal)
            band          (str)   – 'Ideal' | 'Good' | 'Warm' | 'Hot' | 'Stressful'
            pH_raw        (float) – unrounded pH
            fertility_raw (float) – unrounded fertility
    """
    t = float(temperature)

    band, point_scale = STRESSFUL_BAND, 1
    ph_raw, fertility_raw = STRESSFUL_PH, STRESSFUL_FERTILITY

    for name, low, high, scale, ph_base, ph_slope, fert_base in _BANDS:
        if low <= t <= high:
            band          = name
            point_scale   = scale
            ph_raw        = ph_base + (t - low) * ph_slope
            fertility_raw = fert_base + (t - low) * _FERTILITY_SLOPE
            break

    return {
        "pH":            round_half_up(ph_raw, 1),
        "fertility":     int(round_half_up(fertility_raw, 0)),
        "pointScale":    point_scale,
        "band":          band,
        "pH_raw":        ph_raw,
        "fertility_raw": fertility_raw,
    }


def point_scale_for(temperature: float) -> int:
    """Return only the 1–5 point scale for a temperature."""
    return derive_soil_parameters(temperature)["pointScale"]


def parse_temperature(value) -> float:
    """
    Validate a raw temperature input and return it as a float.

    Raises:
        ValidationError: If the value is missing, non-numeric, NaN or infinite.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError("'temperature' is required", ["temperature"])
    if isinstance(value, bool):
        raise ValidationError("'temperature' must be a number", ["temperature"])
    try:
        t = float(value)
    except (TypeError, ValueError):
        raise ValidationError("'temperature' must be a number", ["temperature"])
    if not math.isfinite(t):
        raise ValidationError("'temperature' must be a finite number", ["temperature"])
    return t


def round_half_up(value: float, digits: int) -> float:
    """
    Round half away from zero on the decimal value, matching display
    rounding (5.95 → 6.0) rather than Python's banker's rounding.

    The float is first cut to 9 decimals so binary noise such as
    5.949999999999999 rounds like the 5.95 it stands for.
    """
    exponent = Decimal(1).scaleb(-digits)
    dec      = Decimal(repr(round(value, 9)))
    return float(dec.quantize(exponent, rounding=ROUND_HALF_UP))
