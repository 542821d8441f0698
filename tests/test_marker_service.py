"""Tests for map markers and marker-layer reconciliation."""

import pytest

from services.errors import ValidationError
from services.marker_service import (build_marker, feature_collection,
                                     fertility_level, ph_category,
                                     reconcile_markers)


def _sample(sample_id=1, **overrides):
    record = {
        "id": sample_id,
        "owner_id": "alice",
        "municipality": "sallapadan",
        "location": "Sallapadan Central",
        "longitude": 120.95,
        "latitude": 17.45,
        "temperature": 28.0,
        "ph_level": 6.5,
        "fertility": 75.0,
        "point_scale": 4,
        "nitrogen": 0.25,
        "phosphorus": 0.15,
        "potassium": 0.2,
    }
    record.update(overrides)
    return record


class TestClassification:
    @pytest.mark.parametrize("ph,category", [
        (5.0, "Strongly acidic"),
        (5.5, "Moderately acidic"),
        (6.2, "Slightly acidic"),
        (6.5, "Optimal"),
        (7.5, "Optimal"),
        (7.6, "Alkaline"),
    ])
    def test_ph_category(self, ph, category):
        assert ph_category(ph)[0] == category

    @pytest.mark.parametrize("fertility,level", [
        (10, "Very Low"), (40, "Low"), (65, "Moderate"), (85, "High"), (86, "Very High"),
    ])
    def test_fertility_level(self, fertility, level):
        assert fertility_level(fertility) == level


class TestBuildMarker:
    def test_feature_shape(self):
        feature = build_marker(_sample())
        assert feature["type"] == "Feature"
        assert feature["geometry"] == {"type": "Point", "coordinates": [120.95, 17.45]}
        props = feature["properties"]
        assert props["name"] == "Sallapadan Central"
        assert props["municipality"] == "Sallapadan"
        assert props["nitrogenPct"] == 25
        assert props["potassiumPct"] == 20
        assert props["color"] == "hsl(130 45% 40%)"
        assert props["temperatureBand"] == "Good"
        assert props["fertilityLevel"] == "High"

    def test_name_falls_back_to_municipality(self):
        props = build_marker(_sample(location=None))["properties"]
        assert props["name"] == "Sallapadan"

    def test_missing_nutrients(self):
        props = build_marker(_sample(nitrogen=None))["properties"]
        assert props["nitrogenPct"] is None

    def test_fingerprint_tracks_popup_content(self):
        before = build_marker(_sample())["properties"]["fingerprint"]
        same = build_marker(_sample())["properties"]["fingerprint"]
        after = build_marker(_sample(ph_level=6.9))["properties"]["fingerprint"]
        assert before == same
        assert before != after

    def test_feature_collection(self):
        collection = feature_collection([_sample(1), _sample(2)])
        assert collection["type"] == "FeatureCollection"
        assert [f["id"] for f in collection["features"]] == [1, 2]


class TestReconcile:
    def test_empty_client_gets_everything(self):
        patch = reconcile_markers({}, [_sample(1), _sample(2)])
        assert [f["id"] for f in patch["add"]] == [1, 2]
        assert patch["update"] == []
        assert patch["remove"] == []

    def test_edit_and_delete_produce_patch(self):
        original = [_sample(1), _sample(2), _sample(3)]
        known = {str(r["id"]): build_marker(r)["properties"]["fingerprint"]
                 for r in original}

        current = [_sample(1), _sample(2, fertility=40.0), _sample(4)]
        patch = reconcile_markers(known, current)

        assert [f["id"] for f in patch["add"]] == [4]
        assert [f["id"] for f in patch["update"]] == [2]
        assert patch["update"][0]["properties"]["fertility"] == 40.0
        assert patch["remove"] == [3]

    def test_up_to_date_client_gets_empty_patch(self):
        records = [_sample(1)]
        known = {1: build_marker(records[0])["properties"]["fingerprint"]}
        assert reconcile_markers(known, records) == {"add": [], "update": [], "remove": []}

    def test_bad_id_rejected(self):
        with pytest.raises(ValidationError):
            reconcile_markers({"abc": "123"}, [])
