"""Tests for the SQLite soil-sample repository."""

import pytest

from database.init_db import init_db
from services.errors import NotFoundError, RepositoryError
from services.sample_service import assemble_sample


def _record(owner="alice", municipality="bucay", location="Bucay Central",
            temperature=28.5):
    return assemble_sample({
        "municipality": municipality,
        "location": location,
        "coordinates": [120.73, 17.55],
        "temperature": temperature,
    }, owner)


class TestCreateAndGet:
    def test_roundtrip_keeps_derived_columns(self, repo):
        sample_id = repo.create(_record())
        row = repo.get(sample_id)
        assert row["id"] == sample_id
        assert row["point_scale"] == 4
        assert row["derived_fertility"] == pytest.approx(70.5)
        assert row["nitrogen"] is None
        assert row["created_at"]

    def test_get_missing(self, repo):
        with pytest.raises(NotFoundError):
            repo.get(42)

    def test_invalid_point_scale_rejected_by_schema(self, repo):
        record = _record()
        record["point_scale"] = 9
        with pytest.raises(RepositoryError):
            repo.create(record)


class TestUpdateAndDelete:
    def test_partial_update(self, repo):
        sample_id = repo.create(_record())
        repo.update(sample_id, {"fertility": 55.0, "not_a_column": 1})
        row = repo.get(sample_id)
        assert row["fertility"] == 55.0
        assert row["ph_level"] == 6.0

    def test_update_missing(self, repo):
        with pytest.raises(NotFoundError):
            repo.update(7, {"fertility": 55.0})

    def test_update_without_columns_checks_existence(self, repo):
        with pytest.raises(NotFoundError):
            repo.update(7, {})

    def test_delete(self, repo):
        sample_id = repo.create(_record())
        repo.delete(sample_id)
        with pytest.raises(NotFoundError):
            repo.get(sample_id)

    def test_delete_missing(self, repo):
        with pytest.raises(NotFoundError):
            repo.delete(3)

    @pytest.mark.parametrize("sample_id", [0, -1, 2**63, 10**20])
    def test_out_of_range_ids_not_found(self, repo, sample_id):
        with pytest.raises(NotFoundError):
            repo.get(sample_id)
        with pytest.raises(NotFoundError):
            repo.update(sample_id, {"fertility": 55.0})
        with pytest.raises(NotFoundError):
            repo.delete(sample_id)


class TestListing:
    @pytest.fixture
    def populated(self, repo):
        repo.create(_record(owner="alice", municipality="bucay", location="Bucay East"))
        repo.create(_record(owner="bob", municipality="sallapadan", location="Sallapadan North"))
        repo.create(_record(owner="alice", municipality="lagangilang", location="Lagangilang West"))
        return repo

    def test_list_all_newest_first(self, populated):
        rows = populated.list_all()
        assert [r["location"] for r in rows] == [
            "Lagangilang West", "Sallapadan North", "Bucay East",
        ]

    def test_list_all_by_municipality(self, populated):
        rows = populated.list_all("sallapadan")
        assert len(rows) == 1
        assert rows[0]["owner_id"] == "bob"

    def test_list_page_filters(self, populated):
        rows, total = populated.list_page(owner_id="alice")
        assert total == 2
        rows, total = populated.list_page(search="north")
        assert total == 1
        assert rows[0]["municipality"] == "sallapadan"

    def test_list_page_pagination(self, populated):
        rows, total = populated.list_page(page=2, per_page=2)
        assert total == 3
        assert len(rows) == 1
        assert rows[0]["location"] == "Bucay East"


def test_init_db_is_idempotent(db_path):
    init_db(db_path)
    init_db(db_path)
