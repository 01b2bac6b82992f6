"""
Storage layer tests.
JSON file operations for history and the training database.
"""

import csv

import pytest

from clients.errors import CaptureError
from models.analysis_record import AnalysisRecord, Coordinates
from models.plant_profile import ReferenceProfile
from storage.history import CSV_HEADERS, HistoryStorage
from storage.profiles import ProfileStorage, profile_from_folder

from conftest import outcome


def make_record(**kwargs) -> AnalysisRecord:
    defaults = dict(outcome=outcome(), elapsed_seconds=1.25, source_image="data:image/jpeg;base64,AA==")
    defaults.update(kwargs)
    return AnalysisRecord(**defaults)


@pytest.fixture()
def history(tmp_path) -> HistoryStorage:
    return HistoryStorage(filepath=tmp_path / "data" / "history.json")


@pytest.fixture()
def profile_store(tmp_path) -> ProfileStorage:
    return ProfileStorage(filepath=tmp_path / "data" / "profiles.json")


class TestHistoryStorage:
    def test_starts_empty(self, history):
        assert history.get_all() == []
        assert history.filepath.exists()

    def test_accept_puts_newest_first(self, history):
        first, second = make_record(), make_record()
        history.accept(first)
        history.accept(second)

        assert [r.id for r in history.get_all()] == [second.id, first.id]

    def test_round_trip_keeps_fields(self, history):
        record = make_record(coordinates=Coordinates(51.5, -0.12), source_name="leaf.jpg")
        history.accept(record)

        stored = history.get_by_id(record.id)
        assert stored.outcome == record.outcome
        assert stored.coordinates == record.coordinates
        assert stored.captured_at == record.captured_at
        assert stored.source_name == "leaf.jpg"

    def test_flags_are_toggled_by_history_only(self, history):
        record = make_record()
        history.accept(record)

        assert history.set_favorite([record.id]) == 1
        assert history.set_incorrect([record.id]) == 1
        stored = history.get_by_id(record.id)
        assert stored.is_favorite and stored.is_incorrect

        history.set_favorite([record.id], value=False)
        assert not history.get_by_id(record.id).is_favorite
        assert not record.is_favorite

    def test_remove_and_clear(self, history):
        a, b, c = make_record(), make_record(), make_record()
        for r in (a, b, c):
            history.accept(r)

        assert history.remove(a.id) is True
        assert history.remove(a.id) is False
        assert history.remove_many([b.id, "missing"]) == 1
        assert [r.id for r in history.get_all()] == [c.id]

        history.clear()
        assert history.get_all() == []

    def test_export_csv(self, history, tmp_path):
        located = make_record(coordinates=Coordinates(10.5, 20.25))
        history.accept(make_record())
        history.accept(located)

        out = tmp_path / "export" / "history.csv"
        assert history.export_csv(out, record_ids=[located.id]) == 1

        rows = list(csv.reader(out.open()))
        assert rows[0] == CSV_HEADERS
        assert rows[1][0] == located.id
        assert rows[1][3] == "Yes"
        assert rows[1][4] == "90.0%"
        assert rows[1][6:8] == ["10.5", "20.25"]


class TestProfileStorage:
    def test_add_get_update_remove(self, profile_store):
        profile = ReferenceProfile(common_name="Foxglove", sample_images=["AA=="])
        profile_store.add(profile)

        assert profile_store.get_by_id(profile.id).common_name == "Foxglove"

        updated = profile_store.update(profile.id, {"notes": "shade", "id": "hijack"})
        assert updated.notes == "shade"
        assert updated.id == profile.id

        assert profile_store.remove(profile.id) is True
        assert profile_store.get_all() == []

    def test_duplicate_id_rejected(self, profile_store):
        profile_store.add(ReferenceProfile(id="p1", common_name="A"))
        with pytest.raises(ValueError):
            profile_store.add(ReferenceProfile(id="p1", common_name="B"))

    def test_snapshot_is_immutable_copy(self, profile_store):
        profile_store.add(ReferenceProfile(common_name="A"))
        snapshot = profile_store.snapshot()

        profile_store.add(ReferenceProfile(common_name="B"))

        assert isinstance(snapshot, tuple)
        assert [p.common_name for p in snapshot] == ["A"]

    def test_profile_from_folder_uses_folder_label(self, tmp_path):
        folder = tmp_path / "Giant Hogweed"
        folder.mkdir()
        (folder / "1.jpg").write_bytes(b"\xff\xd8one")
        (folder / "2.jpg").write_bytes(b"\xff\xd8two")

        profile = profile_from_folder(folder, is_invasive=True)

        assert profile.common_name == "Giant Hogweed"
        assert profile.sample_count == 2
        assert profile.is_invasive

    def test_profile_from_missing_folder(self, tmp_path):
        with pytest.raises(CaptureError):
            profile_from_folder(tmp_path / "missing")
