from __future__ import annotations

import pytest

from conftest import make_record
from maplister.errors import ReconciliationError
from maplister.parsers import CategoryRecord, MapSummary
from maplister.reconciler import CHANGED, NEW, Reconciler
from maplister.storage.store import INSERTED, UNCHANGED, CatalogStore


def _summary(map_id: str, name: str | None = None, mdate: int = 1_500_000_000) -> MapSummary:
    return MapSummary.model_validate({"id": map_id, "name": name or f"de_{map_id}", "mdate": mdate})


@pytest.fixture()
def reconciler(store) -> Reconciler:
    reconciler = Reconciler(store)
    reconciler.upsert_category(CategoryRecord(id="c1", name="Bomb"))
    reconciler.upsert_category(CategoryRecord(id="c2", name="Hostage"))
    return reconciler


def test_unseen_maps_deleted_after_complete_category(reconciler, store) -> None:
    for map_id in ("1", "2", "3"):
        reconciler.upsert_map(make_record(map_id, "c1"))

    reconciler.mark_seen("c1", ["1", "3"])
    reconciler.complete_category("c1")
    deleted = reconciler.finalize()

    assert deleted == ["2"]
    assert store.list_known_map_ids("c1") == {"1", "3"}
    assert reconciler.summary.deleted == 1


def test_incomplete_category_is_left_alone(reconciler, store) -> None:
    for map_id in ("1", "2"):
        reconciler.upsert_map(make_record(map_id, "c1"))
    reconciler.mark_seen("c1", ["1"])

    assert reconciler.finalize() == []
    assert store.list_known_map_ids("c1") == {"1", "2"}


def test_map_seen_in_another_category_survives(reconciler, store) -> None:
    reconciler.upsert_map(make_record("5", "c1"))
    reconciler.mark_seen("c1", [])
    reconciler.mark_seen("c2", ["5"])
    reconciler.complete_category("c1")

    assert reconciler.finalize() == []
    assert store.get_map("5") is not None


def test_empty_completed_category_clears_stored_maps(reconciler, store) -> None:
    reconciler.upsert_map(make_record("9", "c2"))
    reconciler.complete_category("c2")

    assert reconciler.finalize() == ["9"]
    assert store.count_maps("c2") == 0


def test_classify(reconciler) -> None:
    assert reconciler.classify(_summary("1"), "c1") == NEW

    reconciler.upsert_map(make_record("1", "c1"))
    assert reconciler.classify(_summary("1"), "c1") == UNCHANGED
    assert reconciler.classify(_summary("1", mdate=1_600_000_000), "c1") == CHANGED
    assert reconciler.classify(_summary("1", name="de_renamed"), "c1") == CHANGED
    assert reconciler.classify(_summary("1"), "c2") == CHANGED


def test_upsert_outcomes_are_counted(reconciler) -> None:
    assert reconciler.upsert_map(make_record("1", "c1")) == INSERTED
    assert reconciler.upsert_map(make_record("1", "c1")) == UNCHANGED
    reconciler.upsert_map(make_record("1", "c1", views=500))
    reconciler.update_download_details("1", "https://files.test/1.zip", "1.5 KB")
    reconciler.update_download_details("1", "https://files.test/1.zip", "1.5 KB")

    summary = reconciler.summary
    assert (summary.inserted, summary.updated, summary.unchanged) == (1, 1, 1)
    assert summary.downloads_updated == 1
    assert summary.mutations == 3


def test_needs_download_details(reconciler) -> None:
    assert not reconciler.needs_download_details("1")
    reconciler.upsert_map(make_record("1", "c1"))
    assert reconciler.needs_download_details("1")
    reconciler.update_download_details("1", "https://files.test/1.zip", None)
    assert not reconciler.needs_download_details("1")


def test_store_rejection_propagates(reconciler) -> None:
    with pytest.raises(ReconciliationError):
        reconciler.upsert_map(make_record("1", "c-unknown"))
    assert reconciler.summary.inserted == 0


def test_seen_ids_are_tracked_per_category(reconciler) -> None:
    reconciler.mark_seen("c1", ["1", "2"])
    reconciler.mark_seen("c1", ["3"])

    assert reconciler.seen_ids("c1") == {"1", "2", "3"}
    assert reconciler.seen_ids("c2") == set()
    assert reconciler.summary.maps_seen == 3


class FailingDeleteStore(CatalogStore):
    def __init__(self, session_factory, broken: set[str]) -> None:
        super().__init__(session_factory)
        self.broken = broken

    def delete_map(self, map_id: str) -> bool:
        if map_id in self.broken:
            raise ReconciliationError("disk I/O error", operation="delete_map", remote_id=map_id)
        return super().delete_map(map_id)


def test_failed_delete_does_not_stop_other_categories(session_factory) -> None:
    store = FailingDeleteStore(session_factory, broken={"1"})
    reconciler = Reconciler(store)
    reconciler.upsert_category(CategoryRecord(id="c1", name="Bomb"))
    reconciler.upsert_category(CategoryRecord(id="c2", name="Hostage"))
    reconciler.upsert_map(make_record("1", "c1"))
    reconciler.upsert_map(make_record("2", "c2"))
    reconciler.complete_category("c1")
    reconciler.complete_category("c2")

    assert reconciler.finalize() == ["2"]

    assert store.list_known_map_ids("c1") == {"1"}
    assert store.list_known_map_ids("c2") == set()
    assert reconciler.summary.deleted == 1
    assert reconciler.summary.failed_branches == 1
    assert reconciler.summary.failures["delete"] == 1
