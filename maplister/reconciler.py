"""Turn parsed records into store writes and deferred deletions."""

from __future__ import annotations

import threading
from typing import Iterable

from maplister.coordinator import CrawlSummary
from maplister.errors import ReconciliationError
from maplister.logging_config import get_logger
from maplister.parsers import CategoryRecord, MapRecord, MapSummary, summary_fingerprint
from maplister.storage.store import INSERTED, UNCHANGED, UPDATED, CatalogStore

LOGGER = get_logger(__name__)

NEW = "new"
CHANGED = "changed"


class Reconciler:
    """Bookkeeping for one crawl run on top of a :class:`CatalogStore`.

    Deletions are deferred: a category only becomes eligible once its whole
    page loop finished (:meth:`complete_category`), and maps seen in any
    category during the run are never deleted.
    """

    def __init__(self, store: CatalogStore, summary: CrawlSummary | None = None) -> None:
        self._store = store
        self._summary = summary if summary is not None else CrawlSummary()
        self._lock = threading.Lock()
        self._seen: dict[str, set[str]] = {}
        self._completed: set[str] = set()

    @property
    def summary(self) -> CrawlSummary:
        return self._summary

    def _count(self, name: str, value: int = 1) -> None:
        self._summary.add(**{name: value})

    def _count_outcome(self, outcome: str) -> None:
        if outcome == INSERTED:
            self._count("inserted")
        elif outcome == UPDATED:
            self._count("updated")
        elif outcome == UNCHANGED:
            self._count("unchanged")

    def upsert_category(self, record: CategoryRecord) -> str:
        try:
            return self._store.upsert_category(record.remote_id, record.name)
        except ReconciliationError as exc:
            LOGGER.error("Category upsert failed | id=%s | error=%s", record.remote_id, exc)
            raise

    def classify(self, summary: MapSummary, category_id: str) -> str:
        """Compare a listing summary with the stored row: new, changed or unchanged.

        A map listed under a different category than the stored one counts as
        changed so the detail stage moves it.
        """

        stored = self._store.get_map(summary.remote_id)
        if stored is None:
            return NEW
        if stored.category_id != category_id:
            return CHANGED
        if summary_fingerprint(stored.name, stored.modified_date) != summary.fingerprint:
            return CHANGED
        return UNCHANGED

    def needs_download_details(self, map_id: str) -> bool:
        stored = self._store.get_map(map_id)
        return stored is not None and not stored.download_url

    def upsert_map(self, record: MapRecord) -> str:
        try:
            outcome = self._store.upsert_map(record)
        except ReconciliationError as exc:
            LOGGER.error(
                "Map upsert failed | id=%s | category=%s | error=%s",
                record.remote_id,
                record.category_id,
                exc,
            )
            raise
        self._count_outcome(outcome)
        return outcome

    def update_download_details(self, map_id: str, url: str, size: str | None) -> str:
        try:
            outcome = self._store.update_map_download_details(map_id, url, size)
        except ReconciliationError as exc:
            LOGGER.error("Download detail update failed | id=%s | error=%s", map_id, exc)
            raise
        if outcome == UPDATED:
            self._count("downloads_updated")
        return outcome

    def mark_seen(self, category_id: str, map_ids: Iterable[str]) -> None:
        ids = list(map_ids)
        with self._lock:
            self._seen.setdefault(category_id, set()).update(ids)
        self._count("maps_seen", len(ids))

    def complete_category(self, category_id: str) -> None:
        with self._lock:
            self._completed.add(category_id)
            self._seen.setdefault(category_id, set())
        self._count("categories_completed")

    def seen_ids(self, category_id: str) -> set[str]:
        with self._lock:
            return set(self._seen.get(category_id, ()))

    def reconcile_category(self, category_id: str, seen_map_ids: set[str]) -> list[str]:
        """Delete stored maps of *category_id* missing from *seen_map_ids*."""

        with self._lock:
            seen_elsewhere = set().union(
                *(ids for other, ids in self._seen.items() if other != category_id)
            )
        known = self._store.list_known_map_ids(category_id)
        stale = sorted(known - set(seen_map_ids) - seen_elsewhere)

        deleted: list[str] = []
        try:
            for map_id in stale:
                try:
                    if self._store.delete_map(map_id):
                        deleted.append(map_id)
                except ReconciliationError as exc:
                    LOGGER.error("Map delete failed | id=%s | category=%s | error=%s", map_id, category_id, exc)
                    raise
        finally:
            if deleted:
                self._count("deleted", len(deleted))
                LOGGER.info("Removed %d stale map(s) from category %s", len(deleted), category_id)
        return deleted

    def finalize(self) -> list[str]:
        """Run the deletion pass for every category whose page loop completed.

        A failed delete ends the pass for its own category only; it is counted
        as a ``delete`` failure and the remaining categories are still
        reconciled.
        """

        with self._lock:
            completed = sorted(self._completed)
        deleted: list[str] = []
        for category_id in completed:
            try:
                deleted.extend(self.reconcile_category(category_id, self.seen_ids(category_id)))
            except ReconciliationError:
                self._summary.add_failure(f"delete:{category_id}")
        return deleted
