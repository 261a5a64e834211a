"""Single-writer facade over the catalog tables."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from maplister.errors import ReconciliationError
from maplister.logging_config import get_logger
from maplister.parsers import MapRecord

from . import repo
from .models_sql import Map

LOGGER = get_logger(__name__)

INSERTED = "inserted"
UPDATED = "updated"
UNCHANGED = "unchanged"


class CatalogStore:
    """Serialises every write behind one lock; each write commits on its own.

    Reads are not synchronised and may observe a slightly stale state, which
    is fine for change detection and progress output.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory
        self._write_lock = threading.Lock()

    @contextmanager
    def _write(self, operation: str, remote_id: str) -> Iterator[Session]:
        with self._write_lock:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except ReconciliationError:
                session.rollback()
                raise
            except SQLAlchemyError as exc:
                session.rollback()
                raise ReconciliationError(
                    f"Store write failed: {exc.__class__.__name__}: {exc}",
                    operation=operation,
                    remote_id=remote_id,
                ) from exc
            finally:
                session.close()

    @contextmanager
    def _read(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    def upsert_category(self, category_id: str, name: str) -> str:
        with self._write("upsert_category", category_id) as session:
            existing = repo.get_category(session, category_id)
            if existing is not None and existing.name == name:
                return UNCHANGED
            repo.upsert_category(session, category_id, name)
            return INSERTED if existing is None else UPDATED

    def upsert_map(self, record: MapRecord) -> str:
        """Write the base fields of *record*; stored download fields are kept."""

        with self._write("upsert_map", record.remote_id) as session:
            if repo.get_category(session, record.category_id) is None:
                raise ReconciliationError(
                    f"Category {record.category_id} does not exist",
                    operation="upsert_map",
                    remote_id=record.remote_id,
                )
            values = record.model_dump(include=set(repo.BASE_FIELDS))
            existing = repo.get_map(session, record.remote_id)
            if existing is not None and repo.map_matches(existing, values):
                return UNCHANGED
            repo.upsert_map(session, record.remote_id, **values)
            return INSERTED if existing is None else UPDATED

    def update_map_download_details(self, map_id: str, download_url: str, file_size: str | None) -> str:
        with self._write("update_download_details", map_id) as session:
            existing = repo.get_map(session, map_id)
            if existing is None:
                raise ReconciliationError(
                    "Map does not exist",
                    operation="update_download_details",
                    remote_id=map_id,
                )
            if existing.download_url == download_url and existing.file_size == file_size:
                return UNCHANGED
            repo.update_map_download_details(session, map_id, download_url, file_size)
            return UPDATED

    def delete_map(self, map_id: str) -> bool:
        with self._write("delete_map", map_id) as session:
            return repo.delete_map(session, map_id) > 0

    def get_map(self, map_id: str) -> Map | None:
        with self._read() as session:
            return repo.get_map(session, map_id)

    def list_known_map_ids(self, category_id: str) -> set[str]:
        with self._read() as session:
            return repo.list_known_map_ids(session, category_id)

    def count_maps(self, category_id: str | None = None) -> int:
        with self._read() as session:
            return repo.count_maps(session, category_id)

    def count_categories(self) -> int:
        with self._read() as session:
            return repo.count_categories(session)
