"""Repository helpers for interacting with persistent storage."""

from __future__ import annotations

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from .models_sql import Category, Map

BASE_FIELDS = (
    "category_id",
    "created_date",
    "modified_date",
    "download_count",
    "name",
    "rating",
    "vote_count",
    "view_count",
)


def upsert_category(session: Session, category_id: str, name: str) -> Category:
    category = session.get(Category, category_id)
    if category is None:
        category = Category(id=category_id, name=name)
        session.add(category)
    else:
        category.name = name
    session.flush()
    return category


def get_category(session: Session, category_id: str) -> Category | None:
    return session.get(Category, category_id)


def get_map(session: Session, map_id: str) -> Map | None:
    return session.get(Map, map_id)


def map_matches(entry: Map, values: dict[str, object]) -> bool:
    """Return True when *entry* already holds every base field in *values*."""

    return all(getattr(entry, key) == values.get(key) for key in BASE_FIELDS)


def upsert_map(
    session: Session,
    map_id: str,
    *,
    category_id: str,
    name: str,
    created_date: str | None = None,
    modified_date: str | None = None,
    download_count: int = 0,
    rating: float = 0.0,
    vote_count: int = 0,
    view_count: int = 0,
    download_url: str | None = None,
    file_size: str | None = None,
) -> Map:
    """Insert or update a map by remote id.

    Download fields are only written when provided so a refreshed listing
    never wipes download metadata fetched earlier.
    """

    values: dict[str, object] = {
        "category_id": category_id,
        "created_date": created_date,
        "modified_date": modified_date,
        "download_count": download_count,
        "name": name,
        "rating": rating,
        "vote_count": vote_count,
        "view_count": view_count,
    }
    entry = session.get(Map, map_id)
    if entry is None:
        entry = Map(id=map_id, download_url=download_url, file_size=file_size, **values)
        session.add(entry)
    else:
        for key, value in values.items():
            setattr(entry, key, value)
        if download_url is not None:
            entry.download_url = download_url
        if file_size is not None:
            entry.file_size = file_size
    session.flush()
    return entry


def update_map_download_details(
    session: Session,
    map_id: str,
    download_url: str,
    file_size: str | None,
) -> Map | None:
    """Partial update touching only the download fields; ``None`` if unknown id."""

    entry = session.get(Map, map_id)
    if entry is None:
        return None
    entry.download_url = download_url
    entry.file_size = file_size
    session.flush()
    return entry


def delete_map(session: Session, map_id: str) -> int:
    result = session.execute(delete(Map).where(Map.id == map_id))
    return int(result.rowcount or 0)


def list_known_map_ids(session: Session, category_id: str) -> set[str]:
    stmt = select(Map.id).where(Map.category_id == category_id)
    return {row[0] for row in session.execute(stmt)}


def count_maps(session: Session, category_id: str | None = None) -> int:
    stmt = select(func.count(Map.id))
    if category_id is not None:
        stmt = stmt.where(Map.category_id == category_id)
    return int(session.scalar(stmt) or 0)


def count_categories(session: Session) -> int:
    return int(session.scalar(select(func.count(Category.id))) or 0)
