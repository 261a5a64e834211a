"""Validation schemas and page parsers for catalog API responses."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from maplister.errors import ParseError
from maplister.normalizers import clean_text, coerce_date, coerce_float, coerce_int


def summary_fingerprint(name: str | None, modified_date: str | None) -> str:
    """Hash the listing fields used to decide whether a map changed."""

    raw = f"{name or ''}\x1f{modified_date or ''}"
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


def _coerce_id(value: Any) -> str:
    text = clean_text(value)
    if not text:
        raise ValueError("id must not be empty")
    return text


def _coerce_name(value: Any) -> str:
    text = clean_text(value)
    if not text:
        raise ValueError("name must not be empty")
    return text


class _Record(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class CategoryRecord(_Record):
    """A category entry from the main listing page."""

    remote_id: str = Field(alias="id")
    name: str

    @field_validator("remote_id", mode="before")
    @classmethod
    def _clean_id(cls, value: Any) -> str:
        return _coerce_id(value)

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value: Any) -> str:
        return _coerce_name(value)


class MapSummary(_Record):
    """The per-map fields a category page reports."""

    remote_id: str = Field(alias="id")
    name: str
    modified_date: str | None = Field(default=None, alias="mdate")

    @field_validator("remote_id", mode="before")
    @classmethod
    def _clean_id(cls, value: Any) -> str:
        return _coerce_id(value)

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value: Any) -> str:
        return _coerce_name(value)

    @field_validator("modified_date", mode="before")
    @classmethod
    def _parse_date(cls, value: Any) -> str | None:
        return coerce_date(value)

    @property
    def fingerprint(self) -> str:
        return summary_fingerprint(self.name, self.modified_date)


class MapRecord(_Record):
    """Full map record as returned by the detail page."""

    remote_id: str = Field(alias="id")
    category_id: str
    created_date: str | None = Field(default=None, alias="date")
    modified_date: str | None = Field(default=None, alias="mdate")
    download_count: int = Field(default=0, alias="downloads")
    name: str
    rating: float = 0.0
    vote_count: int = Field(default=0, alias="votes")
    view_count: int = Field(default=0, alias="views")
    download_url: str | None = None
    file_size: str | None = None

    @field_validator("remote_id", "category_id", mode="before")
    @classmethod
    def _clean_ids(cls, value: Any) -> str:
        return _coerce_id(value)

    @field_validator("name", mode="before")
    @classmethod
    def _clean_name(cls, value: Any) -> str:
        return _coerce_name(value)

    @field_validator("created_date", "modified_date", mode="before")
    @classmethod
    def _parse_dates(cls, value: Any) -> str | None:
        return coerce_date(value)

    @field_validator("download_count", "vote_count", "view_count", mode="before")
    @classmethod
    def _parse_counts(cls, value: Any) -> int:
        return coerce_int(value) or 0

    @field_validator("rating", mode="before")
    @classmethod
    def _parse_rating(cls, value: Any) -> float:
        return coerce_float(value) or 0.0

    @property
    def fingerprint(self) -> str:
        return summary_fingerprint(self.name, self.modified_date)


@dataclass
class MapsPage:
    maps: list[MapSummary]
    total: int | None = None


class DownloadDetails(_Record):
    """Download location and raw byte size of a map."""

    url: str
    size_bytes: int | None = Field(default=None, alias="size")

    @field_validator("url", mode="before")
    @classmethod
    def _clean_url(cls, value: Any) -> str:
        text = clean_text(value)
        if not text:
            raise ValueError("url must not be empty")
        return text

    @field_validator("size_bytes", mode="before")
    @classmethod
    def _parse_size(cls, value: Any) -> int | None:
        return coerce_int(value)


def parse_json(body: bytes | str) -> Any:
    try:
        return json.loads(body)
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Response is not valid JSON: {exc}") from exc


def _unwrap(tree: Any, key: str, expected: type) -> Any:
    if isinstance(tree, dict) and key in tree:
        tree = tree[key]
    if not isinstance(tree, expected):
        raise ParseError(f"Expected {expected.__name__} for '{key}', got {type(tree).__name__}")
    return tree


def _validate(model: type[BaseModel], payload: Any) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise ParseError(f"Invalid {model.__name__}: {exc.errors()[0].get('msg', exc)}") from exc


def parse_count(body: bytes | str) -> int:
    """Total number of maps; accepts ``{"count": n}`` or a bare number."""

    tree = parse_json(body)
    raw = tree.get("count") if isinstance(tree, dict) else tree
    count = coerce_int(raw)
    if count is None or count < 0:
        raise ParseError(f"Invalid map count: {raw!r}")
    return count


def parse_categories(body: bytes | str) -> list[CategoryRecord]:
    entries = _unwrap(parse_json(body), "categories", list)
    return [_validate(CategoryRecord, entry) for entry in entries]


def parse_maps_page(body: bytes | str) -> MapsPage:
    """Map summaries of one category page plus the advisory total, if sent."""

    tree = parse_json(body)
    total = coerce_int(tree.get("total")) if isinstance(tree, dict) else None
    entries = _unwrap(tree, "maps", list)
    return MapsPage(maps=[_validate(MapSummary, entry) for entry in entries], total=total)


def parse_map_details(body: bytes | str, category_id: str) -> MapRecord:
    payload = _unwrap(parse_json(body), "map", dict)
    return _validate(MapRecord, {**payload, "category_id": category_id})


def parse_download_details(body: bytes | str) -> DownloadDetails:
    payload = _unwrap(parse_json(body), "download", dict)
    return _validate(DownloadDetails, payload)
