"""SQLAlchemy ORM models for the mirrored catalog."""

from __future__ import annotations

from sqlalchemy import Float, ForeignKey, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Declarative base class for ORM models."""


class Category(Base):
    """Map category as listed on the game's main page."""

    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)


class Map(Base):
    """Mirrored map record; ``download_url``/``file_size`` come from a later stage."""

    __tablename__ = "maps"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    category_id: Mapped[str] = mapped_column(
        String, ForeignKey("categories.id"), nullable=False
    )
    created_date: Mapped[str | None] = mapped_column(String, nullable=True)
    modified_date: Mapped[str | None] = mapped_column(String, nullable=True)
    download_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    name: Mapped[str] = mapped_column(String, nullable=False)
    rating: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    vote_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    view_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    download_url: Mapped[str | None] = mapped_column(String, nullable=True)
    file_size: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (Index("ix_maps_category_id", "category_id"),)
