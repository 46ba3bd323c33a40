# ==============================================================================
# PET STORE MODELS - Benchmark Fixture Schema
# ==============================================================================
# Tables created by the ``initial`` revision and removed on teardown
# ==============================================================================

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from basicapi.domain_models.base import SQLBase


class Category(SQLBase):
    __tablename__ = "categories"

    name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    pets: Mapped[List["Pet"]] = relationship(back_populates="category")


class Pet(SQLBase):
    """A pet with optional category, images and tags."""

    __tablename__ = "pets"

    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    status: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    category: Mapped[Optional[Category]] = relationship(back_populates="pets")
    images: Mapped[List["Image"]] = relationship(
        back_populates="pet",
        cascade="all, delete-orphan",
    )
    tags: Mapped[List["Tag"]] = relationship(
        back_populates="pet",
        cascade="all, delete-orphan",
    )


class Image(SQLBase):
    __tablename__ = "images"

    pet_id: Mapped[int] = mapped_column(
        ForeignKey("pets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    url: Mapped[Optional[str]] = mapped_column(String(2048), nullable=True)

    pet: Mapped[Pet] = relationship(back_populates="images")


class Tag(SQLBase):
    __tablename__ = "tags"

    pet_id: Mapped[int] = mapped_column(
        ForeignKey("pets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)

    pet: Mapped[Pet] = relationship(back_populates="tags")
