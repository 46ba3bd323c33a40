# ==============================================================================
# DOMAIN MODELS PACKAGE INITIALIZATION
# ==============================================================================

"""
Domain Models
=============

SQLAlchemy models for the pet-store fixture. Importing this package
registers every table on ``SQLBase.metadata``.
"""

from basicapi.domain_models.base import SQLBase, metadata
from basicapi.domain_models.pet import Category, Image, Pet, Tag

FIXTURE_TABLES = ("categories", "pets", "images", "tags")

__all__ = [
    "SQLBase",
    "metadata",
    "Category",
    "Image",
    "Pet",
    "Tag",
    "FIXTURE_TABLES",
]
