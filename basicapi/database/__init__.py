# ==============================================================================
# DATABASE PACKAGE INITIALIZATION
# ==============================================================================

"""
Database Module
===============

- backends: Backend selection and connection-string validation
- factory: Async engine and session scopes
- lifecycle: Fixture schema provision and teardown
"""

from basicapi.database.backends import (
    BackendConfiguration,
    DatabaseBackend,
    select_backend,
)
from basicapi.database.factory import StorageContext, create_storage
from basicapi.database.lifecycle import SchemaLifecycleManager, SchemaState

__all__ = [
    "BackendConfiguration",
    "DatabaseBackend",
    "select_backend",
    "StorageContext",
    "create_storage",
    "SchemaLifecycleManager",
    "SchemaState",
]
