# ==============================================================================
# BASICAPI PACKAGE INITIALIZATION
# ==============================================================================
# Benchmark pet-store API bootstrap: backend selection, bearer-token
# authorization and schema lifecycle
# ==============================================================================

"""
BasicApi Bootstrap Core
=======================

Startup and shutdown wiring for the BasicApi benchmark service.

Features:
---------
- Storage backend selection (SQLite, MySQL, PostgreSQL, SQL Server)
- RSA-signed bearer tokens with scope-gated authorization policies
- Schema provisioning at startup, teardown at graceful shutdown
- Request fault boundary that logs unhandled failures

Usage:
------
    # Environment first, command line overrides
    Database=PostgreSQL python -m basicapi --ConnectionString="Host=db;..."
"""

__version__ = "1.0.0"
__all__ = ["__version__"]
