# ==============================================================================
# CORE PACKAGE INITIALIZATION
# ==============================================================================
# Core utilities: Settings, Security, Policies, Exceptions
# ==============================================================================

"""
Core Module
===========

- settings: Environment and command-line configuration
- security: Signing keys and bearer token validation
- policies: Scope-based authorization policies
- exceptions: Custom exception classes
"""

from basicapi.core.settings import Settings, get_settings, load_settings
from basicapi.core.exceptions import (
    AppException,
    AuthenticationError,
    AuthorizationError,
    ConfigurationError,
    DatabaseError,
    ProvisioningError,
    TeardownError,
)

__all__ = [
    "Settings",
    "get_settings",
    "load_settings",
    "AppException",
    "AuthenticationError",
    "AuthorizationError",
    "ConfigurationError",
    "DatabaseError",
    "ProvisioningError",
    "TeardownError",
]
