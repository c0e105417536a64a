"""
Configuration Management

This module provides centralized configuration management
for the cash flow grid.
"""

from .settings import (
    Settings,
    GridConfig,
    ApiConfig,
    DatabaseConfig,
    AppConfig,
    Environment,
    BucketWidth,
    StoreBackend,
)

__all__ = [
    "Settings",
    "GridConfig",
    "ApiConfig",
    "DatabaseConfig",
    "AppConfig",
    "Environment",
    "BucketWidth",
    "StoreBackend",
]
