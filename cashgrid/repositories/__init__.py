"""
Repository layer for local model storage.
"""

from .base import DatabaseConnection
from .model_repository import SqliteModelRepository

__all__ = ["DatabaseConnection", "SqliteModelRepository"]
