"""
Dependency Injection Container

Wires settings, logging, the configured model store and the HTTP
client into workspaces.
"""

from typing import Any, Dict, Optional

from .config.settings import Settings, StoreBackend
from .repositories.base import DatabaseConnection
from .repositories.model_repository import SqliteModelRepository
from .services.api_client import CashFlowApiClient
from .services.logging_service import configure_logging
from .services.model_builder import ModelBuilder
from .services.persistence import ModelStore
from .services.workspace import CashFlowWorkspace


class Container:
    """Holds the shared services one process hands to its workspaces."""

    def __init__(self):
        self._singletons: Dict[str, Any] = {}
        self._settings: Optional[Settings] = None
        self._db_connection: Optional[DatabaseConnection] = None

    def configure(self, settings: Optional[Settings] = None) -> None:
        """Apply settings: log level, HTTP client, model builder defaults."""
        self._settings = settings or Settings()
        configure_logging(self._settings.app.log_level)
        self._singletons['api_client'] = CashFlowApiClient(self._settings.api)
        self._singletons['model_builder'] = ModelBuilder(self._settings.grid.default_bucket_count)

    def get_settings(self) -> Settings:
        if self._settings is None:
            self._settings = Settings()
        return self._settings

    def get_db_connection(self) -> DatabaseConnection:
        """SQLite connection for the local model store, opened on first use."""
        if self._db_connection is None:
            self._db_connection = DatabaseConnection(self.get_settings().database.absolute_path)
        return self._db_connection

    def get_api_client(self) -> CashFlowApiClient:
        if 'api_client' not in self._singletons:
            self._singletons['api_client'] = CashFlowApiClient(self.get_settings().api)
        return self._singletons['api_client']

    def get_model_store(self) -> ModelStore:
        """Model store selected by ``APP_STORE_BACKEND``."""
        if self.get_settings().app.store_backend == StoreBackend.SQLITE:
            if 'model_repository' not in self._singletons:
                self._singletons['model_repository'] = SqliteModelRepository(self.get_db_connection())
            return self._singletons['model_repository']
        return self.get_api_client()

    def create_workspace(self, identity: str) -> CashFlowWorkspace:
        """New workspace for ``identity``; forecasting and classification always go to the service."""
        client = self.get_api_client()
        return CashFlowWorkspace(
            identity,
            store=self.get_model_store(),
            forecaster=client,
            classification=client,
            settings=self.get_settings(),
            builder=self._singletons.get('model_builder'),
        )

    def cleanup(self) -> None:
        """Close the HTTP session and the database connection."""
        client = self._singletons.get('api_client')
        if client is not None:
            client.close()
        if self._db_connection is not None:
            self._db_connection.close()
            self._db_connection = None
        self._singletons.clear()


_container: Optional[Container] = None


def get_container() -> Container:
    """Process-wide container, configured from the environment on first use."""
    global _container
    if _container is None:
        _container = configure_container()
    return _container


def configure_container(settings: Optional[Settings] = None) -> Container:
    """Replace the process-wide container with one built from ``settings``."""
    global _container
    cleanup_container()
    _container = Container()
    _container.configure(settings)
    return _container


def cleanup_container() -> None:
    global _container
    if _container is not None:
        _container.cleanup()
        _container = None
