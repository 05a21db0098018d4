"""Connector registry for dynamic connector discovery and loading"""

from typing import Any, Dict, List, Optional, Type
import importlib
import inspect
import structlog
from .connector import ConnectorExt
from ..common.exceptions import ConnectorError

logger = structlog.get_logger(__name__)


class ConnectorRegistry:
    """Registry for managing connector classes and instances"""

    def __init__(self):
        self._connectors: Dict[str, Type[ConnectorExt]] = {}
        self._instances: Dict[str, ConnectorExt] = {}
        self.logger = logger

    def register(self, connector_id: str, connector_class: Type[ConnectorExt]) -> None:
        """
        Register a connector class

        Args:
            connector_id: Unique id of the connector
            connector_class: Connector class that extends ConnectorExt
        """
        if not (inspect.isclass(connector_class) and issubclass(connector_class, ConnectorExt)):
            raise ConnectorError(f"Connector class must extend ConnectorExt: {connector_class}")

        self._connectors[connector_id.lower()] = connector_class
        self._instances.pop(connector_id.lower(), None)
        self.logger.info("Connector registered", connector_id=connector_id)

    def get_connector_class(self, connector_id: str) -> Optional[Type[ConnectorExt]]:
        return self._connectors.get(connector_id.lower())

    def create_instance(self, connector_id: str) -> ConnectorExt:
        """
        Create a connector instance

        Raises:
            ConnectorError: If connector not found or creation fails
        """
        connector_class = self.get_connector_class(connector_id)
        if not connector_class:
            raise ConnectorError(f"Connector not found: {connector_id}")

        try:
            instance = connector_class(connector_id=connector_id.lower())
        except Exception as e:
            raise ConnectorError(f"Failed to create connector instance: {e}")

        self._instances[connector_id.lower()] = instance
        self.logger.info("Connector instance created", connector_id=connector_id)
        return instance

    def get_instance(self, connector_id: str) -> Optional[ConnectorExt]:
        """Get a connector instance by ID"""
        return self._instances.get(connector_id.lower())

    def get_or_create(self, connector_id: str) -> ConnectorExt:
        return self.get_instance(connector_id) or self.create_instance(connector_id)

    def list_connectors(self) -> List[str]:
        """List all registered connector ids"""
        return list(self._connectors.keys())

    def describe(self) -> List[Dict[str, Any]]:
        """Metadata of every registered connector"""
        return [self.get_or_create(connector_id).get_metadata() for connector_id in self.list_connectors()]

    def load_connectors_from_module(self, module_path: str) -> None:
        """
        Dynamically load connectors from a module

        Every ConnectorExt subclass defined in the module with a CONNECTOR_ID is registered under that id.

        Args:
            module_path: Python module path (e.g., 'connectors.yahoo_connector')
        """
        try:
            module = importlib.import_module(module_path)
        except Exception as e:
            self.logger.error("Failed to load connectors from module", module=module_path, error=str(e))
            raise ConnectorError(f"Failed to load connectors from {module_path}: {e}")

        for _, obj in inspect.getmembers(module, inspect.isclass):
            if (issubclass(obj, ConnectorExt) and
                    obj is not ConnectorExt and
                    obj.__module__ == module.__name__ and
                    obj.CONNECTOR_ID):
                self.register(obj.CONNECTOR_ID, obj)
                self.logger.info("Connector loaded from module", module=module_path, connector_id=obj.CONNECTOR_ID)


# Global registry instance
registry = ConnectorRegistry()
