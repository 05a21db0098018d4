"""Staging store for records copied from data sources"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional
from pathlib import Path
import json
import re
import structlog
from ..common.config import settings
from ..common.exceptions import ConfigurationError, StagingError

logger = structlog.get_logger(__name__)

_INVALID_CHARS = re.compile(r"[^a-z0-9_$()+\-]")


def staging_database_name(prefix: str, data_set_name: Optional[str] = None) -> str:
    """
    Build a staging database name from the connector's table prefix and a data set name.

    Names are lowercase, start with a letter and only contain a-z, 0-9 and _$()+-
    """
    raw = prefix if not data_set_name else f"{prefix}_{data_set_name}"
    name = _INVALID_CHARS.sub("_", raw.lower())
    if not name or not name[0].isalpha():
        name = f"db_{name}"
    return name


class StagingStore(ABC):
    """Abstract base class for staging store backends"""

    @abstractmethod
    async def create_database(self, name: str, recreate: bool = False) -> None:
        """Create a database; with `recreate` any existing content is removed"""
        pass

    @abstractmethod
    async def insert(self, name: str, records: List[Dict[str, Any]]) -> int:
        """Append records to a database and return how many were written"""
        pass

    @abstractmethod
    async def get_records(self, name: str) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def list_databases(self) -> List[str]:
        pass

    @abstractmethod
    async def drop_database(self, name: str) -> None:
        pass

    async def count(self, name: str) -> int:
        return len(await self.get_records(name))


class MemoryStagingStore(StagingStore):
    """Keeps staged records in process memory"""

    def __init__(self):
        self._databases: Dict[str, List[Dict[str, Any]]] = {}
        self.logger = logger.bind(backend="memory")

    async def create_database(self, name: str, recreate: bool = False) -> None:
        if recreate or name not in self._databases:
            self._databases[name] = []
            self.logger.info("Staging database ready", database=name, recreated=recreate)

    async def insert(self, name: str, records: List[Dict[str, Any]]) -> int:
        if name not in self._databases:
            raise StagingError(f"Staging database does not exist: {name}")
        self._databases[name].extend(dict(record) for record in records)
        return len(records)

    async def get_records(self, name: str) -> List[Dict[str, Any]]:
        if name not in self._databases:
            raise StagingError(f"Staging database does not exist: {name}")
        return list(self._databases[name])

    async def list_databases(self) -> List[str]:
        return sorted(self._databases)

    async def drop_database(self, name: str) -> None:
        self._databases.pop(name, None)
        self.logger.info("Staging database dropped", database=name)


class JsonFileStagingStore(StagingStore):
    """Keeps every staging database in a JSON-lines file under a directory"""

    def __init__(self, directory: Optional[str] = None):
        self.directory = Path(directory or settings.staging_directory)
        self.logger = logger.bind(backend="file", directory=str(self.directory))

    def _path(self, name: str) -> Path:
        return self.directory / f"{name}.jsonl"

    async def create_database(self, name: str, recreate: bool = False) -> None:
        path = self._path(name)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            if recreate or not path.exists():
                path.write_text("", encoding="utf-8")
                self.logger.info("Staging database ready", database=name, recreated=recreate)
        except OSError as e:
            raise StagingError(f"Failed to create staging database {name}: {e}")

    async def insert(self, name: str, records: List[Dict[str, Any]]) -> int:
        path = self._path(name)
        if not path.exists():
            raise StagingError(f"Staging database does not exist: {name}")
        try:
            with path.open("a", encoding="utf-8") as handle:
                for record in records:
                    handle.write(json.dumps(record, default=str) + "\n")
        except (OSError, TypeError) as e:
            raise StagingError(f"Failed to write to staging database {name}: {e}")
        return len(records)

    async def get_records(self, name: str) -> List[Dict[str, Any]]:
        path = self._path(name)
        if not path.exists():
            raise StagingError(f"Staging database does not exist: {name}")
        try:
            with path.open(encoding="utf-8") as handle:
                return [json.loads(line) for line in handle if line.strip()]
        except (OSError, ValueError) as e:
            raise StagingError(f"Failed to read staging database {name}: {e}")

    async def list_databases(self) -> List[str]:
        if not self.directory.exists():
            return []
        return sorted(path.stem for path in self.directory.glob("*.jsonl"))

    async def drop_database(self, name: str) -> None:
        path = self._path(name)
        if path.exists():
            path.unlink()
            self.logger.info("Staging database dropped", database=name)


def get_staging_store() -> StagingStore:
    """
    Factory function returning the staging store selected by configuration

    Returns:
        StagingStore instance
    """
    backend = settings.staging_backend.lower()

    if backend == "memory":
        return MemoryStagingStore()
    elif backend == "file":
        return JsonFileStagingStore()
    else:
        raise ConfigurationError(f"Unknown staging backend: {backend}")
