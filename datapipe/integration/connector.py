"""Base connector contract every data pipe connector implements"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional, Union
import structlog
from pydantic import BaseModel
from .oauth import OAuthStrategy
from .pipe import DataSet, Pipe

logger = structlog.get_logger(__name__)

Record = Dict[str, Any]
PushRecordFn = Callable[[Union[Record, List[Record]]], None]


class ConnectorOptions(BaseModel):
    """
    Connector behaviour switches honoured by the pipe runner.

    Attributes:
        recreate_target_db: Remove all data currently staged for a data set before loading it.
        use_custom_tables: Stage every data set in its own database.
    """
    recreate_target_db: bool = False
    use_custom_tables: bool = False


class StepResult(BaseModel):
    """Successful outcome of a run step; `info_status` is shown to the user"""
    info_status: Optional[str] = None


class ConnectorExt(ABC):
    """
    Base class for data source connectors.

    A connector supplies the OAuth strategy for its data source, the list of data sets a
    user can choose from, and the code that fetches records during a pipe run.
    """

    CONNECTOR_ID: str = ""
    LABEL: str = ""

    def __init__(
        self,
        connector_id: Optional[str] = None,
        label: Optional[str] = None,
        options: Optional[ConnectorOptions] = None
    ):
        """
        Initialize connector

        Args:
            connector_id: Unique identifier of the connector; defaults to the class CONNECTOR_ID
            label: Display name of the data source; defaults to the class LABEL
            options: Behaviour switches for pipe runs
        """
        self.connector_id = connector_id or self.CONNECTOR_ID
        self.label = label or self.LABEL or self.connector_id
        self.options = options or ConnectorOptions()
        # writes to the application's global log
        self.global_log = logger.bind(connector_id=self.connector_id)

    # Authentication hooks

    def get_authorization_params(self) -> Dict[str, Any]:
        """Extra parameters added to the provider's authorization URL"""
        return {}

    @abstractmethod
    def get_oauth_strategy(self, pipe: Pipe) -> OAuthStrategy:
        """
        Return a fully configured OAuth strategy for the pipe.

        The strategy's verify callback must attach the obtained tokens to the profile.
        """
        pass

    @abstractmethod
    async def auth_callback_post_processing(self, profile: Dict[str, Any], pipe: Pipe) -> Pipe:
        """
        Attach OAuth tokens and the list of available data sets to the pipe.

        Args:
            profile: Output of the strategy's verify callback.
            pipe: Pipe for which the OAuth dance has completed.

        Returns:
            The updated pipe.

        Raises:
            AuthenticationError: If a token is missing from the profile.
            PipeConfigurationError: If the pipe is missing.
        """
        pass

    @abstractmethod
    async def get_data_set_list(self, pipe: Pipe) -> Pipe:
        """
        Attach the data sets the user can choose from to `pipe.tables`.

        At least one data set must be provided, otherwise the pipe cannot run.
        """
        pass

    # Pipe run hooks

    async def do_connect_step(self, pipe: Pipe, run_log) -> Optional[StepResult]:
        """
        First step of every pipe run, e.g. to verify the OAuth token is still valid.

        Raises:
            ConnectorError: If the data source cannot be reached.
        """
        return None

    @abstractmethod
    async def fetch_records(
        self,
        data_set: DataSet,
        push_record: PushRecordFn,
        pipe: Pipe,
        run_log
    ) -> Optional[StepResult]:
        """
        Fetch the records of one data set and hand them to `push_record`.

        When several data sets are selected this is called concurrently, once per data set.

        Raises:
            DataSourceError: If the data source call fails.
        """
        pass

    def get_table_prefix(self) -> str:
        """Prefix of the staging database names; the connector id keeps them unique"""
        return self.connector_id

    def get_metadata(self) -> Dict[str, Any]:
        """Get connector metadata"""
        return {
            "connector_id": self.connector_id,
            "label": self.label,
            "options": self.options.model_dump(),
        }
