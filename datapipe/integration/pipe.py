"""Data pipe configuration model"""

from typing import List, Optional
import time
import uuid
from pydantic import BaseModel, Field
from ..common.exceptions import PipeConfigurationError


class DataSet(BaseModel):
    """
    A named source of records the user can select.

    An entry that only defines `label_plural` stands for "all data sets": selecting it
    makes a pipe run fetch every named data set.
    """
    name: Optional[str] = None
    label: Optional[str] = None
    label_plural: Optional[str] = None

    @property
    def is_all_option(self) -> bool:
        return self.label is None and self.label_plural is not None


class OAuthCredentials(BaseModel):
    """
    Tokens obtained during the OAuth dance.

    For OAuth 1.0a the token secret is kept in `refresh_token`.
    """
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[float] = None

    def is_expired(self, margin: int = 60) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= time.time() + margin


class Pipe(BaseModel):
    """
    Data pipe configuration.

    Attributes:
        id: Unique pipe identifier.
        name: Human-readable name.
        connector_id: ID of the connector that serves this pipe.
        client_id: OAuth client id (consumer key) registered with the data source.
        client_secret: OAuth client secret (consumer secret).
        oauth: Tokens attached after a successful OAuth dance.
        tables: Data sets the user can choose from.
        selected_table: Name of the selected data set; None selects all of them.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str
    connector_id: str
    client_id: str
    client_secret: str
    oauth: Optional[OAuthCredentials] = None
    tables: List[DataSet] = Field(default_factory=list)
    selected_table: Optional[str] = None

    @property
    def is_authorized(self) -> bool:
        return self.oauth is not None and bool(self.oauth.access_token)

    def named_data_sets(self) -> List[DataSet]:
        return [data_set for data_set in self.tables if data_set.name]

    def get_data_set(self, name: str) -> Optional[DataSet]:
        for data_set in self.tables:
            if data_set.name == name:
                return data_set
        return None

    def resolve_data_sets(self) -> List[DataSet]:
        """
        Return the data sets a pipe run has to process.

        Raises:
            PipeConfigurationError: If the selection is unknown or there is nothing to fetch.
        """
        if self.selected_table is None:
            data_sets = self.named_data_sets()
        else:
            data_set = self.get_data_set(self.selected_table)
            if data_set is None:
                raise PipeConfigurationError(f"Data set {self.selected_table} is not available for pipe {self.id}")
            data_sets = [data_set]

        if not data_sets:
            raise PipeConfigurationError(f"No data set is available for pipe {self.id}")
        return data_sets

    def public_view(self) -> dict:
        """Pipe as returned to API clients, without secrets"""
        return self.model_dump(exclude={"client_secret", "oauth"}) | {"authorized": self.is_authorized}


def sort_data_sets(data_sets: List[DataSet]) -> List[DataSet]:
    """Order data sets by label, with the "all data sets" entry first"""
    return sorted(
        data_sets,
        key=lambda data_set: (0, "") if not data_set.label else (1, data_set.label.casefold())
    )
