"""Custom exceptions for the data pipe host and its connectors"""

import json
from typing import Optional


class DataPipeError(Exception):
    """
    Base exception for all data pipe errors.

    This serves as the root exception class so callers can catch every internal error at once.
    """
    pass


class ConfigurationError(DataPipeError):
    """
    Invalid configuration.

    Raised when a setting has an unsupported value, e.g. an unknown staging backend.
    """
    pass


class ConnectorError(DataPipeError):
    """
    Error in connector operations.

    Raised when a connector cannot be loaded or created, or a run step fails fatally.
    """
    pass


class AuthenticationError(ConnectorError):
    """
    Authentication failure.

    Raised when the OAuth dance fails: the user denied access, the token exchange
    was rejected, or the profile returned by the strategy lacks a token.
    """
    pass


class DataSourceError(ConnectorError):
    """
    Error returned by the data source.

    Raised when a data source API call fails while fetching records.
    """
    pass


class ApiRequestError(DataSourceError):
    """
    Non-successful HTTP response from a data source API.

    Keeps the raw response body so connectors can surface the provider's own error text.
    """

    def __init__(self, url: str, status_code: int, data: Optional[str] = None):
        super().__init__(f"Request to {url} returned HTTP {status_code}")
        self.url = url
        self.status_code = status_code
        self.data = data

    @property
    def description(self) -> str:
        """Provider error description (`error.description`), or the raw body"""
        if not self.data:
            return f"HTTP {self.status_code}"
        try:
            error = json.loads(self.data).get("error")
        except (ValueError, AttributeError):
            return self.data
        if isinstance(error, dict) and error.get("description"):
            return error["description"]
        if isinstance(error, str):
            return error
        return self.data


class PipeConfigurationError(DataPipeError):
    """
    Invalid data pipe configuration.

    Raised when a pipe is missing, has not completed OAuth, or selects a data set that does not exist.
    """
    pass


class StagingError(DataPipeError):
    """
    Error in the staging store.

    Raised when records cannot be written to or read from a staging database.
    """
    pass
