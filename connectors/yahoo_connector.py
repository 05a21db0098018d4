"""Yahoo connector template using OAuth 1.0a authentication"""

from typing import Any, Dict, Optional
import json
from datapipe.common.config import settings
from datapipe.common.exceptions import (
    ApiRequestError,
    AuthenticationError,
    ConnectorError,
    DataSourceError,
    PipeConfigurationError,
)
from datapipe.integration.connector import ConnectorExt, ConnectorOptions, PushRecordFn, StepResult
from datapipe.integration.oauth import OAuth1Consumer, OAuth1Strategy
from datapipe.integration.pipe import DataSet, OAuthCredentials, Pipe, sort_data_sets

# OAuth 1.0 flow: https://developer.yahoo.com/oauth/guide/oauth-auth-flow.html
YAHOO_REQUEST_TOKEN_URL = "https://api.login.yahoo.com/oauth/v2/get_request_token"
YAHOO_AUTHORIZE_URL = "https://api.login.yahoo.com/oauth/v2/request_auth"
YAHOO_ACCESS_TOKEN_URL = "https://api.login.yahoo.com/oauth/v2/get_token"

# Sample query; replace with the calls your data sets need
YAHOO_SAMPLE_URL = (
    "https://query.yahooapis.com/v1/yql?q=select%20*%20from%20fantasysports.teams.stats"
    "%20where%20team_key%3D%22113.l.231619.t.11%22&format=json&diagnostics=true&callback="
)


class YahooOAuthConnector(ConnectorExt):
    """
    Data pipe connector boilerplate for Yahoo, using OAuth 1.0a authentication.

    Build your own connector by copying this class and replacing the data sets and the
    sample API call in `fetch_records`.
    """

    CONNECTOR_ID = "yahoo-oauth1"
    LABEL = "Yahoo OAuth1.0 Data Source"

    def __init__(self, connector_id: Optional[str] = None, label: Optional[str] = None, options: Optional[ConnectorOptions] = None):
        super().__init__(
            connector_id,
            label,
            options or ConnectorOptions(recreate_target_db=True, use_custom_tables=True)
        )
        # signs Yahoo API calls; created lazily per pipe
        self.yahoo_oauth_consumer: Optional[OAuth1Consumer] = None

    # Authentication hooks

    def get_authorization_params(self) -> Dict[str, Any]:
        # the Yahoo OAuth1 API does not need extra authorization parameters
        return {}

    def get_oauth_strategy(self, pipe: Pipe) -> OAuth1Strategy:
        """
        OAuth1 strategy for Yahoo.

        The verify callback adds `oauth_access_token` and `oauth_token_secret` to the profile.
        """
        self.global_log.info("Creating OAuth strategy", pipe_id=pipe.id)

        def verify(token: str, token_secret: Optional[str], profile: Dict[str, Any]) -> Dict[str, Any]:
            profile["oauth_access_token"] = token
            profile["oauth_token_secret"] = token_secret
            return profile

        return OAuth1Strategy(
            consumer_key=pipe.client_id,
            consumer_secret=pipe.client_secret,
            callback_url=settings.auth_callback_url,
            verify=verify,
            request_token_url=YAHOO_REQUEST_TOKEN_URL,
            user_authorization_url=YAHOO_AUTHORIZE_URL,
            access_token_url=YAHOO_ACCESS_TOKEN_URL
        )

    async def auth_callback_post_processing(self, profile: Dict[str, Any], pipe: Pipe) -> Pipe:
        if not profile or not profile.get("oauth_access_token") or not profile.get("oauth_token_secret"):
            self.global_log.error("Internal application error: OAuth parameter is missing in auth_callback_post_processing")
            raise AuthenticationError("Internal application error: OAuth parameter is missing.")

        if pipe is None:
            self.global_log.error("Internal application error: data pipe configuration parameter is missing in auth_callback_post_processing")
            raise PipeConfigurationError("Internal application error: data pipe configuration parameter is missing.")

        pipe.oauth = OAuthCredentials(
            access_token=profile["oauth_access_token"],
            refresh_token=profile["oauth_token_secret"]
        )

        # tokens changed; build a fresh consumer on next use
        self.yahoo_oauth_consumer = None

        try:
            return await self.get_data_set_list(pipe)
        except Exception as e:
            self.global_log.error(f"The Yahoo data set list could not be created: {e}")
            raise

    async def get_data_set_list(self, pipe: Pipe) -> Pipe:
        """
        Attach the Yahoo data sets the user can choose from.

        Data sets can be added statically or derived from a Yahoo query (see `fetch_records`
        for how to call the API). To let the user load all data sets at once, add an entry
        that only has `label_plural`, e.g. DataSet(label_plural="All Yahoo data sets").
        """
        self._ensure_consumer(pipe)

        data_sets = [
            DataSet(label="Static Yahoo data set 1", name="yahoo_ds_1"),
            DataSet(label="Dynamic Yahoo data set", name="yahoo_ds_2"),
        ]

        pipe.tables = sort_data_sets(data_sets)
        return pipe

    # Pipe run hooks

    async def do_connect_step(self, pipe: Pipe, run_log) -> Optional[StepResult]:
        run_log.info(f"Verifying OAuth connectivity for data pipe {pipe.id}")

        self._ensure_consumer(pipe)

        if self.yahoo_oauth_consumer is None:
            run_log.error("The Yahoo API interface could not be initialized. Aborting data pipe run because no API calls can be processed.")
            raise ConnectorError("The Yahoo API interface could not be initialized.")
        return None

    async def fetch_records(self, data_set: DataSet, push_record: PushRecordFn, pipe: Pipe, run_log) -> Optional[StepResult]:
        run_log.info(f"Data pipe {pipe.id} is fetching data for data set {data_set.name} from yahoo.")

        self._ensure_consumer(pipe)

        url = YAHOO_SAMPLE_URL
        run_log.info("Calling Yahoo API ...")
        run_log.debug(f"API: {url}")

        try:
            data = await self.yahoo_oauth_consumer.get(url, pipe.oauth.access_token, pipe.oauth.refresh_token)
        except ApiRequestError as e:
            run_log.error(f"Call to Yahoo API {url} failed: HTTP {e.status_code} {e.data}")
            raise DataSourceError(f"Call to {url} failed: {e.description}")
        except Exception as e:
            run_log.error(f"Call to Yahoo API {url} failed: {e}")
            raise DataSourceError(f"Call to {url} failed: {e}")

        run_log.debug(f"API response - data : {data}")

        try:
            results = json.loads(data)["query"]["results"]
        except (ValueError, KeyError, TypeError) as e:
            raise DataSourceError(f"Call to {url} returned an unexpected response: {e}")

        push_record({"results": results})
        return None

    def initialize_oauth_consumer(self, pipe: Optional[Pipe]) -> None:
        """Create the OAuth consumer used for Yahoo API calls"""
        if pipe is not None:
            self.yahoo_oauth_consumer = OAuth1Consumer(
                YAHOO_REQUEST_TOKEN_URL,
                YAHOO_ACCESS_TOKEN_URL,
                pipe.client_id,
                pipe.client_secret,
                "1.0",
                "HMAC-SHA1"
            )
        else:
            self.yahoo_oauth_consumer = None

    def _ensure_consumer(self, pipe: Pipe) -> None:
        # the connector instance is shared by all pipes of this type
        consumer = self.yahoo_oauth_consumer
        if (
            consumer is None
            or consumer.consumer_key != pipe.client_id
            or consumer.consumer_secret != pipe.client_secret
        ):
            self.initialize_oauth_consumer(pipe)
