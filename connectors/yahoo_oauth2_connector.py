"""Yahoo connector template using OAuth 2.0 authentication"""

from typing import Any, Dict, Optional
import json
import time
from datapipe.common.config import settings
from datapipe.common.exceptions import (
    ApiRequestError,
    AuthenticationError,
    ConnectorError,
    DataSourceError,
    PipeConfigurationError,
)
from datapipe.integration.connector import ConnectorExt, ConnectorOptions, PushRecordFn, StepResult
from datapipe.integration.oauth import OAuth2Consumer, OAuth2Strategy
from datapipe.integration.pipe import DataSet, OAuthCredentials, Pipe, sort_data_sets

# OAuth 2.0 flow: https://developer.yahoo.com/oauth2/guide/flows_authcode/
YAHOO_OAUTH2_AUTHORIZE_URL = "https://api.login.yahoo.com/oauth2/request_auth"
YAHOO_OAUTH2_TOKEN_URL = "https://api.login.yahoo.com/oauth2/get_token"

YAHOO_SAMPLE_URL = (
    "https://fantasysports.yahooapis.com/fantasy/v2/team/113.l.231619.t.11/stats?format=json"
)


class YahooOAuth2Connector(ConnectorExt):
    """
    Data pipe connector boilerplate for Yahoo, using OAuth 2.0 authentication.

    Same data sets and record shape as the OAuth 1.0a template; API calls use bearer
    tokens and expired access tokens are refreshed before each run.
    """

    CONNECTOR_ID = "yahoo-oauth2"
    LABEL = "Yahoo OAuth2.0 Data Source"

    def __init__(self, connector_id: Optional[str] = None, label: Optional[str] = None, options: Optional[ConnectorOptions] = None):
        super().__init__(
            connector_id,
            label,
            options or ConnectorOptions(recreate_target_db=True, use_custom_tables=True)
        )
        self.yahoo_consumer: Optional[OAuth2Consumer] = None

    def get_oauth_strategy(self, pipe: Pipe) -> OAuth2Strategy:
        self.global_log.info("Creating OAuth strategy", pipe_id=pipe.id)

        def verify(access_token: str, refresh_token: Optional[str], profile: Dict[str, Any]) -> Dict[str, Any]:
            profile["oauth_access_token"] = access_token
            profile["oauth_refresh_token"] = refresh_token
            profile["oauth_expires_at"] = profile.get("expires_at")
            return profile

        return OAuth2Strategy(
            client_id=pipe.client_id,
            client_secret=pipe.client_secret,
            callback_url=settings.auth_callback_url,
            verify=verify,
            authorization_url=YAHOO_OAUTH2_AUTHORIZE_URL,
            token_url=YAHOO_OAUTH2_TOKEN_URL
        )

    async def auth_callback_post_processing(self, profile: Dict[str, Any], pipe: Pipe) -> Pipe:
        if not profile or not profile.get("oauth_access_token"):
            self.global_log.error("Internal application error: OAuth parameter is missing in auth_callback_post_processing")
            raise AuthenticationError("Internal application error: OAuth parameter is missing.")

        if pipe is None:
            self.global_log.error("Internal application error: data pipe configuration parameter is missing in auth_callback_post_processing")
            raise PipeConfigurationError("Internal application error: data pipe configuration parameter is missing.")

        pipe.oauth = OAuthCredentials(
            access_token=profile["oauth_access_token"],
            refresh_token=profile.get("oauth_refresh_token"),
            expires_at=profile.get("oauth_expires_at")
        )
        self.yahoo_consumer = None

        try:
            return await self.get_data_set_list(pipe)
        except Exception as e:
            self.global_log.error(f"The Yahoo data set list could not be created: {e}")
            raise

    async def get_data_set_list(self, pipe: Pipe) -> Pipe:
        self._ensure_consumer(pipe)
        pipe.tables = sort_data_sets([
            DataSet(label="Static Yahoo data set 1", name="yahoo_ds_1"),
            DataSet(label="Dynamic Yahoo data set", name="yahoo_ds_2"),
        ])
        return pipe

    async def do_connect_step(self, pipe: Pipe, run_log) -> Optional[StepResult]:
        """Verify the access token is usable and refresh it if it has expired"""
        run_log.info(f"Verifying OAuth connectivity for data pipe {pipe.id}")
        self._ensure_consumer(pipe)

        if not pipe.oauth.is_expired():
            return None

        if not pipe.oauth.refresh_token:
            run_log.error("The Yahoo access token has expired and no refresh token is available.")
            raise ConnectorError("The Yahoo access token has expired. Authorize the data pipe again.")

        run_log.info("Refreshing expired Yahoo access token")
        token = await self.yahoo_consumer.refresh(pipe.oauth.refresh_token)
        expires_at = token.get("expires_at")
        if expires_at is None and token.get("expires_in"):
            expires_at = time.time() + int(token["expires_in"])
        pipe.oauth = OAuthCredentials(
            access_token=token["access_token"],
            refresh_token=token.get("refresh_token") or pipe.oauth.refresh_token,
            expires_at=expires_at
        )
        return StepResult(info_status="Yahoo access token refreshed")

    async def fetch_records(self, data_set: DataSet, push_record: PushRecordFn, pipe: Pipe, run_log) -> Optional[StepResult]:
        run_log.info(f"Data pipe {pipe.id} is fetching data for data set {data_set.name} from yahoo.")
        self._ensure_consumer(pipe)

        url = YAHOO_SAMPLE_URL
        run_log.debug(f"API: {url}")

        try:
            data = await self.yahoo_consumer.get(url, pipe.oauth.access_token)
        except ApiRequestError as e:
            run_log.error(f"Call to Yahoo API {url} failed: HTTP {e.status_code} {e.data}")
            raise DataSourceError(f"Call to {url} failed: {e.description}")
        except Exception as e:
            run_log.error(f"Call to Yahoo API {url} failed: {e}")
            raise DataSourceError(f"Call to {url} failed: {e}")

        try:
            results = json.loads(data)["fantasy_content"]
        except (ValueError, KeyError, TypeError) as e:
            raise DataSourceError(f"Call to {url} returned an unexpected response: {e}")

        push_record({"results": results})
        return None

    def _ensure_consumer(self, pipe: Pipe) -> None:
        consumer = self.yahoo_consumer
        if (
            consumer is None
            or consumer.client_id != pipe.client_id
            or consumer.client_secret != pipe.client_secret
        ):
            self.yahoo_consumer = OAuth2Consumer(pipe.client_id, pipe.client_secret, YAHOO_OAUTH2_TOKEN_URL)
