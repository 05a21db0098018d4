"""Tests for the Yahoo connector templates"""

from unittest.mock import AsyncMock, patch
import json
import time
import pytest
from connectors.yahoo_connector import (
    YAHOO_ACCESS_TOKEN_URL,
    YAHOO_SAMPLE_URL,
    YahooOAuthConnector,
)
from connectors.yahoo_oauth2_connector import YahooOAuth2Connector
from datapipe.common.exceptions import AuthenticationError, ConnectorError, DataSourceError, PipeConfigurationError
from datapipe.common.exceptions import ApiRequestError
from datapipe.integration.oauth import OAuth1Consumer, OAuth1Strategy, OAuth2Consumer, OAuth2Strategy
from datapipe.integration.pipe import DataSet, OAuthCredentials


@pytest.fixture
def connector():
    return YahooOAuthConnector()


def test_connector_identity(connector):
    assert connector.connector_id == "yahoo-oauth1"
    assert connector.label == "Yahoo OAuth1.0 Data Source"
    assert connector.options.recreate_target_db is True
    assert connector.options.use_custom_tables is True
    assert connector.get_table_prefix() == "yahoo-oauth1"
    assert connector.get_authorization_params() == {}


def test_oauth_strategy(connector, pipe):
    strategy = connector.get_oauth_strategy(pipe)

    assert isinstance(strategy, OAuth1Strategy)
    assert strategy.consumer_key == "consumer-key"
    assert strategy.consumer_secret == "consumer-secret"
    assert strategy.callback_url.endswith("/authCallback")
    assert strategy.access_token_url == YAHOO_ACCESS_TOKEN_URL

    profile = strategy.verify("token", "secret", {"id": "GUID"})
    assert profile == {"id": "GUID", "oauth_access_token": "token", "oauth_token_secret": "secret"}


@pytest.mark.asyncio
async def test_post_processing_attaches_tokens_and_data_sets(connector, pipe):
    profile = {"oauth_access_token": "token", "oauth_token_secret": "secret"}

    result = await connector.auth_callback_post_processing(profile, pipe)

    assert result.oauth == OAuthCredentials(access_token="token", refresh_token="secret")
    assert [d.label for d in result.tables] == ["Dynamic Yahoo data set", "Static Yahoo data set 1"]
    assert [d.name for d in result.tables] == ["yahoo_ds_2", "yahoo_ds_1"]
    assert isinstance(connector.yahoo_oauth_consumer, OAuth1Consumer)


@pytest.mark.asyncio
@pytest.mark.parametrize("profile", [None, {}, {"oauth_access_token": "token"}, {"oauth_token_secret": "secret"}])
async def test_post_processing_requires_tokens(connector, pipe, profile):
    with pytest.raises(AuthenticationError, match="OAuth parameter is missing"):
        await connector.auth_callback_post_processing(profile, pipe)


@pytest.mark.asyncio
async def test_post_processing_requires_pipe(connector):
    profile = {"oauth_access_token": "token", "oauth_token_secret": "secret"}
    with pytest.raises(PipeConfigurationError, match="data pipe configuration parameter is missing"):
        await connector.auth_callback_post_processing(profile, None)


@pytest.mark.asyncio
async def test_connect_step(connector, authorized_pipe, run_log):
    assert await connector.do_connect_step(authorized_pipe, run_log) is None
    assert connector.yahoo_oauth_consumer.consumer_key == "consumer-key"
    assert any("Verifying OAuth connectivity for data pipe pipe-1" in e.message for e in run_log.entries)


@pytest.mark.asyncio
async def test_connect_step_without_consumer(connector, authorized_pipe, run_log):
    with patch.object(YahooOAuthConnector, "initialize_oauth_consumer", lambda self, pipe: None):
        with pytest.raises(ConnectorError, match="could not be initialized"):
            await connector.do_connect_step(authorized_pipe, run_log)


def test_initialize_consumer_without_pipe(connector, pipe):
    connector.initialize_oauth_consumer(pipe)
    assert connector.yahoo_oauth_consumer is not None
    connector.initialize_oauth_consumer(None)
    assert connector.yahoo_oauth_consumer is None


@pytest.mark.asyncio
async def test_fetch_records(connector, authorized_pipe, run_log):
    body = json.dumps({"query": {"results": {"team": {"team_key": "113.l.231619.t.11"}}}})
    records = []
    get = AsyncMock(return_value=body)

    with patch.object(OAuth1Consumer, "get", new=get):
        await connector.fetch_records(DataSet(name="yahoo_ds_1", label="x"), records.append, authorized_pipe, run_log)

    get.assert_awaited_once_with(YAHOO_SAMPLE_URL, "access-token", "token-secret")
    assert records == [{"results": {"team": {"team_key": "113.l.231619.t.11"}}}]


@pytest.mark.asyncio
async def test_fetch_records_api_error(connector, authorized_pipe, run_log):
    error = ApiRequestError(YAHOO_SAMPLE_URL, 401, '{"error": {"description": "Please provide valid credentials"}}')

    with patch.object(OAuth1Consumer, "get", new=AsyncMock(side_effect=error)):
        with pytest.raises(DataSourceError) as excinfo:
            await connector.fetch_records(DataSet(name="yahoo_ds_1"), lambda r: None, authorized_pipe, run_log)

    assert str(excinfo.value) == f"Call to {YAHOO_SAMPLE_URL} failed: Please provide valid credentials"


@pytest.mark.asyncio
async def test_fetch_records_unexpected_body(connector, authorized_pipe, run_log):
    with patch.object(OAuth1Consumer, "get", new=AsyncMock(return_value="<html/>")):
        with pytest.raises(DataSourceError, match="unexpected response"):
            await connector.fetch_records(DataSet(name="yahoo_ds_1"), lambda r: None, authorized_pipe, run_log)


def test_oauth2_strategy(pipe):
    connector = YahooOAuth2Connector()
    strategy = connector.get_oauth_strategy(pipe)

    assert isinstance(strategy, OAuth2Strategy)
    profile = strategy.verify("at", "rt", {"expires_at": 123})
    assert profile["oauth_access_token"] == "at"
    assert profile["oauth_refresh_token"] == "rt"
    assert profile["oauth_expires_at"] == 123


@pytest.mark.asyncio
async def test_oauth2_post_processing(pipe):
    connector = YahooOAuth2Connector()
    profile = {"oauth_access_token": "at", "oauth_refresh_token": "rt", "oauth_expires_at": 123.0}

    result = await connector.auth_callback_post_processing(profile, pipe)

    assert result.oauth == OAuthCredentials(access_token="at", refresh_token="rt", expires_at=123.0)
    assert len(result.tables) == 2


@pytest.mark.asyncio
async def test_oauth2_connect_step_refreshes_expired_token(authorized_pipe, run_log):
    connector = YahooOAuth2Connector()
    authorized_pipe.oauth = OAuthCredentials(access_token="old", refresh_token="rt", expires_at=time.time() - 10)
    refresh = AsyncMock(return_value={"access_token": "new", "expires_in": 3600})

    with patch.object(OAuth2Consumer, "refresh", new=refresh):
        result = await connector.do_connect_step(authorized_pipe, run_log)

    refresh.assert_awaited_once_with("rt")
    assert result.info_status == "Yahoo access token refreshed"
    assert authorized_pipe.oauth.access_token == "new"
    assert authorized_pipe.oauth.refresh_token == "rt"
    assert not authorized_pipe.oauth.is_expired()


@pytest.mark.asyncio
async def test_oauth2_connect_step_without_refresh_token(authorized_pipe, run_log):
    connector = YahooOAuth2Connector()
    authorized_pipe.oauth = OAuthCredentials(access_token="old", expires_at=time.time() - 10)

    with pytest.raises(ConnectorError, match="expired"):
        await connector.do_connect_step(authorized_pipe, run_log)


@pytest.mark.asyncio
async def test_oauth2_fetch_records(authorized_pipe, run_log):
    connector = YahooOAuth2Connector()
    records = []
    body = json.dumps({"fantasy_content": {"team": []}})

    with patch.object(OAuth2Consumer, "get", new=AsyncMock(return_value=body)) as get:
        await connector.fetch_records(DataSet(name="yahoo_ds_2"), records.append, authorized_pipe, run_log)

    assert get.await_args.args[1] == "access-token"
    assert records == [{"results": {"team": []}}]


@pytest.mark.asyncio
async def test_consumer_follows_pipe_credentials(connector, authorized_pipe, run_log):
    await connector.do_connect_step(authorized_pipe, run_log)
    first = connector.yahoo_oauth_consumer

    authorized_pipe.client_secret = "rotated-secret"
    await connector.do_connect_step(authorized_pipe, run_log)

    assert connector.yahoo_oauth_consumer is not first
    assert connector.yahoo_oauth_consumer.consumer_secret == "rotated-secret"


@pytest.mark.asyncio
async def test_oauth2_consumer_follows_pipe_credentials(authorized_pipe, run_log):
    connector = YahooOAuth2Connector()
    await connector.do_connect_step(authorized_pipe, run_log)
    first = connector.yahoo_consumer

    authorized_pipe.client_secret = "rotated-secret"
    await connector.do_connect_step(authorized_pipe, run_log)

    assert connector.yahoo_consumer is not first
    assert connector.yahoo_consumer.client_secret == "rotated-secret"
