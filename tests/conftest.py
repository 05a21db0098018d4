"""Shared fixtures"""

import pytest
from datapipe.integration.pipe import DataSet, OAuthCredentials, Pipe
from datapipe.pipes.runner import PipeRun, PipeRunLog


@pytest.fixture
def pipe():
    return Pipe(
        id="pipe-1",
        name="Fantasy stats",
        connector_id="yahoo-oauth1",
        client_id="consumer-key",
        client_secret="consumer-secret"
    )


@pytest.fixture
def authorized_pipe(pipe):
    pipe.oauth = OAuthCredentials(access_token="access-token", refresh_token="token-secret")
    pipe.tables = [
        DataSet(label="Dynamic Yahoo data set", name="yahoo_ds_2"),
        DataSet(label="Static Yahoo data set 1", name="yahoo_ds_1"),
    ]
    return pipe


@pytest.fixture
def run_log():
    return PipeRunLog(PipeRun(pipe_id="pipe-1"))
