"""Tests for the pipe runner"""

import asyncio
import pytest
from datapipe.common.exceptions import ConnectorError, DataSourceError
from datapipe.integration.connector import ConnectorExt, ConnectorOptions, StepResult
from datapipe.integration.pipe import DataSet
from datapipe.pipes.runner import PipeRunner, RunStatus
from datapipe.staging.store import MemoryStagingStore


class FakeConnector(ConnectorExt):
    CONNECTOR_ID = "fake"

    def __init__(self, options=None, fail_connect=False, fail_data_set=None, info=None):
        super().__init__(options=options)
        self.fail_connect = fail_connect
        self.fail_data_set = fail_data_set
        self.info = info
        self.in_flight = 0
        self.max_in_flight = 0

    def get_oauth_strategy(self, pipe):
        raise NotImplementedError

    async def auth_callback_post_processing(self, profile, pipe):
        return pipe

    async def get_data_set_list(self, pipe):
        return pipe

    async def do_connect_step(self, pipe, run_log):
        if self.fail_connect:
            raise ConnectorError("The fake API interface could not be initialized.")
        return StepResult(info_status=self.info) if self.info else None

    async def fetch_records(self, data_set, push_record, pipe, run_log):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0.01)
        self.in_flight -= 1
        if data_set.name == self.fail_data_set:
            raise DataSourceError(f"Call to https://fake/{data_set.name} failed: boom")
        push_record({"data_set": data_set.name})
        push_record([{"n": 1}, {"n": 2}])


@pytest.mark.asyncio
async def test_run_stages_each_data_set(authorized_pipe):
    store = MemoryStagingStore()
    connector = FakeConnector(options=ConnectorOptions(use_custom_tables=True))

    run = await PipeRunner(connector, store).run(authorized_pipe)

    assert run.status == RunStatus.FINISHED
    assert [step.status for step in run.steps] == [RunStatus.FINISHED, RunStatus.FINISHED]
    assert run.records == {"yahoo_ds_1": 3, "yahoo_ds_2": 3}
    assert await store.list_databases() == ["fake_yahoo_ds_1", "fake_yahoo_ds_2"]
    assert (await store.get_records("fake_yahoo_ds_1"))[0] == {"data_set": "yahoo_ds_1"}
    assert connector.max_in_flight == 2
    assert run.ended_at >= run.started_at


@pytest.mark.asyncio
async def test_run_without_custom_tables_tags_records(authorized_pipe):
    store = MemoryStagingStore()

    run = await PipeRunner(FakeConnector(), store).run(authorized_pipe)

    assert run.status == RunStatus.FINISHED
    records = await store.get_records("fake")
    assert len(records) == 6
    assert {record["pt_type"] for record in records} == {"yahoo_ds_1", "yahoo_ds_2"}


@pytest.mark.asyncio
async def test_run_selected_data_set(authorized_pipe):
    authorized_pipe.selected_table = "yahoo_ds_2"
    store = MemoryStagingStore()

    run = await PipeRunner(FakeConnector(options=ConnectorOptions(use_custom_tables=True)), store).run(authorized_pipe)

    assert run.records == {"yahoo_ds_2": 3}
    assert await store.list_databases() == ["fake_yahoo_ds_2"]


@pytest.mark.asyncio
async def test_recreate_target_db(authorized_pipe):
    store = MemoryStagingStore()
    options = ConnectorOptions(use_custom_tables=True, recreate_target_db=True)
    runner = PipeRunner(FakeConnector(options=options), store)

    await runner.run(authorized_pipe)
    await runner.run(authorized_pipe)

    assert await store.count("fake_yahoo_ds_1") == 3


@pytest.mark.asyncio
async def test_data_accumulates_without_recreate(authorized_pipe):
    store = MemoryStagingStore()
    runner = PipeRunner(FakeConnector(options=ConnectorOptions(use_custom_tables=True)), store)

    await runner.run(authorized_pipe)
    await runner.run(authorized_pipe)

    assert await store.count("fake_yahoo_ds_1") == 6


@pytest.mark.asyncio
async def test_connect_failure_stops_run(authorized_pipe):
    run = await PipeRunner(FakeConnector(fail_connect=True), MemoryStagingStore()).run(authorized_pipe)

    assert run.status == RunStatus.ERROR
    assert run.message == "The fake API interface could not be initialized."
    assert run.steps[0].status == RunStatus.ERROR
    assert run.steps[1].status == RunStatus.NOT_STARTED
    assert run.log[-1].level == "error"


@pytest.mark.asyncio
async def test_fetch_failure_marks_run_error(authorized_pipe):
    run = await PipeRunner(FakeConnector(fail_data_set="yahoo_ds_1"), MemoryStagingStore()).run(authorized_pipe)

    assert run.status == RunStatus.ERROR
    assert run.message == "Call to https://fake/yahoo_ds_1 failed: boom"
    assert run.steps[1].status == RunStatus.ERROR


@pytest.mark.asyncio
async def test_unauthorized_pipe(pipe):
    run = await PipeRunner(FakeConnector(), MemoryStagingStore()).run(pipe)

    assert run.status == RunStatus.ERROR
    assert "has not completed OAuth authorization" in run.message
    assert run.steps[0].status == RunStatus.NOT_STARTED


@pytest.mark.asyncio
async def test_info_status_is_kept(authorized_pipe):
    run = await PipeRunner(FakeConnector(info="Token refreshed"), MemoryStagingStore()).run(authorized_pipe)

    assert run.steps[0].message == "Token refreshed"


@pytest.mark.asyncio
async def test_no_records_pushed(authorized_pipe):
    class EmptyConnector(FakeConnector):
        async def fetch_records(self, data_set, push_record, pipe, run_log):
            return None

    store = MemoryStagingStore()
    authorized_pipe.tables = [DataSet(name="only", label="Only")]

    run = await PipeRunner(EmptyConnector(), store).run(authorized_pipe)

    assert run.status == RunStatus.FINISHED
    assert run.records == {"only": 0}
    assert await store.count("fake") == 0


@pytest.mark.asyncio
async def test_fetch_failure_cancels_other_data_sets(authorized_pipe):
    class SlowConnector(FakeConnector):
        async def fetch_records(self, data_set, push_record, pipe, run_log):
            if data_set.name == "yahoo_ds_2":
                raise DataSourceError("Call to https://fake/yahoo_ds_2 failed: boom")
            await asyncio.sleep(0.05)
            push_record({"data_set": data_set.name})

    store = MemoryStagingStore()
    connector = SlowConnector(options=ConnectorOptions(use_custom_tables=True))

    run = await PipeRunner(connector, store).run(authorized_pipe)
    log_size = len(run.log)
    await asyncio.sleep(0.2)

    assert run.status == RunStatus.ERROR
    assert run.records == {}
    assert len(run.log) == log_size
    assert await store.count("fake_yahoo_ds_1") == 0
