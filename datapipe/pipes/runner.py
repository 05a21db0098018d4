"""Pipe runner: connects to the data source and copies data sets into staging"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union
import asyncio
import uuid
import structlog
from pydantic import BaseModel, Field
from ..common.exceptions import DataPipeError, PipeConfigurationError
from ..integration.connector import ConnectorExt, StepResult
from ..integration.pipe import DataSet, Pipe
from ..staging.store import StagingStore, staging_database_name

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    ERROR = "ERROR"


class LogEntry(BaseModel):
    timestamp: datetime
    level: str
    message: str


class StepStats(BaseModel):
    label: str
    status: RunStatus = RunStatus.NOT_STARTED
    message: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class PipeRun(BaseModel):
    """
    Record of one pipe run.

    Attributes:
        id: Unique run id.
        pipe_id: Pipe the run belongs to.
        status: Overall status; ERROR as soon as one step fails.
        message: Error or informational text shown to the user.
        steps: Per-step status and timing.
        records: Number of records staged, per data set name.
        log: Entries written to the pipe run log.
    """
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    pipe_id: str
    status: RunStatus = RunStatus.NOT_STARTED
    message: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    steps: List[StepStats] = Field(default_factory=list)
    records: Dict[str, int] = Field(default_factory=dict)
    log: List[LogEntry] = Field(default_factory=list)


class PipeRunLog:
    """
    Logger that only exists during a pipe run.

    Writes through structlog and keeps every entry so it can be attached to the run record.
    """

    def __init__(self, run: PipeRun):
        self._run = run
        self._logger = logger.bind(pipe_id=run.pipe_id, run_id=run.id)

    @property
    def entries(self) -> List[LogEntry]:
        return self._run.log

    def _write(self, level: str, message: str, **kw) -> None:
        getattr(self._logger, level)(message, **kw)
        self._run.log.append(LogEntry(timestamp=_now(), level=level, message=message))

    def debug(self, message: str, **kw) -> None:
        self._write("debug", message, **kw)

    def info(self, message: str, **kw) -> None:
        self._write("info", message, **kw)

    def warning(self, message: str, **kw) -> None:
        self._write("warning", message, **kw)

    def error(self, message: str, **kw) -> None:
        self._write("error", message, **kw)


class PipeRunner:
    """
    Runs a pipe against its connector.

    Step 1 calls the connector's connect step. Step 2 fetches each selected data set
    (concurrently when several are selected) and stages the pushed records.
    """

    CONNECT_STEP = "Connecting to data source"
    COPY_STEP = "Copying data"

    def __init__(self, connector: ConnectorExt, store: StagingStore):
        self.connector = connector
        self.store = store
        self.logger = logger.bind(connector_id=connector.connector_id)

    async def run(self, pipe: Pipe) -> PipeRun:
        """
        Execute one pipe run.

        Errors never escape: they end the run in ERROR state with the error message.

        Returns:
            The run record.
        """
        run = PipeRun(
            pipe_id=pipe.id,
            status=RunStatus.RUNNING,
            started_at=_now(),
            steps=[StepStats(label=self.CONNECT_STEP), StepStats(label=self.COPY_STEP)]
        )
        run_log = PipeRunLog(run)
        run_log.info(f"Starting run of data pipe {pipe.id}")

        try:
            if not pipe.is_authorized:
                raise PipeConfigurationError(f"Data pipe {pipe.id} has not completed OAuth authorization")
            await self._run_step(run.steps[0], self.connector.do_connect_step(pipe, run_log))
            await self._run_step(run.steps[1], self._copy_data(pipe, run, run_log))
            run.status = RunStatus.FINISHED
        except DataPipeError as e:
            run.status = RunStatus.ERROR
            run.message = str(e)
            run_log.error(f"Data pipe run failed: {e}")
        except Exception as e:
            run.status = RunStatus.ERROR
            run.message = str(e)
            self.logger.exception("Unexpected error during pipe run", pipe_id=pipe.id)
            run_log.error(f"Data pipe run failed: {e}")
        finally:
            run.ended_at = _now()

        if run.status == RunStatus.FINISHED:
            run_log.info(f"Data pipe run finished; {sum(run.records.values())} records staged")
        return run

    async def _run_step(self, step: StepStats, work) -> None:
        step.status = RunStatus.RUNNING
        step.started_at = _now()
        try:
            result = await work
        except Exception as e:
            step.status = RunStatus.ERROR
            step.message = str(e)
            raise
        finally:
            step.ended_at = _now()
        step.status = RunStatus.FINISHED
        if isinstance(result, StepResult) and result.info_status:
            step.message = result.info_status

    async def _copy_data(self, pipe: Pipe, run: PipeRun, run_log: PipeRunLog) -> Optional[StepResult]:
        data_sets = pipe.resolve_data_sets()
        prefix = self.connector.get_table_prefix()
        options = self.connector.options

        targets = {
            data_set.name: staging_database_name(prefix, data_set.name if options.use_custom_tables else None)
            for data_set in data_sets
        }
        for database in sorted(set(targets.values())):
            await self.store.create_database(database, recreate=options.recreate_target_db)

        tasks = [
            asyncio.ensure_future(self._copy_data_set(data_set, targets[data_set.name], pipe, run, run_log))
            for data_set in data_sets
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            # first failure ends the copy step; nothing may be staged after the run is closed
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        messages = [result.info_status for result in results if result and result.info_status]
        return StepResult(info_status="; ".join(messages)) if messages else None

    async def _copy_data_set(
        self,
        data_set: DataSet,
        database: str,
        pipe: Pipe,
        run: PipeRun,
        run_log: PipeRunLog
    ) -> Optional[StepResult]:
        buffer: List[Dict[str, Any]] = []

        def push_record(records: Union[Dict[str, Any], List[Dict[str, Any]]]) -> None:
            batch = records if isinstance(records, list) else [records]
            for record in batch:
                record = dict(record)
                if not self.connector.options.use_custom_tables:
                    record["pt_type"] = data_set.name
                buffer.append(record)

        result = await self.connector.fetch_records(data_set, push_record, pipe, run_log)
        written = await self.store.insert(database, buffer) if buffer else 0
        run.records[data_set.name] = written
        run_log.info(f"Staged {written} records of data set {data_set.name} in {database}")
        return result
