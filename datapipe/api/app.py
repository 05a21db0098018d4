"""Host REST API: pipe management, OAuth dance, pipe runs and staged data"""

from typing import Any, Dict, List, Optional
from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
import structlog
from ..common.config import settings
from ..common.exceptions import (
    AuthenticationError,
    ConnectorError,
    DataPipeError,
    PipeConfigurationError,
    StagingError,
)
from ..integration.connector import ConnectorExt
from ..integration.oauth import OAuth1Strategy, OAuth2Strategy
from ..integration.pipe import Pipe
from ..integration.registry import ConnectorRegistry, registry as default_registry
from ..pipes.repository import PendingAuthorization, PipeRepository
from ..pipes.runner import PipeRunner
from ..pipes.scheduler import PipeScheduler
from ..staging.store import StagingStore, get_staging_store

logger = structlog.get_logger(__name__)


class PipeCreateRequest(BaseModel):
    name: str
    connector_id: str
    client_id: str
    client_secret: str


class SelectionRequest(BaseModel):
    """Data set to load; None selects all data sets"""
    name: Optional[str] = None


class ScheduleRequest(BaseModel):
    interval_seconds: Optional[int] = None
    cron_expression: Optional[str] = None


def _error_handler(status_code: int):
    async def handler(request: Request, exc: DataPipeError):
        logger.warning("Request failed", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


def create_app(
    connector_registry: Optional[ConnectorRegistry] = None,
    repository: Optional[PipeRepository] = None,
    store: Optional[StagingStore] = None,
    scheduler: Optional[PipeScheduler] = None
) -> FastAPI:
    """
    Build the host application.

    Connectors listed in `settings.connector_modules` are loaded into the registry
    unless a prepared registry is passed in.
    """
    if connector_registry is None:
        connector_registry = default_registry
        for module_path in settings.connector_modules:
            try:
                connector_registry.load_connectors_from_module(module_path)
            except ConnectorError as e:
                logger.warning("Connector module skipped", module=module_path, error=str(e))

    repository = repository or PipeRepository()
    store = store or get_staging_store()
    scheduler = scheduler or PipeScheduler()

    app = FastAPI(title=f"{settings.app_name} API", version=settings.app_version)
    app.state.registry = connector_registry
    app.state.repository = repository
    app.state.store = store
    app.state.scheduler = scheduler

    app.add_exception_handler(AuthenticationError, _error_handler(401))
    app.add_exception_handler(PipeConfigurationError, _error_handler(400))
    app.add_exception_handler(ConnectorError, _error_handler(502))
    app.add_exception_handler(StagingError, _error_handler(500))
    app.add_exception_handler(DataPipeError, _error_handler(500))

    @app.on_event("shutdown")
    async def shutdown_event():
        scheduler.stop()

    def require_pipe(pipe_id: str) -> Pipe:
        pipe = repository.get(pipe_id)
        if pipe is None:
            raise HTTPException(status_code=404, detail=f"Data pipe not found: {pipe_id}")
        return pipe

    def connector_for(pipe: Pipe) -> ConnectorExt:
        return connector_registry.get_or_create(pipe.connector_id)

    def pending_auth_for(params: Dict[str, str]) -> Optional[PendingAuthorization]:
        for strategy_class in (OAuth2Strategy, OAuth1Strategy):
            pending = repository.pop_pending_auth(strategy_class.callback_state(params))
            if pending is not None:
                return pending
        return None

    async def run_pipe(pipe_id: str) -> Dict[str, Any]:
        pipe = repository.require(pipe_id)
        run = await PipeRunner(connector_for(pipe), store).run(pipe)
        repository.add_run(run)
        repository.save(pipe)
        return run.model_dump(mode="json")

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {"status": "healthy", "service": settings.app_name}

    @app.get("/connectors")
    async def list_connectors() -> List[Dict[str, Any]]:
        """List available connectors"""
        return connector_registry.describe()

    @app.post("/pipes", status_code=201)
    async def create_pipe(request: PipeCreateRequest):
        if connector_registry.get_connector_class(request.connector_id) is None:
            raise HTTPException(status_code=404, detail=f"Connector not found: {request.connector_id}")
        pipe = repository.save(Pipe(**request.model_dump()))
        return pipe.public_view()

    @app.get("/pipes")
    async def list_pipes():
        return [pipe.public_view() for pipe in repository.list()]

    @app.get("/pipes/{pipe_id}")
    async def get_pipe(pipe_id: str):
        pipe = require_pipe(pipe_id)
        latest = repository.latest_run(pipe_id)
        return pipe.public_view() | {
            "latest_run": latest.model_dump(mode="json") if latest else None,
            "next_run": _isoformat(scheduler.get_next_run_time(pipe_id)),
        }

    @app.delete("/pipes/{pipe_id}")
    async def delete_pipe(pipe_id: str):
        require_pipe(pipe_id)
        scheduler.unschedule_pipe(pipe_id)
        repository.delete(pipe_id)
        return {"status": "deleted", "pipe_id": pipe_id}

    @app.get("/auth/{pipe_id}")
    async def start_authorization(pipe_id: str):
        """Redirect the user to the data source's OAuth authorization page"""
        pipe = require_pipe(pipe_id)
        connector = connector_for(pipe)
        strategy = connector.get_oauth_strategy(pipe)
        auth_request = await strategy.authorize(connector.get_authorization_params())
        repository.add_pending_auth(pipe.id, auth_request)
        logger.info("OAuth authorization started", pipe_id=pipe.id, connector_id=connector.connector_id)
        return RedirectResponse(auth_request.url, status_code=307)

    @app.get("/authCallback")
    async def auth_callback(request: Request):
        """Complete the OAuth dance and attach tokens and data sets to the pipe"""
        params = dict(request.query_params)
        pending = pending_auth_for(params)
        if pending is None:
            raise HTTPException(status_code=400, detail="Unknown or expired OAuth authorization request")

        pipe = repository.require(pending.pipe_id)
        connector = connector_for(pipe)
        strategy = connector.get_oauth_strategy(pipe)
        if strategy.callback_state(params) != pending.state:
            raise AuthenticationError("OAuth state mismatch")
        profile = await strategy.authenticate(params, pending)
        pipe = await connector.auth_callback_post_processing(profile, pipe)
        repository.save(pipe)
        logger.info("OAuth authorization completed", pipe_id=pipe.id, data_sets=len(pipe.tables))
        return pipe.public_view()

    @app.put("/pipes/{pipe_id}/selection")
    async def select_data_set(pipe_id: str, request: SelectionRequest):
        pipe = require_pipe(pipe_id)
        if request.name is not None and pipe.get_data_set(request.name) is None:
            raise HTTPException(status_code=400, detail=f"Unknown data set: {request.name}")
        pipe.selected_table = request.name
        repository.save(pipe)
        return pipe.public_view()

    @app.post("/pipes/{pipe_id}/run")
    async def run_pipe_now(pipe_id: str):
        require_pipe(pipe_id)
        return await run_pipe(pipe_id)

    @app.get("/pipes/{pipe_id}/runs")
    async def list_runs(pipe_id: str):
        require_pipe(pipe_id)
        return [run.model_dump(mode="json") for run in repository.list_runs(pipe_id)]

    @app.post("/pipes/{pipe_id}/schedule")
    async def schedule_pipe(pipe_id: str, request: ScheduleRequest):
        require_pipe(pipe_id)

        async def scheduled_run():
            await run_pipe(pipe_id)

        scheduler.start()
        scheduler.schedule_pipe(pipe_id, scheduled_run, request.interval_seconds, request.cron_expression)
        return {
            "status": "scheduled",
            "pipe_id": pipe_id,
            "next_run": _isoformat(scheduler.get_next_run_time(pipe_id)),
        }

    @app.delete("/pipes/{pipe_id}/schedule")
    async def unschedule_pipe(pipe_id: str):
        require_pipe(pipe_id)
        if not scheduler.unschedule_pipe(pipe_id):
            raise HTTPException(status_code=404, detail=f"Data pipe is not scheduled: {pipe_id}")
        return {"status": "unscheduled", "pipe_id": pipe_id}

    @app.get("/staging")
    async def list_staging_databases():
        return [
            {"database": name, "count": await store.count(name)}
            for name in await store.list_databases()
        ]

    @app.get("/staging/{database}")
    async def get_staged_records(database: str):
        if database not in await store.list_databases():
            raise HTTPException(status_code=404, detail=f"Staging database not found: {database}")
        return await store.get_records(database)

    return app


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None
