from typing import Dict, List, Optional
import structlog
from ..common.config import settings
from ..common.exceptions import PipeConfigurationError
from ..integration.oauth import AuthorizationRequest
from ..integration.pipe import Pipe
from .runner import PipeRun

logger = structlog.get_logger(__name__)


class PendingAuthorization(AuthorizationRequest):
    """OAuth handshake in flight for a pipe"""
    pipe_id: str


class PipeRepository:
    """
    Storage for pipe configurations, their run history and pending OAuth handshakes.

    Note: Currently uses in-memory storage; everything is lost when the process exits.
    """

    def __init__(self, max_run_history: Optional[int] = None):
        self._pipes: Dict[str, Pipe] = {}
        self._runs: Dict[str, List[PipeRun]] = {}
        self._pending_auth: Dict[str, PendingAuthorization] = {}
        self.max_run_history = max_run_history or settings.max_run_history

    def save(self, pipe: Pipe) -> Pipe:
        self._pipes[pipe.id] = pipe
        logger.info("Pipe saved", pipe_id=pipe.id, connector_id=pipe.connector_id)
        return pipe

    def get(self, pipe_id: str) -> Optional[Pipe]:
        return self._pipes.get(pipe_id)

    def require(self, pipe_id: str) -> Pipe:
        """Get a pipe or raise PipeConfigurationError"""
        pipe = self._pipes.get(pipe_id)
        if pipe is None:
            raise PipeConfigurationError(f"Data pipe not found: {pipe_id}")
        return pipe

    def list(self) -> List[Pipe]:
        return list(self._pipes.values())

    def delete(self, pipe_id: str) -> bool:
        self._runs.pop(pipe_id, None)
        for state in [state for state, pending in self._pending_auth.items() if pending.pipe_id == pipe_id]:
            del self._pending_auth[state]
        if self._pipes.pop(pipe_id, None) is None:
            return False
        logger.info("Pipe deleted", pipe_id=pipe_id)
        return True

    def add_run(self, run: PipeRun) -> None:
        runs = self._runs.setdefault(run.pipe_id, [])
        runs.insert(0, run)
        del runs[self.max_run_history:]

    def list_runs(self, pipe_id: str) -> List[PipeRun]:
        """Runs of a pipe, newest first"""
        return list(self._runs.get(pipe_id, []))

    def latest_run(self, pipe_id: str) -> Optional[PipeRun]:
        runs = self._runs.get(pipe_id)
        return runs[0] if runs else None

    def add_pending_auth(self, pipe_id: str, request: AuthorizationRequest) -> None:
        self._pending_auth[request.state] = PendingAuthorization(pipe_id=pipe_id, **request.model_dump())

    def pop_pending_auth(self, state: Optional[str]) -> Optional[PendingAuthorization]:
        if not state:
            return None
        return self._pending_auth.pop(state, None)
