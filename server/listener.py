import asyncio
import itertools
import logging
from collections import Counter
from typing import Optional, Set

from config.config import SystemConfig
from utils.utils import PerformanceMonitor
from zk.prover import ProcessOrchestrator
from zk.workspace import WorkspaceManager

from .session import Session

logger = logging.getLogger(__name__)


class BindError(Exception):
    """The listening socket could not be opened"""
    pass


class ProofServer:
    """Accepts TCP connections and runs one Session task per connection"""

    def __init__(self, config: SystemConfig,
                 orchestrator: ProcessOrchestrator,
                 workspaces: WorkspaceManager,
                 monitor: Optional[PerformanceMonitor] = None):
        self.config = config
        self.orchestrator = orchestrator
        self.workspaces = workspaces
        self.monitor = monitor or orchestrator.monitor

        self.outcomes: Counter = Counter()
        self._server: Optional[asyncio.AbstractServer] = None
        self._sessions: Set[asyncio.Task] = set()
        self._session_ids = itertools.count(1)
        self._proof_slots: Optional[asyncio.Semaphore] = None

    @classmethod
    def from_config(cls, config: SystemConfig) -> 'ProofServer':
        monitor = PerformanceMonitor()
        return cls(
            config=config,
            orchestrator=ProcessOrchestrator.from_config(config.prover, monitor),
            workspaces=WorkspaceManager(config.prover, config.limits),
            monitor=monitor
        )

    @property
    def port(self) -> int:
        return self._server.sockets[0].getsockname()[1]

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    async def start(self):
        self.workspaces.ensure_root()
        self.workspaces.purge_stale()
        self._proof_slots = asyncio.Semaphore(
            self.config.server.max_concurrent_proofs)

        try:
            self._server = await asyncio.start_server(
                self._handle_client,
                self.config.server.host,
                self.config.server.port,
                limit=self.config.server.max_line_bytes
            )
        except OSError as e:
            self.workspaces.close()
            raise BindError(
                f"Could not listen on {self.config.server.host}:"
                f"{self.config.server.port}: {e}") from e
        logger.info(
            f"Listening on {self.config.server.host}:{self.port}")

    async def close(self):
        if self._server is None:
            return

        self._server.close()
        sessions = list(self._sessions)
        for task in sessions:
            task.cancel()
        await asyncio.gather(*sessions, return_exceptions=True)
        await self._server.wait_closed()
        self._server = None
        await asyncio.to_thread(self.workspaces.close)
        logger.info(f"Server stopped; session outcomes: {dict(self.outcomes)}")

    async def _handle_client(self, reader: asyncio.StreamReader,
                             writer: asyncio.StreamWriter):
        peer = writer.get_extra_info("peername")
        session_id = f"session-{next(self._session_ids)}"
        task = asyncio.current_task()
        self._sessions.add(task)
        logger.info(f"New connection from {peer} ({session_id})")

        try:
            session = Session(
                reader, writer,
                orchestrator=self.orchestrator,
                workspaces=self.workspaces,
                server_config=self.config.server,
                limits=self.config.limits,
                proof_slots=self._proof_slots,
                session_id=session_id
            )
            state = await session.run()
            self.outcomes[state.value] += 1
            logger.info(f"Client {peer} disconnected ({session_id}: {state.value})")
        except Exception:
            self.outcomes["error"] += 1
            logger.exception(f"Error handling client {peer} ({session_id})")
        finally:
            self._sessions.discard(task)
