import logging
import time
from typing import Optional

from config.config import ProverConfig
from utils.utils import PerformanceMonitor

from .artifacts import ArtifactParser, ProofArtifact
from .backends import (PROVE_STEP, WITNESS_STEP, BarretenbergProver,
                       NargoWitnessExecutor, ProverBackend, WitnessExecutor)
from .errors import WorkspaceError
from .workspace import Workspace

logger = logging.getLogger(__name__)


class ProcessOrchestrator:
    """Runs witness generation then proving for one workspace and parses the result"""

    def __init__(self, witness_executor: WitnessExecutor,
                 prover_backend: ProverBackend,
                 parser: ArtifactParser,
                 config: ProverConfig,
                 monitor: Optional[PerformanceMonitor] = None):
        self.witness_executor = witness_executor
        self.prover_backend = prover_backend
        self.parser = parser
        self.config = config
        self.monitor = monitor or PerformanceMonitor()

    @classmethod
    def from_config(cls, config: ProverConfig,
                    monitor: Optional[PerformanceMonitor] = None) -> 'ProcessOrchestrator':
        return cls(
            witness_executor=NargoWitnessExecutor(config),
            prover_backend=BarretenbergProver(config),
            parser=ArtifactParser(config),
            config=config,
            monitor=monitor
        )

    async def run(self, workspace: Workspace) -> ProofArtifact:
        if workspace.released:
            raise WorkspaceError(
                f"Workspace {workspace.path.name} was already released")
        if workspace.running:
            raise WorkspaceError(
                f"Workspace {workspace.path.name} is already running a step")

        workspace.running = True
        start_time = time.time()
        try:
            with self.monitor.start_operation(WITNESS_STEP):
                witness = await self.witness_executor.execute(
                    workspace, self.config.witness_timeout)

            with self.monitor.start_operation(PROVE_STEP):
                await self.prover_backend.prove(
                    workspace, witness, self.config.prove_timeout)

            artifact = self.parser.parse(workspace)
        finally:
            workspace.running = False

        artifact.generation_time = time.time() - start_time
        logger.info(
            f"Generated proof for {workspace.request_id} in {artifact.generation_time:.2f}s")
        return artifact
