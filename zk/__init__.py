"""
Zero-knowledge proving pipeline: isolated workspaces, the nargo/bb
subprocess backends and parsing of their output artifacts.
"""

from .artifacts import ArtifactParser, ProofArtifact
from .backends import (BarretenbergProver, NargoWitnessExecutor,
                       ProverBackend, WitnessExecutor, verify_toolchain)
from .errors import (
    ZKError,
    ToolchainError,
    WorkspaceError,
    WitnessGenerationFailed,
    ProofGenerationFailed,
    ArtifactMissing,
    ArtifactMalformed,
    StepTimeout,
)
from .prover import ProcessOrchestrator
from .workspace import Workspace, WorkspaceManager

__all__ = [
    # Classes
    'ArtifactParser',
    'ProofArtifact',
    'BarretenbergProver',
    'NargoWitnessExecutor',
    'ProverBackend',
    'WitnessExecutor',
    'ProcessOrchestrator',
    'Workspace',
    'WorkspaceManager',
    'verify_toolchain',

    # Exceptions
    'ZKError',
    'ToolchainError',
    'WorkspaceError',
    'WitnessGenerationFailed',
    'ProofGenerationFailed',
    'ArtifactMissing',
    'ArtifactMalformed',
    'StepTimeout',
]
