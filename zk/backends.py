"""
External tool backends: ``nargo execute`` for witness generation and
``bb prove`` for proving. Both run as child processes scoped to a workspace
directory and are killed together with their descendants on timeout or
cancellation.
"""

import asyncio
import logging
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Protocol

import psutil

from config.config import ProverConfig

from .errors import (ProofGenerationFailed, StepTimeout, ToolchainError,
                     WitnessGenerationFailed)
from .workspace import Workspace

logger = logging.getLogger(__name__)

WITNESS_STEP = "witness generation"
PROVE_STEP = "proof generation"


@dataclass
class ToolResult:
    returncode: int
    stdout: bytes
    stderr: bytes
    duration: float

    def diagnostics(self, limit: int) -> str:
        return excerpt(self.stderr or self.stdout, limit)


def excerpt(output: bytes, limit: int) -> str:
    """Tail of a tool's output, which is where nargo and bb put the actual error"""
    text = output.decode("utf-8", errors="replace").strip()
    if not text:
        return "no diagnostic output"
    if len(text) > limit:
        text = "..." + text[-limit:]
    return text


def _kill_process_tree(pid: int):
    try:
        parent = psutil.Process(pid)
        processes = parent.children(recursive=True) + [parent]
    except psutil.NoSuchProcess:
        return

    for process in processes:
        try:
            process.kill()
        except psutil.NoSuchProcess:
            pass


async def _terminate(process: asyncio.subprocess.Process):
    if process.returncode is None:
        _kill_process_tree(process.pid)
    await process.wait()


async def run_tool(command: List[str], cwd: Path, timeout: float, step: str) -> ToolResult:
    """Run one external tool to completion, bounded by ``timeout`` seconds"""
    start_time = time.time()
    logger.debug(f"Running {step}: {' '.join(command)} in {cwd.name}")

    try:
        process = await asyncio.create_subprocess_exec(
            *command,
            cwd=str(cwd),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise ToolchainError(f"Could not start {command[0]}: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout)
    except asyncio.TimeoutError:
        await _terminate(process)
        logger.warning(
            f"{step} killed after {timeout:g}s (pid {process.pid})")
        raise StepTimeout(step, timeout)
    except asyncio.CancelledError:
        await _terminate(process)
        logger.info(f"{step} cancelled, killed pid {process.pid}")
        raise

    return ToolResult(
        returncode=process.returncode,
        stdout=stdout,
        stderr=stderr,
        duration=time.time() - start_time
    )


class WitnessExecutor(Protocol):
    async def execute(self, workspace: Workspace, timeout: float) -> Path:
        ...


class ProverBackend(Protocol):
    async def prove(self, workspace: Workspace, witness: Path, timeout: float) -> None:
        ...


class NargoWitnessExecutor:
    """Solves the circuit for the workspace's Prover.toml"""

    def __init__(self, config: ProverConfig):
        self.config = config

    async def execute(self, workspace: Workspace, timeout: float) -> Path:
        command = [*self.config.nargo_command, "execute"]
        result = await run_tool(command, workspace.path, timeout, WITNESS_STEP)

        if result.returncode != 0:
            raise WitnessGenerationFailed(
                result.diagnostics(self.config.stderr_excerpt_chars))

        witness = workspace.witness_path()
        if witness is None:
            raise WitnessGenerationFailed(
                "Witness file was not generated after circuit execution")

        logger.debug(
            f"Witness for {workspace.request_id} in {result.duration:.2f}s")
        return witness


class BarretenbergProver:
    """Writes proof and public inputs into the workspace target directory"""

    def __init__(self, config: ProverConfig):
        self.config = config

    def build_command(self, workspace: Workspace, witness: Path) -> List[str]:
        command = [
            *self.config.bb_command, "prove",
            "-b", f"./target/{workspace.compiled_circuit.name}",
            "-w", f"./target/{witness.name}",
            "-o", "./target"
        ]
        if self.config.oracle_hash:
            command += ["--oracle_hash", self.config.oracle_hash]
        if self.config.output_format:
            command += ["--output_format", self.config.output_format]
        return command

    async def prove(self, workspace: Workspace, witness: Path, timeout: float) -> None:
        command = self.build_command(workspace, witness)
        result = await run_tool(command, workspace.path, timeout, PROVE_STEP)

        if result.returncode != 0:
            raise ProofGenerationFailed(
                result.diagnostics(self.config.stderr_excerpt_chars))

        logger.debug(
            f"Proof for {workspace.request_id} in {result.duration:.2f}s")


def verify_toolchain(config: ProverConfig) -> Dict[str, str]:
    """Resolve tool binaries and the compiled circuit; raises ToolchainError if any is missing"""
    resolved = {}
    for label, command in (("nargo", config.nargo_command),
                           ("bb", config.bb_command)):
        if not command:
            raise ToolchainError(f"No command configured for {label}")
        binary = shutil.which(command[0])
        if binary is None:
            raise ToolchainError(
                f"'{command[0]}' ({label}) not found; make sure it is installed and in PATH")
        resolved[label] = binary

    if not config.compiled_circuit.is_file():
        raise ToolchainError(
            f"Compiled circuit not found at {config.compiled_circuit}; run 'nargo compile' first")
    resolved["circuit"] = str(config.compiled_circuit)

    return resolved
