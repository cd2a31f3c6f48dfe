import logging
import sys
from pathlib import Path

import pytest

from config.config import InputLimits, ProverConfig, ServerConfig, SystemConfig
from utils.utils import PerformanceMonitor
from zk.artifacts import ArtifactParser
from zk.prover import ProcessOrchestrator
from zk.workspace import WorkspaceManager

from fakes import FAKE_BB, FAKE_NARGO, FakeProverBackend, FakeWitnessExecutor

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

CIRCUIT_NAME = "insurance_verifier"


@pytest.fixture
def circuit_dir(tmp_path) -> Path:
    """Compiled circuit package, plus leftovers that must never reach a workspace"""
    circuit = tmp_path / "noir-circuit"
    (circuit / "src").mkdir(parents=True)
    (circuit / "target").mkdir()
    (circuit / "Nargo.toml").write_text(
        f'[package]\nname = "{CIRCUIT_NAME}"\ntype = "bin"\n')
    (circuit / "src" / "main.nr").write_text(
        "fn main(age: u32, bmi: u32, min_age: pub u32, max_age: pub u32, "
        "min_bmi: pub u32, max_bmi: pub u32) {}\n")
    (circuit / "target" / f"{CIRCUIT_NAME}.json").write_text(
        '{"noir_version": "test", "bytecode": ""}')

    (circuit / "Prover.toml").write_text('age = "99"\nbmi = "999"\n')
    (circuit / "target" / f"{CIRCUIT_NAME}.gz").write_bytes(b"stale witness")
    (circuit / "target" / "proof").write_bytes(b"stale proof")
    return circuit


@pytest.fixture
def fake_tools(tmp_path) -> dict:
    tools = tmp_path / "tools"
    tools.mkdir()
    nargo = tools / "fake_nargo.py"
    bb = tools / "fake_bb.py"
    nargo.write_text(FAKE_NARGO)
    bb.write_text(FAKE_BB)
    return {"nargo": [sys.executable, str(nargo)],
            "bb": [sys.executable, str(bb)]}


@pytest.fixture
def prover_config(tmp_path, circuit_dir, fake_tools) -> ProverConfig:
    return ProverConfig(
        circuit_name=CIRCUIT_NAME,
        circuit_dir=circuit_dir,
        workspace_root=tmp_path / "workspaces",
        nargo_command=fake_tools["nargo"],
        bb_command=fake_tools["bb"],
        witness_timeout=10.0,
        prove_timeout=10.0
    )


@pytest.fixture
def limits() -> InputLimits:
    return InputLimits()


@pytest.fixture
def server_config() -> ServerConfig:
    return ServerConfig(host="127.0.0.1", port=0, read_timeout=5.0,
                        max_concurrent_proofs=4)


@pytest.fixture
def system_config(tmp_path, server_config, prover_config, limits) -> SystemConfig:
    return SystemConfig(server=server_config, prover=prover_config,
                        limits=limits, log_dir=tmp_path / "logs",
                        log_to_file=False)


@pytest.fixture
def workspaces(prover_config, limits) -> WorkspaceManager:
    manager = WorkspaceManager(prover_config, limits)
    yield manager
    manager.close()


@pytest.fixture
def witness_executor() -> FakeWitnessExecutor:
    return FakeWitnessExecutor()


@pytest.fixture
def prover_backend() -> FakeProverBackend:
    return FakeProverBackend()


@pytest.fixture
def fake_orchestrator(prover_config, witness_executor, prover_backend) -> ProcessOrchestrator:
    return ProcessOrchestrator(
        witness_executor=witness_executor,
        prover_backend=prover_backend,
        parser=ArtifactParser(prover_config),
        config=prover_config,
        monitor=PerformanceMonitor()
    )
