import asyncio

import pytest

from server.validator import ProofRequest
from utils.utils import PerformanceMonitor
from zk.artifacts import ArtifactParser
from zk.errors import (ArtifactMissing, ProofGenerationFailed,
                       WitnessGenerationFailed, WorkspaceError)
from zk.prover import ProcessOrchestrator

from fakes import FakeProverBackend, FakeWitnessExecutor, expected_proof_hex


def _orchestrator(prover_config, witness=None, prover=None):
    return ProcessOrchestrator(
        witness_executor=witness or FakeWitnessExecutor(),
        prover_backend=prover or FakeProverBackend(),
        parser=ArtifactParser(prover_config),
        config=prover_config,
        monitor=PerformanceMonitor()
    )


def _prove(orchestrator, workspaces, age=20, bmi=220):
    async def scenario():
        with workspaces.workspace(ProofRequest(age=age, bmi_scaled=bmi)) as workspace:
            return await orchestrator.run(workspace)
    return asyncio.run(scenario())


def test_steps_run_in_order_in_the_same_workspace(prover_config, workspaces):
    witness = FakeWitnessExecutor()
    prover = FakeProverBackend()
    artifact = _prove(_orchestrator(prover_config, witness, prover), workspaces)

    assert witness.calls == 1 and prover.calls == 1
    assert prover.witnesses[0].parent.parent == witness.workspaces[0]
    assert artifact.proof_hex == expected_proof_hex(20, 220)


def test_witness_failure_skips_proving(prover_config, workspaces):
    prover = FakeProverBackend()
    orchestrator = _orchestrator(
        prover_config, FakeWitnessExecutor(fail="constraint failed"), prover)

    with pytest.raises(WitnessGenerationFailed):
        _prove(orchestrator, workspaces)
    assert prover.calls == 0


def test_prover_failure_propagates(prover_config, workspaces):
    orchestrator = _orchestrator(
        prover_config, prover=FakeProverBackend(fail="backend crashed"))
    with pytest.raises(ProofGenerationFailed, match="backend crashed"):
        _prove(orchestrator, workspaces)


def test_missing_proof_after_success(prover_config, workspaces):
    orchestrator = _orchestrator(
        prover_config, prover=FakeProverBackend(skip_proof=True))
    with pytest.raises(ArtifactMissing):
        _prove(orchestrator, workspaces)


def test_no_caching_between_identical_requests(prover_config, workspaces):
    witness = FakeWitnessExecutor()
    orchestrator = _orchestrator(prover_config, witness)

    first = _prove(orchestrator, workspaces)
    second = _prove(orchestrator, workspaces)

    assert witness.calls == 2
    assert witness.workspaces[0] != witness.workspaces[1]
    assert first.proof == second.proof
    assert first is not second


def test_workspace_cannot_run_twice_at_once(prover_config, workspaces):
    orchestrator = _orchestrator(prover_config, prover=FakeProverBackend(delay=0.3))

    async def scenario():
        with workspaces.workspace(ProofRequest(age=20, bmi_scaled=220)) as workspace:
            first = asyncio.ensure_future(orchestrator.run(workspace))
            await asyncio.sleep(0.05)
            with pytest.raises(WorkspaceError, match="already running"):
                await orchestrator.run(workspace)
            await first
            assert not workspace.running

    asyncio.run(scenario())


def test_released_workspace_is_refused(prover_config, workspaces):
    orchestrator = _orchestrator(prover_config)

    async def scenario():
        workspace = workspaces.acquire(ProofRequest(age=20, bmi_scaled=220))
        workspaces.release(workspace)
        await orchestrator.run(workspace)

    with pytest.raises(WorkspaceError):
        asyncio.run(scenario())


def test_step_timings_are_recorded(prover_config, workspaces):
    orchestrator = _orchestrator(
        prover_config, witness=FakeWitnessExecutor(fail="nope"))
    with pytest.raises(WitnessGenerationFailed):
        _prove(orchestrator, workspaces)

    orchestrator.witness_executor = FakeWitnessExecutor()
    _prove(orchestrator, workspaces)

    summary = orchestrator.monitor.get_summary()
    assert summary['operations']['witness generation']['count'] == 2
    assert summary['operations']['witness generation']['failures'] == 1
    assert summary['operations']['proof generation']['count'] == 1
