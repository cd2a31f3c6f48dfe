"""
Per-connection protocol state machine.

    GREETING -> AWAIT_AGE -> AWAIT_BMI -> PROVING -> RESPONDING -> CLOSED
                    any state -> ABORTED (connection lost, retries exhausted)

Every state is one handler coroutine returning the next state, so each
suspension point (a client read, the proving pipeline) belongs to exactly
one state. The workspace acquired while PROVING is released when the session
reaches CLOSED or ABORTED, whichever exit path got it there.
"""

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional

from config.config import InputLimits, ServerConfig
from zk.errors import ArtifactMalformed, ArtifactMissing, ZKError
from zk.prover import ProcessOrchestrator
from zk.workspace import Workspace, WorkspaceManager

from .response import ProofResponse
from .validator import (InvalidInput, ProofRequest, validate_age, validate_bmi,
                        validate_request)

logger = logging.getLogger(__name__)

BANNER = "ZK Insurance Verifier Server\n============================\n"
GENERATING = "Generating proof...\n"
FAREWELL = "Connection will close. Thanks for using ZK Insurance Verifier!\n"
TOO_MANY_ATTEMPTS = "Too many invalid attempts. Connection will close.\n"


class SessionState(Enum):
    GREETING = "greeting"
    AWAIT_AGE = "await_age"
    AWAIT_BMI = "await_bmi"
    PROVING = "proving"
    RESPONDING = "responding"
    CLOSED = "closed"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({SessionState.CLOSED, SessionState.ABORTED})


class ClientGone(Exception):
    """The client can no longer be talked to"""
    pass


class Session:
    def __init__(self, reader: asyncio.StreamReader, writer,
                 orchestrator: ProcessOrchestrator,
                 workspaces: WorkspaceManager,
                 server_config: ServerConfig,
                 limits: InputLimits,
                 proof_slots: Optional[asyncio.Semaphore] = None,
                 session_id: str = "session"):
        self.reader = reader
        self.writer = writer
        self.orchestrator = orchestrator
        self.workspaces = workspaces
        self.server_config = server_config
        self.limits = limits
        self.proof_slots = proof_slots or asyncio.Semaphore(
            server_config.max_concurrent_proofs)
        self.session_id = session_id

        self.state = SessionState.GREETING
        self.history: List[SessionState] = []
        self.request: Optional[ProofRequest] = None
        self.response: Optional[ProofResponse] = None
        self._age_token: Optional[str] = None
        self._acquiring: Optional[asyncio.Future] = None

        self._handlers = {
            SessionState.GREETING: self._greet,
            SessionState.AWAIT_AGE: self._await_age,
            SessionState.AWAIT_BMI: self._await_bmi,
            SessionState.PROVING: self._prove,
            SessionState.RESPONDING: self._respond,
        }

    async def run(self) -> SessionState:
        try:
            while self.state not in TERMINAL_STATES:
                self.history.append(self.state)
                try:
                    self.state = await self._handlers[self.state]()
                except ClientGone as e:
                    logger.info(
                        f"{self.session_id} aborted in {self.state.value}: {e}")
                    self.state = SessionState.ABORTED
        finally:
            await self._close()

        self.history.append(self.state)
        return self.state

    # State handlers

    async def _greet(self) -> SessionState:
        await self._send(BANNER)
        return SessionState.AWAIT_AGE

    async def _await_age(self) -> SessionState:
        prompt = f"Enter age ({self.limits.min_age}-{self.limits.max_age}): "
        token = await self._read_field(prompt, validate_age)
        if token is None:
            return SessionState.ABORTED
        self._age_token = token
        return SessionState.AWAIT_BMI

    async def _await_bmi(self) -> SessionState:
        prompt = (f"Enter BMI multiplied by 10 "
                  f"({self.limits.min_bmi}-{self.limits.max_bmi}): ")
        token = await self._read_field(prompt, validate_bmi)
        if token is None:
            return SessionState.ABORTED
        self.request = validate_request(self._age_token, token, self.limits)
        self._age_token = None
        return SessionState.PROVING

    async def _prove(self) -> SessionState:
        await self._send(GENERATING)
        logger.info(f"{self.session_id} proving request {self.request.request_id}")

        pipeline = asyncio.ensure_future(self._run_pipeline())
        waiting = {pipeline}
        if self.server_config.abort_on_disconnect:
            waiting.add(asyncio.ensure_future(self._watch_disconnect()))

        try:
            done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in waiting:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*waiting, return_exceptions=True)

        if pipeline not in done:
            raise ClientGone("client disconnected during proving")

        self.response = pipeline.result()
        return SessionState.RESPONDING

    async def _respond(self) -> SessionState:
        await self._send(self.response.render())
        await self._send(FAREWELL)
        return SessionState.CLOSED

    # Proving pipeline

    async def _run_pipeline(self) -> ProofResponse:
        async with self.proof_slots:
            try:
                # Shielded so a cancelled session still learns which workspace it must release
                self._acquiring = asyncio.ensure_future(
                    asyncio.to_thread(self.workspaces.acquire, self.request))
                workspace = await asyncio.shield(self._acquiring)
                artifact = await self.orchestrator.run(workspace)
            except (ArtifactMissing, ArtifactMalformed) as e:
                logger.error(
                    f"{self.session_id} prover reported success but output is unusable: {e}")
                return ProofResponse.from_error(e)
            except ZKError as e:
                logger.warning(f"{self.session_id} proof failed: {e}")
                return ProofResponse.from_error(e)
            except Exception:
                logger.exception(f"{self.session_id} unexpected proving error")
                return ProofResponse.internal_error()

        return ProofResponse.from_artifact(artifact)

    async def _watch_disconnect(self):
        # Anything typed while proving is discarded; EOF means the client left
        while True:
            try:
                data = await self.reader.read(self.server_config.max_line_bytes)
            except ConnectionError:
                return
            if not data:
                return

    # I/O helpers

    async def _read_field(self, prompt: str,
                          validate: Callable[[str, InputLimits], int]) -> Optional[str]:
        """Prompt until ``validate`` accepts a line; returns the accepted token"""
        attempts = self.server_config.max_input_attempts
        for attempt in range(1, attempts + 1):
            await self._send(prompt)
            token = await self._read_line()
            try:
                validate(token, self.limits)
                return token
            except InvalidInput as e:
                logger.info(
                    f"{self.session_id} rejected {e.field} ({attempt}/{attempts}): {e.reason}")
                await self._send(f"{e}\n")

        await self._send(TOO_MANY_ATTEMPTS)
        return None

    async def _read_line(self) -> str:
        try:
            line = await asyncio.wait_for(self.reader.readline(),
                                          self.server_config.read_timeout)
        except asyncio.TimeoutError:
            raise ClientGone("read timed out")
        except ValueError:
            raise ClientGone("line too long")
        except ConnectionError as e:
            raise ClientGone(str(e) or "connection lost")

        if not line:
            raise ClientGone("client closed the connection")
        return line.decode("utf-8", errors="replace")

    async def _send(self, text: str):
        try:
            self.writer.write(text.encode("utf-8"))
            await self.writer.drain()
        except ConnectionError as e:
            raise ClientGone(str(e) or "connection lost")

    async def _close(self):
        if self._acquiring is not None:
            result = (await asyncio.gather(self._acquiring, return_exceptions=True))[0]
            if isinstance(result, Workspace):
                await asyncio.to_thread(self.workspaces.release, result)
            self._acquiring = None

        self.request = None
        self._age_token = None

        try:
            self.writer.close()
            await self.writer.wait_closed()
        except ConnectionError as e:
            logger.debug(f"{self.session_id} close: {e}")
