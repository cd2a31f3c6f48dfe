"""
Per-request workspaces.

Every server process owns one instance directory under ``workspace_root``
(``server-<pid>-<random>``) and holds an exclusive ``flock`` on its sibling
``.lock`` file for as long as it runs. Each request gets its own copy of the
compiled circuit package inside that instance directory so that ``nargo``
and ``bb`` read and write only files belonging to that request. Directory
names embed a random request id and are created exclusively, so two
requests can never share a directory.
"""

import fcntl
import logging
import os
import secrets
import shutil
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Iterator, Optional

from config.config import InputLimits, ProverConfig
from utils.utils import secure_delete

from .errors import WorkspaceError

logger = logging.getLogger(__name__)

INSTANCE_PREFIX = "server-"
LOCK_SUFFIX = ".lock"
WORKSPACE_PREFIX = "req-"
DESCRIPTOR_NAME = "Prover.toml"

# Never carried over from the source circuit directory
_STALE_ARTIFACTS = (DESCRIPTOR_NAME, "*.gz", "proof", "proof_fields.json",
                    "public_inputs", "public_inputs_fields.json", "vk", ".git")


@dataclass
class Workspace:
    request_id: str
    path: Path
    circuit_name: str
    running: bool = False
    released: bool = False

    @property
    def descriptor_path(self) -> Path:
        return self.path / DESCRIPTOR_NAME

    @property
    def target_dir(self) -> Path:
        return self.path / "target"

    @property
    def compiled_circuit(self) -> Path:
        return self.target_dir / f"{self.circuit_name}.json"

    def witness_path(self) -> Optional[Path]:
        """Witness written by nargo, compressed or not; None if absent"""
        for candidate in (self.target_dir / f"{self.circuit_name}.gz",
                          self.target_dir / self.circuit_name):
            if candidate.is_file():
                return candidate
        return None


def render_descriptor(age: int, bmi_scaled: int, limits: InputLimits) -> str:
    """Prover.toml contents; keys match the circuit's parameter names"""
    return (
        f'age = "{age}"\n'
        f'bmi = "{bmi_scaled}"\n'
        f'min_age = "{limits.min_age}"\n'
        f'max_age = "{limits.max_age}"\n'
        f'min_bmi = "{limits.min_bmi}"\n'
        f'max_bmi = "{limits.max_bmi}"\n'
    )


class WorkspaceManager:
    def __init__(self, config: ProverConfig, limits: InputLimits):
        self.config = config
        self.limits = limits
        self.base = config.workspace_root
        self.root = self.base / \
            f"{INSTANCE_PREFIX}{os.getpid()}-{secrets.token_hex(4)}"
        self._lock_file: Optional[IO] = None

    @property
    def lock_path(self) -> Path:
        return _lock_path(self.root)

    def ensure_root(self):
        """Create this instance's directory, locking it before it becomes visible"""
        if self._lock_file is not None:
            return

        try:
            self.base.mkdir(parents=True, exist_ok=True, mode=0o700)
            lock_file = open(self.lock_path, 'a')
        except OSError as e:
            raise WorkspaceError(
                f"Could not prepare workspace root {self.base}: {e}") from e

        try:
            fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
            self.root.mkdir(mode=0o700)
        except OSError as e:
            lock_file.close()
            raise WorkspaceError(
                f"Could not prepare workspace root {self.root}: {e}") from e

        self._lock_file = lock_file
        logger.debug(f"Workspace instance {self.root.name} locked")

    def close(self):
        """Remove this instance's directory and drop its lock"""
        if self._lock_file is None:
            return

        if self.root.exists():
            self._remove_instance(self.root)
        self.lock_path.unlink(missing_ok=True)
        self._lock_file.close()
        self._lock_file = None

    def acquire(self, request) -> Workspace:
        """Create the isolated directory for ``request`` and write its input descriptor"""
        self.ensure_root()
        workspace = Workspace(
            request_id=request.request_id,
            path=self.root / f"{WORKSPACE_PREFIX}{request.request_id}",
            circuit_name=self.config.circuit_name
        )

        try:
            workspace.path.mkdir(mode=0o700)
        except FileExistsError:
            raise WorkspaceError(
                f"Workspace for request {request.request_id} already exists")
        except OSError as e:
            raise WorkspaceError(f"Could not create workspace: {e}") from e

        try:
            self._populate(workspace)
            workspace.descriptor_path.write_text(
                render_descriptor(request.age, request.bmi_scaled, self.limits))
            workspace.descriptor_path.chmod(0o600)
        except (OSError, shutil.Error) as e:
            self.release(workspace)
            raise WorkspaceError(
                f"Could not prepare workspace {workspace.path.name}: {e}") from e

        logger.debug(f"Acquired workspace {workspace.path.name}")
        return workspace

    def _populate(self, workspace: Workspace):
        source = self.config.circuit_dir
        ignore = shutil.ignore_patterns(*_STALE_ARTIFACTS)

        nargo_toml = source / "Nargo.toml"
        if nargo_toml.exists():
            shutil.copy2(nargo_toml, workspace.path / "Nargo.toml")
        if (source / "src").is_dir():
            shutil.copytree(source / "src", workspace.path / "src",
                            ignore=ignore)

        workspace.target_dir.mkdir()
        shutil.copy2(self.config.compiled_circuit, workspace.compiled_circuit)

    def release(self, workspace: Workspace) -> bool:
        """Scrub private files and remove the workspace tree; safe to call twice"""
        if workspace.released:
            return True

        if workspace.path.exists():
            secure_delete(workspace.descriptor_path)
            witness = workspace.witness_path()
            if witness is not None:
                secure_delete(witness)

            try:
                shutil.rmtree(workspace.path)
            except OSError as e:
                logger.error(f"Leaked workspace {workspace.path.name}: {e}")
                return False

        workspace.released = True
        logger.debug(f"Released workspace {workspace.path.name}")
        return True

    @contextmanager
    def workspace(self, request) -> Iterator[Workspace]:
        workspace = self.acquire(request)
        try:
            yield workspace
        finally:
            self.release(workspace)

    def purge_stale(self) -> int:
        """Remove workspaces left behind by server processes that are gone.

        An instance directory is stale only when nobody holds its lock, so
        workspaces of other servers sharing ``workspace_root`` are never touched.
        """
        if not self.base.exists():
            return 0

        removed = 0
        for entry in list(self.base.iterdir()):
            if (not entry.is_dir() or entry == self.root
                    or not entry.name.startswith(INSTANCE_PREFIX)):
                continue

            try:
                lock_file = open(_lock_path(entry), 'a')
            except OSError as e:
                logger.warning(f"Skipping workspace instance {entry.name}: {e}")
                continue

            with lock_file:
                try:
                    fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    logger.debug(f"Workspace instance {entry.name} is live")
                    continue
                removed += self._remove_instance(entry)
                _lock_path(entry).unlink(missing_ok=True)

        if removed:
            logger.warning(f"Purged {removed} stale workspace(s) from {self.base}")
        return removed

    def _remove_instance(self, instance: Path) -> int:
        removed = 0
        try:
            entries = list(instance.iterdir())
        except FileNotFoundError:
            return 0

        for entry in entries:
            if entry.is_dir() and entry.name.startswith(WORKSPACE_PREFIX):
                stale = Workspace(request_id=entry.name[len(WORKSPACE_PREFIX):],
                                  path=entry,
                                  circuit_name=self.config.circuit_name)
                if self.release(stale):
                    removed += 1

        try:
            instance.rmdir()
        except OSError as e:
            logger.error(f"Leaked workspace instance {instance.name}: {e}")
        return removed

    def active_count(self) -> int:
        if not self.root.exists():
            return 0
        return sum(1 for entry in self.root.iterdir()
                   if entry.name.startswith(WORKSPACE_PREFIX))


def _lock_path(instance: Path) -> Path:
    return instance.with_name(instance.name + LOCK_SUFFIX)
