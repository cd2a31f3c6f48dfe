import json
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from config.config import ProverConfig

from .errors import ArtifactMalformed, ArtifactMissing
from .workspace import Workspace

logger = logging.getLogger(__name__)

FIELD_BYTES = 32
PROOF_FILE = "proof"
PUBLIC_INPUTS_FILE = "public_inputs"
PUBLIC_INPUTS_FIELDS_FILE = "public_inputs_fields.json"


@dataclass
class ProofArtifact:
    """Proof bytes plus named public inputs read from one workspace"""
    proof: bytes
    public_inputs: Dict[str, str]
    generation_time: float = 0.0
    timestamp: float = field(default_factory=time.time)

    @property
    def proof_hex(self) -> str:
        return "0x" + self.proof.hex()

    @property
    def public_inputs_list(self) -> List[str]:
        return list(self.public_inputs.values())


def split_fields(raw: bytes) -> List[str]:
    """Split concatenated big-endian field elements into 0x-prefixed hex strings"""
    if len(raw) % FIELD_BYTES != 0:
        raise ValueError(
            f"{len(raw)} bytes is not a multiple of {FIELD_BYTES}")
    return ["0x" + raw[i:i + FIELD_BYTES].hex()
            for i in range(0, len(raw), FIELD_BYTES)]


class ArtifactParser:
    def __init__(self, config: ProverConfig):
        self.config = config

    def parse(self, workspace: Workspace) -> ProofArtifact:
        proof = self._read_proof(workspace.target_dir / PROOF_FILE)
        values = self._read_public_inputs(workspace.target_dir)
        return ProofArtifact(proof=proof, public_inputs=self._name(values))

    def _read_proof(self, path: Path) -> bytes:
        if not path.is_file():
            raise ArtifactMissing(path)
        proof = path.read_bytes()
        if not proof:
            raise ArtifactMalformed(path, "proof file is empty")
        return proof

    def _read_public_inputs(self, target_dir: Path) -> List[str]:
        # bb writes the JSON field list alongside the raw bytes when asked for bytes_and_fields
        fields_path = target_dir / PUBLIC_INPUTS_FIELDS_FILE
        if fields_path.is_file():
            try:
                values = json.loads(fields_path.read_text())
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise ArtifactMalformed(fields_path, str(e)) from e
            if not isinstance(values, list) or not all(isinstance(v, str) for v in values):
                raise ArtifactMalformed(
                    fields_path, "expected a list of field strings")
            return values

        raw_path = target_dir / PUBLIC_INPUTS_FILE
        if raw_path.is_file():
            try:
                return split_fields(raw_path.read_bytes())
            except ValueError as e:
                raise ArtifactMalformed(raw_path, str(e)) from e

        raise ArtifactMissing(raw_path)

    def _name(self, values: List[str]) -> Dict[str, str]:
        names = self.config.public_input_names
        if len(names) != len(values):
            if names:
                logger.debug(
                    f"Expected {len(names)} public inputs, got {len(values)}; using positional names")
            names = [f"public_input_{i}" for i in range(len(values))]
        return dict(zip(names, values))
