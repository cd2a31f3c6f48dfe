import json
from dataclasses import dataclass, field
from typing import List

from zk.artifacts import ProofArtifact
from zk.errors import ZKError

SUCCESS_MESSAGE = ("Proof generated successfully! "
                   "The user is eligible for insurance discount.")
INTERNAL_ERROR_MESSAGE = ZKError.client_message


@dataclass
class ProofResponse:
    success: bool
    message: str
    proof_hex: str = ""
    public_inputs: List[str] = field(default_factory=list)

    @classmethod
    def from_artifact(cls, artifact: ProofArtifact) -> 'ProofResponse':
        return cls(success=True,
                   message=SUCCESS_MESSAGE,
                   proof_hex=artifact.proof_hex,
                   public_inputs=artifact.public_inputs_list)

    @classmethod
    def from_error(cls, error: ZKError) -> 'ProofResponse':
        return cls(success=False, message=_single_line(error.client_message))

    @classmethod
    def internal_error(cls) -> 'ProofResponse':
        return cls(success=False, message=INTERNAL_ERROR_MESSAGE)

    def render(self) -> str:
        lines = [
            "=== PROOF RESPONSE ===",
            f"Success: {'true' if self.success else 'false'}",
            f"Message: {self.message}",
        ]
        if self.success:
            lines.append(f"Proof: {self.proof_hex}")
            lines.append(
                f"Public Inputs: {json.dumps(self.public_inputs, separators=(',', ':'))}")
        return "\n".join(lines) + "\n"


def _single_line(text: str) -> str:
    # Tool diagnostics are multi-line; the protocol has one Message line
    return " | ".join(part.strip() for part in text.splitlines() if part.strip())
