class ZKError(Exception):
    """Base exception for proof pipeline operations"""

    client_message = "Internal error while preparing the proof"


class ToolchainError(ZKError):
    """External tools or the compiled circuit are unavailable (fatal at startup)"""
    pass


class WorkspaceError(ZKError):
    """Per-request workspace could not be created or used"""
    pass


class WitnessGenerationFailed(ZKError):
    """Circuit rejected the inputs or the witness tool failed"""

    def __init__(self, stderr_excerpt: str):
        super().__init__(f"Witness generation failed: {stderr_excerpt}")
        self.stderr_excerpt = stderr_excerpt

    @property
    def client_message(self) -> str:
        return ("Circuit execution failed. The inputs don't satisfy the constraints: "
                f"{self.stderr_excerpt}")


class ProofGenerationFailed(ZKError):
    """Proving backend failed"""

    def __init__(self, stderr_excerpt: str):
        super().__init__(f"Proof generation failed: {stderr_excerpt}")
        self.stderr_excerpt = stderr_excerpt

    @property
    def client_message(self) -> str:
        return f"Proof generation failed: {self.stderr_excerpt}"


class ArtifactMissing(ProofGenerationFailed):
    """Prover reported success but an expected output file is absent"""

    def __init__(self, path):
        self.path = path
        super().__init__(f"expected artifact {path} was not produced")

    @property
    def client_message(self) -> str:
        return f"Proof artifact missing: {self.path.name}"


class ArtifactMalformed(ProofGenerationFailed):
    """Output file exists but cannot be decoded"""

    def __init__(self, path, detail: str):
        self.path = path
        self.detail = detail
        super().__init__(f"artifact {path} is malformed: {detail}")

    @property
    def client_message(self) -> str:
        return f"Proof artifact malformed: {self.path.name}: {self.detail}"


class StepTimeout(ZKError):
    """External step exceeded its time bound and was killed"""

    def __init__(self, step: str, timeout: float):
        super().__init__(f"{step} exceeded {timeout:g}s")
        self.step = step
        self.timeout = timeout

    @property
    def client_message(self) -> str:
        return f"Timed out during {self.step} after {self.timeout:g}s"
