import logging
import os
import shlex
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

logger = logging.getLogger(__name__)


def _default_circuit_dir() -> Path:
    # Container image ships the circuit at /app; local checkouts keep it beside the server
    docker_path = Path("/app/noir-circuit")
    if docker_path.exists():
        return docker_path
    return Path("../noir-circuit")


def _as_command(value: Union[str, List[str]]) -> List[str]:
    if isinstance(value, str):
        return shlex.split(value)
    return [str(part) for part in value]


@dataclass
class InputLimits:
    """Inclusive bounds accepted by the protocol and written into Prover.toml"""
    min_age: int = 10
    max_age: int = 25
    min_bmi: int = 185
    max_bmi: int = 249


@dataclass
class ServerConfig:
    host: str = "0.0.0.0"
    port: int = 8080
    max_input_attempts: int = 3
    read_timeout: float = 120.0
    max_line_bytes: int = 1024
    max_concurrent_proofs: int = field(
        default_factory=lambda: os.cpu_count() or 1)
    abort_on_disconnect: bool = True


@dataclass
class ProverConfig:
    circuit_name: str = "insurance_verifier"
    circuit_dir: Path = field(default_factory=_default_circuit_dir)
    workspace_root: Path = field(default_factory=lambda: Path(
        tempfile.gettempdir()) / "zk-insurance-workspaces")

    nargo_command: List[str] = field(default_factory=lambda: ["nargo"])
    bb_command: List[str] = field(default_factory=lambda: ["bb"])
    oracle_hash: str = "keccak"
    output_format: str = "bytes_and_fields"

    # Proving legitimately takes far longer than witness generation
    witness_timeout: float = 30.0
    prove_timeout: float = 120.0

    stderr_excerpt_chars: int = 500
    public_input_names: List[str] = field(default_factory=lambda: [
        "min_age", "max_age", "min_bmi", "max_bmi"])

    def __post_init__(self):
        self.circuit_dir = Path(self.circuit_dir)
        self.workspace_root = Path(self.workspace_root)
        self.nargo_command = _as_command(self.nargo_command)
        self.bb_command = _as_command(self.bb_command)

    @property
    def compiled_circuit(self) -> Path:
        return self.circuit_dir / "target" / f"{self.circuit_name}.json"


@dataclass
class SystemConfig:
    server: ServerConfig = field(default_factory=ServerConfig)
    prover: ProverConfig = field(default_factory=ProverConfig)
    limits: InputLimits = field(default_factory=InputLimits)

    log_dir: Path = field(default_factory=lambda: Path("logs"))
    log_level: str = "INFO"
    log_to_file: bool = True
    enable_debug_mode: bool = False

    def __post_init__(self):
        self.log_dir = Path(self.log_dir)
        if self.enable_debug_mode:
            self.log_level = "DEBUG"


def _build_config(config_data: Dict[str, Any]) -> SystemConfig:
    server_data = config_data.get('server') or {}
    defaults = ServerConfig()
    server = ServerConfig(
        host=server_data.get('host', defaults.host),
        port=int(server_data.get('port', defaults.port)),
        max_input_attempts=int(server_data.get(
            'max_input_attempts', defaults.max_input_attempts)),
        read_timeout=float(server_data.get(
            'read_timeout', defaults.read_timeout)),
        max_line_bytes=int(server_data.get(
            'max_line_bytes', defaults.max_line_bytes)),
        max_concurrent_proofs=int(server_data.get(
            'max_concurrent_proofs', defaults.max_concurrent_proofs)),
        abort_on_disconnect=bool(server_data.get(
            'abort_on_disconnect', defaults.abort_on_disconnect))
    )

    prover_data = config_data.get('prover') or {}
    defaults = ProverConfig()
    prover = ProverConfig(
        circuit_name=prover_data.get('circuit_name', defaults.circuit_name),
        circuit_dir=Path(prover_data.get(
            'circuit_dir', defaults.circuit_dir)),
        workspace_root=Path(prover_data.get(
            'workspace_root', defaults.workspace_root)),
        nargo_command=prover_data.get(
            'nargo_command', defaults.nargo_command),
        bb_command=prover_data.get('bb_command', defaults.bb_command),
        oracle_hash=prover_data.get('oracle_hash', defaults.oracle_hash),
        output_format=prover_data.get(
            'output_format', defaults.output_format),
        witness_timeout=float(prover_data.get(
            'witness_timeout', defaults.witness_timeout)),
        prove_timeout=float(prover_data.get(
            'prove_timeout', defaults.prove_timeout)),
        stderr_excerpt_chars=int(prover_data.get(
            'stderr_excerpt_chars', defaults.stderr_excerpt_chars)),
        public_input_names=list(prover_data.get(
            'public_input_names', defaults.public_input_names))
    )

    limits_data = config_data.get('limits') or {}
    defaults = InputLimits()
    limits = InputLimits(
        min_age=int(limits_data.get('min_age', defaults.min_age)),
        max_age=int(limits_data.get('max_age', defaults.max_age)),
        min_bmi=int(limits_data.get('min_bmi', defaults.min_bmi)),
        max_bmi=int(limits_data.get('max_bmi', defaults.max_bmi))
    )

    return SystemConfig(
        server=server,
        prover=prover,
        limits=limits,
        log_dir=Path(config_data.get('log_dir', 'logs')),
        log_level=config_data.get('log_level', 'INFO'),
        log_to_file=bool(config_data.get('log_to_file', True)),
        enable_debug_mode=bool(config_data.get('enable_debug_mode', False))
    )


def load_config(config_path: Optional[Path] = None) -> SystemConfig:
    """Load configuration from file or return default"""
    if config_path is None:
        config_path = Path("config.yaml")

    if config_path.exists():
        try:
            with open(config_path, 'r') as f:
                config_data = yaml.safe_load(f) or {}
            return _build_config(config_data)
        except (OSError, yaml.YAMLError, TypeError, ValueError, AttributeError) as e:
            logger.warning(
                f"Could not load config file {config_path}: {e}; using default configuration")

    return SystemConfig()


def save_config(config: SystemConfig, config_path: Optional[Path] = None):
    """Save configuration to YAML file"""
    if config_path is None:
        config_path = Path("config.yaml")

    config_data = {
        'server': {
            'host': config.server.host,
            'port': config.server.port,
            'max_input_attempts': config.server.max_input_attempts,
            'read_timeout': config.server.read_timeout,
            'max_line_bytes': config.server.max_line_bytes,
            'max_concurrent_proofs': config.server.max_concurrent_proofs,
            'abort_on_disconnect': config.server.abort_on_disconnect
        },
        'prover': {
            'circuit_name': config.prover.circuit_name,
            'circuit_dir': str(config.prover.circuit_dir),
            'workspace_root': str(config.prover.workspace_root),
            'nargo_command': list(config.prover.nargo_command),
            'bb_command': list(config.prover.bb_command),
            'oracle_hash': config.prover.oracle_hash,
            'output_format': config.prover.output_format,
            'witness_timeout': config.prover.witness_timeout,
            'prove_timeout': config.prover.prove_timeout,
            'stderr_excerpt_chars': config.prover.stderr_excerpt_chars,
            'public_input_names': list(config.prover.public_input_names)
        },
        'limits': {
            'min_age': config.limits.min_age,
            'max_age': config.limits.max_age,
            'min_bmi': config.limits.min_bmi,
            'max_bmi': config.limits.max_bmi
        },
        'log_dir': str(config.log_dir),
        'log_level': config.log_level,
        'log_to_file': config.log_to_file,
        'enable_debug_mode': config.enable_debug_mode
    }

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, 'w') as f:
        yaml.dump(config_data, f, default_flow_style=False)
