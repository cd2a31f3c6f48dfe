"""Configuration management for the proof server."""

from .config import (
    SystemConfig,
    ServerConfig,
    ProverConfig,
    InputLimits,
    load_config,
    save_config
)

__all__ = ['SystemConfig', 'ServerConfig', 'ProverConfig',
           'InputLimits', 'load_config', 'save_config']
