#!/usr/bin/env python3
"""
ZK Insurance Verifier TCP server.

Clients send an age and a BMI (multiplied by 10); the server proves with
nargo + bb that both lie in the accepted ranges and returns the proof and
its public inputs. Connect with ``nc 127.0.0.1 8080``.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from config.config import SystemConfig, load_config, save_config
from server.listener import BindError, ProofServer
from utils.utils import create_performance_report, setup_logging
from zk.backends import verify_toolchain
from zk.errors import ToolchainError, WorkspaceError

logger = logging.getLogger(__name__)


async def run_server(config: SystemConfig):
    server = ProofServer.from_config(config)
    await server.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    print(f"Connect using: nc 127.0.0.1 {server.port}")
    print("Requirements:")
    print(f"  - Valid age range: {config.limits.min_age}-{config.limits.max_age}")
    print(f"  - Valid BMI range (multiplied by 10): "
          f"{config.limits.min_bmi}-{config.limits.max_bmi}")

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down")
        await server.close()
        logger.info(create_performance_report(server.monitor))


def main():
    parser = argparse.ArgumentParser(
        description='ZK Insurance Verifier proof server')
    parser.add_argument('--config', type=str,
                        default='config.yaml', help='Config file path')
    parser.add_argument('--port', type=int, default=None,
                        help='Listen port (overrides config)')
    parser.add_argument('--log-level', type=str, default=None,
                        help='Logging level (overrides config)')
    parser.add_argument('--dump-config', type=str, default=None,
                        metavar='PATH',
                        help='Write the effective configuration to PATH and exit')

    args = parser.parse_args()

    config = load_config(Path(args.config))
    if args.port is not None:
        config.server.port = args.port
    if args.log_level is not None:
        config.log_level = args.log_level

    if args.dump_config:
        save_config(config, Path(args.dump_config))
        print(f"Configuration written to {args.dump_config}")
        sys.exit(0)

    setup_logging(config.log_level,
                  log_dir=config.log_dir if config.log_to_file else None)

    try:
        tools = verify_toolchain(config.prover)
    except ToolchainError as e:
        logger.critical(f"Startup aborted: {e}")
        sys.exit(1)
    logger.info(f"Toolchain: {tools}")

    try:
        asyncio.run(run_server(config))
    except BindError as e:
        logger.critical(str(e))
        sys.exit(1)
    except WorkspaceError as e:
        logger.critical(f"Startup aborted: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
