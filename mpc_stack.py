"""
MPC stack entry point.
Loads configuration and serves the simulator bridge.
"""

import sys
from pathlib import Path
from typing import Optional
import logging
import yaml

# Add paths
sys.path.insert(0, str(Path(__file__).parent))

from bridge.server import run_server

# Configure logging
# Ensure tmp/logs directory exists
log_dir = Path(__file__).parent / 'tmp' / 'logs'
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / 'mpc_stack.log'

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(str(log_file))
    ]
)
logger = logging.getLogger(__name__)


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML file or use defaults."""
    if config_path is None:
        config_path = Path(__file__).parent / "config" / "mpc_stack_config.yaml"
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    else:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}


def apply_overrides(config: dict, port: Optional[int] = None, host: Optional[str] = None,
                    latency_ms: Optional[float] = None,
                    optimizer_scope: Optional[str] = None) -> dict:
    """Apply command line overrides on top of the loaded config."""
    if port is not None:
        config.setdefault('server', {})['port'] = int(port)
    if host is not None:
        config.setdefault('server', {})['host'] = host
    if latency_ms is not None:
        config.setdefault('latency', {})['actuation_latency_ms'] = float(latency_ms)
    if optimizer_scope is not None:
        config.setdefault('mpc', {})['optimizer_scope'] = optimizer_scope
    return config


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Run MPC bridge for the driving simulator')
    parser.add_argument('--config', type=str, default=None,
                       help='Path to configuration YAML file (default: config/mpc_stack_config.yaml)')
    parser.add_argument('--host', type=str, default=None,
                       help='Interface to listen on')
    parser.add_argument('--port', type=int, default=None,
                       help='Port to listen on (default: 4567)')
    parser.add_argument('--latency-ms', type=float, default=None,
                       help='Actuation latency in milliseconds (default: 100)')
    parser.add_argument('--optimizer-scope', choices=['session', 'shared'], default=None,
                       help='One optimizer per connection, or one shared by all')

    args = parser.parse_args()
    if args.latency_ms is not None and args.latency_ms < 0:
        parser.error("--latency-ms must be >= 0")

    config = apply_overrides(
        load_config(args.config),
        port=args.port,
        host=args.host,
        latency_ms=args.latency_ms,
        optimizer_scope=args.optimizer_scope,
    )
    run_server(config)


if __name__ == "__main__":
    main()
