"""VoxRelay CLI entry point.

Usage:
    voxrelay run --config relay.yaml
    voxrelay init [--output relay.yaml]
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger


def cmd_run(args: argparse.Namespace) -> None:
    """Run the VoxRelay server."""
    config_path = args.config

    if not Path(config_path).exists():
        logger.error(f"Config file not found: {config_path}")
        sys.exit(1)

    from voxrelay.config import load_config

    config = load_config(config_path)

    # Configure logging
    logger.remove()
    logger.add(sys.stderr, level=config.logging.level)

    logger.info(f"VoxRelay starting with config: {config_path}")
    logger.info(
        f"Listening on: {config.telephony.listen_host}:{config.telephony.listen_port}"
        f"{config.telephony.listen_path}"
    )
    logger.info(f"Voice: {config.voice.url} model={config.voice.model} schema={config.voice.schema_version}")

    from voxrelay.server import _fastapi_available

    if _fastapi_available():
        from voxrelay.server import run_server
        run_server(config)
    else:
        # FastAPI not installed, use the plain WebSocket server
        from voxrelay.bridge import VoxRelay
        VoxRelay(config).run()


def cmd_init(args: argparse.Namespace) -> None:
    """Generate a starter configuration file."""
    output = Path(args.output)

    if output.exists() and not args.force:
        logger.error(f"File already exists: {output}. Use --force to overwrite.")
        sys.exit(1)

    from voxrelay.config import DEFAULT_CONFIG_YAML

    output.write_text(DEFAULT_CONFIG_YAML)
    print(f"Configuration written to: {output}")
    print(f"\nSet OPENAI_API_KEY and run: voxrelay run --config {output}")


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="voxrelay",
        description="VoxRelay - Telephony to realtime voice relay",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # `voxrelay run`
    run_parser = subparsers.add_parser("run", help="Run the VoxRelay server")
    run_parser.add_argument(
        "--config", "-c",
        default="relay.yaml",
        help="Path to the relay YAML config file (default: relay.yaml)",
    )

    # `voxrelay init`
    init_parser = subparsers.add_parser("init", help="Generate a starter config file")
    init_parser.add_argument(
        "--output", "-o",
        default="relay.yaml",
        help="Output file path (default: relay.yaml)",
    )
    init_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Overwrite existing file",
    )

    args = parser.parse_args(argv)

    if args.command == "run":
        cmd_run(args)
    elif args.command == "init":
        cmd_init(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
