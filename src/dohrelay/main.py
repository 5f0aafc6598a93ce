from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, List

import uvicorn

from .config.config_parser import Settings, load_settings, parse_config_file
from .config.logging_config import init_logging
from .servers.doh_api import create_app_from_settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Caching DNS-over-HTTPS proxy that races upstream providers"
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to YAML config (built-in defaults when omitted)",
    )
    parser.add_argument("--host", default=None, help="Override listen.host")
    parser.add_argument("--port", type=int, default=None, help="Override listen.port")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override logging.level (debug, info, warn, error, crit)",
    )
    parser.add_argument(
        "--unknown-keys",
        choices=["ignore", "warn", "error"],
        default="warn",
        help="How to treat config keys the schema does not describe",
    )
    return parser


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    """Brief: Return settings with CLI overrides applied (CLI wins over file)."""

    listen = settings.listen.model_copy(
        update={
            k: v
            for k, v in (("host", args.host), ("port", args.port))
            if v is not None
        }
    )
    log_cfg: Dict[str, Any] = dict(settings.logging)
    if args.log_level:
        log_cfg["level"] = args.log_level
    return settings.model_copy(update={"listen": listen, "logging": log_cfg})


def main(argv: List[str] | None = None) -> int:
    """
    Main entry point for the DoH proxy.
    Parses arguments, loads configuration, builds the application, and serves it.

    Args:
        argv: Command-line arguments.

    Returns:
        An exit code.

    Example use:
        CLI:
            dohrelay --config config/config.yaml
            PYTHONPATH=src python -m dohrelay.main --port 8053
    """
    args = _build_parser().parse_args(argv)

    cfg: Dict[str, Any] = {}
    try:
        if args.config:
            cfg = parse_config_file(args.config, unknown_keys=args.unknown_keys)
        settings = _apply_overrides(load_settings(cfg), args)
    except (OSError, ValueError) as exc:
        print(str(exc))
        return 1

    # Initialize logging before any other operations
    init_logging(settings.logging)
    logger = logging.getLogger("dohrelay.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)

    app = create_app_from_settings(settings)
    logger.info(
        "Serving DoH on http://%s:%d%s",
        settings.listen.host,
        settings.listen.port,
        settings.listen.path,
    )
    try:
        # log_config=None keeps the handlers installed by init_logging().
        uvicorn.run(
            app,
            host=settings.listen.host,
            port=settings.listen.port,
            log_config=None,
        )
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
