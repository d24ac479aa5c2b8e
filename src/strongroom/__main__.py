# Main Entry Point
#
#   python -m strongroom            serve the API (default)
#   python -m strongroom cleanup    run one audit retention sweep now
#   python -m strongroom status     encryption availability + settings

import argparse
import json
import logging
import sys

from . import __version__
from .config import AppConfig
from .core.exceptions import VaultError

logger = logging.getLogger(__name__)


def _cmd_serve(config: AppConfig, args) -> int:
    from .api.main import start_api_server

    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    try:
        start_api_server(config)
    except KeyboardInterrupt:
        logger.info("Shutting down (user interrupt)")
    return 0


def _cmd_cleanup(config: AppConfig, args) -> int:
    from .services import build_services

    services = build_services(config)
    try:
        report = services.retention.run_now()
    except VaultError as exc:
        print(f"Retention sweep failed: {exc.message}", file=sys.stderr)
        return 1
    print(json.dumps(report.to_dict(), indent=2))
    return 0


def _cmd_status(config: AppConfig, args) -> int:
    from .services import build_services

    services = build_services(config)
    status = services.effective_settings()
    status["audit"] = services.audit_log.stats()
    print(json.dumps(status, indent=2))
    return 0 if status["encryption_available"] else 2


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="strongroom",
        description="Strongroom - encrypted credential vault",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"Strongroom v{__version__}",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the API server (default)")
    serve.add_argument("--host", default=None, help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: 8000)")
    sub.add_parser("cleanup", help="Prune audit entries past the retention window")
    sub.add_parser("status", help="Show encryption availability and settings")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = AppConfig.from_env()
    command = args.command or "serve"
    if command == "serve" and not hasattr(args, "host"):
        args.host = None
        args.port = None

    handlers = {
        "serve": _cmd_serve,
        "cleanup": _cmd_cleanup,
        "status": _cmd_status,
    }
    return handlers[command](config, args)


if __name__ == "__main__":
    sys.exit(main())
