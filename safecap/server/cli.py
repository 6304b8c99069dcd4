"""
Command-line interface for the SafeCap server.
"""

import argparse
import logging
import sys

from .. import __version__


def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="safecap-server",
        description="SafeCap API - campaigns and agent orchestration",
    )

    parser.add_argument(
        "--host",
        default=None,
        help="Host to bind to (default: SAFECAP_HOST or 0.0.0.0)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: SAFECAP_PORT or 8000)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: SAFECAP_LOG_LEVEL or info)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    args = parser.parse_args()

    from .app import SafeCapServer
    from .config import ServerConfig

    config = ServerConfig.from_env()
    if args.host:
        config.host = args.host
    if args.port:
        config.port = args.port
    if args.log_level:
        config.log_level = args.log_level
    if args.debug:
        config.debug = True
        config.log_level = "debug"

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print(f"""
SafeCap API v{__version__}
  Environment:   {config.environment}
  Host:          {config.host}
  Port:          {config.port}
  Agent backend: {config.agent_api_url}

API Documentation: http://{config.host}:{config.port}/docs

Press Ctrl+C to stop the server.
""")

    try:
        server = SafeCapServer(host=config.host, port=config.port, config=config)
        server.run()
    except KeyboardInterrupt:
        print("\nServer stopped.")
        sys.exit(0)


if __name__ == "__main__":
    main()
