"""Command-line entry point: ``moltbot-relay --config relay.yaml``."""

import argparse
import sys

from moltbot_relay.exceptions import ConfigError
from moltbot_relay.service import RelayService


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Moltbot WebSocket relay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  moltbot-relay                       # Local sandbox, default settings
  moltbot-relay --config relay.yaml   # Settings from a YAML or JSON file
        """,
    )
    parser.add_argument("--config", help="Path to a YAML or JSON config file")
    parser.add_argument("--host", help="Host to bind to (overrides config)")
    parser.add_argument("--port", type=int, help="Port to bind to (overrides config)")

    args = parser.parse_args(argv)

    try:
        if args.config:
            service = RelayService.from_config(args.config)
        else:
            service = RelayService.from_dict({})
    except (ConfigError, OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    service.serve(host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    sys.exit(main())
