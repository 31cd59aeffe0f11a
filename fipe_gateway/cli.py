"""Command-line interface for FIPE Gateway."""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict

from fipe_gateway import __version__
from fipe_gateway.core.config import deep_merge, env_overrides
from fipe_gateway.core.service import GatewayService


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load configuration from JSON file."""
    try:
        with open(config_path, "r") as f:
            return json.load(f)
    except FileNotFoundError:
        print(f"Error: Configuration file not found: {config_path}")
        sys.exit(1)
    except json.JSONDecodeError as e:
        print(f"Error: Invalid JSON in configuration file: {e}")
        sys.exit(1)


def create_default_config() -> Dict[str, Any]:
    """Create a default configuration with a file-backed cache."""
    return {
        "server": {"host": "127.0.0.1", "port": 8080},
        "upstream": {"base_url": "https://fipe.parallelum.com.br/api/v2", "token": None, "timeout": 5},
        "quota": {"daily_limit": 500, "timezone": "America/Sao_Paulo"},
        "cache": {"database_path": "fipe_cache.db", "default_ttl_seconds": 86400},
        "logging": {"level": "INFO"},
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fipe-gateway",
        description="FIPE Gateway - cached, quota-limited access to the FIPE vehicle pricing API",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  fipe-gateway --config config.json               # Start with config file
  fipe-gateway --port 9090 --host 0.0.0.0         # Custom host/port
  fipe-gateway --generate-config                  # Generate default config
  fipe-gateway --config config.json --usage-stats # Print today's quota usage

Environment:
  FIPE_API_TOKEN, FIPE_BASE_URL, FIPE_RATE_LIMIT_PER_DAY, FIPE_CACHE_TTL,
  FIPE_DB_PATH and FIPE_LOG_LEVEL override the configuration file.
  Command-line flags override both.
        """,
    )
    parser.add_argument("--config", "-c", type=Path, help="Path to configuration JSON file")
    parser.add_argument("--host", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", type=int, help="Port to bind to (default: 8080)")
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Set logging level (default: INFO)",
    )
    parser.add_argument("--generate-config", action="store_true", help="Generate a default configuration file and exit")
    parser.add_argument("--usage-stats", action="store_true", help="Print today's upstream usage as JSON and exit")
    parser.add_argument("--clear-cache", action="store_true", help="Remove every cached answer and exit")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def resolve_config(args: argparse.Namespace) -> Dict[str, Any]:
    """Configuration file, then FIPE_* environment variables, then CLI flags."""
    if args.config:
        config = load_config(args.config)
    else:
        config = create_default_config()
    config = deep_merge(config, env_overrides())

    flags: Dict[str, Any] = {}
    if args.host:
        flags.setdefault("server", {})["host"] = args.host
    if args.port is not None:
        flags.setdefault("server", {})["port"] = args.port
    if args.log_level:
        flags.setdefault("logging", {})["level"] = args.log_level
    return deep_merge(config, flags)


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        config_file = Path("fipe_gateway_config.json")
        with open(config_file, "w") as f:
            json.dump(create_default_config(), f, indent=2)
        print(f"Generated default configuration: {config_file}")
        return

    try:
        config = resolve_config(args)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)
    if not args.config:
        print("Using default configuration. Use --generate-config to create a config file.")

    try:
        service = GatewayService(config)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.usage_stats or args.clear_cache:
        if args.clear_cache:
            print(json.dumps(service.gateway.clear_cache(), indent=2))
        if args.usage_stats:
            print(json.dumps(service.gateway.get_usage_stats(), indent=2))
        service.stop()
        return

    host = service.config["server"]["host"]
    port = service.config["server"]["port"]
    try:
        print(f"Starting FIPE Gateway on {host}:{port}")
        if not service.config["upstream"].get("token"):
            print("Warning: no upstream token configured (set FIPE_API_TOKEN)")
        print("\nPress Ctrl+C to stop")
        sys.stdout.flush()
        service.start(blocking=True)
    except KeyboardInterrupt:
        print("\nShutting down...")
        service.stop()
    except OSError as e:
        print(f"Error binding to {host}:{port}: {e}")
        if "Address already in use" in str(e):
            print(f"Port {port} is already in use. Try a different port with --port option.")
        elif "Permission denied" in str(e):
            print(f"Permission denied to bind to {host}:{port}. Try using a port above 1024.")
        service.stop()
        sys.exit(1)


if __name__ == "__main__":
    main()
