"""Command-line interface for Test Traffic Buddy."""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, Dict

from traffic_buddy.core.config import LOG_LEVEL_ENV, ConfigurationManager, load_config_file
from traffic_buddy.core.errors import ConfigurationError
from traffic_buddy.profiles.manager import SUITES, available_environments, describe_profile, detect_environment
from traffic_buddy.utils.logger import configure_logging


def load_config(config_path: Path) -> Dict[str, Any]:
    """Load a policy table from a JSON file, exiting on error."""
    try:
        return load_config_file(config_path)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)


def create_default_config() -> Dict[str, Any]:
    """Create a default policy table for the detected environment."""
    log_level = os.environ.get(LOG_LEVEL_ENV, "INFO")

    return {
        "environment": detect_environment(),
        "suite": None,
        "endpoints": [
            {
                "pattern": "/api/cities",
                "max_requests_per_window": 200,
                "window_ms": 3600000,
                "burst_limit": 10,
                "cooldown_ms": 5000,
                "priority": "medium",
                "cache_ttl_ms": 300000,
                "mocking_required": False,
            }
        ],
        "cache": {"sweep_interval_seconds": 300},
        "retry": {"max_delay_seconds": 30, "jitter": 0.0},
        "logging": {"level": log_level},
    }


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Test Traffic Buddy - admission control for test traffic",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  traffic-buddy --show-profile                          # Profile for the detected environment
  traffic-buddy --environment ci --suite api-testing    # Profile for a CI API suite
  traffic-buddy --config limits.json --validate         # Check a policy table
  traffic-buddy --generate-config                       # Write a default policy table

Environment:
  The environment is detected from TRAFFIC_BUDDY_ENV, TEST_TYPE=load,
  TEST_ENVIRONMENT=production and CI=true, in that order.
        """,
    )

    parser.add_argument("--config", "-c", type=Path, help="Path to policy table JSON file")

    parser.add_argument("--environment", "-e", help="Environment profile (overrides detection and config)")

    parser.add_argument("--suite", "-s", help=f"Test suite overlay ({', '.join(sorted(SUITES))})")

    parser.add_argument("--show-profile", action="store_true", help="Print the resolved profile and exit")

    parser.add_argument("--validate", action="store_true", help="Validate the configuration and exit")

    parser.add_argument("--list-environments", action="store_true", help="List known environments and exit")

    parser.add_argument("--generate-config", action="store_true", help="Generate a default policy table and exit")

    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Set logging level (default: from configuration)",
    )

    parser.add_argument("--version", action="version", version="%(prog)s 0.1.0")

    args = parser.parse_args(argv)

    if args.generate_config:
        config = create_default_config()
        config_file = Path("traffic_buddy_config.json")
        with open(config_file, "w") as f:
            json.dump(config, f, indent=2)
        print(f"Generated default configuration: {config_file}")
        return

    if args.list_environments:
        for name in available_environments():
            print(name)
        return

    config = load_config(args.config) if args.config else {}

    # Override with CLI arguments
    if args.environment:
        config["environment"] = args.environment
    if args.suite:
        config["suite"] = args.suite
    if args.log_level:
        config.setdefault("logging", {})["level"] = args.log_level

    try:
        manager = ConfigurationManager(config)
        configure_logging(manager.config["logging"])
        profile = manager.build_profile()
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        for error in e.errors:
            print(f"  - {error}")
        sys.exit(1)

    if args.validate:
        print(f"Configuration is valid ({profile.name} environment)")
        return

    print(describe_profile(profile))
    sys.stdout.flush()


if __name__ == "__main__":
    main()
