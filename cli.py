#!/usr/bin/env python3
"""
Command-line entry point for the mailbox policy engine.

Usage:
    python cli.py run --config imap-filter.yml
    python cli.py run --dry-run
    python cli.py filters
    python cli.py states
    python cli.py check
    python cli.py health
    python cli.py sample-config --output ~/.config/imap-filter/imap-filter.yml

Environment:
    IMAP_DOMAIN, IMAP_USERNAME, IMAP_PASSWORD      connection settings
    IMAP_FILTER_CONFIG                             config file path
    IMAP_FILTER_DRY_RUN, IMAP_FILTER_LOG_LEVEL     run options
    IMAP_PASSWORD_OP_REF or OP_ITEM/OP_FIELD       1Password password lookup
"""

import argparse
import logging
import sys
import time
from pathlib import Path

from core.config import Config, create_sample_config, load_config
from core.errors import (
    AuthenticationError,
    ConfigError,
    QueryValidationError,
    SessionConnectionError,
)
from core.models import ProcessingResult
from core.query import validate_query
from core.runner import PolicyRunner, RunReport
from core.state import CheckpointStore

# Logging setup
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s',
)
logger = logging.getLogger(__name__)


def build_config(args: argparse.Namespace) -> Config:
    """
    Load configuration and apply CLI overrides on top.

    Raises:
        ConfigError: If the config file is missing or invalid
    """
    config = load_config(getattr(args, "config", None))

    if getattr(args, "imap_domain", None):
        config.imap_domain = args.imap_domain
    if getattr(args, "imap_username", None):
        config.imap_username = args.imap_username
    if getattr(args, "imap_password", None):
        config.imap_password = args.imap_password  # allow-secret
    if getattr(args, "dry_run", False):
        config.dry_run = True

    if not args.verbose:
        level = getattr(logging, str(config.log_level).upper(), None)
        if isinstance(level, int):
            logging.getLogger().setLevel(level)
        else:
            logger.warning(f"Unknown log level '{config.log_level}', keeping INFO")

    return config


def open_session(config: Config):
    """Create an (unconnected) IMAP session from the configuration."""
    from providers.imap import IMAPSession

    host, user, password = config.credentials()  # allow-secret
    return IMAPSession(
        host=host,
        user=user,
        password=password,  # allow-secret
        port=config.imap_port,
        mailbox=config.mailbox,
    )


def print_stats(title: str, result: ProcessingResult) -> None:
    """Print processing statistics."""
    print("\n" + "=" * 50)
    print(title)
    print("=" * 50)
    print(f"Total Processed: {result.processed_count}")
    print(f"Matched: {result.matched_count}")
    print(f"Skipped: {result.skipped_count}")
    print(f"Successful: {result.success_count}")
    print(f"Dry Run: {result.dry_run_count}")
    print(f"Errors: {result.error_count}")
    if result.rule_counts:
        print("\nRule Distribution:")
        sorted_stats = sorted(result.rule_counts.items(), key=lambda x: x[1], reverse=True)
        for rule, count in sorted_stats:
            print(f"  {rule:<30}: {count}")
    if result.errors:
        print(f"\nErrors ({len(result.errors)}):")
        for err in result.errors[:10]:
            print(f"  - {err}")
        if len(result.errors) > 10:
            print(f"  ... and {len(result.errors) - 10} more")
    print("=" * 50 + "\n")


def print_report(report: RunReport, ran_filters: bool, ran_states: bool) -> None:
    if ran_filters:
        print_stats("FILTER STATISTICS", report.filters)
        if report.checkpoint is not None:
            print(f"Checkpoint advanced to UID {report.checkpoint}\n")
    if ran_states:
        print_stats("RETENTION STATISTICS", report.states)


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' subcommand."""
    config = build_config(args)
    if args.skip_filters and args.skip_states:
        logger.warning("Both --skip-filters and --skip-states given; nothing to do")
        return 0

    checkpoint = CheckpointStore(config.checkpoint_file) if config.incremental else None
    session = open_session(config)

    logger.info(
        f"Starting pass: {len(config.filters)} filters, {len(config.states)} states, "
        f"dry run: {config.dry_run}"
    )
    start_time = time.time()

    with session:
        runner = PolicyRunner(
            session,
            filters=config.filters,
            states=config.states,
            dry_run=config.dry_run,
            inbox_label=config.inbox_label,
            label_cache=config.label_cache,
            checkpoint=checkpoint,
            states_mailbox=config.states_mailbox,
            mailbox=config.mailbox,
        )
        report = runner.run(filters=not args.skip_filters, states=not args.skip_states)

    logger.info(f"Pass finished in {time.time() - start_time:.1f}s")
    print_report(report, not args.skip_filters, not args.skip_states)

    if args.strict and report.total.error_count:
        return 1
    return 0


def cmd_filters(args: argparse.Namespace) -> int:
    """Handle the 'filters' subcommand."""
    config = build_config(args)
    if not config.filters:
        print("No filters configured")
        return 0

    print(f"# Filters ({len(config.filters)})")
    for message_filter in config.filters:
        print(message_filter.describe())
    return 0


def cmd_states(args: argparse.Namespace) -> int:
    """Handle the 'states' subcommand."""
    config = build_config(args)
    if not config.states:
        print("No states configured")
        return 0

    print(f"# States ({len(config.states)})")
    for state in config.states:
        print(state.describe())
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    """Handle the 'check' subcommand."""
    config = build_config(args)
    source = config.source or "defaults"
    print(f"Config: {source}")
    print(f"Filters: {len(config.filters)}, States: {len(config.states)}")

    failures = 0
    for state in config.states:
        try:
            validate_query(state.query)
            print(f"✓ {state.name}: {state.query}")
        except QueryValidationError as e:
            failures += 1
            print(f"✗ {state.name}: {e}")

    return 0 if failures == 0 else 1


def cmd_health(args: argparse.Namespace) -> int:
    """Handle the 'health' subcommand."""
    config = build_config(args)
    session = open_session(config)

    print(f"Checking {session.name} health on {session.host}...")
    try:
        session.connect()
        healthy, message = session.health_check()
    finally:
        session.disconnect()

    if healthy:
        print(f"✓ {session.name}: {message}")
        return 0
    print(f"✗ {session.name}: {message}")
    return 1


def cmd_sample_config(args: argparse.Namespace) -> int:
    """Handle the 'sample-config' subcommand."""
    sample = create_sample_config(args.output)
    if args.output:
        print(f"Sample config written to {args.output}")
    else:
        print(sample)
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Gmail-over-IMAP filter and retention engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run
  %(prog)s run --config ./imap-filter.yml --dry-run
  %(prog)s run --skip-filters --strict
  %(prog)s states
  %(prog)s check
  %(prog)s health -d imap.gmail.com -u me@example.org
  %(prog)s sample-config --output ~/.config/imap-filter/imap-filter.yml
        """,
    )

    # Global options
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )

    # Config options (shared across subcommands)
    config_group = argparse.ArgumentParser(add_help=False)
    config_group.add_argument(
        "--config", "-c",
        type=Path,
        help="Config file (default: $IMAP_FILTER_CONFIG or ~/.config/imap-filter/imap-filter.yml)",
    )

    # Connection options (shared across networked subcommands)
    connection_group = argparse.ArgumentParser(add_help=False)
    connection_group.add_argument(
        "--imap-domain", "-d",
        help="IMAP server (overrides IMAP_DOMAIN)",
    )
    connection_group.add_argument(
        "--imap-username", "-u",
        help="IMAP username (overrides IMAP_USERNAME)",
    )
    connection_group.add_argument(
        "--imap-password", "-p",
        help="IMAP password (overrides IMAP_PASSWORD)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser(
        "run",
        parents=[config_group, connection_group],
        help="Run filters, then retention states",
    )
    run_parser.add_argument(
        "--dry-run", "-n",
        action="store_true",
        help="Don't actually apply changes",
    )
    run_parser.add_argument(
        "--skip-filters",
        action="store_true",
        help="Skip the filter pass",
    )
    run_parser.add_argument(
        "--skip-states",
        action="store_true",
        help="Skip the retention pass",
    )
    run_parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit non-zero when any message-level action failed",
    )
    run_parser.set_defaults(func=cmd_run)

    # Filters command
    filters_parser = subparsers.add_parser(
        "filters",
        parents=[config_group],
        help="List configured filters",
    )
    filters_parser.set_defaults(func=cmd_filters)

    # States command
    states_parser = subparsers.add_parser(
        "states",
        parents=[config_group],
        help="List configured retention states",
    )
    states_parser.set_defaults(func=cmd_states)

    # Check command
    check_parser = subparsers.add_parser(
        "check",
        parents=[config_group],
        help="Validate configuration and state queries without connecting",
    )
    check_parser.set_defaults(func=cmd_check)

    # Health command
    health_parser = subparsers.add_parser(
        "health",
        parents=[config_group, connection_group],
        help="Check IMAP connection health",
    )
    health_parser.set_defaults(func=cmd_health)

    # Sample config command
    sample_parser = subparsers.add_parser(
        "sample-config",
        help="Print or write a sample configuration file",
    )
    sample_parser.add_argument(
        "--output", "-o",
        type=Path,
        help="Write the sample to this path instead of printing it",
    )
    sample_parser.set_defaults(func=cmd_sample_config)

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
    except AuthenticationError as e:
        logger.error(f"Authentication failed: {e}")
    except SessionConnectionError as e:
        logger.error(f"Connection failed: {e}")
    return 1


if __name__ == "__main__":
    sys.exit(main())
