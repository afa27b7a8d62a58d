"""
Command line entry point for Tally sync operations.

Usage:
    # Test connection to the configured Tally endpoint
    tally-sync --test-connection

    # Retry failed syncs still under the attempt cap
    tally-sync --retry-failed
    tally-sync --retry-failed --max-attempts 5

    # Show recent sync log entries
    tally-sync --logs --limit 20 --status failed

    # Show or update the Tally configuration
    tally-sync --show-config
    tally-sync --set-config --url http://tally:9000 --company "Acme Jewels" --enable --auto-sync

    # Sync one stored transaction by type and id
    tally-sync --sync sales_bill 42

    # Create the sync tables
    tally-sync --init-db
"""
import sys
import json
import argparse
from loguru import logger

from .config import AppSettings, ConfigurationError, load_settings
from .kinds import KINDS
from .models import SYNC_STATUSES, SYNC_MODES


def configure_logging(settings: AppSettings, verbose: bool = False, quiet: bool = False):
    """Route loguru output to stderr and, if configured, a rotating log file."""
    logger.remove()
    if quiet:
        level = "ERROR"
    elif verbose:
        level = "DEBUG"
    else:
        level = settings.log_level.upper()
    logger.add(sys.stderr, level=level)
    if settings.log_file:
        logger.add(settings.log_file, level="DEBUG", rotation="10 MB", retention=5)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tally-sync",
        description="Push back office transactions to Tally and manage the sync log",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    actions = parser.add_mutually_exclusive_group(required=True)
    actions.add_argument("--test-connection", action="store_true", help="Probe the Tally endpoint and exit")
    actions.add_argument("--retry-failed", action="store_true", help="Retry failed syncs under the attempt cap")
    actions.add_argument("--logs", action="store_true", help="Show recent sync log entries")
    actions.add_argument("--show-config", action="store_true", help="Show the Tally configuration (no secrets)")
    actions.add_argument("--set-config", action="store_true", help="Update the Tally configuration")
    actions.add_argument(
        "--sync",
        nargs=2,
        metavar=("TYPE", "ID"),
        help=f"Sync one stored transaction. TYPE is one of: {', '.join(KINDS)}",
    )
    actions.add_argument("--init-db", action="store_true", help="Create the sync tables and exit")

    # Retry / log options
    parser.add_argument("--max-attempts", type=int, help="Attempt cap for --retry-failed")
    parser.add_argument("--limit", type=int, default=100, help="Entries to show with --logs (default: 100)")
    parser.add_argument("--status", choices=SYNC_STATUSES, help="Filter --logs by status")

    # Config fields for --set-config
    parser.add_argument("--url", help="Tally endpoint URL")
    parser.add_argument("--company", help="Tally company name")
    enabled = parser.add_mutually_exclusive_group()
    enabled.add_argument("--enable", dest="enabled", action="store_const", const=True)
    enabled.add_argument("--disable", dest="enabled", action="store_const", const=False)
    parser.add_argument("--sync-mode", choices=SYNC_MODES)
    auto = parser.add_mutually_exclusive_group()
    auto.add_argument("--auto-sync", dest="auto_sync_enabled", action="store_const", const=True)
    auto.add_argument("--no-auto-sync", dest="auto_sync_enabled", action="store_const", const=False)
    parser.add_argument("--connection-type", help="Connection type (default: gateway)")
    parser.add_argument("--api-key", help="Gateway API key (stored encrypted)")
    parser.add_argument("--api-secret", help="Gateway API secret (stored encrypted)")

    # Logging
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-q", "--quiet", action="store_true", help="Suppress output except errors")
    return parser


def _config_changes(args) -> dict:
    changes = {
        "tally_url": args.url,
        "company_name": args.company,
        "enabled": args.enabled,
        "sync_mode": args.sync_mode,
        "auto_sync_enabled": args.auto_sync_enabled,
        "connection_type": args.connection_type,
        "api_key": args.api_key,
        "api_secret": args.api_secret,
    }
    return {k: v for k, v in changes.items() if v is not None}


def _print_json(value):
    print(json.dumps(value, indent=2, default=str))


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = AppSettings.from_env()
    configure_logging(settings, args.verbose, args.quiet)

    try:
        settings = load_settings()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    from .sync import TallySyncService
    from .store import PostgresSyncStore

    try:
        store = PostgresSyncStore(settings)
        if args.init_db:
            with store:
                store.ensure_schema()
            print("✓ Tally sync tables initialized")
            return 0

        with TallySyncService(store, settings=settings) as service:
            if args.test_connection:
                result = service.test_connection()
                if result["success"]:
                    print(f"✓ {result['message']}")
                    return 0
                print(f"✗ {result['message']}: {result.get('error', 'Unknown error')}")
                return 1

            if args.retry_failed:
                results = service.retry_failed_syncs(args.max_attempts)
                for r in results:
                    mark = "✓" if r["success"] else ("-" if r.get("skipped") else "✗")
                    detail = "" if r["success"] else f"  {r.get('error', '')}"
                    print(f"{mark} {r['transaction_type']}:{r['transaction_id']}{detail}")
                succeeded = sum(1 for r in results if r["success"])
                print(f"\n{succeeded}/{len(results)} retried successfully")
                return 0 if succeeded == len(results) else 1

            if args.logs:
                for entry in service.get_sync_logs(args.limit, args.status):
                    print(
                        f"{entry.last_sync_at or '-'}  {entry.sync_status:<8} "
                        f"{entry.transaction_type}:{entry.transaction_id} "
                        f"{entry.transaction_ref or ''}  attempts={entry.sync_attempts}"
                        + (f"  error={entry.last_error}" if entry.last_error else "")
                    )
                return 0

            if args.show_config:
                _print_json(service.get_config())
                return 0

            if args.set_config:
                changes = _config_changes(args)
                if not changes:
                    parser.error("--set-config needs at least one field to change")
                _print_json(service.update_config(changes))
                return 0

            if args.sync:
                transaction_type, raw_id = args.sync
                try:
                    transaction_id = int(raw_id)
                except ValueError:
                    parser.error(f"Transaction id must be an integer, got {raw_id!r}")
                result = service.sync_transaction(transaction_type, transaction_id)
                _print_json(result)
                return 0 if result["success"] else 1

    except ValueError as e:
        logger.error(str(e))
        print(f"\n✗ {e}")
        return 1

    except KeyboardInterrupt:
        print("\n\nCancelled by user")
        return 130

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        print(f"\n✗ Unexpected error: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
