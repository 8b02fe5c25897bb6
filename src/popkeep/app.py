# =============================================================================
# popkeep Command-Line Application
# =============================================================================
# Runs one synchronization pass for every selected account and prints a
# summary. Accounts are synced concurrently, each over its own POP3
# connection and its own database connection.
#
#   popkeep                      # sync all enabled accounts
#   popkeep --account work       # sync one account (repeatable)
#   popkeep --check              # connect + log in + STAT, nothing stored
#   popkeep --paths              # show where config and data live
#
# Exit code is 0 when every pass completed (skipped messages included),
# 1 when any pass aborted or the configuration is unusable.
# =============================================================================

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from popkeep import __app_name__, __version__
from popkeep.config import Config, ConfigError, print_paths
from popkeep.core import Account
from popkeep.errors import POP3Error, SyncAbortedError
from popkeep.pop3 import ClientFactory, SyncManager
from popkeep.storage import Database, Repository

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        prog=__app_name__,
        description="popkeep: mirror POP3 mailboxes locally, leaving mail on the server",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--paths",
        action="store_true",
        help="Print configuration paths and exit",
    )

    parser.add_argument(
        "--config",
        type=Path,
        help="Path to config file (default: XDG config location)",
    )

    parser.add_argument(
        "--account",
        action="append",
        default=[],
        metavar="NAME",
        help="Account to sync (repeatable; default: all enabled accounts)",
    )

    parser.add_argument(
        "--check",
        action="store_true",
        help="Only test that each account can connect and log in",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug mode (verbose logging)",
    )

    return parser.parse_args(argv)


async def sync_account(config: Config, account: Account, db_path: Path | None = None) -> bool:
    """
    Run one sync pass for an account.

    Returns:
        False if the pass aborted, True otherwise.
    """
    async with Database(db_path) as db:
        manager = SyncManager(ClientFactory(account, config.sync), Repository(db))
        try:
            result = await manager.sync()
        except SyncAbortedError as e:
            print(f"{account.name}: aborted ({e.kind.value}): {e}")
            if e.new_messages:
                print(f"{account.name}: {e.new_messages} messages stored before the abort")
            return False

    print(f"{account.name}: {result.new_messages} new, {len(result.failures)} skipped "
          f"in {result.duration_seconds:.1f}s")
    for failure in result.failures:
        print(f"  skipped {failure.uidl}: {failure.error}")
    return True


async def check_account(config: Config, account: Account) -> bool:
    """
    Test that an account can connect and log in.

    Returns:
        True if the check succeeded.
    """
    try:
        stat = await ClientFactory(account, config.sync).test_connection()
    except POP3Error as e:
        print(f"{account.name}: FAILED ({e.kind.value}): {e}")
        return False

    print(f"{account.name}: OK, {stat.count} messages ({stat.total_size} bytes)")
    return True


async def run(config: Config, accounts: list[Account], *, check: bool = False) -> int:
    """
    Sync (or check) the given accounts concurrently.

    Returns:
        Exit code (0 if every account succeeded, 1 otherwise).
    """
    if check:
        outcomes = await asyncio.gather(*(check_account(config, a) for a in accounts))
    else:
        outcomes = await asyncio.gather(*(sync_account(config, a) for a in accounts))
    return 0 if all(outcomes) else 1


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for popkeep.

    This function:
        1. Parses command-line arguments
        2. Handles special commands (--paths, --version)
        3. Loads configuration
        4. Syncs (or checks) the selected accounts

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format=LOG_FORMAT,
    )

    if args.paths:
        print_paths()
        return 0

    try:
        config = Config.load(args.config)
        accounts = config.select_accounts(args.account)
    except ConfigError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1

    if not accounts:
        print(
            f"No accounts configured. Add one to {args.config or Config.config_file_path()}",
            file=sys.stderr,
        )
        return 1

    return asyncio.run(run(config, accounts, check=args.check))


if __name__ == "__main__":
    sys.exit(main())
