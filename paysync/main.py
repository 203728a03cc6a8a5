"""Main entry point with CLI."""
import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from paysync.config import config, Config
from paysync.errors import PaySyncError
from paysync.fetch.client import HttpxProxyClient
from paysync.jobs.run_control import RunControl, RunStatus
from paysync.jobs.runner import CollectMode
from paysync.jobs.service import build_collector, check_credentials, run_collection
from paysync.jobs.session import SessionRegistry
from paysync.logging_conf import setup_logging
from paysync.providers.registry import SUPPORTED_PROVIDERS
from paysync.store.credentials import SqliteCredentialStore
from paysync.store.payments import SqlitePaymentStore
from paysync.store.supabase_writer import MirroredPaymentStore, SupabasePaymentWriter

logger = logging.getLogger(__name__)


def read_curl(args: argparse.Namespace) -> str:
    """cURL capture from --curl, --curl-file or stdin."""
    if args.curl:
        return args.curl
    if args.curl_file:
        return Path(args.curl_file).read_text(encoding="utf-8")
    return sys.stdin.read()


def _add_curl_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--curl", help="cURL command copied from the browser")
    group.add_argument("--curl-file", help="File containing the cURL command (default: stdin)")


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Payment history collector")
    parser.add_argument("--db", default=None, help=f"SQLite database (default: {config.DB_PATH})")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    add = sub.add_parser("add-account", help="Register an account from a cURL capture")
    add.add_argument("--provider", required=True, choices=SUPPORTED_PROVIDERS)
    add.add_argument("--alias", required=True)
    _add_curl_args(add)

    refresh = sub.add_parser("refresh", help="Replace an account's credentials from a new capture")
    refresh.add_argument("account_id")
    _add_curl_args(refresh)

    test = sub.add_parser("test", help="Check that stored credentials still work")
    test.add_argument("account_id")

    collect = sub.add_parser("collect", help="Collect payment history for an account")
    collect.add_argument("account_id")
    collect.add_argument(
        "--mode",
        choices=[m.value for m in CollectMode],
        default=CollectMode.FULL.value,
        help="full: whole history; incremental: stop at the last stored payment",
    )
    collect.add_argument("--stop-after-minutes", type=float, default=None, help="Stop after M minutes")
    collect.add_argument("--max-errors", type=int, default=None, help="Stop if total errors >= N")
    collect.add_argument(
        "--max-consecutive-errors", type=int, default=None, help="Stop if N consecutive errors"
    )
    collect.add_argument(
        "--write-supabase",
        action="store_true",
        help="Mirror saved payments to Supabase (requires SUPABASE_URL/SUPABASE_SERVICE_ROLE)",
    )

    payments = sub.add_parser("payments", help="List stored payments, newest first")
    payments.add_argument("account_id")
    payments.add_argument("--limit", type=int, default=20)
    payments.add_argument("--offset", type=int, default=0)
    payments.add_argument(
        "--source",
        choices=["local", "supabase"],
        default="local",
        help="Read from the local database or the Supabase mirror",
    )

    accounts = sub.add_parser("accounts", help="List registered accounts")
    accounts.add_argument("--provider", choices=SUPPORTED_PROVIDERS, default=None)

    return parser.parse_args(argv)


async def run_command(args: argparse.Namespace, registry: Optional[SessionRegistry] = None) -> int:
    """Execute one CLI command. Returns the process exit code."""
    if registry is None:
        registry = SessionRegistry()
    db_path = Path(args.db) if args.db else None
    store = SqliteCredentialStore(db_path)
    payment_store = SqlitePaymentStore(db_path)
    await store.initialize()
    await payment_store.initialize()

    if args.command == "add-account":
        account = await store.create_account(args.provider, args.alias, read_curl(args))
        print(account.id)
        return 0

    if args.command == "refresh":
        account = await store.refresh(args.account_id, read_curl(args))
        logger.info(f"Credentials for {account.alias} ({account.provider}) replaced")
        return 0

    if args.command == "accounts":
        for account in await store.list_accounts(args.provider):
            print(f"{account.id}  {account.provider:<8} {account.alias}  updated {account.updated_at}")
        return 0

    if args.command == "payments":
        reader = SupabasePaymentWriter() if args.source == "supabase" else payment_store
        for payment in await reader.list_payments(args.account_id, args.limit, args.offset):
            print(
                f"{payment.paid_at}  {payment.total_amount:>10,}  {payment.merchant_name}  "
                f"{payment.product_name or ''}"
            )
        return 0

    if args.command == "test":
        async with HttpxProxyClient() as proxy:
            result = await check_credentials(store, proxy, args.account_id)
        print("valid" if result["valid"] else f"invalid (HTTP {result['status']})")
        return 0 if result["valid"] else 1

    if args.command == "collect":
        account = await store.require_account(args.account_id)
        sink = payment_store
        if args.write_supabase:
            mirror = SupabasePaymentWriter()
            if not await mirror.test_connection():
                logger.error("Supabase is unreachable, not starting the run")
                return 1
            sink = MirroredPaymentStore(payment_store, mirror)
        run_control = RunControl(
            stop_after_minutes=args.stop_after_minutes,
            max_errors=args.max_errors,
            max_consecutive_errors=args.max_consecutive_errors,
        )
        async with HttpxProxyClient() as proxy:
            collector = build_collector(
                account, store, proxy, sink, mode=CollectMode(args.mode), run_control=run_control
            )
            result = await run_collection(collector, registry)
        if result.status is RunStatus.FAILED:
            logger.error(f"Run {result.run_id} failed ({result.error_kind}): {result.error}")
            return 1
        return 0

    logger.error(f"Unknown command {args.command}")
    return 1


def main(argv=None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    setup_logging("DEBUG" if args.verbose else None)

    needs_supabase = getattr(args, "write_supabase", False) or getattr(args, "source", None) == "supabase"
    try:
        Config.validate(require_supabase=needs_supabase)
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    try:
        code = asyncio.run(run_command(args))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(1)
    except PaySyncError as e:
        logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
