"""
Inbox-to-CRM Sync: command line entry point.

Commands:
    sync                      continuous sync (Ctrl+C stops after the current cycle)
    sync --once               a single cycle
    backfill DAYS [--clear]   reprocess the last DAYS days of mail
    ask QUESTION              ask a question about the CRM
    fill-columns              research values for empty cells
    redo-columns              regenerate columns (--columns a,b --prompt TEXT)
    status                    show configuration, columns, cursors and classifier metrics

Exit status is 0 on normal completion and 1 on configuration or fatal
initialization errors.
"""

import argparse
import asyncio
import logging
import sys
from typing import List, Optional

from dotenv import load_dotenv

from src.config.settings import SyncSettings, load_settings
from src.crm_sync import maintenance
from src.crm_sync.analyzers.classifier import GroqClassifier
from src.crm_sync.errors import ConfigurationError, CrmSyncError
from src.crm_sync.ingestion import IncrementalIngestor
from src.crm_sync.models import SyncContext
from src.crm_sync.reconciler import CrmReconciler
from src.crm_sync.scheduler import ContinuousSync
from src.integrations.calendar.client import GoogleCalendarSource
from src.integrations.gmail.client import GmailMessageSource
from src.integrations.google.auth import ServiceAccountAuth
from src.integrations.groq.client_wrapper import EnhancedGroqClient
from src.integrations.sheets.client import GoogleSheetsStore
from src.storage.cursor_store import CursorStore
from src.utils.logging_setup import configure_logging

logger = logging.getLogger(__name__)


class Application:
    """Wires the concrete collaborators together from settings."""

    def __init__(self, settings: SyncSettings):
        self.settings = settings
        auth = ServiceAccountAuth(settings.GOOGLE_SERVICE_ACCOUNT_PATH)

        self.store = GoogleSheetsStore(auth, settings.GOOGLE_SHEET_ID, settings.GOOGLE_SHEET_NAME)
        self.groq_client = EnhancedGroqClient(
            api_key=settings.GROQ_API_KEY.get_secret_value(),
            metrics_file=settings.GROQ_METRICS_PATH or None,
        )
        self.classifier = GroqClassifier(
            self.groq_client,
            target_category=settings.TARGET_CATEGORY,
            model=settings.GROQ_MODEL,
        )
        cursor_store = CursorStore(settings.CURSOR_STATE_PATH) if settings.CURSOR_STATE_PATH else None
        self.ingestor = IncrementalIngestor(
            GmailMessageSource(auth),
            lookback_hours=settings.BOOTSTRAP_LOOKBACK_HOURS,
            cursor_store=cursor_store,
        )
        self.reconciler = CrmReconciler(
            ingestor=self.ingestor,
            calendar=GoogleCalendarSource(auth, account=settings.calendar_account,
                                          calendar_id=settings.CALENDAR_ID),
            classifier=self.classifier,
            store=self.store,
            roster=settings.roster,
            require_target_category=settings.REQUIRE_TARGET_CATEGORY,
            item_delay=settings.BULK_ITEM_DELAY_SECONDS,
        )
        self.context = SyncContext(accounts=settings.monitored_accounts)

    async def initialize(self) -> None:
        await self.store.ensure_sheet()
        await self.reconciler.initialize(self.context)


async def run_command(args: argparse.Namespace, settings: SyncSettings) -> int:
    app = Application(settings)
    await app.initialize()

    if args.command == "sync":
        if args.once:
            await app.reconciler.run_cycle(app.context)
            return 0
        runner = ContinuousSync(app.reconciler, app.context, settings.SYNC_INTERVAL_MINUTES)
        runner.install_signal_handlers()
        await runner.start()
        return 0

    if args.command == "backfill":
        await app.reconciler.run_backfill(app.context, args.days, clear=args.clear)
        return 0

    if args.command == "ask":
        answer = await maintenance.answer_question(app.store, app.classifier, " ".join(args.question))
        print(answer)
        return 0

    if args.command == "fill-columns":
        await maintenance.fill_empty_fields(
            app.store, app.classifier, app.context.field_map, item_delay=settings.BULK_ITEM_DELAY_SECONDS
        )
        return 0

    if args.command == "redo-columns":
        labels = [label.strip() for label in args.columns.split(",") if label.strip()]
        await maintenance.redo_fields(
            app.store, app.classifier, app.context.field_map, labels, guidance=args.prompt,
            item_delay=settings.BULK_ITEM_DELAY_SECONDS
        )
        return 0

    if args.command == "status":
        print_status(app, settings)
        return 0

    raise CrmSyncError(f"Unknown command: {args.command}")


def print_status(app: Application, settings: SyncSettings) -> None:
    """Print the sheet, discovered columns, cursors and classifier request metrics."""
    field_map = app.context.field_map
    print(f"Sheet: {settings.GOOGLE_SHEET_ID} / {app.store.sheet_name}")
    print(f"Monitored accounts: {', '.join(app.context.monitored_addresses)}")
    print("Columns:")
    for field_name, index in sorted(field_map.columns.items(), key=lambda item: item[1]):
        print(f"  {field_map.headers[index]!r} -> {field_name}")
    for index in field_map.unmapped_indices:
        print(f"  {field_map.headers[index]!r} (unmapped, preserved)")
    print("Cursors:")
    for address in app.context.monitored_addresses:
        print(f"  {address}: {app.context.cursors.get(address, '(none, will bootstrap)')}")

    performance = app.groq_client.get_performance_metrics()
    print("Classifier requests:")
    print(f"  total: {performance['total_requests']}")
    print(f"  success rate: {performance['success_rate']:.1f}%")
    print(f"  mean response time: {performance['avg_response_time']:.2f}s")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Keep a spreadsheet CRM in sync with your inbox and calendar")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Run continuous sync")
    sync.add_argument("--once", action="store_true", help="Run a single cycle and exit")

    backfill = subparsers.add_parser("backfill", help="Reprocess past mail")
    backfill.add_argument("days", type=int, nargs="?", default=7, help="Days of mail to process")
    backfill.add_argument("--clear", action="store_true", help="Clear all records first")

    ask = subparsers.add_parser("ask", help="Ask a question about the CRM")
    ask.add_argument("question", nargs="+")

    subparsers.add_parser("fill-columns", help="Fill empty cells")

    redo = subparsers.add_parser("redo-columns", help="Regenerate columns for every record")
    redo.add_argument("--columns", required=True, help="Comma-separated column names")
    redo.add_argument("--prompt", default="", help="Guidance for the model")

    subparsers.add_parser("status", help="Show configuration and discovered columns")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv(override=True)
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings()
    except ConfigurationError as e:
        configure_logging()
        logger.error(str(e))
        return 1

    configure_logging(settings.LOG_LEVEL, settings.LOG_DIR)

    try:
        return asyncio.run(run_command(args, settings))
    except CrmSyncError as e:
        logger.error(f"Fatal: {str(e)}")
        return 1
    except Exception as e:
        logger.critical(f"Fatal error: {str(e)}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
