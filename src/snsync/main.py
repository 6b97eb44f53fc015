"""Command line entry point."""

import argparse
import asyncio
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .api_clients.base import AuthenticationError, RemoteAPIError
from .config.loader import ConfigurationError
from .core.connector import SyncConnector
from .core.layout import RecordNotFoundError
from .utils.logging import get_logger, setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="snsync",
        description="Sync a local folder tree with remote table records",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s pull                                   # Pull every mapped table
  %(prog)s pull --table sys_script_include        # Pull one table
  %(prog)s pull --table incident --query active=true --tag Auth
  %(prog)s pull --target src/sys_script_include/MyUtil
  %(prog)s push src/sys_script_include/MyUtil/script.js
  %(prog)s push --table sp_widget --name My_Widget
  %(prog)s push --all-new                         # Create every new record
  %(prog)s open src/sp_widget/My_Widget
  %(prog)s watch
        """
    )
    parser.add_argument(
        "--project", "-p",
        default=".",
        help="Project root holding sn-config.json, .env and src/ (default: current directory)"
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Show debug output")
    parser.add_argument("--quiet", "-q", action="store_true", help="Only show errors")
    parser.add_argument("--log-format", choices=["console", "json"], help="Log output format")

    commands = parser.add_subparsers(dest="command", required=True)

    pull = commands.add_parser("pull", help="Download records into the working tree")
    pull.add_argument("--table", "-t", help="Only pull this mapped table")
    pull.add_argument("--query", help="Encoded query overriding the configured filter")
    pull.add_argument("--target", help="Re-pull the record a local file or folder belongs to")
    pull.add_argument("--tag", action="append", dest="tags", default=[], help="Context tag added to pulled records")

    push = commands.add_parser("push", help="Upload changes or create new records")
    push.add_argument("target", nargs="?", help="File, record folder or table folder to push")
    push.add_argument("--table", "-t", help="Table of the record folder")
    push.add_argument("--name", "-n", help="Record folder name inside the table folder")
    push.add_argument("--all-new", action="store_true", help="Create every record folder without an id marker")

    open_cmd = commands.add_parser("open", help="Open the record of a local folder in the browser")
    open_cmd.add_argument("target", help="Local file or record folder")

    commands.add_parser("watch", help="Push field files as they are saved")

    return parser


def setup_signal_handlers(stop_event: asyncio.Event) -> None:
    """Set up signal handlers for graceful shutdown of watch mode."""
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass


async def execute(args: argparse.Namespace) -> int:
    """Run one command and return the process exit code."""
    logger = get_logger("main")
    project_root = Path(args.project).resolve()

    async with SyncConnector(project_root) as connector:
        if args.command == "pull":
            result = await connector.pull(
                table=args.table,
                query=args.query,
                target=args.target,
                context_tags=args.tags
            )
            logger.info(
                "Pull finished",
                tables=result.tables_processed,
                records=result.records_written,
                errors=len(result.errors)
            )
            return 0 if result.success else 1

        if args.command == "push":
            result = await connector.push(
                target=args.target,
                table=args.table,
                name=args.name,
                all_new=args.all_new
            )
            logger.info(
                "Push finished",
                uploaded=result.uploaded,
                created=result.created,
                skipped=result.skipped,
                conflicts=result.conflicts,
                failed=result.failed
            )
            return 0 if result.success else 1

        if args.command == "open":
            connector.open_record(args.target)
            return 0

        if args.command == "watch":
            stop_event = asyncio.Event()
            setup_signal_handlers(stop_event)
            await connector.watch(stop_event=stop_event)
            return 0

    return 2


async def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    log_level = "ERROR" if args.quiet else ("DEBUG" if args.verbose else None)
    setup_logging(log_level=log_level, log_format=args.log_format)
    logger = get_logger("main")

    try:
        return await execute(args)
    except ConfigurationError as e:
        logger.error("Invalid configuration", error=str(e))
    except AuthenticationError as e:
        logger.error("Authentication failed", error=str(e))
    except RecordNotFoundError as e:
        logger.error("Target not found", error=str(e))
    except RemoteAPIError as e:
        logger.error("Instance request failed", status=e.status, error=str(e))
    return 1


def run() -> None:
    """Console script entry point."""
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(130)


if __name__ == "__main__":
    run()
