"""Command line interface for the row-to-columnar replicator."""

from __future__ import annotations

import argparse
import logging
import signal
from typing import Optional

from prometheus_client import start_http_server

from .cdc.ddl import ColumnarNaming
from .cdc.service import build_replication_worker
from .config import Settings, load_settings
from .db import OperationalError, connect_from_settings
from .db.store import StoreUnavailable
from .install import install, render_install_sql

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Replicate row-store inserts and DDL into columnar twins"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("run", help="Start the replication worker")

    install_parser = subparsers.add_parser(
        "install", help="Install the relay table and DDL event triggers"
    )
    install_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the rendered installer without executing it",
    )
    install_parser.add_argument(
        "--create-slot",
        action="store_true",
        help="Also create the logical replication slot if it is missing",
    )

    rewrite_parser = subparsers.add_parser(
        "rewrite-ddl", help="Preview how a DDL statement is mirrored"
    )
    rewrite_parser.add_argument(
        "object_identity", help="Table identity, e.g. public.orders"
    )
    rewrite_parser.add_argument("command_tag", help="e.g. 'CREATE TABLE'")
    rewrite_parser.add_argument("statement", help="The original DDL statement")

    return parser


def configure_logging(level: str = "INFO") -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, level.upper(), logging.INFO),
            format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        )


def _run(settings: Settings) -> int:
    worker = build_replication_worker(settings)

    def _request_stop(signum, _frame) -> None:
        logger.info("shutdown requested (signal %s)", signum)
        worker.stop()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)

    if settings.metrics_port > 0:
        start_http_server(settings.metrics_port)
        logger.info("metrics exporter listening on :%d", settings.metrics_port)

    try:
        worker.run_forever()
    except (StoreUnavailable, OperationalError):
        logger.exception("database connection lost - exiting")
        return 1
    finally:
        worker.close()
    return 0


def _install(settings: Settings, *, dry_run: bool, create_slot: bool) -> int:
    if dry_run:
        print(render_install_sql(settings))
        return 0
    conn = connect_from_settings(settings)
    try:
        install(conn, settings, create_slot=create_slot)
    finally:
        conn.close()
    print(
        f"Installed DDL capture for publication {settings.cdc_publication} "
        f"(relay {settings.relay_relation})"
    )
    return 0


def _rewrite_ddl(settings: Settings, args: argparse.Namespace) -> int:
    naming = ColumnarNaming(
        suffix=settings.columnar_suffix,
        access_method=settings.columnar_access_method,
    )
    record = naming.rewrite(args.statement, args.object_identity, args.command_tag)
    if record is None:
        print(f"Skipped: {args.object_identity} is not mirrored")
        return 0
    print(record.statement)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    settings = load_settings()
    configure_logging(settings.log_level)

    if args.command == "run":
        return _run(settings)
    if args.command == "install":
        return _install(settings, dry_run=args.dry_run, create_slot=args.create_slot)
    if args.command == "rewrite-ddl":
        return _rewrite_ddl(settings, args)

    parser.error("Unknown command")
    return 1
