from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from typing import Optional, Sequence

from sirm.application.container import AppContainer, build_container
from sirm.config import get_app_paths, load_settings
from sirm.domain.errors import AppError, PartialBatchFailure
from sirm.domain.models import SessionContext, User
from sirm.logging_config import setup_logging
from sirm.services.import_service import ImportService

log = logging.getLogger("sirm.cli")


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="sirm", description="Serialized inventory and returns manager")
    parser.add_argument("--store", type=int, default=None, help="store id (defaults to SIRM_STORE_ID)")
    parser.add_argument("--role", default="admin", help="role of the local operator")
    sub = parser.add_subparsers(dest="command", required=True)

    imp = sub.add_parser("import", help="import products from .csv or .xlsx")
    imp.add_argument("file")

    tpl = sub.add_parser("template", help="write an import template")
    tpl.add_argument("file")

    lookup = sub.add_parser("lookup", help="find sold units for a return")
    group = lookup.add_mutually_exclusive_group(required=True)
    group.add_argument("--receipt")
    group.add_argument("--device")

    sub.add_parser("summary", help="returns totals and top reasons")
    return parser


def _cmd_import(app: AppContainer, ctx: SessionContext, args) -> int:
    try:
        report = app.importer.import_products(ctx, args.file)
    except PartialBatchFailure as e:
        report = e.report
        print(f"Import interrupted: {e}", file=sys.stderr)
        print(f"Inserted before failure: {report.inserted}", file=sys.stderr)
        return 1
    print(f"Inserted: {report.inserted}  Skipped: {report.skipped}  Rejected: {report.rejected}")
    if report.skipped_names:
        print("Skipped (already exist): " + ", ".join(report.skipped_names))
    for err in report.errors:
        print(f"  {err}")
    return 0


def _cmd_lookup(app: AppContainer, ctx: SessionContext, args) -> int:
    records = app.locator.search(ctx, receipt_code=args.receipt, device_id=args.device)
    for r in records:
        device = r.device_id or "-"
        flag = " (pricing ambiguous)" if r.pricing_ambiguous else ""
        print(
            f"{r.composite_id}\t{r.receipt_code}\t{r.product_name}\t{device}\t"
            f"x{r.quantity}\t{r.amount:.2f}{flag}"
        )
    return 0


def _cmd_summary(app: AppContainer, ctx: SessionContext, args) -> int:
    summary = app.stats.summarize(app.ledger.list_returns(ctx))
    print(f"Returns: {summary.total_count}  Units: {summary.total_quantity}")
    print(f"Value: {summary.total_value:.2f}  Average: {summary.average_value:.2f}")
    for reason in summary.top_reasons:
        print(f"  {reason.count}x {reason.reason}")
    for status, count in sorted(summary.status_breakdown.items()):
        print(f"  {status}: {count}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _parser().parse_args(argv)

    if args.command == "template":
        path = ImportService.write_import_template(args.file)
        print(f"Template written to {path}")
        return 0

    paths = get_app_paths()
    try:
        settings = load_settings()
    except AppError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2
    setup_logging(paths.logs_dir, level=settings.log_level)
    if settings.backend == "sqlite" and settings.db_path is None:
        settings = replace(settings, db_path=paths.db_path)

    app = build_container(settings)
    store_id = args.store if args.store is not None else settings.store_id
    ctx = SessionContext(store_id=store_id, user=User(id=0, username="cli", role=args.role))

    commands = {"import": _cmd_import, "lookup": _cmd_lookup, "summary": _cmd_summary}
    try:
        return commands[args.command](app, ctx, args)
    except AppError as e:
        log.warning("cli_command_failed command=%s error=%s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
