from __future__ import annotations

import argparse
import logging
import sys
from datetime import date

from ctp.application.container import build_container
from ctp.config import AppSettings, get_app_paths
from ctp.domain.costing import hours
from ctp.domain.errors import AppError
from ctp.domain.models import INVOICE_STATUSES
from ctp.logging_config import setup_logging

log = logging.getLogger(__name__)


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ctp", description="Construction job costing: time clock, materials, invoices.")
    p.add_argument("-v", "--verbose", action="store_true", help="echo warnings to stderr")
    sub = p.add_subparsers(dest="command", required=True)

    s = sub.add_parser("clock-in")
    s.add_argument("--user", type=int, required=True)
    s.add_argument("--project", type=int, required=True)

    s = sub.add_parser("clock-out")
    s.add_argument("--user", type=int, required=True)

    s = sub.add_parser("switch-job")
    s.add_argument("--user", type=int, required=True)
    s.add_argument("--project", type=int, required=True)

    s = sub.add_parser("use-material")
    s.add_argument("--project", type=int, required=True)
    s.add_argument("--item", type=int, required=True)
    s.add_argument("--qty", type=float, required=True)

    s = sub.add_parser("invoice")
    s.add_argument("--project", type=int, required=True)
    s.add_argument("--xlsx", help="also export the invoice to this workbook")

    s = sub.add_parser("invoice-status")
    s.add_argument("--invoice", type=int, required=True)
    s.add_argument("--status", choices=INVOICE_STATUSES, required=True)

    s = sub.add_parser("payroll-report")
    s.add_argument("--user", type=int, required=True)
    s.add_argument("--week-of", type=date.fromisoformat, default=date.today())
    s.add_argument("--out", required=True)

    sub.add_parser("snapshot")
    return p


def run(argv: list[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    paths = get_app_paths()
    setup_logging(paths.logs_dir, level=logging.INFO, console=args.verbose)
    c = build_container(paths.db_path, settings=AppSettings.from_env(), snapshot_dir=paths.snapshots_dir)

    try:
        if args.command == "clock-in":
            tl = c.time_tracking.clock_in(args.user, args.project)
            print(f"Clocked in: log #{tl.id} at {tl.clock_in.isoformat()}")
        elif args.command == "clock-out":
            tl = c.time_tracking.clock_out(args.user)
            print(f"Clocked out: log #{tl.id}, {hours(tl.duration_ms):.2f} h, cost {tl.cost:.2f}")
        elif args.command == "switch-job":
            res = c.time_tracking.switch_job(args.user, args.project)
            print(f"Closed log #{res.closed_log.id} (cost {res.closed_log.cost:.2f}), opened log #{res.opened_log.id}")
        elif args.command == "use-material":
            ml = c.materials.log_usage_from_inventory(args.project, args.item, args.qty)
            print(f"Logged {ml.quantity_used:g} x {ml.description} = {ml.cost_at_time:.2f}")
        elif args.command == "invoice":
            inv = c.invoices.generate_invoice(args.project)
            print(
                f"Invoice {inv.invoice_number}: subtotal {inv.subtotal:.2f}, "
                f"markup {inv.markup_amount:.2f}, total {inv.total_amount:.2f}"
            )
            if args.xlsx:
                c.reporting.export_invoice_excel(args.xlsx, inv.id)
        elif args.command == "invoice-status":
            inv = c.invoices.update_invoice_status(args.invoice, args.status)
            print(f"Invoice {inv.invoice_number} is now {inv.status}")
        elif args.command == "payroll-report":
            summary = c.reporting.export_payroll_report_excel(args.out, args.user, args.week_of)
            print(f"Payroll: {summary.total_hours:.2f} h, {summary.total_pay:.2f} -> {args.out}")
        elif args.command == "snapshot":
            print(c.snapshots.write_snapshot())
    except AppError as e:
        log.warning("command_failed command=%s error=%s", args.command, e)
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return 0


def main() -> None:
    sys.exit(run())


if __name__ == "__main__":
    main()
