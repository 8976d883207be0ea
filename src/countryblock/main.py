"""
countryblock.main
~~~~~~~~~~~~~~~~~

Command-line entry point.

Exit codes: ``0`` success or nothing to update, ``1`` invalid
configuration, source failure or a family that was not fully applied,
``127`` a required firewall command is not installed.
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from pydantic import ValidationError

from countryblock import pipeline
from countryblock.config import Settings
from countryblock.defense.base import Applier
from countryblock.defense.gcloud import GcloudApplier
from countryblock.defense.ipset import IpsetApplier
from countryblock.defense.shell import require_commands
from countryblock.errors import ConfigurationError, SourceError, TargetUnavailable
from countryblock.models import FamilyReport
from countryblock.utils.logger import get_logger, setup as log_setup

log = get_logger(__name__)

EXIT_OK = 0
EXIT_INVALID = 1
EXIT_MISSING_COMMAND = 127

PROG = "countryblock"
EPILOG = """\
GCloud has some limits creating rules:
  A maximum of 5000 entries per rule (can be CIDR notation).
  A maximum number of rules depending on the complexity of each rule.
"""


class _Parser(argparse.ArgumentParser):
    """ArgumentParser that exits 1 on invalid arguments."""

    def error(self, message: str):  # type: ignore[override]
        self.print_usage(sys.stderr)
        self.exit(EXIT_INVALID, f"{self.prog}: error: {message}\nType '{self.prog} --help' for available options.\n")


def build_parser() -> argparse.ArgumentParser:
    p = _Parser(
        prog=PROG,
        description="Block a country's RIPE-registered IP prefixes with ipset/iptables or Google Cloud firewall rules.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        add_help=False,
        allow_abbrev=False,
    )
    p.add_argument("--cc", metavar="XX", help="2-digit ISO-3166 country code to block: CH, US, IN, BR, RU")
    p.add_argument("--f", dest="force", action="store_true", help="Force update, do not check the source query time.")
    p.add_argument("--v", dest="verbose", action="store_true", help="Show debug output.")
    p.add_argument(
        "--gcloud",
        action="store_true",
        help="Use Google Cloud firewall instead of iptables and ipset. Requires gcloud and an IAM user with the right permissions.",
    )
    p.add_argument("--o", dest="output_dir", metavar="DIR", help="Snapshot output directory (default: system temp dir).")
    p.add_argument("--max-batch", dest="max_batch_size", type=int, metavar="N", help="Entries per cloud rule (default 5000).")
    p.add_argument("--daemon", action="store_true", help="Keep running and refresh at COUNTRYBLOCK_CRON_TIME.")
    p.add_argument("--help", "--h", action="help", help="Show this help.")
    return p


def _overrides(args: argparse.Namespace) -> dict:
    flags = {
        "country_code": args.cc,
        "data_dir": args.output_dir,
        "max_batch_size": args.max_batch_size,
    }
    out = {k: v for k, v in flags.items() if v is not None}
    # Boolean flags only switch options on; env may already have enabled them
    if args.force:
        out["force_update"] = True
    if args.gcloud:
        out["use_gcloud"] = True
    if args.verbose:
        out["verbose"] = True
    return out


def build_applier(settings: Settings) -> Applier:
    if settings.use_gcloud:
        return GcloudApplier(
            max_batch_size=settings.max_batch_size,
            priority=settings.gcloud_priority,
            network=settings.gcloud_network,
            project=settings.gcloud_project,
        )
    return IpsetApplier(hashsize=settings.ipset_hashsize, maxelem=settings.ipset_maxelem)


def run(settings: Settings, applier: Applier) -> int:
    """Run one refresh and return the process exit code."""
    try:
        reports: List[FamilyReport] = pipeline.run_once(settings, applier)
    except SourceError as exc:
        log.error("%s", exc)
        return EXIT_INVALID

    for r in reports:
        log.info("%s %s: %s (%d prefixes, %d batches)", r.country_code, r.family.value, r.state.value, r.prefix_count, r.batch_count)
    return EXIT_OK if all(r.ok for r in reports) else EXIT_INVALID


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    log_setup(level="DEBUG" if args.verbose else "WARNING", force=True)
    try:
        settings = Settings(**_overrides(args))
    except ValidationError as exc:
        for err in exc.errors():
            log.error("Invalid argument %s: %s", ".".join(str(x) for x in err["loc"]), err["msg"])
        return EXIT_INVALID
    log_setup(level=settings.effective_log_level, logfile=settings.log_file, force=True)

    if not settings.country_code:
        log.error("Invalid country code: --cc=XX is required.")
        return EXIT_INVALID

    applier = build_applier(settings)
    try:
        require_commands(applier.required_commands)
    except TargetUnavailable as exc:
        log.error("%s", exc)
        return EXIT_MISSING_COMMAND

    if not args.daemon:
        return run(settings, applier)

    from countryblock.scheduler import build_scheduler

    try:
        scheduler = build_scheduler(lambda: run(settings, applier), settings)
    except ConfigurationError as exc:
        log.error("%s", exc)
        return EXIT_INVALID
    log.info("countryblock scheduler started for %s", settings.country_code)
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        log.info("countryblock scheduler stopping, exiting.")
    return EXIT_OK


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
