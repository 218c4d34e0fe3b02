"""Command-line interface for the deployer."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Sequence

from ..reconciler.errors import DeploymentError
from ..reconciler.settings import load_settings
from . import job, report

LOGGER = logging.getLogger(__name__)


def main(argv: Sequence[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    _configure_logging(args.log_level)

    try:
        config = job.load_config(args.config)
        settings = load_settings()
        session = job.build_session(config, settings, profile=args.profile, region=args.region)
        outcome = job.run_deploy(config, skip=args.skip, session=session, settings=settings)
    except DeploymentError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    _emit_outputs(outcome, args)
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="deployer", description="Deploy functions and websites to AWS")
    commands = parser.add_subparsers(dest="command", required=True)
    deploy = commands.add_parser("deploy", help="Converge the resources of a resolved configuration")
    deploy.add_argument("--config", required=True, help="Path to the resolved configuration JSON")
    deploy.add_argument("--skip", action="append", help="Stage to leave untouched (repeatable)", default=[])
    deploy.add_argument("--out", help="Write JSON summary to path", default=None)
    deploy.add_argument("--csv", help="Write CSV stage results to path", default=None)
    deploy.add_argument("--profile", help="AWS profile name", default=None)
    deploy.add_argument("--region", help="Override the AWS region of the configuration", default=None)
    deploy.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return parser


def _configure_logging(level: str) -> None:
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s")


def _emit_outputs(outcome, args) -> None:  # type: ignore[no-untyped-def]
    report_payload = report.generate_summary(outcome)
    if not args.out and not args.csv:
        print(json.dumps(report_payload, indent=2, default=str))
    if args.out:
        _write_file(args.out, report.render(report_payload, fmt="json"))
    if args.csv:
        _write_file(args.csv, report.render(report_payload, fmt="csv"))


def _write_file(path: str, data: str) -> None:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(data)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
