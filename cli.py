from __future__ import annotations

import argparse
import dataclasses
import sys

from envrec import db
from envrec.db import log_event
from envrec.errors import ConfigurationError
from envrec.models import OutcomeStatus
from envrec.orchestrator import RunOptions, RunReport, reconcile_environment
from envrec.settings import settings as default_settings

_MARK = {
    OutcomeStatus.ALREADY_SATISFIED: "ok",
    OutcomeStatus.CONVERGED: "changed",
    OutcomeStatus.CONVERGED_WITH_WARNING: "changed (warning)",
    OutcomeStatus.FAILED: "FAILED",
}


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="envrec",
        description="Bring the local dev environment to a known-good state, then start the dev server.",
    )
    p.add_argument("--server-only", action="store_true", help="Start only the backend (twenty-server)")
    p.add_argument("--front-only", action="store_true", help="Start only the frontend (twenty-front)")
    p.add_argument("--skip-reset", "--no-reset", action="store_true", help="Do not reset the database")
    p.add_argument("--skip-install", "--no-install", action="store_true", help="Do not run yarn install")
    p.add_argument("--install-toolchain", action="store_true", help="Install the pinned node via nvm if missing")
    p.add_argument("-C", "--project-root", default=".", help="Project root (default: current directory)")
    p.add_argument("--no-color", action="store_true", help="Plain output")
    return p


def _print_summary(report: RunReport) -> None:
    for name, outcome in report.results:
        line = f"{name:<14} {_MARK[outcome.status]}"
        if outcome.reason and outcome.status is not OutcomeStatus.ALREADY_SATISFIED:
            line += f"  {outcome.reason}"
        print(line)


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    s = default_settings
    if args.install_toolchain:
        s = dataclasses.replace(s, install_toolchain=True)
    if args.no_color:
        s = dataclasses.replace(s, color=False)
    db.configure(s)

    try:
        options = RunOptions.from_flags(
            server_only=args.server_only,
            front_only=args.front_only,
            skip_reset=args.skip_reset,
            skip_install=args.skip_install,
            project_root=args.project_root,
        )
        report = reconcile_environment(options, s)
    except ConfigurationError as e:
        log_event("ERROR", e.message)
        for cmd in e.remedy:
            log_event("ERROR", f"  {cmd}")
        return 2
    except KeyboardInterrupt:
        log_event("WARN", "Interrupted.")
        return 130

    _print_summary(report)
    return report.exit_code


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
