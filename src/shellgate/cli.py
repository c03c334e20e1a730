"""Run a shell command through the safety gate.

Usage:
    shellgate [-y|-yy|-yyy] [-d NAME | --docker NAME | --podman NAME] COMMAND...
    shellgate --check COMMAND...
    shellgate --dry-run COMMAND...

Safety modes:
    (none)  confirm every risky or privileged command
    -y      allow privileged commands with a warning, prompt for risky ones
    -yy     warn instead of prompting below critical severity
    -yyy    allow everything

Exit codes:
    the command's own exit code when it runs; 2 configuration error;
    100 blocked; 101 target unavailable; 102 rejected; 130 cancelled;
    127 command could not be started
    A command that ran returns its own exit code even when it equals one of
    the codes above; use --check, or GateOutcome.status from Python, to
    tell a refusal from a failed command.
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Callable

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from shellgate.config import load_settings
from shellgate.constants import truncate
from shellgate.errors import ConfigurationError
from shellgate.gate.gate import GateOutcome, GateStatus, create_gate
from shellgate.gate.models import SafetyMode
from shellgate.logging import Loggers, bind_context, configure_logging

logger = Loggers.cli()

VERBOSITY_LOG_LEVELS = {1: "info", 2: "debug"}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shellgate",
        description=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-y", "--yolo",
        action="count",
        default=0,
        help="Relax the safety mode (-y, -yy, -yyy)",
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument("-d", "--distrobox", metavar="NAME", help="Run inside a distrobox")
    target.add_argument("--docker", metavar="NAME", help="Run inside a docker container")
    target.add_argument("--podman", metavar="NAME", help="Run inside a podman container")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the command and its decision without running it",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Print the evaluation as JSON and exit",
    )
    parser.add_argument("--shell", metavar="PATH", help="Host shell (default: $SHELL)")
    parser.add_argument(
        "--no-audit",
        action="store_true",
        help="Do not write the audit log",
    )
    parser.add_argument(
        "--save-history",
        action="store_true",
        help="Append successful commands to the shell history",
    )
    parser.add_argument("--config", metavar="FILE", help="YAML settings file")
    parser.add_argument(
        "-v", "--verbose",
        action="count",
        default=0,
        help="Log decisions (-v) or everything (-vv) to stderr",
    )
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Command to run")
    return parser


def settings_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Translate parsed flags into settings overrides (None = not given).

    Raises:
        ConfigurationError: If -y is given more than three times.
    """
    try:
        mode = SafetyMode.from_yolo_count(args.yolo) if args.yolo else None
    except ValueError as e:
        raise ConfigurationError(str(e)) from e

    overrides: dict[str, Any] = {
        "safety_mode": mode,
        "shell": args.shell,
        "dry_run": True if args.dry_run else None,
        "audit_enabled": False if args.no_audit else None,
        "save_shell_history": True if args.save_history else None,
        "log_level": VERBOSITY_LOG_LEVELS.get(min(args.verbose, 2)),
    }
    # A target flag replaces any target from settings files
    if args.distrobox or args.docker or args.podman:
        overrides.update(
            distrobox=args.distrobox or "",
            docker=args.docker or "",
            podman=args.podman or "",
        )
    return overrides


def command_text(parts: list[str]) -> str:
    if parts and parts[0] == "--":
        parts = parts[1:]
    return " ".join(parts).strip()


def write_output(stream: str, text: str) -> None:
    out = sys.stdout if stream == "stdout" else sys.stderr
    out.write(text)
    out.flush()


def render_outcome(console: Console, outcome: GateOutcome) -> None:
    """Render rejections, warnings and errors on the stderr console."""
    if outcome.warning:
        console.print(f"[yellow]Warning:[/yellow] {escape(outcome.warning)}")

    if outcome.rejection is not None:
        rejection = outcome.rejection
        table = Table(show_header=False, box=None, padding=(0, 2, 0, 0))
        table.add_column("Key", style="bold cyan", no_wrap=True)
        table.add_column("Value")
        table.add_row("Command", escape(truncate(outcome.command)))
        table.add_row("Category", rejection.category.value if rejection.category else "-")
        table.add_row("Severity", rejection.severity.value if rejection.severity else "-")
        table.add_row("Reason", escape(rejection.reason))
        title = {
            GateStatus.BLOCKED: "Command blocked",
            GateStatus.REJECTED: "Command rejected",
            GateStatus.TARGET_UNAVAILABLE: "Target unavailable",
        }.get(outcome.status, "Command refused")
        console.print(Panel(table, title=f"[bold red]{title}[/bold red]", border_style="red"))
        return

    if outcome.status == GateStatus.CANCELLED:
        console.print(f"[yellow]{escape(outcome.error or 'Command cancelled')}[/yellow]")
    elif outcome.status == GateStatus.FAILED and outcome.result is None:
        console.print(f"[red]Error:[/red] {escape(outcome.error or 'Command could not be started')}")
    elif outcome.status == GateStatus.DRY_RUN and outcome.decision is not None:
        decision = outcome.decision
        console.print(f"[dim]dry run: {decision.kind.value} ({escape(decision.reason)})[/dim]")


def main(
    argv: list[str] | None = None,
    input_func: Callable[[str], str] | None = None,
) -> int:
    """Main entry point for the shellgate CLI.

    Returns:
        Process exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    command = command_text(args.command)
    if not command:
        parser.error("a command is required")

    err_console = Console(stderr=True)

    try:
        settings = load_settings(config_file=args.config, **settings_overrides(args))
        configure_logging(settings)
        gate = create_gate(settings, console=err_console, input_func=input_func)
    except ConfigurationError as e:
        err_console.print(f"[red]Configuration error:[/red] {escape(str(e))}")
        return e.exit_code

    bind_context(session_id=gate.audit.session_id)

    if args.check:
        evaluation = gate.evaluate(command)
        Console().print_json(data=evaluation.to_dict())
        return 0

    outcome = gate.submit(command, on_output=write_output)
    if outcome.status == GateStatus.DRY_RUN:
        print(command)
    render_outcome(err_console, outcome)
    logger.debug("finished", status=outcome.status.value, exit_code=outcome.exit_code)
    return outcome.exit_code


if __name__ == "__main__":
    sys.exit(main())
