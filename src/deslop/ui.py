from __future__ import annotations

import logging
from pathlib import Path

import click

from deslop.errors import InvalidTransitionError, PublishError
from deslop.learnings import code_snippet
from deslop.models import (
    CompletePhase,
    ErrorPhase,
    ExecutingPhase,
    Phase,
    ResultsPhase,
    ReviewingPhase,
    ScanningPhase,
    SlopFinding,
    Task,
    VerifyingPhase,
)
from deslop.orchestrator import RunListener, RunOrchestrator
from deslop.publish import create_pull_request, git_status

logger = logging.getLogger(__name__)

SEVERITY_COLORS = {"high": "red", "medium": "yellow", "low": "blue"}
COMMAND_STATUS_MARKS = {
    "pending": ("·", None),
    "running": ("…", "yellow"),
    "passed": ("✓", "green"),
    "failed": ("✗", "red"),
    "skipped": ("-", "bright_black"),
}
TASK_STATUS_MARKS = {
    "pending": ("·", None),
    "in_progress": ("…", "yellow"),
    "completed": ("✓", "green"),
    "failed": ("✗", "red"),
}
RESULTS_HELP = (
    "<n> toggle  a select all  n select none  v <n> view code  "
    "x <n> not slop  enter fix selected  q quit"
)


def _title(text: str, color: str = "cyan") -> None:
    click.echo()
    click.secho(f"> deslop - {text}", fg=color, bold=True)


class TerminalUI(RunListener):
    """Line-oriented presenter: prints phase headers, progress and prompts."""

    def __init__(self, directory: Path) -> None:
        self.directory = directory
        self._scan_tools = 0

    # -- listener --------------------------------------------------------

    def phase_changed(self, phase: Phase) -> None:
        if isinstance(phase, ExecutingPhase):
            _title(f"Fixing {len(phase.tasks)} issues")
        elif isinstance(phase, VerifyingPhase):
            _title(f"Verifying ({', '.join(phase.sources)})")
        elif isinstance(phase, ReviewingPhase):
            _title("Reviewing changes")

    def updated(self, phase: Phase) -> None:
        if isinstance(phase, ScanningPhase) and phase.tool_calls != self._scan_tools:
            self._scan_tools = phase.tool_calls
            click.secho(f"  [{phase.tool_calls}] {phase.current_activity}", dim=True)

    def output(self, line: str) -> None:
        click.secho(f"  {line}", dim=True)

    # -- screens ---------------------------------------------------------

    def show_findings(self, phase: ResultsPhase) -> None:
        _title(f"Found {len(phase.findings)} issues ({phase.selected_count} selected)")
        for number, finding in enumerate(phase.findings, start=1):
            self._finding_line(number, finding)
        click.secho(RESULTS_HELP, dim=True)

    def _finding_line(self, number: int, finding: SlopFinding) -> None:
        if finding.hint_only:
            mark = click.style("[hint]", fg="magenta")
        else:
            mark = "[x]" if finding.selected else "[ ]"
        severity = click.style(
            finding.severity.upper(), fg=SEVERITY_COLORS.get(finding.severity), bold=True
        )
        location = f"{finding.file}:{finding.line}" if finding.line else finding.file
        click.echo(f"{number:>3}. {mark} {severity} {finding.title}")
        click.secho(f"        {location} ({finding.category})", dim=True)

    def show_snippet(self, finding: SlopFinding) -> None:
        click.secho(f"{finding.file}:{finding.line or 1}", bold=True)
        click.echo(code_snippet(self.directory, finding.file, finding.line, 5))
        if finding.description:
            click.secho(finding.description, dim=True)

    def show_verification(self, phase: VerifyingPhase) -> None:
        state = phase.verification
        _title(
            f"Verification failed (attempt {state.attempt}/{state.max_attempts})",
            color="red",
        )
        for command in state.commands:
            mark, color = COMMAND_STATUS_MARKS[command.status]
            suffix = " (optional)" if command.optional else ""
            click.echo(f"  {click.style(mark, fg=color)} {command.name}{suffix}: {command.command}")

    def show_review(self, phase: ReviewingPhase) -> None:
        if not phase.suggestions:
            _title("Review complete", color="green")
            click.echo("The code looks good, no further suggestions.")
            return
        _title(f"Review: {len(phase.suggestions)} suggestions")
        for number, suggestion in enumerate(phase.suggestions, start=1):
            severity = click.style(
                suggestion.severity.upper(),
                fg=SEVERITY_COLORS.get(suggestion.severity),
                bold=True,
            )
            location = f"{suggestion.file}:{suggestion.line}" if suggestion.line else suggestion.file
            click.echo(f"{number:>3}. {severity} {suggestion.title}")
            click.secho(f"        {location}", dim=True)
            if suggestion.description:
                click.secho(f"        {suggestion.description}", dim=True)

    def show_complete(self, phase: CompletePhase) -> None:
        _title("Complete!", color="green")
        if phase.message:
            click.echo(phase.message)
        if not phase.tasks:
            return
        click.echo(f"{click.style('✓', fg='green')} Successfully fixed: {len(phase.completed)} issues")
        if phase.failed:
            click.echo(f"{click.style('✗', fg='red')} Failed: {len(phase.failed)} issues")
            for task in phase.failed:
                click.secho(f"  - {task.title}: {task.error or 'unknown error'}", dim=True)

    def show_error(self, phase: ErrorPhase) -> None:
        _title(phase.title, color="red")
        click.secho(phase.message, fg="red")
        if phase.hint:
            click.echo()
            click.secho(phase.hint, dim=True)

    def offer_pull_request(self, tasks: list[Task]) -> None:
        status = git_status(self.directory)
        if status == "not-git":
            click.secho("Not a git repository. Run `git diff` to review changes.", dim=True)
            return
        if status == "no-changes":
            click.secho("No changes detected. Your codebase is already clean!", dim=True)
            return
        click.secho("Your codebase has been deslopped. Run `git diff` to review changes.", dim=True)
        if not click.confirm("Create a pull request?", default=False):
            return
        click.secho("Creating pull request...", fg="yellow")
        try:
            url = create_pull_request(self.directory, tasks)
        except PublishError as exc:
            click.secho("✗ Failed to create PR", fg="red")
            click.secho(str(exc), dim=True)
            click.secho("You can manually create a PR with your changes.", dim=True)
            return
        click.secho("✓ Pull request created!", fg="green")
        if url:
            click.echo(url)


def _finding_at(phase: ResultsPhase, raw_number: str) -> SlopFinding | None:
    if not raw_number.strip().isdigit():
        return None
    index = int(raw_number) - 1
    if 0 <= index < len(phase.findings):
        return phase.findings[index]
    return None


def curate_findings(orchestrator: RunOrchestrator, ui: TerminalUI) -> bool:
    """Selection loop for the results phase; False when the user quits."""
    while True:
        phase = orchestrator.phase
        if not isinstance(phase, ResultsPhase):
            return False
        ui.show_findings(phase)
        command = click.prompt(">", default="", show_default=False).strip().lower()
        if command == "":
            if phase.selected_count == 0:
                click.secho("Select at least one fixable issue first.", fg="yellow")
                continue
            return True
        if command == "q":
            return False
        if command == "a":
            orchestrator.select_all()
        elif command == "n":
            orchestrator.deselect_all()
        elif command[:1] in ("x", "v"):
            finding = _finding_at(phase, command[1:])
            if finding is None:
                click.secho("Unknown issue number.", fg="yellow")
            elif command[0] == "v":
                ui.show_snippet(finding)
            else:
                orchestrator.mark_not_slop(finding.id)
                click.secho(f"Marked as not slop: {finding.title}", dim=True)
        else:
            finding = _finding_at(phase, command)
            if finding is None:
                click.secho("Unknown command.", fg="yellow")
            elif finding.hint_only:
                click.secho("UI slop is flagged for review only and cannot be auto-fixed.", dim=True)
            else:
                orchestrator.toggle(finding.id)


async def drive(orchestrator: RunOrchestrator, ui: TerminalUI) -> int:
    """Run the orchestrator to a terminal phase, asking the user at each gate."""
    _title("Scanning codebase")
    await orchestrator.scan()
    while True:
        phase = orchestrator.phase
        if isinstance(phase, ResultsPhase):
            if not curate_findings(orchestrator, ui):
                return 0
            try:
                await orchestrator.proceed()
            except InvalidTransitionError as exc:
                click.secho(str(exc), fg="yellow")
        elif isinstance(phase, VerifyingPhase):
            ui.show_verification(phase)
            choice = click.prompt(
                "[r]etry, [s]kip to review or [q]uit",
                type=click.Choice(["r", "s", "q"]),
                show_choices=False,
            )
            if choice == "r":
                await orchestrator.retry_verification()
            elif choice == "s":
                await orchestrator.skip_verification()
            else:
                orchestrator.abort()
                return 1
        elif isinstance(phase, ReviewingPhase):
            ui.show_review(phase)
            if phase.suggestions and click.confirm("Apply these suggestions?", default=False):
                orchestrator.apply_suggestions()
            else:
                orchestrator.finish()
        elif isinstance(phase, CompletePhase):
            ui.show_complete(phase)
            if phase.completed:
                ui.offer_pull_request(phase.tasks)
            return 0
        elif isinstance(phase, ErrorPhase):
            ui.show_error(phase)
            return 1
        else:
            logger.error("Run stopped in unexpected phase %s", phase.name)
            return 1
