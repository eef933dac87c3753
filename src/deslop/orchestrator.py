"""Run orchestration: the phase state machine behind a deslop run.

A run moves through ``scanning -> results -> executing -> verifying ->
reviewing -> complete``; ``error`` is reachable from every phase and
``reviewing`` may loop back to ``results``. The current phase is a single
value from :mod:`deslop.models`; transitions replace it wholesale and are
checked against :data:`ALLOWED_TRANSITIONS`.

Agent failures while scanning or reviewing move the run to ``error``. Task
and verification failures are recorded on the tasks and commands instead,
and only an exhausted verification budget waits for a user decision.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from pathlib import Path

from deslop.agent.base import AgentFactory, AgentSession, AgentUpdate, TextDelta, ToolCallStarted
from deslop.config import DeslopConfig
from deslop.errors import InvalidTransitionError, parse_error
from deslop.learnings import LearningsStore, code_snippet
from deslop.models import (
    CompletePhase,
    ErrorPhase,
    ExecutingPhase,
    NotSlopEntry,
    Phase,
    PhaseName,
    ResultsPhase,
    ReviewingPhase,
    ScanningPhase,
    SlopFinding,
    Task,
    VerificationCommand,
    VerificationResult,
    VerificationState,
    VerifyingPhase,
    build_tasks,
    promote_suggestions,
)
from deslop.prompts import (
    build_code_review_prompt,
    build_fix_prompt,
    build_slop_detection_prompt,
    build_verification_fix_prompt,
)
from deslop.runs import RunStore
from deslop.verification import (
    DiscoveryResult,
    discover_verification_commands,
    run_verification_command,
)

logger = logging.getLogger(__name__)

LINE_WIDTH = 120
SCAN_OUTPUT_LINES = 20
OUTPUT_LINES = 10
COMMAND_TAIL_LINES = 10
SNIPPET_CONTEXT_LINES = 3
UNKNOWN_FILE_GROUP = "unknown"
NO_SLOP_MESSAGE = "No slop detected in this codebase!"

ALLOWED_TRANSITIONS: dict[PhaseName, frozenset[PhaseName]] = {
    "scanning": frozenset({"results", "complete", "error"}),
    "results": frozenset({"executing", "error"}),
    "executing": frozenset({"verifying", "reviewing", "error"}),
    "verifying": frozenset({"reviewing", "complete", "error"}),
    "reviewing": frozenset({"results", "complete", "error"}),
    "complete": frozenset(),
    "error": frozenset(),
}

Discover = Callable[[Path], DiscoveryResult]
RunCommand = Callable[[VerificationCommand, Path, float], Awaitable[VerificationResult]]


class OutputBuffer:
    """Turns streamed text deltas into a bounded window of display lines."""

    def __init__(
        self,
        sink: list[str],
        max_lines: int = OUTPUT_LINES,
        on_line: Callable[[str], None] | None = None,
    ) -> None:
        self.sink = sink
        self.max_lines = max_lines
        self.on_line = on_line
        self._pending = ""

    def _emit(self, lines: list[str]) -> None:
        for line in lines:
            self.sink.append(line[:LINE_WIDTH])
            if self.on_line is not None:
                self.on_line(self.sink[-1])
        del self.sink[: -self.max_lines]

    def feed(self, text: str) -> None:
        self._pending += text
        *complete, self._pending = self._pending.split("\n")
        if complete:
            self._emit([line for line in complete if line.strip()])
        elif len(self._pending) > LINE_WIDTH:
            self._emit([self._pending])
            self._pending = ""

    def append(self, *lines: str) -> None:
        self._emit(list(lines))

    def flush(self) -> None:
        if self._pending.strip():
            self._emit([self._pending])
        self._pending = ""


class RunListener:
    """Receives phase changes and in-phase updates; override what you need."""

    def phase_changed(self, phase: Phase) -> None:
        pass

    def updated(self, phase: Phase) -> None:
        pass

    def output(self, line: str) -> None:
        pass


class RunOrchestrator:
    def __init__(
        self,
        directory: Path,
        store: RunStore,
        learnings: LearningsStore,
        config: DeslopConfig,
        agent_factory: AgentFactory,
        *,
        discover: Discover = discover_verification_commands,
        run_command: RunCommand = run_verification_command,
        listener: RunListener | None = None,
    ) -> None:
        self.directory = directory.resolve()
        self.store = store
        self.learnings = learnings
        self.config = config
        self.agent_factory = agent_factory
        self.discover = discover
        self.run_command = run_command
        self.listener = listener or RunListener()
        self.planning_agent = agent_factory(config.models.planning)
        self.verification_agent = agent_factory(config.models.verification)
        self.phase: Phase = ScanningPhase()
        self._alive = True

    # -- state machine plumbing ------------------------------------------

    def _log(self, message: str) -> None:
        self.store.log_activity(message)

    def _output(self, line: str) -> None:
        if self._alive:
            self.listener.output(line)

    def _buffer(self, sink: list[str], max_lines: int = OUTPUT_LINES) -> OutputBuffer:
        return OutputBuffer(sink, max_lines, on_line=self._output)

    def _notify(self) -> None:
        if self._alive:
            self.listener.updated(self.phase)

    def _transition(self, phase: Phase) -> None:
        current = self.phase.name
        if phase.name not in ALLOWED_TRANSITIONS[current]:
            raise InvalidTransitionError(f"Cannot move from {current} to {phase.name}.")
        logger.debug("Phase %s -> %s", current, phase.name)
        self.phase = phase
        if self._alive:
            self.listener.phase_changed(phase)

    def _require(self, kind: type, operation: str):
        if not isinstance(self.phase, kind):
            raise InvalidTransitionError(
                f"{operation} is not available during the {self.phase.name} phase."
            )
        return self.phase

    def _fail(self, exc: BaseException) -> None:
        parsed = parse_error(exc)
        self._transition(
            ErrorPhase(
                title=parsed.title,
                message=parsed.message,
                hint=parsed.hint,
                failed_phase=self.phase.name,
            )
        )

    async def _consume(self, agent: AgentSession, prompt: str, buffer: OutputBuffer) -> None:
        def _on_delta(update: AgentUpdate) -> None:
            if isinstance(update, TextDelta):
                buffer.feed(update.text)
                self._notify()

        async with aclosing(agent.submit(prompt, _on_delta)) as stream:
            async for _event in stream:
                pass
        buffer.flush()

    def teardown(self) -> None:
        """Stop reporting progress; in-flight agent calls are left to finish."""
        self._alive = False

    # -- scanning --------------------------------------------------------

    async def scan(self) -> Phase:
        phase: ScanningPhase = self._require(ScanningPhase, "Scanning")
        self._log("Starting codebase scan")
        buffer = self._buffer(phase.messages, SCAN_OUTPUT_LINES)
        buffer.append("Starting codebase analysis...")
        phase.current_activity = "Initializing..."
        self._notify()

        def _on_delta(update: AgentUpdate) -> None:
            if not self._alive:
                return
            if isinstance(update, TextDelta):
                buffer.feed(update.text)
            elif isinstance(update, ToolCallStarted):
                phase.tool_calls += 1
                phase.current_activity = f"Tool: {update.name}"
            self._notify()

        try:
            prompt = build_slop_detection_prompt(
                self.store.findings_path, self.learnings.prompt_context()
            )
            async with aclosing(self.planning_agent.submit(prompt, _on_delta)) as stream:
                async for _event in stream:
                    if not self._alive:
                        return self.phase
            buffer.flush()
            findings = self.store.read_findings()
        except Exception as exc:
            self._log(f"Scan error: {exc}")
            self._fail(exc)
            return self.phase

        self._log(f"Scan complete: found {len(findings)} issues")
        if findings:
            self._transition(ResultsPhase(findings=findings))
        else:
            buffer.append(NO_SLOP_MESSAGE)
            self._transition(CompletePhase(message=NO_SLOP_MESSAGE))
        return self.phase

    # -- results ---------------------------------------------------------

    def _finding(self, phase: ResultsPhase, finding_id: str) -> SlopFinding | None:
        return next((finding for finding in phase.findings if finding.id == finding_id), None)

    def toggle(self, finding_id: str) -> bool:
        """Flip selection; hint-only findings stay unselected."""
        phase: ResultsPhase = self._require(ResultsPhase, "Selection")
        finding = self._finding(phase, finding_id)
        if finding is None or finding.hint_only:
            return False
        finding.selected = not finding.selected
        self._notify()
        return finding.selected

    def select_all(self) -> None:
        phase: ResultsPhase = self._require(ResultsPhase, "Selection")
        for finding in phase.findings:
            finding.selected = not finding.hint_only
        self._notify()

    def deselect_all(self) -> None:
        phase: ResultsPhase = self._require(ResultsPhase, "Selection")
        for finding in phase.findings:
            finding.selected = False
        self._notify()

    def mark_not_slop(self, finding_id: str) -> NotSlopEntry | None:
        phase: ResultsPhase = self._require(ResultsPhase, "Marking as not slop")
        finding = self._finding(phase, finding_id)
        if finding is None:
            return None
        snippet = code_snippet(self.directory, finding.file, finding.line, SNIPPET_CONTEXT_LINES)
        entry = self.learnings.add(finding, snippet)
        self._log(f"Marked as not slop: {finding.title} in {finding.file}")
        phase.findings.remove(finding)
        self._notify()
        return entry

    async def proceed(self) -> Phase:
        phase: ResultsPhase = self._require(ResultsPhase, "Proceeding")
        tasks = build_tasks(phase.findings)
        if not tasks:
            raise InvalidTransitionError("Select at least one fixable finding before proceeding.")
        findings = {finding.id: finding for finding in phase.findings}
        self.store.write_tasks(tasks)
        executing = ExecutingPhase(tasks=tasks)
        self._transition(executing)
        await self._execute(executing, findings)
        await self._start_verification(executing.tasks)
        return self.phase

    # -- executing -------------------------------------------------------

    @staticmethod
    def group_by_file(tasks: list[Task]) -> dict[str, list[Task]]:
        groups: dict[str, list[Task]] = {}
        for task in tasks:
            groups.setdefault(task.file or UNKNOWN_FILE_GROUP, []).append(task)
        return groups

    async def _run_task(
        self,
        task: Task,
        finding: SlopFinding,
        agent: AgentSession,
        phase: ExecutingPhase,
    ) -> None:
        buffer = self._buffer(phase.output)
        task.status = "in_progress"
        buffer.append(f"Starting: {task.title}")
        self._log(f"Executing: {task.title}")
        self._notify()
        try:
            await self._consume(agent, build_fix_prompt(finding), buffer)
        except Exception as exc:
            task.status = "failed"
            task.error = str(exc)
            buffer.append(f"Failed: {task.title} - {exc}")
            self._log(f"Failed: {task.title} - {exc}")
        else:
            task.status = "completed"
            buffer.append(f"Completed: {task.title}")
            self._log(f"Completed: {task.title}")
        self._notify()

    async def _run_file_group(
        self,
        tasks: list[Task],
        findings: dict[str, SlopFinding],
        phase: ExecutingPhase,
    ) -> None:
        agent = self.agent_factory(self.config.models.executing)
        for task in tasks:
            finding = findings.get(task.source_finding_id)
            if finding is None:
                continue
            await self._run_task(task, finding, agent, phase)

    async def _execute(self, phase: ExecutingPhase, findings: dict[str, SlopFinding]) -> None:
        self._log(f"Starting parallel execution of {len(phase.tasks)} tasks")
        groups = self.group_by_file(phase.tasks)
        self._log(f"Grouped into {len(groups)} file groups")

        limit = self.config.execution.max_concurrent_files
        semaphore = asyncio.Semaphore(limit) if limit > 0 else None

        async def _guarded(file_tasks: list[Task]) -> None:
            if semaphore is None:
                await self._run_file_group(file_tasks, findings, phase)
                return
            async with semaphore:
                await self._run_file_group(file_tasks, findings, phase)

        file_groups = list(groups.items())
        results = await asyncio.gather(
            *(_guarded(file_tasks) for _, file_tasks in file_groups),
            return_exceptions=True,
        )
        for (file, file_tasks), result in zip(file_groups, results):
            if not isinstance(result, Exception):
                continue
            logger.warning("File group %s failed: %s", file, result)
            for task in file_tasks:
                if task.status in ("pending", "in_progress"):
                    task.status = "failed"
                    task.error = str(result)
                    self._log(f"Failed: {task.title} - {result}")
        self._notify()

    # -- verifying -------------------------------------------------------

    async def _start_verification(self, tasks: list[Task]) -> None:
        self._log("Starting verification")
        discovery = self.discover(self.directory)
        if not discovery.commands:
            self._log("No verification commands found, skipping to review")
            await self._review(tasks)
            return

        self._log(
            f"Found {len(discovery.commands)} verification commands "
            f"from {', '.join(discovery.sources)}"
        )
        phase = VerifyingPhase(
            verification=VerificationState(
                commands=discovery.commands,
                max_attempts=self.config.verification.max_retries,
                status="running",
            ),
            tasks=tasks,
            sources=discovery.sources,
        )
        self._transition(phase)
        await self._verify(phase)

    async def _verification_pass(self, phase: VerifyingPhase) -> VerificationCommand | None:
        """Run commands in order; return the first required command that failed."""
        state = phase.verification
        buffer = self._buffer(phase.output)
        results: list[VerificationResult] = []
        failed: VerificationCommand | None = None

        for index, command in enumerate(state.commands):
            state.current_index = index
            command.status = "running"
            buffer.append(f"Running: {command.command}")
            self._notify()

            result = await self.run_command(
                command, self.directory, self.config.verification.timeout
            )
            results.append(result)
            command.output = result.output
            command.exit_code = result.exit_code
            buffer.append(*result.output.split("\n")[-COMMAND_TAIL_LINES:])

            if result.success:
                command.status = "passed"
                self._log(f"Verification passed: {command.command}")
            elif command.optional:
                command.status = "skipped"
                self._log(f"Verification skipped (optional): {command.command}")
            else:
                command.status = "failed"
                self._log(
                    f"Verification failed: {command.command} (exit code {result.exit_code})"
                )
                failed = command
                break
            self._notify()

        self.store.write_verification_results(results, state.attempt)
        self._notify()
        return failed

    async def _verify(self, phase: VerifyingPhase) -> None:
        while True:
            state = phase.verification
            failed = await self._verification_pass(phase)
            if failed is None:
                state.status = "passed"
                self._log("All verification commands passed")
                self._notify()
                await self._review(phase.tasks)
                return

            state.last_error = failed.output
            if state.attempt >= state.max_attempts:
                self._log(f"Verification failed after {state.attempt} attempts")
                state.status = "failed"
                self._notify()
                return

            state.status = "fixing"
            buffer = self._buffer(phase.output)
            buffer.append(
                "Attempting to fix verification failure "
                f"(attempt {state.attempt}/{state.max_attempts})..."
            )
            self._log(f"Attempting fix for: {failed.command}")
            self._notify()
            try:
                await self._consume(
                    self.verification_agent,
                    build_verification_fix_prompt(failed, failed.output or "", state.attempt),
                    buffer,
                )
            except Exception as exc:
                self._log(f"Fix attempt failed: {exc}")
                state.status = "failed"
                state.last_error = str(exc)
                self._notify()
                return

            phase.verification = VerificationState(
                commands=[command.reset() for command in state.commands],
                max_attempts=state.max_attempts,
                attempt=state.attempt + 1,
                status="running",
            )
            self._notify()

    def _failed_verification(self, operation: str) -> VerifyingPhase:
        phase: VerifyingPhase = self._require(VerifyingPhase, operation)
        if phase.verification.status != "failed":
            raise InvalidTransitionError(f"{operation} is only available after verification fails.")
        return phase

    async def retry_verification(self) -> Phase:
        phase = self._failed_verification("Retrying verification")
        state = phase.verification
        self._log("Retrying verification from attempt 1")
        phase.verification = VerificationState(
            commands=[command.reset() for command in state.commands],
            max_attempts=state.max_attempts,
            attempt=1,
            status="running",
        )
        self._notify()
        await self._verify(phase)
        return self.phase

    async def skip_verification(self) -> Phase:
        phase = self._failed_verification("Skipping verification")
        self._log("Skipping verification, proceeding to review")
        await self._review(phase.tasks)
        return self.phase

    def abort(self) -> Phase:
        phase = self._failed_verification("Quitting")
        self._log("Run aborted after failed verification")
        self._transition(CompletePhase(tasks=phase.tasks, message="Verification failed"))
        return self.phase

    # -- reviewing -------------------------------------------------------

    async def _review(self, tasks: list[Task]) -> None:
        phase = ReviewingPhase(tasks=tasks)
        self._transition(phase)
        self._log("Starting code review")
        try:
            await self._consume(
                self.planning_agent,
                build_code_review_prompt(self.store.review_path),
                self._buffer(phase.output),
            )
            suggestions = self.store.read_review()
        except Exception as exc:
            self._log(f"Review error: {exc}")
            self._fail(exc)
            return

        phase.suggestions = suggestions
        phase.loading = False
        self._log(f"Review complete: {len(suggestions)} suggestions")
        self._notify()

    def _settled_review(self, operation: str) -> ReviewingPhase:
        phase: ReviewingPhase = self._require(ReviewingPhase, operation)
        if phase.loading:
            raise InvalidTransitionError(f"{operation} is not available while the review runs.")
        return phase

    def apply_suggestions(self) -> Phase:
        phase = self._settled_review("Applying suggestions")
        if not phase.suggestions:
            raise InvalidTransitionError("There are no review suggestions to apply.")
        self._transition(ResultsPhase(findings=promote_suggestions(phase.suggestions)))
        self._log("Applying review suggestions")
        return self.phase

    def finish(self) -> Phase:
        phase = self._settled_review("Finishing")
        self._transition(CompletePhase(tasks=phase.tasks))
        self._log("Run complete")
        return self.phase
