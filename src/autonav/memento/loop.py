"""The memento loop: plan, implement, review, commit, repeat.

The implementer forgets everything between iterations. Git history is the
only durable memory: each iteration ends in a commit the navigator reads back
as context when planning the next one.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from pathlib import Path
from typing import Any, Optional

from ..config import NavigatorConfig, load_navigator
from ..harness.helpers import CollectedResult, collect_result
from ..harness.tool_server import is_local_tool_server
from ..harness.types import (
    AgentConfig,
    AgentEvent,
    ErrorEvent,
    Harness,
    SandboxPolicy,
    Session,
    ToolResultEvent,
    ToolUseEvent,
)
from .git_operations import (
    commit_changes,
    create_branch,
    create_pull_request,
    discard_changes,
    ensure_git_repo,
    get_current_branch,
    get_last_commit_diff_stats,
    get_recent_diff,
    get_recent_git_log,
    get_remote_url,
    has_uncommitted_changes,
    is_gh_available,
    push_branch,
    stage_all_changes,
)
from .mood import MoodPhase, MoodState, NullProgressFeedback, ProgressFeedback, is_write_tool, pick_mood, review_fix_mood
from .nav_protocol import NAV_PROTOCOL_SERVER, SUBMIT_PLAN_TOOL, create_nav_protocol_tools
from .prompts import (
    COMMIT_MESSAGE_SYSTEM_PROMPT,
    LOCAL_TOOL_NOTE,
    REVIEWER_SYSTEM_PROMPT,
    build_commit_message_prompt,
    build_fix_prompt,
    build_fix_system_prompt,
    build_implementer_prompt,
    build_implementer_system_prompt,
    build_nav_plan_prompt,
    build_nav_system_prompt,
    build_review_prompt,
)
from .rate_limit import (
    Sleep,
    classify_error,
    parse_rate_limit_error,
    wait_for_connection_retry,
    wait_for_rate_limit,
)
from .types import (
    FALLBACK_COMMIT_MESSAGE,
    ImplementationPlan,
    ImplementerResult,
    LoopState,
    MementoOptions,
    MementoResult,
    PlanRecord,
    ReviewOutcome,
)

logger = logging.getLogger(__name__)

GIT_LOG_COUNT = 20
MAX_ERROR_CHARS = 500
NAV_DISALLOWED_TOOLS = ("Write", "Edit", "Bash")
SANDBOX_OPERATION = "memento"


def _truncate(text: str, limit: int = MAX_ERROR_CHARS) -> str:
    return text if len(text) <= limit else text[:limit] + "... (truncated)"


def _count_bullets(review: str) -> list[str]:
    return [line.strip() for line in review.strip().splitlines() if line.strip().startswith("- ")]


def _clean_commit_message(raw: str) -> str:
    lines = raw.strip().splitlines()
    first = lines[0] if lines else ""
    return first.strip().strip("\"'").strip()


class MementoLoop:
    """Drive planner and implementer sessions over a git repository.

    Args:
        harness (Harness): Backend every agent call runs on.
        options (MementoOptions): Directories, task, and per-run limits.
        feedback (ProgressFeedback | None): Progress surface; defaults to a no-op.
        sleep (Sleep): Awaitable sleep used for backoff waits.
        rng (random.Random | None): Source for mood messages.
    """

    def __init__(
        self,
        harness: Harness,
        options: MementoOptions,
        *,
        feedback: Optional[ProgressFeedback] = None,
        sleep: Sleep = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.harness = harness
        self.options = options
        self.feedback: ProgressFeedback = feedback or NullProgressFeedback()
        self.sleep = sleep
        self.rng = rng or random.Random()
        self.state = LoopState()
        self.errors: list[str] = []
        self.commits: list[str] = []
        self.navigator: Optional[NavigatorConfig] = None
        self.code_dir = str(Path(options.code_directory).expanduser().resolve())
        self.nav_dir = str(Path(options.nav_directory).expanduser().resolve())

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self) -> MementoResult:
        """Run iterations until the cap is reached or a fatal error occurs."""
        started = time.monotonic()
        try:
            self._prepare()
            await self._handle_uncommitted_changes()
            if self.options.branch:
                create_branch(self.options.branch, self.code_dir)

            max_iterations = self.options.max_iterations
            while max_iterations == 0 or self.state.iteration < max_iterations:
                self.state.iteration += 1
                await self._run_iteration()

            logger.info("Max iterations (%d) reached", max_iterations)
            pr_url = self._open_pull_request()
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            if self.state.stats.last_tool:
                message = f"{message} (last tool: {self.state.stats.last_tool})"
            logger.error("Memento loop stopped at iteration %d: %s", self.state.iteration, message)
            self.errors.append(message)
            return MementoResult(
                success=False,
                iterations=self.state.iteration,
                duration_ms=int((time.monotonic() - started) * 1000),
                completion_message=self.state.completion_message,
                branch=self._current_branch(),
                commits=list(self.commits),
                errors=list(self.errors),
            )
        finally:
            self.feedback.stop()

        return MementoResult(
            success=True,
            iterations=self.state.iteration,
            duration_ms=int((time.monotonic() - started) * 1000),
            completion_message=self.state.completion_message,
            pr_url=pr_url,
            branch=self._current_branch(),
            commits=list(self.commits),
            errors=list(self.errors),
        )

    def _prepare(self) -> None:
        if not Path(self.code_dir).is_dir():
            raise FileNotFoundError(f"Code directory not found: {self.code_dir}")
        self.navigator = load_navigator(self.nav_dir)
        ensure_git_repo(self.code_dir)
        logger.info("Memento loop starting in %s with navigator %s", self.code_dir, self.navigator.name)
        logger.debug("Task: %s", self.options.task[:200])

    def _current_branch(self) -> Optional[str]:
        if self.options.branch:
            return self.options.branch
        return get_current_branch(self.code_dir) if Path(self.code_dir).is_dir() else None

    async def _run_iteration(self) -> None:
        iteration = self.state.iteration
        logger.info("Iteration %d", iteration)
        self.feedback.set_stats(
            iteration=iteration,
            max_iterations=self.options.max_iterations or None,
            lines_added=self.state.stats.lines_added,
            lines_removed=self.state.stats.lines_removed,
            tokens_used=0,
            last_tool=self.state.stats.last_tool,
        )
        self.feedback.set_message(f"Consulting {self._navigator.name}...")
        self.feedback.start()

        try:
            git_log = get_recent_git_log(self.code_dir, GIT_LOG_COUNT)
            plan = await self._plan_with_retry(git_log)
            self.state.plan_history.append(PlanRecord(iteration=iteration, summary=plan.summary))
            logger.info("Plan: %s", plan.summary)
            if plan.is_complete:
                logger.info("Navigator reports the task complete: %s", plan.completion_message or plan.summary)
                self.state.completion_message = plan.completion_message or plan.summary

            self.feedback.set_message("Implementer implementing...")
            self.feedback.set_tokens(0)
            self.feedback.reset_turns()
            result = await self._implement(plan)
            self.state.stats.tokens_used += result.tokens_used
            logger.info(
                "Implementer modified %d file%s, %d tokens: %s",
                len(result.files_modified),
                "" if len(result.files_modified) == 1 else "s",
                result.tokens_used,
                ", ".join(result.files_modified) or "(none)",
            )
            if result.last_tool:
                self.state.stats.last_tool = result.last_tool
            self.feedback.set_tokens(result.tokens_used)
            if not result.success:
                detail = "; ".join(result.errors) or result.summary or "Unknown error"
                self.errors.append(f"Iteration {iteration}: Implementer failed - {_truncate(detail)}")

            outcome = await self._review()
            if outcome.error:
                self.errors.append(f"Iteration {iteration}: Review failed - {_truncate(outcome.error)}")
        finally:
            self.feedback.stop()

        await self._commit()

    @property
    def _navigator(self) -> NavigatorConfig:
        if self.navigator is None:
            raise RuntimeError("Navigator not loaded")
        return self.navigator

    # ------------------------------------------------------------------
    # Session plumbing
    # ------------------------------------------------------------------

    def _sandbox(self, *, read: tuple[str, ...] = (), write: tuple[str, ...] = ()) -> SandboxPolicy:
        enabled = self._navigator.sandbox_enabled(SANDBOX_OPERATION)
        return SandboxPolicy(read_paths=read, write_paths=write, enabled=None if enabled else False)

    async def _drain(
        self,
        session: Session,
        *,
        phase: Optional[MoodPhase] = None,
        mood: Optional[MoodState] = None,
        files_modified: Optional[list[str]] = None,
    ) -> CollectedResult:
        """Consume one turn to exhaustion, driving feedback; always closes ``session``."""
        state = mood or MoodState()

        def _on_event(event: AgentEvent) -> None:
            if isinstance(event, ToolUseEvent):
                name = event.short_name
                state.record_tool()
                self.feedback.set_last_tool(name)
                self.feedback.increment_turns()
                if phase is not None:
                    self.feedback.set_message(pick_mood(phase, name, event.input, state, self.rng))
                if files_modified is not None and is_write_tool(name):
                    path = event.input.get("file_path") or event.input.get("path")
                    if isinstance(path, str) and path not in files_modified:
                        files_modified.append(path)
                logger.debug("Tool: %s", name)
            elif isinstance(event, ToolResultEvent) and event.is_error:
                state.record_error()
                if phase is not None:
                    self.feedback.set_message(pick_mood(phase, "", {}, state, self.rng))
            elif isinstance(event, ErrorEvent):
                logger.debug("Agent error event: %s", event.message)

        try:
            return await collect_result(session, on_event=_on_event)
        finally:
            await session.close()

    def _with_tool_note(self, prompt: str, server: Any, tool_name: str) -> str:
        if is_local_tool_server(server):
            return f"{prompt}\n\n{LOCAL_TOOL_NOTE.format(tool=tool_name)}"
        return prompt

    # ------------------------------------------------------------------
    # Plan
    # ------------------------------------------------------------------

    async def _plan_with_retry(self, git_log: str) -> ImplementationPlan:
        """Ask the navigator for a plan, waiting out rate limits indefinitely.

        Raises:
            RuntimeError: If the navigator fails for any reason other than a rate limit.
            MissingCaptureError: If the navigator finished without submitting a plan.
        """
        navigator = self._navigator
        attempt = 0
        while True:
            protocol = create_nav_protocol_tools()
            server = self.harness.create_tool_server(NAV_PROTOCOL_SERVER, protocol.tools)
            prompt = build_nav_plan_prompt(
                code_directory=self.code_dir,
                task=self.options.task,
                iteration=self.state.iteration,
                max_iterations=self.options.max_iterations,
                git_log=git_log,
                branch=self.options.branch,
                navigator_name=navigator.name,
            )
            config = AgentConfig(
                model=self.options.nav_model,
                system_prompt=build_nav_system_prompt(navigator.system_prompt),
                cwd=self.nav_dir,
                max_turns=self.options.max_turns,
                additional_directories=(self.code_dir,),
                mcp_servers={NAV_PROTOCOL_SERVER: server},
                disallowed_tools=NAV_DISALLOWED_TOOLS,
                permission_mode="bypassPermissions",
                sandbox=self._sandbox(read=(self.code_dir,), write=(self.nav_dir,)),
            )
            session = self.harness.run(config, self._with_tool_note(prompt, server, SUBMIT_PLAN_TOOL))
            collected = await self._drain(session, phase="nav")
            self.state.stats.tokens_used += collected.tokens_used
            if collected.tool_use_events:
                self.state.stats.last_tool = collected.tool_use_events[-1].short_name

            if not collected.success:
                error_text = collected.error_text or "Navigator returned no result"
                if classify_error(error_text) == "rate_limit":
                    await wait_for_rate_limit(
                        parse_rate_limit_error(error_text),
                        attempt,
                        feedback=self.feedback,
                        policy=self.options.backoff,
                        sleep=self.sleep,
                    )
                    attempt += 1
                    self.feedback.set_message("Navigator retrying...")
                    continue
                raise RuntimeError(f"Navigator failed: {error_text}")

            return protocol.plan.get()

    # ------------------------------------------------------------------
    # Implement
    # ------------------------------------------------------------------

    async def _implement(self, plan: ImplementationPlan) -> ImplementerResult:
        """Run the implementer, retrying the whole turn on rate limits and connection errors.

        Tokens and modified files accumulate across retries. Any other failure
        is returned once, unretried.
        """
        prompt = build_implementer_prompt(self.code_dir, plan)
        system_prompt = build_implementer_system_prompt(self.code_dir)
        files_modified: list[str] = []
        tokens_used = 0
        last_tool: Optional[str] = None
        attempt = 0
        while True:
            config = AgentConfig(
                model=self.options.model,
                system_prompt=system_prompt,
                cwd=self.code_dir,
                max_turns=self.options.max_turns,
                permission_mode="bypassPermissions",
                sandbox=self._sandbox(write=(self.code_dir,)),
            )
            try:
                collected = await self._drain(
                    self.harness.run(config, prompt),
                    phase="impl",
                    files_modified=files_modified,
                )
            except Exception as exc:
                logger.debug("Implementer session raised", exc_info=True)
                error_text = str(exc) or exc.__class__.__name__
                collected = None
            else:
                tokens_used += collected.tokens_used
                if collected.tool_use_events:
                    last_tool = collected.tool_use_events[-1].short_name
                if collected.success:
                    return ImplementerResult(
                        success=True,
                        summary=collected.text or "Implementation completed",
                        files_modified=files_modified,
                        tokens_used=tokens_used,
                        last_tool=last_tool,
                        attempts=attempt + 1,
                    )
                error_text = collected.error_text or "Implementer returned no result"

            kind = classify_error(error_text)
            if kind == "rate_limit":
                await wait_for_rate_limit(
                    parse_rate_limit_error(error_text),
                    attempt,
                    feedback=self.feedback,
                    policy=self.options.backoff,
                    sleep=self.sleep,
                )
            elif kind == "transient":
                await wait_for_connection_retry(
                    error_text, attempt, feedback=self.feedback, policy=self.options.backoff, sleep=self.sleep
                )
            else:
                summary = "Implementer crashed" if collected is None else "Implementer failed"
                logger.warning("%s: %s", summary, error_text.splitlines()[0] if error_text else "unknown error")
                return ImplementerResult(
                    success=False,
                    summary=summary,
                    files_modified=files_modified,
                    errors=[error_text],
                    tokens_used=tokens_used,
                    last_tool=last_tool,
                    attempts=attempt + 1,
                )
            attempt += 1
            self.feedback.set_message("Implementer retrying...")
            self.feedback.set_tokens(tokens_used)

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    async def _review(self) -> ReviewOutcome:
        """Review and fix the working tree for up to ``review_rounds`` rounds.

        Never raises for agent failures: the outcome carries the error and the
        iteration commits regardless.
        """
        outcome = ReviewOutcome(lgtm=False)
        max_rounds = self.options.review_rounds
        for round_number in range(1, max_rounds + 1):
            stage_all_changes(self.code_dir)
            diff = get_recent_diff(self.code_dir)
            if not diff:
                outcome.lgtm = True
                return outcome

            outcome.rounds = round_number
            self.feedback.set_message(f"Reviewing... (round {round_number}/{max_rounds})")
            self.feedback.reset_turns()
            config = AgentConfig(
                model=self.options.nav_model,
                system_prompt=REVIEWER_SYSTEM_PROMPT,
                cwd=self.nav_dir,
                max_turns=1,
                allowed_tools=(),
                permission_mode="bypassPermissions",
                sandbox=self._sandbox(read=(self.code_dir,)),
            )
            try:
                collected = await self._drain(self.harness.run(config, build_review_prompt(diff)))
            except Exception as exc:
                outcome.error = f"Reviewer crashed: {exc}"
                logger.warning("%s", outcome.error)
                return outcome
            if not collected.success:
                outcome.error = f"Reviewer failed: {collected.error_text or 'no result'}"
                logger.warning("%s", outcome.error)
                return outcome

            review = collected.full_text.strip()
            if review.upper().startswith("LGTM"):
                logger.info("Review round %d: LGTM", round_number)
                outcome.lgtm = True
                return outcome

            bullets = _count_bullets(review)
            outcome.issues.append(bullets)
            logger.info("Review round %d: %d issue%s", round_number, len(bullets), "" if len(bullets) == 1 else "s")
            for bullet in bullets:
                logger.info("  %s", bullet)

            self.feedback.set_message(review_fix_mood(round_number, self.rng))
            self.feedback.reset_turns()
            fix_config = AgentConfig(
                model=self.options.model,
                system_prompt=build_fix_system_prompt(self.code_dir),
                cwd=self.code_dir,
                max_turns=self.options.max_turns,
                permission_mode="bypassPermissions",
                sandbox=self._sandbox(write=(self.code_dir,)),
            )
            try:
                fixed = await self._drain(self.harness.run(fix_config, build_fix_prompt(self.code_dir, review)))
            except Exception as exc:
                outcome.error = f"Fix crashed: {exc}"
                logger.warning("%s", outcome.error)
                return outcome
            outcome.fixes_applied += 1
            if not fixed.success:
                outcome.error = f"Fix failed: {fixed.error_text or 'no result'}"
                logger.warning("%s", outcome.error)
                return outcome

        logger.info("Max review rounds (%d) reached; committing anyway", max_rounds)
        return outcome

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    async def _generate_commit_message(self) -> str:
        """One-line conventional commit message for the staged diff; falls back on any failure."""
        diff = get_recent_diff(self.code_dir)
        if not diff:
            return FALLBACK_COMMIT_MESSAGE
        config = AgentConfig(
            model=self.options.model,
            system_prompt=COMMIT_MESSAGE_SYSTEM_PROMPT,
            cwd=self.code_dir,
            max_turns=1,
            allowed_tools=(),
            permission_mode="bypassPermissions",
            sandbox=self._sandbox(read=(self.code_dir,)),
        )
        try:
            collected = await self._drain(self.harness.run(config, build_commit_message_prompt(diff)))
        except Exception as exc:
            logger.warning("Commit message generation failed, using fallback: %s", exc)
            return FALLBACK_COMMIT_MESSAGE
        if not collected.success:
            logger.warning(
                "Commit message generation failed, using fallback: %s", collected.error_text or "no result"
            )
            return FALLBACK_COMMIT_MESSAGE
        message = _clean_commit_message(collected.full_text)
        if not message:
            logger.warning("Commit message generation returned nothing, using fallback")
            return FALLBACK_COMMIT_MESSAGE
        return message

    async def _commit(self) -> Optional[str]:
        stage_all_changes(self.code_dir)
        message = await self._generate_commit_message()
        sha = commit_changes(message, self.code_dir)
        if sha is None:
            logger.info("Iteration %d produced no changes", self.state.iteration)
            return None
        self.commits.append(sha)
        stats = get_last_commit_diff_stats(self.code_dir)
        self.state.stats.lines_added += stats.lines_added
        self.state.stats.lines_removed += stats.lines_removed
        logger.info(
            "Iteration %d committed %s (+%d/-%d total)",
            self.state.iteration,
            sha,
            self.state.stats.lines_added,
            self.state.stats.lines_removed,
        )
        return sha

    # ------------------------------------------------------------------
    # Preconditions and wrap-up
    # ------------------------------------------------------------------

    async def _handle_uncommitted_changes(self) -> None:
        """Apply the configured strategy to changes the navigator could not see in git log.

        Raises:
            RuntimeError: When the strategy is ``abort``.
        """
        if not has_uncommitted_changes(self.code_dir):
            return
        strategy = self.options.uncommitted
        logger.warning("Uncommitted changes detected in %s (strategy: %s)", self.code_dir, strategy)
        if strategy == "abort":
            raise RuntimeError(
                "Uncommitted changes in the code directory. Commit, discard, or pass an uncommitted strategy."
            )
        if strategy == "discard":
            discard_changes(self.code_dir)
            logger.info("Discarded uncommitted changes")
            return
        if strategy == "review":
            outcome = await self._review()
            if outcome.error:
                self.errors.append(f"Pre-loop review failed - {_truncate(outcome.error)}")
        sha = await self._commit()
        if sha:
            logger.info("Committed pre-existing changes as %s", sha)

    def _pr_body(self) -> str:
        history = "\n".join(f"- **{record.iteration}**: {record.summary}" for record in self.state.plan_history)
        return (
            f"## Summary\n\n{self.state.completion_message or self.options.task}\n\n"
            f"## Iterations\n\n{history}\n\n---\n*Created by autonav memento loop*"
        )

    def _open_pull_request(self) -> Optional[str]:
        branch = self.options.branch
        if not (self.options.pr and branch):
            return None
        if not is_gh_available():
            logger.warning("gh CLI not available; cannot create PR. Install and authenticate gh.")
            return None
        if get_remote_url(self.code_dir) is None:
            logger.warning("No origin remote configured; skipping PR for branch %s", branch)
            return None
        push_branch(branch, self.code_dir)
        task = self.options.task.strip()
        title = task if len(task) <= 70 else task[:67] + "..."
        url = create_pull_request(self.code_dir, title=title, body=self._pr_body())
        logger.info("PR created: %s", url)
        return url


async def run_memento_loop(
    harness: Harness,
    options: MementoOptions,
    *,
    feedback: Optional[ProgressFeedback] = None,
    sleep: Sleep = asyncio.sleep,
    rng: Optional[random.Random] = None,
) -> MementoResult:
    """Convenience wrapper around ``MementoLoop(...).run()``."""
    return await MementoLoop(harness, options, feedback=feedback, sleep=sleep, rng=rng).run()
