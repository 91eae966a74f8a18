"""Agent turn runner for the coding-agent CLI.

Runs one non-interactive turn of the agent binary (``claude`` by default)
as a child process with stream-json output, routes every event through the
progress policy, and resolves to a TurnOutcome. A real completion advances
the session and persists the marker; a requested stop does neither.

Example:
    >>> turn = AgentTurn(project, "fix the tests", config, emit=print)
    >>> outcome = await turn.run()
    >>> outcome.result
    'Fixed 3 failing tests'

"""

import asyncio
import json
import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from roundsman.core.checkpoint import checkpoint
from roundsman.core.config import GlobalConfig
from roundsman.core.exceptions import AgentError, MarkerError
from roundsman.core.marker import (
    ERROR_PREFIX,
    MAX_RESULT_CHARS,
    MAX_SUMMARY_CHARS,
    Session,
    TurnRecord,
    load_marker,
    save_marker,
)
from roundsman.core.platform_command import build_agent_command, cleanup_temp_file
from roundsman.core.prompt import build_prompt
from roundsman.providers.process import ManagedProcess, pump_stream, signal_name
from roundsman.providers.stream import (
    StreamFramer,
    StreamState,
    decode_event,
    is_input_wait_event,
    is_input_wait_text,
    preview_text,
    to_progress_line,
)

if TYPE_CHECKING:
    from roundsman.manager.project_context import ProjectContext

logger = logging.getLogger(__name__)

WAIT_REASON = "agent requested user input"
WAIT_NOTICE = "[wait] agent is waiting for user input; streaming paused"

# Error detail taken from stderr (or stdout) on a failed exit
MAX_ERROR_DETAIL = 500

# Removed so a nested agent does not believe it runs inside another session
NESTED_SESSION_VAR = "CLAUDECODE"
API_KEY_VAR = "ANTHROPIC_API_KEY"


@dataclass(frozen=True)
class TurnOutcome:
    """Terminal result of one agent turn.

    Attributes:
        result: Result text, ``error: ...`` for failures, ``stopped: ...``
            for requested stops.
        cost: Reported cost in USD (0 when stopped).
        stopped: True when the process was stopped on request; no turn was
            recorded.

    """

    result: str
    cost: float = 0.0
    stopped: bool = False

    @property
    def is_error(self) -> bool:
        return self.result.startswith(ERROR_PREFIX)


def should_resume(session: Session) -> bool:
    """Resume the conversation only after at least one successful turn.

    A project whose every turn errored starts a fresh conversation with
    the same token instead of resuming a possibly broken one.
    """
    return session.has_successful_turn()


def build_agent_args(config: GlobalConfig, session: Session, model: str = "") -> list[str]:
    """Build the agent flags that precede the prompt.

    Args:
        config: Global configuration.
        session: Project session (must carry a session id).
        model: Runtime model override; falls back to config.default_model.

    """
    args = [
        "-p",
        "--output-format",
        "stream-json",
        "--verbose",
        "--permission-mode",
        config.default_permission_mode,
    ]
    chosen = model or config.default_model
    if chosen:
        args += ["--model", chosen]
    if should_resume(session):
        args += ["--resume", session.session_id]
    else:
        args += ["--session-id", session.session_id]
    return args


def build_agent_env(config: GlobalConfig, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Copy the environment for the agent, forwarding the API key if configured."""
    source = os.environ if environ is None else environ
    env = dict(source)
    env.pop(NESTED_SESSION_VAR, None)
    if config.api_key_env_var:
        key = source.get(config.api_key_env_var, "")
        if key:
            env[API_KEY_VAR] = key
    return env


class AgentTurn(ManagedProcess):
    """One agent turn for one project.

    The turn owns its stream state and its stop reason. ``emit`` receives
    every progress line in stream order; it decides whether the line is
    printed or held.
    """

    def __init__(
        self,
        project: "ProjectContext",
        instruction: str,
        config: GlobalConfig,
        emit: Callable[[str], None],
        model: str = "",
    ) -> None:
        super().__init__(f"agent:{project.name}")
        self.project = project
        self.instruction = instruction
        self.config = config
        self.model = model
        self._emit = emit
        self._stream = StreamState()
        self._stdout: list[str] = []
        self._stderr: list[str] = []
        self._out_framer = StreamFramer()
        self._err_framer = StreamFramer()
        self._waiting = False

    # -- stream handling ---------------------------------------------------

    def _on_wait(self) -> None:
        if self._waiting:
            return
        self._waiting = True
        self._emit(WAIT_NOTICE)
        self.project.hold_stream = True
        self.request_stop(WAIT_REASON)

    def _on_stdout_line(self, line: str) -> None:
        event = decode_event(line)
        if event is None:
            return
        self._stream.apply(event)
        if is_input_wait_event(event):
            self._on_wait()
            return
        self._emit(to_progress_line(event, self.config.ui.stream_preview_chars))

    def _on_stderr_line(self, line: str) -> None:
        msg = preview_text(line, self.config.ui.stream_preview_chars)
        if not msg:
            return
        self._emit(f"[stderr] {msg}")
        if is_input_wait_text(line):
            self._on_wait()

    # -- lifecycle ---------------------------------------------------------

    async def _spawn(self, argv: list[str], env: dict[str, str]) -> asyncio.subprocess.Process:
        try:
            return await asyncio.create_subprocess_exec(
                *argv,
                cwd=self.project.project_root,
                env=env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise AgentError(f"spawn failed: {e}") from e

    async def run(self) -> TurnOutcome:
        """Run the turn to completion.

        Returns:
            TurnOutcome. Spawn failures come back as an ``error:`` outcome
            and are recorded like any failed turn.

        """
        project = self.project
        session = project.session
        session.ensure_id()

        if self.config.checkpoint.enabled and self.config.checkpoint.pre_turn and project.git_enabled:
            await asyncio.to_thread(
                checkpoint, project.project_root, f"roundsman pre-turn {session.turn + 1}"
            )

        prompt = build_prompt(project.marker, self.instruction)
        args = build_agent_args(self.config, session, self.model)
        argv, temp_file = build_agent_command(self.config.agent_bin, args, prompt)
        logger.debug("Starting agent for %s: %s %s", project.name, self.config.agent_bin, args)

        try:
            process = await self._spawn(argv, build_agent_env(self.config))
        except AgentError as e:
            cleanup_temp_file(temp_file)
            logger.warning("Agent for %s could not start: %s", project.name, e)
            return await self._record(f"{ERROR_PREFIX} {e}", 0.0, 0)

        self._attached(process)
        try:
            await asyncio.gather(
                pump_stream(process.stdout, self._out_framer, self._on_stdout_line, self._stdout),
                pump_stream(process.stderr, self._err_framer, self._on_stderr_line, self._stderr),
            )
            returncode = await process.wait()
        except BaseException:
            self.kill()
            raise
        finally:
            cleanup_temp_file(temp_file)

        for line in self._out_framer.flush():
            self._on_stdout_line(line)
        for line in self._err_framer.flush():
            self._on_stderr_line(line)

        if self.stop_reason:
            sig = signal_name(returncode)
            text = f"stopped: {self.stop_reason}" + (f" ({sig})" if sig else "")
            logger.debug("Agent for %s %s", project.name, text)
            return TurnOutcome(result=text, stopped=True)

        result, cost, turns = self._derive_result(returncode)
        return await self._record(result, cost, turns)

    def _derive_result(self, returncode: int) -> tuple[str, float, int]:
        stdout = "".join(self._stdout).strip()
        if returncode != 0 or not stdout:
            stderr = "".join(self._stderr).strip()
            detail = stderr[:MAX_ERROR_DETAIL] or stdout[:MAX_ERROR_DETAIL]
            return f"{ERROR_PREFIX} exit {returncode}: {detail}", 0.0, 0

        session = self.project.session
        result, cost, turns = "", 0.0, 0
        if self._stream.seen:
            result, cost, turns = self._stream.result, self._stream.cost, self._stream.turns
            if self._stream.session_id:
                session.session_id = self._stream.session_id
        if result:
            return result, cost, turns

        try:
            doc = json.loads(stdout)
        except json.JSONDecodeError:
            return stdout[:MAX_RESULT_CHARS], cost, turns
        if not isinstance(doc, dict):
            return stdout[:MAX_RESULT_CHARS], cost, turns
        fallback = StreamState()
        fallback.apply(doc)
        if fallback.session_id:
            session.session_id = fallback.session_id
        return fallback.result, cost or fallback.cost, turns or fallback.turns

    async def _record(self, result: str, cost: float, turns: int) -> TurnOutcome:
        """Record a completed turn in the session and persist it."""
        project = self.project
        session = project.session
        session.turn += 1
        if result and not result.startswith(ERROR_PREFIX):
            session.summary = result[:MAX_SUMMARY_CHARS]
        session.append(
            TurnRecord(result=result[:MAX_RESULT_CHARS], cost=cost, turns=turns, input=self.instruction),
            self.config.max_history,
        )

        self._reconcile_marker()
        try:
            save_marker(project.marker_path, project.marker)
        except OSError as e:
            logger.warning("Cannot save %s: %s", project.marker_path, e)

        if self.config.checkpoint.enabled and self.config.checkpoint.post_turn and project.git_enabled:
            await asyncio.to_thread(
                checkpoint,
                project.project_root,
                f"roundsman turn {session.turn}: {result[:60]}",
            )
        return TurnOutcome(result=result, cost=cost)

    def _reconcile_marker(self) -> None:
        # The agent may edit the marker during the turn; keep its work items
        project = self.project
        try:
            fresh = load_marker(project.marker_path, self.config.max_history)
        except MarkerError as e:
            logger.warning("Failed to reload %s: %s", project.marker_path, e)
            return
        project.marker.todos = fresh.todos
        project.marker.doing = fresh.doing
        project.marker.done = fresh.done
        project.marker.prompt = fresh.prompt
