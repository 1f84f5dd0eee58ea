"""Process supervisor for the external agent CLI.

Each run spawns ``claude -p <prompt> --output-format stream-json`` with
stdin closed, feeds stdout through a LineBuffer and StreamParser, fans
events out to listeners as they arrive, and resolves a single
RunOutcome when the process exits or is terminated.

State machine per run::

    IDLE -> SPAWNING -> STREAMING -> RESOLVING -> IDLE
                            |             ^
                            +-> TERMINATING (abort / timeout)
"""
from __future__ import annotations

import asyncio
import enum
import logging
import os
import shutil
import signal
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path

from vaultchat.shared.models.message import ToolCall

from .config import EngineConfig, Listener
from .errors import AgentLaunchError, SupervisorBusyError
from .events import (
    StreamEvent,
    ToolCallEvent,
    ToolResultEvent,
    event_text,
)
from .input_queue import InputQueue
from .line_buffer import LineBuffer
from .listeners import ListenerRegistry, Subscription
from .stream_parser import StreamParser

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES = 64 * 1024

TERMINATED_BY_TIMEOUT = "timeout"
TERMINATED_BY_ABORT = "abort"


class SupervisorState(enum.Enum):
    IDLE = "idle"
    SPAWNING = "spawning"
    STREAMING = "streaming"
    TERMINATING = "terminating"
    RESOLVING = "resolving"


@dataclass(frozen=True)
class RunRequest:
    """One invocation of the agent. Immutable once submitted."""
    prompt: str
    resume_session_id: str | None = None
    # Empty means "use the configured default allowlist"
    allowed_tools: tuple[str, ...] = ()
    max_turns: int | None = None
    system_prompt: str | None = None
    append_system_prompt: str | None = None
    add_dirs: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.max_turns is not None and self.max_turns < 1:
            raise ValueError(f"max_turns must be positive, got {self.max_turns}")
        # Accept lists from callers but store tuples
        object.__setattr__(self, "allowed_tools", tuple(self.allowed_tools))
        object.__setattr__(self, "add_dirs", tuple(self.add_dirs))


@dataclass
class RunOutcome:
    """Resolved result of one run."""
    success: bool
    session_id: str | None = None
    events: list[StreamEvent] = field(default_factory=list)
    final_text: str = ""
    error: str | None = None
    exit_code: int | None = None
    terminated_by: str | None = None
    duration_seconds: float = 0.0

    def tool_calls(self) -> list[ToolCall]:
        """Fold tool_call / tool_result events into ToolCall records."""
        calls: dict[str, ToolCall] = {}
        order: list[ToolCall] = []
        for event in self.events:
            if isinstance(event, ToolCallEvent):
                call = ToolCall(id=event.call_id, name=event.name, input=dict(event.input))
                if event.call_id:
                    calls.setdefault(event.call_id, call)
                order.append(call)
            elif isinstance(event, ToolResultEvent):
                call = calls.get(event.call_id)
                if call is None:
                    call = ToolCall(
                        id=event.call_id,
                        name=event.name or "",
                        input=dict(event.input or {}),
                    )
                    calls[event.call_id] = call
                    order.append(call)
                call.output = event.output
                call.is_error = event.is_error
        return order


class _RunState:
    """Accumulator owned by one run's read loop."""

    def __init__(self) -> None:
        self.events: list[StreamEvent] = []
        self.session_id: str | None = None
        self.final_text = ""
        self.buffer = LineBuffer()


def platform_path_dirs(platform: str | None = None) -> list[str]:
    """Common install locations for the agent CLI on *platform*."""
    platform = platform or sys.platform
    home = Path.home()
    if platform.startswith("win"):
        appdata = os.environ.get("APPDATA")
        dirs = [str(Path(appdata) / "npm")] if appdata else []
        dirs.append(str(home / ".claude" / "local"))
        return dirs
    dirs = []
    if platform == "darwin":
        dirs.append("/opt/homebrew/bin")
    dirs.extend([
        "/usr/local/bin",
        str(home / ".local" / "bin"),
        str(home / ".claude" / "local"),
    ])
    return dirs


class ProcessSupervisor:
    """Runs the agent CLI, one run at a time.

    Listeners subscribe with ``on("message", cb)`` for every semantic
    event and ``on("partial", cb)`` for the latest assistant/result
    text. Callbacks may be plain functions or coroutine functions.
    """

    def __init__(self, config: EngineConfig, *, cwd: str | None = None) -> None:
        self._config = config
        self._cwd = cwd or config.cwd or None
        self._parser = StreamParser()
        self._listeners = ListenerRegistry()
        self._input_queue = InputQueue(self.is_running)
        self._state = SupervisorState.IDLE
        self._process: asyncio.subprocess.Process | None = None
        self._terminated_by: str | None = None
        self._deadline: asyncio.TimerHandle | None = None

    # ── subscription ──

    def on(self, name: str, callback: Listener) -> Subscription:
        return self._listeners.on(name, callback)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    # ── status ──

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def parser(self) -> StreamParser:
        return self._parser

    def is_running(self) -> bool:
        return self._state is not SupervisorState.IDLE

    # ── follow-up input ──

    def queue_input(self, text: str) -> bool:
        return self._input_queue.offer(text)

    def get_and_clear_queued_input(self) -> str | None:
        return self._input_queue.take()

    def has_queued_input(self) -> bool:
        return self._input_queue.has_pending

    # ── command construction ──

    def build_env(self) -> dict[str, str]:
        """Inherited environment with an extended PATH and batch-mode flags."""
        env = os.environ.copy()
        dirs = [*self._config.extra_path_dirs, *platform_path_dirs()]
        current = env.get("PATH", "")
        env["PATH"] = os.pathsep.join([*dirs, current] if current else dirs)
        env["CI"] = "true"
        env["TERM"] = "dumb"
        return env

    def resolve_command(self, env: dict[str, str] | None = None) -> str:
        """Locate the CLI on the extended PATH, keeping the raw value if absent."""
        command = self._config.cli_path
        path = (env or self.build_env()).get("PATH")
        return shutil.which(command, path=path) or command

    def is_available(self) -> bool:
        command = self._config.cli_path
        return shutil.which(command, path=self.build_env().get("PATH")) is not None

    def build_args(self, request: RunRequest) -> list[str]:
        # --verbose is required by the CLI for stream-json output
        args = ["-p", request.prompt, "--output-format", "stream-json", "--verbose"]

        tools = request.allowed_tools or tuple(self._config.default_allowed_tools)
        if tools:
            args.extend(["--allowedTools", ",".join(tools)])

        for directory in (*self._config.add_dirs, *request.add_dirs):
            args.extend(["--add-dir", directory])

        if request.resume_session_id:
            args.extend(["--resume", request.resume_session_id])

        max_turns = request.max_turns or self._config.max_turns
        args.extend(["--max-turns", str(max_turns)])

        if request.append_system_prompt:
            args.extend(["--append-system-prompt", request.append_system_prompt])
        elif request.system_prompt:
            args.extend(["--system-prompt", request.system_prompt])
        return args

    # ── run lifecycle ──

    async def execute(self, request: RunRequest) -> RunOutcome:
        """Spawn the agent for *request* and wait for its outcome.

        Raises SupervisorBusyError if a run is already in flight and
        AgentLaunchError if the executable cannot be started.
        """
        if self.is_running():
            raise SupervisorBusyError(self._process.pid if self._process else None)

        self._state = SupervisorState.SPAWNING
        self._terminated_by = None
        self._parser.reset()
        started = time.monotonic()
        run = _RunState()

        env = self.build_env()
        command = self.resolve_command(env)
        args = self.build_args(request)
        logger.info(
            "Spawning %s (resume=%s, prompt=%d chars)",
            command, request.resume_session_id or "-", len(request.prompt),
        )

        try:
            proc = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=self._cwd,
                env=env,
                start_new_session=(os.name == "posix"),
            )
        except OSError as exc:
            self._state = SupervisorState.IDLE
            logger.error("Failed to launch %s: %s", command, exc)
            raise AgentLaunchError(command, exc.strerror or str(exc)) from exc

        self._process = proc
        self._state = SupervisorState.STREAMING
        loop = asyncio.get_running_loop()
        timeout = self._config.run_timeout_seconds
        if timeout > 0:
            self._deadline = loop.call_later(timeout, self._expire)
        if self._terminated_by is not None:
            # abort() arrived while spawning
            self._kill()

        stderr_task = asyncio.ensure_future(self._drain_stderr(proc))
        try:
            while True:
                chunk = await proc.stdout.read(_READ_CHUNK_BYTES)
                if not chunk:
                    break
                for line in run.buffer.feed(chunk):
                    await self._handle_line(line, run)

            await proc.wait()
            stderr_text = await stderr_task

            if self._terminated_by is not None:
                dropped = run.buffer.discard()
                if dropped:
                    logger.debug("Discarded %d buffered bytes after termination", dropped)
            else:
                remainder = run.buffer.flush()
                if remainder is not None:
                    await self._handle_line(remainder, run)

            self._state = SupervisorState.RESOLVING
            outcome = self._resolve(
                run, proc.returncode, stderr_text, time.monotonic() - started,
            )
        finally:
            if self._deadline is not None:
                self._deadline.cancel()
                self._deadline = None
            if not stderr_task.done():
                stderr_task.cancel()
            if proc.returncode is None:
                self._kill()
            self._process = None
            self._state = SupervisorState.IDLE

        logger.info(
            "Run finished success=%s rc=%s terminated_by=%s events=%d in %.1fs",
            outcome.success, outcome.exit_code, outcome.terminated_by or "-",
            len(outcome.events), outcome.duration_seconds,
        )
        return outcome

    def abort(self) -> bool:
        """Forcefully terminate the current run. False when idle."""
        if not self.is_running():
            return False
        if self._terminated_by is None:
            self._terminated_by = TERMINATED_BY_ABORT
        logger.info("Aborting run")
        if self._process is not None:
            self._kill()
        return True

    def _expire(self) -> None:
        self._deadline = None
        if self._process is None or self._process.returncode is not None:
            return
        logger.warning(
            "Run exceeded %gs deadline, killing pid %d",
            self._config.run_timeout_seconds, self._process.pid,
        )
        if self._terminated_by is None:
            self._terminated_by = TERMINATED_BY_TIMEOUT
        self._kill()

    def _kill(self) -> None:
        proc = self._process
        if proc is None or proc.returncode is not None:
            return
        if self._state is SupervisorState.STREAMING:
            self._state = SupervisorState.TERMINATING
        try:
            # The CLI runs in its own session; take its children down too
            if hasattr(os, "killpg"):
                os.killpg(proc.pid, signal.SIGKILL)
            else:
                proc.kill()
        except ProcessLookupError:
            pass
        except PermissionError:
            proc.kill()

    async def _drain_stderr(self, proc: asyncio.subprocess.Process) -> str:
        parts: list[str] = []
        while True:
            line = await proc.stderr.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace")
            parts.append(text)
            logger.debug("stderr: %s", text.rstrip())
        return "".join(parts)

    async def _handle_line(self, line: str, run: _RunState) -> None:
        for event in self._parser.parse(line):
            run.events.append(event)
            if event.session_id:
                if run.session_id is None:
                    run.session_id = event.session_id
                elif event.session_id != run.session_id:
                    logger.warning(
                        "Protocol violation: session id changed mid-run (%s -> %s); keeping %s",
                        run.session_id, event.session_id, run.session_id,
                    )
            await self._listeners.emit("message", event)
            text = event_text(event)
            if text:
                run.final_text = text
                await self._listeners.emit("partial", text)

    def _resolve(
        self,
        run: _RunState,
        returncode: int | None,
        stderr_text: str,
        duration: float,
    ) -> RunOutcome:
        terminated_by = self._terminated_by
        clean_exit = returncode == 0 and terminated_by is None
        success = bool(run.final_text) or clean_exit

        error: str | None = None
        if not success:
            detail = stderr_text.strip() or f"Process exited with code {returncode}"
            if terminated_by == TERMINATED_BY_TIMEOUT:
                error = (
                    f"Run timed out after {self._config.run_timeout_seconds:g}s: {detail}"
                )
            elif terminated_by == TERMINATED_BY_ABORT:
                error = f"Run aborted: {detail}"
            else:
                error = detail

        return RunOutcome(
            success=success,
            session_id=run.session_id,
            events=run.events,
            final_text=run.final_text,
            error=error,
            exit_code=returncode,
            terminated_by=terminated_by,
            duration_seconds=duration,
        )
