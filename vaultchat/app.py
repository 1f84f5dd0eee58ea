"""Command-line entry point for vaultchat.

    vaultchat ask "summarize today's note"
    vaultchat chat --new
    vaultchat sessions
    vaultchat show <session-id>
    vaultchat delete <session-id>
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from vaultchat.engine.config import EngineConfig
from vaultchat.engine.conversation import ChatController, TurnResult
from vaultchat.engine.errors import AgentLaunchError, VaultChatError
from vaultchat.engine.events import (
    AssistantText,
    FinalResult,
    StreamEvent,
    Thinking,
    ToolCallEvent,
    ToolResultEvent,
    event_to_dict,
)
from vaultchat.engine.supervisor import ProcessSupervisor
from vaultchat.shared.formatters.tool_call import render_tool_call_rich
from vaultchat.shared.models.session import Session
from vaultchat.shared.services.session_store import SessionStore

logger = logging.getLogger(__name__)

LOG_DIR = Path.home() / ".vaultchat" / "logs"

_QUIT_COMMANDS = {"/quit", "/exit"}


def configure_logging(level: str, *, verbose: bool = False, log_dir: Path | None = None) -> Path:
    """Route records to a rotating file and, for warnings or --verbose, stderr."""
    log_dir = log_dir or LOG_DIR
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "vaultchat.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.WARNING)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def load_config(args: argparse.Namespace) -> EngineConfig:
    if args.config:
        from vaultchat.engine.yaml_config import load_yaml_config
        config = load_yaml_config(args.config)
    else:
        config = EngineConfig.from_env()
    if args.cwd is not None:
        config.cwd = args.cwd
    if getattr(args, "timeout", None) is not None:
        config.run_timeout_seconds = args.timeout
    return config


def build_store(config: EngineConfig) -> SessionStore:
    """Session records live under the working directory unless given absolute."""
    storage = Path(os.path.expanduser(config.session_storage_path))
    if not storage.is_absolute():
        storage = Path(config.cwd) / storage
    store = SessionStore(
        storage,
        auto_save=config.auto_save_sessions,
        max_sessions=config.max_session_history,
    )
    store.initialize()
    return store


# ── Rendering ──


class EventPrinter:
    """Prints stream events as they arrive."""

    def __init__(self, console: Console, *, as_json: bool = False) -> None:
        self._console = console
        self._as_json = as_json
        self._last_text: str | None = None

    def __call__(self, event: StreamEvent) -> None:
        if self._as_json:
            self._console.print_json(json.dumps(event_to_dict(event)))
            return
        if isinstance(event, Thinking):
            self._console.print(f"[dim italic]{escape(event.text)}[/dim italic]")
        elif isinstance(event, ToolCallEvent):
            self._console.print(render_tool_call_rich(event.name, event.input))
        elif isinstance(event, ToolResultEvent):
            if event.is_error:
                self._console.print(
                    render_tool_call_rich(event.name or "tool", event.input, is_error=True)
                )
                if event.output:
                    self._console.print(f"  [red]{escape(event.output[:200])}[/red]")
        elif isinstance(event, AssistantText):
            self._console.print(escape(event.text))
            self._last_text = event.text
        elif isinstance(event, FinalResult):
            # The result record usually repeats the last assistant text
            if event.text != self._last_text:
                self._console.print(escape(event.text))
            self._last_text = None


def print_turn_result(console: Console, result: TurnResult) -> None:
    for turn in [result, *result.follow_ups]:
        if turn.queued or turn.success:
            continue
        if turn.context_limit:
            console.print(
                "[bold yellow]Context limit reached.[/bold yellow] "
                "This conversation is too long to resume; start a new session "
                "with [bold]vaultchat chat --new[/bold]."
            )
        else:
            console.print(f"[bold red]Error:[/bold red] {escape(turn.error or 'unknown error')}")


def _session_title(session: Session) -> str:
    first = session.first_user_message()
    if first is None:
        return ""
    text = first.content.strip().splitlines()[0] if first.content.strip() else ""
    return text[:60]


# ── Commands ──


def _select_session(controller: ChatController, args: argparse.Namespace) -> Session:
    store = controller.store
    if getattr(args, "new", False):
        return controller.new_session()
    if getattr(args, "session", None):
        store.set_active(args.session)
        return store.get(args.session)
    return controller.ensure_session()


async def _ask(controller: ChatController, console: Console, args: argparse.Namespace) -> int:
    session = _select_session(controller, args)
    logger.info("ask: session=%s", session.id)
    result = await controller.send(args.prompt, append_system_prompt=args.append_system_prompt)
    print_turn_result(console, result)
    return 0 if result.success else 1


async def _send_and_print(
    controller: ChatController,
    console: Console,
    text: str,
    append_system_prompt: str | None,
) -> bool:
    """Send one chat line and print the outcome. Errors are printed, not raised."""
    try:
        result = await controller.send(text, append_system_prompt=append_system_prompt)
    except VaultChatError as exc:
        logger.error("Turn failed: %s", exc)
        console.print(f"[bold red]{escape(str(exc))}[/bold red]")
        return False
    print_turn_result(console, result)
    return result.success


async def _chat(controller: ChatController, console: Console, args: argparse.Namespace) -> int:
    session = _select_session(controller, args)
    console.print(
        f"[bold]{escape(session.name)}[/bold] [dim]({session.id})[/dim]\n"
        "[dim]/new starts a session, /abort stops the run, /quit exits. "
        "Lines typed during a run are sent once it finishes.[/dim]"
    )
    supervisor = controller.supervisor
    current: asyncio.Task | None = None

    while True:
        try:
            line = await asyncio.to_thread(input, "> ")
        except (EOFError, KeyboardInterrupt):
            break
        text = line.strip()
        if not text:
            continue
        if text in _QUIT_COMMANDS:
            break
        if text == "/abort":
            if not supervisor.abort():
                console.print("[dim]Nothing is running.[/dim]")
            continue
        if text == "/new":
            if current is not None and not current.done():
                console.print("[yellow]Wait for the current run to finish first.[/yellow]")
                continue
            session = controller.new_session()
            console.print(f"[dim]Started {escape(session.name)} ({session.id})[/dim]")
            continue

        if current is not None and not current.done():
            try:
                result = await controller.send(text)
            except VaultChatError as exc:
                console.print(f"[yellow]{escape(str(exc))}[/yellow]")
                continue
            if result.queued:
                console.print("[dim]Queued; will send when the current run finishes.[/dim]")
            continue

        current = asyncio.create_task(
            _send_and_print(controller, console, text, args.append_system_prompt)
        )
        # Let the turn reach the supervisor so the next line sees it running
        await asyncio.sleep(0)

    if current is not None and not current.done():
        supervisor.abort()
        await current
    return 0


def _sessions(store: SessionStore, console: Console) -> int:
    sessions = store.list()
    if not sessions:
        console.print("[dim]No sessions.[/dim]")
        return 0
    table = Table(show_header=True, header_style="bold")
    table.add_column("ID", no_wrap=True)
    table.add_column("Name")
    table.add_column("Messages", justify="right")
    table.add_column("Updated")
    table.add_column("First message")
    for session in sessions:
        table.add_row(
            session.id,
            session.name,
            str(session.message_count),
            session.updated_at.astimezone().strftime("%Y-%m-%d %H:%M"),
            _session_title(session),
        )
    console.print(table)
    return 0


def _show(store: SessionStore, console: Console, session_id: str) -> int:
    session = store.get(session_id)
    if session is None:
        console.print(f"[red]No session {escape(session_id)}[/red]")
        return 1
    console.print(f"[bold]{escape(session.name)}[/bold] [dim]{session.id}[/dim]")
    if session.external_session_id:
        console.print(f"[dim]agent session: {session.external_session_id}[/dim]")
    for msg in session.messages:
        style = "bold cyan" if msg.role.value == "user" else "bold green"
        console.print(f"\n[{style}]{msg.role.value}[/{style}]")
        for call in msg.tool_calls:
            console.print(render_tool_call_rich(
                call.name, call.input, is_error=call.is_error, duration=call.duration,
            ))
        console.print(escape(msg.content))
        if msg.error:
            console.print(f"[red]error: {escape(msg.error)}[/red]")
    return 0


def _delete(store: SessionStore, console: Console, session_id: str) -> int:
    if store.delete(session_id):
        console.print(f"Deleted {escape(session_id)}")
        return 0
    console.print(f"[red]No session {escape(session_id)}[/red]")
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vaultchat",
        description="Chat with the claude CLI from a notes vault",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="YAML config file (default: VAULTCHAT_* environment variables)",
    )
    parser.add_argument(
        "--cwd",
        default=None,
        help="Working directory for the agent (default: from config)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging on stderr",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def add_run_options(p: argparse.ArgumentParser) -> None:
        p.add_argument("--session", "-s", default=None, help="Session id to resume")
        p.add_argument("--new", action="store_true", help="Start a new session")
        p.add_argument(
            "--timeout",
            type=float,
            default=None,
            help="Per-run timeout in seconds (default: 120)",
        )
        p.add_argument(
            "--append-system-prompt",
            default=None,
            help="Extra system prompt text for every run",
        )
        p.add_argument(
            "--json",
            action="store_true",
            help="Print raw events as JSON instead of formatted text",
        )

    ask = sub.add_parser("ask", help="Send one prompt and print the reply")
    ask.add_argument("prompt")
    add_run_options(ask)

    chat = sub.add_parser("chat", help="Interactive conversation")
    add_run_options(chat)

    sub.add_parser("sessions", help="List stored sessions")

    show = sub.add_parser("show", help="Print a session transcript")
    show.add_argument("session_id")

    delete = sub.add_parser("delete", help="Delete a stored session")
    delete.add_argument("session_id")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    console = Console()

    try:
        config = load_config(args)
    except (OSError, ValueError) as exc:
        console.print(f"[bold red]Config error:[/bold red] {escape(str(exc))}")
        return 2

    log_file = configure_logging(config.log_level, verbose=args.verbose)
    logger.info(
        "vaultchat %s cwd=%s config=%s log=%s",
        args.command, config.cwd, args.config or "(env)", log_file,
    )

    try:
        store = build_store(config)
        if args.command == "sessions":
            return _sessions(store, console)
        if args.command == "show":
            return _show(store, console, args.session_id)
        if args.command == "delete":
            return _delete(store, console, args.session_id)

        supervisor = ProcessSupervisor(config)
        if not supervisor.is_available():
            logger.warning("%s not found on PATH", config.cli_path)
        supervisor.on("message", EventPrinter(console, as_json=args.json))
        controller = ChatController(supervisor, store, config)
        runner = _ask if args.command == "ask" else _chat
        return asyncio.run(runner(controller, console, args))
    except AgentLaunchError as exc:
        console.print(
            f"[bold red]{escape(str(exc))}[/bold red]\n"
            "Install the claude CLI or set VAULTCHAT_CLI_PATH."
        )
        return 1
    except VaultChatError as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        return 1
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    sys.exit(main())
