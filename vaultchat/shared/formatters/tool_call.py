"""Tool call display metadata and one-line summaries.

Every tool the agent can call maps to a ToolInfo (category, icon,
short description). Summaries are produced by small per-tool
functions registered with ``@tool_summary``:

    @tool_summary("MyTool")
    def _summarize_my_tool(tool_input):
        return tool_input.get("target", "")
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from rich.text import Text


@dataclass(frozen=True)
class ToolInfo:
    name: str
    category: str  # "read", "write", "search", "execute", "web" or "agent"
    icon: str
    description: str


TOOL_REGISTRY: dict[str, ToolInfo] = {
    info.name: info
    for info in (
        ToolInfo("Read", "read", "📖", "Reading file"),
        ToolInfo("Edit", "write", "✏️", "Editing file"),
        ToolInfo("Write", "write", "📝", "Writing file"),
        ToolInfo("Glob", "search", "🔍", "Finding files"),
        ToolInfo("Grep", "search", "🔎", "Searching content"),
        ToolInfo("Bash", "execute", "💻", "Running command"),
        ToolInfo("WebFetch", "web", "🌐", "Fetching URL"),
        ToolInfo("WebSearch", "web", "🔍", "Searching web"),
        ToolInfo("Task", "agent", "🤖", "Running agent"),
        ToolInfo("TodoWrite", "write", "✅", "Managing todos"),
        ToolInfo("AskUserQuestion", "agent", "❓", "Asking question"),
    )
}

_CATEGORY_STYLES = {
    "read": "green",
    "write": "yellow",
    "search": "blue",
    "execute": "magenta",
    "web": "cyan",
    "agent": "bright_magenta",
}

_TOOL_NAME_ALIASES: dict[str, str] = {
    "read": "Read",
    "read_file": "Read",
    "write": "Write",
    "write_file": "Write",
    "edit": "Edit",
    "edit_file": "Edit",
    "multiedit": "Edit",
    "bash": "Bash",
    "glob": "Glob",
    "grep": "Grep",
    "webfetch": "WebFetch",
    "websearch": "WebSearch",
    "todowrite": "TodoWrite",
}


def normalize_tool_name(name: str) -> str:
    """Strip an MCP server prefix and map lowercase aliases to canonical names.

    E.g. ``mcp__obsidian__read_file`` → ``Read``.
    """
    if name.startswith("mcp__") and name.count("__") >= 2:
        name = name.split("__", 2)[2]
    return _TOOL_NAME_ALIASES.get(name.lower(), name)


def get_tool_info(name: str) -> ToolInfo:
    canonical = normalize_tool_name(name)
    info = TOOL_REGISTRY.get(canonical)
    if info is not None:
        return info
    return ToolInfo(name, "execute", "⚙️", "Running tool")


# ── Summary registry ──

_SUMMARIES: dict[str, Callable[[dict[str, Any]], str]] = {}


def tool_summary(name: str):
    """Decorator to register a summary function for a canonical tool name."""

    def decorator(fn: Callable[[dict[str, Any]], str]):
        _SUMMARIES[name] = fn
        return fn

    return decorator


def _basename(path: str) -> str:
    """Last two path components, for compact display."""
    if not path:
        return ""
    parts = path.replace("\\", "/").rstrip("/").split("/")
    return "/".join(parts[-2:]) if len(parts) >= 2 else parts[-1]


def _trunc(text: str, length: int = 60) -> str:
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."


@tool_summary("Read")
@tool_summary("Edit")
@tool_summary("Write")
def _summarize_file_tool(tool_input: dict[str, Any]) -> str:
    return _basename(str(tool_input.get("file_path") or tool_input.get("path") or ""))


@tool_summary("Glob")
def _summarize_glob(tool_input: dict[str, Any]) -> str:
    pattern = str(tool_input.get("pattern") or "")
    path = str(tool_input.get("path") or "")
    return f"{pattern} in {_basename(path)}" if path else pattern


@tool_summary("Grep")
def _summarize_grep(tool_input: dict[str, Any]) -> str:
    pattern = str(tool_input.get("pattern") or "")
    glob = tool_input.get("glob")
    return f"/{pattern}/ {glob}" if glob else f"/{pattern}/"


@tool_summary("Bash")
def _summarize_bash(tool_input: dict[str, Any]) -> str:
    return _trunc(str(tool_input.get("command") or "").splitlines()[0] if tool_input.get("command") else "")


@tool_summary("WebFetch")
def _summarize_fetch(tool_input: dict[str, Any]) -> str:
    return str(tool_input.get("url") or "")


@tool_summary("WebSearch")
def _summarize_search(tool_input: dict[str, Any]) -> str:
    return _trunc(str(tool_input.get("query") or ""))


@tool_summary("Task")
def _summarize_task(tool_input: dict[str, Any]) -> str:
    return _trunc(str(tool_input.get("description") or tool_input.get("prompt") or ""))


def summarize_tool_input(name: str, tool_input: dict[str, Any] | None) -> str:
    """One-line summary of what a tool call is operating on."""
    tool_input = tool_input or {}
    fn = _SUMMARIES.get(normalize_tool_name(name))
    if fn is not None:
        summary = fn(tool_input)
        if summary:
            return summary
    for key in ("file_path", "path", "pattern", "query", "url", "command"):
        value = tool_input.get(key)
        if isinstance(value, str) and value:
            return _trunc(value)
    return ""


def render_tool_call_rich(
    name: str,
    tool_input: dict[str, Any] | None,
    *,
    is_error: bool | None = None,
    duration: float | None = None,
) -> Text:
    """Rich Text line for a tool call; ``is_error`` and ``duration`` set once the result is in."""
    info = get_tool_info(name)
    style = _CATEGORY_STYLES.get(info.category, "white")
    line = Text()
    line.append(f"{info.icon} ")
    line.append(normalize_tool_name(name), style=f"bold {style}")
    summary = summarize_tool_input(name, tool_input)
    if summary:
        line.append(f" {summary}", style="dim")
    if is_error is True:
        line.append(" ✗", style="bold red")
    elif is_error is False:
        line.append(" ✓", style="green")
    if duration is not None:
        line.append(f" {duration:.1f}s", style="dim")
    return line
