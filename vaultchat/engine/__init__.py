"""vaultchat engine: supervise the agent CLI and normalize its stream."""
from .config import EngineConfig
from .conversation import ChatController, TurnResult, is_context_limit_error
from .errors import (
    AgentLaunchError,
    DuplicateMessageError,
    MessageNotFoundError,
    SessionNotFoundError,
    SessionPersistError,
    SupervisorBusyError,
    VaultChatError,
)
from .events import (
    AssistantText,
    FinalResult,
    StreamEvent,
    SystemInit,
    Thinking,
    ToolCallEvent,
    ToolResultEvent,
)
from .input_queue import InputQueue
from .line_buffer import LineBuffer
from .listeners import ListenerRegistry, Subscription
from .stream_parser import StreamParser, ToolCallCorrelator
from .supervisor import (
    ProcessSupervisor,
    RunOutcome,
    RunRequest,
    SupervisorState,
)

__all__ = [
    # Config
    "EngineConfig",
    "load_yaml_config",
    # Runs
    "ProcessSupervisor",
    "RunOutcome",
    "RunRequest",
    "SupervisorState",
    "InputQueue",
    "LineBuffer",
    "ListenerRegistry",
    "Subscription",
    # Conversation loop
    "ChatController",
    "TurnResult",
    "is_context_limit_error",
    # Stream parsing
    "StreamParser",
    "ToolCallCorrelator",
    "StreamEvent",
    "SystemInit",
    "AssistantText",
    "Thinking",
    "ToolCallEvent",
    "ToolResultEvent",
    "FinalResult",
    # Errors
    "VaultChatError",
    "AgentLaunchError",
    "SupervisorBusyError",
    "SessionNotFoundError",
    "DuplicateMessageError",
    "MessageNotFoundError",
    "SessionPersistError",
]


def __getattr__(name: str):
    if name == "load_yaml_config":
        from .yaml_config import load_yaml_config
        return load_yaml_config
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
