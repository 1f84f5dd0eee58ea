"""Exception hierarchy for the execution core.

One exception per failure mode the caller is expected to handle.
Malformed stream lines and protocol anomalies are not errors and
never appear here.
"""
from __future__ import annotations


class VaultChatError(Exception):
    """Base exception for all vaultchat errors."""


class AgentLaunchError(VaultChatError):
    """The external agent executable could not be started."""
    def __init__(self, command: str, reason: str):
        self.command = command
        self.reason = reason
        super().__init__(f"Failed to launch '{command}': {reason}")


class SupervisorBusyError(VaultChatError):
    """A run was requested while another run is still in flight."""
    def __init__(self, pid: int | None = None):
        self.pid = pid
        detail = f" (pid={pid})" if pid is not None else ""
        super().__init__(f"A run is already in progress{detail}")


class SessionNotFoundError(VaultChatError):
    """No session with the given id is held by the store."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class MessageNotFoundError(VaultChatError):
    """The session holds no message with the given id."""
    def __init__(self, session_id: str, message_id: str):
        self.session_id = session_id
        self.message_id = message_id
        super().__init__(f"Message {message_id} not found in session {session_id}")


class DuplicateMessageError(VaultChatError):
    """A message id is already present in the session."""
    def __init__(self, session_id: str, message_id: str):
        self.session_id = session_id
        self.message_id = message_id
        super().__init__(
            f"Message {message_id} already exists in session {session_id}"
        )


class SessionPersistError(VaultChatError):
    """Writing or deleting a session record failed."""
    def __init__(self, session_id: str, path: str, reason: str):
        self.session_id = session_id
        self.path = path
        self.reason = reason
        super().__init__(
            f"Cannot persist session {session_id} to {path}: {reason}"
        )
