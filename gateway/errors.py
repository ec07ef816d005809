"""Gateway exceptions.

These exception types let the manager, command dispatcher and bridges react to
failures by kind (retry, deny, report) without scraping strings.
"""

from __future__ import annotations


class GatewayError(RuntimeError):
    """Base class for gateway errors."""


class CredentialLoadError(GatewayError):
    """A credential folder could not be read or is corrupt."""

    def __init__(self, folder: str, detail: str | None = None):
        self.folder = folder
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        if self.detail:
            return f"Cannot load credentials from {self.folder}: {self.detail}"
        return f"Cannot load credentials from {self.folder}"


class TransportConstructError(GatewayError):
    """The transport factory failed to produce a connection."""


class SendFailure(GatewayError):
    """An outbound transport call failed."""

    def __init__(self, conversation_id: str, detail: str | None = None):
        self.conversation_id = conversation_id
        self.detail = detail
        super().__init__(self.__str__())

    def __str__(self) -> str:
        if self.detail:
            return f"Send to {self.conversation_id} failed: {self.detail}"
        return f"Send to {self.conversation_id} failed"


class UnauthorizedCommand(GatewayError):
    """The sender may not run this command."""

    def __init__(self, command: str, required: str):
        self.command = command
        self.required = required
        super().__init__(f"{command} requires {required}")


class UnknownCommand(GatewayError):
    """No handler is registered for this command name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Unknown command: {name}")


class InvalidTransition(GatewayError):
    """A session lifecycle transition outside the state machine."""

    def __init__(self, session_id: str, current: str, target: str):
        self.session_id = session_id
        self.current = current
        self.target = target
        super().__init__(f"Session {session_id}: {current} -> {target} is not allowed")


class DuplicateSession(GatewayError):
    """A session id is already registered."""
