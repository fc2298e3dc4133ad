"""Exception hierarchy shared by the store gateway and the chat services."""

# SQLSTATE-like code used when a single-row lookup matches nothing
NOT_FOUND = "NOT_FOUND"


class ChatGeniusError(Exception):
    """Base exception for chatgenius errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class StorageError(ChatGeniusError):
    """Raised when a store gateway call fails.

    ``code`` is the driver's SQLSTATE when one is available, or
    ``NOT_FOUND`` for an empty single-row lookup.
    """

    def __init__(self, message: str, code: str | None = None):
        self.code = code
        super().__init__(message)

    @property
    def is_not_found(self) -> bool:
        return self.code == NOT_FOUND


class AuthError(ChatGeniusError):
    """Raised when login or logout fails."""


class ChannelError(ChatGeniusError):
    """Raised when a channel create/join/leave fails or has no user."""


class MessageError(ChatGeniusError):
    """Raised when a message send/edit/delete fails or preconditions are unmet."""


class AssistantError(ChatGeniusError):
    """Raised when the AI assistant endpoint call fails."""

    def __init__(self, message: str = "Failed to get response from API", status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)
