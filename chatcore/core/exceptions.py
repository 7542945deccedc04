"""Domain exceptions raised by the chatcore services."""


class ChatCoreException(Exception):
    """Base class for every error a service reports to its caller."""

    default_message = "Operation failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationException(ChatCoreException):
    """Malformed or self-referential input."""

    default_message = "Invalid input"


class NotFoundException(ChatCoreException):
    """Referenced entity is absent or already removed."""

    default_message = "Resource not found"


class ConflictException(ChatCoreException):
    """Uniqueness, canonical-edge or duplicate-conversation violation."""

    default_message = "Resource already exists"


class ForbiddenException(ChatCoreException):
    """Actor lacks rights over the target row."""

    default_message = "Not allowed"
