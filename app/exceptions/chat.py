# ruff: noqa: D107
"""Chat domain exceptions."""

from typing import Any
from uuid import UUID

from .base import NotFoundError, ValidationError


class ConversationNotFoundError(NotFoundError):
    """Conversation is absent, owned by someone else, or tied to another provider."""

    def __init__(
        self,
        conversation_id: UUID | str | None = None,
        message: str = "Chat not found",
        details: dict[str, Any] | None = None,
    ):
        details = dict(details or {})
        if conversation_id is not None:
            details["conversation_id"] = str(conversation_id)
        super().__init__(message=message, details=details, error_code="CONVERSATION_NOT_FOUND")


class InvalidMessageError(ValidationError):
    """Malformed incoming message, rejected before any network call."""

    def __init__(
        self,
        message: str = "Invalid message: role and content are required.",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message=message, details=details, error_code="INVALID_MESSAGE")
