from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from app.models.recommendations import BookRecommendations, Message


class CompletionError(Exception):
    code = "upstream_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ParseError(CompletionError):
    """Provider answered 2xx but the body does not match the response schema."""

    code = "upstream_parse_error"


class UpstreamError(CompletionError):
    """Provider answered with a non-2xx status."""

    code = "upstream_error"

    def __init__(self, status_code: int, body: str):
        super().__init__(f"Completion provider failed: {status_code}\n{body}")
        self.status_code = status_code
        self.body = body


class TransportError(CompletionError):
    """Request never produced a response: connection, timeout or serialization fault."""

    code = "upstream_transport_error"

    def __init__(self, cause: BaseException):
        super().__init__(f"Completion provider unreachable: {type(cause).__name__}: {cause}")
        self.cause = cause


@dataclass(frozen=True)
class CompletionSuccess:
    recommendations: BookRecommendations


@dataclass(frozen=True)
class CompletionFailure:
    error: CompletionError


CompletionOutcome = CompletionSuccess | CompletionFailure


class CompletionClient(Protocol):
    @property
    def model(self) -> str:
        """Model identifier sent with every request."""

    async def complete(self, messages: Sequence[Message]) -> CompletionOutcome:
        """Send *messages* upstream once and return a typed outcome."""
