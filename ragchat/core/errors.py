"""Error taxonomy shared by the retrieval and compression subsystems."""
from enum import Enum
from typing import Optional


class RagChatError(Exception):
    """Base class for all ragchat errors."""


class ConfigurationError(RagChatError, ValueError):
    """Invalid configuration value (chunk size, threshold, budget...)."""


class EmptyIndexError(RagChatError):
    """Vector index holds no chunks."""


class ServiceErrorKind(str, Enum):
    """Failure modes of external collaborators."""
    AUTH = "auth"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"
    UNAVAILABLE = "unavailable"
    MALFORMED_RESPONSE = "malformed_response"
    INVALID_INPUT = "invalid_input"


_KIND_HINTS = {
    ServiceErrorKind.AUTH: "the API key was rejected; check that it is set and not expired",
    ServiceErrorKind.RATE_LIMITED: "the rate limit was exceeded; wait a moment and try again",
    ServiceErrorKind.TIMEOUT: "the request timed out; the server may be overloaded",
    ServiceErrorKind.UNAVAILABLE: "the server could not be reached; check the network and the base URL",
    ServiceErrorKind.MALFORMED_RESPONSE: "the server returned a response that could not be parsed",
    ServiceErrorKind.INVALID_INPUT: "the request was rejected as invalid",
}


class ExternalServiceError(RagChatError):
    """Failure of an embedder or answer generator call.

    Surfaced verbatim to the caller, which decides between retry and abort.
    """

    def __init__(
        self,
        service: str,
        kind: ServiceErrorKind,
        detail: str = "",
        status_code: Optional[int] = None,
    ):
        """Initialize error.

        Args:
            service: Collaborator name ("embedder", "llm", ...).
            kind: Failure mode.
            detail: Raw detail from the underlying client.
            status_code: HTTP status code, if any.
        """
        self.service = service
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        super().__init__(self.user_message)

    @property
    def retryable(self) -> bool:
        return self.kind in (
            ServiceErrorKind.RATE_LIMITED,
            ServiceErrorKind.TIMEOUT,
            ServiceErrorKind.UNAVAILABLE,
        )

    @property
    def user_message(self) -> str:
        """Message specific enough for the user to self-diagnose."""
        status = f" (HTTP {self.status_code})" if self.status_code else ""
        message = f"{self.service} error{status}: {_KIND_HINTS[self.kind]}"
        if self.detail:
            message += f" [{self.detail}]"
        return message


class CompressionNotBeneficial(RagChatError):
    """Summary was not smaller than the messages it was meant to replace."""

    def __init__(self, original_tokens: int, summary_tokens: int, reason: str = ""):
        self.original_tokens = original_tokens
        self.summary_tokens = summary_tokens
        # (history, stats) reached before the failing attempt, if any
        self.partial = None
        message = (
            f"Compression rejected: summary ~{summary_tokens} tokens "
            f"vs original ~{original_tokens} tokens"
        )
        if reason:
            message += f" ({reason})"
        super().__init__(message)
