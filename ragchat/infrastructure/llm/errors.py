"""Translation of openai client exceptions into ExternalServiceError."""
import openai

from ragchat.core.errors import ExternalServiceError, ServiceErrorKind


def to_service_error(service: str, error: openai.OpenAIError) -> ExternalServiceError:
    """Map an openai exception to the shared error taxonomy."""
    status_code = getattr(error, "status_code", None)

    # Subclasses first: APITimeoutError is an APIConnectionError
    if isinstance(error, openai.APITimeoutError):
        kind = ServiceErrorKind.TIMEOUT
    elif isinstance(error, openai.APIConnectionError):
        kind = ServiceErrorKind.UNAVAILABLE
    elif isinstance(error, (openai.AuthenticationError, openai.PermissionDeniedError)):
        kind = ServiceErrorKind.AUTH
    elif isinstance(error, openai.RateLimitError):
        kind = ServiceErrorKind.RATE_LIMITED
    elif isinstance(error, openai.APIStatusError):
        kind = (
            ServiceErrorKind.UNAVAILABLE
            if error.status_code >= 500
            else ServiceErrorKind.INVALID_INPUT
        )
    else:
        kind = ServiceErrorKind.MALFORMED_RESPONSE

    return ExternalServiceError(service, kind, str(error), status_code=status_code)
