"""Engine error taxonomy and the retry classification used by every layer.

Two questions are kept apart:

* *what* went wrong: the exception class, built from HTTP status codes and
  transport failures by :func:`classify_status`;
* *whether* it is worth another attempt: :func:`is_retryable`, the only
  place the chain walker and the turn executors ask.
"""

from __future__ import annotations

# Error bodies from the upstream are vendor-defined and can be large.
ERROR_BODY_LIMIT = 200

_JSON_MODE_MARKERS = (
    "response_format",
    "response-format",
    "response format",
    "json_object",
    "json-object",
    "json_schema",
    "json-schema",
)


class EngineError(Exception):
    """Base class for failures of the LLM orchestration engine.

    ``message`` is short and safe to show to an end user as-is.
    """

    error_type = "engine_error"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"status": "error", "error_type": self.error_type, "message": self.message}


class ConfigError(EngineError):
    """The engine is missing a credential or other required setting."""

    error_type = "config_error"


class RateLimitedError(EngineError):
    """The upstream answered 429. Terminal for the current call chain."""

    error_type = "rate_limited"


class RequestRejectedError(EngineError):
    """The upstream refused the request (non-2xx below 500). Terminal."""

    error_type = "request_rejected"

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientServiceError(EngineError):
    """The upstream failed in a way another attempt may fix."""

    error_type = "transient_service"
    retryable = True


class UpstreamTimeoutError(TransientServiceError):
    error_type = "timeout"


class EmptyResponseError(TransientServiceError):
    error_type = "empty_response"


class TruncatedResponseError(TransientServiceError):
    """The model hit its token limit before emitting any JSON."""

    error_type = "truncated"


class MalformedJsonError(TransientServiceError):
    """Content could not be recovered into a single JSON object."""

    error_type = "malformed_json"


class ValidationError(Exception):
    """Caller input failed a precondition. Never sent upstream, never retried."""

    error_type = "validation_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"status": "error", "error_type": self.error_type, "message": self.message}


def is_retryable(exc: BaseException) -> bool:
    """Return True when ``exc`` deserves another attempt (same stage or fallback model).

    Cancellation and anything outside the engine taxonomy are never retried.
    """
    return isinstance(exc, EngineError) and exc.retryable


def truncate_body(body: str, limit: int = ERROR_BODY_LIMIT) -> str:
    return (body or "")[:limit]


def is_json_mode_rejection(status_code: int, body: str) -> bool:
    """Detect a provider refusing the strict JSON-object response mode."""
    if status_code not in (400, 422):
        return False
    lowered = (body or "").lower()
    return any(marker in lowered for marker in _JSON_MODE_MARKERS)


def classify_status(status_code: int, body: str) -> EngineError:
    """Map a non-2xx upstream reply to the engine error it represents."""
    if status_code == 429:
        return RateLimitedError("Rate limit reached. Please wait a moment and try again.")
    if status_code >= 500:
        return TransientServiceError(
            "The AI service is temporarily unavailable. Please try again."
        )
    return RequestRejectedError(
        f"AI request failed ({status_code}): {truncate_body(body)}",
        status_code=status_code,
    )
