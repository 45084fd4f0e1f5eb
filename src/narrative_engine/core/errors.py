from __future__ import annotations

from typing import Any


class EngineError(Exception):
    pass


class ValidationError(EngineError):
    """Raised for malformed persisted or imported session records."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = list(errors or [])


class ServiceError(EngineError):
    kind = "generic"
    terminal = False

    def __init__(self, message: str = "", *, cause: BaseException | None = None):
        super().__init__(message or self.kind)
        self.message = message
        self.cause = cause


class AuthError(ServiceError):
    kind = "invalid_key"
    terminal = True


class QuotaError(ServiceError):
    kind = "insufficient_quota"
    terminal = True


class RateLimitError(ServiceError):
    kind = "rate_limit"


class NetworkError(ServiceError):
    kind = "network"


class GenericServiceError(ServiceError):
    kind = "generic"


class MalformedResponseError(GenericServiceError):
    pass


_CODE_MAP: dict[str, type[ServiceError]] = {
    "insufficient_quota": QuotaError,
    "invalid_api_key": AuthError,
    "rate_limit_exceeded": RateLimitError,
}

_NETWORK_MARKERS = ("network", "fetch", "econnrefused", "connection", "timed out", "timeout")


def _error_code(exc: Any) -> str | None:
    body = getattr(exc, "error", None)
    if isinstance(body, dict):
        code = body.get("code") or body.get("type")
        return str(code) if code else None
    code = getattr(exc, "code", None)
    return code if isinstance(code, str) and code else None


def _status_code(exc: Any) -> int | None:
    for attr in ("status", "status_code"):
        raw = getattr(exc, attr, None)
        if isinstance(raw, int) and not isinstance(raw, bool):
            return raw
    return None


def classify_service_error(exc: BaseException) -> ServiceError:
    """Map any exception raised by a collaborator onto the service taxonomy.

    Explicit error codes win over HTTP status codes, which win over message
    heuristics. Already-classified errors are returned unchanged.
    """
    if isinstance(exc, ServiceError):
        return exc

    message = str(getattr(exc, "message", None) or exc)

    code = _error_code(exc)
    if code is not None:
        return _CODE_MAP.get(code, GenericServiceError)(message, cause=exc)

    status = _status_code(exc)
    if status is not None:
        if status == 401:
            return AuthError(message or "Invalid API key", cause=exc)
        if status == 429:
            if "quota" in message.lower():
                return QuotaError(message, cause=exc)
            return RateLimitError(message, cause=exc)
        if status in (500, 502, 503, 504):
            return NetworkError(message or "Service temporarily unavailable", cause=exc)
        return GenericServiceError(message, cause=exc)

    if isinstance(exc, (ConnectionError, TimeoutError)):
        return NetworkError(message, cause=exc)

    lowered = message.lower()
    if "insufficient_quota" in lowered or "exceeded your current quota" in lowered:
        return QuotaError(message, cause=exc)
    if "invalid" in lowered and "key" in lowered:
        return AuthError(message, cause=exc)
    if "rate" in lowered and "limit" in lowered:
        return RateLimitError(message, cause=exc)
    if any(marker in lowered for marker in _NETWORK_MARKERS):
        return NetworkError(message, cause=exc)
    return GenericServiceError(message, cause=exc)
