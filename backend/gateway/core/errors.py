"""
Error taxonomy for the gateway.

Every error raised by gateway code derives from GatewayError so the API layer
can map it to an HTTP response with one exception handler. The classes mirror
how a failure should be treated:

- ValidationError: malformed input, rejected before any upstream call
- ConfigurationError: missing/unresolvable upstream identifiers, fatal
- UpstreamThrottled: transient, retried by the dispatch queue
- UpstreamUnavailable: non-transient upstream failure
- RetriesExhaustedError: throttling persisted past the last retry
- FilterValidationFailure: soft failure, source filtering fails open
- StreamTransportError: mid-stream failure, terminates the stream
"""
from typing import Any, Dict, List, Optional


class GatewayError(Exception):
    """Base class for all gateway errors."""

    status_code: int = 500
    error_type: str = "gateway_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        """Client-facing JSON body for this error."""
        payload: Dict[str, Any] = {
            "error": self.error_type,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(GatewayError):
    """Raised when request input is malformed or out of range."""

    status_code = 400
    error_type = "validation_error"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.errors = errors or []

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        if self.errors:
            payload["errors"] = self.errors
        return payload


class ConfigurationError(GatewayError):
    """Raised when required upstream identifiers are missing or unresolvable."""

    status_code = 503
    error_type = "configuration_error"

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["setup_required"] = True
        return payload


class UpstreamError(GatewayError):
    """
    Failure reported by the upstream backend.

    Carries the upstream HTTP status (when there was one) and the upstream
    error code so the dispatch queue can classify it.
    """

    status_code = 502
    error_type = "upstream_error"

    def __init__(
        self,
        message: str,
        upstream_status: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.upstream_status = upstream_status
        self.code = code


class UpstreamThrottled(UpstreamError):
    """Upstream signalled throttling ("too many requests")."""

    status_code = 429
    error_type = "upstream_throttled"

    def __init__(self, message: str = "Upstream throttled the request", upstream_status: Optional[int] = 429, code: Optional[str] = "ThrottlingException"):
        super().__init__(message, upstream_status=upstream_status, code=code)


class UpstreamUnavailable(UpstreamError):
    """Non-transient upstream failure; surfaced to the caller as terminal."""

    error_type = "upstream_unavailable"


class RetriesExhaustedError(UpstreamUnavailable):
    """
    Raised when a retryable failure persisted through every retry.

    Distinct from a non-retryable upstream error: it is a rate-limit error
    with a suggested retry-after interval, and it keeps the last upstream
    error both as ``last_error`` and as ``__cause__``.
    """

    status_code = 429
    error_type = "rate_limited"

    def __init__(self, operation: str, attempts: int, last_error: BaseException, retry_after: float):
        if isinstance(last_error, UpstreamThrottled):
            reason = "due to rate limiting"
        else:
            reason = "because the upstream kept failing"
        message = (
            f"{operation} failed after {attempts} attempts {reason}. "
            f"Please try again later. Last error: {last_error}"
        )
        super().__init__(
            message,
            upstream_status=getattr(last_error, "upstream_status", None),
            code=getattr(last_error, "code", None),
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        self.retry_after = retry_after

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["retry_after"] = round(self.retry_after, 3)
        payload["attempts"] = self.attempts
        return payload


class FilterValidationFailure(GatewayError):
    """Catalog lookup failed while validating source filters (soft failure)."""

    status_code = 200
    error_type = "filter_validation_failure"


class StreamTransportError(GatewayError):
    """A stream failed after it started; the relay terminates it with one error frame."""

    error_type = "stream_error"
