from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    # 4xx - Client errors
    INVALID_REQUEST = "E4000"
    NOT_FOUND = "E4040"
    METHOD_NOT_ALLOWED = "E4050"
    VALIDATION_ERROR = "E4220"

    # 5xx - Service errors
    SERVICE_ERROR = "E5000"
    CONFIG_ERROR = "E5006"
    UPSTREAM_ERROR = "E5007"
    BAD_MODEL_OUTPUT = "E5020"


class ErrorReason(str, Enum):
    MISSING_CREDENTIAL = "MissingCredential"
    MISSING_MATERIAL = "MissingMaterial"
    MISSING_ANSWER = "MissingAnswer"
    MISSING_TOPIC = "MissingTopic"
    INVALID_BODY = "InvalidBody"
    UPSTREAM_HTTP_ERROR = "UpstreamHttpError"
    UPSTREAM_TRANSPORT_ERROR = "UpstreamTransportError"
    UPSTREAM_INVALID_BODY = "UpstreamInvalidBody"
    NO_JSON_FOUND = "NoJsonFound"
    INVALID_JSON = "InvalidJson"


class EssayGraderError(Exception):
    """Base error for the grading pipeline. Every subclass is terminal for the call."""

    status_code: int = 500
    code: ErrorCode = ErrorCode.SERVICE_ERROR

    def __init__(
        self,
        message: str,
        *,
        reason: Optional[ErrorReason] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.reason = reason
        self.details = details or {}

    def payload_details(self) -> Optional[Dict[str, Any]]:
        out: Dict[str, Any] = {}
        if self.reason is not None:
            out["reason"] = self.reason.value
        out.update(self.details)
        return out or None


class ConfigError(EssayGraderError):
    """Process configuration is unusable (e.g. missing credential)."""

    status_code = 500
    code = ErrorCode.CONFIG_ERROR


class InputValidationError(EssayGraderError):
    """Client-caused request problem; never retried."""

    status_code = 400
    code = ErrorCode.VALIDATION_ERROR


class GatewayError(EssayGraderError):
    """Upstream transport/HTTP failure."""

    code = ErrorCode.UPSTREAM_ERROR

    def __init__(
        self,
        message: str,
        *,
        reason: Optional[ErrorReason] = None,
        upstream_status: Optional[int] = None,
        body: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged: Dict[str, Any] = dict(details or {})
        if upstream_status is not None:
            merged["upstream_status"] = int(upstream_status)
        if body is not None:
            merged["body"] = body
        super().__init__(message, reason=reason, details=merged)
        self.upstream_status = upstream_status
        self.body = body
        self.status_code = (
            int(upstream_status)
            if upstream_status is not None and int(upstream_status) >= 400
            else 500
        )


class ExtractionError(EssayGraderError):
    """Model reply has no recoverable grading JSON. Carries the raw text."""

    status_code = 502
    code = ErrorCode.BAD_MODEL_OUTPUT

    def __init__(
        self,
        message: str,
        *,
        reason: ErrorReason,
        raw: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged: Dict[str, Any] = {"raw": raw}
        merged.update(details or {})
        super().__init__(message, reason=reason, details=merged)
        self.raw = raw


def error_code_for_http_status(status_code: int) -> ErrorCode:
    if status_code == 404:
        return ErrorCode.NOT_FOUND
    if status_code == 405:
        return ErrorCode.METHOD_NOT_ALLOWED
    if status_code == 422:
        return ErrorCode.VALIDATION_ERROR
    if 400 <= int(status_code) < 500:
        return ErrorCode.INVALID_REQUEST
    return ErrorCode.SERVICE_ERROR


def build_error_payload(
    *,
    code: ErrorCode,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Canonical error shape for both HTTP JSON and SSE `event: error`.

    - `error` is the primary string message
    - `message` is an alias for readability
    """
    payload: Dict[str, Any] = {"code": code.value, "error": str(message), "message": str(message)}
    if details is not None:
        payload["details"] = details
    if request_id:
        payload["request_id"] = str(request_id)
    return payload
