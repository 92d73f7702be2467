from __future__ import annotations

from fastapi import HTTPException


class RelayError(Exception):
    """Base class for failures raised inside a relay invocation."""


class MissingCredentialError(RelayError):
    def __init__(self, message: str = "API URL and API Key are required"):
        super().__init__(message)


class SearchAugmentationError(RelayError):
    pass


class UpstreamConnectError(RelayError):
    """Upstream failed before any response bytes were received."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class UpstreamStreamError(RelayError):
    """Upstream failed after the stream had started."""


class MalformedFrameError(RelayError):
    """A frame payload that is not (yet) valid JSON; never leaves the decoder."""


class ApiError(HTTPException):
    def __init__(
        self, status_code: int, err_type: str, message: str, hint: str | None = None
    ):
        payload = {"error": {"type": err_type, "code": status_code, "message": message}}
        if hint:
            payload["error"]["hint"] = hint
        super().__init__(status_code=status_code, detail=payload)


def err_missing_fields(*names: str) -> ApiError:
    return ApiError(400, "missing_fields", f"{', '.join(names)} are required")


def err_missing_credential() -> ApiError:
    return ApiError(
        400,
        "missing_credential",
        "API URL and API Key are required",
        "Store them via /api/api-settings",
    )


def err_invalid_action(action: str | None) -> ApiError:
    return ApiError(400, "invalid_action", f"Invalid action '{action}'")


def err_session_not_found(session_id: str) -> ApiError:
    return ApiError(404, "session_not_found", f"Session '{session_id}' not found")


def err_upstream_failed(message: str, hint: str | None = None) -> ApiError:
    return ApiError(502, "upstream_failed", message, hint)


def err_no_models_found() -> ApiError:
    return ApiError(404, "no_models_found", "No models found in API response")
