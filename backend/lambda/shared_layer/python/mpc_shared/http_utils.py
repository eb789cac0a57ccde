"""mpc_shared.http_utils — API Gateway request and response helpers.

Every HTTP-facing function answers errors with the same envelope::

    {"code": "<error code>", "message": "<human readable message>"}

Request extractors raise ``RequestError`` carrying the ready-made error
response, so handlers can do ``except RequestError as exc: return
exc.response``.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import uuid
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

CORS_ORIGIN = os.environ.get("CORS_ORIGIN", "*")
CORS_HEADERS = {
    "Access-Control-Allow-Origin": CORS_ORIGIN,
    "Access-Control-Allow-Headers": "Content-Type,Authorization",
    "Access-Control-Allow-Methods": "GET,POST,PUT,DELETE,OPTIONS",
}

# Error codes
NOT_FOUND = "not_found"
SERVER_ERROR = "server_error"
UNAUTHORIZED = "unauthorized"
VALIDATION = "validation"
UNPROCESSABLE = "unprocessable"
UNSUPPORTED_MEDIA_TYPE = "unsupported_media_type"

SERVER_ERROR_MESSAGE = "internal server error"
UNAUTHORIZED_MESSAGE = "client is not authorized to make this call"


class RequestError(Exception):
    """Raised by request extractors; ``response`` is returned as-is."""

    def __init__(self, response: Dict[str, Any]):
        super().__init__(response.get("body"))
        self.response = response


def _response(status_code: int, body: Any) -> Dict[str, Any]:
    """Build a standard API Gateway response with CORS headers."""
    return {
        "statusCode": status_code,
        "headers": {
            "Content-Type": "application/json",
            **CORS_HEADERS,
        },
        "body": json.dumps(body, default=str),
    }


def _error(status_code: int, code: str, message: str) -> Dict[str, Any]:
    """Build a standard error response."""
    return _response(status_code, {"code": code, "message": message})


def _validation_error(message: str) -> Dict[str, Any]:
    return _error(400, VALIDATION, message)


def _unauthorized() -> Dict[str, Any]:
    return _error(401, UNAUTHORIZED, UNAUTHORIZED_MESSAGE)


def _not_found(code: str, message: str) -> Dict[str, Any]:
    return _error(404, code, message)


def _unsupported_media_type(message: str) -> Dict[str, Any]:
    return _error(415, UNSUPPORTED_MEDIA_TYPE, message)


def _unprocessable(message: str) -> Dict[str, Any]:
    return _error(422, UNPROCESSABLE, message)


def _server_error(exc: Optional[BaseException] = None) -> Dict[str, Any]:
    """500 response; the cause is logged, never returned to the caller."""
    if exc is not None:
        logger.error("unhandled error: %s", exc, exc_info=exc)
    return _error(500, SERVER_ERROR, SERVER_ERROR_MESSAGE)


# ---------------------------------------------------------------------------
# Request extraction
# ---------------------------------------------------------------------------


def _parse_body(event: Dict[str, Any]) -> Any:
    """Parse JSON body from API Gateway event (handles base64)."""
    raw = event.get("body") or "{}"
    if event.get("isBase64Encoded"):
        raw = base64.b64decode(raw).decode("utf-8")
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return None


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """Return the body as a JSON object or raise a 400 ``RequestError``."""
    if not event.get("body"):
        raise RequestError(_validation_error("body was empty"))
    body = _parse_body(event)
    if not isinstance(body, dict):
        raise RequestError(_validation_error("body failed to be converted to a json object"))
    return body


def _path_param(event: Dict[str, Any], name: str, cast: Callable[[str], Any] = str) -> Any:
    params = event.get("pathParameters") or {}
    raw = params.get(name)
    if raw is None:
        raise RequestError(_validation_error(f"{name} not found in request path"))
    try:
        return cast(raw)
    except (TypeError, ValueError):
        raise RequestError(_validation_error(f"{name} with wrong type in request path"))


def _uuid4(raw: str) -> str:
    """Path cast for order ids: a canonical version-4 UUID string."""
    value = uuid.UUID(raw)
    if value.version != 4:
        raise ValueError(f"{raw} is not a version 4 uuid")
    return str(value)


def _query_param(event: Dict[str, Any], name: str) -> Optional[str]:
    params = event.get("queryStringParameters") or {}
    return params.get(name)


def _header(event: Dict[str, Any], name: str) -> Optional[str]:
    headers = event.get("headers") or {}
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


def _validate_content_type(event: Dict[str, Any]) -> None:
    content_type = _header(event, "content-type") or ""
    if content_type.split(";")[0].strip().lower() != "application/json":
        raise RequestError(
            _unsupported_media_type("Content-Type must be application/json")
        )


def _client_id(event: Dict[str, Any]) -> str:
    """Caller's ``client_id`` from the Cognito authorizer claims."""
    rc = event.get("requestContext") or {}
    claims = (rc.get("authorizer") or {}).get("claims") or {}
    client_id = claims.get("client_id")
    if not client_id:
        logger.warning("client_id claim missing from request context")
        raise RequestError(_unauthorized())
    return client_id


def _path_method(event: Dict[str, Any]) -> Tuple[str, str]:
    """Extract HTTP method and path from an API Gateway v1 or v2 event."""
    rc = event.get("requestContext") or {}
    http = rc.get("http") or {}
    method = (http.get("method") or event.get("httpMethod") or "GET").upper()
    path = http.get("path") or event.get("rawPath") or event.get("path") or "/"
    return method, path
