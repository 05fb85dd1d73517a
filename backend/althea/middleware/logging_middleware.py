"""
FastAPI middleware for logging API requests and responses.

Uses pure ASGI middleware (not BaseHTTPMiddleware) so file downloads and
other streamed responses pass through untouched.

This middleware logs:
- Request: method, path, query params, client, JSON body
- Response: status code, processing time, JSON body
- Sensitive and protected health fields are masked; multipart uploads and
  non-JSON responses are never logged
"""

import json
import logging
import time
from typing import Dict, List, Optional
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from ..core.logging_config import filter_sensitive_data, truncate_large_data

logger = logging.getLogger(__name__)

MAX_LOGGED_BODY = 5000


def _is_loggable(content_type: Optional[str]) -> bool:
    """Only JSON and form-encoded bodies are logged."""
    if not content_type:
        return False
    content_type = content_type.lower()
    return "json" in content_type or content_type.startswith("application/x-www-form-urlencoded")


def _sanitize_body(data: bytes) -> str:
    """Decode a body, mask sensitive JSON fields and truncate."""
    text = data.decode("utf-8", errors="ignore")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return truncate_large_data(text, max_length=MAX_LOGGED_BODY)
    return truncate_large_data(
        json.dumps(filter_sensitive_data(payload), ensure_ascii=False),
        max_length=MAX_LOGGED_BODY,
    )


def _extract_error_reason(body_text: Optional[str]) -> Optional[str]:
    """Extract a concise error reason from a JSON error body."""
    if not body_text:
        return None
    try:
        payload = json.loads(body_text)
    except json.JSONDecodeError:
        return truncate_large_data(body_text, max_length=500)
    if isinstance(payload, dict):
        for key in ("detail", "message", "error"):
            value = payload.get(key)
            if value:
                return truncate_large_data(str(value), max_length=500)
    return truncate_large_data(json.dumps(payload, ensure_ascii=False), max_length=500)


def _headers(raw: List) -> Dict[str, str]:
    return {
        k.decode("utf-8", errors="ignore").lower(): v.decode("utf-8", errors="ignore")
        for k, v in raw
    }


class RequestLoggingMiddleware:
    """Pure ASGI middleware to log all API requests and responses."""

    def __init__(self, app: ASGIApp, exclude_paths: Optional[list] = None):
        """
        Initialize the logging middleware.

        Args:
            app: The ASGI application
            exclude_paths: Paths to skip entirely (e.g., ["/health"])
        """
        self.app = app
        self.exclude_paths = exclude_paths or ["/health", "/"]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI entry point."""
        if scope["type"] != "http" or scope.get("path", "") in self.exclude_paths:
            await self.app(scope, receive, send)
            return

        start_time = time.time()
        request_id = id(scope)
        method = scope.get("method", "UNKNOWN")
        path = scope.get("path", "")
        query_string = scope.get("query_string", b"").decode("utf-8", errors="ignore")
        request_headers = _headers(scope.get("headers", []))
        client = scope.get("client")

        log_request_body = _is_loggable(request_headers.get("content-type"))
        body_chunks: List[bytes] = []

        async def logging_receive() -> Message:
            message = await receive()
            if log_request_body and message["type"] == "http.request":
                body_chunks.append(message.get("body", b""))
            return message

        status_code = 0
        log_response_body = False
        response_chunks: List[bytes] = []

        async def logging_send(message: Message) -> None:
            nonlocal status_code, log_response_body
            if message["type"] == "http.response.start":
                status_code = message.get("status", 0)
                log_response_body = _is_loggable(_headers(message.get("headers", [])).get("content-type"))
            elif message["type"] == "http.response.body" and log_response_body:
                response_chunks.append(message.get("body", b""))
            await send(message)

        logger.info(
            f"Request started: {method} {path}",
            extra={"extra_fields": {
                "request_id": request_id,
                "method": method,
                "path": path,
                "query_string": query_string or None,
                "client": client[0] if client else None,
                "user_agent": request_headers.get("user-agent"),
            }}
        )

        try:
            await self.app(scope, logging_receive, logging_send)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {method} {path} - {str(e)}",
                exc_info=True,
                extra={"extra_fields": {
                    "request_id": request_id,
                    "method": method,
                    "path": path,
                    "duration_ms": duration_ms,
                    "error": str(e),
                }}
            )
            raise

        duration_ms = (time.time() - start_time) * 1000
        request_body = _sanitize_body(b"".join(body_chunks)) if body_chunks else None
        response_body = _sanitize_body(b"".join(response_chunks)) if response_chunks else None
        error_reason = _extract_error_reason(response_body) if status_code >= 400 else None

        if status_code < 400:
            log_level = logging.INFO
        elif status_code < 500:
            log_level = logging.WARNING
        else:
            log_level = logging.ERROR

        message = f"Request completed: {method} {path} - {status_code} ({duration_ms:.2f}ms)"
        if error_reason:
            message += f" | error_reason={error_reason}"

        logger.log(
            log_level,
            message,
            extra={"extra_fields": {
                "request_id": request_id,
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": duration_ms,
                "request_body": request_body,
                "response_body": response_body,
                "error_reason": error_reason,
            }}
        )
