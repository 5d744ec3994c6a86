"""Standard JSON replies with CORS headers."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any

DEV_ORIGIN = "http://localhost:5173"
DEFAULT_METHODS = "GET, POST, OPTIONS"
DEFAULT_HEADERS = "Content-Type, Authorization"
JSON_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
JSON_CONTENT_TYPE = "application/json"


@dataclass
class ApiResponse:
    """A uniform API reply; empty data and error are left out of the JSON."""

    success: bool
    data: Any = None
    error: str = ""

    def to_dict(self) -> dict:
        """Return the reply as a JSON-ready mapping."""
        result: dict = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error:
            result["error"] = self.error
        return result


def cors_headers(
    origin: str,
    methods: str = DEFAULT_METHODS,
    headers: str = DEFAULT_HEADERS,
) -> dict[str, str]:
    """Return the CORS headers allowing credentialed requests from ``origin``."""
    return {
        "Access-Control-Allow-Origin": origin,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Allow-Methods": methods,
        "Access-Control-Allow-Headers": headers,
    }


def json_response(method: str, data: Any, status: int) -> tuple[int, dict[str, str], str]:
    """Build ``(status, headers, body)`` for a JSON reply.

    Preflight (OPTIONS) requests get status 200 and an empty body.
    """
    headers = cors_headers(DEV_ORIGIN, JSON_METHODS, DEFAULT_HEADERS)
    headers["Content-Type"] = JSON_CONTENT_TYPE
    if method.upper() == "OPTIONS":
        return 200, headers, ""
    return status, headers, json.dumps(data) + "\n"


def error_response(method: str, message: str, status: int) -> tuple[int, dict[str, str], str]:
    """Build a JSON reply of the form ``{"error": message}``."""
    return json_response(method, {"error": message}, status)