from __future__ import annotations

import json
from socket import timeout as socket_timeout
from typing import Any
from urllib.error import URLError

from mwc.errors import MwError, MwErrorPayload


class XcaError(MwError):
    @property
    def retryable(self) -> bool:
        return self.payload.retryable


def make_xca_error(code: str, message: str, retryable: bool, details: dict[str, Any] | None = None) -> XcaError:
    return XcaError(
        MwErrorPayload(code=code, message=message, status=502, retryable=retryable, source="XCA", details=details)
    )


def map_http_status(status_code: int, body: dict[str, Any] | None = None) -> XcaError:
    details = {"status": status_code, "body": body or {}}
    if status_code in (401, 403):
        return make_xca_error("XCA_UNAUTHORIZED", "profit fee endpoint rejected credentials", False, details)
    if status_code == 429:
        return make_xca_error("XCA_RATE_LIMITED", "profit fee endpoint rate limited", True, details)
    if 500 <= status_code <= 599:
        return make_xca_error("XCA_UPSTREAM_UNAVAILABLE", "profit fee endpoint unavailable", True, details)
    return make_xca_error("XCA_UNKNOWN", "unexpected profit fee response", False, details)


def map_exception(exc: Exception) -> XcaError:
    if isinstance(exc, XcaError):
        return exc
    if isinstance(exc, (TimeoutError, socket_timeout, URLError)):
        return make_xca_error("XCA_TIMEOUT", "profit fee endpoint timed out", True, {"error": str(exc)})
    if isinstance(exc, (ValueError, json.JSONDecodeError)):
        return make_xca_error("XCA_RESPONSE_INVALID", "profit fee response is malformed", False, {"error": str(exc)})
    return make_xca_error("XCA_UNKNOWN", "unexpected profit fee failure", False, {"error": str(exc)})
