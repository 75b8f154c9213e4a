"""
HTTP Handlers for JPEL RestAPI activities

Performs the single outbound call of a RestAPI activity once its url,
headers, query parameters and body have been rendered by the reference
resolver.

Example:
    from jpel.api.handlers.http_handlers import HTTPHandlers

    handlers = HTTPHandlers(default_timeout=10)
    response = handlers.execute(
        method="POST",
        url="https://api.example.com/orders",
        headers={"Authorization": "Bearer secret"},
        body={"amount": 42},
    )
    response["status"]      # 201
    response["data"]        # parsed JSON body, or text

Response shape:
    {"status": int, "statusText": str, "headers": dict, "data": Any}

HTTP error statuses (4xx/5xx) are returned as data. Connection errors and
timeouts raise requests.exceptions.RequestException for the caller to
record as an activity failure. Calls are never retried here.
"""

import json
import logging
from typing import Any, Dict, Optional

import requests

from jpel import config

logger = logging.getLogger(__name__)

# Methods whose body is sent as JSON when it is a dict or list
BODY_METHODS = ("POST", "PUT", "PATCH", "DELETE")


class HTTPHandlers:
    """
    Outbound HTTP client for RestAPI activities.
    """

    def __init__(self, default_timeout: Optional[float] = None):
        """
        Initialize HTTP handlers.

        Args:
            default_timeout: Timeout in seconds used when the activity
                declares none; defaults to JPEL_HTTP_TIMEOUT_SECONDS
        """
        self.default_timeout = (
            default_timeout if default_timeout is not None else config.http_timeout_seconds()
        )

    def _encode_body(self, method: str, body: Any) -> Dict[str, Any]:
        if body is None or method not in BODY_METHODS:
            return {}
        if isinstance(body, (dict, list)):
            return {"json": body}
        return {"data": body if isinstance(body, (str, bytes)) else json.dumps(body)}

    def _parse_response(self, response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            data = response.text

        return {
            "status": response.status_code,
            "statusText": response.reason or "",
            "headers": dict(response.headers or {}),
            "data": data,
        }

    def execute(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        body: Any = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Make one HTTP request.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE, PATCH)
            url: Fully rendered request URL
            headers: Request headers
            params: Query parameters
            body: Request body; dicts and lists are sent as JSON
            timeout: Request timeout in seconds

        Returns:
            Response dictionary with status, statusText, headers and data

        Raises:
            requests.exceptions.RequestException: On network errors or timeout
        """
        method = method.upper()
        if timeout is None:
            timeout = self.default_timeout

        request_headers = {key: str(value) for key, value in (headers or {}).items()}
        logger.info(f"HTTP {method} {url} (timeout={timeout}s)")

        response = requests.request(
            method=method,
            url=url,
            headers=request_headers,
            params=params or None,
            timeout=timeout,
            **self._encode_body(method, body),
        )

        result = self._parse_response(response)
        logger.info(f"HTTP {method} {url} -> {result['status']}")
        return result
