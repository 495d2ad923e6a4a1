"""Thin HTTP abstraction for talking to authorization servers.

Wraps ``requests`` and normalizes responses into ``HTTPResponse`` so that
step bodies and tests see one small interface.

Key behaviors:
- JSON request/response headers (``application/json``)
- Optional bearer token authentication
- TLS options: skip verification, custom CA bundle
- Proxy support
- No automatic retries: conformance verdicts must reflect what the server
  did on the first attempt
- ``redact_auth()`` helper for safe logging of headers
"""

import json
import logging
from typing import Any, Dict, Optional

import requests

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"


class HTTPResponse:
    """Normalized HTTP response wrapper."""

    def __init__(self, status_code: int, headers: Dict[str, str], body: str):
        self.status_code = status_code
        self.headers = headers
        self.body = body
        self._json = None

    def json(self) -> Any:
        """Parse and cache the response body as JSON.

        Raises:
            ValueError: if the body is not valid JSON.
        """
        if self._json is None:
            self._json = json.loads(self.body) if self.body else None
        return self._json

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup."""
        lower = name.lower()
        for k, v in self.headers.items():
            if k.lower() == lower:
                return v
        return None

    def __repr__(self):
        return f"HTTPResponse(status_code={self.status_code})"


class HTTPClient:
    """HTTP client for conformance steps.

    URLs are absolute: endpoints come from the instance state bag and
    usually live on different hosts than the FHIR server itself.

    Args:
        token:          Bearer token for authentication.
        tls_no_verify:  Skip TLS certificate verification (for self-signed certs).
        timeout:        Per-request timeout in seconds.
        proxy:          HTTP/HTTPS proxy URL.
        ca_bundle:      Path to custom CA certificate bundle file.
        session:        Pre-built ``requests.Session`` (tests inject one).
    """

    def __init__(
        self,
        token: Optional[str] = None,
        tls_no_verify: bool = False,
        timeout: float = 30,
        proxy: Optional[str] = None,
        ca_bundle: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        self.token = token
        self.tls_no_verify = tls_no_verify
        self.timeout = timeout
        self.proxy = proxy
        self.ca_bundle = ca_bundle
        self.session = session or requests.Session()

    # -- Public API ----------------------------------------------------------

    def get(self, url: str, extra_headers: Optional[Dict[str, str]] = None) -> HTTPResponse:
        """Send a GET request."""
        return self._request("GET", url, extra_headers=extra_headers)

    def post_json(self, url: str, payload: Dict[str, Any],
                  extra_headers: Optional[Dict[str, str]] = None) -> HTTPResponse:
        """Send a POST request with a JSON payload."""
        return self._request("POST", url, payload, extra_headers=extra_headers)

    def close(self):
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()

    # -- Internals -----------------------------------------------------------

    def _build_headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        """Build the default JSON request headers with auth credentials."""
        headers = {
            "Accept": JSON_CONTENT_TYPE,
            "Content-Type": JSON_CONTENT_TYPE,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        if extra:
            headers.update(extra)
        return headers

    def _request(
        self,
        method: str,
        url: str,
        payload: Optional[Dict[str, Any]] = None,
        extra_headers: Optional[Dict[str, str]] = None,
    ) -> HTTPResponse:
        """Execute a single HTTP request.

        Transport failures (connection refused, TLS errors, timeouts) are
        raised as ``requests.RequestException`` for the caller to classify.
        """
        headers = self._build_headers(extra_headers)
        kwargs: Dict[str, Any] = {
            "headers": headers,
            "timeout": self.timeout,
        }
        if self.ca_bundle:
            kwargs["verify"] = self.ca_bundle
        elif self.tls_no_verify:
            kwargs["verify"] = False
        else:
            kwargs["verify"] = True

        if self.proxy:
            kwargs["proxies"] = {"http": self.proxy, "https": self.proxy}

        if payload is not None:
            kwargs["json"] = payload

        logger.debug("%s %s headers=%s", method, url, redact_auth(headers))
        resp = self.session.request(method, url, **kwargs)
        logger.debug("%s %s -> %s", method, url, resp.status_code)
        return HTTPResponse(resp.status_code, dict(resp.headers), resp.text)


def redact_auth(headers: Dict[str, str]) -> Dict[str, str]:
    """Return a copy of headers with Authorization values replaced by ``***REDACTED***``.

    Use this when including headers in JSON output, logs, or error messages
    to avoid leaking bearer tokens or basic auth credentials.
    """
    redacted = dict(headers)
    for key in list(redacted.keys()):
        if key.lower() == "authorization":
            redacted[key] = "***REDACTED***"
    return redacted
