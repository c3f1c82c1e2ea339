from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator
from urllib.parse import urlencode, urlsplit

import httpx

from .config import DEFAULT_AUTH_HEADER, DEFAULT_TIMEOUT_S

logger = logging.getLogger(__name__)


class MarketplaceError(RuntimeError):
    pass


class AuthRequiredError(MarketplaceError):
    pass


class TransportError(MarketplaceError):
    """The request never produced an HTTP response."""

    def __init__(self, message: str, *, cause: BaseException | None = None, product: str | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        self.product = product


@dataclass(frozen=True)
class MarketplaceHTTPError(MarketplaceError):
    status_code: int
    body: str

    def __str__(self) -> str:  # pragma: no cover
        return f"HTTP {self.status_code}: {self.body}"


def _redact_headers(headers: dict[str, str], auth_header: str) -> dict[str, str]:
    out = dict(headers)
    for k in list(out.keys()):
        if k.lower() == auth_header.lower():
            out[k] = "<redacted>"
    return out


class MarketplaceClient:
    """
    Thin HTTP transport for the Marketplace API.

    Status codes are only turned into errors when ``check=True``; callers that
    need to tell a 403 from a 404 pass ``check=False`` and inspect the response.
    """

    def __init__(
        self,
        *,
        host: str,
        token: str | None = None,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        auth_header: str = DEFAULT_AUTH_HEADER,
        debug_payloads: bool = False,
    ) -> None:
        self.host = host
        self.token = token
        self.timeout_s = timeout_s
        self.auth_header = auth_header
        self.debug_payloads = debug_payloads

        self._http = httpx.Client(timeout=timeout_s, follow_redirects=True)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "MarketplaceClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def make_url(self, path: str, params: dict[str, Any] | None = None, *, host: str | None = None) -> str:
        if not path.startswith("/"):
            path = "/" + path
        url = f"https://{host or self.host}{path}"
        if params:
            url = f"{url}?{urlencode(params, doseq=True)}"
        return url

    def _headers(self, headers: dict[str, str] | None, auth: bool) -> dict[str, str]:
        req_headers = {"Accept": "application/json"}
        if headers:
            req_headers.update(headers)
        if auth:
            if not self.token:
                raise AuthRequiredError(
                    "No API token configured. Pass --csp-api-token, set CSP_API_TOKEN, "
                    "or run `mkpcli config set --token ...`."
                )
            req_headers[self.auth_header] = self.token
        return req_headers

    def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any | None = None,
        headers: dict[str, str] | None = None,
        auth: bool = True,
        check: bool = True,
    ) -> httpx.Response:
        if not url.startswith(("http://", "https://")):
            url = self.make_url(url)

        req_headers = self._headers(headers, auth)
        logger.debug("%s %s", method.upper(), url)
        if self.debug_payloads:
            logger.debug("request headers: %s", _redact_headers(req_headers, self.auth_header))
            if json_body is not None:
                logger.debug("request body: %s", json.dumps(json_body, sort_keys=True))

        try:
            resp = self._http.request(
                method.upper(),
                url,
                json=json_body,
                headers=req_headers,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"marketplace request failed: {e}", cause=e) from e

        logger.debug("%s %s -> %d", method.upper(), urlsplit(url).path, resp.status_code)
        if check and resp.status_code >= 400:
            raise MarketplaceHTTPError(resp.status_code, resp.text)
        return resp

    def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs: Any) -> httpx.Response:
        return self.request("PUT", url, **kwargs)

    @contextmanager
    def stream(self, url: str) -> Iterator[httpx.Response]:
        """
        Stream a GET without auth headers.

        Used for pre-signed storage links and public chart archives, which
        reject or ignore the Marketplace token.
        """
        logger.debug("GET %s (stream)", url)
        try:
            with self._http.stream("GET", url) as resp:
                if resp.status_code >= 400:
                    resp.read()
                    raise MarketplaceHTTPError(resp.status_code, resp.text)
                yield resp
        except httpx.HTTPError as e:
            raise TransportError(f"download of {url} failed: {e}", cause=e) from e
