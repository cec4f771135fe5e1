"""
HTTP client for the upstream product service.

Every call returns either an ``UpstreamResponse`` (the upstream answered,
whatever the status) or an ``UpstreamFailure`` (no answer). httpx
exceptions never escape this module.
"""

import asyncio
import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Union

import httpx

from shared.logging import get_logger


RELAYED_HEADERS = ("content-type", "content-length")


class FailureKind(str, Enum):
    """Why an upstream call produced no response."""

    REFUSED = "refused"
    TIMEOUT = "timeout"
    OTHER = "other"


@dataclass(frozen=True)
class UpstreamResponse:
    """A response received from the upstream, any status code."""

    status_code: int
    content: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def payload(self) -> Any:
        """Body parsed as JSON when possible, else decoded text."""
        if not self.content:
            return None
        try:
            return json.loads(self.content)
        except ValueError:
            return self.content.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class UpstreamFailure:
    """An upstream call that ended before any response arrived."""

    kind: FailureKind
    detail: str
    code: str
    target: str
    duration_ms: float


UpstreamResult = Union[UpstreamResponse, UpstreamFailure]


class ResponseTooLargeError(Exception):
    """Upstream body exceeded the proxied payload bound."""


class UpstreamClient:
    """Single-target client with a total timeout per call."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_response_bytes: int = 50 * 1024 * 1024,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_response_bytes = max_response_bytes
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.logger = get_logger("gateway.upstream_client")

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._transport,
                timeout=httpx.Timeout(self.timeout),
                # relayed content-length must match the relayed bytes
                headers={"Accept-Encoding": "identity"},
                follow_redirects=False,
            )
        return self._client

    def url_for(self, path: str, query: str = "") -> str:
        """Build the upstream URL, keeping the path prefix and raw query."""
        url = f"{self.base_url}{path}"
        if query:
            url = f"{url}?{query}"
        return url

    async def request(
        self,
        method: str,
        path: str,
        *,
        query: str = "",
        headers: Optional[Mapping[str, str]] = None,
        content: Optional[bytes] = None,
        timeout: Optional[float] = None,
    ) -> UpstreamResult:
        """Perform one call; never retried."""
        target = self.url_for(path, query)
        limit = timeout if timeout is not None else self.timeout
        start = time.perf_counter()

        try:
            return await asyncio.wait_for(
                self._exchange(method, target, headers, content, limit, start),
                timeout=limit,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            detail = str(exc) or f"No response within {limit}s"
            return self._failure(FailureKind.TIMEOUT, exc, detail, target, start)
        except httpx.ConnectError as exc:
            return self._failure(FailureKind.REFUSED, exc, str(exc), target, start)
        except (httpx.HTTPError, httpx.StreamError, ResponseTooLargeError) as exc:
            return self._failure(FailureKind.OTHER, exc, str(exc), target, start)

    async def _exchange(
        self,
        method: str,
        target: str,
        headers: Optional[Mapping[str, str]],
        content: Optional[bytes],
        limit: float,
        start: float,
    ) -> UpstreamResponse:
        client = self._get_client()
        request = client.build_request(
            method,
            target,
            headers=headers,
            content=content,
            timeout=httpx.Timeout(limit),
        )
        response = await client.send(request, stream=True)
        try:
            declared = response.headers.get("content-length", "")
            if method != "HEAD" and declared.isdigit() and int(declared) > self.max_response_bytes:
                raise ResponseTooLargeError(
                    f"Declared body of {declared} bytes exceeds {self.max_response_bytes}"
                )

            body = bytearray()
            async for chunk in response.aiter_bytes():
                body.extend(chunk)
                if len(body) > self.max_response_bytes:
                    raise ResponseTooLargeError(
                        f"Body exceeds {self.max_response_bytes} bytes"
                    )
        finally:
            await response.aclose()

        self.logger.debug("Upstream responded", method=method, status_code=response.status_code, bytes=len(body))
        return UpstreamResponse(
            status_code=response.status_code,
            content=bytes(body),
            headers=self._relayed_headers(response),
            duration_ms=self._elapsed_ms(start),
        )

    def _relayed_headers(self, response: httpx.Response) -> Dict[str, str]:
        headers = {
            name: response.headers[name]
            for name in RELAYED_HEADERS
            if name in response.headers
        }
        # a decoded body no longer matches the encoded length
        if "content-encoding" in response.headers:
            headers.pop("content-length", None)
        return headers

    def _failure(
        self,
        kind: FailureKind,
        exc: BaseException,
        detail: str,
        target: str,
        start: float,
    ) -> UpstreamFailure:
        return UpstreamFailure(
            kind=kind,
            detail=detail,
            code=exc.__class__.__name__,
            target=target,
            duration_ms=self._elapsed_ms(start),
        )

    @staticmethod
    def _elapsed_ms(start: float) -> float:
        return round((time.perf_counter() - start) * 1000, 1)

    async def close(self) -> None:
        """Close pooled connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
