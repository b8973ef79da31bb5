"""HTTP fetching of watched documents."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

import httpx
import structlog

from ..config import FetchConfig


class FetchErrorKind(str, Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


class FetchError(Exception):
    """A fetch that produced no usable content this cycle."""

    def __init__(self, message: str, kind: FetchErrorKind = FetchErrorKind.TRANSIENT) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def transient(self) -> bool:
        return self.kind is FetchErrorKind.TRANSIENT


@dataclass(slots=True)
class FetchResponse:
    """Standardised response wrapper."""

    url: str
    status_code: int
    text: str
    headers: Dict[str, str] = field(default_factory=dict)
    elapsed: float = 0.0


class Fetcher:
    """Single-attempt GET with a bounded total deadline.

    No retries happen here; the next scheduled cycle is the retry.
    """

    def __init__(
        self,
        config: FetchConfig | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.config = config or FetchConfig()
        self.logger = logger or structlog.get_logger("page_sentinel.fetcher")
        headers = {"User-Agent": self.config.user_agent}
        headers.update(self.config.extra_headers)
        self._client = httpx.Client(
            follow_redirects=True,
            timeout=self.config.timeout,
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def fetch(self, location: str, timeout: float | None = None) -> FetchResponse:
        timeout = timeout or self.config.timeout
        started = time.monotonic()
        deadline = started + timeout
        try:
            with self._client.stream("GET", location, timeout=timeout) as response:
                status = response.status_code
                if status >= 500 or status == 429:
                    raise FetchError(f"HTTP {status} from {location}", FetchErrorKind.TRANSIENT)
                if status >= 400:
                    raise FetchError(f"HTTP {status} from {location}", FetchErrorKind.PERMANENT)
                body = self._read_body(response, deadline, location)
                encoding = response.encoding or "utf-8"
                final_url = str(response.url)
                headers = dict(response.headers)
        except FetchError:
            raise
        except httpx.TimeoutException as exc:
            raise FetchError(f"Timed out after {timeout:.0f}s: {location}") from exc
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise FetchError(f"Invalid location {location!r}: {exc}", FetchErrorKind.PERMANENT) from exc
        except httpx.HTTPError as exc:
            raise FetchError(f"{type(exc).__name__}: {exc}") from exc

        try:
            text = body.decode(encoding, errors="replace")
        except LookupError:
            text = body.decode("utf-8", errors="replace")
        elapsed = time.monotonic() - started
        self.logger.debug("fetch_ok", url=final_url, status=status, size=len(body), elapsed=round(elapsed, 3))
        return FetchResponse(
            url=final_url,
            status_code=status,
            text=text,
            headers=headers,
            elapsed=elapsed,
        )

    def _read_body(self, response: httpx.Response, deadline: float, location: str) -> bytes:
        chunks: list[bytes] = []
        size = 0
        for chunk in response.iter_bytes():
            size += len(chunk)
            if size > self.config.max_bytes:
                raise FetchError(
                    f"Body larger than {self.config.max_bytes} bytes: {location}",
                    FetchErrorKind.PERMANENT,
                )
            if time.monotonic() > deadline:
                raise FetchError(f"Deadline exceeded while reading body: {location}")
            chunks.append(chunk)
        return b"".join(chunks)


__all__ = ["FetchError", "FetchErrorKind", "FetchResponse", "Fetcher"]
