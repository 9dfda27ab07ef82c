"""Fetcher contract, typed errors and the HTTP client shared by all sources.

A fetcher performs exactly one upstream call per poll cycle and turns the
payload into a model object. It never returns a partial or default value to
hide a problem: every failure surfaces as a ``FetcherError`` whose ``code``
ends up in the source's error slot.

.. code-block:: python

    class BlockHeightFetcher(BaseFetcher):
        name = "blockHeight"
        source_label = "example explorer"

        async def fetch(self) -> int:
            payload = await self._get_json("https://explorer.example/height")
            return int(payload["height"])
"""

import logging
import math
from abc import ABC, abstractmethod
from typing import Any, ClassVar

import httpx

from ..models import ErrorCode

logger = logging.getLogger(__name__)


class FetcherError(Exception):
    """A source call that produced no usable value.

    :ivar code: Error code stored in the source's error slot.
    :ivar detail: Diagnostic data served next to the error.
    """

    code: ErrorCode = ErrorCode.FETCH_FAILED

    def __init__(
        self,
        message: str,
        code: ErrorCode | None = None,
        detail: dict[str, Any] | None = None,
    ):
        if code is not None:
            self.code = code
        self.detail = detail or {}
        super().__init__(message)


class FetcherConfigError(FetcherError):
    """The source cannot be called as configured (no key, no RPC endpoint)."""

    code = ErrorCode.MISSING_CREDENTIAL


class FetcherHTTPError(FetcherError):
    """The upstream answered with a non-2xx status.

    :ivar status_code: Status of the upstream response.
    """

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        super().__init__(f"HTTP {status_code}: {body}")


class FetcherDecodeError(FetcherError):
    """The upstream answered, but the payload held no usable value."""

    code = ErrorCode.DECODE_FAILED


def first_number(payload: Any, candidates: tuple[str, ...]) -> tuple[float, str] | None:
    """Return the first finite numeric field among ``candidates``.

    Fields are tried in priority order. Booleans are not numbers here.

    :param payload: Mapping to probe.
    :param candidates: Field names in priority order.
    :returns: Tuple of (value, field name), or None if nothing matched.
    """
    if not isinstance(payload, dict):
        return None
    for candidate in candidates:
        value = payload.get(candidate)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if math.isfinite(value):
            return float(value), candidate
    return None


class BaseFetcher(ABC):
    """One upstream source of the snapshot.

    Subclasses set ``name`` (the error slot and snapshot key) and
    ``source_label`` (served under ``sources``) and implement ``fetch()``.

    :ivar api_key: Credential for the upstream, if it takes one.
    :ivar timeout: Per-request timeout in seconds.
    """

    name: ClassVar[str] = ""
    source_label: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 10.0

    # One pooled client for every HTTP source, created on first use
    _shared_client: ClassVar[httpx.AsyncClient | None] = None

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the fetcher.

        :param api_key: Credential for the upstream.
        :param timeout: Per-request timeout in seconds (default: 10).
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT

    @property
    def has_api_key(self) -> bool:
        return bool(self.api_key)

    @property
    def is_configured(self) -> bool:
        """Whether a call can be attempted at all (reported by /health)."""
        return True

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Return the pooled client, opening a new one if needed.

        The client is stored on BaseFetcher itself so every subclass uses the
        same connection pool.
        """
        client = BaseFetcher._shared_client
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                follow_redirects=True,
                headers={"Accept": "application/json"},
            )
            BaseFetcher._shared_client = client
        return client

    @classmethod
    def set_shared_client(cls, client: httpx.AsyncClient | None) -> None:
        """Install a specific client, e.g. one backed by ``httpx.MockTransport``."""
        BaseFetcher._shared_client = client

    @classmethod
    async def close_shared_client(cls) -> None:
        client = BaseFetcher._shared_client
        BaseFetcher._shared_client = None
        if client is not None and not client.is_closed:
            await client.aclose()

    @abstractmethod
    async def fetch(self) -> Any:
        """Call the upstream once and return the normalized value.

        :raises FetcherError: If no usable value was obtained.
        """

    async def _get_json(
        self,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """GET ``url`` on the shared client and decode the JSON body.

        :param url: Endpoint URL.
        :param params: Query parameters.
        :param headers: Extra request headers.
        :returns: Decoded JSON payload.
        :raises FetcherHTTPError: If the upstream answered with a non-2xx status.
        :raises FetcherError: On timeouts, transport errors or a non-JSON body.
        """
        try:
            response = await self.get_shared_client().get(
                url, params=params, headers=headers, timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            raise FetcherError(f"Request timeout after {self.timeout}s: {e}") from e
        except httpx.RequestError as e:
            raise FetcherError(f"Request failed: {e}") from e

        if not response.is_success:
            body = response.text[:200]
            logger.debug(f"[{self.name}] GET {url} returned {response.status_code}: {body}")
            raise FetcherHTTPError(response.status_code, body)

        try:
            return response.json()
        except ValueError as e:
            raise FetcherError(f"Invalid JSON from {url}: {e}") from e
