"""Bounded exponential backoff for unreliable HTTP endpoints.

Rate limiting (429), request timeouts and transient server faults are
retried; any other client error propagates at once.  When retries run out
the last observed error is raised, not a generic timeout.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from begin_cli.config import RetryConfig
from begin_cli.errors import BeginCliError, network_error

logger = logging.getLogger("begin_cli.net.retry")

RETRYABLE_STATUS = frozenset({408, 425, 429, 500, 502, 503, 504})

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryPolicy:
    """Stateless backoff configuration."""

    max_retries: int = 3
    base_delay: float = 0.5
    max_delay: float = 8.0
    jitter: float = 0.2

    @classmethod
    def from_config(cls, config: RetryConfig) -> RetryPolicy:
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
        )

    def delay_for(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Delay before retry number *attempt* (0-based), jitter applied."""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        spread = self.jitter * (2 * rand() - 1)
        return max(0.0, delay * (1 + spread))


def error_message(response: httpx.Response, service: str) -> str:
    """Best-effort error text from a JSON error body."""
    detail = ""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        detail = str(body.get("message") or body.get("error") or "")
    if not detail:
        detail = response.reason_phrase or "request failed"
    return f"{service} API error {response.status_code}: {detail}"


def classify(response: httpx.Response, service: str) -> Optional[BeginCliError]:
    """Return ``None`` for a 2xx/3xx response, otherwise the matching error."""
    if response.status_code < 400:
        return None
    return network_error(
        error_message(response, service),
        retryable=response.status_code in RETRYABLE_STATUS,
        status=response.status_code,
    )


def decode_json(response: httpx.Response, service: str) -> Any:
    """Body of a successful *response* as JSON; anything else is a provider error."""
    try:
        return response.json()
    except ValueError as exc:
        error = network_error(
            f"{service} returned a response that is not JSON (HTTP {response.status_code})",
            retryable=False,
            status=response.status_code,
            code="INVALID_RESPONSE",
        )
        error.__cause__ = exc
        raise error


def unexpected_response(service: str, exc: Exception) -> BeginCliError:
    """Error for a JSON body that lacks the fields a client reads."""
    error = network_error(
        f"{service} returned an unexpected response: {exc.__class__.__name__}: {exc}",
        retryable=False,
        code="INVALID_RESPONSE",
    )
    error.__cause__ = exc
    return error


async def execute(
    request: Callable[[], Awaitable[httpx.Response]],
    policy: RetryPolicy,
    *,
    service: str = "remote",
    sleep: Sleep = asyncio.sleep,
    rand: Callable[[], float] = random.random,
) -> httpx.Response:
    """Run *request* under *policy*.

    Makes at most ``policy.max_retries + 1`` attempts.  Transport failures
    (connection errors, timeouts) count as retryable.
    """
    attempt = 0
    while True:
        try:
            response = await request()
        except httpx.TransportError as exc:
            error = network_error(f"{service} unreachable: {exc}", retryable=True)
            error.__cause__ = exc
        else:
            error = classify(response, service)
            if error is None:
                return response

        if not error.retryable or attempt >= policy.max_retries:
            raise error

        delay = policy.delay_for(attempt, rand)
        attempt += 1
        logger.warning(
            f"{service}: {error.message}; retry {attempt}/{policy.max_retries} in {delay:.2f}s"
        )
        await sleep(delay)


class RetryingClient:
    """``httpx.AsyncClient`` wrapper that sends every request through :func:`execute`.

    Parameters
    ----------
    base_url:
        Root URL of the remote service.
    service:
        Short name used in log lines and error messages.
    headers:
        Default headers (API keys, content type).
    policy:
        Backoff policy; defaults to :class:`RetryPolicy`.
    sleep:
        Awaitable sleep, injectable for tests.
    transport:
        Optional httpx transport, e.g. ``httpx.MockTransport`` in tests.
    """

    def __init__(
        self,
        base_url: str,
        *,
        service: str,
        headers: Optional[dict[str, str]] = None,
        policy: Optional[RetryPolicy] = None,
        timeout: float = 30,
        sleep: Sleep = asyncio.sleep,
        rand: Callable[[], float] = random.random,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.service = service
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rand = rand
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        async def _send() -> httpx.Response:
            return await self._client.request(method, path, **kwargs)

        return await execute(
            _send,
            self.policy,
            service=self.service,
            sleep=self._sleep,
            rand=self._rand,
        )

    async def get_json(self, path: str, **kwargs: Any) -> Any:
        return decode_json(await self.request("GET", path, **kwargs), self.service)

    async def post_json(self, path: str, **kwargs: Any) -> Any:
        return decode_json(await self.request("POST", path, **kwargs), self.service)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RetryingClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
