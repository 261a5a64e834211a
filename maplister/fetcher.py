"""HTTP transport and the retrying page fetcher."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Protocol, TypeVar

import requests
from requests.adapters import HTTPAdapter
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    stop_when_event_set,
    wait_exponential,
    wait_fixed,
)

from maplister.errors import (
    RETRYABLE_ERRORS,
    CrawlCancelledError,
    EmptyResponseError,
    FatalFetchError,
    HttpStatusError,
    TransportError,
)
from maplister.logging_config import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")


class Transport(Protocol):
    def fetch(self, url: str, body: str | None = None) -> tuple[int, bytes]:
        ...


class RequestsTransport:
    """Single GET/POST round trip; no retry logic lives here."""

    def __init__(
        self,
        *,
        timeout: float = 30.0,
        user_agent: str | None = None,
        pool_size: int = 8,
    ) -> None:
        self._timeout = timeout
        self._session = requests.Session()
        adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)
        self._session.headers["Accept"] = "application/json"
        if user_agent:
            self._session.headers["User-Agent"] = user_agent

    def fetch(self, url: str, body: str | None = None) -> tuple[int, bytes]:
        try:
            if body is None:
                response = self._session.get(url, timeout=self._timeout)
            else:
                response = self._session.post(
                    url,
                    data=body,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                    timeout=self._timeout,
                )
        except requests.RequestException as exc:
            raise TransportError(f"{exc.__class__.__name__}: {exc}", url=url) from exc
        return response.status_code, response.content

    def close(self) -> None:
        self._session.close()


@dataclass
class FetchOutcome:
    """What a continuation receives: the page body or the terminal error."""

    url: str
    body: str | None
    stage: str
    aux: str
    attempts: int
    content: bytes | None = None
    error: FatalFetchError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class RetryingFetcher:
    """Fetch a page with bounded retries, then hand the outcome to a continuation.

    Transport errors, non-2xx statuses and empty bodies are retried with the
    same url and body. Any other exception a transport raises ends the fetch
    without a retry. Either way the continuation runs exactly once per
    :meth:`fetch` and its return value is passed back to the caller.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        max_attempts: int = 5,
        retry_delay: float = 2.0,
        backoff: str = "fixed",
        max_delay: float = 30.0,
        abort_event: threading.Event | None = None,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self._transport = transport
        self.max_attempts = max_attempts
        self._retry_delay = retry_delay
        self._backoff = backoff
        self._max_delay = max_delay
        self._abort = abort_event or threading.Event()

    def _wait_strategy(self):
        if self._backoff == "exponential":
            return wait_exponential(multiplier=self._retry_delay, max=self._max_delay)
        return wait_fixed(self._retry_delay)

    def fetch(
        self,
        url: str,
        body: str | None,
        continuation: Callable[[FetchOutcome], T],
        *,
        stage: str,
        aux: str = "",
        max_attempts: int | None = None,
    ) -> T:
        limit = max_attempts or self.max_attempts
        attempts = 0

        def attempt() -> bytes:
            nonlocal attempts
            if self._abort.is_set():
                raise CrawlCancelledError("Crawl aborted", url=url, stage=stage, aux=aux)
            attempts += 1
            try:
                status, content = self._transport.fetch(url, body)
            except TransportError as exc:
                exc.stage, exc.aux = stage, aux
                raise
            if not 200 <= status < 300:
                raise HttpStatusError(status, url=url, stage=stage, aux=aux)
            if not content:
                raise EmptyResponseError("Empty response body", url=url, stage=stage, aux=aux)
            return content

        retrying = Retrying(
            stop=stop_after_attempt(limit) | stop_when_event_set(self._abort),
            wait=self._wait_strategy(),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=before_sleep_log(LOGGER, logging.WARNING),
            sleep=self._abort.wait,
            reraise=True,
        )

        outcome = FetchOutcome(url=url, body=body, stage=stage, aux=aux, attempts=0)
        try:
            outcome.content = retrying(attempt)
        except Exception as exc:
            outcome.error = FatalFetchError(
                exc,
                attempts=attempts,
                url=url,
                body=body,
                stage=stage,
                aux=aux,
            )
        outcome.attempts = attempts
        return continuation(outcome)
