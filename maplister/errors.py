"""Custom exception types for the map catalog mirror."""

from __future__ import annotations

from typing import Optional


class MaplisterError(Exception):
    """Base class for crawl errors that carry request context."""

    def __init__(
        self,
        message: str = "Crawl error.",
        *,
        url: Optional[str] = None,
        stage: Optional[str] = None,
        aux: Optional[str] = None,
    ) -> None:
        self.message = message
        self.url = url
        self.stage = stage
        self.aux = aux
        super().__init__(message)

    def __str__(self) -> str:
        context_parts: list[str] = []
        if self.stage:
            context_parts.append(f"stage={self.stage}")
        if self.url:
            context_parts.append(f"url={self.url}")
        if self.aux:
            context_parts.append(f"aux={self.aux}")
        context = ", ".join(context_parts)
        return f"{self.message} ({context})" if context else self.message


class TransportError(MaplisterError):
    """Raised when the HTTP request could not be completed at all."""


class HttpStatusError(MaplisterError):
    """Raised when the remote API answers with a non-2xx status."""

    def __init__(self, status: int, **context: Optional[str]) -> None:
        self.status = status
        super().__init__(f"HTTP {status}", **context)


class EmptyResponseError(MaplisterError):
    """Raised when a 2xx response carries no body."""


class ParseError(MaplisterError):
    """Raised when a page is malformed or does not have the expected shape."""


class CrawlCancelledError(MaplisterError):
    """Raised when the crawl abort signal interrupts a fetch."""


class FatalFetchError(MaplisterError):
    """Retries for a single fetch are exhausted; wraps the last error seen."""

    def __init__(
        self,
        last_error: BaseException,
        *,
        attempts: int,
        url: Optional[str] = None,
        body: Optional[str] = None,
        stage: Optional[str] = None,
        aux: Optional[str] = None,
    ) -> None:
        self.last_error = last_error
        self.attempts = attempts
        self.body = body
        message = f"Giving up after {attempts} attempt(s): {last_error}"
        super().__init__(message, url=url, stage=stage, aux=aux)


class CrawlAbortedError(MaplisterError):
    """Raised when a stage every other stage depends on fails."""


class ReconciliationError(MaplisterError):
    """Raised when a store write is rejected."""

    def __init__(
        self,
        message: str = "Store write rejected.",
        *,
        operation: Optional[str] = None,
        remote_id: Optional[str] = None,
    ) -> None:
        self.operation = operation
        self.remote_id = remote_id
        super().__init__(message)

    def __str__(self) -> str:
        context_parts: list[str] = []
        if self.operation:
            context_parts.append(f"operation={self.operation}")
        if self.remote_id:
            context_parts.append(f"id={self.remote_id}")
        context = ", ".join(context_parts)
        return f"{self.message} ({context})" if context else self.message


class ConfigError(MaplisterError):
    """Raised when the configuration cannot be used."""


RETRYABLE_ERRORS = (TransportError, HttpStatusError, EmptyResponseError)
