"""Crawl pipeline: count -> main -> category pages -> map details -> download details."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from maplister.config import CrawlSettings
from maplister.coordinator import CrawlCoordinator, CrawlSummary, LogProgress, ProgressCallback
from maplister.errors import CrawlAbortedError, ParseError, ReconciliationError
from maplister.fetcher import FetchOutcome, RequestsTransport, RetryingFetcher, Transport
from maplister.logging_config import get_logger
from maplister.normalizers import format_file_size
from maplister.parsers import (
    CategoryRecord,
    MapSummary,
    parse_categories,
    parse_count,
    parse_download_details,
    parse_map_details,
    parse_maps_page,
)
from maplister.reconciler import CHANGED, NEW, Reconciler
from maplister.storage.store import CatalogStore

LOGGER = get_logger(__name__)

T = TypeVar("T")


class Stage(str, Enum):
    COUNT = "count"
    MAIN = "main"
    MAPS_PAGE = "maps_page"
    MAP_DETAILS = "map_details"
    DOWNLOAD_DETAILS = "download_details"


class CrawlState(str, Enum):
    INIT = "init"
    COUNT_FETCHED = "count_fetched"
    MAIN_FETCHED = "main_fetched"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class CrawlCursor:
    """Pagination state of one category loop; lives for a single run."""

    category_id: str
    page: int = 1
    total_pages_known: bool = False
    seen: set[str] = field(default_factory=set)


class CrawlPipeline:
    """Drive one crawl of a game's catalog.

    The count and main stages run in the calling thread and abort the whole
    run on failure. Everything after the main page is a branch on the
    coordinator's pool: one per category page loop, one per map detail and
    one per download detail. A failing branch only ends itself.
    """

    def __init__(
        self,
        settings: CrawlSettings,
        fetcher: RetryingFetcher,
        reconciler: Reconciler,
        coordinator: CrawlCoordinator,
        *,
        game_id: int,
    ) -> None:
        self._settings = settings
        self._fetcher = fetcher
        self._reconciler = reconciler
        self._coordinator = coordinator
        self._game_id = game_id
        self.state = CrawlState.INIT

    @property
    def summary(self) -> CrawlSummary:
        return self._coordinator.summary

    def _request(self, stage: Stage, **params: object) -> tuple[str, str | None]:
        params.setdefault("game_id", self._game_id)
        return (
            self._settings.url_for(stage.value, **params),
            self._settings.body_for(stage.value, **params),
        )

    def run(self) -> CrawlSummary:
        """Crawl once; raises :class:`CrawlAbortedError` if count or main fail."""

        self.state = CrawlState.INIT
        try:
            url, body = self._request(Stage.COUNT)
            total = self._fetcher.fetch(url, body, self._on_count, stage=Stage.COUNT.value)
            self.summary.add(total_estimate=total)
            self.state = CrawlState.COUNT_FETCHED
            LOGGER.info("Catalog reports %d map(s) for game %s", total, self._game_id)

            url, body = self._request(Stage.MAIN)
            categories = self._fetcher.fetch(url, body, self._on_main_page, stage=Stage.MAIN.value)
            self.state = CrawlState.MAIN_FETCHED
        except CrawlAbortedError:
            self.state = CrawlState.ABORTED
            raise

        for category in categories:
            self._coordinator.submit(
                f"{Stage.MAPS_PAGE.value}:{category.remote_id}",
                self._crawl_category,
                category.remote_id,
            )
        self._coordinator.wait()

        if self._coordinator.aborted:
            self.state = CrawlState.ABORTED
            LOGGER.warning("Crawl aborted; skipping deletion pass")
            return self.summary

        self._reconciler.finalize()
        self.state = CrawlState.DONE
        LOGGER.info("Crawl finished | %s", self.summary.as_log_line())
        return self.summary

    # -- global stages -------------------------------------------------

    def _abort_on_failure(self, outcome: FetchOutcome) -> bytes:
        if not outcome.ok:
            raise CrawlAbortedError(
                f"Required stage failed: {outcome.error}",
                url=outcome.url,
                stage=outcome.stage,
            ) from outcome.error
        return outcome.content or b""

    def _on_count(self, outcome: FetchOutcome) -> int:
        content = self._abort_on_failure(outcome)
        try:
            return parse_count(content)
        except ParseError as exc:
            raise CrawlAbortedError(f"Unreadable count page: {exc}", url=outcome.url, stage=outcome.stage) from exc

    def _on_main_page(self, outcome: FetchOutcome) -> list[CategoryRecord]:
        content = self._abort_on_failure(outcome)
        try:
            records = parse_categories(content)
        except ParseError as exc:
            raise CrawlAbortedError(f"Unreadable main page: {exc}", url=outcome.url, stage=outcome.stage) from exc

        stored: list[CategoryRecord] = []
        for record in records:
            try:
                self._reconciler.upsert_category(record)
            except ReconciliationError as exc:
                self._coordinator.record_failure(f"category:{record.remote_id}", exc)
                continue
            stored.append(record)
        self.summary.add(categories=len(stored))
        LOGGER.info("Main page lists %d categories", len(stored))
        return stored

    # -- branches --------------------------------------------------------

    @staticmethod
    def _parse(outcome: FetchOutcome, parser: Callable[..., T], *args: Any) -> T:
        """Raise the fetch error or parse the body, tagging parse errors with the request."""

        if outcome.error is not None:
            raise outcome.error
        try:
            return parser(outcome.content or b"", *args)
        except ParseError as exc:
            exc.url, exc.stage, exc.aux = outcome.url, outcome.stage, outcome.aux
            raise

    def _crawl_category(self, category_id: str) -> None:
        """Fetch pages 1, 2, ... in order until a short or empty page.

        Only a loop that reaches such a page completes the category; any
        error raised by a page handler leaves it out of the deletion pass.
        """

        cursor = CrawlCursor(category_id=category_id)
        while True:
            if self._coordinator.aborted:
                LOGGER.info("Abort requested; leaving category %s at page %d", category_id, cursor.page)
                return
            url, body = self._request(
                Stage.MAPS_PAGE, category_id=category_id, page=cursor.page
            )
            more = self._fetcher.fetch(
                url,
                body,
                partial(self._on_maps_page, cursor),
                stage=Stage.MAPS_PAGE.value,
                aux=f"{category_id}:{cursor.page}",
            )
            if not more:
                break
            cursor.page += 1

        self._reconciler.complete_category(category_id)
        LOGGER.debug("Category %s complete after %d page(s)", category_id, cursor.page)

    def _on_maps_page(self, cursor: CrawlCursor, outcome: FetchOutcome) -> bool:
        page = self._parse(outcome, parse_maps_page)
        if page.total is not None and not cursor.total_pages_known:
            cursor.total_pages_known = True
            LOGGER.debug("Category %s advertises %d map(s)", cursor.category_id, page.total)

        fresh: dict[str, MapSummary] = {}
        for summary in page.maps:
            if summary.remote_id not in cursor.seen:
                fresh.setdefault(summary.remote_id, summary)
        cursor.seen.update(summary.remote_id for summary in page.maps)
        self._reconciler.mark_seen(cursor.category_id, fresh)

        for summary in fresh.values():
            self._dispatch_summary(cursor.category_id, summary)

        if len(page.maps) < self._settings.page_size:
            return False
        if not fresh:
            # The end of the listing is unknown, so the category stays incomplete.
            LOGGER.warning(
                "Category %s page %d repeats earlier maps; leaving category incomplete",
                cursor.category_id,
                cursor.page,
            )
            raise ParseError(
                f"Full page {cursor.page} of category {cursor.category_id} repeats earlier maps",
                url=outcome.url,
                stage=outcome.stage,
                aux=outcome.aux,
            )
        return True

    def _dispatch_summary(self, category_id: str, summary: MapSummary) -> None:
        status = self._reconciler.classify(summary, category_id)
        if status in (NEW, CHANGED):
            self._coordinator.submit(
                f"{Stage.MAP_DETAILS.value}:{summary.remote_id}",
                self._fetch_map_details,
                category_id,
                summary.remote_id,
            )
            return

        self.summary.add(unchanged=1)
        if self._reconciler.needs_download_details(summary.remote_id):
            self._submit_download(summary.remote_id)

    def _fetch_map_details(self, category_id: str, map_id: str) -> None:
        url, body = self._request(Stage.MAP_DETAILS, category_id=category_id, map_id=map_id)
        self._fetcher.fetch(
            url,
            body,
            self._on_map_details,
            stage=Stage.MAP_DETAILS.value,
            aux=category_id,
        )

    def _on_map_details(self, outcome: FetchOutcome) -> None:
        record = self._parse(outcome, parse_map_details, outcome.aux)
        self._reconciler.upsert_map(record)
        self._submit_download(record.remote_id)

    def _submit_download(self, map_id: str) -> None:
        self._coordinator.submit(
            f"{Stage.DOWNLOAD_DETAILS.value}:{map_id}",
            self._fetch_download_details,
            map_id,
        )

    def _fetch_download_details(self, map_id: str) -> None:
        url, body = self._request(Stage.DOWNLOAD_DETAILS, map_id=map_id)
        self._fetcher.fetch(
            url,
            body,
            self._on_download_details,
            stage=Stage.DOWNLOAD_DETAILS.value,
            aux=map_id,
        )

    def _on_download_details(self, outcome: FetchOutcome) -> None:
        details = self._parse(outcome, parse_download_details)
        self._reconciler.update_download_details(
            outcome.aux,
            details.url,
            format_file_size(details.size_bytes),
        )


def run_crawl(
    settings: CrawlSettings,
    session_factory: sessionmaker[Session],
    *,
    game_id: int,
    transport: Transport | None = None,
    progress: ProgressCallback | None = None,
    abort_event: threading.Event | None = None,
) -> CrawlSummary:
    """Wire transport, fetcher, store and pool together and crawl once."""

    abort_event = abort_event or threading.Event()
    owned_transport = transport is None
    if transport is None:
        transport = RequestsTransport(
            timeout=settings.timeout,
            user_agent=settings.user_agent,
            pool_size=settings.workers,
        )
    fetcher = RetryingFetcher(
        transport,
        max_attempts=settings.max_attempts,
        retry_delay=settings.retry_delay,
        backoff=settings.retry_backoff,
        max_delay=settings.retry_max_delay,
        abort_event=abort_event,
    )
    summary = CrawlSummary()
    reconciler = Reconciler(CatalogStore(session_factory), summary)
    try:
        with CrawlCoordinator(
            settings.workers,
            progress=progress if progress is not None else LogProgress(settings.progress_every),
            abort_event=abort_event,
            summary=summary,
        ) as coordinator:
            pipeline = CrawlPipeline(settings, fetcher, reconciler, coordinator, game_id=game_id)
            try:
                return pipeline.run()
            except KeyboardInterrupt:
                LOGGER.warning("Interrupted; waiting for running branches to finish")
                coordinator.abort()
                coordinator.wait()
                raise
    finally:
        if owned_transport:
            transport.close()  # type: ignore[union-attr]
