"""Paginated, filterable gallery listing.

The cache holds exactly one loaded page.  Status filter and filename search
narrow that page locally and never trigger a fetch; only :meth:`load_page`
(and :meth:`refresh`) go to the network.  A newer load supersedes a pending
one: the pending fetch task is cancelled and any result it still produces is
dropped, so display state only ever reflects the most recent request.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from reactivex.abc import DisposableBase
from reactivex.subject import BehaviorSubject

from imgflow.exceptions import PageSuperseded
from imgflow.models import JobStatus, PageWindow, ResourcePage, ResourceRecord

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 12

PageFetcher = Callable[..., Awaitable[ResourcePage]]

# Sentinel for "leave the current status filter alone".
KEEP: Any = object()


def _coerce_status(status: JobStatus | str | None) -> JobStatus | None:
    if status is None or isinstance(status, JobStatus):
        return status
    return JobStatus.from_wire(status)


@dataclass
class ListingFilter:
    """Local predicates applied to the loaded page: status first, then search."""

    status: JobStatus | None = None
    search: str = ""
    case_insensitive: bool = True

    def matches(self, record: ResourceRecord) -> bool:
        if self.status is not None and record.status != self.status:
            return False
        if not self.search:
            return True
        if self.case_insensitive:
            return self.search.lower() in record.filename.lower()
        return self.search in record.filename

    def is_empty(self) -> bool:
        return self.status is None and not self.search


@dataclass(frozen=True)
class ListingView:
    """Immutable picture of the cache pushed to observers after every change."""

    page_index: int
    records: tuple[ResourceRecord, ...]
    loaded_count: int
    total_count: int
    total_pages: int
    status_filter: JobStatus | None
    search: str


class ListingCache:
    """One page of the remote collection plus local filter and search.

    Usage::

        cache = ListingCache(client.list_resources, page_size=12)
        records, total = await cache.load_page(0)
        cache.apply_filter(JobStatus.COMPLETED)
        cache.apply_search("cat")
    """

    def __init__(self, fetch_page: PageFetcher, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._fetch_page = fetch_page
        self.page_size = page_size
        self._filter = ListingFilter()
        self._page_index = 0
        self._loaded: tuple[ResourceRecord, ...] = ()
        self._window = PageWindow(offset=0, limit=page_size, total_count=0)
        self._generation = 0
        self._pending: asyncio.Task | None = None
        self._views: BehaviorSubject = BehaviorSubject(self._build_view())

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def window(self) -> PageWindow:
        return self._window

    @property
    def total_pages(self) -> int:
        return self._window.total_pages

    @property
    def page_index(self) -> int:
        return self._page_index

    @property
    def records(self) -> tuple[ResourceRecord, ...]:
        """The loaded page, before local filter and search."""
        return self._loaded

    @property
    def visible(self) -> tuple[ResourceRecord, ...]:
        return tuple(r for r in self._loaded if self._filter.matches(r))

    @property
    def filter(self) -> ListingFilter:
        return self._filter

    @property
    def view(self) -> ListingView:
        return self._views.value

    def subscribe(self, observer: Callable[[ListingView], None]) -> DisposableBase:
        """Register *observer*; it immediately receives the current view."""
        return self._views.subscribe(on_next=observer)

    # ------------------------------------------------------------------
    # Remote
    # ------------------------------------------------------------------

    async def load_page(
        self,
        page_index: int,
        status_filter: JobStatus | str | None = KEEP,
    ) -> tuple[tuple[ResourceRecord, ...], int]:
        """Fetch page *page_index* (zero-based) and make it the loaded page.

        Args:
            page_index: Page to load.  Out-of-range indexes (negative, or
                past the last page once the total is known) yield an empty
                page rather than an error.
            status_filter: New local status filter; omitted keeps the
                current one, ``None`` clears it.

        Returns:
            ``(visible_records, total_count)``

        Raises:
            PageSuperseded: A newer ``load_page`` started before this one
                finished; its result is discarded.
            NetworkError / ServerError: The fetch failed.  The previously
                loaded page is kept.
        """
        self._generation += 1
        generation = self._generation
        if self._pending is not None and not self._pending.done():
            logger.debug("Cancelling pending page fetch (superseded by page %d)", page_index)
            self._pending.cancel()
        if status_filter is not KEEP:
            self._filter.status = _coerce_status(status_filter)

        if page_index < 0:
            self._commit(page_index, (), self._window)
            return self.visible, self._window.total_count

        offset = page_index * self.page_size
        task = asyncio.get_running_loop().create_task(
            self._fetch_page(limit=self.page_size, offset=offset)
        )
        self._pending = task
        try:
            page = await task
        except asyncio.CancelledError:
            if generation != self._generation:
                raise PageSuperseded(f"Load of page {page_index} superseded") from None
            raise
        finally:
            if self._pending is task:
                self._pending = None

        if generation != self._generation:
            logger.debug("Discarding late result for superseded page %d", page_index)
            raise PageSuperseded(f"Load of page {page_index} superseded")

        window = PageWindow(offset=offset, limit=self.page_size, total_count=page.total_count)
        records = page.records if page_index < window.total_pages else ()
        self._commit(page_index, records, window)
        logger.info(
            "Loaded page %d/%d (%d records, %d total)",
            page_index + 1,
            window.total_pages,
            len(records),
            window.total_count,
        )
        return self.visible, window.total_count

    async def refresh(self) -> tuple[tuple[ResourceRecord, ...], int]:
        """Reload the current page, e.g. after a delete."""
        return await self.load_page(self._page_index)

    # ------------------------------------------------------------------
    # Local
    # ------------------------------------------------------------------

    def apply_filter(self, status: JobStatus | str | None) -> tuple[ResourceRecord, ...]:
        """Narrow the loaded page to *status* (``None`` clears the filter).

        Raises:
            ValueError: *status* is a string that names no known status.
        """
        self._filter.status = _coerce_status(status)
        self._emit()
        return self.visible

    def apply_search(self, substring: str, case_insensitive: bool = True) -> tuple[ResourceRecord, ...]:
        """Narrow the loaded page to filenames containing *substring*."""
        self._filter.search = substring
        self._filter.case_insensitive = case_insensitive
        self._emit()
        return self.visible

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _commit(
        self,
        page_index: int,
        records: tuple[ResourceRecord, ...],
        window: PageWindow,
    ) -> None:
        self._page_index = page_index
        self._loaded = tuple(records)
        self._window = window
        self._emit()

    def _emit(self) -> None:
        self._views.on_next(self._build_view())

    def _build_view(self) -> ListingView:
        return ListingView(
            page_index=self._page_index,
            records=self.visible,
            loaded_count=len(self._loaded),
            total_count=self._window.total_count,
            total_pages=self._window.total_pages,
            status_filter=self._filter.status,
            search=self._filter.search,
        )
