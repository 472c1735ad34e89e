"""Cursor pagination over a timestamp-ordered collection.

Pages run newest to oldest. The cursor is the epoch-ms timestamp of the
oldest row seen so far. The next page is queried up to and including the
cursor, with the limit widened by the number of already-seen rows sitting
exactly on it, and those rows are dropped again. The effective bound is
therefore exclusive even when several records share a timestamp.

Stored timestamps are read through ``to_millis``, so legacy ISO strings
rank by the instant they name. The store itself still orders raw values
(strings after numbers); ``migrate_legacy_timestamps`` in the inspection
service rewrites such values so store order and page order agree.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from drugwatch.models.inspection import to_millis
from drugwatch.services.record_store import RecordStore, Row, child_value


def timestamp_of(value: Any, order_by: str) -> int:
    return to_millis(child_value(value, order_by))


def newest_by_timestamp(rows: list[Row], order_by: str) -> list[Row]:
    return sorted(rows, key=lambda r: (timestamp_of(r[1], order_by), r[0]), reverse=True)


@dataclass
class Page:
    rows: list[Row]
    cursor: Optional[int] = None
    seen_at_cursor: list[str] = field(default_factory=list)
    exhausted: bool = False


def fetch_page(
    store: RecordStore,
    path: str,
    order_by: str,
    page_size: int,
    cursor: Optional[int] = None,
    seen_at_cursor: tuple[str, ...] | list[str] = (),
) -> Page:
    """Fetch one page older than ``cursor`` (the first page when it is None)."""
    seen = set(seen_at_cursor)
    limit = page_size + len(seen)
    batch = store.query(path, order_by, end_at=cursor, limit_to_last=limit)
    fresh = newest_by_timestamp([r for r in batch if r[0] not in seen], order_by)

    if not fresh:
        return Page(rows=[], cursor=cursor, seen_at_cursor=list(seen_at_cursor), exhausted=True)

    oldest = timestamp_of(fresh[-1][1], order_by)
    on_cursor = [key for key, value in fresh if timestamp_of(value, order_by) == oldest]
    if oldest == cursor:
        on_cursor = list(seen_at_cursor) + on_cursor

    # Rows without the ordering field sort first; nothing can be older.
    exhausted = len(batch) < limit or child_value(fresh[-1][1], order_by) is None
    return Page(rows=fresh, cursor=oldest, seen_at_cursor=on_cursor, exhausted=exhausted)


class Paginator:
    """Accumulates pages for "load more" views; results are unique by id."""

    def __init__(self, store: RecordStore, path: str, order_by: str, page_size: int = 20):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.store = store
        self.path = path
        self.order_by = order_by
        self.page_size = page_size
        self.reset()

    def reset(self) -> None:
        self._rows: dict[str, Any] = {}
        self._cursor: Optional[int] = None
        self._seen_at_cursor: list[str] = []
        self._started = False
        self.exhausted = False

    @property
    def rows(self) -> list[Row]:
        return newest_by_timestamp(list(self._rows.items()), self.order_by)

    def load_more(self) -> list[Row]:
        """Fetch the next page; returns only rows not seen before."""
        if self.exhausted:
            return []
        page = fetch_page(
            self.store,
            self.path,
            self.order_by,
            self.page_size,
            cursor=self._cursor if self._started else None,
            seen_at_cursor=self._seen_at_cursor,
        )
        self._started = True
        new_rows = [r for r in page.rows if r[0] not in self._rows]
        for key, value in new_rows:
            self._rows[key] = value
        self._cursor = page.cursor
        self._seen_at_cursor = page.seen_at_cursor
        self.exhausted = page.exhausted or not new_rows
        return new_rows

    def load_all(self, max_pages: Optional[int] = None) -> list[Row]:
        pages = 0
        while not self.exhausted and (max_pages is None or pages < max_pages):
            self.load_more()
            pages += 1
        return self.rows
