from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Iterable
from urllib.parse import urlencode

PAGE_SIZE_OPTIONS = (10, 25, 50, 100)
DEFAULT_PAGE_SIZE = 10


def parse_page(value: Any) -> int:
    try:
        page = int(value)
    except (TypeError, ValueError):
        return 1
    return page if page >= 1 else 1


def parse_page_size(
    value: Any,
    allowed: Iterable[int] = PAGE_SIZE_OPTIONS,
    default: int = DEFAULT_PAGE_SIZE,
) -> int:
    try:
        size = int(value)
    except (TypeError, ValueError):
        return default
    return size if size in tuple(allowed) else default


def page_items(current: int, total_pages: int, window: int = 2) -> list[int | None]:
    """Page numbers to link, with None where a run of pages is skipped.

    The first and last pages are always present, plus every page within
    ``window`` of ``current``. A single page needs no links at all.
    """
    if total_pages <= 1:
        return []
    pages = {1, total_pages}
    for i in range(current - window, current + window + 1):
        if 1 <= i <= total_pages:
            pages.add(i)
    items: list[int | None] = []
    last = 0
    for n in sorted(pages):
        if last and n - last > 1:
            items.append(None)
        items.append(n)
        last = n
    return items


def build_page_url(path: str, page: int, **params: Any) -> str:
    query = {k: str(v) for k, v in params.items() if v not in (None, "")}
    query["page"] = str(int(page))
    return f"{path}?{urlencode(query)}"


@dataclass
class Pagination:
    page: int
    page_size: int
    total: int
    total_pages: int
    offset: int

    @property
    def start(self) -> int:
        return self.offset + 1 if self.total else 0

    @property
    def end(self) -> int:
        return min(self.total, self.offset + self.page_size) if self.total else 0

    @property
    def has_prev(self) -> bool:
        return self.page > 1

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def prev_page(self) -> int | None:
        return self.page - 1 if self.has_prev else None

    @property
    def next_page(self) -> int | None:
        return self.page + 1 if self.has_next else None

    def links(self, path: str, **params: Any) -> dict[str, Any]:
        page_links: list[dict[str, Any]] = []
        for item in page_items(self.page, self.total_pages):
            if item is None:
                page_links.append({"ellipsis": True})
            else:
                page_links.append(
                    {"page": item, "url": build_page_url(path, item, **params), "current": item == self.page}
                )
        return {
            "page_links": page_links,
            "prev_url": build_page_url(path, self.page - 1, **params) if self.has_prev else None,
            "next_url": build_page_url(path, self.page + 1, **params) if self.has_next else None,
        }


def paginate(total: int, page: int, page_size: int) -> Pagination:
    total = max(0, int(total))
    page_size = max(1, int(page_size))
    total_pages = max(1, math.ceil(total / page_size))
    page = min(max(1, int(page)), total_pages)
    return Pagination(
        page=page,
        page_size=page_size,
        total=total,
        total_pages=total_pages,
        offset=(page - 1) * page_size,
    )
