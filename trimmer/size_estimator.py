"""Library size measurement for before/after reporting.

This walks every item page a second time, so it is only used when the
operator asks for it. The numbers never influence what gets deleted.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterator, Optional

from connector.runtime_config import PAGE_SIZE
from connector.session import ItemPage, Library, LibrarySession
from trimmer.retry_utils import RetryConfig, with_retry


LOGGER = logging.getLogger("versiontrim.size")


def iter_item_pages(
    session: LibrarySession,
    library: Library,
    page_size: int = PAGE_SIZE,
    retry_config: Optional[RetryConfig] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> Iterator[ItemPage]:
    """Yield item pages lazily, following the continuation token."""
    retry_kwargs = {"sleep": sleep} if sleep is not None else {}
    token: Optional[str] = None
    page_number = 0
    while True:
        page_number += 1
        page = with_retry(
            lambda: session.fetch_item_page(library, page_size, token),
            retry_config,
            f"Fetch page {page_number} of '{library.title}'",
            **retry_kwargs,
        )
        yield page
        token = page.next_token
        if not token:
            return


def estimate_library_bytes(
    session: LibrarySession,
    library: Library,
    page_size: int = PAGE_SIZE,
    retry_config: Optional[RetryConfig] = None,
    sleep: Optional[Callable[[float], None]] = None,
) -> int:
    total = 0
    files = 0
    for page in iter_item_pages(session, library, page_size, retry_config, sleep):
        for item in page.items:
            if item.is_file:
                total += max(0, item.size)
                files += 1
    LOGGER.info(
        "Measured %d bytes across %d files in '%s'",
        total,
        files,
        library.title,
        extra={"site": session.site_url, "library": library.title},
    )
    return total


def format_bytes(value: Optional[int]) -> str:
    if value is None:
        return "n/a"
    size = float(value)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(size) < 1024 or unit == "TB":
            return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.1f} TB"
