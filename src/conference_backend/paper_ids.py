"""
Paper id allocation.

A paper id is ``YYMM`` from the allocation date followed by a global serial,
zero-padded to at least three digits (``2501011``). The serial never resets
per period: it continues from the highest serial in use across all ids.

Scanning for the maximum is not atomic with the insert that uses it, so the
allocator only proposes candidates. The store's unique constraint on
``paper_id`` decides, and intake retries on collision.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from fastapi.concurrency import run_in_threadpool

from .database import ConferenceStore
from .errors import DependencyUnavailable
from .utils import Clock, utc_now

logger = logging.getLogger(__name__)

SERIAL_WIDTH = 3
PERIOD_LENGTH = 4


def format_paper_id(now: datetime, serial: int) -> str:
    """
    Example:
        >>> format_paper_id(datetime(2025, 1, 15), 11)
        "2501011"
    """
    return f"{now:%y%m}{str(serial).zfill(SERIAL_WIDTH)}"


def parse_serial(paper_id: str) -> int:
    """Numeric serial of ``paper_id`` (everything after ``YYMM``)."""
    return int(paper_id[PERIOD_LENGTH:])


class PaperIdAllocator:
    def __init__(self, store: ConferenceStore, clock: Clock = utc_now):
        self.store = store
        self.clock = clock

    async def next_serial(self) -> int:
        """
        One past the highest serial in use.

        If the max scan is unavailable, falls back to the number of assigned
        ids plus one. That origin can undershoot when ids have gaps; the retry
        loop in intake absorbs the resulting collisions.
        """
        try:
            return await run_in_threadpool(self.store.find_max_paper_serial) + 1
        except DependencyUnavailable as exc:
            logger.warning(f"Max paper serial scan failed ({exc.message}); falling back to id count")
            return await run_in_threadpool(self.store.count_submissions_with_paper_id) + 1

    async def allocate(self, now: Optional[datetime] = None) -> str:
        """Propose the next candidate paper id for ``now``'s year and month."""
        serial = await self.next_serial()
        return format_paper_id(now or self.clock(), serial)
