"""Client-side instance window over a recurring event.

The server re-derives the whole prefix on every call, so "load more" replays
the request with a larger ``limit`` from the same ``start_date`` and replaces
the cached list wholesale.
"""
import logging
from datetime import datetime, time, timedelta, timezone
from itertools import groupby
from typing import Optional

from eventpass.client.api import EventPassClient
from eventpass.schemas.recurrence import EventInstance, InstancePage, parse_instance_id

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20


class RecurrenceResolver:
    def __init__(
        self,
        api: EventPassClient,
        event_id: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        start_date: Optional[datetime] = None,
    ):
        self.api = api
        self.event_id = event_id
        self.page_size = page_size
        self.start_date = start_date
        self.limit = 0
        self.instances: list[EventInstance] = []
        self.has_more = False

    async def get_instances(self, limit: Optional[int] = None) -> InstancePage:
        """Fetch the first ``limit`` instances from ``start_date`` and replace the cache."""
        self.limit = limit or self.limit or self.page_size
        page = await self.api.get_instances(self.event_id, limit=self.limit, start_date=self.start_date)
        self.instances = list(page.instances)
        self.has_more = page.has_more
        logger.debug("Loaded %d instances for event %s (hasMore=%s)", len(self.instances), self.event_id, self.has_more)
        return page

    async def load_more(self) -> InstancePage:
        return await self.get_instances(self.limit + self.page_size)

    async def refresh(self) -> InstancePage:
        return await self.get_instances(self.limit or self.page_size)

    def find(self, instance_id: str) -> Optional[EventInstance]:
        return next((i for i in self.instances if i.instance_id == instance_id), None)

    async def lookup(self, instance_id: str) -> Optional[EventInstance]:
        """Find an instance, asking the server around its date when it is outside the loaded window."""
        cached = self.find(instance_id)
        if cached is not None:
            return cached
        parsed = parse_instance_id(instance_id)
        if parsed is None or parsed[0] != self.event_id:
            return None
        # Local dates can sit up to a day either side of UTC.
        around = datetime.combine(parsed[1] - timedelta(days=1), time.min, tzinfo=timezone.utc)
        page = await self.api.get_instances(self.event_id, limit=7, start_date=around)
        return next((i for i in page.instances if i.instance_id == instance_id), None)

    def adjust_attendee_count(self, instance_id: str, delta: int) -> None:
        """Optimistic local update; the next refresh overwrites it."""
        self.instances = [
            i.model_copy(update={"attendee_count": max(0, i.attendee_count + delta)})
            if i.instance_id == instance_id else i
            for i in self.instances
        ]


def group_by_month(instances: list[EventInstance]) -> list[tuple[str, list[EventInstance]]]:
    """Group consecutive instances under "Month YYYY" headings, preserving order."""
    return [
        (label, list(group))
        for label, group in groupby(instances, key=lambda i: i.date.strftime("%B %Y"))
    ]
