"""
Feed adapters: anything that can produce the current catalog as snapshots.
"""

from typing import Iterable, List, Optional, Protocol

from .models import EntitySnapshot


class FeedAdapter(Protocol):
    """
    A product feed source for the delta sync.

    Adapters that look products up one by one (KicksDB) need the tracked
    SKU list and set requires_skus. Adapters that download a whole
    assortment ignore it.
    """

    source_name: str
    requires_skus: bool

    async def fetch_snapshots(
        self, skus: Optional[Iterable[str]] = None
    ) -> List[EntitySnapshot]: ...
