"""
Data Acquisition Contract

The engine never fetches data itself. A DataSource turns a query
(location, radius, category, time window) into a DataSnapshot; the
concrete satellite / survey integrations live outside this package.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from geoconsensus.models import DataSnapshot, TimeWindow


class DataSource(ABC):
    """Abstract base for data acquisition backends."""

    name: str = "unknown"

    @abstractmethod
    async def gather(
        self,
        latitude: float,
        longitude: float,
        radius: Optional[float],
        category: str,
        time_window: Optional[TimeWindow],
    ) -> DataSnapshot:
        ...


class StaticDataSource(DataSource):
    """Returns the same channels for every query. Used for replays and tests."""

    def __init__(self, channels: Mapping[str, Any], name: str = "static"):
        self.channels = dict(channels)
        self.name = name

    async def gather(self, latitude, longitude, radius, category, time_window) -> DataSnapshot:
        return DataSnapshot(channels=self.channels, source=self.name)
