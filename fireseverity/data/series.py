"""
Image Series and Temporal Filtering.

Provides the unordered collection of feature images that compositing
reduces, with commutative filters over space, calendar dates and a
recurring day-of-year window.

Key Capabilities:
- Date ranges (start inclusive, end exclusive) in UTC
- Day-of-year windows independent of calendar year, with wrap-around
- Footprint filtering against any shapely geometry
- Deterministic stacking into (images, bands, H, W) arrays
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union

import numpy as np
from shapely.geometry.base import BaseGeometry

from fireseverity.analysis.features import FEATURE_BANDS, FeatureImage
from fireseverity.data.scenes import RasterGrid
from fireseverity.errors import GridMismatchError

logger = logging.getLogger(__name__)


def to_utc(value: Union[date, datetime]) -> datetime:
    """Convert a date or datetime to an aware UTC datetime."""
    if not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class DateRange:
    """
    A calendar date range.

    Attributes:
        start: Start time (inclusive)
        end: End time (exclusive)
    """

    start: datetime
    end: datetime

    def __post_init__(self):
        """Validate and normalize to UTC."""
        self.start = to_utc(self.start)
        self.end = to_utc(self.end)

        if self.start >= self.end:
            raise ValueError("Start must be before end")

    @property
    def duration(self) -> timedelta:
        """Duration of the range."""
        return self.end - self.start

    def contains(self, dt: datetime) -> bool:
        """Check if a datetime is within this range."""
        return self.start <= to_utc(dt) < self.end

    def overlaps(self, other: "DateRange") -> bool:
        """Check if this range overlaps another."""
        return self.start < other.end and other.start < self.end

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }

    @classmethod
    def for_years(cls, first_year: int, end_year: int) -> "DateRange":
        """Range from Jan 1 of first_year up to (excluding) Jan 1 of end_year."""
        return cls(start=datetime(first_year, 1, 1), end=datetime(end_year, 1, 1))


@dataclass
class DayOfYearRange:
    """
    A recurring seasonal window, inclusive on both ends.

    When start > end the window wraps the new year (e.g. 335-59).
    """

    start: int
    end: int

    def __post_init__(self):
        for name in ("start", "end"):
            value = getattr(self, name)
            if not 1 <= value <= 366:
                raise ValueError(f"Day of year {name} must be in [1, 366], got {value}")

    @property
    def wraps(self) -> bool:
        return self.start > self.end

    def contains(self, day_of_year: int) -> bool:
        """Check if a day of year falls in the window."""
        if self.wraps:
            return day_of_year >= self.start or day_of_year <= self.end
        return self.start <= day_of_year <= self.end

    def to_dict(self) -> Dict[str, int]:
        return {"start": self.start, "end": self.end}


def _stack_order(image: FeatureImage) -> Tuple[datetime, str]:
    return (image.time_start, image.product_id)


class ImageSeries:
    """
    An unordered collection of feature images covering a common area.

    Filters return new series and commute. Iteration and stacking follow a
    deterministic order (acquisition time, then product id) so reductions
    that break ties by stack position are reproducible.

    Example:
        series = ImageSeries(images)
        summer = (
            series.filter_bounds(fire.geometry)
            .filter_date(datetime(2018, 1, 1), datetime(2019, 1, 1))
            .filter_day_of_year(153, 274)
        )
        stack = summer.stack()
    """

    def __init__(self, images: Iterable[FeatureImage] = ()):
        self._images: Tuple[FeatureImage, ...] = tuple(sorted(images, key=_stack_order))

    def __len__(self) -> int:
        return len(self._images)

    def __iter__(self) -> Iterator[FeatureImage]:
        return iter(self._images)

    def __repr__(self) -> str:
        return f"ImageSeries(images={len(self._images)})"

    @property
    def images(self) -> Tuple[FeatureImage, ...]:
        return self._images

    def is_empty(self) -> bool:
        return not self._images

    def first(self) -> Optional[FeatureImage]:
        """Earliest image, or None when empty."""
        return self._images[0] if self._images else None

    def filter_bounds(self, geometry: BaseGeometry) -> "ImageSeries":
        """Keep images whose footprint intersects a geometry."""
        return ImageSeries(i for i in self._images if i.grid.footprint.intersects(geometry))

    def filter_date(
        self,
        start: Union[date, datetime],
        end: Union[date, datetime],
    ) -> "ImageSeries":
        """Keep images acquired in [start, end)."""
        date_range = DateRange(start=start, end=end)
        return ImageSeries(i for i in self._images if date_range.contains(i.time_start))

    def filter_day_of_year(self, start: int, end: int) -> "ImageSeries":
        """Keep images whose acquisition day of year is in the window."""
        window = DayOfYearRange(start=start, end=end)
        return ImageSeries(i for i in self._images if window.contains(i.day_of_year))

    def merge(self, other: "ImageSeries") -> "ImageSeries":
        """Combine two series."""
        return ImageSeries(self._images + other.images)

    @property
    def grid(self) -> Optional[RasterGrid]:
        """Shared grid of the series, or None when empty."""
        return self._images[0].grid if self._images else None

    def stack(self) -> np.ndarray:
        """
        Stack image data in series order.

        Returns:
            (N, 14, H, W) array

        Raises:
            GridMismatchError: If images do not share one grid
            ValueError: If the series is empty
        """
        if not self._images:
            raise ValueError("Cannot stack an empty series")
        reference = self._images[0].grid
        for image in self._images[1:]:
            if not image.grid.is_compatible(reference):
                raise GridMismatchError(
                    f"Image {image.product_id or image.time_start.isoformat()} grid "
                    f"{image.grid.shape} does not match series grid {reference.shape}"
                )
        return np.stack([image.data for image in self._images])

    def time_span(self) -> Optional[Tuple[datetime, datetime]]:
        """Earliest and latest acquisition times."""
        if not self._images:
            return None
        return (self._images[0].time_start, self._images[-1].time_start)

    def summary(self) -> Dict[str, Any]:
        """Counts and time span, for logging and metadata."""
        span = self.time_span()
        sensors: Dict[str, int] = {}
        for image in self._images:
            key = str(image.properties.get("SENSOR_ID", "unknown"))
            sensors[key] = sensors.get(key, 0) + 1
        return {
            "image_count": len(self._images),
            "first": span[0].isoformat() if span else None,
            "last": span[1].isoformat() if span else None,
            "sensors": sensors,
            "bands": list(FEATURE_BANDS),
        }


def product_ids(series: ImageSeries) -> List[str]:
    """Product ids of a series in stack order."""
    return [image.product_id for image in series]
