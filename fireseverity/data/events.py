"""
Fire Event Source.

Fire events are perimeter polygons stamped with the year of the fire.
Perimeters are expected to be dissolved per year. Years are coerced to
integers (numeric values and numeric strings are truncated, as the
perimeter databases often store them as floats) and anything else is
rejected before the event reaches the batch driver.
"""

import json
import logging
import math
import numbers
from collections import OrderedDict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

from shapely.geometry import MultiPolygon, Polygon, mapping, shape
from shapely.errors import ShapelyError
from shapely.geometry.base import BaseGeometry

from fireseverity.errors import MalformedEventError

logger = logging.getLogger(__name__)

YEAR_PROPERTY = "year"


def coerce_year(value: Any) -> int:
    """
    Coerce a fire year to an integer.

    Args:
        value: int, float, or numeric string ("2019", "2019.0")

    Returns:
        Year truncated to an integer

    Raises:
        MalformedEventError: If the value is missing or not numeric
    """
    if value is None or isinstance(value, bool):
        raise MalformedEventError(f"Invalid fire year: {value!r}")

    if isinstance(value, numbers.Integral):
        return int(value)

    if isinstance(value, str):
        text = value.strip()
        try:
            value = float(text)
        except ValueError:
            raise MalformedEventError(f"Non-numeric fire year: {text!r}") from None

    if isinstance(value, numbers.Real):
        if not math.isfinite(value):
            raise MalformedEventError(f"Non-finite fire year: {value!r}")
        return int(value)

    raise MalformedEventError(f"Unsupported fire year type: {type(value).__name__}")


@dataclass
class FireEvent:
    """
    A fire perimeter with its year.

    Attributes:
        geometry: Polygon or MultiPolygon perimeter
        year: Fire year
        properties: Remaining feature attributes
    """

    geometry: BaseGeometry
    year: int
    properties: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        self.year = coerce_year(self.year)
        if not isinstance(self.geometry, (Polygon, MultiPolygon)):
            raise MalformedEventError(
                f"Fire event geometry must be a Polygon or MultiPolygon, "
                f"got {self.geometry.geom_type}"
            )
        if self.geometry.is_empty:
            raise MalformedEventError("Fire event geometry is empty")
        if not self.geometry.is_valid:
            logger.warning(f"Repairing invalid perimeter geometry for fire year {self.year}")
            self.geometry = self.geometry.buffer(0)

    @property
    def id(self) -> int:
        """Event identifier; equal to the fire year."""
        return self.year

    def to_feature(self) -> Dict[str, Any]:
        """GeoJSON-like feature mapping."""
        return {
            "type": "Feature",
            "geometry": mapping(self.geometry),
            "properties": {**self.properties, YEAR_PROPERTY: self.year},
        }

    @classmethod
    def from_feature(
        cls,
        feature: Mapping[str, Any],
        year_property: str = YEAR_PROPERTY,
    ) -> "FireEvent":
        """
        Create an event from a GeoJSON-like feature.

        The year property is matched case-insensitively ("year" or "Year").

        Raises:
            MalformedEventError: If the geometry or year is unusable
        """
        if not isinstance(feature, Mapping):
            raise MalformedEventError(
                f"Fire event must be a feature mapping, got {type(feature).__name__}"
            )
        geometry = feature.get("geometry")
        if not geometry:
            raise MalformedEventError("Fire event feature has no geometry")
        try:
            geom = shape(geometry)
        except (ShapelyError, ValueError, TypeError, AttributeError, KeyError) as e:
            raise MalformedEventError(f"Unreadable fire event geometry: {e}") from e

        properties = feature.get("properties") or {}
        if not isinstance(properties, Mapping):
            raise MalformedEventError(
                f"Fire event properties must be a mapping, got {type(properties).__name__}"
            )
        properties = dict(properties)
        key = _find_property(properties, year_property)
        if key is None:
            raise MalformedEventError(f"Fire event feature has no '{year_property}' property")
        year = properties.pop(key)

        return cls(geometry=geom, year=year, properties=properties)


def _find_property(properties: Mapping[str, Any], name: str):
    if name in properties:
        return name
    for key in properties:
        if key.lower() == name.lower():
            return key
    return None


def load_fire_events(
    path: Union[str, Path],
    year_property: str = YEAR_PROPERTY,
) -> List[FireEvent]:
    """
    Load fire events from a GeoJSON FeatureCollection.

    Args:
        path: GeoJSON file
        year_property: Name of the year attribute

    Returns:
        Events in file order

    Raises:
        MalformedEventError: If any feature is malformed (the message names
            the feature index)
    """
    path = Path(path)
    with open(path) as f:
        content = json.load(f)

    features = content.get("features") if isinstance(content, dict) else None
    if features is None:
        raise MalformedEventError(f"{path}: not a GeoJSON FeatureCollection")

    events = []
    for index, feature in enumerate(features):
        try:
            events.append(FireEvent.from_feature(feature, year_property=year_property))
        except MalformedEventError as e:
            raise MalformedEventError(f"{path}: feature {index}: {e}") from e

    logger.info(f"Loaded {len(events)} fire events from {path}")
    return events


def group_events_by_year(events: Iterable[FireEvent]) -> "OrderedDict[int, List[FireEvent]]":
    """
    Group events by year in ascending year order.

    Event order within a year is preserved.
    """
    grouped: Dict[int, List[FireEvent]] = {}
    for event in events:
        grouped.setdefault(event.year, []).append(event)
    return OrderedDict(sorted(grouped.items()))


def year_counts(events: Iterable[FireEvent]) -> List[Tuple[int, int]]:
    """(year, count) pairs in ascending year order."""
    return [(year, len(items)) for year, items in group_events_by_year(events).items()]
