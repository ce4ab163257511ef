"""
Data Model Package

Scene model, band harmonization and fire-event sources. The series and
archive modules build on the feature engine and are imported directly:

    from fireseverity.data.series import ImageSeries
    from fireseverity.data.archive import InMemorySceneArchive, build_image_series
"""

from fireseverity.data.events import (
    FireEvent,
    coerce_year,
    group_events_by_year,
    load_fire_events,
)
from fireseverity.data.harmonization import BandHarmonizer, HarmonizedScene, harmonize_scene
from fireseverity.data.scenes import RasterGrid, RawScene, Sensor, SensorFamily

__all__ = [
    "BandHarmonizer",
    "FireEvent",
    "HarmonizedScene",
    "RasterGrid",
    "RawScene",
    "Sensor",
    "SensorFamily",
    "coerce_year",
    "group_events_by_year",
    "harmonize_scene",
    "load_fire_events",
]
