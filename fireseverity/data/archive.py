"""
Scene Archive Interface.

The archive is an external, read-only collaborator that supplies raw
Collection 2 Level 2 scenes for the five Landsat generations. The engine
only depends on the search contract defined here; an in-memory
implementation backs tests and embedded use.
"""

import logging
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Iterable, List, Optional, Sequence, Union

from shapely.geometry.base import BaseGeometry

from fireseverity.analysis.features import SpectralFeatureEngine
from fireseverity.analysis.masking import QualityMaskFilter
from fireseverity.data.scenes import RawScene, Sensor
from fireseverity.data.series import DateRange, ImageSeries

logger = logging.getLogger(__name__)

# Merge order: newest generation first
ARCHIVE_SENSORS: Sequence[Sensor] = (
    Sensor.LANDSAT_9,
    Sensor.LANDSAT_8,
    Sensor.LANDSAT_7,
    Sensor.LANDSAT_5,
    Sensor.LANDSAT_4,
)


class SceneArchive(ABC):
    """Read-only source of raw scenes."""

    @abstractmethod
    def search(
        self,
        geometry: BaseGeometry,
        start: Union[date, datetime],
        end: Union[date, datetime],
        sensors: Optional[Sequence[Sensor]] = None,
    ) -> Iterable[RawScene]:
        """
        Find scenes intersecting a geometry, acquired in [start, end).

        Args:
            geometry: Search area
            start: Start time (inclusive)
            end: End time (exclusive)
            sensors: Restrict to these sensors (default: all)

        Returns:
            Matching scenes in any order
        """


class InMemorySceneArchive(SceneArchive):
    """
    Archive backed by a list of scenes.

    Example:
        archive = InMemorySceneArchive(scenes)
        series = build_image_series(archive, study_area, start, end)
    """

    def __init__(self, scenes: Iterable[RawScene] = ()):
        self._scenes: List[RawScene] = list(scenes)

    def __len__(self) -> int:
        return len(self._scenes)

    def add(self, scene: RawScene) -> None:
        self._scenes.append(scene)

    def search(self, geometry, start, end, sensors=None):
        date_range = DateRange(start=start, end=end)
        wanted = set(sensors) if sensors else None
        for scene in self._scenes:
            if wanted is not None and scene.sensor not in wanted:
                continue
            if not date_range.contains(scene.time_start):
                continue
            if not scene.footprint.intersects(geometry):
                continue
            yield scene


def build_image_series(
    archive: SceneArchive,
    geometry: BaseGeometry,
    start: Union[date, datetime],
    end: Union[date, datetime],
    sensors: Sequence[Sensor] = ARCHIVE_SENSORS,
    engine: Optional[SpectralFeatureEngine] = None,
    mask_filter: Optional[QualityMaskFilter] = None,
) -> ImageSeries:
    """
    Harmonize, featurize and mask archive scenes into one merged series.

    Args:
        archive: Scene source
        geometry: Search area
        start: Start time (inclusive)
        end: End time (exclusive)
        sensors: Sensors to merge
        engine: Feature engine (default engine if None)
        mask_filter: Quality mask (default flags if None)

    Returns:
        ImageSeries of masked feature images from all sensors

    Raises:
        MissingBandError: If a scene lacks a required band
    """
    engine = engine or SpectralFeatureEngine()
    mask_filter = mask_filter or QualityMaskFilter()

    series = ImageSeries()
    for sensor in sensors:
        images = [
            mask_filter.apply(engine.compute_scene(scene))
            for scene in archive.search(geometry, start, end, sensors=[sensor])
        ]
        logger.debug(f"{sensor.value}: {len(images)} scenes")
        series = series.merge(ImageSeries(images))

    logger.info(f"Built image series with {len(series)} scenes")
    return series
