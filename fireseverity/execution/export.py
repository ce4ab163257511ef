"""
Export and Point-Sampling Collaborators.

The batch driver forwards finished severity images, and optionally point
samples drawn from them, to an Exporter. Storage formats live behind this
interface; the in-memory exporter records requests for embedding and tests.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from rasterio.features import geometry_mask
from shapely.geometry import Point, mapping
from shapely.geometry.base import BaseGeometry

from fireseverity.analysis.severity import SeverityImage

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_SCALE = 30.0


@dataclass
class ExportRequest:
    """An image export task."""

    image: SeverityImage
    description: str
    scale: float = DEFAULT_EXPORT_SCALE
    region: Optional[BaseGeometry] = None

    def __post_init__(self):
        if not self.description:
            raise ValueError("Export description must not be empty")
        if self.scale <= 0:
            raise ValueError(f"scale must be positive, got {self.scale}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "description": self.description,
            "scale": self.scale,
            "image": self.image.to_dict(),
            "region": mapping(self.region) if self.region is not None else None,
        }


@dataclass
class SampleRequest:
    """A point-sampling task over a region."""

    region: BaseGeometry
    scale: float = DEFAULT_EXPORT_SCALE
    tile_scale: int = 8
    geometries: bool = True

    def __post_init__(self):
        if self.scale <= 0:
            raise ValueError(f"scale must be positive, got {self.scale}")
        if self.tile_scale < 1:
            raise ValueError(f"tile_scale must be at least 1, got {self.tile_scale}")


@dataclass
class PointSample:
    """Channel values at one pixel centre."""

    geometry: Optional[Point]
    values: Dict[str, float]
    id: int

    def to_feature(self) -> Dict[str, Any]:
        """GeoJSON-like feature mapping."""
        return {
            "type": "Feature",
            "geometry": mapping(self.geometry) if self.geometry is not None else None,
            "properties": {**self.values, "id": self.id},
        }


class Exporter(ABC):
    """Destination for severity images and point samples."""

    @abstractmethod
    def export_image(self, request: ExportRequest) -> None:
        """Submit one image export."""

    @abstractmethod
    def export_points(self, samples: Sequence[PointSample], description: str) -> None:
        """Submit one point-sample table."""


class InMemoryExporter(Exporter):
    """
    Exporter that keeps every request.

    Example:
        exporter = InMemoryExporter()
        driver = SeverityBatchDriver(archive, policy, exporter)
        driver.run(events, 1985, 2021)
        descriptions = exporter.descriptions
    """

    def __init__(self):
        self.images: List[ExportRequest] = []
        self.points: List[Dict[str, Any]] = []

    def export_image(self, request: ExportRequest) -> None:
        self.images.append(request)
        logger.info(f"Export queued: {request.description} at {request.scale} m")

    def export_points(self, samples: Sequence[PointSample], description: str) -> None:
        self.points.append({"description": description, "samples": list(samples)})
        logger.info(f"Point export queued: {description} ({len(samples)} samples)")

    @property
    def descriptions(self) -> List[str]:
        return [request.description for request in self.images]


class PointSampler:
    """
    Samples a severity image at pixel centres inside a region.

    Pixels are visited on a stride of round(scale / pixel size) so that the
    sampling density matches the requested scale. A pixel is sampled only
    when every channel holds data.
    """

    def sample(self, image: SeverityImage, request: SampleRequest) -> List[PointSample]:
        """
        Sample an image.

        Args:
            image: Severity image
            request: Region, scale and geometry options

        Returns:
            Samples in row-major pixel order
        """
        grid = image.grid
        stride_x = max(1, int(round(request.scale / grid.pixel_size[0])))
        stride_y = max(1, int(round(request.scale / grid.pixel_size[1])))

        inside = geometry_mask(
            [request.region],
            out_shape=grid.shape,
            transform=grid.transform,
            invert=True,
        )
        candidates = np.zeros(grid.shape, dtype=bool)
        candidates[::stride_y, ::stride_x] = True
        selected = candidates & inside & np.all(np.isfinite(image.data), axis=0)

        xs, ys = grid.pixel_centers()
        rows, cols = np.nonzero(selected)
        samples = []
        for row, col in zip(rows, cols):
            values = {
                name: float(image.data[index, row, col])
                for index, name in enumerate(image.band_names)
            }
            geometry = Point(xs[row, col], ys[row, col]) if request.geometries else None
            samples.append(PointSample(geometry=geometry, values=values, id=image.id))

        logger.debug(f"Sampled {len(samples)} points from image {image.id}")
        return samples
