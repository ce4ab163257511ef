"""
Temporal Compositing of Feature Image Series.

Reduces a time- and space-filtered stack of feature images to a single
image per pixel. Three interchangeable strategies:

- MEAN: per-pixel, per-channel mean of the valid observations
- QUALITY_MOSAIC: the full observation with the highest ranking channel
  (nbr_sort by default, i.e. the lowest NBR: the most burn-like observation)
- NEAREST_TO_MEAN: the full observation with the smallest sum of squared
  deviations from the per-channel mean of the stack. This is the
  "medoid" of the compositing literature; the reference point is the
  temporal mean (or median), not a pairwise medoid.

Masked pixels (NaN) are absent observations in every strategy. All
strategies are per-pixel, so any block decomposition of the raster gives
identical results.
"""

import logging
import warnings
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import numpy as np

from fireseverity.analysis.features import FEATURE_BANDS, BandAccessMixin
from fireseverity.data.scenes import RasterGrid
from fireseverity.data.series import ImageSeries
from fireseverity.errors import GridMismatchError, SchemaMismatchError

logger = logging.getLogger(__name__)


class CompositingMethod(Enum):
    """Per-pixel reduction strategies."""

    MEAN = "mean"
    QUALITY_MOSAIC = "quality_mosaic"
    NEAREST_TO_MEAN = "nearest_to_mean"

    @classmethod
    def _missing_(cls, value):
        # Historical labels
        aliases = {
            "medoid": cls.NEAREST_TO_MEAN,
            "qualitymosaic": cls.QUALITY_MOSAIC,
        }
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_")
            for member in cls:
                if member.value == key:
                    return member
            return aliases.get(key.replace("_", ""))
        return None


@dataclass
class CompositorConfig:
    """Configuration for temporal compositing."""

    method: CompositingMethod = CompositingMethod.MEAN
    ranking_band: str = "nbr_sort"  # Quality mosaic key (maximized)
    reference: str = "mean"  # Nearest-to-mean reference: "mean" or "median"
    distance_bands: Optional[Tuple[str, ...]] = None  # None = all channels

    def __post_init__(self):
        """Validate configuration parameters."""
        self.method = CompositingMethod(self.method)
        if self.ranking_band not in FEATURE_BANDS:
            raise ValueError(f"Invalid ranking_band: {self.ranking_band}")
        if self.reference not in ("mean", "median"):
            raise ValueError(f"reference must be 'mean' or 'median', got {self.reference}")
        if self.distance_bands is not None:
            self.distance_bands = tuple(self.distance_bands)
            unknown = [b for b in self.distance_bands if b not in FEATURE_BANDS]
            if unknown or not self.distance_bands:
                raise ValueError(f"Invalid distance_bands: {list(self.distance_bands)}")


@dataclass
class CompositeImage(BandAccessMixin):
    """
    A per-pixel reduction of an image series.

    Attributes:
        data: (14, H, W) float array; NaN marks no-data
        grid: Pixel grid
        method: Strategy that produced the composite
        image_count: Number of images in the reduced stack
        properties: Series summary and strategy parameters
    """

    data: np.ndarray
    grid: RasterGrid
    method: CompositingMethod
    image_count: int
    properties: Dict[str, Any] = field(default_factory=dict)
    band_names: Tuple[str, ...] = FEATURE_BANDS

    @property
    def empty(self) -> bool:
        """True when no image contributed to the composite."""
        return self.image_count == 0

    def to_dict(self) -> Dict[str, Any]:
        """Summary without pixel data."""
        return {
            "method": self.method.value,
            "image_count": self.image_count,
            "empty": self.empty,
            "bands": list(self.band_names),
            "valid_pixels": int(np.sum(self.valid_mask())),
            "properties": dict(self.properties),
        }


def _nan_mean(stack: np.ndarray) -> np.ndarray:
    """Mean over axis 0 ignoring NaN; NaN where no value is present."""
    finite = np.isfinite(stack)
    counts = finite.sum(axis=0)
    sums = np.where(finite, stack, 0.0).sum(axis=0)
    with np.errstate(invalid="ignore", divide="ignore"):
        return np.where(counts > 0, sums / np.maximum(counts, 1), np.nan)


def _nan_median(stack: np.ndarray) -> np.ndarray:
    """Median over axis 0 ignoring NaN; NaN where no value is present."""
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", category=RuntimeWarning)
        return np.nanmedian(stack, axis=0)


def _take_per_pixel(stack: np.ndarray, index: np.ndarray, present: np.ndarray) -> np.ndarray:
    """
    Select, per pixel, the full band vector of one image.

    Args:
        stack: (N, C, H, W) observations
        index: (H, W) image index per pixel
        present: (H, W) whether any candidate existed

    Returns:
        (C, H, W) selection, NaN where no candidate existed
    """
    selected = np.take_along_axis(stack, index[np.newaxis, np.newaxis, :, :], axis=0)[0]
    return np.where(present[np.newaxis, :, :], selected, np.nan)


def mean_composite(stack: np.ndarray) -> np.ndarray:
    """
    Per-channel mean of all valid observations.

    Args:
        stack: (N, C, H, W) observations with NaN for masked pixels

    Returns:
        (C, H, W) composite
    """
    return _nan_mean(stack)


def quality_mosaic(stack: np.ndarray, rank_index: int) -> np.ndarray:
    """
    Per pixel, the observation with the largest ranking value.

    Ties go to the earliest image in stack order.

    Args:
        stack: (N, C, H, W) observations
        rank_index: Channel used as the ranking key

    Returns:
        (C, H, W) composite
    """
    rank = stack[:, rank_index]
    candidate = np.isfinite(rank)
    index = np.argmax(np.where(candidate, rank, -np.inf), axis=0)
    return _take_per_pixel(stack, index, candidate.any(axis=0))


def nearest_to_reference_composite(
    stack: np.ndarray,
    reference: str = "mean",
    channel_indices: Optional[Sequence[int]] = None,
) -> np.ndarray:
    """
    Per pixel, the observation closest to the stack's central value.

    Distance is the sum over channels of squared deviation from the
    per-channel reference (mean or median) of the stack. Ties go to the
    earliest image in stack order.

    Args:
        stack: (N, C, H, W) observations
        reference: "mean" or "median"
        channel_indices: Channels entering the distance (default: all)

    Returns:
        (C, H, W) composite
    """
    center = _nan_median(stack) if reference == "median" else _nan_mean(stack)
    if channel_indices is not None:
        channel_indices = list(channel_indices)
        deviation = (stack[:, channel_indices] - center[channel_indices]) ** 2
    else:
        deviation = (stack - center) ** 2

    candidate = np.isfinite(deviation).any(axis=1)
    distance = np.where(candidate, np.nansum(deviation, axis=1), np.inf)
    index = np.argmin(distance, axis=0)
    return _take_per_pixel(stack, index, candidate.any(axis=0))


class TemporalCompositor:
    """
    Reduces an image series to one composite image.

    An empty series produces an all-NaN composite flagged empty, not an
    error, provided an output grid is given. An empty series with no grid
    has no shape to fill and raises ValueError. Evaluation can be
    delegated to a block-wise executor.

    Example:
        compositor = TemporalCompositor(
            CompositorConfig(method=CompositingMethod.NEAREST_TO_MEAN)
        )
        composite = compositor.composite(series, grid=archive_grid)
    """

    def __init__(self, config: Optional[CompositorConfig] = None, executor=None):
        """
        Initialize compositor.

        Args:
            config: Compositing configuration. Uses the mean strategy if None.
            executor: Optional TileExecutor for block-wise evaluation
        """
        self.config = config or CompositorConfig()
        self.executor = executor

    def reducer(self) -> Callable[[np.ndarray], np.ndarray]:
        """Return the configured (N, C, H, W) -> (C, H, W) reduction."""
        method = self.config.method
        if method == CompositingMethod.MEAN:
            return mean_composite

        if method == CompositingMethod.QUALITY_MOSAIC:
            rank_index = FEATURE_BANDS.index(self.config.ranking_band)
            return lambda stack: quality_mosaic(stack, rank_index)

        channel_indices = None
        if self.config.distance_bands is not None:
            channel_indices = [FEATURE_BANDS.index(b) for b in self.config.distance_bands]
        reference = self.config.reference
        return lambda stack: nearest_to_reference_composite(stack, reference, channel_indices)

    def composite(
        self,
        series: ImageSeries,
        grid: Optional[RasterGrid] = None,
    ) -> CompositeImage:
        """
        Composite a filtered series.

        Args:
            series: Images to reduce (already filtered to the window)
            grid: Output grid; required only when the series may be empty

        Returns:
            CompositeImage with the 14-channel schema

        Raises:
            GridMismatchError: If images do not share one grid
            ValueError: If the series is empty and no grid was given
        """
        method = self.config.method
        grid = grid or series.grid
        if grid is None:
            raise ValueError("An output grid is required to composite an empty series")

        properties = {
            **series.summary(),
            "method": method.value,
            "empty": series.is_empty(),
        }
        if method == CompositingMethod.QUALITY_MOSAIC:
            properties["ranking_band"] = self.config.ranking_band
        elif method == CompositingMethod.NEAREST_TO_MEAN:
            properties["reference"] = self.config.reference

        if series.is_empty():
            logger.warning(f"No images in compositing window; {method.value} composite is empty")
            data = np.full((len(FEATURE_BANDS), *grid.shape), np.nan)
            return CompositeImage(
                data=data, grid=grid, method=method, image_count=0, properties=properties
            )

        stack = series.stack()
        if stack.shape[1] != len(FEATURE_BANDS):
            raise SchemaMismatchError(f"Expected {len(FEATURE_BANDS)} channels, got {stack.shape[1]}")
        if not series.grid.is_compatible(grid):
            raise GridMismatchError("Series grid does not match the requested output grid")

        reducer = self.reducer()
        if self.executor is not None:
            data = self.executor.map_blocks(reducer, stack)
        else:
            data = reducer(stack)

        logger.info(
            f"Composited {len(series)} images with {method.value}: "
            f"{int(np.sum(np.any(np.isfinite(data), axis=0)))} valid pixels"
        )

        return CompositeImage(
            data=data,
            grid=grid,
            method=method,
            image_count=len(series),
            properties=properties,
        )


def composite_series(
    series: ImageSeries,
    method: str = "mean",
    grid: Optional[RasterGrid] = None,
) -> CompositeImage:
    """
    Convenience function to composite a series.

    Args:
        series: Images to reduce
        method: Strategy name ("mean", "quality_mosaic", "nearest_to_mean" or "medoid")
        grid: Output grid for empty series

    Returns:
        Composite image

    Raises:
        ValueError: If the series is empty and no grid was given
    """
    config = CompositorConfig(method=CompositingMethod(method))
    return TemporalCompositor(config).composite(series, grid=grid)
