"""
Burn Severity from Pre/Post-Fire Composites

Derives differenced burn-ratio severity indices from a pair of composites
and packages them, with pre/post snapshots of the key spectral channels,
into one clipped raster per fire event.

    dNBR  = (NBR_pre - NBR_post) * 1000
    RBR   = dNBR / (NBR_pre + 1.001)
    RdNBR = dNBR / sqrt(|NBR_pre / 1000|)   with NBR_pre on the x1000 scale

Algorithm ID: wildfire.baseline.fire_severity
Version: 1.0.0
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import numpy as np
from rasterio.features import geometry_mask

from fireseverity.analysis.compositing import (
    CompositeImage,
    CompositorConfig,
    TemporalCompositor,
)
from fireseverity.analysis.features import BandAccessMixin
from fireseverity.analysis.windows import SEVERITY_METRICS, WindowPolicy
from fireseverity.data.events import FireEvent
from fireseverity.data.scenes import RasterGrid
from fireseverity.data.series import ImageSeries
from fireseverity.errors import GridMismatchError

logger = logging.getLogger(__name__)

SNAPSHOT_BANDS: Tuple[str, ...] = ("nbr", "ndvi", "nir", "swir1", "swir2", "time", "doy")


def severity_band_names(metrics: Tuple[str, ...] = ("rbr",)) -> Tuple[str, ...]:
    """Output channel order for a set of retained metrics."""
    return (
        tuple(metrics)
        + tuple(f"{name}_pre" for name in SNAPSHOT_BANDS)
        + tuple(f"{name}_post" for name in SNAPSHOT_BANDS)
        + ("fire_year",)
    )


@dataclass
class SeverityConfig:
    """Configuration for severity derivation."""

    metrics: Tuple[str, ...] = ("rbr",)  # Retained metrics, in output order
    epsilon: float = 1e-9  # Denominators below this magnitude yield NaN
    rdnbr_pre_scale: float = 1000.0  # Scale of NBR_pre inside the RdNBR root
    clip_to_event: bool = True  # NaN outside the event perimeter
    output_dtype: str = "float32"

    def __post_init__(self):
        """Validate configuration parameters."""
        self.metrics = tuple(self.metrics)
        if not self.metrics:
            raise ValueError("At least one severity metric must be retained")
        unknown = [m for m in self.metrics if m not in SEVERITY_METRICS]
        if unknown:
            raise ValueError(f"Unknown severity metrics: {unknown}")
        if len(set(self.metrics)) != len(self.metrics):
            raise ValueError(f"Duplicate severity metrics: {list(self.metrics)}")
        if self.epsilon < 0:
            raise ValueError(f"epsilon must be non-negative, got {self.epsilon}")
        if self.rdnbr_pre_scale <= 0:
            raise ValueError(f"rdnbr_pre_scale must be positive, got {self.rdnbr_pre_scale}")
        if self.output_dtype not in ("float32", "float64"):
            raise ValueError(f"Invalid output_dtype: {self.output_dtype}")


def _safe_divide(numerator: np.ndarray, denominator: np.ndarray, epsilon: float) -> np.ndarray:
    with np.errstate(invalid="ignore", divide="ignore"):
        ratio = numerator / denominator
    degenerate = ~np.isfinite(denominator) | (np.abs(denominator) < epsilon)
    return np.where(degenerate | ~np.isfinite(ratio), np.nan, ratio)


def dnbr(nbr_pre: np.ndarray, nbr_post: np.ndarray) -> np.ndarray:
    """Differenced NBR, scaled by 1000."""
    return (nbr_pre - nbr_post) * 1000.0


def rbr(nbr_pre: np.ndarray, nbr_post: np.ndarray, epsilon: float = 1e-9) -> np.ndarray:
    """Relativized burn ratio."""
    return _safe_divide(dnbr(nbr_pre, nbr_post), nbr_pre + 1.001, epsilon)


def rdnbr(
    nbr_pre: np.ndarray,
    nbr_post: np.ndarray,
    epsilon: float = 1e-9,
    pre_scale: float = 1000.0,
) -> np.ndarray:
    """
    Relativized dNBR.

    pre_scale is the scale NBR_pre is expressed on before the division by
    1000: 1000 gives dNBR / sqrt(|NBR_pre|), 1 gives dNBR / sqrt(|NBR_pre / 1000|).
    """
    with np.errstate(invalid="ignore"):
        denominator = np.sqrt(np.abs(nbr_pre * pre_scale / 1000.0))
    return _safe_divide(dnbr(nbr_pre, nbr_post), denominator, epsilon)


@dataclass
class SeverityImage(BandAccessMixin):
    """
    Per-event severity raster.

    Attributes:
        data: (bands, H, W) array in the configured output dtype
        grid: Pixel grid
        id: Image identifier; the fire year
        properties: Provenance of the composites and the event
        band_names: Metric channels, pre/post snapshots, then fire_year
    """

    data: np.ndarray
    grid: RasterGrid
    id: int
    properties: Dict[str, Any] = field(default_factory=dict)
    band_names: Tuple[str, ...] = severity_band_names()

    def to_dict(self) -> Dict[str, Any]:
        """Summary without pixel data."""
        return {
            "id": self.id,
            "bands": list(self.band_names),
            "dtype": str(self.data.dtype),
            "shape": list(self.data.shape),
            "grid": self.grid.to_dict(),
            "properties": dict(self.properties),
        }


@dataclass
class SeverityResult:
    """Results from severity derivation for one fire event."""

    image: SeverityImage  # Clipped severity raster
    pre: CompositeImage  # Pre-fire composite
    post: CompositeImage  # Post-fire composite
    metadata: Dict[str, Any]  # Algorithm metadata and parameters
    statistics: Dict[str, Any]  # Summary statistics

    def to_dict(self) -> Dict[str, Any]:
        """Convert result to dictionary format."""
        return {
            "image": self.image.to_dict(),
            "pre": self.pre.to_dict(),
            "post": self.post.to_dict(),
            "metadata": self.metadata,
            "statistics": self.statistics,
        }


class SeverityAlgorithm:
    """
    Fire severity from pre/post-fire composites.

    Computes the retained severity metrics from the composites' NBR
    channels, appends pre/post snapshots of NBR, NDVI, NIR, SWIR1, SWIR2,
    acquisition time and day of year, and a constant fire-year channel.
    The raster is clipped to the event perimeter (pixel centres inside the
    polygon) and tagged with the fire year.

    Requirements:
        - Pre-fire composite (14-channel feature schema)
        - Post-fire composite on the same grid

    Outputs:
        - Severity raster (float32 by default)
        - Valid pixel count and per-metric mean/min/max
    """

    METADATA = {
        "id": "wildfire.baseline.fire_severity",
        "name": "Differenced Burn Ratio Severity",
        "category": "baseline",
        "event_types": ["wildfire.*"],
        "version": "1.0.0",
        "deterministic": True,
        "seed_required": False,
        "requirements": {
            "data": {
                "pre_event": {"temporal": "pre_event", "sensors": ["landsat"]},
                "post_event": {"temporal": "post_event", "sensors": ["landsat"]},
            },
            "compute": {"memory_gb": 4, "gpu": False},
        },
        "validation": {
            "metrics": list(SEVERITY_METRICS),
            "citations": [
                "doi:10.1016/j.rse.2006.12.006",
                "doi:10.3390/rs10060879",
            ],
        },
    }

    def __init__(self, config: Optional[SeverityConfig] = None, executor=None):
        """
        Initialize severity algorithm.

        Args:
            config: Algorithm configuration. Uses defaults if None.
            executor: Optional TileExecutor for block-wise evaluation
        """
        self.config = config or SeverityConfig()
        self.executor = executor
        logger.info(f"Initialized {self.METADATA['name']} v{self.METADATA['version']}")
        logger.info(f"Configuration: metrics={list(self.config.metrics)}")

    @property
    def band_names(self) -> Tuple[str, ...]:
        return severity_band_names(self.config.metrics)

    def execute(
        self,
        event: FireEvent,
        pre: CompositeImage,
        post: CompositeImage,
    ) -> SeverityResult:
        """
        Execute severity derivation for one event.

        Args:
            event: Fire event (perimeter and year)
            pre: Pre-fire composite
            post: Post-fire composite

        Returns:
            SeverityResult with the clipped severity image

        Raises:
            GridMismatchError: If the composites use different grids
        """
        if not pre.grid.is_compatible(post.grid):
            raise GridMismatchError("Pre- and post-fire composites use different grids")
        grid = pre.grid

        if pre.empty or post.empty:
            side = "pre" if pre.empty else "post"
            logger.warning(f"Fire year {event.year}: {side}-fire composite is empty")

        pre_bands = pre.select(SNAPSHOT_BANDS)
        post_bands = post.select(SNAPSHOT_BANDS)
        if self.executor is not None:
            data = self.executor.map_blocks(self._derive, pre_bands, post_bands)
        else:
            data = self._derive(pre_bands, post_bands)

        data[-1] = float(event.year)

        if self.config.clip_to_event:
            outside = geometry_mask(
                [event.geometry],
                out_shape=grid.shape,
                transform=grid.transform,
                all_touched=False,
            )
            data[:, outside] = np.nan

        data = data.astype(self.config.output_dtype)

        properties = {
            "fire_year": event.year,
            "pre_image_count": pre.image_count,
            "post_image_count": post.image_count,
            "pre_method": pre.method.value,
            "post_method": post.method.value,
            **{f"event_{k}": v for k, v in event.properties.items()},
        }
        image = SeverityImage(
            data=data,
            grid=grid,
            id=event.year,
            properties=properties,
            band_names=self.band_names,
        )

        statistics = self._statistics(image)

        metadata = {
            **self.METADATA,
            "parameters": {
                "metrics": list(self.config.metrics),
                "epsilon": self.config.epsilon,
                "rdnbr_pre_scale": self.config.rdnbr_pre_scale,
                "clip_to_event": self.config.clip_to_event,
                "output_dtype": self.config.output_dtype,
            },
        }

        logger.info(
            f"Fire year {event.year}: {statistics['valid_pixels']} valid severity pixels "
            f"({pre.image_count} pre / {post.image_count} post images)"
        )

        return SeverityResult(
            image=image,
            pre=pre,
            post=post,
            metadata=metadata,
            statistics=statistics,
        )

    def _derive(self, pre_bands: np.ndarray, post_bands: np.ndarray) -> np.ndarray:
        """Metric channels, snapshots and a fire_year placeholder for one block."""
        nbr_pre, nbr_post = pre_bands[0], post_bands[0]
        functions = {
            "dnbr": lambda: dnbr(nbr_pre, nbr_post),
            "rbr": lambda: rbr(nbr_pre, nbr_post, self.config.epsilon),
            "rdnbr": lambda: rdnbr(
                nbr_pre, nbr_post, self.config.epsilon, self.config.rdnbr_pre_scale
            ),
        }
        metrics = [functions[name]() for name in self.config.metrics]
        placeholder = np.zeros((1,) + nbr_pre.shape)
        return np.concatenate([np.stack(metrics), pre_bands, post_bands, placeholder]).astype(
            np.float64
        )

    def _statistics(self, image: SeverityImage) -> Dict[str, Any]:
        valid = np.isfinite(image.band(self.config.metrics[0]))
        statistics: Dict[str, Any] = {
            "valid_pixels": int(np.sum(valid)),
            "total_pixels": int(valid.size),
        }
        for name in self.config.metrics:
            values = image.band(name)
            values = values[np.isfinite(values)]
            if values.size:
                statistics[f"{name}_mean"] = float(np.mean(values))
                statistics[f"{name}_min"] = float(np.min(values))
                statistics[f"{name}_max"] = float(np.max(values))
            else:
                statistics[f"{name}_mean"] = None
                statistics[f"{name}_min"] = None
                statistics[f"{name}_max"] = None
        return statistics

    @staticmethod
    def get_metadata() -> Dict[str, Any]:
        """Get algorithm metadata."""
        return SeverityAlgorithm.METADATA

    @staticmethod
    def create_from_dict(params: Dict[str, Any]) -> "SeverityAlgorithm":
        """
        Create algorithm instance from parameter dictionary.

        Args:
            params: Parameter dictionary

        Returns:
            Configured algorithm instance
        """
        config = SeverityConfig(**params)
        return SeverityAlgorithm(config)


class SeverityCalculator:
    """
    Window selection, compositing and severity derivation for one event.

    Example:
        calculator = SeverityCalculator(get_window_policy("extended_medoid"))
        result = calculator.compute(event, series)
    """

    def __init__(
        self,
        policy: WindowPolicy,
        executor=None,
        reference: str = "mean",
        config: Optional[SeverityConfig] = None,
    ):
        """
        Initialize calculator.

        Args:
            policy: Pre/post window policy
            executor: Optional TileExecutor shared by every stage
            reference: Nearest-to-mean reference statistic ("mean" or "median")
            config: Severity configuration; metrics default to the policy's
        """
        self.policy = policy
        self.executor = executor
        self.reference = reference
        self.algorithm = SeverityAlgorithm(
            config or SeverityConfig(metrics=policy.metrics), executor=executor
        )

    def compositor(self, side: str) -> TemporalCompositor:
        """Compositor for the "pre" or "post" window."""
        spec = getattr(self.policy, side)
        config = CompositorConfig(method=spec.method, reference=self.reference)
        return TemporalCompositor(config, executor=self.executor)

    def compute(
        self,
        event: FireEvent,
        series: ImageSeries,
        grid: Optional[RasterGrid] = None,
    ) -> SeverityResult:
        """
        Composite the policy windows of a series and derive severity.

        Args:
            event: Fire event
            series: Feature series covering both windows
            grid: Output grid; defaults to the series grid

        Returns:
            SeverityResult

        Raises:
            ValueError: If the series is empty and no grid was given
        """
        grid = grid or series.grid
        composites = {}
        for side in ("pre", "post"):
            spec = getattr(self.policy, side)
            selected = spec.select(series, event.year)
            dates = spec.date_range(event.year)
            logger.debug(
                f"Fire year {event.year} {side}: {len(selected)} images in "
                f"{dates.start.date()}..{dates.end.date()} DOY {spec.doy_start}-{spec.doy_end}"
            )
            composites[side] = self.compositor(side).composite(selected, grid=grid)

        result = self.algorithm.execute(event, composites["pre"], composites["post"])
        result.metadata["policy"] = self.policy.to_dict()
        result.image.properties["policy"] = self.policy.name
        return result
