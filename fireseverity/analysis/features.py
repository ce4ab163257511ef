"""
Spectral Feature Engineering for Harmonized Landsat Scenes.

Builds the fixed 14-channel feature image used by every downstream stage,
regardless of the source sensor:

    brightness, greenness, wetness, nbr, nbr2, ndvi, ndmi, pixel_qa,
    time, doy, nbr_sort, nir, swir1, swir2

Indices:
- Tasseled cap brightness/greenness/wetness: per-family linear transform
- NDVI = (NIR - Red) / (NIR + Red)
- NBR  = (NIR - SWIR2) / (NIR + SWIR2)
- NBR2 = (SWIR1 - SWIR2) / (SWIR1 + SWIR2)
- NDMI = (NIR - SWIR1) / (NIR + SWIR1)
- nbr_sort = -NBR, a ranking key for quality-mosaic compositing
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Sequence, Tuple

import numpy as np

from fireseverity.data.harmonization import BandHarmonizer, HarmonizedScene
from fireseverity.data.scenes import (
    BAND_ROLES,
    RasterGrid,
    RawScene,
    TasseledCapCoefficients,
    get_family_config,
)
from fireseverity.errors import SchemaMismatchError

logger = logging.getLogger(__name__)

FEATURE_BANDS: Tuple[str, ...] = (
    "brightness",
    "greenness",
    "wetness",
    "nbr",
    "nbr2",
    "ndvi",
    "ndmi",
    "pixel_qa",
    "time",
    "doy",
    "nbr_sort",
    "nir",
    "swir1",
    "swir2",
)


class BandAccessMixin:
    """Name-based channel access for (bands, H, W) images."""

    data: np.ndarray
    band_names: Tuple[str, ...]

    def band_index(self, name: str) -> int:
        """Position of a named channel."""
        try:
            return self.band_names.index(name)
        except ValueError:
            raise SchemaMismatchError(
                f"Channel '{name}' not in {list(self.band_names)}"
            ) from None

    def band(self, name: str) -> np.ndarray:
        """Return a single channel as a (H, W) array."""
        return self.data[self.band_index(name)]

    def select(self, names: Sequence[str]) -> np.ndarray:
        """Return the named channels as a (len(names), H, W) array."""
        return self.data[[self.band_index(name) for name in names]]

    def valid_mask(self) -> np.ndarray:
        """Pixels where at least one channel holds data."""
        return np.any(np.isfinite(self.data), axis=0)


@dataclass
class FeatureImage(BandAccessMixin):
    """
    Harmonized per-acquisition feature raster.

    Attributes:
        data: (14, H, W) float array; NaN marks no-data
        grid: Pixel grid
        time_start: Acquisition time
        properties: Provenance metadata copied from the source scene
        band_names: Channel names; always FEATURE_BANDS
    """

    data: np.ndarray
    grid: RasterGrid
    time_start: datetime
    properties: Dict[str, Any] = field(default_factory=dict)
    band_names: Tuple[str, ...] = FEATURE_BANDS

    def __post_init__(self):
        if tuple(self.band_names) != FEATURE_BANDS:
            raise SchemaMismatchError(
                f"Feature image channels must be {list(FEATURE_BANDS)}, got {list(self.band_names)}"
            )
        if self.data.shape != (len(FEATURE_BANDS), *self.grid.shape):
            raise SchemaMismatchError(
                f"Feature image data has shape {self.data.shape}, "
                f"expected {(len(FEATURE_BANDS), *self.grid.shape)}"
            )

    @property
    def product_id(self) -> str:
        return str(self.properties.get("LANDSAT_PRODUCT_ID", ""))

    @property
    def day_of_year(self) -> int:
        return self.time_start.timetuple().tm_yday

    def replace_data(self, data: np.ndarray, **properties: Any) -> "FeatureImage":
        """Return a copy with new data and extra properties."""
        return FeatureImage(
            data=data,
            grid=self.grid,
            time_start=self.time_start,
            properties={**self.properties, **properties},
        )

    def to_dict(self) -> Dict[str, Any]:
        """Summary without pixel data."""
        return {
            "time_start": self.time_start.isoformat(),
            "bands": list(self.band_names),
            "shape": list(self.data.shape),
            "properties": dict(self.properties),
        }


def normalized_difference(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    """
    Compute (a - b) / (a + b).

    Zero denominators and non-finite inputs yield NaN rather than raising.
    """
    with np.errstate(invalid="ignore", divide="ignore"):
        nd = (a - b) / (a + b)
    return np.where(np.isfinite(nd), nd, np.nan)


def tasseled_cap(
    bands: np.ndarray,
    coefficients: TasseledCapCoefficients,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Apply a tasseled-cap transform.

    Args:
        bands: (6, H, W) reflectance in (blue, green, red, nir, swir1, swir2) order
        coefficients: Family coefficient vectors

    Returns:
        (brightness, greenness, wetness) arrays
    """
    if bands.shape[0] != len(BAND_ROLES):
        raise SchemaMismatchError(
            f"Tasseled cap needs {len(BAND_ROLES)} bands, got {bands.shape[0]}"
        )
    components = []
    for vector in (coefficients.brightness, coefficients.greenness, coefficients.wetness):
        weights = np.asarray(vector, dtype=np.float64)
        components.append(np.tensordot(weights, bands, axes=1))
    return components[0], components[1], components[2]


class SpectralFeatureEngine:
    """
    Computes the 14-channel feature image from a harmonized scene.

    Written once against role names; the sensor family only selects the
    tasseled-cap coefficients.

    Example:
        engine = SpectralFeatureEngine()
        image = engine.compute(harmonized)
        nbr = image.band("nbr")
    """

    def __init__(self, harmonizer: BandHarmonizer = None):
        self.harmonizer = harmonizer or BandHarmonizer()

    def compute(self, harmonized: HarmonizedScene) -> FeatureImage:
        """
        Compute features for one harmonized scene.

        Args:
            harmonized: Scene with role-named reflectance

        Returns:
            FeatureImage in the canonical channel order
        """
        scene = harmonized.scene
        refl = harmonized.reflectance
        coefficients = get_family_config(harmonized.family).tasseled_cap

        brightness, greenness, wetness = tasseled_cap(harmonized.stacked(), coefficients)

        nbr = normalized_difference(refl["nir"], refl["swir2"])
        nbr2 = normalized_difference(refl["swir1"], refl["swir2"])
        ndvi = normalized_difference(refl["nir"], refl["red"])
        ndmi = normalized_difference(refl["nir"], refl["swir1"])

        shape = scene.grid.shape
        time = np.full(shape, float(scene.time_start_ms))
        doy = np.full(shape, float(scene.day_of_year))

        channels = {
            "brightness": brightness,
            "greenness": greenness,
            "wetness": wetness,
            "nbr": nbr,
            "nbr2": nbr2,
            "ndvi": ndvi,
            "ndmi": ndmi,
            "pixel_qa": harmonized.qa_pixel.astype(np.float64),
            "time": time,
            "doy": doy,
            "nbr_sort": -nbr,
            "nir": refl["nir"],
            "swir1": refl["swir1"],
            "swir2": refl["swir2"],
        }
        data = np.stack([channels[name] for name in FEATURE_BANDS]).astype(np.float64)

        return FeatureImage(
            data=data,
            grid=scene.grid,
            time_start=scene.time_start,
            properties=scene.provenance(),
        )

    def compute_scene(self, scene: RawScene) -> FeatureImage:
        """Harmonize a raw scene and compute its features."""
        return self.compute(self.harmonizer.harmonize(scene))
