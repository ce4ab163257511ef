"""
Raw Landsat Scenes and Sensor-Family Configuration.

Models a single Collection 2 Level 2 acquisition as delivered by the scene
archive, and the two sensor-family configurations that drive band
harmonization and tasseled-cap feature engineering.

Key Concepts:
- RasterGrid locates a (height, width) array in map units
- Sensor enumerates the five archive generations (Landsat 4, 5, 7, 8, 9)
- SensorFamily groups them into OLI-class and TM/ETM+-class sensors
- SensorFamilyConfig supplies band roles, thermal band and TC coefficients
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np
from affine import Affine
from rasterio.transform import from_bounds
from shapely.geometry import Polygon, box

logger = logging.getLogger(__name__)

# Provider metadata copied onto every derived image for provenance
PROVENANCE_PROPERTIES: Tuple[str, ...] = (
    "LANDSAT_PRODUCT_ID",
    "system:time_start",
    "CLOUD_COVER",
    "EARTH_SUN_DISTANCE",
    "DATE_ACQUIRED",
    "SUN_AZIMUTH",
    "SUN_ELEVATION",
    "SENSOR_ID",
)

QA_BAND = "QA_PIXEL"

# Semantic roles of the six optical bands used downstream, in TC order
BAND_ROLES: Tuple[str, ...] = ("blue", "green", "red", "nir", "swir1", "swir2")


@dataclass(frozen=True)
class RasterGrid:
    """
    Pixel grid of a raster in map units.

    Attributes:
        transform: Affine transform from (col, row) to (x, y)
        width: Number of columns
        height: Number of rows
        crs: Coordinate reference system identifier (e.g. "EPSG:32630")
    """

    transform: Affine
    width: int
    height: int
    crs: Optional[str] = None

    def __post_init__(self):
        if self.width < 1 or self.height < 1:
            raise ValueError(f"Grid dimensions must be positive, got {self.width}x{self.height}")

    @property
    def shape(self) -> Tuple[int, int]:
        """Array shape (height, width)."""
        return (self.height, self.width)

    @property
    def pixel_size(self) -> Tuple[float, float]:
        """Absolute pixel size (x, y) in map units."""
        return (abs(self.transform.a), abs(self.transform.e))

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """Bounds as (minx, miny, maxx, maxy)."""
        t = self.transform
        cols = (0, self.width, 0, self.width)
        rows = (0, 0, self.height, self.height)
        xs = [t.c + t.a * col + t.b * row for col, row in zip(cols, rows)]
        ys = [t.f + t.d * col + t.e * row for col, row in zip(cols, rows)]
        return (min(xs), min(ys), max(xs), max(ys))

    @property
    def footprint(self) -> Polygon:
        """Grid extent as a polygon."""
        return box(*self.bounds)

    def pixel_centers(self) -> Tuple[np.ndarray, np.ndarray]:
        """Map coordinates of pixel centres as two (height, width) arrays."""
        cols, rows = np.meshgrid(np.arange(self.width) + 0.5, np.arange(self.height) + 0.5)
        xs = self.transform.c + cols * self.transform.a + rows * self.transform.b
        ys = self.transform.f + cols * self.transform.d + rows * self.transform.e
        return xs, ys

    def is_compatible(self, other: "RasterGrid") -> bool:
        """Check whether two grids address the same pixels."""
        return (
            self.shape == other.shape
            and self.crs == other.crs
            and self.transform.almost_equals(other.transform)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "transform": list(self.transform)[:6],
            "width": self.width,
            "height": self.height,
            "crs": self.crs,
            "bounds": list(self.bounds),
        }

    @classmethod
    def from_bounds(
        cls,
        bounds: Tuple[float, float, float, float],
        width: int,
        height: int,
        crs: Optional[str] = None,
    ) -> "RasterGrid":
        """Create a north-up grid covering bounds (minx, miny, maxx, maxy)."""
        transform = from_bounds(*bounds, width, height)
        return cls(transform=transform, width=width, height=height, crs=crs)


class SensorFamily(Enum):
    """Sensor generations sharing band numbering and TC coefficients."""

    OLI = "oli"
    TM_ETM = "tm_etm"


class Sensor(Enum):
    """Landsat generations available in the Collection 2 archive."""

    LANDSAT_4 = "LANDSAT_4"
    LANDSAT_5 = "LANDSAT_5"
    LANDSAT_7 = "LANDSAT_7"
    LANDSAT_8 = "LANDSAT_8"
    LANDSAT_9 = "LANDSAT_9"

    @property
    def family(self) -> SensorFamily:
        """Sensor family of this generation."""
        if self in (Sensor.LANDSAT_8, Sensor.LANDSAT_9):
            return SensorFamily.OLI
        return SensorFamily.TM_ETM

    @property
    def collection_id(self) -> str:
        """Collection 2 Tier 1 Level 2 collection identifier."""
        return _COLLECTION_IDS[self]

    @classmethod
    def parse(cls, value: Any) -> "Sensor":
        """
        Parse a sensor from a name, short code, or collection id.

        Accepts "LANDSAT_8", "landsat8", "LC08", "LANDSAT/LC08/C02/T1_L2".

        Raises:
            ValueError: If the value names no known sensor
        """
        if isinstance(value, Sensor):
            return value
        text = str(value).strip().upper()
        for sensor, collection in _COLLECTION_IDS.items():
            code = collection.split("/")[1]
            number = sensor.value.split("_")[1]
            if text in (sensor.value, collection, code, f"LANDSAT{number}"):
                return sensor
        raise ValueError(f"Unknown sensor: {value}")


_COLLECTION_IDS: Dict[Sensor, str] = {
    Sensor.LANDSAT_4: "LANDSAT/LT04/C02/T1_L2",
    Sensor.LANDSAT_5: "LANDSAT/LT05/C02/T1_L2",
    Sensor.LANDSAT_7: "LANDSAT/LE07/C02/T1_L2",
    Sensor.LANDSAT_8: "LANDSAT/LC08/C02/T1_L2",
    Sensor.LANDSAT_9: "LANDSAT/LC09/C02/T1_L2",
}


@dataclass(frozen=True)
class TasseledCapCoefficients:
    """Coefficient vectors over (blue, green, red, nir, swir1, swir2)."""

    brightness: Tuple[float, ...]
    greenness: Tuple[float, ...]
    wetness: Tuple[float, ...]

    def __post_init__(self):
        for name in ("brightness", "greenness", "wetness"):
            if len(getattr(self, name)) != len(BAND_ROLES):
                raise ValueError(f"{name} needs {len(BAND_ROLES)} coefficients")


@dataclass(frozen=True)
class SensorFamilyConfig:
    """
    Per-family harmonization and feature configuration.

    Attributes:
        family: Sensor family
        band_roles: Role name -> raw surface reflectance band id
        thermal_band: Raw surface temperature band id
        tasseled_cap: Tasseled-cap coefficients for at-surface reflectance
    """

    family: SensorFamily
    band_roles: Dict[str, str]
    thermal_band: str
    tasseled_cap: TasseledCapCoefficients

    @property
    def required_bands(self) -> Tuple[str, ...]:
        """Raw band ids that must be present on a scene."""
        return tuple(self.band_roles[role] for role in BAND_ROLES) + (QA_BAND,)


# L8 TC: Baig et al. (2014), L4-7 TC: Huang et al. (2002)
FAMILY_CONFIGS: Dict[SensorFamily, SensorFamilyConfig] = {
    SensorFamily.OLI: SensorFamilyConfig(
        family=SensorFamily.OLI,
        band_roles={
            "blue": "SR_B2",
            "green": "SR_B3",
            "red": "SR_B4",
            "nir": "SR_B5",
            "swir1": "SR_B6",
            "swir2": "SR_B7",
        },
        thermal_band="ST_B10",
        tasseled_cap=TasseledCapCoefficients(
            brightness=(0.3029, 0.2786, 0.4733, 0.5599, 0.508, 0.1872),
            greenness=(-0.2941, -0.243, -0.5424, 0.7276, 0.0713, -0.1608),
            wetness=(0.1511, 0.1973, 0.3283, 0.3407, -0.7117, -0.4559),
        ),
    ),
    SensorFamily.TM_ETM: SensorFamilyConfig(
        family=SensorFamily.TM_ETM,
        band_roles={
            "blue": "SR_B1",
            "green": "SR_B2",
            "red": "SR_B3",
            "nir": "SR_B4",
            "swir1": "SR_B5",
            "swir2": "SR_B7",
        },
        thermal_band="ST_B6",
        tasseled_cap=TasseledCapCoefficients(
            brightness=(0.3561, 0.3972, 0.3904, 0.6966, 0.2286, 0.1596),
            greenness=(-0.3344, -0.3544, -0.4556, 0.6966, -0.0242, -0.2630),
            wetness=(0.2626, 0.2141, 0.0926, 0.0656, -0.7629, -0.5388),
        ),
    ),
}


def get_family_config(family: SensorFamily) -> SensorFamilyConfig:
    """Get the harmonization configuration of a sensor family."""
    return FAMILY_CONFIGS[family]


@dataclass(frozen=True)
class RawScene:
    """
    One Collection 2 Level 2 acquisition.

    Attributes:
        sensor: Landsat generation
        bands: Raw band id -> 2-D digital-number array (SR_B*, ST_B*, QA_PIXEL)
        time_start: Acquisition time (system:time_start)
        grid: Pixel grid shared by all bands
        properties: Provider metadata (LANDSAT_PRODUCT_ID, CLOUD_COVER, ...)
    """

    sensor: Sensor
    bands: Dict[str, np.ndarray]
    time_start: datetime
    grid: RasterGrid
    properties: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.time_start.tzinfo is None:
            object.__setattr__(self, "time_start", self.time_start.replace(tzinfo=timezone.utc))
        else:
            object.__setattr__(self, "time_start", self.time_start.astimezone(timezone.utc))

    @property
    def family(self) -> SensorFamily:
        """Sensor family of the acquiring sensor."""
        return self.sensor.family

    @property
    def qa_pixel(self) -> Optional[np.ndarray]:
        """Pixel quality bitmask, if present."""
        return self.bands.get(QA_BAND)

    @property
    def time_start_ms(self) -> int:
        """Acquisition time in milliseconds since the Unix epoch."""
        return int(round(self.time_start.timestamp() * 1000))

    @property
    def day_of_year(self) -> int:
        """Day of year (1-366) of the acquisition, in UTC."""
        return self.time_start.timetuple().tm_yday

    @property
    def product_id(self) -> str:
        """Provider product id, or an empty string."""
        return str(self.properties.get("LANDSAT_PRODUCT_ID", ""))

    @property
    def cloud_cover(self) -> Optional[float]:
        """Scene cloud cover percentage."""
        value = self.properties.get("CLOUD_COVER")
        return float(value) if value is not None else None

    @property
    def sun_azimuth(self) -> Optional[float]:
        value = self.properties.get("SUN_AZIMUTH")
        return float(value) if value is not None else None

    @property
    def sun_elevation(self) -> Optional[float]:
        value = self.properties.get("SUN_ELEVATION")
        return float(value) if value is not None else None

    @property
    def footprint(self) -> Polygon:
        """Scene footprint from its grid."""
        return self.grid.footprint

    def provenance(self) -> Dict[str, Any]:
        """Provenance properties present on this scene, plus system:time_start."""
        props = {
            name: self.properties[name]
            for name in PROVENANCE_PROPERTIES
            if name in self.properties
        }
        props["system:time_start"] = self.time_start_ms
        return props
