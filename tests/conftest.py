"""
Shared fixtures: synthetic Landsat scenes, feature images and grids.
"""

from datetime import datetime, timezone

import numpy as np
import pytest
from shapely.geometry import box

from fireseverity.analysis.features import FEATURE_BANDS, FeatureImage
from fireseverity.data.archive import InMemorySceneArchive
from fireseverity.data.harmonization import REFLECTANCE_OFFSET, REFLECTANCE_SCALE
from fireseverity.data.scenes import (
    QA_BAND,
    RasterGrid,
    RawScene,
    Sensor,
    get_family_config,
)

# Uniform reflectance of a healthy, unburned surface
HEALTHY = {"blue": 0.04, "green": 0.06, "red": 0.05, "nir": 0.30, "swir1": 0.15, "swir2": 0.10}
# Burned surface: low NIR, high SWIR2
BURNED = {"blue": 0.05, "green": 0.06, "red": 0.07, "nir": 0.15, "swir1": 0.20, "swir2": 0.18}


def to_dn(reflectance):
    """Invert the Collection 2 reflectance scaling."""
    return (np.asarray(reflectance, dtype=np.float64) - REFLECTANCE_OFFSET) / REFLECTANCE_SCALE


# =============================================================================
# Grids and geometries
# =============================================================================


@pytest.fixture
def grid():
    """10 x 10 grid of 30 m pixels."""
    return RasterGrid.from_bounds((0.0, 0.0, 300.0, 300.0), width=10, height=10, crs="EPSG:32610")


@pytest.fixture
def study_area(grid):
    return grid.footprint


@pytest.fixture
def fire_perimeter():
    """Perimeter covering the lower-left 5 x 5 pixels."""
    return box(0.0, 0.0, 150.0, 150.0)


# =============================================================================
# Scene factories
# =============================================================================


@pytest.fixture
def make_scene(grid):
    """
    Factory for uniform raw scenes.

    Band values may be scalars (broadcast over the grid) or (H, W) arrays
    of reflectance; qa is the QA_PIXEL value(s).
    """

    def _make(
        sensor=Sensor.LANDSAT_8,
        when=datetime(2019, 7, 15, 18, 30, tzinfo=timezone.utc),
        reflectance=None,
        qa=0,
        product_id=None,
        thermal=True,
        drop=(),
        scene_grid=None,
    ):
        scene_grid = scene_grid or grid
        values = dict(HEALTHY)
        values.update(reflectance or {})
        config = get_family_config(sensor.family)

        bands = {}
        for role, band_id in config.band_roles.items():
            bands[band_id] = np.broadcast_to(to_dn(values[role]), scene_grid.shape).copy()
        bands[QA_BAND] = np.broadcast_to(np.asarray(qa, dtype=np.uint16), scene_grid.shape).copy()
        if thermal:
            bands[config.thermal_band] = np.full(scene_grid.shape, 44000.0)
        for band_id in drop:
            bands.pop(band_id, None)

        properties = {
            "LANDSAT_PRODUCT_ID": product_id or f"{sensor.value}_{when:%Y%m%d}",
            "CLOUD_COVER": 5.0,
            "SUN_AZIMUTH": 140.0,
            "SUN_ELEVATION": 55.0,
            "SENSOR_ID": "OLI_TIRS" if sensor.family.value == "oli" else "TM",
            "DATE_ACQUIRED": f"{when:%Y-%m-%d}",
        }
        return RawScene(
            sensor=sensor,
            bands=bands,
            time_start=when,
            grid=scene_grid,
            properties=properties,
        )

    return _make


@pytest.fixture
def make_feature_image(grid):
    """
    Factory for feature images with chosen channel values.

    Channels not given are filled with 0.0; time and doy follow `when`.
    """

    def _make(when=datetime(2019, 7, 15, tzinfo=timezone.utc), product_id="P", **channels):
        data = np.zeros((len(FEATURE_BANDS),) + grid.shape)
        data[FEATURE_BANDS.index("time")] = when.timestamp() * 1000.0
        data[FEATURE_BANDS.index("doy")] = when.timetuple().tm_yday
        for name, value in channels.items():
            data[FEATURE_BANDS.index(name)] = value
        return FeatureImage(
            data=data,
            grid=grid,
            time_start=when,
            properties={"LANDSAT_PRODUCT_ID": product_id},
        )

    return _make


@pytest.fixture
def fire_archive(make_scene):
    """
    Archive around a 2019 fire.

    Pre-fire summer 2018 is healthy everywhere; post-fire summer 2020 is
    burned. Off-season scenes fall outside every summer window.
    """
    scenes = [
        make_scene(Sensor.LANDSAT_8, datetime(2018, 7, 10, tzinfo=timezone.utc), HEALTHY),
        make_scene(Sensor.LANDSAT_7, datetime(2018, 8, 3, tzinfo=timezone.utc), HEALTHY),
        make_scene(Sensor.LANDSAT_8, datetime(2018, 12, 1, tzinfo=timezone.utc), BURNED),
        make_scene(Sensor.LANDSAT_8, datetime(2019, 7, 20, tzinfo=timezone.utc), BURNED),
        make_scene(Sensor.LANDSAT_8, datetime(2020, 7, 12, tzinfo=timezone.utc), BURNED),
        make_scene(Sensor.LANDSAT_7, datetime(2020, 8, 5, tzinfo=timezone.utc), BURNED),
    ]
    return InMemorySceneArchive(scenes)


@pytest.fixture
def healthy():
    return dict(HEALTHY)


@pytest.fixture
def burned():
    return dict(BURNED)
