"""
Tests for burn-severity derivation.

- TestSeverityFormulas: dNBR / RBR / RdNBR algebra and degeneracy
- TestSeverityAlgorithm: output schema, clipping and statistics
- TestSeverityCalculator: window selection plus compositing end to end
"""

import logging
from datetime import datetime, timezone

import numpy as np
import pytest
from affine import Affine

from fireseverity.analysis.compositing import CompositeImage, CompositingMethod
from fireseverity.analysis.features import FEATURE_BANDS
from fireseverity.analysis.severity import (
    SeverityAlgorithm,
    SeverityCalculator,
    SeverityConfig,
    dnbr,
    rbr,
    rdnbr,
    severity_band_names,
)
from fireseverity.analysis.windows import SEVERITY_METRICS, WindowPolicy, get_window_policy
from fireseverity.data.archive import build_image_series
from fireseverity.data.events import FireEvent
from fireseverity.data.scenes import RasterGrid
from fireseverity.errors import GridMismatchError
from fireseverity.execution.tiling import TileExecutor


def nbr_of(reflectance):
    return (reflectance["nir"] - reflectance["swir2"]) / (reflectance["nir"] + reflectance["swir2"])


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def make_composite(grid):
    def _make(nbr, image_count=3, method=CompositingMethod.MEAN, composite_grid=None, **channels):
        composite_grid = composite_grid or grid
        data = np.zeros((len(FEATURE_BANDS),) + composite_grid.shape)
        data[FEATURE_BANDS.index("nbr")] = nbr
        for name, value in channels.items():
            data[FEATURE_BANDS.index(name)] = value
        if image_count == 0:
            data[:] = np.nan
        return CompositeImage(
            data=data, grid=composite_grid, method=method, image_count=image_count
        )

    return _make


@pytest.fixture
def event(fire_perimeter):
    return FireEvent(geometry=fire_perimeter, year=2019, properties={"name": "Test Fire"})


# =============================================================================
# Tests
# =============================================================================


class TestSeverityFormulas:
    """Tests for the severity index functions."""

    def test_worked_example(self):
        pre, post = np.array([0.5]), np.array([0.1])
        assert dnbr(pre, post)[0] == pytest.approx(400.0)
        assert rbr(pre, post)[0] == pytest.approx(400.0 / 1.501)
        assert rbr(pre, post)[0] == pytest.approx(266.49, abs=0.01)
        assert rdnbr(pre, post)[0] == pytest.approx(565.69, abs=0.01)

    def test_rdnbr_unit_pre_scale(self):
        value = rdnbr(np.array([0.5]), np.array([0.1]), pre_scale=1.0)[0]
        assert value == pytest.approx(400.0 / np.sqrt(0.0005))

    def test_rbr_denominator_zero(self):
        result = rbr(np.array([-1.001, 0.2]), np.array([0.1, 0.1]))
        assert np.isnan(result[0])
        assert np.isfinite(result[1])

    def test_rdnbr_zero_prefire_nbr(self):
        assert np.isnan(rdnbr(np.array([0.0]), np.array([-0.2]))[0])

    def test_nan_propagates(self):
        assert np.isnan(rbr(np.array([np.nan]), np.array([0.1]))[0])
        assert np.isnan(dnbr(np.array([0.3]), np.array([np.nan]))[0])

    def test_config_validation(self):
        with pytest.raises(ValueError):
            SeverityConfig(metrics=())
        with pytest.raises(ValueError):
            SeverityConfig(metrics=("nbr",))
        with pytest.raises(ValueError):
            SeverityConfig(metrics=("rbr", "rbr"))
        with pytest.raises(ValueError):
            SeverityConfig(output_dtype="int16")


class TestSeverityAlgorithm:
    """Tests for SeverityAlgorithm.execute."""

    def test_output_schema(self, event, make_composite):
        pre = make_composite(0.5, ndvi=0.7, nir=0.3)
        post = make_composite(0.1, ndvi=0.2, nir=0.15)
        result = SeverityAlgorithm().execute(event, pre, post)
        image = result.image

        assert image.band_names == (
            "rbr",
            "nbr_pre", "ndvi_pre", "nir_pre", "swir1_pre", "swir2_pre", "time_pre", "doy_pre",
            "nbr_post", "ndvi_post", "nir_post", "swir1_post", "swir2_post", "time_post", "doy_post",
            "fire_year",
        )
        assert image.data.dtype == np.float32
        assert image.data.shape == (16, 10, 10)
        assert image.id == 2019

    def test_values_inside_perimeter(self, event, make_composite):
        pre = make_composite(0.5, ndvi=0.7)
        post = make_composite(0.1, ndvi=0.2)
        image = SeverityAlgorithm().execute(event, pre, post).image

        # Row 9 is the southern edge; column 0 the western edge
        assert image.band("rbr")[9, 0] == pytest.approx(266.489, rel=1e-5)
        assert image.band("nbr_pre")[9, 0] == pytest.approx(0.5)
        assert image.band("ndvi_post")[9, 0] == pytest.approx(0.2)
        assert image.band("fire_year")[9, 0] == 2019

    def test_clipped_to_perimeter(self, event, make_composite):
        image = SeverityAlgorithm().execute(event, make_composite(0.5), make_composite(0.1)).image
        inside = np.isfinite(image.band("fire_year"))
        assert inside.sum() == 25
        assert inside[5:, :5].all()
        assert np.all(np.isnan(image.data[:, 0, 0]))
        assert np.all(np.isnan(image.data[:, 9, 9]))

    def test_no_clip(self, event, make_composite):
        config = SeverityConfig(clip_to_event=False)
        image = SeverityAlgorithm(config).execute(event, make_composite(0.5), make_composite(0.1)).image
        assert np.all(np.isfinite(image.data))

    def test_metric_selection_and_order(self, event, make_composite):
        config = SeverityConfig(metrics=("rdnbr", "dnbr"))
        result = SeverityAlgorithm(config).execute(event, make_composite(0.5), make_composite(0.1))
        assert result.image.band_names[:2] == ("rdnbr", "dnbr")
        assert result.image.band_names == severity_band_names(("rdnbr", "dnbr"))
        assert result.image.band("dnbr")[9, 0] == pytest.approx(400.0, rel=1e-6)
        assert result.image.band("rdnbr")[9, 0] == pytest.approx(565.685, rel=1e-5)

    def test_statistics(self, event, make_composite):
        result = SeverityAlgorithm().execute(event, make_composite(0.5), make_composite(0.1))
        stats = result.statistics
        assert stats["valid_pixels"] == 25
        assert stats["total_pixels"] == 100
        assert stats["rbr_mean"] == pytest.approx(266.489, rel=1e-5)
        assert stats["rbr_min"] == pytest.approx(stats["rbr_max"])

    def test_metadata(self, event, make_composite):
        result = SeverityAlgorithm().execute(event, make_composite(0.5), make_composite(0.1))
        assert result.metadata["id"] == "wildfire.baseline.fire_severity"
        assert result.metadata["parameters"]["metrics"] == ["rbr"]
        assert result.to_dict()["image"]["id"] == 2019

    def test_degenerate_pixels_are_nan(self, event, make_composite):
        pre = make_composite(-1.001)
        result = SeverityAlgorithm(SeverityConfig(clip_to_event=False)).execute(
            event, pre, make_composite(0.1)
        )
        assert np.all(np.isnan(result.image.band("rbr")))
        assert result.statistics["valid_pixels"] == 0
        assert result.statistics["rbr_mean"] is None

    def test_empty_composite(self, event, make_composite, caplog):
        with caplog.at_level(logging.WARNING):
            result = SeverityAlgorithm().execute(event, make_composite(0.5, image_count=0), make_composite(0.1))
        assert result.statistics["valid_pixels"] == 0
        assert "pre-fire composite is empty" in caplog.text

    def test_grid_mismatch(self, event, make_composite, grid):
        other = RasterGrid(
            transform=Affine.translation(600.0, 0.0) * grid.transform, width=10, height=10, crs=grid.crs
        )
        with pytest.raises(GridMismatchError):
            SeverityAlgorithm().execute(event, make_composite(0.5), make_composite(0.1, composite_grid=other))

    def test_tiled_equals_untiled(self, event, make_composite):
        rng = np.random.default_rng(3)
        pre = make_composite(rng.uniform(-0.5, 0.9, size=(10, 10)), ndvi=rng.random((10, 10)))
        post = make_composite(rng.uniform(-0.5, 0.9, size=(10, 10)))
        config = SeverityConfig(metrics=("dnbr", "rbr", "rdnbr"))
        untiled = SeverityAlgorithm(config).execute(event, pre, post)
        tiled = SeverityAlgorithm(config, executor=TileExecutor(tile_size=(3, 4), max_workers=2)).execute(
            event, pre, post
        )
        np.testing.assert_array_equal(tiled.image.data, untiled.image.data)

    def test_create_from_dict(self):
        algorithm = SeverityAlgorithm.create_from_dict({"metrics": ["dnbr"], "epsilon": 1e-6})
        assert algorithm.config.metrics == ("dnbr",)
        assert SeverityAlgorithm.get_metadata()["version"] == "1.0.0"

    def test_inputs_not_mutated(self, event, make_composite):
        pre, post = make_composite(0.5), make_composite(0.1)
        before = pre.data.copy()
        SeverityAlgorithm().execute(event, pre, post)
        np.testing.assert_array_equal(pre.data, before)


class TestSeverityCalculator:
    """Tests for SeverityCalculator.compute."""

    def _series(self, archive, study_area):
        return build_image_series(
            archive,
            study_area,
            datetime(2018, 1, 1, tzinfo=timezone.utc),
            datetime(2021, 1, 1, tzinfo=timezone.utc),
        )

    def test_extended_mean(self, fire_archive, study_area, event, healthy, burned):
        series = self._series(fire_archive, study_area)
        result = SeverityCalculator(get_window_policy("extended_mean")).compute(event, series)

        assert result.pre.image_count == 2
        assert result.post.image_count == 2
        expected = (nbr_of(healthy) - nbr_of(burned)) * 1000 / (nbr_of(healthy) + 1.001)
        assert result.image.band("rbr")[9, 0] == pytest.approx(expected, rel=1e-5)
        assert result.image.properties["policy"] == "extended_mean"

    def test_initial_mean_min_uses_fire_year(self, fire_archive, study_area, event):
        series = self._series(fire_archive, study_area)
        result = SeverityCalculator(get_window_policy("initial_mean_min")).compute(event, series)
        assert result.post.image_count == 1
        assert result.post.method == CompositingMethod.QUALITY_MOSAIC
        doy_post = result.image.band("doy_post")[9, 0]
        assert doy_post == datetime(2019, 7, 20).timetuple().tm_yday

    def test_extended_medoid(self, fire_archive, study_area, event):
        series = self._series(fire_archive, study_area)
        result = SeverityCalculator(get_window_policy("extended_medoid")).compute(event, series)
        assert result.pre.method == CompositingMethod.NEAREST_TO_MEAN
        assert np.isfinite(result.image.band("rbr")[9, 0])

    def test_spring_window_without_scenes(self, fire_archive, study_area, event):
        series = self._series(fire_archive, study_area)
        result = SeverityCalculator(get_window_policy("spring_mean")).compute(event, series)
        assert result.pre.empty
        assert np.all(np.isnan(result.image.band("rbr")))
        # fire_year is still stamped inside the perimeter
        assert result.image.band("fire_year")[9, 0] == 2019

    def test_policy_metrics_retained(self, fire_archive, study_area, event):
        base = get_window_policy("extended_mean")
        policy = WindowPolicy(name="all_metrics", pre=base.pre, post=base.post, metrics=SEVERITY_METRICS)
        series = self._series(fire_archive, study_area)
        result = SeverityCalculator(policy).compute(event, series)
        assert result.image.band_names[:3] == SEVERITY_METRICS

