"""
Tests for spectral feature engineering.
"""

from datetime import datetime, timezone

import numpy as np
import pytest

from fireseverity.analysis.features import (
    FEATURE_BANDS,
    FeatureImage,
    SpectralFeatureEngine,
    normalized_difference,
    tasseled_cap,
)
from fireseverity.data.harmonization import harmonize_scene
from fireseverity.data.scenes import SensorFamily, Sensor, get_family_config
from fireseverity.errors import SchemaMismatchError


class TestNormalizedDifference:
    """Tests for normalized_difference."""

    def test_values(self):
        a = np.array([0.3, 0.5])
        b = np.array([0.1, 0.5])
        np.testing.assert_allclose(normalized_difference(a, b), [0.5, 0.0])

    def test_zero_denominator_is_nan(self):
        result = normalized_difference(np.array([0.0, 0.2]), np.array([0.0, -0.2]))
        assert np.all(np.isnan(result))

    def test_nan_input_propagates(self):
        result = normalized_difference(np.array([np.nan]), np.array([0.1]))
        assert np.isnan(result[0])


class TestTasseledCap:
    """Tests for the tasseled-cap transform."""

    def test_unit_vector_picks_coefficient(self):
        coefficients = get_family_config(SensorFamily.OLI).tasseled_cap
        bands = np.zeros((6, 2, 2))
        bands[3] = 1.0  # nir only
        brightness, greenness, wetness = tasseled_cap(bands, coefficients)
        np.testing.assert_allclose(brightness, 0.5599)
        np.testing.assert_allclose(greenness, 0.7276)
        np.testing.assert_allclose(wetness, 0.3407)

    def test_wrong_band_count(self):
        coefficients = get_family_config(SensorFamily.OLI).tasseled_cap
        with pytest.raises(SchemaMismatchError):
            tasseled_cap(np.zeros((5, 2, 2)), coefficients)


class TestSpectralFeatureEngine:
    """Tests for SpectralFeatureEngine."""

    def test_schema_and_indices(self, make_scene):
        scene = make_scene(Sensor.LANDSAT_8, reflectance={"nir": 0.3, "swir2": 0.1, "red": 0.05, "swir1": 0.15})
        image = SpectralFeatureEngine().compute_scene(scene)

        assert image.band_names == FEATURE_BANDS
        assert image.data.shape == (14, 10, 10)
        np.testing.assert_allclose(image.band("nbr"), 0.5, atol=1e-9)
        np.testing.assert_allclose(image.band("nbr_sort"), -0.5, atol=1e-9)
        np.testing.assert_allclose(image.band("ndvi"), 0.25 / 0.35, atol=1e-9)
        np.testing.assert_allclose(image.band("nbr2"), 0.05 / 0.25, atol=1e-9)
        np.testing.assert_allclose(image.band("ndmi"), 0.15 / 0.45, atol=1e-9)
        np.testing.assert_allclose(image.band("nir"), 0.3, atol=1e-9)

    def test_time_and_doy_channels(self, make_scene):
        when = datetime(2020, 3, 1, tzinfo=timezone.utc)
        image = SpectralFeatureEngine().compute_scene(make_scene(when=when))
        assert image.band("time")[0, 0] == pytest.approx(when.timestamp() * 1000)
        assert image.band("doy")[0, 0] == 61  # leap year
        assert image.day_of_year == 61

    def test_schema_identical_across_families(self, make_scene):
        engine = SpectralFeatureEngine()
        oli = engine.compute_scene(make_scene(Sensor.LANDSAT_9))
        tm = engine.compute_scene(make_scene(Sensor.LANDSAT_4))
        assert oli.band_names == tm.band_names
        assert oli.data.shape == tm.data.shape
        # Same surface, same NBR regardless of band numbering
        np.testing.assert_allclose(oli.band("nbr"), tm.band("nbr"))
        # Tasseled cap differs per family
        assert not np.allclose(oli.band("brightness"), tm.band("brightness"))

    def test_brightness_uses_family_coefficients(self, make_scene):
        harmonized = harmonize_scene(make_scene(Sensor.LANDSAT_5))
        image = SpectralFeatureEngine().compute(harmonized)
        coefficients = get_family_config(SensorFamily.TM_ETM).tasseled_cap
        expected = sum(
            c * harmonized.reflectance[role][0, 0]
            for c, role in zip(coefficients.brightness, ("blue", "green", "red", "nir", "swir1", "swir2"))
        )
        assert image.band("brightness")[0, 0] == pytest.approx(expected)

    def test_qa_passthrough(self, make_scene):
        image = SpectralFeatureEngine().compute_scene(make_scene(qa=21824))
        np.testing.assert_array_equal(image.band("pixel_qa"), 21824.0)

    def test_provenance_copied(self, make_scene):
        scene = make_scene(product_id="LC08_044034_20190715")
        image = SpectralFeatureEngine().compute_scene(scene)
        assert image.product_id == "LC08_044034_20190715"
        assert image.properties["system:time_start"] == scene.time_start_ms
        assert image.properties["SUN_ELEVATION"] == 55.0

    def test_zero_denominator_pixel(self, make_scene):
        harmonized = harmonize_scene(make_scene())
        harmonized.reflectance["nir"] = np.zeros((10, 10))
        harmonized.reflectance["swir2"] = np.zeros((10, 10))
        image = SpectralFeatureEngine().compute(harmonized)
        assert np.all(np.isnan(image.band("nbr")))
        assert np.all(np.isfinite(image.band("ndvi")))


class TestFeatureImage:
    """Tests for FeatureImage validation and access."""

    def test_rejects_wrong_channel_count(self, grid):
        with pytest.raises(SchemaMismatchError):
            FeatureImage(
                data=np.zeros((13, 10, 10)),
                grid=grid,
                time_start=datetime(2019, 1, 1, tzinfo=timezone.utc),
            )

    def test_rejects_reordered_channels(self, grid):
        names = tuple(reversed(FEATURE_BANDS))
        with pytest.raises(SchemaMismatchError):
            FeatureImage(
                data=np.zeros((14, 10, 10)),
                grid=grid,
                time_start=datetime(2019, 1, 1, tzinfo=timezone.utc),
                band_names=names,
            )

    def test_unknown_band(self, make_feature_image):
        with pytest.raises(SchemaMismatchError):
            make_feature_image().band("evi")

    def test_select(self, make_feature_image):
        image = make_feature_image(nbr=0.4, nir=0.3)
        selected = image.select(["nir", "nbr"])
        assert selected.shape == (2, 10, 10)
        assert selected[0, 0, 0] == pytest.approx(0.3)
        assert selected[1, 0, 0] == pytest.approx(0.4)
