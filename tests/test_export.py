"""
Tests for export requests and point sampling.
"""

import numpy as np
import pytest
from shapely.geometry import box

from fireseverity.analysis.severity import SeverityImage, severity_band_names
from fireseverity.execution.export import (
    ExportRequest,
    InMemoryExporter,
    PointSampler,
    SampleRequest,
)


@pytest.fixture
def image(grid):
    names = severity_band_names()
    data = np.ones((len(names),) + grid.shape, dtype=np.float32)
    data[:, 0, :] = np.nan
    data[0, 2, 3] = np.nan  # rbr missing, snapshots present
    return SeverityImage(data=data, grid=grid, id=2019)


class TestRequests:
    """Tests for request validation."""

    def test_export_request(self, image):
        request = ExportRequest(image=image, description="Extended_mean_2019")
        assert request.scale == 30
        assert request.to_dict()["image"]["id"] == 2019
        assert request.to_dict()["region"] is None

    @pytest.mark.parametrize("kwargs", [{"description": ""}, {"description": "x", "scale": 0}])
    def test_invalid_export_request(self, image, kwargs):
        with pytest.raises(ValueError):
            ExportRequest(image=image, **kwargs)

    def test_invalid_sample_request(self, study_area):
        with pytest.raises(ValueError):
            SampleRequest(region=study_area, tile_scale=0)


class TestInMemoryExporter:
    """Tests for InMemoryExporter."""

    def test_records_requests(self, image):
        exporter = InMemoryExporter()
        exporter.export_image(ExportRequest(image=image, description="a_2019"))
        exporter.export_points([], "a_2019")
        assert exporter.descriptions == ["a_2019"]
        assert exporter.points == [{"description": "a_2019", "samples": []}]


class TestPointSampler:
    """Tests for PointSampler."""

    def test_samples_complete_pixels(self, image, study_area):
        samples = PointSampler().sample(image, SampleRequest(region=study_area))
        # Row 0 is empty; one pixel lacks rbr
        assert len(samples) == 100 - 10 - 1
        first = samples[0]
        assert (first.geometry.x, first.geometry.y) == (15.0, 255.0)
        assert first.id == 2019
        assert set(first.values) == set(severity_band_names())
        assert first.to_feature()["properties"]["id"] == 2019

    def test_region(self, image, fire_perimeter):
        samples = PointSampler().sample(image, SampleRequest(region=fire_perimeter))
        assert len(samples) == 25
        assert all(s.geometry.within(fire_perimeter) for s in samples)

    def test_scale_sets_stride(self, image, study_area):
        samples = PointSampler().sample(image, SampleRequest(region=study_area, scale=60))
        # Rows 0, 2, 4, 6, 8 and columns 0, 2, 4, 6, 8; row 0 is empty
        assert len(samples) == 20

    def test_without_geometries(self, image, study_area):
        samples = PointSampler().sample(image, SampleRequest(region=study_area, geometries=False))
        assert samples[0].geometry is None
        assert samples[0].to_feature()["geometry"] is None
