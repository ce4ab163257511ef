"""
Exception hierarchy for the fire severity engine.

Schema and configuration problems are raised. Numeric degeneracy (division
by zero in an index or severity formula) and empty compositing windows are
resolved locally as no-data and never reach these classes.
"""


class FireSeverityError(Exception):
    """Base exception for fire severity processing errors."""
    pass


class SchemaMismatchError(FireSeverityError):
    """A scene or image does not carry the expected bands or channels."""
    pass


class MissingBandError(SchemaMismatchError):
    """A raw scene is missing a band required for harmonization."""

    def __init__(self, band: str, sensor: str):
        self.band = band
        self.sensor = sensor
        super().__init__(f"Scene from {sensor} is missing required band '{band}'")


class GridMismatchError(FireSeverityError):
    """Images in one stack do not share a raster grid."""
    pass


class MalformedEventError(FireSeverityError, ValueError):
    """A fire event has a missing or non-numeric year, or unusable geometry."""
    pass


class WindowPolicyError(FireSeverityError, ValueError):
    """A compositing window or window policy is misconfigured."""
    pass
