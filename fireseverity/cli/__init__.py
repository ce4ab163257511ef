"""
Fire Severity CLI Package

Command-line interface for inspecting window policies and validating fire
event catalogues before a batch run.

Usage:
    fireseverity presets --year 2019
    fireseverity presets --policies-file policies.yaml --format json
    fireseverity events fires.geojson --start-year 1985 --end-year 2021
"""

from fireseverity.cli.main import app

__all__ = ["app"]
