"""
Fire Severity Compositing Engine

Harmonizes multi-sensor Landsat surface reflectance, composites pre- and
post-fire windows and derives dNBR / RBR / RdNBR burn-severity rasters per
fire event.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
