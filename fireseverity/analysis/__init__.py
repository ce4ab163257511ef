"""
Analysis Package

Per-pixel stages of the severity pipeline:

- features: 14-channel spectral feature engine
- masking: QA_PIXEL cloud / shadow / water / snow mask
- compositing: mean, quality-mosaic and nearest-to-mean compositing
- windows: pre/post window policies and presets
- severity: dNBR / RBR / RdNBR derivation
"""

from fireseverity.analysis.features import FEATURE_BANDS, FeatureImage, SpectralFeatureEngine
from fireseverity.analysis.masking import QualityFlag, QualityMaskConfig, QualityMaskFilter

__all__ = [
    "FEATURE_BANDS",
    "FeatureImage",
    "QualityFlag",
    "QualityMaskConfig",
    "QualityMaskFilter",
    "SpectralFeatureEngine",
]
