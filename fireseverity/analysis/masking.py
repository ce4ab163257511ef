"""
Pixel Quality Masking for Landsat Feature Images.

Removes water, cloud shadow, snow and cloud pixels using the Collection 2
QA_PIXEL bitmask before an image enters any composite. Masked pixels become
NaN in every channel; the raster grid is preserved so the stack stays aligned.

QA_PIXEL bits (Landsat 4-9 Collection 2 Level 2 Science Product guides):
    bit 2 (4)  water
    bit 3 (8)  cloud shadow
    bit 4 (16) snow
    bit 5 (32) cloud
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Tuple

import numpy as np

from fireseverity.analysis.features import FeatureImage

logger = logging.getLogger(__name__)


class QualityFlag(Enum):
    """QA_PIXEL conditions that make a pixel unusable."""

    WATER = 4
    CLOUD_SHADOW = 8
    SNOW = 16
    CLOUD = 32


@dataclass
class QualityMaskConfig:
    """Configuration for quality masking."""

    flags: Tuple[QualityFlag, ...] = (
        QualityFlag.CLOUD_SHADOW,
        QualityFlag.CLOUD,
        QualityFlag.WATER,
        QualityFlag.SNOW,
    )
    qa_band: str = "pixel_qa"

    def __post_init__(self):
        """Validate configuration parameters."""
        self.flags = tuple(QualityFlag(f) if not isinstance(f, QualityFlag) else f for f in self.flags)
        if not self.flags:
            raise ValueError("At least one quality flag must be masked")

    @property
    def bitmask(self) -> int:
        """Combined bit value of all masked flags."""
        value = 0
        for flag in self.flags:
            value |= flag.value
        return value


def clear_mask(qa: np.ndarray, flags: Sequence[QualityFlag] = None) -> np.ndarray:
    """
    Compute the clear-pixel mask of a QA bitmask.

    Args:
        qa: Pixel quality values; NaN is treated as not clear
        flags: Flags to mask (default: water, cloud shadow, snow, cloud)

    Returns:
        Boolean array, True where none of the flagged bits is set
    """
    config = QualityMaskConfig(flags=tuple(flags)) if flags else QualityMaskConfig()
    qa = np.asarray(qa)
    finite = np.isfinite(qa) if np.issubdtype(qa.dtype, np.floating) else np.ones(qa.shape, dtype=bool)
    bits = np.where(finite, qa, 0).astype(np.int64)
    return finite & ((bits & config.bitmask) == 0)


class QualityMaskFilter:
    """
    Masks unreliable pixels of feature images.

    Water is excluded outright: NBR-family indices are not meaningful over
    open water.

    Example:
        mask_filter = QualityMaskFilter()
        clean = mask_filter.apply(feature_image)
    """

    def __init__(self, config: QualityMaskConfig = None):
        self.config = config or QualityMaskConfig()

    def apply(self, image: FeatureImage) -> FeatureImage:
        """
        Mask a feature image.

        Args:
            image: Feature image carrying the QA channel

        Returns:
            New image with NaN in every channel at unclear pixels
        """
        qa = image.band(self.config.qa_band)
        clear = clear_mask(qa, self.config.flags)
        data = np.where(clear[np.newaxis, :, :], image.data, np.nan)

        clear_fraction = float(np.mean(clear)) if clear.size else 0.0
        logger.debug(
            f"Masked {image.product_id or image.time_start.date()}: "
            f"{100.0 * clear_fraction:.1f}% clear"
        )

        return image.replace_data(data, clear_fraction=clear_fraction)


def mask_image(image: FeatureImage) -> FeatureImage:
    """Convenience function to mask an image with the default flags."""
    return QualityMaskFilter().apply(image)
