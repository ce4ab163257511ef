"""
Band Harmonization for Multi-Generation Landsat Scenes.

Converts Collection 2 Level 2 digital numbers to physical units and maps
sensor-specific band ids onto one role-named schema, so TM, ETM+ and OLI
acquisitions can be merged into a single time series.

Scaling (Collection 2 Level 2 Science Product guide):
- Surface reflectance: DN * 2.75e-5 - 0.2
- Surface temperature: DN * 0.00341802 + 149.0 (Kelvin)
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import numpy as np

from fireseverity.data.scenes import (
    BAND_ROLES,
    QA_BAND,
    RawScene,
    SensorFamily,
    SensorFamilyConfig,
    get_family_config,
)
from fireseverity.errors import MissingBandError, SchemaMismatchError

logger = logging.getLogger(__name__)

REFLECTANCE_SCALE = 2.75e-5
REFLECTANCE_OFFSET = -0.2
THERMAL_SCALE = 0.00341802
THERMAL_OFFSET = 149.0


def scale_reflectance(dn: np.ndarray) -> np.ndarray:
    """Scale surface reflectance digital numbers to reflectance."""
    return np.asarray(dn, dtype=np.float64) * REFLECTANCE_SCALE + REFLECTANCE_OFFSET


def scale_thermal(dn: np.ndarray) -> np.ndarray:
    """Scale surface temperature digital numbers to Kelvin."""
    return np.asarray(dn, dtype=np.float64) * THERMAL_SCALE + THERMAL_OFFSET


@dataclass
class HarmonizedScene:
    """
    A scene in role-named physical units.

    Attributes:
        reflectance: Role (blue, green, red, nir, swir1, swir2) -> reflectance
        qa_pixel: Untouched pixel quality bitmask
        scene: Source scene (time, grid, metadata)
        thermal: Surface temperature in Kelvin, when the scene carries it
    """

    reflectance: Dict[str, np.ndarray]
    qa_pixel: np.ndarray
    scene: RawScene
    thermal: Optional[np.ndarray] = None
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def family(self) -> SensorFamily:
        return self.scene.family

    def stacked(self) -> np.ndarray:
        """Reflectance as a (6, H, W) array in tasseled-cap role order."""
        return np.stack([self.reflectance[role] for role in BAND_ROLES])


class BandHarmonizer:
    """
    Scales raw scenes and renames their bands to semantic roles.

    A scene missing one of its family's six optical bands or the QA band is
    rejected with MissingBandError; nothing is zero-filled. The thermal band
    is optional.

    Example:
        harmonizer = BandHarmonizer()
        harmonized = harmonizer.harmonize(scene)
        nir = harmonized.reflectance["nir"]
    """

    def harmonize(self, scene: RawScene) -> HarmonizedScene:
        """
        Harmonize a raw scene.

        Args:
            scene: Raw scene from the archive

        Returns:
            HarmonizedScene with scaled, role-named bands

        Raises:
            MissingBandError: If a required band is absent
            SchemaMismatchError: If a band does not match the scene grid
        """
        config = get_family_config(scene.family)
        self._validate(scene, config)

        reflectance = {
            role: scale_reflectance(scene.bands[band_id])
            for role, band_id in config.band_roles.items()
        }

        thermal = None
        if config.thermal_band in scene.bands:
            thermal = scale_thermal(scene.bands[config.thermal_band])

        logger.debug(
            f"Harmonized {scene.sensor.value} scene {scene.product_id or scene.time_start.date()}"
        )

        return HarmonizedScene(
            reflectance=reflectance,
            qa_pixel=np.asarray(scene.bands[QA_BAND]),
            scene=scene,
            thermal=thermal,
            metadata={
                "family": config.family.value,
                "sensor": scene.sensor.value,
                "collection": scene.sensor.collection_id,
            },
        )

    def _validate(self, scene: RawScene, config: SensorFamilyConfig) -> None:
        """Check band presence and shape against the family configuration."""
        for band_id in config.required_bands:
            if band_id not in scene.bands:
                raise MissingBandError(band_id, scene.sensor.value)
            shape = np.shape(scene.bands[band_id])
            if shape != scene.grid.shape:
                raise SchemaMismatchError(
                    f"Band {band_id} has shape {shape}, expected {scene.grid.shape}"
                )


def harmonize_scene(scene: RawScene) -> HarmonizedScene:
    """
    Convenience function to harmonize a single scene.

    Args:
        scene: Raw scene

    Returns:
        Harmonized scene
    """
    return BandHarmonizer().harmonize(scene)
