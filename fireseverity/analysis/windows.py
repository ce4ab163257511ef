"""
Pre/Post-Fire Compositing Window Policies.

A window policy tells the severity calculator, for a fire year, which
calendar years and which seasonal day-of-year window feed the pre-fire and
post-fire composites, and which compositing strategy reduces each side.

Built-in presets reproduce the four published compositing designs:

    extended_medoid   pre: Y-1 summer   post: Y+1 summer   nearest-to-mean both
    extended_mean     pre: Y-1 summer   post: Y+1 summer   mean both
    initial_mean_min  pre: Y-1 summer   post: Y summer     mean / quality mosaic
    spring_mean       pre: Y spring     post: Y summer     mean both

Deployments can load further policies from YAML.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

from fireseverity.analysis.compositing import CompositingMethod
from fireseverity.data.series import DateRange, DayOfYearRange, ImageSeries
from fireseverity.errors import WindowPolicyError

logger = logging.getLogger(__name__)

SUMMER_DOY = (153, 274)  # Jun 2 - Oct 1 (non-leap years)
SPRING_DOY = (120, 152)  # Apr 30 - Jun 1 (non-leap years)

SEVERITY_METRICS: Tuple[str, ...] = ("dnbr", "rbr", "rdnbr")


@dataclass
class WindowSpec:
    """
    One side (pre or post) of a compositing window.

    Attributes:
        start_offset_years: First calendar year relative to the fire year
        end_offset_years: Exclusive end year relative to the fire year
        doy_start: First day of year (inclusive)
        doy_end: Last day of year (inclusive)
        method: Compositing strategy for this side
    """

    start_offset_years: int
    end_offset_years: int
    doy_start: int = SUMMER_DOY[0]
    doy_end: int = SUMMER_DOY[1]
    method: CompositingMethod = CompositingMethod.MEAN

    def __post_init__(self):
        """Validate configuration parameters."""
        try:
            self.method = CompositingMethod(self.method)
        except ValueError:
            raise WindowPolicyError(f"Unknown compositing method: {self.method}") from None
        if self.end_offset_years <= self.start_offset_years:
            raise WindowPolicyError(
                f"end_offset_years ({self.end_offset_years}) must be greater than "
                f"start_offset_years ({self.start_offset_years})"
            )
        for name in ("doy_start", "doy_end"):
            value = getattr(self, name)
            if not 1 <= value <= 366:
                raise WindowPolicyError(f"{name} must be in [1, 366], got {value}")

    def date_range(self, fire_year: int) -> DateRange:
        """Calendar range [Jan 1 of start year, Jan 1 of end year)."""
        return DateRange.for_years(
            fire_year + self.start_offset_years,
            fire_year + self.end_offset_years,
        )

    @property
    def day_of_year(self) -> DayOfYearRange:
        return DayOfYearRange(start=self.doy_start, end=self.doy_end)

    def select(self, series: ImageSeries, fire_year: int) -> ImageSeries:
        """Filter a series to this window for a fire year."""
        dates = self.date_range(fire_year)
        return series.filter_date(dates.start, dates.end).filter_day_of_year(
            self.doy_start, self.doy_end
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "start_offset_years": self.start_offset_years,
            "end_offset_years": self.end_offset_years,
            "doy_start": self.doy_start,
            "doy_end": self.doy_end,
            "method": self.method.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WindowSpec":
        """Create a window from a dictionary."""
        try:
            return cls(**data)
        except TypeError as e:
            raise WindowPolicyError(f"Invalid window definition {data}: {e}") from e


@dataclass
class WindowPolicy:
    """
    Pre/post window configuration of one compositing design.

    Attributes:
        name: Policy identifier
        pre: Pre-fire window
        post: Post-fire window
        export_prefix: Export description prefix ("<prefix>_<year>")
        sample_tile_scale: Tile-scale hint passed with point-sampling requests
        metrics: Severity metrics retained in the output, in order
        description: Human-readable summary
    """

    name: str
    pre: WindowSpec
    post: WindowSpec
    export_prefix: Optional[str] = None
    sample_tile_scale: int = 8
    metrics: Tuple[str, ...] = ("rbr",)
    description: str = ""

    def __post_init__(self):
        """Validate configuration parameters."""
        if not self.name:
            raise WindowPolicyError("Window policy needs a name")
        if self.export_prefix is None:
            self.export_prefix = self.name
        self.metrics = tuple(self.metrics)
        if not self.metrics:
            raise WindowPolicyError("At least one severity metric must be retained")
        unknown = [m for m in self.metrics if m not in SEVERITY_METRICS]
        if unknown:
            raise WindowPolicyError(
                f"Unknown severity metrics {unknown}; choose from {list(SEVERITY_METRICS)}"
            )
        if self.sample_tile_scale < 1:
            raise WindowPolicyError("sample_tile_scale must be at least 1")

    def windows(self, fire_year: int) -> Dict[str, DateRange]:
        """Resolved pre/post date ranges for a fire year."""
        return {"pre": self.pre.date_range(fire_year), "post": self.post.date_range(fire_year)}

    def export_description(self, fire_year: int) -> str:
        return f"{self.export_prefix}_{fire_year}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "name": self.name,
            "pre": self.pre.to_dict(),
            "post": self.post.to_dict(),
            "export_prefix": self.export_prefix,
            "sample_tile_scale": self.sample_tile_scale,
            "metrics": list(self.metrics),
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], name: Optional[str] = None) -> "WindowPolicy":
        """
        Create a policy from a dictionary.

        Args:
            data: Policy definition with "pre" and "post" window mappings
            name: Policy name when not present in data
        """
        data = dict(data)
        policy_name = data.pop("name", name)
        for side in ("pre", "post"):
            if not isinstance(data.get(side), dict):
                raise WindowPolicyError(f"Policy '{policy_name}' needs a '{side}' window mapping")
        try:
            return cls(
                name=policy_name,
                pre=WindowSpec.from_dict(data.pop("pre")),
                post=WindowSpec.from_dict(data.pop("post")),
                **data,
            )
        except TypeError as e:
            raise WindowPolicyError(f"Invalid policy '{policy_name}': {e}") from e


BUILTIN_POLICIES: Dict[str, WindowPolicy] = {
    "extended_medoid": WindowPolicy(
        name="extended_medoid",
        pre=WindowSpec(-1, 0, *SUMMER_DOY, method=CompositingMethod.NEAREST_TO_MEAN),
        post=WindowSpec(1, 2, *SUMMER_DOY, method=CompositingMethod.NEAREST_TO_MEAN),
        export_prefix="extended_medoid",
        sample_tile_scale=8,
        description="Extended summer composites one year either side, nearest-to-mean",
    ),
    "extended_mean": WindowPolicy(
        name="extended_mean",
        pre=WindowSpec(-1, 0, *SUMMER_DOY, method=CompositingMethod.MEAN),
        post=WindowSpec(1, 2, *SUMMER_DOY, method=CompositingMethod.MEAN),
        export_prefix="Extended_mean",
        sample_tile_scale=8,
        description="Extended summer composites one year either side, mean",
    ),
    "initial_mean_min": WindowPolicy(
        name="initial_mean_min",
        pre=WindowSpec(-1, 0, *SUMMER_DOY, method=CompositingMethod.MEAN),
        post=WindowSpec(0, 1, *SUMMER_DOY, method=CompositingMethod.QUALITY_MOSAIC),
        export_prefix="Initial_mean_min",
        sample_tile_scale=8,
        description="Initial assessment: prior summer mean, fire-year minimum NBR",
    ),
    "spring_mean": WindowPolicy(
        name="spring_mean",
        pre=WindowSpec(0, 1, *SPRING_DOY, method=CompositingMethod.MEAN),
        post=WindowSpec(0, 1, *SUMMER_DOY, method=CompositingMethod.MEAN),
        export_prefix="Spring_mean",
        sample_tile_scale=16,
        description="Same-year spring vs summer composites, mean",
    ),
}


def load_window_policies(
    path: Union[str, Path],
    include_builtin: bool = True,
) -> Dict[str, WindowPolicy]:
    """
    Load window policies from a YAML file.

    The file maps policy names to definitions, optionally under a top-level
    "policies" key:

        policies:
          late_summer:
            pre: {start_offset_years: -1, end_offset_years: 0, doy_start: 200, doy_end: 274, method: medoid}
            post: {start_offset_years: 1, end_offset_years: 2, doy_start: 200, doy_end: 274, method: mean}

    Args:
        path: YAML file path
        include_builtin: Whether to start from the built-in presets

    Returns:
        Mapping of policy name to policy (file entries override built-ins)

    Raises:
        WindowPolicyError: If the file is malformed
    """
    path = Path(path)
    with open(path) as f:
        content = yaml.safe_load(f) or {}

    if not isinstance(content, dict):
        raise WindowPolicyError(f"{path}: expected a mapping of policies")
    definitions = content.get("policies", content)
    if not isinstance(definitions, dict):
        raise WindowPolicyError(f"{path}: 'policies' must be a mapping")

    policies = dict(BUILTIN_POLICIES) if include_builtin else {}
    for name, definition in definitions.items():
        if not isinstance(definition, dict):
            raise WindowPolicyError(f"{path}: policy '{name}' must be a mapping")
        policies[name] = WindowPolicy.from_dict(definition, name=name)
        logger.info(f"Loaded window policy '{name}' from {path}")

    return policies


def get_window_policy(
    name: str,
    policies: Optional[Dict[str, WindowPolicy]] = None,
) -> WindowPolicy:
    """
    Look up a window policy by name.

    Raises:
        WindowPolicyError: If the policy is unknown
    """
    policies = BUILTIN_POLICIES if policies is None else policies
    if name not in policies:
        available = ", ".join(sorted(policies))
        raise WindowPolicyError(f"Unknown window policy: {name}. Available: {available}")
    return policies[name]


def list_window_policies():
    """
    List built-in policies.

    Returns:
        List of (name, policy) tuples
    """
    return list(BUILTIN_POLICIES.items())
