"""
Per-Event Batch Driver.

Walks the fire years of a study period in ascending order, runs the
severity calculator for the events of each year and forwards the results
to an exporter:

- export mode "first": only the first event of each year is exported as
  "<prefix>_<year>"; later events of the year are skipped and counted
- export mode "all": every event is exported; when a year holds several
  events the description gets an event-index suffix

Optional point sampling forwards per-year sample tables through the same
exporter.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from shapely.geometry.base import BaseGeometry

from fireseverity.analysis.severity import SeverityCalculator, SeverityResult
from fireseverity.analysis.windows import WindowPolicy, get_window_policy, load_window_policies
from fireseverity.config import ExportMode, Settings
from fireseverity.data.archive import SceneArchive, build_image_series
from fireseverity.data.events import FireEvent, group_events_by_year
from fireseverity.data.scenes import RasterGrid
from fireseverity.data.series import DateRange
from fireseverity.execution.export import (
    DEFAULT_EXPORT_SCALE,
    Exporter,
    ExportRequest,
    PointSampler,
    SampleRequest,
)
from fireseverity.execution.tiling import TileExecutor

logger = logging.getLogger(__name__)

EXPORT_MODES = ("first", "all")


class EventStatus(Enum):
    """Outcome of one fire event."""

    EXPORTED = "exported"  # Severity image forwarded to the exporter
    SKIPPED = "skipped"  # Not exported ("first" mode, not the first event)
    NO_COVERAGE = "no_coverage"  # No archive scene in either window


@dataclass
class EventOutcome:
    """
    Record of one processed fire event.

    Attributes:
        year: Fire year
        index: Position of the event within its year
        status: Outcome
        description: Export description, when exported
        statistics: Severity statistics, when computed
    """

    year: int
    index: int
    status: EventStatus
    description: Optional[str] = None
    statistics: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "year": self.year,
            "index": self.index,
            "status": self.status.value,
            "description": self.description,
            "statistics": self.statistics,
        }


@dataclass
class BatchReport:
    """Summary of a batch run."""

    policy: str
    start_year: int
    end_year: int
    export_mode: str
    outcomes: List[EventOutcome] = field(default_factory=list)
    years_without_events: List[int] = field(default_factory=list)
    point_exports: List[str] = field(default_factory=list)

    def _with_status(self, status: EventStatus) -> List[EventOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status == status]

    @property
    def exported(self) -> List[str]:
        """Export descriptions in submission order."""
        return [outcome.description for outcome in self._with_status(EventStatus.EXPORTED)]

    @property
    def skipped_count(self) -> int:
        return len(self._with_status(EventStatus.SKIPPED))

    @property
    def no_coverage_count(self) -> int:
        return len(self._with_status(EventStatus.NO_COVERAGE))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "policy": self.policy,
            "start_year": self.start_year,
            "end_year": self.end_year,
            "export_mode": self.export_mode,
            "exported": self.exported,
            "skipped_count": self.skipped_count,
            "no_coverage_count": self.no_coverage_count,
            "years_without_events": list(self.years_without_events),
            "point_exports": list(self.point_exports),
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }


class SeverityBatchDriver:
    """
    Runs one window policy over a fire-event catalogue.

    Example:
        driver = SeverityBatchDriver(
            archive=archive,
            policy=get_window_policy("extended_medoid"),
            exporter=InMemoryExporter(),
            study_area=study_area,
        )
        report = driver.run(events, 1985, 2021)
    """

    def __init__(
        self,
        archive: SceneArchive,
        policy: WindowPolicy,
        exporter: Exporter,
        study_area: Optional[BaseGeometry] = None,
        export_mode: str = "first",
        export_scale: float = DEFAULT_EXPORT_SCALE,
        sample_points: bool = False,
        sampler: Optional[PointSampler] = None,
        executor=None,
        grid: Optional[RasterGrid] = None,
        reference: str = "mean",
    ):
        """
        Initialize driver.

        Args:
            archive: Scene source
            policy: Pre/post window policy
            exporter: Destination for images and point samples
            study_area: Archive search and sampling region; the event
                perimeter is used when None
            export_mode: "first" or "all"
            export_scale: Export scale in map units
            sample_points: Whether to export per-year point samples
            sampler: Point sampler (default sampler if None)
            executor: Optional TileExecutor shared by every stage
            grid: Output grid; defaults to the grid of the archive scenes
            reference: Nearest-to-mean reference statistic
        """
        if export_mode not in EXPORT_MODES:
            raise ValueError(f"export_mode must be one of {EXPORT_MODES}, got {export_mode}")
        self.archive = archive
        self.policy = policy
        self.exporter = exporter
        self.study_area = study_area
        self.export_mode = export_mode
        self.export_scale = export_scale
        self.sample_points = sample_points
        self.sampler = sampler or PointSampler()
        self.grid = grid
        self.calculator = SeverityCalculator(policy, executor=executor, reference=reference)

    @classmethod
    def from_settings(
        cls,
        archive: SceneArchive,
        exporter: Exporter,
        settings: Settings,
        study_area: Optional[BaseGeometry] = None,
        grid: Optional[RasterGrid] = None,
    ) -> "SeverityBatchDriver":
        """
        Create a driver from application settings.

        The preset is resolved against settings.policies_file when set,
        otherwise against the built-in policies.

        Raises:
            WindowPolicyError: If the preset is unknown or the policies
                file is invalid
        """
        policies = None
        if settings.policies_file is not None:
            policies = load_window_policies(settings.policies_file)
        policy = get_window_policy(settings.preset, policies)

        return cls(
            archive=archive,
            policy=policy,
            exporter=exporter,
            study_area=study_area,
            export_mode=ExportMode(settings.export_mode).value,
            export_scale=settings.export_scale,
            sample_points=settings.sample_points,
            executor=TileExecutor.from_settings(settings.execution),
            grid=grid,
            reference=settings.composite_reference,
        )

    def search_span(self, year: int) -> DateRange:
        """Smallest date range covering both windows of a fire year."""
        windows = self.policy.windows(year)
        return DateRange(
            start=min(w.start for w in windows.values()),
            end=max(w.end for w in windows.values()),
        )

    def process_event(self, event: FireEvent) -> Optional[SeverityResult]:
        """
        Build the image series for one event and derive its severity.

        Returns:
            SeverityResult, or None when the archive holds no scene for
            either window and no output grid was configured
        """
        region = self.study_area if self.study_area is not None else event.geometry
        span = self.search_span(event.year)
        series = build_image_series(self.archive, region, span.start, span.end)

        if series.is_empty() and self.grid is None:
            logger.warning(f"Fire year {event.year}: no archive scenes between "
                           f"{span.start.date()} and {span.end.date()}")
            return None

        return self.calculator.compute(event, series, grid=self.grid)

    def run(
        self,
        events: Iterable[FireEvent],
        start_year: int,
        end_year: int,
    ) -> BatchReport:
        """
        Process every fire year in [start_year, end_year].

        Args:
            events: Fire events; order within a year is preserved
            start_year: First fire year
            end_year: Last fire year (inclusive)

        Returns:
            BatchReport of exported, skipped and uncovered events
        """
        if end_year < start_year:
            raise ValueError(f"end_year ({end_year}) must not precede start_year ({start_year})")

        grouped = group_events_by_year(events)
        report = BatchReport(
            policy=self.policy.name,
            start_year=start_year,
            end_year=end_year,
            export_mode=self.export_mode,
        )
        logger.info(f"Running policy '{self.policy.name}' over {start_year}-{end_year} "
                    f"({self.export_mode} mode)")

        for year in range(start_year, end_year + 1):
            year_events = grouped.get(year, [])
            if not year_events:
                logger.debug(f"No fire events in {year}")
                report.years_without_events.append(year)
                continue
            self._run_year(year, year_events, report)

        logger.info(f"Batch complete: {len(report.exported)} exported, "
                    f"{report.skipped_count} skipped, {report.no_coverage_count} without coverage")
        return report

    def _run_year(self, year: int, events: List[FireEvent], report: BatchReport) -> None:
        base = self.policy.export_description(year)
        needs_all = self.export_mode == "all" or self.sample_points
        results: List[Tuple[FireEvent, SeverityResult]] = []

        for index, event in enumerate(events):
            if index > 0 and not needs_all:
                report.outcomes.append(EventOutcome(year, index, EventStatus.SKIPPED))
                continue

            result = self.process_event(event)
            if result is None:
                report.outcomes.append(EventOutcome(year, index, EventStatus.NO_COVERAGE))
                continue
            results.append((event, result))

            exported = index == 0 or self.export_mode == "all"
            if not exported:
                report.outcomes.append(
                    EventOutcome(year, index, EventStatus.SKIPPED, statistics=result.statistics)
                )
                continue

            description = base
            if self.export_mode == "all" and len(events) > 1:
                description = f"{base}_{index}"
            self.exporter.export_image(
                ExportRequest(image=result.image, description=description, scale=self.export_scale)
            )
            report.outcomes.append(
                EventOutcome(
                    year, index, EventStatus.EXPORTED,
                    description=description, statistics=result.statistics,
                )
            )

        if self.export_mode == "first" and len(events) > 1:
            logger.warning(f"{year}: exported the first of {len(events)} fire events; "
                           f"{len(events) - 1} not exported")

        if self.sample_points and results:
            self._export_samples(year, base, results)
            report.point_exports.append(base)

    def _export_samples(
        self,
        year: int,
        description: str,
        results: List[Tuple[FireEvent, SeverityResult]],
    ) -> None:
        samples = []
        for event, result in results:
            region = self.study_area if self.study_area is not None else event.geometry
            request = SampleRequest(
                region=region,
                scale=self.export_scale,
                tile_scale=self.policy.sample_tile_scale,
            )
            samples.extend(self.sampler.sample(result.image, request))
        logger.info(f"{year}: {len(samples)} point samples")
        self.exporter.export_points(samples, description)
