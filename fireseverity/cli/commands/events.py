"""
Events Command - Validate a fire-event catalogue.

Usage:
    fireseverity events fires.geojson
    fireseverity events fires.geojson --start-year 1985 --end-year 2021 --format json
"""

import json
import logging
from pathlib import Path
from typing import Optional

import click

from fireseverity.config import get_settings
from fireseverity.data.events import load_fire_events, year_counts
from fireseverity.errors import MalformedEventError

logger = logging.getLogger(__name__)


@click.command("events")
@click.argument("events_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--start-year", type=int, default=None, help="First fire year (default: settings).")
@click.option("--end-year", type=int, default=None, help="Last fire year (default: settings).")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)
@click.pass_obj
def events(
    settings,
    events_path: Path,
    start_year: Optional[int],
    end_year: Optional[int],
    output_format: str,
):
    """
    Load and validate a GeoJSON fire-event file.

    Every feature needs a Polygon or MultiPolygon geometry and a numeric
    "year" property. Reports the number of events per fire year inside the
    study period and the years without events.

    \b
    Examples:
        fireseverity events fires.geojson --start-year 2000 --end-year 2010
    """
    settings = settings or get_settings()
    start_year = settings.start_year if start_year is None else start_year
    end_year = settings.end_year if end_year is None else end_year
    if end_year < start_year:
        raise click.BadParameter(
            f"end year {end_year} precedes start year {start_year}", param_hint="--end-year"
        )

    try:
        fire_events = load_fire_events(events_path)
    except MalformedEventError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    except json.JSONDecodeError as e:
        click.echo(f"Error: {events_path} is not valid JSON: {e}", err=True)
        raise SystemExit(1)

    counts = dict(year_counts(fire_events))
    in_period = {year: n for year, n in counts.items() if start_year <= year <= end_year}
    outside = sum(n for year, n in counts.items() if not start_year <= year <= end_year)
    empty_years = [year for year in range(start_year, end_year + 1) if year not in counts]

    summary = {
        "path": str(events_path),
        "total_events": len(fire_events),
        "start_year": start_year,
        "end_year": end_year,
        "events_per_year": {str(year): n for year, n in in_period.items()},
        "events_outside_period": outside,
        "years_without_events": empty_years,
        "years_with_multiple_events": [year for year, n in in_period.items() if n > 1],
    }

    if output_format.lower() == "json":
        click.echo(json.dumps(summary, indent=2))
        return

    click.echo("\n=== Fire Events ===")
    click.echo(f"  File: {events_path}")
    click.echo(f"  Events: {len(fire_events)}")
    click.echo(f"  Period: {start_year}-{end_year}")
    for year, n in in_period.items():
        click.echo(f"    {year}: {n}")
    if outside:
        click.echo(f"  Outside period: {outside}")
    click.echo(f"  Years without events: {len(empty_years)}")
    if summary["years_with_multiple_events"]:
        click.echo(
            "  Years with several events (only the first is exported in 'first' mode): "
            + ", ".join(str(y) for y in summary["years_with_multiple_events"])
        )
