"""
Presets Command - List window policies and their resolved date windows.

Usage:
    fireseverity presets
    fireseverity presets --year 2019
    fireseverity presets --policies-file policies.yaml --format json
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import click

from fireseverity.analysis.windows import BUILTIN_POLICIES, WindowPolicy, load_window_policies
from fireseverity.config import get_settings
from fireseverity.errors import WindowPolicyError

logger = logging.getLogger(__name__)


def describe_policy(policy: WindowPolicy, year: Optional[int] = None) -> Dict[str, Any]:
    """Policy summary, with resolved windows when a year is given."""
    info = policy.to_dict()
    if year is not None:
        info["year"] = year
        info["export_description"] = policy.export_description(year)
        info["windows"] = {side: dates.to_dict() for side, dates in policy.windows(year).items()}
    return info


@click.command("presets")
@click.option(
    "--policies-file",
    "-p",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML file with additional window policies.",
)
@click.option("--year", "-y", type=int, default=None, help="Resolve windows for this fire year.")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)
@click.pass_obj
def presets(settings, policies_file: Optional[Path], year: Optional[int], output_format: str):
    """
    List compositing window policies.

    \b
    Examples:
        # Built-in presets
        fireseverity presets

        # Resolved pre/post windows for the 2019 fires
        fireseverity presets --year 2019
    """
    settings = settings or get_settings()
    policies_file = policies_file or settings.policies_file

    if policies_file is not None:
        try:
            policies = load_window_policies(policies_file)
        except WindowPolicyError as e:
            raise click.ClickException(str(e))
    else:
        policies = dict(BUILTIN_POLICIES)

    described = [describe_policy(policy, year) for policy in policies.values()]

    if output_format.lower() == "json":
        click.echo(json.dumps(described, indent=2))
        return

    click.echo(f"\n=== Window Policies ({len(described)}) ===")
    for info in described:
        marker = " (default)" if info["name"] == settings.preset else ""
        click.echo(f"\n  {info['name']}{marker}")
        if info["description"]:
            click.echo(f"    {info['description']}")
        for side in ("pre", "post"):
            window = info[side]
            click.echo(
                f"    {side:<4}: years {window['start_offset_years']:+d}..{window['end_offset_years']:+d}, "
                f"DOY {window['doy_start']}-{window['doy_end']}, {window['method']}"
            )
        click.echo(f"    metrics: {', '.join(info['metrics'])}  tileScale: {info['sample_tile_scale']}")
        if year is not None:
            for side, dates in info["windows"].items():
                click.echo(f"    {side} window: {dates['start'][:10]} to {dates['end'][:10]}")
            click.echo(f"    export: {info['export_description']}")
