"""Recruiting metrics runner: validates ATS exports and prints the metric rollups."""

import argparse
import logging
import sys

import pandas as pd
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from talent_pipeline.config import load_engine_config
from talent_pipeline.domains import recruiting
from talent_pipeline.domains.recruiting import MetricsRun
from talent_pipeline.domains.recruiting.ingest import ATS_EXPORT_DIR
from talent_pipeline.utils.stats import EMPTY_DISPLAY, format_metric
from talent_pipeline.utils.types import MetricFilters

console = Console()


def _hours(value) -> str:
    return format_metric(value, fmt="{:.1f}h")


def _days(value) -> str:
    return format_metric(value, fmt="{:.0f}d")


def _change(current: int, prior: int) -> str:
    match current - prior:
        case 0:
            return "[dim]±0[/dim]"
        case delta if delta > 0:
            return f"[green]+{delta}[/green]"
        case delta:
            return f"[red]{delta}[/red]"


def print_hygiene(result: MetricsRun) -> None:
    hygiene = result.hygiene
    table = Table(title="Pipeline Hygiene")
    table.add_column("Metric")
    table.add_column("Value", justify="right")

    score = EMPTY_DISPLAY if hygiene.hygiene_score is None else str(hygiene.hygiene_score)
    table.add_row("Hygiene score", score)
    table.add_row("Open reqs", str(hygiene.open_req_count))
    table.add_row("Stalled reqs", str(hygiene.stalled_req_count))
    table.add_row("Zombie reqs", str(hygiene.zombie_req_count))
    table.add_row("At-risk reqs", str(hygiene.at_risk_req_count))
    table.add_row("Stagnant candidates", str(hygiene.stagnant_candidate_count))
    table.add_row("Abandoned candidates", str(hygiene.abandoned_candidate_count))
    table.add_row("Raw median TTF", _days(hygiene.raw_median_ttf))
    table.add_row("True median TTF", _days(hygiene.true_median_ttf))
    table.add_row("TTF difference", format_metric(hygiene.ttf_difference_percent, fmt="{:+.1f}%"))
    table.add_row("Record anomalies", str(hygiene.anomalies.total))
    console.print(table)


def print_funnel(result: MetricsRun) -> None:
    overview = result.overview
    if not overview.mapping_complete:
        console.print(
            f"[yellow]Stage mapping incomplete ({overview.unmapped_event_count} unmapped events); "
            "pass-through rates are withheld[/yellow]"
        )

    table = Table(title=f"Funnel Pass-Through ({result.filters.label})")
    table.add_column("From")
    table.add_column("To")
    table.add_column("Entered", justify="right")
    table.add_column("Converted", justify="right")
    table.add_column("Rate", justify="right")
    for step in overview.funnel:
        table.add_row(
            step.from_stage, step.to_stage, str(step.entered), str(step.converted), format_metric(step.rate),
        )
    console.print(table)

    period, prior = overview.period, overview.prior_period
    console.print(
        f"Hires: {period.hires} ({_change(period.hires, prior.hires)} vs prior), "
        f"weighted {period.weighted_hires:.1f}; "
        f"offer acceptance {format_metric(period.offer_acceptance_rate)}; "
        f"median TTF {_days(period.median_ttf)} (adjusted {_days(period.median_ttf_adjusted)})"
    )


def print_recruiters(result: MetricsRun) -> None:
    table = Table(title="Recruiter Summary")
    table.add_column("Recruiter")
    table.add_column("Hires", justify="right")
    table.add_column("vs Prior", justify="right")
    table.add_column("Weighted", justify="right")
    table.add_column("Offers", justify="right")
    table.add_column("Open Reqs", justify="right")
    table.add_column("Productivity", justify="right")
    for summary in result.overview.recruiters:
        table.add_row(
            summary.recruiter_name,
            str(summary.current.hires),
            _change(summary.current.hires, summary.prior.hires),
            f"{summary.current.weighted_hires:.1f}",
            str(summary.current.offers_extended),
            str(summary.active_req_load),
            f"{summary.productivity_index:.2f}",
        )
    console.print(table)


def print_hm_friction(result: MetricsRun) -> None:
    table = Table(title="Hiring Manager Friction")
    table.add_column("Hiring Manager")
    table.add_column("Loops", justify="right")
    table.add_column("Feedback", justify="right")
    table.add_column("Decision", justify="right")
    table.add_column("Time Tax", justify="right")
    table.add_column("Weight", justify="right")
    table.add_column("Reason")
    for row in result.hm_friction.itertuples(index=False):
        table.add_row(
            row.hm_name,
            str(row.loop_count),
            _hours(row.feedback_latency_median),
            _hours(row.decision_latency_median),
            format_metric(row.time_tax_percent, fmt="{:.0f}%"),
            f"{row.hm_weight:.2f}",
            row.weight_reason,
        )
    console.print(table)


def print_velocity(result: MetricsRun) -> None:
    velocity = result.velocity
    for title, curve in (("Offer Decay", velocity.candidate_decay), ("Requisition Decay", velocity.req_decay)):
        table = Table(title=f"{title} ({curve.confidence.reason})")
        table.add_column("Days")
        table.add_column("Count", justify="right")
        table.add_column("Rate", justify="right")
        table.add_column("Cumulative", justify="right")
        for point in curve.points:
            table.add_row(
                point.label,
                str(point.count),
                format_metric(point.rate, curve.confidence),
                format_metric(point.cumulative_rate, curve.confidence),
            )
        console.print(table)
        if curve.decay_start_day is not None:
            console.print(f"[yellow]{title} starts around day {curve.decay_start_day}[/yellow]")

    cohort = velocity.cohort
    if not cohort.confidence.is_sufficient:
        console.print(f"[dim]Fast vs slow cohort: {cohort.confidence.reason}[/dim]")
        return

    table = Table(title="Fast vs Slow Requisitions")
    table.add_column("Factor")
    table.add_column("Fast", justify="right")
    table.add_column("Slow", justify="right")
    table.add_column("Impact")
    for factor in cohort.factors:
        table.add_row(factor.factor, f"{factor.fast_mean:.2f}", f"{factor.slow_mean:.2f}", factor.impact_level)
    console.print(table)


def validate_exports(data_dir) -> bool:
    table = Table(title="Validation Results")
    table.add_column("Domain")
    table.add_column("Valid")
    table.add_column("Details")

    match recruiting.validate(data_dir):
        case {"status": "ok", "rows_available": rows}:
            table.add_row("recruiting", "[green]✓[/green]", f"{rows} rows")
            valid = True
        case {"status": "error", "message": msg}:
            table.add_row("recruiting", "[red]✗[/red]", msg)
            valid = False
        case _:
            table.add_row("recruiting", "[red]✗[/red]", "Unknown validation result")
            valid = False

    console.print(table)
    return valid


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the recruiting metrics engine")
    parser.add_argument("--data-dir", default=str(ATS_EXPORT_DIR), help="Directory of ATS CSV exports")
    parser.add_argument("--start", type=pd.Timestamp, help="First day of the window (inclusive)")
    parser.add_argument("--end", type=pd.Timestamp, help="Last day of the window (inclusive)")
    parser.add_argument("--as-of", type=pd.Timestamp, default=None, help="Reference time for aging")
    parser.add_argument("--config", default=None, help="TOML config (pyproject.toml or standalone)")
    parser.add_argument("--recruiter", action="append", default=[], help="Limit to a recruiter id")
    parser.add_argument("--output-dir", default=None, help="Write per-req and per-HM tables here")
    parser.add_argument("--validate", action="store_true", help="Only validate, don't run")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )

    if args.validate:
        if not validate_exports(args.data_dir):
            sys.exit(1)
        return

    if args.start is None or args.end is None:
        console.print("[red]--start and --end are required unless --validate is given[/red]")
        sys.exit(2)

    try:
        filters = MetricFilters(start=args.start, end=args.end, recruiter_ids=args.recruiter, as_of=args.as_of)
        config = load_engine_config(args.config)
        result = recruiting.run(filters, args.data_dir, config, output_dir=args.output_dir)
    except (FileNotFoundError, ValueError) as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)

    console.print(f"\n[bold cyan]Recruiting metrics: {filters.label}[/bold cyan]")
    print_hygiene(result)
    print_funnel(result)
    print_recruiters(result)
    print_hm_friction(result)
    print_velocity(result)


if __name__ == "__main__":
    main()
