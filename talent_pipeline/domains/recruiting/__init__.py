"""Recruiting funnel analytics and hygiene domain.

Loads ATS exports (requisitions, candidates, stage events, users), normalizes
raw stage labels onto the canonical funnel, flags stalled and zombie
requisitions, measures hiring-manager friction, scores requisition
complexity, and rolls everything up into funnel, recruiter and velocity
metrics.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

from talent_pipeline.config import DEFAULT_CONFIG, EngineConfig, sanitize_config
from talent_pipeline.domains.recruiting.complexity import compute_complexity
from talent_pipeline.domains.recruiting.hm_friction import compute_hm_friction, hm_weights_from_friction
from talent_pipeline.domains.recruiting.hygiene import HygieneSummary, compute_hygiene
from talent_pipeline.domains.recruiting.ingest import (
    ATS_EXPORT_DIR,
    AtsSnapshot,
    load_ats_snapshot,
    validate_snapshot,
)
from talent_pipeline.domains.recruiting.overview import OverviewMetrics, compute_overview
from talent_pipeline.domains.recruiting.stages import (
    NormalizedEvents,
    StageMapping,
    build_stage_mapping,
    normalize_stages,
)
from talent_pipeline.domains.recruiting.velocity import VelocityMetrics, compute_velocity
from talent_pipeline.utils.io import FilePath, write_output
from talent_pipeline.utils.types import ComplexityScores, HMWeights, MetricFilters

logger = logging.getLogger(__name__)

OUTPUT_DIR = Path("data/output/recruiting")


@dataclass(frozen=True)
class MetricsRun:
    filters: MetricFilters
    stage_mapping: StageMapping
    normalized: NormalizedEvents
    hygiene: HygieneSummary
    hm_friction: pd.DataFrame = field(compare=False, repr=False)
    hm_weights: HMWeights = field(default_factory=dict)
    complexity: ComplexityScores = field(default_factory=dict)
    overview: OverviewMetrics | None = None
    velocity: VelocityMetrics | None = None


def run_metrics_chain(
    snapshot: AtsSnapshot,
    filters: MetricFilters,
    config: EngineConfig = DEFAULT_CONFIG,
) -> MetricsRun:
    """Run every metric over one snapshot in dependency order.

    Stage normalization feeds hygiene, hygiene exclusions feed HM friction,
    friction weights feed complexity, and complexity feeds the overview and
    velocity rollups. Each step consumes only what earlier steps produced.
    """
    config = sanitize_config(config)
    mapping = build_stage_mapping(snapshot.candidates, snapshot.events, config.stage_mapping)
    normalized = normalize_stages(snapshot.events, mapping)

    hygiene = compute_hygiene(
        snapshot.requisitions, snapshot.candidates, snapshot.events, config, as_of=filters.reference_date,
    )
    friction = compute_hm_friction(
        snapshot.requisitions, normalized.events, snapshot.users, filters, config,
        excluded_req_ids=hygiene.excluded_req_ids,
    )
    hm_weights = hm_weights_from_friction(friction)
    complexity = compute_complexity(snapshot.requisitions, hm_weights, config)

    overview = compute_overview(
        snapshot.requisitions, snapshot.candidates, snapshot.events, normalized, snapshot.users,
        filters, config, complexity=complexity, hm_weights=hm_weights,
        excluded_req_ids=hygiene.excluded_req_ids,
    )
    velocity = compute_velocity(
        snapshot.candidates, snapshot.requisitions, normalized.events, snapshot.users,
        filters, config, hm_weights=hm_weights,
    )

    return MetricsRun(
        filters=filters,
        stage_mapping=mapping,
        normalized=normalized,
        hygiene=hygiene,
        hm_friction=friction,
        hm_weights=hm_weights,
        complexity=complexity,
        overview=overview,
        velocity=velocity,
    )


def validate(directory: FilePath = ATS_EXPORT_DIR) -> dict[str, str | int]:
    """Validate that the ATS exports are readable and structurally sound."""
    try:
        snapshot = load_ats_snapshot(directory)
    except FileNotFoundError as exc:
        return {"status": "error", "message": str(exc)}
    except ValueError as exc:
        return {"status": "error", "message": f"Unreadable export: {exc}"}

    failed = [name for name, result in validate_snapshot(snapshot).items() if not result["valid"]]
    if failed:
        return {"status": "error", "message": f"Validation failed for: {', '.join(failed)}"}
    return {"status": "ok", "rows_available": snapshot.row_count}


def write_run_outputs(result: MetricsRun, output_dir: FilePath = OUTPUT_DIR, fmt: str = "csv") -> None:
    output_dir = Path(output_dir)
    write_output(result.hygiene.assessments, output_dir / f"req_health.{fmt}", fmt)
    write_output(result.hygiene.ghost_candidates, output_dir / f"ghost_candidates.{fmt}", fmt)
    write_output(result.hm_friction, output_dir / f"hm_friction.{fmt}", fmt)


def run(
    filters: MetricFilters,
    directory: FilePath = ATS_EXPORT_DIR,
    config: EngineConfig = DEFAULT_CONFIG,
    output_dir: FilePath | None = None,
) -> MetricsRun:
    """Execute the full recruiting metrics chain against an export directory."""
    snapshot = load_ats_snapshot(directory)
    result = run_metrics_chain(snapshot, filters, config)
    if output_dir is not None:
        write_run_outputs(result, output_dir)
    logger.info("Recruiting metrics complete for %s", filters.label)
    return result
