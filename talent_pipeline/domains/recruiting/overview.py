"""Funnel and overview aggregation: pass-through, time-to-fill and recruiter rollups."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from itertools import pairwise

import pandas as pd

from talent_pipeline.config import DEFAULT_CONFIG, EngineConfig, sanitize_config
from talent_pipeline.domains.recruiting.complexity import compute_complexity, weighted_hires
from talent_pipeline.domains.recruiting.hm_friction import LOOP_KEYS, median_decision_latency
from talent_pipeline.domains.recruiting.hygiene import assess_req_health, self_transition_mask, time_to_fill_by_req
from talent_pipeline.domains.recruiting.models import (
    conform_candidates,
    conform_events,
    conform_requisitions,
    conform_users,
)
from talent_pipeline.domains.recruiting.stages import NormalizedEvents
from talent_pipeline.utils.stats import median, safe_rate
from talent_pipeline.utils.transforms import days_between, filter_requisitions, first_per_key
from talent_pipeline.utils.types import (
    FUNNEL_STAGES,
    STAGE_ORDER,
    UNMAPPED,
    CanonicalStage,
    ComplexityScores,
    EventType,
    MetricFilters,
    ReqHealthStatus,
    RequisitionStatus,
)

logger = logging.getLogger(__name__)

OFFER_WEIGHT_IN_PRODUCTIVITY = 0.5
INSUFFICIENT_MAPPING = "insufficient stage mapping"

AGING_BUCKETS = (
    ("0-30", 0, 30),
    ("31-60", 31, 60),
    ("61-90", 61, 90),
    ("91-120", 91, 120),
    ("120+", 121, None),
)


@dataclass(frozen=True)
class StageConversion:
    from_stage: CanonicalStage
    to_stage: CanonicalStage
    entered: int
    converted: int
    rate: float | None
    reason: str | None = None


@dataclass(frozen=True)
class PeriodMetrics:
    start: pd.Timestamp
    end: pd.Timestamp
    hires: int
    weighted_hires: float
    offers_extended: int
    offers_accepted: int
    offer_acceptance_rate: float | None
    median_ttf: float | None
    median_ttf_adjusted: float | None
    filled_req_count: int


@dataclass(frozen=True)
class AgingBucket:
    label: str
    min_days: int
    max_days: int | None
    req_count: int


@dataclass(frozen=True)
class SourceEffectiveness:
    source: str
    candidates: int
    offers: int
    hires: int
    hire_rate: float | None


@dataclass(frozen=True)
class RecruiterSummary:
    recruiter_id: str
    recruiter_name: str
    current: PeriodMetrics
    prior: PeriodMetrics
    funnel: tuple[StageConversion, ...]
    active_req_load: int
    weighted_offers: float
    productivity_index: float


@dataclass(frozen=True)
class OverviewMetrics:
    period: PeriodMetrics
    prior_period: PeriodMetrics
    funnel: tuple[StageConversion, ...]
    mapping_complete: bool
    unmapped_event_count: int
    median_hm_decision_latency: float | None
    open_req_count: int
    stalled_req_count: int
    aging: tuple[AgingBucket, ...]
    sources: tuple[SourceEffectiveness, ...]
    recruiters: tuple[RecruiterSummary, ...]


def _funnel_changes(events: pd.DataFrame) -> pd.DataFrame:
    """Stage changes usable for pass-through: mapped, non-negative, not self-transitions."""
    changes = events[
        (events["event_type"] == EventType.STAGE_CHANGE)
        & events["occurred_at"].notna()
        & ~self_transition_mask(events)
    ]
    changes = changes[changes["canonical_to_stage"].notna() & (changes["canonical_to_stage"] != UNMAPPED)]
    changes = changes[~changes["canonical_to_stage"].isin([CanonicalStage.REJECTED, CanonicalStage.WITHDREW])]
    return changes.assign(stage_rank=changes["canonical_to_stage"].map(STAGE_ORDER))


def compute_stage_conversions(
    events: pd.DataFrame,
    filters: MetricFilters,
    mapping_complete: bool = True,
) -> tuple[StageConversion, ...]:
    """Pass-through rate for each fixed funnel transition.

    A pair enters a stage when a stage change into it happens inside the
    window. It converts when it later reaches the next stage or anything past
    it. No entrants gives a None rate, never zero.
    """
    changes = _funnel_changes(events)
    entries = changes[filters.window_mask(changes["occurred_at"])]

    conversions = []
    for from_stage, to_stage in pairwise(FUNNEL_STAGES):
        entered = first_per_key(
            entries[entries["canonical_to_stage"] == from_stage], LOOP_KEYS, "occurred_at",
        )[[*LOOP_KEYS, "occurred_at"]].rename(columns={"occurred_at": "entered_at"})
        reached = changes.loc[changes["stage_rank"] >= STAGE_ORDER[to_stage], [*LOOP_KEYS, "occurred_at"]]
        progressed = entered.merge(reached, on=LOOP_KEYS, how="inner")
        progressed = progressed[progressed["occurred_at"] >= progressed["entered_at"]]
        n_entered = len(entered)
        n_converted = len(progressed.drop_duplicates(subset=LOOP_KEYS))

        match (mapping_complete, n_entered):
            case (False, _):
                rate, reason = None, INSUFFICIENT_MAPPING
            case (True, 0):
                rate, reason = None, f"No candidates entered {from_stage}"
            case _:
                rate, reason = n_converted / n_entered, None
        conversions.append(StageConversion(from_stage, to_stage, n_entered, n_converted, rate, reason))
    return tuple(conversions)


def compute_period_metrics(
    requisitions: pd.DataFrame,
    candidates: pd.DataFrame,
    time_to_fill: pd.DataFrame,
    filters: MetricFilters,
    complexity: Mapping[str, float],
    excluded_req_ids: frozenset[str] = frozenset(),
) -> PeriodMetrics:
    """Outcome metrics for one window; the prior period reuses this unchanged."""
    req_ids = set(requisitions["req_id"])
    scoped = candidates[candidates["req_id"].isin(req_ids)]
    hired = scoped[filters.window_mask(scoped["hired_at"])]
    offers = int(filters.window_mask(scoped["offer_extended_at"]).sum())
    accepted = int(filters.window_mask(scoped["offer_accepted_at"]).sum())

    filled = time_to_fill[time_to_fill["req_id"].isin(req_ids) & filters.window_mask(time_to_fill["filled_at"])]
    adjusted = filled[~filled["req_id"].isin(excluded_req_ids)]

    return PeriodMetrics(
        start=filters.start,
        end=filters.end,
        hires=len(hired),
        weighted_hires=weighted_hires(hired, complexity),
        offers_extended=offers,
        offers_accepted=accepted,
        offer_acceptance_rate=safe_rate(accepted, offers),
        median_ttf=median(filled["ttf_days"]),
        median_ttf_adjusted=median(adjusted["ttf_days"]),
        filled_req_count=len(filled),
    )


def compute_aging(open_reqs: pd.DataFrame, as_of: pd.Timestamp) -> tuple[AgingBucket, ...]:
    days_open = days_between(as_of, open_reqs["opened_at"])
    buckets = []
    for label, low, high in AGING_BUCKETS:
        in_bucket = days_open >= low if high is None else days_open.between(low, high)
        buckets.append(AgingBucket(label, low, high, int(in_bucket.sum())))
    return tuple(buckets)


def classify_source(source) -> str:
    """Normalize an ATS source label into a reporting category."""
    if not isinstance(source, str) or not source.strip():
        return "Unknown"
    match source.lower().strip().replace(" ", "_"):
        case "linkedin" | "linkedin_recruiter" | "linkedin_jobs":
            return "LinkedIn"
        case "referral" | "employee_referral" | "internal_referral":
            return "Referral"
        case "inbound" | "careers_page" | "website" | "career_site":
            return "Inbound"
        case "indeed" | "glassdoor" | "ziprecruiter":
            return "Job Board"
        case "agency" | "staffing_agency":
            return "Agency"
        case "sourced" | "outbound" | "outreach":
            return "Sourced"
        case _:
            return "Other"


def compute_source_effectiveness(candidates: pd.DataFrame, filters: MetricFilters) -> tuple[SourceEffectiveness, ...]:
    """Candidates per source category entering the window, with offer and hire yield."""
    entered_at = candidates["applied_at"].fillna(candidates["first_contact_at"])
    cohort = candidates[filters.window_mask(entered_at)]
    sources = cohort["source"].map(classify_source)

    results = []
    for source, group in cohort.groupby(sources, sort=True):
        hires = int(group["hired_at"].notna().sum())
        results.append(SourceEffectiveness(
            source=str(source),
            candidates=len(group),
            offers=int(group["offer_extended_at"].notna().sum()),
            hires=hires,
            hire_rate=safe_rate(hires, len(group)),
        ))
    return tuple(results)


def _user_names(users: pd.DataFrame) -> dict[str, str]:
    named = users[users["user_id"].notna() & users["name"].notna()]
    return dict(zip(named["user_id"], named["name"]))


def _recruiter_summaries(
    requisitions: pd.DataFrame,
    candidates: pd.DataFrame,
    events: pd.DataFrame,
    time_to_fill: pd.DataFrame,
    filters: MetricFilters,
    complexity: Mapping[str, float],
    excluded_req_ids: frozenset[str],
    mapping_complete: bool,
    names: Mapping[str, str],
) -> tuple[RecruiterSummary, ...]:
    prior_filters = filters.prior_period()
    summaries = []
    for recruiter_id, rec_reqs in requisitions.groupby("recruiter_id", sort=True):
        current = compute_period_metrics(rec_reqs, candidates, time_to_fill, filters, complexity, excluded_req_ids)
        prior = compute_period_metrics(rec_reqs, candidates, time_to_fill, prior_filters, complexity, excluded_req_ids)

        open_ids = set(rec_reqs.loc[rec_reqs["status"] == RequisitionStatus.OPEN, "req_id"]) - excluded_req_ids
        offered = candidates[
            candidates["req_id"].isin(set(rec_reqs["req_id"])) & filters.window_mask(candidates["offer_extended_at"])
        ]
        weighted_offers = weighted_hires(offered, complexity)
        if not (current.hires or current.offers_extended or open_ids):
            continue

        productivity = (current.weighted_hires + weighted_offers * OFFER_WEIGHT_IN_PRODUCTIVITY) / (len(open_ids) + 1)
        summaries.append(RecruiterSummary(
            recruiter_id=recruiter_id,
            recruiter_name=names.get(recruiter_id, recruiter_id),
            current=current,
            prior=prior,
            funnel=compute_stage_conversions(events[events["req_id"].isin(set(rec_reqs["req_id"]))], filters, mapping_complete),
            active_req_load=len(open_ids),
            weighted_offers=weighted_offers,
            productivity_index=productivity,
        ))
    return tuple(summaries)


def compute_overview(
    requisitions: pd.DataFrame,
    candidates: pd.DataFrame,
    events: pd.DataFrame,
    normalized_events: NormalizedEvents,
    users: pd.DataFrame,
    filters: MetricFilters,
    config: EngineConfig = DEFAULT_CONFIG,
    complexity: ComplexityScores | None = None,
    hm_weights: Mapping[str, float] | None = None,
    excluded_req_ids: frozenset[str] = frozenset(),
) -> OverviewMetrics:
    """Headline funnel and outcome metrics for the filter scope, plus recruiter rollups."""
    config = sanitize_config(config)
    requisitions = conform_requisitions(requisitions)
    candidates = conform_candidates(candidates)
    events = conform_events(events)
    excluded = frozenset(excluded_req_ids) | config.exclusions.excluded_req_ids
    if complexity is None:
        complexity = compute_complexity(requisitions, hm_weights or {}, config)

    reqs = filter_requisitions(requisitions, filters)
    req_ids = set(reqs["req_id"])
    norm = normalized_events.events
    norm = norm[norm["req_id"].isin(req_ids)]
    ttf = time_to_fill_by_req(requisitions, candidates)
    as_of = filters.reference_date

    open_reqs = reqs[reqs["status"] == RequisitionStatus.OPEN]
    scoped_candidates = candidates[candidates["req_id"].isin(req_ids)]
    scoped_events = events[events["req_id"].isin(req_ids)]
    health = assess_req_health(open_reqs, scoped_candidates, scoped_events, config.hygiene, as_of)["health_status"]

    overview = OverviewMetrics(
        period=compute_period_metrics(reqs, candidates, ttf, filters, complexity, excluded),
        prior_period=compute_period_metrics(reqs, candidates, ttf, filters.prior_period(), complexity, excluded),
        funnel=compute_stage_conversions(norm, filters, normalized_events.mapping_complete),
        mapping_complete=normalized_events.mapping_complete,
        unmapped_event_count=int(normalized_events.unmapped_count),
        median_hm_decision_latency=median_decision_latency(scoped_events, filters),
        open_req_count=len(open_reqs),
        stalled_req_count=int((health == ReqHealthStatus.STALLED).sum()),
        aging=compute_aging(open_reqs, as_of),
        sources=compute_source_effectiveness(scoped_candidates, filters),
        recruiters=_recruiter_summaries(
            reqs, candidates, norm, ttf, filters, complexity, excluded,
            normalized_events.mapping_complete, _user_names(conform_users(users)),
        ),
    )
    logger.info(
        "Overview %s: %d hires (%.1f weighted), %d recruiters",
        filters.label, overview.period.hires, overview.period.weighted_hires, len(overview.recruiters),
    )
    return overview
