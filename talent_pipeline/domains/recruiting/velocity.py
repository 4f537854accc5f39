"""Offer and requisition decay curves plus fast-vs-slow cohort comparison."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass

import pandas as pd

from talent_pipeline.config import DEFAULT_CONFIG, DecayThresholds, EngineConfig, sanitize_config
from talent_pipeline.domains.recruiting.hm_friction import build_loop_table
from talent_pipeline.domains.recruiting.hygiene import inverted_dates_mask, time_to_fill_by_req
from talent_pipeline.domains.recruiting.models import (
    conform_candidates,
    conform_events,
    conform_requisitions,
    conform_users,
)
from talent_pipeline.domains.recruiting.overview import classify_source
from talent_pipeline.domains.recruiting.stages import ensure_normalized
from talent_pipeline.utils.stats import Confidence, assess_confidence, median, mean, safe_rate
from talent_pipeline.utils.transforms import days_between, filter_requisitions, first_per_key
from talent_pipeline.utils.types import (
    CanonicalStage,
    Disposition,
    EventType,
    ImpactLevel,
    MetricFilters,
    RequisitionStatus,
)

logger = logging.getLogger(__name__)

MAX_FEEDBACK_HOURS = 720
HIGH_IMPACT_GAP = 0.5
MEDIUM_IMPACT_GAP = 0.2
IMPACT_RANK = {ImpactLevel.HIGH: 0, ImpactLevel.MEDIUM: 1, ImpactLevel.LOW: 2}


@dataclass(frozen=True)
class DecayPoint:
    label: str
    min_days: int
    max_days: int | None
    count: int
    successes: int
    rate: float | None
    cumulative_rate: float | None


@dataclass(frozen=True)
class DecayCurve:
    points: tuple[DecayPoint, ...]
    total: int
    successes: int
    overall_rate: float | None
    median_days: float | None
    decay_start_day: int | None
    confidence: Confidence


@dataclass(frozen=True)
class FactorComparison:
    factor: str
    fast_mean: float
    slow_mean: float
    fast_median: float
    slow_median: float
    delta: float
    normalized_gap: float
    impact_level: ImpactLevel


@dataclass(frozen=True)
class CohortComparison:
    fast_req_ids: tuple[str, ...]
    slow_req_ids: tuple[str, ...]
    fast_median_ttf: float | None
    slow_median_ttf: float | None
    factors: tuple[FactorComparison, ...]
    confidence: Confidence


@dataclass(frozen=True)
class HMOfferAcceptance:
    hm_id: str
    hm_name: str
    offers: int
    accepted: int
    rate: float | None


@dataclass(frozen=True)
class VelocityMetrics:
    candidate_decay: DecayCurve
    req_decay: DecayCurve
    cohort: CohortComparison
    hm_offer_acceptance: tuple[HMOfferAcceptance, ...]


def _bucket_bounds(width: int, count: int) -> list[tuple[str, int, int | None]]:
    bounds = []
    for i in range(count - 1):
        low, high = i * width, (i + 1) * width - 1
        bounds.append((f"{low}-{high}", low, high))
    last = (count - 1) * width
    bounds.append((f"{last}+", last, None))
    return bounds


def build_decay_curve(
    days: pd.Series,
    success: pd.Series,
    bucket_days: int,
    threshold: int,
    decay: DecayThresholds,
    subject: str,
) -> DecayCurve:
    """Bucket outcomes by elapsed days and locate where the success rate goes cold.

    ``decay_start_day`` is the lower bound of the first well-populated bucket
    whose rate falls below ``decay_drop_ratio`` of the overall rate. It stays
    None whenever the sample is too small to trust.
    """
    days = days.astype(float)
    success = success.astype(bool)
    total, wins = len(days), int(success.sum())
    overall = safe_rate(wins, total)
    confidence = assess_confidence(total, threshold, subject)

    points = []
    running_count = running_wins = 0
    for label, low, high in _bucket_bounds(bucket_days, decay.bucket_count):
        in_bucket = days >= low if high is None else days.between(low, high)
        count, hits = int(in_bucket.sum()), int(success[in_bucket].sum())
        running_count += count
        running_wins += hits
        points.append(DecayPoint(
            label=label,
            min_days=low,
            max_days=high,
            count=count,
            successes=hits,
            rate=safe_rate(hits, count),
            cumulative_rate=safe_rate(running_wins, running_count),
        ))

    decay_start = None
    if confidence.is_sufficient and overall:
        cutoff = overall * decay.decay_drop_ratio
        for point in points:
            if point.count >= decay.min_bucket_size and point.rate is not None and point.rate < cutoff:
                decay_start = point.min_days
                break

    return DecayCurve(
        points=tuple(points),
        total=total,
        successes=wins,
        overall_rate=overall,
        median_days=median(days),
        decay_start_day=decay_start,
        confidence=confidence,
    )


def compute_candidate_decay(
    candidates: pd.DataFrame,
    events: pd.DataFrame,
    filters: MetricFilters,
    decay: DecayThresholds,
) -> DecayCurve:
    """Offer acceptance by days between offer and decision, or until now while pending."""
    offers = candidates[filters.window_mask(candidates["offer_extended_at"])].copy()

    declines = first_per_key(
        events[events["event_type"].isin([EventType.OFFER_DECLINED, EventType.CANDIDATE_WITHDREW])],
        ["candidate_id", "req_id"],
        "occurred_at",
    ).rename(columns={"occurred_at": "declined_at"})
    offers = offers.merge(declines[["candidate_id", "req_id", "declined_at"]], on=["candidate_id", "req_id"], how="left")

    closed_out = offers["disposition"].isin([Disposition.REJECTED, Disposition.WITHDRAWN])
    decided_at = (
        offers["offer_accepted_at"]
        .fillna(offers["declined_at"])
        .fillna(offers["current_stage_entered_at"].where(closed_out))
        .fillna(filters.reference_date)
    )
    accepted = offers["offer_accepted_at"].notna() | (offers["disposition"] == Disposition.HIRED)
    days = days_between(decided_at, offers["offer_extended_at"]).clip(lower=0)

    return build_decay_curve(
        days, accepted, decay.offer_bucket_days, decay.min_offers_for_decay, decay, "offers",
    )


def compute_req_decay(
    requisitions: pd.DataFrame,
    filters: MetricFilters,
    decay: DecayThresholds,
) -> DecayCurve:
    """Fill rate by days open: closed reqs in the window plus open reqs past the minimum age."""
    reqs = requisitions[
        (requisitions["status"] != RequisitionStatus.CANCELED)
        & requisitions["opened_at"].notna()
        & ~inverted_dates_mask(requisitions)
    ]
    as_of = filters.reference_date

    closed = reqs[(reqs["status"] == RequisitionStatus.CLOSED) & filters.window_mask(reqs["closed_at"])]
    still_open = reqs[reqs["status"].isin([RequisitionStatus.OPEN, RequisitionStatus.ON_HOLD])]
    open_days = days_between(as_of, still_open["opened_at"])
    still_open = still_open[open_days >= decay.min_open_req_age_days]

    days = pd.concat([
        days_between(closed["closed_at"], closed["opened_at"]),
        days_between(as_of, still_open["opened_at"]),
    ], ignore_index=True)
    filled = pd.Series([True] * len(closed) + [False] * len(still_open), dtype=bool)

    return build_decay_curve(
        days, filled, decay.req_bucket_days, decay.min_reqs_for_decay, decay, "requisitions",
    )


def _impact(gap: float) -> ImpactLevel:
    match gap:
        case g if g >= HIGH_IMPACT_GAP:
            return ImpactLevel.HIGH
        case g if g >= MEDIUM_IMPACT_GAP:
            return ImpactLevel.MEDIUM
        case _:
            return ImpactLevel.LOW


def compare_factor(name: str, fast: pd.Series, slow: pd.Series) -> FactorComparison | None:
    fast_mean, slow_mean = mean(fast), mean(slow)
    if fast_mean is None or slow_mean is None:
        return None
    scale = max(abs(fast_mean), abs(slow_mean))
    gap = abs(slow_mean - fast_mean) / scale if scale else 0.0
    return FactorComparison(
        factor=name,
        fast_mean=fast_mean,
        slow_mean=slow_mean,
        fast_median=median(fast),
        slow_median=median(slow),
        delta=slow_mean - fast_mean,
        normalized_gap=gap,
        impact_level=_impact(gap),
    )


def _req_factors(
    filled: pd.DataFrame,
    candidates: pd.DataFrame,
    events: pd.DataFrame,
    hm_weights: Mapping[str, float] | None,
) -> pd.DataFrame:
    """Per-requisition values of every tracked cohort factor."""
    factors = filled[["req_id", "hiring_manager_id", "ttf_days"]].set_index("req_id").rename(columns={"ttf_days": "time_to_fill_days"})
    by_req = candidates.groupby("req_id")
    hires = by_req["hired_at"].count().reindex(factors.index).fillna(0).clip(lower=1)

    referral = candidates["source"].map(classify_source).eq("Referral")
    factors["pipeline_depth"] = by_req["candidate_id"].count().reindex(factors.index).fillna(0)
    factors["referral_percent"] = (referral.groupby(candidates["req_id"]).mean() * 100).reindex(factors.index)

    loops = build_loop_table(events)
    feedback = loops["feedback_hours"].clip(upper=MAX_FEEDBACK_HOURS)
    factors["hm_feedback_hours"] = feedback.groupby(loops["req_id"]).mean().reindex(factors.index)

    interviews = events[events["event_type"] == EventType.INTERVIEW_COMPLETED].groupby("req_id").size()
    factors["interviews_per_hire"] = interviews.reindex(factors.index).fillna(0) / hires

    submittals = events[
        (events["event_type"] == EventType.STAGE_CHANGE)
        & (events["canonical_to_stage"] == CanonicalStage.HM_SCREEN)
    ].groupby("req_id").size()
    factors["submittals_per_hire"] = submittals.reindex(factors.index).fillna(0) / hires

    if hm_weights is not None:
        factors["hm_weight"] = factors["hiring_manager_id"].map(lambda hm: hm_weights.get(hm, 1.0))
    return factors.drop(columns=["hiring_manager_id"])


def compute_cohort_comparison(
    requisitions: pd.DataFrame,
    candidates: pd.DataFrame,
    events: pd.DataFrame,
    filters: MetricFilters,
    decay: DecayThresholds,
    hm_weights: Mapping[str, float] | None = None,
) -> CohortComparison:
    """Contrast the fastest and slowest quartile of filled requisitions.

    Requisitions are ranked by time-to-fill with ties broken by req_id, so the
    quartile split is deterministic.
    """
    closed = requisitions[requisitions["status"] == RequisitionStatus.CLOSED]
    filled = time_to_fill_by_req(closed, candidates)
    filled = filled[filters.window_mask(filled["filled_at"])]
    confidence = assess_confidence(len(filled), decay.min_hires_for_cohort, "filled requisitions")
    if not confidence.is_sufficient:
        return CohortComparison((), (), None, None, (), confidence)

    ranked = filled.sort_values(["ttf_days", "req_id"], kind="mergesort").reset_index(drop=True)
    size = max(len(ranked) // 4, 1)
    fast, slow = ranked.head(size), ranked.tail(size)

    factors = _req_factors(ranked, candidates, events, hm_weights)
    comparisons = []
    for name in factors.columns:
        result = compare_factor(name, factors.loc[fast["req_id"], name], factors.loc[slow["req_id"], name])
        if result is not None:
            comparisons.append(result)
    comparisons.sort(key=lambda c: (IMPACT_RANK[c.impact_level], -c.normalized_gap, c.factor))

    return CohortComparison(
        fast_req_ids=tuple(fast["req_id"]),
        slow_req_ids=tuple(slow["req_id"]),
        fast_median_ttf=median(fast["ttf_days"]),
        slow_median_ttf=median(slow["ttf_days"]),
        factors=tuple(comparisons),
        confidence=confidence,
    )


def compute_hm_offer_acceptance(
    requisitions: pd.DataFrame,
    candidates: pd.DataFrame,
    users: pd.DataFrame,
    filters: MetricFilters,
) -> tuple[HMOfferAcceptance, ...]:
    offers = candidates[filters.window_mask(candidates["offer_extended_at"])]
    hm_of_req = requisitions.set_index("req_id")["hiring_manager_id"]
    offers = offers.assign(hm_id=offers["req_id"].map(hm_of_req)).dropna(subset=["hm_id"])
    names = users.dropna(subset=["user_id"]).drop_duplicates("user_id").set_index("user_id")["name"]

    results = []
    for hm_id, group in offers.groupby("hm_id", sort=True):
        accepted = int(group["offer_accepted_at"].notna().sum())
        name = names.get(hm_id)
        results.append(HMOfferAcceptance(
            hm_id=hm_id,
            hm_name=name if isinstance(name, str) else hm_id,
            offers=len(group),
            accepted=accepted,
            rate=safe_rate(accepted, len(group)),
        ))
    return tuple(results)


def compute_velocity(
    candidates: pd.DataFrame,
    requisitions: pd.DataFrame,
    events: pd.DataFrame,
    users: pd.DataFrame,
    filters: MetricFilters,
    config: EngineConfig = DEFAULT_CONFIG,
    hm_weights: Mapping[str, float] | None = None,
) -> VelocityMetrics:
    """Decay curves and cohort contrasts, each gated on its own sample-size minimum."""
    decay = sanitize_config(config).decay
    reqs = filter_requisitions(conform_requisitions(requisitions), filters)
    req_ids = set(reqs["req_id"])
    candidates = conform_candidates(candidates)
    candidates = candidates[candidates["req_id"].isin(req_ids)]
    events = ensure_normalized(conform_events(events), config.stage_mapping, candidates)
    events = events[events["req_id"].isin(req_ids)]

    velocity = VelocityMetrics(
        candidate_decay=compute_candidate_decay(candidates, events, filters, decay),
        req_decay=compute_req_decay(reqs, filters, decay),
        cohort=compute_cohort_comparison(reqs, candidates, events, filters, decay, hm_weights),
        hm_offer_acceptance=compute_hm_offer_acceptance(reqs, candidates, conform_users(users), filters),
    )
    logger.info(
        "Velocity: %d offers (%s), %d reqs (%s), cohort %s",
        velocity.candidate_decay.total, velocity.candidate_decay.confidence.level,
        velocity.req_decay.total, velocity.req_decay.confidence.level,
        velocity.cohort.confidence.level,
    )
    return velocity
