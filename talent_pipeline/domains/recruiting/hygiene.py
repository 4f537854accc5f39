"""Requisition and candidate hygiene: zombie/stalled detection and true time-to-fill."""

import logging
from dataclasses import dataclass, field, fields

import pandas as pd

from talent_pipeline.config import DEFAULT_CONFIG, EngineConfig, ExclusionConfig, HygieneThresholds, sanitize_config
from talent_pipeline.domains.recruiting.models import (
    DUPLICATE_ROWS,
    UNPARSEABLE_TIMESTAMPS,
    conform_candidates,
    conform_events,
    conform_requisitions,
)
from talent_pipeline.utils.stats import median
from talent_pipeline.utils.transforms import days_between
from talent_pipeline.utils.types import (
    Disposition,
    EventType,
    GhostStatus,
    ReqHealthStatus,
    RequisitionStatus,
    as_naive_utc,
)
from talent_pipeline.utils.validators import find_orphans

logger = logging.getLogger(__name__)

REQ_HEALTH_WEIGHT = 0.6
CANDIDATE_HEALTH_WEIGHT = 0.4


@dataclass(frozen=True)
class RecordAnomalies:
    self_transition_events: int = 0
    inverted_req_dates: int = 0
    orphan_events: int = 0
    orphan_candidates: int = 0
    unparseable_timestamps: int = 0
    duplicate_requisitions: int = 0

    @property
    def total(self) -> int:
        return sum(getattr(self, f.name) for f in fields(self))


@dataclass(frozen=True)
class HygieneSummary:
    open_req_count: int
    active_req_count: int
    stalled_req_count: int
    zombie_req_count: int
    at_risk_req_count: int
    stagnant_candidate_count: int
    abandoned_candidate_count: int
    raw_median_ttf: float | None
    true_median_ttf: float | None
    ttf_difference_percent: float | None
    raw_ttf_sample_size: int
    true_ttf_sample_size: int
    hygiene_score: int | None
    excluded_req_ids: frozenset[str]
    anomalies: RecordAnomalies
    assessments: pd.DataFrame = field(compare=False, repr=False)
    ghost_candidates: pd.DataFrame = field(compare=False, repr=False)


def self_transition_mask(events: pd.DataFrame) -> pd.Series:
    """Stage changes whose from and to labels are the same stage."""
    from_key = events["from_stage"].astype("string").str.strip().str.lower()
    to_key = events["to_stage"].astype("string").str.strip().str.lower()
    same = (from_key == to_key).fillna(False).astype(bool)
    return (events["event_type"] == EventType.STAGE_CHANGE) & same


def inverted_dates_mask(requisitions: pd.DataFrame) -> pd.Series:
    return (requisitions["closed_at"] < requisitions["opened_at"]).fillna(False).astype(bool)


def count_anomalies(requisitions: pd.DataFrame, candidates: pd.DataFrame, events: pd.DataFrame) -> RecordAnomalies:
    anomalies = RecordAnomalies(
        self_transition_events=int(self_transition_mask(events).sum()),
        inverted_req_dates=int(inverted_dates_mask(requisitions).sum()),
        orphan_events=int(find_orphans(events, requisitions, "req_id", "req_id").sum()),
        orphan_candidates=int(find_orphans(candidates, requisitions, "req_id", "req_id").sum()),
        unparseable_timestamps=sum(
            frame.attrs.get(UNPARSEABLE_TIMESTAMPS, 0) for frame in (requisitions, candidates, events)
        ),
        duplicate_requisitions=requisitions.attrs.get(DUPLICATE_ROWS, 0),
    )
    if anomalies.total:
        logger.warning("Skipping %d anomalous records: %s", anomalies.total, anomalies)
    return anomalies


def _latest_by_req(frame: pd.DataFrame, time_col: str) -> pd.Series:
    return frame.dropna(subset=[time_col]).groupby("req_id")[time_col].max()


def last_activity_by_req(requisitions: pd.DataFrame, candidates: pd.DataFrame, events: pd.DataFrame) -> pd.Series:
    """Latest candidate-level activity per requisition, falling back to the open date."""
    latest = pd.concat([
        _latest_by_req(events, "occurred_at"),
        _latest_by_req(candidates, "current_stage_entered_at"),
    ])
    latest = latest.groupby(level=0).max() if len(latest) else latest
    activity = pd.to_datetime(requisitions["req_id"].map(latest))
    return activity.fillna(requisitions["opened_at"])


def classify_req_health(
    days_since_activity: float,
    days_open: float,
    total_candidates: int,
    thresholds: HygieneThresholds,
) -> tuple[ReqHealthStatus, list[str]]:
    """Classify one open requisition by inactivity and pipeline size."""
    status = ReqHealthStatus.ACTIVE
    reasons = []

    match days_since_activity:
        case d if pd.isna(d):
            reasons.append("No activity date available")
        case d if d > thresholds.zombie_days:
            status = ReqHealthStatus.ZOMBIE
            reasons.append(f"No candidate activity in {int(d)} days (>{thresholds.zombie_days})")
        case d if d >= thresholds.stalled_days:
            status = ReqHealthStatus.STALLED
            reasons.append(f"No candidate activity in {int(d)} days")

    if (
        status != ReqHealthStatus.ZOMBIE
        and not pd.isna(days_open)
        and days_open > thresholds.at_risk_days
        and total_candidates < thresholds.at_risk_min_candidates
    ):
        status = ReqHealthStatus.AT_RISK
        reasons.append(f"Open {int(days_open)} days with only {total_candidates} candidates")

    if status == ReqHealthStatus.ACTIVE and not reasons:
        reasons.append("Recent candidate activity")
    return status, reasons


def assess_req_health(
    requisitions: pd.DataFrame,
    candidates: pd.DataFrame,
    events: pd.DataFrame,
    thresholds: HygieneThresholds,
    as_of: pd.Timestamp,
) -> pd.DataFrame:
    """One row per requisition; ``health_status`` is only set for open ones."""
    reqs = requisitions.copy()
    counts = candidates.groupby("req_id").agg(
        total_candidate_count=("candidate_id", "count"),
        active_candidate_count=("disposition", lambda d: int((d == Disposition.ACTIVE).sum())),
    )
    reqs = reqs.merge(counts, left_on="req_id", right_index=True, how="left").reset_index(drop=True)
    reqs[["total_candidate_count", "active_candidate_count"]] = (
        reqs[["total_candidate_count", "active_candidate_count"]].fillna(0).astype(int)
    )
    reqs["last_activity_at"] = last_activity_by_req(reqs, candidates, events)
    reqs["days_open"] = days_between(as_of, reqs["opened_at"])
    reqs["days_since_last_activity"] = days_between(as_of, reqs["last_activity_at"])

    statuses, reasons = [], []
    for row in reqs.itertuples(index=False):
        if row.status != RequisitionStatus.OPEN:
            statuses.append(None)
            reasons.append([f"Requisition is {row.status}"])
            continue
        status, why = classify_req_health(
            row.days_since_last_activity, row.days_open, row.total_candidate_count, thresholds,
        )
        statuses.append(status)
        reasons.append(why)

    reqs["health_status"] = pd.Series(statuses, index=reqs.index, dtype=object)
    reqs["reasons"] = pd.Series(reasons, index=reqs.index, dtype=object)
    return reqs[[
        "req_id", "status", "recruiter_id", "hiring_manager_id", "opened_at",
        "days_open", "last_activity_at", "days_since_last_activity",
        "total_candidate_count", "active_candidate_count", "health_status", "reasons",
    ]]


def resolve_exclusions(assessments: pd.DataFrame, exclusions: ExclusionConfig) -> frozenset[str]:
    """Requisitions left out of time-to-fill math by the user's exclusion overlay."""
    excluded = set(exclusions.excluded_req_ids)
    if exclusions.exclude_zombies_from_ttf:
        excluded |= set(assessments.loc[assessments["health_status"] == ReqHealthStatus.ZOMBIE, "req_id"])
    if exclusions.exclude_stalled_from_ttf:
        excluded |= set(assessments.loc[assessments["health_status"] == ReqHealthStatus.STALLED, "req_id"])
    return frozenset(excluded)


def get_active_req_ids(assessments: pd.DataFrame, excluded_req_ids: frozenset[str]) -> frozenset[str]:
    open_reqs = assessments.loc[assessments["status"] == RequisitionStatus.OPEN, "req_id"]
    return frozenset(open_reqs) - excluded_req_ids


def detect_ghost_candidates(
    candidates: pd.DataFrame,
    thresholds: HygieneThresholds,
    as_of: pd.Timestamp,
) -> pd.DataFrame:
    """Active candidates stuck in their current stage past the ghost thresholds."""
    active = candidates[
        (candidates["disposition"] == Disposition.ACTIVE) & candidates["current_stage_entered_at"].notna()
    ].copy()
    active["days_in_stage"] = days_between(as_of, active["current_stage_entered_at"])

    def _ghost_status(days: float) -> GhostStatus | None:
        match days:
            case d if d > thresholds.abandoned_days:
                return GhostStatus.ABANDONED
            case d if d > thresholds.stagnant_days:
                return GhostStatus.STAGNANT
            case _:
                return None

    active["ghost_status"] = active["days_in_stage"].map(_ghost_status)
    ghosts = active[active["ghost_status"].notna()]
    return ghosts[["candidate_id", "req_id", "current_stage", "days_in_stage", "ghost_status"]].reset_index(drop=True)


def time_to_fill_by_req(requisitions: pd.DataFrame, candidates: pd.DataFrame) -> pd.DataFrame:
    """Days from open to first hire per filled requisition.

    Requisitions without a recorded hire date fall back to ``closed_at`` when
    closed. Requisitions closed before they opened are left out.
    """
    first_hire = candidates.dropna(subset=["hired_at"]).groupby("req_id")["hired_at"].min()
    reqs = requisitions[~inverted_dates_mask(requisitions)].copy()
    reqs["filled_at"] = pd.to_datetime(reqs["req_id"].map(first_hire))
    closed_fallback = reqs["closed_at"].where(reqs["status"] == RequisitionStatus.CLOSED)
    reqs["filled_at"] = reqs["filled_at"].fillna(closed_fallback)
    reqs["ttf_days"] = days_between(reqs["filled_at"], reqs["opened_at"])

    filled = reqs[reqs["ttf_days"].notna() & (reqs["ttf_days"] >= 0)]
    return filled[["req_id", "recruiter_id", "hiring_manager_id", "opened_at", "filled_at", "ttf_days"]].reset_index(drop=True)


def _hygiene_score(assessments: pd.DataFrame, ghosts: pd.DataFrame, candidates: pd.DataFrame) -> int | None:
    open_reqs = assessments[assessments["health_status"].notna()]
    active_candidates = int((candidates["disposition"] == Disposition.ACTIVE).sum())
    if assessments.empty and candidates.empty:
        return None

    healthy_req_ratio = (
        float((open_reqs["health_status"] == ReqHealthStatus.ACTIVE).mean()) if len(open_reqs) else 1.0
    )
    healthy_candidate_ratio = 1.0 - len(ghosts) / active_candidates if active_candidates else 1.0
    return round((healthy_req_ratio * REQ_HEALTH_WEIGHT + healthy_candidate_ratio * CANDIDATE_HEALTH_WEIGHT) * 100)


def compute_hygiene(
    requisitions: pd.DataFrame,
    candidates: pd.DataFrame,
    events: pd.DataFrame,
    config: EngineConfig = DEFAULT_CONFIG,
    as_of: pd.Timestamp | None = None,
) -> HygieneSummary:
    """Classify requisition and candidate health and compare raw vs true time-to-fill."""
    config = sanitize_config(config)
    as_of = pd.Timestamp.now() if as_of is None else as_naive_utc(as_of)
    requisitions = conform_requisitions(requisitions)
    candidates = conform_candidates(candidates)
    events = conform_events(events)

    anomalies = count_anomalies(requisitions, candidates, events)
    assessments = assess_req_health(requisitions, candidates, events, config.hygiene, as_of)
    excluded = resolve_exclusions(assessments, config.exclusions)
    assessments = assessments.assign(excluded_from_metrics=assessments["req_id"].isin(excluded))
    ghosts = detect_ghost_candidates(candidates, config.hygiene, as_of)

    ttf = time_to_fill_by_req(requisitions, candidates)
    true_ttf = ttf[~ttf["req_id"].isin(excluded)]
    raw_median = median(ttf["ttf_days"])
    true_median = median(true_ttf["ttf_days"])
    difference = None
    if raw_median and true_median is not None:
        difference = (raw_median - true_median) / raw_median * 100

    health = assessments["health_status"].value_counts()
    ghost_counts = ghosts["ghost_status"].value_counts()
    summary = HygieneSummary(
        open_req_count=int(assessments["health_status"].notna().sum()),
        active_req_count=int(health.get(ReqHealthStatus.ACTIVE, 0)),
        stalled_req_count=int(health.get(ReqHealthStatus.STALLED, 0)),
        zombie_req_count=int(health.get(ReqHealthStatus.ZOMBIE, 0)),
        at_risk_req_count=int(health.get(ReqHealthStatus.AT_RISK, 0)),
        stagnant_candidate_count=int(ghost_counts.get(GhostStatus.STAGNANT, 0)),
        abandoned_candidate_count=int(ghost_counts.get(GhostStatus.ABANDONED, 0)),
        raw_median_ttf=raw_median,
        true_median_ttf=true_median,
        ttf_difference_percent=difference,
        raw_ttf_sample_size=len(ttf),
        true_ttf_sample_size=len(true_ttf),
        hygiene_score=_hygiene_score(assessments, ghosts, candidates),
        excluded_req_ids=excluded,
        anomalies=anomalies,
        assessments=assessments,
        ghost_candidates=ghosts,
    )
    logger.info(
        "Hygiene: %d open reqs (%d zombie, %d stalled), %d ghost candidates, score=%s",
        summary.open_req_count, summary.zombie_req_count, summary.stalled_req_count,
        len(ghosts), summary.hygiene_score,
    )
    return summary
