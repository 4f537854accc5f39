"""Hiring-manager friction: feedback/decision latency, cycle composition and HM weight."""

import logging

import pandas as pd

from talent_pipeline.config import DEFAULT_CONFIG, EngineConfig, HMWeightPolicy, sanitize_config
from talent_pipeline.domains.recruiting.models import conform_events, conform_requisitions, conform_users
from talent_pipeline.domains.recruiting.stages import ensure_normalized
from talent_pipeline.utils.stats import clamp, median, optional_float, safe_rate
from talent_pipeline.utils.transforms import filter_requisitions, hours_between
from talent_pipeline.utils.types import UNMAPPED, CanonicalStage, EventType, HMWeights, MetricFilters

logger = logging.getLogger(__name__)

LOOP_KEYS = ["candidate_id", "req_id"]
DECISION_EVENTS = (EventType.OFFER_EXTENDED, EventType.REJECTION_SENT)

ACTIVE_BUCKETS = ("sourcing_hours", "screening_hours", "hm_review_hours", "interview_hours")
WAIT_BUCKETS = ("feedback_hours", "decision_hours")
COMPOSITION_BUCKETS = ACTIVE_BUCKETS + WAIT_BUCKETS

STAGE_BUCKETS = {
    CanonicalStage.LEAD: "sourcing_hours",
    CanonicalStage.APPLIED: "sourcing_hours",
    CanonicalStage.SCREEN: "screening_hours",
    CanonicalStage.HM_SCREEN: "hm_review_hours",
}

FRICTION_COLUMNS = [
    "hm_id", "hm_name", "req_count", "loop_count", "decided_loop_count",
    "feedback_latency_median", "decision_latency_median",
    "offers_extended", "offers_accepted", "offer_acceptance_rate",
    *COMPOSITION_BUCKETS,
    "active_time_hours", "total_latency_hours", "total_cycle_hours", "time_tax_percent",
    "hm_weight", "weight_reason",
]


def scoped_requisitions(
    requisitions: pd.DataFrame,
    filters: MetricFilters,
    excluded_req_ids: frozenset[str] = frozenset(),
) -> pd.DataFrame:
    reqs = filter_requisitions(requisitions, filters)
    return reqs[~reqs["req_id"].isin(excluded_req_ids)]


def _attach_next_event(
    loops: pd.DataFrame,
    events: pd.DataFrame,
    event_types: tuple[EventType, ...],
    name: str,
) -> pd.DataFrame:
    """First event of ``event_types`` strictly after each loop's last interview."""
    right = (
        events.loc[events["event_type"].isin(event_types) & events["occurred_at"].notna(), [*LOOP_KEYS, "occurred_at"]]
        .rename(columns={"occurred_at": name})
        .sort_values(name, kind="mergesort")
    )
    return pd.merge_asof(
        loops.sort_values("last_interview_at", kind="mergesort"),
        right,
        left_on="last_interview_at",
        right_on=name,
        by=LOOP_KEYS,
        direction="forward",
        allow_exact_matches=False,
    )


def build_loop_table(events: pd.DataFrame) -> pd.DataFrame:
    """One row per candidate/requisition pair that completed at least one interview.

    Feedback latency runs from the last completed interview to the first
    feedback after it; decision latency from the last interview to the first
    offer or rejection after it. Missing clock-end events leave NaN.
    """
    interviews = events[
        (events["event_type"] == EventType.INTERVIEW_COMPLETED) & events["occurred_at"].notna()
    ]
    if interviews.empty:
        return pd.DataFrame({
            "candidate_id": pd.Series(dtype=object),
            "req_id": pd.Series(dtype=object),
            "first_interview_at": pd.Series(dtype="datetime64[ns]"),
            "last_interview_at": pd.Series(dtype="datetime64[ns]"),
            "interview_count": pd.Series(dtype=int),
            "feedback_at": pd.Series(dtype="datetime64[ns]"),
            "decision_at": pd.Series(dtype="datetime64[ns]"),
            "feedback_hours": pd.Series(dtype=float),
            "decision_hours": pd.Series(dtype=float),
        })

    loops = interviews.groupby(LOOP_KEYS, as_index=False).agg(
        first_interview_at=("occurred_at", "min"),
        last_interview_at=("occurred_at", "max"),
        interview_count=("occurred_at", "count"),
    )
    loops = _attach_next_event(loops, events, (EventType.FEEDBACK_SUBMITTED,), "feedback_at")
    loops = _attach_next_event(loops, events, DECISION_EVENTS, "decision_at")
    loops["feedback_hours"] = hours_between(loops["feedback_at"], loops["last_interview_at"])
    loops["decision_hours"] = hours_between(loops["decision_at"], loops["last_interview_at"])
    return loops.sort_values(["req_id", "candidate_id"], kind="mergesort").reset_index(drop=True)


def _bucket_for(at: pd.Timestamp, stage, last_interview_at, feedback_at) -> str:
    if at >= last_interview_at:
        if pd.notna(feedback_at) and at < feedback_at:
            return "feedback_hours"
        return "decision_hours"
    if stage is None or stage == UNMAPPED:
        return "sourcing_hours"
    return STAGE_BUCKETS.get(stage, "interview_hours")


def loop_composition(timeline: pd.DataFrame, loop) -> dict[str, float]:
    """Split one loop's cycle, first event to decision, into the six time buckets.

    Every interval between consecutive events lands in exactly one bucket, so
    the buckets always add up to the full cycle.
    """
    buckets = dict.fromkeys(COMPOSITION_BUCKETS, 0.0)
    feedback_at = loop.feedback_at if pd.notna(loop.feedback_at) and loop.feedback_at <= loop.decision_at else pd.NaT
    rows = list(timeline[timeline["occurred_at"] <= loop.decision_at].itertuples(index=False))

    stage = None
    for current, following in zip(rows, rows[1:]):
        if current.event_type == EventType.STAGE_CHANGE and isinstance(current.canonical_to_stage, str):
            stage = current.canonical_to_stage
        span = (following.occurred_at - current.occurred_at).total_seconds() / 3600.0
        buckets[_bucket_for(current.occurred_at, stage, loop.last_interview_at, feedback_at)] += span
    return buckets


def _composition_by_loop(events: pd.DataFrame, loops: pd.DataFrame) -> pd.DataFrame:
    decided = loops[loops["decision_at"].notna()]
    if decided.empty:
        return pd.DataFrame(columns=[*LOOP_KEYS, *COMPOSITION_BUCKETS])

    ordered = events[events["occurred_at"].notna()].sort_values("occurred_at", kind="mergesort")
    timelines = {key: group for key, group in ordered.groupby(LOOP_KEYS)}
    rows = []
    for loop in decided.itertuples(index=False):
        timeline = timelines[(loop.candidate_id, loop.req_id)]
        rows.append({"candidate_id": loop.candidate_id, "req_id": loop.req_id, **loop_composition(timeline, loop)})
    return pd.DataFrame(rows)


def _summarize_composition(composition: pd.DataFrame) -> dict[str, float | None]:
    if composition.empty:
        return {
            **dict.fromkeys(COMPOSITION_BUCKETS),
            "active_time_hours": None,
            "total_latency_hours": None,
            "total_cycle_hours": None,
            "time_tax_percent": None,
        }
    means = {bucket: float(composition[bucket].mean()) for bucket in COMPOSITION_BUCKETS}
    active = sum(means[b] for b in ACTIVE_BUCKETS)
    latency = sum(means[b] for b in WAIT_BUCKETS)
    total = active + latency
    return {
        **means,
        "active_time_hours": active,
        "total_latency_hours": latency,
        "total_cycle_hours": total,
        "time_tax_percent": latency / total * 100 if total > 0 else None,
    }


def _hm_weight(
    loop_count: int,
    decision_median: float | None,
    population_median: float | None,
    policy: HMWeightPolicy,
) -> tuple[float, str]:
    match (loop_count, decision_median, population_median):
        case (n, _, _) if n < policy.min_loops:
            return 1.0, f"Only {n} loops (need {policy.min_loops})"
        case (_, None, _):
            return 1.0, "No decision latency recorded"
        case (_, _, p) if not p:
            return 1.0, "No population median available"
        case (_, d, p):
            ratio = d / p
            weight = clamp(ratio, policy.weight_floor, policy.weight_ceiling)
            if weight != ratio:
                return weight, f"Decision latency {ratio:.2f}x median (clamped)"
            return weight, f"Decision latency {ratio:.2f}x median"


def compute_hm_friction(
    requisitions: pd.DataFrame,
    events: pd.DataFrame,
    users: pd.DataFrame,
    filters: MetricFilters,
    config: EngineConfig = DEFAULT_CONFIG,
    excluded_req_ids: frozenset[str] = frozenset(),
) -> pd.DataFrame:
    """One row per hiring manager with latency medians, composition and weight."""
    config = sanitize_config(config)
    excluded = frozenset(excluded_req_ids) | config.exclusions.excluded_req_ids
    reqs = scoped_requisitions(conform_requisitions(requisitions), filters, excluded)
    reqs = reqs[reqs["hiring_manager_id"].notna()]
    hm_of_req = reqs.set_index("req_id")["hiring_manager_id"]

    events = ensure_normalized(conform_events(events), config.stage_mapping)
    events = events[events["req_id"].isin(hm_of_req.index)]
    loops = build_loop_table(events)
    loops = loops[filters.window_mask(loops["last_interview_at"])].copy()
    loops["hm_id"] = loops["req_id"].map(hm_of_req)
    composition = _composition_by_loop(events, loops)
    composition["hm_id"] = composition["req_id"].map(hm_of_req)

    in_window = events[filters.window_mask(events["occurred_at"])].copy()
    in_window["hm_id"] = in_window["req_id"].map(hm_of_req)
    names = conform_users(users).drop_duplicates("user_id").set_index("user_id")["name"]

    rows = []
    for hm_id, hm_reqs in reqs.groupby("hiring_manager_id", sort=True):
        hm_loops = loops[loops["hm_id"] == hm_id]
        hm_events = in_window[in_window["hm_id"] == hm_id]
        offers = int((hm_events["event_type"] == EventType.OFFER_EXTENDED).sum())
        accepted = int((hm_events["event_type"] == EventType.OFFER_ACCEPTED).sum())
        name = names.get(hm_id)
        rows.append({
            "hm_id": hm_id,
            "hm_name": name if isinstance(name, str) else hm_id,
            "req_count": len(hm_reqs),
            "loop_count": len(hm_loops),
            "decided_loop_count": int(hm_loops["decision_at"].notna().sum()),
            "feedback_latency_median": median(hm_loops["feedback_hours"]),
            "decision_latency_median": median(hm_loops["decision_hours"]),
            "offers_extended": offers,
            "offers_accepted": accepted,
            "offer_acceptance_rate": safe_rate(accepted, offers),
            **_summarize_composition(composition[composition["hm_id"] == hm_id]),
        })

    population_median = median(row["decision_latency_median"] for row in rows)
    for row in rows:
        row["hm_weight"], row["weight_reason"] = _hm_weight(
            row["loop_count"], optional_float(row["decision_latency_median"]), population_median, config.hm_weight,
        )

    friction = pd.DataFrame(rows, columns=FRICTION_COLUMNS)
    logger.info("Computed friction for %d hiring managers (%d loops)", len(friction), len(loops))
    return friction


def hm_weights_from_friction(friction: pd.DataFrame) -> HMWeights:
    return {row.hm_id: float(row.hm_weight) for row in friction.itertuples(index=False)}


def median_decision_latency(events: pd.DataFrame, filters: MetricFilters) -> float | None:
    """Median decision latency across every loop in the window, regardless of HM."""
    loops = build_loop_table(events)
    return median(loops.loc[filters.window_mask(loops["last_interview_at"]), "decision_hours"])
