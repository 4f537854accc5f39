import pandas as pd
import pytest

from talent_pipeline.config import DecayThresholds
from talent_pipeline.domains.recruiting.models import conform_candidates, conform_events, conform_requisitions
from talent_pipeline.domains.recruiting.velocity import (
    compare_factor,
    compute_candidate_decay,
    compute_req_decay,
    compute_velocity,
)
from talent_pipeline.utils.stats import EMPTY_DISPLAY, format_metric
from talent_pipeline.utils.types import ConfidenceLevel, ImpactLevel, MetricFilters

from tests.builders import frame, make_candidate, make_event, make_req

MARCH = MetricFilters(start="2024-03-01", end="2024-03-31")
FIRST_HALF = MetricFilters(start="2024-01-01", end="2024-06-30")


def _offer(candidate_id: str, accepted: bool, decided_after_days: int) -> dict:
    decided = str((pd.Timestamp("2024-03-01") + pd.Timedelta(days=decided_after_days)).date())
    if accepted:
        return make_candidate(
            candidate_id, "r1", disposition="Hired", offer_extended_at="2024-03-01",
            offer_accepted_at=decided, current_stage_entered_at=decided,
        )
    return make_candidate(
        candidate_id, "r1", disposition="Withdrawn", offer_extended_at="2024-03-01",
        current_stage_entered_at=decided,
    )


def test_two_offers_are_insufficient_for_a_decay_curve():
    candidates = conform_candidates(frame([_offer("c1", True, 2), _offer("c2", False, 20)]))
    curve = compute_candidate_decay(candidates, conform_events(frame([])), MARCH, DecayThresholds())

    assert curve.total == 2
    assert curve.confidence.level == ConfidenceLevel.INSUFFICIENT
    assert curve.decay_start_day is None
    assert format_metric(curve.overall_rate, curve.confidence) == EMPTY_DISPLAY


def test_decay_starts_where_acceptance_goes_cold():
    rows = [_offer(f"fast{i}", True, 3) for i in range(10)]
    rows += [_offer(f"slow{i}", False, 15) for i in range(10)]
    curve = compute_candidate_decay(
        conform_candidates(frame(rows)), conform_events(frame([])), MARCH, DecayThresholds(),
    )

    assert curve.confidence.level == ConfidenceLevel.HIGH
    assert curve.overall_rate == pytest.approx(0.5)
    assert curve.decay_start_day == 14
    points = {point.label: point for point in curve.points}
    assert points["0-6"].rate == 1.0
    assert points["7-13"].rate is None
    assert points["14-20"].rate == 0.0
    assert points["14-20"].cumulative_rate == pytest.approx(0.5)


def test_decline_event_sets_the_decision_day():
    candidates = conform_candidates(frame([
        make_candidate("c1", "r1", disposition="Active", offer_extended_at="2024-03-01"),
    ]))
    events = conform_events(frame([make_event("c1", "r1", "OFFER_DECLINED", "2024-03-09")]))
    curve = compute_candidate_decay(candidates, events, MARCH, DecayThresholds())

    assert curve.median_days == 8.0
    assert curve.successes == 0


def test_req_decay_skips_canceled_and_young_open_reqs():
    reqs = conform_requisitions(frame([
        make_req("closed", status="Closed", opened_at="2024-02-10", closed_at="2024-03-01"),
        make_req("old-open", status="Open", opened_at="2023-12-01"),
        make_req("young-open", status="Open", opened_at="2024-03-20"),
        make_req("canceled", status="Canceled", opened_at="2024-01-01", closed_at="2024-03-05"),
    ]))
    curve = compute_req_decay(reqs, MARCH, DecayThresholds())

    assert curve.total == 2
    assert curve.successes == 1
    assert curve.confidence.level == ConfidenceLevel.INSUFFICIENT


@pytest.mark.parametrize(
    ("fast", "slow", "expected"),
    [
        ([10.0, 10.0], [50.0, 50.0], ImpactLevel.HIGH),
        ([10.0, 10.0], [13.0, 13.0], ImpactLevel.MEDIUM),
        ([10.0, 10.0], [11.0, 11.0], ImpactLevel.LOW),
        ([0.0], [0.0], ImpactLevel.LOW),
    ],
)
def test_factor_impact_from_normalized_gap(fast, slow, expected):
    comparison = compare_factor("pipeline_depth", pd.Series(fast), pd.Series(slow))
    assert comparison.impact_level == expected


def _filled_reqs(ttf_by_req: dict[str, int]):
    reqs, candidates = [], []
    for req_id, ttf in ttf_by_req.items():
        filled = str((pd.Timestamp("2024-02-01") + pd.Timedelta(days=ttf)).date())
        reqs.append(make_req(req_id, status="Closed", opened_at="2024-02-01", closed_at=filled))
        candidates.append(make_candidate(
            f"cand-{req_id}", req_id, disposition="Hired", hired_at=filled, current_stage_entered_at=filled,
        ))
    return frame(reqs), frame(candidates)


def test_cohort_quartiles_break_ties_by_req_id():
    ttf = {
        "r-d": 10, "r-a": 10, "r-c": 10, "r-b": 10,
        "r-e": 20, "r-f": 25, "r-g": 30, "r-h": 35,
        "r-z": 50, "r-x": 50, "r-w": 50, "r-y": 50,
    }
    reqs, candidates = _filled_reqs(ttf)
    velocity = compute_velocity(candidates, reqs, frame([]), frame([]), FIRST_HALF)
    cohort = velocity.cohort

    assert cohort.fast_req_ids == ("r-a", "r-b", "r-c")
    assert cohort.slow_req_ids == ("r-x", "r-y", "r-z")
    assert cohort.fast_median_ttf == 10.0
    assert cohort.slow_median_ttf == 50.0
    assert cohort.confidence.level == ConfidenceLevel.LOW
    assert cohort.factors[0].factor == "time_to_fill_days"
    assert cohort.factors[0].impact_level == ImpactLevel.HIGH


def test_cohort_needs_minimum_filled_reqs():
    reqs, candidates = _filled_reqs({f"r{i}": 10 + i for i in range(4)})
    cohort = compute_velocity(candidates, reqs, frame([]), frame([]), FIRST_HALF).cohort

    assert cohort.confidence.level == ConfidenceLevel.INSUFFICIENT
    assert cohort.fast_req_ids == ()
    assert cohort.factors == ()


def test_hm_weight_factor_only_when_weights_supplied():
    ttf = {f"r{i:02d}": 10 + i for i in range(12)}
    reqs, candidates = _filled_reqs(ttf)

    without = compute_velocity(candidates, reqs, frame([]), frame([]), FIRST_HALF).cohort
    with_weights = compute_velocity(
        candidates, reqs, frame([]), frame([]), FIRST_HALF, hm_weights={"hm-1": 1.2},
    ).cohort

    assert "hm_weight" not in {f.factor for f in without.factors}
    assert "hm_weight" in {f.factor for f in with_weights.factors}


def test_hm_offer_acceptance_rates():
    reqs = frame([make_req("r1", hiring_manager_id="hm-1")])
    candidates = frame([_offer("c1", True, 2), _offer("c2", False, 5)])
    velocity = compute_velocity(candidates, reqs, frame([]), frame([]), MARCH)

    (acceptance,) = velocity.hm_offer_acceptance
    assert (acceptance.hm_id, acceptance.offers, acceptance.accepted) == ("hm-1", 2, 1)
    assert acceptance.rate == pytest.approx(0.5)


def test_repeated_requisition_rows_use_the_latest_manager():
    reqs = frame([make_req("r1", hiring_manager_id="hm-old"), make_req("r1", hiring_manager_id="hm-1")])
    candidates = frame([_offer("c1", True, 2), _offer("c2", False, 5)])
    velocity = compute_velocity(candidates, reqs, frame([]), frame([]), MARCH)

    (acceptance,) = velocity.hm_offer_acceptance
    assert (acceptance.hm_id, acceptance.offers) == ("hm-1", 2)
