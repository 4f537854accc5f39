import pandas as pd
import pytest

from talent_pipeline.config import EngineConfig, ExclusionConfig, HygieneThresholds
from talent_pipeline.domains.recruiting.hygiene import (
    classify_req_health,
    compute_hygiene,
    count_anomalies,
    get_active_req_ids,
    time_to_fill_by_req,
)
from talent_pipeline.domains.recruiting.models import conform_candidates, conform_events, conform_requisitions
from talent_pipeline.utils.types import MetricFilters, ReqHealthStatus

from tests.builders import frame, make_candidate, make_event, make_req, stage_change

AS_OF = pd.Timestamp("2024-06-30")


def _day(base: str, offset: int) -> str:
    return str((pd.Timestamp(base) + pd.Timedelta(days=offset)).date())


def _ten_req_snapshot():
    """Nine closed reqs filled in 20-28 days plus one open zombie filled after 135 days."""
    reqs, candidates = [], []
    for i in range(9):
        filled = _day("2024-03-01", 20 + i)
        reqs.append(make_req(f"r{i}", status="Closed", opened_at="2024-03-01", closed_at=filled))
        candidates.append(make_candidate(
            f"c{i}", f"r{i}", disposition="Hired", current_stage="Hired",
            current_stage_entered_at=filled, hired_at=filled,
        ))
    reqs.append(make_req("r9", status="Open", opened_at="2024-01-01"))
    candidates.append(make_candidate(
        "c9", "r9", disposition="Hired", current_stage="Hired",
        current_stage_entered_at="2024-05-15", hired_at="2024-05-15",
    ))
    return frame(reqs), frame(candidates), frame([])


def test_inactive_open_req_is_zombie_and_leaves_true_ttf():
    reqs, candidates, events = _ten_req_snapshot()
    summary = compute_hygiene(reqs, candidates, events, as_of=AS_OF)

    assert summary.zombie_req_count == 1
    assert summary.excluded_req_ids == frozenset({"r9"})
    assert summary.raw_ttf_sample_size == 10
    assert summary.true_ttf_sample_size == 9
    assert summary.raw_median_ttf == pytest.approx(24.5)
    assert summary.true_median_ttf == pytest.approx(24.0)
    assert summary.true_median_ttf != summary.raw_median_ttf
    assert summary.ttf_difference_percent == pytest.approx((24.5 - 24.0) / 24.5 * 100)


def test_zombies_stay_in_ttf_when_overlay_disabled():
    reqs, candidates, events = _ten_req_snapshot()
    config = EngineConfig(exclusions=ExclusionConfig(exclude_zombies_from_ttf=False))
    summary = compute_hygiene(reqs, candidates, events, config, as_of=AS_OF)

    assert summary.excluded_req_ids == frozenset()
    assert summary.true_median_ttf == summary.raw_median_ttf


def test_explicit_exclusions_join_the_overlay():
    reqs, candidates, events = _ten_req_snapshot()
    config = EngineConfig(exclusions=ExclusionConfig(excluded_req_ids=frozenset({"r0"})))
    summary = compute_hygiene(reqs, candidates, events, config, as_of=AS_OF)

    assert summary.excluded_req_ids == frozenset({"r0", "r9"})
    assert summary.true_ttf_sample_size == 8
    excluded = summary.assessments.set_index("req_id")["excluded_from_metrics"]
    assert excluded["r0"] and excluded["r9"] and not excluded["r1"]


def test_recent_events_keep_an_open_req_active():
    reqs = frame([make_req("r1", opened_at="2024-06-01")])
    candidates = frame([make_candidate("c1", "r1", current_stage_entered_at="2024-06-02")])
    events = frame([stage_change("c1", "r1", "Applied", "Phone Screen", "2024-06-25")])
    summary = compute_hygiene(reqs, candidates, events, as_of=AS_OF)

    assert summary.active_req_count == 1
    assert get_active_req_ids(summary.assessments, summary.excluded_req_ids) == frozenset({"r1"})
    assert summary.assessments.loc[0, "days_since_last_activity"] == 5


@pytest.mark.parametrize(
    ("days_idle", "days_open", "candidates", "expected"),
    [
        (13, 40, 10, ReqHealthStatus.ACTIVE),
        (14, 40, 10, ReqHealthStatus.STALLED),
        (30, 40, 10, ReqHealthStatus.STALLED),
        (31, 40, 10, ReqHealthStatus.ZOMBIE),
        (5, 150, 2, ReqHealthStatus.AT_RISK),
        (20, 150, 2, ReqHealthStatus.AT_RISK),
        (45, 150, 2, ReqHealthStatus.ZOMBIE),
        (5, 150, 8, ReqHealthStatus.ACTIVE),
    ],
)
def test_req_health_thresholds(days_idle, days_open, candidates, expected):
    status, reasons = classify_req_health(days_idle, days_open, candidates, HygieneThresholds())
    assert status == expected
    assert reasons


def test_closed_reqs_have_no_health_status():
    reqs = frame([make_req("r1", status="Closed", opened_at="2024-01-01", closed_at="2024-02-01")])
    summary = compute_hygiene(reqs, frame([]), frame([]), as_of=AS_OF)

    assert summary.open_req_count == 0
    assert summary.assessments.loc[0, "health_status"] is None


def test_ghost_candidates_by_days_in_stage():
    reqs = frame([make_req("r1", opened_at="2024-06-01")])
    candidates = frame([
        make_candidate("fresh", "r1", current_stage_entered_at=_day("2024-06-30", -5)),
        make_candidate("stagnant", "r1", current_stage_entered_at=_day("2024-06-30", -12)),
        make_candidate("abandoned", "r1", current_stage_entered_at=_day("2024-06-30", -40)),
        make_candidate("closed-out", "r1", disposition="Rejected", current_stage_entered_at=_day("2024-06-30", -60)),
    ])
    summary = compute_hygiene(reqs, candidates, frame([]), as_of=AS_OF)

    assert summary.stagnant_candidate_count == 1
    assert summary.abandoned_candidate_count == 1
    ghosts = summary.ghost_candidates.set_index("candidate_id")["ghost_status"]
    assert ghosts.to_dict() == {"stagnant": "STAGNANT", "abandoned": "ABANDONED"}


def test_hygiene_score_drops_as_reqs_go_stale():
    candidates = frame([make_candidate("c1", "r1", current_stage_entered_at="2024-06-28")])
    healthy = compute_hygiene(frame([make_req("r1", opened_at="2024-06-01")]), candidates, frame([]), as_of=AS_OF)
    stale = compute_hygiene(
        frame([make_req("r1", opened_at="2024-06-01"), make_req("r2", opened_at="2024-04-01")]),
        candidates, frame([]), as_of=AS_OF,
    )

    assert healthy.hygiene_score == 100
    assert stale.hygiene_score < healthy.hygiene_score


def test_empty_snapshot_reports_unavailable_values():
    summary = compute_hygiene(frame([]), frame([]), frame([]), as_of=AS_OF)

    assert summary.hygiene_score is None
    assert summary.raw_median_ttf is None
    assert summary.ttf_difference_percent is None
    assert summary.anomalies.total == 0


def test_anomalous_records_are_counted():
    reqs = conform_requisitions(frame([
        make_req("r1"),
        make_req("inverted", status="Closed", opened_at="2024-03-01", closed_at="2024-02-01"),
    ]))
    candidates = conform_candidates(frame([
        make_candidate("c1", "r1"),
        make_candidate("c2", "missing-req"),
    ]))
    events = conform_events(frame([
        stage_change("c1", "r1", "Onsite", "onsite ", "2024-03-02"),
        make_event("c9", "unknown-req", "NOTE_ADDED", "2024-03-03"),
    ]))
    anomalies = count_anomalies(reqs, candidates, events)

    assert anomalies.self_transition_events == 1
    assert anomalies.inverted_req_dates == 1
    assert anomalies.orphan_events == 1
    assert anomalies.orphan_candidates == 1
    assert anomalies.total == 4


def test_inverted_reqs_are_left_out_of_time_to_fill():
    reqs = conform_requisitions(frame([
        make_req("ok", status="Closed", opened_at="2024-03-01", closed_at="2024-03-31"),
        make_req("inverted", status="Closed", opened_at="2024-03-01", closed_at="2024-02-01"),
    ]))
    ttf = time_to_fill_by_req(reqs, conform_candidates(frame([])))

    assert list(ttf["req_id"]) == ["ok"]
    assert list(ttf["ttf_days"]) == [30]


def test_mixed_timestamp_formats_parse_and_failures_are_counted():
    events = conform_events(frame([
        make_event("c1", "r1", "NOTE_ADDED", "2024-03-03 10:00:00"),
        make_event("c1", "r1", "NOTE_ADDED", "2024-03-12 09:00"),
        make_event("c1", "r1", "NOTE_ADDED", "2024-03-01"),
        make_event("c1", "r1", "NOTE_ADDED", "2024-03-05T10:00:00"),
        make_event("c1", "r1", "NOTE_ADDED", "pending"),
        make_event("c1", "r1", "NOTE_ADDED", ""),
        make_event("c1", "r1", "NOTE_ADDED", None),
    ]))

    assert list(events["occurred_at"].iloc[:4]) == [
        pd.Timestamp("2024-03-03 10:00"),
        pd.Timestamp("2024-03-12 09:00"),
        pd.Timestamp("2024-03-01"),
        pd.Timestamp("2024-03-05 10:00"),
    ]
    assert events["occurred_at"].iloc[4:].isna().all()

    summary = compute_hygiene(frame([make_req("r1")]), frame([]), events, as_of=AS_OF)
    assert summary.anomalies.unparseable_timestamps == 1
    assert summary.anomalies.total == 1


def test_repeated_requisition_ids_keep_the_last_row_and_are_counted():
    reqs = frame([
        make_req("r1", status="Closed", closed_at="2024-02-01"),
        make_req("r1"),
        make_req("r2"),
    ])
    summary = compute_hygiene(reqs, frame([]), frame([]), as_of=AS_OF)

    assert summary.anomalies.duplicate_requisitions == 1
    assert list(summary.assessments["req_id"]) == ["r1", "r2"]
    assert summary.open_req_count == 2


def test_offset_timestamps_compare_against_naive_windows():
    events = conform_events(frame([
        make_event("c1", "r1", "NOTE_ADDED", "2024-03-05T10:00:00Z"),
        make_event("c1", "r1", "NOTE_ADDED", "2024-03-05T12:00:00+02:00"),
    ]))
    assert events["occurred_at"].dt.tz is None
    assert (events["occurred_at"] == pd.Timestamp("2024-03-05 10:00")).all()

    filters = MetricFilters(start="2024-03-01T00:00:00Z", end="2024-03-31", as_of="2024-04-01T00:00:00-05:00")
    assert filters.as_of == pd.Timestamp("2024-04-01 05:00")
    assert filters.window_mask(events["occurred_at"]).all()

    reqs = frame([make_req("r1", opened_at="2024-02-01T09:00:00Z")])
    summary = compute_hygiene(reqs, frame([]), events, as_of=filters.as_of)
    assert summary.assessments.loc[0, "days_since_last_activity"] == 26
