import pytest

from talent_pipeline.config import ComplexityWeights, EngineConfig
from talent_pipeline.domains.recruiting.complexity import complexity_breakdown, compute_complexity, weighted_hires

from tests.builders import frame, make_candidate, make_req


def test_standard_requisition_scores_one():
    scores = compute_complexity(frame([make_req("r1")]), {})
    assert scores == {"r1": 1.0}


def test_unknown_attributes_count_as_neutral():
    reqs = frame([make_req("r1", level="ZZ9", job_family=None, region="Antarctica", location_type=None)])
    assert compute_complexity(reqs, {})["r1"] == pytest.approx(1.0)


def test_score_grows_with_hiring_manager_weight():
    reqs = frame([make_req("r1", hiring_manager_id="hm-1")])
    fast = compute_complexity(reqs, {"hm-1": 0.8})["r1"]
    neutral = compute_complexity(reqs, {})["r1"]
    slow = compute_complexity(reqs, {"hm-1": 1.3})["r1"]

    assert fast < neutral < slow
    assert slow == pytest.approx(1.3)


def test_hard_market_senior_role():
    reqs = frame([make_req(
        "r1", level="IC5", job_family="Security", location_type="Onsite", location_city="San Francisco",
    )])
    breakdown = complexity_breakdown(reqs, {}).iloc[0]

    assert breakdown["market_weight"] == pytest.approx(1.3)
    assert breakdown["complexity"] == pytest.approx(1.3 * 1.3 * 1.3)
    assert any("Security" in reason for reason in breakdown["reasons"])


@pytest.mark.parametrize("city", ["san francisco", "SAN FRANCISCO", " San Francisco "])
def test_hard_market_match_ignores_case(city):
    reqs = frame([make_req("r1", location_type="Onsite", location_city=city)])
    standard = frame([make_req("r1", location_type="Onsite", location_city="Boise")])

    hard = complexity_breakdown(reqs, {}).iloc[0]["market_weight"]
    base = complexity_breakdown(standard, {}).iloc[0]["market_weight"]
    assert hard - base == pytest.approx(0.2)


def test_configured_weights_replace_defaults():
    config = EngineConfig(complexity=ComplexityWeights(level_weights={"IC3": 2.0}))
    assert compute_complexity(frame([make_req("r1")]), {}, config)["r1"] == pytest.approx(2.0)


def test_weighted_hires_defaults_unscored_reqs_to_one():
    hired = frame([
        make_candidate("c1", "r1"),
        make_candidate("c2", "r1"),
        make_candidate("c3", "r-unscored"),
    ])
    assert weighted_hires(hired, {"r1": 1.5}) == pytest.approx(4.0)
