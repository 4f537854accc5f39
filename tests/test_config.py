import logging

from talent_pipeline.config import (
    DEFAULT_CONFIG,
    DecayThresholds,
    EngineConfig,
    HMWeightPolicy,
    HygieneThresholds,
    engine_config_from_dict,
    load_engine_config,
    sanitize_config,
)
from talent_pipeline.utils.types import CanonicalStage


def test_defaults_are_left_untouched():
    assert sanitize_config(DEFAULT_CONFIG) == DEFAULT_CONFIG


def test_negative_day_counts_fall_back_to_defaults(caplog):
    config = EngineConfig(hygiene=HygieneThresholds(stalled_days=-3, at_risk_min_candidates=0))
    with caplog.at_level(logging.WARNING):
        hygiene = sanitize_config(config).hygiene

    assert hygiene.stalled_days == 14
    assert hygiene.at_risk_min_candidates == 5
    assert "stalled_days" in caplog.text


def test_inverted_thresholds_are_reset_together():
    hygiene = sanitize_config(EngineConfig(hygiene=HygieneThresholds(stalled_days=40, zombie_days=30))).hygiene
    assert (hygiene.stalled_days, hygiene.zombie_days) == (14, 30)

    policy = sanitize_config(EngineConfig(hm_weight=HMWeightPolicy(weight_floor=1.5, weight_ceiling=1.1))).hm_weight
    assert (policy.weight_floor, policy.weight_ceiling) == (0.8, 1.3)


def test_decay_ratio_must_be_a_fraction():
    for bad in (0, 1.5, "steep"):
        decay = sanitize_config(EngineConfig(decay=DecayThresholds(decay_drop_ratio=bad))).decay
        assert decay.decay_drop_ratio == 0.9


def test_config_from_dict_parses_every_section():
    config = engine_config_from_dict({
        "stage_mapping": {"Culture Add": "onsite", "Parking Lot": "NOT_A_STAGE"},
        "hygiene": {"stalled_days": 7, "zombie_days": 21},
        "exclusions": {"excluded_req_ids": ["r1", "r2"], "exclude_stalled_from_ttf": True},
        "decay": {"min_offers_for_decay": 25},
        "complexity": {"hard_markets": ["Austin"], "level_weights": {"IC3": 1.1}},
        "hm_weight": {"min_loops": 5},
    })

    assert config.stage_mapping == {"Culture Add": CanonicalStage.ONSITE}
    assert (config.hygiene.stalled_days, config.hygiene.zombie_days) == (7, 21)
    assert config.exclusions.excluded_req_ids == frozenset({"r1", "r2"})
    assert config.exclusions.exclude_stalled_from_ttf is True
    assert config.decay.min_offers_for_decay == 25
    assert config.complexity.hard_markets == ("Austin",)
    assert config.complexity.level_weights == {"IC3": 1.1}
    assert config.hm_weight.min_loops == 5


def test_unknown_keys_are_ignored(caplog):
    with caplog.at_level(logging.WARNING):
        config = engine_config_from_dict({"hygiene": {"stalled_days": 10, "colour": "red"}, "alerts": {}})

    assert config.hygiene.stalled_days == 10
    assert "colour" in caplog.text
    assert "alerts" in caplog.text


def test_loads_tool_table_from_pyproject(tmp_path):
    pyproject = tmp_path / "pyproject.toml"
    pyproject.write_text(
        '[project]\nname = "demo"\n\n'
        "[tool.talent_pipeline.hygiene]\nstalled_days = 7\n\n"
        '[tool.talent_pipeline.stage_mapping]\n"Bar Raiser" = "FINAL"\n'
    )
    config = load_engine_config(pyproject)

    assert config.hygiene.stalled_days == 7
    assert config.stage_mapping == {"Bar Raiser": CanonicalStage.FINAL}


def test_loads_standalone_toml(tmp_path):
    path = tmp_path / "engine.toml"
    path.write_text("[hygiene]\nzombie_days = 45\n")
    assert load_engine_config(path).hygiene.zombie_days == 45


def test_missing_config_file_uses_defaults(tmp_path):
    assert load_engine_config(tmp_path / "absent.toml") == DEFAULT_CONFIG
