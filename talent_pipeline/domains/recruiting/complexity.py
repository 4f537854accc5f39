"""Requisition complexity scoring for weighted hire counts."""

import logging
from collections.abc import Mapping

import pandas as pd

from talent_pipeline.config import DEFAULT_CONFIG, ComplexityWeights, EngineConfig, sanitize_config
from talent_pipeline.domains.recruiting.models import conform_requisitions
from talent_pipeline.utils.types import ComplexityScores

logger = logging.getLogger(__name__)


def _weight(table: Mapping[str, float], key) -> float:
    if not isinstance(key, str):
        return 1.0
    return table.get(key, 1.0)


def _market_weight(location_type, city, weights: ComplexityWeights) -> float:
    market = _weight(weights.location_type_weights, location_type)
    hard_markets = {name.strip().casefold() for name in weights.hard_markets}
    if isinstance(city, str) and city.strip().casefold() in hard_markets:
        market += weights.hard_market_bonus
    return market


def complexity_breakdown(
    requisitions: pd.DataFrame,
    hm_weights: Mapping[str, float],
    config: EngineConfig = DEFAULT_CONFIG,
) -> pd.DataFrame:
    """Per-requisition complexity factors with human-readable reasons.

    Unknown or missing attributes count as a neutral 1.0 so every requisition
    gets a score.
    """
    weights = sanitize_config(config).complexity
    rows = []
    for req in conform_requisitions(requisitions).itertuples(index=False):
        level = _weight(weights.level_weights, req.level)
        family = _weight(weights.family_weights, req.job_family)
        region = _weight(weights.region_weights, req.region)
        market = _market_weight(req.location_type, req.location_city, weights)
        hm = hm_weights.get(req.hiring_manager_id, 1.0) if isinstance(req.hiring_manager_id, str) else 1.0

        reasons = []
        if level != 1.0:
            reasons.append(f"Level {req.level} ({level:.2f}x)")
        if family != 1.0:
            reasons.append(f"{req.job_family} family ({family:.2f}x)")
        if region != 1.0:
            reasons.append(f"{req.region} region ({region:.2f}x)")
        if market != 1.0:
            location = req.location_type if isinstance(req.location_type, str) else "Unknown"
            reasons.append(f"{location} market ({market:.2f}x)")
        if hm != 1.0:
            reasons.append(f"{'Slow' if hm > 1.0 else 'Fast'} hiring manager ({hm:.2f}x)")

        rows.append({
            "req_id": req.req_id,
            "level_weight": level,
            "family_weight": family,
            "region_weight": region,
            "market_weight": market,
            "hm_weight": hm,
            "complexity": level * family * region * market * hm,
            "reasons": reasons or ["Standard requisition"],
        })

    return pd.DataFrame(rows, columns=[
        "req_id", "level_weight", "family_weight", "region_weight",
        "market_weight", "hm_weight", "complexity", "reasons",
    ])


def compute_complexity(
    requisitions: pd.DataFrame,
    hm_weights: Mapping[str, float],
    config: EngineConfig = DEFAULT_CONFIG,
) -> ComplexityScores:
    """Complexity score per requisition, scaled by the owning HM's weight."""
    breakdown = complexity_breakdown(requisitions, hm_weights, config)
    scores = {req_id: float(score) for req_id, score in zip(breakdown["req_id"], breakdown["complexity"])}
    logger.info("Scored complexity for %d requisitions", len(scores))
    return scores


def weighted_hires(hired: pd.DataFrame, scores: Mapping[str, float]) -> float:
    """Sum of complexity over hired candidates; unscored requisitions count as 1.0."""
    return float(sum(scores.get(req_id, 1.0) for req_id in hired["req_id"]))
