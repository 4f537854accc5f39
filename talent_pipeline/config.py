"""Engine configuration: thresholds, policy weights and the TOML loader."""

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path

from talent_pipeline.utils.io import FilePath, load_toml_config
from talent_pipeline.utils.types import CanonicalStage

type ConfigDict = dict[str, str | int | float | bool | list[str] | dict]

logger = logging.getLogger(__name__)

DEFAULT_LEVEL_WEIGHTS = {
    "IC1": 0.8,
    "IC2": 0.9,
    "IC3": 1.0,
    "IC4": 1.15,
    "IC5": 1.3,
    "IC6": 1.5,
    "M1": 1.2,
    "M2": 1.35,
    "M3": 1.5,
    "D1": 1.7,
}

DEFAULT_FAMILY_WEIGHTS = {
    "Engineering": 1.1,
    "Data Science": 1.2,
    "Security": 1.3,
    "Product": 1.05,
    "Design": 1.0,
    "Sales": 0.9,
    "Support": 0.85,
    "G&A": 0.9,
}

DEFAULT_REGION_WEIGHTS = {
    "AMER": 1.0,
    "EMEA": 1.05,
    "APAC": 1.1,
    "LATAM": 1.0,
}

DEFAULT_LOCATION_TYPE_WEIGHTS = {
    "Remote": 0.9,
    "Hybrid": 1.0,
    "Onsite": 1.1,
}

DEFAULT_HARD_MARKETS = ("San Francisco", "New York", "Seattle", "Zurich", "London")


@dataclass(frozen=True)
class HygieneThresholds:
    stalled_days: int = 14
    zombie_days: int = 30
    at_risk_days: int = 120
    at_risk_min_candidates: int = 5
    stagnant_days: int = 10
    abandoned_days: int = 30


@dataclass(frozen=True)
class ExclusionConfig:
    excluded_req_ids: frozenset[str] = field(default_factory=frozenset)
    exclude_zombies_from_ttf: bool = True
    exclude_stalled_from_ttf: bool = False


@dataclass(frozen=True)
class DecayThresholds:
    min_offers_for_decay: int = 10
    min_reqs_for_decay: int = 10
    min_hires_for_cohort: int = 10
    min_bucket_size: int = 3
    offer_bucket_days: int = 7
    req_bucket_days: int = 30
    bucket_count: int = 6
    decay_drop_ratio: float = 0.9
    min_open_req_age_days: int = 30


@dataclass(frozen=True)
class ComplexityWeights:
    level_weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_LEVEL_WEIGHTS))
    family_weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_FAMILY_WEIGHTS))
    region_weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_REGION_WEIGHTS))
    location_type_weights: dict[str, float] = field(default_factory=lambda: dict(DEFAULT_LOCATION_TYPE_WEIGHTS))
    hard_markets: tuple[str, ...] = DEFAULT_HARD_MARKETS
    hard_market_bonus: float = 0.2


@dataclass(frozen=True)
class HMWeightPolicy:
    min_loops: int = 3
    weight_floor: float = 0.8
    weight_ceiling: float = 1.3


@dataclass(frozen=True)
class EngineConfig:
    stage_mapping: dict[str, CanonicalStage] = field(default_factory=dict)
    hygiene: HygieneThresholds = field(default_factory=HygieneThresholds)
    exclusions: ExclusionConfig = field(default_factory=ExclusionConfig)
    decay: DecayThresholds = field(default_factory=DecayThresholds)
    complexity: ComplexityWeights = field(default_factory=ComplexityWeights)
    hm_weight: HMWeightPolicy = field(default_factory=HMWeightPolicy)


DEFAULT_CONFIG = EngineConfig()


def _reset(section, name: str, reason: str):
    default = next(f.default for f in fields(section) if f.name == name)
    logger.warning(
        "Invalid %s.%s=%r (%s); using default %r",
        type(section).__name__, name, getattr(section, name), reason, default,
    )
    return default


def _require_positive(section, names: tuple[str, ...]):
    changes = {}
    for name in names:
        value = getattr(section, name)
        if isinstance(value, bool) or not isinstance(value, int | float) or value <= 0:
            changes[name] = _reset(section, name, "must be a positive number")
    return replace(section, **changes) if changes else section


def _sanitize_hygiene(hygiene: HygieneThresholds) -> HygieneThresholds:
    hygiene = _require_positive(hygiene, tuple(f.name for f in fields(hygiene)))
    if hygiene.stalled_days >= hygiene.zombie_days:
        hygiene = replace(
            hygiene,
            stalled_days=_reset(hygiene, "stalled_days", "must be below zombie_days"),
            zombie_days=_reset(hygiene, "zombie_days", "must exceed stalled_days"),
        )
    if hygiene.abandoned_days <= hygiene.stagnant_days:
        hygiene = replace(
            hygiene,
            stagnant_days=_reset(hygiene, "stagnant_days", "must be below abandoned_days"),
            abandoned_days=_reset(hygiene, "abandoned_days", "must exceed stagnant_days"),
        )
    return hygiene


def _sanitize_decay(decay: DecayThresholds) -> DecayThresholds:
    int_fields = tuple(f.name for f in fields(decay) if f.name != "decay_drop_ratio")
    decay = _require_positive(decay, int_fields)
    ratio = decay.decay_drop_ratio
    if not isinstance(ratio, int | float) or not 0 < ratio <= 1:
        decay = replace(decay, decay_drop_ratio=_reset(decay, "decay_drop_ratio", "must be in (0, 1]"))
    return decay


def _positive_weights(name: str, weights: dict[str, float]) -> dict[str, float]:
    kept = {}
    for key, value in weights.items():
        if isinstance(value, int | float) and value > 0:
            kept[key] = float(value)
        else:
            logger.warning("Dropping non-positive %s weight %r=%r; it will count as 1.0", name, key, value)
    return kept


def _sanitize_complexity(weights: ComplexityWeights) -> ComplexityWeights:
    bonus = weights.hard_market_bonus
    if not isinstance(bonus, int | float) or bonus < 0:
        bonus = _reset(weights, "hard_market_bonus", "must not be negative")
    return replace(
        weights,
        level_weights=_positive_weights("level", weights.level_weights),
        family_weights=_positive_weights("job family", weights.family_weights),
        region_weights=_positive_weights("region", weights.region_weights),
        location_type_weights=_positive_weights("location type", weights.location_type_weights),
        hard_market_bonus=bonus,
    )


def _sanitize_hm_weight(policy: HMWeightPolicy) -> HMWeightPolicy:
    policy = _require_positive(policy, ("min_loops", "weight_floor", "weight_ceiling"))
    if policy.weight_floor > policy.weight_ceiling:
        policy = replace(
            policy,
            weight_floor=_reset(policy, "weight_floor", "floor above ceiling"),
            weight_ceiling=_reset(policy, "weight_ceiling", "ceiling below floor"),
        )
    return policy


def sanitize_config(config: EngineConfig) -> EngineConfig:
    """Clamp out-of-range settings back to their defaults.

    A bad threshold never aborts a metrics refresh; each correction is logged.
    """
    return replace(
        config,
        hygiene=_sanitize_hygiene(config.hygiene),
        decay=_sanitize_decay(config.decay),
        complexity=_sanitize_complexity(config.complexity),
        hm_weight=_sanitize_hm_weight(config.hm_weight),
    )


def _parse_stage_mapping(raw: dict) -> dict[str, CanonicalStage]:
    mapping = {}
    for source_stage, target in raw.items():
        try:
            mapping[source_stage] = CanonicalStage(str(target).upper())
        except ValueError:
            logger.warning("Ignoring mapping %r -> %r: not a canonical stage", source_stage, target)
    return mapping


def _build_section(cls, raw: dict):
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        logger.warning("Ignoring unknown %s keys: %s", cls.__name__, sorted(unknown))
    return cls(**{k: v for k, v in raw.items() if k in known})


def engine_config_from_dict(data: ConfigDict) -> EngineConfig:
    """Build an ``EngineConfig`` from a parsed TOML table."""
    kwargs = {}
    for key, value in data.items():
        match key, value:
            case "stage_mapping", dict(raw):
                kwargs["stage_mapping"] = _parse_stage_mapping(raw)
            case "hygiene", dict(raw):
                kwargs["hygiene"] = _build_section(HygieneThresholds, raw)
            case "exclusions", dict(raw):
                raw = dict(raw)
                raw["excluded_req_ids"] = frozenset(raw.get("excluded_req_ids", ()))
                kwargs["exclusions"] = _build_section(ExclusionConfig, raw)
            case "decay", dict(raw):
                kwargs["decay"] = _build_section(DecayThresholds, raw)
            case "complexity", dict(raw):
                raw = dict(raw)
                if "hard_markets" in raw:
                    raw["hard_markets"] = tuple(raw["hard_markets"])
                kwargs["complexity"] = _build_section(ComplexityWeights, raw)
            case "hm_weight", dict(raw):
                kwargs["hm_weight"] = _build_section(HMWeightPolicy, raw)
            case other, _:
                logger.warning("Ignoring unknown config section: %s", other)
    return sanitize_config(EngineConfig(**kwargs))


def load_engine_config(path: FilePath | None = None) -> EngineConfig:
    """Load engine settings from a TOML file.

    A ``pyproject.toml`` is read from its ``[tool.talent_pipeline]`` table; any
    other file is read whole. Without a path the project's own pyproject is used.
    """
    if path is None:
        path = Path(__file__).parent.parent / "pyproject.toml"
    path = Path(path)
    if not path.exists():
        logger.info("No config file at %s, using defaults", path)
        return DEFAULT_CONFIG

    data = load_toml_config(path)
    if path.name == "pyproject.toml":
        data = data.get("tool", {}).get("talent_pipeline", {})
    return engine_config_from_dict(data)
