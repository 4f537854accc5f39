"""Stage normalization: map free-text ATS stage labels onto the canonical funnel."""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

import pandas as pd

from talent_pipeline.domains.recruiting.models import conform_candidates, conform_events
from talent_pipeline.utils.types import (
    FUNNEL_STAGES,
    STAGE_ORDER,
    STAGE_SUCCESSORS,
    UNMAPPED,
    CanonicalStage,
    EventType,
    StageLabel,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StageRule:
    pattern: str
    target: CanonicalStage
    priority: int

    def matches(self, raw: str) -> bool:
        return re.search(self.pattern, raw, re.IGNORECASE) is not None


def _rules(target: CanonicalStage, priority: int, *patterns: str) -> list[StageRule]:
    return [StageRule(pattern, target, priority) for pattern in patterns]


# Higher priority wins; within a priority, declaration order wins.
STAGE_RULES: tuple[StageRule, ...] = tuple(sorted(
    [
        *_rules(CanonicalStage.WITHDREW, 90,
                r"withdr", r"candidate.*declin", r"offer.*declin", r"no.*longer.*interested"),
        *_rules(CanonicalStage.REJECTED, 85,
                r"reject", r"declin", r"not.*selected", r"not.*hired"),
        *_rules(CanonicalStage.HIRED, 80,
                r"hire", r"accept", r"start.*date"),
        *_rules(CanonicalStage.OFFER, 60,
                r"offer"),
        *_rules(CanonicalStage.HM_SCREEN, 50,
                r"\bhm\b.*(screen|review|interview)", r"(screen|review).*\bhm\b",
                r"hiring.*manager", r"manager.*(screen|review)", r"submitted.*to.*hm", r"tech.*screen"),
        *_rules(CanonicalStage.FINAL, 45,
                r"^final", r"final.*round", r"exec.*interview", r"leadership.*interview", r"debrief"),
        *_rules(CanonicalStage.ONSITE, 40,
                r"on-?site", r"loop", r"panel", r"team.*interview", r"technical.*interview"),
        *_rules(CanonicalStage.SCREEN, 30,
                r"screen", r"phone", r"recruiter.*(call|interview)"),
        *_rules(CanonicalStage.APPLIED, 20,
                r"^appl", r"^new$", r"^submitted$", r"^inbound"),
        *_rules(CanonicalStage.LEAD, 10,
                r"lead", r"prospect", r"sourced"),
    ],
    key=lambda rule: -rule.priority,
))


@dataclass(frozen=True)
class MappingCompleteness:
    is_complete: bool
    missing_stages: tuple[str, ...]
    uncovered_funnel_stages: tuple[CanonicalStage, ...] = ()


@dataclass(frozen=True)
class StageMapping:
    """Raw label -> canonical stage, plus what the current dataset contains."""

    mappings: dict[str, CanonicalStage] = field(default_factory=dict)
    observed_stages: frozenset[str] = field(default_factory=frozenset)
    transition_stages: frozenset[str] = field(default_factory=frozenset)

    def lookup(self) -> dict[str, CanonicalStage]:
        return {_key(raw): CanonicalStage(stage) for raw, stage in self.mappings.items()}

    @property
    def unmapped_stages(self) -> tuple[str, ...]:
        table = self.lookup()
        return tuple(sorted(s for s in self.observed_stages if _key(s) not in table))

    @property
    def is_complete(self) -> bool:
        return validate_mapping_completeness(self).is_complete


@dataclass(frozen=True)
class NormalizedEvents:
    events: pd.DataFrame = field(compare=False, repr=False)
    unmapped_count: int
    unmapped_stages: tuple[str, ...]
    mapping_complete: bool
    missing_stages: tuple[str, ...] = ()


def _key(raw: str) -> str:
    return raw.strip().lower()


def _is_blank(raw) -> bool:
    return raw is None or (not isinstance(raw, str) and pd.isna(raw)) or str(raw).strip() == ""


def stage_order(stage: CanonicalStage | str) -> int:
    return STAGE_ORDER.get(stage, -1)


def next_stage(stage: CanonicalStage) -> CanonicalStage | None:
    """Successor used for pass-through math. Terminal stages have none."""
    return STAGE_SUCCESSORS.get(stage)


def is_progression(from_stage: CanonicalStage, to_stage: CanonicalStage) -> bool:
    if to_stage in (CanonicalStage.REJECTED, CanonicalStage.WITHDREW):
        return False
    return stage_order(to_stage) > stage_order(from_stage)


def _clean_values(series: pd.Series) -> set[str]:
    return {str(v).strip() for v in series.dropna() if str(v).strip()}


def extract_all_stages(candidates: pd.DataFrame, events: pd.DataFrame) -> set[StageLabel]:
    """Every distinct raw stage label seen on candidates and in event transitions."""
    stages = set()
    if "current_stage" in candidates.columns:
        stages |= _clean_values(candidates["current_stage"])
    for col in ("from_stage", "to_stage"):
        if col in events.columns:
            stages |= _clean_values(events[col])
    return stages


def extract_transition_stages(events: pd.DataFrame) -> set[StageLabel]:
    changes = events[events["event_type"] == EventType.STAGE_CHANGE]
    return _clean_values(changes["from_stage"]) | _clean_values(changes["to_stage"])


def suggest_stage(raw: str) -> CanonicalStage | None:
    if _is_blank(raw):
        return None
    raw = str(raw).strip()
    if raw.upper() in CanonicalStage.__members__:
        return CanonicalStage(raw.upper())
    for rule in STAGE_RULES:
        if rule.matches(raw):
            return rule.target
    return None


def auto_suggest_mappings(raw_stages: Iterable[str]) -> dict[str, CanonicalStage]:
    """Propose a canonical stage for each raw label. Unmatched labels are left out."""
    suggestions = {}
    for raw in sorted(raw_stages):
        match suggest_stage(raw):
            case None:
                logger.debug("No suggestion for stage %r", raw)
            case stage:
                suggestions[raw] = stage
    return suggestions


def build_stage_mapping(
    candidates: pd.DataFrame,
    events: pd.DataFrame,
    overrides: Mapping[str, CanonicalStage] | None = None,
) -> StageMapping:
    """Rebuild the mapping for a freshly imported dataset. User overrides win."""
    candidates, events = conform_candidates(candidates), conform_events(events)
    observed = extract_all_stages(candidates, events)
    mappings = auto_suggest_mappings(observed)
    mappings.update(overrides or {})
    mapping = StageMapping(
        mappings=mappings,
        observed_stages=frozenset(observed),
        transition_stages=frozenset(extract_transition_stages(events)),
    )
    if mapping.unmapped_stages:
        logger.warning("Stages without a mapping: %s", ", ".join(mapping.unmapped_stages))
    return mapping


def validate_mapping_completeness(mapping: StageMapping) -> MappingCompleteness:
    """Complete when every label used in an observed transition has a mapping."""
    table = mapping.lookup()
    missing = tuple(sorted(s for s in mapping.transition_stages if _key(s) not in table))
    covered = set(table.values())
    uncovered = tuple(stage for stage in FUNNEL_STAGES if stage not in covered)
    return MappingCompleteness(
        is_complete=not missing,
        missing_stages=missing,
        uncovered_funnel_stages=uncovered,
    )


def _normalize(raw, table: dict[str, CanonicalStage]) -> str | None:
    if _is_blank(raw):
        return None
    return table.get(_key(str(raw)), UNMAPPED)


def normalize_stage(raw: str | None, mapping: StageMapping) -> str | None:
    """Canonical stage for a raw label, ``UNMAPPED`` when unknown, None when blank."""
    return _normalize(raw, mapping.lookup())


def normalize_event_stages(events: pd.DataFrame, mapping: StageMapping) -> pd.DataFrame:
    """Copy of the events with ``canonical_from_stage`` and ``canonical_to_stage``."""
    table = mapping.lookup()
    normalized = conform_events(events)
    normalized["canonical_from_stage"] = normalized["from_stage"].map(lambda v: _normalize(v, table))
    normalized["canonical_to_stage"] = normalized["to_stage"].map(lambda v: _normalize(v, table))
    return normalized


def normalize_candidate_stages(candidates: pd.DataFrame, mapping: StageMapping) -> pd.DataFrame:
    table = mapping.lookup()
    normalized = conform_candidates(candidates)
    normalized["canonical_stage"] = normalized["current_stage"].map(lambda v: _normalize(v, table))
    return normalized


def normalize_stages(raw_events: pd.DataFrame, mapping: StageMapping) -> NormalizedEvents:
    """Rewrite event stages onto the canonical taxonomy without dropping anything."""
    events = normalize_event_stages(raw_events, mapping)
    unmapped = (events["canonical_from_stage"] == UNMAPPED) | (events["canonical_to_stage"] == UNMAPPED)
    completeness = validate_mapping_completeness(mapping)

    unmapped_labels = {
        str(raw).strip()
        for col in ("from_stage", "to_stage")
        for raw in events.loc[events[f"canonical_{col}"] == UNMAPPED, col]
    }

    logger.info("Normalized %d events (%d touching unmapped stages)", len(events), int(unmapped.sum()))
    if not completeness.is_complete:
        logger.warning("Stage mapping incomplete; missing: %s", ", ".join(completeness.missing_stages))

    return NormalizedEvents(
        events=events,
        unmapped_count=int(unmapped.sum()),
        unmapped_stages=tuple(sorted(unmapped_labels)),
        mapping_complete=completeness.is_complete,
        missing_stages=completeness.missing_stages,
    )


def ensure_normalized(
    events: pd.DataFrame,
    overrides: Mapping[str, CanonicalStage] | None = None,
    candidates: pd.DataFrame | None = None,
) -> pd.DataFrame:
    """Return events with canonical stage columns, building a mapping if needed."""
    if {"canonical_from_stage", "canonical_to_stage"} <= set(events.columns):
        return events
    mapping = build_stage_mapping(conform_candidates(candidates), events, overrides)
    return normalize_event_stages(events, mapping)
