"""Shared type definitions for the recruiting metrics engine."""

from dataclasses import dataclass, field, replace
from enum import StrEnum

import pandas as pd


type RecordID = str
type MetricValue = int | float | None
type StageLabel = str
type HMWeights = dict[str, float]
type ComplexityScores = dict[str, float]

UNMAPPED = "UNMAPPED"


class CanonicalStage(StrEnum):
    LEAD = "LEAD"
    APPLIED = "APPLIED"
    SCREEN = "SCREEN"
    HM_SCREEN = "HM_SCREEN"
    ONSITE = "ONSITE"
    FINAL = "FINAL"
    OFFER = "OFFER"
    HIRED = "HIRED"
    REJECTED = "REJECTED"
    WITHDREW = "WITHDREW"


class EventType(StrEnum):
    STAGE_CHANGE = "STAGE_CHANGE"
    INTERVIEW_SCHEDULED = "INTERVIEW_SCHEDULED"
    INTERVIEW_COMPLETED = "INTERVIEW_COMPLETED"
    FEEDBACK_SUBMITTED = "FEEDBACK_SUBMITTED"
    OFFER_REQUESTED = "OFFER_REQUESTED"
    OFFER_APPROVED = "OFFER_APPROVED"
    OFFER_EXTENDED = "OFFER_EXTENDED"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    OFFER_DECLINED = "OFFER_DECLINED"
    CANDIDATE_WITHDREW = "CANDIDATE_WITHDREW"
    REJECTION_SENT = "REJECTION_SENT"
    NOTE_ADDED = "NOTE_ADDED"
    EMAIL_SENT = "EMAIL_SENT"
    OUTREACH_SENT = "OUTREACH_SENT"
    SCREEN_COMPLETED = "SCREEN_COMPLETED"


class RequisitionStatus(StrEnum):
    OPEN = "Open"
    CLOSED = "Closed"
    ON_HOLD = "OnHold"
    CANCELED = "Canceled"


class Disposition(StrEnum):
    ACTIVE = "Active"
    HIRED = "Hired"
    REJECTED = "Rejected"
    WITHDRAWN = "Withdrawn"


class ReqHealthStatus(StrEnum):
    ACTIVE = "ACTIVE"
    STALLED = "STALLED"
    ZOMBIE = "ZOMBIE"
    AT_RISK = "AT_RISK"


class GhostStatus(StrEnum):
    STAGNANT = "STAGNANT"
    ABANDONED = "ABANDONED"


class ConfidenceLevel(StrEnum):
    INSUFFICIENT = "INSUFFICIENT"
    LOW = "LOW"
    MED = "MED"
    HIGH = "HIGH"


class ImpactLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


STAGE_ORDER: dict[CanonicalStage, int] = {stage: i for i, stage in enumerate(CanonicalStage)}

TERMINAL_STAGES = frozenset({CanonicalStage.HIRED, CanonicalStage.REJECTED, CanonicalStage.WITHDREW})

FUNNEL_STAGES = (
    CanonicalStage.SCREEN,
    CanonicalStage.HM_SCREEN,
    CanonicalStage.ONSITE,
    CanonicalStage.OFFER,
    CanonicalStage.HIRED,
)

STAGE_SUCCESSORS: dict[CanonicalStage, CanonicalStage] = {
    CanonicalStage.LEAD: CanonicalStage.APPLIED,
    CanonicalStage.APPLIED: CanonicalStage.SCREEN,
    CanonicalStage.SCREEN: CanonicalStage.HM_SCREEN,
    CanonicalStage.HM_SCREEN: CanonicalStage.ONSITE,
    CanonicalStage.ONSITE: CanonicalStage.FINAL,
    CanonicalStage.FINAL: CanonicalStage.OFFER,
    CanonicalStage.OFFER: CanonicalStage.HIRED,
}


def as_naive_utc(value) -> pd.Timestamp:
    """Timestamp with any offset converted to UTC and dropped."""
    timestamp = pd.Timestamp(value)
    return timestamp if timestamp.tzinfo is None else timestamp.tz_convert(None)


def _as_day(value) -> pd.Timestamp:
    return as_naive_utc(value).normalize()


@dataclass(frozen=True)
class MetricFilters:
    """Filter scope for a metrics refresh.

    ``start`` and ``end`` are inclusive calendar days. ``as_of`` is the explicit
    "now" used for aging; it defaults to the end of the window.
    """

    start: pd.Timestamp
    end: pd.Timestamp
    recruiter_ids: frozenset[str] = field(default_factory=frozenset)
    functions: frozenset[str] = field(default_factory=frozenset)
    job_families: frozenset[str] = field(default_factory=frozenset)
    levels: frozenset[str] = field(default_factory=frozenset)
    regions: frozenset[str] = field(default_factory=frozenset)
    hiring_manager_ids: frozenset[str] = field(default_factory=frozenset)
    as_of: pd.Timestamp | None = None

    def __post_init__(self):
        start, end = _as_day(self.start), _as_day(self.end)
        if end < start:
            raise ValueError(f"Filter window ends before it starts: {start.date()} > {end.date()}")
        object.__setattr__(self, "start", start)
        object.__setattr__(self, "end", end)
        if self.as_of is not None:
            object.__setattr__(self, "as_of", as_naive_utc(self.as_of))
        for name in ("recruiter_ids", "functions", "job_families", "levels", "regions", "hiring_manager_ids"):
            object.__setattr__(self, name, frozenset(getattr(self, name)))

    @property
    def length_days(self) -> int:
        return (self.end - self.start).days + 1

    @property
    def reference_date(self) -> pd.Timestamp:
        if self.as_of is not None:
            return self.as_of
        return self.end + pd.Timedelta(days=1) - pd.Timedelta(microseconds=1)

    @property
    def label(self) -> str:
        return f"{self.start.date()} to {self.end.date()}"

    def prior_period(self) -> "MetricFilters":
        """Return the same scope shifted to the immediately preceding window."""
        length = pd.Timedelta(days=self.length_days)
        return replace(
            self,
            start=self.start - length,
            end=self.start - pd.Timedelta(days=1),
            as_of=None if self.as_of is None else self.as_of - length,
        )

    def window_mask(self, timestamps: pd.Series) -> pd.Series:
        """Boolean mask of timestamps inside the window. NaT is never inside."""
        upper = self.end + pd.Timedelta(days=1)
        return (timestamps >= self.start) & (timestamps < upper)
