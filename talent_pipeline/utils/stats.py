"""Small statistics helpers with explicit "no data" handling."""

from collections.abc import Iterable
from dataclasses import dataclass

import numpy as np
import pandas as pd

from talent_pipeline.utils.types import ConfidenceLevel

EMPTY_DISPLAY = "—"


@dataclass(frozen=True)
class Confidence:
    level: ConfidenceLevel
    sample_size: int
    threshold: int
    reason: str

    @property
    def is_sufficient(self) -> bool:
        return self.level != ConfidenceLevel.INSUFFICIENT


def assess_confidence(sample_size: int, threshold: int, subject: str = "samples") -> Confidence:
    """Grade a sample size against the minimum for its metric type.

    Below the threshold the metric must not be shown. HIGH needs at least
    twice the threshold and MED one and a half times.
    """
    n = int(sample_size)
    match n:
        case 0:
            level, reason = ConfidenceLevel.INSUFFICIENT, f"No {subject} available"
        case _ if n < threshold:
            level, reason = ConfidenceLevel.INSUFFICIENT, f"Only {n} {subject} (need {threshold}+)"
        case _ if n >= threshold * 2:
            level, reason = ConfidenceLevel.HIGH, f"{n} {subject} (strong sample)"
        case _ if n >= threshold * 1.5:
            level, reason = ConfidenceLevel.MED, f"{n} {subject} (adequate sample)"
        case _:
            level, reason = ConfidenceLevel.LOW, f"{n} {subject} (minimum met, interpret with caution)"
    return Confidence(level=level, sample_size=n, threshold=threshold, reason=reason)


def clean_values(values: Iterable) -> list[float]:
    return [float(v) for v in values if v is not None and not pd.isna(v)]


def median(values: Iterable) -> float | None:
    cleaned = clean_values(values)
    if not cleaned:
        return None
    return float(np.median(cleaned))


def mean(values: Iterable) -> float | None:
    cleaned = clean_values(values)
    if not cleaned:
        return None
    return float(np.mean(cleaned))


def safe_rate(numerator: int | float, denominator: int | float) -> float | None:
    """Ratio that reports None instead of dividing by zero."""
    if denominator is None or denominator <= 0:
        return None
    return float(numerator) / float(denominator)


def clamp(value: float, lower: float, upper: float) -> float:
    return max(lower, min(upper, value))


def optional_float(value) -> float | None:
    if value is None or pd.isna(value):
        return None
    return float(value)


def format_metric(value: float | None, confidence: Confidence | None = None, fmt: str = "{:.1%}") -> str:
    """Render a metric, refusing to show a number without enough evidence."""
    if value is None or pd.isna(value):
        return EMPTY_DISPLAY
    if confidence is not None and not confidence.is_sufficient:
        return EMPTY_DISPLAY
    return fmt.format(value)
