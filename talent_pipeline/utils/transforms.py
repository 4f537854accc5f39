"""Common data transformation utilities."""

import pandas as pd

from talent_pipeline.utils.types import MetricFilters

type ColumnMapping = dict[str, str]

SECONDS_PER_HOUR = 3600.0

# filter attribute -> requisition column
REQUISITION_FILTER_COLUMNS = {
    "recruiter_ids": "recruiter_id",
    "functions": "function",
    "job_families": "job_family",
    "levels": "level",
    "regions": "region",
    "hiring_manager_ids": "hiring_manager_id",
}


def normalize_columns(df: pd.DataFrame, mapping: ColumnMapping | None = None) -> pd.DataFrame:
    """Normalize column names to snake_case and apply optional mapping."""
    df = df.copy()
    df.columns = [str(col).strip().lower().replace(" ", "_").replace("-", "_") for col in df.columns]

    if mapping:
        df = df.rename(columns=mapping)

    return df


def filter_requisitions(requisitions: pd.DataFrame, filters: MetricFilters) -> pd.DataFrame:
    """Restrict requisitions to the attribute subsets named in the filters.

    An empty subset means "no restriction" for that attribute.
    """
    mask = pd.Series(True, index=requisitions.index)
    for attr, column in REQUISITION_FILTER_COLUMNS.items():
        allowed = getattr(filters, attr)
        if allowed:
            mask &= requisitions[column].isin(allowed)
    return requisitions[mask]


def parse_timestamps(values: pd.Series) -> pd.Series:
    """Parse ATS timestamps of any ISO-ish format into naive UTC datetimes.

    Each value is parsed on its own, so date-only, minute and second precision,
    ``T`` separators and ``Z``/offset suffixes can share a column. Unparseable
    values become NaT.
    """
    parsed = pd.to_datetime(values, errors="coerce", format="mixed", utc=True)
    return parsed.dt.tz_convert(None)


def present_mask(values: pd.Series) -> pd.Series:
    """Values that are neither missing nor blank text."""
    filled = values.astype("string").str.strip().ne("").fillna(False).astype(bool)
    return values.notna().astype(bool) & filled


def hours_between(later: pd.Series, earlier: pd.Series) -> pd.Series:
    return (later - earlier).dt.total_seconds() / SECONDS_PER_HOUR


def days_between(later: pd.Series | pd.Timestamp, earlier: pd.Series) -> pd.Series:
    """Whole days elapsed, NaN where either side is missing."""
    return (later - earlier).dt.days


def first_per_key(df: pd.DataFrame, keys: list[str], time_col: str) -> pd.DataFrame:
    """Earliest row per key, ordered by ``time_col``."""
    ordered = df.sort_values([*keys, time_col], kind="mergesort")
    return ordered.drop_duplicates(subset=keys, keep="first")
