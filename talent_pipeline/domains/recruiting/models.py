"""Pandera schemas and column contracts for ATS snapshot data."""

import logging

import pandas as pd
import pandera as pa
from pandera import Column, Check

from talent_pipeline.utils.transforms import parse_timestamps, present_mask
from talent_pipeline.utils.types import Disposition, EventType, RequisitionStatus

logger = logging.getLogger(__name__)

# frame.attrs keys carried by conformed frames
UNPARSEABLE_TIMESTAMPS = "unparseable_timestamps"
DUPLICATE_ROWS = "duplicate_rows"

REQUISITION_COLUMNS = (
    "req_id", "title", "status", "recruiter_id", "hiring_manager_id",
    "opened_at", "closed_at", "level", "job_family", "function",
    "region", "location_type", "location_city",
)
REQUISITION_DATES = ("opened_at", "closed_at")

CANDIDATE_COLUMNS = (
    "candidate_id", "req_id", "source", "disposition", "current_stage",
    "current_stage_entered_at", "applied_at", "first_contact_at",
    "offer_extended_at", "offer_accepted_at", "hired_at",
)
CANDIDATE_DATES = (
    "current_stage_entered_at", "applied_at", "first_contact_at",
    "offer_extended_at", "offer_accepted_at", "hired_at",
)

EVENT_COLUMNS = (
    "event_id", "candidate_id", "req_id", "event_type",
    "from_stage", "to_stage", "actor_user_id", "occurred_at",
)
EVENT_DATES = ("occurred_at",)

USER_COLUMNS = ("user_id", "name", "role", "email")


requisition_schema = pa.DataFrameSchema(
    {
        "req_id": Column(str, nullable=False, unique=True),
        "title": Column(str, nullable=True),
        "status": Column(str, Check.isin([s.value for s in RequisitionStatus])),
        "recruiter_id": Column(str, nullable=True),
        "hiring_manager_id": Column(str, nullable=True),
        "opened_at": Column(pa.DateTime, nullable=True),
        "closed_at": Column(pa.DateTime, nullable=True),
        "level": Column(str, nullable=True),
        "job_family": Column(str, nullable=True),
        "region": Column(str, nullable=True),
    },
    strict=False,
    coerce=True,
)


candidate_schema = pa.DataFrameSchema(
    {
        "candidate_id": Column(str, nullable=False),
        "req_id": Column(str, nullable=False),
        "source": Column(str, nullable=True),
        "disposition": Column(str, Check.isin([d.value for d in Disposition])),
        "current_stage": Column(str, nullable=True),
        "current_stage_entered_at": Column(pa.DateTime, nullable=True),
        "first_contact_at": Column(pa.DateTime, nullable=True),
        "hired_at": Column(pa.DateTime, nullable=True),
    },
    strict=False,
    coerce=True,
)


event_schema = pa.DataFrameSchema(
    {
        "candidate_id": Column(str, nullable=False),
        "req_id": Column(str, nullable=False),
        "event_type": Column(str, Check.isin([e.value for e in EventType])),
        "from_stage": Column(str, nullable=True),
        "to_stage": Column(str, nullable=True),
        "actor_user_id": Column(str, nullable=True),
        "occurred_at": Column(pa.DateTime, nullable=False),
    },
    strict=False,
    coerce=True,
)


user_schema = pa.DataFrameSchema(
    {
        "user_id": Column(str, nullable=False, unique=True),
        "name": Column(str, nullable=True),
        "role": Column(str, nullable=True),
    },
    strict=False,
    coerce=True,
)


def _conform(
    df: pd.DataFrame | None,
    columns: tuple[str, ...],
    dates: tuple[str, ...] = (),
    key: str | None = None,
) -> pd.DataFrame:
    """Add missing columns, parse timestamps and drop repeated keys.

    Values that fail to parse and rows dropped as duplicates are tallied in
    ``attrs`` so hygiene can report them; re-conforming a frame keeps the tally.
    """
    out = pd.DataFrame(columns=list(columns)) if df is None else df.copy()
    unparseable = out.attrs.get(UNPARSEABLE_TIMESTAMPS, 0)
    duplicates = out.attrs.get(DUPLICATE_ROWS, 0)
    for col in columns:
        if col not in out.columns:
            out[col] = None
    for col in dates:
        parsed = parse_timestamps(out[col])
        failed = int((parsed.isna() & present_mask(out[col])).sum())
        if failed:
            logger.warning("Dropped %d unparseable %s values", failed, col)
            unparseable += failed
        out[col] = parsed
    if key is not None:
        repeated = out[key].notna() & out.duplicated(subset=[key], keep="last")
        if repeated.any():
            logger.warning("Dropped %d rows with a repeated %s", int(repeated.sum()), key)
            duplicates += int(repeated.sum())
            out = out[~repeated]
    out = out.reset_index(drop=True)
    out.attrs[UNPARSEABLE_TIMESTAMPS] = unparseable
    out.attrs[DUPLICATE_ROWS] = duplicates
    return out


def conform_requisitions(df: pd.DataFrame | None) -> pd.DataFrame:
    return _conform(df, REQUISITION_COLUMNS, REQUISITION_DATES, key="req_id")


def conform_candidates(df: pd.DataFrame | None) -> pd.DataFrame:
    return _conform(df, CANDIDATE_COLUMNS, CANDIDATE_DATES)


def conform_events(df: pd.DataFrame | None) -> pd.DataFrame:
    return _conform(df, EVENT_COLUMNS, EVENT_DATES)


def conform_users(df: pd.DataFrame | None) -> pd.DataFrame:
    return _conform(df, USER_COLUMNS)
