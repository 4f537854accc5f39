"""Ingest ATS exports (requisitions, candidates, events, users) from CSV drops."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd
from pandera import DataFrameSchema

from talent_pipeline.domains.recruiting.models import (
    candidate_schema,
    conform_candidates,
    conform_events,
    conform_requisitions,
    conform_users,
    event_schema,
    requisition_schema,
    user_schema,
)
from talent_pipeline.utils.io import FilePath, read_csv_files
from talent_pipeline.utils.transforms import normalize_columns
from talent_pipeline.utils.validators import ValidationResult, validate_dataframe, validate_referential_integrity

logger = logging.getLogger(__name__)

ATS_EXPORT_DIR = Path("data/raw/recruiting/ats_exports")

# Greenhouse / Lever / Ashby header variants
COLUMN_ALIASES = {
    "requisition_id": "req_id",
    "job_id": "req_id",
    "req_title": "title",
    "job_title": "title",
    "recruiter": "recruiter_id",
    "hiring_manager": "hiring_manager_id",
    "location_region": "region",
    "first_contacted_at": "first_contact_at",
    "event_at": "occurred_at",
    "timestamp": "occurred_at",
    "actor_id": "actor_user_id",
}


@dataclass(frozen=True)
class AtsSnapshot:
    requisitions: pd.DataFrame = field(default_factory=lambda: conform_requisitions(None))
    candidates: pd.DataFrame = field(default_factory=lambda: conform_candidates(None))
    events: pd.DataFrame = field(default_factory=lambda: conform_events(None))
    users: pd.DataFrame = field(default_factory=lambda: conform_users(None))

    @property
    def row_count(self) -> int:
        return len(self.requisitions) + len(self.candidates) + len(self.events) + len(self.users)


def _load_export(
    directory: Path,
    pattern: str,
    conform: Callable[[pd.DataFrame | None], pd.DataFrame],
    key: list[str] | None,
) -> pd.DataFrame:
    raw = read_csv_files(directory, pattern)
    if raw.empty:
        logger.warning("No rows found for %s in %s", pattern, directory)
        return conform(None)

    df = normalize_columns(raw, COLUMN_ALIASES)
    if key and set(key) <= set(df.columns):
        before = len(df)
        df = df.drop_duplicates(subset=key, keep="last")
        if len(df) < before:
            logger.info("Dropped %d duplicate rows from %s", before - len(df), pattern)
    return conform(df)


def load_ats_snapshot(directory: FilePath = ATS_EXPORT_DIR, dry_run: bool = False) -> AtsSnapshot:
    """Load the latest ATS export drop into a snapshot of conformed frames.

    Each entity may be split across several files (``events_2024_01.csv``,
    ``events_2024_02.csv``, ...); they are concatenated before de-duplication.
    """
    directory = Path(directory)
    if not directory.exists():
        raise FileNotFoundError(f"ATS export directory missing: {directory}")
    if dry_run:
        return AtsSnapshot()

    snapshot = AtsSnapshot(
        requisitions=_load_export(directory, "requisitions*.csv", conform_requisitions, ["req_id"]),
        candidates=_load_export(directory, "candidates*.csv", conform_candidates, ["candidate_id", "req_id"]),
        events=_load_export(directory, "events*.csv", conform_events, ["event_id"]),
        users=_load_export(directory, "users*.csv", conform_users, ["user_id"]),
    )
    logger.info(
        "Loaded snapshot: %d reqs, %d candidates, %d events, %d users",
        len(snapshot.requisitions), len(snapshot.candidates), len(snapshot.events), len(snapshot.users),
    )
    return snapshot


def validate_snapshot(snapshot: AtsSnapshot) -> dict[str, ValidationResult]:
    """Schema and referential checks; problems are reported, never raised."""
    checks: dict[str, tuple[pd.DataFrame, DataFrameSchema]] = {
        "requisitions": (snapshot.requisitions, requisition_schema),
        "candidates": (snapshot.candidates, candidate_schema),
        "events": (snapshot.events, event_schema),
        "users": (snapshot.users, user_schema),
    }
    results = {name: validate_dataframe(df, schema) for name, (df, schema) in checks.items()}
    results["event_requisitions"] = validate_referential_integrity(
        snapshot.events, snapshot.requisitions, "req_id", "req_id",
    )
    results["candidate_requisitions"] = validate_referential_integrity(
        snapshot.candidates, snapshot.requisitions, "req_id", "req_id",
    )

    for name, result in results.items():
        if not result["valid"]:
            logger.warning("%s failed validation: %s", name, "; ".join(result["errors"][:5]))
    return results
