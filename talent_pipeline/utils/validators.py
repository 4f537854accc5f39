"""Data validation utilities using pandera."""

import pandera as pa
import pandas as pd
from pandera import DataFrameSchema

type ValidationResult = dict[str, str | bool | list[str]]


def validate_dataframe(df: pd.DataFrame, schema: DataFrameSchema) -> ValidationResult:
    """Validate a DataFrame against a pandera schema."""
    try:
        schema.validate(df, lazy=True)
        return {"valid": True, "status": "ok", "errors": []}
    except pa.errors.SchemaErrors as e:
        errors = []
        for _, row in e.failure_cases.iterrows():
            match row.to_dict():
                case {"column": col, "check": check, "failure_case": val}:
                    errors.append(f"Column '{col}' failed check '{check}': {val}")
                case failure:
                    errors.append(f"Validation failure: {failure}")
        return {"valid": False, "status": "error", "errors": errors}


def find_orphans(child: pd.DataFrame, parent: pd.DataFrame, child_key: str, parent_key: str) -> pd.Series:
    """Boolean mask of child rows whose key is missing from the parent."""
    return child[child_key].notna() & ~child[child_key].isin(set(parent[parent_key].dropna()))


def validate_referential_integrity(
    child: pd.DataFrame,
    parent: pd.DataFrame,
    child_key: str,
    parent_key: str,
) -> ValidationResult:
    """Validate that all child keys exist in parent."""
    orphans = set(child.loc[find_orphans(child, parent, child_key, parent_key), child_key])

    match len(orphans):
        case 0:
            return {"valid": True, "status": "ok", "errors": []}
        case n:
            sample = sorted(orphans)[:5]
            return {
                "valid": False,
                "status": "error",
                "errors": [f"Found {n} orphan keys. Sample: {sample}"],
            }
