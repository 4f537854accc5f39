"""Shared utilities for the recruiting metrics engine."""

from talent_pipeline.utils.io import read_csv_files, write_output
from talent_pipeline.utils.transforms import normalize_columns, filter_requisitions
from talent_pipeline.utils.validators import validate_dataframe
from talent_pipeline.utils.types import CanonicalStage, MetricFilters, UNMAPPED
from talent_pipeline.utils.stats import Confidence, assess_confidence, format_metric
