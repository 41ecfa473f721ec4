"""Export and summary reporting."""

from .export import (
    METADATA_COLUMNS,
    SCORE_COLUMNS,
    SIGNAL_COLUMNS,
    feature_csv_header,
    feature_csv_row,
    format_value,
    score_band,
    storage_record,
    write_feature_csv,
    write_signals_csv,
)
from .generator import ReportGenerator, generate_summary

__all__ = [
    "METADATA_COLUMNS",
    "ReportGenerator",
    "SCORE_COLUMNS",
    "SIGNAL_COLUMNS",
    "feature_csv_header",
    "feature_csv_row",
    "format_value",
    "generate_summary",
    "score_band",
    "storage_record",
    "write_feature_csv",
    "write_signals_csv",
]
