"""Domain models for the event import pipeline.

This package contains the record, error and result types that flow between
the normalizer, resolver, validator, duplicate detector and batch committer.
"""

from .batch_result import BatchResult, BatchStatsAccumulator, CommitProgress
from .config_models import CommitConfig, DatabaseConfig, ImportConfig
from .import_stage import ImportStage
from .row_data import CandidateRecord, RawRecord, ResolvedRecord
from .row_error import ErrorKind, RowError

__all__ = [
    # Configuration models
    "CommitConfig",
    "DatabaseConfig",
    "ImportConfig",
    # Row models
    "RawRecord",
    "CandidateRecord",
    "ResolvedRecord",
    "ErrorKind",
    "RowError",
    # Processing models
    "ImportStage",
    "BatchResult",
    "BatchStatsAccumulator",
    "CommitProgress",
]
