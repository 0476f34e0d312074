from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..models.row_data import CandidateRecord
from ..models.row_error import ErrorKind, RowError
from .normalizer import ColumnKind, EntitySchema
from .resolver import ResolutionResult
from .snapshot import ReferenceSnapshot

if TYPE_CHECKING:
    from .strategies import EntityStrategy

"""Validator (stage 3).

Applies every rule to every row and keeps all errors; nothing short-circuits.
Rules are pure functions of the candidate, its resolution result and the
reference snapshot:

- required safety net: values that survived normalization but are
  semantically empty ("0000", "-")
- format: http(s) URLs, finite non-negative numbers, plus entity specific checks
- referential: one error per resolution failure
"""

__all__ = [
    "URL_PATTERN",
    "ValidationOutcome",
    "check_format",
    "check_required",
    "validate_record",
]

URL_PATTERN = re.compile(r"^https?://.+", re.IGNORECASE)


@dataclass(frozen=True)
class ValidationOutcome:
    row_index: int
    errors: tuple[RowError, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _semantically_empty(value: Any) -> bool:
    text = str(value).strip()
    if not any(ch.isalnum() for ch in text):
        return True
    # "0000" のような空チェスト番号
    return set(text) == {"0"}


def check_required(candidate: CandidateRecord, schema: EntitySchema) -> list[RowError]:
    errors: list[RowError] = []
    for spec in schema.required_columns:
        if spec.kind is ColumnKind.NUMBER:
            continue
        value = candidate.get(spec.field)
        if value is None or _semantically_empty(value):
            errors.append(RowError(candidate.row_index, ErrorKind.REQUIRED, f"{spec.header} is required"))
    return errors


def check_format(candidate: CandidateRecord, schema: EntitySchema) -> list[RowError]:
    errors: list[RowError] = []
    for spec in schema.columns:
        value = candidate.get(spec.field)
        if value is None:
            continue
        if spec.kind is ColumnKind.URL and not URL_PATTERN.match(str(value)):
            errors.append(
                RowError(
                    candidate.row_index,
                    ErrorKind.FORMAT,
                    f"{spec.header} must be a valid HTTP/HTTPS URL (got \"{value}\")",
                )
            )
        elif spec.kind is ColumnKind.NUMBER and (not math.isfinite(value) or value < 0):
            errors.append(
                RowError(
                    candidate.row_index,
                    ErrorKind.FORMAT,
                    f"{spec.header} must be zero or a positive number (got {value:g})",
                )
            )
    return errors


def validate_record(
    resolution: ResolutionResult,
    snapshot: ReferenceSnapshot,
    strategy: EntityStrategy,
) -> ValidationOutcome:
    """Collect every error for one row."""
    candidate = resolution.candidate
    errors: list[RowError] = []
    errors.extend(check_required(candidate, strategy.schema))
    errors.extend(check_format(candidate, strategy.schema))
    for kind, message in strategy.extra_checks(candidate, snapshot):
        errors.append(RowError(candidate.row_index, kind, message))
    for failure in resolution.failures:
        errors.append(RowError(candidate.row_index, ErrorKind.REFERENCE, failure))
    return ValidationOutcome(row_index=candidate.row_index, errors=tuple(errors))
