"""
profiler.py
─────────────────────────────────────────────────────────────────────────────
Infers a type for every column and computes its descriptive statistics.

Type inference policies:
 - "first":    the first non-missing value decides (number / date / string)
 - "majority": the first N non-missing values vote; ties prefer
               number, then date, then string

Pure: the same rows and column list always produce the same summaries.
─────────────────────────────────────────────────────────────────────────────
"""

import math
import re
from collections import Counter
from typing import Iterable, List, Optional, Sequence

from datastat.config import settings
from datastat.models import Row, Value, VariableSummary

# Normalised calendar date, e.g. 2024-03-01
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_TYPE_PRIORITY = ("number", "date", "string")


def is_missing(value: Value) -> bool:
    """None, empty strings and NaN all count as missing."""
    if value is None:
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, float):
        return math.isnan(value)
    return False


def is_number(value: Value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def value_type(value: Value) -> str:
    """Classify a single non-missing value."""
    if is_number(value):
        return "number"
    if isinstance(value, str) and DATE_PATTERN.match(value):
        return "date"
    return "string"


def infer_type(values: Sequence[Value], policy: str = "first", window: int = 50) -> str:
    if not values:
        return "string"
    if policy == "first":
        return value_type(values[0])

    votes = Counter(value_type(v) for v in values[:max(window, 1)])
    best = max(votes.values())
    for kind in _TYPE_PRIORITY:
        if votes.get(kind) == best:
            return kind
    return "string"


def _median(nums: List[float]) -> float:
    mid = len(nums) // 2
    if len(nums) % 2:
        return nums[mid]
    return (nums[mid - 1] + nums[mid]) / 2


def stringify(value: Value) -> str:
    """Render a value the way it appears in tables and bucket keys."""
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def summarize_column(
    rows: Sequence[Row],
    name: str,
    policy: str = "first",
    window: int = 50,
    sample_size: int = 5,
) -> VariableSummary:
    values = [row.get(name) for row in rows]
    present = [v for v in values if not is_missing(v)]
    kind = infer_type(present, policy=policy, window=window)

    summary = VariableSummary(
        name=name,
        type=kind,
        missing=len(values) - len(present),
        count=len(present),
        sample=present[:sample_size],
    )

    if kind == "number":
        nums = sorted(v for v in present if is_number(v))
        if nums:
            summary.min = nums[0]
            summary.max = nums[-1]
            summary.mean = sum(nums) / len(nums)
            summary.median = _median(nums)
    else:
        summary.distinct = len({stringify(v) for v in present})

    return summary


def generate_summaries(
    rows: Sequence[Row],
    columns: Iterable[str],
    policy: Optional[str] = None,
    window: Optional[int] = None,
    sample_size: Optional[int] = None,
) -> List[VariableSummary]:
    """
    Produce one VariableSummary per column, in the order given.

    Args:
        rows: The sheet's rows. Absent keys are treated as missing.
        columns: Column names to profile.
        policy: Type inference policy ('first' or 'majority').
        window: How many non-missing values the 'majority' policy inspects.
        sample_size: Length of each summary's sample.

    Returns:
        List[VariableSummary]
    """
    policy = policy or settings.TYPE_INFERENCE_POLICY
    window = window or settings.TYPE_INFERENCE_WINDOW
    sample_size = settings.PROFILE_SAMPLE_SIZE if sample_size is None else sample_size

    return [
        summarize_column(rows, col, policy=policy, window=window, sample_size=sample_size)
        for col in columns
    ]


def column_order(rows: Iterable[Row]) -> List[str]:
    """Distinct column names across all rows, in first-seen order."""
    seen = {}
    for row in rows:
        for key in row:
            seen.setdefault(key, None)
    return list(seen)
