"""
aggregation.py
─────────────────────────────────────────────────────────────────────────────
Deterministic aggregations handed to the reasoning service as ground truth.

 - aggregate_by_time:     bucket rows by day (YYYY-MM-DD) or month (YYYY-MM)
 - aggregate_by_category: group rows by a low-cardinality column, top N by count
 - generate_ground_truth: pick dimensions from the summaries and render both

Sums are exact; rounding to two decimals happens only when rendering.
─────────────────────────────────────────────────────────────────────────────
"""

import csv
import io
import math
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from datastat.config import settings
from datastat.core.profiler import is_missing, is_number, stringify
from datastat.models import AggregateBucket, AggregateTable, Row, Value, VariableSummary
from datastat.utils.logger import get_logger

logger = get_logger(__name__)

_KEY_LENGTH = {"day": 10, "month": 7}
UNKNOWN_BUCKET = "Unknown"


def as_number(value: Value) -> Optional[float]:
    """Finite numbers and numeric strings count; anything else does not."""
    if is_number(value):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        return parsed if math.isfinite(parsed) else None
    return None


def round_half_up(value: float, places: int = 2) -> float:
    scale = 10 ** places
    return math.floor(value * scale + 0.5) / scale


def _accumulate(
    rows: Sequence[Row],
    key_for: Callable[[Row], Optional[str]],
    measures: Sequence[str],
) -> Dict[str, AggregateBucket]:
    buckets: Dict[str, AggregateBucket] = {}
    for row in rows:
        key = key_for(row)
        if key is None:
            continue
        bucket = buckets.get(key)
        if bucket is None:
            bucket = buckets[key] = AggregateBucket(key=key, count=0, sums={m: 0 for m in measures})
        bucket.count += 1
        for m in measures:
            value = as_number(row.get(m))
            if value is not None:
                bucket.sums[m] += value
    return buckets


def downsample(keys: Sequence[str], cap: int) -> List[str]:
    """Keep `cap` keys at an even stride, always including the first and last."""
    n = len(keys)
    if n <= cap:
        return list(keys)
    if cap < 2:
        return [keys[0]][:cap]
    # round-half-up of i * (n - 1) / (cap - 1), in integers
    span = 2 * (cap - 1)
    return [keys[(2 * i * (n - 1) + cap - 1) // span] for i in range(cap)]


def _time_buckets(rows: Sequence[Row], date_col: str, measures: Sequence[str], granularity: str):
    length = _KEY_LENGTH[granularity]

    def key_for(row: Row) -> Optional[str]:
        value = row.get(date_col)
        if is_missing(value):
            return None
        return stringify(value)[:length]

    return _accumulate(rows, key_for, measures)


def aggregate_by_time(
    rows: Sequence[Row],
    date_col: str,
    measures: Sequence[str],
    granularity: str = "auto",
    day_cap: Optional[int] = None,
    month_cap: Optional[int] = None,
) -> AggregateTable:
    """
    Bucket rows by the leading characters of a date column and sum each measure.

    Args:
        rows: Sheet rows.
        date_col: Column holding YYYY-MM-DD strings. Rows without a value are skipped.
        measures: Numeric columns to sum.
        granularity: 'day', 'month', or 'auto' (day unless that exceeds the day cap).
        day_cap / month_cap: Bucket limits before downsampling.

    Returns:
        AggregateTable sorted by bucket key.
    """
    day_cap = day_cap or settings.DAY_BUCKET_CAP
    month_cap = month_cap or settings.MONTH_BUCKET_CAP
    if granularity not in ("day", "month", "auto"):
        raise ValueError(f"Unknown granularity '{granularity}'")

    resolved = "day" if granularity == "auto" else granularity
    buckets = _time_buckets(rows, date_col, measures, resolved)
    if granularity == "auto" and len(buckets) > day_cap:
        resolved = "month"
        buckets = _time_buckets(rows, date_col, measures, resolved)

    cap = day_cap if resolved == "day" else month_cap
    keys = downsample(sorted(buckets), cap)
    if len(keys) < len(buckets):
        logger.info(f"Downsampled {len(buckets)} {resolved} buckets of '{date_col}' to {len(keys)}")

    return AggregateTable(
        key_column=date_col,
        measures=list(measures),
        buckets=[buckets[k] for k in keys],
        granularity=resolved,
        total_buckets=len(buckets),
    )


def aggregate_by_category(
    rows: Sequence[Row],
    cat_col: str,
    measures: Sequence[str],
    top_n: Optional[int] = None,
) -> AggregateTable:
    """Group by category (missing -> 'Unknown'), keep the top N groups by row count."""
    top_n = top_n or settings.CATEGORY_TOP_N

    def key_for(row: Row) -> str:
        value = row.get(cat_col)
        return UNKNOWN_BUCKET if is_missing(value) else stringify(value)

    buckets = _accumulate(rows, key_for, measures)
    # sorted() is stable, so equal counts keep first-seen order
    ranked = sorted(buckets.values(), key=lambda b: -b.count)
    return AggregateTable(
        key_column=cat_col,
        measures=list(measures),
        buckets=ranked[:top_n],
        total_buckets=len(buckets),
    )


def render_table(table: AggregateTable) -> str:
    """Comma-delimited: key column, Count, one column per measure."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([table.key_column, "Count", *table.measures])
    for bucket in table.buckets:
        sums = [stringify(round_half_up(bucket.sums[m])) for m in table.measures]
        writer.writerow([bucket.key, bucket.count, *sums])
    return buffer.getvalue()


def select_dimensions(
    summaries: Sequence[VariableSummary],
    scope: str = "full",
    custom_vars: Sequence[str] = (),
    ceiling: Optional[int] = None,
) -> Tuple[Optional[str], List[str], List[str]]:
    """
    Choose (date column, measures, categories) for the ground-truth block.

    In 'custom' scope measures and categories are limited to `custom_vars`
    and the first selected date column is preferred.
    """
    ceiling = ceiling or settings.CATEGORY_CARDINALITY_CEILING
    dates = [s.name for s in summaries if s.type == "date"]
    measures = [s.name for s in summaries if s.type == "number"]
    categories = [
        s.name for s in summaries
        if s.type == "string" and (s.distinct or 0) < ceiling
    ]

    date_col = dates[0] if dates else None
    if scope == "custom":
        selected = set(custom_vars)
        measures = [m for m in measures if m in selected]
        categories = [c for c in categories if c in selected]
        date_col = next((d for d in dates if d in selected), date_col)
    return date_col, measures, categories


def generate_ground_truth(
    rows: Sequence[Row],
    summaries: Sequence[VariableSummary],
    scope: str = "full",
    custom_vars: Sequence[str] = (),
) -> str:
    """
    Pre-compute the trend and group tables the reasoning service must quote
    instead of calculating its own figures.
    """
    date_col, measures, categories = select_dimensions(summaries, scope, custom_vars)
    if not measures:
        return "No numeric variables found for aggregation."

    parts = [
        "### GROUND TRUTH DATA (Deterministic Aggregations)",
        "Use the data below to populate tables and commentary. DO NOT calculate your own sums.",
        "",
    ]
    if date_col:
        table = aggregate_by_time(rows, date_col, measures)
        parts.append(f"#### Trend Data (Aggregated by {date_col}, per {table.granularity})")
        parts.append(render_table(table))

    for cat in categories:
        parts.append(f"#### Group Data (Aggregated by {cat})")
        parts.append(render_table(aggregate_by_category(rows, cat, measures)))

    logger.info(
        f"Ground truth built: date={date_col}, {len(measures)} measures, {len(categories)} categories"
    )
    return "\n".join(parts)
