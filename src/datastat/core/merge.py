from typing import Dict, List, Sequence

from datastat.core.profiler import column_order, is_missing
from datastat.models import MergeResult, Row, Value
from datastat.utils.logger import get_logger

logger = get_logger(__name__)


def _report(matched: int, master_only: int, using_only: int, using_duplicates: int) -> str:
    lines = [
        "    Result                      # of obs.",
        "    -----------------------------------------",
        f"    not matched                 {master_only + using_only:>9}",
        f"        from master             {master_only:>9}",
        f"        from using              {using_only:>9}  (not kept)",
        "",
        f"    matched                     {matched:>9}",
        "    -----------------------------------------",
    ]
    if using_duplicates:
        lines.append(f"    ({using_duplicates} duplicate key(s) in using data; last occurrence kept)")
    return "\n".join(lines)


def merge_one_to_one(
    master: Sequence[Row],
    using: Sequence[Row],
    key: str,
    master_columns: Sequence[str] = (),
    using_columns: Sequence[str] = (),
) -> MergeResult:
    """
    Left-join `using` onto `master` by `key`.

    Matched master rows gain every field of their using row (using wins on
    name clashes, the key keeps the master value). Unmatched master rows pass
    through untouched. Rows with a missing key never match. When the using
    data repeats a key, the last row with that key wins.

    Args:
        master: Rows of the active sheet.
        using: Rows of the sheet being merged in.
        key: Column present in both.
        master_columns / using_columns: Known column order; derived from the
            rows when omitted.

    Returns:
        MergeResult with merged rows, column order and match counts.
    """
    lookup: Dict[Value, Row] = {}
    using_duplicates = 0
    for row in using:
        value = row.get(key)
        if is_missing(value):
            continue
        if value in lookup:
            using_duplicates += 1
        lookup[value] = row

    matched = 0
    master_only = 0
    matched_keys = set()
    merged: List[Row] = []
    for row in master:
        value = row.get(key)
        if not is_missing(value) and value in lookup:
            matched += 1
            matched_keys.add(value)
            merged.append({**row, **lookup[value], key: value})
        else:
            master_only += 1
            merged.append(row)

    using_only = sum(
        1 for row in using
        if is_missing(row.get(key)) or row.get(key) not in matched_keys
    )

    columns = list(master_columns or column_order(master))
    for col in (using_columns or column_order(using)):
        if col not in columns:
            columns.append(col)

    logger.info(
        f"Merged on '{key}': {matched} matched, {master_only} master-only, "
        f"{using_only} using-only, {using_duplicates} duplicate using keys"
    )
    return MergeResult(
        rows=merged,
        columns=columns,
        matched=matched,
        master_only=master_only,
        using_only=using_only,
        using_duplicates=using_duplicates,
        report=_report(matched, master_only, using_only, using_duplicates),
    )
