from typing import Sequence

from datastat.core.profiler import stringify
from datastat.models import Value

MIN_COLUMN_WIDTH = 10
PADDING = 2
MISSING_MARK = "."


def format_cell(cell: Value) -> str:
    if cell is None:
        return MISSING_MARK
    return stringify(cell)


def format_table(headers: Sequence[str], rows: Sequence[Sequence[Value]]) -> str:
    """
    Render a fixed-width, right-aligned text table.

    Each column is as wide as its header, its widest cell or MIN_COLUMN_WIDTH,
    whichever is largest, plus PADDING. Missing cells print as '.'.
    """
    if not headers:
        return ""

    cells = [[format_cell(c) for c in row] for row in rows]
    widths = []
    for i, header in enumerate(headers):
        widest = max((len(r[i]) for r in cells if i < len(r)), default=0)
        widths.append(max(len(header), widest, MIN_COLUMN_WIDTH) + PADDING)

    lines = ["".join(h.rjust(w) for h, w in zip(headers, widths))]
    lines.append("-" * sum(widths))
    for row in cells:
        padded = row + [MISSING_MARK] * (len(widths) - len(row))
        lines.append("".join(c.rjust(w) for c, w in zip(padded, widths)))
    return "\n".join(lines)
