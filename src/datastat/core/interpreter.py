"""
interpreter.py
─────────────────────────────────────────────────────────────────────────────
Stata-style command interpreter.

interpret_command() is stateless: it receives the active dataset and every
loaded dataset, and returns a CommandResult. The caller commits replacement
rows/summaries and frame switches. Text whose first word is not a known
command comes back with handled=False so it can be routed to the reasoning
service instead.

Commands:
    describe  [varlist]                 (d, des)
    summarize [varlist]                 (su, sum, summ)
    list      [varlist] [in a/b]        (l, li)
    count     [if expr]
    generate  newvar = expr             (g, gen)
    drop      varlist
    merge     1:1 key using dataset
    frame     change name | dir | pwd
─────────────────────────────────────────────────────────────────────────────
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from datastat.config import settings
from datastat.core.expression import compile_expression, evaluate_rows
from datastat.core.formatter import format_table
from datastat.core.merge import merge_one_to_one
from datastat.core.profiler import generate_summaries, is_missing, is_number
from datastat.models import (
    CommandResult, Dataset, LogEntry, LogType, SheetData, VariableSummary,
)
from datastat.utils.exceptions import (
    AppException, CommandSyntaxError, DatasetNotFoundError,
    VariableExistsError, VariableNotFoundError,
)
from datastat.utils.logger import get_logger

logger = get_logger(__name__)

_GENERATE_RE = re.compile(r"^([^\s=]+)\s*=(?!=)\s*(.*)$", re.DOTALL)
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass
class _Context:
    dataset: Dataset
    datasets: Sequence[Dataset]
    args: List[str]
    remainder: str  # raw text after the keyword

    @property
    def sheet(self) -> SheetData:
        return self.dataset.active_sheet

    def find_dataset(self, name: str) -> Dataset:
        for d in self.datasets:
            if d.name == name:
                return d
        raise DatasetNotFoundError(name, [d.name for d in self.datasets])


def _text(content: str) -> CommandResult:
    return CommandResult(handled=True, logs=[LogEntry(type=LogType.RESPONSE_TEXT, content=content)])


def _select(sheet: SheetData, names: Sequence[str]) -> List[VariableSummary]:
    """Summaries for `names` in the order given; every name must exist."""
    missing = [n for n in names if sheet.summary(n) is None]
    if missing:
        raise VariableNotFoundError(dict.fromkeys(missing))
    return [sheet.summary(n) for n in dict.fromkeys(names)]


def _strip_quotes(text: str) -> str:
    return text.strip().strip("\"'").strip()


# ── describe ──────────────────────────────────────────────────────────────────
def _describe(ctx: _Context) -> CommandResult:
    targets = _select(ctx.sheet, ctx.args) if ctx.args else ctx.sheet.summaries

    header = (
        f"Contains data from {ctx.dataset.name} (Sheet: {ctx.dataset.active_sheet_name})\n"
        f"  obs: {len(ctx.sheet.rows)}\n"
        f" vars: {len(targets)}\n\n"
        "Variable      Storage   Display    Value\n"
        "name          type      format     label      Variable label\n"
        + "-" * 61
    )
    lines = []
    for v in targets:
        storage, fmt = ("float", "%9.0g") if v.type == "number" else ("str", "%-9s")
        lines.append(f"{v.name:<13} {storage:<9} {fmt:<10}")
    return _text("\n".join([header, *lines]))


# ── summarize ─────────────────────────────────────────────────────────────────
def _summarize(ctx: _Context) -> CommandResult:
    if ctx.args:
        targets = _select(ctx.sheet, ctx.args)
    else:
        targets = [s for s in ctx.sheet.summaries if s.type == "number"]
    if not targets:
        return _text("No numeric variables to summarize.")

    table = []
    for s in targets:
        values = [
            v for v in (row.get(s.name) for row in ctx.sheet.rows)
            if is_number(v) and not is_missing(v)
        ]
        obs = len(values)
        mean = f"{sum(values) / obs:.2f}" if obs else None
        # sample standard deviation (n - 1)
        std = f"{pd.Series(values, dtype='float64').std():.2f}" if obs > 1 else None
        table.append([
            s.name, obs, mean, std,
            min(values) if values else None,
            max(values) if values else None,
        ])

    headers = ["Variable", "Obs", "Mean", "Std. Dev.", "Min", "Max"]
    return _text(format_table(headers, table))


# ── list ──────────────────────────────────────────────────────────────────────
def _bound(token: str, total: int) -> int:
    token = token.strip().lower()
    if token == "f":
        return 1
    if token == "l":
        return total
    try:
        return int(token)
    except ValueError:
        raise CommandSyntaxError(f"Invalid observation number '{token}'.")


def parse_range(token: str, total: int) -> Tuple[int, int]:
    """
    Turn 'a/b', 'a', 'f/l' into a zero-based [start, end) slice.
    The upper bound is clamped to the number of rows.
    """
    pieces = token.split("/")
    if len(pieces) not in (1, 2) or not all(p.strip() for p in pieces):
        raise CommandSyntaxError(f"Invalid range '{token}'. Usage: in a/b")
    first = _bound(pieces[0], total)
    last = _bound(pieces[-1], total)
    if first < 1 or last < first:
        raise CommandSyntaxError(f"Invalid range '{token}'.")
    if first > total:
        raise CommandSyntaxError(f"Observation numbers out of range (data has {total} obs).")
    return first - 1, min(last, total)


def _list(ctx: _Context) -> CommandResult:
    args = ctx.args
    total = len(ctx.sheet.rows)
    if "in" in args:
        idx = args.index("in")
        names, range_tokens = args[:idx], args[idx + 1:]
        if len(range_tokens) != 1:
            raise CommandSyntaxError("Usage: list [varlist] in a/b")
        start, end = parse_range(range_tokens[0], total)
    else:
        names = args
        limit = settings.LIST_DEFAULT_ROWS_WITH_VARS if names else settings.LIST_DEFAULT_ROWS
        start, end = 0, min(total, limit)

    columns = [s.name for s in _select(ctx.sheet, names)] if names else ctx.sheet.columns
    if not columns:
        raise CommandSyntaxError("No valid variables specified.")

    table = [
        [start + i + 1, *(row.get(c) for c in columns)]
        for i, row in enumerate(ctx.sheet.rows[start:end])
    ]
    return _text(format_table(["Obs", *columns], table))


# ── count ─────────────────────────────────────────────────────────────────────
def _count(ctx: _Context) -> CommandResult:
    rows = ctx.sheet.rows
    if not ctx.args:
        return _text(f"{len(rows)}")
    if ctx.args[0].lower() != "if" or len(ctx.args) < 2:
        raise CommandSyntaxError("Usage: count [if expression]")

    condition = ctx.remainder.split(None, 1)[1]
    compiled = compile_expression(condition, ctx.sheet.columns)
    hits = 0
    for row in rows:
        value = compiled.evaluate(row)
        if is_number(value) and value != 0:
            hits += 1
    return _text(f"{hits}")


# ── generate ──────────────────────────────────────────────────────────────────
def _generate(ctx: _Context) -> CommandResult:
    match = _GENERATE_RE.match(ctx.remainder)
    if not match or not match.group(2).strip():
        raise CommandSyntaxError("Invalid syntax. Usage: generate newvar = expression")

    name, expression = match.group(1), match.group(2).strip()
    if not _NAME_RE.match(name):
        raise CommandSyntaxError(f"'{name}' is not a valid variable name.")
    columns = ctx.sheet.columns
    if name in columns:
        raise VariableExistsError(name)

    values = evaluate_rows(expression, ctx.sheet.rows, columns)

    rows = [{**row, name: value} for row, value in zip(ctx.sheet.rows, values)]
    summaries = generate_summaries(rows, [*columns, name])
    logger.info(f"Generated '{name}' = {expression} over {len(rows)} rows")

    logs = []
    nulls = sum(1 for v in values if v is None)
    if nulls:
        logs.append(LogEntry(content=f"({nulls} missing values generated)"))
    logs.append(LogEntry(content=f"Variable {name} generated."))
    return CommandResult(handled=True, logs=logs, rows=rows, summaries=summaries)


# ── drop ──────────────────────────────────────────────────────────────────────
def _drop(ctx: _Context) -> CommandResult:
    if not ctx.args:
        raise CommandSyntaxError("Usage: drop varlist")
    dropped = {s.name for s in _select(ctx.sheet, ctx.args)}

    rows = [{k: v for k, v in row.items() if k not in dropped} for row in ctx.sheet.rows]
    columns = [c for c in ctx.sheet.columns if c not in dropped]
    summaries = generate_summaries(rows, columns)
    return CommandResult(
        handled=True,
        logs=[LogEntry(content=f"Dropped {len(dropped)} variables.")],
        rows=rows,
        summaries=summaries,
    )


# ── merge ─────────────────────────────────────────────────────────────────────
def _merge(ctx: _Context) -> CommandResult:
    args = ctx.args
    if len(args) < 4 or args[0] != "1:1" or args[2].lower() != "using":
        raise CommandSyntaxError("Only 'merge 1:1 varname using datasetname' is supported currently.")

    key = args[1]
    using_name = _strip_quotes(" ".join(args[3:]))
    using = ctx.find_dataset(using_name)
    if key not in ctx.sheet.columns:
        raise VariableNotFoundError([key], where="master data")
    using_sheet = using.active_sheet
    if key not in using_sheet.columns:
        raise VariableNotFoundError([key], where=f"using data '{using.name}'")

    result = merge_one_to_one(
        ctx.sheet.rows, using_sheet.rows, key,
        master_columns=ctx.sheet.columns,
        using_columns=using_sheet.columns,
    )
    summaries = generate_summaries(result.rows, result.columns)
    return CommandResult(
        handled=True,
        logs=[LogEntry(content=result.report)],
        rows=result.rows,
        summaries=summaries,
    )


# ── frame ─────────────────────────────────────────────────────────────────────
def _frame(ctx: _Context) -> CommandResult:
    sub = ctx.args[0].lower() if ctx.args else ""
    if sub == "change":
        target = _strip_quotes(" ".join(ctx.args[1:]))
        if not target:
            raise CommandSyntaxError("Usage: frame change name")
        found = ctx.find_dataset(target)
        result = _text(f"Switched to frame {found.name}")
        result.switch_to = found.name
        return result
    if sub == "dir":
        lines = []
        for d in ctx.datasets:
            marker = "*" if d.name == ctx.dataset.name else " "
            lines.append(f"{marker} {d.name}  {len(d.active_sheet.rows)} x {len(d.active_sheet.columns)}")
        return _text("\n".join(lines))
    if sub == "pwd":
        return _text(f"The current frame is {ctx.dataset.name}.")
    raise CommandSyntaxError("Usage: frame change name | frame dir | frame pwd")


COMMANDS: Dict[str, Callable[[_Context], CommandResult]] = {
    "describe": _describe, "d": _describe, "des": _describe,
    "summarize": _summarize, "su": _summarize, "sum": _summarize, "summ": _summarize,
    "list": _list, "l": _list, "li": _list,
    "count": _count,
    "generate": _generate, "gen": _generate, "g": _generate,
    "drop": _drop,
    "merge": _merge,
    "frame": _frame,
}


def interpret_command(
    command: str,
    active: Dataset,
    datasets: Optional[Sequence[Dataset]] = None,
) -> CommandResult:
    """
    Parse and execute one command line against the active dataset.

    Args:
        command: Raw command text, e.g. "summarize price".
        active: The dataset the command operates on (its active sheet).
        datasets: Every loaded dataset, for merge and frame commands.

    Returns:
        CommandResult. handled=False means the text is not a command.
        Argument errors come back as a single ERROR log with no data.
    """
    text = command.strip()
    parts = text.split()
    if not parts:
        return CommandResult(handled=False)

    keyword = parts[0].lower()
    handler = COMMANDS.get(keyword)
    if handler is None:
        return CommandResult(handled=False)

    ctx = _Context(
        dataset=active,
        datasets=list(datasets) if datasets is not None else [active],
        args=parts[1:],
        remainder=text[len(parts[0]):].strip(),
    )
    logger.info(f"Executing command: {keyword} ({len(ctx.args)} args) on '{active.name}'")
    try:
        return handler(ctx)
    except AppException as e:
        logger.warning(f"Command '{text}' failed: {e.message}")
        return CommandResult(handled=True, logs=[LogEntry(type=LogType.ERROR, content=e.message)])
