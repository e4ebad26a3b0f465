from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional, Union

# A cell is a number, a string or missing.
Value = Union[int, float, str, None]
Row = Dict[str, Value]


class VariableSummary(BaseModel):
    """Per-column metadata and descriptive statistics."""
    name: str
    type: Literal["number", "string", "date"]
    min: Optional[Union[int, float]] = None
    max: Optional[Union[int, float]] = None
    mean: Optional[float] = None
    median: Optional[float] = None
    distinct: Optional[int] = None
    missing: int = 0
    count: int = 0  # non-missing values
    sample: List[Any] = Field(default_factory=list)


class SheetData(BaseModel):
    """
    One tabular unit: rows plus the summaries derived from them.
    Sheets are replaced wholesale, never edited in place.
    """
    rows: List[Row] = Field(default_factory=list)
    summaries: List[VariableSummary] = Field(default_factory=list)

    @property
    def columns(self) -> List[str]:
        return [s.name for s in self.summaries]

    def summary(self, name: str) -> Optional[VariableSummary]:
        for s in self.summaries:
            if s.name == name:
                return s
        return None


class Dataset(BaseModel):
    """A named frame holding one or more sheets and the active sheet name."""
    name: str
    sheets: Dict[str, SheetData]
    active_sheet_name: str

    @property
    def active_sheet(self) -> SheetData:
        return self.sheets[self.active_sheet_name]


class LogType(str, Enum):
    COMMAND = "COMMAND"
    RESPONSE_TEXT = "RESPONSE_TEXT"
    RESPONSE_CHART = "RESPONSE_CHART"
    ERROR = "ERROR"
    SYSTEM = "SYSTEM"


class LogEntry(BaseModel):
    type: LogType = LogType.RESPONSE_TEXT
    content: Union[str, Dict[str, Any]]


class CommandResult(BaseModel):
    """
    Outcome of one interpreter call.
    `rows`/`summaries` are set together when the active sheet must be swapped;
    `switch_to` names the dataset that should become active.
    """
    handled: bool
    logs: List[LogEntry] = Field(default_factory=list)
    rows: Optional[List[Row]] = None
    summaries: Optional[List[VariableSummary]] = None
    switch_to: Optional[str] = None

    @property
    def replaces_data(self) -> bool:
        return self.rows is not None and self.summaries is not None


class MergeResult(BaseModel):
    rows: List[Row]
    columns: List[str]
    matched: int
    master_only: int
    using_only: int
    using_duplicates: int
    report: str


class AggregateBucket(BaseModel):
    key: str
    count: int
    sums: Dict[str, float]


class AggregateTable(BaseModel):
    """A ground-truth table: one bucket per time period or category."""
    key_column: str
    measures: List[str]
    buckets: List[AggregateBucket] = Field(default_factory=list)
    granularity: Optional[str] = None
    total_buckets: int = 0  # before downsampling / top-N

    @property
    def truncated(self) -> bool:
        return self.total_buckets > len(self.buckets)


class ChartConfig(BaseModel):
    type: str
    title: str
    x_axis_key: str = Field(alias="xAxisKey")
    y_axis_key: Union[str, List[str]] = Field(alias="yAxisKey")
    description: Optional[str] = None
    group_by: Optional[str] = Field(None, alias="groupBy")
    size_by: Optional[str] = Field(None, alias="sizeBy")

    model_config = {"populate_by_name": True}


class AnalysisResponse(BaseModel):
    intent: Literal["ANALYSIS", "CHART", "UNKNOWN"] = "ANALYSIS"
    text_response: str = Field("", alias="textResponse")
    chart_config: Optional[ChartConfig] = Field(None, alias="chartConfig")

    model_config = {"populate_by_name": True}
