import csv
import datetime
import io
import os
import re
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from datastat.config import settings
from datastat.core.profiler import column_order, generate_summaries
from datastat.models import Dataset, Row, SheetData
from datastat.utils.exceptions import FileProcessingError
from datastat.utils.logger import get_logger

logger = get_logger(__name__)

# pandas needs openpyxl for xlsx and xlrd for legacy xls workbooks
EXCEL_ENGINES = {".xlsx": "openpyxl", ".xls": "xlrd"}

# Loose date shapes such as 2025-3-1, 01/02/2024 or 2024.01.02 0:00
_DATE_LIKE = re.compile(r"\d{1,4}[-/.]\d{1,2}[-/.]\d{1,4}")


def _native(value):
    """Plain Python scalars only: numpy types unboxed, NaN/NaT -> None, bool -> int,
    dates and times as ISO text."""
    if isinstance(value, np.generic):
        value = value.item()
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, datetime.datetime):  # includes pd.Timestamp
        return value.strftime("%Y-%m-%d")
    if isinstance(value, (datetime.date, datetime.time)):
        return value.isoformat()
    return value


def _normalize_date(value):
    if not isinstance(value, str) or not _DATE_LIKE.search(value):
        return value
    parsed = pd.to_datetime(value, errors="coerce")
    if pd.isna(parsed):
        return value
    return parsed.strftime("%Y-%m-%d")


def frame_to_rows(df: pd.DataFrame) -> Tuple[List[Row], List[str]]:
    """
    Convert a DataFrame into rows of plain values.
    Datetime columns and date-like strings are normalised to YYYY-MM-DD.
    """
    df = df.copy()
    df.columns = [str(c).strip() for c in df.columns]

    for col in df.columns:
        if pd.api.types.is_datetime64_any_dtype(df[col]):
            df[col] = df[col].dt.strftime("%Y-%m-%d")
        elif pd.api.types.is_object_dtype(df[col]) or pd.api.types.is_string_dtype(df[col]):
            df[col] = df[col].map(_normalize_date)

    columns = list(df.columns)
    rows = [
        {col: _native(value) for col, value in zip(columns, record)}
        for record in df.itertuples(index=False, name=None)
    ]
    return rows, columns


def build_sheet(rows: Sequence[Row], columns: Optional[Sequence[str]] = None) -> SheetData:
    """Profile rows once and wrap them as a sheet."""
    columns = list(columns) if columns is not None else column_order(rows)
    return SheetData(rows=list(rows), summaries=generate_summaries(rows, columns))


def build_dataset(
    name: str,
    sheets: Union[Sequence[Row], Mapping[str, Sequence[Row]]],
    active_sheet_name: Optional[str] = None,
) -> Dataset:
    """Build a dataset from already-parsed rows (one sheet or several by name)."""
    if not isinstance(sheets, Mapping):
        sheets = {"Sheet1": sheets}
    if not sheets:
        raise FileProcessingError(f"Dataset '{name}' has no sheets.")
    built: Dict[str, SheetData] = {sheet: build_sheet(rows) for sheet, rows in sheets.items()}
    return Dataset(
        name=name,
        sheets=built,
        active_sheet_name=active_sheet_name or next(iter(built)),
    )


def dataset_name(filename: str) -> str:
    stem = os.path.splitext(os.path.basename(filename))[0].strip()
    return stem or "dataset"


def _read_frames(file_content: bytes, filename: str) -> Dict[str, pd.DataFrame]:
    engine = EXCEL_ENGINES.get(os.path.splitext(filename)[1].lower())
    if engine:
        return pd.read_excel(io.BytesIO(file_content), sheet_name=None, engine=engine)

    # We decode a small chunk to sniff the delimiter
    try:
        decoded_chunk = file_content[:1024].decode("utf-8")
        delimiter = csv.Sniffer().sniff(decoded_chunk, delimiters=",;\t|").delimiter
    except (UnicodeDecodeError, csv.Error):
        delimiter = ","  # Fallback to comma
    logger.info(f"Detected delimiter: '{delimiter}'")

    df = pd.read_csv(io.BytesIO(file_content), sep=delimiter, on_bad_lines="warn", encoding="utf-8")
    return {"Sheet1": df}


def ingest_file(file_content: bytes, filename: str) -> Dataset:
    """
    Parse an uploaded CSV or Excel file into a profiled Dataset.
    Every non-empty worksheet becomes a sheet; the first one is active.

    Raises:
        FileProcessingError: If the file is too large, empty or unreadable.
    """
    logger.info(f"Starting ingestion for file: {filename}")

    try:
        # 1. Validate File Size
        size_mb = len(file_content) / (1024 * 1024)
        if size_mb > settings.MAX_UPLOAD_SIZE_MB:
            raise FileProcessingError(f"File exceeds {settings.MAX_UPLOAD_SIZE_MB}MB limit.")
        if not file_content.strip():
            raise FileProcessingError("The uploaded file contains no data.")

        # 2. Read every sheet
        sheets: Dict[str, SheetData] = {}
        for sheet_name, df in _read_frames(file_content, filename).items():
            if df.empty:
                continue
            rows, columns = frame_to_rows(df)
            sheets[str(sheet_name)] = build_sheet(rows, columns)

        if not sheets:
            raise FileProcessingError("The uploaded file contains no data.")

        dataset = Dataset(
            name=dataset_name(filename),
            sheets=sheets,
            active_sheet_name=next(iter(sheets)),
        )
        logger.info(
            f"Ingestion successful. {len(sheets)} sheet(s), "
            f"{len(dataset.active_sheet.rows)} rows in '{dataset.active_sheet_name}'"
        )
        return dataset

    except FileProcessingError:
        raise
    except Exception as e:
        logger.error(f"Error during ingestion: {str(e)}")
        raise FileProcessingError(f"Failed to parse {filename}: {str(e)}")
