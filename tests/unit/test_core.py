import io
from datetime import datetime, time

import pandas as pd
import pytest
from openpyxl import Workbook

from datastat.core import ingestion
from datastat.core.ingestion import build_dataset, ingest_file
from datastat.core.insights import build_analysis_prompt, parse_analysis_response
from datastat.core.workspace import Workspace
from datastat.models import LogType
from datastat.utils.exceptions import FileProcessingError, ReasoningResponseError

# --- Tests for Ingestion ---

def test_ingest_valid_csv():
    """Test that a valid CSV is parsed and profiled."""
    csv_content = "A,B\n1,2\n3,4"
    dataset = ingest_file(csv_content.encode('utf-8'), "test.csv")
    assert dataset.name == "test"
    assert dataset.active_sheet_name == "Sheet1"
    assert dataset.active_sheet.rows == [{"A": 1, "B": 2}, {"A": 3, "B": 4}]
    assert [s.type for s in dataset.active_sheet.summaries] == ["number", "number"]

def test_ingest_empty_csv():
    """Test that an empty CSV raises an error."""
    csv_content = ""
    with pytest.raises(FileProcessingError):
        ingest_file(csv_content.encode('utf-8'), "empty.csv")

def test_ingest_semicolon_csv():
    dataset = ingest_file(b"a;b\n1;x\n2;y", "semi.csv")
    assert dataset.active_sheet.columns == ["a", "b"]

def test_ingest_normalises_dates_and_missing_values():
    csv_content = "date,sales\n2024-1-5,10\n2024-01-06,\n"
    sheet = ingest_file(csv_content.encode('utf-8'), "dates.csv").active_sheet
    assert sheet.rows[0]["date"] == "2024-01-05"
    assert sheet.rows[1]["sales"] is None
    assert sheet.summary("date").type == "date"
    assert sheet.summary("sales").missing == 1

def _workbook(sheets):
    wb = Workbook()
    wb.remove(wb.active)
    for title, rows in sheets.items():
        ws = wb.create_sheet(title)
        for row in rows:
            ws.append(row)
    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()

def test_ingest_excel_workbook():
    """Every non-empty worksheet becomes a sheet; dates and times become text."""
    content = _workbook({
        "Orders": [["date", "amount"], [datetime(2024, 1, 5), 10], [datetime(2024, 1, 6), 20]],
        "Blank": [],
        "Shifts": [["start"], [time(9, 30)], [time(10, 0)]],
    })
    dataset = ingest_file(content, "book.xlsx")
    assert list(dataset.sheets) == ["Orders", "Shifts"]
    assert dataset.active_sheet_name == "Orders"

    orders = dataset.sheets["Orders"]
    assert orders.rows[0] == {"date": "2024-01-05", "amount": 10}
    assert orders.summary("date").type == "date"
    assert [r["start"] for r in dataset.sheets["Shifts"].rows] == ["09:30:00", "10:00:00"]

def test_workspace_switches_excel_sheet():
    ws = Workspace()
    ws.add_dataset(ingest_file(_workbook({"A": [["x"], [1]], "B": [["y"], [2]]}), "book.xlsx"))
    ws.set_active_sheet("book", "B")
    assert ws.active.active_sheet.columns == ["y"]
    assert ws.execute("describe").logs[-1].type == LogType.RESPONSE_TEXT

def test_legacy_xls_is_read_with_xlrd(monkeypatch):
    seen = {}

    def fake_read_excel(buffer, sheet_name=None, engine=None):
        seen["engine"] = engine
        return {"Sheet1": pd.DataFrame({"a": [1, 2]})}

    monkeypatch.setattr(ingestion.pd, "read_excel", fake_read_excel)
    dataset = ingest_file(b"legacy bytes", "old.xls")
    assert seen["engine"] == "xlrd"
    assert dataset.active_sheet.rows == [{"a": 1}, {"a": 2}]

# --- Tests for Workspace ---

def _workspace():
    ws = Workspace()
    ws.add_dataset(build_dataset("sales", [{"id": i, "price": 10 * i} for i in range(1, 4)]))
    ws.add_dataset(build_dataset("customers", [{"id": 1, "segment": "retail"}]), activate=False)
    return ws

def test_execute_echoes_and_commits_new_columns():
    ws = _workspace()
    result = ws.execute("generate tax = price * 0.1")
    assert result.logs[0].type == LogType.COMMAND
    assert "tax" in ws.active.active_sheet.columns
    assert ws.active.active_sheet.rows[0]["tax"] == 1

def test_failed_command_leaves_data_untouched():
    ws = _workspace()
    before = ws.active.active_sheet.model_dump()
    result = ws.execute("generate price = 1")
    assert result.logs[-1].type == LogType.ERROR
    assert ws.active.active_sheet.model_dump() == before

def test_frame_change_switches_active_dataset():
    ws = _workspace()
    ws.execute("frame change customers")
    assert ws.active_name == "customers"

def test_unhandled_text_falls_through():
    ws = _workspace()
    result = ws.execute("which region sells most?")
    assert result.handled is False
    prompt = ws.analysis_prompt("which region sells most?")
    assert "which region sells most?" in prompt
    assert '"price"' in prompt

def test_clear_all_and_no_data():
    ws = _workspace()
    ws.execute("clear all")
    assert ws.datasets == [] and ws.active is None
    result = ws.execute("describe")
    assert result.logs[-1].type == LogType.ERROR
    assert result.logs[-1].content == "No data loaded."

def test_duplicate_names_get_suffixes():
    ws = _workspace()
    added = ws.add_dataset(build_dataset("sales", [{"x": 1}]))
    assert added.name == "sales_2"

def test_removing_active_dataset_falls_back():
    ws = _workspace()
    ws.remove_dataset("sales")
    assert ws.active_name == "customers"
    ws.remove_dataset("customers")
    assert ws.active_name is None

# --- Tests for Reasoning Service Payloads ---

def test_parse_analysis_response_with_chart():
    raw = '```json\n{"intent": "CHART", "textResponse": "Sales by region", "chartConfig": {"type": "bar", "title": "Sales", "xAxisKey": "region", "yAxisKey": "sales"}}\n```'
    response = parse_analysis_response(raw)
    assert response.intent == "CHART"
    assert response.chart_config.x_axis_key == "region"

def test_chart_intent_without_config_becomes_analysis():
    response = parse_analysis_response({"intent": "CHART", "textResponse": "hi"})
    assert response.intent == "ANALYSIS"

def test_unreadable_response():
    with pytest.raises(ReasoningResponseError):
        parse_analysis_response("not json")

def test_analysis_prompt_flags_chart_requests():
    dataset = build_dataset("s", [{"x": 1}])
    prompt = build_analysis_prompt("plot x over time", dataset.active_sheet.summaries, [])
    assert "intent to CHART" in prompt
