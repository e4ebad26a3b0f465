from datastat.core.ingestion import build_dataset
from datastat.core.interpreter import interpret_command
from datastat.models import Dataset, LogType, SheetData


def _sales():
    return build_dataset("sales", [
        {"id": i, "price": p, "region": r}
        for i, (p, r) in enumerate([(10, "N"), (20, "S"), (30, "N"), (40, "E"), (50, "S")], start=1)
    ])


def _customers():
    return build_dataset("customers", [
        {"id": 1, "segment": "retail"},
        {"id": 3, "segment": "wholesale"},
        {"id": 9, "segment": "retail"},
    ])


def _run(command, dataset=None, datasets=None):
    dataset = dataset or _sales()
    return interpret_command(command, dataset, datasets or [dataset])


def _content(result):
    assert len(result.logs) >= 1
    return result.logs[-1].content


def _is_error(result):
    return result.handled and result.logs[0].type == LogType.ERROR and result.rows is None


def _apply(dataset, result):
    sheet = SheetData(rows=result.rows, summaries=result.summaries)
    return Dataset(name=dataset.name, sheets={"Sheet1": sheet}, active_sheet_name="Sheet1")

# --- Tests for Dispatch ---

def test_unknown_text_is_not_handled():
    result = _run("what is the average price?")
    assert result.handled is False
    assert result.logs == []

def test_blank_input_is_not_handled():
    assert _run("   ").handled is False

def test_keywords_are_case_insensitive():
    assert "Obs" in _content(_run("SUMMARIZE price"))

# --- Tests for describe ---

def test_describe_lists_variables():
    out = _content(_run("describe"))
    assert "Contains data from sales (Sheet: Sheet1)" in out
    assert "obs: 5" in out
    assert "price" in out and "float" in out
    assert "region" in out and "str" in out

def test_describe_unknown_variable_is_an_error():
    result = _run("d nope")
    assert _is_error(result)
    assert "nope" in result.logs[0].content

# --- Tests for summarize ---

def test_summarize_scenario():
    data = build_dataset("p", [{"price": v} for v in (10, 20, 30)])
    out = _content(_run("summarize", data))
    line = out.splitlines()[2].split()
    assert line == ["price", "3", "20.00", "10.00", "10", "30"]

def test_summarize_defaults_to_numeric_columns():
    out = _content(_run("su"))
    assert "price" in out
    assert "region" not in out

def test_summarize_named_string_column_reports_no_obs():
    out = _content(_run("summarize region"))
    assert out.splitlines()[2].split() == ["region", "0", ".", ".", ".", "."]

def test_summarize_without_numeric_columns():
    data = build_dataset("t", [{"name": "x"}])
    assert _content(_run("summarize", data)) == "No numeric variables to summarize."

# --- Tests for list ---

def _listed_obs(out):
    return [line.split()[0] for line in out.splitlines()[2:]]

def test_list_range_scenario():
    out = _content(_run("list in 1/2"))
    assert _listed_obs(out) == ["1", "2"]
    assert out.splitlines()[0].split() == ["Obs", "id", "price", "region"]

def test_list_selected_columns_and_single_observation():
    out = _content(_run("list price in 3"))
    assert out.splitlines()[0].split() == ["Obs", "price"]
    assert out.splitlines()[2].split() == ["3", "30"]

def test_list_first_last_tokens_and_clamping():
    assert _listed_obs(_content(_run("list in f/l"))) == ["1", "2", "3", "4", "5"]
    assert _listed_obs(_content(_run("list in 4/99"))) == ["4", "5"]

def test_list_default_row_limit():
    data = build_dataset("big", [{"x": i} for i in range(30)])
    assert len(_listed_obs(_content(_run("list", data)))) == 5
    assert len(_listed_obs(_content(_run("list x", data)))) == 20

def test_list_bad_ranges_are_errors():
    for command in ("list in a/b", "list in 3/1", "list in 0/2", "list in 9", "list in", "list nope"):
        assert _is_error(_run(command)), command

# --- Tests for count ---

def test_count():
    assert _content(_run("count")) == "5"

def test_count_if():
    assert _content(_run("count if price > 20")) == "3"
    assert _content(_run('count if region == "N"')) == "2"

def test_count_bad_syntax():
    assert _is_error(_run("count price"))
    assert _is_error(_run("count if nope > 1"))

# --- Tests for generate ---

def test_generate_scenario():
    data = build_dataset("p", [{"price": 100}])
    result = _run("generate tax = price * 0.1", data)
    assert result.rows[0]["tax"] == 10
    assert [s.name for s in result.summaries] == ["price", "tax"]
    assert _content(result) == "Variable tax generated."

def test_generate_without_spaces_and_abbreviation():
    result = _run("gen double_price=price*2")
    assert [r["double_price"] for r in result.rows] == [20, 40, 60, 80, 100]

def test_generate_reports_missing_values():
    data = build_dataset("p", [{"a": 1}, {"a": None}])
    result = _run("generate b = a + 1", data)
    assert result.rows[1]["b"] is None
    assert result.logs[0].content == "(1 missing values generated)"

def test_generate_does_not_touch_input_rows():
    data = _sales()
    _run("generate x = price + 1", data)
    assert "x" not in data.active_sheet.rows[0]

def test_generate_errors_write_nothing():
    for command in (
        "generate price = 1",        # exists
        "generate y = nope + 1",     # unknown variable
        "generate y = price +",      # syntax
        "generate y = region * 2",   # type mismatch at evaluation
        "generate y",                # no expression
        "generate 2y = 1",           # bad name
    ):
        assert _is_error(_run(command)), command

def _people():
    return build_dataset("people", [
        {"first": "Ada", "last": "Lovelace"},
        {"first": "Alan", "last": None},
    ])

def test_generate_with_missing_string_cells():
    """A missing string cell gives a missing result for that row only."""
    result = _run('generate full = first + " " + last', _people())
    assert [r["full"] for r in result.rows] == ["Ada Lovelace", None]
    assert result.logs[0].content == "(1 missing values generated)"

    result = _run("generate u = upper(last)", _people())
    assert [r["u"] for r in result.rows] == ["LOVELACE", None]

def test_count_if_skips_missing_string_cells():
    assert _content(_run('count if last < "M"', _people())) == "1"
    assert _content(_run("count if last == .", _people())) == "1"
    assert _content(_run("count if last != .", _people())) == "1"

# --- Tests for drop ---

def test_drop_scenario():
    data = _sales()
    result = _run("drop price", data)
    assert all("price" not in row for row in result.rows)
    assert "price" not in [s.name for s in result.summaries]
    assert "price" not in _content(_run("describe", _apply(data, result)))

def test_drop_errors():
    assert _is_error(_run("drop"))
    assert _is_error(_run("drop price nope"))

# --- Tests for merge ---

def test_merge_one_to_one():
    sales, customers = _sales(), _customers()
    result = _run("merge 1:1 id using customers", sales, [sales, customers])
    assert result.rows[0]["segment"] == "retail"
    assert "segment" not in result.rows[1]
    assert [s.name for s in result.summaries] == ["id", "price", "region", "segment"]
    report = _content(result)
    assert "matched" in report and "from using" in report

def test_merge_errors():
    sales, customers = _sales(), _customers()
    everything = [sales, customers]
    missing = _run("merge 1:1 id using nowhere", sales, everything)
    assert _is_error(missing)
    assert "Available: sales, customers" in missing.logs[0].content
    assert _is_error(_run("merge m:1 id using customers", sales, everything))
    assert _is_error(_run("merge 1:1 segment using customers", sales, everything))
    assert _is_error(_run("merge 1:1 price using customers", sales, everything))

# --- Tests for frame ---

def test_frame_change():
    sales, customers = _sales(), _customers()
    result = _run("frame change customers", sales, [sales, customers])
    assert result.switch_to == "customers"
    assert result.rows is None

def test_frame_change_unknown_is_an_error():
    result = _run("frame change nowhere")
    assert _is_error(result)
    assert result.switch_to is None

def test_frame_dir_and_pwd():
    sales, customers = _sales(), _customers()
    out = _content(_run("frame dir", sales, [sales, customers]))
    assert "* sales" in out and "customers" in out
    assert "sales" in _content(_run("frame pwd"))
    assert _is_error(_run("frame"))
