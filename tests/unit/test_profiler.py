from datastat.core.profiler import column_order, generate_summaries, infer_type

ROWS = [
    {"price": 10, "region": "North", "date": "2024-01-05"},
    {"price": 30, "region": "South", "date": "2024-01-06"},
    {"price": 20, "region": "North", "date": None},
    {"price": None, "region": "", "date": "2024-01-08"},
]
COLUMNS = ["price", "region", "date"]


def _by_name(summaries):
    return {s.name: s for s in summaries}

# --- Tests for Type Inference ---

def test_infers_number_string_and_date():
    """Each column's type comes from its first non-missing value."""
    s = _by_name(generate_summaries(ROWS, COLUMNS))
    assert s["price"].type == "number"
    assert s["region"].type == "string"
    assert s["date"].type == "date"

def test_date_pattern_is_strict():
    """Only zero-padded YYYY-MM-DD counts as a date."""
    assert infer_type(["2024-1-5"]) == "string"
    assert infer_type(["2024-01-05"]) == "date"

def test_first_value_policy_ignores_later_values():
    values = ["n/a", 1, 2, 3]
    assert infer_type(values, policy="first") == "string"

def test_majority_policy_votes_over_window():
    values = ["n/a", 1, 2, 3]
    assert infer_type(values, policy="majority") == "number"
    # window of one only sees the string
    assert infer_type(values, policy="majority", window=1) == "string"

def test_majority_policy_stats_use_numeric_values_only():
    rows = [{"x": "n/a"}, {"x": 1}, {"x": 3}]
    s = generate_summaries(rows, ["x"], policy="majority")[0]
    assert s.type == "number"
    assert s.min == 1 and s.max == 3 and s.mean == 2

# --- Tests for Statistics ---

def test_numeric_statistics():
    s = _by_name(generate_summaries(ROWS, COLUMNS))["price"]
    assert s.min == 10
    assert s.max == 30
    assert s.mean == 20
    assert s.median == 20
    assert s.missing == 1
    assert s.distinct is None

def test_even_count_median_averages_middle_values():
    rows = [{"x": v} for v in (4, 1, 3, 2)]
    s = generate_summaries(rows, ["x"])[0]
    assert s.median == 2.5

def test_min_median_mean_max_ordering():
    rows = [{"x": v} for v in (7, 1, 100, 3, 3)]
    s = generate_summaries(rows, ["x"])[0]
    assert s.min <= s.median <= s.max
    assert s.min <= s.mean <= s.max

def test_string_columns_report_distinct_values():
    s = _by_name(generate_summaries(ROWS, COLUMNS))["region"]
    assert s.distinct == 2
    assert s.min is None and s.mean is None

def test_empty_string_counts_as_missing():
    """Missing plus present values always equals the row count."""
    for s in generate_summaries(ROWS, COLUMNS):
        assert s.missing + s.count == len(ROWS)
    assert _by_name(generate_summaries(ROWS, COLUMNS))["region"].missing == 1

def test_all_missing_column():
    rows = [{"x": None}, {"x": ""}]
    s = generate_summaries(rows, ["x"])[0]
    assert s.type == "string"
    assert s.min is None and s.max is None and s.mean is None
    assert s.missing == 2

def test_absent_keys_are_missing():
    rows = [{"a": 1}, {"b": 2}]
    s = _by_name(generate_summaries(rows, ["a", "b"]))
    assert s["a"].missing == 1 and s["b"].missing == 1

def test_sample_is_short_and_skips_missing():
    rows = [{"x": None}] + [{"x": i} for i in range(10)]
    s = generate_summaries(rows, ["x"], sample_size=5)[0]
    assert s.sample == [0, 1, 2, 3, 4]

def test_profiling_is_deterministic():
    first = [s.model_dump() for s in generate_summaries(ROWS, COLUMNS)]
    second = [s.model_dump() for s in generate_summaries(ROWS, COLUMNS)]
    assert first == second

def test_column_order_is_first_seen():
    rows = [{"b": 1, "a": 2}, {"c": 3, "a": 4}]
    assert column_order(rows) == ["b", "a", "c"]
