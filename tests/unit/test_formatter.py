from datastat.core.formatter import format_table


def test_layout_and_alignment():
    """Columns are right-aligned at max(header, cell, 10) + 2."""
    out = format_table(["Variable", "Obs"], [["price", 3]])
    lines = out.split("\n")
    assert lines[0] == "    Variable" + " " * 9 + "Obs"
    assert lines[1] == "-" * 24
    assert lines[2] == "       price" + " " * 11 + "3"

def test_missing_cells_render_as_period():
    out = format_table(["x"], [[None]])
    assert out.split("\n")[2] == " " * 11 + "."

def test_wide_headers_and_cells_grow_the_column():
    out = format_table(["a_very_long_header"], [["short"]])
    assert len(out.split("\n")[1]) == len("a_very_long_header") + 2
    out = format_table(["h"], [["x" * 15]])
    assert len(out.split("\n")[1]) == 17

def test_integral_floats_print_without_decimals():
    out = format_table(["v"], [[10.0], [2.5]])
    lines = out.split("\n")
    assert lines[2].strip() == "10"
    assert lines[3].strip() == "2.5"

def test_formatting_is_idempotent():
    args = (["Obs", "price"], [[1, 10], [2, None]])
    assert format_table(*args) == format_table(*args)

def test_no_headers_gives_empty_output():
    assert format_table([], []) == ""
