import json

import pytest

from dataglow.workers.graph.core.types import Column, Table
from dataglow.workers.graph.io.ingest import parse_table
from dataglow.workers.graph.nodes.clean import clean_table
from dataglow.workers.graph.nodes.profile import compute_stats, count_duplicate_rows, summarize_numeric


SCENARIO = "name,age,signup_date\nAlice,30,2023-01-05\nBob,,2023-01-06\nAlice,30,2023-01-05\n"


def test_stats_for_cleaned_scenario():
    stats = compute_stats(clean_table(parse_table(SCENARIO)).table)

    assert stats.total_rows == 2
    assert stats.total_columns == 3
    assert stats.missing_values == 1
    assert stats.duplicate_rows == 0
    assert [info.to_dict() for info in stats.columns_info] == [
        {"name": "name", "distinct": 2, "missing": 0, "type": "string"},
        {"name": "age", "distinct": 1, "missing": 1, "type": "number"},
        {"name": "signup_date", "distinct": 2, "missing": 0, "type": "date"},
    ]
    age = stats.summary_for("age")
    assert (age.min, age.max, age.mean, age.median, age.std) == (30, 30, 30, 30, 0)


def test_stats_serialize_with_camel_case_keys():
    payload = compute_stats(parse_table(SCENARIO)).to_dict()
    assert set(payload) == {"totalRows", "totalColumns", "missingValues", "duplicateRows", "columnsInfo", "summary"}
    assert payload["duplicateRows"] == 1


@pytest.mark.parametrize(
    "values, median",
    [([3, 1, 2], 2), ([4, 1, 3, 2], 2.5), ([7], 7), ([10, -10], 0)],
)
def test_median_of_sorted_values(values, median):
    assert summarize_numeric("x", [float(value) for value in values]).median == median


def test_standard_deviation_is_population():
    summary = summarize_numeric("x", [2, 4, 4, 4, 5, 5, 7, 9])
    assert summary.mean == 5
    assert summary.std == pytest.approx(2.0)


def test_unparseable_numbers_are_ignored():
    table = Table(columns=[Column("n", "number")], rows=[{"n": "10"}, {"n": "abc"}, {"n": "20"}, {}])
    stats = compute_stats(table)
    summary = stats.summary_for("n")
    assert (summary.min, summary.max, summary.mean) == (10, 20, 15)
    assert stats.missing_values == 1


def test_numeric_column_without_values_has_undefined_summary():
    table = Table(columns=[Column("n", "number")], rows=[{"n": "n/a"}])
    assert compute_stats(table).summary_for("n").to_dict() == {"column": "n"}


def test_only_number_columns_are_summarized():
    stats = compute_stats(parse_table("flag,count\nyes,1\nno,2\n"))
    assert [entry.column for entry in stats.summary] == ["count"]


def test_duplicate_rows_counted_structurally():
    table = Table(
        columns=[Column("a", "string"), Column("b", "string")],
        rows=[{"a": "x", "b": ""}, {"a": "x"}, {"b": "", "a": "x"}, {"a": "y"}],
    )
    assert count_duplicate_rows(table) == 2


def test_empty_table_stats():
    stats = compute_stats(Table.empty())
    assert stats.to_dict() == {
        "totalRows": 0,
        "totalColumns": 0,
        "missingValues": 0,
        "duplicateRows": 0,
        "columnsInfo": [],
        "summary": [],
    }


def test_numeric_summary_stays_finite_near_the_float_limits():
    summary = summarize_numeric("n", [-1e308, 1e308])
    assert (summary.min, summary.max, summary.mean, summary.median) == (-1e308, 1e308, 0.0, 0.0)
    assert summary.std == pytest.approx(1e308)

    table = Table(columns=[Column("n", "number")], rows=[{"n": "-1e308"}, {"n": "1"}, {"n": "1e308"}])
    json.dumps(compute_stats(table).to_dict(), allow_nan=False)


def test_only_plain_decimal_and_exponent_values_are_summarized():
    table = Table(
        columns=[Column("n", "number")],
        rows=[{"n": value} for value in ["1_000", "0x10", "nan", "Infinity", " 2 ", "1.5e3", ".5", "+4"]],
    )
    summary = compute_stats(table).summary_for("n")
    assert (summary.min, summary.max) == (0.5, 1500.0)
    assert summary.mean == pytest.approx((2 + 1500 + 0.5 + 4) / 4)
