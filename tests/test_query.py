"""Tests for the Ibis/DuckDB query engine."""

import duckdb
import pytest

from relay.lib.errors import QueryError, QuerySyntaxError, SchemaMismatchError
from relay.lib.query import DEFAULT_QUERY, IbisQueryEngine
from tests.helpers import make_table


@pytest.fixture
def engine():
    with IbisQueryEngine() as eng:
        yield eng


@pytest.fixture
def orders():
    return make_table(
        order_id=[1, 2, 3, 4],
        customer=["ann", "bob", "ann", "cy"],
        amount=[10.0, -5.0, 7.5, 0.0],
    )


def test_default_query_returns_every_row_in_order(engine, orders):
    engine.register_table("df", orders)
    result = engine.execute(DEFAULT_QUERY)
    assert result.column_names == ["order_id", "customer", "amount"]
    assert result.column("order_id").to_pylist() == [1, 2, 3, 4]


def test_filter_and_projection(engine, orders):
    engine.register_table("df", orders)
    result = engine.execute("SELECT order_id, amount * 2 AS doubled FROM df WHERE amount > 0 ORDER BY order_id")
    assert result.column_names == ["order_id", "doubled"]
    assert result.to_pylist() == [
        {"order_id": 1, "doubled": 20.0},
        {"order_id": 3, "doubled": 15.0},
    ]


def test_aggregate(engine, orders):
    engine.register_table("df", orders)
    result = engine.execute(
        "SELECT customer, COUNT(*) AS n FROM df GROUP BY customer ORDER BY customer"
    )
    assert result.to_pylist() == [
        {"customer": "ann", "n": 2},
        {"customer": "bob", "n": 1},
        {"customer": "cy", "n": 1},
    ]


def test_zero_row_result(engine, orders):
    engine.register_table("df", orders)
    result = engine.execute("SELECT * FROM df WHERE amount > 1000")
    assert result.num_rows == 0
    assert result.column_names == ["order_id", "customer", "amount"]


def test_register_replaces_existing(engine, orders):
    engine.register_table("df", orders)
    engine.register_table("df", make_table(order_id=[9]))
    assert engine.execute("SELECT * FROM df").column("order_id").to_pylist() == [9]
    assert engine.tables == ["df"]


def test_custom_table_name(engine, orders):
    engine.register_table("events", orders)
    assert engine.execute("SELECT COUNT(*) AS n FROM events").to_pylist() == [{"n": 4}]


def test_invalid_query_raises_query_error(engine, orders):
    engine.register_table("df", orders)
    with pytest.raises(QueryError) as exc_info:
        engine.execute("SELEC * FROM df")
    assert exc_info.value.query == "SELEC * FROM df"


def test_unknown_table_raises_query_error(engine, orders):
    engine.register_table("df", orders)
    with pytest.raises(QueryError):
        engine.execute("SELECT * FROM no_such_table")


class _RaisingCon:
    def __init__(self, error):
        self.error = error

    def sql(self, query):
        raise self.error

    def disconnect(self):
        pass


@pytest.mark.parametrize(
    "raised, expected",
    [
        (duckdb.ParserException("syntax error at or near SELEC"), QuerySyntaxError),
        (duckdb.CatalogException("Table with name nope does not exist"), SchemaMismatchError),
        (duckdb.BinderException('Referenced column "x" not found'), SchemaMismatchError),
        (RuntimeError("out of memory"), QueryError),
    ],
)
def test_driver_errors_are_classified(raised, expected):
    engine = IbisQueryEngine(con=_RaisingCon(raised))
    with pytest.raises(expected) as exc_info:
        engine.execute("SELECT 1")
    assert exc_info.value.cause is raised


def test_close_is_idempotent(orders):
    engine = IbisQueryEngine()
    engine.register_table("df", orders)
    engine.close()
    engine.close()
    assert engine.tables == []
