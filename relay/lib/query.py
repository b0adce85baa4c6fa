"""SQL execution over merged tables using Ibis + DuckDB.

The merged Arrow table is registered under a name (``df`` by default) in
an in-process DuckDB connection and the user's query runs against it.

Example:
    >>> engine = IbisQueryEngine()
    >>> engine.register_table("df", merged)
    >>> result = engine.execute("SELECT * FROM df WHERE amount > 0")
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional

import duckdb
import ibis
import pyarrow as pa

from relay.lib.errors import QueryError, QuerySyntaxError, SchemaMismatchError

logger = logging.getLogger(__name__)

__all__ = ["DEFAULT_QUERY", "DEFAULT_TABLE_NAME", "IbisQueryEngine", "QueryEngine"]

DEFAULT_TABLE_NAME = "df"
DEFAULT_QUERY = f"SELECT * FROM {DEFAULT_TABLE_NAME}"


class QueryEngine:
    """Interface for registering tables and running SQL against them."""

    def register_table(self, name: str, table: pa.Table) -> None:
        raise NotImplementedError

    def execute(self, query: str) -> pa.Table:
        raise NotImplementedError

    def close(self) -> None:
        pass


class IbisQueryEngine(QueryEngine):
    """Query engine backed by an Ibis DuckDB connection."""

    def __init__(self, con: Optional[ibis.BaseBackend] = None) -> None:
        self._con = con
        self._tables: List[str] = []

    @property
    def con(self) -> ibis.BaseBackend:
        """Lazy-create the DuckDB connection."""
        if self._con is None:
            self._con = ibis.duckdb.connect()
        return self._con

    @property
    def tables(self) -> List[str]:
        return list(self._tables)

    def register_table(self, name: str, table: pa.Table) -> None:
        """Register (or replace) a named table."""
        self.con.create_table(name, table, overwrite=True)
        if name not in self._tables:
            self._tables.append(name)
        logger.debug("Registered table '%s' with %d rows", name, table.num_rows)

    def execute(self, query: str) -> pa.Table:
        """Run a SQL query and return the result as an Arrow table.

        Raises:
            QuerySyntaxError: If DuckDB cannot parse the query
            SchemaMismatchError: If the query references unknown tables/columns
                or applies operations to incompatible types
            QueryError: For any other execution failure
        """
        try:
            expr = self.con.sql(query)
            result = expr.to_pyarrow()
        except duckdb.ParserException as e:
            raise QuerySyntaxError(f"Query could not be parsed: {e}", query=query, cause=e) from e
        except (duckdb.CatalogException, duckdb.BinderException) as e:
            raise SchemaMismatchError(
                f"Query does not match the registered tables: {e}",
                query=query,
                cause=e,
                suggestion=f"Registered tables: {', '.join(self._tables) or 'none'}",
            ) from e
        except Exception as e:
            raise QueryError(f"Query execution failed: {e}", query=query, cause=e) from e

        logger.info("Query returned %d rows x %d columns", result.num_rows, result.num_columns)
        return result

    def close(self) -> None:
        if self._con is not None:
            try:
                self._con.disconnect()
            finally:
                self._con = None
                self._tables.clear()

    def __enter__(self) -> "IbisQueryEngine":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()
