"""
Immutable, backend-independent relational query.

A ``Query`` accumulates filter / select / inner-join / mutate steps and is
only translated to SQL by its terminal operations. All steps the connected
dialect can evaluate are compiled into a single SELECT that runs on the
server; only the result crosses the network. Steps using an expression the
dialect cannot evaluate (and every step after them) are applied to the
materialized frame with polars instead.

Usage::

    funda = Query.table("comp", "funda")
    company = Query.table("comp", "company").select("gvkey", "sic")
    frame = (
        funda.filter(col("indfmt") == "INDL")
        .select("gvkey", "fyear", ("cstat_ticker", "tic"))
        .inner_join(company, on="gvkey")
        .collect(connection)
    )
"""

import logging

import polars as pl
import sqlalchemy as sa
from tqdm import tqdm

from expressions import QueryError, coalesce, col

logger = logging.getLogger(__name__)


class Filter:
    remote_only = False

    def __init__(self, predicates):
        self.predicates = tuple(predicates)

    def supports(self, dialect_name):
        return all(p.supports(dialect_name) for p in self.predicates)

    def apply_sql(self, state, connection):
        state.where.extend(p.to_sql(state.columns) for p in self.predicates)
        return state

    def apply_polars(self, frame):
        return frame.filter(*[p.to_polars() for p in self.predicates])

    def __repr__(self):
        return f"filter({', '.join(map(repr, self.predicates))})"


class Select:
    remote_only = False

    def __init__(self, pairs):
        # (target, source) pairs, in output order
        self.pairs = tuple(pairs)

    def supports(self, dialect_name):
        return True

    def apply_sql(self, state, connection):
        columns = {}
        for target, source in self.pairs:
            if source not in state.columns:
                raise QueryError(f"Unknown column '{source}'")
            columns[target] = state.columns[source]
        state.columns = columns
        return state

    def apply_polars(self, frame):
        return frame.select([pl.col(source).alias(target) for target, source in self.pairs])

    def __repr__(self):
        return f"select({', '.join(t if t == s else f'{t}={s}' for t, s in self.pairs)})"


class Mutate:
    remote_only = False

    def __init__(self, assignments):
        self.assignments = tuple(assignments)

    def supports(self, dialect_name):
        return all(expr.supports(dialect_name) for _, expr in self.assignments)

    def apply_sql(self, state, connection):
        # Later assignments see earlier ones
        for name, expr in self.assignments:
            state.columns[name] = expr.to_sql(state.columns)
        return state

    def apply_polars(self, frame):
        for name, expr in self.assignments:
            frame = frame.with_columns(expr.to_polars().alias(name))
        return frame

    def __repr__(self):
        return f"mutate({', '.join(f'{n}={e!r}' for n, e in self.assignments)})"


class InnerJoin:
    remote_only = True

    def __init__(self, other, on):
        self.other = other
        self.on = tuple(on)

    def supports(self, dialect_name):
        return True

    def apply_sql(self, state, connection):
        left = state.to_select().subquery()
        right = self.other._compile_state(connection).to_select().subquery()

        for key in self.on:
            if key not in left.c or key not in right.c:
                raise QueryError(f"Join key '{key}' missing from one side of the join")
        clash = [c.name for c in right.c if c.name in left.c and c.name not in self.on]
        if clash:
            raise QueryError(f"Columns present on both sides of the join: {', '.join(clash)}")

        condition = sa.and_(*[left.c[key] == right.c[key] for key in self.on])
        columns = {c.name: c for c in left.c}
        columns.update({c.name: c for c in right.c if c.name not in self.on})
        return _State(left.join(right, condition), columns)

    def apply_polars(self, frame):
        raise QueryError("An inner join cannot be evaluated after materialization")

    def __repr__(self):
        return f"inner_join({self.other!r}, on={list(self.on)})"


class _State:
    """Running translation: FROM clause, named column expressions, WHERE terms."""

    def __init__(self, from_, columns, where=None):
        self.from_ = from_
        self.columns = columns
        self.where = list(where or [])

    def to_select(self):
        stmt = sa.select(*[expr.label(name) for name, expr in self.columns.items()]).select_from(self.from_)
        if self.where:
            stmt = stmt.where(*self.where)
        return stmt


class Query:
    """An immutable chain of relational steps over one source table."""

    def __init__(self, schema: str, name: str, steps=()):
        self.schema = schema
        self.name = name
        self.steps = tuple(steps)

    @classmethod
    def table(cls, schema: str, name: str) -> "Query":
        return cls(schema, name)

    def _then(self, step) -> "Query":
        return Query(self.schema, self.name, self.steps + (step,))

    # ── Builders ────────────────────────────────────────────────

    def filter(self, *predicates) -> "Query":
        """Keep rows for which every predicate holds."""
        return self._then(Filter(predicates))

    def select(self, *names, **renames) -> "Query":
        """
        Keep and order columns. Positional items are names or
        ``(new_name, old_name)`` pairs; keywords are ``new_name="old_name"``.
        """
        pairs = [(n, n) if isinstance(n, str) else tuple(n) for n in names]
        pairs.extend(renames.items())
        return self._then(Select(pairs))

    def inner_join(self, other: "Query", on) -> "Query":
        """Join on equal keys; rows without a match on both sides are dropped."""
        on = (on,) if isinstance(on, str) else tuple(on)
        return self._then(InnerJoin(other, on))

    def mutate(self, **exprs) -> "Query":
        """Add or replace columns, evaluated left to right."""
        return self._then(Mutate(exprs.items()))

    def fill_zero(self, *names) -> "Query":
        """Replace missing values with 0 in the given columns."""
        return self.mutate(**{name: coalesce(col(name), 0) for name in names})

    # ── Translation ─────────────────────────────────────────────

    def _split(self, dialect_name):
        """Steps compiled to SQL, and steps left for polars after the fetch."""
        for i, step in enumerate(self.steps):
            if not step.supports(dialect_name):
                local = self.steps[i:]
                if any(s.remote_only for s in local):
                    raise QueryError(
                        f"{step!r} cannot run on '{dialect_name}' and is followed by a join"
                    )
                return self.steps[:i], local
        return self.steps, ()

    def _compile_state(self, connection, steps=None) -> _State:
        if steps is None:
            steps, local = self._split(connection.dialect.name)
            if local:
                raise QueryError(f"Joined query on {self.schema}.{self.name} must run entirely in the database")
        table = sa.Table(self.name, sa.MetaData(), schema=self.schema, autoload_with=connection)
        state = _State(table, {c.name: c for c in table.c})
        for step in steps:
            state = step.apply_sql(state, connection)
        return state

    def compile(self, connection):
        """The single SELECT statement covering every remotely evaluable step."""
        remote, _ = self._split(connection.dialect.name)
        return self._compile_state(connection, remote).to_select()

    def show_query(self, connection) -> str:
        """SQL text sent to the server, with literal values inlined."""
        remote, local = self._split(connection.dialect.name)
        stmt = self._compile_state(connection, remote).to_select()
        sql = str(stmt.compile(dialect=connection.dialect, compile_kwargs={"literal_binds": True}))
        if local:
            sql += "\n-- evaluated after fetch: " + "; ".join(map(repr, local))
        return sql

    # ── Execution ───────────────────────────────────────────────

    def collect(self, connection, batch_size=None) -> pl.DataFrame:
        """
        Execute the query and pull the full result into memory.

        With ``batch_size`` the rows are fetched in batches behind a
        progress bar; the complete result is still returned.
        """
        remote, local = self._split(connection.dialect.name)
        stmt = self._compile_state(connection, remote).to_select()

        if batch_size:
            batches = pl.read_database(
                stmt,
                connection,
                iter_batches=True,
                batch_size=batch_size,
                infer_schema_length=None,
            )
            frames = [batch for batch in tqdm(batches, desc=f"{self.schema}.{self.name}", unit="batch")]
            if frames:
                frame = pl.concat(frames, how="vertical_relaxed")
            else:
                frame = pl.DataFrame(schema=[c.name for c in stmt.selected_columns])
        else:
            frame = pl.read_database(stmt, connection, infer_schema_length=None)

        if local:
            logger.info(f"Evaluating {len(local)} step(s) after fetch: {'; '.join(map(repr, local))}")
            for step in local:
                frame = step.apply_polars(frame)
        return frame

    def __repr__(self):
        return f"Query({self.schema}.{self.name}, {len(self.steps)} steps)"
