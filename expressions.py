"""
Portable column expressions for the query builder.

An expression tree is built once and compiled either to a SQLAlchemy
column expression (``to_sql``), to run inside the database, or to a polars
expression (``to_polars``), to run on a materialized frame. Nothing here
depends on a particular SQL dialect except ``year_of``, whose SQL form is
only available where ``EXTRACT`` is known to work.

Example::

    calyear = if_else(col("fyr") > 3, year_of(col("datadate")) + 1, year_of(col("datadate")))

``when(...).otherwise(...)`` takes the ``otherwise`` branch when the
condition is missing, ``if_else`` returns a missing value instead.
"""

import operator

import polars as pl
import sqlalchemy as sa

# Dialects whose SQLAlchemy compiler renders EXTRACT(year FROM ...)
YEAR_DIALECTS = frozenset({"postgresql", "sqlite", "mysql", "mariadb", "mssql", "oracle", "duckdb"})

_OPERATORS = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


class QueryError(ValueError):
    """A query refers to unknown columns or cannot be composed."""


def _wrap(value):
    return value if isinstance(value, Expr) else Literal(value)


class Expr:
    """Base node. Subclasses implement ``to_sql``, ``to_polars`` and ``children``."""

    def children(self):
        return ()

    def to_sql(self, columns):
        raise NotImplementedError

    def to_polars(self) -> pl.Expr:
        raise NotImplementedError

    def supports(self, dialect_name: str) -> bool:
        """Whether the whole tree can be evaluated by the given SQL dialect."""
        return all(child.supports(dialect_name) for child in self.children())

    # arithmetic
    def __add__(self, other):
        return BinaryOp("+", self, _wrap(other))

    def __radd__(self, other):
        return BinaryOp("+", _wrap(other), self)

    def __sub__(self, other):
        return BinaryOp("-", self, _wrap(other))

    def __rsub__(self, other):
        return BinaryOp("-", _wrap(other), self)

    def __mul__(self, other):
        return BinaryOp("*", self, _wrap(other))

    def __rmul__(self, other):
        return BinaryOp("*", _wrap(other), self)

    def __truediv__(self, other):
        return BinaryOp("/", self, _wrap(other))

    def __rtruediv__(self, other):
        return BinaryOp("/", _wrap(other), self)

    # comparisons
    def __eq__(self, other):
        return BinaryOp("==", self, _wrap(other))

    def __ne__(self, other):
        return BinaryOp("!=", self, _wrap(other))

    def __lt__(self, other):
        return BinaryOp("<", self, _wrap(other))

    def __le__(self, other):
        return BinaryOp("<=", self, _wrap(other))

    def __gt__(self, other):
        return BinaryOp(">", self, _wrap(other))

    def __ge__(self, other):
        return BinaryOp(">=", self, _wrap(other))

    __hash__ = object.__hash__

    # boolean
    def __and__(self, other):
        return BoolOp("and", self, _wrap(other))

    def __or__(self, other):
        return BoolOp("or", self, _wrap(other))

    def __invert__(self):
        return Not(self)

    def is_null(self):
        return IsNull(self)

    def is_not_null(self):
        return IsNull(self, negate=True)


class Column(Expr):
    def __init__(self, name: str):
        self.name = name

    def to_sql(self, columns):
        try:
            return columns[self.name]
        except KeyError:
            raise QueryError(f"Unknown column '{self.name}'") from None

    def to_polars(self):
        return pl.col(self.name)

    def __repr__(self):
        return self.name


class Literal(Expr):
    def __init__(self, value):
        self.value = value

    def to_sql(self, columns):
        return sa.literal(self.value)

    def to_polars(self):
        return pl.lit(self.value)

    def __repr__(self):
        return repr(self.value)


class BinaryOp(Expr):
    def __init__(self, op: str, left: Expr, right: Expr):
        self.op = op
        self.left = left
        self.right = right

    def children(self):
        return (self.left, self.right)

    def to_sql(self, columns):
        return _OPERATORS[self.op](self.left.to_sql(columns), self.right.to_sql(columns))

    def to_polars(self):
        return _OPERATORS[self.op](self.left.to_polars(), self.right.to_polars())

    def __repr__(self):
        return f"({self.left!r} {self.op} {self.right!r})"


class BoolOp(Expr):
    def __init__(self, op: str, left: Expr, right: Expr):
        self.op = op
        self.left = left
        self.right = right

    def children(self):
        return (self.left, self.right)

    def to_sql(self, columns):
        combine = sa.and_ if self.op == "and" else sa.or_
        return combine(self.left.to_sql(columns), self.right.to_sql(columns))

    def to_polars(self):
        if self.op == "and":
            return self.left.to_polars() & self.right.to_polars()
        return self.left.to_polars() | self.right.to_polars()

    def __repr__(self):
        return f"({self.left!r} {self.op} {self.right!r})"


class Not(Expr):
    def __init__(self, expr: Expr):
        self.expr = expr

    def children(self):
        return (self.expr,)

    def to_sql(self, columns):
        return sa.not_(self.expr.to_sql(columns))

    def to_polars(self):
        return ~self.expr.to_polars()

    def __repr__(self):
        return f"not {self.expr!r}"


class IsNull(Expr):
    def __init__(self, expr: Expr, negate: bool = False):
        self.expr = expr
        self.negate = negate

    def children(self):
        return (self.expr,)

    def to_sql(self, columns):
        inner = self.expr.to_sql(columns)
        return inner.is_not(None) if self.negate else inner.is_(None)

    def to_polars(self):
        inner = self.expr.to_polars()
        return inner.is_not_null() if self.negate else inner.is_null()

    def __repr__(self):
        return f"{self.expr!r} is {'not ' if self.negate else ''}null"


class Coalesce(Expr):
    def __init__(self, expr: Expr, default: Expr):
        self.expr = expr
        self.default = default

    def children(self):
        return (self.expr, self.default)

    def to_sql(self, columns):
        return sa.func.coalesce(self.expr.to_sql(columns), self.default.to_sql(columns))

    def to_polars(self):
        return pl.coalesce(self.expr.to_polars(), self.default.to_polars())

    def __repr__(self):
        return f"coalesce({self.expr!r}, {self.default!r})"


class When(Expr):
    def __init__(self, condition: Expr, then: Expr, otherwise: Expr = None):
        self.condition = condition
        self.then = then
        self.else_ = otherwise

    def otherwise(self, value):
        return When(self.condition, self.then, _wrap(value))

    def children(self):
        nodes = (self.condition, self.then)
        return nodes if self.else_ is None else nodes + (self.else_,)

    def to_sql(self, columns):
        else_ = None if self.else_ is None else self.else_.to_sql(columns)
        return sa.case((self.condition.to_sql(columns), self.then.to_sql(columns)), else_=else_)

    def to_polars(self):
        expr = pl.when(self.condition.to_polars()).then(self.then.to_polars())
        return expr.otherwise(None if self.else_ is None else self.else_.to_polars())

    def __repr__(self):
        return f"when({self.condition!r}, {self.then!r}).otherwise({self.else_!r})"


class IfElse(When):
    """Two-armed conditional: a missing condition gives a missing result."""

    def __init__(self, condition: Expr, then: Expr, otherwise: Expr):
        super().__init__(condition, then, otherwise)

    def otherwise(self, value):
        return IfElse(self.condition, self.then, _wrap(value))

    def to_sql(self, columns):
        condition = self.condition.to_sql(columns)
        return sa.case(
            (condition, self.then.to_sql(columns)),
            (sa.not_(condition), self.else_.to_sql(columns)),
        )

    def to_polars(self):
        condition = self.condition.to_polars()
        return pl.when(condition).then(self.then.to_polars()).when(~condition).then(self.else_.to_polars())

    def __repr__(self):
        return f"if_else({self.condition!r}, {self.then!r}, {self.else_!r})"


class FloorDiv(Expr):
    """Floor of the true quotient, returned as a double."""

    def __init__(self, expr: Expr, divisor):
        self.expr = expr
        self.divisor = divisor

    def children(self):
        return (self.expr,)

    def to_sql(self, columns):
        quotient = sa.cast(self.expr.to_sql(columns), sa.Float) / sa.literal(self.divisor)
        return sa.cast(sa.func.floor(quotient, type_=sa.Float), sa.Float)

    def to_polars(self):
        return (self.expr.to_polars().cast(pl.Float64) / self.divisor).floor()

    def __repr__(self):
        return f"floor({self.expr!r} / {self.divisor!r})"


class YearOf(Expr):
    """Calendar year of a date column, as an integer."""

    def __init__(self, expr: Expr):
        self.expr = expr

    def children(self):
        return (self.expr,)

    def supports(self, dialect_name):
        return dialect_name in YEAR_DIALECTS and super().supports(dialect_name)

    def to_sql(self, columns):
        return sa.cast(sa.extract("year", self.expr.to_sql(columns)), sa.Integer)

    def to_polars(self):
        return self.expr.to_polars().dt.year().cast(pl.Int32)

    def __repr__(self):
        return f"year({self.expr!r})"


class ToNumeric(Expr):
    def __init__(self, expr: Expr):
        self.expr = expr

    def children(self):
        return (self.expr,)

    def to_sql(self, columns):
        return sa.cast(self.expr.to_sql(columns), sa.Float)

    def to_polars(self):
        return self.expr.to_polars().cast(pl.Float64)

    def __repr__(self):
        return f"numeric({self.expr!r})"


def col(name: str) -> Column:
    return Column(name)


def lit(value) -> Literal:
    return Literal(value)


def coalesce(expr, default) -> Coalesce:
    return Coalesce(_wrap(expr), _wrap(default))


def when(condition, then) -> When:
    return When(_wrap(condition), _wrap(then))


def if_else(condition, then, otherwise) -> IfElse:
    return IfElse(_wrap(condition), _wrap(then), _wrap(otherwise))


def floordiv(expr, divisor) -> FloorDiv:
    return FloorDiv(_wrap(expr), divisor)


def year_of(expr) -> YearOf:
    return YearOf(_wrap(expr))


def to_numeric(expr) -> ToNumeric:
    return ToNumeric(_wrap(expr))
