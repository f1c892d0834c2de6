"""A small expression tree for ffmpeg filter expressions.

The same tree renders to the text handed to ffmpeg and evaluates in-process,
so the values the tests check are the values ffmpeg computes.

    >>> t = Var("it")
    >>> e = window(t, 0, 1000, Const(2), Const(1))
    >>> e.render()
    'if(between(it,0.000,1.000),2,1)'
    >>> e.evaluate({"it": 0.5})
    2.0
"""

from __future__ import annotations

import operator
from dataclasses import dataclass
from typing import Mapping, Union

Number = Union[int, float]


def _plain(value: float) -> str:
    """Shortest text that round-trips the float, never in exponent form."""
    value = float(value)
    if value.is_integer():
        return str(int(value))
    text = repr(value)
    if "e" in text:
        text = format(value, ".17f").rstrip("0")
    return text


def escape_commas(text: str) -> str:
    """Escape commas so an expression survives filtergraph parsing."""
    return text.replace(",", "\\,")


class Expr:
    def render(self) -> str:
        raise NotImplementedError

    def evaluate(self, env: Mapping[str, float]) -> float:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()

    # arithmetic builders
    def __add__(self, other: Expr | Number) -> Expr:
        return BinOp("+", self, as_expr(other))

    def __radd__(self, other: Number) -> Expr:
        return BinOp("+", as_expr(other), self)

    def __sub__(self, other: Expr | Number) -> Expr:
        return BinOp("-", self, as_expr(other))

    def __rsub__(self, other: Number) -> Expr:
        return BinOp("-", as_expr(other), self)

    def __mul__(self, other: Expr | Number) -> Expr:
        return BinOp("*", self, as_expr(other))

    def __rmul__(self, other: Number) -> Expr:
        return BinOp("*", as_expr(other), self)

    def __truediv__(self, other: Expr | Number) -> Expr:
        return BinOp("/", self, as_expr(other))

    def __rtruediv__(self, other: Number) -> Expr:
        return BinOp("/", as_expr(other), self)


def as_expr(value: Expr | Number) -> Expr:
    return value if isinstance(value, Expr) else Const(value)


@dataclass(frozen=True, eq=False)
class Const(Expr):
    """Numeric literal. ``fmt`` fixes the printed precision."""
    value: float
    fmt: str | None = None

    @classmethod
    def seconds_from_ms(cls, ms: float) -> Const:
        return cls(ms / 1000, ".3f")

    def render(self) -> str:
        if self.fmt is None:
            return _plain(self.value)
        return format(self.value, self.fmt)

    def evaluate(self, env: Mapping[str, float]) -> float:
        # ffmpeg sees the rounded literal, so evaluate that
        return float(self.render())


@dataclass(frozen=True, eq=False)
class Var(Expr):
    name: str

    def render(self) -> str:
        return self.name

    def evaluate(self, env: Mapping[str, float]) -> float:
        try:
            return float(env[self.name])
        except KeyError:
            raise KeyError(f"Expression variable '{self.name}' is not bound") from None


_OPS = {
    "+": operator.add,
    "-": operator.sub,
    "*": operator.mul,
    "/": operator.truediv,
}


@dataclass(frozen=True, eq=False)
class BinOp(Expr):
    op: str
    left: Expr
    right: Expr

    def render(self) -> str:
        return f"({self.left.render()}{self.op}{self.right.render()})"

    def evaluate(self, env: Mapping[str, float]) -> float:
        return _OPS[self.op](self.left.evaluate(env), self.right.evaluate(env))


@dataclass(frozen=True, eq=False)
class Call(Expr):
    """``min`` / ``max`` of two operands."""
    fn: str
    a: Expr
    b: Expr

    def render(self) -> str:
        return f"{self.fn}({self.a.render()},{self.b.render()})"

    def evaluate(self, env: Mapping[str, float]) -> float:
        f = min if self.fn == "min" else max
        return f(self.a.evaluate(env), self.b.evaluate(env))


@dataclass(frozen=True, eq=False)
class Window(Expr):
    """``if(between(var,start,end),then,otherwise)``; both bounds inclusive."""
    var: Var
    start: Const
    end: Const
    then: Expr
    otherwise: Expr

    def render(self) -> str:
        return (f"if(between({self.var.render()},{self.start.render()},{self.end.render()}),"
                f"{self.then.render()},{self.otherwise.render()})")

    def evaluate(self, env: Mapping[str, float]) -> float:
        t = self.var.evaluate(env)
        if self.start.evaluate(env) <= t <= self.end.evaluate(env):
            return self.then.evaluate(env)
        return self.otherwise.evaluate(env)


def window(var: Var, start_ms: float, end_ms: float, then: Expr, otherwise: Expr) -> Window:
    return Window(var, Const.seconds_from_ms(start_ms), Const.seconds_from_ms(end_ms), then, otherwise)


def minimum(a: Expr | Number, b: Expr | Number) -> Call:
    return Call("min", as_expr(a), as_expr(b))


def maximum(a: Expr | Number, b: Expr | Number) -> Call:
    return Call("max", as_expr(a), as_expr(b))


def clamp(value: Expr, lo: Expr | Number, hi: Expr | Number) -> Call:
    """``min(max(value, lo), hi)``."""
    return minimum(maximum(value, lo), hi)
