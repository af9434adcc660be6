"""
Typed builders for FFmpeg expressions and filter chains.

Motion, audio and subtitle filters are small generated programs. Building them
as expression trees keeps them inspectable (and numerically evaluable in
tests) until the last moment, when ``render()`` lowers them to FFmpeg's
textual filter syntax.

    >>> p = T / 5
    >>> render_value(1 + 0.18 * p)
    '1+0.18*t/5'
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Union

Number = Union[int, float]


def format_number(value: Number) -> str:
    """Render a number compactly (no trailing zeros, at most 6 decimals)."""
    if isinstance(value, bool):
        raise TypeError("bool is not a numeric expression")
    if float(value).is_integer():
        return str(int(value))
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


class Expr:
    """Base class for expression nodes."""

    precedence = 3

    def render(self) -> str:
        raise NotImplementedError

    def evaluate(self, env: dict[str, float]) -> float:
        raise NotImplementedError

    def __str__(self) -> str:
        return self.render()

    def __add__(self, other: Any) -> "Expr":
        return BinOp("+", self, as_expr(other))

    def __radd__(self, other: Any) -> "Expr":
        return BinOp("+", as_expr(other), self)

    def __sub__(self, other: Any) -> "Expr":
        return BinOp("-", self, as_expr(other))

    def __rsub__(self, other: Any) -> "Expr":
        return BinOp("-", as_expr(other), self)

    def __mul__(self, other: Any) -> "Expr":
        return BinOp("*", self, as_expr(other))

    def __rmul__(self, other: Any) -> "Expr":
        return BinOp("*", as_expr(other), self)

    def __truediv__(self, other: Any) -> "Expr":
        return BinOp("/", self, as_expr(other))

    def __rtruediv__(self, other: Any) -> "Expr":
        return BinOp("/", as_expr(other), self)

    def __neg__(self) -> "Expr":
        return Neg(self)


def as_expr(value: Any) -> Expr:
    if isinstance(value, Expr):
        return value
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return Num(value)
    raise TypeError(f"Cannot use {value!r} in an expression")


@dataclass(frozen=True, eq=False)
class Num(Expr):
    value: Number

    def render(self) -> str:
        text = format_number(self.value)
        return f"({text})" if self.value < 0 else text

    def evaluate(self, env: dict[str, float]) -> float:
        return float(self.value)


@dataclass(frozen=True, eq=False)
class Var(Expr):
    name: str

    def render(self) -> str:
        return self.name

    def evaluate(self, env: dict[str, float]) -> float:
        if self.name == "PI":
            return math.pi
        try:
            return float(env[self.name])
        except KeyError:
            raise KeyError(f"Unbound expression variable: {self.name}") from None


@dataclass(frozen=True, eq=False)
class Neg(Expr):
    operand: Expr

    def render(self) -> str:
        inner = self.operand.render()
        if isinstance(self.operand, BinOp):
            inner = f"({inner})"
        return f"-{inner}"

    def evaluate(self, env: dict[str, float]) -> float:
        return -self.operand.evaluate(env)


_FUNCTIONS = {
    "sin": math.sin,
    "cos": math.cos,
    "pow": math.pow,
    "lt": lambda a, b: 1.0 if a < b else 0.0,
    "between": lambda x, lo, hi: 1.0 if lo <= x <= hi else 0.0,
    "gt": lambda a, b: 1.0 if a > b else 0.0,
    "min": min,
    "max": max,
    "abs": abs,
}


@dataclass(frozen=True, eq=False)
class Call(Expr):
    fn: str
    args: tuple[Expr, ...]

    def render(self) -> str:
        return f"{self.fn}({','.join(a.render() for a in self.args)})"

    def evaluate(self, env: dict[str, float]) -> float:
        if self.fn == "if":
            cond, then, otherwise = self.args
            return then.evaluate(env) if cond.evaluate(env) else otherwise.evaluate(env)
        try:
            func = _FUNCTIONS[self.fn]
        except KeyError:
            raise ValueError(f"Unsupported expression function: {self.fn}") from None
        return float(func(*(a.evaluate(env) for a in self.args)))


_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2}


@dataclass(frozen=True, eq=False)
class BinOp(Expr):
    op: str
    left: Expr
    right: Expr

    @property
    def precedence(self) -> int:  # type: ignore[override]
        return _PRECEDENCE[self.op]

    def render(self) -> str:
        left = self.left.render()
        if self.left.precedence < self.precedence:
            left = f"({left})"
        right = self.right.render()
        if self.right.precedence < self.precedence or (
            self.right.precedence == self.precedence and self.op in "-/"
        ):
            right = f"({right})"
        return f"{left}{self.op}{right}"

    def evaluate(self, env: dict[str, float]) -> float:
        a = self.left.evaluate(env)
        b = self.right.evaluate(env)
        if self.op == "+":
            return a + b
        if self.op == "-":
            return a - b
        if self.op == "*":
            return a * b
        return a / b


# Common variables
T = Var("t")
PI = Var("PI")
IW = Var("iw")
IH = Var("ih")
OW = Var("ow")
OH = Var("oh")


def sin(x: Any) -> Expr:
    return Call("sin", (as_expr(x),))


def cos(x: Any) -> Expr:
    return Call("cos", (as_expr(x),))


def pow_(base: Any, exponent: Any) -> Expr:
    return Call("pow", (as_expr(base), as_expr(exponent)))


def lt(a: Any, b: Any) -> Expr:
    return Call("lt", (as_expr(a), as_expr(b)))


def if_(cond: Any, then: Any, otherwise: Any) -> Expr:
    return Call("if", (as_expr(cond), as_expr(then), as_expr(otherwise)))


def between(x: Any, lo: Any, hi: Any) -> Expr:
    return Call("between", (as_expr(x), as_expr(lo), as_expr(hi)))


def min_(a: Any, b: Any) -> Expr:
    return Call("min", (as_expr(a), as_expr(b)))


def max_(a: Any, b: Any) -> Expr:
    return Call("max", (as_expr(a), as_expr(b)))


# ============================================================================
# Filters
# ============================================================================


def render_value(value: Any) -> str:
    """Lower an option value. Non-trivial expressions are single-quoted."""
    if isinstance(value, Expr):
        text = value.render()
        if isinstance(value, (Num, Var)):
            return text
        return f"'{text}'"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return format_number(value)
    return str(value)


@dataclass
class Filter:
    """A single filter, e.g. ``crop=w=1920:h=1080:x='...'``."""

    name: str
    args: tuple[Any, ...] = ()
    options: dict[str, Any] = field(default_factory=dict)

    def render(self) -> str:
        parts = [render_value(a) for a in self.args]
        parts.extend(f"{key}={render_value(value)}" for key, value in self.options.items())
        if not parts:
            return self.name
        return f"{self.name}={':'.join(parts)}"

    def __str__(self) -> str:
        return self.render()


def make_filter(name: str, *args: Any, **options: Any) -> Filter:
    return Filter(name, tuple(args), dict(options))


@dataclass
class FilterChain:
    """Comma-joined sequence of filters applied to one stream.

    Raw strings are accepted for fragments produced by external collaborators
    (e.g. a subtitle drawtext filter) that arrive already lowered.
    """

    filters: list[Union[Filter, str]] = field(default_factory=list)

    def append(self, item: Union[Filter, "FilterChain", str]) -> "FilterChain":
        if isinstance(item, FilterChain):
            self.filters.extend(item.filters)
        elif item:
            self.filters.append(item)
        return self

    def names(self) -> list[str]:
        return [f.name if isinstance(f, Filter) else f.split("=", 1)[0] for f in self.filters]

    def render(self) -> str:
        return ",".join(f.render() if isinstance(f, Filter) else f for f in self.filters)

    def __bool__(self) -> bool:
        return bool(self.filters)

    def __len__(self) -> int:
        return len(self.filters)

    def __str__(self) -> str:
        return self.render()


def is_well_formed(filter_text: str) -> bool:
    """Cheap syntax check: balanced parentheses and single quotes."""
    depth = 0
    in_quote = False
    for ch in filter_text:
        if ch == "'":
            in_quote = not in_quote
        elif ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0 and not in_quote
