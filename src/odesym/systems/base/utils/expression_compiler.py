# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Expression Compiler

Turns user-authored math strings into reusable evaluable objects.

Pipeline:
1. Apostrophe preprocessing: ``x'''`` → ``x_dddot``, ``x''`` → ``x_ddot``,
   ``x'`` → ``x_dot`` (longest run first)
2. Tokenization to find every identifier and whether it is called
3. SymPy ``parse_expr`` with a local dictionary that pins every identifier
   to a plain Symbol, a known math function, a constant, or an undefined
   Function (for scope-provided callables such as ``dist``)
4. ``lambdify`` onto NumPy via codegen_utils, with the free names as
   positional arguments

Evaluation never raises: unknown identifiers, arithmetic failures and
non-numeric results degrade to 0 and are logged. Compilation failures
produce a constant-zero expression carrying the parse error.

Examples
--------
>>> expr = compile_expression("10*(y - x)")
>>> expr.evaluate({"x": 1.0, "y": 3.0})
20.0
>>> compile_expression("theta''").free_names
('theta_ddot',)
>>> compile_expression("2 *").evaluate({})
0.0
"""

import io
import keyword
import logging
import math
import re
import tokenize
from typing import Any, Callable, Dict, Optional, Tuple

import numpy as np
import sympy as sp
from sympy.core.function import AppliedUndef
from sympy.parsing.sympy_parser import (
    convert_xor,
    implicit_multiplication,
    parse_expr,
    standard_transformations,
)

from odesym.exceptions import EvaluationFault, ParseError
from odesym.systems.base.utils.codegen_utils import (
    generate_constant_function,
    generate_numpy_function,
)
from odesym.types.core import Scope

logger = logging.getLogger(__name__)


# ============================================================================
# Grammar Tables
# ============================================================================

_IDENTIFIER = r"[^\W\d]\w*"

# Longest apostrophe run first so x''' is not read as (x'')'
_APOSTROPHE_RULES = (
    (re.compile(rf"({_IDENTIFIER})'''"), r"\1_dddot"),
    (re.compile(rf"({_IDENTIFIER})''"), r"\1_ddot"),
    (re.compile(rf"({_IDENTIFIER})'"), r"\1_dot"),
)

TRANSFORMATIONS = standard_transformations + (implicit_multiplication, convert_xor)

KNOWN_CONSTANTS: Dict[str, sp.Expr] = {
    "pi": sp.pi,
    "PI": sp.pi,
    "e": sp.E,
    "E": sp.E,
}

KNOWN_FUNCTIONS: Dict[str, Callable[..., sp.Expr]] = {
    # Trigonometric
    "sin": sp.sin,
    "cos": sp.cos,
    "tan": sp.tan,
    "asin": sp.asin,
    "acos": sp.acos,
    "atan": sp.atan,
    "atan2": sp.atan2,
    "sinh": sp.sinh,
    "cosh": sp.cosh,
    "tanh": sp.tanh,
    # Exponential/Logarithmic
    "exp": sp.exp,
    "log": sp.log,
    "ln": sp.log,
    "log10": lambda arg: sp.log(arg, 10),
    "sqrt": sp.sqrt,
    "cbrt": sp.cbrt,
    "pow": sp.Pow,
    # Absolute value, sign, rounding
    "abs": sp.Abs,
    "sign": sp.sign,
    "floor": sp.floor,
    "ceil": sp.ceiling,
    "round": lambda arg: sp.sign(arg) * sp.floor(sp.Abs(arg) + sp.Rational(1, 2)),
    "mod": sp.Mod,
    # Min/Max
    "min": sp.Min,
    "max": sp.Max,
}


# ============================================================================
# Preprocessing
# ============================================================================


def preprocess_expression(raw: str) -> str:
    """
    Rewrite apostrophe derivative notation into identifier suffixes.

    Parameters
    ----------
    raw : str
        User-authored expression

    Returns
    -------
    str
        Expression using ``_dot``/``_ddot``/``_dddot`` suffixes

    Examples
    --------
    >>> preprocess_expression("-k*x - c*x'")
    "-k*x - c*x_dot"
    >>> preprocess_expression("theta''' + theta''")
    'theta_dddot + theta_ddot'
    """
    if not raw:
        return raw
    text = raw
    for pattern, replacement in _APOSTROPHE_RULES:
        text = pattern.sub(replacement, text)
    return text


def _scan_identifiers(source: str) -> Dict[str, bool]:
    """
    Find every identifier in ``source`` and whether it is ever called.

    Returns
    -------
    Dict[str, bool]
        identifier → True if followed by ``(`` at least once
    """
    names: Dict[str, bool] = {}
    tokens = [
        tok
        for tok in tokenize.generate_tokens(io.StringIO(source).readline)
        if tok.type not in (tokenize.NL, tokenize.NEWLINE, tokenize.ENDMARKER, tokenize.COMMENT)
    ]
    for i, tok in enumerate(tokens):
        if tok.type != tokenize.NAME or keyword.iskeyword(tok.string):
            continue
        nxt = tokens[i + 1] if i + 1 < len(tokens) else None
        called = nxt is not None and nxt.type == tokenize.OP and nxt.string == "("
        names[tok.string] = names.get(tok.string, False) or called
    return names


def _build_local_dict(names: Dict[str, bool]) -> Dict[str, Any]:
    local_dict: Dict[str, Any] = {}
    for name, called in names.items():
        if name in KNOWN_CONSTANTS and not called:
            local_dict[name] = KNOWN_CONSTANTS[name]
        elif called and name in KNOWN_FUNCTIONS:
            local_dict[name] = KNOWN_FUNCTIONS[name]
        elif called:
            # Bound from the evaluation scope (dist, dx, ...)
            local_dict[name] = sp.Function(name)
        else:
            local_dict[name] = sp.Symbol(name)
    return local_dict


# ============================================================================
# Compiled Expression
# ============================================================================


class CompiledExpression:
    """
    A parsed, lambdified user expression.

    Attributes
    ----------
    raw : str
        Original user text
    source : str
        Text after apostrophe preprocessing
    expr : Optional[sp.Expr]
        Parsed SymPy expression (None for constant-zero fallbacks)
    free_names : Tuple[str, ...]
        Scope names read during evaluation, in argument order
    error : Optional[str]
        Parse error message, or None if parsing succeeded

    Examples
    --------
    >>> c = compile_expression("x*y - 8/3*z")
    >>> c.free_names
    ('x', 'y', 'z')
    >>> c.evaluate({"x": 1.0, "y": 2.0, "z": 3.0})
    -6.0
    """

    def __init__(
        self,
        raw: str,
        source: str,
        expr: Optional[sp.Expr],
        free_names: Tuple[str, ...],
        func: Callable,
        error: Optional[str] = None,
    ):
        self.raw = raw
        self.source = source
        self.expr = expr
        self.free_names = free_names
        self.error = error
        self._func = func

        # Messages already reported at WARNING level
        self._reported: set = set()
        self.fault_count = 0

    @property
    def ok(self) -> bool:
        """True if the expression parsed successfully"""
        return self.error is None

    def evaluate_strict(self, scope: Scope) -> float:
        """
        Evaluate against ``scope``, raising on failure.

        Raises
        ------
        EvaluationFault
            If a name is missing, the computation fails, or the result is
            not a real number
        """
        try:
            args = [scope[name] for name in self.free_names]
        except KeyError as exc:
            raise EvaluationFault(f"unknown identifier {exc.args[0]!r}") from exc

        try:
            with np.errstate(all="ignore"):
                result = self._func(*args)
        except Exception as exc:
            raise EvaluationFault(f"{type(exc).__name__}: {exc}") from exc

        return _coerce_scalar(result)

    def evaluate(self, scope: Scope) -> float:
        """
        Evaluate against ``scope``; failures yield 0.0 and are logged.

        Parameters
        ----------
        scope : Mapping[str, float | callable]
            Name → value environment

        Returns
        -------
        float
            Expression value, or 0.0 on any evaluation fault
        """
        try:
            return self.evaluate_strict(scope)
        except EvaluationFault as exc:
            self._report(str(exc))
            return 0.0

    __call__ = evaluate

    def _report(self, message: str) -> None:
        self.fault_count += 1
        if message in self._reported:
            logger.debug("Evaluation of %r failed (%s); using 0", self.raw, message)
            return
        self._reported.add(message)
        logger.warning("Evaluation of %r failed (%s); using 0", self.raw, message)

    def __repr__(self) -> str:
        status = "ok" if self.ok else f"error={self.error!r}"
        return f"CompiledExpression({self.raw!r}, {status})"


def _coerce_scalar(value: Any) -> float:
    """Reduce an evaluation result to a real float (first element of arrays)."""
    while isinstance(value, (np.ndarray, list, tuple)):
        if isinstance(value, np.ndarray):
            if value.size == 0:
                return 0.0
            value = value.flat[0]
        elif len(value) == 0:
            return 0.0
        else:
            value = value[0]

    if isinstance(value, (complex, np.complexfloating)):
        if value.imag != 0:
            raise EvaluationFault(f"complex result {value}")
        value = value.real

    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise EvaluationFault(f"non-numeric result {value!r}") from exc

    # Real-domain errors (sqrt(-1), log(-1), 0/0) come back from NumPy as nan
    if math.isnan(result):
        raise EvaluationFault("undefined result (nan)")
    return result


def zero_expression(raw: str = "", error: Optional[str] = None) -> CompiledExpression:
    """Constant-zero expression used for empty input and parse failures."""
    return CompiledExpression(
        raw=raw,
        source=preprocess_expression(raw),
        expr=None,
        free_names=(),
        func=generate_constant_function(0.0),
        error=error,
    )


# ============================================================================
# Compilation
# ============================================================================


def compile_expression(raw: Optional[str], strict: bool = False) -> CompiledExpression:
    """
    Compile a user expression without caching.

    Parameters
    ----------
    raw : Optional[str]
        User-authored expression. Empty or whitespace-only input compiles to
        constant zero.
    strict : bool
        If True, raise ParseError on malformed input instead of returning a
        constant-zero expression

    Returns
    -------
    CompiledExpression

    Raises
    ------
    ParseError
        If ``strict`` is True and the expression cannot be parsed

    Examples
    --------
    >>> compile_expression("x^2").evaluate({"x": 3.0})
    9.0
    >>> compile_expression("   ").evaluate({})
    0.0
    """
    raw = raw or ""
    if not raw.strip():
        return zero_expression(raw)

    source = preprocess_expression(raw).strip()
    try:
        names = _scan_identifiers(source)
        parsed = parse_expr(
            source,
            local_dict=_build_local_dict(names),
            transformations=TRANSFORMATIONS,
        )
        if not isinstance(parsed, sp.Basic):
            parsed = sp.sympify(parsed)
        if not isinstance(parsed, sp.Basic) or isinstance(parsed, sp.core.containers.Tuple):
            raise TypeError(f"expression does not evaluate to a scalar: {parsed!r}")

        symbol_names = {s.name for s in parsed.free_symbols}
        callable_names = {f.func.__name__ for f in parsed.atoms(AppliedUndef)}
        free_names = tuple(sorted(symbol_names | callable_names))
        func = generate_numpy_function(parsed, list(free_names))
    except Exception as exc:
        reason = f"{type(exc).__name__}: {exc}"
        if strict:
            raise ParseError(raw, reason) from exc
        logger.warning("Cannot parse expression %r (%s); treating as 0", raw, reason)
        return zero_expression(raw, error=reason)

    return CompiledExpression(
        raw=raw,
        source=source,
        expr=parsed,
        free_names=free_names,
        func=func,
    )


class ExpressionCompiler:
    """
    Memoizing expression compiler.

    One instance is used per system build so every distinct string is parsed
    and lambdified once, not once per RK4 stage.

    Examples
    --------
    >>> compiler = ExpressionCompiler()
    >>> a = compiler.compile("x + 1")
    >>> b = compiler.compile("x + 1")
    >>> a is b
    True
    >>> compiler.get_stats()["misses"]
    1
    """

    def __init__(self):
        self._cache: Dict[str, CompiledExpression] = {}
        self._stats = {"hits": 0, "misses": 0}

    def compile(self, raw: Optional[str], strict: bool = False) -> CompiledExpression:
        """
        Compile ``raw``, returning the cached object for repeated strings.

        Raises
        ------
        ParseError
            If ``strict`` is True and the (possibly cached) expression failed
            to parse
        """
        key = raw or ""
        compiled = self._cache.get(key)
        if compiled is None:
            self._stats["misses"] += 1
            compiled = compile_expression(key)
            self._cache[key] = compiled
        else:
            self._stats["hits"] += 1

        if strict and not compiled.ok:
            raise ParseError(key, compiled.error)
        return compiled

    def get_stats(self) -> Dict[str, int]:
        """Cache statistics: hits, misses and cached entry count."""
        return {**self._stats, "size": len(self._cache)}

    def clear_cache(self) -> None:
        self._cache.clear()
        self._stats = {"hits": 0, "misses": 0}

    def __len__(self) -> int:
        return len(self._cache)


__all__ = [
    "CompiledExpression",
    "ExpressionCompiler",
    "compile_expression",
    "preprocess_expression",
    "zero_expression",
    "KNOWN_CONSTANTS",
    "KNOWN_FUNCTIONS",
]
