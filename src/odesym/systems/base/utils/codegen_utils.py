"""
NumPy code generation utilities.

Low-level SymPy → executable conversion used by the expression compiler.

- Min/Max functions (variable argument handling)
- Consistent shape conventions (always return 1D arrays)
- Callable arguments: undefined SymPy functions (``dist(1, 2)``) are
  printed by name, so passing a symbol of the same name as an argument
  binds the callable at call time.
"""

from typing import Callable, Sequence, Union

import numpy as np
import sympy as sp

# Helper functions


def _numpy_min(*args):
    """
    Handle SymPy Min for NumPy backend.

    SymPy's Min can take arbitrary number of arguments: Min(x, y, z)
    NumPy's np.minimum only takes 2 arguments.

    Args:
        *args: Variable number of arguments

    Returns:
        Minimum value (scalar or array)

    Examples:
        >>> _numpy_min(1, 2, 3)
        1
        >>> _numpy_min(np.array([1, 2]), np.array([3, 0]))
        array([1, 0])
    """
    if len(args) == 0:
        raise ValueError("Min requires at least one argument")
    elif len(args) == 1:
        return args[0]
    result = args[0]
    for arg in args[1:]:
        result = np.minimum(result, arg)
    return result


def _numpy_max(*args):
    """
    Handle SymPy Max for NumPy backend.

    Args:
        *args: Variable number of arguments

    Returns:
        Maximum value (scalar or array)

    Examples:
        >>> _numpy_max(1, 2, 3)
        3
    """
    if len(args) == 0:
        raise ValueError("Max requires at least one argument")
    elif len(args) == 1:
        return args[0]
    result = args[0]
    for arg in args[1:]:
        result = np.maximum(result, arg)
    return result


SYMPY_TO_NUMPY_LAMBDIFY = {
    # Min/Max handling
    "Min": _numpy_min,
    "Max": _numpy_max,
}


def _as_symbols(args: Sequence[Union[str, sp.Symbol]]) -> list:
    """Convert argument names to SymPy symbols, keeping symbols as-is."""
    return [sp.Symbol(a) if isinstance(a, str) else a for a in args]


def generate_numpy_function(
    expr: sp.Expr,
    args: Sequence[Union[str, sp.Symbol]],
) -> Callable:
    """
    Generate a NumPy function from a SymPy expression.

    Args:
        expr: SymPy expression
        args: Input symbols (or their names) in positional order. A name
            that matches an undefined function in ``expr`` becomes a
            callable parameter.

    Returns:
        Compiled NumPy function

    Return Type Convention:
        Always returns a 1D array of shape (1,) for scalar expressions.
        Extract scalar: result[0] or result.item()

    Examples:
        >>> x = sp.Symbol('x')
        >>> f = generate_numpy_function(x**2 + 1, ['x'])
        >>> f(3.0)
        array([10.])
        >>>
        >>> dist = sp.Function('dist')
        >>> g = generate_numpy_function(dist(1, 2) * x, ['x', 'dist'])
        >>> g(2.0, lambda i, j: 5.0)
        array([10.])
    """
    func = sp.lambdify(_as_symbols(args), expr, modules=[SYMPY_TO_NUMPY_LAMBDIFY, "numpy"])

    # Wrap to ensure proper array handling
    def wrapped_func(*call_args):
        result = func(*call_args)

        if isinstance(result, np.ndarray):
            return result.reshape(-1) if result.ndim != 0 else np.array([result])
        elif isinstance(result, (list, tuple)):
            return np.array(result).flatten()
        else:
            return np.array([result])

    return wrapped_func


def generate_constant_function(value: float = 0.0) -> Callable:
    """
    Generate a function of no arguments returning a constant.

    Follows the same 1D return convention as generate_numpy_function.

    Examples:
        >>> generate_constant_function()()
        array([0.])
    """
    result = np.array([float(value)])

    def constant_func():
        return result.copy()

    return constant_func


__all__ = [
    "SYMPY_TO_NUMPY_LAMBDIFY",
    "generate_numpy_function",
    "generate_constant_function",
]
