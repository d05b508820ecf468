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
Variable Model

User-facing definitions of differential quantities and the subsystems
("particles") that own them.

A Variable of order N contributes N scalar slots to the state vector:

    order 0: algebraic, no slot (resolved every evaluation)
    order 1: x
    order 2: x, x_dot
    order 3: x, x_dot, x_ddot

Only the first MAX_VARIABLES_PER_SUBSYSTEM variables of a subsystem are
honored; the first three order>0 variables double as its 3D position.
"""

import re
import warnings
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from odesym.exceptions import ValidationError
from odesym.types.core import SubsystemId

MAX_ORDER = 3
MAX_VARIABLES_PER_SUBSYSTEM = 3

# Suffix for the k-th derivative slot of a variable
DERIVATIVE_SUFFIXES = ("", "_dot", "_ddot", "_dddot")

# "theta'' = -g*sin(theta)" typed into the expression field
_WHOLE_EQUATION = re.compile(r"^\s*([^\W\d]\w*)('*)\s*=(?!=)\s*(.+)$", re.DOTALL)


# ============================================================================
# Variable
# ============================================================================


@dataclass(frozen=True)
class Variable:
    """
    One user-defined differential quantity.

    Attributes
    ----------
    name : str
        Identifier, unique within its subsystem
    order : int
        Differentiation order in {0, 1, 2, 3}; 0 means algebraic
    expr : str
        Right-hand side for the highest derivative (or the value itself for
        order 0)
    initial : str
        Initial value of the variable
    initial_dot : str
        Initial value of the first derivative
    initial_ddot : str
        Initial value of the second derivative

    Initial conditions are kept as the strings the user typed; non-numeric
    text reads as 0. The third derivative has no initial condition.

    Examples
    --------
    >>> pendulum = Variable("theta", order=2, expr="-g*sin(theta)", initial="0.5")
    >>> pendulum.slot_suffixes
    ('', '_dot')
    """

    name: str
    order: int = 1
    expr: str = "0"
    initial: str = "0"
    initial_dot: str = "0"
    initial_ddot: str = "0"

    def __post_init__(self):
        if isinstance(self.order, bool) or not isinstance(self.order, int):
            raise ValidationError(f"order must be an int, got {type(self.order).__name__}")
        if not 0 <= self.order <= MAX_ORDER:
            raise ValidationError(f"order must be in 0..{MAX_ORDER}, got {self.order}")

    @property
    def is_algebraic(self) -> bool:
        return self.order == 0

    @property
    def slot_suffixes(self) -> Tuple[str, ...]:
        """Suffixes of the state slots this variable owns, lowest order first"""
        return DERIVATIVE_SUFFIXES[: self.order]

    @property
    def initial_values(self) -> Tuple[float, ...]:
        """Parsed initial conditions for each slot, in slot order"""
        raw = (self.initial, self.initial_dot, self.initial_ddot)
        return tuple(parse_initial(raw[k]) if k < len(raw) else 0.0 for k in range(self.order))


def parse_initial(text: Any) -> float:
    """
    Parse a user-typed initial condition.

    Missing or non-numeric input reads as 0.

    Examples
    --------
    >>> parse_initial(" 1.5 ")
    1.5
    >>> parse_initial("abc")
    0.0
    """
    if text is None:
        return 0.0
    try:
        value = float(str(text).strip())
    except ValueError:
        return 0.0
    # nan/inf typed by the user are not usable initial conditions
    if value != value or value in (float("inf"), float("-inf")):
        return 0.0
    return value


def normalize_variable(variable: Variable) -> Variable:
    """
    Expand whole-equation input into name/order/expr.

    An expression of the form ``name''' = rhs`` (or ``''``, ``'``, none)
    renames the variable to ``name``, sets its order to the apostrophe count
    and keeps ``rhs`` as the expression. Anything else is returned unchanged.

    Examples
    --------
    >>> v = normalize_variable(Variable("q", order=1, expr="x'' = -x"))
    >>> (v.name, v.order, v.expr)
    ('x', 2, '-x')
    """
    match = _WHOLE_EQUATION.match(variable.expr or "")
    if match is None:
        return variable
    name, ticks, rhs = match.groups()
    if len(ticks) > MAX_ORDER:
        return variable
    return replace(variable, name=name, order=len(ticks), expr=rhs.strip())


# ============================================================================
# Subsystem
# ============================================================================


@dataclass
class Subsystem:
    """
    A particle: an integer id owning up to three variables.

    Attributes
    ----------
    id : int
        Subsystem identifier used in slot names (``sys{id}_x``)
    variables : List[Variable]
        Variable definitions; entries beyond the third are ignored
    color : Optional[str]
        Display color, opaque to the simulation
    metadata : Dict[str, Any]
        Free-form display data, opaque to the simulation

    Examples
    --------
    >>> lorenz = Subsystem(1, [
    ...     Variable("x", 1, "10*(y - x)", initial="1"),
    ...     Variable("y", 1, "x*(28 - z) - y"),
    ...     Variable("z", 1, "x*y - 8/3*z"),
    ... ])
    """

    id: SubsystemId
    variables: List[Variable] = field(default_factory=list)
    color: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def honored_variables(self) -> List[Variable]:
        """Normalized variables within the per-subsystem cap."""
        if len(self.variables) > MAX_VARIABLES_PER_SUBSYSTEM:
            warnings.warn(
                f"Subsystem {self.id} defines {len(self.variables)} variables; "
                f"only the first {MAX_VARIABLES_PER_SUBSYSTEM} are simulated",
                UserWarning,
                stacklevel=3,
            )
        return [normalize_variable(v) for v in self.variables[:MAX_VARIABLES_PER_SUBSYSTEM]]

    def normalized(self) -> "Subsystem":
        """Copy holding only honored, normalized variables."""
        return replace(self, variables=self.honored_variables(), metadata=dict(self.metadata))


def slot_name(subsystem_id: SubsystemId, name: str, derivative: int = 0) -> str:
    """
    Fully qualified slot name.

    Examples
    --------
    >>> slot_name(2, "theta", 1)
    'sys2_theta_dot'
    """
    return f"sys{subsystem_id}_{name}{DERIVATIVE_SUFFIXES[derivative]}"


def check_unique_ids(subsystems: Sequence[Subsystem]) -> None:
    """Raise ValidationError if two subsystems share an id."""
    seen = set()
    for sub in subsystems:
        if sub.id in seen:
            raise ValidationError(f"Duplicate subsystem id: {sub.id}")
        seen.add(sub.id)


__all__ = [
    "MAX_ORDER",
    "MAX_VARIABLES_PER_SUBSYSTEM",
    "DERIVATIVE_SUFFIXES",
    "Variable",
    "Subsystem",
    "parse_initial",
    "normalize_variable",
    "slot_name",
    "check_unique_ids",
]
