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
System Builder

Expands subsystems of mixed-order variables into a first-order system in
companion form.

For a variable ``x`` of order 3 in subsystem 1 the builder emits:

    slot                equation
    ----------------    -----------------------------
    sys1_x              d/dt sys1_x      = sys1_x_dot
    sys1_x_dot          d/dt sys1_x_dot  = sys1_x_ddot
    sys1_x_ddot         d/dt sys1_x_ddot = <user expr>

Order-0 (algebraic) variables own no slot; they are recorded separately and
resolved against the scope at every evaluation.

Slots are enumerated subsystem-then-variable-then-order, so building the
same definitions twice yields the same layout.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from odesym.exceptions import LayoutInconsistency
from odesym.systems.base.core.variable_model import (
    Subsystem,
    check_unique_ids,
    slot_name,
)
from odesym.systems.base.utils.expression_compiler import (
    CompiledExpression,
    ExpressionCompiler,
)
from odesym.types.core import StateVector, SubsystemId

logger = logging.getLogger(__name__)


# ============================================================================
# Layout Records
# ============================================================================


@dataclass(frozen=True)
class Equation:
    """
    Right-hand side for one state slot.

    Attributes
    ----------
    expression : CompiledExpression
        Compiled right-hand side
    subsystem_id : int
        Subsystem whose local aliases the expression sees
    slot_index : int
        Index of the slot this equation differentiates
    identity : bool
        True for companion-form links (``x' = x_dot``)
    """

    expression: CompiledExpression
    subsystem_id: SubsystemId
    slot_index: int
    identity: bool = False


@dataclass(frozen=True)
class AlgebraicEntry:
    """An order-0 variable resolved from its expression every evaluation"""

    subsystem_id: SubsystemId
    name: str
    qualified_name: str
    expression: CompiledExpression


@dataclass
class SystemLayout:
    """
    Companion-form layout of a set of subsystems.

    Attributes
    ----------
    expanded_names : List[str]
        Slot names in state-vector order
    name_to_index : Dict[str, int]
        Slot name → state index
    equations : List[Equation]
        One entry per slot, aligned with ``expanded_names``
    initial_state : np.ndarray
        Initial conditions in slot order
    algebraic : List[AlgebraicEntry]
        Order-0 variables in definition order
    subsystems : List[Subsystem]
        Normalized subsystems (honored variables only)
    compiler : ExpressionCompiler
        Compiler used for this build (shared cache)

    Examples
    --------
    >>> layout = build_system([Subsystem(1, [Variable("x", 2, "-x")])])
    >>> layout.expanded_names
    ['sys1_x', 'sys1_x_dot']
    >>> layout.name_to_index["sys1_x_dot"]
    1
    """

    expanded_names: List[str]
    name_to_index: Dict[str, int]
    equations: List[Equation]
    initial_state: StateVector
    algebraic: List[AlgebraicEntry]
    subsystems: List[Subsystem]
    compiler: ExpressionCompiler = field(repr=False, default_factory=ExpressionCompiler)

    @property
    def n_slots(self) -> int:
        return len(self.expanded_names)

    @property
    def subsystem_ids(self) -> List[SubsystemId]:
        return [sub.id for sub in self.subsystems]

    def index_of(self, name: str) -> int:
        """
        State index of a slot.

        Raises
        ------
        LayoutInconsistency
            If ``name`` is not a slot of this layout
        """
        try:
            return self.name_to_index[name]
        except KeyError:
            raise LayoutInconsistency(name, "no such state slot") from None

    def subsystem(self, subsystem_id: SubsystemId) -> Subsystem:
        """
        Raises
        ------
        LayoutInconsistency
            If no subsystem has this id
        """
        for sub in self.subsystems:
            if sub.id == subsystem_id:
                return sub
        raise LayoutInconsistency(f"subsystem {subsystem_id}", "no such subsystem")

    def position_slots(self, subsystem_id: SubsystemId) -> Tuple[Optional[str], ...]:
        """
        Names whose values give the subsystem's 3D position.

        The first three order>0 variables map to the x, y and z axes; missing
        axes are None.
        """
        sub = self.subsystem(subsystem_id)
        names: List[Optional[str]] = [
            slot_name(sub.id, v.name) for v in sub.variables if v.order > 0
        ][:3]
        names.extend([None] * (3 - len(names)))
        return tuple(names)

    def qualified_names(self) -> List[str]:
        """Slot names followed by algebraic variable names"""
        return list(self.expanded_names) + [entry.qualified_name for entry in self.algebraic]

    def state_dict(self, state: StateVector) -> Dict[str, float]:
        """Map slot names to the values in ``state``"""
        return {name: float(state[i]) for i, name in enumerate(self.expanded_names)}


# ============================================================================
# Builder
# ============================================================================


def build_system(
    subsystems: Iterable[Subsystem],
    compiler: Optional[ExpressionCompiler] = None,
) -> SystemLayout:
    """
    Expand subsystems into a companion-form layout.

    Parameters
    ----------
    subsystems : Iterable[Subsystem]
        Subsystem definitions, in display order
    compiler : Optional[ExpressionCompiler]
        Compiler whose cache to use; a fresh one is created if omitted

    Returns
    -------
    SystemLayout

    Raises
    ------
    ValidationError
        If two subsystems share an id

    Notes
    -----
    Variable names are not validated. A name that is not an identifier, or
    that shadows a constant, produces expressions that evaluate to 0.

    Examples
    --------
    >>> layout = build_system([
    ...     Subsystem(1, [Variable("x", 1, "y"), Variable("y", 0, "2*t")]),
    ... ])
    >>> layout.expanded_names
    ['sys1_x']
    >>> [a.qualified_name for a in layout.algebraic]
    ['sys1_y']
    """
    subsystems = list(subsystems)
    check_unique_ids(subsystems)
    compiler = compiler if compiler is not None else ExpressionCompiler()

    normalized = [sub.normalized() for sub in subsystems]

    expanded_names: List[str] = []
    equations: List[Equation] = []
    initial: List[float] = []
    algebraic: List[AlgebraicEntry] = []

    for sub in normalized:
        for var in sub.variables:
            if var.is_algebraic:
                algebraic.append(
                    AlgebraicEntry(
                        subsystem_id=sub.id,
                        name=var.name,
                        qualified_name=slot_name(sub.id, var.name),
                        expression=compiler.compile(var.expr),
                    )
                )
                continue

            initial.extend(var.initial_values)
            for k in range(var.order):
                index = len(expanded_names)
                expanded_names.append(slot_name(sub.id, var.name, k))
                if k < var.order - 1:
                    # Companion-form link to the next derivative slot
                    expression = compiler.compile(slot_name(sub.id, var.name, k + 1))
                    identity = True
                else:
                    expression = compiler.compile(var.expr)
                    identity = False
                equations.append(Equation(expression, sub.id, index, identity))

    name_to_index = {name: i for i, name in enumerate(expanded_names)}
    if len(name_to_index) != len(expanded_names):
        # Same variable name twice in one subsystem: later slots shadow earlier
        logger.warning("Duplicate slot names in layout; later definitions shadow earlier ones")

    logger.debug(
        "Built layout: %d subsystems, %d slots, %d algebraic variables",
        len(normalized),
        len(expanded_names),
        len(algebraic),
    )

    return SystemLayout(
        expanded_names=expanded_names,
        name_to_index=name_to_index,
        equations=equations,
        initial_state=np.array(initial, dtype=np.float64),
        algebraic=algebraic,
        subsystems=normalized,
        compiler=compiler,
    )


def reseed_state(
    layout: SystemLayout,
    previous: Optional[SystemLayout],
    previous_state: Optional[StateVector],
) -> StateVector:
    """
    Initial state for ``layout`` carrying values forward from a previous build.

    Slots whose qualified name exists in the previous layout keep their
    current value; all others start from their initial condition.

    Examples
    --------
    >>> state = reseed_state(new_layout, old_layout, old_state)
    """
    state = layout.initial_state.copy()
    if previous is None or previous_state is None:
        return state
    for i, name in enumerate(layout.expanded_names):
        j = previous.name_to_index.get(name)
        if j is not None and j < len(previous_state):
            state[i] = previous_state[j]
    return state


__all__ = [
    "Equation",
    "AlgebraicEntry",
    "SystemLayout",
    "build_system",
    "reseed_state",
]
