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
Scope Resolver

Builds the name → value environments compiled expressions evaluate against.

Two tiers:

1. Full scope (``full_scope``): time ``t``, physical constants, every slot
   under its qualified name (``sys1_x_dot``) and every algebraic variable,
   resolved by a fixed number of passes.
2. Local overlay (``localize``): short aliases for the subsystem owning an
   equation, layered over the full scope with a ChainMap.

Alias precedence inside one overlay, highest first:

    owner's short names          x, x_dot
    subsystem-suffixed aliases   x2, x2_dot (every subsystem)
    other subsystems' names      y (first subsystem defining y wins)

Algebraic resolution is a bounded fixed-point iteration, not a solver:
each pass evaluates every order-0 variable once, in definition order, so
chains up to ``algebraic_passes`` deep propagate and circular definitions
simply stop after the last pass.
"""

import logging
import math
from collections import ChainMap
from typing import Callable, Dict, List, Tuple

import numpy as np

from odesym.exceptions import LayoutInconsistency
from odesym.systems.base.core.system_builder import SystemLayout
from odesym.systems.base.core.variable_model import DERIVATIVE_SUFFIXES, slot_name
from odesym.types.core import MutableScope, Position3D, Scope, StateVector, SubsystemId

logger = logging.getLogger(__name__)

PHYSICAL_CONSTANTS: Dict[str, float] = {
    "eps0": 8.8541878128e-12,  # vacuum permittivity (F/m)
    "mu0": 4 * math.pi * 1e-7,  # vacuum permeability (H/m)
    "k": 8.9875517923e9,  # Coulomb constant (N m^2/C^2)
    "g": 9.80665,  # standard gravity (m/s^2)
    "G": 6.67430e-11,  # gravitational constant (m^3/(kg s^2))
}

DEFAULT_ALGEBRAIC_PASSES = 3


class ScopeResolver:
    """
    Scope construction for one SystemLayout.

    The resolver reads the layout but never modifies it; rebuilding the
    system means constructing a new resolver.

    Parameters
    ----------
    layout : SystemLayout
        Layout from build_system
    algebraic_passes : int
        Number of resolution passes over algebraic variables

    Examples
    --------
    >>> resolver = ScopeResolver(layout)
    >>> scope = resolver.full_scope(layout.initial_state, t=0.0)
    >>> scope["sys1_x"]
    1.0
    >>> local = resolver.local_scope(1, scope)
    >>> local["x"], local["dist"](1, 2)
    """

    def __init__(self, layout: SystemLayout, algebraic_passes: int = DEFAULT_ALGEBRAIC_PASSES):
        self.layout = layout
        self.algebraic_passes = algebraic_passes
        self._id_aliases = self._build_id_aliases()
        self._alias_tables: Dict[SubsystemId, Dict[str, str]] = {
            sid: self._build_alias_table(sid) for sid in layout.subsystem_ids
        }
        self._position_slots = {sid: layout.position_slots(sid) for sid in layout.subsystem_ids}

    # ========================================================================
    # Alias Tables
    # ========================================================================

    @staticmethod
    def _variable_forms(subsystem) -> List[Tuple[str, str, str]]:
        """(short name, suffix, qualified name) for every bindable form"""
        forms = []
        for var in subsystem.variables:
            for k in range(max(var.order, 1)):
                suffix = DERIVATIVE_SUFFIXES[k]
                forms.append((var.name, suffix, slot_name(subsystem.id, var.name, k)))
        return forms

    def _build_id_aliases(self) -> Dict[str, str]:
        """
        Id-suffixed aliases (``x2``, ``x2_dot``) shared by every subsystem.

        Names can collide across subsystems: variable ``x1`` of subsystem 1
        and variable ``x`` of subsystem 11 both give ``x11``. The first
        definition keeps the alias and the collision is logged.
        """
        table: Dict[str, str] = {}
        for sub in self.layout.subsystems:
            for name, suffix, qualified in self._variable_forms(sub):
                alias = f"{name}{sub.id}{suffix}"
                existing = table.setdefault(alias, qualified)
                if existing != qualified:
                    logger.warning(
                        "Alias %r is ambiguous (%s, %s); using %s",
                        alias,
                        existing,
                        qualified,
                        existing,
                    )
        return table

    def _build_alias_table(self, owner: SubsystemId) -> Dict[str, str]:
        table: Dict[str, str] = {}

        # Lowest precedence: other subsystems' short names, first defined wins
        for sub in self.layout.subsystems:
            if sub.id == owner:
                continue
            for name, suffix, qualified in self._variable_forms(sub):
                table.setdefault(name + suffix, qualified)

        table.update(self._id_aliases)

        owner_sub = self.layout.subsystem(owner)
        for name, suffix, qualified in self._variable_forms(owner_sub):
            table[name + suffix] = qualified

        return table

    def aliases(self, subsystem_id: SubsystemId) -> Dict[str, str]:
        """
        Alias → qualified name table for a subsystem.

        Raises
        ------
        LayoutInconsistency
            If the subsystem is not part of the layout
        """
        try:
            return dict(self._alias_tables[subsystem_id])
        except KeyError:
            raise LayoutInconsistency(f"subsystem {subsystem_id}", "no such subsystem") from None

    # ========================================================================
    # Scopes
    # ========================================================================

    def base_scope(self, state: StateVector, t: float) -> MutableScope:
        """Time, constants and slot values, with algebraic variables at 0"""
        state = np.asarray(state, dtype=np.float64)
        if state.shape[0] != self.layout.n_slots:
            raise LayoutInconsistency(
                "state", f"expected {self.layout.n_slots} slots, got {state.shape[0]}"
            )
        scope: MutableScope = {"t": np.float64(t)}
        scope.update({name: np.float64(value) for name, value in PHYSICAL_CONSTANTS.items()})
        scope.update(zip(self.layout.expanded_names, state))
        for entry in self.layout.algebraic:
            scope[entry.qualified_name] = np.float64(0.0)
        return scope

    def full_scope(self, state: StateVector, t: float) -> MutableScope:
        """
        Full scope for a state at time ``t``, algebraic variables resolved.

        Parameters
        ----------
        state : np.ndarray
            State vector in slot order
        t : float
            Simulation time

        Returns
        -------
        dict
            Qualified name → value

        Raises
        ------
        LayoutInconsistency
            If ``state`` does not match the layout's slot count
        """
        scope = self.base_scope(state, t)
        for _ in range(self.algebraic_passes):
            for entry in self.layout.algebraic:
                local = self.local_scope(entry.subsystem_id, scope)
                scope[entry.qualified_name] = np.float64(entry.expression.evaluate(local))
        return scope

    def localize(self, subsystem_id: SubsystemId, base: Scope) -> MutableScope:
        """
        Alias overlay for equations owned by ``subsystem_id``.

        Pure: reads ``base`` and returns a new dict. Aliases whose target is
        missing from ``base`` are left out.

        Raises
        ------
        LayoutInconsistency
            If the subsystem is not part of the layout
        """
        table = self._alias_tables.get(subsystem_id)
        if table is None:
            raise LayoutInconsistency(f"subsystem {subsystem_id}", "no such subsystem")

        overlay: MutableScope = {
            alias: base[qualified] for alias, qualified in table.items() if qualified in base
        }
        overlay.update(self.scope_functions(base))
        return overlay

    def local_scope(self, subsystem_id: SubsystemId, base: Scope) -> ChainMap:
        """Overlay for ``subsystem_id`` chained over ``base``"""
        return ChainMap(self.localize(subsystem_id, base), base)

    def snapshot_values(self, scope: Scope) -> Dict[str, float]:
        """Slot and algebraic values of a full scope as plain floats"""
        return {name: float(scope[name]) for name in self.layout.qualified_names() if name in scope}

    # ========================================================================
    # Geometry
    # ========================================================================

    def position(self, subsystem_id: SubsystemId, base: Scope) -> Position3D:
        """
        3D position of a subsystem: its first three order>0 variables.

        Raises
        ------
        LayoutInconsistency
            If the subsystem is not part of the layout
        """
        slots = self._position_slots.get(_subsystem_key(subsystem_id))
        if slots is None:
            raise LayoutInconsistency(f"subsystem {subsystem_id}", "no such subsystem")
        return tuple(float(base.get(name, 0.0)) if name else 0.0 for name in slots)

    def positions(self, base: Scope) -> Dict[SubsystemId, Position3D]:
        """Positions of every subsystem, keyed by id"""
        return {sid: self.position(sid, base) for sid in self.layout.subsystem_ids}

    def scope_functions(self, base: Scope) -> Dict[str, Callable[..., float]]:
        """
        Geometric helpers bound to ``base``.

        - ``dist(i, j)``: Euclidean distance between subsystems i and j
        - ``dx(i, j)``, ``dy(i, j)``, ``dz(i, j)``: component of
          position(j) - position(i)
        """

        def delta(i, j) -> np.ndarray:
            return np.subtract(self.position(j, base), self.position(i, base))

        def dist(i, j):
            return float(np.linalg.norm(delta(i, j)))

        def dx(i, j):
            return float(delta(i, j)[0])

        def dy(i, j):
            return float(delta(i, j)[1])

        def dz(i, j):
            return float(delta(i, j)[2])

        return {"dist": dist, "dx": dx, "dy": dy, "dz": dz}


def _subsystem_key(value) -> SubsystemId:
    """Subsystem id from an expression argument (expressions pass floats)."""
    try:
        as_float = float(value)
    except (TypeError, ValueError):
        raise LayoutInconsistency(f"subsystem {value!r}", "not a subsystem id") from None
    if not as_float.is_integer():
        raise LayoutInconsistency(f"subsystem {value!r}", "not a subsystem id")
    return int(as_float)


__all__ = [
    "PHYSICAL_CONSTANTS",
    "DEFAULT_ALGEBRAIC_PASSES",
    "ScopeResolver",
]
