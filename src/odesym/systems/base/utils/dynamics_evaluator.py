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
Dynamics Evaluator

Evaluates the companion-form right-hand side dy/dt = f(y, t) of a built
system.

Responsibilities:
- Build the full scope for (y, t) through the ScopeResolver
- Evaluate every equation against its owner's local scope, in layout order
- Degrade failed components to 0 (the compiled expressions log the fault)
- Performance tracking

This is the callable handed to the fixed-step integrators.
"""

import time

import numpy as np

from odesym.systems.base.core.system_builder import SystemLayout
from odesym.systems.base.utils.scope_resolver import ScopeResolver
from odesym.types.core import DerivativeVector, StateVector
from odesym.types.trajectories import ExecutionStats


class DynamicsEvaluator:
    """
    Evaluates dy/dt = f(y, t) for a SystemLayout.

    Example:
        >>> layout = build_system(subsystems)
        >>> evaluator = DynamicsEvaluator(layout, ScopeResolver(layout))
        >>> dy = evaluator(layout.initial_state, 0.0)
        >>>
        >>> stats: ExecutionStats = evaluator.get_stats()
        >>> print(f"Calls: {stats['calls']}")
    """

    def __init__(self, layout: SystemLayout, resolver: ScopeResolver):
        """
        Initialize dynamics evaluator.

        Args:
            layout: Companion-form layout providing the equations
            resolver: Scope resolver built for the same layout
        """
        self.layout = layout
        self.resolver = resolver

        # Performance tracking
        self._stats = {
            "calls": 0,
            "time": 0.0,
        }

    def evaluate(self, y: StateVector, t: float) -> DerivativeVector:
        """
        Evaluate the time derivative of the state.

        Args:
            y: State vector (n_slots,)
            t: Simulation time

        Returns:
            Derivative vector (n_slots,)

        Raises:
            LayoutInconsistency: If ``y`` does not match the layout

        Example:
            >>> dy = evaluator.evaluate(np.array([1.0, 0.0]), t=0.0)
        """
        start_time = time.time()

        scope = self.resolver.full_scope(y, t)
        dy = np.zeros(self.layout.n_slots)

        # One overlay per owning subsystem
        local_scopes = {}
        for equation in self.layout.equations:
            local = local_scopes.get(equation.subsystem_id)
            if local is None:
                local = self.resolver.local_scope(equation.subsystem_id, scope)
                local_scopes[equation.subsystem_id] = local
            dy[equation.slot_index] = equation.expression.evaluate(local)

        self._stats["calls"] += 1
        self._stats["time"] += time.time() - start_time

        return dy

    __call__ = evaluate

    def get_stats(self) -> ExecutionStats:
        """
        Get performance statistics.

        Returns:
            ExecutionStats with call count and timing
        """
        return {
            "calls": self._stats["calls"],
            "total_time": self._stats["time"],
            "avg_time": self._stats["time"] / max(1, self._stats["calls"]),
        }

    def reset_stats(self):
        """Reset performance counters."""
        self._stats["calls"] = 0
        self._stats["time"] = 0.0

    def __repr__(self) -> str:
        return (
            f"DynamicsEvaluator(n_slots={self.layout.n_slots}, "
            f"n_equations={len(self.layout.equations)}, "
            f"calls={self._stats['calls']})"
        )
