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
Trajectory and Result Types

Defines the data handed from the simulation core to its collaborators:
- State snapshots (time + named slot values)
- Poincaré section points
- Integration results from fixed-step integrators
- Per-frame step reports from the simulation engine

Result types are TypedDict; small immutable records are NamedTuple so that
they unpack naturally as ``(time, values)`` and ``(x, y)`` pairs.

Usage
-----
>>> from odesym.types.trajectories import StateSnapshot, StepReport
>>>
>>> snapshot = engine.current_state()
>>> t, values = snapshot
>>> print(values["sys1_x"])
>>>
>>> report: StepReport = engine.advance(1 / 60)
>>> print(report["steps_taken"])
"""

from typing import Dict, NamedTuple

import numpy as np
from typing_extensions import TypedDict

# ============================================================================
# Snapshot Types
# ============================================================================


class StateSnapshot(NamedTuple):
    """
    Named state values at one simulated time.

    Attributes
    ----------
    time : float
        Simulation time of the snapshot
    values : Dict[str, float]
        Fully qualified name → value, for every state slot and every
        algebraic (order-0) variable

    Examples
    --------
    >>> t, values = engine.current_state()
    >>> values["sys1_theta_dot"]
    0.0
    """

    time: float
    values: Dict[str, float]


class PoincarePoint(NamedTuple):
    """A 2D point on a Poincaré section"""

    x: float
    y: float


# ============================================================================
# Result Types
# ============================================================================


class IntegrationResult(TypedDict, total=False):
    """
    Result of a multi-step fixed-step integration.

    Attributes
    ----------
    t : np.ndarray
        Time points (T,)
    x : np.ndarray
        State trajectory (T, n_slots)
    success : bool
        Whether integration completed
    message : str
        Status message
    nfev : int
        Number of right-hand side evaluations
    nsteps : int
        Number of steps taken
    integration_time : float
        Wall-clock computation time (seconds)
    solver : str
        Integrator name

    Examples
    --------
    >>> result = integrator.integrate(x0, t_span=(0.0, 1.0))
    >>> result["x"][-1]
    """

    t: np.ndarray
    x: np.ndarray
    success: bool
    message: str
    nfev: int
    nsteps: int
    integration_time: float
    solver: str


class ExecutionStats(TypedDict):
    """Call count and timing of a repeatedly evaluated component"""

    calls: int
    total_time: float
    avg_time: float


class StepReport(TypedDict):
    """
    Outcome of one host-driven ``SimulationEngine.advance`` call.

    Attributes
    ----------
    steps_taken : int
        Integration steps drained this call (0 to max_steps_per_tick)
    time : float
        Simulation time after the call
    accumulated : float
        Simulated time still owed to the integrator
    capped : bool
        True if the per-call step cap left time in the accumulator
    samples_emitted : int
        Poincaré points appended during this call
    """

    steps_taken: int
    time: float
    accumulated: float
    capped: bool
    samples_emitted: int


__all__ = [
    "StateSnapshot",
    "PoincarePoint",
    "IntegrationResult",
    "ExecutionStats",
    "StepReport",
]
