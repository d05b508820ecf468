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
Simulation Engine

Owns everything that changes while a simulation runs: the built layout, the
state vector, simulated time, the history buffer and the Poincaré points.

The engine has no timers. A host (render loop, notebook cell, test) calls
``advance(elapsed)`` once per frame; the engine converts wall-clock time to
simulated time through an accumulator and drains at most
``max_steps_per_tick`` fixed steps per call. Time that cannot be drained
stays in the accumulator, so a slow host sees the simulation slow down
instead of stalling.

Usage
-----
>>> engine = SimulationEngine()          # default Lorenz system
>>> engine.start()
>>> report = engine.advance(1 / 60)
>>> report["steps_taken"]
1
>>> t, values = engine.current_state()
>>>
>>> engine.rebuild([Subsystem(1, [Variable("theta", 2, "-g*sin(theta)", initial="1")])])
"""

import logging
import math
from dataclasses import replace
from typing import Dict, Iterable, List, Optional

from odesym.analysis.poincare import PoincareConfig, PoincareSampler
from odesym.exceptions import ValidationError
from odesym.simulation.config import SimulationConfig
from odesym.simulation.history import HistoryBuffer
from odesym.systems.base.core.system_builder import SystemLayout, build_system, reseed_state
from odesym.systems.base.core.variable_model import Subsystem
from odesym.systems.base.numerical_integration.fixed_step_integrators import (
    create_fixed_step_integrator,
)
from odesym.systems.base.utils.dynamics_evaluator import DynamicsEvaluator
from odesym.systems.base.utils.scope_resolver import ScopeResolver
from odesym.types.core import MutableScope, Position3D, StateVector, SubsystemId
from odesym.types.trajectories import PoincarePoint, StateSnapshot, StepReport

logger = logging.getLogger(__name__)


class SimulationEngine:
    """
    Host-driven simulation of a set of subsystems.

    Parameters
    ----------
    subsystems : Optional[Iterable[Subsystem]]
        Initial definitions; the default Lorenz system if omitted
    config : Optional[SimulationConfig]
        Step size, playback speed, caps and method
    poincare_config : Optional[PoincareConfig]
        Poincaré section settings

    Notes
    -----
    The engine starts stopped: ``advance`` does nothing until ``start()``.
    ``step()`` always integrates, running or not.

    Examples
    --------
    >>> engine = SimulationEngine(subsystems, SimulationConfig(dt=0.001))
    >>> engine.step(100)
    >>> engine.history()[-1].time
    0.1
    """

    def __init__(
        self,
        subsystems: Optional[Iterable[Subsystem]] = None,
        config: Optional[SimulationConfig] = None,
        poincare_config: Optional[PoincareConfig] = None,
    ):
        if subsystems is None:
            from odesym.systems.builtin.defaults import default_subsystems

            subsystems = default_subsystems()

        self.config = config if config is not None else SimulationConfig()
        self._poincare_config = poincare_config if poincare_config is not None else PoincareConfig()

        self.time = 0.0
        self._accumulator = 0.0
        self._running = False

        self._history = HistoryBuffer(self.config.history_cap)
        self._poincare_points: List[PoincarePoint] = []

        self._layout: Optional[SystemLayout] = None
        self._state: Optional[StateVector] = None
        # Full scope of the current (state, time), reused as the next pre-step scope
        self._current_scope: Optional[MutableScope] = None

        self.rebuild(subsystems)

    # ========================================================================
    # Structure
    # ========================================================================

    def rebuild(self, subsystems: Iterable[Subsystem]) -> SystemLayout:
        """
        Rebuild from new definitions, keeping values of unchanged slots.

        Slots whose qualified name existed before keep their current value;
        new slots start from their initial condition. Time, history and
        Poincaré points are kept.

        Raises
        ------
        ValidationError
            If the definitions are invalid (duplicate subsystem ids)
        """
        layout = build_system(subsystems)
        resolver = ScopeResolver(layout, self.config.algebraic_passes)
        dynamics = DynamicsEvaluator(layout, resolver)
        integrator = create_fixed_step_integrator(self.config.method, dynamics, self.config.dt)
        state = reseed_state(layout, self._layout, self._state)

        self._layout = layout
        self._resolver = resolver
        self._dynamics = dynamics
        self._integrator = integrator
        self._state = state
        self._current_scope = None
        self._sampler = PoincareSampler(self._with_default_names(self._poincare_config), resolver)

        logger.info(
            "Rebuilt system: %d subsystems, %d slots, %d algebraic variables",
            len(layout.subsystems),
            layout.n_slots,
            len(layout.algebraic),
        )
        return layout

    @property
    def layout(self) -> SystemLayout:
        return self._layout

    @property
    def subsystems(self) -> List[Subsystem]:
        return list(self._layout.subsystems)

    @property
    def state(self) -> StateVector:
        """Copy of the current state vector"""
        return self._state.copy()

    @property
    def integrator(self):
        return self._integrator

    def update_config(self, **changes) -> SimulationConfig:
        """
        Replace configuration fields, rebuilding what depends on them.

        Examples
        --------
        >>> engine.update_config(dt=0.005, playback_speed=2.0)
        """
        config = replace(self.config, **changes)
        self.config = config
        self._history.resize(config.history_cap)
        # Integrator and resolver depend on dt, method and passes
        self.rebuild(self._layout.subsystems)
        return config

    # ========================================================================
    # Poincaré
    # ========================================================================

    @property
    def poincare_config(self) -> PoincareConfig:
        return self._poincare_config

    @poincare_config.setter
    def poincare_config(self, config: PoincareConfig):
        if not isinstance(config, PoincareConfig):
            raise ValidationError(f"Expected PoincareConfig, got {type(config).__name__}")
        self._poincare_config = config
        self._sampler.config = self._with_default_names(config)

    def _with_default_names(self, config: PoincareConfig) -> PoincareConfig:
        """Fill empty plane/plot names with the first available variables."""
        names = self.poincare_variables()
        if not names:
            return config
        second = names[1] if len(names) > 1 else names[0]
        return replace(
            config,
            plane_var=config.plane_var or names[0],
            plot_x=config.plot_x or names[0],
            plot_y=config.plot_y or second,
        )

    def poincare_variables(self) -> List[str]:
        """Names selectable for plane and plot axes: slots, then algebraic"""
        return self._layout.qualified_names()

    def poincare_points(self) -> List[PoincarePoint]:
        return list(self._poincare_points)

    def clear_poincare_points(self) -> None:
        self._poincare_points.clear()

    # ========================================================================
    # Running
    # ========================================================================

    def start(self) -> None:
        self._running = True

    def stop(self) -> None:
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def accumulated(self) -> float:
        """Simulated time owed to the integrator"""
        return self._accumulator

    def advance(self, elapsed: float, speed: Optional[float] = None) -> StepReport:
        """
        Advance by ``elapsed`` wall-clock seconds at ``speed``.

        Parameters
        ----------
        elapsed : float
            Wall-clock time since the previous call (seconds)
        speed : Optional[float]
            Playback multiplier; ``config.playback_speed`` if None

        Returns
        -------
        StepReport
            Steps drained, time, leftover accumulator and samples emitted

        Notes
        -----
        Does nothing while stopped. Negative or non-finite elapsed time or
        speed contribute nothing to the accumulator.
        """
        if not self._running:
            return self._report(0, 0)

        speed = self.config.playback_speed if speed is None else speed
        self._accumulator += _non_negative(elapsed) * _non_negative(speed)

        h = self.config.dt
        steps = 0
        samples = 0
        while self._accumulator >= h and steps < self.config.max_steps_per_tick:
            samples += self._step_once()
            self._accumulator -= h
            steps += 1

        report = self._report(steps, samples)
        if report["capped"]:
            logger.debug(
                "Step cap reached at t=%.4f; %.4f s of simulated time deferred",
                self.time,
                self._accumulator,
            )
        return report

    def step(self, n: int = 1) -> StepReport:
        """
        Integrate ``n`` steps immediately, running or not.

        The accumulator is left untouched.
        """
        samples = 0
        for _ in range(n):
            samples += self._step_once()
        return self._report(n, samples)

    def reset(self) -> None:
        """
        Return to t = 0 with the initial conditions.

        Clears history and the accumulator; Poincaré points are kept until
        ``clear_poincare_points``.
        """
        self.time = 0.0
        self._accumulator = 0.0
        self._state = self._layout.initial_state.copy()
        self._current_scope = None
        self._history.clear()

    def _step_once(self) -> int:
        h = self.config.dt
        prev_scope = self.scope()

        self._state = self._integrator.step(self._state, self.time, h)
        self.time += h

        new_scope = self._resolver.full_scope(self._state, self.time)
        self._current_scope = new_scope
        self._history.push(self.time, self._resolver.snapshot_values(new_scope))

        return 0 if self.sample(prev_scope, new_scope, h) is None else 1

    def sample(
        self, prev_scope: MutableScope, new_scope: MutableScope, h: float
    ) -> Optional[PoincarePoint]:
        """
        Run the Poincaré sampler on one step ending at the current time.

        An emitted point is appended to ``poincare_points()`` and returned.
        """
        point = self._sampler.sample(prev_scope, new_scope, self.time, h)
        if point is not None:
            self._poincare_points.append(point)
        return point

    def _report(self, steps: int, samples: int) -> StepReport:
        return {
            "steps_taken": steps,
            "time": self.time,
            "accumulated": self._accumulator,
            "capped": self._accumulator >= self.config.dt,
            "samples_emitted": samples,
        }

    # ========================================================================
    # Accessors
    # ========================================================================

    def scope(self) -> MutableScope:
        """Full scope of the current state (do not mutate)"""
        if self._current_scope is None:
            self._current_scope = self._resolver.full_scope(self._state, self.time)
        return self._current_scope

    def current_state(self) -> StateSnapshot:
        """Time and values of every slot and algebraic variable"""
        return StateSnapshot(self.time, self._resolver.snapshot_values(self.scope()))

    def history(self) -> List[StateSnapshot]:
        """Snapshots oldest-first, at most ``config.history_cap``"""
        return self._history.snapshots()

    @property
    def history_buffer(self) -> HistoryBuffer:
        return self._history

    def positions(self) -> Dict[SubsystemId, Position3D]:
        """3D position of every subsystem"""
        return self._resolver.positions(self.scope())

    def set_state(self, values: Dict[str, float]) -> None:
        """
        Overwrite slot values by qualified name.

        Raises
        ------
        LayoutInconsistency
            If a name is not a slot of the current layout
        """
        state = self._state.copy()
        for name, value in values.items():
            state[self._layout.index_of(name)] = float(value)
        self._state = state
        self._current_scope = None

    def __repr__(self) -> str:
        return (
            f"SimulationEngine(t={self.time:.4f}, slots={self._layout.n_slots}, "
            f"running={self._running}, method={self.config.method!r})"
        )


def _non_negative(value: float) -> float:
    value = float(value)
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


__all__ = ["SimulationEngine"]
