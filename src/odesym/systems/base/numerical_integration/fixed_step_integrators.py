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
Fixed-Step Integrators

Implements classic fixed time-step integration methods for dy/dt = f(y, t):
- Explicit Euler (1st order)
- Midpoint/RK2 (2nd order)
- RK4 (4th order), the simulation default

Each stage evaluates f at the stage time, so time-dependent right-hand sides
(``sin(t)``, a period expression in ``t``) are integrated correctly.
"""

import time
from typing import Optional, Tuple

import numpy as np

from odesym.exceptions import ValidationError
from odesym.systems.base.numerical_integration.integrator_base import IntegratorBase
from odesym.types.core import DynamicsFunction, ScalarLike, StateVector
from odesym.types.trajectories import IntegrationResult


class _FixedStepIntegrator(IntegratorBase):
    """Shared time-grid loop for fixed-step methods."""

    def integrate(
        self,
        x0: StateVector,
        t_span: Tuple[float, float],
        t_eval: Optional[np.ndarray] = None,
    ) -> IntegrationResult:
        """
        Integrate along a fixed time grid.

        Parameters
        ----------
        x0 : np.ndarray
            Initial state (n_slots,)
        t_span : Tuple[float, float]
            Integration interval (t_start, t_end)
        t_eval : Optional[np.ndarray]
            Grid to step along (if None, uses uniform grid with dt)

        Returns
        -------
        IntegrationResult
            TypedDict containing trajectory and diagnostics

        Examples
        --------
        >>> result = integrator.integrate(np.array([1.0]), t_span=(0.0, 1.0))
        >>> print(f"Final: {result['x'][-1]}")
        """
        start_time = time.time()
        fev_before = self._stats["total_fev"]

        t0, tf = t_span

        # Create time grid
        if t_eval is None:
            num_steps = int(np.ceil((tf - t0) / self.dt - 1e-9))
            t_eval = np.linspace(t0, tf, max(num_steps, 0) + 1)
        t_points = np.asarray(t_eval, dtype=np.float64)

        # Initialize storage
        x = np.asarray(x0, dtype=np.float64)
        trajectory = [x]

        for i in range(len(t_points) - 1):
            t = float(t_points[i])
            dt_step = float(t_points[i + 1] - t_points[i])
            x = self.step(x, t, dt=dt_step)
            trajectory.append(x)

        x_traj = np.stack(trajectory)

        elapsed = time.time() - start_time
        self._stats["total_time"] += elapsed

        result: IntegrationResult = {
            "t": t_points,
            "x": x_traj,
            "success": bool(np.all(np.isfinite(x_traj))),
            "message": f"{self.name} integration completed",
            "nfev": self._stats["total_fev"] - fev_before,
            "nsteps": len(t_points) - 1,
            "integration_time": elapsed,
            "solver": self.name,
        }
        if not result["success"]:
            result["message"] = f"{self.name} integration produced non-finite values"

        return result


class ExplicitEulerIntegrator(_FixedStepIntegrator):
    """
    Explicit Euler integrator.

    Algorithm:
        y_{k+1} = y_k + dt * f(y_k, t_k)

    Characteristics:
    - Order: 1 (error ∝ dt)
    - Function evaluations: 1 per step

    Examples
    --------
    >>> integrator = ExplicitEulerIntegrator(lambda y, t: -y, dt=0.001)
    >>> integrator.step(np.array([1.0]), t=0.0)
    array([0.999])
    """

    def step(self, x: StateVector, t: ScalarLike, dt: Optional[ScalarLike] = None) -> StateVector:
        dt = dt if dt is not None else self.dt

        x_next = x + dt * self._evaluate_dynamics(x, t)

        self._stats["total_steps"] += 1
        return x_next

    @property
    def name(self) -> str:
        return "Euler (Explicit)"


class MidpointIntegrator(_FixedStepIntegrator):
    """
    Explicit midpoint (RK2) integrator.

    Algorithm:
        k1 = f(y_k, t_k)
        y_{k+1} = y_k + dt * f(y_k + dt/2 * k1, t_k + dt/2)

    Characteristics:
    - Order: 2 (error ∝ dt²)
    - Function evaluations: 2 per step
    """

    def step(self, x: StateVector, t: ScalarLike, dt: Optional[ScalarLike] = None) -> StateVector:
        dt = dt if dt is not None else self.dt

        k1 = self._evaluate_dynamics(x, t)
        k2 = self._evaluate_dynamics(x + 0.5 * dt * k1, t + 0.5 * dt)
        x_next = x + dt * k2

        self._stats["total_steps"] += 1
        return x_next

    @property
    def name(self) -> str:
        return "Midpoint (RK2)"


class RK4Integrator(_FixedStepIntegrator):
    """
    Classic 4th-order Runge-Kutta integrator.

    Algorithm:
        k1 = f(y_k, t_k)
        k2 = f(y_k + 0.5*dt*k1, t_k + dt/2)
        k3 = f(y_k + 0.5*dt*k2, t_k + dt/2)
        k4 = f(y_k + dt*k3, t_k + dt)
        y_{k+1} = y_k + (dt/6) * (k1 + 2*k2 + 2*k3 + k4)

    Characteristics:
    - Order: 4 (error ∝ dt⁴)
    - Function evaluations: 4 per step
    - Matches the Taylor series of linear systems through dt⁴

    Not recommended for:
    - Stiff systems (step size must shrink to stay stable)

    Examples
    --------
    >>> integrator = RK4Integrator(lambda y, t: y, dt=0.1)
    >>> integrator.step(np.array([1.0]), t=0.0)
    array([1.10517083])
    """

    def step(self, x: StateVector, t: ScalarLike, dt: Optional[ScalarLike] = None) -> StateVector:
        """
        Take one RK4 step using four function evaluations.

        Parameters
        ----------
        x : np.ndarray
            Current state
        t : float
            Current time
        dt : Optional[float]
            Time step (uses self.dt if None)

        Returns
        -------
        np.ndarray
            Next state after RK4 step
        """
        dt = dt if dt is not None else self.dt

        k1 = self._evaluate_dynamics(x, t)
        k2 = self._evaluate_dynamics(x + 0.5 * dt * k1, t + 0.5 * dt)
        k3 = self._evaluate_dynamics(x + 0.5 * dt * k2, t + 0.5 * dt)
        k4 = self._evaluate_dynamics(x + dt * k3, t + dt)

        # Weighted combination
        x_next = x + (dt / 6.0) * (k1 + 2 * k2 + 2 * k3 + k4)

        self._stats["total_steps"] += 1

        return x_next

    @property
    def name(self) -> str:
        return "RK4 (Classic)"


# ============================================================================
# Utility: Quick Integrator Creation
# ============================================================================

FIXED_STEP_METHODS = {
    "euler": ExplicitEulerIntegrator,
    "midpoint": MidpointIntegrator,
    "rk4": RK4Integrator,
}


def create_fixed_step_integrator(
    method: str, dynamics: DynamicsFunction, dt: float
) -> IntegratorBase:
    """
    Quick factory for fixed-step integrators.

    Parameters
    ----------
    method : str
        'euler', 'midpoint', or 'rk4'
    dynamics : Callable[[np.ndarray, float], np.ndarray]
        Right-hand side f(y, t)
    dt : float
        Time step

    Returns
    -------
    IntegratorBase
        Configured integrator

    Raises
    ------
    ValidationError
        If the method is unknown

    Examples
    --------
    >>> integrator = create_fixed_step_integrator('rk4', evaluator, dt=0.01)
    >>> result = integrator.integrate(y0, (0, 10))
    """
    if method not in FIXED_STEP_METHODS:
        raise ValidationError(
            f"Unknown method '{method}'. Choose from: {list(FIXED_STEP_METHODS.keys())}"
        )

    integrator_class = FIXED_STEP_METHODS[method]
    return integrator_class(dynamics, dt)


# ============================================================================
# Module Exports
# ============================================================================

__all__ = [
    "ExplicitEulerIntegrator",
    "MidpointIntegrator",
    "RK4Integrator",
    "FIXED_STEP_METHODS",
    "create_fixed_step_integrator",
]
