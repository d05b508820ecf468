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
Integrator Base - Abstract Interface for Numerical Integration

Provides a unified interface for fixed time-step integration of
non-autonomous first-order systems dy/dt = f(y, t).

Design Note
-----------
Results are TypedDict (IntegrationResult from odesym.types.trajectories),
matching the rest of the code base.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Tuple

import numpy as np

from odesym.exceptions import ValidationError
from odesym.types.core import DerivativeVector, DynamicsFunction, ScalarLike, StateVector
from odesym.types.trajectories import IntegrationResult


class IntegratorBase(ABC):
    """
    Abstract base class for numerical integrators.

    All integrators must implement:
    - step(): Single integration step
    - integrate(): Multi-step integration over interval
    - name: Integrator name for display

    Result Types
    ------------
    integrate() returns an IntegrationResult TypedDict with:
    - t: Time points (T,)
    - x: State trajectory (T, n_slots)
    - success: Integration succeeded
    - message: Status message
    - nfev: Number of function evaluations
    - nsteps: Number of steps taken
    - integration_time: Computation time
    - solver: Integrator name

    Examples
    --------
    >>> integrator = RK4Integrator(evaluator, dt=0.01)
    >>>
    >>> # Single step
    >>> y_next = integrator.step(y, t=0.0)
    >>>
    >>> # Multi-step integration
    >>> result = integrator.integrate(y0, t_span=(0.0, 10.0))
    >>> t, y_traj = result["t"], result["x"]
    >>> print(f"Steps: {result['nsteps']}, Function evals: {result['nfev']}")
    """

    def __init__(
        self,
        dynamics: DynamicsFunction,
        dt: ScalarLike,
    ):
        """
        Initialize integrator.

        Parameters
        ----------
        dynamics : Callable[[np.ndarray, float], np.ndarray]
            Right-hand side f(y, t)
        dt : float
            Constant step size

        Raises
        ------
        ValidationError
            If dt is not positive
        """
        self.dynamics = dynamics
        self.dt = dt

        if dt is None or not dt > 0:
            raise ValidationError(f"Time step dt must be positive, got {dt}")

        # Statistics
        self._stats = {
            "total_steps": 0,
            "total_fev": 0,  # Function evaluations
            "total_time": 0.0,
        }

    @abstractmethod
    def step(self, x: StateVector, t: ScalarLike, dt: Optional[ScalarLike] = None) -> StateVector:
        """
        Take one integration step: y(t) → y(t + dt).

        Parameters
        ----------
        x : np.ndarray
            Current state (n_slots,)
        t : float
            Current time
        dt : Optional[float]
            Step size (uses self.dt if None)

        Returns
        -------
        np.ndarray
            Next state y(t + dt)
        """
        pass

    @abstractmethod
    def integrate(
        self,
        x0: StateVector,
        t_span: Tuple[float, float],
        t_eval: Optional[np.ndarray] = None,
    ) -> IntegrationResult:
        """
        Integrate over a time interval.

        Parameters
        ----------
        x0 : np.ndarray
            Initial state (n_slots,)
        t_span : Tuple[float, float]
            Integration interval (t_start, t_end)
        t_eval : Optional[np.ndarray]
            Time grid to step along; defaults to t_start + k*dt

        Returns
        -------
        IntegrationResult
        """
        pass

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Get integrator name for display and logging.

        Examples
        --------
        >>> integrator.name
        'RK4 (Classic)'
        """
        pass

    # ========================================================================
    # Common Utilities (Shared by All Integrators)
    # ========================================================================

    def _evaluate_dynamics(self, x: StateVector, t: ScalarLike) -> DerivativeVector:
        """
        Evaluate dynamics with statistics tracking.

        Notes
        -----
        This wrapper counts function evaluations for performance analysis.
        """
        self._stats["total_fev"] += 1
        return np.asarray(self.dynamics(x, t), dtype=np.float64)

    def get_stats(self) -> Dict[str, Any]:
        """
        Get integration statistics.

        Returns
        -------
        dict
            Statistics with keys:
            - 'total_steps': Total integration steps taken
            - 'total_fev': Total function evaluations
            - 'total_time': Total integration time
            - 'avg_fev_per_step': Average function evaluations per step

        Examples
        --------
        >>> stats = integrator.get_stats()
        >>> print(f"Evals/step: {stats['avg_fev_per_step']:.1f}")
        """
        avg_fev = self._stats["total_fev"] / max(1, self._stats["total_steps"])

        return {
            **self._stats,
            "avg_fev_per_step": avg_fev,
        }

    def reset_stats(self):
        """
        Reset integration statistics to zero.

        Examples
        --------
        >>> integrator.reset_stats()
        >>> integrator.get_stats()['total_steps']
        0
        """
        self._stats["total_steps"] = 0
        self._stats["total_fev"] = 0
        self._stats["total_time"] = 0.0

    def __repr__(self) -> str:
        """String representation for debugging"""
        return f"{self.__class__.__name__}(dt={self.dt})"

    def __str__(self) -> str:
        """Human-readable string"""
        return f"{self.name} (dt={self.dt:.4f})"
