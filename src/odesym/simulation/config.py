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
Simulation configuration.

>>> config = SimulationConfig(dt=0.005, history_cap=500)
>>> config.max_steps_per_tick
10
"""

from dataclasses import dataclass

from odesym.exceptions import ValidationError
from odesym.systems.base.numerical_integration.fixed_step_integrators import FIXED_STEP_METHODS


@dataclass
class SimulationConfig:
    """
    Settings consumed by SimulationEngine.

    Attributes
    ----------
    dt : float
        Fixed integration step (simulated seconds)
    playback_speed : float
        Simulated seconds per wall-clock second
    history_cap : int
        Maximum number of snapshots kept in the history buffer
    max_steps_per_tick : int
        Maximum integration steps drained per ``advance`` call
    algebraic_passes : int
        Resolution passes over algebraic (order-0) variables
    method : str
        Fixed-step method: 'rk4', 'midpoint' or 'euler'
    """

    dt: float = 0.01
    playback_speed: float = 1.0
    history_cap: int = 2000
    max_steps_per_tick: int = 10
    algebraic_passes: int = 3
    method: str = "rk4"

    def __post_init__(self):
        if not self.dt > 0:
            raise ValidationError(f"dt must be positive, got {self.dt}")
        if self.playback_speed < 0:
            raise ValidationError(f"playback_speed must be non-negative, got {self.playback_speed}")
        if self.history_cap < 1:
            raise ValidationError(f"history_cap must be at least 1, got {self.history_cap}")
        if self.max_steps_per_tick < 1:
            raise ValidationError(
                f"max_steps_per_tick must be at least 1, got {self.max_steps_per_tick}"
            )
        if self.algebraic_passes < 0:
            raise ValidationError(
                f"algebraic_passes must be non-negative, got {self.algebraic_passes}"
            )
        if self.method not in FIXED_STEP_METHODS:
            raise ValidationError(
                f"Unknown method '{self.method}'. Choose from: {list(FIXED_STEP_METHODS)}"
            )
