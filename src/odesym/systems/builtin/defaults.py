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
Builtin Systems

Ready-made subsystem definitions.

Lorenz System:
    dx/dt = σ(y - x)
    dy/dt = x(ρ - z) - y
    dz/dt = xy - βz

Harmonic Oscillator:
    x'' = -ω²x

Examples
--------
>>> engine = SimulationEngine(default_subsystems())
>>> engine = SimulationEngine([lorenz_subsystem(1), harmonic_oscillator(2, omega=2.0)])
"""

from typing import List

from odesym.analysis.poincare import CrossingDirection, PoincareConfig, PoincareMode
from odesym.systems.base.core.variable_model import Subsystem, Variable

DEFAULT_PARTICLE_COLOR = "#ff4d4d"


def _fmt(value: float) -> str:
    return repr(float(value))


def lorenz_subsystem(
    subsystem_id: int = 1,
    sigma: float = 10.0,
    rho: float = 28.0,
    beta: float = 8.0 / 3.0,
    initial=(1.0, 0.0, 0.0),
    color: str = DEFAULT_PARTICLE_COLOR,
) -> Subsystem:
    """
    Lorenz attractor as three first-order variables x, y, z.

    With the classic parameters (σ=10, ρ=28, β=8/3) the default expressions
    match the ones shown to a new user: ``10*(y-x)``, ``x*(28-z)-y``,
    ``x*y-8/3*z``.
    """
    if (sigma, rho, beta) == (10.0, 28.0, 8.0 / 3.0):
        exprs = ("10*(y-x)", "x*(28-z)-y", "x*y-8/3*z")
    else:
        exprs = (
            f"{_fmt(sigma)}*(y-x)",
            f"x*({_fmt(rho)}-z)-y",
            f"x*y-{_fmt(beta)}*z",
        )
    x0, y0, z0 = initial
    return Subsystem(
        subsystem_id,
        [
            Variable("x", 1, exprs[0], initial=_fmt(x0)),
            Variable("y", 1, exprs[1], initial=_fmt(y0)),
            Variable("z", 1, exprs[2], initial=_fmt(z0)),
        ],
        color=color,
    )


def harmonic_oscillator(
    subsystem_id: int = 1,
    omega: float = 1.0,
    x0: float = 1.0,
    v0: float = 0.0,
    color: str = DEFAULT_PARTICLE_COLOR,
) -> Subsystem:
    """Second-order oscillator x'' = -ω²x; exact solution x0 cos(ωt) + v0/ω sin(ωt)"""
    return Subsystem(
        subsystem_id,
        [Variable("x", 2, f"-{_fmt(omega ** 2)}*x", initial=_fmt(x0), initial_dot=_fmt(v0))],
        color=color,
    )


def default_subsystems() -> List[Subsystem]:
    """The system a new session starts with: one Lorenz particle"""
    return [lorenz_subsystem(1)]


def default_poincare_config() -> PoincareConfig:
    """Plane section z = 27 of the Lorenz attractor, plotted in (x, y)"""
    return PoincareConfig(
        mode=PoincareMode.PLANE,
        plane_var="sys1_z",
        plane_value="27",
        direction=CrossingDirection.POSITIVE,
        plot_x="sys1_x",
        plot_y="sys1_y",
    )


__all__ = [
    "DEFAULT_PARTICLE_COLOR",
    "lorenz_subsystem",
    "harmonic_oscillator",
    "default_subsystems",
    "default_poincare_config",
]
