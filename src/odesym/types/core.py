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
Core Types - Fundamental Building Blocks

Defines the basic types used throughout the simulation core:
- State vectors and scalars
- Scope mappings consumed by compiled expressions
- Function signatures for dynamics and scope-provided helpers

Usage
-----
>>> from odesym.types.core import StateVector, Scope
>>>
>>> def total(x: StateVector) -> float:
...     return float(x.sum())
"""

from typing import Any, Callable, Dict, Mapping, Tuple, Union

import numpy as np

# ============================================================================
# Basic Array Types
# ============================================================================

StateVector = np.ndarray
"""
Flat state vector in companion form.

Shape: (n_slots,), dtype float64. Entry i holds the value of the slot named
``layout.expanded_names[i]``.
"""

DerivativeVector = np.ndarray
"""Time derivative of a StateVector, same shape."""

ScalarLike = Union[float, int, np.number]
"""Scalar numeric value."""

SubsystemId = int
"""Integer identifier of a subsystem (particle)."""

Position3D = Tuple[float, float, float]
"""Cartesian position of a subsystem, missing axes filled with 0."""

# ============================================================================
# Scope Types
# ============================================================================

ScopeValue = Union[float, Callable[..., Any]]
"""A scope entry: a number, or a helper callable such as ``dist``."""

Scope = Mapping[str, ScopeValue]
"""
Read-only name → value environment for one expression evaluation.

Full scopes hold fully qualified names (``sys1_x``, ``sys1_x_dot``), the
time ``t`` and physical constants. Local scopes layer an alias overlay on top
(``x``, ``x_dot``, ``x2``) for the subsystem owning the equation.
"""

MutableScope = Dict[str, ScopeValue]
"""Scope under construction."""

# ============================================================================
# Function Signatures
# ============================================================================

DynamicsFunction = Callable[[StateVector, float], DerivativeVector]
"""
Right-hand side of the first-order system: (y, t) → dy/dt.

Examples
--------
>>> def decay(y: StateVector, t: float) -> DerivativeVector:
...     return -y
"""

__all__ = [
    "StateVector",
    "DerivativeVector",
    "ScalarLike",
    "SubsystemId",
    "Position3D",
    "ScopeValue",
    "Scope",
    "MutableScope",
    "DynamicsFunction",
]
