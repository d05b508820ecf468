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
odesym
======

Interactive simulation of user-defined ODE systems.

Variables of order 0-3 are written as free-form expressions with apostrophe
derivative notation, grouped into subsystems that can reference each
other, expanded into companion form and integrated with fixed-step RK4.
Poincaré sections are sampled along the way.

>>> from odesym import SimulationEngine, Subsystem, Variable
>>>
>>> engine = SimulationEngine([
...     Subsystem(1, [Variable("theta", 2, "-g*sin(theta) - 0.1*theta'", initial="1")]),
... ])
>>> engine.step(100)
>>> engine.current_state().values["sys1_theta"]
"""

from odesym.analysis.poincare import (
    CrossingDirection,
    PoincareConfig,
    PoincareMode,
    PoincareSampler,
)
from odesym.exceptions import (
    EvaluationFault,
    LayoutInconsistency,
    OdeSymError,
    ParseError,
    ValidationError,
)
from odesym.logging_config import setup_logging
from odesym.simulation.config import SimulationConfig
from odesym.simulation.engine import SimulationEngine
from odesym.simulation.history import HistoryBuffer
from odesym.systems.base.core.system_builder import SystemLayout, build_system
from odesym.systems.base.core.variable_model import Subsystem, Variable
from odesym.systems.base.utils.expression_compiler import (
    CompiledExpression,
    ExpressionCompiler,
    compile_expression,
)
from odesym.systems.base.utils.scope_resolver import ScopeResolver
from odesym.types import PoincarePoint, StateSnapshot, StepReport

__version__ = "0.1.0"

__all__ = [
    # Model
    "Variable",
    "Subsystem",
    "SystemLayout",
    "build_system",
    # Expressions and scopes
    "CompiledExpression",
    "ExpressionCompiler",
    "compile_expression",
    "ScopeResolver",
    # Simulation
    "SimulationEngine",
    "SimulationConfig",
    "HistoryBuffer",
    # Poincaré
    "PoincareConfig",
    "PoincareMode",
    "CrossingDirection",
    "PoincareSampler",
    # Results
    "StateSnapshot",
    "PoincarePoint",
    "StepReport",
    # Errors
    "OdeSymError",
    "ParseError",
    "EvaluationFault",
    "LayoutInconsistency",
    "ValidationError",
    # Logging
    "setup_logging",
]
