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
Poincaré Section Sampling

Inspects each integration step and decides whether to emit a 2D point.

Two modes:

- ``time``: stroboscopic sampling. A point is emitted whenever the step
  (t - h, t] contains a multiple of the period, i.e. when
  ``floor(t / period) > floor((t - h) / period)``. The period is an
  expression re-evaluated every step, so it may depend on ``t`` or state.
- ``plane``: a point is emitted when ``plane_var`` crosses ``plane_value``
  between the pre-step and post-step scopes, in the configured direction.

The emitted point is ``(scope[plot_x], scope[plot_y])`` from the post-step
scope. Names that do not resolve to a number (stale after a rebuild, empty,
or bound to a function) skip the sample without raising.

Examples
--------
>>> config = PoincareConfig(mode="plane", plane_var="x", plane_value="0",
...                         direction="positive", plot_x="y", plot_y="z")
>>> sampler = PoincareSampler(config, resolver)
>>> point = sampler.sample(prev_scope, new_scope, t=1.0, h=0.01)
"""

import logging
import math
from collections import ChainMap
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Union

import numpy as np

from odesym.exceptions import EvaluationFault, LayoutInconsistency, ParseError, ValidationError
from odesym.systems.base.utils.expression_compiler import ExpressionCompiler
from odesym.systems.base.utils.scope_resolver import ScopeResolver
from odesym.types.core import Scope
from odesym.types.trajectories import PoincarePoint

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration
# ============================================================================


class PoincareMode(str, Enum):
    """Sampling mode"""

    TIME = "time"
    PLANE = "plane"


class CrossingDirection(str, Enum):
    """
    Plane-crossing direction.

    Attributes
    ----------
    POSITIVE : str
        prev < threshold <= new
    NEGATIVE : str
        prev > threshold >= new
    BOTH : str
        Either of the above
    """

    POSITIVE = "positive"
    NEGATIVE = "negative"
    BOTH = "both"


@dataclass
class PoincareConfig:
    """
    Poincaré section configuration.

    Attributes
    ----------
    mode : PoincareMode
        ``time`` or ``plane``
    period : str
        Sampling period expression (time mode), e.g. ``"2*PI"``
    plane_var : str
        Name whose crossing is detected (plane mode)
    plane_value : Union[float, str]
        Crossing threshold, a number or an expression
    direction : CrossingDirection
        Which crossings count (plane mode)
    plot_x : str
        Name projected onto the point's x coordinate
    plot_y : str
        Name projected onto the point's y coordinate

    Mode and direction accept their string values.

    Examples
    --------
    >>> PoincareConfig(mode="plane", plane_var="sys1_z", plane_value=27.0)
    """

    mode: PoincareMode = PoincareMode.TIME
    period: str = "2 * PI"
    plane_var: str = ""
    plane_value: Union[float, str] = "0"
    direction: CrossingDirection = CrossingDirection.POSITIVE
    plot_x: str = ""
    plot_y: str = ""

    def __post_init__(self):
        try:
            self.mode = PoincareMode(self.mode)
        except ValueError:
            raise ValidationError(
                f"Invalid Poincaré mode {self.mode!r}. "
                f"Choose from: {[m.value for m in PoincareMode]}"
            ) from None
        try:
            self.direction = CrossingDirection(self.direction)
        except ValueError:
            raise ValidationError(
                f"Invalid crossing direction {self.direction!r}. "
                f"Choose from: {[d.value for d in CrossingDirection]}"
            ) from None


def crossed(prev: float, new: float, threshold: float, direction: CrossingDirection) -> bool:
    """
    Whether the segment prev → new crosses ``threshold`` in ``direction``.

    Examples
    --------
    >>> crossed(-1.0, 1.0, 0.0, CrossingDirection.POSITIVE)
    True
    >>> crossed(-1.0, 1.0, 0.0, CrossingDirection.NEGATIVE)
    False
    >>> crossed(-1.0, 0.0, 0.0, CrossingDirection.POSITIVE)
    True
    """
    upward = prev < threshold <= new
    downward = prev > threshold >= new
    if direction == CrossingDirection.POSITIVE:
        return upward
    if direction == CrossingDirection.NEGATIVE:
        return downward
    return upward or downward


def period_boundary_crossed(t: float, h: float, period: float) -> bool:
    """
    Whether the step (t - h, t] completes another full period.

    Examples
    --------
    >>> period_boundary_crossed(1.2, 0.3, 1.0)
    True
    >>> period_boundary_crossed(0.9, 0.3, 1.0)
    False
    """
    if not period > 0 or not math.isfinite(period):
        return False
    return math.floor(t / period) > math.floor((t - h) / period)


# ============================================================================
# Sampler
# ============================================================================


class PoincareSampler:
    """
    Decides, step by step, whether to emit a Poincaré point.

    Parameters
    ----------
    config : PoincareConfig
        Sampling configuration; may be replaced at any time
    resolver : Optional[ScopeResolver]
        Provides the first subsystem's alias view so short names (``x``)
        resolve as well as qualified ones (``sys1_x``)

    Examples
    --------
    >>> sampler = PoincareSampler(PoincareConfig(period="1", plot_x="x", plot_y="y"))
    >>> sampler.sample(prev, new, t=1.2, h=0.3)
    PoincarePoint(x=..., y=...)
    """

    def __init__(
        self,
        config: Optional[PoincareConfig] = None,
        resolver: Optional[ScopeResolver] = None,
    ):
        self.config = config if config is not None else PoincareConfig()
        self.resolver = resolver
        # Period and threshold strings are parsed once, evaluated every step
        self.compiler = ExpressionCompiler()

        self._stats = {"steps_inspected": 0, "samples": 0, "skipped": 0}

    def view(self, scope: Scope):
        """Full scope with the first subsystem's aliases behind it"""
        if self.resolver is None or not self.resolver.layout.subsystems:
            return scope
        first = self.resolver.layout.subsystems[0].id
        # Qualified names take precedence over aliases
        return ChainMap(scope, self.resolver.localize(first, scope))

    def lookup(self, scope: Scope, name: str) -> Optional[float]:
        """
        Numeric value of ``name`` in ``scope``, or None if unresolvable.
        """
        if not name:
            return None
        value = self.view(scope).get(name)
        if isinstance(value, bool) or not isinstance(value, (int, float, np.number)):
            return None
        return float(value)

    def _evaluate(self, raw: Union[float, str], scope: Scope) -> Optional[float]:
        """Evaluate a number or expression; None if it fails"""
        if isinstance(raw, (int, float, np.number)) and not isinstance(raw, bool):
            return float(raw)
        try:
            compiled = self.compiler.compile(str(raw), strict=True)
            return compiled.evaluate_strict(self.view(scope))
        except (ParseError, EvaluationFault, LayoutInconsistency) as exc:
            logger.debug("Poincaré expression %r not usable: %s", raw, exc)
            return None

    def sample(
        self,
        prev_scope: Scope,
        new_scope: Scope,
        t: float,
        h: float,
    ) -> Optional[PoincarePoint]:
        """
        Inspect one step and return the emitted point, if any.

        Parameters
        ----------
        prev_scope : Mapping
            Full scope before the step
        new_scope : Mapping
            Full scope after the step
        t : float
            Time after the step
        h : float
            Step size

        Returns
        -------
        Optional[PoincarePoint]
            Point from the post-step scope, or None
        """
        self._stats["steps_inspected"] += 1
        config = self.config

        if config.mode == PoincareMode.TIME:
            period = self._evaluate(config.period, new_scope)
            if period is None or not period_boundary_crossed(t, h, period):
                return None
        else:
            prev_value = self.lookup(prev_scope, config.plane_var)
            new_value = self.lookup(new_scope, config.plane_var)
            threshold = self._evaluate(config.plane_value, new_scope)
            if prev_value is None or new_value is None or threshold is None:
                self._skip("plane variable %r or threshold unresolved", config.plane_var)
                return None
            if not crossed(prev_value, new_value, threshold, config.direction):
                return None

        x = self.lookup(new_scope, config.plot_x)
        y = self.lookup(new_scope, config.plot_y)
        if x is None or y is None:
            self._skip("plot names %r/%r unresolved", config.plot_x, config.plot_y)
            return None

        self._stats["samples"] += 1
        return PoincarePoint(x, y)

    def _skip(self, message: str, *args) -> None:
        self._stats["skipped"] += 1
        logger.debug("Poincaré sample skipped: " + message, *args)

    def get_stats(self) -> Dict[str, int]:
        """Counts of inspected steps, emitted samples and skipped samples"""
        return dict(self._stats)

    def reset_stats(self):
        for key in self._stats:
            self._stats[key] = 0


__all__ = [
    "PoincareMode",
    "CrossingDirection",
    "PoincareConfig",
    "PoincareSampler",
    "crossed",
    "period_boundary_crossed",
]
