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
Unit Tests for ScopeResolver

Tests cover:
1. Full scope contents (time, constants, slots)
2. Bounded algebraic resolution
3. Local alias precedence
4. Geometry helpers (positions, dist, dx/dy/dz)
5. Read-only behaviour
"""

import logging
import math
from collections import ChainMap

import numpy as np
import pytest

from odesym.exceptions import LayoutInconsistency
from odesym.systems.base.core.system_builder import build_system
from odesym.systems.base.core.variable_model import Subsystem, Variable
from odesym.systems.base.utils.expression_compiler import compile_expression
from odesym.systems.base.utils.scope_resolver import PHYSICAL_CONSTANTS, ScopeResolver

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def two_particles():
    """Two subsystems that share the short name x"""
    return build_system(
        [
            Subsystem(
                1,
                [
                    Variable("x", 2, "-x", initial="1", initial_dot="0.5"),
                    Variable("y", 0, "2*x"),
                ],
            ),
            Subsystem(
                2,
                [
                    Variable("x", 1, "x2", initial="3"),
                    Variable("z", 1, "0", initial="4"),
                ],
            ),
        ]
    )


@pytest.fixture
def resolver(two_particles):
    return ScopeResolver(two_particles)


@pytest.fixture
def scope(resolver, two_particles):
    return resolver.full_scope(two_particles.initial_state, t=0.5)


# ============================================================================
# Full Scope
# ============================================================================


class TestFullScope:
    """Test full scope construction"""

    def test_time_and_constants(self, scope):
        assert scope["t"] == 0.5
        for name, value in PHYSICAL_CONSTANTS.items():
            assert scope[name] == value
        assert scope["g"] == 9.80665
        assert scope["mu0"] == pytest.approx(4 * math.pi * 1e-7)

    def test_slots(self, scope):
        assert scope["sys1_x"] == 1.0
        assert scope["sys1_x_dot"] == 0.5
        assert scope["sys2_x"] == 3.0
        assert scope["sys2_z"] == 4.0

    def test_algebraic_resolved_with_local_names(self, scope):
        """Test y = 2*x reads the owner's x"""
        assert scope["sys1_y"] == 2.0

    def test_state_length_mismatch(self, resolver):
        with pytest.raises(LayoutInconsistency):
            resolver.full_scope(np.zeros(2), t=0.0)

    def test_snapshot_values(self, resolver, scope):
        values = resolver.snapshot_values(scope)

        assert set(values) == {"sys1_x", "sys1_x_dot", "sys2_x", "sys2_z", "sys1_y"}
        assert all(isinstance(v, float) for v in values.values())


class TestAlgebraicResolution:
    """Test the bounded fixed-point passes"""

    @staticmethod
    def _chain(passes):
        layout = build_system(
            [
                Subsystem(
                    1,
                    [
                        Variable("a", 0, "b + 1"),
                        Variable("b", 0, "c + 1"),
                        Variable("c", 0, "1"),
                    ],
                )
            ]
        )
        resolver = ScopeResolver(layout, algebraic_passes=passes)
        return resolver.full_scope(layout.initial_state, t=0.0)

    def test_chain_resolves_in_three_passes(self):
        """Test a dependency chain defined against evaluation order"""
        scope = self._chain(3)

        assert (scope["sys1_a"], scope["sys1_b"], scope["sys1_c"]) == (3.0, 2.0, 1.0)

    def test_two_passes_leave_chain_unresolved(self):
        """Test resolution is bounded, not solved"""
        scope = self._chain(2)

        assert scope["sys1_a"] == 2.0

    def test_circular_definitions_stop(self):
        """Test circular definitions simply stop after the last pass"""
        layout = build_system(
            [Subsystem(1, [Variable("p", 0, "q + 1"), Variable("q", 0, "p + 1")])]
        )
        scope = ScopeResolver(layout).full_scope(layout.initial_state, t=0.0)

        assert scope["sys1_p"] == 5.0
        assert scope["sys1_q"] == 6.0

    def test_algebraic_reads_time(self):
        layout = build_system([Subsystem(1, [Variable("f", 0, "sin(t)")])])
        scope = ScopeResolver(layout).full_scope(layout.initial_state, t=1.0)

        assert scope["sys1_f"] == pytest.approx(math.sin(1.0))


# ============================================================================
# Local Aliases
# ============================================================================


class TestLocalScope:
    """Test alias overlays and precedence"""

    def test_owner_short_names_win(self, resolver, scope):
        assert resolver.local_scope(1, scope)["x"] == 1.0
        assert resolver.local_scope(2, scope)["x"] == 3.0

    def test_derivative_forms(self, resolver, scope):
        local = resolver.local_scope(1, scope)

        assert local["x_dot"] == 0.5
        assert local["x1_dot"] == 0.5

    def test_suffixed_aliases(self, resolver, scope):
        local = resolver.local_scope(1, scope)

        assert local["x2"] == 3.0
        assert local["z2"] == 4.0
        assert local["x1"] == 1.0
        assert local["y1"] == 2.0

    def test_unclaimed_names_from_other_subsystems(self, resolver, scope):
        """Test short names not defined by the owner fall through"""
        assert resolver.local_scope(1, scope)["z"] == 4.0
        assert resolver.local_scope(2, scope)["y"] == 2.0

    def test_first_defined_subsystem_wins(self):
        """Test ties between non-owners go to the first subsystem"""
        layout = build_system(
            [
                Subsystem(1, [Variable("w", 1, "0", initial="10")]),
                Subsystem(2, [Variable("w", 1, "0", initial="20")]),
                Subsystem(3, [Variable("v", 1, "0", initial="30")]),
            ]
        )
        resolver = ScopeResolver(layout)
        scope = resolver.full_scope(layout.initial_state, t=0.0)

        assert resolver.local_scope(3, scope)["w"] == 10.0
        assert resolver.local_scope(3, scope)["w2"] == 20.0

    def test_ambiguous_id_alias_first_wins(self, caplog):
        """Test x1 of subsystem 1 and x of subsystem 11 competing for x11"""
        layout = build_system(
            [
                Subsystem(1, [Variable("x1", 1, "0", initial="1")]),
                Subsystem(11, [Variable("x", 1, "0", initial="2")]),
                Subsystem(2, [Variable("y", 1, "x11", initial="0")]),
            ]
        )

        with caplog.at_level(logging.WARNING, logger="odesym"):
            resolver = ScopeResolver(layout)

        assert resolver.aliases(2)["x11"] == "sys1_x1"
        assert resolver.aliases(11)["x11"] == "sys1_x1"
        warnings = [r for r in caplog.records if "ambiguous" in r.getMessage()]
        assert len(warnings) == 1
        assert "x11" in warnings[0].getMessage()

    def test_qualified_names_still_visible(self, resolver, scope):
        local = resolver.local_scope(2, scope)

        assert isinstance(local, ChainMap)
        assert local["sys1_x"] == 1.0
        assert local["t"] == 0.5

    def test_localize_is_pure(self, resolver, scope):
        before = dict(scope)

        overlay = resolver.localize(1, scope)
        overlay["x"] = -100.0

        assert dict(scope) == before

    def test_unknown_subsystem(self, resolver, scope):
        with pytest.raises(LayoutInconsistency):
            resolver.localize(9, scope)

    def test_aliases_table(self, resolver):
        table = resolver.aliases(2)

        assert table["x"] == "sys2_x"
        assert table["x1_dot"] == "sys1_x_dot"


# ============================================================================
# Geometry
# ============================================================================


class TestGeometry:
    """Test positions and distance helpers"""

    def test_positions(self, resolver, scope):
        """Test order>0 variables map to axes, missing axes are 0"""
        assert resolver.positions(scope) == {1: (1.0, 0.0, 0.0), 2: (3.0, 4.0, 0.0)}

    def test_dist(self, resolver, scope):
        dist = resolver.local_scope(1, scope)["dist"]

        assert dist(1, 2) == pytest.approx(math.sqrt(20.0))
        assert dist(2, 1) == pytest.approx(math.sqrt(20.0))
        assert dist(1, 1) == 0.0

    def test_components(self, resolver, scope):
        functions = resolver.scope_functions(scope)

        assert functions["dx"](1, 2) == 2.0
        assert functions["dy"](1, 2) == 4.0
        assert functions["dz"](1, 2) == 0.0
        assert functions["dx"](2, 1) == -2.0

    def test_float_ids_accepted(self, resolver, scope):
        assert resolver.scope_functions(scope)["dist"](1.0, 2.0) == pytest.approx(math.sqrt(20.0))

    def test_unknown_id_raises(self, resolver, scope):
        with pytest.raises(LayoutInconsistency):
            resolver.scope_functions(scope)["dist"](1, 7)

    def test_unknown_id_in_expression_is_zero(self, resolver, scope):
        expr = compile_expression("dist(1, 7) + 1")

        assert expr.evaluate(resolver.local_scope(1, scope)) == 0.0

    def test_dist_in_expression(self, resolver, scope):
        expr = compile_expression("dist(1, 2)^2")

        assert expr.evaluate(resolver.local_scope(1, scope)) == pytest.approx(20.0)
