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
Unit Tests for SimulationEngine

Tests cover:
1. Default system and construction
2. Real-time accumulator and step cap
3. Accuracy and boundedness of integration
4. History, reset and rebuild
5. Poincaré sampling through the engine
6. Configuration updates and accessors
"""

import math

import numpy as np
import pytest

from odesym.analysis.poincare import PoincareConfig, PoincareMode
from odesym.exceptions import LayoutInconsistency, ValidationError
from odesym.simulation.config import SimulationConfig
from odesym.simulation.engine import SimulationEngine
from odesym.systems.base.core.variable_model import Subsystem, Variable
from odesym.systems.builtin.defaults import (
    default_poincare_config,
    harmonic_oscillator,
    lorenz_subsystem,
)

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def lorenz_engine():
    return SimulationEngine()


@pytest.fixture
def oscillator_engine():
    return SimulationEngine([harmonic_oscillator(1)], SimulationConfig(dt=0.25))


# ============================================================================
# Construction
# ============================================================================


class TestConstruction:
    """Test engine setup"""

    def test_default_is_lorenz(self, lorenz_engine):
        assert lorenz_engine.layout.expanded_names == ["sys1_x", "sys1_y", "sys1_z"]
        assert np.array_equal(lorenz_engine.state, [1.0, 0.0, 0.0])
        assert lorenz_engine.time == 0.0

    def test_starts_stopped(self, lorenz_engine):
        assert not lorenz_engine.is_running

    def test_state_is_copy(self, lorenz_engine):
        state = lorenz_engine.state
        state[0] = 99.0

        assert lorenz_engine.state[0] == 1.0

    def test_default_integrator_is_rk4(self, lorenz_engine):
        assert lorenz_engine.integrator.name == "RK4 (Classic)"
        assert lorenz_engine.integrator.dt == 0.01

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValidationError):
            SimulationEngine([Subsystem(1), Subsystem(1)])


# ============================================================================
# Real-Time Advance
# ============================================================================


class TestAdvance:
    """Test the wall-clock accumulator"""

    def test_stopped_is_noop(self, oscillator_engine):
        report = oscillator_engine.advance(1.0)

        assert report["steps_taken"] == 0
        assert oscillator_engine.time == 0.0
        assert oscillator_engine.accumulated == 0.0
        assert oscillator_engine.history() == []

    def test_drains_whole_steps(self, oscillator_engine):
        oscillator_engine.start()

        report = oscillator_engine.advance(0.5)

        assert report["steps_taken"] == 2
        assert report["time"] == 0.5
        assert not report["capped"]

    def test_remainder_carried(self, oscillator_engine):
        oscillator_engine.start()

        oscillator_engine.advance(0.375)

        assert oscillator_engine.time == 0.25
        assert oscillator_engine.accumulated == 0.125
        assert oscillator_engine.advance(0.125)["steps_taken"] == 1

    def test_step_cap(self, oscillator_engine):
        """Test at most max_steps_per_tick steps per call, rest deferred"""
        oscillator_engine.start()

        report = oscillator_engine.advance(5.0)

        assert report["steps_taken"] == 10
        assert report["capped"]
        assert report["accumulated"] == 2.5
        assert oscillator_engine.time == 2.5

        # Deferred time drains on later calls
        assert oscillator_engine.advance(0.0)["steps_taken"] == 10
        assert oscillator_engine.accumulated == 0.0

    def test_playback_speed(self, oscillator_engine):
        oscillator_engine.start()

        assert oscillator_engine.advance(0.25, speed=2.0)["steps_taken"] == 2
        assert oscillator_engine.advance(0.25, speed=0.0)["steps_taken"] == 0

    @pytest.mark.parametrize("elapsed", [-1.0, math.nan, math.inf])
    def test_bad_elapsed_ignored(self, oscillator_engine, elapsed):
        oscillator_engine.start()

        assert oscillator_engine.advance(elapsed)["steps_taken"] == 0
        assert oscillator_engine.accumulated == 0.0

    def test_stop_keeps_accumulator(self, oscillator_engine):
        oscillator_engine.start()
        oscillator_engine.advance(0.375)
        oscillator_engine.stop()

        oscillator_engine.advance(1.0)

        assert oscillator_engine.accumulated == 0.125

    def test_step_ignores_running_flag(self, oscillator_engine):
        report = oscillator_engine.step(3)

        assert report["steps_taken"] == 3
        assert oscillator_engine.time == 0.75


# ============================================================================
# Integration
# ============================================================================


class TestIntegration:
    """Test numerical behaviour through the engine"""

    def test_oscillator_accuracy(self):
        engine = SimulationEngine([harmonic_oscillator(1)], SimulationConfig(dt=0.01))

        engine.step(100)

        t, values = engine.current_state()
        assert t == pytest.approx(1.0)
        assert values["sys1_x"] == pytest.approx(math.cos(1.0), abs=1e-8)
        assert values["sys1_x_dot"] == pytest.approx(-math.sin(1.0), abs=1e-8)

    def test_lorenz_stays_bounded(self, lorenz_engine):
        """Test 1000 RK4 steps stay on the attractor"""
        lorenz_engine.step(1000)

        assert np.all(np.isfinite(lorenz_engine.state))
        assert np.all(np.abs(lorenz_engine.state) <= 100.0)

    def test_cross_subsystem_coupling(self):
        """Test subsystem 2 relaxing toward subsystem 1 via an alias"""
        engine = SimulationEngine(
            [
                Subsystem(1, [Variable("x", 1, "0", initial="1")]),
                Subsystem(2, [Variable("x", 1, "x1 - x", initial="0")]),
            ],
            SimulationConfig(dt=0.01),
        )

        engine.step(100)

        assert engine.state[1] == pytest.approx(1.0 - math.exp(-1.0), abs=1e-8)

    def test_algebraic_in_snapshot(self):
        engine = SimulationEngine(
            [Subsystem(1, [Variable("x", 1, "1"), Variable("e", 0, "x^2")])],
            SimulationConfig(dt=0.5),
        )

        engine.step(4)

        assert engine.current_state().values == {"sys1_x": 2.0, "sys1_e": 4.0}

    def test_euler_method(self):
        engine = SimulationEngine(
            [Subsystem(1, [Variable("x", 1, "x", initial="1")])],
            SimulationConfig(dt=0.5, method="euler"),
        )

        engine.step(2)

        assert engine.state[0] == 2.25

    def test_domain_error_keeps_state_finite(self):
        """Test sqrt of a negative state contributes 0, not nan"""
        engine = SimulationEngine(
            [Subsystem(1, [Variable("x", 1, "sqrt(x) - 1", initial="-0.5")])],
            SimulationConfig(dt=0.01),
        )

        engine.step(5)

        assert np.all(np.isfinite(engine.state))
        assert engine.state[0] == pytest.approx(-0.55)


# ============================================================================
# History, Reset, Rebuild
# ============================================================================


class TestHistory:
    """Test snapshot recording"""

    def test_one_snapshot_per_step(self, oscillator_engine):
        oscillator_engine.step(3)

        times = [s.time for s in oscillator_engine.history()]
        assert times == [0.25, 0.5, 0.75]

    def test_cap(self):
        engine = SimulationEngine(
            [harmonic_oscillator(1)], SimulationConfig(dt=0.25, history_cap=5)
        )

        engine.step(12)

        history = engine.history()
        assert len(history) == 5
        assert history[0].time == 2.0
        assert history[-1].time == 3.0

    def test_snapshot_values(self, oscillator_engine):
        oscillator_engine.step(1)

        snapshot = oscillator_engine.history()[-1]
        assert set(snapshot.values) == {"sys1_x", "sys1_x_dot"}
        assert snapshot.values["sys1_x"] == oscillator_engine.state[0]


class TestReset:
    """Test reset"""

    def test_reset_restores_initial(self, oscillator_engine):
        oscillator_engine.start()
        oscillator_engine.advance(0.375)

        oscillator_engine.reset()

        assert oscillator_engine.time == 0.0
        assert oscillator_engine.accumulated == 0.0
        assert oscillator_engine.history() == []
        assert np.array_equal(oscillator_engine.state, [1.0, 0.0])

    def test_reset_keeps_poincare_points(self):
        engine = SimulationEngine(
            [harmonic_oscillator(1)],
            SimulationConfig(dt=0.1),
            PoincareConfig(mode="time", period="1"),
        )
        engine.step(15)
        assert len(engine.poincare_points()) == 1

        engine.reset()

        assert len(engine.poincare_points()) == 1
        engine.clear_poincare_points()
        assert engine.poincare_points() == []


class TestRebuild:
    """Test rebuilding from new definitions"""

    def test_values_carried_forward(self, lorenz_engine):
        lorenz_engine.step(50)
        before = lorenz_engine.state
        t = lorenz_engine.time

        lorenz_engine.rebuild([lorenz_subsystem(1), harmonic_oscillator(2, x0=3.0)])

        assert lorenz_engine.layout.n_slots == 5
        assert np.array_equal(lorenz_engine.state[:3], before)
        assert np.array_equal(lorenz_engine.state[3:], [3.0, 0.0])
        assert lorenz_engine.time == t
        assert len(lorenz_engine.history()) == 50

    def test_removed_subsystem(self, lorenz_engine):
        lorenz_engine.rebuild([harmonic_oscillator(2)])

        assert lorenz_engine.layout.subsystem_ids == [2]
        assert "sys1_x" not in lorenz_engine.current_state().values

    def test_history_series_after_rebuild(self, lorenz_engine):
        lorenz_engine.step(2)
        lorenz_engine.rebuild([harmonic_oscillator(2)])
        lorenz_engine.step(1)

        assert lorenz_engine.history_buffer.series("sys1_x").shape == (2, 2)
        assert lorenz_engine.history_buffer.series("sys2_x").shape == (1, 2)


# ============================================================================
# Poincaré
# ============================================================================


class TestPoincare:
    """Test sampling through the engine"""

    def test_lorenz_plane_section(self):
        engine = SimulationEngine(poincare_config=default_poincare_config())

        engine.step(2000)

        points = engine.poincare_points()
        assert len(points) > 0
        assert all(math.isfinite(p.x) and math.isfinite(p.y) for p in points)

    def test_time_section_of_oscillator(self):
        """Test stroboscopic sampling at the natural period returns to the start"""
        engine = SimulationEngine(
            [harmonic_oscillator(1)],
            SimulationConfig(dt=0.01),
            PoincareConfig(mode="time", period="2*PI", plot_x="x", plot_y="x_dot"),
        )

        engine.step(700)

        points = engine.poincare_points()
        assert len(points) == 1
        assert points[0].x == pytest.approx(1.0, abs=1e-3)
        assert points[0].y == pytest.approx(0.0, abs=1e-2)

    def test_default_names_filled(self, lorenz_engine):
        lorenz_engine.poincare_config = PoincareConfig(mode=PoincareMode.PLANE)

        sampler_config = lorenz_engine._sampler.config
        assert sampler_config.plane_var == "sys1_x"
        assert sampler_config.plot_x == "sys1_x"
        assert sampler_config.plot_y == "sys1_y"
        # The user's config is not modified
        assert lorenz_engine.poincare_config.plane_var == ""

    def test_setter_type_checked(self, lorenz_engine):
        with pytest.raises(ValidationError):
            lorenz_engine.poincare_config = {"mode": "time"}

    def test_stale_names_skip_silently(self, lorenz_engine):
        lorenz_engine.poincare_config = PoincareConfig(
            mode="plane", plane_var="sys1_z", plane_value="27", plot_x="sys1_x", plot_y="sys1_y"
        )
        lorenz_engine.rebuild([harmonic_oscillator(2)])

        lorenz_engine.step(200)

        assert lorenz_engine.poincare_points() == []

    def test_step_reports_samples(self):
        engine = SimulationEngine(
            [harmonic_oscillator(1)],
            SimulationConfig(dt=0.25),
            PoincareConfig(mode="time", period="1"),
        )

        assert engine.step(8)["samples_emitted"] == 2

    def test_poincare_variables(self):
        engine = SimulationEngine(
            [Subsystem(1, [Variable("x", 2, "-x"), Variable("e", 0, "x^2")])]
        )

        assert engine.poincare_variables() == ["sys1_x", "sys1_x_dot", "sys1_e"]


# ============================================================================
# Configuration and Accessors
# ============================================================================


class TestConfiguration:
    """Test update_config"""

    def test_update_dt(self, oscillator_engine):
        oscillator_engine.update_config(dt=0.5)

        assert oscillator_engine.integrator.dt == 0.5
        assert oscillator_engine.step(1)["time"] == 0.5

    def test_update_method(self, oscillator_engine):
        oscillator_engine.update_config(method="midpoint")

        assert oscillator_engine.integrator.name == "Midpoint (RK2)"

    def test_update_keeps_state(self, oscillator_engine):
        oscillator_engine.step(2)
        state = oscillator_engine.state

        oscillator_engine.update_config(playback_speed=3.0)

        assert np.array_equal(oscillator_engine.state, state)

    def test_update_history_cap(self, oscillator_engine):
        oscillator_engine.step(6)

        oscillator_engine.update_config(history_cap=2)

        assert [s.time for s in oscillator_engine.history()] == [1.25, 1.5]

    def test_invalid_update_rejected(self, oscillator_engine):
        with pytest.raises(ValidationError):
            oscillator_engine.update_config(dt=-1.0)

        assert oscillator_engine.config.dt == 0.25


class TestAccessors:
    """Test state access"""

    def test_set_state(self, oscillator_engine):
        oscillator_engine.set_state({"sys1_x": 2.0})

        assert oscillator_engine.current_state().values["sys1_x"] == 2.0
        assert oscillator_engine.state[0] == 2.0

    def test_set_state_unknown_name(self, oscillator_engine):
        with pytest.raises(LayoutInconsistency):
            oscillator_engine.set_state({"sys7_q": 1.0})

    def test_positions(self):
        engine = SimulationEngine()

        assert engine.positions() == {1: (1.0, 0.0, 0.0)}

    def test_scope_has_aliases_available(self, lorenz_engine):
        scope = lorenz_engine.scope()

        assert scope["sys1_x"] == 1.0
        assert scope["t"] == 0.0

    def test_repr(self, lorenz_engine):
        assert "slots=3" in repr(lorenz_engine)


class TestSample:
    """Test sampling an externally supplied step"""

    def test_sample_records_point(self):
        engine = SimulationEngine(
            [harmonic_oscillator(1)],
            poincare_config=PoincareConfig(
                mode="plane", plane_var="x", plane_value="0", plot_x="x", plot_y="x_dot"
            ),
        )
        resolver_scope = engine.scope()
        prev = dict(resolver_scope, sys1_x=-0.5)
        new = dict(resolver_scope, sys1_x=0.5)

        point = engine.sample(prev, new, h=0.01)

        assert point is not None
        assert point.x == 0.5
        assert engine.poincare_points() == [point]

    def test_no_crossing(self):
        engine = SimulationEngine([harmonic_oscillator(1)], poincare_config=PoincareConfig(mode="plane"))
        scope = engine.scope()

        assert engine.sample(scope, scope, h=0.25) is None
        assert engine.poincare_points() == []
