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

"""Unit Tests for HistoryBuffer"""

import numpy as np
import pytest

from odesym.exceptions import ValidationError
from odesym.simulation.history import HistoryBuffer
from odesym.types.trajectories import StateSnapshot


@pytest.fixture
def buffer():
    history = HistoryBuffer(cap=3)
    for k in range(5):
        history.push(k * 0.5, {"sys1_x": float(k)})
    return history


class TestHistoryBuffer:
    """Test FIFO eviction and accessors"""

    def test_oldest_evicted(self, buffer):
        assert len(buffer) == 3
        assert [s.time for s in buffer] == [1.0, 1.5, 2.0]

    def test_push_returns_snapshot(self):
        history = HistoryBuffer(cap=2)

        snapshot = history.push(0.1, {"a": 1.0})

        assert isinstance(snapshot, StateSnapshot)
        assert snapshot.time == 0.1

    def test_values_copied(self):
        history = HistoryBuffer(cap=2)
        values = {"a": 1.0}
        history.push(0.0, values)
        values["a"] = 2.0

        assert history.latest().values["a"] == 1.0

    def test_latest(self, buffer):
        assert buffer.latest().values == {"sys1_x": 4.0}
        assert HistoryBuffer().latest() is None

    def test_snapshots_is_list(self, buffer):
        snapshots = buffer.snapshots()
        snapshots.clear()

        assert len(buffer) == 3

    def test_series(self, buffer):
        series = buffer.series("sys1_x")

        assert np.array_equal(series, [[1.0, 2.0], [1.5, 3.0], [2.0, 4.0]])

    def test_series_missing_name(self, buffer):
        assert buffer.series("sys9_q").shape == (0, 2)

    def test_resize_keeps_newest(self, buffer):
        buffer.resize(2)

        assert buffer.cap == 2
        assert [s.time for s in buffer] == [1.5, 2.0]

    def test_clear(self, buffer):
        buffer.clear()

        assert len(buffer) == 0
        assert buffer.cap == 3

    @pytest.mark.parametrize("cap", [0, -5])
    def test_invalid_cap(self, cap):
        with pytest.raises(ValidationError):
            HistoryBuffer(cap)

    def test_invalid_resize(self, buffer):
        with pytest.raises(ValidationError):
            buffer.resize(0)

    def test_repr(self, buffer):
        assert repr(buffer) == "HistoryBuffer(len=3, cap=3)"
