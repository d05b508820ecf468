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

"""Bounded snapshot history, oldest evicted first."""

from collections import deque
from typing import Dict, Iterator, List, Optional

import numpy as np

from odesym.exceptions import ValidationError
from odesym.types.trajectories import StateSnapshot


class HistoryBuffer:
    """
    FIFO of StateSnapshot with a fixed capacity.

    Examples
    --------
    >>> buffer = HistoryBuffer(cap=2)
    >>> for t in (0.0, 0.1, 0.2):
    ...     buffer.push(t, {"sys1_x": t})
    >>> [s.time for s in buffer]
    [0.1, 0.2]
    """

    def __init__(self, cap: int = 2000):
        if cap < 1:
            raise ValidationError(f"History cap must be at least 1, got {cap}")
        self._buffer = deque(maxlen=cap)

    @property
    def cap(self) -> int:
        return self._buffer.maxlen

    def push(self, time: float, values: Dict[str, float]) -> StateSnapshot:
        snapshot = StateSnapshot(float(time), dict(values))
        self._buffer.append(snapshot)
        return snapshot

    def snapshots(self) -> List[StateSnapshot]:
        """Snapshots oldest-first"""
        return list(self._buffer)

    def latest(self) -> Optional[StateSnapshot]:
        return self._buffer[-1] if self._buffer else None

    def series(self, name: str) -> np.ndarray:
        """
        Time series of one name as an (N, 2) array of (time, value).

        Snapshots lacking ``name`` (recorded before a rebuild) are skipped.
        """
        rows = [(s.time, s.values[name]) for s in self._buffer if name in s.values]
        return np.array(rows, dtype=np.float64).reshape(-1, 2)

    def resize(self, cap: int) -> None:
        """Change the capacity, keeping the most recent snapshots"""
        if cap < 1:
            raise ValidationError(f"History cap must be at least 1, got {cap}")
        self._buffer = deque(self._buffer, maxlen=cap)

    def clear(self) -> None:
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)

    def __iter__(self) -> Iterator[StateSnapshot]:
        return iter(self._buffer)

    def __repr__(self) -> str:
        return f"HistoryBuffer(len={len(self)}, cap={self.cap})"
