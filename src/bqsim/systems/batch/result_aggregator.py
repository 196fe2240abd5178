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
Result Aggregator - Index-Addressed Batch Output Buffers

Preallocates the three outputs of a batch call and lets workers write their
rows by task index. Workers own disjoint index ranges, so no locking is
needed and the final layout never depends on completion order.
"""

import numpy as np

from bqsim.types.batch_results import BatchDynamicsResult
from bqsim.types.core import InputMatrix, StateVector
from bqsim.types.simulation import GradientMode


class ResultAggregator:
    """
    Output buffers for one batch call.

    Rows start out invalid and NaN-filled; a row becomes valid only when a
    worker records a valid step for it.

    Attributes
    ----------
    n_tasks : int
        Number of rows
    mode : GradientMode
        Whether B rows are stored

    Examples
    --------
    >>> agg = ResultAggregator(3, nq=7, nu=4, mode=GradientMode.B_ONLY)
    >>> agg.record(0, x_next, B, True)
    >>> agg.record_failure(1)
    >>> result = agg.result()
    >>> result.is_valid
    array([ True, False, False])
    """

    def __init__(self, n_tasks: int, nq: int, nu: int, mode: GradientMode):
        self.n_tasks = n_tasks
        self.mode = mode
        self._x_next = np.full((n_tasks, nq), np.nan)
        n_b = n_tasks if mode.computes_b else 0
        self._B = np.full((n_b, nq, nu), np.nan)
        self._is_valid = np.zeros(n_tasks, dtype=bool)

    def record(self, i: int, x_next: StateVector, B: InputMatrix, is_valid: bool):
        """Store the outcome of task i."""
        self._x_next[i] = x_next
        if self.mode.computes_b:
            if B is None:
                raise ValueError(f"Task {i} returned no B although mode is '{self.mode.value}'")
            B = np.asarray(B, dtype=np.float64)
            if B.shape != self._B.shape[1:]:
                raise ValueError(f"Task {i} returned B of shape {B.shape}, expected {self._B.shape[1:]}")
            self._B[i] = B
        self._is_valid[i] = bool(is_valid)

    def record_failure(self, i: int):
        """Mark task i invalid and clear whatever was written to it."""
        self._x_next[i] = np.nan
        if self.mode.computes_b:
            self._B[i] = np.nan
        self._is_valid[i] = False

    @property
    def n_valid(self) -> int:
        return int(np.count_nonzero(self._is_valid))

    def result(self) -> BatchDynamicsResult:
        return BatchDynamicsResult(self._x_next, self._B, self._is_valid)


__all__ = ["ResultAggregator"]
