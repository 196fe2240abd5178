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
Utility Types and Helpers

Batch validation and performance bookkeeping shared by the
simulator, dispatcher and bundling layers.

Usage
-----
>>> from bqsim.types.utilities import validate_batch, ExecutionStats
>>>
>>> X, U = validate_batch(X, U, nq=7, nu=4)
"""

from typing import Tuple

import numpy as np
from typing_extensions import TypedDict

from .core import ArrayLike, ControlBatch, StateBatch
from .simulation import BatchShapeError

# ============================================================================
# Validators
# ============================================================================


def validate_batch(
    x_batch: ArrayLike,
    u_batch: ArrayLike,
    nq: int,
    nu: int,
) -> Tuple[StateBatch, ControlBatch]:
    """
    Validate a (state, control) batch and convert it to float64 arrays.

    Parameters
    ----------
    x_batch : ArrayLike
        States, one per row (n_tasks, nq)
    u_batch : ArrayLike
        Controls, one per row (n_tasks, nu)
    nq, nu : int
        Model dimensions

    Returns
    -------
    Tuple[StateBatch, ControlBatch]
        C-contiguous float64 copies of the inputs

    Raises
    ------
    BatchShapeError
        If either input is not 2D, row counts differ, or column counts do
        not match the model
    """
    x_batch = np.ascontiguousarray(x_batch, dtype=np.float64)
    u_batch = np.ascontiguousarray(u_batch, dtype=np.float64)

    if x_batch.ndim != 2 or u_batch.ndim != 2:
        raise BatchShapeError(
            f"Batches must be 2D (one task per row). "
            f"Got x_batch.ndim={x_batch.ndim}, u_batch.ndim={u_batch.ndim}.",
        )
    if x_batch.shape[0] != u_batch.shape[0]:
        raise BatchShapeError(
            f"Row count mismatch: x_batch has {x_batch.shape[0]} rows, "
            f"u_batch has {u_batch.shape[0]} rows.",
        )
    if x_batch.shape[1] != nq:
        raise BatchShapeError(f"Expected state dimension {nq}, got {x_batch.shape[1]}")
    if u_batch.shape[1] != nu:
        raise BatchShapeError(f"Expected control dimension {nu}, got {u_batch.shape[1]}")

    return x_batch, u_batch


# ============================================================================
# Performance
# ============================================================================


class ExecutionStats(TypedDict):
    """Execution statistics for tracking function performance.

    Tracks runtime performance of any callable component:
    - Function evaluation time
    - Call frequency
    - Average execution time
    """

    calls: int
    total_time: float
    avg_time: float


__all__ = [
    "validate_batch",
    "ExecutionStats",
]
