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

# Batch Result Types

from typing import NamedTuple, Optional

import numpy as np
from typing_extensions import TypedDict

from .core import GradientBatch, GradientTrajectory, InputMatrix, StateBatch, StateVector, ValidityBatch

# ============================================================================
# SINGLE STEP
# ============================================================================


class StepResult(NamedTuple):
    """
    Result of one quasistatic step.

    Unpacks as ``x_next, B, is_valid``.

    Attributes
    ----------
    x_next : StateVector
        Next configuration (nq,). Not meaningful when is_valid is False.
    B : Optional[InputMatrix]
        ∂q_next/∂u (nq, nu) when the gradient mode requests it, else None.
    is_valid : bool
        True iff the contact solve produced a well-defined result.
    """

    x_next: StateVector
    B: Optional[InputMatrix]
    is_valid: bool


# ============================================================================
# BATCH
# ============================================================================


class BatchDynamicsResult(NamedTuple):
    """
    Result of a batch dynamics call.

    Unpacks as ``x_next, B, is_valid`` so call sites read like the tuple
    ``(X_next, B_batch, is_valid_batch)``.

    Shape Convention
    ----------------
    - x_next: (n_tasks, nq)
    - B: (n_tasks, nq, nu), or (0, nq, nu) when the gradient mode is NONE
    - is_valid: (n_tasks,) bool

    Row i of every container belongs to row i of the input batch.

    Examples
    --------
    >>> x_next, B, is_valid = engine.calc_dynamics_parallel(X, U, 0.1, "b_only")
    >>> B.shape == (len(X), engine.nq, engine.nu)
    True
    """

    x_next: StateBatch
    B: GradientBatch
    is_valid: ValidityBatch


class BundledGradientResult(TypedDict):
    """
    Result of a bundled-gradient estimate along a trajectory.

    Attributes
    ----------
    B : GradientTrajectory
        (T, nq, nu) smoothed gradients. All-NaN at time steps where every
        sample was invalid.
    n_valid : np.ndarray
        (T,) number of valid samples averaged at each time step
    n_samples : int
        Samples drawn per time step
    seed : int
        Seed of the perturbation generator
    strategy : str
        'direct' or 'batched'
    distribution : str
        'gaussian' or 'uniform'
    """

    B: GradientTrajectory
    n_valid: np.ndarray
    n_samples: int
    seed: int
    strategy: str
    distribution: str


# ============================================================================
# DIAGNOSTICS
# ============================================================================


class DispatchStats(TypedDict):
    """
    Execution statistics of a task dispatcher.

    Attributes
    ----------
    calls : int
        Number of batch calls (serial and parallel)
    tasks : int
        Total tasks processed
    invalid_tasks : int
        Tasks that came back with is_valid False
    total_time : float
        Wall-clock time spent in batch calls (s)
    avg_time : float
        total_time / calls
    """

    calls: int
    tasks: int
    invalid_tasks: int
    total_time: float
    avg_time: float


class SolveInfo(TypedDict):
    """
    Diagnostics of the most recent step solved by a simulator.

    Attributes
    ----------
    n_contacts : int
        Contact pairs within the detection tolerance
    n_constraints : int
        Rows of the QP constraint matrix (contacts × friction directions)
    n_active : int
        Constraints with dual value above the active threshold
    iterations : int
        Number of nnls solves of the dual (0 or 1)
    converged : bool
        Whether the dual solver terminated at an optimum
    """

    n_contacts: int
    n_constraints: int
    n_active: int
    iterations: int
    converged: bool


__all__ = [
    "StepResult",
    "BatchDynamicsResult",
    "BundledGradientResult",
    "DispatchStats",
    "SolveInfo",
]
