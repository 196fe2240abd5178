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

Defines the most basic types used throughout the package:
- Array types (NumPy only; the contact solver is a NumPy/SciPy code path)
- Semantic vector types (state, control)
- Matrix types (input gradient B)
- Batch containers (stacked states, controls, gradients, validity flags)
- Trajectory types

Shape Convention
----------------
Batches and trajectories are row-major: one task or one time step per row.

- Single state: (nq,)
- State batch: (n_tasks, nq)
- Gradient batch: (n_tasks, nq, nu)
- State trajectory: (T + 1, nq)
- Control trajectory: (T, nu)

Usage
-----
>>> from bqsim.types.core import StateBatch, ControlBatch, GradientBatch
>>>
>>> def count_valid(is_valid: ValidityBatch) -> int:
...     return int(np.count_nonzero(is_valid))
"""

from typing import Any, Dict, Mapping, Optional, Union

import numpy as np

# ============================================================================
# Basic Array Types
# ============================================================================

ArrayLike = Union[np.ndarray, "list", "tuple"]
"""
Anything that converts cleanly to a float64 NumPy array.

Public entry points accept ArrayLike and immediately convert with
np.asarray(..., dtype=np.float64).
"""


# ============================================================================
# Vector Types - Semantic Naming by Role
# ============================================================================

StateVector = np.ndarray
"""
Generalized configuration q ∈ ℝⁿq.

Robot joint positions first (scene order), then object coordinates
(insertion order). Planar objects contribute (y, z, θ); spatial objects
contribute (x, y, z, rx, ry, rz) with a rotation-vector orientation.

Examples
--------
>>> x: StateVector = np.array([-0.775, -0.785, 0.775, 0.785, 0.0, 0.316, 0.0])
"""

ControlVector = np.ndarray
"""
Commanded joint positions u ∈ ℝⁿᵘ.

One entry per actuated joint, ordered like the robot block of the state.

Examples
--------
>>> u: ControlVector = x[:4]  # hold the current arm configuration
"""


# ============================================================================
# Matrix Types
# ============================================================================

InputMatrix = np.ndarray
"""
Control gradient B = ∂q_next/∂u with shape (nq, nu).

Only meaningful when gradient computation was requested and the step was
valid.

Examples
--------
>>> result = q_sim.step(x, u, h=0.1, gradient_mode=GradientMode.B_ONLY)
>>> B: InputMatrix = result.B  # (nq, nu)
"""


# ============================================================================
# Batch Types
# ============================================================================

StateBatch = np.ndarray
"""
Batch of states, shape (n_tasks, nq). Row i belongs to task i.
"""

ControlBatch = np.ndarray
"""
Batch of controls, shape (n_tasks, nu). Row i belongs to task i.
"""

GradientBatch = np.ndarray
"""
Batch of B matrices, shape (n_tasks, nq, nu).

Empty (shape (0, nq, nu)) when no gradient was requested. Emptiness, not a
zero-filled array, is what tells callers gradients were skipped.

Examples
--------
>>> x_next, B_batch, is_valid = engine.calc_dynamics_serial(X, U, 0.1, "none")
>>> len(B_batch)
0
"""

ValidityBatch = np.ndarray
"""
Boolean flags of shape (n_tasks,). False marks rows whose next state and
gradient must not be used.
"""


# ============================================================================
# Trajectory Types
# ============================================================================

GradientTrajectory = np.ndarray
"""
Smoothed gradient sequence of shape (T, nq, nu), one B per time step.
"""


# ============================================================================
# Configuration Dictionaries
# ============================================================================

ConfigurationDict = Dict[str, np.ndarray]
"""
Per-model-instance coordinates keyed by instance name.

Examples
--------
>>> q0_dict: ConfigurationDict = {
...     "sphere": np.array([0.0, 0.316, 0.0]),
...     "arm_left": np.array([-0.775, -0.785]),
...     "arm_right": np.array([0.775, 0.785]),
... }
>>> q0 = q_sim.get_q_vec_from_dict(q0_dict)
"""

SolverHints = Optional[Mapping[str, Any]]
"""
Solver-specific active-constraint hints forwarded to every step call.

The reference quasistatic solver understands ``"active_threshold"``: the
dual value above which a contact constraint counts as active when the
gradient is formed. None or an empty mapping selects the defaults.
"""


__all__ = [
    "ArrayLike",
    "StateVector",
    "ControlVector",
    "InputMatrix",
    "StateBatch",
    "ControlBatch",
    "GradientBatch",
    "ValidityBatch",
    "GradientTrajectory",
    "ConfigurationDict",
    "SolverHints",
]
