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
BatchQSim - Batch Quasistatic Contact Simulation
================================================

Evaluates quasistatic contact dynamics for many (state, control) pairs at
once, serially or on a thread pool with identical results, and estimates
bundled (randomized-smoothing) input gradients along trajectories.

>>> from bqsim import BatchQuasistaticSimulator, GradientMode
>>> from bqsim.systems.builtin import create_planar_hand_model
>>>
>>> sim = BatchQuasistaticSimulator(create_planar_hand_model(), num_workers=4)
>>> x_next, B, is_valid = sim.calc_dynamics_parallel(X, U, 0.1, GradientMode.B_ONLY)
"""

from .systems.base import (
    QuasistaticModelDescription,
    QuasistaticSimulator,
    StepSimulator,
    make_model_description,
)
from .systems.batch import BatchQuasistaticSimulator, BundledGradientEstimator, TaskDispatcher
from .types import (
    BatchDynamicsResult,
    BatchShapeError,
    BundledGradientResult,
    BundlingStrategy,
    GradientMode,
    ModelDescriptionError,
    PerturbationDistribution,
    QuasistaticSimParameters,
    SolverFailure,
    StepResult,
)

__version__ = "0.1.0"

__all__ = [
    "BatchQuasistaticSimulator",
    "BundledGradientEstimator",
    "TaskDispatcher",
    "QuasistaticModelDescription",
    "QuasistaticSimulator",
    "StepSimulator",
    "make_model_description",
    "BatchDynamicsResult",
    "BatchShapeError",
    "BundledGradientResult",
    "BundlingStrategy",
    "GradientMode",
    "ModelDescriptionError",
    "PerturbationDistribution",
    "QuasistaticSimParameters",
    "SolverFailure",
    "StepResult",
]
