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
Centralized Type System
=======================

>>> from bqsim.types import GradientMode, BatchDynamicsResult, StateBatch
"""

from .batch_results import (
    BatchDynamicsResult,
    BundledGradientResult,
    DispatchStats,
    SolveInfo,
    StepResult,
)
from .core import (
    ArrayLike,
    ConfigurationDict,
    ControlBatch,
    ControlVector,
    GradientBatch,
    GradientTrajectory,
    InputMatrix,
    SolverHints,
    StateBatch,
    StateVector,
    ValidityBatch,
)
from .simulation import (
    DEFAULT_ACTIVE_THRESHOLD,
    DEFAULT_DISTRIBUTION,
    DEFAULT_NUM_WORKERS,
    DEFAULT_STRATEGY,
    BatchShapeError,
    BundlingStrategy,
    GradientMode,
    ModelDescriptionError,
    PerturbationDistribution,
    QuasistaticSimParameters,
    SolverFailure,
    validate_distribution,
    validate_gradient_mode,
    validate_num_workers,
    validate_strategy,
    validate_time_step,
)
from .utilities import ExecutionStats, validate_batch

__all__ = [
    # Core
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
    # Simulation
    "BatchShapeError",
    "ModelDescriptionError",
    "SolverFailure",
    "GradientMode",
    "PerturbationDistribution",
    "BundlingStrategy",
    "QuasistaticSimParameters",
    "DEFAULT_NUM_WORKERS",
    "DEFAULT_ACTIVE_THRESHOLD",
    "DEFAULT_DISTRIBUTION",
    "DEFAULT_STRATEGY",
    "validate_gradient_mode",
    "validate_distribution",
    "validate_strategy",
    "validate_num_workers",
    "validate_time_step",
    # Results
    "StepResult",
    "BatchDynamicsResult",
    "BundledGradientResult",
    "DispatchStats",
    "SolveInfo",
    # Utilities
    "ExecutionStats",
    "validate_batch",
]
