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
Simulation Configuration Types

Enumerations, parameter containers, defaults, validators and exceptions for
quasistatic batch simulation.

Contents
--------
- GradientMode: which sensitivities the step solver computes
- PerturbationDistribution: sampling law for bundled gradients
- BundlingStrategy: direct (per time step) or batched (one merged dispatch)
- QuasistaticSimParameters: frozen solver parameters
- DEFAULT_* constants and validate_* helpers
- BatchShapeError, ModelDescriptionError, SolverFailure

Enum arguments are accepted either as members or as their string values:

>>> validate_gradient_mode("b_only")
<GradientMode.B_ONLY: 'b_only'>
"""

import os
from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Union

import numpy as np

# ============================================================================
# Exceptions
# ============================================================================


class BatchShapeError(ValueError):
    """Raised when a batch or trajectory has inconsistent shapes.

    This is a precondition failure: it is raised before any task runs and
    the whole call is abandoned.
    """

    pass


class ModelDescriptionError(ValueError):
    """Raised when a model description or its parameters are malformed."""

    pass


class SolverFailure(RuntimeError):
    """
    Raised by a step simulator when a single task cannot be solved.

    The task dispatcher converts it into ``is_valid = False`` for that row
    only. Simulators may also report infeasibility directly through the
    validity flag of their result, which is preferred.
    """

    pass


# ============================================================================
# Enumerations
# ============================================================================


class GradientMode(Enum):
    """
    Sensitivities requested from the step solver.

    Attributes
    ----------
    NONE : str
        Next state only. Gradient containers come back empty.
    B_ONLY : str
        Next state and B = ∂q_next/∂u.
    A_AND_B : str
        Next state, A = ∂q_next/∂q and B. Declared for API completeness;
        the reference solver rejects it.
    """

    NONE = "none"
    B_ONLY = "b_only"
    A_AND_B = "a_and_b"

    @property
    def computes_b(self) -> bool:
        """True if this mode produces B matrices."""
        return self is not GradientMode.NONE


class PerturbationDistribution(Enum):
    """
    Distribution of control perturbations used for bundling.

    GAUSSIAN draws δu ~ N(0, σ²); UNIFORM draws δu ~ U(-σ, σ).
    """

    GAUSSIAN = "gaussian"
    UNIFORM = "uniform"


class BundlingStrategy(Enum):
    """
    How bundled-gradient samples are dispatched.

    DIRECT dispatches one batch of n_samples tasks per time step.
    BATCHED flattens all T * n_samples tasks into a single dispatch.
    """

    DIRECT = "direct"
    BATCHED = "batched"


# ============================================================================
# Defaults
# ============================================================================

DEFAULT_NUM_WORKERS: int = os.cpu_count() or 1
"""
Default size of the parallel worker pool: the hardware concurrency.
"""

DEFAULT_ACTIVE_THRESHOLD: float = 1e-6
"""
Dual value above which a contact constraint is considered active when the
gradient is computed from active constraints.
"""

DEFAULT_DISTRIBUTION = PerturbationDistribution.GAUSSIAN
"""
Default bundling distribution.
"""

DEFAULT_STRATEGY = BundlingStrategy.BATCHED
"""
Default bundling strategy.
"""


# ============================================================================
# Parameters
# ============================================================================


@dataclass(frozen=True)
class QuasistaticSimParameters:
    """
    Parameters of the quasistatic contact solver.

    Attributes
    ----------
    gravity : Tuple[float, float, float]
        Gravity vector in world coordinates. Planar scenes use its (y, z)
        components.
    nd_per_contact : int
        Number of friction-cone directions per contact. Planar scenes
        require 2.
    contact_detection_tolerance : float
        Pairs whose signed distance is below this value enter the QP.
    is_quasi_dynamic : bool
        If True, objects are regularized by M / h² (quasi-dynamic model);
        otherwise only a small constant regularization is applied.
    gradient_from_active_constraints : bool
        If True, B is computed from constraints whose dual value exceeds the
        active threshold; otherwise from every constraint in the QP.

    Examples
    --------
    >>> params = QuasistaticSimParameters(
    ...     gravity=(0.0, 0.0, -10.0),
    ...     nd_per_contact=2,
    ...     contact_detection_tolerance=1.0,
    ... )
    """

    gravity: Tuple[float, float, float] = (0.0, 0.0, -9.81)
    nd_per_contact: int = 4
    contact_detection_tolerance: float = 0.01
    is_quasi_dynamic: bool = True
    gradient_from_active_constraints: bool = True

    def __post_init__(self):
        gravity = tuple(float(g) for g in np.asarray(self.gravity, dtype=np.float64).ravel())
        if len(gravity) != 3:
            raise ModelDescriptionError(
                f"gravity must have 3 components, got {len(gravity)}",
            )
        object.__setattr__(self, "gravity", gravity)

        if int(self.nd_per_contact) < 1:
            raise ModelDescriptionError(
                f"nd_per_contact must be at least 1, got {self.nd_per_contact}",
            )
        object.__setattr__(self, "nd_per_contact", int(self.nd_per_contact))

        if not self.contact_detection_tolerance > 0:
            raise ModelDescriptionError(
                f"contact_detection_tolerance must be positive, "
                f"got {self.contact_detection_tolerance}",
            )


# ============================================================================
# Validators
# ============================================================================


def validate_gradient_mode(mode: Union[GradientMode, str]) -> GradientMode:
    """
    Validate and normalize a gradient mode.

    Parameters
    ----------
    mode : Union[GradientMode, str]
        Enum member or its string value ('none', 'b_only', 'a_and_b')

    Returns
    -------
    GradientMode

    Raises
    ------
    ValueError
        If mode is not recognized
    """
    if isinstance(mode, GradientMode):
        return mode
    try:
        return GradientMode(mode)
    except ValueError:
        valid = [m.value for m in GradientMode]
        raise ValueError(f"Invalid gradient mode '{mode}'. Choose from: {valid}") from None


def validate_distribution(
    distribution: Union[PerturbationDistribution, str],
) -> PerturbationDistribution:
    """Validate and normalize a perturbation distribution."""
    if isinstance(distribution, PerturbationDistribution):
        return distribution
    try:
        return PerturbationDistribution(distribution)
    except ValueError:
        valid = [d.value for d in PerturbationDistribution]
        raise ValueError(
            f"Invalid perturbation distribution '{distribution}'. Choose from: {valid}",
        ) from None


def validate_strategy(strategy: Union[BundlingStrategy, str]) -> BundlingStrategy:
    """Validate and normalize a bundling strategy."""
    if isinstance(strategy, BundlingStrategy):
        return strategy
    try:
        return BundlingStrategy(strategy)
    except ValueError:
        valid = [s.value for s in BundlingStrategy]
        raise ValueError(f"Invalid bundling strategy '{strategy}'. Choose from: {valid}") from None


def validate_num_workers(num_workers) -> int:
    """
    Validate the size of the worker pool.

    None selects DEFAULT_NUM_WORKERS.

    Raises
    ------
    ValueError
        If num_workers is not a positive integer
    """
    if num_workers is None:
        return DEFAULT_NUM_WORKERS
    if isinstance(num_workers, bool) or int(num_workers) != num_workers or num_workers < 1:
        raise ValueError(f"num_workers must be a positive integer, got {num_workers!r}")
    return int(num_workers)


def validate_time_step(h) -> float:
    """Validate the step size h > 0 and return it as float."""
    h = float(h)
    if not np.isfinite(h) or h <= 0:
        raise ValueError(f"Time step h must be positive and finite, got {h}")
    return h


__all__ = [
    # Exceptions
    "BatchShapeError",
    "ModelDescriptionError",
    "SolverFailure",
    # Enums
    "GradientMode",
    "PerturbationDistribution",
    "BundlingStrategy",
    # Defaults
    "DEFAULT_NUM_WORKERS",
    "DEFAULT_ACTIVE_THRESHOLD",
    "DEFAULT_DISTRIBUTION",
    "DEFAULT_STRATEGY",
    # Parameters
    "QuasistaticSimParameters",
    # Validators
    "validate_gradient_mode",
    "validate_distribution",
    "validate_strategy",
    "validate_num_workers",
    "validate_time_step",
]
