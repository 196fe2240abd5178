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
Bundled Gradient Estimator - Randomized Smoothing of B Along a Trajectory

Contact dynamics are piecewise smooth, so the exact B = ∂q_next/∂u jumps
when contacts make or break. The bundled gradient replaces it with the
average of exact gradients at randomly perturbed controls:

    B̄_t = (1/|V_t|) Σ_{i ∈ V_t} B(x_t, u_t + δu_i),    δu_i ~ D(0, σ)

where V_t holds the samples whose step was valid. The state is held at its
nominal value; only the control is perturbed.

Two evaluation strategies produce the same result for the same seed:
- DIRECT: one batch of n_samples steps per time step
- BATCHED: all T * n_samples steps in a single batch

Both draw perturbations from one generator in time-step-major order and
reduce each time step with the same averaging function.

Examples
--------
>>> estimator = BundledGradientEstimator(dispatcher)
>>> result = estimator.estimate(
...     x_trj, u_trj, h=0.1, std_u=0.1, n_samples=100, seed=1,
...     strategy="batched",
... )
>>> result["B"].shape
(T, nq, nu)
"""

import warnings
from typing import Tuple, Union

import numpy as np

from bqsim.systems.batch.task_dispatcher import TaskDispatcher
from bqsim.types.batch_results import BundledGradientResult
from bqsim.types.core import ArrayLike, GradientTrajectory, InputMatrix
from bqsim.types.simulation import (
    DEFAULT_DISTRIBUTION,
    DEFAULT_STRATEGY,
    BatchShapeError,
    BundlingStrategy,
    GradientMode,
    PerturbationDistribution,
    validate_distribution,
    validate_strategy,
    validate_time_step,
)


class PerturbationSampler:
    """
    Seeded source of control perturbations.

    Every call to draw() consumes the generator, so the sequence of draws is
    reproducible only when the calls are made in the same order.

    Attributes
    ----------
    std_u : np.ndarray
        Per-dimension scale (nu,)
    distribution : PerturbationDistribution

    Examples
    --------
    >>> sampler = PerturbationSampler(nu=4, std_u=0.1, seed=0)
    >>> sampler.draw(10).shape
    (10, 4)
    """

    def __init__(
        self,
        nu: int,
        std_u: Union[float, ArrayLike],
        seed: int,
        distribution: Union[PerturbationDistribution, str] = DEFAULT_DISTRIBUTION,
    ):
        self.std_u = validate_std_u(std_u, nu)
        self.distribution = validate_distribution(distribution)
        self._rng = np.random.default_rng(seed)

    def draw(self, n_samples: int) -> np.ndarray:
        """Draw n_samples perturbations, shape (n_samples, nu)."""
        shape = (n_samples, self.std_u.shape[0])
        if self.distribution is PerturbationDistribution.GAUSSIAN:
            return self._rng.normal(0.0, 1.0, size=shape) * self.std_u
        return self._rng.uniform(-1.0, 1.0, size=shape) * self.std_u


def validate_std_u(std_u: Union[float, ArrayLike], nu: int) -> np.ndarray:
    """
    Broadcast a scalar or per-dimension perturbation scale to shape (nu,).

    Raises:
        ValueError: If std_u is negative, non-finite or not broadcastable
    """
    std = np.asarray(std_u, dtype=np.float64)
    if std.ndim > 1 or (std.ndim == 1 and std.shape[0] != nu):
        raise ValueError(f"std_u must be a scalar or have shape ({nu},), got {std.shape}")
    if not np.all(np.isfinite(std)) or np.any(std < 0):
        raise ValueError("std_u must be finite and non-negative")
    return np.broadcast_to(std, (nu,)).copy()


def average_valid_gradients(B_samples: np.ndarray, is_valid: np.ndarray) -> Tuple[InputMatrix, int]:
    """
    Mean of the valid sample gradients of one time step.

    Parameters
    ----------
    B_samples : np.ndarray
        (n_samples, nq, nu)
    is_valid : np.ndarray
        (n_samples,) bool

    Returns
    -------
    Tuple[InputMatrix, int]
        Averaged (nq, nu) matrix, NaN-filled when no sample is valid, and
        the number of valid samples
    """
    n_valid = int(np.count_nonzero(is_valid))
    if n_valid == 0:
        return np.full(B_samples.shape[1:], np.nan), 0
    return np.mean(B_samples[is_valid], axis=0), n_valid


class BundledGradientEstimator:
    """
    Bundled B-gradients of a trajectory, evaluated through a TaskDispatcher.

    Attributes
    ----------
    dispatcher : TaskDispatcher
        Runs the perturbed steps
    """

    def __init__(self, dispatcher: TaskDispatcher):
        self.dispatcher = dispatcher

    @property
    def nq(self) -> int:
        return self.dispatcher.nq

    @property
    def nu(self) -> int:
        return self.dispatcher.nu

    def _validate_trajectory(self, x_trj: ArrayLike, u_trj: ArrayLike):
        x_trj = np.ascontiguousarray(x_trj, dtype=np.float64)
        u_trj = np.ascontiguousarray(u_trj, dtype=np.float64)
        if x_trj.ndim != 2 or u_trj.ndim != 2:
            raise BatchShapeError(
                f"Trajectories must be 2D. Got x_trj.ndim={x_trj.ndim}, u_trj.ndim={u_trj.ndim}.",
            )
        if x_trj.shape[0] != u_trj.shape[0] + 1:
            raise BatchShapeError(
                f"x_trj must have one more row than u_trj, got {x_trj.shape[0]} and {u_trj.shape[0]}",
            )
        if x_trj.shape[1] != self.nq:
            raise BatchShapeError(f"Expected state dimension {self.nq}, got {x_trj.shape[1]}")
        if u_trj.shape[1] != self.nu:
            raise BatchShapeError(f"Expected control dimension {self.nu}, got {u_trj.shape[1]}")
        return x_trj, u_trj

    def estimate(
        self,
        x_trj: ArrayLike,
        u_trj: ArrayLike,
        h: float,
        std_u: Union[float, ArrayLike],
        n_samples: int,
        seed: int,
        strategy: Union[BundlingStrategy, str] = DEFAULT_STRATEGY,
        distribution: Union[PerturbationDistribution, str] = DEFAULT_DISTRIBUTION,
        parallel: bool = True,
    ) -> BundledGradientResult:
        """
        Bundled B for every step of a trajectory.

        Args:
            x_trj: States (T + 1, nq); the last row is not used
            u_trj: Commanded joint positions (T, nu)
            h: Step size
            std_u: Perturbation scale, scalar or (nu,)
            n_samples: Samples per time step (>= 1)
            seed: Seed of the perturbation generator
            strategy: 'direct' or 'batched'
            distribution: 'gaussian' or 'uniform'
            parallel: Dispatch on the worker pool (True) or serially

        Returns:
            BundledGradientResult with B of shape (T, nq, nu)

        Raises:
            BatchShapeError: On malformed trajectories
            ValueError: On invalid h, std_u, n_samples, strategy or
                distribution

        Warns:
            RuntimeWarning: If some time step has no valid sample
        """
        x_trj, u_trj = self._validate_trajectory(x_trj, u_trj)
        h = validate_time_step(h)
        strategy = validate_strategy(strategy)
        if isinstance(n_samples, bool) or int(n_samples) != n_samples or n_samples < 1:
            raise ValueError(f"n_samples must be a positive integer, got {n_samples!r}")
        n_samples = int(n_samples)
        sampler = PerturbationSampler(self.nu, std_u, seed, distribution)

        if strategy is BundlingStrategy.DIRECT:
            B_trj, n_valid = self._estimate_direct(x_trj, u_trj, h, sampler, n_samples, parallel)
        else:
            B_trj, n_valid = self._estimate_batched(x_trj, u_trj, h, sampler, n_samples, parallel)

        empty_steps = np.flatnonzero(n_valid == 0)
        if empty_steps.size > 0:
            warnings.warn(
                f"No valid samples at time steps {empty_steps.tolist()}; "
                f"their bundled gradient is NaN.",
                RuntimeWarning,
                stacklevel=2,
            )

        return {
            "B": B_trj,
            "n_valid": n_valid,
            "n_samples": n_samples,
            "seed": seed,
            "strategy": strategy.value,
            "distribution": sampler.distribution.value,
        }

    def _estimate_direct(
        self,
        x_trj: np.ndarray,
        u_trj: np.ndarray,
        h: float,
        sampler: PerturbationSampler,
        n_samples: int,
        parallel: bool,
    ) -> Tuple[GradientTrajectory, np.ndarray]:
        T = u_trj.shape[0]
        B_trj = np.empty((T, self.nq, self.nu))
        n_valid = np.zeros(T, dtype=int)

        for t in range(T):
            du = sampler.draw(n_samples)
            x_batch = np.repeat(x_trj[t][None, :], n_samples, axis=0)
            u_batch = u_trj[t][None, :] + du
            result = self.dispatcher.dispatch(
                x_batch, u_batch, h, GradientMode.B_ONLY, parallel=parallel,
            )
            B_trj[t], n_valid[t] = average_valid_gradients(result.B, result.is_valid)

        return B_trj, n_valid

    def _estimate_batched(
        self,
        x_trj: np.ndarray,
        u_trj: np.ndarray,
        h: float,
        sampler: PerturbationSampler,
        n_samples: int,
        parallel: bool,
    ) -> Tuple[GradientTrajectory, np.ndarray]:
        T = u_trj.shape[0]
        B_trj = np.empty((T, self.nq, self.nu))
        n_valid = np.zeros(T, dtype=int)
        if T == 0:
            return B_trj, n_valid

        du = np.concatenate([sampler.draw(n_samples) for _ in range(T)], axis=0)
        x_batch = np.repeat(x_trj[:T], n_samples, axis=0)
        u_batch = np.repeat(u_trj, n_samples, axis=0) + du
        result = self.dispatcher.dispatch(
            x_batch, u_batch, h, GradientMode.B_ONLY, parallel=parallel,
        )

        B_samples = result.B.reshape(T, n_samples, self.nq, self.nu)
        is_valid = result.is_valid.reshape(T, n_samples)
        for t in range(T):
            B_trj[t], n_valid[t] = average_valid_gradients(B_samples[t], is_valid[t])

        return B_trj, n_valid


__all__ = [
    "PerturbationSampler",
    "validate_std_u",
    "average_valid_gradients",
    "BundledGradientEstimator",
]
