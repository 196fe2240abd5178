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
Batch Quasistatic Simulator - Batch Dynamics and Bundled Gradients

Entry point of the package. Owns one serial step simulator, one simulator per
parallel worker and the dispatcher that drives them.

Usage
-----
>>> from bqsim import BatchQuasistaticSimulator, GradientMode
>>> from bqsim.systems.builtin import create_planar_hand_model, PLANAR_HAND_Q0_DICT
>>>
>>> model = create_planar_hand_model()
>>> with BatchQuasistaticSimulator(model, num_workers=4) as sim:
...     q_sim = sim.get_q_sim()
...     q0 = q_sim.get_q_vec_from_dict(PLANAR_HAND_Q0_DICT)
...     u0 = q_sim.get_qa_cmd_vec_from_dict(PLANAR_HAND_Q0_DICT)
...     X = np.tile(q0, (100, 1))
...     U = u0 + 0.1 * np.random.default_rng(0).standard_normal((100, 4))
...     x_next, B, is_valid = sim.calc_dynamics_parallel(X, U, 0.1, GradientMode.B_ONLY)
"""

from typing import Optional, Union

from bqsim.systems.base.model_description import QuasistaticModelDescription
from bqsim.systems.base.quasistatic_simulator import quasistatic_simulator_factory
from bqsim.systems.base.step_simulator import StepSimulator, StepSimulatorFactory
from bqsim.systems.batch.bundled_gradient import BundledGradientEstimator
from bqsim.systems.batch.task_dispatcher import TaskDispatcher
from bqsim.types.batch_results import BatchDynamicsResult, BundledGradientResult, DispatchStats
from bqsim.types.core import ArrayLike, SolverHints
from bqsim.types.simulation import (
    DEFAULT_DISTRIBUTION,
    BundlingStrategy,
    GradientMode,
    PerturbationDistribution,
    validate_num_workers,
)


class BatchQuasistaticSimulator:
    """
    Batch evaluation of quasistatic contact dynamics.

    Parameters
    ----------
    model : QuasistaticModelDescription
        Shared immutable scene model
    num_workers : Optional[int]
        Size of the worker pool, default DEFAULT_NUM_WORKERS
    simulator_factory : Optional[StepSimulatorFactory]
        Builds the step simulators, default QuasistaticSimulator(model).
        Called num_workers + 1 times.

    Examples
    --------
    >>> sim = BatchQuasistaticSimulator(model, num_workers=2)
    >>> serial = sim.calc_dynamics_serial(X, U, 0.1, GradientMode.B_ONLY)
    >>> parallel = sim.calc_dynamics_parallel(X, U, 0.1, GradientMode.B_ONLY)
    >>> np.array_equal(serial.x_next, parallel.x_next)
    True
    >>> sim.shutdown()
    """

    def __init__(
        self,
        model: QuasistaticModelDescription,
        num_workers: Optional[int] = None,
        simulator_factory: Optional[StepSimulatorFactory] = None,
    ):
        self.model = model
        num_workers = validate_num_workers(num_workers)
        if simulator_factory is None:
            simulator_factory = quasistatic_simulator_factory(model)

        self._q_sim = simulator_factory()
        workers = [simulator_factory() for _ in range(num_workers)]
        self._dispatcher = TaskDispatcher(self._q_sim, workers)
        self._estimator = BundledGradientEstimator(self._dispatcher)

    # ========================================================================
    # Properties
    # ========================================================================

    @property
    def nq(self) -> int:
        return self._dispatcher.nq

    @property
    def nu(self) -> int:
        return self._dispatcher.nu

    @property
    def num_max_parallel_executions(self) -> int:
        """Number of worker threads used by parallel calls."""
        return self._dispatcher.num_workers

    def get_q_sim(self) -> StepSimulator:
        """The serial step simulator (model access and dict/vector helpers)."""
        return self._q_sim

    # ========================================================================
    # Batch Dynamics
    # ========================================================================

    def calc_dynamics_serial(
        self,
        x_batch: ArrayLike,
        u_batch: ArrayLike,
        h: float,
        gradient_mode: Union[GradientMode, str] = GradientMode.NONE,
        hints: SolverHints = None,
    ) -> BatchDynamicsResult:
        """
        One step per row, evaluated in order on the serial simulator.

        Returns:
            BatchDynamicsResult(x_next, B, is_valid)
        """
        return self._dispatcher.dispatch_serial(x_batch, u_batch, h, gradient_mode, hints)

    def calc_dynamics_parallel(
        self,
        x_batch: ArrayLike,
        u_batch: ArrayLike,
        h: float,
        gradient_mode: Union[GradientMode, str] = GradientMode.NONE,
        hints: SolverHints = None,
    ) -> BatchDynamicsResult:
        """
        One step per row, evaluated on the worker pool. Agrees with
        calc_dynamics_serial row by row.
        """
        return self._dispatcher.dispatch_parallel(x_batch, u_batch, h, gradient_mode, hints)

    def calc_dynamics(
        self,
        x_batch: ArrayLike,
        u_batch: ArrayLike,
        h: float,
        gradient_mode: Union[GradientMode, str] = GradientMode.NONE,
        hints: SolverHints = None,
        parallel: bool = True,
    ) -> BatchDynamicsResult:
        return self._dispatcher.dispatch(x_batch, u_batch, h, gradient_mode, hints, parallel)

    # ========================================================================
    # Bundled Gradients
    # ========================================================================

    def calc_bundled_b_trj(
        self,
        x_trj: ArrayLike,
        u_trj: ArrayLike,
        h: float,
        std_u: Union[float, ArrayLike],
        n_samples: int,
        seed: int,
        distribution: Union[PerturbationDistribution, str] = DEFAULT_DISTRIBUTION,
        parallel: bool = True,
    ) -> BundledGradientResult:
        """
        Bundled B along a trajectory, all samples in a single batch.

        Args:
            x_trj: States (T + 1, nq)
            u_trj: Commanded joint positions (T, nu)
            h: Step size
            std_u: Perturbation scale, scalar or (nu,)
            n_samples: Samples per time step
            seed: Perturbation seed
            distribution: 'gaussian' or 'uniform'
            parallel: Use the worker pool

        Returns:
            BundledGradientResult; result["B"] has shape (T, nq, nu)
        """
        return self._estimator.estimate(
            x_trj,
            u_trj,
            h,
            std_u,
            n_samples,
            seed,
            strategy=BundlingStrategy.BATCHED,
            distribution=distribution,
            parallel=parallel,
        )

    def calc_bundled_b_trj_direct(
        self,
        x_trj: ArrayLike,
        u_trj: ArrayLike,
        h: float,
        std_u: Union[float, ArrayLike],
        n_samples: int,
        seed: int,
        distribution: Union[PerturbationDistribution, str] = DEFAULT_DISTRIBUTION,
        parallel: bool = True,
    ) -> BundledGradientResult:
        """
        Bundled B along a trajectory, one batch per time step. Matches
        calc_bundled_b_trj for the same seed.
        """
        return self._estimator.estimate(
            x_trj,
            u_trj,
            h,
            std_u,
            n_samples,
            seed,
            strategy=BundlingStrategy.DIRECT,
            distribution=distribution,
            parallel=parallel,
        )

    # ========================================================================
    # Lifecycle and Statistics
    # ========================================================================

    def get_stats(self) -> DispatchStats:
        """Dispatch statistics across all batch and bundling calls."""
        return self._dispatcher.get_stats()

    def reset_stats(self):
        self._dispatcher.reset_stats()

    def shutdown(self):
        """Release the worker pool."""
        self._dispatcher.shutdown()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    def __repr__(self) -> str:
        return (
            f"BatchQuasistaticSimulator(nq={self.nq}, nu={self.nu}, "
            f"num_workers={self.num_max_parallel_executions})"
        )


__all__ = ["BatchQuasistaticSimulator"]
