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
Task Dispatcher - Serial and Threaded Evaluation of Step Batches

Evaluates one quasistatic step per row of a (state, control) batch, either
in order on a single simulator or split across a persistent thread pool with
one simulator per worker.

Partitioning
------------
Rows are split into contiguous chunks of near-equal size; the first
``n_tasks % n_workers`` chunks get one extra row. Chunk k is processed in
row order by worker simulator k, and every result is written by row index,
so the parallel output has exactly the serial layout.

Failure Isolation
-----------------
A step that reports ``is_valid=False`` is stored as returned. A step that
raises SolverFailure or numpy.linalg.LinAlgError is recorded as an invalid
NaN row and the batch continues. Every other exception propagates to the
caller.

Examples
--------
>>> dispatcher = TaskDispatcher(serial_sim, [make_sim() for _ in range(4)])
>>> result = dispatcher.dispatch_parallel(X, U, 0.1, GradientMode.B_ONLY)
>>> result.x_next.shape
(n_tasks, nq)
>>> dispatcher.shutdown()
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from bqsim.systems.base.step_simulator import StepSimulator
from bqsim.systems.batch.result_aggregator import ResultAggregator
from bqsim.types.batch_results import BatchDynamicsResult, DispatchStats
from bqsim.types.core import ArrayLike, SolverHints
from bqsim.types.simulation import GradientMode, SolverFailure, validate_time_step
from bqsim.types.utilities import validate_batch

_ISOLATED_ERRORS = (SolverFailure, np.linalg.LinAlgError)


def partition_tasks(n_tasks: int, n_workers: int) -> Tuple[range, ...]:
    """
    Split row indices 0..n_tasks-1 into n_workers contiguous chunks.

    Chunk sizes differ by at most one, larger chunks first. Chunks may be
    empty when n_tasks < n_workers.

    Examples
    --------
    >>> partition_tasks(10, 4)
    (range(0, 3), range(3, 6), range(6, 8), range(8, 10))
    """
    if n_workers < 1:
        raise ValueError(f"n_workers must be positive, got {n_workers}")
    if n_tasks < 0:
        raise ValueError(f"n_tasks must be non-negative, got {n_tasks}")

    base = n_tasks // n_workers
    remainder = n_tasks % n_workers
    chunks = []
    start = 0
    for worker_id in range(n_workers):
        count = base + (1 if worker_id < remainder else 0)
        chunks.append(range(start, start + count))
        start += count
    return tuple(chunks)


class TaskDispatcher:
    """
    Runs step batches on a serial simulator or a pool of worker simulators.

    Each worker simulator is used by exactly one thread for the duration of a
    call. Concurrent serial calls are serialized on one lock and concurrent
    parallel calls on another, so a simulator is never shared between
    threads.

    Attributes
    ----------
    serial_simulator : StepSimulator
        Simulator used by dispatch_serial
    worker_simulators : Tuple[StepSimulator, ...]
        One simulator per pool thread

    Examples
    --------
    >>> with TaskDispatcher(sim, workers) as dispatcher:
    ...     serial = dispatcher.dispatch_serial(X, U, h, GradientMode.NONE)
    ...     parallel = dispatcher.dispatch_parallel(X, U, h, GradientMode.NONE)
    >>> np.array_equal(serial.x_next, parallel.x_next)
    True
    """

    def __init__(
        self,
        serial_simulator: StepSimulator,
        worker_simulators: Sequence[StepSimulator],
    ):
        worker_simulators = tuple(worker_simulators)
        if len(worker_simulators) == 0:
            raise ValueError("TaskDispatcher needs at least one worker simulator")
        if any(sim is serial_simulator for sim in worker_simulators):
            raise ValueError("Worker simulators must be distinct from the serial simulator")
        if len({id(sim) for sim in worker_simulators}) != len(worker_simulators):
            raise ValueError("Worker simulators must be distinct instances")
        for sim in worker_simulators:
            if (sim.nq, sim.nu) != (serial_simulator.nq, serial_simulator.nu):
                raise ValueError(
                    f"Worker simulator dimensions ({sim.nq}, {sim.nu}) differ from "
                    f"serial simulator ({serial_simulator.nq}, {serial_simulator.nu})",
                )

        self.serial_simulator = serial_simulator
        self.worker_simulators = worker_simulators

        self._executor: Optional[ThreadPoolExecutor] = None
        self._serial_lock = threading.Lock()
        self._parallel_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats = {
            "calls": 0,
            "tasks": 0,
            "invalid_tasks": 0,
            "time": 0.0,
        }

    @property
    def num_workers(self) -> int:
        return len(self.worker_simulators)

    @property
    def nq(self) -> int:
        return self.serial_simulator.nq

    @property
    def nu(self) -> int:
        return self.serial_simulator.nu

    # ========================================================================
    # Dispatch
    # ========================================================================

    def _prepare(
        self,
        x_batch: ArrayLike,
        u_batch: ArrayLike,
        h: float,
        gradient_mode: Union[GradientMode, str],
        hints: SolverHints,
    ):
        mode = self.serial_simulator.check_gradient_mode(gradient_mode)
        h = validate_time_step(h)
        self.serial_simulator.validate_hints(hints)
        x_batch, u_batch = validate_batch(x_batch, u_batch, self.nq, self.nu)
        return x_batch, u_batch, h, mode

    @staticmethod
    def _run_chunk(
        simulator: StepSimulator,
        rows: range,
        x_batch: np.ndarray,
        u_batch: np.ndarray,
        h: float,
        mode: GradientMode,
        hints: SolverHints,
        aggregator: ResultAggregator,
    ):
        for i in rows:
            try:
                x_next, B, is_valid = simulator.step(x_batch[i], u_batch[i], h, mode, hints)
            except _ISOLATED_ERRORS:
                aggregator.record_failure(i)
                continue
            aggregator.record(i, x_next, B, is_valid)

    def dispatch_serial(
        self,
        x_batch: ArrayLike,
        u_batch: ArrayLike,
        h: float,
        gradient_mode: Union[GradientMode, str] = GradientMode.NONE,
        hints: SolverHints = None,
    ) -> BatchDynamicsResult:
        """
        Evaluate every row in order on the serial simulator.

        Args:
            x_batch: States (n_tasks, nq)
            u_batch: Commanded joint positions (n_tasks, nu)
            h: Step size
            gradient_mode: NONE or B_ONLY
            hints: Forwarded unchanged to every step

        Returns:
            BatchDynamicsResult

        Raises:
            BatchShapeError: On malformed batches
            ValueError: On h <= 0, unsupported mode or rejected hints
        """
        start_time = time.time()
        x_batch, u_batch, h, mode = self._prepare(x_batch, u_batch, h, gradient_mode, hints)
        aggregator = ResultAggregator(x_batch.shape[0], self.nq, self.nu, mode)

        with self._serial_lock:
            self._run_chunk(
                self.serial_simulator,
                range(x_batch.shape[0]),
                x_batch,
                u_batch,
                h,
                mode,
                hints,
                aggregator,
            )

        self._update_stats(aggregator, time.time() - start_time)
        return aggregator.result()

    def dispatch_parallel(
        self,
        x_batch: ArrayLike,
        u_batch: ArrayLike,
        h: float,
        gradient_mode: Union[GradientMode, str] = GradientMode.NONE,
        hints: SolverHints = None,
    ) -> BatchDynamicsResult:
        """
        Evaluate the batch on the worker pool.

        Same contract as dispatch_serial; outputs are in row order and agree
        with dispatch_serial for deterministic simulators.
        """
        start_time = time.time()
        x_batch, u_batch, h, mode = self._prepare(x_batch, u_batch, h, gradient_mode, hints)
        n_tasks = x_batch.shape[0]
        aggregator = ResultAggregator(n_tasks, self.nq, self.nu, mode)

        chunks = partition_tasks(n_tasks, self.num_workers)
        with self._parallel_lock:
            executor = self._get_executor()
            futures = [
                executor.submit(
                    self._run_chunk,
                    simulator,
                    rows,
                    x_batch,
                    u_batch,
                    h,
                    mode,
                    hints,
                    aggregator,
                )
                for simulator, rows in zip(self.worker_simulators, chunks)
                if len(rows) > 0
            ]
            # Wait for every chunk before re-raising so no worker is still
            # running when the lock is released.
            errors = [f.exception() for f in futures]

        for error in errors:
            if error is not None:
                raise error

        self._update_stats(aggregator, time.time() - start_time)
        return aggregator.result()

    def dispatch(
        self,
        x_batch: ArrayLike,
        u_batch: ArrayLike,
        h: float,
        gradient_mode: Union[GradientMode, str] = GradientMode.NONE,
        hints: SolverHints = None,
        parallel: bool = True,
    ) -> BatchDynamicsResult:
        """Route to dispatch_parallel or dispatch_serial."""
        if parallel:
            return self.dispatch_parallel(x_batch, u_batch, h, gradient_mode, hints)
        return self.dispatch_serial(x_batch, u_batch, h, gradient_mode, hints)

    # ========================================================================
    # Pool Lifecycle
    # ========================================================================

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.num_workers,
                thread_name_prefix="bqsim-worker",
            )
        return self._executor

    def shutdown(self):
        """Release the thread pool. A later parallel call starts a new one."""
        with self._parallel_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False

    # ========================================================================
    # Statistics
    # ========================================================================

    def _update_stats(self, aggregator: ResultAggregator, elapsed: float):
        with self._stats_lock:
            self._stats["calls"] += 1
            self._stats["tasks"] += aggregator.n_tasks
            self._stats["invalid_tasks"] += aggregator.n_tasks - aggregator.n_valid
            self._stats["time"] += elapsed

    def get_stats(self) -> DispatchStats:
        """
        Get dispatch statistics.

        Returns:
            DispatchStats
                Batch calls, tasks evaluated, invalid tasks and timing
        """
        with self._stats_lock:
            return {
                "calls": self._stats["calls"],
                "tasks": self._stats["tasks"],
                "invalid_tasks": self._stats["invalid_tasks"],
                "total_time": self._stats["time"],
                "avg_time": self._stats["time"] / max(1, self._stats["calls"]),
            }

    def reset_stats(self):
        """Reset dispatch counters."""
        with self._stats_lock:
            self._stats["calls"] = 0
            self._stats["tasks"] = 0
            self._stats["invalid_tasks"] = 0
            self._stats["time"] = 0.0

    def __repr__(self) -> str:
        return f"TaskDispatcher(nq={self.nq}, nu={self.nu}, num_workers={self.num_workers})"


__all__ = [
    "partition_tasks",
    "TaskDispatcher",
]
