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
Unit Tests for TaskDispatcher

Tests cover:
- Task partitioning
- Serial/parallel equivalence and row order
- Chunk-to-worker assignment
- Failure isolation and propagation of bugs
- Precondition checks before any task runs
- Statistics, pool lifecycle and concurrent callers
"""

import threading

import numpy as np
import pytest

from bqsim.systems.batch.task_dispatcher import TaskDispatcher, partition_tasks
from bqsim.types.simulation import BatchShapeError, GradientMode

N_WORKERS = 4
N_TASKS = N_WORKERS * 20 + 1


@pytest.fixture
def dispatcher(stub_factory):
    d = TaskDispatcher(stub_factory(), [stub_factory() for _ in range(N_WORKERS)])
    yield d
    d.shutdown()


# ============================================================================
# Partitioning
# ============================================================================


class TestPartitionTasks:
    """Test contiguous near-equal chunking"""

    def test_uneven(self):
        assert partition_tasks(10, 4) == (range(0, 3), range(3, 6), range(6, 8), range(8, 10))

    def test_even(self):
        assert [len(c) for c in partition_tasks(12, 4)] == [3, 3, 3, 3]

    def test_fewer_tasks_than_workers(self):
        assert [len(c) for c in partition_tasks(3, 5)] == [1, 1, 1, 0, 0]

    def test_no_tasks(self):
        assert all(len(c) == 0 for c in partition_tasks(0, 3))

    @pytest.mark.parametrize("n_tasks, n_workers", [(81, 4), (1, 1), (7, 3), (100, 16)])
    def test_covers_every_row_once(self, n_tasks, n_workers):
        chunks = partition_tasks(n_tasks, n_workers)
        assert len(chunks) == n_workers
        assert [i for c in chunks for i in c] == list(range(n_tasks))
        sizes = [len(c) for c in chunks]
        assert max(sizes) - min(sizes) <= 1
        assert sizes == sorted(sizes, reverse=True)

    def test_invalid_arguments(self):
        with pytest.raises(ValueError, match="n_workers"):
            partition_tasks(5, 0)
        with pytest.raises(ValueError, match="n_tasks"):
            partition_tasks(-1, 2)


# ============================================================================
# Construction
# ============================================================================


class TestConstruction:
    """Test simulator ownership rules"""

    def test_needs_workers(self, stub_factory):
        with pytest.raises(ValueError, match="at least one"):
            TaskDispatcher(stub_factory(), [])

    def test_serial_not_shared_with_workers(self, stub_factory):
        sim = stub_factory()
        with pytest.raises(ValueError, match="distinct from the serial"):
            TaskDispatcher(sim, [sim])

    def test_workers_distinct(self, stub_factory):
        worker = stub_factory()
        with pytest.raises(ValueError, match="distinct instances"):
            TaskDispatcher(stub_factory(), [worker, worker])

    def test_properties(self, dispatcher):
        assert dispatcher.num_workers == N_WORKERS
        assert (dispatcher.nq, dispatcher.nu) == (3, 2)
        assert "num_workers=4" in repr(dispatcher)


# ============================================================================
# Dispatch
# ============================================================================


class TestEquivalence:
    """Test that serial and parallel dispatch agree"""

    @pytest.mark.parametrize("mode", [GradientMode.NONE, GradientMode.B_ONLY])
    def test_serial_equals_parallel(self, dispatcher, batch_factory, mode):
        X, U = batch_factory(N_TASKS)
        serial = dispatcher.dispatch_serial(X, U, 0.1, mode)
        parallel = dispatcher.dispatch_parallel(X, U, 0.1, mode)
        np.testing.assert_array_equal(serial.is_valid, parallel.is_valid)
        np.testing.assert_array_equal(serial.x_next, parallel.x_next)
        np.testing.assert_array_equal(serial.B, parallel.B)

    def test_row_order_preserved(self, dispatcher, batch_factory):
        X, U = batch_factory(N_TASKS)
        result = dispatcher.dispatch_parallel(X, U, 0.1)
        np.testing.assert_array_equal(result.x_next[:, 2], np.arange(N_TASKS))
        np.testing.assert_allclose(result.x_next[:, :2], X[:, :2] + 0.1 * np.sin(U))

    def test_gradient_mode_contract(self, dispatcher, batch_factory):
        X, U = batch_factory(N_TASKS)
        assert len(dispatcher.dispatch_parallel(X, U, 0.1, GradientMode.NONE).B) == 0
        assert len(dispatcher.dispatch_parallel(X, U, 0.1, GradientMode.B_ONLY).B) == N_TASKS
        assert len(dispatcher.dispatch_serial(X, U, 0.1, "b_only").B) == N_TASKS

    def test_repeated_calls_identical(self, dispatcher, batch_factory):
        X, U = batch_factory(N_TASKS)
        first = dispatcher.dispatch_parallel(X, U, 0.1, GradientMode.B_ONLY)
        second = dispatcher.dispatch_parallel(X, U, 0.1, GradientMode.B_ONLY)
        np.testing.assert_array_equal(first.x_next, second.x_next)
        np.testing.assert_array_equal(first.B, second.B)

    def test_dispatch_routes(self, dispatcher, batch_factory):
        X, U = batch_factory(10)
        dispatcher.dispatch(X, U, 0.1, parallel=False)
        assert dispatcher.serial_simulator.rows_seen == list(range(10))
        dispatcher.dispatch(X, U, 0.1, parallel=True)
        assert sum(len(w.rows_seen) for w in dispatcher.worker_simulators) == 10

    def test_empty_batch(self, dispatcher):
        result = dispatcher.dispatch_parallel(np.zeros((0, 3)), np.zeros((0, 2)), 0.1, GradientMode.B_ONLY)
        assert result.x_next.shape == (0, 3)
        assert result.B.shape == (0, 3, 2)
        assert result.is_valid.shape == (0,)


class TestAssignment:
    """Test which simulator processes which rows"""

    def test_serial_uses_serial_simulator(self, dispatcher, batch_factory):
        X, U = batch_factory(N_TASKS)
        dispatcher.dispatch_serial(X, U, 0.1)
        assert dispatcher.serial_simulator.rows_seen == list(range(N_TASKS))
        assert all(w.rows_seen == [] for w in dispatcher.worker_simulators)

    def test_chunk_k_runs_on_worker_k(self, dispatcher, batch_factory):
        X, U = batch_factory(N_TASKS)
        dispatcher.dispatch_parallel(X, U, 0.1)
        chunks = partition_tasks(N_TASKS, N_WORKERS)
        for worker, rows in zip(dispatcher.worker_simulators, chunks):
            assert worker.rows_seen == list(rows)
            assert len(worker.threads) == 1
        assert dispatcher.serial_simulator.rows_seen == []

    def test_idle_workers_skipped(self, dispatcher, batch_factory):
        X, U = batch_factory(2)
        dispatcher.dispatch_parallel(X, U, 0.1)
        assert [len(w.rows_seen) for w in dispatcher.worker_simulators] == [1, 1, 0, 0]


# ============================================================================
# Failures
# ============================================================================


class TestFailureIsolation:
    """Test per-task failure handling"""

    @pytest.fixture
    def failing_batch(self, batch_factory):
        X, U = batch_factory(N_TASKS)
        U[3, 0] = 10.0  # SolverFailure
        U[40, 0] = -10.0  # LinAlgError
        U[77, 1] = -4.0  # reported invalid
        return X, U

    @pytest.mark.parametrize("parallel", [False, True])
    def test_failed_rows_marked_invalid(self, dispatcher, failing_batch, parallel):
        X, U = failing_batch
        result = dispatcher.dispatch(X, U, 0.1, GradientMode.B_ONLY, parallel=parallel)
        invalid = np.flatnonzero(~result.is_valid)
        np.testing.assert_array_equal(invalid, [3, 40, 77])
        for i in (3, 40):
            assert np.isnan(result.x_next[i]).all()
            assert np.isnan(result.B[i]).all()
        # A step that reports invalid keeps its returned values.
        assert np.isfinite(result.x_next[77]).all()
        # Neighbouring rows are unaffected.
        valid = np.ones(N_TASKS, dtype=bool)
        valid[[3, 40, 77]] = False
        np.testing.assert_allclose(
            result.x_next[valid, :2], X[valid, :2] + 0.1 * np.sin(U[valid]),
        )

    def test_serial_and_parallel_agree_on_failures(self, dispatcher, failing_batch):
        X, U = failing_batch
        serial = dispatcher.dispatch_serial(X, U, 0.1, GradientMode.B_ONLY)
        parallel = dispatcher.dispatch_parallel(X, U, 0.1, GradientMode.B_ONLY)
        np.testing.assert_array_equal(serial.is_valid, parallel.is_valid)
        np.testing.assert_array_equal(serial.x_next, parallel.x_next)
        np.testing.assert_array_equal(serial.B, parallel.B)

    @pytest.mark.parametrize("parallel", [False, True])
    def test_bugs_propagate(self, dispatcher, batch_factory, parallel):
        X, U = batch_factory(N_TASKS)
        U[50, 1] = np.nan
        with pytest.raises(RuntimeError, match="stub bug"):
            dispatcher.dispatch(X, U, 0.1, parallel=parallel)

    def test_usable_after_bug(self, dispatcher, batch_factory):
        X, U = batch_factory(N_TASKS)
        U_bad = U.copy()
        U_bad[0, 1] = np.nan
        with pytest.raises(RuntimeError):
            dispatcher.dispatch_parallel(X, U_bad, 0.1)
        result = dispatcher.dispatch_parallel(X, U, 0.1)
        assert result.is_valid.all()


# ============================================================================
# Preconditions
# ============================================================================


class TestPreconditions:
    """Test that malformed calls fail before any task runs"""

    def assert_nothing_ran(self, dispatcher):
        assert dispatcher.serial_simulator.rows_seen == []
        assert all(w.rows_seen == [] for w in dispatcher.worker_simulators)

    @pytest.mark.parametrize(
        "X, U",
        [
            (np.zeros((5, 3)), np.zeros((4, 2))),
            (np.zeros((5, 4)), np.zeros((5, 2))),
            (np.zeros((5, 3)), np.zeros((5, 1))),
            (np.zeros(3), np.zeros(2)),
        ],
    )
    @pytest.mark.parametrize("parallel", [False, True])
    def test_shape_errors(self, dispatcher, X, U, parallel):
        with pytest.raises(BatchShapeError):
            dispatcher.dispatch(X, U, 0.1, parallel=parallel)
        self.assert_nothing_ran(dispatcher)

    def test_time_step(self, dispatcher, batch_factory):
        X, U = batch_factory(5)
        with pytest.raises(ValueError, match="Time step"):
            dispatcher.dispatch_parallel(X, U, 0.0)
        self.assert_nothing_ran(dispatcher)

    def test_unsupported_gradient_mode(self, dispatcher, batch_factory):
        X, U = batch_factory(5)
        with pytest.raises(ValueError, match="does not support"):
            dispatcher.dispatch_parallel(X, U, 0.1, GradientMode.A_AND_B)
        self.assert_nothing_ran(dispatcher)

    def test_hints_validated(self, dispatcher, batch_factory):
        X, U = batch_factory(5)
        with pytest.raises(ValueError, match="accepts no solver hints"):
            dispatcher.dispatch_serial(X, U, 0.1, hints={"active_threshold": 1e-3})
        self.assert_nothing_ran(dispatcher)


# ============================================================================
# Lifecycle and Statistics
# ============================================================================


class TestLifecycle:
    """Test statistics, pool shutdown and concurrent callers"""

    def test_stats(self, dispatcher, batch_factory):
        X, U = batch_factory(N_TASKS)
        U[3, 0] = 10.0
        dispatcher.dispatch_serial(X, U, 0.1)
        dispatcher.dispatch_parallel(X, U, 0.1)
        stats = dispatcher.get_stats()
        assert stats["calls"] == 2
        assert stats["tasks"] == 2 * N_TASKS
        assert stats["invalid_tasks"] == 2
        assert stats["avg_time"] == pytest.approx(stats["total_time"] / 2)

    def test_reset_stats(self, dispatcher, batch_factory):
        X, U = batch_factory(5)
        dispatcher.dispatch_serial(X, U, 0.1)
        dispatcher.reset_stats()
        assert dispatcher.get_stats()["calls"] == 0
        assert dispatcher.get_stats()["tasks"] == 0

    def test_restart_after_shutdown(self, dispatcher, batch_factory):
        X, U = batch_factory(N_TASKS)
        first = dispatcher.dispatch_parallel(X, U, 0.1)
        dispatcher.shutdown()
        second = dispatcher.dispatch_parallel(X, U, 0.1)
        np.testing.assert_array_equal(first.x_next, second.x_next)

    def test_context_manager(self, stub_factory, batch_factory):
        X, U = batch_factory(10)
        with TaskDispatcher(stub_factory(), [stub_factory(), stub_factory()]) as d:
            result = d.dispatch_parallel(X, U, 0.1)
        assert result.is_valid.all()
        assert d._executor is None

    def test_concurrent_callers(self, dispatcher, batch_factory):
        X, U = batch_factory(N_TASKS)
        expected = dispatcher.dispatch_serial(X, U, 0.1, GradientMode.B_ONLY)
        results = [None] * 6

        def call(k):
            results[k] = dispatcher.dispatch_parallel(X, U, 0.1, GradientMode.B_ONLY)

        threads = [threading.Thread(target=call, args=(k,)) for k in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for result in results:
            np.testing.assert_array_equal(result.x_next, expected.x_next)
            np.testing.assert_array_equal(result.B, expected.B)
        assert not any(w.overlap for w in dispatcher.worker_simulators)

    def test_concurrent_serial_callers(self, dispatcher, batch_factory):
        X, U = batch_factory(2000)
        expected = dispatcher.dispatch_serial(X, U, 0.1, GradientMode.B_ONLY)
        results = [None] * 4

        def call(k):
            results[k] = dispatcher.dispatch_serial(X, U, 0.1, GradientMode.B_ONLY)

        threads = [threading.Thread(target=call, args=(k,)) for k in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        for result in results:
            np.testing.assert_array_equal(result.x_next, expected.x_next)
            np.testing.assert_array_equal(result.B, expected.B)
        assert not dispatcher.serial_simulator.overlap
        assert len(dispatcher.serial_simulator.rows_seen) == 5 * 2000
