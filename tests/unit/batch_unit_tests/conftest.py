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
Shared fixtures for batch-layer tests.

StubStepSimulator is a cheap deterministic step simulator (nq=3, nu=2) whose
behavior is steered by the control:

- x_next = x + h [sin(u0), sin(u1), 0];  B = h diag(cos(u)) padded to (3, 2)
- u0 > 5 raises SolverFailure, u0 < -5 raises LinAlgError
- u1 NaN raises RuntimeError (a bug, must propagate)
- u1 < -3 returns is_valid=False

x[2] carries the row index so tests can see which simulator ran which row.
"""

import threading

import numpy as np
import pytest

from bqsim.systems.base.step_simulator import StepSimulator
from bqsim.types.batch_results import StepResult
from bqsim.types.simulation import GradientMode, SolverFailure


class StubStepSimulator(StepSimulator):
    def __init__(self):
        self.rows_seen = []
        self.threads = set()
        self.overlap = False
        self._busy = False

    @property
    def nq(self):
        return 3

    @property
    def nu(self):
        return 2

    def step(self, x, u, h, gradient_mode=GradientMode.NONE, hints=None):
        if self._busy:
            self.overlap = True
        self._busy = True
        try:
            self.rows_seen.append(int(x[2]))
            self.threads.add(threading.get_ident())

            if u[0] > 5:
                raise SolverFailure("stub failure")
            if u[0] < -5:
                raise np.linalg.LinAlgError("stub singular matrix")
            if np.isnan(u[1]):
                raise RuntimeError("stub bug")

            x_next = x.copy()
            x_next[:2] += h * np.sin(u)
            B = None
            if gradient_mode.computes_b:
                B = np.zeros((3, 2))
                B[0, 0] = h * np.cos(u[0])
                B[1, 1] = h * np.cos(u[1])
            return StepResult(x_next, B, bool(u[1] > -3))
        finally:
            self._busy = False


def make_batch(n_tasks, seed=0):
    rng = np.random.default_rng(seed)
    X = np.zeros((n_tasks, 3))
    X[:, :2] = rng.standard_normal((n_tasks, 2))
    X[:, 2] = np.arange(n_tasks)
    U = rng.uniform(-1.0, 1.0, size=(n_tasks, 2))
    return X, U


@pytest.fixture
def stub_factory():
    return StubStepSimulator


@pytest.fixture
def batch_factory():
    return make_batch
