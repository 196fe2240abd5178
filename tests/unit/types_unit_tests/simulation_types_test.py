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
Unit Tests for Simulation Configuration Types

Tests cover:
- Enum normalization (members and string values)
- Parameter validation in QuasistaticSimParameters
- Worker count and time step validators
- Exception hierarchy
- Batch validation helpers
"""

import numpy as np
import pytest

from bqsim.types.simulation import (
    DEFAULT_NUM_WORKERS,
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
from bqsim.types.utilities import validate_batch


# ============================================================================
# Enumerations
# ============================================================================


class TestGradientMode:
    """Test GradientMode normalization and properties"""

    def test_string_values(self):
        assert GradientMode.NONE.value == "none"
        assert GradientMode.B_ONLY.value == "b_only"
        assert GradientMode.A_AND_B.value == "a_and_b"

    def test_computes_b(self):
        assert not GradientMode.NONE.computes_b
        assert GradientMode.B_ONLY.computes_b
        assert GradientMode.A_AND_B.computes_b

    @pytest.mark.parametrize("value", ["none", "b_only", "a_and_b"])
    def test_validate_from_string(self, value):
        assert validate_gradient_mode(value) is GradientMode(value)

    def test_validate_member_passthrough(self):
        assert validate_gradient_mode(GradientMode.B_ONLY) is GradientMode.B_ONLY

    def test_validate_rejects_unknown(self):
        with pytest.raises(ValueError, match="Invalid gradient mode"):
            validate_gradient_mode("a_only")


class TestDistributionAndStrategy:
    """Test bundling enums"""

    def test_distribution_from_string(self):
        assert validate_distribution("uniform") is PerturbationDistribution.UNIFORM
        assert validate_distribution("gaussian") is PerturbationDistribution.GAUSSIAN

    def test_distribution_rejects_unknown(self):
        with pytest.raises(ValueError, match="perturbation distribution"):
            validate_distribution("laplace")

    def test_strategy_from_string(self):
        assert validate_strategy("direct") is BundlingStrategy.DIRECT
        assert validate_strategy(BundlingStrategy.BATCHED) is BundlingStrategy.BATCHED

    def test_strategy_rejects_unknown(self):
        with pytest.raises(ValueError, match="bundling strategy"):
            validate_strategy("streamed")


# ============================================================================
# Parameters
# ============================================================================


class TestQuasistaticSimParameters:
    """Test parameter container validation"""

    def test_defaults(self):
        params = QuasistaticSimParameters()
        assert params.gravity == (0.0, 0.0, -9.81)
        assert params.nd_per_contact == 4
        assert params.is_quasi_dynamic
        assert params.gradient_from_active_constraints

    def test_gravity_normalized_to_float_tuple(self):
        params = QuasistaticSimParameters(gravity=np.array([0, 0, -10]))
        assert params.gravity == (0.0, 0.0, -10.0)
        assert all(isinstance(g, float) for g in params.gravity)

    def test_frozen(self):
        params = QuasistaticSimParameters()
        with pytest.raises(AttributeError):
            params.nd_per_contact = 2

    def test_gravity_wrong_length(self):
        with pytest.raises(ModelDescriptionError, match="gravity"):
            QuasistaticSimParameters(gravity=(0.0, -10.0))

    def test_nd_per_contact_positive(self):
        with pytest.raises(ModelDescriptionError, match="nd_per_contact"):
            QuasistaticSimParameters(nd_per_contact=0)

    @pytest.mark.parametrize("tol", [0.0, -0.1])
    def test_tolerance_positive(self, tol):
        with pytest.raises(ModelDescriptionError, match="contact_detection_tolerance"):
            QuasistaticSimParameters(contact_detection_tolerance=tol)


# ============================================================================
# Validators
# ============================================================================


class TestValidators:
    """Test worker count and time step validators"""

    def test_num_workers_default(self):
        assert validate_num_workers(None) == DEFAULT_NUM_WORKERS
        assert DEFAULT_NUM_WORKERS >= 1

    def test_num_workers_accepts_positive_int(self):
        assert validate_num_workers(3) == 3

    @pytest.mark.parametrize("value", [0, -2, 1.5, True])
    def test_num_workers_rejects(self, value):
        with pytest.raises(ValueError, match="num_workers"):
            validate_num_workers(value)

    def test_time_step(self):
        assert validate_time_step(0.1) == 0.1

    @pytest.mark.parametrize("h", [0.0, -0.1, np.inf, np.nan])
    def test_time_step_rejects(self, h):
        with pytest.raises(ValueError, match="Time step"):
            validate_time_step(h)


class TestExceptions:
    """Test exception hierarchy"""

    def test_batch_shape_error_is_value_error(self):
        assert issubclass(BatchShapeError, ValueError)

    def test_model_description_error_is_value_error(self):
        assert issubclass(ModelDescriptionError, ValueError)

    def test_solver_failure_is_runtime_error(self):
        assert issubclass(SolverFailure, RuntimeError)


# ============================================================================
# Batch Helpers
# ============================================================================


class TestBatchHelpers:
    """Test validate_batch"""

    def test_validate_batch_converts(self):
        X, U = validate_batch([[1, 2, 3]], [[4, 5]], nq=3, nu=2)
        assert X.dtype == np.float64 and U.dtype == np.float64
        assert X.flags["C_CONTIGUOUS"] and U.flags["C_CONTIGUOUS"]

    def test_validate_batch_empty(self):
        X, U = validate_batch(np.zeros((0, 3)), np.zeros((0, 2)), nq=3, nu=2)
        assert X.shape == (0, 3)
        assert U.shape == (0, 2)

    def test_row_mismatch(self):
        with pytest.raises(BatchShapeError, match="Row count mismatch"):
            validate_batch(np.zeros((4, 3)), np.zeros((5, 2)), nq=3, nu=2)

    def test_not_2d(self):
        with pytest.raises(BatchShapeError, match="2D"):
            validate_batch(np.zeros(3), np.zeros((1, 2)), nq=3, nu=2)

    def test_wrong_state_dimension(self):
        with pytest.raises(BatchShapeError, match="state dimension"):
            validate_batch(np.zeros((2, 4)), np.zeros((2, 2)), nq=3, nu=2)

    def test_wrong_control_dimension(self):
        with pytest.raises(BatchShapeError, match="control dimension"):
            validate_batch(np.zeros((2, 3)), np.zeros((2, 1)), nq=3, nu=2)
