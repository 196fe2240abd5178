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
Unit Tests for Symbolic Kinematics and NumPy Code Generation

Tests cover:
- Shape conventions of generated NumPy functions
- Rodrigues rotation matrices
- Fingertip forward kinematics of planar and spatial chains
- Jacobians against finite differences
- Configuration index mapping of compiled chains
"""

import numpy as np
import pytest
import sympy as sp

from bqsim.systems.base.model_description import KinematicChainSpec, planar_chain
from bqsim.systems.base.utils.codegen_utils import (
    generate_numpy_function,
    generate_numpy_matrix_function,
)
from bqsim.systems.base.utils.kinematics import (
    axis_angle_matrix,
    build_chain_expressions,
    compile_chain_kinematics,
)


@pytest.fixture
def planar_arm():
    return planar_chain((0.44, 0.3), (0.0, -0.9, 0.0), tip_radius=0.05)


@pytest.fixture
def spatial_finger():
    return KinematicChainSpec(
        joint_axes=((0, 0, 1), (0, 1, 0)),
        link_offsets=((0, 0, 0.1), (0, 0, 0.2)),
    )


def finite_difference_jacobian(func, q, eps=1e-6):
    columns = []
    for k in range(q.shape[0]):
        dq = np.zeros_like(q)
        dq[k] = eps
        columns.append((func(q + dq) - func(q - dq)) / (2 * eps))
    return np.stack(columns, axis=1)


# ============================================================================
# Code Generation
# ============================================================================


class TestCodegen:
    """Test NumPy function generation from SymPy"""

    def test_scalar_expression_returns_1d(self):
        x = sp.Symbol("x")
        f = generate_numpy_function(x**2, [x])
        result = f(3.0)
        assert result.shape == (1,)
        assert result[0] == pytest.approx(9.0)

    def test_vector_expression(self):
        q = sp.symbols("q0:2")
        f = generate_numpy_function([sp.cos(q[0]), sp.sin(q[0] + q[1])], q)
        np.testing.assert_allclose(f(0.0, 0.0), [1.0, 0.0])

    def test_matrix_function_keeps_shape(self):
        q = sp.symbols("q0:2")
        p = sp.Matrix([sp.cos(q[0]) + sp.cos(q[0] + q[1])])
        J = generate_numpy_matrix_function(p.jacobian(q), q)
        assert J(0.0, 0.0).shape == (1, 2)

    def test_constant_entries(self):
        q = sp.symbols("q0:2")
        J = generate_numpy_matrix_function(sp.Matrix([[1, 0], [0, q[1]]]), q)
        np.testing.assert_allclose(J(5.0, 2.0), [[1.0, 0.0], [0.0, 2.0]])

    def test_scalar_expression_is_1d(self):
        q = sp.symbols("q0:2")
        f = generate_numpy_function(sp.sin(q[0]) * sp.cos(q[1]), q)
        out = f(np.pi / 2, 0.0)
        assert out.shape == (1,)
        assert out.dtype == np.float64
        np.testing.assert_allclose(out, [1.0])


# ============================================================================
# Rotations
# ============================================================================


class TestAxisAngleMatrix:
    """Test symbolic rotation matrices"""

    def test_rotation_about_z(self):
        theta = sp.Symbol("theta")
        R = axis_angle_matrix((0, 0, 1), theta).subs(theta, sp.pi / 2)
        np.testing.assert_allclose(
            np.array(R.evalf(), dtype=float),
            [[0, -1, 0], [1, 0, 0], [0, 0, 1]],
            atol=1e-12,
        )

    def test_axis_normalized(self):
        theta = sp.Symbol("theta")
        R = axis_angle_matrix((0, 0, 2), theta).subs(theta, 0.3)
        R = np.array(R.evalf(), dtype=float)
        np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)

    def test_zero_axis_rejected(self):
        with pytest.raises(ValueError, match="non-zero"):
            axis_angle_matrix((0, 0, 0), sp.Symbol("theta"))


# ============================================================================
# Chains
# ============================================================================


class TestChainKinematics:
    """Test compiled fingertip kinematics"""

    def test_expressions_shapes(self, planar_arm):
        q, position, jacobian = build_chain_expressions(planar_arm)
        assert len(q) == 2
        assert position.shape == (3, 1)
        assert jacobian.shape == (3, 2)

    def test_planar_straight_up(self, planar_arm):
        kin = compile_chain_kinematics(planar_arm)
        np.testing.assert_allclose(kin.position(np.zeros(2)), [0.0, -0.9, 0.74], atol=1e-12)

    def test_planar_horizontal(self, planar_arm):
        kin = compile_chain_kinematics(planar_arm)
        np.testing.assert_allclose(
            kin.position(np.array([np.pi / 2, 0.0])), [0.0, -1.64, 0.0], atol=1e-12,
        )

    def test_spatial_finger(self, spatial_finger):
        kin = compile_chain_kinematics(spatial_finger)
        np.testing.assert_allclose(
            kin.position(np.array([0.0, np.pi / 2])), [0.2, 0.0, 0.1], atol=1e-12,
        )
        np.testing.assert_allclose(
            kin.position(np.array([np.pi / 2, np.pi / 2])), [0.0, 0.2, 0.1], atol=1e-12,
        )

    @pytest.mark.parametrize("q", [[0.3, -0.7], [-0.775, -0.785], [1.2, 0.4]])
    def test_planar_jacobian_matches_finite_differences(self, planar_arm, q):
        kin = compile_chain_kinematics(planar_arm)
        q = np.array(q)
        J_fd = finite_difference_jacobian(kin.position, q)
        np.testing.assert_allclose(kin.jacobian(q), J_fd, atol=1e-6)

    def test_spatial_jacobian_matches_finite_differences(self, spatial_finger):
        kin = compile_chain_kinematics(spatial_finger)
        q = np.array([0.4, 0.9])
        J_fd = finite_difference_jacobian(kin.position, q)
        np.testing.assert_allclose(kin.jacobian(q), J_fd, atol=1e-6)

    def test_q_indices_select_from_full_configuration(self, planar_arm):
        kin = compile_chain_kinematics(planar_arm, robot_name="arm", q_indices=(2, 3))
        q_full = np.array([9.0, 9.0, 0.0, 0.0, 9.0])
        np.testing.assert_allclose(kin.position(q_full), [0.0, -0.9, 0.74], atol=1e-12)
        assert kin.jacobian(q_full).shape == (3, 2)
        assert kin.robot_name == "arm"
        assert kin.tip_radius == 0.05

    def test_q_indices_length_checked(self, planar_arm):
        with pytest.raises(ValueError, match="indices"):
            compile_chain_kinematics(planar_arm, q_indices=(0, 1, 2))
