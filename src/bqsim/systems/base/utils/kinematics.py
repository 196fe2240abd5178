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
Symbolic Forward Kinematics for Revolute Chains

Builds the fingertip position of a serial chain of revolute joints as a SymPy
expression, differentiates it symbolically, and compiles both to NumPy.

The chain is described in its own frame: joint k rotates about
``joint_axes[k]`` (expressed in the frame of link k-1), then the frame is
translated by ``link_offsets[k]`` (expressed in the rotated frame). The base
pose places the chain in the world:

    p_tip(q) = p_base + R_base Π_k (Rot(a_k, q_k) · Trans(o_k))

Compiled kinematics are immutable and thread-safe.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Sequence, Tuple

import numpy as np
import sympy as sp

from bqsim.systems.base.utils.codegen_utils import (
    generate_numpy_function,
    generate_numpy_matrix_function,
)

if TYPE_CHECKING:
    from bqsim.systems.base.model_description import KinematicChainSpec


def axis_angle_matrix(axis: Sequence[float], theta: sp.Expr) -> sp.Matrix:
    """
    Symbolic rotation matrix about a fixed numeric axis (Rodrigues formula).

    R = I + sin(θ) K + (1 - cos(θ)) K²,  K = [a]ₓ

    Parameters
    ----------
    axis : Sequence[float]
        Rotation axis (normalized internally)
    theta : sp.Expr
        Rotation angle

    Examples
    --------
    >>> q = sp.Symbol("q")
    >>> axis_angle_matrix((1, 0, 0), q)
    Matrix([
    [1,      0,       0],
    [0, cos(q), -sin(q)],
    [0, sin(q),  cos(q)]])
    """
    a = np.asarray(axis, dtype=np.float64)
    norm = np.linalg.norm(a)
    if norm == 0:
        raise ValueError("Joint axis must be non-zero")
    ax, ay, az = (sp.nsimplify(v) for v in a / norm)
    K = sp.Matrix([[0, -az, ay], [az, 0, -ax], [-ay, ax, 0]])
    return sp.eye(3) + sp.sin(theta) * K + (1 - sp.cos(theta)) * K * K


def build_chain_expressions(
    chain: "KinematicChainSpec",
) -> Tuple[Tuple[sp.Symbol, ...], sp.Matrix, sp.Matrix]:
    """
    Build symbolic fingertip position and its Jacobian.

    Returns
    -------
    q : Tuple[sp.Symbol, ...]
        Joint symbols q0..q{n-1}
    position : sp.Matrix
        (3, 1) fingertip center in world coordinates
    jacobian : sp.Matrix
        (3, n) ∂position/∂q
    """
    q = sp.symbols(f"q0:{chain.n_joints}", seq=True)
    R = sp.Matrix(chain.base_rotation)
    p = sp.Matrix(chain.base_position)
    for k, (axis, offset) in enumerate(zip(chain.joint_axes, chain.link_offsets)):
        R = R * axis_angle_matrix(axis, q[k])
        p = p + R * sp.Matrix(offset)
    return tuple(q), p, p.jacobian(q)


@dataclass(frozen=True)
class ChainKinematics:
    """
    Compiled kinematics of one fingertip chain.

    Attributes
    ----------
    robot_name : str
        Robot the chain belongs to
    q_indices : Tuple[int, ...]
        Positions of the chain's joints in the full configuration vector
    tip_radius : float
        Radius of the fingertip sphere
    position_fn : Callable
        q_chain -> (3,) fingertip center
    jacobian_fn : Callable
        q_chain -> (3, n_joints) ∂center/∂q_chain
    """

    robot_name: str
    q_indices: Tuple[int, ...]
    tip_radius: float
    position_fn: Callable[..., np.ndarray]
    jacobian_fn: Callable[..., np.ndarray]

    def position(self, q: np.ndarray) -> np.ndarray:
        """Fingertip center for the full configuration q."""
        return self.position_fn(*q[list(self.q_indices)])

    def jacobian(self, q: np.ndarray) -> np.ndarray:
        """Fingertip center Jacobian (3, n_joints) for the full configuration q."""
        return self.jacobian_fn(*q[list(self.q_indices)])


def compile_chain_kinematics(
    chain: "KinematicChainSpec",
    robot_name: str = "",
    q_indices: Sequence[int] = (),
) -> ChainKinematics:
    """
    Compile a chain's forward kinematics to NumPy.

    Parameters
    ----------
    chain : KinematicChainSpec
        Chain description
    robot_name : str
        Owning robot (diagnostics only)
    q_indices : Sequence[int]
        Indices of the chain's joints in the configuration vector. Defaults
        to 0..n_joints-1, i.e. a configuration holding only this chain.

    Examples
    --------
    >>> kin = compile_chain_kinematics(chain)
    >>> kin.position(np.zeros(chain.n_joints))
    array([...])
    """
    q, position, jacobian = build_chain_expressions(chain)
    if len(q_indices) == 0:
        q_indices = tuple(range(chain.n_joints))
    if len(q_indices) != chain.n_joints:
        raise ValueError(
            f"Chain has {chain.n_joints} joints but {len(q_indices)} indices were given",
        )
    return ChainKinematics(
        robot_name=robot_name,
        q_indices=tuple(int(i) for i in q_indices),
        tip_radius=float(chain.tip_radius),
        position_fn=generate_numpy_function(position, q),
        jacobian_fn=generate_numpy_matrix_function(jacobian, q),
    )


__all__ = [
    "axis_angle_matrix",
    "build_chain_expressions",
    "ChainKinematics",
    "compile_chain_kinematics",
]
