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
Model Utilities
===============

Numerical building blocks of the reference step simulator.

>>> from bqsim.systems.base.utils import compute_contact_pairs, solve_diagonal_qp
"""

from .codegen_utils import generate_numpy_function, generate_numpy_matrix_function
from .contact_geometry import (
    ContactPair,
    compute_contact_pairs,
    object_point_jacobian,
    tangent_directions,
)
from .kinematics import (
    ChainKinematics,
    axis_angle_matrix,
    build_chain_expressions,
    compile_chain_kinematics,
)
from .qp_solver import (
    DUAL_REGULARIZATION,
    FEASIBILITY_TOLERANCE,
    DualQPSolution,
    QPSolution,
    solve_diagonal_qp,
    solve_dual_qp,
)

__all__ = [
    # Code generation
    "generate_numpy_function",
    "generate_numpy_matrix_function",
    # Kinematics
    "ChainKinematics",
    "axis_angle_matrix",
    "build_chain_expressions",
    "compile_chain_kinematics",
    # Contacts
    "ContactPair",
    "compute_contact_pairs",
    "object_point_jacobian",
    "tangent_directions",
    # QP
    "DUAL_REGULARIZATION",
    "FEASIBILITY_TOLERANCE",
    "DualQPSolution",
    "QPSolution",
    "solve_diagonal_qp",
    "solve_dual_qp",
]
