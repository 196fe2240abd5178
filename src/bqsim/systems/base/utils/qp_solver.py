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
Quadratic Programs with Diagonal Hessian

The quasistatic step solves

    min_dq  ½ dqᵀ P dq - fᵀ dq    s.t.  A dq + b ≥ 0

with P diagonal positive definite. Its dual is a bound-constrained QP

    min_λ≥0  ½ λᵀ H λ + cᵀ λ,    H = A P⁻¹ Aᵀ,   c = A P⁻¹ f + b

solved as a non-negative least-squares problem with scipy.optimize.nnls
after a Cholesky factorization of H. The primal solution is recovered as
dq = P⁻¹ (f + Aᵀ λ).

nnls is deterministic: the same inputs always visit the same sequence of
active sets, which is what makes serial and threaded batch evaluation
agree bit for bit.
"""

from typing import NamedTuple, Optional

import numpy as np
import scipy.linalg
import scipy.optimize

DUAL_REGULARIZATION = 1e-10
"""Relative Tikhonov term added to H; friction rows are often linearly dependent."""

FEASIBILITY_TOLERANCE = 1e-6
"""Allowed violation of A dq + b ≥ 0 for a solution to count as valid."""


class DualQPSolution(NamedTuple):
    """
    Result of solve_dual_qp.

    Attributes
    ----------
    lam : np.ndarray
        Dual variables λ ≥ 0 (m,)
    converged : bool
        False if nnls hit its iteration cap
    iterations : int
        Number of nnls solves (0 or 1)
    """

    lam: np.ndarray
    converged: bool
    iterations: int


class QPSolution(NamedTuple):
    """Primal-dual solution of a diagonal-Hessian QP."""

    dq: np.ndarray
    lam: np.ndarray
    converged: bool
    feasible: bool
    iterations: int


def solve_dual_qp(
    H: np.ndarray,
    c: np.ndarray,
    max_iterations: Optional[int] = None,
) -> DualQPSolution:
    """
    Minimize ½ λᵀ H λ + cᵀ λ subject to λ ≥ 0.

    With H = L Lᵀ the objective equals ½ ‖Lᵀ λ + L⁻¹ c‖² up to a constant,
    so the problem is handed to scipy.optimize.nnls as

        min_λ≥0 ‖Lᵀ λ - (-L⁻¹ c)‖

    Parameters
    ----------
    H : np.ndarray
        Symmetric positive semidefinite (m, m). A small relative
        regularization is added internally.
    c : np.ndarray
        Linear term (m,)
    max_iterations : Optional[int]
        Iteration cap passed to nnls, default 3 m

    Returns
    -------
    DualQPSolution
        ``iterations`` is 0 when λ = 0 is optimal without solving and 1
        when nnls was called.

    Examples
    --------
    >>> H = np.eye(2)
    >>> c = np.array([-1.0, 2.0])
    >>> solve_dual_qp(H, c).lam
    array([1., 0.])
    """
    m = c.shape[0]
    # λ = 0 satisfies the KKT conditions whenever c ≥ 0.
    if m == 0 or np.all(c >= 0):
        return DualQPSolution(np.zeros(m), True, 0)

    scale = max(1.0, float(np.max(np.abs(np.diag(H)))))
    L = scipy.linalg.cholesky(H + DUAL_REGULARIZATION * scale * np.eye(m), lower=True)
    rhs = -scipy.linalg.solve_triangular(L, c, lower=True)
    try:
        lam, _ = scipy.optimize.nnls(L.T, rhs, maxiter=max_iterations)
    except RuntimeError:
        return DualQPSolution(np.zeros(m), False, 1)
    return DualQPSolution(lam, True, 1)


def solve_diagonal_qp(
    p_diag: np.ndarray,
    f: np.ndarray,
    A: np.ndarray,
    b: np.ndarray,
) -> QPSolution:
    """
    Solve min ½ dqᵀ diag(p) dq - fᵀ dq  s.t.  A dq + b ≥ 0.

    Parameters
    ----------
    p_diag : np.ndarray
        Positive diagonal of P (n,)
    f : np.ndarray
        Linear term (n,)
    A : np.ndarray
        Constraint matrix (m, n); m may be zero
    b : np.ndarray
        Constraint offsets (m,)

    Returns
    -------
    QPSolution
        ``feasible`` reports whether A dq + b ≥ -FEASIBILITY_TOLERANCE holds
        at the recovered primal solution.
    """
    p_inv = 1.0 / p_diag
    if A.shape[0] == 0:
        return QPSolution(p_inv * f, np.zeros(0), True, True, 0)

    A_scaled = A * p_inv[None, :]
    H = A_scaled @ A.T
    c = A_scaled @ f + b
    dual = solve_dual_qp(H, c)
    dq = p_inv * (f + A.T @ dual.lam)
    feasible = bool(np.all(A @ dq + b >= -FEASIBILITY_TOLERANCE))
    return QPSolution(dq, dual.lam, dual.converged, feasible, dual.iterations)


__all__ = [
    "DUAL_REGULARIZATION",
    "FEASIBILITY_TOLERANCE",
    "DualQPSolution",
    "QPSolution",
    "solve_dual_qp",
    "solve_diagonal_qp",
]
