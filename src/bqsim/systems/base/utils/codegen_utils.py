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
NumPy code generation utilities.

Turns SymPy kinematic expressions into plain NumPy callables. The generated
functions hold no state, so a single compiled function can be shared by every
worker thread of a batch simulator.

Shape conventions:
- generate_numpy_function: always returns a 1D float64 array
- generate_numpy_matrix_function: always returns a 2D float64 array with the
  shape of the symbolic matrix
"""

from typing import Callable, Sequence, Union

import numpy as np
import sympy as sp


def _as_matrix(expr: Union[sp.Expr, Sequence[sp.Expr], sp.MatrixBase]) -> sp.Matrix:
    if isinstance(expr, sp.MatrixBase):
        return sp.Matrix(expr)
    if isinstance(expr, (list, tuple)):
        return sp.Matrix(expr)
    return sp.Matrix([expr])


def generate_numpy_function(
    expr: Union[sp.Expr, Sequence[sp.Expr], sp.MatrixBase],
    symbols: Sequence[sp.Symbol],
) -> Callable[..., np.ndarray]:
    """
    Generate a NumPy function from SymPy expression(s).

    Args:
        expr: SymPy expression, list, or Matrix
        symbols: Input symbols in order

    Returns:
        Function of len(symbols) scalar arguments returning a 1D array

    Return Type Convention:
        All functions return 1D arrays, even for scalar expressions:
        - Scalar expr: returns shape (1,)
        - Vector/Matrix expr: returns shape (n,), row-major flattened

    Example:
        >>> q = sp.symbols("q0:2")
        >>> f = generate_numpy_function([sp.cos(q[0]), sp.sin(q[0] + q[1])], q)
        >>> f(0.0, 0.0)
        array([1., 0.])
    """
    matrix = _as_matrix(expr)
    size = matrix.rows * matrix.cols
    func = sp.lambdify(list(symbols), matrix, modules="numpy")

    def wrapped_func(*args):
        return np.asarray(func(*args), dtype=np.float64).reshape(size)

    return wrapped_func


def generate_numpy_matrix_function(
    expr: sp.MatrixBase,
    symbols: Sequence[sp.Symbol],
) -> Callable[..., np.ndarray]:
    """
    Generate a NumPy function returning a matrix with the symbolic shape.

    Used for Jacobians, where the (rows, cols) layout matters.

    Example:
        >>> q = sp.symbols("q0:2")
        >>> p = sp.Matrix([sp.cos(q[0]) + sp.cos(q[0] + q[1])])
        >>> J = generate_numpy_matrix_function(p.jacobian(q), q)
        >>> J(0.0, 0.0).shape
        (1, 2)
    """
    matrix = _as_matrix(expr)
    shape = (matrix.rows, matrix.cols)
    func = sp.lambdify(list(symbols), matrix, modules="numpy")

    def wrapped_func(*args):
        return np.asarray(func(*args), dtype=np.float64).reshape(shape)

    return wrapped_func


__all__ = [
    "generate_numpy_function",
    "generate_numpy_matrix_function",
]
