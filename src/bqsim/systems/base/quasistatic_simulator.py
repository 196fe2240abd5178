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
Quasistatic Simulator - Reference Step Simulator for Sphere Scenes

Implements the StepSimulator contract for scenes made of position-controlled
fingertip chains and spherical objects.

Step Formulation
----------------
With dq = q_next - q, one step solves the QP

    min_dq  ½ dqᵀ P dq - fᵀ dq
    s.t.    φᵢ + (J_n,ᵢ + μᵢ J_t,ᵢⱼ) dq ≥ 0     for every contact i, direction j

where
- P = blockdiag(Kp, M_u / h²) in quasi-dynamic mode, or
  blockdiag(Kp, εI) otherwise (objects then need contacts to be in balance)
- f = [Kp (u - q_a), m g, 0]  (joint springs toward the command, gravity)

The friction cone is the polyhedral relaxation with nd_per_contact
directions. The QP is solved through its dual (see qp_solver).

Gradient
--------
B = ∂q_next/∂u follows from differentiating the KKT conditions with the
constraints whose multiplier exceeds the active threshold held as
equalities:

    dq_u = P⁻¹ (∂f/∂u + A_Sᵀ dλ),    (A_S P⁻¹ A_Sᵀ) dλ = -A_S P⁻¹ ∂f/∂u

With gradient_from_active_constraints disabled every constraint in the QP
is held, whatever its multiplier.

Validity
--------
A step is valid when the dual solver converged, the recovered primal point
is feasible, and the result is finite. Invalid steps are reported, never
raised.

Examples
--------
>>> model = create_planar_hand_model()
>>> q_sim = QuasistaticSimulator(model)
>>> q0 = q_sim.get_q_vec_from_dict(PLANAR_HAND_Q0_DICT)
>>> u0 = q_sim.get_qa_cmd_vec_from_dict(PLANAR_HAND_Q0_DICT)
>>> x_next, B, is_valid = q_sim.step(q0, u0, 0.1, GradientMode.B_ONLY)
"""

import time
from typing import Optional, Tuple, Union

import numpy as np
import scipy.linalg

from bqsim.systems.base.model_description import QuasistaticModelDescription
from bqsim.systems.base.step_simulator import StepSimulator
from bqsim.systems.base.utils.contact_geometry import ContactPair, compute_contact_pairs
from bqsim.systems.base.utils.qp_solver import solve_diagonal_qp
from bqsim.types.batch_results import SolveInfo, StepResult
from bqsim.types.core import ConfigurationDict, ControlVector, InputMatrix, SolverHints, StateVector
from bqsim.types.simulation import (
    DEFAULT_ACTIVE_THRESHOLD,
    GradientMode,
    validate_time_step,
)
from bqsim.types.utilities import ExecutionStats

UNACTUATED_REGULARIZATION = 1e-6
"""Diagonal weight on object coordinates when quasi-dynamic mode is off."""

_HINT_KEYS = ("active_threshold",)


class QuasistaticSimulator(StepSimulator):
    """
    Stateful single-step solver for one model description.

    The model is shared and never mutated. Each instance keeps private
    scratch state (call counters and the diagnostics of its last solve),
    which is overwritten by every step and never influences results, so any
    number of instances built from one model produce identical outputs.

    Attributes
    ----------
    model : QuasistaticModelDescription
        Shared immutable model

    Examples
    --------
    >>> q_sim = QuasistaticSimulator(model)
    >>> result = q_sim.step(q0, u0, h=0.1)
    >>> result.is_valid
    True
    """

    def __init__(self, model: QuasistaticModelDescription):
        self.model = model
        self._kp = model.stiffness_vector()
        self._mass_translational, self._mass_rotational = self._object_masses()

        self._stats = {
            "calls": 0,
            "failures": 0,
            "time": 0.0,
        }
        self._last_solve_info: Optional[SolveInfo] = None

    def _object_masses(self) -> Tuple[np.ndarray, np.ndarray]:
        specs = list(self.model.object_geometry.values())
        mass = np.array([spec.mass for spec in specs], dtype=np.float64)
        inertia = np.array([spec.rotational_inertia for spec in specs], dtype=np.float64)
        return mass, inertia

    # ========================================================================
    # Dimensions
    # ========================================================================

    @property
    def nq(self) -> int:
        return self.model.nq

    @property
    def nu(self) -> int:
        return self.model.nu

    def num_positions(self) -> int:
        """Configuration dimension (alias of nq)."""
        return self.model.nq

    def num_actuated_dofs(self) -> int:
        """Number of actuated joints (alias of nu)."""
        return self.model.nu

    def get_model(self) -> QuasistaticModelDescription:
        return self.model

    # ========================================================================
    # Configuration Helpers
    # ========================================================================

    def get_model_instance_names(self) -> Tuple[str, ...]:
        """Instance names in configuration order (robots, then objects)."""
        return self.model.model_instance_names

    def get_q_vec_from_dict(self, q_dict: ConfigurationDict) -> StateVector:
        """
        Assemble a configuration vector from per-instance coordinates.

        Raises:
            KeyError: If an instance is missing
            ValueError: If an entry has the wrong length
        """
        q = np.zeros(self.nq)
        for name, sl in self.model.get_instance_slices().items():
            if name not in q_dict:
                raise KeyError(f"Configuration for '{name}' is missing")
            values = np.asarray(q_dict[name], dtype=np.float64).ravel()
            if values.shape[0] != sl.stop - sl.start:
                raise ValueError(
                    f"'{name}' expects {sl.stop - sl.start} coordinates, got {values.shape[0]}",
                )
            q[sl] = values
        return q

    def get_q_dict_from_vec(self, q: StateVector) -> ConfigurationDict:
        """Split a configuration vector into per-instance coordinates."""
        q = np.asarray(q, dtype=np.float64).ravel()
        if q.shape[0] != self.nq:
            raise ValueError(f"Expected configuration of length {self.nq}, got {q.shape[0]}")
        return {name: q[sl].copy() for name, sl in self.model.get_instance_slices().items()}

    def get_qa_cmd_vec_from_dict(self, q_dict: ConfigurationDict) -> ControlVector:
        """
        Control vector that commands every robot to hold the given joint
        positions.
        """
        slices = self.model.get_instance_slices()
        u = np.zeros(self.nu)
        for name in self.model.robot_names:
            if name not in q_dict:
                raise KeyError(f"Configuration for '{name}' is missing")
            u[slices[name]] = np.asarray(q_dict[name], dtype=np.float64).ravel()
        return u

    # ========================================================================
    # Step
    # ========================================================================

    def validate_hints(self, hints: SolverHints) -> None:
        """
        Accepts ``{"active_threshold": float >= 0}``.

        Raises:
            ValueError: On unknown keys or a negative/non-finite threshold
        """
        if not hints:
            return
        unknown = sorted(set(hints) - set(_HINT_KEYS))
        if unknown:
            raise ValueError(f"Unknown solver hints {unknown}. Supported: {list(_HINT_KEYS)}")
        value = hints["active_threshold"]
        try:
            threshold = float(value)
        except (TypeError, ValueError):
            raise ValueError(f"active_threshold must be a number, got {value!r}") from None
        if not np.isfinite(threshold) or threshold < 0:
            raise ValueError(f"active_threshold must be finite and >= 0, got {threshold}")

    def step(
        self,
        x: StateVector,
        u: ControlVector,
        h: float,
        gradient_mode: Union[GradientMode, str] = GradientMode.NONE,
        hints: SolverHints = None,
    ) -> StepResult:
        """
        Advance one quasistatic step.

        Args:
            x: Configuration (nq,)
            u: Commanded joint positions (nu,)
            h: Step size (s)
            gradient_mode: NONE or B_ONLY
            hints: Optional {"active_threshold": float}

        Returns:
            StepResult(x_next, B, is_valid). B is None for NONE; for an
            invalid step it is NaN-filled.

        Raises:
            ValueError: On malformed inputs (wrong shapes, h <= 0,
                unsupported gradient mode, bad hints)
        """
        start_time = time.time()
        mode = self.check_gradient_mode(gradient_mode)
        h = validate_time_step(h)
        x = np.asarray(x, dtype=np.float64).ravel()
        u = np.asarray(u, dtype=np.float64).ravel()
        if x.shape[0] != self.nq:
            raise ValueError(f"Expected state dimension {self.nq}, got {x.shape[0]}")
        if u.shape[0] != self.nu:
            raise ValueError(f"Expected control dimension {self.nu}, got {u.shape[0]}")
        self.validate_hints(hints)

        threshold = DEFAULT_ACTIVE_THRESHOLD
        if hints and "active_threshold" in hints:
            threshold = float(hints["active_threshold"])

        result = self._solve(x, u, h, mode, threshold)

        self._stats["calls"] += 1
        if not result.is_valid:
            self._stats["failures"] += 1
        self._stats["time"] += time.time() - start_time
        return result

    def _solve(
        self,
        x: np.ndarray,
        u: np.ndarray,
        h: float,
        mode: GradientMode,
        threshold: float,
    ) -> StepResult:
        pairs = compute_contact_pairs(self.model, x)
        A, b = self._constraints(pairs)
        p_diag = self._hessian_diagonal(h)
        f = self._force_vector(x, u)

        solution = solve_diagonal_qp(p_diag, f, A, b)
        x_next = x + solution.dq
        is_valid = bool(solution.converged and solution.feasible and np.all(np.isfinite(x_next)))

        active = solution.lam > threshold
        self._last_solve_info = {
            "n_contacts": len(pairs),
            "n_constraints": int(A.shape[0]),
            "n_active": int(np.count_nonzero(active)),
            "iterations": solution.iterations,
            "converged": solution.converged,
        }

        B = None
        if mode.computes_b:
            if is_valid:
                held = active if self.model.sim_params.gradient_from_active_constraints else slice(None)
                B = self._gradient_b(p_diag, A[held])
            else:
                B = np.full((self.nq, self.nu), np.nan)
        return StepResult(x_next, B, is_valid)

    def _constraints(self, pairs) -> Tuple[np.ndarray, np.ndarray]:
        if not pairs:
            return np.zeros((0, self.nq)), np.zeros(0)
        nd = self.model.sim_params.nd_per_contact
        A = np.vstack([pair.constraint_rows() for pair in pairs])
        b = np.repeat([pair.phi for pair in pairs], nd)
        return A, b

    def _hessian_diagonal(self, h: float) -> np.ndarray:
        p = np.empty(self.nq)
        p[: self.nu] = self._kp
        dim = self.model.translation_dofs
        n_obj = self.model.object_dofs
        for k, start in enumerate(range(self.nu, self.nq, n_obj)):
            if self.model.sim_params.is_quasi_dynamic:
                p[start:start + dim] = self._mass_translational[k] / h**2
                p[start + dim:start + n_obj] = self._mass_rotational[k] / h**2
            else:
                p[start:start + n_obj] = UNACTUATED_REGULARIZATION
        return p

    def _force_vector(self, x: np.ndarray, u: np.ndarray) -> np.ndarray:
        f = np.zeros(self.nq)
        f[: self.nu] = self._kp * (u - x[: self.nu])
        gravity = self.model.gravity_vector()
        dim = self.model.translation_dofs
        for k, start in enumerate(range(self.nu, self.nq, self.model.object_dofs)):
            f[start:start + dim] = self._mass_translational[k] * gravity
        return f

    def _gradient_b(self, p_diag: np.ndarray, A_active: np.ndarray) -> InputMatrix:
        p_inv = 1.0 / p_diag
        dfdu = np.zeros((self.nq, self.nu))
        dfdu[: self.nu, :] = np.diag(self._kp)
        dq_free = p_inv[:, None] * dfdu
        if A_active.shape[0] == 0:
            return dq_free

        M = (A_active * p_inv[None, :]) @ A_active.T
        dlam = scipy.linalg.lstsq(M, -A_active @ dq_free)[0]
        return dq_free + p_inv[:, None] * (A_active.T @ dlam)

    # ========================================================================
    # Diagnostics
    # ========================================================================

    def get_last_solve_info(self) -> Optional[SolveInfo]:
        """Diagnostics of the most recent step, None before the first step."""
        return self._last_solve_info

    def get_contact_pairs(self, q: StateVector) -> Tuple[ContactPair, ...]:
        """Contact pairs within the detection tolerance at configuration q."""
        return tuple(compute_contact_pairs(self.model, np.asarray(q, dtype=np.float64).ravel()))

    def get_stats(self) -> ExecutionStats:
        """
        Get performance statistics.

        Returns:
            ExecutionStats
                Call count and timing of step()
        """
        return {
            "calls": self._stats["calls"],
            "total_time": self._stats["time"],
            "avg_time": self._stats["time"] / max(1, self._stats["calls"]),
        }

    def get_failure_count(self) -> int:
        """Number of invalid steps since construction or the last reset."""
        return self._stats["failures"]

    def reset_stats(self):
        """Reset performance counters."""
        self._stats["calls"] = 0
        self._stats["failures"] = 0
        self._stats["time"] = 0.0

    def __repr__(self) -> str:
        return (
            f"QuasistaticSimulator(nq={self.nq}, nu={self.nu}, "
            f"calls={self._stats['calls']})"
        )


def quasistatic_simulator_factory(model: QuasistaticModelDescription):
    """
    StepSimulatorFactory producing QuasistaticSimulator instances that share
    one model.

    Examples
    --------
    >>> factory = quasistatic_simulator_factory(model)
    >>> sims = [factory() for _ in range(4)]
    >>> all(sim.model is model for sim in sims)
    True
    """

    def factory() -> QuasistaticSimulator:
        return QuasistaticSimulator(model)

    return factory


__all__ = [
    "UNACTUATED_REGULARIZATION",
    "QuasistaticSimulator",
    "quasistatic_simulator_factory",
]
