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
Step Simulator Interface

Abstract contract of the single-step quasistatic solver consumed by the batch
layer:

    step(x, u, h, gradient_mode, hints) -> StepResult(x_next, B, is_valid)

A step simulator must be a deterministic function of its inputs and its fixed
model. Instances may keep private scratch state (diagnostics, counters), so
the batch layer never shares one instance between threads; it builds one
instance per worker through a StepSimulatorFactory.

Per-task infeasibility is reported through ``is_valid = False``. Raising
SolverFailure is also accepted; anything else is treated as a bug.
"""

from abc import ABC, abstractmethod
from typing import Callable, Tuple, Union

from bqsim.types.batch_results import StepResult
from bqsim.types.core import ControlVector, SolverHints, StateVector
from bqsim.types.simulation import GradientMode, validate_gradient_mode


class StepSimulator(ABC):
    """
    Abstract base class for single-step contact dynamics.

    Subclasses implement:
    - nq, nu: model dimensions
    - step(): one quasistatic step

    and may override:
    - supported_gradient_modes
    - validate_hints()

    Examples
    --------
    >>> class Drift(StepSimulator):
    ...     nq, nu = 2, 2
    ...     def step(self, x, u, h, gradient_mode=GradientMode.NONE, hints=None):
    ...         B = h * np.eye(2) if gradient_mode.computes_b else None
    ...         return StepResult(x + h * u, B, True)
    """

    supported_gradient_modes: Tuple[GradientMode, ...] = (GradientMode.NONE, GradientMode.B_ONLY)

    @property
    @abstractmethod
    def nq(self) -> int:
        """Configuration dimension."""
        pass

    @property
    @abstractmethod
    def nu(self) -> int:
        """Control dimension."""
        pass

    @abstractmethod
    def step(
        self,
        x: StateVector,
        u: ControlVector,
        h: float,
        gradient_mode: GradientMode = GradientMode.NONE,
        hints: SolverHints = None,
    ) -> StepResult:
        """
        Advance one quasistatic step.

        Args:
            x: Configuration (nq,)
            u: Commanded joint positions (nu,)
            h: Step size
            gradient_mode: Sensitivities to compute
            hints: Solver-specific active-constraint hints

        Returns:
            StepResult with B present iff gradient_mode computes it
        """
        pass

    def check_gradient_mode(self, gradient_mode: Union[GradientMode, str]) -> GradientMode:
        """
        Normalize a gradient mode and reject modes this simulator cannot
        compute.

        Raises:
            ValueError: If the mode is unknown or unsupported
        """
        mode = validate_gradient_mode(gradient_mode)
        if mode not in self.supported_gradient_modes:
            supported = [m.value for m in self.supported_gradient_modes]
            raise ValueError(
                f"{self.__class__.__name__} does not support gradient mode "
                f"'{mode.value}'. Supported: {supported}",
            )
        return mode

    def validate_hints(self, hints: SolverHints) -> None:
        """
        Reject hints this simulator does not understand.

        The default accepts only None or an empty mapping.
        """
        if hints:
            raise ValueError(
                f"{self.__class__.__name__} accepts no solver hints, got {sorted(hints)}",
            )


StepSimulatorFactory = Callable[[], StepSimulator]
"""
Zero-argument callable producing a fresh, independent StepSimulator.

Called once for the serial simulator and once per parallel worker.

Examples
--------
>>> factory: StepSimulatorFactory = lambda: QuasistaticSimulator(model)
"""


__all__ = [
    "StepSimulator",
    "StepSimulatorFactory",
]
