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
Planar Hand - Two 2-Link Arms Holding a Sphere in the y-z Plane

    Scene:
    -----
    Two position-controlled arms mounted at (y, z) = (∓0.9, 0) squeeze a
    sphere of radius 0.25 m from both sides against gravity. Every joint
    rotates about the world x axis; a link of length l at cumulative angle φ
    contributes (-l sin φ, l cos φ) to the (y, z) position of its end.

    Configuration:
    -------------
    q = [q_left (2), q_right (2), y, z, θ]  (nq = 7, nu = 4)

    Nominal configuration:
    ---------------------
    sphere (0, 0.316, 0), arm_left (-0.775, -0.785), arm_right (0.775, 0.785).
    Both fingertips overlap the sphere by about 8 mm there, so both contacts
    are active and the grasp supports the sphere's weight.

Examples
--------
>>> model = create_planar_hand_model()
>>> model.nq, model.nu
(7, 4)
"""

from typing import Dict, Optional, Sequence

import numpy as np

from bqsim.systems.base.model_description import (
    QuasistaticModelDescription,
    RobotSpec,
    SceneSpec,
    SphereObjectSpec,
    make_model_description,
    planar_chain,
)
from bqsim.types.simulation import QuasistaticSimParameters

ARM_LEFT = "arm_left"
ARM_RIGHT = "arm_right"
SPHERE = "sphere"

PLANAR_HAND_LINK_LENGTHS = (0.44, 0.3)
PLANAR_HAND_TIP_RADIUS = 0.05
PLANAR_HAND_BASE_OFFSET = 0.9
PLANAR_HAND_STIFFNESS = (50.0, 25.0)

PLANAR_HAND_Q0_DICT: Dict[str, np.ndarray] = {
    SPHERE: np.array([0.0, 0.316, 0.0]),
    ARM_LEFT: np.array([-0.775, -0.785]),
    ARM_RIGHT: np.array([0.775, 0.785]),
}
"""Nominal grasp used by the batch and bundling benchmarks."""


def create_planar_hand_scene(
    link_lengths: Sequence[float] = PLANAR_HAND_LINK_LENGTHS,
    base_offset: float = PLANAR_HAND_BASE_OFFSET,
    tip_radius: float = PLANAR_HAND_TIP_RADIUS,
    ground_height: Optional[float] = None,
) -> SceneSpec:
    """Two mirrored planar arms with bases at y = ∓base_offset, z = 0."""
    left = RobotSpec(
        name=ARM_LEFT,
        chains=(planar_chain(link_lengths, (0.0, -base_offset, 0.0), tip_radius),),
    )
    right = RobotSpec(
        name=ARM_RIGHT,
        chains=(planar_chain(link_lengths, (0.0, base_offset, 0.0), tip_radius),),
    )
    return SceneSpec(dimension=2, robots=(left, right), ground_height=ground_height, name="planar_hand")


def create_planar_hand_model(
    stiffness: Sequence[float] = PLANAR_HAND_STIFFNESS,
    sphere_radius: float = 0.25,
    sphere_mass: float = 0.1,
    friction_coefficient: float = 1.0,
    sim_params: Optional[QuasistaticSimParameters] = None,
    ground_height: Optional[float] = None,
) -> QuasistaticModelDescription:
    """
    Planar hand model.

    Parameters
    ----------
    stiffness : Sequence[float]
        Joint stiffness of each arm, default (50, 25)
    sphere_radius, sphere_mass, friction_coefficient : float
        Sphere properties
    sim_params : Optional[QuasistaticSimParameters]
        Default: gravity (0, 0, -10), 2 friction directions, detection
        tolerance 1.0, quasi-dynamic, gradient from active constraints
    ground_height : Optional[float]
        Adds a ground plane when set

    Returns
    -------
    QuasistaticModelDescription
    """
    if sim_params is None:
        sim_params = QuasistaticSimParameters(
            gravity=(0.0, 0.0, -10.0),
            nd_per_contact=2,
            contact_detection_tolerance=1.0,
            is_quasi_dynamic=True,
            gradient_from_active_constraints=True,
        )
    return make_model_description(
        scene=create_planar_hand_scene(ground_height=ground_height),
        robot_stiffness={ARM_LEFT: stiffness, ARM_RIGHT: stiffness},
        object_geometry={
            SPHERE: SphereObjectSpec(
                radius=sphere_radius,
                mass=sphere_mass,
                friction_coefficient=friction_coefficient,
            ),
        },
        sim_params=sim_params,
    )


__all__ = [
    "ARM_LEFT",
    "ARM_RIGHT",
    "SPHERE",
    "PLANAR_HAND_Q0_DICT",
    "create_planar_hand_scene",
    "create_planar_hand_model",
]
