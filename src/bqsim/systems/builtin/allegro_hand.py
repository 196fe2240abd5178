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
Allegro Hand - 16-Joint Four-Finger Hand Around a Sphere

    Scene:
    -----
    One robot ('allegro_hand_right') with four 4-joint fingers (index,
    middle, ring, thumb) holding a sphere of radius 0.06 m. Gravity is off.

    Finger kinematics use Allegro-like link lengths. The finger bases are not
    taken from a hand model; they are placed so that at the nominal joint
    configuration each fingertip overlaps the sphere by
    ALLEGRO_TIP_PENETRATION along a fixed approach direction. This keeps all
    four contacts inside the detection tolerance for perturbations of about
    0.1 rad.

    Configuration:
    -------------
    q = [q_index (4), q_middle (4), q_ring (4), q_thumb (4),
         x, y, z, rx, ry, rz]                      (nq = 22, nu = 16)

Examples
--------
>>> model = create_allegro_hand_model()
>>> model.nq, model.nu
(22, 16)
"""

from typing import Dict, Optional, Tuple

import numpy as np
from scipy.spatial.transform import Rotation

from bqsim.systems.base.model_description import (
    KinematicChainSpec,
    QuasistaticModelDescription,
    RobotSpec,
    SceneSpec,
    SphereObjectSpec,
    make_model_description,
)
from bqsim.systems.base.utils.kinematics import compile_chain_kinematics
from bqsim.types.simulation import QuasistaticSimParameters

ALLEGRO_HAND = "allegro_hand_right"
SPHERE = "sphere"

ALLEGRO_SPHERE_RADIUS = 0.06
ALLEGRO_TIP_RADIUS = 0.012
ALLEGRO_TIP_PENETRATION = 0.002
ALLEGRO_STIFFNESS = 100.0

# Object pose as (qw, qx, qy, qz, x, y, z).
_SPHERE_POSE0 = np.array(
    [0.96040786, 0.07943188, 0.26694634, 0.00685272, -0.08083068, 0.00117524, 0.0711],
)

ALLEGRO_Q_A0 = np.array(
    [
        0.03501504, 0.75276565, 0.74146232, 0.83261002,
        0.63256269, 1.02378254, 0.64089555, 0.82444782,
        -0.1438725, 0.74696812, 0.61908827, 0.70064279,
        -0.06922541, 0.78533142, 0.82942863, 0.90415436,
    ],
)

_FINGER_AXES = ((0.0, 0.0, 1.0), (0.0, 1.0, 0.0), (0.0, 1.0, 0.0), (0.0, 1.0, 0.0))
_FINGER_OFFSETS = ((0.0, 0.0, 0.0164), (0.0, 0.0, 0.054), (0.0, 0.0, 0.0384), (0.0, 0.0, 0.0267))
_THUMB_AXES = ((1.0, 0.0, 0.0), (0.0, 0.0, 1.0), (0.0, 1.0, 0.0), (0.0, 1.0, 0.0))
_THUMB_OFFSETS = ((0.0, 0.0, 0.0177), (0.0, 0.0, 0.0514), (0.0, 0.0, 0.0423), (0.0, 0.0, 0.0413))

# (name, joint axes, link offsets, base rotation, approach direction)
_FINGERS = (
    ("index", _FINGER_AXES, _FINGER_OFFSETS, np.eye(3), (0.6, 0.6, 0.5)),
    ("middle", _FINGER_AXES, _FINGER_OFFSETS, np.eye(3), (0.8, 0.0, 0.6)),
    ("ring", _FINGER_AXES, _FINGER_OFFSETS, np.eye(3), (0.6, -0.6, 0.5)),
    (
        "thumb",
        _THUMB_AXES,
        _THUMB_OFFSETS,
        Rotation.from_euler("z", 180.0, degrees=True).as_matrix(),
        (-0.9, 0.0, 0.3),
    ),
)


def sphere_pose_to_configuration(pose: np.ndarray) -> np.ndarray:
    """
    Convert (qw, qx, qy, qz, x, y, z) to the object coordinates
    (x, y, z, rx, ry, rz) with a rotation-vector orientation.
    """
    pose = np.asarray(pose, dtype=np.float64)
    qw, qx, qy, qz = pose[:4]
    rotvec = Rotation.from_quat([qx, qy, qz, qw]).as_rotvec()
    return np.concatenate([pose[4:7], rotvec])


ALLEGRO_Q0_DICT: Dict[str, np.ndarray] = {
    SPHERE: sphere_pose_to_configuration(_SPHERE_POSE0),
    ALLEGRO_HAND: ALLEGRO_Q_A0.copy(),
}
"""Nominal grasp used by the batch benchmarks."""


def _calibrated_base(
    axes,
    offsets,
    rotation: np.ndarray,
    q_finger: np.ndarray,
    target: np.ndarray,
) -> Tuple[float, float, float]:
    # Fingertip offset from the base at q_finger, for a base at the origin.
    local = KinematicChainSpec(
        joint_axes=axes,
        link_offsets=offsets,
        base_rotation=rotation,
        tip_radius=ALLEGRO_TIP_RADIUS,
    )
    tip = compile_chain_kinematics(local).position(q_finger)
    return tuple(target - tip)


def create_allegro_hand_scene(
    sphere_center: Optional[np.ndarray] = None,
    sphere_radius: float = ALLEGRO_SPHERE_RADIUS,
    penetration: float = ALLEGRO_TIP_PENETRATION,
) -> SceneSpec:
    """
    Four fingers whose tips touch a sphere at the nominal joint
    configuration.

    Parameters
    ----------
    sphere_center : Optional[np.ndarray]
        Sphere center the fingers are calibrated against, default the
        nominal object position
    sphere_radius : float
        Sphere radius
    penetration : float
        Fingertip overlap with the sphere at the nominal configuration
    """
    if sphere_center is None:
        sphere_center = ALLEGRO_Q0_DICT[SPHERE][:3]
    center = np.asarray(sphere_center, dtype=np.float64)

    chains = []
    for k, (name, axes, offsets, rotation, approach) in enumerate(_FINGERS):
        direction = np.asarray(approach, dtype=np.float64)
        direction /= np.linalg.norm(direction)
        target = center + (sphere_radius + ALLEGRO_TIP_RADIUS - penetration) * direction
        q_finger = ALLEGRO_Q_A0[4 * k:4 * k + 4]
        chains.append(
            KinematicChainSpec(
                joint_axes=axes,
                link_offsets=offsets,
                base_position=_calibrated_base(axes, offsets, rotation, q_finger, target),
                base_rotation=rotation,
                tip_radius=ALLEGRO_TIP_RADIUS,
            ),
        )

    return SceneSpec(
        dimension=3,
        robots=(RobotSpec(name=ALLEGRO_HAND, chains=tuple(chains)),),
        name="allegro_hand",
    )


def create_allegro_hand_model(
    stiffness: float = ALLEGRO_STIFFNESS,
    sphere_mass: float = 0.1,
    friction_coefficient: float = 1.0,
    sim_params: Optional[QuasistaticSimParameters] = None,
) -> QuasistaticModelDescription:
    """
    Allegro hand model.

    Default parameters: zero gravity, 4 friction directions, detection
    tolerance 0.025, quasi-dynamic, gradient from active constraints, Kp =
    100 on every joint.
    """
    if sim_params is None:
        sim_params = QuasistaticSimParameters(
            gravity=(0.0, 0.0, 0.0),
            nd_per_contact=4,
            contact_detection_tolerance=0.025,
            is_quasi_dynamic=True,
            gradient_from_active_constraints=True,
        )
    return make_model_description(
        scene=create_allegro_hand_scene(),
        robot_stiffness={ALLEGRO_HAND: np.full(16, float(stiffness))},
        object_geometry={
            SPHERE: SphereObjectSpec(
                radius=ALLEGRO_SPHERE_RADIUS,
                mass=sphere_mass,
                friction_coefficient=friction_coefficient,
            ),
        },
        sim_params=sim_params,
    )


__all__ = [
    "ALLEGRO_HAND",
    "SPHERE",
    "ALLEGRO_Q_A0",
    "ALLEGRO_Q0_DICT",
    "sphere_pose_to_configuration",
    "create_allegro_hand_scene",
    "create_allegro_hand_model",
]
