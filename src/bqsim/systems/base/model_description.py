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
Quasistatic Model Description

Immutable description of a manipulation scene, shared read-only by every
step simulator of a batch engine.

A model is assembled from four parts:
- SceneSpec: robots as kinematic chains ending in fingertip spheres, the scene
  dimension (planar y-z or spatial) and an optional ground plane
- robot_stiffness: robot name -> joint stiffness vector Kp
- object_geometry: object name -> SphereObjectSpec
- sim_params: QuasistaticSimParameters

Configuration layout
--------------------
Robots come first in scene order, then objects in insertion order:

    q = [q_robot_0, q_robot_1, ..., q_object_0, q_object_1, ...]

A planar object has coordinates (y, z, θ); a spatial object has
(x, y, z, rx, ry, rz) where (rx, ry, rz) is a rotation vector updated
additively. The control vector u holds commanded joint positions for all
robots in the same order, so u and the robot block of q have equal length.

Examples
--------
>>> model = QuasistaticModelDescription(
...     scene=scene,
...     robot_stiffness={"arm_left": [50.0, 25.0], "arm_right": [50.0, 25.0]},
...     object_geometry={"sphere": SphereObjectSpec(radius=0.25, mass=0.1)},
...     sim_params=QuasistaticSimParameters(gravity=(0, 0, -10), nd_per_contact=2),
... )
>>> model.nq, model.nu
(7, 4)
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from bqsim.systems.base.utils.kinematics import ChainKinematics, compile_chain_kinematics
from bqsim.types.core import ArrayLike
from bqsim.types.simulation import ModelDescriptionError, QuasistaticSimParameters

# ============================================================================
# Geometry Specifications
# ============================================================================


def _as_vector3(value, name: str) -> Tuple[float, float, float]:
    arr = np.asarray(value, dtype=np.float64).ravel()
    if arr.shape != (3,):
        raise ModelDescriptionError(f"{name} must have 3 components, got shape {arr.shape}")
    return tuple(float(v) for v in arr)


@dataclass(frozen=True)
class SphereObjectSpec:
    """
    Geometry source of an unactuated spherical object.

    Attributes
    ----------
    radius : float
        Sphere radius (m)
    mass : float
        Mass (kg). The rotational inertia is that of a solid sphere.
    friction_coefficient : float
        Coulomb friction coefficient used for every contact with this object
    """

    radius: float
    mass: float
    friction_coefficient: float = 1.0

    def __post_init__(self):
        if not self.radius > 0:
            raise ModelDescriptionError(f"radius must be positive, got {self.radius}")
        if not self.mass > 0:
            raise ModelDescriptionError(f"mass must be positive, got {self.mass}")
        if self.friction_coefficient < 0:
            raise ModelDescriptionError(
                f"friction_coefficient must be non-negative, got {self.friction_coefficient}",
            )

    @property
    def rotational_inertia(self) -> float:
        """Moment of inertia of a solid sphere, 2/5 m r²."""
        return 0.4 * self.mass * self.radius**2


@dataclass(frozen=True)
class KinematicChainSpec:
    """
    Serial chain of revolute joints ending in a fingertip sphere.

    Attributes
    ----------
    joint_axes : Tuple[Tuple[float, float, float], ...]
        Axis of each joint in the frame of the preceding link
    link_offsets : Tuple[Tuple[float, float, float], ...]
        Translation applied after each joint, in that joint's frame
    base_position : Tuple[float, float, float]
        Chain base in world coordinates
    base_rotation : Tuple[Tuple[float, ...], ...]
        3x3 rotation of the chain base (row-major), identity by default
    tip_radius : float
        Radius of the fingertip sphere attached to the last link
    """

    joint_axes: Tuple[Tuple[float, float, float], ...]
    link_offsets: Tuple[Tuple[float, float, float], ...]
    base_position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    base_rotation: Optional[Tuple[Tuple[float, float, float], ...]] = None
    tip_radius: float = 0.02

    def __post_init__(self):
        axes = tuple(_as_vector3(a, "joint axis") for a in self.joint_axes)
        offsets = tuple(_as_vector3(o, "link offset") for o in self.link_offsets)
        if len(axes) == 0:
            raise ModelDescriptionError("A kinematic chain needs at least one joint")
        if len(axes) != len(offsets):
            raise ModelDescriptionError(
                f"joint_axes ({len(axes)}) and link_offsets ({len(offsets)}) "
                f"must have equal length",
            )
        if any(np.linalg.norm(a) == 0 for a in axes):
            raise ModelDescriptionError("Joint axes must be non-zero")

        rotation = np.eye(3) if self.base_rotation is None else np.asarray(self.base_rotation, dtype=np.float64)
        if rotation.shape != (3, 3):
            raise ModelDescriptionError(f"base_rotation must be 3x3, got {rotation.shape}")
        if not np.allclose(rotation @ rotation.T, np.eye(3), atol=1e-9):
            raise ModelDescriptionError("base_rotation must be orthonormal")
        if not self.tip_radius > 0:
            raise ModelDescriptionError(f"tip_radius must be positive, got {self.tip_radius}")

        object.__setattr__(self, "joint_axes", axes)
        object.__setattr__(self, "link_offsets", offsets)
        object.__setattr__(self, "base_position", _as_vector3(self.base_position, "base_position"))
        object.__setattr__(self, "base_rotation", tuple(tuple(float(v) for v in row) for row in rotation))
        object.__setattr__(self, "tip_radius", float(self.tip_radius))

    @property
    def n_joints(self) -> int:
        return len(self.joint_axes)


@dataclass(frozen=True)
class RobotSpec:
    """
    Position-controlled robot made of one or more fingertip chains.

    Chains consume consecutive joints of the robot: the first chain owns
    joints 0..n0-1, the second n0..n0+n1-1, and so on.
    """

    name: str
    chains: Tuple[KinematicChainSpec, ...]

    def __post_init__(self):
        chains = tuple(self.chains)
        if not self.name:
            raise ModelDescriptionError("Robot name must be non-empty")
        if len(chains) == 0:
            raise ModelDescriptionError(f"Robot '{self.name}' has no kinematic chains")
        object.__setattr__(self, "chains", chains)

    @property
    def n_joints(self) -> int:
        return sum(chain.n_joints for chain in self.chains)


@dataclass(frozen=True)
class SceneSpec:
    """
    Directive-level description of a scene.

    Attributes
    ----------
    dimension : int
        2 for scenes in the y-z plane (joints rotate about x), 3 for spatial
        scenes
    robots : Tuple[RobotSpec, ...]
        Robots in configuration order
    ground_height : Optional[float]
        If set, objects collide with the halfspace z >= ground_height
    name : str
        Scene name (diagnostics only)
    """

    dimension: int
    robots: Tuple[RobotSpec, ...]
    ground_height: Optional[float] = None
    name: str = "scene"

    def __post_init__(self):
        if self.dimension not in (2, 3):
            raise ModelDescriptionError(f"dimension must be 2 or 3, got {self.dimension}")
        robots = tuple(self.robots)
        names = [robot.name for robot in robots]
        if len(set(names)) != len(names):
            raise ModelDescriptionError(f"Duplicate robot names in scene: {names}")
        object.__setattr__(self, "robots", robots)

    @property
    def robot_names(self) -> Tuple[str, ...]:
        return tuple(robot.name for robot in self.robots)


# ============================================================================
# Model Description
# ============================================================================


@dataclass(frozen=True, eq=False)
class QuasistaticModelDescription:
    """
    Immutable model shared by all step simulators of a batch engine.

    Construction validates every part, freezes stiffness vectors, and compiles
    fingertip kinematics once. Equality is identity: two descriptions built
    from equal inputs are distinct models.

    Attributes
    ----------
    scene : SceneSpec
        Robots, dimension and ground
    robot_stiffness : Mapping[str, np.ndarray]
        Read-only joint stiffness per robot
    object_geometry : Mapping[str, SphereObjectSpec]
        Objects in configuration order
    sim_params : QuasistaticSimParameters
        Solver parameters

    Raises
    ------
    ModelDescriptionError
        On missing/extra stiffness entries, wrong stiffness lengths,
        non-positive stiffness, name clashes between robots and objects, or
        nd_per_contact != 2 in a planar scene
    """

    scene: SceneSpec
    robot_stiffness: Mapping[str, ArrayLike]
    object_geometry: Mapping[str, SphereObjectSpec]
    sim_params: QuasistaticSimParameters = field(default_factory=QuasistaticSimParameters)

    def __post_init__(self):
        stiffness = {}
        for robot in self.scene.robots:
            if robot.name not in self.robot_stiffness:
                raise ModelDescriptionError(f"No stiffness given for robot '{robot.name}'")
            kp = np.array(self.robot_stiffness[robot.name], dtype=np.float64).ravel()
            if kp.shape != (robot.n_joints,):
                raise ModelDescriptionError(
                    f"Stiffness of '{robot.name}' must have {robot.n_joints} entries, "
                    f"got {kp.shape[0]}",
                )
            if np.any(kp <= 0):
                raise ModelDescriptionError(f"Stiffness of '{robot.name}' must be positive")
            kp.setflags(write=False)
            stiffness[robot.name] = kp
        extra = set(self.robot_stiffness) - set(self.scene.robot_names)
        if extra:
            raise ModelDescriptionError(f"Stiffness given for unknown robots: {sorted(extra)}")

        objects = dict(self.object_geometry)
        for name, spec in objects.items():
            if not isinstance(spec, SphereObjectSpec):
                raise ModelDescriptionError(
                    f"Object '{name}' must be a SphereObjectSpec, got {type(spec).__name__}",
                )
            if name in stiffness:
                raise ModelDescriptionError(f"'{name}' is both a robot and an object")

        if self.scene.dimension == 2 and self.sim_params.nd_per_contact != 2:
            raise ModelDescriptionError(
                f"Planar scenes use exactly 2 friction directions per contact, "
                f"got nd_per_contact={self.sim_params.nd_per_contact}",
            )

        object.__setattr__(self, "robot_stiffness", MappingProxyType(stiffness))
        object.__setattr__(self, "object_geometry", MappingProxyType(objects))
        object.__setattr__(self, "_chains", self._compile_chains())

    def _compile_chains(self) -> Tuple[ChainKinematics, ...]:
        chains = []
        offset = 0
        for robot in self.scene.robots:
            for chain in robot.chains:
                indices = tuple(range(offset, offset + chain.n_joints))
                chains.append(compile_chain_kinematics(chain, robot.name, indices))
                offset += chain.n_joints
        return tuple(chains)

    # ========================================================================
    # Dimensions and Layout
    # ========================================================================

    @property
    def dimension(self) -> int:
        return self.scene.dimension

    @property
    def object_dofs(self) -> int:
        """Coordinates per object: 3 in a planar scene, 6 in a spatial one."""
        return 3 if self.dimension == 2 else 6

    @property
    def translation_dofs(self) -> int:
        """Translational coordinates per object (2 or 3)."""
        return self.dimension

    @property
    def nu(self) -> int:
        """Number of actuated joints (control dimension)."""
        return sum(robot.n_joints for robot in self.scene.robots)

    @property
    def nq(self) -> int:
        """Configuration dimension."""
        return self.nu + self.object_dofs * len(self.object_geometry)

    @property
    def robot_names(self) -> Tuple[str, ...]:
        return self.scene.robot_names

    @property
    def object_names(self) -> Tuple[str, ...]:
        return tuple(self.object_geometry)

    @property
    def model_instance_names(self) -> Tuple[str, ...]:
        """All instance names in configuration order."""
        return self.robot_names + self.object_names

    @property
    def chains(self) -> Tuple[ChainKinematics, ...]:
        """Compiled fingertip kinematics, in robot then chain order."""
        return self._chains

    def get_instance_slices(self) -> Dict[str, slice]:
        """
        Slice of each model instance in the configuration vector.

        Examples
        --------
        >>> model.get_instance_slices()["sphere"]
        slice(4, 7, None)
        """
        slices = {}
        offset = 0
        for robot in self.scene.robots:
            slices[robot.name] = slice(offset, offset + robot.n_joints)
            offset += robot.n_joints
        for name in self.object_geometry:
            slices[name] = slice(offset, offset + self.object_dofs)
            offset += self.object_dofs
        return slices

    def stiffness_vector(self) -> np.ndarray:
        """Concatenated Kp of all robots (nu,)."""
        if not self.scene.robots:
            return np.zeros(0)
        return np.concatenate([self.robot_stiffness[name] for name in self.robot_names])

    def gravity_vector(self) -> np.ndarray:
        """Gravity restricted to the scene's translational coordinates."""
        g = np.asarray(self.sim_params.gravity, dtype=np.float64)
        return g[1:] if self.dimension == 2 else g

    def __repr__(self) -> str:
        return (
            f"QuasistaticModelDescription(scene='{self.scene.name}', "
            f"dimension={self.dimension}, nq={self.nq}, nu={self.nu}, "
            f"robots={list(self.robot_names)}, objects={list(self.object_names)})"
        )


def make_model_description(
    scene: SceneSpec,
    robot_stiffness: Mapping[str, ArrayLike],
    object_geometry: Mapping[str, SphereObjectSpec],
    sim_params: Optional[QuasistaticSimParameters] = None,
) -> QuasistaticModelDescription:
    """
    Convenience constructor mirroring the (directive, stiffness, geometry,
    parameters) argument order of scene loaders.
    """
    if sim_params is None:
        sim_params = QuasistaticSimParameters()
    return QuasistaticModelDescription(
        scene=scene,
        robot_stiffness=robot_stiffness,
        object_geometry=object_geometry,
        sim_params=sim_params,
    )


def planar_chain(
    link_lengths: Sequence[float],
    base_position: Sequence[float],
    tip_radius: float,
) -> KinematicChainSpec:
    """
    Planar chain in the y-z plane: every joint rotates about the world x axis
    and each link points along its local +z.

    With cumulative angle φ, a link of length l contributes
    (0, -l sin φ, l cos φ).
    """
    return KinematicChainSpec(
        joint_axes=tuple((1.0, 0.0, 0.0) for _ in link_lengths),
        link_offsets=tuple((0.0, 0.0, float(length)) for length in link_lengths),
        base_position=tuple(base_position),
        tip_radius=tip_radius,
    )


__all__ = [
    "SphereObjectSpec",
    "KinematicChainSpec",
    "RobotSpec",
    "SceneSpec",
    "QuasistaticModelDescription",
    "make_model_description",
    "planar_chain",
]
