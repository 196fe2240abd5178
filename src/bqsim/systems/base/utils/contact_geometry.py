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
Contact Geometry for Sphere Scenes

Signed distances, contact normals, friction directions and contact
Jacobians for the three pair types of a sphere scene:
- fingertip sphere vs object sphere
- object sphere vs object sphere
- object sphere vs ground halfspace

For a pair (A, B) the normal n points from A to B and the Jacobians map a
configuration increment dq to the relative velocity of B's contact point
with respect to A's:

    J_n = nᵀ (J_B - J_A)          (nq,)
    J_t = D (J_B - J_A)           (nd, nq), rows of D span the friction cone

Fingertip spheres are treated as translating with the fingertip center.
Object orientation enters through ω × r with r the lever arm from the object
center to the contact point.
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, List

import numpy as np

if TYPE_CHECKING:
    from bqsim.systems.base.model_description import QuasistaticModelDescription


@dataclass(frozen=True)
class ContactPair:
    """
    One contact candidate within the detection tolerance.

    Attributes
    ----------
    body_a, body_b : str
        Names of the two bodies (fingertips are '<robot>/tip<k>', the ground
        is 'ground')
    phi : float
        Signed distance (negative when penetrating)
    normal : np.ndarray
        Unit normal from A to B (dim,)
    jacobian_normal : np.ndarray
        (nq,) normal Jacobian
    jacobian_tangent : np.ndarray
        (nd, nq) friction-direction Jacobians
    friction_coefficient : float
        Coulomb friction coefficient of the pair
    """

    body_a: str
    body_b: str
    phi: float
    normal: np.ndarray
    jacobian_normal: np.ndarray
    jacobian_tangent: np.ndarray
    friction_coefficient: float

    def constraint_rows(self) -> np.ndarray:
        """Rows J_n + μ J_t of the polyhedral (Anitescu) constraint, (nd, nq)."""
        return self.jacobian_normal[None, :] + self.friction_coefficient * self.jacobian_tangent


# ============================================================================
# Friction Directions
# ============================================================================


def tangent_directions(normal: np.ndarray, nd: int) -> np.ndarray:
    """
    Unit directions spanning the tangent plane of a contact.

    Planar: [t, -t] with t the normal rotated by +90°, nd must be 2.
    Spatial: nd directions cos(2πj/nd) t1 + sin(2πj/nd) t2 with (t1, t2) an
    orthonormal tangent basis built deterministically from the normal.

    Returns
    -------
    np.ndarray
        (nd, dim)
    """
    if normal.shape[0] == 2:
        if nd != 2:
            raise ValueError(f"Planar contacts use 2 friction directions, got {nd}")
        t = np.array([-normal[1], normal[0]])
        return np.vstack([t, -t])

    e = np.zeros(3)
    e[int(np.argmin(np.abs(normal)))] = 1.0
    t1 = np.cross(normal, e)
    t1 /= np.linalg.norm(t1)
    t2 = np.cross(normal, t1)
    angles = 2.0 * np.pi * np.arange(nd) / nd
    return np.cos(angles)[:, None] * t1[None, :] + np.sin(angles)[:, None] * t2[None, :]


# ============================================================================
# Point Jacobians
# ============================================================================


def object_point_jacobian(
    model: "QuasistaticModelDescription",
    start: int,
    lever: np.ndarray,
) -> np.ndarray:
    """
    Jacobian (dim, nq) of a point rigidly attached to an object.

    Parameters
    ----------
    start : int
        Index of the object's first coordinate in q
    lever : np.ndarray
        Vector from the object center to the point (dim,)
    """
    dim = model.dimension
    J = np.zeros((dim, model.nq))
    J[:, start:start + dim] = np.eye(dim)
    if dim == 2:
        # ω x̂ × (r_y ŷ + r_z ẑ) = ω (-r_z, r_y)
        J[:, start + 2] = (-lever[1], lever[0])
    else:
        rx, ry, rz = lever
        J[:, start + 3:start + 6] = -np.array([[0.0, -rz, ry], [rz, 0.0, -rx], [-ry, rx, 0.0]])
    return J


def _unit_normal(delta: np.ndarray, dim: int) -> np.ndarray:
    dist = np.linalg.norm(delta)
    if dist > 0:
        return delta / dist
    # Coincident centers: fall back to the vertical axis.
    n = np.zeros(dim)
    n[-1] = 1.0
    return n


# ============================================================================
# Pair Enumeration
# ============================================================================


def compute_contact_pairs(
    model: "QuasistaticModelDescription",
    q: np.ndarray,
) -> List[ContactPair]:
    """
    Enumerate contact pairs whose signed distance is below the detection
    tolerance.

    The enumeration order is fixed (fingertips in chain order against
    objects in insertion order, then object pairs, then ground contacts),
    which keeps the QP rows and therefore the solution order-deterministic.

    Parameters
    ----------
    model : QuasistaticModelDescription
        Scene description
    q : np.ndarray
        Configuration (nq,)

    Returns
    -------
    List[ContactPair]
    """
    dim = model.dimension
    nq = model.nq
    nd = model.sim_params.nd_per_contact
    tolerance = model.sim_params.contact_detection_tolerance
    rows = [1, 2] if dim == 2 else [0, 1, 2]
    slices = model.get_instance_slices()

    objects = []
    for name, spec in model.object_geometry.items():
        start = slices[name].start
        objects.append((name, spec, start, q[start:start + dim]))

    pairs: List[ContactPair] = []

    def add_pair(name_a, name_b, phi, n, J_a, J_b, mu):
        J_rel = J_b - J_a
        pairs.append(
            ContactPair(
                body_a=name_a,
                body_b=name_b,
                phi=float(phi),
                normal=n,
                jacobian_normal=n @ J_rel,
                jacobian_tangent=tangent_directions(n, nd) @ J_rel,
                friction_coefficient=float(mu),
            ),
        )

    tip_counts = {}
    for chain in model.chains:
        k = tip_counts.get(chain.robot_name, 0)
        tip_counts[chain.robot_name] = k + 1
        tip_name = f"{chain.robot_name}/tip{k}"
        p_tip = chain.position(q)[rows]
        J_tip = np.zeros((dim, nq))
        J_tip[:, list(chain.q_indices)] = chain.jacobian(q)[rows, :]

        for name, spec, start, center in objects:
            delta = center - p_tip
            phi = np.linalg.norm(delta) - chain.tip_radius - spec.radius
            if phi >= tolerance:
                continue
            n = _unit_normal(delta, dim)
            J_obj = object_point_jacobian(model, start, -spec.radius * n)
            add_pair(tip_name, name, phi, n, J_tip, J_obj, spec.friction_coefficient)

    for i, (name_a, spec_a, start_a, center_a) in enumerate(objects):
        for name_b, spec_b, start_b, center_b in objects[i + 1:]:
            delta = center_b - center_a
            phi = np.linalg.norm(delta) - spec_a.radius - spec_b.radius
            if phi >= tolerance:
                continue
            n = _unit_normal(delta, dim)
            J_a = object_point_jacobian(model, start_a, spec_a.radius * n)
            J_b = object_point_jacobian(model, start_b, -spec_b.radius * n)
            mu = min(spec_a.friction_coefficient, spec_b.friction_coefficient)
            add_pair(name_a, name_b, phi, n, J_a, J_b, mu)

    ground = model.scene.ground_height
    if ground is not None:
        n = np.zeros(dim)
        n[-1] = 1.0
        for name, spec, start, center in objects:
            phi = center[-1] - spec.radius - ground
            if phi >= tolerance:
                continue
            J_obj = object_point_jacobian(model, start, -spec.radius * n)
            add_pair("ground", name, phi, n, np.zeros((dim, nq)), J_obj, spec.friction_coefficient)

    return pairs


__all__ = [
    "ContactPair",
    "tangent_directions",
    "object_point_jacobian",
    "compute_contact_pairs",
]
