# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

"""Spatial algebra in the ``[linear; angular]`` ordering.

Motion vectors are stored as ``[v; omega]`` and force vectors as ``[f; n]``.
A :class:`SpatialTransform` ``X`` from frame A to frame B is described, as in
Featherstone's notation, by the rotation ``E`` that maps A coordinates to B
coordinates and by the position ``r`` of the origin of B expressed in A.
"""

import dataclasses

import numpy as np
import numpy.typing as npt
from scipy.spatial.transform import Rotation


def skew(x: npt.ArrayLike) -> np.ndarray:
    """
    Args:
        x (npt.ArrayLike): 3D vector

    Returns:
        np.ndarray: the skew symmetric matrix such that skew(x) @ y = x cross y
    """
    # Retrieving the skew sym matrix using a cross product
    return -np.cross(np.asarray(x, dtype=float), np.eye(3), axisa=0, axisb=0)


def crossm(v: npt.ArrayLike) -> np.ndarray:
    """
    Args:
        v (npt.ArrayLike): spatial motion vector

    Returns:
        np.ndarray: the 6x6 motion cross product operator v x
    """
    X = np.zeros((6, 6))
    X[:3, :3] = skew(v[3:])
    X[:3, 3:] = skew(v[:3])
    X[3:, 3:] = skew(v[3:])
    return X


def crossf(v: npt.ArrayLike) -> np.ndarray:
    """
    Args:
        v (npt.ArrayLike): spatial motion vector

    Returns:
        np.ndarray: the 6x6 force cross product operator v x*
    """
    return -crossm(v).T


def spatial_inertia(
    mass: float, com: npt.ArrayLike, inertia: npt.ArrayLike
) -> np.ndarray:
    """Returns the 6x6 inertia matrix expressed at the origin of the body

    Args:
        mass (float): the body mass
        com (npt.ArrayLike): the center of mass in body coordinates
        inertia (npt.ArrayLike): the 3x3 rotational inertia about the center of mass

    Returns:
        np.ndarray: the spatial inertia
    """
    Sc = skew(com)
    IO = np.zeros((6, 6))
    IO[:3, :3] = np.eye(3) * mass
    IO[:3, 3:] = mass * Sc.T
    IO[3:, :3] = mass * Sc
    IO[3:, 3:] = np.asarray(inertia, dtype=float) + mass * Sc @ Sc.T
    return IO


@dataclasses.dataclass
class SpatialTransform:
    """Plücker transform between two frames"""

    E: np.ndarray = dataclasses.field(default_factory=lambda: np.eye(3))
    r: np.ndarray = dataclasses.field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        self.E = np.asarray(self.E, dtype=float).reshape(3, 3)
        self.r = np.asarray(self.r, dtype=float).reshape(3)

    def apply(self, v: npt.ArrayLike) -> np.ndarray:
        """Transforms a motion vector"""
        return np.concatenate(
            [self.E @ (v[:3] - np.cross(self.r, v[3:])), self.E @ v[3:]]
        )

    def apply_transpose(self, f: npt.ArrayLike) -> np.ndarray:
        """Applies X^T, i.e. moves a force vector from the target to the source frame"""
        f_lin = self.E.T @ f[:3]
        return np.concatenate([f_lin, self.E.T @ f[3:] + np.cross(self.r, f_lin)])

    def apply_adjoint(self, f: npt.ArrayLike) -> np.ndarray:
        """Applies X^* = X^-T, i.e. moves a force vector from the source to the target frame"""
        return np.concatenate(
            [self.E @ f[:3], self.E @ (f[3:] - np.cross(self.r, f[:3]))]
        )

    def to_matrix(self) -> np.ndarray:
        X = np.zeros((6, 6))
        X[:3, :3] = self.E
        X[:3, 3:] = -self.E @ skew(self.r)
        X[3:, 3:] = self.E
        return X

    def to_matrix_transpose(self) -> np.ndarray:
        return self.to_matrix().T

    def inverse(self) -> "SpatialTransform":
        return SpatialTransform(self.E.T, -self.E @ self.r)

    def __mul__(self, other: "SpatialTransform") -> "SpatialTransform":
        """Composes two transforms: (self * other) applies other first"""
        return SpatialTransform(self.E @ other.E, other.r + other.E.T @ self.r)

    def is_close(self, other: "SpatialTransform", tol: float) -> bool:
        """Component-wise comparison of translation and rotation entries

        Args:
            other (SpatialTransform): the transform to compare with
            tol (float): the absolute tolerance

        Returns:
            bool: True if every entry differs less than tol
        """
        return bool(
            np.all(np.abs(self.r - other.r) <= tol)
            and np.all(np.abs(self.E - other.E) <= tol)
        )


def Xtrans(r: npt.ArrayLike) -> SpatialTransform:
    """
    Args:
        r (npt.ArrayLike): the translation

    Returns:
        SpatialTransform: a pure translation
    """
    return SpatialTransform(np.eye(3), r)


def Xrot(angle: float, axis: npt.ArrayLike) -> SpatialTransform:
    """
    Args:
        angle (float): the rotation angle
        axis (npt.ArrayLike): the unit rotation axis

    Returns:
        SpatialTransform: a pure rotation of the target frame about axis
    """
    return SpatialTransform(R_from_axis_angle(axis, angle).T, np.zeros(3))


def R_from_axis_angle(axis: npt.ArrayLike, q: float) -> np.ndarray:
    """
    Args:
        axis (npt.ArrayLike): the rotation axis
        q (float): the rotation angle

    Returns:
        np.ndarray: the rotation matrix
    """
    return Rotation.from_rotvec(np.asarray(axis, dtype=float) * q).as_matrix()


def quaternion_to_matrix(quat: npt.ArrayLike) -> np.ndarray:
    """
    Args:
        quat (npt.ArrayLike): the quaternion as [x, y, z, w]

    Returns:
        np.ndarray: the rotation matrix of the child frame w.r.t. the parent frame
    """
    return Rotation.from_quat(quat).as_matrix()


def omega_to_qdot(quat: npt.ArrayLike, omega: npt.ArrayLike) -> np.ndarray:
    """Maps an angular velocity expressed in the rotated frame into the
    derivative of the quaternion components

    Args:
        quat (npt.ArrayLike): the quaternion as [x, y, z, w]
        omega (npt.ArrayLike): the angular velocity in the rotated frame

    Returns:
        np.ndarray: the quaternion derivative as [x, y, z, w]
    """
    x, y, z, w = quat
    ox, oy, oz = omega
    return 0.5 * np.array(
        [
            w * ox + y * oz - z * oy,
            w * oy + z * ox - x * oz,
            w * oz + x * oy - y * ox,
            -x * ox - y * oy - z * oz,
        ]
    )
