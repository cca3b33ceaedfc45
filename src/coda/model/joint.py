# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

from typing import Tuple, Union

import numpy as np
import numpy.typing as npt

from coda.core.constants import JointType
from coda.core.spatial_math import (
    SpatialTransform,
    Xrot,
    Xtrans,
    quaternion_to_matrix,
)


class Joint:
    """Joint connecting a body to its parent.

    The motion subspace ``S`` is constant in the child frame for every
    supported joint type, hence the bias velocity ``c_J`` is always zero.
    """

    def __init__(
        self, joint_type: JointType, axis: Union[npt.ArrayLike, None] = None
    ) -> None:
        """
        Args:
            joint_type (JointType): the joint type
            axis (npt.ArrayLike, optional): the joint axis for revolute and prismatic joints
        """
        self.type = joint_type
        self.axis = self._set_axis(axis)
        self.q_index = None
        self.w_index = None
        self.S = self.motion_subspace()

    @staticmethod
    def revolute(axis: npt.ArrayLike) -> "Joint":
        return Joint(JointType.REVOLUTE, axis)

    @staticmethod
    def prismatic(axis: npt.ArrayLike) -> "Joint":
        return Joint(JointType.PRISMATIC, axis)

    @staticmethod
    def spherical() -> "Joint":
        return Joint(JointType.SPHERICAL)

    @staticmethod
    def translation_xyz() -> "Joint":
        return Joint(JointType.TRANSLATION_XYZ)

    @staticmethod
    def fixed() -> "Joint":
        return Joint(JointType.FIXED)

    def _set_axis(self, axis: Union[npt.ArrayLike, None]) -> Union[np.ndarray, None]:
        if self.type not in (JointType.REVOLUTE, JointType.PRISMATIC):
            return None
        if axis is None:
            raise ValueError(f"A {self.type.name} joint requires an axis")
        axis = np.asarray(axis, dtype=float)
        norm = np.linalg.norm(axis)
        if norm == 0.0:
            raise ValueError("The joint axis must be non zero")
        return axis / norm

    @property
    def dof_count(self) -> int:
        if self.type == JointType.FIXED:
            return 0
        if self.type in (JointType.REVOLUTE, JointType.PRISMATIC):
            return 1
        return 3

    def motion_subspace(self) -> np.ndarray:
        """
        Returns:
            np.ndarray: the 6 x dof motion subspace of the joint in the child frame
        """
        S = np.zeros((6, self.dof_count))
        if self.type == JointType.REVOLUTE:
            S[3:, 0] = self.axis
        elif self.type == JointType.PRISMATIC:
            S[:3, 0] = self.axis
        elif self.type == JointType.SPHERICAL:
            S[3:, :] = np.eye(3)
        elif self.type == JointType.TRANSLATION_XYZ:
            S[:3, :] = np.eye(3)
        return S

    def spatial_transform(self, q: npt.ArrayLike) -> SpatialTransform:
        """
        Args:
            q (npt.ArrayLike): the full vector of generalized positions

        Returns:
            SpatialTransform: the joint transform X_J given q
        """
        if self.type == JointType.REVOLUTE:
            return Xrot(q[self.q_index], self.axis)
        if self.type == JointType.PRISMATIC:
            return Xtrans(self.axis * q[self.q_index])
        if self.type == JointType.SPHERICAL:
            R = quaternion_to_matrix(self.get_quaternion(q))
            return SpatialTransform(R.T, np.zeros(3))
        if self.type == JointType.TRANSLATION_XYZ:
            return Xtrans(q[self.q_index : self.q_index + 3])
        return SpatialTransform()

    def jcalc(
        self, q: npt.ArrayLike, qdot: npt.ArrayLike
    ) -> Tuple[SpatialTransform, np.ndarray, np.ndarray]:
        """
        Args:
            q (npt.ArrayLike): the generalized positions
            qdot (npt.ArrayLike): the generalized velocities

        Returns:
            Tuple[SpatialTransform, np.ndarray, np.ndarray]: X_J, v_J and c_J
        """
        X_J = self.spatial_transform(q)
        v_J = self.S @ qdot[self.q_index : self.q_index + self.dof_count]
        return X_J, v_J, np.zeros(6)

    def get_quaternion(self, q: npt.ArrayLike) -> np.ndarray:
        """
        Args:
            q (npt.ArrayLike): the generalized positions

        Returns:
            np.ndarray: the quaternion of a spherical joint as [x, y, z, w]
        """
        i = self.q_index
        return np.array([q[i], q[i + 1], q[i + 2], q[self.w_index]])

    def set_quaternion(self, quat: npt.ArrayLike, q: np.ndarray) -> None:
        """Writes the quaternion [x, y, z, w] of a spherical joint into q"""
        i = self.q_index
        q[i : i + 3] = quat[:3]
        q[self.w_index] = quat[3]
