# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

import logging
from typing import List, Tuple, Union

import numpy as np
import numpy.typing as npt

from coda.constraints.constraint import Constraint, ConstraintCache
from coda.core.constants import ConstraintType
from coda.core.rbd_algorithms import (
    calc_base_to_body_coordinates,
    calc_body_world_transform,
    calc_point_acceleration_6d,
    calc_point_jacobian_6d,
    calc_point_velocity_6d,
)
from coda.core.spatial_math import SpatialTransform
from coda.model import Model

logger = logging.getLogger(__name__)


class LoopConstraint(Constraint):
    """Closes a kinematic loop between a frame on the predecessor body and a
    frame on the successor body.

    Every row constrains the relative motion of the successor frame along a
    6D axis ``[linear; angular]`` expressed in the predecessor frame. The
    position error of a row is the axis projection of the successor frame
    origin displacement and of the small angle orientation mismatch, both
    expressed in the predecessor frame.
    """

    def __init__(
        self,
        predecessor_id: int,
        successor_id: int,
        X_predecessor: SpatialTransform,
        X_successor: SpatialTransform,
        axes: List[npt.ArrayLike],
        position_level: bool = True,
        velocity_level: bool = True,
        name: Union[str, None] = None,
    ) -> None:
        """
        Args:
            predecessor_id (int): the id of the predecessor body
            successor_id (int): the id of the successor body
            X_predecessor (SpatialTransform): the constraint frame w.r.t. the predecessor body
            X_successor (SpatialTransform): the constraint frame w.r.t. the successor body
            axes (List[npt.ArrayLike]): the constrained 6D axes in the predecessor frame
            position_level (bool, optional): whether the position error is enforced
            velocity_level (bool, optional): whether the velocity error is enforced
            name (str, optional): the constraint name
        """
        super().__init__(len(axes), name, ConstraintType.LOOP)
        self.body_ids = [predecessor_id, successor_id]
        self.body_frames = [X_predecessor, X_successor]
        self.axes = [np.asarray(axis, dtype=float) for axis in axes]
        self.position_level = [position_level] * len(axes)
        self.velocity_level = [velocity_level] * len(axes)

    def append_constraint_axis(
        self,
        axis: npt.ArrayLike,
        position_level: bool = True,
        velocity_level: bool = True,
    ) -> None:
        self.axes.append(np.asarray(axis, dtype=float))
        self.position_level.append(position_level)
        self.velocity_level.append(velocity_level)
        self.size_of_constraint += 1

    def _world_frames(
        self, model: Model, q: npt.ArrayLike, update_kinematics: bool
    ) -> Tuple[SpatialTransform, SpatialTransform]:
        X_p = calc_body_world_transform(
            model, q, self.body_ids[0], self.body_frames[0], update_kinematics
        )
        X_s = calc_body_world_transform(
            model, q, self.body_ids[1], self.body_frames[1], False
        )
        return X_p, X_s

    def calc_position_error(
        self,
        model: Model,
        q: npt.ArrayLike,
        err: np.ndarray,
        cache: ConstraintCache,
        update_kinematics: bool = False,
    ) -> None:
        X_p, X_s = self._world_frames(model, q, update_kinematics)
        # orientation of the successor frame in the predecessor frame
        R = X_p.E @ X_s.E.T
        d = np.concatenate(
            [
                X_p.E @ (X_s.r - X_p.r),
                0.5 * np.array([R[2, 1] - R[1, 2], R[0, 2] - R[2, 0], R[1, 0] - R[0, 1]]),
            ]
        )
        for i, axis in enumerate(self.axes):
            row = self.row_in_system + i
            err[row] = axis @ d if self.position_level[i] else 0.0

    def calc_constraint_jacobian(
        self,
        model: Model,
        q: npt.ArrayLike,
        qdot: npt.ArrayLike,
        G: np.ndarray,
        cache: ConstraintCache,
        update_kinematics: bool = False,
    ) -> None:
        X_p, X_s = self._world_frames(model, q, update_kinematics)
        # both Jacobians are taken at the successor frame origin
        point_on_predecessor = calc_base_to_body_coordinates(
            model, q, self.body_ids[0], X_s.r, False
        )
        J_p = calc_point_jacobian_6d(
            model, q, self.body_ids[0], point_on_predecessor, cache.mat_6n_a, False
        )
        J_s = calc_point_jacobian_6d(
            model, q, self.body_ids[1], self.body_frames[1].r, cache.mat_6n_b, False
        )
        J_rel = J_s - J_p
        J_rel = np.vstack([X_p.E @ J_rel[:3], X_p.E @ J_rel[3:]])
        for i, axis in enumerate(self.axes):
            G[self.row_in_system + i] = axis @ J_rel

    def calc_gamma(
        self,
        model: Model,
        q: npt.ArrayLike,
        qdot: npt.ArrayLike,
        G: np.ndarray,
        gamma: np.ndarray,
        cache: ConstraintCache,
    ) -> None:
        X_p, X_s = self._world_frames(model, q, False)
        pred_id, succ_id = self.body_ids
        v_p = calc_point_velocity_6d(
            model, q, qdot, pred_id, self.body_frames[0].r, False
        )
        v_s = calc_point_velocity_6d(
            model, q, qdot, succ_id, self.body_frames[1].r, False
        )
        a_p = calc_point_acceleration_6d(
            model, q, qdot, cache.vec_n_zeros, pred_id, self.body_frames[0].r, False
        )
        a_s = calc_point_acceleration_6d(
            model, q, qdot, cache.vec_n_zeros, succ_id, self.body_frames[1].r, False
        )

        delta = X_s.r - X_p.r
        omega_p = v_p[3:]
        dv = v_s[:3] - v_p[:3]
        relative_velocity = dv - np.cross(omega_p, delta)
        lin = (
            a_s[:3]
            - a_p[:3]
            - np.cross(a_p[3:], delta)
            - np.cross(omega_p, dv)
            - np.cross(omega_p, relative_velocity)
        )
        ang = a_s[3:] - a_p[3:] - np.cross(omega_p, v_s[3:] - omega_p)
        bias = np.concatenate([X_p.E @ lin, X_p.E @ ang])
        for i, axis in enumerate(self.axes):
            gamma[self.row_in_system + i] = -(axis @ bias)
