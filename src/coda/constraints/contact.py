# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

import logging
from typing import List, Union

import numpy as np
import numpy.typing as npt

from coda.constraints.constraint import Constraint, ConstraintCache
from coda.core.constants import ConstraintType
from coda.core.rbd_algorithms import (
    calc_body_to_base_coordinates,
    calc_point_acceleration,
    calc_point_jacobian,
)
from coda.core.spatial_math import Xtrans
from coda.model import Model

logger = logging.getLogger(__name__)


class ContactConstraint(Constraint):
    """Keeps a body point from moving along one or more world directions.

    Each direction ``n`` contributes one row, whose position error is
    ``n . (p - ground_point)`` with ``p`` the point in base coordinates.
    Directions sharing the same point are stacked in one constraint so that
    the point Jacobian is evaluated once.
    """

    def __init__(
        self,
        body_id: int,
        body_point: npt.ArrayLike,
        world_normals: List[npt.ArrayLike],
        name: Union[str, None] = None,
        ground_point: npt.ArrayLike = (0.0, 0.0, 0.0),
    ) -> None:
        """
        Args:
            body_id (int): the id of the (movable or fixed) body
            body_point (npt.ArrayLike): the contact point in body coordinates
            world_normals (List[npt.ArrayLike]): the constrained directions in base coordinates
            name (str, optional): the constraint name
            ground_point (npt.ArrayLike, optional): the point the position error is measured from
        """
        super().__init__(len(world_normals), name, ConstraintType.CONTACT)
        self.body_ids = [body_id]
        self.body_frames = [Xtrans(body_point)]
        self.normals = [np.asarray(n, dtype=float) for n in world_normals]
        self.ground_point = np.asarray(ground_point, dtype=float)

    @property
    def body_id(self) -> int:
        return self.body_ids[0]

    @property
    def body_point(self) -> np.ndarray:
        return self.body_frames[0].r

    def append_normal_vector(
        self,
        normal: npt.ArrayLike,
        position_level: bool = True,
        velocity_level: bool = True,
    ) -> None:
        self.normals.append(np.asarray(normal, dtype=float))
        self.position_level.append(position_level)
        self.velocity_level.append(velocity_level)
        self.size_of_constraint += 1

    def calc_position_error(
        self,
        model: Model,
        q: npt.ArrayLike,
        err: np.ndarray,
        cache: ConstraintCache,
        update_kinematics: bool = False,
    ) -> None:
        point = calc_body_to_base_coordinates(
            model, q, self.body_id, self.body_point, update_kinematics
        )
        for i, normal in enumerate(self.normals):
            row = self.row_in_system + i
            if self.position_level[i]:
                err[row] = normal @ (point - self.ground_point)
            else:
                err[row] = 0.0

    def calc_constraint_jacobian(
        self,
        model: Model,
        q: npt.ArrayLike,
        qdot: npt.ArrayLike,
        G: np.ndarray,
        cache: ConstraintCache,
        update_kinematics: bool = False,
    ) -> None:
        J = calc_point_jacobian(
            model, q, self.body_id, self.body_point, cache.mat_3n_a, update_kinematics
        )
        for i, normal in enumerate(self.normals):
            G[self.row_in_system + i] = normal @ J

    def calc_gamma(
        self,
        model: Model,
        q: npt.ArrayLike,
        qdot: npt.ArrayLike,
        G: np.ndarray,
        gamma: np.ndarray,
        cache: ConstraintCache,
    ) -> None:
        accel = calc_point_acceleration(
            model, q, qdot, cache.vec_n_zeros, self.body_id, self.body_point, False
        )
        for i, normal in enumerate(self.normals):
            gamma[self.row_in_system + i] = -(normal @ accel)

    def calc_point_force_jacobian(
        self,
        model: Model,
        q: npt.ArrayLike,
        cache: ConstraintCache,
        f_t: np.ndarray,
        update_kinematics: bool = False,
    ) -> None:
        """Writes, for every direction, the spatial force in base coordinates
        of a unit force applied at the contact point along the direction

        Args:
            model (Model): the model
            q (npt.ArrayLike): the generalized positions
            cache (ConstraintCache): the scratch buffers
            f_t (np.ndarray): the (rows x 6) test forces of the constraint set
            update_kinematics (bool, optional): whether to recompute the transforms
        """
        point = calc_body_to_base_coordinates(
            model, q, self.body_id, self.body_point, update_kinematics
        )
        for i, normal in enumerate(self.normals):
            f_t[self.row_in_system + i, :3] = normal
            f_t[self.row_in_system + i, 3:] = np.cross(point, normal)

    def calc_point_accelerations(
        self,
        model: Model,
        q: npt.ArrayLike,
        qdot: npt.ArrayLike,
        qddot: npt.ArrayLike,
        point_accel: Union[np.ndarray, None] = None,
        update_kinematics: bool = False,
    ) -> np.ndarray:
        """
        Args:
            model (Model): the model
            q (npt.ArrayLike): the generalized positions
            qdot (npt.ArrayLike): the generalized velocities
            qddot (npt.ArrayLike): the generalized accelerations
            point_accel (np.ndarray, optional): the (rows x 3) accelerations of the
                constraint set, the rows of this constraint are filled if given
            update_kinematics (bool, optional): whether to recompute the kinematics

        Returns:
            np.ndarray: the acceleration of the contact point in base coordinates
        """
        accel = calc_point_acceleration(
            model, q, qdot, qddot, self.body_id, self.body_point, update_kinematics
        )
        if point_accel is not None:
            point_accel[self.rows] = accel
        return accel

    def calc_point_acceleration_error(
        self, point_accel: np.ndarray, a: np.ndarray
    ) -> None:
        """Writes -n . point_accel for every direction into a"""
        for i, normal in enumerate(self.normals):
            row = self.row_in_system + i
            a[row] = -(normal @ point_accel[row])
