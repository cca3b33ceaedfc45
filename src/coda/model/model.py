# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

import logging
from typing import Dict, List, Tuple, Union

import numpy as np
import numpy.typing as npt
from prettytable import PrettyTable

from coda.core.constants import JointType
from coda.core.spatial_math import SpatialTransform
from coda.model.body import Body, FixedBody
from coda.model.joint import Joint

logger = logging.getLogger(__name__)

FIXED_BODY_DISCRIMINATOR = 2**30


class Model:
    """Kinematic tree of rigid bodies.

    Body 0 is the fixed root. Movable bodies are numbered in insertion order,
    hence a parent always has a smaller index than its children. Bodies
    attached through fixed joints get ids starting at
    ``fixed_body_discriminator`` and have their inertia merged into the
    movable parent.

    The model also stores the per-body quantities computed by the algorithms
    in :mod:`coda.core.rbd_algorithms` (transforms, velocities, articulated
    inertias, ...), so an instance must not be shared between concurrent
    computations.
    """

    def __init__(self, gravity: npt.ArrayLike = (0.0, 0.0, -9.81)) -> None:
        """
        Args:
            gravity (npt.ArrayLike, optional): the gravity acceleration in base coordinates
        """
        self.gravity = np.asarray(gravity, dtype=float)
        self.fixed_body_discriminator = FIXED_BODY_DISCRIMINATOR

        self.dof_count = 0
        self.q_size = 0
        self.qdot_size = 0

        self.names: List[str] = ["ROOT"]
        self.body_name_map: Dict[str, int] = {"ROOT": 0}
        self.bodies: List[Body] = [Body.massless()]
        self.joints: List[Joint] = [Joint.fixed()]
        self.fixed_bodies: List[FixedBody] = []
        self.parent: List[int] = [0]
        self.children: List[List[int]] = [[]]
        self.lambda_q: List[int] = []

        # joint frames and state dependent quantities
        self.X_T: List[SpatialTransform] = [SpatialTransform()]
        self.X_lambda: List[SpatialTransform] = [SpatialTransform()]
        self.X_base: List[SpatialTransform] = [SpatialTransform()]
        self.I: List[np.ndarray] = [np.zeros((6, 6))]
        self.Ic: List[np.ndarray] = [np.zeros((6, 6))]
        self.v: List[np.ndarray] = [np.zeros(6)]
        self.a: List[np.ndarray] = [np.zeros(6)]
        self.c: List[np.ndarray] = [np.zeros(6)]

        # articulated body quantities
        self.IA: List[np.ndarray] = [np.zeros((6, 6))]
        self.pA: List[np.ndarray] = [np.zeros(6)]
        self.U: List[np.ndarray] = [np.zeros((6, 0))]
        self.Dinv: List[np.ndarray] = [np.zeros((0, 0))]
        self.d: List[float] = [0.0]
        self.u: List[np.ndarray] = [np.zeros(0)]

    @property
    def n_bodies(self) -> int:
        """Number of movable bodies including the root"""
        return len(self.bodies)

    def add_body(
        self,
        parent_id: int,
        joint_frame: SpatialTransform,
        joint: Joint,
        body: Body,
        name: Union[str, None] = None,
    ) -> int:
        """Attaches a body to the tree

        Args:
            parent_id (int): the id of the parent body (movable or fixed)
            joint_frame (SpatialTransform): the transform from the parent frame to the joint frame
            joint (Joint): the joint connecting the body to its parent
            body (Body): the body
            name (str, optional): the body name

        Returns:
            int: the id of the new body
        """
        if name is not None and name in self.body_name_map:
            raise ValueError(f"A body named {name} is already in the model")

        if self.is_fixed_body_id(parent_id):
            fixed_parent = self.fixed_bodies[parent_id - self.fixed_body_discriminator]
            parent_id = fixed_parent.movable_parent
            joint_frame = joint_frame * fixed_parent.parent_transform
        elif parent_id >= self.n_bodies:
            raise ValueError(f"Unknown parent body id {parent_id}")

        if joint.type == JointType.FIXED:
            return self._add_fixed_body(parent_id, joint_frame, body, name)

        body_id = self.n_bodies
        joint.q_index = self.dof_count
        parent_last_dof = self._last_dof_of(parent_id)
        for k in range(joint.dof_count):
            self.lambda_q.append(parent_last_dof if k == 0 else self.dof_count + k - 1)
        self.dof_count += joint.dof_count
        self.qdot_size = self.dof_count
        self.q_size = self.dof_count + sum(
            1 for j in self.joints[1:] + [joint] if j.type == JointType.SPHERICAL
        )

        self.bodies.append(body)
        self.joints.append(joint)
        self.parent.append(parent_id)
        self.children.append([])
        self.children[parent_id].append(body_id)
        self.names.append(name if name is not None else f"body_{body_id}")
        self.body_name_map[self.names[-1]] = body_id

        self.X_T.append(joint_frame)
        self.X_lambda.append(SpatialTransform())
        self.X_base.append(SpatialTransform())
        self.I.append(body.spatial_inertia())
        self.Ic.append(np.zeros((6, 6)))
        self.v.append(np.zeros(6))
        self.a.append(np.zeros(6))
        self.c.append(np.zeros(6))
        self.IA.append(np.zeros((6, 6)))
        self.pA.append(np.zeros(6))
        self.U.append(np.zeros((6, joint.dof_count)))
        self.Dinv.append(np.zeros((joint.dof_count, joint.dof_count)))
        self.d.append(0.0)
        self.u.append(np.zeros(joint.dof_count))

        self._update_quaternion_indices()
        logger.debug(
            "Added body %s (id %d) to parent %d with a %s joint",
            self.names[-1],
            body_id,
            parent_id,
            joint.type.name,
        )
        return body_id

    def _add_fixed_body(
        self,
        movable_parent: int,
        parent_transform: SpatialTransform,
        body: Body,
        name: Union[str, None],
    ) -> int:
        fixed_id = self.fixed_body_discriminator + len(self.fixed_bodies)
        name = name if name is not None else f"fixed_body_{len(self.fixed_bodies)}"
        self.fixed_bodies.append(
            FixedBody(
                name=name,
                movable_parent=movable_parent,
                parent_transform=parent_transform,
                mass=body.mass,
            )
        )
        self.body_name_map[name] = fixed_id
        # merge the inertia, expressed in the movable parent frame
        X = parent_transform.to_matrix()
        I_fixed = X.T @ body.spatial_inertia() @ X
        self.I[movable_parent] = self.I[movable_parent] + I_fixed
        self.bodies[movable_parent] = Body(
            mass=self.bodies[movable_parent].mass + body.mass,
            com=self.bodies[movable_parent].com,
            inertia=self.bodies[movable_parent].inertia,
        )
        return fixed_id

    def _last_dof_of(self, body_id: int) -> int:
        """Index of the last degree of freedom of the joint of body_id, -1 for the root"""
        while body_id != 0:
            joint = self.joints[body_id]
            if joint.dof_count > 0:
                return joint.q_index + joint.dof_count - 1
            body_id = self.parent[body_id]
        return -1

    def _update_quaternion_indices(self) -> None:
        w_index = self.dof_count
        for joint in self.joints:
            if joint.type == JointType.SPHERICAL:
                joint.w_index = w_index
                w_index += 1

    def is_fixed_body_id(self, body_id: int) -> bool:
        return (
            self.fixed_body_discriminator
            <= body_id
            < self.fixed_body_discriminator + len(self.fixed_bodies)
        )

    def get_movable_body_id(self, body_id: int) -> int:
        """
        Args:
            body_id (int): a movable or fixed body id

        Returns:
            int: the id of the movable body that carries body_id
        """
        if self.is_fixed_body_id(body_id):
            return self.fixed_bodies[
                body_id - self.fixed_body_discriminator
            ].movable_parent
        return body_id

    def to_movable_frame(
        self, body_id: int, frame: SpatialTransform
    ) -> Tuple[int, SpatialTransform]:
        """Expresses a body-fixed frame with respect to the movable body that carries it

        Args:
            body_id (int): a movable or fixed body id
            frame (SpatialTransform): the frame w.r.t. body_id

        Returns:
            Tuple[int, SpatialTransform]: the movable body id and the frame w.r.t. it
        """
        if self.is_fixed_body_id(body_id):
            fixed = self.fixed_bodies[body_id - self.fixed_body_discriminator]
            return fixed.movable_parent, frame * fixed.parent_transform
        return body_id, frame

    def to_movable_point(self, body_id: int, point: npt.ArrayLike) -> Tuple[int, np.ndarray]:
        """
        Args:
            body_id (int): a movable or fixed body id
            point (npt.ArrayLike): a point in body_id coordinates

        Returns:
            Tuple[int, np.ndarray]: the movable body id and the point in its coordinates
        """
        if self.is_fixed_body_id(body_id):
            fixed = self.fixed_bodies[body_id - self.fixed_body_discriminator]
            X = fixed.parent_transform
            return fixed.movable_parent, X.E.T @ np.asarray(point, dtype=float) + X.r
        return body_id, np.asarray(point, dtype=float)

    def get_body_id(self, name: str) -> int:
        if name not in self.body_name_map:
            raise ValueError(f"{name} is not in the model")
        return self.body_name_map[name]

    def get_quaternion(self, body_id: int, q: npt.ArrayLike) -> np.ndarray:
        return self.joints[body_id].get_quaternion(q)

    def set_quaternion(self, body_id: int, quat: npt.ArrayLike, q: np.ndarray) -> None:
        self.joints[body_id].set_quaternion(quat, q)

    def neutral_configuration(self) -> np.ndarray:
        """
        Returns:
            np.ndarray: the zero configuration, with identity quaternions
        """
        q = np.zeros(self.q_size)
        for joint in self.joints:
            if joint.type == JointType.SPHERICAL:
                q[joint.w_index] = 1.0
        return q

    def get_total_mass(self) -> float:
        return sum(body.mass for body in self.bodies)

    def print_table(self) -> str:
        """Logs and returns the table describing the connectivity between the bodies"""
        table = PrettyTable(["Idx", "Parent", "Body", "Joint", "q index", "DoF"])
        table.title = "Bodies"
        for i in range(1, self.n_bodies):
            joint = self.joints[i]
            table.add_row(
                [
                    i,
                    self.names[self.parent[i]],
                    self.names[i],
                    joint.type.name,
                    joint.q_index,
                    joint.dof_count,
                ]
            )
        for fixed in self.fixed_bodies:
            table.add_row(
                [
                    self.body_name_map[fixed.name],
                    self.names[fixed.movable_parent],
                    fixed.name,
                    JointType.FIXED.name,
                    "-",
                    0,
                ]
            )
        logger.debug("\n%s", table)
        return table.get_string()
