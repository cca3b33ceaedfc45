# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

import logging
from typing import List, Union

import numpy as np
import numpy.typing as npt
from prettytable import PrettyTable

from coda.constraints.constraint import Constraint, ConstraintCache
from coda.constraints.contact import ContactConstraint
from coda.constraints.loop import LoopConstraint
from coda.core.constants import MERGE_TOLERANCE, ConstraintType, LinearSolver
from coda.core.exceptions import contract_violation
from coda.core.spatial_math import SpatialTransform
from coda.model import Model

logger = logging.getLogger(__name__)


class ConstraintSet:
    """Registry of the constraints acting on a model.

    Constraints are added while the set is unbound; every constraint gets a
    contiguous range of rows in the global constraint system. :meth:`bind`
    freezes the layout and allocates the working memory of the solvers, which
    is then reused by every call. A set is mutated by every computation and
    must not be shared between concurrent simulations.
    """

    def __init__(
        self, linear_solver: LinearSolver = LinearSolver.COL_PIV_HOUSEHOLDER_QR
    ) -> None:
        """
        Args:
            linear_solver (LinearSolver, optional): the dense factorization used by the solvers
        """
        self.linear_solver = linear_solver
        self.bound = False

        self.constraints: List[Constraint] = []
        self.contact_constraints: List[ContactConstraint] = []
        self.loop_constraints: List[LoopConstraint] = []
        self.custom_constraints: List[Constraint] = []

        # per row quantities
        self.name: List[str] = []
        self.constraint_type: List[ConstraintType] = []
        self.err = np.zeros(0)
        self.errd = np.zeros(0)
        self.force = np.zeros(0)
        self.impulse = np.zeros(0)
        self.v_plus = np.zeros(0)

        # the following are allocated by bind()
        self.cache: Union[ConstraintCache, None] = None
        self.H = self.C = self.G = self.gamma = None
        self.A = self.b = self.x = None
        self.K = self.a = None
        self.GT_qr_Q = self.Y = self.Z = self.qddot_y = self.qddot_z = None
        self.QDDot_0 = self.QDDot_t = None
        self.f_t = self.point_accel_0 = self.f_ext_constraints = None
        self.d_pA = self.d_a = self.d_u = self.d_multdof3_u = None

    def size(self) -> int:
        """
        Returns:
            int: the total number of constraint rows
        """
        return len(self.err)

    def __len__(self) -> int:
        return self.size()

    def _check_unbound(self) -> None:
        if self.bound:
            raise contract_violation(
                "Constraints cannot be added to a constraint set that is already bound."
            )

    def _append_rows(
        self, n_rows: int, constraint_type: ConstraintType, name: Union[str, None]
    ) -> int:
        """Grows the per row quantities

        Returns:
            int: the index of the last added row
        """
        self.name.extend([name if name is not None else ""] * n_rows)
        self.constraint_type.extend([constraint_type] * n_rows)
        zeros = np.zeros(n_rows)
        self.err = np.concatenate([self.err, zeros])
        self.errd = np.concatenate([self.errd, zeros])
        self.force = np.concatenate([self.force, zeros])
        self.impulse = np.concatenate([self.impulse, zeros])
        self.v_plus = np.concatenate([self.v_plus, zeros])
        return self.size() - 1

    def _register(self, constraint: Constraint) -> None:
        constraint.add_to_constraint_set(self.size())
        self.constraints.append(constraint)

    def add_contact_constraint(
        self,
        body_id: int,
        body_point: npt.ArrayLike,
        world_normal: npt.ArrayLike,
        name: Union[str, None] = None,
        allow_constraint_appending: bool = True,
    ) -> int:
        """Adds a contact constraint.

        A single normal is appended to the last registered constraint when it
        is a contact constraint on the same body and point, unless
        allow_constraint_appending is False. A list of normals always creates a
        new constraint.

        Args:
            body_id (int): the id of the body
            body_point (npt.ArrayLike): the contact point in body coordinates
            world_normal (npt.ArrayLike): a direction, or a list of directions, in base coordinates
            name (str, optional): the constraint name
            allow_constraint_appending (bool, optional): whether the normal can be merged

        Returns:
            int: the index of the last row used by the constraint
        """
        self._check_unbound()
        body_point = np.asarray(body_point, dtype=float)
        normals = np.asarray(world_normal, dtype=float)

        if normals.ndim == 1:
            previous = self.constraints[-1] if self.constraints else None
            if allow_constraint_appending and isinstance(previous, ContactConstraint):
                if (
                    previous.body_id == body_id
                    and np.linalg.norm(body_point - previous.body_point)
                    < MERGE_TOLERANCE
                ):
                    previous.append_normal_vector(normals)
                    logger.debug(
                        "Appended normal %s to contact constraint %r",
                        normals,
                        previous.name,
                    )
                    return self._append_rows(1, ConstraintType.CONTACT, name)
            normals = normals.reshape(1, 3)

        constraint = ContactConstraint(body_id, body_point, list(normals), name)
        self._register(constraint)
        self.contact_constraints.append(constraint)
        return self._append_rows(
            constraint.size_of_constraint, ConstraintType.CONTACT, name
        )

    def add_loop_constraint(
        self,
        predecessor_id: int,
        successor_id: int,
        X_predecessor: SpatialTransform,
        X_successor: SpatialTransform,
        constraint_axis: npt.ArrayLike,
        enable_stabilization: bool = False,
        stabilization_time_constant: float = 0.1,
        name: Union[str, None] = None,
        allow_constraint_appending: bool = True,
        position_level: bool = True,
        velocity_level: bool = True,
    ) -> int:
        """Adds a loop constraint.

        A single axis is appended to the last registered constraint when it is
        a loop constraint between the same bodies and frames, unless
        allow_constraint_appending is False. A list of axes always creates a
        new constraint. The stabilization settings apply to the whole
        (possibly merged) constraint.

        Args:
            predecessor_id (int): the id of the predecessor body
            successor_id (int): the id of the successor body
            X_predecessor (SpatialTransform): the constraint frame w.r.t. the predecessor body
            X_successor (SpatialTransform): the constraint frame w.r.t. the successor body
            constraint_axis (npt.ArrayLike): a 6D axis, or a list of axes, in the predecessor frame
            enable_stabilization (bool, optional): whether Baumgarte stabilization is used
            stabilization_time_constant (float, optional): the Baumgarte time constant
            name (str, optional): the constraint name
            allow_constraint_appending (bool, optional): whether the axis can be merged
            position_level (bool, optional): whether the position error is enforced
            velocity_level (bool, optional): whether the velocity error is enforced

        Returns:
            int: the index of the last row used by the constraint
        """
        self._check_unbound()
        if stabilization_time_constant <= 0.0:
            raise contract_violation(
                f"The stabilization time constant must be positive, got {stabilization_time_constant}."
            )
        axes = np.asarray(constraint_axis, dtype=float)

        constraint = None
        previous = self.constraints[-1] if self.constraints else None
        if (
            axes.ndim == 1
            and allow_constraint_appending
            and isinstance(previous, LoopConstraint)
        ):
            if (
                previous.body_ids == [predecessor_id, successor_id]
                and previous.body_frames[0].is_close(X_predecessor, MERGE_TOLERANCE)
                and previous.body_frames[1].is_close(X_successor, MERGE_TOLERANCE)
            ):
                previous.append_constraint_axis(axes, position_level, velocity_level)
                constraint = previous
                n_rows = 1
                logger.debug(
                    "Appended axis %s to loop constraint %r", axes, previous.name
                )

        if constraint is None:
            constraint = LoopConstraint(
                predecessor_id,
                successor_id,
                X_predecessor,
                X_successor,
                list(axes.reshape(-1, 6)),
                position_level,
                velocity_level,
                name,
            )
            self._register(constraint)
            self.loop_constraints.append(constraint)
            n_rows = constraint.size_of_constraint

        constraint.baumgarte_time_constant = stabilization_time_constant
        constraint.enable_baumgarte_stabilization = enable_stabilization
        return self._append_rows(n_rows, ConstraintType.LOOP, name)

    def add_custom_constraint(self, constraint: Constraint) -> int:
        """Adds a user defined constraint

        Args:
            constraint (Constraint): the constraint, its size and name are read from it

        Returns:
            int: the index of the last row used by the constraint
        """
        self._check_unbound()
        self._register(constraint)
        self.custom_constraints.append(constraint)
        return self._append_rows(
            constraint.size_of_constraint, ConstraintType.CUSTOM, constraint.name
        )

    def bind(self, model: Model) -> bool:
        """Resolves the constraints against the model and allocates the working memory

        Args:
            model (Model): the model the constraints act on

        Returns:
            bool: True once the set is bound
        """
        if self.bound:
            raise contract_violation("Binding an already bound constraint set!")

        for constraint in self.constraints:
            constraint.bind(model)

        n = model.dof_count
        m = self.size()
        n_bodies = model.n_bodies

        self.cache = ConstraintCache.allocate(model.qdot_size)

        self.H = np.zeros((n, n))
        self.C = np.zeros(n)
        self.gamma = np.zeros(m)
        self.G = np.zeros((m, n))
        self.A = np.zeros((n + m, n + m))
        self.b = np.zeros(n + m)
        self.x = np.zeros(n + m)

        self.GT_qr_Q = np.zeros((n, n))
        self.Y = np.zeros((n, m))
        self.Z = np.zeros((n, max(n - m, 0)))
        self.qddot_y = np.zeros(m)
        self.qddot_z = np.zeros(max(n - m, 0))

        self.K = np.zeros((m, m))
        self.a = np.zeros(m)
        self.QDDot_0 = np.zeros(n)
        self.QDDot_t = np.zeros(n)
        self.f_t = np.zeros((m, 6))
        self.point_accel_0 = np.zeros((m, 3))
        self.f_ext_constraints = np.zeros((n_bodies, 6))

        self.d_pA = np.zeros((n_bodies, 6))
        self.d_a = np.zeros((n_bodies, 6))
        self.d_u = np.zeros(n_bodies)
        self.d_multdof3_u = np.zeros((n_bodies, 3))

        self.bound = True
        logger.debug(
            "Bound %d constraints (%d rows) to a model with %d dofs", len(self), m, n
        )
        self.print_table()
        return self.bound

    def clear(self) -> None:
        """Zeroes the errors, forces, impulses and the working memory. The
        registered constraints and the row layout are left untouched."""
        self.err.fill(0.0)
        self.errd.fill(0.0)
        self.force.fill(0.0)
        self.impulse.fill(0.0)
        if not self.bound:
            return
        for array in (
            self.H,
            self.C,
            self.gamma,
            self.G,
            self.A,
            self.b,
            self.x,
            self.GT_qr_Q,
            self.Y,
            self.Z,
            self.qddot_y,
            self.qddot_z,
            self.K,
            self.a,
            self.QDDot_0,
            self.QDDot_t,
            self.f_t,
            self.point_accel_0,
            self.f_ext_constraints,
            self.d_pA,
            self.d_a,
            self.d_u,
            self.d_multdof3_u,
        ):
            array.fill(0.0)
        self.cache.reset()

    def print_table(self) -> str:
        """Logs and returns the table of the constraint rows"""
        table = PrettyTable(["Row", "Name", "Type", "Constraint", "Force"])
        table.title = "Constraint set"
        for index, constraint in enumerate(self.constraints):
            for row in range(
                constraint.row_in_system,
                constraint.row_in_system + constraint.size_of_constraint,
            ):
                table.add_row(
                    [
                        row,
                        self.name[row],
                        self.constraint_type[row].name,
                        index,
                        f"{self.force[row]:.6g}",
                    ]
                )
        logger.debug("\n%s", table)
        return table.get_string()
