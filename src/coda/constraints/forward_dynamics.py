# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

"""Constrained forward dynamics, impulses and the Kokkevis contact method.

The constraint forces are stored in ``cs.force`` (impulses in
``cs.impulse``) as the force exerted by the constraints, so that
``H qddot + C = tau + G^T force`` for every method.
"""

import logging
from typing import List, Union

import numpy as np
import numpy.typing as npt

from coda.constraints.constraint_set import ConstraintSet
from coda.constraints.solvers import (
    compute_null_space_basis,
    solve_constrained_system_direct,
    solve_constrained_system_null_space,
    solve_constrained_system_range_space_sparse,
    solve_linear_system,
)
from coda.constraints.system import (
    calc_constrained_system_variables,
    calc_constraints_jacobian,
    check_bound,
)
from coda.core.exceptions import check_size, contract_violation
from coda.core.rbd_algorithms import (
    crba,
    forward_dynamics,
    spatial_gravity,
    suppress_logging,
    update_kinematics_custom,
)
from coda.core.spatial_math import crossf
from coda.model import Model

logger = logging.getLogger(__name__)


def _output(qddot: Union[np.ndarray, None], n: int) -> np.ndarray:
    if qddot is None:
        return np.zeros(n)
    check_size("output", qddot, n)
    return qddot


def forward_dynamics_constraints_direct(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    tau: npt.ArrayLike,
    cs: ConstraintSet,
    qddot: Union[np.ndarray, None] = None,
    f_ext: Union[List[np.ndarray], None] = None,
) -> np.ndarray:
    """Constrained forward dynamics solving the augmented KKT system

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot (npt.ArrayLike): the generalized velocities
        tau (npt.ArrayLike): the generalized forces
        cs (ConstraintSet): the bound constraint set, receives the constraint forces
        qddot (np.ndarray, optional): the output vector, filled in place
        f_ext (List[np.ndarray], optional): external spatial forces in base coordinates, one per body

    Returns:
        qddot (np.ndarray): the generalized accelerations
    """
    logger.debug("-------- forward_dynamics_constraints_direct --------")
    qddot = _output(qddot, model.dof_count)
    calc_constrained_system_variables(model, q, qdot, tau, cs, f_ext)
    qddot[:], cs.force[:] = solve_constrained_system_direct(
        cs.H,
        cs.G,
        np.asarray(tau, dtype=float) - cs.C,
        cs.gamma,
        cs.A,
        cs.b,
        cs.x,
        cs.linear_solver,
    )
    return qddot


def forward_dynamics_constraints_range_space_sparse(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    tau: npt.ArrayLike,
    cs: ConstraintSet,
    qddot: Union[np.ndarray, None] = None,
    f_ext: Union[List[np.ndarray], None] = None,
) -> np.ndarray:
    """Constrained forward dynamics in the range space of the constraints.
    Requires a positive definite mass matrix. On return cs.H holds its sparse
    factor L rather than the mass matrix.

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot (npt.ArrayLike): the generalized velocities
        tau (npt.ArrayLike): the generalized forces
        cs (ConstraintSet): the bound constraint set, receives the constraint forces
        qddot (np.ndarray, optional): the output vector, filled in place
        f_ext (List[np.ndarray], optional): external spatial forces in base coordinates, one per body

    Returns:
        qddot (np.ndarray): the generalized accelerations
    """
    qddot = _output(qddot, model.dof_count)
    calc_constrained_system_variables(model, q, qdot, tau, cs, f_ext)
    qddot[:], cs.force[:] = solve_constrained_system_range_space_sparse(
        model,
        cs.H,
        cs.G,
        np.asarray(tau, dtype=float) - cs.C,
        cs.gamma,
        cs.K,
        cs.a,
        cs.linear_solver,
    )
    return qddot


def _solve_null_space(
    cs: ConstraintSet, c: np.ndarray, rhs: np.ndarray, qddot: np.ndarray, lam: np.ndarray
) -> None:
    compute_null_space_basis(cs.G, cs.GT_qr_Q, cs.Y, cs.Z)
    qddot[:], lam[:], cs.qddot_y[:], cs.qddot_z[:] = solve_constrained_system_null_space(
        cs.H, cs.G, c, rhs, cs.Y, cs.Z, cs.linear_solver
    )


def forward_dynamics_constraints_null_space(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    tau: npt.ArrayLike,
    cs: ConstraintSet,
    qddot: Union[np.ndarray, None] = None,
    f_ext: Union[List[np.ndarray], None] = None,
) -> np.ndarray:
    """Constrained forward dynamics in the null space of the constraints

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot (npt.ArrayLike): the generalized velocities
        tau (npt.ArrayLike): the generalized forces
        cs (ConstraintSet): the bound constraint set, receives the constraint forces
        qddot (np.ndarray, optional): the output vector, filled in place
        f_ext (List[np.ndarray], optional): external spatial forces in base coordinates, one per body

    Returns:
        qddot (np.ndarray): the generalized accelerations
    """
    logger.debug("-------- forward_dynamics_constraints_null_space --------")
    qddot = _output(qddot, model.dof_count)
    calc_constrained_system_variables(model, q, qdot, tau, cs, f_ext)
    _solve_null_space(
        cs, np.asarray(tau, dtype=float) - cs.C, cs.gamma, qddot, cs.force
    )
    return qddot


def _impulse_system(
    model: Model, q: npt.ArrayLike, qdot_minus: npt.ArrayLike, cs: ConstraintSet
) -> np.ndarray:
    """Updates H and G at q

    Returns:
        np.ndarray: the generalized momentum before the impact
    """
    check_bound(cs)
    check_size("q", q, model.q_size)
    check_size("qdot_minus", qdot_minus, model.qdot_size)
    update_kinematics_custom(model, q)
    crba(model, q, cs.H, update_kinematics=False)
    calc_constraints_jacobian(model, q, cs, cs.G, False)
    return cs.H @ np.asarray(qdot_minus, dtype=float)


def compute_constraint_impulses_direct(
    model: Model,
    q: npt.ArrayLike,
    qdot_minus: npt.ArrayLike,
    cs: ConstraintSet,
    qdot_plus: Union[np.ndarray, None] = None,
) -> np.ndarray:
    """Computes the velocities after an impact such that G qdot_plus = cs.v_plus,
    by solving the augmented KKT system

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot_minus (npt.ArrayLike): the generalized velocities before the impact
        cs (ConstraintSet): the bound constraint set, receives the impulses
        qdot_plus (np.ndarray, optional): the output vector, filled in place

    Returns:
        qdot_plus (np.ndarray): the generalized velocities after the impact
    """
    qdot_plus = _output(qdot_plus, model.dof_count)
    momentum = _impulse_system(model, q, qdot_minus, cs)
    qdot_plus[:], cs.impulse[:] = solve_constrained_system_direct(
        cs.H, cs.G, momentum, cs.v_plus, cs.A, cs.b, cs.x, cs.linear_solver
    )
    return qdot_plus


def compute_constraint_impulses_range_space_sparse(
    model: Model,
    q: npt.ArrayLike,
    qdot_minus: npt.ArrayLike,
    cs: ConstraintSet,
    qdot_plus: Union[np.ndarray, None] = None,
) -> np.ndarray:
    """Computes the velocities after an impact with the range space method"""
    qdot_plus = _output(qdot_plus, model.dof_count)
    momentum = _impulse_system(model, q, qdot_minus, cs)
    qdot_plus[:], cs.impulse[:] = solve_constrained_system_range_space_sparse(
        model, cs.H, cs.G, momentum, cs.v_plus, cs.K, cs.a, cs.linear_solver
    )
    return qdot_plus


def compute_constraint_impulses_null_space(
    model: Model,
    q: npt.ArrayLike,
    qdot_minus: npt.ArrayLike,
    cs: ConstraintSet,
    qdot_plus: Union[np.ndarray, None] = None,
) -> np.ndarray:
    """Computes the velocities after an impact with the null space method"""
    qdot_plus = _output(qdot_plus, model.dof_count)
    momentum = _impulse_system(model, q, qdot_minus, cs)
    _solve_null_space(cs, momentum, cs.v_plus, qdot_plus, cs.impulse)
    return qdot_plus


def forward_dynamics_apply_constraint_forces(
    model: Model,
    tau: npt.ArrayLike,
    cs: ConstraintSet,
    qddot: Union[np.ndarray, None] = None,
) -> np.ndarray:
    """Articulated body algorithm restricted to the terms that change when
    the forces in cs.f_ext_constraints are applied. The joint transforms,
    velocities, bias accelerations and the U, d, Dinv terms of a previous
    forward_dynamics call at the same state are reused.

    Args:
        model (Model): the model
        tau (npt.ArrayLike): the generalized forces
        cs (ConstraintSet): the bound constraint set
        qddot (np.ndarray, optional): the output vector, filled in place

    Returns:
        qddot (np.ndarray): the generalized accelerations
    """
    logger.debug("-------- forward_dynamics_apply_constraint_forces --------")
    qddot = _output(qddot, model.dof_count)

    for i in range(1, model.n_bodies):
        model.IA[i] = model.I[i].copy()
        model.pA[i] = crossf(model.v[i]) @ model.I[i] @ model.v[i]
        if np.any(cs.f_ext_constraints[i]):
            f_body = model.X_base[i].apply_adjoint(cs.f_ext_constraints[i])
            logger.debug("External force (%d) = %s", i, f_body)
            model.pA[i] = model.pA[i] - f_body

    for i in range(model.n_bodies - 1, 0, -1):
        joint = model.joints[i]
        qi, ni = joint.q_index, joint.dof_count
        parent = model.parent[i]
        if ni == 1:
            model.u[i] = np.array([tau[qi] - joint.S[:, 0] @ model.pA[i]])
            if parent == 0:
                continue
            U = model.U[i][:, 0]
            Ia = model.IA[i] - np.outer(U, U / model.d[i])
            pa = model.pA[i] + Ia @ model.c[i] + U * model.u[i][0] / model.d[i]
        else:
            model.u[i] = np.asarray(tau[qi : qi + ni], dtype=float) - joint.S.T @ model.pA[i]
            if parent == 0:
                continue
            UDinv = model.U[i] @ model.Dinv[i]
            Ia = model.IA[i] - UDinv @ model.U[i].T
            pa = model.pA[i] + Ia @ model.c[i] + UDinv @ model.u[i]
        X = model.X_lambda[i].to_matrix()
        model.IA[parent] = model.IA[parent] + X.T @ Ia @ X
        model.pA[parent] = model.pA[parent] + model.X_lambda[i].apply_transpose(pa)
        logger.debug("pA[%d] = %s", parent, model.pA[parent])

    model.a[0] = spatial_gravity(model)
    for i in range(1, model.n_bodies):
        joint = model.joints[i]
        qi, ni = joint.q_index, joint.dof_count
        a = model.X_lambda[i].apply(model.a[model.parent[i]]) + model.c[i]
        if ni == 1:
            qddot[qi] = (model.u[i][0] - model.U[i][:, 0] @ a) / model.d[i]
            model.a[i] = a + joint.S[:, 0] * qddot[qi]
        else:
            qdd = model.Dinv[i] @ (model.u[i] - model.U[i].T @ a)
            qddot[qi : qi + ni] = qdd
            model.a[i] = a + joint.S @ qdd

    logger.debug("qddot = %s", qddot)
    return qddot


def forward_dynamics_acceleration_deltas(
    model: Model,
    cs: ConstraintSet,
    QDDot_t: np.ndarray,
    body_id: int,
    f_t: np.ndarray,
) -> np.ndarray:
    """Computes the change of the generalized accelerations caused by the
    force f_t[body_id] alone, reusing the articulated quantities of a previous
    forward_dynamics call.

    Args:
        model (Model): the model
        cs (ConstraintSet): the bound constraint set, provides the delta buffers
        QDDot_t (np.ndarray): the output vector, filled in place
        body_id (int): the movable body the force acts on
        f_t (np.ndarray): the spatial forces in base coordinates, one per body

    Returns:
        QDDot_t (np.ndarray): the acceleration change
    """
    cs.d_pA.fill(0.0)
    cs.d_a.fill(0.0)
    cs.d_u.fill(0.0)
    cs.d_multdof3_u.fill(0.0)

    cs.d_pA[body_id] = -model.X_base[body_id].apply_adjoint(f_t[body_id])
    for i in range(body_id, 0, -1):
        joint = model.joints[i]
        ni = joint.dof_count
        parent = model.parent[i]
        if ni == 1:
            cs.d_u[i] = -(joint.S[:, 0] @ cs.d_pA[i])
            if parent != 0:
                cs.d_pA[parent] += model.X_lambda[i].apply_transpose(
                    cs.d_pA[i] + model.U[i][:, 0] * cs.d_u[i] / model.d[i]
                )
        else:
            cs.d_multdof3_u[i, :ni] = -(joint.S.T @ cs.d_pA[i])
            if parent != 0:
                cs.d_pA[parent] += model.X_lambda[i].apply_transpose(
                    cs.d_pA[i]
                    + model.U[i] @ model.Dinv[i] @ cs.d_multdof3_u[i, :ni]
                )

    for i in range(1, model.n_bodies):
        joint = model.joints[i]
        qi, ni = joint.q_index, joint.dof_count
        Xa = model.X_lambda[i].apply(cs.d_a[model.parent[i]])
        if ni == 1:
            QDDot_t[qi] = (cs.d_u[i] - model.U[i][:, 0] @ Xa) / model.d[i]
            cs.d_a[i] = Xa + joint.S[:, 0] * QDDot_t[qi]
        else:
            qdd = model.Dinv[i] @ (cs.d_multdof3_u[i, :ni] - model.U[i].T @ Xa)
            QDDot_t[qi : qi + ni] = qdd
            cs.d_a[i] = Xa + joint.S @ qdd
    return QDDot_t


def forward_dynamics_contacts_kokkevis(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    tau: npt.ArrayLike,
    cs: ConstraintSet,
    qddot: Union[np.ndarray, None] = None,
) -> np.ndarray:
    """Contact forward dynamics with the test force method of Kokkevis.

    The coupling K between the contact rows is built by applying a unit test
    force along every contact direction and measuring the resulting change
    of every contact point acceleration. The contact forces solve
    K force = -n . a_0, a_0 being the contact point accelerations without
    contact forces, and are then applied to the unconstrained dynamics.

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot (npt.ArrayLike): the generalized velocities
        tau (npt.ArrayLike): the generalized forces
        cs (ConstraintSet): the bound constraint set, made of contact constraints only
        qddot (np.ndarray, optional): the output vector, filled in place

    Returns:
        qddot (np.ndarray): the generalized accelerations
    """
    logger.debug("-------- forward_dynamics_contacts_kokkevis --------")
    check_bound(cs)
    check_size("q", q, model.q_size)
    check_size("qdot", qdot, model.qdot_size)
    check_size("tau", tau, model.dof_count)
    if len(cs.constraints) != len(cs.contact_constraints):
        raise contract_violation(
            "Incompatible constraint types: all constraints must be contact "
            "constraints for the Kokkevis method."
        )
    qddot = _output(qddot, model.dof_count)

    with suppress_logging():
        forward_dynamics(model, q, qdot, tau, cs.QDDot_0)
        update_kinematics_custom(model, None, None, cs.QDDot_0)
        for contact in cs.contact_constraints:
            contact.calc_point_accelerations(
                model, q, qdot, cs.QDDot_0, cs.point_accel_0, False
            )
            contact.calc_point_acceleration_error(cs.point_accel_0, cs.a)

    for contact in cs.contact_constraints:
        ci = contact.row_in_system
        movable_id = model.get_movable_body_id(contact.body_id)
        contact.calc_point_force_jacobian(model, q, cs.cache, cs.f_t, False)

        for j in range(contact.size_of_constraint):
            cs.f_ext_constraints[movable_id] = cs.f_t[ci + j]
            forward_dynamics_acceleration_deltas(
                model, cs, cs.QDDot_t, movable_id, cs.f_ext_constraints
            )
            cs.f_ext_constraints[movable_id] = 0.0
            cs.QDDot_t += cs.QDDot_0

            with suppress_logging():
                update_kinematics_custom(model, None, None, cs.QDDot_t)
                for other in cs.contact_constraints:
                    cj = other.row_in_system
                    point_accel_t = other.calc_point_accelerations(
                        model, q, qdot, cs.QDDot_t, None, False
                    )
                    for k, normal in enumerate(other.normals):
                        cs.K[ci + j, cj + k] = normal @ (
                            point_accel_t - cs.point_accel_0[cj + k]
                        )

    logger.debug("K = \n%s", cs.K)
    logger.debug("a = %s", cs.a)
    solve_linear_system(cs.K, cs.a, cs.linear_solver, cs.force)
    logger.debug("force = %s", cs.force)

    cs.f_ext_constraints.fill(0.0)
    for contact in cs.contact_constraints:
        movable_id = model.get_movable_body_id(contact.body_id)
        rows = contact.rows
        cs.f_ext_constraints[movable_id] += cs.force[rows] @ cs.f_t[rows]

    with suppress_logging():
        forward_dynamics_apply_constraint_forces(model, tau, cs, qddot)
    return qddot
