# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

"""Rigid body algorithms on a :class:`coda.model.Model`.

These are the unconstrained building blocks used by the constrained dynamics:
kinematics update, CRBA, nonlinear effects, ABA, point Jacobians and the
sparse ``H = L^T L`` factorization. They store their intermediate quantities
on the model, as the constrained solvers reuse them.
"""

import contextlib
import logging
from typing import Iterator, List, Union

import numpy as np
import numpy.typing as npt

from coda.core.spatial_math import SpatialTransform, Xtrans, crossf, crossm
from coda.model import Model

logger = logging.getLogger(__name__)


@contextlib.contextmanager
def suppress_logging(level: int = logging.CRITICAL) -> Iterator[None]:
    """Disables the log records up to level while the context is active"""
    previous = logging.root.manager.disable
    logging.disable(level)
    try:
        yield
    finally:
        logging.disable(previous)


def spatial_gravity(model: Model) -> np.ndarray:
    """
    Returns:
        np.ndarray: the base acceleration that emulates gravity, [-g; 0]
    """
    return np.concatenate([-model.gravity, np.zeros(3)])


def update_kinematics_custom(
    model: Model,
    q: Union[npt.ArrayLike, None] = None,
    qdot: Union[npt.ArrayLike, None] = None,
    qddot: Union[npt.ArrayLike, None] = None,
) -> None:
    """Updates the transforms, velocities and accelerations stored in the model.
    Only the levels whose input is not None are recomputed.

    Args:
        model (Model): the model
        q (npt.ArrayLike, optional): the generalized positions
        qdot (npt.ArrayLike, optional): the generalized velocities
        qddot (npt.ArrayLike, optional): the generalized accelerations
    """
    if q is not None:
        for i in range(1, model.n_bodies):
            X_J = model.joints[i].spatial_transform(q)
            model.X_lambda[i] = X_J * model.X_T[i]
            model.X_base[i] = model.X_lambda[i] * model.X_base[model.parent[i]]

    if qdot is not None:
        for i in range(1, model.n_bodies):
            joint = model.joints[i]
            v_J = joint.S @ qdot[joint.q_index : joint.q_index + joint.dof_count]
            model.v[i] = model.X_lambda[i].apply(model.v[model.parent[i]]) + v_J
            model.c[i] = crossm(model.v[i]) @ v_J

    if qddot is not None:
        model.a[0] = np.zeros(6)
        for i in range(1, model.n_bodies):
            joint = model.joints[i]
            model.a[i] = (
                model.X_lambda[i].apply(model.a[model.parent[i]])
                + model.c[i]
                + joint.S @ qddot[joint.q_index : joint.q_index + joint.dof_count]
            )


def crba(
    model: Model,
    q: npt.ArrayLike,
    H: Union[np.ndarray, None] = None,
    update_kinematics: bool = True,
) -> np.ndarray:
    """Composite Rigid Body Algorithm (Roy Featherstone) that computes the Mass Matrix.

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        H (np.ndarray, optional): the output matrix, filled in place
        update_kinematics (bool, optional): whether to recompute the joint transforms

    Returns:
        H (np.ndarray): the mass matrix
    """
    if H is None:
        H = np.zeros((model.dof_count, model.dof_count))
    else:
        H.fill(0.0)

    if update_kinematics:
        update_kinematics_custom(model, q)

    for i in range(1, model.n_bodies):
        model.Ic[i] = model.I[i].copy()

    for i in range(model.n_bodies - 1, 0, -1):
        parent = model.parent[i]
        if parent != 0:
            X = model.X_lambda[i].to_matrix()
            model.Ic[parent] = model.Ic[parent] + X.T @ model.Ic[i] @ X

    for i in range(model.n_bodies - 1, 0, -1):
        joint_i = model.joints[i]
        qi, ni = joint_i.q_index, joint_i.dof_count
        F = model.Ic[i] @ joint_i.S
        H[qi : qi + ni, qi : qi + ni] = joint_i.S.T @ F

        j = i
        while model.parent[j] != 0:
            F = model.X_lambda[j].to_matrix_transpose() @ F
            j = model.parent[j]
            joint_j = model.joints[j]
            qj, nj = joint_j.q_index, joint_j.dof_count
            H[qi : qi + ni, qj : qj + nj] = F.T @ joint_j.S
            H[qj : qj + nj, qi : qi + ni] = H[qi : qi + ni, qj : qj + nj].T
    return H


def nonlinear_effects(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    C: Union[np.ndarray, None] = None,
    f_ext: Union[List[np.ndarray], None] = None,
) -> np.ndarray:
    """Reduced Recursive Newton-Euler algorithm (zero accelerations) computing the
    Coriolis, centrifugal and gravity terms.

    The joint transforms, body velocities and bias accelerations ``c`` stored
    in the model are refreshed; ``X_base`` is left untouched.

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot (npt.ArrayLike): the generalized velocities
        C (np.ndarray, optional): the output vector, filled in place
        f_ext (List[np.ndarray], optional): external spatial forces in base coordinates, one per body

    Returns:
        C (np.ndarray): the bias force
    """
    if C is None:
        C = np.zeros(model.dof_count)

    n = model.n_bodies
    a = [spatial_gravity(model)] + [None] * (n - 1)
    f = [np.zeros(6) for _ in range(n)]
    X_base = [SpatialTransform()] + [None] * (n - 1)

    for i in range(1, n):
        joint = model.joints[i]
        parent = model.parent[i]
        X_J, v_J, c_J = joint.jcalc(q, qdot)
        model.X_lambda[i] = X_J * model.X_T[i]
        model.v[i] = model.X_lambda[i].apply(model.v[parent]) + v_J
        model.c[i] = c_J + crossm(model.v[i]) @ v_J
        a[i] = model.X_lambda[i].apply(a[parent]) + model.c[i]

        f[i] = model.I[i] @ a[i] + crossf(model.v[i]) @ model.I[i] @ model.v[i]
        if f_ext is not None:
            X_base[i] = model.X_lambda[i] * X_base[parent]
            f[i] = f[i] - X_base[i].apply_adjoint(f_ext[i])

    for i in range(n - 1, 0, -1):
        joint = model.joints[i]
        C[joint.q_index : joint.q_index + joint.dof_count] = joint.S.T @ f[i]
        parent = model.parent[i]
        if parent != 0:
            f[parent] = f[parent] + model.X_lambda[i].apply_transpose(f[i])
    return C


def forward_dynamics(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    tau: npt.ArrayLike,
    qddot: Union[np.ndarray, None] = None,
    f_ext: Union[List[np.ndarray], None] = None,
) -> np.ndarray:
    """Featherstone Articulated Body Algorithm.

    The articulated quantities (``IA``, ``pA``, ``U``, ``d``, ``Dinv``, ``u``)
    and the bias accelerations ``c`` are left in the model, where the
    constrained force application reuses them.

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot (npt.ArrayLike): the generalized velocities
        tau (npt.ArrayLike): the generalized forces
        qddot (np.ndarray, optional): the output vector, filled in place
        f_ext (List[np.ndarray], optional): external spatial forces in base coordinates, one per body

    Returns:
        qddot (np.ndarray): the generalized accelerations
    """
    if qddot is None:
        qddot = np.zeros(model.dof_count)

    n = model.n_bodies
    for i in range(1, n):
        joint = model.joints[i]
        parent = model.parent[i]
        X_J, v_J, c_J = joint.jcalc(q, qdot)
        model.X_lambda[i] = X_J * model.X_T[i]
        model.X_base[i] = model.X_lambda[i] * model.X_base[parent]
        model.v[i] = model.X_lambda[i].apply(model.v[parent]) + v_J
        model.c[i] = c_J + crossm(model.v[i]) @ v_J
        model.IA[i] = model.I[i].copy()
        model.pA[i] = crossf(model.v[i]) @ model.I[i] @ model.v[i]
        if f_ext is not None:
            model.pA[i] = model.pA[i] - model.X_base[i].apply_adjoint(f_ext[i])

    for i in range(n - 1, 0, -1):
        joint = model.joints[i]
        qi, ni = joint.q_index, joint.dof_count
        parent = model.parent[i]
        S = joint.S
        if ni == 1:
            s = S[:, 0]
            U = model.IA[i] @ s
            model.d[i] = float(s @ U)
            model.U[i] = U.reshape(6, 1)
            model.Dinv[i] = np.array([[1.0 / model.d[i]]])
            model.u[i] = np.array([tau[qi] - s @ model.pA[i]])
            if parent != 0:
                Ia = model.IA[i] - np.outer(U, U / model.d[i])
                pa = model.pA[i] + Ia @ model.c[i] + U * model.u[i][0] / model.d[i]
                _fold_into_parent(model, i, Ia, pa)
        else:
            model.U[i] = model.IA[i] @ S
            model.Dinv[i] = np.linalg.inv(S.T @ model.U[i])
            model.u[i] = np.asarray(tau[qi : qi + ni], dtype=float) - S.T @ model.pA[i]
            if parent != 0:
                UDinv = model.U[i] @ model.Dinv[i]
                Ia = model.IA[i] - UDinv @ model.U[i].T
                pa = model.pA[i] + Ia @ model.c[i] + UDinv @ model.u[i]
                _fold_into_parent(model, i, Ia, pa)

    model.a[0] = spatial_gravity(model)
    for i in range(1, n):
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
    logger.debug("ABA qddot = %s", qddot)
    return qddot


def _fold_into_parent(model: Model, i: int, Ia: np.ndarray, pa: np.ndarray) -> None:
    parent = model.parent[i]
    X = model.X_lambda[i].to_matrix()
    model.IA[parent] = model.IA[parent] + X.T @ Ia @ X
    model.pA[parent] = model.pA[parent] + model.X_lambda[i].apply_transpose(pa)


def calc_body_to_base_coordinates(
    model: Model,
    q: npt.ArrayLike,
    body_id: int,
    point: npt.ArrayLike,
    update_kinematics: bool = True,
) -> np.ndarray:
    """
    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        body_id (int): a movable or fixed body id
        point (npt.ArrayLike): the point in body coordinates
        update_kinematics (bool, optional): whether to recompute the transforms

    Returns:
        np.ndarray: the point in base coordinates
    """
    if update_kinematics:
        update_kinematics_custom(model, q)
    body_id, point = model.to_movable_point(body_id, point)
    X = model.X_base[body_id]
    return X.E.T @ point + X.r


def calc_base_to_body_coordinates(
    model: Model,
    q: npt.ArrayLike,
    body_id: int,
    point: npt.ArrayLike,
    update_kinematics: bool = True,
) -> np.ndarray:
    """
    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        body_id (int): a movable or fixed body id
        point (npt.ArrayLike): the point in base coordinates
        update_kinematics (bool, optional): whether to recompute the transforms

    Returns:
        np.ndarray: the point in body coordinates
    """
    if update_kinematics:
        update_kinematics_custom(model, q)
    movable_id, _ = model.to_movable_point(body_id, np.zeros(3))
    X = model.X_base[movable_id]
    local = X.E @ (np.asarray(point, dtype=float) - X.r)
    if model.is_fixed_body_id(body_id):
        fixed = model.fixed_bodies[body_id - model.fixed_body_discriminator]
        local = fixed.parent_transform.E @ (local - fixed.parent_transform.r)
    return local


def calc_body_world_transform(
    model: Model,
    q: npt.ArrayLike,
    body_id: int,
    frame: Union[SpatialTransform, None] = None,
    update_kinematics: bool = True,
) -> SpatialTransform:
    """
    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        body_id (int): a movable or fixed body id
        frame (SpatialTransform, optional): a frame fixed to the body, the body frame if None
        update_kinematics (bool, optional): whether to recompute the transforms

    Returns:
        SpatialTransform: the transform from the base to the frame
    """
    if update_kinematics:
        update_kinematics_custom(model, q)
    body_id, frame = model.to_movable_frame(
        body_id, frame if frame is not None else SpatialTransform()
    )
    return frame * model.X_base[body_id]


def calc_point_jacobian(
    model: Model,
    q: npt.ArrayLike,
    body_id: int,
    point: npt.ArrayLike,
    G: Union[np.ndarray, None] = None,
    update_kinematics: bool = True,
) -> np.ndarray:
    """
    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        body_id (int): a movable or fixed body id
        point (npt.ArrayLike): the point in body coordinates
        G (np.ndarray, optional): the 3 x dof output matrix, filled in place
        update_kinematics (bool, optional): whether to recompute the transforms

    Returns:
        G (np.ndarray): the Jacobian of the point linear velocity, in base coordinates
    """
    if G is None:
        G = np.zeros((3, model.dof_count))
    J6 = calc_point_jacobian_6d(model, q, body_id, point, None, update_kinematics)
    G[:, :] = J6[:3, :]
    return G


def calc_point_jacobian_6d(
    model: Model,
    q: npt.ArrayLike,
    body_id: int,
    point: npt.ArrayLike,
    G: Union[np.ndarray, None] = None,
    update_kinematics: bool = True,
) -> np.ndarray:
    """
    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        body_id (int): a movable or fixed body id
        point (npt.ArrayLike): the point in body coordinates
        G (np.ndarray, optional): the 6 x dof output matrix, filled in place
        update_kinematics (bool, optional): whether to recompute the transforms

    Returns:
        G (np.ndarray): the Jacobian of [linear velocity; angular velocity] of the
        point, in base coordinates
    """
    if G is None:
        G = np.zeros((6, model.dof_count))
    else:
        G.fill(0.0)
    if update_kinematics:
        update_kinematics_custom(model, q)

    point_trans = Xtrans(
        calc_body_to_base_coordinates(model, q, body_id, point, False)
    )
    j = model.get_movable_body_id(body_id)
    while j != 0:
        joint = model.joints[j]
        X = point_trans * model.X_base[j].inverse()
        G[:, joint.q_index : joint.q_index + joint.dof_count] = (
            X.to_matrix() @ joint.S
        )
        j = model.parent[j]
    return G


def _point_frame(model: Model, body_id: int, point: npt.ArrayLike):
    """Transform from the movable body frame to a frame at point, oriented as the base"""
    body_id, point = model.to_movable_point(body_id, point)
    return body_id, SpatialTransform(model.X_base[body_id].E.T, point)


def calc_point_velocity_6d(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    body_id: int,
    point: npt.ArrayLike,
    update_kinematics: bool = True,
) -> np.ndarray:
    """
    Returns:
        np.ndarray: [linear velocity; angular velocity] of the point in base coordinates
    """
    if update_kinematics:
        update_kinematics_custom(model, q, qdot)
    body_id, X = _point_frame(model, body_id, point)
    return X.apply(model.v[body_id])


def calc_point_velocity(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    body_id: int,
    point: npt.ArrayLike,
    update_kinematics: bool = True,
) -> np.ndarray:
    return calc_point_velocity_6d(model, q, qdot, body_id, point, update_kinematics)[
        :3
    ]


def calc_point_acceleration_6d(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    qddot: npt.ArrayLike,
    body_id: int,
    point: npt.ArrayLike,
    update_kinematics: bool = True,
) -> np.ndarray:
    """Classical acceleration of a point, without gravity

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot (npt.ArrayLike): the generalized velocities
        qddot (npt.ArrayLike): the generalized accelerations
        body_id (int): a movable or fixed body id
        point (npt.ArrayLike): the point in body coordinates
        update_kinematics (bool, optional): whether to recompute the kinematics.
            If False the accelerations stored in the model are used.

    Returns:
        np.ndarray: [linear acceleration; angular acceleration] in base coordinates
    """
    if update_kinematics:
        update_kinematics_custom(model, q, qdot, qddot)
    body_id, X = _point_frame(model, body_id, point)
    p_v = X.apply(model.v[body_id])
    p_a = X.apply(model.a[body_id])
    return np.concatenate([p_a[:3] + np.cross(p_v[3:], p_v[:3]), p_a[3:]])


def calc_point_acceleration(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    qddot: npt.ArrayLike,
    body_id: int,
    point: npt.ArrayLike,
    update_kinematics: bool = True,
) -> np.ndarray:
    return calc_point_acceleration_6d(
        model, q, qdot, qddot, body_id, point, update_kinematics
    )[:3]


def sparse_factorize_ltl(model: Model, H: np.ndarray) -> None:
    """Factorizes in place H = L^T L exploiting the branch induced sparsity.
    The lower triangular L is stored in the lower triangle of H.

    Args:
        model (Model): the model
        H (np.ndarray): the mass matrix, overwritten by L
    """
    n = model.dof_count
    lambda_q = model.lambda_q
    H[np.triu_indices(n, 1)] = 0.0
    for k in range(n - 1, -1, -1):
        H[k, k] = np.sqrt(H[k, k])
        i = lambda_q[k]
        while i != -1:
            H[k, i] /= H[k, k]
            i = lambda_q[i]
        i = lambda_q[k]
        while i != -1:
            j = i
            while j != -1:
                H[i, j] -= H[k, i] * H[k, j]
                j = lambda_q[j]
            i = lambda_q[i]


def sparse_solve_ltx(model: Model, L: np.ndarray, x: np.ndarray) -> None:
    """Solves L^T x = b in place, b being passed in x"""
    lambda_q = model.lambda_q
    for i in range(model.dof_count - 1, -1, -1):
        x[i] /= L[i, i]
        j = lambda_q[i]
        while j != -1:
            x[j] -= L[i, j] * x[i]
            j = lambda_q[j]


def sparse_solve_lx(model: Model, L: np.ndarray, x: np.ndarray) -> None:
    """Solves L x = b in place, b being passed in x"""
    lambda_q = model.lambda_q
    for i in range(model.dof_count):
        j = lambda_q[i]
        while j != -1:
            x[i] -= L[i, j] * x[j]
            j = lambda_q[j]
        x[i] /= L[i, i]
