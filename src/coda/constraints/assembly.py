# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

import logging
from typing import Tuple, Union

import numpy as np
import numpy.typing as npt

from coda.constraints.constraint_set import ConstraintSet
from coda.constraints.solvers import solve_linear_system
from coda.constraints.system import (
    calc_constraints_jacobian,
    calc_constraints_position_error,
    check_bound,
)
from coda.core.constants import JointType
from coda.core.exceptions import check_size
from coda.core.spatial_math import omega_to_qdot
from coda.model import Model

logger = logging.getLogger(__name__)


def _weighted_kkt_matrix(weights: np.ndarray, m: int) -> np.ndarray:
    n = len(weights)
    A = np.zeros((n + m, n + m))
    A[:n, :n] = np.diag(weights)
    return A


def calc_assembly_q(
    model: Model,
    q_init: npt.ArrayLike,
    cs: ConstraintSet,
    weights: npt.ArrayLike,
    tolerance: float = 1e-12,
    max_iter: int = 100,
) -> Tuple[bool, np.ndarray]:
    """Finds a configuration close to q_init that satisfies the position
    constraints, minimizing the weighted displacement with a Gauss-Newton
    iteration.

    Args:
        model (Model): the model
        q_init (npt.ArrayLike): the initial guess
        cs (ConstraintSet): the bound constraint set
        weights (npt.ArrayLike): the weight of every degree of freedom
        tolerance (float, optional): the bound on the error and step norms
        max_iter (int, optional): the maximum number of iterations

    Returns:
        Tuple[bool, np.ndarray]: whether the iteration converged and the last iterate
    """
    check_bound(cs)
    check_size("q_init", q_init, model.q_size)
    check_size("weights", weights, model.dof_count)

    n = model.dof_count
    m = cs.size()
    q = np.array(q_init, dtype=float)
    A = _weighted_kkt_matrix(np.asarray(weights, dtype=float), m)
    b = np.zeros(n + m)
    x = np.zeros(n + m)
    J = np.zeros((m, n))
    e = np.zeros(m)

    calc_constraints_position_error(model, q, cs, e)
    if np.linalg.norm(e) < tolerance:
        return True, q

    for iteration in range(max_iter):
        calc_constraints_jacobian(model, q, cs, J)
        A[n:, :n] = J
        A[:n, n:] = J.T
        b[n:] = -e

        solve_linear_system(A, b, cs.linear_solver, x)
        d = x[:n]

        for joint in model.joints[1:]:
            qi, ni = joint.q_index, joint.dof_count
            if joint.type == JointType.SPHERICAL:
                quat = joint.get_quaternion(q)
                quat = quat + omega_to_qdot(quat, d[qi : qi + 3])
                joint.set_quaternion(quat / np.linalg.norm(quat), q)
            else:
                q[qi : qi + ni] += d[qi : qi + ni]

        calc_constraints_position_error(model, q, cs, e)
        if np.linalg.norm(e) < tolerance and np.linalg.norm(d) < tolerance:
            logger.debug("Assembly converged after %d iterations", iteration + 1)
            return True, q

    logger.warning(
        "Assembly did not converge in %d iterations, the error norm is %g",
        max_iter,
        np.linalg.norm(e),
    )
    return False, q


def calc_assembly_qdot(
    model: Model,
    q: npt.ArrayLike,
    qdot_init: npt.ArrayLike,
    cs: ConstraintSet,
    weights: npt.ArrayLike,
    qdot: Union[np.ndarray, None] = None,
) -> np.ndarray:
    """Projects qdot_init on the velocities that satisfy the constraints at q,
    minimizing the weighted distance from qdot_init

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot_init (npt.ArrayLike): the initial guess
        cs (ConstraintSet): the bound constraint set
        weights (npt.ArrayLike): the weight of every degree of freedom
        qdot (np.ndarray, optional): the output vector, filled in place

    Returns:
        qdot (np.ndarray): the projected generalized velocities
    """
    check_bound(cs)
    check_size("q", q, model.q_size)
    check_size("qdot_init", qdot_init, model.qdot_size)
    check_size("weights", weights, model.qdot_size)
    if qdot is None:
        qdot = np.zeros(model.qdot_size)
    check_size("qdot", qdot, model.qdot_size)

    n = model.dof_count
    m = cs.size()
    weights = np.asarray(weights, dtype=float)
    A = _weighted_kkt_matrix(weights, m)
    b = np.zeros(n + m)
    b[:n] = weights * np.asarray(qdot_init, dtype=float)

    J = calc_constraints_jacobian(model, q, cs, np.zeros((m, n)))
    A[n:, :n] = J
    A[:n, n:] = J.T

    qdot[:] = solve_linear_system(A, b, cs.linear_solver)[:n]
    return qdot
