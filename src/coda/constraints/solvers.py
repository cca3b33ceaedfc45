# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

"""Linear solve strategies for the constrained system

    H qddot - G^T lambda = c
    G qddot = gamma

All of them return ``lambda`` as the force exerted by the constraints.
"""

import logging
from typing import Tuple, Union

import numpy as np
import scipy.linalg

from coda.core.constants import LinearSolver
from coda.core.exceptions import contract_violation
from coda.core.rbd_algorithms import (
    sparse_factorize_ltl,
    sparse_solve_lx,
    sparse_solve_ltx,
)
from coda.model import Model

logger = logging.getLogger(__name__)


def _householder_qr_solve(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    Q, R = scipy.linalg.qr(A, mode="economic")
    return scipy.linalg.solve_triangular(R, Q.T @ b)


def _col_piv_householder_qr_solve(A: np.ndarray, b: np.ndarray) -> np.ndarray:
    Q, R, P = scipy.linalg.qr(A, mode="economic", pivoting=True)
    diagonal = np.abs(np.diag(R))
    # pivots below this threshold are treated as zero
    threshold = np.finfo(A.dtype).eps * max(A.shape) * diagonal[0]
    rank = int(np.count_nonzero(diagonal > threshold))
    z = np.zeros(A.shape[1], dtype=A.dtype)
    z[:rank] = scipy.linalg.solve_triangular(R[:rank, :rank], (Q.T @ b)[:rank])
    x = np.zeros_like(z)
    x[P] = z
    return x


def solve_linear_system(
    A: np.ndarray,
    b: np.ndarray,
    linear_solver: LinearSolver,
    x: Union[np.ndarray, None] = None,
) -> np.ndarray:
    """Solves A x = b with a dense factorization

    Args:
        A (np.ndarray): the system matrix
        b (np.ndarray): the right hand side
        linear_solver (LinearSolver): the factorization
        x (np.ndarray, optional): the output vector, filled in place

    Returns:
        x (np.ndarray): the solution
    """
    if A.shape[0] != len(b) or (x is not None and A.shape[1] != len(x)):
        raise contract_violation(
            f"Mismatching sizes: A is {A.shape}, b has {len(b)} entries."
        )
    if linear_solver not in tuple(LinearSolver):
        raise contract_violation(f"Invalid linear solver: {linear_solver}")

    if A.size == 0:
        solution = np.zeros(A.shape[1])
    elif linear_solver == LinearSolver.PARTIAL_PIV_LU:
        if np.finfo(A.dtype).bits < 64:
            # no LU in reduced precision
            solution = _householder_qr_solve(A, b)
        else:
            solution = scipy.linalg.lu_solve(scipy.linalg.lu_factor(A), b)
    elif linear_solver == LinearSolver.COL_PIV_HOUSEHOLDER_QR:
        solution = _col_piv_householder_qr_solve(A, b)
    else:
        solution = _householder_qr_solve(A, b)

    if x is None:
        return solution
    x[:] = solution
    return x


def _cholesky_solve(M: np.ndarray, rhs: np.ndarray) -> np.ndarray:
    if M.size == 0:
        return np.zeros(0)
    return scipy.linalg.cho_solve(scipy.linalg.cho_factor(M), rhs)


def solve_constrained_system_direct(
    H: np.ndarray,
    G: np.ndarray,
    c: np.ndarray,
    gamma: np.ndarray,
    A: np.ndarray,
    b: np.ndarray,
    x: np.ndarray,
    linear_solver: LinearSolver,
) -> Tuple[np.ndarray, np.ndarray]:
    """Solves the augmented system [[H, G^T], [G, 0]] [qddot; -lambda] = [c; gamma]

    Args:
        H (np.ndarray): the mass matrix
        G (np.ndarray): the constraint Jacobian
        c (np.ndarray): the generalized forces minus the bias forces
        gamma (np.ndarray): the constraint bias
        A (np.ndarray): the buffer of the augmented matrix
        b (np.ndarray): the buffer of the augmented right hand side
        x (np.ndarray): the buffer of the augmented solution
        linear_solver (LinearSolver): the factorization

    Returns:
        Tuple[np.ndarray, np.ndarray]: qddot and lambda
    """
    n = len(c)
    A[:n, :n] = H
    A[:n, n:] = G.T
    A[n:, :n] = G
    A[n:, n:] = 0.0
    b[:n] = c
    b[n:] = gamma
    logger.debug("A = \n%s", A)
    logger.debug("b = %s", b)

    solve_linear_system(A, b, linear_solver, x)
    logger.debug("x = %s", x)
    return x[:n].copy(), -x[n:]


def solve_constrained_system_range_space_sparse(
    model: Model,
    H: np.ndarray,
    G: np.ndarray,
    c: np.ndarray,
    gamma: np.ndarray,
    K: np.ndarray,
    a: np.ndarray,
    linear_solver: LinearSolver,
) -> Tuple[np.ndarray, np.ndarray]:
    """Solves the constrained system in the range space of the constraints,
    exploiting the sparsity of H = L^T L induced by the kinematic tree.
    The linear_solver argument is unused, the reduced system is always solved
    with a Cholesky factorization.

    Args:
        model (Model): the model, which provides the tree structure of H
        H (np.ndarray): the mass matrix, overwritten by its factor L
        G (np.ndarray): the constraint Jacobian
        c (np.ndarray): the generalized forces minus the bias forces
        gamma (np.ndarray): the constraint bias
        K (np.ndarray): the buffer of the reduced matrix Y^T Y
        a (np.ndarray): the buffer of the reduced right hand side
        linear_solver (LinearSolver): the factorization

    Returns:
        Tuple[np.ndarray, np.ndarray]: qddot and lambda
    """
    sparse_factorize_ltl(model, H)

    Y = np.array(G.T)
    for i in range(Y.shape[1]):
        column = Y[:, i].copy()
        sparse_solve_ltx(model, H, column)
        Y[:, i] = column

    z = np.array(c, dtype=float)
    sparse_solve_ltx(model, H, z)

    K[:] = Y.T @ Y
    a[:] = gamma - Y.T @ z
    lam = _cholesky_solve(K, a)

    qddot = c + G.T @ lam
    sparse_solve_ltx(model, H, qddot)
    sparse_solve_lx(model, H, qddot)
    return qddot, lam


def compute_null_space_basis(
    G: np.ndarray, Q: np.ndarray, Y: np.ndarray, Z: np.ndarray
) -> None:
    """Splits the orthogonal factor of the Householder QR of G^T into the
    range space basis Y and the null space basis Z of the constraints"""
    m, n = G.shape
    if m > n:
        raise contract_violation(
            f"The null space method needs at most {n} constraint rows, got {m}."
        )
    Q[:] = scipy.linalg.qr(G.T)[0] if m > 0 else np.eye(Q.shape[0])
    Y[:] = Q[:, :m]
    Z[:] = Q[:, m:]


def solve_constrained_system_null_space(
    H: np.ndarray,
    G: np.ndarray,
    c: np.ndarray,
    gamma: np.ndarray,
    Y: np.ndarray,
    Z: np.ndarray,
    linear_solver: LinearSolver,
) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    """Solves the constrained system by splitting qddot = Y qddot_y + Z qddot_z

    Args:
        H (np.ndarray): the mass matrix
        G (np.ndarray): the constraint Jacobian
        c (np.ndarray): the generalized forces minus the bias forces
        gamma (np.ndarray): the constraint bias
        Y (np.ndarray): the range space basis
        Z (np.ndarray): the null space basis
        linear_solver (LinearSolver): the factorization used for the G Y systems

    Returns:
        Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]: qddot, lambda, qddot_y and qddot_z
    """
    GY = G @ Y
    qddot_y = solve_linear_system(GY, gamma, linear_solver)
    qddot_z = _cholesky_solve(Z.T @ H @ Z, Z.T @ (c - H @ Y @ qddot_y))
    qddot = Y @ qddot_y + Z @ qddot_z
    lam = solve_linear_system(GY.T, Y.T @ (H @ qddot - c), linear_solver)
    return qddot, lam, qddot_y, qddot_z
