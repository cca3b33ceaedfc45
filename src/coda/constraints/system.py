# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

import logging
from typing import List, Union

import numpy as np
import numpy.typing as npt

from coda.constraints.constraint_set import ConstraintSet
from coda.core.exceptions import check_size, contract_violation
from coda.core.rbd_algorithms import crba, nonlinear_effects, update_kinematics_custom
from coda.model import Model

logger = logging.getLogger(__name__)


def check_bound(cs: ConstraintSet) -> None:
    if not cs.bound:
        raise contract_violation(
            "The constraint set must be bound to a model before being used."
        )


def calc_constraints_position_error(
    model: Model,
    q: npt.ArrayLike,
    cs: ConstraintSet,
    err: Union[np.ndarray, None] = None,
    update_kinematics: bool = True,
) -> np.ndarray:
    """
    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        cs (ConstraintSet): the bound constraint set
        err (np.ndarray, optional): the output vector, cs.err if None
        update_kinematics (bool, optional): whether to recompute the transforms

    Returns:
        err (np.ndarray): the position errors of all the constraints
    """
    check_bound(cs)
    check_size("q", q, model.q_size)
    err = cs.err if err is None else err
    check_size("err", err, cs.size())

    if update_kinematics:
        update_kinematics_custom(model, q)
    for constraint in cs.constraints:
        constraint.calc_position_error(model, q, err, cs.cache, False)
    return err


def calc_constraints_jacobian(
    model: Model,
    q: npt.ArrayLike,
    cs: ConstraintSet,
    G: Union[np.ndarray, None] = None,
    update_kinematics: bool = True,
) -> np.ndarray:
    """
    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        cs (ConstraintSet): the bound constraint set
        G (np.ndarray, optional): the output matrix, cs.G if None
        update_kinematics (bool, optional): whether to recompute the transforms

    Returns:
        G (np.ndarray): the Jacobian of all the constraints
    """
    check_bound(cs)
    check_size("q", q, model.q_size)
    G = cs.G if G is None else G
    if G.shape != (cs.size(), model.dof_count):
        raise contract_violation(
            f"Incorrect G shape: expected {(cs.size(), model.dof_count)}, got {G.shape}."
        )

    if update_kinematics:
        update_kinematics_custom(model, q)
    for constraint in cs.constraints:
        constraint.calc_constraint_jacobian(
            model, q, cs.cache.vec_n_zeros, G, cs.cache, False
        )
    return G


def calc_constraints_velocity_error(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    cs: ConstraintSet,
    errd: Union[np.ndarray, None] = None,
    update_kinematics: bool = True,
) -> np.ndarray:
    """Computes G qdot, refreshing cs.G on the way

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot (npt.ArrayLike): the generalized velocities
        cs (ConstraintSet): the bound constraint set
        errd (np.ndarray, optional): the output vector, cs.errd if None
        update_kinematics (bool, optional): whether to recompute the transforms

    Returns:
        errd (np.ndarray): the velocity errors of all the constraints
    """
    check_size("qdot", qdot, model.qdot_size)
    calc_constraints_jacobian(model, q, cs, cs.G, update_kinematics)
    errd = cs.errd if errd is None else errd
    check_size("errd", errd, cs.size())
    for constraint in cs.constraints:
        constraint.calc_velocity_error(model, q, qdot, cs.G, errd, cs.cache, False)
    return errd


def calc_constrained_system_variables(
    model: Model,
    q: npt.ArrayLike,
    qdot: npt.ArrayLike,
    tau: npt.ArrayLike,
    cs: ConstraintSet,
    f_ext: Union[List[np.ndarray], None] = None,
) -> None:
    """Computes H, C, G, err, errd and gamma of the constrained system and
    stores them in the constraint set

    Args:
        model (Model): the model
        q (npt.ArrayLike): the generalized positions
        qdot (npt.ArrayLike): the generalized velocities
        tau (npt.ArrayLike): the generalized forces
        cs (ConstraintSet): the bound constraint set
        f_ext (List[np.ndarray], optional): external spatial forces in base coordinates, one per body
    """
    check_bound(cs)
    check_size("q", q, model.q_size)
    check_size("qdot", qdot, model.qdot_size)
    check_size("tau", tau, model.dof_count)

    nonlinear_effects(model, q, qdot, cs.C, f_ext)
    crba(model, q, cs.H, update_kinematics=False)

    # the bias forces only refresh the joint transforms
    for i in range(1, model.n_bodies):
        model.X_base[i] = model.X_lambda[i] * model.X_base[model.parent[i]]

    calc_constraints_jacobian(model, q, cs, cs.G, False)
    calc_constraints_position_error(model, q, cs, cs.err, False)
    calc_constraints_velocity_error(model, q, qdot, cs, cs.errd, False)

    cs.QDDot_0.fill(0.0)
    update_kinematics_custom(model, None, None, cs.QDDot_0)
    for constraint in cs.constraints:
        constraint.calc_gamma(model, q, qdot, cs.G, cs.gamma, cs.cache)
        if constraint.enable_baumgarte_stabilization:
            constraint.add_in_baumgarte_stabilization_forces(
                cs.err, cs.errd, cs.gamma
            )
    logger.debug("gamma = %s", cs.gamma)
