# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

import logging
from typing import List, Tuple, Union

import numpy as np

from coda.constraints import (
    ConstraintSet,
    calc_assembly_q,
    calc_assembly_qdot,
    calc_constrained_system_variables,
    calc_constraints_jacobian,
    calc_constraints_position_error,
    calc_constraints_velocity_error,
    compute_constraint_impulses_direct,
    compute_constraint_impulses_null_space,
    compute_constraint_impulses_range_space_sparse,
    forward_dynamics_constraints_direct,
    forward_dynamics_constraints_null_space,
    forward_dynamics_constraints_range_space_sparse,
    forward_dynamics_contacts_kokkevis,
)
from coda.core import rbd_algorithms
from coda.core.constants import ForwardDynamicsMethod
from coda.core.exceptions import contract_violation
from coda.model import Model

logger = logging.getLogger(__name__)


class ConstrainedDynamicsComputations:
    """This is a small class that computes the constrained dynamics of a model using NumPy."""

    def __init__(
        self,
        model: Model,
        constraint_set: ConstraintSet,
        method: ForwardDynamicsMethod = ForwardDynamicsMethod.DIRECT,
    ) -> None:
        """
        Args:
            model (Model): the model
            constraint_set (ConstraintSet): the constraints, bound to the model if not bound yet
            method (ForwardDynamicsMethod, optional): the method used to solve the constrained dynamics
        """
        self.model = model
        self.cs = constraint_set
        if not self.cs.bound:
            self.cs.bind(model)
        self.method = method
        self.NDoF = model.dof_count

    def set_forward_dynamics_method(self, method: ForwardDynamicsMethod) -> None:
        """Sets the method used by forward_dynamics and compute_constraint_impulses

        Args:
            method (ForwardDynamicsMethod): the method
        """
        self.method = method

    def mass_matrix(self, q: np.ndarray) -> np.ndarray:
        """Returns the Mass Matrix computed with the CRBA

        Args:
            q (np.ndarray): The generalized positions

        Returns:
            H (np.ndarray): Mass Matrix
        """
        return rbd_algorithms.crba(self.model, q)

    def bias_force(
        self,
        q: np.ndarray,
        qdot: np.ndarray,
        f_ext: Union[List[np.ndarray], None] = None,
    ) -> np.ndarray:
        """Returns the bias force of the dynamics equation, using a reduced RNEA

        Args:
            q (np.ndarray): The generalized positions
            qdot (np.ndarray): The generalized velocities
            f_ext (List[np.ndarray], optional): External spatial forces in base coordinates, one per body

        Returns:
            C (np.ndarray): the bias force
        """
        return rbd_algorithms.nonlinear_effects(self.model, q, qdot, f_ext=f_ext)

    def constraint_jacobian(self, q: np.ndarray) -> np.ndarray:
        """
        Args:
            q (np.ndarray): The generalized positions

        Returns:
            G (np.ndarray): the Jacobian of all the constraints
        """
        return calc_constraints_jacobian(self.model, q, self.cs).copy()

    def position_error(self, q: np.ndarray) -> np.ndarray:
        return calc_constraints_position_error(self.model, q, self.cs).copy()

    def velocity_error(self, q: np.ndarray, qdot: np.ndarray) -> np.ndarray:
        return calc_constraints_velocity_error(self.model, q, qdot, self.cs).copy()

    def constrained_system(
        self, q: np.ndarray, qdot: np.ndarray, tau: np.ndarray
    ) -> Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
        """Returns the terms of the constrained dynamics equations

        Args:
            q (np.ndarray): The generalized positions
            qdot (np.ndarray): The generalized velocities
            tau (np.ndarray): The generalized forces

        Returns:
            Tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]: H, C, G and gamma
        """
        calc_constrained_system_variables(self.model, q, qdot, tau, self.cs)
        return self.cs.H.copy(), self.cs.C.copy(), self.cs.G.copy(), self.cs.gamma.copy()

    def forward_dynamics(
        self,
        q: np.ndarray,
        qdot: np.ndarray,
        tau: np.ndarray,
        f_ext: Union[List[np.ndarray], None] = None,
    ) -> np.ndarray:
        """Returns the generalized accelerations, the constraint forces are
        available in the constraint set after the call

        Args:
            q (np.ndarray): The generalized positions
            qdot (np.ndarray): The generalized velocities
            tau (np.ndarray): The generalized forces
            f_ext (List[np.ndarray], optional): External spatial forces in base coordinates, one per body

        Returns:
            qddot (np.ndarray): the generalized accelerations
        """
        if self.method == ForwardDynamicsMethod.DIRECT:
            return forward_dynamics_constraints_direct(
                self.model, q, qdot, tau, self.cs, f_ext=f_ext
            )
        if self.method == ForwardDynamicsMethod.RANGE_SPACE_SPARSE:
            return forward_dynamics_constraints_range_space_sparse(
                self.model, q, qdot, tau, self.cs, f_ext=f_ext
            )
        if self.method == ForwardDynamicsMethod.NULL_SPACE:
            return forward_dynamics_constraints_null_space(
                self.model, q, qdot, tau, self.cs, f_ext=f_ext
            )
        if self.method == ForwardDynamicsMethod.KOKKEVIS:
            if f_ext is not None:
                raise contract_violation(
                    "External forces are not supported by the Kokkevis method."
                )
            return forward_dynamics_contacts_kokkevis(
                self.model, q, qdot, tau, self.cs
            )
        raise contract_violation(f"Invalid forward dynamics method: {self.method}")

    def compute_constraint_impulses(
        self, q: np.ndarray, qdot_minus: np.ndarray
    ) -> np.ndarray:
        """Returns the generalized velocities after an impact, the impulses are
        available in the constraint set after the call

        Args:
            q (np.ndarray): The generalized positions
            qdot_minus (np.ndarray): The generalized velocities before the impact

        Returns:
            qdot_plus (np.ndarray): the generalized velocities after the impact
        """
        if self.method == ForwardDynamicsMethod.DIRECT:
            return compute_constraint_impulses_direct(self.model, q, qdot_minus, self.cs)
        if self.method == ForwardDynamicsMethod.RANGE_SPACE_SPARSE:
            return compute_constraint_impulses_range_space_sparse(
                self.model, q, qdot_minus, self.cs
            )
        if self.method == ForwardDynamicsMethod.NULL_SPACE:
            return compute_constraint_impulses_null_space(
                self.model, q, qdot_minus, self.cs
            )
        raise contract_violation(
            f"Constraint impulses are not available with the {self.method!r} method."
        )

    def assemble_q(
        self,
        q_init: np.ndarray,
        weights: Union[np.ndarray, None] = None,
        tolerance: float = 1e-12,
        max_iter: int = 100,
    ) -> Tuple[bool, np.ndarray]:
        """Returns a configuration close to q_init that satisfies the constraints

        Args:
            q_init (np.ndarray): The initial guess
            weights (np.ndarray, optional): The weight of every degree of freedom. Defaults to ones.
            tolerance (float, optional): The bound on the error and step norms
            max_iter (int, optional): The maximum number of iterations

        Returns:
            Tuple[bool, np.ndarray]: whether the iteration converged and the configuration
        """
        if weights is None:
            weights = np.ones(self.NDoF)
        return calc_assembly_q(
            self.model, q_init, self.cs, weights, tolerance, max_iter
        )

    def assemble_qdot(
        self,
        q: np.ndarray,
        qdot_init: np.ndarray,
        weights: Union[np.ndarray, None] = None,
    ) -> np.ndarray:
        """Returns the velocity closest to qdot_init that satisfies the constraints at q

        Args:
            q (np.ndarray): The generalized positions
            qdot_init (np.ndarray): The initial guess
            weights (np.ndarray, optional): The weight of every degree of freedom. Defaults to ones.

        Returns:
            qdot (np.ndarray): the projected velocities
        """
        if weights is None:
            weights = np.ones(self.NDoF)
        return calc_assembly_qdot(self.model, q, qdot_init, self.cs, weights)

    @property
    def force(self) -> np.ndarray:
        return self.cs.force.copy()

    @property
    def impulse(self) -> np.ndarray:
        return self.cs.impulse.copy()
