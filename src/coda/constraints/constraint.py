# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

import abc
import dataclasses
import logging
from typing import List, Union

import numpy as np
import numpy.typing as npt

from coda.core.constants import ConstraintType
from coda.core.exceptions import contract_violation
from coda.core.spatial_math import SpatialTransform
from coda.model import Model

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class ConstraintCache:
    """Scratch buffers shared by the constraints of a set. Allocated once when
    the set is bound and passed to every constraint evaluation."""

    vec_n_zeros: np.ndarray
    vec_n_a: np.ndarray
    vec_n_b: np.ndarray
    mat_3n_a: np.ndarray
    mat_3n_b: np.ndarray
    mat_6n_a: np.ndarray
    mat_6n_b: np.ndarray

    @staticmethod
    def allocate(dof_count: int) -> "ConstraintCache":
        return ConstraintCache(
            vec_n_zeros=np.zeros(dof_count),
            vec_n_a=np.zeros(dof_count),
            vec_n_b=np.zeros(dof_count),
            mat_3n_a=np.zeros((3, dof_count)),
            mat_3n_b=np.zeros((3, dof_count)),
            mat_6n_a=np.zeros((6, dof_count)),
            mat_6n_b=np.zeros((6, dof_count)),
        )

    def reset(self) -> None:
        for field in dataclasses.fields(self):
            getattr(self, field.name).fill(0.0)


class Constraint(abc.ABC):
    """Base class of the constraints handled by a ConstraintSet.

    A constraint owns ``size_of_constraint`` contiguous rows of the global
    constraint system, starting at ``row_in_system``. Every evaluation writes
    only into these rows. User defined constraints subclass this class and are
    registered with :meth:`ConstraintSet.add_custom_constraint`.
    """

    def __init__(
        self,
        size_of_constraint: int,
        name: Union[str, None] = None,
        constraint_type: ConstraintType = ConstraintType.CUSTOM,
    ) -> None:
        """
        Args:
            size_of_constraint (int): the number of rows of the constraint
            name (str, optional): the constraint name
            constraint_type (ConstraintType, optional): the constraint type tag
        """
        if size_of_constraint < 1:
            raise ValueError("A constraint must have at least one row")
        self.size_of_constraint = size_of_constraint
        self.name = name if name is not None else ""
        self.constraint_type = constraint_type
        self.row_in_system: Union[int, None] = None
        self.body_ids: List[int] = []
        self.body_frames: List[SpatialTransform] = []
        self.position_level: List[bool] = [True] * size_of_constraint
        self.velocity_level: List[bool] = [True] * size_of_constraint
        self.enable_baumgarte_stabilization = False
        self._baumgarte_time_constant = 0.1

    @property
    def rows(self) -> slice:
        """The rows of the constraint in the global system"""
        return slice(self.row_in_system, self.row_in_system + self.size_of_constraint)

    @property
    def baumgarte_time_constant(self) -> float:
        return self._baumgarte_time_constant

    @baumgarte_time_constant.setter
    def baumgarte_time_constant(self, time_constant: float) -> None:
        if time_constant <= 0.0:
            raise ValueError(
                f"The Baumgarte time constant must be positive, got {time_constant}"
            )
        self._baumgarte_time_constant = float(time_constant)

    def add_to_constraint_set(self, row_in_system: int) -> None:
        self.row_in_system = row_in_system

    def bind(self, model: Model) -> None:
        """Resolves the body references against the final model topology"""
        for body_id in self.body_ids:
            movable_id = model.get_movable_body_id(body_id)
            if movable_id >= model.n_bodies:
                raise contract_violation(
                    f"Constraint {self.name!r} refers to the unknown body {body_id}"
                )

    @abc.abstractmethod
    def calc_position_error(
        self,
        model: Model,
        q: npt.ArrayLike,
        err: np.ndarray,
        cache: ConstraintCache,
        update_kinematics: bool = False,
    ) -> None:
        """Writes the position level violation into err[self.rows]"""
        pass

    @abc.abstractmethod
    def calc_constraint_jacobian(
        self,
        model: Model,
        q: npt.ArrayLike,
        qdot: npt.ArrayLike,
        G: np.ndarray,
        cache: ConstraintCache,
        update_kinematics: bool = False,
    ) -> None:
        """Writes the constraint Jacobian into G[self.rows]"""
        pass

    def calc_velocity_error(
        self,
        model: Model,
        q: npt.ArrayLike,
        qdot: npt.ArrayLike,
        G: np.ndarray,
        errd: np.ndarray,
        cache: ConstraintCache,
        update_kinematics: bool = False,
    ) -> None:
        """Writes G[self.rows] @ qdot into errd[self.rows]. G must be up to date."""
        errd[self.rows] = G[self.rows] @ qdot
        for i, enforced in enumerate(self.velocity_level):
            if not enforced:
                errd[self.row_in_system + i] = 0.0

    @abc.abstractmethod
    def calc_gamma(
        self,
        model: Model,
        q: npt.ArrayLike,
        qdot: npt.ArrayLike,
        G: np.ndarray,
        gamma: np.ndarray,
        cache: ConstraintCache,
    ) -> None:
        """Writes -Gdot @ qdot into gamma[self.rows].

        The model kinematics are expected to be updated with zero
        generalized accelerations, so that the body accelerations only
        contain the velocity product terms.
        """
        pass

    def add_in_baumgarte_stabilization_forces(
        self, err: np.ndarray, errd: np.ndarray, gamma: np.ndarray
    ) -> None:
        """Adds -2/T errd - 1/T^2 err to gamma, T being the Baumgarte time constant"""
        rows = self.rows
        inv_time_constant = 1.0 / self._baumgarte_time_constant
        gamma[rows] -= (
            2.0 * inv_time_constant * errd[rows]
            + inv_time_constant**2 * err[rows]
        )
