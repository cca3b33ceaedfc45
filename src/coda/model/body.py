# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

import dataclasses

import numpy as np
import numpy.typing as npt

from coda.core.spatial_math import SpatialTransform, spatial_inertia


@dataclasses.dataclass(frozen=True)
class Body:
    """Rigid body described by its mass, center of mass and rotational inertia
    about the center of mass, all in body coordinates"""

    mass: float
    com: npt.ArrayLike = (0.0, 0.0, 0.0)
    inertia: npt.ArrayLike = ((0.0, 0.0, 0.0), (0.0, 0.0, 0.0), (0.0, 0.0, 0.0))

    @staticmethod
    def massless() -> "Body":
        return Body(mass=0.0)

    def spatial_inertia(self) -> np.ndarray:
        """
        Returns:
            np.ndarray: the 6x6 spatial inertia at the body origin
        """
        return spatial_inertia(self.mass, self.com, self.inertia)


@dataclasses.dataclass
class FixedBody:
    """Body rigidly attached to a movable body. Its inertia is merged into the
    movable parent; only its frame is kept."""

    name: str
    movable_parent: int
    parent_transform: SpatialTransform
    mass: float
