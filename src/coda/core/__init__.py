from .constants import (
    ConstraintType,
    ForwardDynamicsMethod,
    JointType,
    LinearSolver,
)
from .exceptions import ConstraintSetError
from .spatial_math import SpatialTransform, Xrot, Xtrans
