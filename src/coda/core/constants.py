# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

from enum import IntEnum


class LinearSolver(IntEnum):
    """Dense factorizations available for the constrained systems"""

    PARTIAL_PIV_LU = 0
    COL_PIV_HOUSEHOLDER_QR = 1
    HOUSEHOLDER_QR = 2


class ConstraintType(IntEnum):
    CONTACT = 0
    LOOP = 1
    CUSTOM = 2


class JointType(IntEnum):
    FIXED = 0
    REVOLUTE = 1
    PRISMATIC = 2
    SPHERICAL = 3
    TRANSLATION_XYZ = 4


class ForwardDynamicsMethod(IntEnum):
    """Strategies used by the facade to solve the constrained system"""

    DIRECT = 0
    RANGE_SPACE_SPARSE = 1
    NULL_SPACE = 2
    KOKKEVIS = 3


EPSILON = 2.220446049250313e-16
MERGE_TOLERANCE = EPSILON * 100.0
