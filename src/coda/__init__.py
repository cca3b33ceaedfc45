# Copyright (C) Istituto Italiano di Tecnologia (IIT). All rights reserved.

from coda.core import (
    ConstraintSetError,
    ConstraintType,
    ForwardDynamicsMethod,
    JointType,
    LinearSolver,
    SpatialTransform,
    Xrot,
    Xtrans,
)
from coda.model import Body, Joint, Model
from coda.constraints import Constraint, ConstraintSet, ContactConstraint, LoopConstraint
from coda.numpy import ConstrainedDynamicsComputations
