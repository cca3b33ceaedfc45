from .computations import ConstrainedDynamicsComputations
