from .assembly import calc_assembly_q, calc_assembly_qdot
from .constraint import Constraint, ConstraintCache
from .constraint_set import ConstraintSet
from .contact import ContactConstraint
from .forward_dynamics import (
    compute_constraint_impulses_direct,
    compute_constraint_impulses_null_space,
    compute_constraint_impulses_range_space_sparse,
    forward_dynamics_acceleration_deltas,
    forward_dynamics_apply_constraint_forces,
    forward_dynamics_constraints_direct,
    forward_dynamics_constraints_null_space,
    forward_dynamics_constraints_range_space_sparse,
    forward_dynamics_contacts_kokkevis,
)
from .loop import LoopConstraint
from .solvers import (
    solve_constrained_system_direct,
    solve_constrained_system_null_space,
    solve_constrained_system_range_space_sparse,
    solve_linear_system,
)
from .system import (
    calc_constrained_system_variables,
    calc_constraints_jacobian,
    calc_constraints_position_error,
    calc_constraints_velocity_error,
)
