import numpy as np
import pytest

from coda import ConstraintSet, ConstraintSetError, ConstraintType, LinearSolver
from coda.constraints import (
    calc_constraints_jacobian,
    calc_constraints_position_error,
    calc_constraints_velocity_error,
    forward_dynamics_constraints_direct,
)
from coda.core.constants import MERGE_TOLERANCE
from coda.core.spatial_math import Xtrans

from conftest import (
    FOUR_BAR_CLOSED_Q,
    JointCouplingConstraint,
    build_system,
    planar_chain,
)

TIP = (1.0, 0.0, 0.0)
X_AXIS = [1.0, 0.0, 0.0, 0.0, 0.0, 0.0]
Y_AXIS = [0.0, 1.0, 0.0, 0.0, 0.0, 0.0]


def test_contact_normals_are_merged_for_the_same_point():
    cs = ConstraintSet()
    assert cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0), "tip_x") == 0
    assert cs.add_contact_constraint(3, TIP, (0.0, 1.0, 0.0), "tip_y") == 1
    assert len(cs.constraints) == 1
    contact = cs.contact_constraints[0]
    assert contact.size_of_constraint == 2
    assert contact.row_in_system == 0
    assert contact.normals[1] == pytest.approx([0.0, 1.0, 0.0])
    assert cs.name == ["tip_x", "tip_y"]
    assert cs.constraint_type == [ConstraintType.CONTACT] * 2
    assert cs.size() == len(cs) == 2


def test_contact_normals_are_not_merged():
    cs = ConstraintSet()
    cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0))
    cs.add_contact_constraint(3, (0.5, 0.0, 0.0), (1.0, 0.0, 0.0))
    cs.add_contact_constraint(2, (0.5, 0.0, 0.0), (1.0, 0.0, 0.0))
    cs.add_contact_constraint(2, (0.5, 0.0, 0.0), (0.0, 1.0, 0.0), allow_constraint_appending=False)
    assert len(cs.contact_constraints) == 4
    assert [c.row_in_system for c in cs.constraints] == [0, 1, 2, 3]


def test_list_of_normals_creates_a_new_constraint():
    cs = ConstraintSet()
    cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0))
    last = cs.add_contact_constraint(3, TIP, [(0.0, 1.0, 0.0), (0.0, 0.0, 1.0)], "pair")
    assert last == 2
    assert len(cs.constraints) == 2
    assert cs.constraints[1].size_of_constraint == 2
    assert cs.constraints[1].rows == slice(1, 3)


def test_only_the_last_constraint_is_extended():
    cs = ConstraintSet()
    cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0))
    cs.add_loop_constraint(0, 3, Xtrans(TIP), Xtrans(TIP), X_AXIS)
    cs.add_contact_constraint(3, TIP, (0.0, 1.0, 0.0))
    assert len(cs.constraints) == 3
    assert len(cs.contact_constraints) == 2
    assert [c.row_in_system for c in cs.constraints] == [0, 1, 2]
    assert cs.constraint_type == [
        ConstraintType.CONTACT,
        ConstraintType.LOOP,
        ConstraintType.CONTACT,
    ]


def test_loop_axes_are_merged_for_the_same_frames():
    cs = ConstraintSet()
    cs.add_loop_constraint(0, 3, Xtrans(TIP), Xtrans(TIP), X_AXIS, name="x")
    cs.add_loop_constraint(
        0, 3, Xtrans(TIP), Xtrans(TIP), Y_AXIS, True, 0.2, name="y"
    )
    assert len(cs.loop_constraints) == 1
    loop = cs.loop_constraints[0]
    assert loop.size_of_constraint == 2
    assert loop.enable_baumgarte_stabilization
    assert loop.baumgarte_time_constant == pytest.approx(0.2)

    cs.add_loop_constraint(0, 3, Xtrans((0.9, 0.0, 0.0)), Xtrans(TIP), X_AXIS)
    cs.add_loop_constraint(0, 2, Xtrans((0.9, 0.0, 0.0)), Xtrans(TIP), X_AXIS)
    assert len(cs.loop_constraints) == 3
    assert cs.size() == 4


def test_loop_defaults():
    cs = ConstraintSet()
    cs.add_loop_constraint(0, 3, Xtrans(TIP), Xtrans(TIP), [X_AXIS, Y_AXIS])
    loop = cs.loop_constraints[0]
    assert not loop.enable_baumgarte_stabilization
    assert loop.baumgarte_time_constant == pytest.approx(0.1)
    assert loop.position_level == [True, True]
    assert loop.velocity_level == [True, True]


def test_invalid_stabilization_time_constant():
    cs = ConstraintSet()
    with pytest.raises(ConstraintSetError):
        cs.add_loop_constraint(
            0, 3, Xtrans(TIP), Xtrans(TIP), X_AXIS, True, 0.0
        )
    assert cs.size() == 0
    cs.add_loop_constraint(0, 3, Xtrans(TIP), Xtrans(TIP), X_AXIS)
    with pytest.raises(ValueError):
        cs.loop_constraints[0].baumgarte_time_constant = -1.0


def test_custom_constraint_rows():
    cs = ConstraintSet()
    cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0))
    last = cs.add_custom_constraint(JointCouplingConstraint(0, 1, 2.0, "coupling"))
    assert last == 1
    assert cs.custom_constraints[0].row_in_system == 1
    assert cs.name[1] == "coupling"
    assert cs.constraint_type[1] == ConstraintType.CUSTOM


def test_bind_allocates_the_working_memory():
    model = planar_chain()
    cs = ConstraintSet(LinearSolver.PARTIAL_PIV_LU)
    cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0))
    cs.add_contact_constraint(3, TIP, (0.0, 1.0, 0.0))
    assert cs.bind(model)
    assert cs.G.shape == (2, 3)
    assert cs.A.shape == (5, 5)
    assert cs.Y.shape == (3, 2)
    assert cs.Z.shape == (3, 1)
    assert cs.K.shape == (2, 2)
    assert cs.f_t.shape == (2, 6)
    assert cs.f_ext_constraints.shape == (model.n_bodies, 6)


def test_bind_twice_raises():
    model = planar_chain()
    cs = ConstraintSet()
    cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0))
    cs.bind(model)
    with pytest.raises(ConstraintSetError):
        cs.bind(model)


def test_adding_to_a_bound_set_raises():
    model = planar_chain()
    cs = ConstraintSet()
    cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0))
    cs.bind(model)
    with pytest.raises(ConstraintSetError):
        cs.add_contact_constraint(3, TIP, (0.0, 1.0, 0.0))
    with pytest.raises(ConstraintSetError):
        cs.add_custom_constraint(JointCouplingConstraint(0, 1, 1.0))
    assert cs.size() == 1


def test_bind_with_unknown_body_raises(caplog):
    model = planar_chain()
    cs = ConstraintSet()
    cs.add_contact_constraint(7, TIP, (1.0, 0.0, 0.0))
    with pytest.raises(ConstraintSetError):
        cs.bind(model)
    assert "unknown body 7" in caplog.text


def test_unbound_set_raises():
    model = planar_chain()
    cs = ConstraintSet()
    cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0))
    q = np.zeros(model.q_size)
    with pytest.raises(ConstraintSetError):
        calc_constraints_position_error(model, q, cs)
    with pytest.raises(ConstraintSetError):
        forward_dynamics_constraints_direct(model, q, q, q, cs)


def test_wrong_sizes_raise(constrained_system):
    model, cs, state = (
        constrained_system.model,
        constrained_system.cs,
        constrained_system.state,
    )
    with pytest.raises(ConstraintSetError):
        forward_dynamics_constraints_direct(
            model, state.q[:-1], state.qdot, state.tau, cs
        )
    with pytest.raises(ConstraintSetError):
        forward_dynamics_constraints_direct(
            model, state.q, state.qdot, np.zeros(model.dof_count + 1), cs
        )
    with pytest.raises(ConstraintSetError):
        calc_constraints_jacobian(
            model, state.q, cs, np.zeros((cs.size() + 1, model.dof_count))
        )


def test_clear_keeps_the_layout(constrained_system):
    model, cs, state = (
        constrained_system.model,
        constrained_system.cs,
        constrained_system.state,
    )
    qddot = forward_dynamics_constraints_direct(model, state.q, state.qdot, state.tau, cs)
    force = cs.force.copy()
    rows = [c.rows for c in cs.constraints]
    names = list(cs.name)
    assert np.any(force != 0.0)

    cs.clear()
    assert cs.force == pytest.approx(0.0)
    assert cs.err == pytest.approx(0.0)
    assert cs.G == pytest.approx(0.0)
    cs.clear()
    assert cs.bound
    assert [c.rows for c in cs.constraints] == rows
    assert cs.name == names

    assert forward_dynamics_constraints_direct(
        model, state.q, state.qdot, state.tau, cs
    ) - qddot == pytest.approx(0.0, abs=1e-12)
    assert cs.force - force == pytest.approx(0.0, abs=1e-12)


def test_velocity_error_is_g_qdot(constrained_system):
    model, cs, state = (
        constrained_system.model,
        constrained_system.cs,
        constrained_system.state,
    )
    errd = calc_constraints_velocity_error(model, state.q, state.qdot, cs).copy()
    G = calc_constraints_jacobian(model, state.q, cs, np.zeros(cs.G.shape))
    assert errd - G @ state.qdot == pytest.approx(0.0, abs=1e-12)


def test_disabled_levels_zero_the_errors():
    model = planar_chain()
    cs = ConstraintSet()
    cs.add_loop_constraint(
        0, 3, Xtrans(TIP), Xtrans(TIP), X_AXIS, position_level=False
    )
    cs.add_loop_constraint(
        0, 3, Xtrans(TIP), Xtrans(TIP), Y_AXIS, velocity_level=False
    )
    cs.bind(model)
    q = FOUR_BAR_CLOSED_Q + 0.1
    qdot = np.ones(model.qdot_size)
    err = calc_constraints_position_error(model, q, cs)
    errd = calc_constraints_velocity_error(model, q, qdot, cs)
    assert err[0] == 0.0
    assert err[1] != 0.0
    assert errd[0] != 0.0
    assert errd[1] == 0.0


def test_print_table_lists_the_rows():
    system = build_system("box_contacts")
    system.cs.bind(system.model)
    table = system.cs.print_table()
    for name in ["corner_a_x", "corner_a_y", "corner_a_z", "corner_b_z", "corner_c_z"]:
        assert name in table


@pytest.mark.parametrize("offset, merged", [(1e-14, True), (1e-12, False)])
def test_contact_merge_tolerance(offset, merged):
    cs = ConstraintSet()
    cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0))
    cs.add_contact_constraint(3, (1.0 + offset, 0.0, 0.0), (0.0, 1.0, 0.0))
    assert (offset < MERGE_TOLERANCE) == merged
    assert len(cs.constraints) == (1 if merged else 2)
    assert cs.size() == 2


@pytest.mark.parametrize("offset, merged", [(1e-14, True), (1e-12, False)])
def test_loop_merge_tolerance(offset, merged):
    cs = ConstraintSet()
    cs.add_loop_constraint(0, 3, Xtrans(TIP), Xtrans(TIP), X_AXIS)
    cs.add_loop_constraint(
        0, 3, Xtrans((1.0, offset, 0.0)), Xtrans(TIP), Y_AXIS
    )
    cs.add_loop_constraint(
        0, 3, Xtrans(TIP), Xtrans((1.0, 0.0, offset)), Y_AXIS
    )
    assert len(cs.loop_constraints) == (1 if merged else 3)
    assert cs.size() == 3


def test_row_accounting_after_mixed_registrations():
    model = planar_chain()
    cs = ConstraintSet()
    cs.add_contact_constraint(3, TIP, (1.0, 0.0, 0.0), "tip_x")
    cs.add_contact_constraint(3, TIP, (0.0, 1.0, 0.0), "tip_y")
    cs.add_loop_constraint(0, 2, Xtrans(TIP), Xtrans(TIP), [X_AXIS, Y_AXIS], name="loop")
    cs.add_loop_constraint(0, 2, Xtrans(TIP), Xtrans(TIP), X_AXIS, name="loop_x")
    cs.add_custom_constraint(JointCouplingConstraint(0, 1, 2.0, "coupling"))
    cs.add_contact_constraint(2, TIP, (0.0, 1.0, 0.0), "elbow")

    assert [c.size_of_constraint for c in cs.constraints] == [2, 3, 1, 1]
    n_rows = sum(c.size_of_constraint for c in cs.constraints)
    assert n_rows == cs.size() == 7
    for per_row in (cs.err, cs.errd, cs.force, cs.impulse, cs.name, cs.constraint_type):
        assert len(per_row) == n_rows
    assert [c.row_in_system for c in cs.constraints] == [0, 2, 5, 6]
    assert cs.constraint_type == [ConstraintType.CONTACT] * 2 + [
        ConstraintType.LOOP
    ] * 3 + [ConstraintType.CUSTOM, ConstraintType.CONTACT]

    cs.bind(model)
    assert cs.G.shape == (n_rows, model.dof_count)
    assert cs.gamma.shape == (n_rows,)
