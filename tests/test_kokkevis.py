import numpy as np
import pytest

from coda import ConstraintSetError
from coda.constraints import (
    forward_dynamics_acceleration_deltas,
    forward_dynamics_apply_constraint_forces,
    forward_dynamics_constraints_direct,
    forward_dynamics_contacts_kokkevis,
)
from coda.core import rbd_algorithms

from conftest import build_system


def test_kokkevis_matches_direct(contact_system, linear_solver):
    model, cs, state = (
        contact_system.model,
        contact_system.cs,
        contact_system.state,
    )
    cs.linear_solver = linear_solver
    qddot_direct = forward_dynamics_constraints_direct(
        model, state.q, state.qdot, state.tau, cs
    )
    force_direct = cs.force.copy()
    qddot = forward_dynamics_contacts_kokkevis(model, state.q, state.qdot, state.tau, cs)
    assert qddot - qddot_direct == pytest.approx(0.0, abs=1e-7)
    assert cs.force - force_direct == pytest.approx(0.0, abs=1e-7)
    assert cs.K - cs.K.T == pytest.approx(0.0, abs=1e-8)


def test_kokkevis_on_a_fixed_body():
    system = build_system("tree_mixed")
    model, state = system.model, system.state
    cs = type(system.cs)()
    tool = model.get_body_id("tool")
    cs.add_contact_constraint(tool, (0.1, 0.0, 0.0), (0.0, 0.0, 1.0))
    cs.add_contact_constraint(tool, (0.1, 0.0, 0.0), (1.0, 0.0, 0.0))
    cs.add_contact_constraint(
        model.get_body_id("left_tip"), (1.0, 0.0, 0.0), (0.0, 1.0, 0.0)
    )
    cs.bind(model)
    qddot_direct = forward_dynamics_constraints_direct(
        model, state.q, state.qdot, state.tau, cs
    )
    qddot = forward_dynamics_contacts_kokkevis(model, state.q, state.qdot, state.tau, cs)
    assert qddot - qddot_direct == pytest.approx(0.0, abs=1e-7)


def test_kokkevis_rejects_other_constraints():
    for name in ["four_bar", "tree_mixed"]:
        system = build_system(name)
        system.cs.bind(system.model)
        state = system.state
        with pytest.raises(ConstraintSetError):
            forward_dynamics_contacts_kokkevis(
                system.model, state.q, state.qdot, state.tau, system.cs
            )


def test_acceleration_deltas_of_a_point_force(contact_system):
    model, cs, state = (
        contact_system.model,
        contact_system.cs,
        contact_system.state,
    )
    body_id = model.n_bodies - 1
    point = np.array([0.2, -0.1, 0.3])
    normal = np.array([0.0, 0.6, 0.8])

    rbd_algorithms.forward_dynamics(model, state.q, state.qdot, state.tau)
    p = rbd_algorithms.calc_body_to_base_coordinates(model, state.q, body_id, point)
    f_t = np.zeros((model.n_bodies, 6))
    f_t[body_id] = np.concatenate([normal, np.cross(p, normal)])
    delta = forward_dynamics_acceleration_deltas(
        model, cs, np.zeros(model.dof_count), body_id, f_t
    )

    H = rbd_algorithms.crba(model, state.q)
    J = rbd_algorithms.calc_point_jacobian(model, state.q, body_id, point)
    assert delta - np.linalg.solve(H, J.T @ normal) == pytest.approx(0.0, abs=1e-9)


def test_apply_constraint_forces_matches_aba(contact_system):
    model, cs, state = (
        contact_system.model,
        contact_system.cs,
        contact_system.state,
    )
    f_ext = [(np.random.rand(6) - 0.5) for _ in range(model.n_bodies)]
    f_ext[0] = np.zeros(6)
    expected = rbd_algorithms.forward_dynamics(
        model, state.q, state.qdot, state.tau, f_ext=f_ext
    )

    rbd_algorithms.forward_dynamics(model, state.q, state.qdot, state.tau)
    cs.f_ext_constraints[:] = np.array(f_ext)
    qddot = forward_dynamics_apply_constraint_forces(model, state.tau, cs)
    assert qddot - expected == pytest.approx(0.0, abs=1e-10)
