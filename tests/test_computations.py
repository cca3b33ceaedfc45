import numpy as np
import pytest

from coda import ConstraintSetError, ForwardDynamicsMethod
from coda.core import rbd_algorithms
from coda.numpy import ConstrainedDynamicsComputations

from conftest import FOUR_BAR_CLOSED_Q, build_system


@pytest.fixture
def box_computations():
    system = build_system("box_contacts")
    comp = ConstrainedDynamicsComputations(system.model, system.cs)
    return comp, system


def test_facade_binds_the_constraint_set(box_computations):
    comp, system = box_computations
    assert system.cs.bound
    assert comp.NDoF == 6
    assert comp.method == ForwardDynamicsMethod.DIRECT


def test_forward_dynamics_methods(box_computations):
    comp, system = box_computations
    state = system.state
    qddot = comp.forward_dynamics(state.q, state.qdot, state.tau)
    force = comp.force
    for method in ForwardDynamicsMethod:
        comp.set_forward_dynamics_method(method)
        assert comp.forward_dynamics(state.q, state.qdot, state.tau) - qddot == pytest.approx(
            0.0, abs=1e-7
        )
        assert comp.force - force == pytest.approx(0.0, abs=1e-7)


def test_kokkevis_rejects_external_forces(box_computations):
    comp, system = box_computations
    state = system.state
    comp.set_forward_dynamics_method(ForwardDynamicsMethod.KOKKEVIS)
    f_ext = [np.zeros(6) for _ in range(system.model.n_bodies)]
    with pytest.raises(ConstraintSetError):
        comp.forward_dynamics(state.q, state.qdot, state.tau, f_ext)
    with pytest.raises(ConstraintSetError):
        comp.compute_constraint_impulses(state.q, state.qdot)


def test_impulses(box_computations):
    comp, system = box_computations
    state = system.state
    qdot_plus = comp.compute_constraint_impulses(state.q, state.qdot)
    impulse = comp.impulse
    G = comp.constraint_jacobian(state.q)
    assert G @ qdot_plus == pytest.approx(0.0, abs=1e-9)
    for method in (
        ForwardDynamicsMethod.NULL_SPACE,
        ForwardDynamicsMethod.RANGE_SPACE_SPARSE,
    ):
        comp.set_forward_dynamics_method(method)
        assert comp.compute_constraint_impulses(
            state.q, state.qdot
        ) - qdot_plus == pytest.approx(0.0, abs=1e-8)
        assert comp.impulse - impulse == pytest.approx(0.0, abs=1e-8)


def test_system_terms(box_computations):
    comp, system = box_computations
    state = system.state
    H, C, G, gamma = comp.constrained_system(state.q, state.qdot, state.tau)
    assert H - comp.mass_matrix(state.q) == pytest.approx(0.0, abs=1e-12)
    assert C - comp.bias_force(state.q, state.qdot) == pytest.approx(0.0, abs=1e-12)
    assert G - comp.constraint_jacobian(state.q) == pytest.approx(0.0, abs=1e-12)
    assert gamma.shape == (5,)
    assert comp.velocity_error(state.q, state.qdot) - G @ state.qdot == pytest.approx(
        0.0, abs=1e-12
    )
    assert comp.position_error(state.q).shape == (5,)


def test_gravity_compensation_leaves_the_box_at_rest(box_computations):
    comp, system = box_computations
    model = system.model
    q = system.state.q
    qdot = np.zeros(model.qdot_size)
    tau = rbd_algorithms.nonlinear_effects(model, q, qdot)
    assert comp.forward_dynamics(q, qdot, tau) == pytest.approx(0.0, abs=1e-9)
    assert comp.force == pytest.approx(0.0, abs=1e-9)


def test_assembly_through_the_facade():
    system = build_system("four_bar")
    comp = ConstrainedDynamicsComputations(
        system.model, system.cs, ForwardDynamicsMethod.NULL_SPACE
    )
    converged, q = comp.assemble_q(FOUR_BAR_CLOSED_Q + 0.02)
    assert converged
    assert comp.position_error(q) == pytest.approx(0.0, abs=1e-10)
    qdot = comp.assemble_qdot(q, np.ones(system.model.qdot_size))
    assert comp.constraint_jacobian(q) @ qdot == pytest.approx(0.0, abs=1e-10)
