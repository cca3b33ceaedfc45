import dataclasses
import logging

import numpy as np
import pytest
from scipy.spatial.transform import Rotation

from coda import (
    Body,
    Constraint,
    ConstraintSet,
    Joint,
    JointType,
    LinearSolver,
    Model,
    SpatialTransform,
    Xrot,
    Xtrans,
)

LINK_LENGTH = 1.0
FOUR_BAR_CLOSED_Q = np.array([-np.pi / 2, np.pi / 2, np.pi / 2])
BOX_CORNERS = {
    "a": (-0.5, -0.5, -0.5),
    "b": (0.5, -0.5, -0.5),
    "c": (0.5, 0.5, -0.5),
}


@dataclasses.dataclass
class State:
    q: np.ndarray
    qdot: np.ndarray
    tau: np.ndarray


@dataclasses.dataclass
class ConstrainedSystem:
    name: str
    model: Model
    cs: ConstraintSet
    state: State


class JointCouplingConstraint(Constraint):
    """Keeps q[first] = ratio * q[second]"""

    def __init__(self, first: int, second: int, ratio: float, name: str = None):
        super().__init__(1, name)
        self.first = first
        self.second = second
        self.ratio = ratio

    def calc_position_error(self, model, q, err, cache, update_kinematics=False):
        err[self.row_in_system] = q[self.first] - self.ratio * q[self.second]

    def calc_constraint_jacobian(
        self, model, q, qdot, G, cache, update_kinematics=False
    ):
        G[self.rows] = 0.0
        G[self.row_in_system, self.first] = 1.0
        G[self.row_in_system, self.second] = -self.ratio

    def calc_gamma(self, model, q, qdot, G, gamma, cache):
        gamma[self.row_in_system] = 0.0


def link_body() -> Body:
    return Body(
        mass=1.0,
        com=(0.5 * LINK_LENGTH, 0.0, 0.0),
        inertia=np.diag([0.01, 0.0833, 0.0833]),
    )


def planar_chain(n_links: int = 3) -> Model:
    """Chain of links along x rotating about z, gravity along -y"""
    model = Model(gravity=(0.0, -9.81, 0.0))
    parent = 0
    for i in range(n_links):
        frame = Xtrans((0.0, 0.0, 0.0)) if i == 0 else Xtrans((LINK_LENGTH, 0.0, 0.0))
        parent = model.add_body(
            parent, frame, Joint.revolute((0.0, 0.0, 1.0)), link_body(), f"link_{i + 1}"
        )
    return model


def branched_tree() -> Model:
    model = Model()
    trunk = model.add_body(
        0,
        Xtrans((0.0, 0.0, 0.0)),
        Joint.revolute((0.0, 0.0, 1.0)),
        Body(mass=2.0, com=(0.0, 0.0, 0.5), inertia=np.diag([0.1, 0.1, 0.05])),
        "trunk",
    )
    left = model.add_body(
        trunk, Xtrans((0.0, 0.3, 1.0)), Joint.revolute((0.0, 1.0, 0.0)), link_body(), "left"
    )
    right = model.add_body(
        trunk, Xtrans((0.0, -0.3, 1.0)), Joint.revolute((1.0, 0.0, 0.0)), link_body(), "right"
    )
    model.add_body(
        right,
        Xtrans((LINK_LENGTH, 0.0, 0.0)),
        Joint.prismatic((1.0, 0.0, 0.0)),
        link_body(),
        "right_slider",
    )
    model.add_body(
        left,
        Xtrans((LINK_LENGTH, 0.0, 0.0)),
        Joint.revolute((0.0, 1.0, 1.0)),
        link_body(),
        "left_tip",
    )
    model.add_body(
        model.get_body_id("right_slider"),
        Xrot(0.4, (0.0, 0.0, 1.0)) * Xtrans((0.5, 0.0, 0.1)),
        Joint.fixed(),
        Body(mass=0.5, inertia=np.diag([0.01, 0.01, 0.01])),
        "tool",
    )
    return model


def floating_box() -> Model:
    """Box attached to the root by a 3D translation and a spherical joint"""
    model = Model()
    base = model.add_body(
        0, SpatialTransform(), Joint.translation_xyz(), Body.massless(), "base_translation"
    )
    model.add_body(
        base,
        SpatialTransform(),
        Joint.spherical(),
        Body(mass=2.0, com=(0.05, 0.0, 0.0), inertia=np.diag([0.2, 0.3, 0.4])),
        "box",
    )
    return model


def random_configuration(model: Model, scale: float = 1.0) -> np.ndarray:
    q = (np.random.rand(model.q_size) - 0.5) * 2 * scale
    for joint in model.joints:
        if joint.type == JointType.SPHERICAL:
            quat = np.random.rand(4) - 0.5
            joint.set_quaternion(quat / np.linalg.norm(quat), q)
    return q


def random_state(model: Model) -> State:
    return State(
        q=random_configuration(model),
        qdot=(np.random.rand(model.qdot_size) - 0.5) * 2,
        tau=(np.random.rand(model.dof_count) - 0.5) * 2,
    )


def box_configuration(model: Model, xyz, rpy) -> np.ndarray:
    q = model.neutral_configuration()
    q[:3] = xyz
    model.set_quaternion(
        model.get_body_id("box"), Rotation.from_euler("xyz", rpy).as_quat(), q
    )
    return q


def four_bar_constraints(model: Model) -> ConstraintSet:
    cs = ConstraintSet()
    cs.add_loop_constraint(
        0,
        model.get_body_id("link_3"),
        Xtrans((LINK_LENGTH, 0.0, 0.0)),
        Xtrans((LINK_LENGTH, 0.0, 0.0)),
        [[1.0, 0.0, 0.0, 0.0, 0.0, 0.0], [0.0, 1.0, 0.0, 0.0, 0.0, 0.0]],
        name="loop",
    )
    return cs


def box_contact_constraints(model: Model) -> ConstraintSet:
    box = model.get_body_id("box")
    cs = ConstraintSet()
    cs.add_contact_constraint(box, BOX_CORNERS["a"], (1.0, 0.0, 0.0), "corner_a_x")
    cs.add_contact_constraint(box, BOX_CORNERS["a"], (0.0, 1.0, 0.0), "corner_a_y")
    cs.add_contact_constraint(box, BOX_CORNERS["a"], (0.0, 0.0, 1.0), "corner_a_z")
    cs.add_contact_constraint(box, BOX_CORNERS["b"], (0.0, 0.0, 1.0), "corner_b_z")
    cs.add_contact_constraint(box, BOX_CORNERS["c"], (0.0, 0.0, 1.0), "corner_c_z")
    return cs


def chain_contact_constraints(model: Model) -> ConstraintSet:
    tip = model.get_body_id("link_3")
    cs = ConstraintSet()
    cs.add_contact_constraint(tip, (LINK_LENGTH, 0.0, 0.0), (1.0, 0.0, 0.0), "tip_x")
    cs.add_contact_constraint(tip, (LINK_LENGTH, 0.0, 0.0), (0.0, 1.0, 0.0), "tip_y")
    return cs


def tree_mixed_constraints(model: Model) -> ConstraintSet:
    cs = ConstraintSet()
    cs.add_loop_constraint(
        model.get_body_id("left_tip"),
        model.get_body_id("right_slider"),
        Xtrans((LINK_LENGTH, 0.0, 0.0)),
        Xrot(0.3, (1.0, 0.0, 0.0)) * Xtrans((LINK_LENGTH, 0.0, 0.0)),
        [[1.0, 0.0, 0.0, 0.0, 0.0, 0.0], [0.0, 0.0, 1.0, 0.0, 0.0, 0.0]],
        name="branch_loop",
    )
    cs.add_contact_constraint(
        model.get_body_id("tool"), (0.1, 0.0, 0.0), (0.0, 0.0, 1.0), "tool_z"
    )
    cs.add_custom_constraint(JointCouplingConstraint(0, 1, 0.5, "coupling"))
    return cs


def build_system(name: str) -> ConstrainedSystem:
    """Builds an unbound constrained system with a seeded random state"""
    np.random.seed(42)
    if name == "four_bar":
        model = planar_chain()
        cs = four_bar_constraints(model)
        state = random_state(model)
        state.q = FOUR_BAR_CLOSED_Q.copy()
    elif name == "box_contacts":
        model = floating_box()
        cs = box_contact_constraints(model)
        state = random_state(model)
        state.q = box_configuration(model, (0.1, -0.2, 0.5), (0.1, -0.2, 0.3))
    elif name == "chain_contact":
        model = planar_chain()
        cs = chain_contact_constraints(model)
        state = random_state(model)
    elif name == "tree_mixed":
        model = branched_tree()
        cs = tree_mixed_constraints(model)
        state = random_state(model)
    else:
        raise ValueError(f"Unknown system: {name}")
    return ConstrainedSystem(name=name, model=model, cs=cs, state=state)


MODELS = ["chain", "tree", "floating_box"]
SYSTEMS = ["four_bar", "box_contacts", "chain_contact", "tree_mixed"]
CONTACT_SYSTEMS = ["box_contacts", "chain_contact"]
LINEAR_SOLVERS = list(LinearSolver)


@pytest.fixture(scope="function", params=MODELS, ids=str)
def model_setup(request) -> tuple:
    np.random.seed(42)
    logging.basicConfig(level=logging.DEBUG)
    builders = {
        "chain": planar_chain,
        "tree": branched_tree,
        "floating_box": floating_box,
    }
    model = builders[request.param]()
    logging.debug("Showing the model tree.")
    model.print_table()
    yield model, random_state(model)


@pytest.fixture(scope="function", params=SYSTEMS, ids=str)
def constrained_system(request) -> ConstrainedSystem:
    system = build_system(request.param)
    system.cs.bind(system.model)
    yield system


@pytest.fixture(scope="function", params=CONTACT_SYSTEMS, ids=str)
def contact_system(request) -> ConstrainedSystem:
    system = build_system(request.param)
    system.cs.bind(system.model)
    yield system


@pytest.fixture(scope="function", params=LINEAR_SOLVERS, ids=lambda s: s.name)
def linear_solver(request) -> LinearSolver:
    yield request.param
